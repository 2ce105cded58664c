from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple
from urllib.parse import urljoin

import requests

from .errors import ManifestLoadError, ManifestParseError


MODEL_FORMATS = ("checkpoint", "torchscript")
FETCH_TIMEOUT = 30


@dataclass(frozen=True)
class Manifest:
    source: str
    model: str  # resolved model location, a local path or a URL
    labels: Tuple[str, ...]
    format: str = "checkpoint"
    label_offset: Optional[int] = None  # None: use the engine default


def is_remote(path: str) -> bool:
    return str(path).startswith(("http://", "https://"))


def resolve_model_path(manifest_path: str, model_ref: str) -> str:
    """Resolve ``model_ref`` relative to the directory holding the manifest."""
    if is_remote(model_ref):
        return model_ref
    if is_remote(manifest_path):
        return urljoin(manifest_path, model_ref)
    ref = Path(model_ref)
    if ref.is_absolute():
        return str(ref)
    return str(Path(manifest_path).resolve().parent / ref)


def fetch_manifest_text(manifest_path: str) -> str:
    if is_remote(manifest_path):
        try:
            resp = requests.get(manifest_path, timeout=FETCH_TIMEOUT)
            resp.raise_for_status()
        except requests.exceptions.RequestException as exc:
            raise ManifestLoadError("Could not fetch manifest {0}: {1}".format(manifest_path, exc)) from exc
        return resp.text

    path = Path(manifest_path)
    if not path.exists():
        raise ManifestLoadError("Manifest not found: {0}".format(path))
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise ManifestParseError("Manifest {0} is not valid UTF-8: {1}".format(path, exc)) from exc
    except OSError as exc:
        raise ManifestLoadError("Could not read manifest {0}: {1}".format(path, exc)) from exc


def parse_manifest(text: str, manifest_path: str) -> Manifest:
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ManifestParseError("Malformed manifest JSON in {0}: {1}".format(manifest_path, exc)) from exc
    if not isinstance(raw, dict):
        raise ManifestParseError("Manifest {0} must be a JSON object".format(manifest_path))

    model_ref = raw.get("model")
    if not isinstance(model_ref, str) or not model_ref.strip():
        raise ManifestParseError("Manifest {0} is missing a 'model' path".format(manifest_path))

    labels = raw.get("labels")
    if not isinstance(labels, list) or not labels:
        raise ManifestParseError("Manifest {0} is missing a non-empty 'labels' list".format(manifest_path))
    if not all(isinstance(label, str) and label for label in labels):
        raise ManifestParseError("Manifest {0} labels must be non-empty strings".format(manifest_path))
    if len(set(labels)) != len(labels):
        raise ManifestParseError("Manifest {0} labels contain duplicates".format(manifest_path))

    fmt = raw.get("format", "checkpoint")
    if fmt not in MODEL_FORMATS:
        raise ManifestParseError(
            "Manifest {0} has unsupported model format {1!r} (expected one of {2})".format(
                manifest_path, fmt, MODEL_FORMATS
            )
        )

    label_offset = raw.get("label_offset")
    if label_offset is not None and (isinstance(label_offset, bool) or label_offset not in (0, 1)):
        raise ManifestParseError("Manifest {0} label_offset must be 0 or 1".format(manifest_path))

    return Manifest(
        source=str(manifest_path),
        model=resolve_model_path(str(manifest_path), model_ref.strip()),
        labels=tuple(labels),
        format=fmt,
        label_offset=int(label_offset) if label_offset is not None else None,
    )


def load_manifest(manifest_path) -> Manifest:
    manifest_path = str(manifest_path)
    return parse_manifest(fetch_manifest_text(manifest_path), manifest_path)


def write_manifest(path: Path, model: str, labels, fmt: str = "checkpoint", label_offset: Optional[int] = None) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {"model": str(model), "labels": list(labels), "format": fmt}
    if label_offset is not None:
        payload["label_offset"] = int(label_offset)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return path
