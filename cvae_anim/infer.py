from __future__ import annotations

import io
import os
from pathlib import Path
from typing import Dict, Optional, Protocol, Sequence, Tuple

import numpy as np
import requests

try:
    import torch
except Exception:  # pragma: no cover
    torch = None

from .config import DEVICE_ENV_VAR
from .errors import InferenceError, ShapeMismatchError
from .manifest import FETCH_TIMEOUT, MODEL_FORMATS, is_remote


PIXEL_CHANNELS = (1, 3, 4)


class Decoder(Protocol):
    def predict(self, inputs: Sequence[np.ndarray]):
        ...


class InferenceEngine:
    """Runs the decoder for one ``(latent, label_vector)`` pair.

    The decoder's ``[1, H, W, C]`` output loses its batch axis and comes back
    as a float or integer numpy array of shape ``[H, W, C]``.
    """

    def __init__(self, decoder: Decoder, latent_dim: int = 16) -> None:
        self.decoder = decoder
        self.latent_dim = int(latent_dim)

    def _inputs(self, latent, label_vector) -> Tuple[np.ndarray, np.ndarray]:
        z = np.asarray(latent, dtype=np.float32)
        if z.ndim == 1:
            z = z[None, :]
        if z.shape != (1, self.latent_dim):
            raise ShapeMismatchError(
                "Latent vector must have shape (1, {0}), got {1}".format(self.latent_dim, tuple(z.shape))
            )
        y = np.asarray(label_vector, dtype=np.float32)
        if y.ndim == 1:
            y = y[None, :]
        if y.ndim != 2 or y.shape[0] != 1:
            raise ShapeMismatchError("Label vector must be 1-D, got shape {0}".format(tuple(y.shape)))
        return z, y

    def infer(self, latent, label_vector) -> np.ndarray:
        z, y = self._inputs(latent, label_vector)
        try:
            raw = self.decoder.predict([z, y])
        except Exception as exc:
            raise InferenceError("Decoder failed: {0}".format(exc)) from exc
        return reshape_output(_to_numpy(raw))


def _to_numpy(raw) -> np.ndarray:
    if torch is not None and isinstance(raw, torch.Tensor):
        return raw.detach().cpu().numpy()
    return np.asarray(raw)


def reshape_output(out: np.ndarray) -> np.ndarray:
    if out.ndim != 4:
        raise ShapeMismatchError("Decoder output must be [1, H, W, C], got shape {0}".format(tuple(out.shape)))
    if out.shape[0] != 1:
        raise ShapeMismatchError("Decoder output batch must be 1, got {0}".format(out.shape[0]))
    if out.shape[3] not in PIXEL_CHANNELS:
        raise ShapeMismatchError(
            "Decoder output has {0} channels, expected one of {1}".format(out.shape[3], PIXEL_CHANNELS)
        )
    return out.reshape(out.shape[1], out.shape[2], out.shape[3])


def _require_torch() -> None:
    if torch is None:
        raise RuntimeError("PyTorch is required to load decoder weights. Install torch or pass a custom decoder.")


def _resolve_device(device: Optional[str]) -> str:
    if device:
        return device
    env_device = os.environ.get(DEVICE_ENV_VAR, "").strip()
    if env_device:
        return env_device
    _require_torch()
    return "cuda" if torch.cuda.is_available() else "cpu"


class TorchDecoder:
    """Adapts a torch module called as ``module(z, y)`` to ``predict``."""

    def __init__(self, module, device: str = "cpu", layout: str = "nhwc") -> None:
        _require_torch()
        if layout not in ("nhwc", "nchw"):
            raise ValueError("layout must be 'nhwc' or 'nchw'")
        self.module = module
        self.device = device
        self.layout = layout
        self.module.eval()
        self.module.to(device)

    def predict(self, inputs: Sequence[np.ndarray]) -> np.ndarray:
        z_np, y_np = inputs
        z = torch.from_numpy(np.ascontiguousarray(z_np, dtype=np.float32)).to(self.device)
        y = torch.from_numpy(np.ascontiguousarray(y_np, dtype=np.float32)).to(self.device)
        with torch.no_grad():
            out = self.module(z, y)
        if self.layout == "nchw":
            out = out.permute(0, 2, 3, 1)
        return out.detach().cpu().numpy()


_DECODER_CACHE: Dict[Tuple[str, str, str], TorchDecoder] = {}


def _open_model_source(model_path: str):
    if is_remote(model_path):
        resp = requests.get(model_path, timeout=FETCH_TIMEOUT)
        resp.raise_for_status()
        return io.BytesIO(resp.content)
    path = Path(model_path)
    if not path.exists():
        raise FileNotFoundError("Decoder weights not found: {0}".format(path))
    return path


def load_decoder(
    model_path: str,
    device: Optional[str] = None,
    fmt: str = "checkpoint",
    layout: str = "nhwc",
) -> TorchDecoder:
    _require_torch()
    if fmt not in MODEL_FORMATS:
        raise ValueError("Unsupported model format: {0!r}".format(fmt))
    resolved_device = _resolve_device(device)
    key = (str(model_path), resolved_device, fmt)
    cached = _DECODER_CACHE.get(key)
    if cached is not None:
        return cached

    source = _open_model_source(str(model_path))
    if fmt == "torchscript":
        module = torch.jit.load(source if not isinstance(source, Path) else str(source), map_location="cpu")
    else:
        from .model import load_decoder_checkpoint

        module = load_decoder_checkpoint(source)
    decoder = TorchDecoder(module, device=resolved_device, layout=layout)
    _DECODER_CACHE[key] = decoder
    return decoder


def clear_decoder_cache() -> None:
    _DECODER_CACHE.clear()
