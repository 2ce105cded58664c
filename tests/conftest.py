"""Shared fixtures: a three-label manifest on disk and sessions over a fake decoder."""
import asyncio
import json
from pathlib import Path

import numpy as np
import pytest

from cvae_anim.config import EngineConfig
from cvae_anim.session import ModelSession
from tests.helpers import RecordingDecoder


LABELS = ["cat", "dog", "bird"]


@pytest.fixture
def labels():
    return list(LABELS)


@pytest.fixture
def manifest_path(tmp_path: Path) -> Path:
    path = tmp_path / "model" / "manifest.json"
    path.parent.mkdir(parents=True)
    path.write_text(json.dumps({"model": "decoder.pt", "labels": LABELS}), encoding="utf-8")
    return path


@pytest.fixture
def decoder() -> RecordingDecoder:
    return RecordingDecoder()


@pytest.fixture
def fast_config() -> EngineConfig:
    return EngineConfig(frame_delay=0.0)


@pytest.fixture
def session(manifest_path: Path, decoder: RecordingDecoder, fast_config: EngineConfig) -> ModelSession:
    s = ModelSession(
        manifest_path,
        config=fast_config,
        decoder_loader=lambda path, device, fmt: decoder,
        rng=np.random.default_rng(7),
    )
    asyncio.run(s.load())
    return s
