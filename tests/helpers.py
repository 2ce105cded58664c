"""Decoders standing in for a trained model."""
from typing import List, Sequence, Tuple

import numpy as np


class RecordingDecoder:
    """Returns a ``[1, H, W, C]`` image derived from its inputs and keeps a copy of every call."""

    def __init__(self, height: int = 4, width: int = 6, channels: int = 1) -> None:
        self.shape = (1, height, width, channels)
        self.calls: List[Tuple[np.ndarray, np.ndarray]] = []

    def predict(self, inputs: Sequence[np.ndarray]) -> np.ndarray:
        latent, label_vector = inputs
        self.calls.append((np.array(latent, copy=True), np.array(label_vector, copy=True)))
        value = float(np.clip(np.mean(latent), 0.0, 1.0))
        return np.full(self.shape, value, dtype=np.float32)


class FailingDecoder(RecordingDecoder):
    """Raises on the ``fail_on``-th call (1-based)."""

    def __init__(self, fail_on: int = 1, **kwargs) -> None:
        super().__init__(**kwargs)
        self.fail_on = int(fail_on)

    def predict(self, inputs):
        if len(self.calls) + 1 >= self.fail_on:
            self.calls.append((np.array(inputs[0], copy=True), np.array(inputs[1], copy=True)))
            raise FloatingPointError("decoder blew up")
        return super().predict(inputs)


class FixedOutputDecoder:
    def __init__(self, output) -> None:
        self.output = output

    def predict(self, inputs):
        return self.output
