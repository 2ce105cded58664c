from __future__ import annotations

from typing import Optional

import numpy as np

from .errors import ShapeMismatchError


class LatentSampler:
    """Uniform ``[0, 1)`` latent vectors of shape ``(1, latent_dim)``.

    Unseeded by default; pass ``seed`` or a ``numpy.random.Generator`` to make
    a run reproducible.
    """

    def __init__(
        self,
        latent_dim: int = 16,
        rng: Optional[np.random.Generator] = None,
        seed: Optional[int] = None,
    ) -> None:
        if int(latent_dim) <= 0:
            raise ValueError("latent_dim must be positive")
        self.latent_dim = int(latent_dim)
        self._rng = rng if rng is not None else np.random.default_rng(seed)

    def sample(self) -> np.ndarray:
        return self._rng.uniform(0.0, 1.0, size=(1, self.latent_dim)).astype(np.float32)

    def coerce(self, latent) -> np.ndarray:
        arr = np.asarray(latent, dtype=np.float32)
        if arr.ndim == 1:
            arr = arr[None, :]
        if arr.shape != (1, self.latent_dim):
            raise ShapeMismatchError(
                "Latent vector must have shape (1, {0}), got {1}".format(self.latent_dim, tuple(arr.shape))
            )
        return arr

    def step_towards(self, current, target, rate: float) -> np.ndarray:
        cur = self.coerce(current)
        tgt = self.coerce(target)
        return (cur + float(rate) * (tgt - cur)).astype(np.float32)

    def step(self, current, rate: float = 0.2) -> np.ndarray:
        """Move ``current`` a fraction ``rate`` of the way to a fresh sample."""
        return self.step_towards(current, self.sample(), rate)
