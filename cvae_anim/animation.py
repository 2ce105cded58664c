from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Optional, Tuple

import numpy as np

from .codec import FrameCodec
from .config import EngineConfig
from .infer import InferenceEngine
from .labels import LabelRegistry
from .latent import LatentSampler


@dataclass(frozen=True, eq=False)
class Frame:
    raw: bytes
    shape: Tuple[int, int, int]
    display_uri: str
    image: Optional[Any] = None
    index: int = 0
    label_vector: np.ndarray = field(default=None, repr=False)
    latent: np.ndarray = field(default=None, repr=False)


class CancellationToken:
    """Set once to stop a running animation after the current frame."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


FrameCallback = Callable[[Optional[BaseException], Optional[Frame]], Any]
InputObserver = Callable[[np.ndarray, np.ndarray], None]


class AnimationScheduler:
    """Single frames, free latent walks and label interpolations.

    Every entry point builds its own latent and label vectors, so nothing is
    shared between runs. The decoder runs in a worker thread and frames are
    paced with ``asyncio.sleep``; those are the only suspension points.
    """

    def __init__(
        self,
        engine: InferenceEngine,
        registry: LabelRegistry,
        sampler: LatentSampler,
        codec: FrameCodec,
        config: Optional[EngineConfig] = None,
        observer: Optional[InputObserver] = None,
    ) -> None:
        self.engine = engine
        self.registry = registry
        self.sampler = sampler
        self.codec = codec
        self.config = config or EngineConfig()
        self.observer = observer

    def _initial_latent(self, latent) -> np.ndarray:
        if latent is None:
            return self.sampler.sample()
        return self.sampler.coerce(latent).copy()

    async def _render(self, index: int, latent: np.ndarray, label_vector: np.ndarray) -> Frame:
        if self.observer is not None:
            self.observer(latent, label_vector)
        pixels = await asyncio.to_thread(self.engine.infer, latent, label_vector)
        raw, handle = self.codec.encode_and_materialize(pixels)
        return Frame(
            raw=raw.raw,
            shape=raw.shape,
            display_uri=handle.display_uri,
            image=handle.image,
            index=int(index),
            label_vector=label_vector,
            latent=latent,
        )

    async def _pace(self) -> None:
        await asyncio.sleep(float(self.config.frame_delay))

    async def generate_one(self, label: str, latent=None) -> Frame:
        label_vector = self.registry.one_hot(label)
        return await self._render(0, self._initial_latent(latent), label_vector)

    def iter_free_walk(
        self,
        label: str,
        latent=None,
        cancel: Optional[CancellationToken] = None,
    ) -> AsyncIterator[Frame]:
        """Frames of a latent random walk for a fixed label.

        The label is validated here, before any frame is requested.
        """
        label_vector = self.registry.one_hot(label)
        return self._free_walk(label_vector, self._initial_latent(latent), cancel)

    async def _free_walk(
        self,
        label_vector: np.ndarray,
        latent: np.ndarray,
        cancel: Optional[CancellationToken],
    ) -> AsyncIterator[Frame]:
        total = int(self.config.frame_count)
        for i in range(total):
            if cancel is not None and cancel.cancelled:
                return
            yield await self._render(i, latent, label_vector.copy())
            if cancel is not None and cancel.cancelled:
                return
            if i + 1 < total:
                await self._pace()
                latent = self.sampler.step(latent, float(self.config.walk_rate))

    def iter_interpolate(
        self,
        label: str,
        latent=None,
        cancel: Optional[CancellationToken] = None,
    ) -> AsyncIterator[Frame]:
        """Frames morphing from ``label`` to the next label in the alphabet.

        The latent vector is held fixed for the whole run.
        """
        cursor = self.registry.require(label)
        self.registry.next_index(cursor, self.config.interpolation_edge)
        return self._interpolate(label, self._initial_latent(latent), cancel)

    async def _interpolate(
        self,
        label: str,
        latent: np.ndarray,
        cancel: Optional[CancellationToken],
    ) -> AsyncIterator[Frame]:
        total = int(self.config.frame_count)
        edge = self.config.interpolation_edge
        for i in range(total):
            if cancel is not None and cancel.cancelled:
                return
            label_vector = self.registry.blend(label, float(i) / float(total), edge)
            yield await self._render(i, latent, label_vector)
            if cancel is not None and cancel.cancelled:
                return
            if i + 1 < total:
                await self._pace()

    async def _drive(self, frames: AsyncIterator[Frame], on_frame: FrameCallback) -> None:
        try:
            async for frame in frames:
                on_frame(None, frame)
        finally:
            await frames.aclose()

    async def animate_free_walk(
        self,
        label: str,
        on_frame: FrameCallback,
        cancel: Optional[CancellationToken] = None,
        latent=None,
    ) -> None:
        await self._drive(self.iter_free_walk(label, latent=latent, cancel=cancel), on_frame)
        return None

    async def animate_interpolate(
        self,
        label: str,
        on_frame: FrameCallback,
        cancel: Optional[CancellationToken] = None,
        latent=None,
    ) -> None:
        await self._drive(self.iter_interpolate(label, latent=latent, cancel=cancel), on_frame)
        return None
