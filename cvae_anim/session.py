from __future__ import annotations

import asyncio
from contextlib import contextmanager
from typing import Any, AsyncIterator, Callable, Optional

import numpy as np
import requests

from .animation import AnimationScheduler, CancellationToken, Frame, FrameCallback
from .codec import FrameCodec, ImageMaterializer
from .config import EngineConfig
from .errors import ManifestLoadError, SessionBusyError
from .infer import Decoder, InferenceEngine, load_decoder
from .labels import LabelRegistry
from .latent import LatentSampler
from .logs import LogFn, null_log
from .manifest import Manifest, load_manifest


# (error, result) -> anything
Callback = Callable[[Optional[BaseException], Any], Any]
DecoderLoader = Callable[[str, Optional[str], str], Decoder]


def default_decoder_loader(model_path: str, device: Optional[str], fmt: str) -> Decoder:
    return load_decoder(model_path, device=device, fmt=fmt)


class ModelSession:
    """Owns a loaded decoder, its label alphabet and the last inputs used.

    ``ready`` flips to True once, after ``load()`` has read the manifest and
    the decoder. Only one operation may run at a time; a second one started
    while the first is in flight raises ``SessionBusyError``.
    """

    def __init__(
        self,
        model_path,
        config: Optional[EngineConfig] = None,
        image_materializer: Optional[ImageMaterializer] = None,
        log: Optional[LogFn] = None,
        device: Optional[str] = None,
        decoder_loader: Optional[DecoderLoader] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        self.model_path = str(model_path)
        self.config = config or EngineConfig()
        self.device = device
        self.ready = False
        self.manifest: Optional[Manifest] = None
        self.registry: Optional[LabelRegistry] = None
        self.decoder: Optional[Decoder] = None

        self._image_materializer = image_materializer
        self._log = log or null_log
        self._decoder_loader = decoder_loader or default_decoder_loader
        self._rng = rng
        self._load_started = False
        self._busy = False
        self._scheduler: Optional[AnimationScheduler] = None
        self._latent: Optional[np.ndarray] = None
        self._label_vector: Optional[np.ndarray] = None

    @property
    def labels(self):
        return self.registry.labels if self.registry is not None else ()

    @property
    def latent(self) -> Optional[np.ndarray]:
        return None if self._latent is None else self._latent.copy()

    @property
    def label_vector(self) -> Optional[np.ndarray]:
        return None if self._label_vector is None else self._label_vector.copy()

    async def load(self) -> "ModelSession":
        if self._load_started:
            raise RuntimeError("ModelSession.load() may only be called once")
        self._load_started = True

        self._log("[session] loading manifest {0}".format(self.model_path))
        manifest = await asyncio.to_thread(load_manifest, self.model_path)
        registry = LabelRegistry.from_manifest(manifest, default_offset=self.config.label_offset)
        try:
            decoder = await asyncio.to_thread(self._decoder_loader, manifest.model, self.device, manifest.format)
        except (OSError, ValueError, RuntimeError, requests.exceptions.RequestException) as exc:
            raise ManifestLoadError("Could not load decoder {0}: {1}".format(manifest.model, exc)) from exc

        sampler = LatentSampler(self.config.latent_dim, rng=self._rng)
        self.manifest = manifest
        self.registry = registry
        self.decoder = decoder
        self._latent = sampler.sample()
        self._label_vector = registry.zeros()
        self._scheduler = AnimationScheduler(
            engine=InferenceEngine(decoder, latent_dim=self.config.latent_dim),
            registry=registry,
            sampler=sampler,
            codec=FrameCodec(self._image_materializer),
            config=self.config,
            observer=self._remember_inputs,
        )
        self.ready = True
        self._log(
            "[session] ready: {0} labels, model={1} ({2})".format(len(registry), manifest.model, manifest.format)
        )
        return self

    def _remember_inputs(self, latent: np.ndarray, label_vector: np.ndarray) -> None:
        self._latent = np.array(latent, dtype=np.float32, copy=True)
        self._label_vector = np.array(label_vector, dtype=np.float32, copy=True)

    @contextmanager
    def _exclusive(self):
        if not self.ready or self._scheduler is None:
            raise RuntimeError("ModelSession is not ready; await load() first")
        if self._busy:
            raise SessionBusyError("ModelSession is already running an operation")
        self._busy = True
        try:
            yield self._scheduler
        finally:
            self._busy = False

    async def _deliver(self, coro, callback: Optional[Callback]):
        if callback is None:
            return await coro
        try:
            result = await coro
        except Exception as exc:
            self._log("[session] {0}: {1}".format(type(exc).__name__, exc))
            callback(exc, None)
            return None
        callback(None, result)
        return result

    async def _generate(self, label: str, latent) -> Frame:
        with self._exclusive() as scheduler:
            return await scheduler.generate_one(label, latent=latent)

    async def _animate(self, kind: str, label: str, on_frame: FrameCallback, cancel, latent) -> None:
        with self._exclusive() as scheduler:
            delivered = 0

            def _counting(err, frame) -> None:
                nonlocal delivered
                delivered += 1
                on_frame(err, frame)

            if kind == "walk":
                await scheduler.animate_free_walk(label, _counting, cancel=cancel, latent=latent)
            else:
                await scheduler.animate_interpolate(label, _counting, cancel=cancel, latent=latent)
            stopped = " (cancelled)" if cancel is not None and cancel.cancelled else ""
            self._log("[session] {0} {1!r}: {2} frames{3}".format(kind, label, delivered, stopped))
        return None

    async def generate(self, label: str, callback: Optional[Callback] = None, latent=None) -> Optional[Frame]:
        return await self._deliver(self._generate(label, latent), callback)

    async def animate(
        self,
        label: str,
        on_frame: FrameCallback,
        callback: Optional[Callback] = None,
        cancel: Optional[CancellationToken] = None,
        latent=None,
    ) -> None:
        return await self._deliver(self._animate("walk", label, on_frame, cancel, latent), callback)

    async def interpolate(
        self,
        label: str,
        on_frame: FrameCallback,
        callback: Optional[Callback] = None,
        cancel: Optional[CancellationToken] = None,
        latent=None,
    ) -> None:
        return await self._deliver(self._animate("interpolate", label, on_frame, cancel, latent), callback)

    def walk_frames(
        self, label: str, cancel: Optional[CancellationToken] = None, latent=None
    ) -> "FrameStream":
        """Pull-based free walk.

        The label is validated and the session reserved immediately. The
        reservation ends when the stream is exhausted, fails, or is closed, so
        a consumer that may stop early should use ``async with`` (or
        ``contextlib.aclosing``) or call ``aclose()``::

            async with session.walk_frames("cat") as frames:
                async for frame in frames:
                    ...
        """
        return self._stream(lambda scheduler: scheduler.iter_free_walk(label, latent=latent, cancel=cancel))

    def interpolation_frames(
        self, label: str, cancel: Optional[CancellationToken] = None, latent=None
    ) -> "FrameStream":
        """Pull-based interpolation; see ``walk_frames`` for closing rules."""
        return self._stream(lambda scheduler: scheduler.iter_interpolate(label, latent=latent, cancel=cancel))

    def _stream(self, start) -> "FrameStream":
        if not self.ready or self._scheduler is None:
            raise RuntimeError("ModelSession is not ready; await load() first")
        if self._busy:
            raise SessionBusyError("ModelSession is already running an operation")
        frames = start(self._scheduler)
        self._busy = True
        return FrameStream(frames, self._release)

    def _release(self) -> None:
        self._busy = False


class FrameStream:
    """Async iterator over frames that holds the session until closed."""

    def __init__(self, frames: AsyncIterator[Frame], release: Callable[[], None]) -> None:
        self._frames = frames
        self._release = release
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "FrameStream":
        return self

    async def __anext__(self) -> Frame:
        if self._closed:
            raise StopAsyncIteration
        try:
            return await self._frames.__anext__()
        except BaseException:
            await self.aclose()
            raise

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._frames.aclose()
        finally:
            self._release()

    async def __aenter__(self) -> "FrameStream":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


async def open_session(model_path, callback: Optional[Callback] = None, **kwargs) -> ModelSession:
    """Construct and load a session, reporting through ``callback`` when given."""
    session = ModelSession(model_path, **kwargs)
    if callback is None:
        return await session.load()
    try:
        await session.load()
    except Exception as exc:
        callback(exc, None)
        return session
    callback(None, session)
    return session
