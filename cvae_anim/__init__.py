"""Label-conditioned image generation and latent-space animation."""

from .animation import AnimationScheduler, CancellationToken, Frame
from .codec import FrameCodec, FrameHandle, RawFrame, pil_image_materializer
from .config import EngineConfig
from .errors import (
    CVAEError,
    EncodingError,
    InferenceError,
    InvalidLabelError,
    ManifestLoadError,
    ManifestParseError,
    SessionBusyError,
    ShapeMismatchError,
)
from .infer import InferenceEngine
from .labels import NOT_FOUND, LabelRegistry
from .latent import LatentSampler
from .session import FrameStream, ModelSession, open_session

__all__ = [
    "AnimationScheduler",
    "CancellationToken",
    "Frame",
    "FrameCodec",
    "FrameHandle",
    "RawFrame",
    "pil_image_materializer",
    "EngineConfig",
    "CVAEError",
    "EncodingError",
    "InferenceError",
    "InvalidLabelError",
    "ManifestLoadError",
    "ManifestParseError",
    "SessionBusyError",
    "ShapeMismatchError",
    "InferenceEngine",
    "NOT_FOUND",
    "LabelRegistry",
    "LatentSampler",
    "FrameStream",
    "ModelSession",
    "open_session",
]
