from __future__ import annotations

import base64
import io
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple

import cv2
import numpy as np
from PIL import Image

from .errors import EncodingError


PNG_URI_PREFIX = "data:image/png;base64,"

# (png_bytes, display_uri) -> presentation-layer image object
ImageMaterializer = Callable[[bytes, str], Any]


@dataclass(frozen=True)
class RawFrame:
    raw: bytes  # row-major RGBA, H * W * 4 bytes
    shape: Tuple[int, int, int]  # (H, W, 4)

    @property
    def height(self) -> int:
        return int(self.shape[0])

    @property
    def width(self) -> int:
        return int(self.shape[1])


@dataclass(frozen=True)
class FrameHandle:
    display_uri: str
    image: Optional[Any] = None


def pil_image_materializer(png: bytes, display_uri: str) -> Image.Image:
    with Image.open(io.BytesIO(png)) as img:
        return img.convert("RGBA")


def to_pixels(tensor) -> np.ndarray:
    """Convert an ``[H, W, C]`` tensor (C in 1, 3, 4) to uint8 RGBA.

    Floats must lie in [0, 1] and integers in [0, 255]; anything else raises
    ``EncodingError``.
    """
    arr = np.asarray(tensor)
    if arr.ndim == 2:
        arr = arr[..., None]
    if arr.ndim != 3 or arr.shape[2] not in (1, 3, 4):
        raise EncodingError("Pixel tensor must be [H, W, 1|3|4], got shape {0}".format(tuple(arr.shape)))
    if arr.shape[0] == 0 or arr.shape[1] == 0:
        raise EncodingError("Pixel tensor is empty: {0}".format(tuple(arr.shape)))

    if np.issubdtype(arr.dtype, np.floating):
        if not np.all(np.isfinite(arr)):
            raise EncodingError("Pixel tensor contains NaN or infinite values")
        if float(arr.min()) < 0.0 or float(arr.max()) > 1.0:
            raise EncodingError("Float pixel values must lie in [0, 1]")
        u8 = np.round(arr * 255.0).astype(np.uint8)
    elif np.issubdtype(arr.dtype, np.integer) or arr.dtype == np.bool_:
        if arr.size and (int(arr.min()) < 0 or int(arr.max()) > 255):
            raise EncodingError("Integer pixel values must lie in [0, 255]")
        u8 = arr.astype(np.uint8)
    else:
        raise EncodingError("Unsupported pixel dtype: {0}".format(arr.dtype))

    h, w, c = u8.shape
    if c == 4:
        return np.ascontiguousarray(u8)
    rgba = np.full((h, w, 4), 255, dtype=np.uint8)
    if c == 1:
        rgba[..., 0] = u8[..., 0]
        rgba[..., 1] = u8[..., 0]
        rgba[..., 2] = u8[..., 0]
    else:
        rgba[..., :3] = u8
    return rgba


class FrameCodec:
    """Pixel tensor -> raw RGBA bytes -> PNG data URI (+ optional image)."""

    def __init__(self, image_materializer: Optional[ImageMaterializer] = None) -> None:
        self.image_materializer = image_materializer

    def encode(self, pixels) -> RawFrame:
        rgba = to_pixels(pixels)
        h, w = rgba.shape[:2]
        return RawFrame(raw=rgba.tobytes(), shape=(int(h), int(w), 4))

    def materialize(self, raw: bytes, shape) -> FrameHandle:
        if len(shape) < 2:
            raise EncodingError("Frame shape must include height and width, got {0}".format(tuple(shape)))
        h, w = int(shape[0]), int(shape[1])
        if h <= 0 or w <= 0:
            raise EncodingError("Frame dimensions must be positive, got {0}x{1}".format(w, h))
        expected = w * h * 4
        if len(raw) != expected:
            raise EncodingError(
                "Byte buffer holds {0} bytes, expected {1} for a {2}x{3} RGBA frame".format(len(raw), expected, w, h)
            )

        surface = np.frombuffer(raw, dtype=np.uint8).reshape(h, w, 4)
        ok, buf = cv2.imencode(".png", cv2.cvtColor(surface, cv2.COLOR_RGBA2BGRA))
        if not ok:
            raise EncodingError("Failed to serialize {0}x{1} frame to PNG".format(w, h))
        png = buf.tobytes()
        display_uri = PNG_URI_PREFIX + base64.b64encode(png).decode("ascii")

        image = None
        if self.image_materializer is not None:
            image = self.image_materializer(png, display_uri)
        return FrameHandle(display_uri=display_uri, image=image)

    def encode_and_materialize(self, pixels) -> Tuple[RawFrame, FrameHandle]:
        raw = self.encode(pixels)
        return raw, self.materialize(raw.raw, raw.shape)


def png_bytes(display_uri: str) -> bytes:
    if not display_uri.startswith(PNG_URI_PREFIX):
        raise EncodingError("Not a PNG data URI")
    return base64.b64decode(display_uri[len(PNG_URI_PREFIX):])


def read_back(display_uri: str) -> np.ndarray:
    """Decode a data URI produced by ``FrameCodec.materialize`` to ``[H, W, 4]`` RGBA."""
    buf = np.frombuffer(png_bytes(display_uri), dtype=np.uint8)
    bgra = cv2.imdecode(buf, cv2.IMREAD_UNCHANGED)
    if bgra is None or bgra.ndim != 3 or bgra.shape[2] != 4:
        raise EncodingError("Display URI does not hold an RGBA PNG")
    return cv2.cvtColor(bgra, cv2.COLOR_BGRA2RGBA)
