from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
from typing import List, Optional

import cv2
import numpy as np
from PIL import Image

from .animation import CancellationToken, Frame
from .config import DEFAULT_OUT_DIR, EDGE_POLICIES, EngineConfig
from .logs import make_logger
from .session import ModelSession


def frame_to_rgba(frame: Frame) -> np.ndarray:
    return np.frombuffer(frame.raw, dtype=np.uint8).reshape(frame.shape).copy()


def _compose_grid(images: List[np.ndarray], cols: int, cell_pad: int = 8, scale: int = 1) -> np.ndarray:
    if not images:
        raise ValueError("No images to compose")
    if scale > 1:
        images = [cv2.resize(img, None, fx=scale, fy=scale, interpolation=cv2.INTER_NEAREST) for img in images]
    h, w = images[0].shape[:2]
    cols = max(1, int(cols))
    rows = int(np.ceil(len(images) / float(cols)))
    grid_h = rows * (h + cell_pad) + cell_pad + 24
    grid_w = cols * (w + cell_pad) + cell_pad
    canvas = np.full((grid_h, grid_w, 3), 248, dtype=np.uint8)

    for idx, rgba in enumerate(images):
        r = idx // cols
        c = idx % cols
        y = 24 + cell_pad + r * (h + cell_pad)
        x = cell_pad + c * (w + cell_pad)
        alpha = (rgba[..., 3].astype(np.float32) / 255.0)[..., None]
        # canvas is BGR for cv2.imwrite
        ink = rgba[..., 2::-1].astype(np.float32)
        patch = canvas[y : y + h, x : x + w].astype(np.float32)
        canvas[y : y + h, x : x + w] = np.clip(patch * (1.0 - alpha) + ink * alpha, 0, 255).astype(np.uint8)
        cv2.rectangle(canvas, (x - 1, y - 1), (x + w, y + h), (220, 220, 220), 1, cv2.LINE_AA)
    return canvas


def _draw_label(canvas: np.ndarray, text: str) -> np.ndarray:
    out = canvas.copy()
    cv2.putText(out, text, (10, 18), cv2.FONT_HERSHEY_SIMPLEX, 0.5, (60, 60, 60), 1, cv2.LINE_AA)
    return out


def save_gif(images: List[np.ndarray], out_path: Path, delay_s: float, scale: int = 1) -> Path:
    if not images:
        raise ValueError("No frames to write")
    frames = [Image.fromarray(img) for img in images]
    if scale > 1:
        size = (frames[0].width * scale, frames[0].height * scale)
        frames = [f.resize(size, Image.Resampling.NEAREST) for f in frames]
    out_path.parent.mkdir(parents=True, exist_ok=True)
    frames[0].save(
        str(out_path),
        save_all=True,
        append_images=frames[1:],
        duration=max(20, int(round(delay_s * 1000))),
        loop=0,
        disposal=2,
    )
    return out_path


async def collect_frames(session: ModelSession, mode: str, label: str, limit: Optional[int]) -> List[Frame]:
    if mode == "single":
        frame = await session.generate(label)
        return [frame]

    frames: List[Frame] = []
    cancel = CancellationToken()

    def _on_frame(err, frame) -> None:
        frames.append(frame)
        if limit is not None and len(frames) >= int(limit):
            cancel.cancel()

    if mode == "walk":
        await session.animate(label, _on_frame, cancel=cancel)
    else:
        await session.interpolate(label, _on_frame, cancel=cancel)
    return frames


async def run(args: argparse.Namespace) -> Path:
    log, handle = make_logger(args.log_file)
    try:
        config = EngineConfig(
            frame_count=int(args.frames),
            frame_delay=float(args.delay),
            label_offset=int(args.label_offset),
            interpolation_edge=args.edge,
        )
        rng = np.random.default_rng(int(args.seed)) if args.seed is not None else None
        session = ModelSession(args.manifest, config=config, log=log, device=args.device, rng=rng)
        await session.load()

        frames = await collect_frames(session, args.mode, args.label, args.limit)
        images = [frame_to_rgba(f) for f in frames]
        grid = _compose_grid(images, cols=max(1, int(args.cols)), scale=max(1, int(args.scale)))
        grid = _draw_label(grid, "{0}: {1} ({2} frames)".format(args.mode, args.label, len(frames)))

        safe_label = "".join(ch if ch.isalnum() else "_" for ch in args.label)
        out_path = args.out or (DEFAULT_OUT_DIR / "{0}_{1}.png".format(args.mode, safe_label))
        out_path.parent.mkdir(parents=True, exist_ok=True)
        if not cv2.imwrite(str(out_path), grid):
            raise SystemExit("Failed to write contact sheet: {0}".format(out_path))
        print("[sample] saved {0}".format(out_path))

        if args.gif is not None:
            save_gif(images, args.gif, float(args.delay), scale=max(1, int(args.scale)))
            print("[sample] saved {0}".format(args.gif))
        return out_path
    finally:
        if handle is not None:
            handle.close()


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Render frames from a label-conditioned decoder")
    p.add_argument("--manifest", required=True, help="path or URL of manifest.json")
    p.add_argument("--label", required=True)
    p.add_argument("--mode", choices=("single", "walk", "interpolate"), default="single")
    p.add_argument("--frames", type=int, default=100)
    p.add_argument("--limit", type=int, default=None, help="stop the animation after this many frames")
    p.add_argument("--delay", type=float, default=0.05, help="seconds between frames")
    p.add_argument("--cols", type=int, default=10)
    p.add_argument("--scale", type=int, default=2)
    p.add_argument("--seed", type=int, default=None)
    p.add_argument("--device", default=None)
    p.add_argument("--label-offset", type=int, choices=(0, 1), default=0)
    p.add_argument("--edge", choices=EDGE_POLICIES, default="wrap")
    p.add_argument("--out", type=Path, default=None)
    p.add_argument("--gif", type=Path, default=None)
    p.add_argument("--log-file", type=Path, default=None)
    return p


def main() -> None:
    args = build_arg_parser().parse_args()
    if int(args.frames) <= 0:
        raise SystemExit("--frames must be positive")
    asyncio.run(run(args))


if __name__ == "__main__":
    main()
