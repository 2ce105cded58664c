from __future__ import annotations

import time
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Dict, Optional, Sequence

try:
    import torch
    import torch.nn as nn
except Exception:  # pragma: no cover
    torch = None
    nn = None  # type: ignore[assignment]


@dataclass
class DecoderConfig:
    image_size: int = 32
    latent_dim: int = 16
    label_slots: int = 11
    base_channels: int = 32
    out_channels: int = 1

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Dict[str, object]) -> "DecoderConfig":
        return cls(
            image_size=int(raw.get("image_size", 32)),
            latent_dim=int(raw.get("latent_dim", 16)),
            label_slots=int(raw.get("label_slots", 11)),
            base_channels=int(raw.get("base_channels", 32)),
            out_channels=int(raw.get("out_channels", 1)),
        )


def _require_torch() -> None:
    if torch is None or nn is None:
        raise RuntimeError("PyTorch is required for cvae_anim.model")


class LabelConditionedDecoder(nn.Module):  # type: ignore[misc]
    """Decoder half of a conditional VAE taking dense label vectors.

    ``forward(z, y)`` maps ``z: [B, latent_dim]`` and ``y: [B, label_slots]``
    to an image batch laid out ``[B, H, W, C]`` in ``[0, 1]``.
    """

    def __init__(self, config: DecoderConfig) -> None:
        _require_torch()
        super().__init__()
        self.config = config
        if config.image_size % 16 != 0:
            raise ValueError("image_size must be divisible by 16")
        if config.out_channels not in (1, 3, 4):
            raise ValueError("out_channels must be 1, 3 or 4")

        c = int(config.base_channels)
        feat_hw = config.image_size // 16
        self._feat_hw = feat_hw
        self._dec_flat = (c * 8) * feat_hw * feat_hw

        self.fc_dec = nn.Linear(config.latent_dim + config.label_slots, self._dec_flat)
        self.dec = nn.Sequential(
            nn.ConvTranspose2d(c * 8, c * 4, 4, 2, 1),
            nn.ReLU(inplace=True),
            nn.ConvTranspose2d(c * 4, c * 2, 4, 2, 1),
            nn.ReLU(inplace=True),
            nn.ConvTranspose2d(c * 2, c, 4, 2, 1),
            nn.ReLU(inplace=True),
            nn.ConvTranspose2d(c, c // 2 if c >= 16 else c, 4, 2, 1),
            nn.ReLU(inplace=True),
        )
        out_c = c // 2 if c >= 16 else c
        self.head = nn.Conv2d(out_c, config.out_channels, 3, 1, 1)

    def forward(self, z, y):
        h = torch.cat([z, y], dim=1)
        h = self.fc_dec(h)
        c = self.config.base_channels
        h = h.view(h.shape[0], c * 8, self._feat_hw, self._feat_hw)
        h = self.dec(h)
        out = torch.sigmoid(self.head(h))
        return out.permute(0, 2, 3, 1).contiguous()


def save_decoder_checkpoint(
    path: Path,
    model: LabelConditionedDecoder,
    labels: Optional[Sequence[str]] = None,
) -> None:
    _require_torch()
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "version": 1,
        "state_dict": model.state_dict(),
        "model_config": model.config.to_dict(),
        "labels": list(labels) if labels is not None else None,
        "saved_at": time.time(),
    }
    torch.save(payload, str(path))


def load_decoder_checkpoint(source) -> LabelConditionedDecoder:
    """Rebuild a decoder from a path or a binary file object."""
    _require_torch()
    if isinstance(source, (str, Path)):
        source = Path(source)
        if not source.exists():
            raise FileNotFoundError("Decoder weights not found: {0}".format(source))
        ckpt = torch.load(str(source), map_location="cpu")
    else:
        ckpt = torch.load(source, map_location="cpu")
    if not isinstance(ckpt, dict):
        raise ValueError("Invalid checkpoint format in {0}".format(source))
    raw_cfg = ckpt.get("model_config")
    config = DecoderConfig.from_dict(raw_cfg) if isinstance(raw_cfg, dict) else DecoderConfig()
    state_dict = ckpt.get("state_dict")
    if not isinstance(state_dict, dict):
        raise ValueError("Checkpoint is missing state_dict")
    model = LabelConditionedDecoder(config)
    model.load_state_dict(state_dict)
    model.eval()
    return model
