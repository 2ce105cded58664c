from __future__ import annotations

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, Union


PROJECT_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_OUT_DIR = PROJECT_ROOT / "out" / "generated"
DEVICE_ENV_VAR = "CVAE_ANIM_DEVICE"

EDGE_POLICIES = ("wrap", "reject")


@dataclass
class EngineConfig:
    latent_dim: int = 16
    frame_count: int = 100
    frame_delay: float = 0.05  # seconds between animation frames
    walk_rate: float = 0.2
    label_offset: int = 0
    interpolation_edge: str = "wrap"

    def __post_init__(self) -> None:
        if int(self.latent_dim) <= 0:
            raise ValueError("latent_dim must be positive")
        if int(self.frame_count) <= 0:
            raise ValueError("frame_count must be positive")
        if float(self.frame_delay) < 0:
            raise ValueError("frame_delay must be >= 0")
        if not 0.0 <= float(self.walk_rate) <= 1.0:
            raise ValueError("walk_rate must be within [0, 1]")
        if int(self.label_offset) not in (0, 1):
            raise ValueError("label_offset must be 0 or 1")
        if self.interpolation_edge not in EDGE_POLICIES:
            raise ValueError(
                "interpolation_edge must be one of {0}, got {1!r}".format(EDGE_POLICIES, self.interpolation_edge)
            )

    def to_dict(self) -> Dict[str, Union[int, float, str]]:
        return asdict(self)
