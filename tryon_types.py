from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Optional

import numpy as np


@dataclass(frozen=True)
class Landmark:
    """A single 3D point. x, y normalized to [0, 1]; z is relative depth."""
    x: float
    y: float
    z: float = 0.0

    def as_tuple(self) -> tuple[float, float, float]:
        return (self.x, self.y, self.z)


@dataclass(frozen=True)
class Rotation:
    """Head rotation in radians (signed)."""
    pitch: float
    yaw: float
    roll: float


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box in normalized image space."""
    x: float
    y: float
    width: float
    height: float


@dataclass(eq=False)
class StructuredFace:
    """Anatomical frame derived from exactly one raw landmark frame."""
    left_eye: Landmark
    right_eye: Landmark
    nose_bridge: Landmark
    forehead_top: Landmark
    left_ear: Landmark
    right_ear: Landmark
    chin: Landmark
    eye_distance: float
    rotation: Rotation
    bounding_box: BoundingBox
    raw_landmarks: np.ndarray = field(default_factory=lambda: np.empty((0, 3)))


class TryOnType(str, Enum):
    GLASSES = "glasses"
    HAT = "hat"
    EARRINGS = "earrings"
    NECKLACE = "necklace"


@dataclass(frozen=True)
class PlacementTransform:
    """Pose handed to the renderer for one accessory mesh in one frame."""
    position: Landmark
    rotation: Rotation
    scale: float
    anchor: str
    low_confidence: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


# Neutral values written whenever try-on is disabled.
DEFAULT_OFFSET_Y = 0.0
DEFAULT_SCALE = 1.0

TRUE_STRINGS = ("true", "on", "1", "yes")
FALSE_STRINGS = ("false", "off", "0", "no", "")


def parse_enabled_flag(value) -> bool:
    """Strict tryOnEnabled parsing: bools, 0/1 and the usual form strings."""
    if value is None or isinstance(value, bool):
        return bool(value)
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in TRUE_STRINGS:
            return True
        if text in FALSE_STRINGS:
            return False
    raise ValueError(f"tryOnEnabled must be a boolean, got {value!r}")


@dataclass(frozen=True)
class CalibrationSettings:
    """Persisted per-product try-on settings."""
    try_on_enabled: bool = False
    try_on_type: Optional[TryOnType] = None
    try_on_offset_y: float = DEFAULT_OFFSET_Y
    try_on_scale: float = DEFAULT_SCALE

    def to_dict(self) -> dict:
        """Serialize with the field names used by the settings store."""
        return {
            "tryOnEnabled": self.try_on_enabled,
            "tryOnType": self.try_on_type.value if self.try_on_type else None,
            "tryOnOffsetY": self.try_on_offset_y,
            "tryOnScale": self.try_on_scale,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CalibrationSettings":
        raw_type = data.get("tryOnType")
        return cls(
            try_on_enabled=parse_enabled_flag(data.get("tryOnEnabled")),
            try_on_type=TryOnType(raw_type) if raw_type else None,
            try_on_offset_y=float(data.get("tryOnOffsetY", DEFAULT_OFFSET_Y)),
            try_on_scale=float(data.get("tryOnScale", DEFAULT_SCALE)),
        )
