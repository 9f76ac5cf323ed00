"""
Tryon-Overlay — Pose Composer
=============================
Combines a StructuredFace with per-product CalibrationSettings into the
PlacementTransform(s) handed to the renderer.

    anchor      glasses -> nose_bridge   hat -> forehead_top
                earrings -> left_ear + right_ear (two transforms)
                necklace -> chin
    position.y  anchor.y + (offset_y / 100) * bounding_box.height
    scale       base_model_scale[type] * try_on_scale
                * eye_distance / reference_eye_distance
    rotation    face.rotation, unchanged

Callers only compose for enabled settings with a type; the composer does
not re-check that.
"""

from __future__ import annotations

import math
from dataclasses import replace
from typing import Dict, List, Optional

from tryon_rotation import DEFAULT_MAX_CONFIDENT_ANGLE, is_low_confidence
from tryon_types import (
    CalibrationSettings,
    Landmark,
    PlacementTransform,
    Rotation,
    StructuredFace,
    TryOnType,
)
from tryon_utils import config_value

DEFAULT_REFERENCE_EYE_DISTANCE = 0.1
DEFAULT_BASE_MODEL_SCALE: Dict[str, float] = {
    TryOnType.GLASSES.value: 1.0,
    TryOnType.HAT.value: 1.2,
    TryOnType.EARRINGS.value: 0.25,
    TryOnType.NECKLACE.value: 1.5,
}

# StructuredFace attribute names per try-on type.
ANCHORS: Dict[TryOnType, tuple[str, ...]] = {
    TryOnType.GLASSES: ("nose_bridge",),
    TryOnType.HAT: ("forehead_top",),
    TryOnType.EARRINGS: ("left_ear", "right_ear"),
    TryOnType.NECKLACE: ("chin",),
}


class PoseSmoother:
    """Exponential moving average over position, scale and rotation.

    alpha=1.0 passes values through unchanged; smaller values smooth more.
    State is keyed by anchor name so earrings smooth per ear.
    """

    def __init__(self, alpha: float = 0.5):
        if not 0.0 < alpha <= 1.0:
            raise ValueError(f"alpha must be in (0, 1], got {alpha}")
        self.alpha = alpha
        self._state: Dict[str, PlacementTransform] = {}

    def reset(self) -> None:
        self._state.clear()

    def update(self, transform: PlacementTransform) -> PlacementTransform:
        prev = self._state.get(transform.anchor)
        if prev is None:
            self._state[transform.anchor] = transform
            return transform

        a = self.alpha

        def mix(new: float, old: float) -> float:
            return a * new + (1.0 - a) * old

        def mix_angle(new: float, old: float) -> float:
            # Shortest arc, so +π/-π wrap does not swing the accessory.
            delta = math.atan2(math.sin(new - old), math.cos(new - old))
            return old + a * delta

        p, q = transform.position, prev.position
        r, s = transform.rotation, prev.rotation
        smoothed = replace(
            transform,
            position=Landmark(mix(p.x, q.x), mix(p.y, q.y), mix(p.z, q.z)),
            rotation=Rotation(
                pitch=mix_angle(r.pitch, s.pitch),
                yaw=mix_angle(r.yaw, s.yaw),
                roll=mix_angle(r.roll, s.roll),
            ),
            scale=mix(transform.scale, prev.scale),
        )
        self._state[transform.anchor] = smoothed
        return smoothed


class PoseComposer:
    def __init__(
        self,
        reference_eye_distance: Optional[float] = None,
        base_model_scale: Optional[Dict[str, float]] = None,
        max_confident_angle: Optional[float] = None,
        smoother: Optional[PoseSmoother] = None,
    ) -> None:
        self.reference_eye_distance = reference_eye_distance or config_value(
            "pose", "reference_eye_distance", DEFAULT_REFERENCE_EYE_DISTANCE
        )
        if self.reference_eye_distance <= 0:
            raise ValueError("reference_eye_distance must be positive")

        self.base_model_scale = dict(DEFAULT_BASE_MODEL_SCALE)
        self.base_model_scale.update(config_value("pose", "base_model_scale", None) or {})
        self.base_model_scale.update(base_model_scale or {})

        if max_confident_angle is None:
            max_deg = config_value("pose", "max_confident_angle_deg", None)
            max_confident_angle = (
                math.radians(max_deg) if max_deg is not None else DEFAULT_MAX_CONFIDENT_ANGLE
            )
        self.max_confident_angle = max_confident_angle

        if smoother is None:
            alpha = config_value("pose", "smoothing_alpha", None)
            smoother = PoseSmoother(alpha) if alpha else None
        self.smoother = smoother

    def reset(self) -> None:
        """Forget smoothed state; the next face starts from its own pose."""
        if self.smoother is not None:
            self.smoother.reset()

    def compose(self, face: StructuredFace, calib: CalibrationSettings) -> List[PlacementTransform]:
        """One transform per anchor (two for earrings)."""
        try_on_type = TryOnType(calib.try_on_type)

        scale = (
            self.base_model_scale[try_on_type.value]
            * calib.try_on_scale
            * (face.eye_distance / self.reference_eye_distance)
        )
        # Percent of face height; positive moves down in image space.
        dy = (calib.try_on_offset_y / 100.0) * face.bounding_box.height
        low_confidence = is_low_confidence(face.rotation, self.max_confident_angle)

        transforms = []
        for anchor in ANCHORS[try_on_type]:
            point: Landmark = getattr(face, anchor)
            transform = PlacementTransform(
                position=Landmark(point.x, point.y + dy, point.z),
                rotation=face.rotation,
                scale=scale,
                anchor=anchor,
                low_confidence=low_confidence,
            )
            if self.smoother is not None:
                transform = self.smoother.update(transform)
            transforms.append(transform)
        return transforms


_default_composer: Optional[PoseComposer] = None


def compose(face: StructuredFace, calib: CalibrationSettings) -> List[PlacementTransform]:
    """Compose with config defaults and no smoothing."""
    global _default_composer
    if _default_composer is None:
        _default_composer = PoseComposer()
        _default_composer.smoother = None
    return _default_composer.compose(face, calib)
