"""
Tryon-Overlay — Rotation Estimator
==================================
Heuristic head rotation from a handful of named landmarks.

    yaw   = (nose_tip.x - eye_midpoint.x) * 2π
    pitch = ((chin.y - nose_tip.y) - (nose_tip.y - forehead.y)) * π
    roll  = atan2(right_eye.y - left_eye.y, right_eye.x - left_eye.x)

yaw and pitch are linear approximations, not projective angles; they are
only meaningful for small-to-moderate head turns (roughly ±45°). roll is
the exact 2D angle of the inter-eye line. Values outside the envelope are
returned as computed; use is_low_confidence() to flag them.
"""

from __future__ import annotations

import math
from typing import Any, Optional

import numpy as np

from tryon_mesh_indices import (
    LandmarkTable,
    as_landmark_array,
    get_landmark_table,
    require_points,
)
from tryon_types import Rotation

DEFAULT_MAX_CONFIDENT_ANGLE = math.radians(45.0)


def eye_centers(
    landmarks: np.ndarray,
    table: LandmarkTable,
) -> tuple[np.ndarray, np.ndarray]:
    """Midpoint of each eye's outer and inner corner, as (3,) arrays."""
    left = (landmarks[table.left_eye_outer] + landmarks[table.left_eye_inner]) / 2.0
    right = (landmarks[table.right_eye_outer] + landmarks[table.right_eye_inner]) / 2.0
    return left, right


def rotation_from_points(
    left_eye: np.ndarray,
    right_eye: np.ndarray,
    nose_tip: np.ndarray,
    chin: np.ndarray,
    forehead: np.ndarray,
) -> Rotation:
    eye_mid_x = (left_eye[0] + right_eye[0]) / 2.0
    yaw = (nose_tip[0] - eye_mid_x) * math.pi * 2.0

    nose_to_chin = chin[1] - nose_tip[1]
    nose_to_forehead = nose_tip[1] - forehead[1]
    pitch = (nose_to_chin - nose_to_forehead) * math.pi

    roll = math.atan2(right_eye[1] - left_eye[1], right_eye[0] - left_eye[0])

    return Rotation(pitch=float(pitch), yaw=float(yaw), roll=float(roll))


def estimate_rotation(raw: Any, table: Optional[LandmarkTable] = None) -> Rotation:
    """Estimate pitch/yaw/roll (radians) from a raw landmark frame.

    Raises:
        LandmarkIndexError: if the frame is shorter than the table requires.
    """
    table = table or get_landmark_table()
    landmarks = as_landmark_array(raw)
    require_points(landmarks, table)

    left_eye, right_eye = eye_centers(landmarks, table)
    return rotation_from_points(
        left_eye,
        right_eye,
        landmarks[table.nose_tip],
        landmarks[table.chin],
        landmarks[table.forehead_top],
    )


def is_low_confidence(
    rotation: Rotation,
    max_angle: float = DEFAULT_MAX_CONFIDENT_ANGLE,
) -> bool:
    """True when yaw or pitch is outside the heuristic's validity envelope."""
    return abs(rotation.yaw) > max_angle or abs(rotation.pitch) > max_angle
