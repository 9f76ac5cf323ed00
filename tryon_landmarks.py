"""
Tryon-Overlay — Landmark Extractor
==================================
Turns one raw face-mesh frame into a StructuredFace: eye centers, nose
bridge, forehead, ears, chin, inter-eye distance, face-oval bounding box
and head rotation.

extract() is pure. Every vector in the result is a value copy, so the
detector may reuse its output buffer between calls. A frame that is too
short for the landmark table raises LandmarkIndexError rather than
producing a face at a garbage pose.
"""

from __future__ import annotations

from typing import Any, Optional

import numpy as np

from tryon_mesh_indices import (
    DEFAULT_MODEL_VERSION,
    LANDMARK_TABLES,
    LandmarkIndexError,
    LandmarkTable,
    as_landmark_array,
    get_landmark_table,
    require_points,
)
from tryon_rotation import eye_centers, rotation_from_points
from tryon_types import BoundingBox, Landmark, StructuredFace

__all__ = [
    "DEFAULT_MODEL_VERSION",
    "LANDMARK_TABLES",
    "LandmarkIndexError",
    "LandmarkTable",
    "compute_bounding_box",
    "extract",
    "get_landmark_table",
    "to_landmark",
]


def to_landmark(point: np.ndarray) -> Landmark:
    return Landmark(float(point[0]), float(point[1]), float(point[2]))


def compute_bounding_box(landmarks: np.ndarray, table: LandmarkTable) -> BoundingBox:
    """Min/max box over the face-oval subset (not every landmark)."""
    oval = landmarks[list(table.face_oval), :2]
    min_x, min_y = oval.min(axis=0)
    max_x, max_y = oval.max(axis=0)
    return BoundingBox(
        x=float(min_x),
        y=float(min_y),
        width=float(max_x - min_x),
        height=float(max_y - min_y),
    )


def extract(raw: Any, table: Optional[LandmarkTable] = None) -> StructuredFace:
    """Extract a StructuredFace from one raw landmark frame.

    Args:
        raw: (N, 3) array or sequence of points in normalized image space.
        table: Landmark index table; defaults to the current mesh version.

    Raises:
        LandmarkIndexError: frame has fewer points than the table reads.
        ValueError: frame is not an (N, 3) point list.
    """
    table = table or get_landmark_table()
    landmarks = as_landmark_array(raw)
    require_points(landmarks, table)

    left_eye, right_eye = eye_centers(landmarks, table)
    # Normalized image space; no unit conversion.
    eye_distance = float(np.hypot(right_eye[0] - left_eye[0], right_eye[1] - left_eye[1]))

    rotation = rotation_from_points(
        left_eye,
        right_eye,
        landmarks[table.nose_tip],
        landmarks[table.chin],
        landmarks[table.forehead_top],
    )

    return StructuredFace(
        left_eye=to_landmark(left_eye),
        right_eye=to_landmark(right_eye),
        nose_bridge=to_landmark(landmarks[table.nose_bridge_top]),
        forehead_top=to_landmark(landmarks[table.forehead_top]),
        left_ear=to_landmark(landmarks[table.left_ear]),
        right_ear=to_landmark(landmarks[table.right_ear]),
        chin=to_landmark(landmarks[table.chin]),
        eye_distance=eye_distance,
        rotation=rotation,
        bounding_box=compute_bounding_box(landmarks, table),
        raw_landmarks=landmarks,
    )
