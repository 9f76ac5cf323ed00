"""
Tryon-Overlay — Face Mesh Landmark Index Tables
===============================================
Named, versioned index tables into the detector's landmark list.

The indices are specific to the MediaPipe face mesh topology. A detector
upgrade that reorders the mesh is a breaking change: add a new table under
a new version key and keep the old one until nothing references it.

Side naming follows image space, not anatomy: "left" is the eye/ear that
appears on the left of a non-mirrored frame.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

import numpy as np


class LandmarkIndexError(IndexError):
    """Raised when a frame has fewer points than the table reads."""


# ═══════════════════════════════════════════════════════════════
# LandmarkTable
# ═══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class LandmarkTable:
    version: str
    point_count: int                 # points per frame the detector emits
    left_eye_outer: int
    left_eye_inner: int
    right_eye_outer: int
    right_eye_inner: int
    nose_bridge_top: int
    nose_bridge_bottom: int
    nose_tip: int
    forehead_top: int
    forehead_center: int
    left_ear: int
    right_ear: int
    chin: int
    face_oval: tuple[int, ...]

    @property
    def max_index(self) -> int:
        """Highest index any extractor reads from this table."""
        named = (
            self.left_eye_outer, self.left_eye_inner,
            self.right_eye_outer, self.right_eye_inner,
            self.nose_bridge_top, self.nose_bridge_bottom, self.nose_tip,
            self.forehead_top, self.forehead_center,
            self.left_ear, self.right_ear, self.chin,
        )
        return max(max(named), max(self.face_oval))


# MediaPipe FaceMesh, 468-point topology (478 with iris refinement; the
# 10 iris points are appended after index 467 and are not read here).
_FACE_MESH_V1 = LandmarkTable(
    version="face_mesh_v1",
    point_count=468,
    left_eye_outer=33,      # lateral canthus, image-left eye
    left_eye_inner=133,     # medial canthus, image-left eye
    right_eye_outer=263,    # lateral canthus, image-right eye
    right_eye_inner=362,    # medial canthus, image-right eye
    nose_bridge_top=6,      # mid bridge, where glasses rest
    nose_bridge_bottom=4,
    nose_tip=1,             # pronasale
    forehead_top=10,        # top of the face oval
    forehead_center=151,
    left_ear=127,           # tragus region, image-left
    right_ear=356,          # tragus region, image-right
    chin=152,               # menton
    face_oval=(
        10, 338, 297, 332, 284, 251, 389, 356, 454, 323, 361, 288,
        397, 365, 379, 378, 400, 377, 152, 148, 176, 149, 150, 136,
        172, 58, 132, 93, 234, 127, 162, 21, 54, 103, 67, 109,
    ),
)

LANDMARK_TABLES: dict[str, LandmarkTable] = {
    _FACE_MESH_V1.version: _FACE_MESH_V1,
}

DEFAULT_MODEL_VERSION = _FACE_MESH_V1.version


def get_landmark_table(version: str = DEFAULT_MODEL_VERSION) -> LandmarkTable:
    """Look up the index table for a detector model version."""
    try:
        return LANDMARK_TABLES[version]
    except KeyError:
        raise KeyError(
            f"Unknown landmark model version: {version!r}. "
            f"Supported: {sorted(LANDMARK_TABLES)}"
        ) from None


# ═══════════════════════════════════════════════════════════════
# Frame coercion
# ═══════════════════════════════════════════════════════════════

def as_landmark_array(raw: Any) -> np.ndarray:
    """Copy a raw landmark frame into a fresh (N, 3) float64 array.

    Accepts an (N, 3) array, a sequence of (x, y, z) triples, or a
    sequence of MediaPipe-style objects exposing .x/.y/.z. The result
    never aliases the caller's buffer. Anything that cannot be coerced
    raises ValueError.
    """
    try:
        if isinstance(raw, np.ndarray):
            arr = np.array(raw, dtype=np.float64, copy=True)
        else:
            points: Sequence[Any] = list(raw)
            if points and hasattr(points[0], "x"):
                arr = np.array(
                    [[p.x, p.y, getattr(p, "z", 0.0)] for p in points],
                    dtype=np.float64,
                )
            else:
                arr = np.array(points, dtype=np.float64)
    except (TypeError, AttributeError) as e:
        raise ValueError(f"Not a landmark frame: {type(raw).__name__} ({e})") from e

    if arr.size == 0:
        return np.empty((0, 3), dtype=np.float64)
    if arr.ndim != 2 or arr.shape[1] != 3:
        raise ValueError(f"Landmark frame must be (N, 3), got shape {arr.shape}")
    return arr


def require_points(landmarks: np.ndarray, table: LandmarkTable) -> None:
    """Fail loudly if the frame is too short for the table."""
    if landmarks.shape[0] <= table.max_index:
        raise LandmarkIndexError(
            f"Landmark frame has {landmarks.shape[0]} points; table "
            f"{table.version!r} reads index {table.max_index}"
        )
