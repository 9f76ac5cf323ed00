"""
Shared synthetic face-mesh frames for the Tryon-Overlay tests.

The default frame is a frontal face: eyes level, nose tip centred between
the eyes and vertically halfway between forehead and chin, so yaw, pitch
and roll are all zero. The 36 face-oval points lie on an ellipse centred
at (0.475, 0.5) with radii (0.25, 0.3).
"""

from __future__ import annotations

import math
import sys
from pathlib import Path

import numpy as np
import pytest

# Add project root to path
_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from tryon_mesh_indices import get_landmark_table

TABLE = get_landmark_table("face_mesh_v1")

CENTER = (0.475, 0.5)
RADII = (0.25, 0.3)


def make_face_frame(n_points: int = 478) -> np.ndarray:
    """Build a frontal (n_points, 3) landmark frame."""
    frame = np.zeros((n_points, 3), dtype=np.float64)
    frame[:, 0], frame[:, 1] = CENTER

    cx, cy = CENTER
    rx, ry = RADII
    for i, idx in enumerate(TABLE.face_oval):
        theta = 2.0 * math.pi * i / len(TABLE.face_oval)
        frame[idx] = (cx + rx * math.sin(theta), cy - ry * math.cos(theta), 0.0)

    frame[TABLE.left_eye_outer] = (0.30, 0.40, 0.0)
    frame[TABLE.left_eye_inner] = (0.35, 0.40, 0.0)
    frame[TABLE.right_eye_outer] = (0.65, 0.40, 0.0)
    frame[TABLE.right_eye_inner] = (0.60, 0.40, 0.0)
    frame[TABLE.nose_bridge_top] = (0.475, 0.42, -0.02)
    frame[TABLE.nose_bridge_bottom] = (0.475, 0.47, -0.04)
    frame[TABLE.nose_tip] = (0.475, 0.50, -0.05)
    frame[TABLE.forehead_center] = (0.475, 0.28, 0.0)
    return frame


@pytest.fixture
def face_frame() -> np.ndarray:
    return make_face_frame()


@pytest.fixture
def landmark_table():
    return TABLE
