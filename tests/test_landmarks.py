"""
Tryon-Overlay — Landmark Extractor Tests
========================================
Synthetic landmark frames only; no detector needed.
"""

from __future__ import annotations

import numpy as np
import pytest

from tryon_landmarks import (
    DEFAULT_MODEL_VERSION,
    LANDMARK_TABLES,
    LandmarkIndexError,
    compute_bounding_box,
    extract,
    get_landmark_table,
)
from tryon_mesh_indices import as_landmark_array


class _MockLandmark:
    """Simulate a MediaPipe landmark with .x, .y, .z attributes."""
    def __init__(self, x: float, y: float, z: float = 0.0):
        self.x = x
        self.y = y
        self.z = z


# ─── Landmark table ───────────────────────────────────────────

def test_default_table_matches_face_mesh_indices():
    table = get_landmark_table(DEFAULT_MODEL_VERSION)
    assert DEFAULT_MODEL_VERSION in LANDMARK_TABLES
    assert (table.left_eye_outer, table.left_eye_inner) == (33, 133)
    assert (table.right_eye_outer, table.right_eye_inner) == (263, 362)
    assert (table.nose_bridge_top, table.nose_bridge_bottom, table.nose_tip) == (6, 4, 1)
    assert (table.forehead_top, table.forehead_center) == (10, 151)
    assert (table.left_ear, table.right_ear, table.chin) == (127, 356, 152)
    assert len(table.face_oval) == 36
    assert table.face_oval[0] == 10 and 152 in table.face_oval
    assert table.max_index < table.point_count == 468


def test_unknown_table_version_raises():
    with pytest.raises(KeyError, match="face_mesh_v1"):
        get_landmark_table("face_mesh_v99")


# ─── Scenario from the eye-corner worked example ──────────────

def test_eye_centers_distance_and_roll(face_frame):
    face = extract(face_frame)

    assert face.left_eye.as_tuple() == pytest.approx((0.325, 0.4, 0.0))
    assert face.right_eye.as_tuple() == pytest.approx((0.625, 0.4, 0.0))
    assert face.eye_distance == pytest.approx(0.3)
    assert face.rotation.roll == pytest.approx(0.0)


def test_named_points_are_passed_through(face_frame, landmark_table):
    face = extract(face_frame)
    t = landmark_table

    assert face.nose_bridge.as_tuple() == pytest.approx(tuple(face_frame[t.nose_bridge_top]))
    assert face.forehead_top.as_tuple() == pytest.approx(tuple(face_frame[t.forehead_top]))
    assert face.left_ear.as_tuple() == pytest.approx(tuple(face_frame[t.left_ear]))
    assert face.right_ear.as_tuple() == pytest.approx(tuple(face_frame[t.right_ear]))
    assert face.chin.as_tuple() == pytest.approx(tuple(face_frame[t.chin]))


def test_bounding_box_covers_face_oval_only(face_frame, landmark_table):
    # A stray point outside the oval must not widen the box.
    face_frame[200] = (0.99, 0.99, 0.0)
    box = compute_bounding_box(face_frame, landmark_table)

    assert box.x == pytest.approx(0.225)
    assert box.y == pytest.approx(0.2)
    assert box.width == pytest.approx(0.5)
    assert box.height == pytest.approx(0.6)


# ─── Purity and copying ───────────────────────────────────────

def test_extract_is_deterministic(face_frame):
    a = extract(face_frame)
    b = extract(face_frame)

    assert a.left_eye == b.left_eye
    assert a.right_eye == b.right_eye
    assert a.eye_distance == b.eye_distance
    assert a.rotation == b.rotation
    assert a.bounding_box == b.bounding_box
    assert np.array_equal(a.raw_landmarks, b.raw_landmarks)


def test_raw_landmarks_are_copied(face_frame):
    original = face_frame.copy()
    first = extract(face_frame)
    first.raw_landmarks[:] = 0.0

    second = extract(face_frame)
    assert np.array_equal(face_frame, original)
    assert np.array_equal(second.raw_landmarks, original)
    assert second.raw_landmarks is not first.raw_landmarks


def test_detector_buffer_reuse_does_not_leak(face_frame):
    face = extract(face_frame)
    face_frame[:, :2] = 0.0  # detector overwrites its buffer

    assert face.left_eye.x == pytest.approx(0.325)
    assert face.raw_landmarks[33, 0] == pytest.approx(0.30)


# ─── Scale ────────────────────────────────────────────────────

@pytest.mark.parametrize("k", [0.5, 0.8, 0.25])
def test_eye_distance_scales_with_face_size(face_frame, k):
    near = extract(face_frame)
    far_frame = face_frame.copy()
    far_frame[:, :2] *= k
    far = extract(far_frame)

    assert far.eye_distance == pytest.approx(k * near.eye_distance)
    assert far.bounding_box.height == pytest.approx(k * near.bounding_box.height)


# ─── Input handling ───────────────────────────────────────────

def test_short_frame_fails_loudly(face_frame):
    with pytest.raises(LandmarkIndexError, match="reads index"):
        extract(face_frame[:300])


def test_empty_frame_fails_loudly():
    with pytest.raises(IndexError):
        extract(np.empty((0, 3)))


def test_wrong_shape_is_rejected():
    with pytest.raises(ValueError, match=r"\(N, 3\)"):
        extract(np.zeros((468, 2)))


def test_base_mesh_without_iris_points_is_accepted(face_frame):
    face = extract(face_frame[:468])
    assert face.raw_landmarks.shape == (468, 3)


def test_mediapipe_style_objects_are_accepted(face_frame):
    points = [_MockLandmark(*p) for p in face_frame]
    arr = as_landmark_array(points)

    assert arr.shape == face_frame.shape
    assert extract(points).eye_distance == pytest.approx(0.3)
