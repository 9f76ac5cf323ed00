"""
Tryon-Overlay — Camera Module Tests
===================================
Synthetic NumPy frames behind a mocked cv2.VideoCapture; no real camera needed.
"""

from __future__ import annotations

import time
from unittest.mock import MagicMock, patch

import cv2
import numpy as np
import pytest

from tryon_camera import TryOnCamera

_CAPTURE = "tryon_camera.cv2.VideoCapture"


# ─── Fixtures ─────────────────────────────────────────────────

def _make_valid_frame(height: int = 480, width: int = 640) -> np.ndarray:
    """Synthetic BGR frame that passes every validation check."""
    rng = np.random.RandomState(7)
    return rng.randint(60, 200, size=(height, width, 3), dtype=np.uint8)


def _make_mock_capture(*frames, ret: bool = True):
    """Mock cv2.VideoCapture returning the given frames in order (last repeats)."""
    queue = list(frames)

    def read():
        frame = queue.pop(0) if len(queue) > 1 else queue[0]
        return ret, frame

    cap = MagicMock()
    cap.read.side_effect = read
    cap.isOpened.return_value = True
    cap.get.return_value = 30.0
    cap.set.return_value = True
    return cap


# ─── Frame validation ─────────────────────────────────────────

def test_valid_frame_is_returned_unchanged():
    frame = _make_valid_frame()
    with patch(_CAPTURE, return_value=_make_mock_capture(frame)):
        cam = TryOnCamera(0)
        ok, result, ts = cam.read_validated_frame()

    assert ok is True
    assert ts > 0
    assert np.array_equal(result, frame)
    cam.release()


@pytest.mark.parametrize("bad_frame, reason", [
    (None, "no_frame"),
    (np.full((480, 640, 4), 128, dtype=np.uint8), "not_bgr"),
    (np.full((480, 640), 128, dtype=np.uint8), "not_bgr"),
    (np.full((480, 640, 3), 0.5, dtype=np.float32), "dtype"),
    (np.zeros((480, 640, 3), dtype=np.uint8), "black"),
    (np.full((480, 640, 3), 255, dtype=np.uint8), "saturated"),
    (np.full((100, 100, 3), 128, dtype=np.uint8), "too_small"),
])
def test_invalid_frames_are_dropped(bad_frame, reason):
    with patch(_CAPTURE, return_value=_make_mock_capture(bad_frame)):
        cam = TryOnCamera(0)
        ok, result, ts = cam.read_validated_frame()

    assert ok is False
    assert result is None
    assert ts == 0.0
    assert cam.get_health_status()["drop_reasons"] == {reason: 1}
    cam.release()


def test_read_failure_is_dropped():
    with patch(_CAPTURE, return_value=_make_mock_capture(_make_valid_frame(), ret=False)):
        cam = TryOnCamera(0)
        assert cam.read_validated_frame() == (False, None, 0.0)
        assert cam.get_health_status()["drop_reasons"] == {"no_frame": 1}
    cam.release()


# ─── Stall detection + health ─────────────────────────────────

def test_camera_without_frames_stalls_after_timeout():
    with patch(_CAPTURE, return_value=_make_mock_capture(None, ret=False)):
        cam = TryOnCamera(0, stall_timeout_ms=50)
        assert cam.is_stalled() is False

        time.sleep(0.08)
        cam.read_validated_frame()
        assert cam.is_stalled() is True
        assert cam.get_health_status()["stalled"] is True
    cam.release()


def test_valid_frame_clears_stall():
    with patch(_CAPTURE, return_value=_make_mock_capture(_make_valid_frame())):
        cam = TryOnCamera(0, stall_timeout_ms=50)
        time.sleep(0.08)
        assert cam.is_stalled() is True

        ok, _, _ = cam.read_validated_frame()
        assert ok
        assert cam.is_stalled() is False
        assert cam.is_stalled(max_gap_ms=0.0) is True
    cam.release()


def test_health_status_counts_drops():
    valid = _make_valid_frame()
    black = np.zeros((480, 640, 3), dtype=np.uint8)

    with patch(_CAPTURE, return_value=_make_mock_capture(valid, black, valid)):
        cam = TryOnCamera(0)
        for _ in range(3):
            cam.read_validated_frame()
        health = cam.get_health_status()

    assert health["connected"] is True
    assert health["frames_total"] == 3
    assert health["frames_dropped"] == 1
    assert health["drop_rate_pct"] == pytest.approx(100.0 / 3)
    assert health["drop_reasons"] == {"black": 1}
    assert isinstance(health["fps_actual"], float)
    assert health["stalled"] is False
    cam.release()


# ─── Source + lifecycle ───────────────────────────────────────

def test_requested_resolution_is_applied():
    cap = _make_mock_capture(_make_valid_frame())
    with patch(_CAPTURE, return_value=cap) as ctor:
        cam = TryOnCamera(1, width=640, height=480)

    ctor.assert_called_once_with(1, cv2.CAP_ANY)
    cap.set.assert_any_call(cv2.CAP_PROP_BUFFERSIZE, 1)
    cap.set.assert_any_call(cv2.CAP_PROP_FRAME_WIDTH, 640)
    cap.set.assert_any_call(cv2.CAP_PROP_FRAME_HEIGHT, 480)
    cam.release()


def test_video_file_source_uses_default_backend():
    with patch(_CAPTURE, return_value=_make_mock_capture(_make_valid_frame())) as ctor:
        cam = TryOnCamera("clip.mp4")
    ctor.assert_called_once_with("clip.mp4")
    cam.release()


def test_release_is_idempotent_and_stops_reads():
    cap = _make_mock_capture(_make_valid_frame())
    with patch(_CAPTURE, return_value=cap):
        cam = TryOnCamera(0)
        cam.release()
        cam.release()

        assert cap.release.call_count == 1
        assert cam.is_opened() is False
        assert cam.read_validated_frame() == (False, None, 0.0)
        assert cap.read.call_count == 0


def test_context_manager_releases():
    cap = _make_mock_capture(_make_valid_frame())
    with patch(_CAPTURE, return_value=cap):
        with TryOnCamera(0) as cam:
            assert cam.is_opened()
    cap.release.assert_called_once()
