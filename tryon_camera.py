"""
Tryon-Overlay — Camera Input Module
===================================
The video source behind a tracking session: a cv2.VideoCapture that only
hands out frames the face landmarker can use, and notices when the
camera goes quiet so the overlay is not left floating over a frozen image.
"""

from __future__ import annotations

import logging
import time
from collections import Counter, deque
from typing import Optional, Union

import cv2
import numpy as np

from tryon_utils import config_value

_log = logging.getLogger("TryOnCamera")


class TryOnCamera:
    """Validated capture used as the try-on video source.

    read_validated_frame() returns (ok, frame, monotonic_timestamp); rejected
    frames are counted per reason. is_stalled() reports a camera that has
    produced no usable frame for longer than the stall timeout.
    """

    MIN_HEIGHT: int = 120
    MIN_WIDTH: int = 160
    MIN_MEAN_BRIGHTNESS: float = 5.0    # lens cap
    MAX_MEAN_BRIGHTNESS: float = 250.0  # saturated sensor
    FPS_WINDOW: int = 30

    def __init__(
        self,
        source: Union[int, str] = 0,
        width: Optional[int] = None,
        height: Optional[int] = None,
        stall_timeout_ms: Optional[float] = None,
    ) -> None:
        """Open a camera index or a video file path.

        The requested width/height are hints; the driver may ignore them.
        """
        self._source = source
        if isinstance(source, str):
            self._cap: cv2.VideoCapture = cv2.VideoCapture(source)
        else:
            self._cap = cv2.VideoCapture(source, cv2.CAP_ANY)

        # One-frame buffer keeps the overlay in step with the wearer.
        self._cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
        if width:
            self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        if height:
            self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)

        self._stall_timeout_ms = float(
            stall_timeout_ms if stall_timeout_ms is not None
            else config_value("camera", "stall_timeout_ms", 1000)
        )
        self._released = False
        self._opened_at = time.monotonic()
        self._last_frame_at = 0.0
        self._frames_total = 0
        self._drop_reasons: Counter = Counter()
        self._frame_times: deque = deque(maxlen=self.FPS_WINDOW)

        _log.info(
            "TryOnCamera opened — source=%s resolution=%dx%d",
            source,
            int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
        )

    # ── Frames ────────────────────────────────────────────────

    def read_validated_frame(self) -> tuple[bool, Optional[np.ndarray], float]:
        """Read one frame; (False, None, 0.0) if it is missing or unusable."""
        if self._released:
            return False, None, 0.0

        self._frames_total += 1
        timestamp = time.monotonic()
        ret, frame = self._cap.read()

        reason = self._rejection_reason(frame if ret else None)
        if reason is not None:
            self._drop_reasons[reason] += 1
            _log.debug("Frame dropped: %s", reason)
            return False, None, 0.0

        self._last_frame_at = timestamp
        self._frame_times.append(timestamp)
        return True, frame, timestamp

    def is_stalled(self, max_gap_ms: Optional[float] = None) -> bool:
        """True when no usable frame arrived within the stall timeout."""
        limit = self._stall_timeout_ms if max_gap_ms is None else max_gap_ms
        since = self._last_frame_at or self._opened_at
        return (time.monotonic() - since) * 1000.0 > limit

    # ── Health ────────────────────────────────────────────────

    def get_health_status(self) -> dict:
        dropped = sum(self._drop_reasons.values())
        return {
            "connected": self.is_opened(),
            "fps_actual": self._rolling_fps(),
            "frames_total": self._frames_total,
            "frames_dropped": dropped,
            "drop_rate_pct": dropped / self._frames_total * 100.0 if self._frames_total else 0.0,
            "drop_reasons": dict(self._drop_reasons),
            "stalled": self.is_stalled(),
        }

    def is_opened(self) -> bool:
        return (not self._released) and self._cap.isOpened()

    def release(self) -> None:
        """Release the capture. Safe to call repeatedly."""
        if self._released:
            return
        health = self.get_health_status()
        _log.info(
            "TryOnCamera releasing — total=%d dropped=%d %s",
            health["frames_total"], health["frames_dropped"], health["drop_reasons"],
        )
        self._released = True
        self._cap.release()

    def __enter__(self) -> "TryOnCamera":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()

    # ── Private helpers ───────────────────────────────────────

    def _rejection_reason(self, frame: Optional[np.ndarray]) -> Optional[str]:
        if frame is None:
            return "no_frame"
        # The landmarker converts BGR to RGB; anything else is unusable.
        if frame.ndim != 3 or frame.shape[2] != 3:
            return "not_bgr"
        if frame.dtype != np.uint8:
            return "dtype"
        h, w = frame.shape[:2]
        if h < self.MIN_HEIGHT or w < self.MIN_WIDTH:
            return "too_small"
        mean = float(frame.mean())
        if mean <= self.MIN_MEAN_BRIGHTNESS:
            return "black"
        if mean >= self.MAX_MEAN_BRIGHTNESS:
            return "saturated"
        return None

    def _rolling_fps(self) -> float:
        if len(self._frame_times) < 2:
            return 0.0
        elapsed = self._frame_times[-1] - self._frame_times[0]
        return (len(self._frame_times) - 1) / elapsed if elapsed > 0 else 0.0
