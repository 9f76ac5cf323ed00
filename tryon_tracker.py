"""
Tryon-Overlay — Face Tracking Session
=====================================
Owns one detector and one video source for the lifetime of a try-on
session, pumps frames into the detector and turns its results into
face-detected / face-lost events.

State machine:

    UNINITIALIZED --initialize()--> INITIALIZED --start_tracking()--> TRACKING
    TRACKING --stop_tracking()--> STOPPED --start_tracking()--> TRACKING
    any state --destroy()--> UNINITIALIZED

Event semantics:
  - face present: every subscriber of on_face_detected() is called with a
    freshly extracted StructuredFace, on EVERY frame.
  - no face: on_face_lost() subscribers are called once, on the
    transition from "had a face" to "no face".

Frames delivered after stop_tracking()/destroy() are dropped silently.
Malformed landmark frames are logged and treated as "no face" unless
the session is strict, in which case they propagate.
"""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Any, Callable, List, Optional, Protocol, Sequence

import numpy as np

from tryon_channel import ChannelMessage, MessageChannel, MessageType
from tryon_face_pipeline import FaceMeshDetector
from tryon_landmarks import extract
from tryon_logger import TryOnLogger
from tryon_mesh_indices import LandmarkTable, get_landmark_table
from tryon_types import StructuredFace
from tryon_utils import config_value

_log = logging.getLogger("TryOnTracker")

FaceDetectedCallback = Callable[[StructuredFace], None]
FaceLostCallback = Callable[[], None]


class VideoSource(Protocol):
    def read_validated_frame(self) -> tuple[bool, Optional[np.ndarray], float]: ...
    def release(self) -> None: ...


class TrackingState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    TRACKING = "tracking"
    STOPPED = "stopped"


class FaceTrackingSession:
    """Per-widget face tracking session (no shared global detector)."""

    def __init__(
        self,
        detector: Optional[FaceMeshDetector] = None,
        table: Optional[LandmarkTable] = None,
        strict: Optional[bool] = None,
        channel: Optional[MessageChannel] = None,
        audit: Optional[TryOnLogger] = None,
    ) -> None:
        self._detector = detector or FaceMeshDetector()
        self._table = table or get_landmark_table(
            config_value("detector", "model_version", "face_mesh_v1")
        )
        self._strict = strict if strict is not None else config_value("tracking", "strict", False)
        self._channel = channel
        self._audit = audit

        self.state = TrackingState.UNINITIALIZED
        self.is_tracking = False
        self.last_face_detected = False

        self._detected_callbacks: List[FaceDetectedCallback] = []
        self._lost_callbacks: List[FaceLostCallback] = []

        # Re-entrant: callbacks may call stop_tracking() from the pump.
        self._lock = threading.RLock()
        self._source: Optional[VideoSource] = None
        self._thread: Optional[threading.Thread] = None

    # ── Lifecycle ─────────────────────────────────────────────

    def initialize(self) -> None:
        """Load the detector model. A second call is a no-op.

        Raises:
            DetectorInitError: model asset missing or unloadable.
        """
        with self._lock:
            if self.state != TrackingState.UNINITIALIZED:
                return
            self._detector.initialize()
            self.state = TrackingState.INITIALIZED
        self._audit_event("detector_initialized")

    def start_tracking(self, video_source: VideoSource, threaded: bool = True) -> None:
        """Begin pumping frames from video_source into the detector.

        Initializes the detector first if needed. With threaded=False no
        pump thread is started; the caller feeds frames via process_frame().
        """
        if self.state == TrackingState.UNINITIALIZED:
            self.initialize()

        with self._lock:
            if self.is_tracking:
                _log.warning("start_tracking() while already tracking — ignored")
                return
            self._source = video_source
            self.is_tracking = True
            self.state = TrackingState.TRACKING

            if threaded:
                self._thread = threading.Thread(
                    target=self._pump, args=(video_source,), name="TryOnPump", daemon=True
                )
                self._thread.start()

        _log.info("Face tracking started")
        self._audit_event("tracking_started", threaded=threaded)
        self._publish(MessageType.TRYON_OPENED)

    def stop_tracking(self) -> None:
        """Stop the pump and release the video source. No-op if idle."""
        with self._lock:
            was_tracking = self.is_tracking
            self.is_tracking = False
            source, self._source = self._source, None
            thread, self._thread = self._thread, None
            if was_tracking:
                self.state = TrackingState.STOPPED

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=1.0)
        if source is not None:
            source.release()

        if was_tracking:
            _log.info("Face tracking stopped")
            self._audit_event("tracking_stopped")
            self._publish(MessageType.TRYON_CLOSED)

    def destroy(self) -> None:
        """Stop tracking, release the detector, return to UNINITIALIZED."""
        self.stop_tracking()
        with self._lock:
            self._detector.release()
            self.state = TrackingState.UNINITIALIZED
            self.last_face_detected = False
        _log.info("Face tracking session destroyed")
        self._audit_event("session_destroyed")

    # ── Subscriptions ─────────────────────────────────────────

    def on_face_detected(self, callback: FaceDetectedCallback) -> Callable[[], None]:
        """Subscribe to per-frame face results. Returns an unsubscribe callable."""
        self._detected_callbacks.append(callback)
        return lambda: self._remove(self._detected_callbacks, callback)

    def on_face_lost(self, callback: FaceLostCallback) -> Callable[[], None]:
        """Subscribe to face-lost transitions. Returns an unsubscribe callable."""
        self._lost_callbacks.append(callback)
        return lambda: self._remove(self._lost_callbacks, callback)

    # ── Frame path ────────────────────────────────────────────

    def process_frame(self, frame: np.ndarray, timestamp_ms: Optional[int] = None) -> None:
        """Run one frame through the detector and dispatch the result."""
        with self._lock:
            if not self.is_tracking or not self._detector.is_initialized:
                _log.debug("Frame after teardown — dropped")
                return
            faces = self._detector.detect(frame, timestamp_ms)
            self.handle_results(faces)

    def handle_results(self, faces: Sequence[Any]) -> None:
        """Dispatch one detector result (a list of raw landmark frames)."""
        with self._lock:
            if not self.is_tracking:
                _log.debug("Result after teardown — dropped")
                return

            if not faces:
                self._mark_lost()
                return

            try:
                face = extract(faces[0], self._table)
            except (IndexError, ValueError) as e:
                if self._strict:
                    raise
                _log.warning(
                    "Malformed landmark frame (%d points): %s — treating as face lost",
                    len(faces[0]) if hasattr(faces[0], "__len__") else -1, e,
                )
                self._mark_lost()
                return

            self.last_face_detected = True
            for callback in list(self._detected_callbacks):
                callback(face)

    # ── Private helpers ───────────────────────────────────────

    def _mark_lost(self) -> None:
        if not self.last_face_detected:
            return
        self.last_face_detected = False
        self._audit_event("face_lost")
        for callback in list(self._lost_callbacks):
            callback()

    def _pump(self, source: VideoSource) -> None:
        """Pump thread: read frames in arrival order until stopped."""
        frame_interval = config_value("tracking", "frame_interval_ms", 33) / 1000.0
        while self.is_tracking:
            ok, frame, ts = source.read_validated_frame()
            if not ok:
                time.sleep(min(frame_interval, 0.01))  # avoid busy loop on camera fail
                continue
            try:
                self.process_frame(frame, int(ts * 1000))
            except Exception as e:
                _log.error("Frame processing failed: %s", e, exc_info=True)
                if self._audit is not None:
                    self._audit.error("Frame processing failed", exception=e)

    def _publish(self, message_type: MessageType) -> None:
        if self._channel is not None:
            self._channel.publish(ChannelMessage(message_type))

    def _audit_event(self, name: str, **data: Any) -> None:
        if self._audit is not None:
            self._audit.event(name, **data)

    @staticmethod
    def _remove(callbacks: list, callback: Callable) -> None:
        if callback in callbacks:
            callbacks.remove(callback)
