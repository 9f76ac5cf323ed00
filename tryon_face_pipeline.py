"""
Tryon-Overlay — Face Mesh Detector Boundary
===========================================
Owns the MediaPipe FaceLandmarker. No other module should talk to
MediaPipe directly.

The detector turns one BGR frame into zero or one raw landmark frames,
each an (N, 3) float array of normalized (x, y, z) points in the mesh
order documented in tryon_mesh_indices.

Options are fixed for try-on: one face, iris refinement on, detection
and tracking confidence at 0.5. The model asset is read from a local path
or fetched once from an http(s) URL into a cache directory; any failure
while loading raises DetectorInitError and is not retried here.
"""

from __future__ import annotations

import logging
import os
import tempfile
import urllib.request
from typing import Optional

import cv2
import numpy as np

from tryon_utils import config_value, resolve_path

_log = logging.getLogger("TryOnFaceMesh")

# Points emitted without iris refinement; the refined model appends 10.
_BASE_MESH_POINTS = 468
_FRAME_STEP_MS = 33  # ~30 FPS timestamp step


class DetectorInitError(RuntimeError):
    """The face mesh model could not be fetched or built."""


class FaceMeshDetector:
    """MediaPipe FaceLandmarker wrapper with explicit lifecycle.

    initialize() is idempotent and may be slow (it may download the model
    asset). detect() on a released detector returns an empty list.
    """

    def __init__(
        self,
        model_path: Optional[str] = None,
        model_cache_dir: Optional[str] = None,
        max_faces: Optional[int] = None,
        refine_landmarks: Optional[bool] = None,
        min_detection_confidence: Optional[float] = None,
        min_tracking_confidence: Optional[float] = None,
    ) -> None:
        self._model_path = model_path or config_value("detector", "model_path", "face_landmarker.task")
        self._cache_dir = model_cache_dir or config_value("detector", "model_cache_dir", "models")
        self._max_faces = max_faces or config_value("detector", "max_faces", 1)
        self._refine = (
            refine_landmarks if refine_landmarks is not None
            else config_value("detector", "refine_landmarks", True)
        )
        self._min_detection = (
            min_detection_confidence if min_detection_confidence is not None
            else config_value("detector", "min_detection_confidence", 0.5)
        )
        self._min_tracking = (
            min_tracking_confidence if min_tracking_confidence is not None
            else config_value("detector", "min_tracking_confidence", 0.5)
        )
        self._landmarker = None
        self._frame_timestamp_ms: int = 0

    # ── Lifecycle ─────────────────────────────────────────────

    @property
    def is_initialized(self) -> bool:
        return self._landmarker is not None

    def initialize(self) -> None:
        """Load the model asset and build the landmarker (one-time)."""
        if self._landmarker is not None:
            return

        full_path = self._resolve_model_asset()

        try:
            from mediapipe.tasks import python
            from mediapipe.tasks.python import vision

            base_options = python.BaseOptions(
                model_asset_path=full_path,
                delegate=python.BaseOptions.Delegate.CPU,
            )
            # VIDEO mode: synchronous, tracking between frames
            options = vision.FaceLandmarkerOptions(
                base_options=base_options,
                running_mode=vision.RunningMode.VIDEO,
                num_faces=self._max_faces,
                min_face_detection_confidence=self._min_detection,
                min_face_presence_confidence=self._min_detection,
                min_tracking_confidence=self._min_tracking,
                output_face_blendshapes=False,
                output_facial_transformation_matrixes=False,
            )
            self._landmarker = vision.FaceLandmarker.create_from_options(options)
        except Exception as e:
            raise DetectorInitError(f"Failed to build FaceLandmarker from {full_path}: {e}") from e

        self._frame_timestamp_ms = 0
        _log.info(
            "FaceMeshDetector initialized — model=%s max_faces=%d refine=%s",
            full_path, self._max_faces, self._refine,
        )

    def release(self) -> None:
        """Release detector resources. Safe to call repeatedly."""
        if self._landmarker is not None:
            self._landmarker.close()
            self._landmarker = None
            _log.info("FaceMeshDetector released")

    def __enter__(self) -> "FaceMeshDetector":
        self.initialize()
        return self

    def __exit__(self, *args) -> None:
        self.release()

    # ── Detection ─────────────────────────────────────────────

    def detect(self, frame: np.ndarray, timestamp_ms: Optional[int] = None) -> list[np.ndarray]:
        """Run the face mesh on one BGR frame.

        Args:
            frame: BGR uint8 image (validated by TryOnCamera).
            timestamp_ms: Frame timestamp; must increase between calls.
                Defaults to a fixed ~30 FPS step.

        Returns:
            One (N, 3) float32 array per detected face, at most max_faces.
            Empty list if no face was found or the detector is released.
        """
        landmarker = self._landmarker
        if landmarker is None:
            _log.debug("detect() on released detector — ignoring frame")
            return []

        import mediapipe as mp

        # MediaPipe expects RGB input
        rgb_frame = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb_frame)

        if timestamp_ms is None:
            timestamp_ms = self._frame_timestamp_ms + _FRAME_STEP_MS
        self._frame_timestamp_ms = max(self._frame_timestamp_ms + 1, int(timestamp_ms))

        result = landmarker.detect_for_video(mp_image, self._frame_timestamp_ms)
        if not result or not result.face_landmarks:
            return []

        faces: list[np.ndarray] = []
        for face_lms in result.face_landmarks[: self._max_faces]:
            raw = np.array([[lm.x, lm.y, lm.z] for lm in face_lms], dtype=np.float32)
            if not self._refine:
                raw = raw[:_BASE_MESH_POINTS]
            faces.append(raw)
        return faces

    # ── Private helpers ───────────────────────────────────────

    def _resolve_model_asset(self) -> str:
        """Return a local path to the model, downloading it if it is a URL."""
        if self._model_path.startswith(("http://", "https://")):
            cache_dir = resolve_path(self._cache_dir)
            target = os.path.join(cache_dir, os.path.basename(self._model_path))
            if not os.path.exists(target):
                _log.info("Downloading face landmarker model to %s...", target)
                partial = None
                try:
                    os.makedirs(cache_dir, exist_ok=True)
                    # Only a complete download ever lands on the cache path.
                    fd, partial = tempfile.mkstemp(dir=cache_dir, suffix=".part")
                    os.close(fd)
                    urllib.request.urlretrieve(self._model_path, partial)
                    os.replace(partial, target)
                except Exception as e:
                    if partial is not None and os.path.exists(partial):
                        os.remove(partial)
                    raise DetectorInitError(
                        f"Failed to download face landmarker model: {e}\n"
                        f"Download manually from {self._model_path} to {target}"
                    ) from e
            return target

        full_path = resolve_path(self._model_path)
        if not os.path.exists(full_path):
            raise DetectorInitError(f"MediaPipe model not found: {full_path}")
        return full_path
