
import logging
import time
from typing import Optional, Sequence, Tuple

import cv2
import numpy as np

from tryon_types import CalibrationSettings, PlacementTransform, StructuredFace

_log = logging.getLogger("TryOnHUD")


class TryOnHUD:
    """Debug overlay standing in for the 3D renderer.

    Draws each PlacementTransform as an anchor marker with a box sized by
    its scale and a tick showing roll, plus the face box, a status bar
    and the current calibration values.
    """

    COLORS = {
        "TRACKING":       {"bg": (0, 180, 0),     "shape": "checkmark"},  # Green
        "LOW_CONFIDENCE": {"bg": (0, 165, 255),   "shape": "question"},   # Orange
        "NO_FACE":        {"bg": (100, 100, 100), "shape": "circle"},     # Dim Gray
        "CAMERA_ERROR":   {"bg": (0, 0, 180),     "shape": "triangle"},   # Red
        "CALIBRATING":    {"bg": (255, 160, 0),   "shape": "dash"},       # Blue
    }

    # Marker box side in pixels at scale 1.0
    BASE_MARKER_PX = 40

    def __init__(self):
        _log.info("TryOnHUD initialized")

    def render(
        self,
        frame: np.ndarray,
        transforms: Sequence[PlacementTransform],
        face: Optional[StructuredFace] = None,
        state: str = "TRACKING",
        fps: float = 0.0,
        camera_health: Optional[dict] = None,
        calibration: Optional[CalibrationSettings] = None,
    ) -> Tuple[Optional[np.ndarray], float]:
        """Draw overlay onto a copy of the frame.

        Returns:
            (annotated_frame, hud_render_time_seconds)
        """
        t_hud_start = time.monotonic()

        if frame is None:
            return None, 0.0

        viz = frame.copy()

        if face is not None:
            self._draw_face_box(viz, face, state)

        for transform in transforms:
            self._draw_anchor(viz, transform)

        self._draw_status_bar(viz, state, camera_health or {})
        self._draw_fps(viz, fps)
        if calibration is not None:
            self._draw_calibration(viz, calibration)

        t_hud = time.monotonic() - t_hud_start
        return viz, t_hud

    # ── Drawing helpers ───────────────────────────────────────

    @staticmethod
    def _to_px(frame: np.ndarray, x: float, y: float) -> Tuple[int, int]:
        h, w = frame.shape[:2]
        return int(round(x * w)), int(round(y * h))

    def _draw_face_box(self, frame: np.ndarray, face: StructuredFace, state: str):
        box = face.bounding_box
        x0, y0 = self._to_px(frame, box.x, box.y)
        x1, y1 = self._to_px(frame, box.x + box.width, box.y + box.height)
        props = self.COLORS.get(state, self.COLORS["NO_FACE"])
        cv2.rectangle(frame, (x0, y0), (x1, y1), props["bg"], 1)
        self._draw_shape(frame, props["shape"], (x1 - 25, y0 + 5), props["bg"])

        for eye in (face.left_eye, face.right_eye):
            cv2.circle(frame, self._to_px(frame, eye.x, eye.y), 2, (255, 255, 0), -1)

    def _draw_anchor(self, frame: np.ndarray, transform: PlacementTransform):
        cx, cy = self._to_px(frame, transform.position.x, transform.position.y)
        half = max(2, int(self.BASE_MARKER_PX * transform.scale / 2))
        color = (0, 165, 255) if transform.low_confidence else (0, 255, 0)

        cv2.drawMarker(frame, (cx, cy), color, cv2.MARKER_CROSS, 12, 2)
        cv2.rectangle(frame, (cx - half, cy - half), (cx + half, cy + half), color, 1)

        # Roll tick along the accessory's horizontal axis
        roll = transform.rotation.roll
        tip = (int(cx + half * np.cos(roll)), int(cy + half * np.sin(roll)))
        cv2.line(frame, (cx, cy), tip, color, 2)

        cv2.putText(frame, transform.anchor, (cx - half, cy - half - 5),
            cv2.FONT_HERSHEY_SIMPLEX, 0.4, color, 1)

    def _draw_shape(self, frame: np.ndarray, shape: str, pos: Tuple[int, int], color: Tuple[int, int, int]):
        """Draw accessible shape icon."""
        x, y = pos
        if shape == "checkmark":
            pts = np.array([[x, y+10], [x+7, y+17], [x+20, y]], dtype=np.int32)
            cv2.polylines(frame, [pts], False, color, 3)
        elif shape == "question":
            cv2.putText(frame, "?", (x, y+20), cv2.FONT_HERSHEY_SIMPLEX, 0.8, color, 2)
        elif shape == "circle":
            cv2.circle(frame, (x+10, y+10), 10, color, 2)
        elif shape == "triangle":
            pts = np.array([[x+10, y], [x, y+20], [x+20, y+20]], dtype=np.int32)
            cv2.drawContours(frame, [pts], 0, color, -1)
        elif shape == "dash":
            cv2.line(frame, (x, y+10), (x+20, y+10), color, 3)

    def _draw_status_bar(self, frame: np.ndarray, state: str, cam: dict):
        """Draw bottom status bar with camera health."""
        h, w = frame.shape[:2]
        bar_h = 40
        overlay = frame.copy()
        cv2.rectangle(overlay, (0, h - bar_h), (w, h), (0, 0, 0), -1)
        alpha = 0.6
        cv2.addWeighted(overlay, alpha, frame, 1 - alpha, 0, frame)

        props = self.COLORS.get(state, self.COLORS["NO_FACE"])
        self._draw_shape(frame, props["shape"], (10, h - 32), props["bg"])
        cv2.putText(frame, f"TRY-ON: {state}", (40, h - 12),
            cv2.FONT_HERSHEY_SIMPLEX, 0.6, (255, 255, 255), 1)

        cam_text = f"CAM: {cam.get('fps_actual', 0):.1f} FPS | Drop: {cam.get('drop_rate_pct', 0):.1f}%"
        text_w = cv2.getTextSize(cam_text, cv2.FONT_HERSHEY_SIMPLEX, 0.6, 1)[0][0]
        cv2.putText(frame, cam_text, (w - text_w - 10, h - 12),
            cv2.FONT_HERSHEY_SIMPLEX, 0.6, (200, 200, 200), 1)

    def _draw_fps(self, frame: np.ndarray, fps: float):
        cv2.putText(frame, f"FPS: {fps:.1f}", (10, 30),
            cv2.FONT_HERSHEY_SIMPLEX, 0.7, (0, 255, 0), 2)

    def _draw_calibration(self, frame: np.ndarray, calib: CalibrationSettings):
        kind = calib.try_on_type.value if calib.try_on_type else "-"
        text = f"{kind} | offsetY {calib.try_on_offset_y:+.0f}% | scale {calib.try_on_scale:.2f}"
        cv2.putText(frame, text, (10, 55),
            cv2.FONT_HERSHEY_SIMPLEX, 0.5, (255, 255, 255), 1)
