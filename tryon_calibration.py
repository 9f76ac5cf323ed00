"""
Tryon-Overlay — Calibration Protocol
====================================
Operator-driven tuning of offsetY / scale for one product.

Two sides talk over a MessageChannel:

  CalibrationController (opener, admin side)
      open_calibration() ──CALIBRATION_INIT──▶ CalibrationPreview
      handle_message()   ◀─CALIBRATION_SAVED── save()

The preview runs its own FaceTrackingSession + PoseComposer against the
values being adjusted, so what the operator sees is what gets saved.

On CALIBRATION_SAVED the controller first updates its local settings, then
persists them. A failed persist keeps the local values and is reported
through SaveStatus; it never rolls back. Opening calibration without
saving leaves persisted settings untouched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, List, Optional

from tryon_channel import ChannelMessage, MessageChannel, MessageType, is_number
from tryon_logger import TryOnLogger
from tryon_pose import PoseComposer
from tryon_settings import (
    OFFSET_Y_MAX,
    OFFSET_Y_MIN,
    OFFSET_Y_STEP,
    SCALE_MAX,
    SCALE_MIN,
    SCALE_STEP,
    SettingsStore,
    SettingsValidationError,
)
from tryon_tracker import FaceTrackingSession, VideoSource
from tryon_types import CalibrationSettings, PlacementTransform, StructuredFace, TryOnType

_log = logging.getLogger("TryOnCalibration")


@dataclass(frozen=True)
class CalibrationHandshake:
    """Seed payload sent once when the preview surface is launched."""
    product_id: str
    model_url: Optional[str]
    offset_y: float
    scale: float
    try_on_type: TryOnType

    def to_message(self) -> ChannelMessage:
        return ChannelMessage(MessageType.CALIBRATION_INIT, {
            "productId": self.product_id,
            "modelUrl": self.model_url,
            "offsetY": self.offset_y,
            "scale": self.scale,
            "tryOnType": self.try_on_type.value,
        })

    @classmethod
    def from_message(cls, data: dict) -> "CalibrationHandshake":
        msg = ChannelMessage.from_dict(data)
        if msg.type != MessageType.CALIBRATION_INIT:
            raise ValueError(f"Expected CALIBRATION_INIT, got {msg.type.value}")
        p = msg.payload
        return cls(
            product_id=p["productId"],
            model_url=p.get("modelUrl"),
            offset_y=float(p["offsetY"]),
            scale=float(p["scale"]),
            try_on_type=TryOnType(p["tryOnType"]),
        )


@dataclass(frozen=True)
class SaveStatus:
    ok: bool
    settings: CalibrationSettings
    error: Optional[str] = None


# ═══════════════════════════════════════════════════════════════
# Preview surface
# ═══════════════════════════════════════════════════════════════

class CalibrationPreview:
    """Live preview seeded by a handshake; adjusts and sends the result back."""

    def __init__(
        self,
        handshake: CalibrationHandshake,
        channel: MessageChannel,
        session: Optional[FaceTrackingSession] = None,
        composer: Optional[PoseComposer] = None,
        on_transforms: Optional[Callable[[List[PlacementTransform]], None]] = None,
    ) -> None:
        self.handshake = handshake
        self.offset_y = handshake.offset_y
        self.scale = handshake.scale
        self.last_transforms: List[PlacementTransform] = []
        self.last_face: Optional[StructuredFace] = None
        self.saved = False

        self._channel = channel
        self._session = session or FaceTrackingSession(channel=None)
        self._composer = composer or PoseComposer()
        self._on_transforms = on_transforms
        self._session.on_face_detected(self._on_face)
        self._session.on_face_lost(self._on_lost)

    @classmethod
    def from_message(cls, data: dict, channel: MessageChannel, **kwargs: Any) -> "CalibrationPreview":
        return cls(CalibrationHandshake.from_message(data), channel, **kwargs)

    @property
    def session(self) -> FaceTrackingSession:
        return self._session

    def start(self, video_source: VideoSource, threaded: bool = True) -> None:
        self._session.start_tracking(video_source, threaded=threaded)

    def current_settings(self) -> CalibrationSettings:
        return CalibrationSettings(
            try_on_enabled=True,
            try_on_type=self.handshake.try_on_type,
            try_on_offset_y=self.offset_y,
            try_on_scale=self.scale,
        )

    # ── Operator nudges (clamped to the slider ranges) ────────

    def adjust_offset(self, steps: int = 1) -> float:
        value = self.offset_y + steps * OFFSET_Y_STEP
        self.offset_y = min(OFFSET_Y_MAX, max(OFFSET_Y_MIN, value))
        self._recompose()
        return self.offset_y

    def adjust_scale(self, steps: int = 1) -> float:
        value = round(self.scale + steps * SCALE_STEP, 2)  # keep 0.05 steps exact
        self.scale = min(SCALE_MAX, max(SCALE_MIN, value))
        self._recompose()
        return self.scale

    # ── Commit ────────────────────────────────────────────────

    def save(self) -> None:
        """Send CALIBRATION_SAVED to the opener and close the preview."""
        self._channel.publish(ChannelMessage(MessageType.CALIBRATION_SAVED, {
            "offsetY": self.offset_y,
            "scale": self.scale,
        }))
        self.saved = True
        _log.info("Calibration sent — offsetY=%s scale=%s", self.offset_y, self.scale)
        self.close()

    def close(self) -> None:
        self._session.destroy()

    # ── Session callbacks ─────────────────────────────────────

    def _on_face(self, face: StructuredFace) -> None:
        self.last_face = face
        self._recompose()

    def _on_lost(self) -> None:
        self.last_face = None
        self.last_transforms = []
        self._composer.reset()
        if self._on_transforms is not None:
            self._on_transforms(self.last_transforms)

    def _recompose(self) -> None:
        if self.last_face is None:
            return
        self.last_transforms = self._composer.compose(self.last_face, self.current_settings())
        if self._on_transforms is not None:
            self._on_transforms(self.last_transforms)


# ═══════════════════════════════════════════════════════════════
# Opener side
# ═══════════════════════════════════════════════════════════════

class CalibrationController:
    """Admin-side half: launches calibration and applies the saved result."""

    def __init__(
        self,
        store: SettingsStore,
        channel: MessageChannel,
        product_id: str,
        settings: Optional[CalibrationSettings] = None,
        on_status: Optional[Callable[[SaveStatus], None]] = None,
        audit: Optional[TryOnLogger] = None,
    ) -> None:
        self.store = store
        self.channel = channel
        self.product_id = product_id
        self.settings = settings if settings is not None else store.get_try_on_settings(product_id)
        self.last_status: Optional[SaveStatus] = None
        self._on_status = on_status
        self._audit = audit
        self._unsubscribe: Optional[Callable[[], None]] = None

    def open_calibration(self, model_url: Optional[str] = None) -> CalibrationHandshake:
        """Send the handshake to the preview surface. Does not persist anything.

        Raises:
            SettingsValidationError: no try-on type selected yet.
        """
        if self.settings.try_on_type is None:
            raise SettingsValidationError("Select a try-on type before calibrating")

        if self._unsubscribe is None:
            self._unsubscribe = self.channel.subscribe(
                MessageType.CALIBRATION_SAVED, self.handle_message
            )

        handshake = CalibrationHandshake(
            product_id=self.product_id,
            model_url=model_url,
            offset_y=self.settings.try_on_offset_y,
            scale=self.settings.try_on_scale,
            try_on_type=self.settings.try_on_type,
        )
        self.channel.publish(handshake.to_message())
        _log.info("Calibration opened for %s", self.product_id)
        if self._audit is not None:
            self._audit.event("calibration_opened", product_id=self.product_id)
        return handshake

    def handle_message(self, data: dict) -> Optional[SaveStatus]:
        """Apply a CALIBRATION_SAVED message. Incomplete messages are ignored."""
        offset_y, scale = data.get("offsetY"), data.get("scale")
        if not (is_number(offset_y) and is_number(scale)):
            _log.warning("Ignoring calibration message without offsetY/scale: %s", data)
            return None

        # Local update first; it survives a failed persist.
        self.settings = replace(self.settings, try_on_offset_y=float(offset_y), try_on_scale=float(scale))

        error: Optional[str] = None
        try:
            ok = self.store.update_try_on_settings(self.product_id, self.settings)
            if not ok:
                error = "Settings store did not accept the write"
        except (SettingsValidationError, OSError) as e:
            ok, error = False, str(e)

        status = SaveStatus(ok=ok, settings=self.settings, error=error)
        self.last_status = status

        if ok:
            _log.info("Calibration saved for %s: %s", self.product_id, self.settings.to_dict())
            if self._audit is not None:
                self._audit.event("calibration_saved", product_id=self.product_id,
                                  settings=self.settings.to_dict())
        else:
            _log.error("Calibration persist failed for %s: %s", self.product_id, error)
            if self._audit is not None:
                self._audit.event("calibration_persist_failed", product_id=self.product_id, error=error)

        if self._on_status is not None:
            self._on_status(status)
        return status

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
