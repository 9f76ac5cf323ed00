"""
Tryon-Overlay — Launcher
========================
Runs the face-anchored try-on overlay on a live camera or video file,
or opens the calibration preview for one product.

Usage:
  python tryon.py --source 0 --product sku-123
  python tryon.py --source 0 --product sku-123 --type glasses
  python tryon.py --source clip.mp4 --product sku-123 --calibrate

Calibration keys:  W/S  move up/down (1%)   +/-  scale (0.05)
                   ENTER save               Q/ESC  quit without saving
"""

import argparse
import sys
from dataclasses import replace
from typing import List, Optional

import cv2

from tryon_calibration import CalibrationController, CalibrationPreview, SaveStatus
from tryon_camera import TryOnCamera
from tryon_channel import MessageChannel, MessageType
from tryon_face_pipeline import DetectorInitError, FaceMeshDetector
from tryon_hud import TryOnHUD
from tryon_logger import get_logger
from tryon_pose import PoseComposer
from tryon_settings import JsonSettingsStore, SettingsValidationError
from tryon_tracker import FaceTrackingSession
from tryon_types import PlacementTransform, StructuredFace, TryOnType
from tryon_utils import config_value, setup_logger

WINDOW_NAME = "Tryon-Overlay"
MAX_READ_FAILURES = 100  # end of video file or unplugged camera

_log = setup_logger("TryOn", config_value("logging", "level", "INFO"))


class _FrameState:
    """Latest face + transforms, written by session callbacks."""

    def __init__(self):
        self.face: Optional[StructuredFace] = None
        self.transforms: List[PlacementTransform] = []

    def clear(self):
        self.face = None
        self.transforms = []

    def hud_state(self) -> str:
        if self.face is None:
            return "NO_FACE"
        if any(t.low_confidence for t in self.transforms):
            return "LOW_CONFIDENCE"
        return "TRACKING"


def _parse_source(source: str):
    return int(source) if source.isdigit() else source


def _frames(camera: TryOnCamera):
    """Yield (frame, timestamp_ms) until the source ends.

    Yields (None, 0) once each time the camera stalls, so the caller can
    drop the overlay instead of leaving it on a frozen image.
    """
    failures = 0
    stalled = False
    while True:
        ok, frame, ts = camera.read_validated_frame()
        if ok:
            failures, stalled = 0, False
            yield frame, int(ts * 1000)
            continue
        failures += 1
        if failures >= MAX_READ_FAILURES or not camera.is_opened():
            _log.warning("Video source stopped producing frames")
            return
        if not stalled and camera.is_stalled():
            stalled = True
            _log.warning("Camera stalled; overlay hidden until frames resume")
            yield None, 0


def _show(args, frame) -> int:
    """Display a frame (unless headless) and return the pressed key."""
    if args.headless:
        return -1
    cv2.imshow(WINDOW_NAME, frame)
    return cv2.waitKey(1) & 0xFF


def run_tryon(args, settings, audit) -> int:
    channel = MessageChannel("widget")
    channel.subscribe(MessageType.TRYON_OPENED, lambda _m: _log.info("Try-on opened"))
    channel.subscribe(MessageType.TRYON_CLOSED, lambda _m: _log.info("Try-on closed"))

    detector = FaceMeshDetector(model_path=args.model)
    session = FaceTrackingSession(detector=detector, channel=channel, audit=audit)
    composer = PoseComposer()
    hud = TryOnHUD()
    state = _FrameState()

    def on_face(face: StructuredFace):
        state.face = face
        state.transforms = composer.compose(face, settings)

    def on_lost():
        state.clear()
        composer.reset()

    session.on_face_detected(on_face)
    session.on_face_lost(on_lost)

    camera = TryOnCamera(_parse_source(args.source), args.width, args.height)
    try:
        session.start_tracking(camera, threaded=False)
        _log.info("Try-on active. Press 'Q' or 'ESC' to exit.")

        last_frame = None
        for frame, ts_ms in _frames(camera):
            if frame is None:
                session.handle_results([])  # no frames, no face
                hud_state, frame = "CAMERA_ERROR", last_frame
                if frame is None:
                    continue
            else:
                last_frame = frame
                session.process_frame(frame, ts_ms)
                hud_state = state.hud_state()

            health = camera.get_health_status()
            viz, _ = hud.render(
                frame, state.transforms, state.face, hud_state,
                fps=health["fps_actual"], camera_health=health,
            )

            key = _show(args, viz)
            if key in (ord('q'), ord('Q'), 27):
                break
    except KeyboardInterrupt:
        _log.info("Interrupted by user")
    finally:
        session.destroy()
        camera.release()
    return 0


def run_calibration(args, store, settings, audit) -> int:
    # One in-process channel carries both directions.
    channel = MessageChannel("calibration")
    statuses: List[SaveStatus] = []
    controller = CalibrationController(
        store, channel, args.product, settings=settings,
        on_status=statuses.append, audit=audit,
    )

    previews: List[CalibrationPreview] = []
    hud = TryOnHUD()
    state = _FrameState()

    def on_transforms(transforms: List[PlacementTransform]):
        state.transforms = transforms

    def launch_preview(message: dict):
        session = FaceTrackingSession(detector=FaceMeshDetector(model_path=args.model), audit=audit)
        previews.append(CalibrationPreview.from_message(
            message, channel, session=session, on_transforms=on_transforms,
        ))

    channel.subscribe(MessageType.CALIBRATION_INIT, launch_preview)
    controller.open_calibration(model_url=args.model)
    preview = previews[-1]

    camera = TryOnCamera(_parse_source(args.source), args.width, args.height)
    try:
        preview.start(camera, threaded=False)
        _log.info("Calibrating %s. W/S move, +/- scale, ENTER save, Q quit.", args.product)

        last_frame = None
        for frame, ts_ms in _frames(camera):
            if frame is None:
                preview.session.handle_results([])
                hud_state, frame = "CAMERA_ERROR", last_frame
                if frame is None:
                    continue
            else:
                last_frame = frame
                preview.session.process_frame(frame, ts_ms)
                hud_state = "CALIBRATING"

            state.face = preview.last_face
            health = camera.get_health_status()
            viz, _ = hud.render(
                frame, state.transforms, state.face, hud_state,
                fps=health["fps_actual"], camera_health=health,
                calibration=preview.current_settings(),
            )

            key = _show(args, viz)
            if key in (ord('w'), ord('W')):
                preview.adjust_offset(-1)  # negative = up
            elif key in (ord('s'), ord('S')):
                preview.adjust_offset(1)
            elif key in (ord('+'), ord('=')):
                preview.adjust_scale(1)
            elif key in (ord('-'), ord('_')):
                preview.adjust_scale(-1)
            elif key in (13, 10):
                preview.save()
                break
            elif key in (ord('q'), ord('Q'), 27):
                _log.info("Calibration closed without saving")
                break
    except KeyboardInterrupt:
        _log.info("Interrupted by user")
    finally:
        preview.close()
        controller.close()
        camera.release()

    if statuses:
        status = statuses[-1]
        if not status.ok:
            _log.error("Calibration NOT saved: %s (local values kept: %s)",
                       status.error, status.settings.to_dict())
            return 1
        _log.info("Calibration saved: %s", status.settings.to_dict())
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Tryon-Overlay Launcher")
    parser.add_argument("--source", type=str, default=str(config_value("camera", "camera_id", 0)),
                        help="Camera ID (0, 1, etc.) or Video File Path")
    parser.add_argument("--product", type=str, default="demo", help="Product id in the settings store")
    parser.add_argument("--type", type=str, choices=[t.value for t in TryOnType],
                        help="Override the stored try-on type for this run")
    parser.add_argument("--calibrate", action="store_true", help="Open the calibration preview")
    parser.add_argument("--store", type=str, default=None, help="Settings JSON file")
    parser.add_argument("--model", type=str, default=None, help="Face landmarker model path or URL")
    parser.add_argument("--audit", action="store_true", help="Enable audit trail logging")
    parser.add_argument("--headless", action="store_true", help="Run without UI window")
    parser.add_argument("--width", type=int, default=config_value("camera", "width", 640))
    parser.add_argument("--height", type=int, default=config_value("camera", "height", 480))
    args = parser.parse_args(argv)

    # Component loggers share the launcher's console handler.
    for name in ("TryOnTracker", "TryOnFaceMesh", "TryOnCamera", "TryOnCalibration",
                 "TryOnSettings", "TryOnChannel", "TryOnHUD"):
        setup_logger(name, _log.level)

    audit = get_logger(config_value("logging", "audit_dir", "logs")) if args.audit else None
    store = JsonSettingsStore(args.store, audit=audit)
    settings = store.get_try_on_settings(args.product)
    if args.type:
        settings = replace(settings, try_on_enabled=True, try_on_type=TryOnType(args.type))

    print("=" * 60)
    print("  Tryon-Overlay — Starting...")
    print(f"  Source:   {args.source}")
    print(f"  Product:  {args.product}")
    print(f"  Settings: {settings.to_dict()}")
    print(f"  Mode:     {'Calibration' if args.calibrate else 'Try-on'}")
    print("=" * 60)

    if not settings.try_on_enabled or settings.try_on_type is None:
        _log.warning("Try-on is disabled for %s; use --type to pick an accessory", args.product)
        return 1

    try:
        if args.calibrate:
            return run_calibration(args, store, settings, audit)
        return run_tryon(args, settings, audit)
    except DetectorInitError as e:
        # Caller-level fallback: no AR, configurator only.
        _log.error("Face tracking unavailable: %s", e)
        return 2
    except SettingsValidationError as e:
        _log.error("Invalid settings: %s", e)
        return 1
    finally:
        if not args.headless:
            cv2.destroyAllWindows()
        if audit is not None:
            audit.close()


if __name__ == "__main__":
    sys.exit(main())
