"""
Tryon-Overlay — Config + Launcher Tests
=======================================
"""

from __future__ import annotations

import logging
import os
from unittest.mock import MagicMock, patch

import tryon
from tryon_face_pipeline import DetectorInitError
from tryon_settings import JsonSettingsStore
from tryon_types import CalibrationSettings, TryOnType
from tryon_utils import CONFIG, PROJECT_ROOT, config_value, load_config, resolve_path, setup_logger


# ─── Config ───────────────────────────────────────────────────

def test_shipped_config_has_every_section():
    for section in ("detector", "camera", "tracking", "pose", "settings", "logging"):
        assert section in CONFIG, section
    assert CONFIG["detector"]["max_faces"] == 1
    assert CONFIG["detector"]["refine_landmarks"] is True
    assert CONFIG["pose"]["smoothing_alpha"] is None
    assert set(CONFIG["pose"]["base_model_scale"]) == {t.value for t in TryOnType}


def test_load_config_from_explicit_path(tmp_path):
    path = tmp_path / "alt.yaml"
    path.write_text("tracking:\n  strict: true\n", encoding="utf-8")
    assert load_config(str(path)) == {"tracking": {"strict": True}}

    empty = tmp_path / "empty.yaml"
    empty.write_text("", encoding="utf-8")
    assert load_config(str(empty)) == {}


def test_config_value_defaults():
    assert config_value("detector", "min_detection_confidence") == 0.5
    assert config_value("detector", "no_such_key", 7) == 7
    assert config_value("no_such_section", "x", "fallback") == "fallback"


def test_resolve_path():
    assert resolve_path("models") == os.path.join(PROJECT_ROOT, "models")
    absolute = os.path.abspath(os.sep + "tmp")
    assert resolve_path(absolute) == absolute


def test_setup_logger_is_idempotent():
    logger = setup_logger("TryOnTestLogger", logging.DEBUG)
    again = setup_logger("TryOnTestLogger", logging.WARNING)
    assert logger is again
    assert len(logger.handlers) == 1
    assert logger.level == logging.WARNING


# ─── Launcher ─────────────────────────────────────────────────

def test_launcher_refuses_disabled_product(tmp_path):
    store_path = str(tmp_path / "settings.json")
    assert tryon.main(["--product", "sku-off", "--store", store_path, "--headless"]) == 1


def test_launcher_falls_back_when_detector_unavailable(tmp_path):
    store_path = str(tmp_path / "settings.json")
    JsonSettingsStore(store_path).update_try_on_settings(
        "sku-1", CalibrationSettings(True, TryOnType.GLASSES, 0.0, 1.0),
    )
    detector = MagicMock()
    detector.initialize.side_effect = DetectorInitError("model asset not found")
    camera = MagicMock()

    with patch("tryon.FaceMeshDetector", return_value=detector), \
         patch("tryon.TryOnCamera", return_value=camera):
        code = tryon.main(["--product", "sku-1", "--store", store_path, "--headless"])

    assert code == 2
    camera.release.assert_called()


def test_launcher_runs_headless_until_source_ends(tmp_path, face_frame):
    store_path = str(tmp_path / "settings.json")
    detector = MagicMock()
    detector.is_initialized = True
    detector.detect.return_value = [face_frame]

    frame = MagicMock()
    camera = MagicMock()
    camera.read_validated_frame.side_effect = [(True, frame, 1.0), (True, frame, 1.033)] + \
        [(False, None, 0.0)] * tryon.MAX_READ_FAILURES
    camera.is_opened.return_value = True
    camera.is_stalled.return_value = False
    camera.get_health_status.return_value = {"fps_actual": 30.0, "drop_rate_pct": 0.0}

    with patch("tryon.FaceMeshDetector", return_value=detector), \
         patch("tryon.TryOnCamera", return_value=camera), \
         patch("tryon.TryOnHUD") as hud_cls:
        hud_cls.return_value.render.return_value = (frame, 0.0)
        code = tryon.main(["--product", "sku-1", "--type", "hat",
                           "--store", store_path, "--headless"])

    assert code == 0
    assert detector.detect.call_count == 2
    transforms = hud_cls.return_value.render.call_args.args[1]
    assert [t.anchor for t in transforms] == ["forehead_top"]
    # --type overrides for this run only; nothing is persisted.
    assert not os.path.exists(store_path)


def test_launcher_hides_overlay_when_camera_stalls(tmp_path, face_frame):
    detector = MagicMock()
    detector.is_initialized = True
    detector.detect.return_value = [face_frame]

    frame = MagicMock()
    camera = MagicMock()
    camera.read_validated_frame.side_effect = [(True, frame, 1.0)] + \
        [(False, None, 0.0)] * tryon.MAX_READ_FAILURES
    camera.is_opened.return_value = True
    camera.is_stalled.return_value = True
    camera.get_health_status.return_value = {"fps_actual": 0.0, "drop_rate_pct": 50.0}

    with patch("tryon.FaceMeshDetector", return_value=detector), \
         patch("tryon.TryOnCamera", return_value=camera), \
         patch("tryon.TryOnHUD") as hud_cls:
        hud_cls.return_value.render.return_value = (frame, 0.0)
        code = tryon.main(["--product", "sku-1", "--type", "glasses",
                           "--store", str(tmp_path / "settings.json"), "--headless"])

    assert code == 0
    tracking, stalled = hud_cls.return_value.render.call_args_list
    assert tracking.args[3] == "TRACKING" and len(tracking.args[1]) == 1
    # Last good frame, no overlay, error state; reported once per stall.
    assert stalled.args[0] is frame
    assert stalled.args[1] == [] and stalled.args[2] is None
    assert stalled.args[3] == "CAMERA_ERROR"
