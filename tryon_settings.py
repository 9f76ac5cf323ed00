"""
Tryon-Overlay — Per-Product Settings Store
==========================================
Persistence boundary for CalibrationSettings.

Rules enforced on every write:
  - tryOnOffsetY in [-50, 50] (percent of face height, negative = up)
  - tryOnScale in [0.5, 2.0]
  - tryOnType one of the TryOnType catalogue; required when enabled
  - disabled settings are normalized to type=None, offset=0, scale=1

Out-of-range values are rejected with SettingsValidationError, never
clamped. Reads of an unknown product return the disabled defaults.
"""

from __future__ import annotations

import json
import logging
import math
import os
import tempfile
import threading
from typing import Any, Dict, Mapping, Optional, Protocol, Union

from tryon_logger import TryOnLogger
from tryon_types import (
    DEFAULT_OFFSET_Y,
    DEFAULT_SCALE,
    TRUE_STRINGS,
    CalibrationSettings,
    TryOnType,
)
from tryon_utils import config_value, resolve_path

_log = logging.getLogger("TryOnSettings")

# ─── Calibration ranges (admin slider bounds) ─────────────────
OFFSET_Y_MIN = -50.0
OFFSET_Y_MAX = 50.0
OFFSET_Y_STEP = 1.0
SCALE_MIN = 0.5
SCALE_MAX = 2.0
SCALE_STEP = 0.05

DEFAULT_SETTINGS = CalibrationSettings()

SettingsLike = Union[CalibrationSettings, Mapping[str, Any]]


class SettingsValidationError(ValueError):
    """Settings rejected at the persistence boundary."""


class SettingsFileError(ValueError):
    """Settings file exists but does not hold a JSON object of records."""


class SettingsStore(Protocol):
    def get_try_on_settings(self, product_id: str) -> CalibrationSettings: ...
    def update_try_on_settings(self, product_id: str, settings: SettingsLike) -> bool: ...


# ═══════════════════════════════════════════════════════════════
# Validation
# ═══════════════════════════════════════════════════════════════

def _coerce(settings: SettingsLike) -> CalibrationSettings:
    if isinstance(settings, CalibrationSettings):
        return settings
    try:
        return CalibrationSettings.from_dict(dict(settings))
    except (TypeError, ValueError) as e:
        raise SettingsValidationError(f"Malformed settings: {e}") from e


def normalize_settings(settings: SettingsLike) -> CalibrationSettings:
    """Reset type/offset/scale to neutral values when try-on is disabled."""
    settings = _coerce(settings)
    if settings.try_on_enabled:
        return settings
    return CalibrationSettings(
        try_on_enabled=False,
        try_on_type=None,
        try_on_offset_y=DEFAULT_OFFSET_Y,
        try_on_scale=DEFAULT_SCALE,
    )


def validate_settings(settings: SettingsLike) -> CalibrationSettings:
    """Normalize then validate; returns the settings that would be stored.

    Raises:
        SettingsValidationError: out-of-range value, unknown type, or
            enabled without a type.
    """
    settings = normalize_settings(settings)

    offset = settings.try_on_offset_y
    if not math.isfinite(offset) or not OFFSET_Y_MIN <= offset <= OFFSET_Y_MAX:
        raise SettingsValidationError(
            f"tryOnOffsetY={offset} outside [{OFFSET_Y_MIN:g}, {OFFSET_Y_MAX:g}]"
        )

    scale = settings.try_on_scale
    if not math.isfinite(scale) or not SCALE_MIN <= scale <= SCALE_MAX:
        raise SettingsValidationError(
            f"tryOnScale={scale} outside [{SCALE_MIN:g}, {SCALE_MAX:g}]"
        )

    if settings.try_on_enabled and settings.try_on_type is None:
        raise SettingsValidationError("tryOnType is required when try-on is enabled")

    return settings


def parse_settings_form(form: Mapping[str, Any]) -> CalibrationSettings:
    """Build validated settings from admin form fields (all strings).

    Example:
        parse_settings_form({"tryOnEnabled": "true", "tryOnType": "glasses",
                             "tryOnOffsetY": "12", "tryOnScale": "1.3"})
    """
    enabled = str(form.get("tryOnEnabled", "")).strip().lower() in TRUE_STRINGS
    raw_type = form.get("tryOnType") or None

    try:
        try_on_type = TryOnType(str(raw_type).strip().lower()) if raw_type else None
    except ValueError:
        raise SettingsValidationError(f"Unknown tryOnType: {raw_type!r}") from None

    try:
        offset = float(form.get("tryOnOffsetY") or DEFAULT_OFFSET_Y)
        scale = float(form.get("tryOnScale") or DEFAULT_SCALE)
    except (TypeError, ValueError) as e:
        raise SettingsValidationError(f"Non-numeric calibration field: {e}") from e

    return validate_settings(CalibrationSettings(
        try_on_enabled=enabled,
        try_on_type=try_on_type,
        try_on_offset_y=offset,
        try_on_scale=scale,
    ))


# ═══════════════════════════════════════════════════════════════
# JSON file store
# ═══════════════════════════════════════════════════════════════

class JsonSettingsStore:
    """Settings store backed by one JSON file keyed by product id.

    Writes are atomic (temp file + os.replace) and last-writer-wins.
    update_try_on_settings() returns False when the file cannot be read or
    written (I/O error, corrupt JSON) and leaves the file untouched;
    validation errors raise. Reads of a corrupt file log the error and fall
    back to the disabled defaults.
    """

    def __init__(self, path: Optional[str] = None, audit: Optional[TryOnLogger] = None):
        self.path = resolve_path(path or config_value("settings", "store_path", "data/tryon_settings.json"))
        self._audit = audit
        self._lock = threading.Lock()

    def get_try_on_settings(self, product_id: str) -> CalibrationSettings:
        try:
            with self._lock:
                record = self._read_all().get(product_id)
            if record is None:
                return DEFAULT_SETTINGS
            if not isinstance(record, dict):
                raise SettingsFileError(f"Record for {product_id} is not a JSON object")
            return CalibrationSettings.from_dict(record)
        except (OSError, ValueError, TypeError) as e:
            _log.warning("Unreadable settings for %s in %s: %s", product_id, self.path, e)
            if self._audit is not None:
                self._audit.warn("Settings unreadable; using disabled defaults",
                                 {"product_id": product_id, "error": str(e)})
            return DEFAULT_SETTINGS

    def update_try_on_settings(self, product_id: str, settings: SettingsLike) -> bool:
        validated = validate_settings(settings)

        with self._lock:
            try:
                records = self._read_all()
                records[product_id] = validated.to_dict()
                self._write_all(records)
            except (OSError, SettingsFileError) as e:
                _log.error("Failed to persist settings for %s: %s", product_id, e)
                if self._audit is not None:
                    self._audit.error("Settings write failed", exception=e)
                return False

        _log.info("Saved try-on settings for %s: %s", product_id, validated.to_dict())
        if self._audit is not None:
            self._audit.event("settings_saved", product_id=product_id, settings=validated.to_dict())
        return True

    def _read_all(self) -> Dict[str, dict]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            try:
                data = json.load(f)
            except ValueError as e:
                raise SettingsFileError(f"Settings file {self.path} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise SettingsFileError(f"Settings file {self.path} is not a JSON object")
        return data

    def _write_all(self, records: Dict[str, dict]) -> None:
        directory = os.path.dirname(self.path) or "."
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tryon_settings.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(records, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise


class InMemorySettingsStore:
    """Dict-backed store with the same validation rules (tests, demos)."""

    def __init__(self) -> None:
        self._records: Dict[str, CalibrationSettings] = {}

    def get_try_on_settings(self, product_id: str) -> CalibrationSettings:
        return self._records.get(product_id, DEFAULT_SETTINGS)

    def update_try_on_settings(self, product_id: str, settings: SettingsLike) -> bool:
        self._records[product_id] = validate_settings(settings)
        return True
