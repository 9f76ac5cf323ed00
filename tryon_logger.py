"""
Tryon-Overlay — Structured Audit Logger
=======================================
Records session lifecycle, calibration and settings events in
JSONL (newline-delimited JSON) for post-mortem analysis.

Key Features:
  - One JSON object per line
  - Thread-safe, flushed writes
  - Levels: AUDIT, WARN, ERROR, SYSTEM
  - NumPy / dataclass / enum aware encoding
"""

import dataclasses
import enum
import json
import logging
import os
import sys
import threading
import time
from typing import Any, Dict, Optional

import numpy as np

_log = logging.getLogger("TryOnAudit")


class TryOnJSONEncoder(json.JSONEncoder):
    """Handles NumPy, dataclass and enum values for JSON serialization."""
    def default(self, obj):
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, enum.Enum):
            return obj.value
        if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
            return dataclasses.asdict(obj)
        return super().default(obj)


class TryOnLogger:
    """
    Audit log writer for Tryon-Overlay.

    Frame-rate events are not written here; callers log only
    transitions (face lost, tracking started) and operator actions.
    """

    def __init__(self, log_dir: str = "logs", filename: str = "tryon_audit.jsonl"):
        self.log_dir = log_dir
        os.makedirs(self.log_dir, exist_ok=True)

        self.log_path = os.path.join(self.log_dir, filename)
        self._file = open(self.log_path, "a", encoding="utf-8")
        self._lock = threading.Lock()

        self.log({
            "event": "system_startup",
            "python_version": sys.version,
            "platform": sys.platform,
        }, level="SYSTEM")

    def log(self, data: Dict[str, Any], level: str = "AUDIT", event: Optional[str] = None):
        """Append log entry."""
        entry = {
            "timestamp": time.time(),
            "level": level,
            "event": event or data.get("event", "unknown"),
            "data": data,
        }

        line = json.dumps(entry, cls=TryOnJSONEncoder) + "\n"

        with self._lock:
            if self._file.closed:
                return
            self._file.write(line)
            self._file.flush()

    def event(self, name: str, **data: Any):
        """Log an AUDIT event by name."""
        self.log(data, level="AUDIT", event=name)

    def warn(self, message: str, context: Optional[Dict] = None):
        """Log structured warning."""
        _log.warning(message)
        self.log({"message": message, "context": context}, level="WARN", event="system_warning")

    def error(self, message: str, exception: Optional[Exception] = None, **kwargs):
        """Log structured error with exception details."""
        _log.error(message, **kwargs)
        err_details = str(exception) if exception else None
        self.log({"message": message, "exception": err_details}, level="ERROR", event="system_error")

    def close(self):
        """Clean shutdown."""
        if self._file.closed:
            return
        self.log({"message": "Logger shutting down"}, level="SYSTEM", event="system_shutdown")
        with self._lock:
            self._file.close()


# Use singleton if simple access needed
_logger = None


def get_logger(log_dir: str = "logs") -> TryOnLogger:
    global _logger
    if _logger is None:
        _logger = TryOnLogger(log_dir)
    return _logger
