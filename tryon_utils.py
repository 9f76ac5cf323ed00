"""
Tryon-Overlay — Shared Utility Module
=====================================
Config loading and console logging shared by every tryon_* module.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Optional

import yaml

# ─── Configuration ────────────────────────────────────────────
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
_config_path = os.path.join(PROJECT_ROOT, "config.yaml")


def load_config(path: Optional[str] = None) -> dict:
    """Load configuration from config.yaml.

    A missing default file yields {} so every component falls back to its
    built-in defaults; an explicit path must exist.
    """
    target = path or _config_path
    if path is None and not os.path.exists(target):
        return {}
    with open(target, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


CONFIG = load_config()


def config_value(section: str, key: str, default: Any = None) -> Any:
    """Read CONFIG[section][key], falling back to default."""
    return (CONFIG.get(section) or {}).get(key, default)


def resolve_path(path: str) -> str:
    """Resolve a config-relative path against the project root."""
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


# ─── Logging Setup ───────────────────────────────────────────
def setup_logger(name: str, level: int | str = logging.INFO) -> logging.Logger:
    """Create a configured logger for Tryon-Overlay modules."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            "[%(asctime)s] %(name)-12s %(levelname)-7s %(message)s",
            datefmt="%H:%M:%S",
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(level)
    return logger
