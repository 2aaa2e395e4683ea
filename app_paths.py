"""Data directories and logging setup."""

from __future__ import annotations

import logging
import os
import sys
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

APP_VERSION = "0.1.0"
APP_DIR_NAME = "whisper-dictate"
LOG_DIR_NAME = "logs"
MODELS_DIR_NAME = "models"
CONFIG_FILENAME = "settings.json"
LOG_FILENAME = "dictate.log"

_LOG_HANDLER: Optional[RotatingFileHandler] = None
_CONSOLE_HANDLER: Optional[logging.Handler] = None
_LOG_CONFIG_LOCK = threading.Lock()


def get_data_dir() -> Path:
    """
    All persistent data goes here:
      $DICTATE_DATA_DIR if set, else
      %APPDATA%/whisper-dictate (Windows)
      $XDG_CONFIG_HOME/whisper-dictate or ~/.config/whisper-dictate (others)
    Subfolders used:
      models/  logs/  (plus settings.json)
    """
    override = os.environ.get("DICTATE_DATA_DIR", "").strip()
    if override:
        data_dir = Path(override).expanduser()
    elif sys.platform.startswith("win"):
        data_dir = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming")) / APP_DIR_NAME
    else:
        data_dir = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config")) / APP_DIR_NAME
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def get_models_dir() -> Path:
    models_dir = get_data_dir() / MODELS_DIR_NAME
    models_dir.mkdir(parents=True, exist_ok=True)
    return models_dir


def get_logs_dir() -> Path:
    logs_dir = get_data_dir() / LOG_DIR_NAME
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir


def get_config_file_path() -> Path:
    return get_data_dir() / CONFIG_FILENAME


def get_bundle_dir() -> Path:
    """Read-only directory holding the assets shipped with the application."""
    if getattr(sys, "frozen", False):
        base_path = getattr(sys, "_MEIPASS", Path(sys.executable).resolve().parent)
        return Path(base_path) / "assets"
    return Path(__file__).resolve().parent / "assets"


def configure_logging(level: int = logging.INFO) -> logging.Logger:
    global _LOG_HANDLER, _CONSOLE_HANDLER

    with _LOG_CONFIG_LOCK:
        root_logger = logging.getLogger()
        formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        if _LOG_HANDLER is None:
            handler = RotatingFileHandler(
                get_logs_dir() / LOG_FILENAME,
                maxBytes=1_048_576,
                backupCount=5,
                encoding="utf-8",
            )
            handler.setFormatter(formatter)
            handler.setLevel(logging.DEBUG)
            root_logger.addHandler(handler)
            _LOG_HANDLER = handler

        if _CONSOLE_HANDLER is None:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(logging.WARNING)
            console_handler.setFormatter(formatter)
            root_logger.addHandler(console_handler)
            _CONSOLE_HANDLER = console_handler

        if root_logger.level == logging.NOTSET or root_logger.level > level:
            root_logger.setLevel(level)
        logging.captureWarnings(True)
        return root_logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
