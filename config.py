"""Simple JSON-based config store and session-config assembly."""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from app_paths import get_config_file_path, get_logger, get_models_dir
from catalog import DICTATION_MODEL, build_asset, load_catalog, vocab_path_for
from models import ActionKind, PostProcessOptions, ScriptVariant, SessionConfig
from postprocess import primary_language

if TYPE_CHECKING:
    from provisioning import ModelProvisioningManager

logger = get_logger(__name__)

AUTO_LANGUAGE = "auto"

# Whisper language codes.
SUPPORTED_LANGUAGES = frozenset(
    """
    af am ar as az ba be bg bn bo br bs ca cs cy da de el en es et eu fa fi fo fr
    gl gu ha haw he hi hr ht hu hy id is it ja jw ka kk km kn ko la lb ln lo lt lv
    mg mi mk ml mn mr ms mt my ne nl nn no oc pa pl ps pt ro ru sa sd si sk sl sn
    so sq sr su sv sw ta te tg th tk tl tr tt uk ur uz vi yi yo yue zh
    """.split()
)

DEFAULTS: dict[str, Any] = {
    "model_name": DICTATION_MODEL,
    "language": AUTO_LANGUAGE,
    "script_variant": ScriptVariant.ORIGINAL.value,
    "action": ActionKind.TRANSCRIBE.value,
    "hotkey": "Key.alt_l",
    "auto_mode": False,
    "recording_budget_s": 30.0,
    "models": {},
}


def normalize_language(tag: Optional[str]) -> str:
    """``"zh-TW"`` -> ``"zh"``; empty or unknown tags become ``"auto"``."""
    code = primary_language(tag)
    if not code or code == AUTO_LANGUAGE:
        return AUTO_LANGUAGE
    if code not in SUPPORTED_LANGUAGES:
        logger.warning("Unsupported language tag %r, falling back to auto-detect", tag)
        return AUTO_LANGUAGE
    return code


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or get_config_file_path()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def get(self, key: str, default: Any = None) -> Any:
        data = self._read_all()
        if key in data:
            return data[key]
        if default is not None:
            return default
        return DEFAULTS.get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._read_all()
            data[key] = value
            self._write_all(data)

    def remove(self, *keys: str) -> None:
        with self._lock:
            data = self._read_all()
            changed = False
            for key in keys:
                if key in data:
                    del data[key]
                    changed = True
            if changed:
                self._write_all(data)

    def get_hotkey(self) -> str:
        return str(self.get("hotkey"))

    def set_hotkey(self, hotkey: str) -> None:
        self.set("hotkey", hotkey)

    def get_language(self) -> str:
        return normalize_language(self.get("language"))

    def get_script_variant(self) -> ScriptVariant:
        raw = self.get("script_variant")
        try:
            return ScriptVariant(raw)
        except ValueError:
            logger.warning("Unknown script variant %r in settings", raw)
            return ScriptVariant.ORIGINAL

    def get_action(self) -> ActionKind:
        raw = self.get("action")
        try:
            return ActionKind(raw)
        except ValueError:
            logger.warning("Unknown action %r in settings", raw)
            return ActionKind.TRANSCRIBE

    def get_auto_mode(self) -> bool:
        return bool(self.get("auto_mode"))

    def get_recording_budget_s(self) -> float:
        try:
            value = float(self.get("recording_budget_s"))
        except (TypeError, ValueError):
            return float(DEFAULTS["recording_budget_s"])
        return value if value > 0 else float(DEFAULTS["recording_budget_s"])

    def get_model_name(self) -> str:
        return str(self.get("model_name") or DICTATION_MODEL)

    def get_model_overrides(self) -> dict:
        raw = self.get("models")
        return raw if isinstance(raw, dict) else {}

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            logger.warning("Settings file %s unreadable, using defaults", self._path)
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")


def build_session_config(
    store: JsonConfigStore,
    manager: "ModelProvisioningManager",
    language_override: Optional[str] = None,
    action_override: Optional[ActionKind] = None,
    models_dir: Optional[Path] = None,
) -> SessionConfig:
    """Assemble a ``SessionConfig`` from stored preferences.

    ``language_override`` is a caller-provided tag (for example from a system
    recognizer request) and wins over the stored language when present.
    """
    models_dir = models_dir or get_models_dir()
    catalog = load_catalog(store.get_model_overrides())
    name = store.get_model_name()
    spec = catalog.get(name)
    if spec is None:
        logger.warning("Unknown model %r in settings, using %s", name, DICTATION_MODEL)
        spec = catalog[DICTATION_MODEL]

    # Re-registering picks up edited url or checksum overrides.
    asset = manager.register(build_asset(spec, models_dir))

    language = normalize_language(language_override) if language_override else store.get_language()
    return SessionConfig(
        asset=asset,
        vocab_path=vocab_path_for(spec, models_dir),
        is_multilingual=spec.is_multilingual,
        language_token=language if spec.is_multilingual else "en",
        action_kind=action_override or store.get_action(),
        options=PostProcessOptions(script_variant=store.get_script_variant()),
        recording_budget_s=store.get_recording_budget_s(),
    )
