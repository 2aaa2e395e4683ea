from __future__ import annotations

from pathlib import Path

from catalog import DICTATION_MODEL, PRIMARY_MODEL
from config import JsonConfigStore, build_session_config, normalize_language
from models import ActionKind, ScriptVariant
from provisioning import ModelProvisioningManager


def test_config_read_write(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    store = JsonConfigStore(path=path)

    assert store.get_hotkey() == "Key.alt_l"
    assert store.get_model_name() == DICTATION_MODEL
    assert store.get_auto_mode() is False

    store.set_hotkey("Key.alt_r")
    store.set("script_variant", "traditional")
    store.set("auto_mode", True)

    reloaded = JsonConfigStore(path=path)
    assert reloaded.get_hotkey() == "Key.alt_r"
    assert reloaded.get_script_variant() == ScriptVariant.TRADITIONAL
    assert reloaded.get_auto_mode() is True


def test_config_invalid_json_fallback(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text("{invalid", encoding="utf-8")

    store = JsonConfigStore(path=path)
    assert store.get_hotkey() == "Key.alt_l"
    assert store.get_language() == "auto"
    assert store.get_recording_budget_s() == 30.0


def test_remove_keys(tmp_path: Path) -> None:
    store = JsonConfigStore(path=tmp_path / "settings.json")
    store.set("model_name", "custom")
    store.set("recognition_service_model_name", "custom")
    store.set("language", "de")

    store.remove("model_name", "recognition_service_model_name")

    assert store.get_model_name() == DICTATION_MODEL
    assert store.get("recognition_service_model_name") is None
    assert store.get_language() == "de"


def test_invalid_values_fall_back(tmp_path: Path) -> None:
    store = JsonConfigStore(path=tmp_path / "settings.json")
    store.set("script_variant", "klingon")
    store.set("action", "summarize")
    store.set("recording_budget_s", -4)

    assert store.get_script_variant() == ScriptVariant.ORIGINAL
    assert store.get_action() == ActionKind.TRANSCRIBE
    assert store.get_recording_budget_s() == 30.0


def test_normalize_language() -> None:
    assert normalize_language("zh-TW") == "zh"
    assert normalize_language("en_US") == "en"
    assert normalize_language("") == "auto"
    assert normalize_language(None) == "auto"
    assert normalize_language("xx-YY") == "auto"


def test_build_session_config_from_preferences(tmp_path: Path) -> None:
    store = JsonConfigStore(path=tmp_path / "settings.json")
    store.set("language", "zh-Hant")
    store.set("script_variant", "simplified")
    store.set("action", "translate")
    store.set("recording_budget_s", 12)
    manager = ModelProvisioningManager(models_dir=tmp_path)

    config = build_session_config(store, manager, models_dir=tmp_path)

    assert config.asset.logical_name == DICTATION_MODEL
    assert config.asset.local_path == tmp_path / "ggml-large-v3.bin"
    assert config.asset.checksum_algorithm == "sha1"
    assert config.asset is manager.get_asset(DICTATION_MODEL)
    assert config.vocab_path == tmp_path / "filters_vocab_multilingual.bin"
    assert config.is_multilingual is True
    assert config.language_token == "zh"
    assert config.action_kind == ActionKind.TRANSLATE
    assert config.options.script_variant == ScriptVariant.SIMPLIFIED
    assert config.recording_budget_s == 12.0


def test_tflite_model_can_still_be_selected(tmp_path: Path) -> None:
    store = JsonConfigStore(path=tmp_path / "settings.json")
    store.set("model_name", PRIMARY_MODEL)
    manager = ModelProvisioningManager(models_dir=tmp_path)

    config = build_session_config(store, manager, models_dir=tmp_path)

    assert config.asset.local_path == tmp_path / "whisper-large-v3.tflite"
    assert config.asset.expected_checksum == "b346515bc5e3d8178680577da0cc2d99"


def test_caller_language_overrides_preference(tmp_path: Path) -> None:
    store = JsonConfigStore(path=tmp_path / "settings.json")
    store.set("language", "de")
    manager = ModelProvisioningManager(models_dir=tmp_path)

    config = build_session_config(store, manager, language_override="fr-CA", models_dir=tmp_path)

    assert config.language_token == "fr"


def test_english_only_catalog_entry(tmp_path: Path) -> None:
    store = JsonConfigStore(path=tmp_path / "settings.json")
    store.set(
        "models",
        {
            "tiny-en": {
                "filename": "ggml-tiny.en.bin",
                "url": "https://example.invalid/ggml-tiny.en.bin",
                "checksum": "ABCDEF",
            }
        },
    )
    store.set("model_name", "tiny-en")
    store.set("language", "ja")
    manager = ModelProvisioningManager(models_dir=tmp_path)

    config = build_session_config(store, manager, models_dir=tmp_path)

    assert config.is_multilingual is False
    assert config.vocab_path == tmp_path / "filters_vocab_en.bin"
    assert config.language_token == "en"
    assert config.asset.expected_checksum == "abcdef"


def test_edited_override_replaces_registered_asset(tmp_path: Path) -> None:
    store = JsonConfigStore(path=tmp_path / "settings.json")
    manager = ModelProvisioningManager(models_dir=tmp_path)
    first = build_session_config(store, manager, models_dir=tmp_path).asset

    store.set(
        "models",
        {DICTATION_MODEL: {"url": "https://mirror.invalid/ggml-large-v3.bin", "checksum": "ABC123"}},
    )
    second = build_session_config(store, manager, models_dir=tmp_path).asset

    assert second is not first
    assert second.url == "https://mirror.invalid/ggml-large-v3.bin"
    assert second.expected_checksum == "abc123"
    assert manager.get_asset(DICTATION_MODEL) is second
    assert build_session_config(store, manager, models_dir=tmp_path).asset is second


def test_unknown_model_name_falls_back_to_default(tmp_path: Path) -> None:
    store = JsonConfigStore(path=tmp_path / "settings.json")
    store.set("model_name", "gone")
    manager = ModelProvisioningManager(models_dir=tmp_path)

    config = build_session_config(store, manager, models_dir=tmp_path)

    assert config.asset.logical_name == DICTATION_MODEL
