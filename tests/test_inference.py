"""Tests for WhisperCppEngine."""

from __future__ import annotations

import threading
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import numpy as np
import pytest

from catalog import DEFAULT_MODELS, PRIMARY_MODEL, build_asset
from inference import GGML_MAGIC, WhisperCppEngine, is_ggml_model, join_segments, pcm16_to_float32
from models import ActionKind, AudioBuffer, InferenceEvent, InferenceKind

AUDIO = AudioBuffer(pcm16_bytes=np.array([0, 16384, -16384, 32767], dtype=np.int16).tobytes())


# ---------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------

class FakeWhisperCppModel:
    instances: list["FakeWhisperCppModel"] = []

    def __init__(self, path: str, **kwargs: Any) -> None:
        self.path = path
        self.kwargs = kwargs
        self.calls: list[dict] = []
        self.detect_calls = 0
        self.segments = [" Hello", " world. "]
        self.language = "en"
        self.error: Exception | None = None
        FakeWhisperCppModel.instances.append(self)

    def auto_detect_language(self, audio, n_threads: int = 4):  # noqa: ANN001, ANN201
        self.detect_calls += 1
        return (self.language, 0.9), {self.language: 0.9}

    def transcribe(self, audio, new_segment_callback=None, **kwargs):  # noqa: ANN001, ANN201
        self.calls.append({"audio": audio, **kwargs})
        if self.error is not None:
            raise self.error
        segments = [SimpleNamespace(text=text) for text in self.segments]
        for segment in segments:
            if new_segment_callback is not None:
                new_segment_callback(segment)
        return segments


@pytest.fixture(autouse=True)
def _reset_instances() -> None:
    FakeWhisperCppModel.instances = []


def _ggml_file(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(GGML_MAGIC + b"\x00" * 32)
    return path


def _run(engine: WhisperCppEngine, audio: AudioBuffer = AUDIO) -> list[InferenceEvent]:
    events: list[InferenceEvent] = []
    done = threading.Event()

    def listener(event: InferenceEvent) -> None:
        events.append(event)
        if event.kind != InferenceKind.PARTIAL.value:
            done.set()

    engine.set_listener(listener)
    engine.start(audio)
    assert done.wait(timeout=5)
    engine._thread.join(timeout=5)
    return events


def _engine(tmp_path: Path, multilingual: bool = True) -> WhisperCppEngine:
    engine = WhisperCppEngine(model_factory=FakeWhisperCppModel)
    engine.configure(_ggml_file(tmp_path / "ggml-model.bin"), tmp_path / "vocab.bin", multilingual)
    return engine


# ---------------------------------------------------------------
# Transcription
# ---------------------------------------------------------------

def test_partials_then_final(tmp_path: Path) -> None:
    events = _run(_engine(tmp_path))

    assert [e.kind for e in events] == ["partial", "partial", "final"]
    assert events[0].text == "Hello"
    assert events[1].text == "Hello world."
    assert events[-1].text == "Hello world."
    assert events[-1].language == "en"


def test_chinese_segments_are_joined_without_spaces(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    engine.set_language("zh")
    _run(engine)
    FakeWhisperCppModel.instances[0].segments = ["你好，", "世界。"]

    events = _run(engine)

    assert events[0].text == "你好，"
    assert events[-1].kind == InferenceKind.FINAL.value
    assert events[-1].text == "你好，世界。"
    assert events[-1].language == "zh"


def test_join_segments_keeps_word_spacing() -> None:
    assert join_segments([" It's", " fine."]) == "It's fine."
    assert join_segments(["東京", "へ", "行く。"]) == "東京へ行く。"
    assert join_segments([]) == ""


def test_model_created_with_quiet_options(tmp_path: Path) -> None:
    _run(_engine(tmp_path))

    model = FakeWhisperCppModel.instances[0]
    assert model.path == str(tmp_path / "ggml-model.bin")
    assert model.kwargs["n_threads"] == 4
    assert model.kwargs["print_realtime"] is False


def test_auto_language_detects_before_transcribing(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    _run(engine)
    model = FakeWhisperCppModel.instances[0]
    model.language = "ja"

    events = _run(engine)

    assert model.detect_calls == 2
    assert model.calls[-1]["language"] == "ja"
    assert model.calls[-1]["translate"] is False
    assert events[-1].language == "ja"


def test_language_and_translate_forwarded(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    engine.set_language("zh")
    engine.set_action(ActionKind.TRANSLATE)

    _run(engine)

    model = FakeWhisperCppModel.instances[0]
    assert model.detect_calls == 0
    assert model.calls[0]["language"] == "zh"
    assert model.calls[0]["translate"] is True


def test_english_only_model_forces_english(tmp_path: Path) -> None:
    engine = _engine(tmp_path, multilingual=False)
    engine.set_language("zh")
    engine.set_action(ActionKind.TRANSLATE)

    _run(engine)

    call = FakeWhisperCppModel.instances[0].calls[0]
    assert call["language"] == "en"
    assert call["translate"] is False


def test_model_loaded_once_and_reloaded_after_reconfigure(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    _run(engine)
    _run(engine)
    assert len(FakeWhisperCppModel.instances) == 1

    other = _ggml_file(tmp_path / "ggml-other.bin")
    engine.configure(other, None, True)
    _run(engine)
    assert len(FakeWhisperCppModel.instances) == 2
    assert FakeWhisperCppModel.instances[-1].path == str(other)


def test_unload_drops_model(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    _run(engine)

    engine.unload()
    _run(engine)

    assert len(FakeWhisperCppModel.instances) == 2


def test_transcribe_failure_emits_error(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    _run(engine)
    FakeWhisperCppModel.instances[0].error = RuntimeError("bad tensor")

    events = _run(engine)

    assert events[-1].kind == InferenceKind.ERROR.value
    assert "bad tensor" in events[-1].message


def test_missing_library_emits_error(tmp_path: Path) -> None:
    engine = WhisperCppEngine(model_factory=None)
    engine._model_factory = None
    engine.configure(_ggml_file(tmp_path / "ggml-model.bin"), None, True)

    events = _run(engine)

    assert events[-1].kind == InferenceKind.ERROR.value


def test_start_requires_configuration() -> None:
    with pytest.raises(RuntimeError):
        WhisperCppEngine(model_factory=FakeWhisperCppModel).start(AUDIO)


# ---------------------------------------------------------------
# Model format
# ---------------------------------------------------------------

def test_configure_rejects_tflite_model(tmp_path: Path) -> None:
    asset = build_asset(DEFAULT_MODELS[PRIMARY_MODEL], tmp_path)
    asset.local_path.write_bytes(b"\x1c\x00\x00\x00TFL3" + b"\x00" * 32)
    engine = WhisperCppEngine(model_factory=FakeWhisperCppModel)

    with pytest.raises(ValueError, match="whisper-large-v3.tflite is not a whisper.cpp ggml model"):
        engine.configure(asset.local_path, None, True)

    with pytest.raises(RuntimeError):
        engine.start(AUDIO)
    assert FakeWhisperCppModel.instances == []


def test_is_ggml_model(tmp_path: Path) -> None:
    assert is_ggml_model(_ggml_file(tmp_path / "ggml-tiny.bin"))
    (tmp_path / "short.bin").write_bytes(b"lm")
    assert not is_ggml_model(tmp_path / "short.bin")
    assert not is_ggml_model(tmp_path / "missing.bin")


# ---------------------------------------------------------------
# PCM conversion
# ---------------------------------------------------------------

def test_pcm16_to_float32_scales_samples() -> None:
    samples = pcm16_to_float32(AUDIO)

    assert samples.dtype == np.float32
    assert samples.tolist() == pytest.approx([0.0, 0.5, -0.5, 32767 / 32768])


def test_pcm16_to_float32_mixes_down_stereo() -> None:
    stereo = AudioBuffer(
        pcm16_bytes=np.array([16384, 0, -16384, -16384], dtype=np.int16).tobytes(),
        channels=2,
    )

    assert pcm16_to_float32(stereo).tolist() == pytest.approx([0.25, -0.5])
