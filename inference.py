"""On-device Whisper inference adapter using whisper.cpp (pywhispercpp).

whisper.cpp loads a single ggml model file, so the provisioned asset path is
handed to it as is. ``configure`` refuses files that are not ggml models
(for example the TFLite export) before any session reaches transcription.

The model is loaded lazily on the first transcription and kept until
``configure`` points at a different file or ``unload`` is called. Each
``start`` runs one transcription on a daemon worker thread; segments are
reported as PARTIAL events carrying the text accumulated so far, followed by
a single FINAL (or ERROR) event.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Optional

from app_paths import get_logger
from interfaces import InferenceListener
from models import ActionKind, AudioBuffer, InferenceEvent, InferenceKind

try:
    import numpy as np
except Exception:  # pragma: no cover
    np = None  # type: ignore

try:
    from pywhispercpp.model import Model as WhisperCppModel
except Exception:  # pragma: no cover
    WhisperCppModel = None  # type: ignore

logger = get_logger(__name__)

AUTO_LANGUAGE = "auto"
# whisper.cpp writes GGML_FILE_MAGIC (0x67676d6c) little-endian.
GGML_MAGIC = b"lmgg"


def pcm16_to_float32(audio: AudioBuffer) -> Any:
    """Little-endian int16 PCM to a mono float32 array in [-1, 1]."""
    pcm = audio.pcm16_bytes
    samples = np.frombuffer(pcm[: len(pcm) - len(pcm) % 2], dtype=np.int16).astype(np.float32) / 32768.0
    if audio.channels > 1:
        usable = samples.size - samples.size % audio.channels
        samples = samples[:usable].reshape(-1, audio.channels).mean(axis=1)
    return samples


def is_ggml_model(path: Path) -> bool:
    try:
        with open(path, "rb") as fh:
            return fh.read(len(GGML_MAGIC)) == GGML_MAGIC
    except OSError:
        return False


def join_segments(texts: list[str]) -> str:
    # Segments carry their own leading space where the language uses one.
    return "".join(texts).strip()


class WhisperCppEngine:
    def __init__(self, n_threads: int = 4, model_factory: Any = None) -> None:
        self.n_threads = n_threads
        self._model_factory = model_factory or WhisperCppModel
        self._model: Any = None
        self._model_lock = threading.Lock()
        self._model_path: Optional[Path] = None
        self._vocab_path: Optional[Path] = None
        self._multilingual = True
        self._language = AUTO_LANGUAGE
        self._action = ActionKind.TRANSCRIBE
        self._listener: Optional[InferenceListener] = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    def set_listener(self, listener: Optional[InferenceListener]) -> None:
        self._listener = listener

    def configure(self, model_path: Path, vocab_path: Optional[Path], is_multilingual: bool) -> None:
        path = Path(model_path)
        if not is_ggml_model(path):
            raise ValueError(f"{path.name} is not a whisper.cpp ggml model")
        with self._model_lock:
            if path != self._model_path:
                self._model = None
            self._model_path = path
            # ggml files embed their own vocabulary.
            self._vocab_path = vocab_path
            self._multilingual = is_multilingual
        logger.info("Inference configured: model=%s multilingual=%s", path, is_multilingual)

    def set_language(self, token: str) -> None:
        self._language = token or AUTO_LANGUAGE

    def set_action(self, action: ActionKind) -> None:
        self._action = action

    def start(self, audio: AudioBuffer) -> None:
        if self._model_path is None:
            raise RuntimeError("inference engine is not configured")
        # A cancelled run may still be decoding; it keeps its own stop flag and listener.
        self._stop_event.set()
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._worker,
            args=(audio, self._transcribe_kwargs(), self._listener, self._stop_event),
            name="whisper-inference",
            daemon=True,
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=0.5)

    def unload(self) -> None:
        self.stop()
        with self._model_lock:
            self._model = None
        logger.info("Inference model unloaded")

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _load_model(self) -> Any:
        with self._model_lock:
            if self._model is None:
                if self._model_factory is None:
                    raise RuntimeError("pywhispercpp is not installed")
                logger.info("Loading whisper model from %s", self._model_path)
                self._model = self._model_factory(
                    str(self._model_path),
                    n_threads=self.n_threads,
                    print_progress=False,
                    print_realtime=False,
                    print_timestamps=False,
                    print_special=False,
                )
            return self._model

    def _transcribe_kwargs(self) -> dict:
        language = self._language
        if not self._multilingual:
            language = "en"
        translate = self._action == ActionKind.TRANSLATE and self._multilingual
        return {"language": language, "translate": translate}

    def _worker(
        self,
        audio: AudioBuffer,
        options: dict,
        listener: Optional[InferenceListener],
        stop_event: threading.Event,
    ) -> None:
        try:
            if np is None:
                raise RuntimeError("numpy is not installed")
            model = self._load_model()
            samples = pcm16_to_float32(audio)
            options = dict(options)
            language = options["language"]
            if language == AUTO_LANGUAGE:
                (language, _probability), _ = model.auto_detect_language(samples, n_threads=self.n_threads)
                logger.info("Detected language: %s", language)
                options["language"] = language

            parts: list[str] = []

            def on_segment(segment: Any) -> None:
                if stop_event.is_set():
                    return
                parts.append(segment.text)
                self._emit(listener, InferenceEvent(kind=InferenceKind.PARTIAL.value, text=join_segments(parts)))

            segments = model.transcribe(samples, new_segment_callback=on_segment, **options)
            if stop_event.is_set():
                return
            text = join_segments([segment.text for segment in segments])
            self._emit(listener, InferenceEvent(kind=InferenceKind.FINAL.value, text=text, language=language))
        except Exception as exc:
            logger.exception("Inference failed")
            if not stop_event.is_set():
                self._emit(listener, InferenceEvent(kind=InferenceKind.ERROR.value, message=str(exc)))

    @staticmethod
    def _emit(listener: Optional[InferenceListener], event: InferenceEvent) -> None:
        if listener is not None:
            listener(event)
