"""Microphone capture adapter."""

from __future__ import annotations

import threading
from typing import Any, Optional

from app_paths import get_logger
from interfaces import CaptureListener
from models import AudioBuffer, CaptureEvent, CaptureKind

try:
    import numpy as np
except Exception:  # pragma: no cover
    np = None  # type: ignore

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

logger = get_logger(__name__)

# int16 RMS below this is treated as silence / a dead input device.
DEFAULT_SILENCE_RMS = 30.0


def pcm16_rms(pcm: bytes) -> float:
    if np is None or len(pcm) < 2:
        return 0.0
    samples = np.frombuffer(pcm[: len(pcm) - len(pcm) % 2], dtype=np.int16).astype(np.float32)
    if samples.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(samples * samples)))


class SoundDeviceCapture:
    """Buffers 16-bit mono PCM from the default input device until stopped.

    ``stop`` hands the whole recording to the listener as a STOPPED event, or
    an ERROR event when nothing audible was captured.
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        channels: int = 1,
        chunk_ms: int = 100,
        silence_rms: float = DEFAULT_SILENCE_RMS,
    ) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.chunk_ms = chunk_ms
        self.silence_rms = silence_rms
        self._stream: Any = None
        self._running = False
        self._lock = threading.Lock()
        self._chunks: list[bytes] = []
        self._listener: Optional[CaptureListener] = None
        self.overflow_count = 0

    def set_listener(self, listener: Optional[CaptureListener]) -> None:
        self._listener = listener

    def is_in_progress(self) -> bool:
        return self._running

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            if sd is None or np is None:
                raise RuntimeError("sounddevice/numpy is not installed")
            self._chunks = []
            self.overflow_count = 0
            blocksize = int(self.sample_rate * (self.chunk_ms / 1000.0))
            stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="int16",
                blocksize=blocksize,
                callback=self._on_audio,
            )
            stream.start()
            self._stream = stream
            self._running = True
        logger.info("Capture started (%d Hz, %d ch)", self.sample_rate, self.channels)
        self._emit(CaptureEvent(kind=CaptureKind.STARTED.value))

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
            stream, self._stream = self._stream, None
            pcm = b"".join(self._chunks)
            self._chunks = []
        if stream is not None:
            try:
                stream.stop()
            finally:
                stream.close()

        audio = AudioBuffer(pcm16_bytes=pcm, sample_rate=self.sample_rate, channels=self.channels)
        rms = pcm16_rms(pcm)
        logger.info("Capture stopped: %.2fs, rms=%.1f, overflows=%d", audio.duration_s, rms, self.overflow_count)
        if not pcm or rms < self.silence_rms:
            self._emit(CaptureEvent(kind=CaptureKind.ERROR.value, reason="no input"))
            return
        self._emit(CaptureEvent(kind=CaptureKind.STOPPED.value, buffer=audio))

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        if status:
            self.overflow_count += 1
        if not self._running:
            return
        payload = np.asarray(indata, dtype=np.int16).tobytes()
        with self._lock:
            if self._running:
                self._chunks.append(payload)

    def _emit(self, event: CaptureEvent) -> None:
        listener = self._listener
        if listener is not None:
            listener(event)
