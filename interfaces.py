"""Protocol interfaces used by the orchestrator, provisioning and host adapters."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Optional, Protocol

from models import ActionKind, AudioBuffer, CaptureEvent, InferenceEvent, ModelAsset

CaptureListener = Callable[[CaptureEvent], None]
InferenceListener = Callable[[InferenceEvent], None]


class AudioCapture(Protocol):
    def set_listener(self, listener: Optional[CaptureListener]) -> None: ...

    def start(self) -> None: ...

    def stop(self) -> None: ...

    def is_in_progress(self) -> bool: ...


class InferenceEngine(Protocol):
    def set_listener(self, listener: Optional[InferenceListener]) -> None: ...

    def configure(
        self, model_path: Path, vocab_path: Optional[Path], is_multilingual: bool
    ) -> None: ...

    def set_language(self, token: str) -> None: ...

    def set_action(self, action: ActionKind) -> None: ...

    def start(self, audio: AudioBuffer) -> None: ...

    def stop(self) -> None: ...

    def unload(self) -> None: ...


class ReadinessGate(Protocol):
    def is_ready(self, asset: ModelAsset) -> bool: ...


class TimerHandle(Protocol):
    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]


class ConfigStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def remove(self, *keys: str) -> None: ...


class PasteService(Protocol):
    def paste_text(self, text: str) -> Any: ...
