"""Delivers finished transcriptions into the focused application."""

from __future__ import annotations

import sys
import time
from typing import Callable, Optional

from app_paths import get_logger
from errors import NO_ACTIVE_TARGET
from interfaces import PasteService
from models import PasteResult, SessionEvent, SessionEventKind

try:
    import pyperclip
except Exception:  # pragma: no cover
    pyperclip = None  # type: ignore

try:
    from pynput.keyboard import Controller, Key
except Exception:  # pragma: no cover
    Controller = None  # type: ignore
    Key = None  # type: ignore

logger = get_logger(__name__)


def _paste_modifier():  # noqa: ANN202
    return Key.cmd if sys.platform == "darwin" else Key.ctrl


class ClipboardPasteService:
    def __init__(self, restore_delay_s: float = 0.1) -> None:
        self._restore_delay_s = restore_delay_s

    def paste_text(self, text: str) -> PasteResult:
        if not text.strip():
            return PasteResult(success=False, reason="empty text", clipboard_restored=True)
        if pyperclip is None or Controller is None or Key is None:
            return PasteResult(
                success=False,
                reason="clipboard/keyboard dependency missing",
                clipboard_restored=False,
            )

        old_clip: str | None = None
        try:
            old_clip = pyperclip.paste()
            pyperclip.copy(text)
            keyboard = Controller()
            modifier = _paste_modifier()
            keyboard.press(modifier)
            keyboard.press("v")
            keyboard.release("v")
            keyboard.release(modifier)
            time.sleep(self._restore_delay_s)
            pyperclip.copy(old_clip)
            return PasteResult(success=True, reason="ok", clipboard_restored=True)
        except Exception as exc:
            # Leave the transcription on the clipboard so the user can paste it by hand.
            logger.warning("Paste failed: %s", exc)
            return PasteResult(
                success=False,
                reason=f"{NO_ACTIVE_TARGET}: {exc}",
                clipboard_restored=False,
            )


class ResultDelivery:
    """Session listener that pastes each RESULT event's text.

    Paste runs on whatever thread emitted the event; ``on_delivered`` receives
    the ``PasteResult`` so the host can surface failures.
    """

    def __init__(
        self,
        paste_service: PasteService,
        on_delivered: Optional[Callable[[PasteResult], None]] = None,
    ) -> None:
        self._paste_service = paste_service
        self._on_delivered = on_delivered

    def __call__(self, event: SessionEvent) -> None:
        if event.kind != SessionEventKind.RESULT.value or not event.text:
            return
        result = self._paste_service.paste_text(event.text)
        if not result.success:
            logger.info("Session %d result not pasted: %s", event.session_id, result.reason)
        if self._on_delivered is not None:
            self._on_delivered(result)
