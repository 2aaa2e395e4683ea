"""Push-to-talk / toggle global hotkey based on pynput."""

from __future__ import annotations

import threading
from typing import Callable, Optional

from app_paths import get_logger

try:
    from pynput import keyboard
except Exception:  # pragma: no cover
    keyboard = None  # type: ignore

logger = get_logger(__name__)

HOLD = "hold"
TOGGLE = "toggle"


def key_name(key: object) -> str:
    """``Key.alt_l`` for special keys, the bare character for printable ones."""
    char = getattr(key, "char", None)
    if char:
        return char.lower()
    return str(key)


class DictationHotkey:
    """Maps one global key onto begin/end dictation callbacks.

    In ``hold`` mode dictation runs while the key is down. In ``toggle`` mode
    each press alternates between begin and end.
    """

    def __init__(self, hotkey_name: str = "Key.alt_l", mode: str = HOLD) -> None:
        if mode not in (HOLD, TOGGLE):
            raise ValueError(f"unknown hotkey mode: {mode}")
        self._hotkey_name = hotkey_name.lower() if len(hotkey_name) == 1 else hotkey_name
        self._mode = mode
        self._listener: Optional[object] = None
        self._pressed = False
        self._active = False
        self._lock = threading.Lock()
        self._on_begin: Callable[[], None] = lambda: None
        self._on_end: Callable[[], None] = lambda: None

    def start(self, on_begin: Callable[[], None], on_end: Callable[[], None]) -> None:
        if keyboard is None:
            raise RuntimeError("pynput is not installed")
        self._on_begin = on_begin
        self._on_end = on_end
        self._listener = keyboard.Listener(on_press=self.handle_press, on_release=self.handle_release)
        self._listener.start()
        logger.info("Hotkey %s armed (%s mode)", self._hotkey_name, self._mode)

    def stop(self) -> None:
        listener = self._listener
        if listener is not None:
            listener.stop()
            self._listener = None

    def reset(self) -> None:
        """Forget toggle state, e.g. after a session ended on its own."""
        with self._lock:
            self._active = False

    def handle_press(self, key: object) -> None:
        if key_name(key) != self._hotkey_name:
            return
        with self._lock:
            # Key auto-repeat delivers extra presses while held.
            if self._pressed:
                return
            self._pressed = True
            if self._mode == HOLD:
                callback = self._on_begin
            else:
                self._active = not self._active
                callback = self._on_begin if self._active else self._on_end
        callback()

    def handle_release(self, key: object) -> None:
        if key_name(key) != self._hotkey_name:
            return
        with self._lock:
            if not self._pressed:
                return
            self._pressed = False
            if self._mode != HOLD:
                return
        self._on_end()
