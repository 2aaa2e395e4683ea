"""Shared error codes, user-facing messages and typed exceptions."""

from __future__ import annotations

from typing import Optional

from models import AssetState

MODEL_MISSING = "MODEL_MISSING"
MODEL_CORRUPT = "MODEL_CORRUPT"
CHECKSUM_MISMATCH = "CHECKSUM_MISMATCH"
NETWORK_ERROR = "NETWORK_ERROR"
IO_ERROR = "IO_ERROR"
SESSION_ALREADY_ACTIVE = "SESSION_ALREADY_ACTIVE"
RECORDING_FAILED = "RECORDING_FAILED"
INFERENCE_FAILED = "INFERENCE_FAILED"
PERMISSION_DENIED = "PERMISSION_DENIED"
NO_ACTIVE_TARGET = "NO_ACTIVE_TARGET"
DOWNLOAD_CANCELLED = "DOWNLOAD_CANCELLED"

ERROR_MESSAGES = {
    MODEL_MISSING: "No speech model downloaded yet.",
    MODEL_CORRUPT: "The speech model was corrupt and has been removed. Please download it again.",
    CHECKSUM_MISMATCH: "Downloaded model failed verification, please retry.",
    NETWORK_ERROR: "Network failed, please retry.",
    IO_ERROR: "Could not read or write the model file.",
    SESSION_ALREADY_ACTIVE: "A dictation is already in progress.",
    RECORDING_FAILED: "No voice input was detected.",
    INFERENCE_FAILED: "Transcription failed.",
    PERMISSION_DENIED: "Microphone permission is required.",
    NO_ACTIVE_TARGET: "No active input target, result kept in clipboard.",
    DOWNLOAD_CANCELLED: "Model download was cancelled.",
}


def user_message(code: str) -> str:
    return ERROR_MESSAGES.get(code, code)


class DictationError(RuntimeError):
    def __init__(self, code: str, message: str = "") -> None:
        super().__init__(message or user_message(code))
        self.code = code
        self.message = message or user_message(code)


class ModelNotReadyError(DictationError):
    def __init__(self, logical_name: str, state: AssetState) -> None:
        code = MODEL_CORRUPT if state == AssetState.VERIFY_FAILED else MODEL_MISSING
        super().__init__(code, f"{logical_name}: {user_message(code)}")
        self.logical_name = logical_name
        self.state = state


class SessionAlreadyActiveError(DictationError):
    def __init__(self, active_session_id: Optional[int] = None) -> None:
        super().__init__(SESSION_ALREADY_ACTIVE)
        self.active_session_id = active_session_id
