"""Core data models for provisioning and transcription sessions."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional


class AssetState(str, Enum):
    ABSENT = "ABSENT"
    DOWNLOADING = "DOWNLOADING"
    VERIFY_FAILED = "VERIFY_FAILED"
    READY = "READY"


class SessionState(str, Enum):
    IDLE = "IDLE"
    RECORDING = "RECORDING"
    RECORDING_FAILED = "RECORDING_FAILED"
    TRANSCRIBING = "TRANSCRIBING"
    INFERENCE_FAILED = "INFERENCE_FAILED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


ACTIVE_STATES = frozenset({SessionState.RECORDING, SessionState.TRANSCRIBING})


class ActionKind(str, Enum):
    TRANSCRIBE = "transcribe"
    TRANSLATE = "translate"


class ScriptVariant(str, Enum):
    ORIGINAL = "original"
    SIMPLIFIED = "simplified"
    TRADITIONAL = "traditional"


class FetchStatus(str, Enum):
    SUCCESS = "success"
    CHECKSUM_MISMATCH = "checksum_mismatch"
    TRANSFER_FAILED = "transfer_failed"


class CaptureKind(str, Enum):
    STARTED = "started"
    STOPPED = "stopped"
    ERROR = "error"


class InferenceKind(str, Enum):
    PARTIAL = "partial"
    FINAL = "final"
    ERROR = "error"


class SessionEventKind(str, Enum):
    STATE = "state"
    RECORDING_STARTED = "recording_started"
    PARTIAL = "partial"
    RESULT = "result"
    CANCELLED = "cancelled"
    ERROR = "error"


TERMINAL_EVENT_KINDS = frozenset(
    {SessionEventKind.RESULT, SessionEventKind.CANCELLED, SessionEventKind.ERROR}
)


@dataclass
class ModelAsset:
    """One required on-device file.

    ``state`` is owned by the provisioning manager; ``expected_size_bytes`` is
    only used for progress display.
    """

    logical_name: str
    local_path: Path
    expected_checksum: str
    expected_size_bytes: int = 0
    url: str = ""
    checksum_algorithm: str = "md5"
    state: AssetState = AssetState.ABSENT

    @property
    def staging_path(self) -> Path:
        return self.local_path.with_name(self.local_path.name + ".part")


@dataclass
class AudioBuffer:
    pcm16_bytes: bytes
    sample_rate: int = 16000
    channels: int = 1

    @property
    def duration_s(self) -> float:
        frame_width = 2 * max(self.channels, 1)
        return len(self.pcm16_bytes) / frame_width / float(self.sample_rate)


@dataclass
class CaptureEvent:
    kind: str
    buffer: Optional[AudioBuffer] = None
    reason: str = ""


@dataclass
class InferenceEvent:
    kind: str
    text: str = ""
    language: str = ""
    message: str = ""


@dataclass(frozen=True)
class PostProcessOptions:
    script_variant: ScriptVariant = ScriptVariant.ORIGINAL


@dataclass(frozen=True)
class SessionConfig:
    asset: ModelAsset
    vocab_path: Optional[Path] = None
    is_multilingual: bool = True
    language_token: str = "auto"
    action_kind: ActionKind = ActionKind.TRANSCRIBE
    options: PostProcessOptions = field(default_factory=PostProcessOptions)
    recording_budget_s: float = 30.0


@dataclass(frozen=True)
class SessionHandle:
    session_id: int


@dataclass
class TranscriptionSession:
    session_id: int
    language_token: str
    action_kind: ActionKind
    deadline: float
    state: SessionState = SessionState.IDLE
    stop_requested: bool = False
    detected_language: str = ""
    raw_result: Optional[str] = None
    post_processed_result: Optional[str] = None


@dataclass
class FetchOutcome:
    status: FetchStatus
    logical_name: str
    bytes_written: int = 0
    checksum: str = ""
    code: str = ""
    message: str = ""

    @property
    def success(self) -> bool:
        return self.status == FetchStatus.SUCCESS


@dataclass
class SessionEvent:
    kind: str
    session_id: int
    text: str = ""
    language: str = ""
    code: str = ""
    message: str = ""
    from_state: Optional[SessionState] = None
    to_state: Optional[SessionState] = None

    @property
    def is_terminal(self) -> bool:
        return self.kind in {k.value for k in TERMINAL_EVENT_KINDS}


@dataclass
class ProvisionResult:
    copied: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass
class PasteResult:
    success: bool
    reason: str
    clipboard_restored: bool
