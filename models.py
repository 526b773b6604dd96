"""Core data models for the voice trigger."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class SessionState(str, Enum):
    IDLE = "IDLE"
    LISTENING = "LISTENING"
    RESTARTING = "RESTARTING"
    STOPPED = "STOPPED"


class EngineEventKind(str, Enum):
    RESULT = "result"
    ERROR = "error"
    END = "end"


class EngineErrorReason(str, Enum):
    PERMISSION_DENIED = "permission-denied"
    NO_SPEECH = "no-speech"
    NO_MICROPHONE = "no-microphone"
    OTHER = "other"


@dataclass(frozen=True)
class RecognitionResult:
    text: str
    confidence: float = 1.0
    is_final: bool = False


@dataclass
class EngineEvent:
    kind: EngineEventKind
    results: list[RecognitionResult] = field(default_factory=list)
    result_index: int = 0
    reason: EngineErrorReason = EngineErrorReason.OTHER
    message: str = ""

    @classmethod
    def result(cls, *results: RecognitionResult, result_index: int = 0) -> "EngineEvent":
        return cls(kind=EngineEventKind.RESULT, results=list(results), result_index=result_index)

    @classmethod
    def error(cls, reason: EngineErrorReason, message: str = "") -> "EngineEvent":
        return cls(kind=EngineEventKind.ERROR, reason=reason, message=message)

    @classmethod
    def end(cls) -> "EngineEvent":
        return cls(kind=EngineEventKind.END)


@dataclass(frozen=True)
class MatchDecision:
    matched: bool
    phrase: Optional[str] = None


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only copy of a session's state for UI surfaces."""

    state: SessionState
    is_listening: bool
    restart_count: int
    last_result_at: float
    confidence_threshold: float
    min_word_count: int
    inactivity_timeout_ms: int
