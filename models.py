"""Core data models for the app."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class SessionState(str, Enum):
    IDLE = "IDLE"
    RECORDING = "RECORDING"
    ENCODING = "ENCODING"
    AWAITING_FEEDBACK = "AWAITING_FEEDBACK"
    READY = "READY"
    FAILED = "FAILED"


TERMINAL_STATES = frozenset({SessionState.READY, SessionState.FAILED})


class FeedbackMode(str, Enum):
    STRUCTURED = "structured"
    FREEFORM = "freeform"


@dataclass
class AudioChunk:
    pcm16_bytes: bytes
    sample_rate: int = 16000
    channels: int = 1
    timestamp_ms: int = 0


# ---------------------------------------------------------------
# Feedback schemas, validated once at the service boundary
# ---------------------------------------------------------------


class _FeedbackModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class WordScore(_FeedbackModel):
    word: str = Field(min_length=1)
    score: Optional[int] = Field(default=None, ge=0, le=100)
    is_correct: Optional[bool] = None
    comment: Optional[str] = None

    @model_validator(mode="after")
    def _require_score_or_verdict(self) -> "WordScore":
        if self.score is None and self.is_correct is None:
            raise ValueError("word entry needs either a score or is_correct")
        return self


class PronunciationFeedback(_FeedbackModel):
    overall_score: int = Field(ge=0, le=100)
    overall_assessment: str = Field(min_length=1)
    word_scores: Optional[List[WordScore]] = None
    suggestions: Optional[List[str]] = None


class FreeformFeedback(_FeedbackModel):
    feedback: str = Field(min_length=1)


FeedbackResult = Union[PronunciationFeedback, FreeformFeedback]


# ---------------------------------------------------------------
# Session
# ---------------------------------------------------------------


@dataclass
class SessionError:
    code: str
    message: str
    retryable: bool = False


@dataclass
class RecordingSession:
    """State of one record-and-score attempt.

    A new session replaces the previous one wholesale, so chunks from two
    attempts never mix. ``feedback`` and ``error`` are only ever set in
    ``READY`` and ``FAILED`` respectively.
    """

    session_id: int
    practice_text: str
    state: SessionState = SessionState.IDLE
    mime_type: str = ""
    captured_chunks: List[AudioChunk] = field(default_factory=list)
    encoded_audio: Optional[str] = None
    elapsed_ms: int = 0
    feedback: Optional[FeedbackResult] = None
    error: Optional[SessionError] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES
