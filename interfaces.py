"""Protocol interfaces used by SessionController."""

from __future__ import annotations

from typing import Any, Callable, Protocol

from models import AudioChunk, FeedbackResult

ChunkCallback = Callable[[AudioChunk], None]


class CaptureDevice(Protocol):
    def is_type_supported(self, mime_type: str) -> bool: ...

    def acquire(self) -> Any: ...

    def on_chunk(self, handle: Any, callback: ChunkCallback) -> None: ...

    def stop(self, handle: Any) -> None: ...

    def release(self, handle: Any) -> None: ...


class FeedbackService(Protocol):
    def get_feedback(self, practice_text: str, encoded_audio: str) -> FeedbackResult: ...


class Ticker(Protocol):
    def start(self, interval_s: float, callback: Callable[[], None]) -> None: ...

    def cancel(self) -> None: ...

