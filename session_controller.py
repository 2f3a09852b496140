"""State-machine based recording session orchestration."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Callable, Optional

from encoder import encode_chunks, pick_mime_type, total_duration_ms
from errors import (
    ERROR_MESSAGES,
    INPUT_INVALID,
    CoachError,
    DeviceUnavailableError,
    EncodingFailureError,
    ServiceMalformedOutputError,
    ServiceTransportError,
)
from interfaces import CaptureDevice, FeedbackService, Ticker
from models import AudioChunk, FeedbackResult, RecordingSession, SessionError, SessionState
from ticker import ThreadTicker

logger = logging.getLogger(__name__)

StateCallback = Callable[[SessionState, SessionState], None]
ProgressCallback = Callable[[int, int], None]
ErrorCallback = Callable[[str, str], None]
FeedbackCallback = Callable[[FeedbackResult], None]

_ACTIVE_CAPTURE_STATES = (SessionState.RECORDING, SessionState.ENCODING)


class SessionController:
    def __init__(
        self,
        capture: CaptureDevice,
        feedback_service: FeedbackService,
        ticker: Optional[Ticker] = None,
        max_duration_ms: int = 15000,
        tick_ms: int = 100,
        on_state_change: Optional[StateCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_feedback: Optional[FeedbackCallback] = None,
    ) -> None:
        if max_duration_ms <= 0 or tick_ms <= 0:
            raise ValueError("max_duration_ms and tick_ms must be positive")
        self._capture = capture
        self._feedback_service = feedback_service
        self._ticker = ticker or ThreadTicker()
        self._max_duration_ms = max_duration_ms
        self._tick_ms = tick_ms
        self._on_state_change = on_state_change
        self._on_progress = on_progress
        self._on_error = on_error
        self._on_feedback = on_feedback

        self._lock = threading.RLock()
        self._session: Optional[RecordingSession] = None
        self._session_counter = 0
        self._handle: Any = None
        self._chunks: "queue.Queue[tuple[int, AudioChunk]]" = queue.Queue()
        self._settled = threading.Event()
        self._settled.set()

    @property
    def state(self) -> SessionState:
        session = self._session
        return session.state if session is not None else SessionState.IDLE

    @property
    def session(self) -> Optional[RecordingSession]:
        return self._session

    @property
    def max_duration_ms(self) -> int:
        return self._max_duration_ms

    def start_session(self, practice_text: str) -> bool:
        """Begin a new attempt; returns True once recording is under way."""
        text = (practice_text or "").strip()
        with self._lock:
            if self.state in _ACTIVE_CAPTURE_STATES:
                logger.debug("start ignored: capture already active")
                return False
            if not text:
                self._emit_error(INPUT_INVALID, ERROR_MESSAGES[INPUT_INVALID])
                return False
            try:
                mime_type = pick_mime_type(self._capture.is_type_supported)
            except DeviceUnavailableError as exc:
                logger.warning("No usable audio encoding: %s", exc.detail)
                self._emit_error(exc.code, exc.message)
                return False

            if self.state == SessionState.AWAITING_FEEDBACK:
                logger.info("Abandoning pending feedback for session %d", self._session.session_id)
            self._ticker.cancel()
            self._discard_chunks()

            from_state = self.state
            self._session_counter += 1
            session = RecordingSession(
                session_id=self._session_counter,
                practice_text=text,
                mime_type=mime_type,
            )
            self._session = session
            self._settled.clear()
            logger.info("Session %d started with %s", session.session_id, mime_type)

            try:
                handle = self._capture.acquire()
            except DeviceUnavailableError as exc:
                self._fail(session, exc, from_state=from_state)
                return False

            try:
                self._capture.on_chunk(handle, lambda chunk: self._handle_chunk(session.session_id, chunk))
            except DeviceUnavailableError as exc:
                # The stream never started, so no callback can be in flight.
                self._close_device(handle)
                self._fail(session, exc, from_state=from_state)
                return False
            self._handle = handle

            self._transition(session, SessionState.RECORDING, from_state=from_state)
            self._ticker.start(self._tick_ms / 1000.0, lambda: self._handle_tick(session.session_id))
            return True

    def stop_session(self) -> None:
        self._stop_recording()

    def cancel_session(self, reason: str) -> None:
        """Tear the current session down and return to IDLE."""
        with self._lock:
            session = self._session
            if session is None:
                return
            logger.info("Session %d cancelled: %s", session.session_id, reason)
            handle = self._detach_device()
            self._discard_chunks()
            from_state = session.state
            self._session = None
            self._notify(from_state, SessionState.IDLE)
            self._settled.set()
        self._close_device(handle)

    def wait_until_settled(self, timeout: Optional[float] = None) -> bool:
        return self._settled.wait(timeout)

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def _handle_chunk(self, session_id: int, chunk: AudioChunk) -> None:
        # Called on the audio thread; never waits on self._lock.
        self._chunks.put_nowait((session_id, chunk))

    def _handle_tick(self, session_id: int) -> None:
        with self._lock:
            session = self._current(session_id)
            if session is None or session.state != SessionState.RECORDING:
                return
            self._drain_chunks(session)
            session.elapsed_ms = min(session.elapsed_ms + self._tick_ms, self._max_duration_ms)
            if self._on_progress:
                self._on_progress(session.elapsed_ms, self._max_duration_ms)
            if session.elapsed_ms < self._max_duration_ms:
                return
            logger.info("Session %d reached the %d ms limit", session_id, self._max_duration_ms)
        self._stop_recording(session_id)

    def _stop_recording(self, session_id: Optional[int] = None) -> None:
        with self._lock:
            session = self._session
            if session is None or session.state != SessionState.RECORDING or self._handle is None:
                return
            if session_id is not None and session.session_id != session_id:
                return
            handle = self._detach_device()
            self._transition(session, SessionState.ENCODING)

        # Stopping waits for the audio callback, so it runs without the lock held.
        self._close_device(handle)

        with self._lock:
            if self._current(session.session_id) is None or session.state != SessionState.ENCODING:
                return
            self._drain_chunks(session)
            try:
                encoded = encode_chunks(session.captured_chunks, session.mime_type)
            except EncodingFailureError as exc:
                self._fail(session, exc)
                return
            session.encoded_audio = encoded
            logger.info(
                "Session %d encoded %d ms of audio (%d chunks)",
                session.session_id,
                total_duration_ms(session.captured_chunks),
                len(session.captured_chunks),
            )
            self._transition(session, SessionState.AWAITING_FEEDBACK)
            worker = threading.Thread(
                target=self._request_feedback,
                args=(session.session_id, session.practice_text, encoded),
                daemon=True,
            )
            worker.start()

    def _request_feedback(self, session_id: int, practice_text: str, encoded_audio: str) -> None:
        try:
            result = self._feedback_service.get_feedback(practice_text, encoded_audio)
        except CoachError as exc:
            self._complete(session_id, error=exc)
            return
        except Exception as exc:
            logger.exception("Unexpected feedback failure")
            self._complete(session_id, error=ServiceTransportError(detail=str(exc)))
            return
        self._complete(session_id, feedback=result)

    def _complete(
        self,
        session_id: int,
        feedback: Optional[FeedbackResult] = None,
        error: Optional[CoachError] = None,
    ) -> None:
        with self._lock:
            session = self._current(session_id)
            if session is None or session.state != SessionState.AWAITING_FEEDBACK:
                logger.info("Dropping stale feedback result for session %d", session_id)
                return
            if error is None and feedback is None:
                error = ServiceMalformedOutputError()
            if error is not None:
                self._fail(session, error)
                return
            session.feedback = feedback
            self._transition(session, SessionState.READY)
            if self._on_feedback and feedback is not None:
                self._on_feedback(feedback)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _current(self, session_id: int) -> Optional[RecordingSession]:
        session = self._session
        if session is None or session.session_id != session_id:
            return None
        return session

    def _fail(
        self,
        session: RecordingSession,
        exc: CoachError,
        from_state: Optional[SessionState] = None,
    ) -> None:
        logger.warning("Session %d failed [%s]: %s %s", session.session_id, exc.code, exc.message, exc.detail)
        self._ticker.cancel()
        session.feedback = None
        session.error = SessionError(code=exc.code, message=exc.message, retryable=exc.retryable)
        self._transition(session, SessionState.FAILED, from_state=from_state)
        self._emit_error(exc.code, exc.message)

    def _detach_device(self) -> Any:
        """Cancel the ticker and hand back the capture handle for closing."""
        self._ticker.cancel()
        handle, self._handle = self._handle, None
        return handle

    def _close_device(self, handle: Any) -> None:
        if handle is None:
            return
        try:
            self._capture.stop(handle)
        except Exception as exc:  # pragma: no cover - device specific
            logger.warning("Stopping capture failed: %s", exc)
        try:
            self._capture.release(handle)
        except Exception as exc:  # pragma: no cover - device specific
            logger.warning("Releasing capture failed: %s", exc)

    def _drain_chunks(self, session: RecordingSession) -> None:
        while True:
            try:
                session_id, chunk = self._chunks.get_nowait()
            except queue.Empty:
                return
            if session_id == session.session_id:
                session.captured_chunks.append(chunk)

    def _discard_chunks(self) -> None:
        while True:
            try:
                self._chunks.get_nowait()
            except queue.Empty:
                return

    def _emit_error(self, code: str, message: str) -> None:
        if self._on_error:
            self._on_error(code, message)

    def _transition(
        self,
        session: RecordingSession,
        to_state: SessionState,
        from_state: Optional[SessionState] = None,
    ) -> None:
        if from_state is None:
            from_state = session.state
        session.state = to_state
        if session.is_terminal:
            self._settled.set()
        self._notify(from_state, to_state)

    def _notify(self, from_state: SessionState, to_state: SessionState) -> None:
        if from_state == to_state:
            return
        logger.debug("State %s -> %s", from_state.value, to_state.value)
        if self._on_state_change:
            self._on_state_change(from_state, to_state)
