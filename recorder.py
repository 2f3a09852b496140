"""Microphone capture adapter and playback of recorded attempts."""

from __future__ import annotations

import io
import logging
import threading
import time
import wave
from typing import Any, Optional, Union

from encoder import MIME_FLAC, MIME_WAV, decode_data_uri, writer_available
from errors import DeviceUnavailableError, EncodingFailureError
from interfaces import ChunkCallback
from models import AudioChunk

try:
    import numpy as np
except Exception:  # pragma: no cover
    np = None  # type: ignore

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

try:
    import soundfile as sf
except Exception:  # pragma: no cover
    sf = None  # type: ignore

logger = logging.getLogger(__name__)


class CaptureHandle:
    """One acquired input stream. Only the adapter touches its internals."""

    def __init__(self, sample_rate: int, channels: int) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.stream: Any = None
        self.callback: Optional[ChunkCallback] = None
        self.running = False
        self.released = False
        self.lock = threading.Lock()


class SoundDeviceCapture:
    def __init__(
        self,
        sample_rate: int = 16000,
        channels: int = 1,
        chunk_ms: int = 100,
        device: Union[int, str, None] = None,
    ) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.chunk_ms = chunk_ms
        self.device = device

    def is_type_supported(self, mime_type: str) -> bool:
        if sd is None or np is None:
            return False
        return writer_available(mime_type)

    def acquire(self) -> CaptureHandle:
        if sd is None:
            raise DeviceUnavailableError("sounddevice is not installed")
        handle = CaptureHandle(self.sample_rate, self.channels)
        blocksize = int(self.sample_rate * (self.chunk_ms / 1000.0))
        try:
            handle.stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="int16",
                blocksize=blocksize,
                device=self.device,
                callback=lambda indata, frames, time_info, status: self._on_audio(
                    handle, indata, frames, time_info, status
                ),
            )
        except Exception as exc:
            raise DeviceUnavailableError(detail=f"could not open input stream: {exc}") from exc
        logger.debug("Input stream opened at %d Hz, %d channel(s)", self.sample_rate, self.channels)
        return handle

    def on_chunk(self, handle: CaptureHandle, callback: ChunkCallback) -> None:
        with handle.lock:
            if handle.released or handle.running:
                return
            handle.callback = callback
            try:
                handle.stream.start()
            except Exception as exc:
                raise DeviceUnavailableError(detail=f"could not start input stream: {exc}") from exc
            handle.running = True

    def stop(self, handle: CaptureHandle) -> None:
        # stream.stop() waits for the block in flight; that block is still delivered.
        with handle.lock:
            if not handle.running:
                return
            try:
                if handle.stream is not None:
                    handle.stream.stop()
            finally:
                handle.running = False

    def release(self, handle: CaptureHandle) -> None:
        with handle.lock:
            if handle.released:
                return
            handle.running = False
            handle.released = True
            handle.callback = None
            if handle.stream is not None:
                try:
                    handle.stream.close()
                finally:
                    handle.stream = None

    def _on_audio(self, handle: CaptureHandle, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        # PortAudio thread: the callback must hand the chunk off without blocking.
        if status:
            logger.debug("Input stream status: %s", status)
        callback = handle.callback
        if not handle.running or callback is None or np is None:
            return
        payload = np.asarray(indata, dtype=np.int16).tobytes()
        callback(
            AudioChunk(
                pcm16_bytes=payload,
                sample_rate=handle.sample_rate,
                channels=handle.channels,
                timestamp_ms=int(time.time() * 1000),
            )
        )


def load_data_uri_samples(data_uri: str) -> tuple[Any, int]:
    """Decode a recorded data URI into an int16 sample array and its rate."""
    if np is None:
        raise RuntimeError("numpy is not installed")
    mime_type, data = decode_data_uri(data_uri)
    if mime_type == MIME_WAV:
        with wave.open(io.BytesIO(data), "rb") as wf:
            channels = wf.getnchannels()
            sample_rate = wf.getframerate()
            raw = wf.readframes(wf.getnframes())
        samples = np.frombuffer(raw, dtype=np.int16).reshape(-1, channels)
        return samples, sample_rate
    if mime_type == MIME_FLAC:
        if sf is None:
            raise RuntimeError("soundfile is not installed")
        samples, sample_rate = sf.read(io.BytesIO(data), dtype="int16", always_2d=True)
        return samples, sample_rate
    raise EncodingFailureError(detail=f"cannot play {mime_type}")


def play_data_uri(data_uri: str, blocking: bool = True) -> None:
    if sd is None:
        raise RuntimeError("sounddevice is not installed")
    samples, sample_rate = load_data_uri_samples(data_uri)
    sd.play(samples, sample_rate)
    if blocking:
        sd.wait()
