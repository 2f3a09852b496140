"""Turn captured PCM chunks into an audio data URI.

The only bit-exact artifact of the app is the string
``data:<mime-type>;base64,<payload>``. The MIME type is picked from
``MIME_PREFERENCE`` (compressed first) by asking the capture device which
encodings it can produce, and encoding the same chunks twice yields the
same string.
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
import re
import wave
from typing import Callable, Iterable, Sequence

from errors import DeviceUnavailableError, EncodingFailureError
from models import AudioChunk

try:
    import numpy as np
except Exception:  # pragma: no cover
    np = None  # type: ignore

try:
    import soundfile as sf
except Exception:  # pragma: no cover
    sf = None  # type: ignore

logger = logging.getLogger(__name__)

MIME_FLAC = "audio/flac"
MIME_WAV = "audio/wav"

MIME_PREFERENCE: tuple[str, ...] = (MIME_FLAC, MIME_WAV)

_DATA_URI_RE = re.compile(
    r"^data:(?P<mime>audio/[\w.+-]+(?:;[\w.+-]+=[\w.+-]+)*);base64,(?P<payload>[A-Za-z0-9+/]+={0,2})$"
)


def writer_available(mime_type: str) -> bool:
    """Whether this process can container PCM as ``mime_type``."""
    if mime_type == MIME_WAV:
        return True
    if mime_type == MIME_FLAC:
        if sf is None or np is None:
            return False
        try:
            return "FLAC" in sf.available_formats()
        except Exception:  # pragma: no cover - broken libsndfile
            return False
    return False


def pick_mime_type(is_supported: Callable[[str], bool]) -> str:
    for mime_type in MIME_PREFERENCE:
        if is_supported(mime_type):
            logger.debug("Using MIME type: %s", mime_type)
            return mime_type
    raise DeviceUnavailableError(
        "No suitable audio format supported by this device.",
        detail="tried " + ", ".join(MIME_PREFERENCE),
    )


def encode_chunks(chunks: Sequence[AudioChunk], mime_type: str) -> str:
    """Join ``chunks`` in order and return them as a data URI."""
    if not chunks:
        raise EncodingFailureError("No audio was captured.", detail="empty chunk buffer")

    sample_rate = chunks[0].sample_rate
    channels = chunks[0].channels
    for chunk in chunks:
        if chunk.sample_rate != sample_rate or chunk.channels != channels:
            raise EncodingFailureError(detail="chunks disagree on sample rate or channel count")

    pcm = b"".join(chunk.pcm16_bytes for chunk in chunks)
    if not pcm:
        raise EncodingFailureError("No audio was captured.", detail="chunks carry no samples")
    if len(pcm) % (2 * channels):
        raise EncodingFailureError(detail=f"buffer of {len(pcm)} bytes is not whole int16 frames")

    if mime_type == MIME_WAV:
        container = _pcm_to_wav(pcm, sample_rate, channels)
    elif mime_type == MIME_FLAC:
        container = _pcm_to_flac(pcm, sample_rate, channels)
    else:
        raise EncodingFailureError(detail=f"unsupported MIME type {mime_type!r}")

    payload = base64.b64encode(container).decode("ascii")
    return f"data:{mime_type};base64,{payload}"


def _pcm_to_wav(pcm: bytes, sample_rate: int, channels: int) -> bytes:
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)
    return buf.getvalue()


def _pcm_to_flac(pcm: bytes, sample_rate: int, channels: int) -> bytes:
    if sf is None or np is None:
        raise EncodingFailureError(detail="soundfile is not installed")
    samples = np.frombuffer(pcm, dtype=np.int16).reshape(-1, channels)
    buf = io.BytesIO()
    try:
        sf.write(buf, samples, sample_rate, format="FLAC", subtype="PCM_16")
    except Exception as exc:
        raise EncodingFailureError(detail=f"FLAC writer failed: {exc}") from exc
    return buf.getvalue()


def is_audio_data_uri(value: str) -> bool:
    return bool(value) and _DATA_URI_RE.match(value) is not None


def decode_data_uri(value: str) -> tuple[str, bytes]:
    """Split a data URI into its MIME type and raw container bytes."""
    match = _DATA_URI_RE.match(value or "")
    if match is None:
        raise EncodingFailureError(detail="not an audio data URI")
    try:
        data = base64.b64decode(match.group("payload"), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise EncodingFailureError(detail=f"bad base64 payload: {exc}") from exc
    return match.group("mime"), data


def total_duration_ms(chunks: Iterable[AudioChunk]) -> int:
    total = 0.0
    for chunk in chunks:
        frames = len(chunk.pcm16_bytes) // (2 * chunk.channels)
        total += frames * 1000.0 / chunk.sample_rate
    return int(total)
