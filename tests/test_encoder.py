"""Tests for the data URI encoder."""

from __future__ import annotations

import base64
import io
import wave

import pytest

import encoder
from encoder import (
    MIME_FLAC,
    MIME_WAV,
    decode_data_uri,
    encode_chunks,
    is_audio_data_uri,
    pick_mime_type,
    total_duration_ms,
)
from errors import DeviceUnavailableError, EncodingFailureError
from models import AudioChunk


def _chunk(n_samples: int = 1600, value: bytes = b"\x00\x00", sample_rate: int = 16000) -> AudioChunk:
    return AudioChunk(pcm16_bytes=value * n_samples, sample_rate=sample_rate, channels=1)


# ---------------------------------------------------------------
# MIME selection
# ---------------------------------------------------------------

def test_pick_mime_type_prefers_compressed_format() -> None:
    assert pick_mime_type(lambda m: True) == MIME_FLAC
    assert pick_mime_type(lambda m: m == MIME_WAV) == MIME_WAV


def test_pick_mime_type_fails_when_nothing_supported() -> None:
    with pytest.raises(DeviceUnavailableError, match="No suitable audio format"):
        pick_mime_type(lambda m: False)


def test_flac_writer_unavailable_without_soundfile(monkeypatch) -> None:  # noqa: ANN001
    monkeypatch.setattr(encoder, "sf", None)
    assert encoder.writer_available(MIME_FLAC) is False
    assert encoder.writer_available(MIME_WAV) is True
    assert encoder.writer_available("audio/mp4") is False


# ---------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------

def test_wav_data_uri_joins_chunks_in_order() -> None:
    chunks = [_chunk(4, b"\x01\x00"), _chunk(4, b"\x02\x00")]

    uri = encode_chunks(chunks, MIME_WAV)

    assert uri.startswith("data:audio/wav;base64,")
    mime, data = decode_data_uri(uri)
    assert mime == MIME_WAV
    assert data[:4] == b"RIFF"
    with wave.open(io.BytesIO(data), "rb") as wf:
        assert wf.getframerate() == 16000
        assert wf.getnchannels() == 1
        assert wf.readframes(wf.getnframes()) == b"\x01\x00" * 4 + b"\x02\x00" * 4


def test_encoding_is_deterministic() -> None:
    chunks = [_chunk(1600, b"\x10\x00") for _ in range(5)]
    assert encode_chunks(chunks, MIME_WAV) == encode_chunks(list(chunks), MIME_WAV)


def test_flac_data_uri() -> None:
    pytest.importorskip("soundfile")
    if not encoder.writer_available(MIME_FLAC):
        pytest.skip("libsndfile without FLAC")
    chunks = [_chunk(1600, b"\x10\x00") for _ in range(3)]

    uri = encode_chunks(chunks, MIME_FLAC)

    assert uri.startswith("data:audio/flac;base64,")
    assert base64.b64decode(uri.split(",", 1)[1])[:4] == b"fLaC"
    assert uri == encode_chunks(chunks, MIME_FLAC)


def test_empty_buffer_fails() -> None:
    with pytest.raises(EncodingFailureError):
        encode_chunks([], MIME_WAV)
    with pytest.raises(EncodingFailureError):
        encode_chunks([AudioChunk(pcm16_bytes=b"")], MIME_WAV)


def test_mixed_sample_rates_fail() -> None:
    with pytest.raises(EncodingFailureError):
        encode_chunks([_chunk(sample_rate=16000), _chunk(sample_rate=44100)], MIME_WAV)


def test_partial_frame_fails() -> None:
    with pytest.raises(EncodingFailureError):
        encode_chunks([AudioChunk(pcm16_bytes=b"\x00\x00\x00")], MIME_WAV)


def test_unknown_mime_type_fails() -> None:
    with pytest.raises(EncodingFailureError):
        encode_chunks([_chunk()], "audio/mp4")


# ---------------------------------------------------------------
# Data URI helpers
# ---------------------------------------------------------------

def test_is_audio_data_uri() -> None:
    assert is_audio_data_uri("data:audio/wav;base64,UklGRg==")
    assert is_audio_data_uri("data:audio/webm;codecs=opus;base64,AAAA")
    assert not is_audio_data_uri("")
    assert not is_audio_data_uri("data:image/png;base64,AAAA")
    assert not is_audio_data_uri("data:audio/wav,AAAA")
    assert not is_audio_data_uri("data:audio/wav;base64,")


def test_decode_rejects_non_audio_uri() -> None:
    with pytest.raises(EncodingFailureError):
        decode_data_uri("hello")


def test_total_duration_ms() -> None:
    assert total_duration_ms([_chunk(1600) for _ in range(30)]) == 3000
