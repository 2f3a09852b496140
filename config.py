"""Simple JSON-based config store."""

from __future__ import annotations

import json
import os
from pathlib import Path

DEFAULT_MODEL = "qwen-audio-turbo"
DEFAULT_FEEDBACK_MODE = "structured"
DEFAULT_MAX_DURATION_MS = 15000
DEFAULT_SAMPLE_RATE = 16000


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path.home() / ".config" / "pronunciation_coach" / "config.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    def get_api_key(self) -> str:
        data = self._read_all()
        return str(data.get("api_key", "") or os.getenv("DASHSCOPE_API_KEY", ""))

    def set_api_key(self, key: str) -> None:
        self._set("api_key", key)

    def get_model(self) -> str:
        return str(self._read_all().get("model", DEFAULT_MODEL))

    def set_model(self, model: str) -> None:
        self._set("model", model)

    def get_feedback_mode(self) -> str:
        mode = str(self._read_all().get("feedback_mode", DEFAULT_FEEDBACK_MODE))
        return mode if mode in ("structured", "freeform") else DEFAULT_FEEDBACK_MODE

    def set_feedback_mode(self, mode: str) -> None:
        self._set("feedback_mode", mode)

    def get_max_duration_ms(self) -> int:
        return self._get_positive_int("max_duration_ms", DEFAULT_MAX_DURATION_MS)

    def set_max_duration_ms(self, value: int) -> None:
        self._set("max_duration_ms", int(value))

    def get_sample_rate(self) -> int:
        return self._get_positive_int("sample_rate", DEFAULT_SAMPLE_RATE)

    def _get_positive_int(self, name: str, default: int) -> int:
        try:
            value = int(self._read_all().get(name, default))
        except (TypeError, ValueError):
            return default
        return value if value > 0 else default

    def _set(self, name: str, value: object) -> None:
        data = self._read_all()
        data[name] = value
        self._write_all(data)

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
