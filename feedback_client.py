"""Pronunciation feedback client using a DashScope multimodal model.

One ``MultiModalConversation.call`` per attempt. Stream-only models are read
to the end before anything is parsed, so callers always get one reply. The recorded
audio goes in as a data URI next to the practice sentence, and the reply is
expected to be a JSON object matching the configured feedback schema. The
reply is validated with pydantic before anything is handed back; a reply that
does not fit is an error, never a partial result.
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any, Dict, Iterable, Optional, Type, Union

from pydantic import ValidationError

from config import DEFAULT_MODEL
from encoder import is_audio_data_uri
from errors import (
    ERROR_MESSAGES,
    SERVICE_MALFORMED_OUTPUT,
    CoachError,
    ConfigError,
    InputInvalidError,
    ServiceMalformedOutputError,
    ServiceRateLimitedError,
    ServiceSafetyRejectedError,
    ServiceTransportError,
)
from models import FeedbackMode, FeedbackResult, FreeformFeedback, PronunciationFeedback

try:
    import dashscope
except Exception:  # pragma: no cover
    dashscope = None  # type: ignore

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a friendly English pronunciation coach. Be concise and encouraging. "
    "Reply with a single JSON object and nothing else."
)

STRUCTURED_PROMPT = """Listen to the attached recording of a learner reading this text aloud:

"{text}"

Evaluate how accurately it was pronounced and answer with JSON using exactly these keys:
- "overallScore": integer from 0 (very poor) to 100 (native-like)
- "overallAssessment": one sentence, e.g. "Good effort, some sounds need work"
- "wordScores": list of {{"word": str, "score": integer 0-100, "comment": optional str}} for key or problematic words
- "suggestions": 1-3 specific, actionable tips (e.g. "Focus on the 'th' sound in 'the'"); say so if pronunciation is excellent
"""

FREEFORM_PROMPT = """Listen to the attached recording of a learner reading this text aloud:

"{text}"

Give specific, actionable feedback on clarity and accuracy. Answer with JSON: {{"feedback": str}}
"""

_RATE_LIMIT_PATTERN = re.compile(
    r"(?<![\w-])429(?![\w-])|\bresource[_ ]exhausted\b|\bthrottl\w*|\brate[ _-]?limit|\bquota exceeded\b",
    re.IGNORECASE,
)
_SAFETY_PATTERN = re.compile(
    r"\bdata ?inspection ?failed\b|\binappropriate content\b|\bcontent filter|\bsafety\b",
    re.IGNORECASE,
)
_STREAM_ONLY_PREFIXES = ("qwen-omni", "qwen2.5-omni", "qwen3-omni")


@dataclass
class ClientResult:
    """Outcome of building a client: exactly one of ``client``/``error``."""

    client: Optional["DashscopeFeedbackClient"] = None
    error: Optional[ConfigError] = None

    @property
    def ok(self) -> bool:
        return self.client is not None


def create_feedback_client(
    api_key: str = "",
    model: str = DEFAULT_MODEL,
    mode: FeedbackMode | str = FeedbackMode.STRUCTURED,
    request_timeout_s: float = 30.0,
) -> ClientResult:
    if dashscope is None:
        return ClientResult(error=ConfigError(detail="dashscope is not installed"))
    key = api_key or os.getenv("DASHSCOPE_API_KEY", "")
    if not key:
        return ClientResult(
            error=ConfigError("AI feedback is not configured: no DashScope API key set.", detail="missing api key")
        )
    try:
        feedback_mode = FeedbackMode(mode)
    except ValueError:
        return ClientResult(error=ConfigError(f"Unknown feedback mode {mode!r}.", detail="bad mode"))
    logger.info("Feedback client ready (model=%s, mode=%s)", model, feedback_mode.value)
    return ClientResult(
        client=DashscopeFeedbackClient(
            api_key=key, model=model, mode=feedback_mode, request_timeout_s=request_timeout_s
        )
    )


class DashscopeFeedbackClient:
    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        mode: FeedbackMode = FeedbackMode.STRUCTURED,
        request_timeout_s: float = 30.0,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._mode = mode
        self._request_timeout_s = request_timeout_s

    @property
    def mode(self) -> FeedbackMode:
        return self._mode

    def get_feedback(self, practice_text: str, encoded_audio: str) -> FeedbackResult:
        text = (practice_text or "").strip()
        if not text:
            raise InputInvalidError("Text to pronounce cannot be empty.")
        if not is_audio_data_uri(encoded_audio):
            raise InputInvalidError("Invalid audio data URI provided.")
        if dashscope is None:
            raise ServiceTransportError(detail="dashscope is not installed")

        logger.info("Requesting feedback for %r (audio %s...)", text, encoded_audio[:40])
        streaming = requires_streaming(self._model)
        options: Dict[str, Any] = {"stream": True, "incremental_output": True} if streaming else {}
        try:
            response = dashscope.MultiModalConversation.call(
                api_key=self._api_key,
                model=self._model,
                messages=self._build_messages(text, encoded_audio),
                result_format="message",
                timeout=self._request_timeout_s,
                **options,
            )
            reply = self._collect_stream(response) if streaming else self._read_reply(response)
        except CoachError:
            raise
        except Exception as exc:
            raise self._to_error(str(exc)) from exc

        result = self._parse(reply)
        logger.info("Feedback received")
        return result

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _read_reply(self, response: object) -> str:
        self._check_status(response)
        return self._extract_text(response)

    def _collect_stream(self, chunks: Iterable[object]) -> str:
        """Join an incremental stream into one reply; callers never see partials."""
        parts = []
        for chunk in chunks:
            self._check_status(chunk)
            parts.append(self._extract_text(chunk))
        return "".join(parts)

    def _check_status(self, response: object) -> None:
        status = _field(response, "status_code")
        if status is not None and status != HTTPStatus.OK:
            code = str(_field(response, "code") or "")
            message = str(_field(response, "message") or "")
            raise self._to_error(f"{status} {code} {message}".strip(), status=status, code=code)

    def _build_messages(self, text: str, encoded_audio: str) -> list:
        template = STRUCTURED_PROMPT if self._mode == FeedbackMode.STRUCTURED else FREEFORM_PROMPT
        return [
            {"role": "system", "content": [{"text": SYSTEM_PROMPT}]},
            {
                "role": "user",
                "content": [{"audio": encoded_audio}, {"text": template.format(text=text)}],
            },
        ]

    def _extract_text(self, response: object) -> str:
        output = _field(response, "output") or {}
        choices = _field(output, "choices") or []
        if not choices:
            return ""
        message = _field(choices[0], "message") or {}
        content = _field(message, "content") or []
        if isinstance(content, str):
            return content
        parts = []
        for value in content:
            if isinstance(value, dict) and value.get("text"):
                parts.append(str(value["text"]))
        return "".join(parts)

    def _parse(self, reply: str) -> FeedbackResult:
        schema: Type[Union[PronunciationFeedback, FreeformFeedback]]
        schema = PronunciationFeedback if self._mode == FeedbackMode.STRUCTURED else FreeformFeedback
        try:
            payload = _extract_json_block(reply)
            return schema.model_validate(payload)
        except (ValueError, ValidationError) as exc:
            logger.warning("Feedback reply rejected: %s", exc)
            raise ServiceMalformedOutputError(
                ERROR_MESSAGES[SERVICE_MALFORMED_OUTPUT], detail=str(exc)
            ) from exc

    def _to_error(self, message: str, status: Any = None, code: str = "") -> CoachError:
        """Map an SDK failure onto the service error taxonomy.

        A response carries a status and an error code, and those decide. Bare
        exceptions only have their text, which is matched on whole words.
        """
        if status is not None:
            normalized = code.lower().replace("_", "")
            rate_limited = status == HTTPStatus.TOO_MANY_REQUESTS or normalized.startswith("throttling")
            rejected = normalized.startswith("datainspectionfailed")
        else:
            rate_limited = _RATE_LIMIT_PATTERN.search(message) is not None
            rejected = _SAFETY_PATTERN.search(message) is not None
        if rate_limited:
            logger.warning("Feedback service rate limited: %s", message)
            return ServiceRateLimitedError(detail=message)
        if rejected:
            logger.warning("Feedback request rejected by safety settings: %s", message)
            return ServiceSafetyRejectedError(detail=message)
        logger.warning("Feedback request failed: %s", message)
        return ServiceTransportError(detail=message)


def requires_streaming(model: str) -> bool:
    """Qwen-Omni models only answer over a stream."""
    return model.lower().startswith(_STREAM_ONLY_PREFIXES)


def _field(obj: object, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _extract_json_block(text: str) -> Dict[str, Any]:
    """Parse the reply as JSON, falling back to the first ``{...}`` span."""
    if not text or not text.strip():
        raise ValueError("empty reply")
    try:
        data = json.loads(text)
    except ValueError:
        match = re.search(r"\{[\s\S]*\}", text)
        if match is None:
            raise ValueError("no JSON object in reply") from None
        data = json.loads(match.group(0))
    if not isinstance(data, dict):
        raise ValueError("reply is not a JSON object")
    return data
