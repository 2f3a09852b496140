"""Shared error codes, user-facing messages and exception types."""

from __future__ import annotations

DEVICE_UNAVAILABLE = "DEVICE_UNAVAILABLE"
ENCODING_FAILURE = "ENCODING_FAILURE"
SERVICE_RATE_LIMITED = "SERVICE_RATE_LIMITED"
SERVICE_SAFETY_REJECTED = "SERVICE_SAFETY_REJECTED"
SERVICE_MALFORMED_OUTPUT = "SERVICE_MALFORMED_OUTPUT"
SERVICE_TRANSPORT_ERROR = "SERVICE_TRANSPORT_ERROR"
INPUT_INVALID = "INPUT_INVALID"
CONFIG_ERROR = "CONFIG_ERROR"

ERROR_MESSAGES = {
    DEVICE_UNAVAILABLE: (
        "Could not access the microphone. Check the permission settings and "
        "that a supported audio format is available."
    ),
    ENCODING_FAILURE: "Failed to process the recorded audio.",
    SERVICE_RATE_LIMITED: "AI service is busy or rate limited. Please wait a moment and try again later.",
    SERVICE_SAFETY_REJECTED: (
        "The provided audio or text could not be processed due to safety settings. "
        "Try a different sentence."
    ),
    SERVICE_MALFORMED_OUTPUT: "AI model did not return the expected feedback structure",
    SERVICE_TRANSPORT_ERROR: "Failed to get pronunciation feedback from AI, please retry.",
    INPUT_INVALID: "Enter some text to practice before recording.",
    CONFIG_ERROR: "AI feedback is not configured.",
}

RETRYABLE_CODES = frozenset(
    {SERVICE_RATE_LIMITED, SERVICE_MALFORMED_OUTPUT, SERVICE_TRANSPORT_ERROR, ENCODING_FAILURE}
)


class CoachError(Exception):
    """Base error carrying a stable code and a user-facing message."""

    code = SERVICE_TRANSPORT_ERROR

    def __init__(self, message: str | None = None, *, detail: str = "") -> None:
        self.message = message or ERROR_MESSAGES[self.code]
        self.detail = detail
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        return self.code in RETRYABLE_CODES


class DeviceUnavailableError(CoachError):
    code = DEVICE_UNAVAILABLE


class EncodingFailureError(CoachError):
    code = ENCODING_FAILURE


class ServiceRateLimitedError(CoachError):
    code = SERVICE_RATE_LIMITED


class ServiceSafetyRejectedError(CoachError):
    code = SERVICE_SAFETY_REJECTED


class ServiceMalformedOutputError(CoachError):
    code = SERVICE_MALFORMED_OUTPUT


class ServiceTransportError(CoachError):
    code = SERVICE_TRANSPORT_ERROR


class InputInvalidError(CoachError):
    code = INPUT_INVALID


class ConfigError(CoachError):
    code = CONFIG_ERROR
