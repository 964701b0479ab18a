"""Package specific exception hierarchy and upstream error normalization."""

from __future__ import annotations

from pydantic import BaseModel, ValidationError

_MAX_RAW_BODY_CHARS = 500
_UNKNOWN_ERROR = "unknown error"


class ChatBridgeError(Exception):
    """Base exception for chatbridge package."""


class ConfigError(ChatBridgeError):
    """Raised when an explicit configuration value is invalid."""


class CredentialError(ChatBridgeError):
    """Raised when a stored credential is missing or the token exchange fails."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class TransportError(ChatBridgeError):
    """Raised on network failures, timeouts and interrupted reads."""


class DecodeError(ChatBridgeError):
    """Raised when an upstream body cannot be decoded."""


class UnsupportedProviderError(ChatBridgeError):
    """Raised when a provider has not been configured."""

    def __init__(self, provider: str) -> None:
        super().__init__(f"Provider '{provider}' is not available.")


class UnsupportedModelError(ChatBridgeError):
    """Raised when no configured provider serves the requested model."""

    def __init__(self, model: str) -> None:
        super().__init__(f"Model '{model}' is not supported by any provider.")
        self.model = model


class UpstreamError(ChatBridgeError):
    """Non-success response from an upstream chat endpoint."""

    def __init__(self, status_code: int, message: str, hint: str | None = None) -> None:
        text = f"{message}\n\n{hint}" if hint else message
        super().__init__(text)
        self._status_code = status_code
        self._message = message
        self._hint = hint

    @property
    def status_code(self) -> int:
        return self._status_code

    @property
    def message(self) -> str:
        return self._message

    @property
    def hint(self) -> str | None:
        return self._hint


class _ErrorDetail(BaseModel):
    message: str = ""


class _NestedErrorBody(BaseModel):
    error: _ErrorDetail


class _FlatErrorBody(BaseModel):
    message: str


def _message_from_nested(body: bytes) -> str:
    return _NestedErrorBody.model_validate_json(body).error.message


def _message_from_flat(body: bytes) -> str:
    return _FlatErrorBody.model_validate_json(body).message


# Tried in order; the nested {"error": {"message": ...}} shape wins.
_ERROR_SHAPES = (_message_from_nested, _message_from_flat)


def extract_error_message(body: bytes) -> str:
    """Return the best message found in an upstream error body.

    Falls back to the raw body text (truncated) when no known JSON shape
    carries a non-empty message.
    """
    for shape in _ERROR_SHAPES:
        try:
            message = shape(body)
        except ValidationError:
            continue
        if message:
            return message

    text = body.decode("utf-8", errors="replace")
    if not text:
        return _UNKNOWN_ERROR
    if len(text) > _MAX_RAW_BODY_CHARS:
        text = text[:_MAX_RAW_BODY_CHARS] + "..."
    return text


def model_unavailable_hint(message: str, hint: str) -> str | None:
    """Return ``hint`` when the message says a model is not supported or available."""
    lower = message.lower()
    # "model" must be present, plain "not supported" errors are unrelated.
    if "model" in lower and ("not supported" in lower or "not available" in lower):
        return hint
    return None


def normalize_upstream_error(
    status_code: int,
    body: bytes,
    *,
    model_hint: str | None = None,
) -> UpstreamError:
    """Build an UpstreamError from a failed upstream response.

    Args:
        status_code: HTTP status of the upstream response.
        body: Raw response body.
        model_hint: Remediation text appended when the message reports an
            unavailable model. No hint pass runs when it is None.
    """
    message = extract_error_message(body)
    hint = model_unavailable_hint(message, model_hint) if model_hint else None
    return UpstreamError(status_code, message, hint)
