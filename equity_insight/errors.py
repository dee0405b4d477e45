"""Failure taxonomy and the single normalization boundary for user-facing errors."""

import json
import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Tuple, Union

import httpx
from pydantic import ValidationError

from equity_insight.entities import ReportKind


@dataclass(frozen=True)
class ErrorDescriptor:
    """
    The only error shape surfaced to callers.

    Representation Invariants:
    - title and message are non-empty
    - details holds the raw failure text for diagnostics (hidden by default)
    - is_retryable decides whether a retry action is offered
    """

    title: str
    message: str
    details: Optional[str] = None
    is_retryable: bool = True

    def to_dict(self) -> dict:
        """Serialize with the field names HTTP callers expect."""
        return {
            "title": self.title,
            "message": self.message,
            "details": self.details,
            "isRetryable": self.is_retryable,
        }


class AnalysisError(Exception):
    """Raised across the core boundary; always carries an ErrorDescriptor."""

    def __init__(self, descriptor: ErrorDescriptor) -> None:
        super().__init__(descriptor.message)
        self.descriptor = descriptor

    def __repr__(self) -> str:
        return f"AnalysisError(title='{self.descriptor.title}', retryable={self.descriptor.is_retryable})"


class ParseError(ValueError):
    """Model output could not be turned into JSON."""

    def __init__(self, message: str, raw_text: Optional[str] = None) -> None:
        super().__init__(message)
        self.raw_text = raw_text


class RefusalError(Exception):
    """The model declined because the requested entity appears not to exist."""

    def __init__(self, raw_text: str, kind: ReportKind, subject: Optional[str] = None) -> None:
        super().__init__(f"Model refused {kind.value} request for {subject!r}")
        self.raw_text = raw_text
        self.kind = kind
        self.subject = subject


class EmptyResponseError(Exception):
    """The model returned no text at all (often a safety filter)."""

    def __init__(self, message: str = (
        "Empty response received. The AI model might have filtered the content due to safety settings."
    )) -> None:
        super().__init__(message)


# =============================================================================
# Failure sum type
# =============================================================================

@dataclass(frozen=True)
class TransportFailure:
    """Anything raised by the transport, the extractor or the models."""
    raw: Any


@dataclass(frozen=True)
class StructuredFailure:
    """A failure that was already classified on purpose."""
    descriptor: ErrorDescriptor


Failure = Union[TransportFailure, StructuredFailure]


def classify_failure(raw: Any) -> Failure:
    """
    Sort a raw failure into the Failure sum type.

    Already-shaped failures (AnalysisError, ErrorDescriptor, or a mapping
    with title, message and an explicit retry flag) become StructuredFailure;
    everything else is a TransportFailure.
    """
    if isinstance(raw, AnalysisError):
        return StructuredFailure(raw.descriptor)
    if isinstance(raw, ErrorDescriptor):
        return StructuredFailure(raw)
    if isinstance(raw, Mapping) and "title" in raw and "message" in raw:
        retry_flag = raw.get("isRetryable", raw.get("is_retryable"))
        if isinstance(retry_flag, bool):
            return StructuredFailure(ErrorDescriptor(
                title=str(raw["title"]),
                message=str(raw["message"]),
                details=raw.get("details"),
                is_retryable=retry_flag,
            ))
    return TransportFailure(raw)


# =============================================================================
# Status / message recovery
# =============================================================================

_EMBEDDED_JSON = re.compile(r"\{.*\}", re.DOTALL)


def _status_of(raw: Any) -> Optional[int]:
    """Read an HTTP-like status from the usual attributes (or mapping keys)."""
    for name in ("status", "code", "status_code"):
        if isinstance(raw, Mapping):
            value = raw.get(name)
        else:
            value = getattr(raw, name, None)
        if isinstance(value, bool):
            continue
        if isinstance(value, int):
            return value
        if isinstance(value, str) and value.strip().isdigit():
            return int(value.strip())
    return None


def _message_of(raw: Any) -> str:
    if isinstance(raw, str):
        return raw
    if isinstance(raw, Mapping):
        message = raw.get("message")
        return str(message) if message else json.dumps(raw, default=str)
    return str(raw) or raw.__class__.__name__


def unwrap_failure(raw: Any) -> Tuple[Optional[int], str]:
    """
    Recover the true status code and message of a failure.

    Some transports wrap the real error as JSON inside the message, e.g.
    '... {"error": {"code": 429, "message": "Quota exceeded"}}'. When such a
    payload is found its code and message win over the outer ones.

    Args:
        raw: Exception, string or mapping

    Returns:
        Tuple of (status or None, message)
    """
    status = _status_of(raw)
    message = _message_of(raw)

    match = _EMBEDDED_JSON.search(message)
    if match:
        try:
            parsed = json.loads(match.group(0))
        except ValueError:
            parsed = None
        if isinstance(parsed, dict) and isinstance(parsed.get("error"), dict):
            inner = parsed["error"]
            inner_status = _status_of(inner)
            if inner_status is not None:
                status = inner_status
            if inner.get("message"):
                message = str(inner["message"])

    return status, message


def is_rate_limited(status: Optional[int], message: str) -> bool:
    msg = message.lower()
    return status == 429 or "quota" in msg or "resource_exhausted" in msg or "429" in msg


def is_server_transient(status: Optional[int], message: str) -> bool:
    return status in (500, 503) or "overloaded" in message.lower()


# =============================================================================
# Normalization
# =============================================================================

_NETWORK_ERRORS = (ConnectionError, TimeoutError, httpx.TransportError)
_PARSE_ERRORS = (ParseError, json.JSONDecodeError, ValidationError)


def missing_credentials_error() -> ErrorDescriptor:
    return ErrorDescriptor(
        title="Missing API Key",
        message="API Key is not configured.",
        is_retryable=False,
    )


def invalid_request_error(details: str) -> ErrorDescriptor:
    """Descriptor for input rejected before any model call."""
    return ErrorDescriptor(
        title="Invalid Request",
        message="The request is incomplete or malformed. Please check your input and try again.",
        details=details,
        is_retryable=False,
    )


def _refusal_descriptor(error: RefusalError) -> ErrorDescriptor:
    subject = error.subject or "this request"
    if error.kind == ReportKind.ANALYSIS:
        return ErrorDescriptor(
            title="Ticker Not Found",
            message=(
                f"Unable to generate a report for '{subject}'. The ticker symbol might be "
                "incorrect, delisted, or not supported by the available data sources."
            ),
            details=error.raw_text,
            is_retryable=False,
        )
    if error.kind == ReportKind.IPO_DETAIL:
        return ErrorDescriptor(
            title="IPO Not Found",
            message=f"Unable to find issue details for '{subject}'. Check the IPO name and try again.",
            details=error.raw_text,
            is_retryable=False,
        )
    return ErrorDescriptor(
        title="No Matching Data",
        message="The AI model could not find data for this request. Try rephrasing it.",
        details=error.raw_text,
        is_retryable=False,
    )


def _parse_descriptor(details: str) -> ErrorDescriptor:
    return ErrorDescriptor(
        title="Data Parsing Error",
        message="The AI response could not be processed correctly. This is usually a temporary glitch.",
        details=details,
        is_retryable=True,
    )


def normalize_error(raw: Any) -> ErrorDescriptor:
    """
    Convert any failure into an ErrorDescriptor.

    Priority:
    1. Pre-classified failures pass through unchanged.
    2. A nested status/message is unwrapped from embedded JSON.
    3. Status code and case-insensitive keywords are matched against the
       fixed taxonomy; the first match wins, otherwise "Analysis Failed".

    Postconditions:
    - Never raises
    - details carries the (unwrapped) raw message

    Args:
        raw: Exception, string, mapping or descriptor

    Returns:
        ErrorDescriptor suitable for display
    """
    failure = classify_failure(raw)
    if isinstance(failure, StructuredFailure):
        return failure.descriptor

    raw = failure.raw
    if isinstance(raw, RefusalError):
        return _refusal_descriptor(raw)

    status, message = unwrap_failure(raw)
    msg = message.lower()
    details = message

    def descriptor(title: str, text: str, retryable: bool) -> ErrorDescriptor:
        return ErrorDescriptor(title=title, message=text, details=details, is_retryable=retryable)

    if isinstance(raw, _NETWORK_ERRORS) or "failed to fetch" in msg or "networkerror" in msg or "network" in msg:
        return descriptor(
            "Network Connection Error",
            "Unable to connect to the server. Please check your internet connection or try again later.",
            True,
        )
    # Decoder messages carry column numbers ("column 400") that would match status keywords
    if isinstance(raw, _PARSE_ERRORS):
        raw_text = getattr(raw, "raw_text", None)
        return _parse_descriptor(raw_text or details)
    if status == 400 or "400" in msg or "invalid argument" in msg:
        return descriptor(
            "Invalid Request",
            "The request was rejected. This might be due to an invalid ticker symbol or safety filters triggering.",
            False,
        )
    if status == 401 or "401" in msg or "api key" in msg:
        return descriptor(
            "Authentication Error",
            "Invalid API Key. Please ensure your API_KEY is correctly set in the environment.",
            False,
        )
    if status == 403 or "403" in msg:
        return descriptor(
            "Permission Denied",
            "Your API key does not have access to the required model or region.",
            False,
        )
    if status == 404 or "404" in msg:
        return descriptor(
            "Resource Not Found",
            "The requested AI model version might be deprecated or unavailable.",
            False,
        )
    if is_rate_limited(status, message):
        return descriptor(
            "Rate Limit Exceeded",
            "You have hit the API quota limit. Please wait a minute before trying again, or check your billing details.",
            True,
        )
    if status == 500 or "500" in msg:
        return descriptor(
            "Server Error",
            "Google's AI servers encountered an internal error. Please try again later.",
            True,
        )
    if status == 503 or "503" in msg or "overloaded" in msg:
        return descriptor(
            "Service Overloaded",
            "The Gemini API is currently experiencing high traffic. Please retry in a few moments.",
            True,
        )
    if "json" in msg or "parse" in msg:
        return _parse_descriptor(details)

    return descriptor(
        "Analysis Failed",
        "An unexpected error occurred while generating the report.",
        True,
    )
