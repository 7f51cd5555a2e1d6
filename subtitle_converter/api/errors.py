"""Typed errors for external transform calls.

WHY: A failed provider call can mean "fix your key", "wait a minute",
"top up your account", or "the model wrote garbage". Callers need to
tell these apart to decide between retrying, asking the user, or giving
up, so every failure is mapped onto a small fixed set of categories
carrying retry hints.

HOW: TransformError wraps transport-level failures (HTTP status,
timeout, network) with an ErrorCategory and optional retry-after.
TransformContentError covers responses that arrived but cannot be used
(empty, truncated, malformed, or referring to unknown cues).
classify_http_error() turns a status code, body, and Retry-After header
into a TransformError.

RULES:
- Timeouts and network errors are retryable with a 5 s hint
- 429 is rate_limited (retry 60 s) unless the body mentions quota,
  billing, or credit, in which case it is quota_exceeded (not retryable)
- 5xx is server_error, retryable with a 30 s hint
- Retry-After (seconds or HTTP date) overrides the default hint
- Content error previews are bounded to 300 characters
"""

from __future__ import annotations

import enum
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

PREVIEW_CHARS = 300

_RATE_LIMIT_RETRY_MS = 60_000
_SERVER_ERROR_RETRY_MS = 30_000
_TRANSPORT_RETRY_MS = 5_000

_QUOTA_RE = re.compile(r"quota|billing|insufficient_quota|credit", re.IGNORECASE)


class ErrorCategory(str, enum.Enum):
    """Failure categories for transform provider calls."""

    AUTH = "auth"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    BAD_REQUEST = "bad_request"
    RATE_LIMITED = "rate_limited"
    QUOTA_EXCEEDED = "quota_exceeded"
    SERVER_ERROR = "server_error"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    UNKNOWN = "unknown"


class TransformError(Exception):
    """Raised when a transform provider call fails at the transport level.

    RULES:
    - Always carries a category and message
    - retry_after_ms is set only for retryable categories
    - status_code is None for timeouts and network errors
    """

    def __init__(
        self,
        category: ErrorCategory,
        message: str,
        retryable: bool = False,
        retry_after_ms: int | None = None,
        status_code: int | None = None,
    ) -> None:
        self.category = category
        self.message = message
        self.retryable = retryable
        self.retry_after_ms = retry_after_ms
        self.status_code = status_code
        super().__init__("{}: {}".format(category.value, message))


class TransformContentError(Exception):
    """Raised when a provider response arrived but cannot be used.

    Kinds: empty_response, truncated, malformed, missing_fields,
    empty_cues, unknown_id.
    """

    def __init__(self, kind: str, message: str, preview: str = "") -> None:
        self.kind = kind
        self.message = message
        self.preview = preview[:PREVIEW_CHARS]
        super().__init__("{}: {}".format(kind, message))


def preview(text: str | None) -> str:
    """Bound a payload for logs and error messages."""
    if not text:
        return ""
    if len(text) <= PREVIEW_CHARS:
        return text
    return text[:PREVIEW_CHARS] + "..."


def parse_retry_after(value: str | None) -> int | None:
    """Read a Retry-After header (delta seconds or HTTP date) as milliseconds."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0, int(float(value) * 1000))
    except (ValueError, OverflowError):
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    delta = (when - datetime.now(timezone.utc)).total_seconds()
    return max(0, int(delta * 1000))


def classify_http_error(
    status_code: int,
    body: str = "",
    retry_after: str | None = None,
    provider: str = "provider",
) -> TransformError:
    """Map an HTTP error response onto a TransformError.

    Args:
        status_code: The response status code.
        body: Response body text (used for quota detection and the message).
        retry_after: Raw Retry-After header value, if any.
        provider: Provider name for the message.

    Returns:
        A TransformError; the caller raises it.
    """
    detail = preview(body) or "no response body"
    hint_ms = parse_retry_after(retry_after)

    if status_code == 400:
        return TransformError(
            ErrorCategory.BAD_REQUEST,
            "{} rejected the request: {}".format(provider, detail),
            status_code=status_code,
        )
    if status_code == 401:
        return TransformError(
            ErrorCategory.AUTH,
            "{} API key is invalid or expired".format(provider),
            status_code=status_code,
        )
    if status_code == 402:
        return TransformError(
            ErrorCategory.QUOTA_EXCEEDED,
            "{} account has insufficient credit: {}".format(provider, detail),
            status_code=status_code,
        )
    if status_code == 403:
        return TransformError(
            ErrorCategory.FORBIDDEN,
            "{} denied access to this model or resource: {}".format(provider, detail),
            status_code=status_code,
        )
    if status_code == 404:
        return TransformError(
            ErrorCategory.NOT_FOUND,
            "{} model or endpoint not found: {}".format(provider, detail),
            status_code=status_code,
        )
    if status_code == 429:
        if _QUOTA_RE.search(body or ""):
            return TransformError(
                ErrorCategory.QUOTA_EXCEEDED,
                "{} quota exceeded: {}".format(provider, detail),
                status_code=status_code,
            )
        return TransformError(
            ErrorCategory.RATE_LIMITED,
            "{} rate limit reached".format(provider),
            retryable=True,
            retry_after_ms=hint_ms if hint_ms is not None else _RATE_LIMIT_RETRY_MS,
            status_code=status_code,
        )
    if 500 <= status_code < 600:
        return TransformError(
            ErrorCategory.SERVER_ERROR,
            "{} server error {}: {}".format(provider, status_code, detail),
            retryable=True,
            retry_after_ms=hint_ms if hint_ms is not None else _SERVER_ERROR_RETRY_MS,
            status_code=status_code,
        )
    return TransformError(
        ErrorCategory.UNKNOWN,
        "{} returned HTTP {}: {}".format(provider, status_code, detail),
        status_code=status_code,
    )


def timeout_error(provider: str, timeout_s: float) -> TransformError:
    return TransformError(
        ErrorCategory.TIMEOUT,
        "{} did not respond within {:.0f}s".format(provider, timeout_s),
        retryable=True,
        retry_after_ms=_TRANSPORT_RETRY_MS,
    )


def network_error(provider: str, exc: Exception) -> TransformError:
    return TransformError(
        ErrorCategory.NETWORK_ERROR,
        "Could not reach {}: {}".format(provider, exc),
        retryable=True,
        retry_after_ms=_TRANSPORT_RETRY_MS,
    )
