"""Project error hierarchy.

Every error carries the HTTP status the chat endpoint answers with; the
message is what the client sees inside ``{"error": ...}``.
"""

from __future__ import annotations


class ChatRelayError(Exception):
    """Base error."""

    status_code = 500
    default_message = "internal error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidRequestError(ChatRelayError):
    """Request body is valid JSON but misses required fields."""

    status_code = 400
    default_message = "invalid request"


class MalformedRequestError(ChatRelayError):
    """Request body is not a parseable JSON object."""

    status_code = 400
    default_message = "request body is not valid JSON"


class UnsupportedMediaTypeError(ChatRelayError):
    status_code = 415
    default_message = "content type must be application/json"


class UnsupportedProviderError(ChatRelayError):
    status_code = 400
    default_message = "invalid model selected"


class MissingCredentialError(ChatRelayError):
    """The provider needs an API key that is not configured on the server."""

    status_code = 503
    default_message = "provider credential is not configured"


class InvalidHistoryError(ChatRelayError):
    status_code = 400
    default_message = "conversation history has no usable user turn"


class InvalidAttachmentError(ChatRelayError):
    """Only raised when strict attachment parsing is enabled."""

    status_code = 400
    default_message = "image must be a data:image/*;base64 URL"


class UpstreamUnreachableError(ChatRelayError):
    status_code = 502
    default_message = "upstream unreachable"

    def __init__(self, message: str | None = None, *, timed_out: bool = False) -> None:
        super().__init__(message)
        self.timed_out = timed_out
        if timed_out:
            self.status_code = 504


class UpstreamRejectedError(ChatRelayError):
    """Upstream answered with a non-2xx status."""

    status_code = 502

    def __init__(self, provider: str, upstream_status: int, detail: str) -> None:
        self.provider = provider
        self.upstream_status = upstream_status
        self.detail = detail
        super().__init__(f"API error from {provider} (HTTP {upstream_status}): {detail}")


class RateLimitedError(UpstreamRejectedError):
    status_code = 429

    def __init__(self, provider: str, upstream_status: int, detail: str) -> None:
        super().__init__(provider, upstream_status, detail)
        self.message = f"rate limited by {provider}, please try again later"
        self.args = (self.message,)


class UnexpectedResponseShapeError(ChatRelayError):
    status_code = 502
    default_message = "unexpected response shape from upstream"
