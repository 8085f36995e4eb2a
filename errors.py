"""Exception hierarchy for the feed pipeline.

Every pipeline failure derives from ``FeedPipelineError`` and carries the
HTTP status the server should answer with.
"""

from __future__ import annotations

RAW_EXCERPT_CHARS = 500


class FeedPipelineError(Exception):
    """Base error for failures surfaced to the caller."""

    status_code = 400


class AuthError(FeedPipelineError):
    """Missing or invalid bearer token."""

    status_code = 401


class InvalidRequestError(FeedPipelineError):
    """Request body is missing required fields or has bad values."""


class ProfileMissingError(FeedPipelineError):
    """The user has no stored profile (or nothing to build one from)."""


class UpstreamError(FeedPipelineError):
    """The search API answered with a non-2xx status or could not be reached."""

    def __init__(self, message: str, status: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body

    @property
    def retryable(self) -> bool:
        # status None means the connection itself failed
        return self.status is None or self.status == 429 or self.status >= 500


class SearchTimeoutError(FeedPipelineError, TimeoutError):
    """The search API did not answer within the configured timeout."""


class MalformedResponseError(FeedPipelineError):
    """The model response did not contain a parseable JSON object."""

    def __init__(self, message: str, raw: str = "") -> None:
        self.excerpt = raw[:RAW_EXCERPT_CHARS]
        if self.excerpt:
            message = f"{message} (raw response starts with: {self.excerpt!r})"
        super().__init__(message)


class PersistenceError(FeedPipelineError):
    """A delete, insert, read or update against the row store failed."""


class PipelineCancelledError(FeedPipelineError):
    """The caller cancelled the run before persistence began."""


class RequestInFlightError(FeedPipelineError):
    """The same user already has this action running."""

    status_code = 409
