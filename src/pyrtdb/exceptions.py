"""Custom exception hierarchy for pyrtdb."""

from __future__ import annotations


def _single_line(message: str) -> str:
    return message.replace("\r", "").replace("\n", "")


class RtdbError(Exception):
    """Base exception for all pyrtdb errors."""


class RtdbConfigError(RtdbError):
    """Invalid or missing configuration."""


class RtdbTransportError(RtdbError):
    """HTTP-level failure (network, non-success stream open, unreadable body)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        path: str = "",
    ) -> None:
        self.status_code = status_code
        self.path = path
        super().__init__(message)


class RtdbApiError(RtdbError):
    """The store rejected an operation.

    Raised when the response status is not successful or the body is the
    store's ``{"error": ...}`` envelope.  The message never contains
    newlines; the untouched response text is kept on ``body``.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        path: str = "",
        body: str = "",
    ) -> None:
        self.status_code = status_code
        self.path = path
        self.body = body
        super().__init__(_single_line(message))


class RtdbAuthRevokedError(RtdbApiError):
    """The stream reported ``auth_revoked``: the supplied token is no longer valid."""


class RtdbStreamError(RtdbError):
    """The event stream failed after it was opened."""

    def __init__(self, message: str, *, path: str = "") -> None:
        self.path = path
        super().__init__(_single_line(message))


class RtdbCancelledError(RtdbError):
    """The caller's cancellation signal fired before the operation completed."""


class RtdbEndpointError(RtdbError):
    """A :class:`~pyrtdb.endpoint.DatabaseEndpoint` operation failed.

    The underlying error is available as ``__cause__``.
    """

    def __init__(self, message: str, *, path: str = "") -> None:
        self.path = path
        super().__init__(_single_line(message))
