"""Exception hierarchy shared by the ingestion pipeline."""

from __future__ import annotations

import re

_TAG_RE = re.compile(r"<[^>]+>")

PROVIDER_STATUS_LABELS: dict[int, str] = {
    429: "Too Many Requests",
    512: "Rate Limit",
    513: "Rate Limit",
    520: "Unknown Error",
}


class FlixSyncError(Exception):
    """Base class for all pipeline errors."""


class TransportError(FlixSyncError):
    """Network-level failure (bad host, timeout, TLS, dropped connection)."""

    def __init__(self, message: str, *, url: str | None = None, retryable: bool = False):
        super().__init__(message)
        self.url = url
        self.retryable = retryable


class UpstreamError(FlixSyncError):
    """Non-2xx HTTP response from an upstream server."""

    def __init__(
        self,
        status_code: int,
        message: str | None = None,
        *,
        url: str | None = None,
        retryable: bool = False,
        overloaded: bool = False,
    ):
        self.status_code = status_code
        self.message = message
        self.url = url
        self.retryable = retryable
        self.overloaded = overloaded
        super().__init__(self.describe())

    @staticmethod
    def extract_message(body: bytes | str | None, limit: int = 100) -> str | None:
        """Return a short, tag-free excerpt of an error body."""

        if not body:
            return None
        if isinstance(body, bytes):
            body = body.decode("utf-8", errors="ignore")
        cleaned = _TAG_RE.sub("", body)
        cleaned = " ".join(cleaned.split())
        return cleaned[:limit].strip() or None

    def describe(self) -> str:
        label = PROVIDER_STATUS_LABELS.get(self.status_code)
        if label:
            return f"Provider Error {self.status_code} ({label})"
        if self.message:
            return f"Error {self.status_code}: {self.message}"
        return f"Server Error: {self.status_code}"


class DecodeError(FlixSyncError):
    """The upstream payload could not be decoded into the expected shape."""


class EmptyResponseError(FlixSyncError):
    """The upstream answered 2xx with an empty body."""

    def __init__(self, url: str | None = None):
        super().__init__("Server returned empty data.")
        self.url = url


class FetchError(FlixSyncError):
    """A playlist fetch produced no usable data for a content type."""

    def __init__(
        self,
        message: str,
        *,
        source_id: str | None = None,
        content_type: str | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.source_id = source_id
        self.content_type = content_type
        self.cause = cause

    @property
    def overloaded(self) -> bool:
        """Return whether the failure looks like upstream overload/throttling."""

        return is_overload_error(self.cause)


class XtreamAuthError(FetchError):
    """The Xtream panel rejected the supplied credentials."""


class SyncError(FlixSyncError):
    """Aggregate failure of one source's sync run."""

    def __init__(self, source_id: str, cause: BaseException):
        self.source_id = source_id
        self.cause = cause
        super().__init__(f"Sync Error: {self.root_description(cause)}")

    @staticmethod
    def root_description(cause: BaseException) -> str:
        while isinstance(cause, FetchError) and cause.cause is not None:
            cause = cause.cause
        return str(cause) or cause.__class__.__name__


def is_overload_error(error: BaseException | None) -> bool:
    """Return whether ``error`` signals a throttled or overloaded upstream."""

    if isinstance(error, FetchError):
        return is_overload_error(error.cause)
    if isinstance(error, UpstreamError):
        return error.overloaded
    if isinstance(error, TransportError):
        return error.retryable
    return False
