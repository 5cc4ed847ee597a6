from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .resources import RateLimit


class WaniError(Exception):
    """Base class for every error raised by the cache."""


class ConfigError(WaniError):
    """No usable configuration (typically a missing API token)."""


class TransportError(WaniError):
    """No HTTP response was obtained. Retryable on the next run."""


class AuthError(WaniError):
    """The API rejected the token. Fatal for the whole run."""


class RateLimitError(WaniError):
    """The API rate limit was hit. Scoped to one resource class."""

    def __init__(self, message: str, rate_limit: Optional["RateLimit"] = None) -> None:
        super().__init__(message)
        self.rate_limit = rate_limit


class HttpStatusError(WaniError):
    """Any other non-success HTTP status."""

    def __init__(self, status: int, url: str = "") -> None:
        super().__init__(f"HTTP status code {status}" + (f" for {url}" if url else ""))
        self.status = status
        self.url = url


class DecodeError(WaniError):
    """A wire payload or a stored row could not be decoded.

    Either ``table``/``row_id`` (stored rows) or ``object``/``row_id`` (wire
    payloads) are set, plus the offending ``column`` when known.
    """

    def __init__(self, reason: str, table: Optional[str] = None, row_id: object = None,
                 column: Optional[str] = None, object: Optional[str] = None) -> None:
        self.reason = reason
        self.table = table
        self.row_id = row_id
        self.column = column
        self.object = object
        super().__init__(self._describe())

    def _describe(self) -> str:
        where = []
        if self.table:
            where.append(f"table={self.table}")
        if self.object:
            where.append(f"object={self.object}")
        if self.row_id is not None:
            where.append(f"id={self.row_id}")
        if self.column:
            where.append(f"column={self.column}")
        location = ", ".join(where)
        return f"{self.reason} ({location})" if location else self.reason


class StoreError(WaniError):
    """The underlying database failed. Fatal for the current sync pass."""
