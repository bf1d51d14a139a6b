"""Error hierarchy for the event feed.

Mirrors the transient/permanent split used for scraping: transient failures
(network, timeouts, upstream 5xx) may succeed on a later request, permanent
failures (bad input, rejected credentials, unexpected payloads) will not.

Nothing on the fetch path retries on its own. The split exists so callers
(and the optional login retry) can classify failures:

    @retry(retry=retry_if_exception_type(TransientError), stop=stop_after_attempt(3))
    def login(...):
        ...
"""


class FeedError(Exception):
    """Base exception for all feed errors."""

    pass


class TransientError(FeedError):
    """Temporary failure that may succeed on a later attempt."""

    pass


class TransportError(TransientError):
    """Network failure or timeout while talking to the SIS."""

    pass


class UpstreamStatusError(TransportError):
    """The SIS answered with a non-2xx HTTP status."""

    def __init__(self, status_code: int, url: str) -> None:
        super().__init__(f"SIS returned HTTP {status_code} for {url}")
        self.status_code = status_code
        self.url = url


class PermanentError(FeedError):
    """Failure that won't succeed on retry."""

    pass


class ValidationError(PermanentError):
    """Malformed or contradictory date range input."""

    pass


class AuthError(PermanentError):
    """Login rejected, credentials missing or token unusable."""

    pass


class ParseError(PermanentError):
    """SIS payload did not have the expected JSON shape."""

    pass


class NotFoundError(PermanentError):
    """Requested person or cache entry does not exist."""

    pass


class CacheMiss(NotFoundError):
    """No usable cache file; callers fall through to a live fetch."""

    pass


class SessionClosedError(FeedError, RuntimeError):
    """A session was used after logout."""

    pass
