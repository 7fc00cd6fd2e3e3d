"""
Error taxonomy for the cache invalidation subsystem.

Retryable errors mean a collaborator (relational store, Valkey) was
unreachable or failed mid-cycle; re-running the cycle is always safe.
Terminal errors mean the request itself is malformed and re-running it
unchanged will fail again.
"""


class InvalidationError(Exception):
    """Base class for invalidation failures."""

    kind = "invalidation_error"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UpstreamQueryError(InvalidationError):
    """The relational store could not be queried or updated."""

    kind = "upstream_query_error"
    retryable = True


class CacheUnavailableError(InvalidationError):
    """The key-value cache could not be reached."""

    kind = "cache_unavailable"
    retryable = True


class MalformedPatternError(InvalidationError):
    """A pattern reached the evictor without a resolved locale, or is empty."""

    kind = "malformed_pattern"


class InvalidRequestError(InvalidationError):
    """Trigger parameters are outside the accepted values."""

    kind = "invalid_request"


class CacheCommandError(InvalidationError):
    """Valkey answered with an error reply, e.g. a permission or data error."""

    kind = "cache_command_error"
