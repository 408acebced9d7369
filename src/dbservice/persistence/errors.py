"""
Persistence Errors

Exception hierarchy raised by every data access service. Driver exceptions
are translated into these at the service boundary so callers never need to
know which backend is active.
"""


class DBServiceError(Exception):
    """Base exception for data access operations"""
    pass


class NotConnectedError(DBServiceError):
    """Raised when an operation runs before connect has succeeded"""
    pass


class ModelNotFoundError(DBServiceError):
    """Raised when an entity type was not registered at connect time"""
    pass


class InstantiationFailedError(DBServiceError):
    """Raised when the backend rejects the initial values of a new entity"""
    pass


class PersistenceFailedError(DBServiceError):
    """Raised when save or remove fails in the backend"""
    pass


class ConnectionFailedError(DBServiceError):
    """
    Raised for a failed connection attempt.

    Attempts are retried without surfacing this error; callers only see it
    when a maximum attempt count is configured and exhausted.
    """
    pass


class ConnectionStateError(DBServiceError):
    """Raised when connect is called while already connecting or connected"""
    pass


class ConnectionCancelledError(DBServiceError):
    """Raised from connect when disconnect abandons the retry loop"""
    pass


class InvalidSchemaError(DBServiceError, ValueError):
    """Raised when a schema descriptor cannot be turned into a backend model"""
    pass


class InvalidCriteriaError(DBServiceError, ValueError):
    """Raised when a search criterion cannot be translated"""
    pass


class UnknownServiceError(DBServiceError, KeyError):
    """Raised when the factory has no service registered for a type"""
    pass
