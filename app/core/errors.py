"""
Error types shared by the alert store, the price oracle client and the scheduler.

Store operations translate SQLAlchemy errors into these types at their
boundary, so callers never have to inspect driver exceptions.
"""


class AlertServiceError(Exception):
    """Base class for all service errors"""


class NotFoundError(AlertServiceError):
    """No matching row is visible to the caller"""


class KeyConflictError(AlertServiceError):
    """A unique key (the active alert slug) is already taken"""


class TransientIOError(AlertServiceError):
    """Network or upstream failure; the caller may retry on its own schedule"""


class InternalError(AlertServiceError):
    """Unexpected persistence or logic failure"""
