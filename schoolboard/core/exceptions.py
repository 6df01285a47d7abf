"""Error taxonomy of the query layer"""
from typing import Optional


class QueryLayerError(Exception):
    pass


class InvalidKeyError(QueryLayerError, ValueError):
    """Raised when key params are not plain, comparable data."""


class ScopeDeniedError(QueryLayerError):
    """A role rule could not establish a restriction for the current user.

    Never reaches callers: the planner turns it into the empty-result sentinel.
    """

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class BackendError(QueryLayerError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class FetchError(QueryLayerError):
    """A query's fetch function failed after the retry policy gave up."""

    def __init__(self, message: str, key=None, failure_count: int = 0):
        super().__init__(message)
        self.message = message
        self.key = key
        self.failure_count = failure_count


class PermissionDeniedError(QueryLayerError):
    """The session's role may not run this mutation."""

    def __init__(self, role: str, entity: str):
        super().__init__(f"Role {role!r} cannot modify {entity}")
        self.role = role
        self.entity = entity


class UnknownEntityError(QueryLayerError, LookupError):
    def __init__(self, entity: str):
        super().__init__(f"Unknown entity: {entity}")
        self.entity = entity
