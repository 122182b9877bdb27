"""Errors raised by the project/section repositories."""


class DatabaseError(Exception):
    """Any failure of a remote store read or write."""


class DuplicateRecordError(DatabaseError):
    """An insert collided with an existing row."""


class PermissionDeniedError(DatabaseError):
    """The row exists but belongs to another owner or project."""


class DatabaseConnectionError(DatabaseError):
    """The database could not be reached."""
