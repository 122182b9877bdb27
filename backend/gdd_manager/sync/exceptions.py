"""Local validation errors raised by the store and backup restore."""


class StoreError(Exception):
    """Base class for local store validation errors."""

    code = "STORE_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ProjectNotFoundError(StoreError):
    code = "PROJECT_NOT_FOUND"


class SectionNotFoundError(StoreError):
    code = "SECTION_NOT_FOUND"


class DuplicateSectionNameError(StoreError):
    code = "SECTION_NAME_DUPLICATE"


class ProjectNameTooShortError(StoreError):
    code = "PROJECT_NAME_TOO_SHORT"


class InvalidParentError(StoreError):
    """Unknown parent, or a re-parent that would create a cycle."""

    code = "INVALID_PARENT"


class BackupFormatError(StoreError):
    code = "INVALID_BACKUP"
