"""
Error taxonomy and user-facing messages.

Core code raises the exceptions defined here; the route layer turns them into
short, non-technical messages with `user_message()`. Raw engine errors are only
ever logged.
"""

import enum
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError


class ErrorCode(str, enum.Enum):
    DB_CONNECTION_FAILED = "DB_CONNECTION_FAILED"
    DB_ADD_FAILED = "DB_ADD_FAILED"
    DB_QUERY_FAILED = "DB_QUERY_FAILED"
    DB_TRANSACTION_FAILED = "DB_TRANSACTION_FAILED"
    DB_SCHEMA_TOO_NEW = "DB_SCHEMA_TOO_NEW"
    DUPLICATE_KEY = "DUPLICATE_KEY"
    IMAGE_NOT_FOUND = "IMAGE_NOT_FOUND"
    TAG_NOT_FOUND = "TAG_NOT_FOUND"
    TAG_INVALID_NAME = "TAG_INVALID_NAME"
    IMPORT_INVALID_FORMAT = "IMPORT_INVALID_FORMAT"
    IMPORT_PARTIAL_SUCCESS = "IMPORT_PARTIAL_SUCCESS"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    DIRECTORY_NOT_FOUND = "DIRECTORY_NOT_FOUND"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


ERROR_MESSAGES = {
    ErrorCode.DB_CONNECTION_FAILED: "Failed to connect to database",
    ErrorCode.DB_ADD_FAILED: "Failed to add item to database",
    ErrorCode.DB_QUERY_FAILED: "Failed to query database",
    ErrorCode.DB_TRANSACTION_FAILED: "Database operation cancelled - some items may not have been saved",
    ErrorCode.DB_SCHEMA_TOO_NEW: "The database was created by a newer version of the app",
    ErrorCode.DUPLICATE_KEY: "Item already exists",
    ErrorCode.IMAGE_NOT_FOUND: "Image not found",
    ErrorCode.TAG_NOT_FOUND: "Tag not found",
    ErrorCode.TAG_INVALID_NAME: "Tag name is missing or invalid",
    ErrorCode.IMPORT_INVALID_FORMAT: "Invalid backup file format",
    ErrorCode.IMPORT_PARTIAL_SUCCESS: "Import completed with errors - some items could not be imported",
    ErrorCode.VALIDATION_FAILED: "Validation failed",
    ErrorCode.FILE_NOT_FOUND: "File not found",
    ErrorCode.DIRECTORY_NOT_FOUND: "Directory not found",
    ErrorCode.UNEXPECTED_ERROR: "An unexpected error occurred",
}


class DrawStackError(Exception):
    """Base class for every error the core raises on purpose."""

    default_code = ErrorCode.UNEXPECTED_ERROR

    def __init__(self, message: Optional[str] = None, code: Optional[ErrorCode] = None, context: str = ""):
        self.code = code or self.default_code
        self.message = message or ERROR_MESSAGES[self.code]
        self.context = context
        super().__init__(self.full_message)

    @property
    def full_message(self) -> str:
        if self.context:
            return f"{self.context}: {self.message}"
        return self.message


class DuplicateKeyConflict(DrawStackError):
    """A record with the same primary (or composite) key already exists."""

    default_code = ErrorCode.DUPLICATE_KEY

    def __init__(self, kind: str, key):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} {key!r} already exists", context="Database")


class ValidationFailure(DrawStackError):
    """A record failed shape validation before reaching the store."""

    default_code = ErrorCode.VALIDATION_FAILED

    def __init__(self, errors: List[Tuple[str, str]], code: Optional[ErrorCode] = None):
        self.errors = list(errors)
        message = "\n".join(f"{f}: {m}" for f, m in self.errors) or None
        super().__init__(message, code=code, context="Validation")


class TransactionFailure(DrawStackError):
    default_code = ErrorCode.DB_TRANSACTION_FAILED


class StoreError(DrawStackError):
    default_code = ErrorCode.DB_CONNECTION_FAILED


def is_duplicate_key(exc: IntegrityError) -> bool:
    """SQLite reports primary key and unique violations the same way."""
    return "UNIQUE constraint failed" in str(exc.orig)


def user_message(exc: BaseException) -> str:
    """Summarized text for display; never includes engine internals."""
    if isinstance(exc, DrawStackError):
        return exc.message if isinstance(exc, ValidationFailure) else ERROR_MESSAGES.get(exc.code, exc.message)
    return ERROR_MESSAGES[ErrorCode.UNEXPECTED_ERROR]


# --- Batch results ---

@dataclass
class BatchError:
    item_id: str
    error: str


@dataclass
class TransactionResult:
    """Aggregate outcome of a tolerant batch write."""
    success: int = 0
    failed: int = 0
    duplicates: int = 0
    errors: List[BatchError] = field(default_factory=list)

    def add_error(self, item_id, error) -> None:
        self.failed += 1
        self.errors.append(BatchError(str(item_id), str(error)))

    def abort(self, error) -> None:
        """The enclosing transaction did not commit: nothing counted as success survived."""
        self.failed += self.success
        self.success = 0
        self.errors.append(BatchError("batch", str(error)))

    @property
    def total(self) -> int:
        return self.success + self.failed + self.duplicates

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "failed": self.failed,
            "duplicates": self.duplicates,
            "errors": [{"item_id": e.item_id, "error": e.error} for e in self.errors],
        }
