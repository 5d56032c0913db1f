"""Exceptions raised by mongomap.

Driver failures are never raised as-is by the templates and bulk operations. They are passed through the
`MongoExceptionTranslator`, which maps them onto the closed taxonomy below. Every translated exception derives from
`DataAccessError` and keeps the original driver exception as its `cause` (and `__cause__` once raised).

Errors that stem from mongomap itself, a bad entity descriptor or a failed conversion, have their own types that do
not derive from `DataAccessError`.
"""
from typing import Any, Iterable, TYPE_CHECKING

if TYPE_CHECKING:
    from pymongo.results import BulkWriteResult


class DataAccessError(Exception):
    """Base exception for translated driver failures."""
    def __init__(self, *args, cause: BaseException | None = None):
        super().__init__(*args)

        self.cause = cause
        if cause is not None:
            self.add_note(f" - Driver Exception: {type(cause).__name__}")


class DataIntegrityViolationError(DataAccessError):
    """Raised when a write violates an integrity constraint (write concern errors, write conflicts, validation)."""


class DuplicateKeyError(DataIntegrityViolationError):
    """Raised when a write violates a unique index."""


class DataAccessResourceFailureError(DataAccessError):
    """Raised when the server cannot be reached or a resource such as a cursor is gone."""


class InvalidDataAccessResourceUsageError(DataAccessError):
    """Raised when a resource is used incorrectly, e.g. an invalid collection name."""


class InvalidDataAccessApiUsageError(DataAccessError):
    """Raised when the driver or server rejects a request as malformed."""


class PermissionDeniedError(DataAccessError):
    """Raised when authentication or authorization fails."""


class ClientSessionError(DataAccessError):
    """Raised for failures tied to a client session or transaction."""


class TransientClientSessionError(ClientSessionError):
    """Raised for session failures the server labelled as transient. The operation may be retried by the caller."""


class UncategorizedMongoDbError(DataAccessError):
    """Raised for driver failures that match no other category.

    Attributes:
        code: The numeric server error code, if the driver provided one
        error_labels: The error labels attached by the server
    """
    def __init__(
        self,
        *args,
        cause: BaseException | None = None,
        code: int | None = None,
        error_labels: Iterable[str] = (),
    ):
        super().__init__(*args, cause=cause)
        self.code = code
        self.error_labels = tuple(error_labels)


class BulkOperationError(DataAccessError):
    """Raised when a bulk write fails.

    In ordered mode the bulk write stops at the first failing operation, so `result` reports what was written before
    it. In unordered mode every operation was attempted and `errors` holds one entry per failed operation.

    Attributes:
        errors: The write errors reported by the server, each with an `index`, `code` and `errmsg`
        write_concern_errors: The write concern errors reported by the server
        result: The partial `BulkWriteResult`
    """
    def __init__(
        self,
        *args,
        cause: BaseException | None = None,
        errors: Iterable[dict[str, Any]] = (),
        write_concern_errors: Iterable[dict[str, Any]] = (),
        result: "BulkWriteResult | None" = None,
    ):
        super().__init__(*args, cause=cause)
        self.errors = list(errors)
        self.write_concern_errors = list(write_concern_errors)
        self.result = result


class MappingError(Exception):
    """Raised when an entity descriptor cannot be built or is used inconsistently."""


class ConversionError(Exception):
    """Raised by the conversion service when a value cannot be converted to the requested type."""
    def __init__(self, *args, value: Any = None, target_type: type | None = None):
        super().__init__(*args)
        self.value = value
        self.target_type = target_type
