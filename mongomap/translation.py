"""
Exception Translation

Maps driver exceptions onto the exception taxonomy in `mongomap.exceptions`. Translation looks at, in order:

1.  The short class name of the exception, which covers the well known driver exception types.
2.  The `TransientTransactionError` label attached by the server.
3.  The per-operation errors of a `BulkWriteError`.
4.  The cause of the exception, for failures raised by the authentication layer.
5.  The numeric server error code, looked up in the `MongoErrorCodes` tables.

Driver exceptions that match none of these are translated to `UncategorizedMongoDbError`. Exceptions that did not come
from the driver are not translated at all, `translate_exception_if_possible` returns `Nothing` for them so the caller can
re-raise the original.
"""
from contextlib import contextmanager
from types import MappingProxyType
from typing import Any

from loguru import logger
from pymongo.errors import BulkWriteError, PyMongoError
from pymongo.results import BulkWriteResult
from tramp.optionals import Optional

from mongomap.exceptions import (
    BulkOperationError,
    ClientSessionError,
    DataAccessError,
    DataAccessResourceFailureError,
    DataIntegrityViolationError,
    DuplicateKeyError,
    InvalidDataAccessApiUsageError,
    InvalidDataAccessResourceUsageError,
    PermissionDeniedError,
    TransientClientSessionError,
    UncategorizedMongoDbError,
)


DUPLICATE_KEY_EXCEPTIONS = frozenset({
    "DuplicateKeyException", "MongoException.DuplicateKey", "DuplicateKeyError",
})

RESOURCE_FAILURE_EXCEPTIONS = frozenset({
    "MongoException.Network", "MongoSocketException", "MongoException.CursorNotFound",
    "MongoCursorNotFoundException", "MongoServerSelectionException", "MongoTimeoutException",
    "AutoReconnect", "NetworkTimeout", "ConnectionFailure", "ServerSelectionTimeoutError", "CursorNotFound",
    "ExecutionTimeout", "WaitQueueTimeoutError",
})

RESOURCE_USAGE_EXCEPTIONS = frozenset({
    "MongoInternalException", "InvalidName", "CollectionInvalid",
})

DATA_INTEGRITY_EXCEPTIONS = frozenset({
    "WriteConcernException", "WriteConcernError", "WTimeoutError",
})

API_USAGE_EXCEPTIONS = frozenset({
    "InvalidOperation", "InvalidDocument",
})

SECURITY_EXCEPTIONS = frozenset({
    "MongoSecurityException", "OperationFailure.Unauthorized",
})

TRANSIENT_TRANSACTION_LABEL = "TransientTransactionError"

_LEGACY_API_USAGE_CODES = frozenset({10003, 12001, 12010, 12011, 12012})


class MongoErrorCodes:
    """Lookup tables for numeric server error codes."""

    DATA_ACCESS_RESOURCE_FAILURE = MappingProxyType({
        6: "HostUnreachable",
        7: "HostNotFound",
        89: "NetworkTimeout",
        91: "ShutdownInProgress",
        12000: "SlaveDelayDifferential",
        10084: "CannotFindMapFile64Bit",
        10085: "CannotFindMapFile",
        10357: "ShutdownInProgress",
        10359: "Header==0",
        13440: "BadOffsetInFile",
        13441: "BadOffsetInFile",
        13640: "DataFileHeaderCorrupt",
    })

    DATA_INTEGRITY_VIOLATION = MappingProxyType({
        67: "CannotCreateIndex",
        68: "IndexAlreadyExists",
        85: "IndexOptionsConflict",
        86: "IndexKeySpecsConflict",
        112: "WriteConflict",
        117: "ConflictingOperationInProgress",
        121: "DocumentValidationFailure",
    })

    DUPLICATE_KEY = MappingProxyType({
        3: "OBSOLETE_DuplicateKey",
        84: "DuplicateKeyValue",
        11000: "DuplicateKey",
        11001: "DuplicateKey",
    })

    INVALID_DATA_ACCESS_API_USAGE = MappingProxyType({
        5: "GraphContainsCycle",
        9: "FailedToParse",
        14: "TypeMismatch",
        15: "Overflow",
        16: "InvalidLength",
        20: "IllegalOperation",
        21: "EmptyArrayOperation",
        22: "InvalidBSON",
        23: "AlreadyInitialized",
        29: "NonExistentPath",
        30: "InvalidPath",
        40: "ConflictingUpdateOperators",
        45: "UserDataInconsistent",
        52: "DollarPrefixedFieldName",
        53: "InvalidIdField",
        54: "NotSingleValueField",
        55: "InvalidDBRef",
        56: "EmptyFieldName",
        57: "DottedFieldName",
        59: "CommandNotFound",
        60: "DatabaseNotFound",
        61: "ShardKeyNotFound",
        62: "OplogOperationUnsupported",
        66: "ImmutableField",
        72: "InvalidOptions",
        115: "CommandNotSupported",
        116: "DocTooLargeForCapped",
        130: "SymbolNotFound",
        17280: "KeyTooLong",
        13334: "ShardKeyTooBig",
    })

    PERMISSION_DENIED = MappingProxyType({
        11: "UserNotFound",
        13: "Unauthorized",
        18: "AuthenticationFailed",
        31: "RoleNotFound",
        32: "RolesNotRelated",
        33: "PrivilegeNotFound",
        15847: "CannotAuthenticate",
        16704: "CannotAuthenticateToAdminDB",
        16705: "CannotAuthenticateToAdminDB",
    })

    CLIENT_SESSION = MappingProxyType({
        225: "TransactionTooOld",
        244: "TransactionAborted",
        251: "NoSuchTransaction",
        256: "TransactionCommitted",
        257: "TransactionTooLarge",
        263: "OperationNotSupportedInTransaction",
        267: "PreparedTransactionInProgress",
    })

    @classmethod
    def is_data_access_resource_failure_code(cls, code: int | None) -> bool:
        return code in cls.DATA_ACCESS_RESOURCE_FAILURE

    @classmethod
    def is_data_integrity_violation_code(cls, code: int | None) -> bool:
        return code in cls.DATA_INTEGRITY_VIOLATION

    @classmethod
    def is_duplicate_key_code(cls, code: int | None) -> bool:
        return code in cls.DUPLICATE_KEY

    @classmethod
    def is_invalid_data_access_api_usage_code(cls, code: int | None) -> bool:
        return code in cls.INVALID_DATA_ACCESS_API_USAGE or code in _LEGACY_API_USAGE_CODES

    @classmethod
    def is_permission_denied_code(cls, code: int | None) -> bool:
        return code in cls.PERMISSION_DENIED

    @classmethod
    def is_client_session_failure_code(cls, code: int | None) -> bool:
        return code in cls.CLIENT_SESSION

    @classmethod
    def get_error_description(cls, code: int | None) -> str | None:
        for table in (
            cls.DATA_ACCESS_RESOURCE_FAILURE,
            cls.DATA_INTEGRITY_VIOLATION,
            cls.DUPLICATE_KEY,
            cls.INVALID_DATA_ACCESS_API_USAGE,
            cls.PERMISSION_DENIED,
            cls.CLIENT_SESSION,
        ):
            if code in table:
                return table[code]

        return None


class MongoExceptionTranslator:
    """Translates driver exceptions into `DataAccessError`s. Stateless, one instance may be shared."""

    def translate_exception_if_possible(self, error: BaseException) -> Optional[DataAccessError]:
        """Translates an exception when it came from the driver.

        Returns:
            `Optional.Some` with the translated exception, or `Optional.Nothing` when the exception is not a driver
            exception and should be propagated unchanged.
        """
        translated = self._translate(error)
        match translated:
            case Optional.Some(result):
                logger.debug(f"Translated {type(error).__name__} to {type(result).__name__}")

            case _:
                logger.debug(f"No translation for {type(error).__name__}")

        return translated

    def _translate(self, error: BaseException) -> Optional[DataAccessError]:
        message = str(error)
        name = type(error).__name__
        if name in DUPLICATE_KEY_EXCEPTIONS:
            return Optional.Some(DuplicateKeyError(message, cause=error))

        if name in RESOURCE_FAILURE_EXCEPTIONS:
            return Optional.Some(DataAccessResourceFailureError(message, cause=error))

        if name in RESOURCE_USAGE_EXCEPTIONS:
            return Optional.Some(InvalidDataAccessResourceUsageError(message, cause=error))

        if name in DATA_INTEGRITY_EXCEPTIONS:
            return Optional.Some(DataIntegrityViolationError(message, cause=error))

        if name in API_USAGE_EXCEPTIONS:
            return Optional.Some(InvalidDataAccessApiUsageError(message, cause=error))

        if TRANSIENT_TRANSACTION_LABEL in _error_labels(error):
            return Optional.Some(TransientClientSessionError(message, cause=error))

        if isinstance(error, BulkWriteError):
            return Optional.Some(self._translate_bulk_write_error(error))

        if _is_security_failure(error):
            return Optional.Some(PermissionDeniedError(message, cause=error))

        code = _error_code(error)
        if (translated := self._translate_code(code, message, error)) is not None:
            return Optional.Some(translated)

        if isinstance(error, PyMongoError):
            return Optional.Some(
                UncategorizedMongoDbError(message, cause=error, code=code, error_labels=_error_labels(error))
            )

        return Optional.Nothing()

    def _translate_code(self, code: int | None, message: str, error: BaseException) -> DataAccessError | None:
        if code is None:
            return None

        if MongoErrorCodes.is_duplicate_key_code(code):
            return DuplicateKeyError(message, cause=error)

        if MongoErrorCodes.is_data_access_resource_failure_code(code):
            return DataAccessResourceFailureError(message, cause=error)

        if MongoErrorCodes.is_data_integrity_violation_code(code):
            return DataIntegrityViolationError(message, cause=error)

        if MongoErrorCodes.is_invalid_data_access_api_usage_code(code):
            return InvalidDataAccessApiUsageError(message, cause=error)

        if MongoErrorCodes.is_permission_denied_code(code):
            return PermissionDeniedError(message, cause=error)

        if MongoErrorCodes.is_client_session_failure_code(code):
            return ClientSessionError(message, cause=error)

        return None

    def _translate_bulk_write_error(self, error: BulkWriteError) -> DataAccessError:
        return translate_bulk_write_error(error, inspect_write_errors=True)


def translate_bulk_write_error(error: BulkWriteError, *, inspect_write_errors: bool = False) -> DataAccessError:
    """Translates a failed bulk write.

    Write concern errors are integrity violations. When `inspect_write_errors` is set, a duplicate key among the write
    errors is reported as a `DuplicateKeyError`. Everything else becomes a `BulkOperationError` carrying the partial
    result.
    """
    details: dict[str, Any] = error.details or {}
    message = str(error)
    write_errors = details.get("writeErrors", [])
    write_concern_errors = details.get("writeConcernErrors", [])
    if write_concern_errors:
        return DataIntegrityViolationError(message, cause=error)

    if inspect_write_errors and any(MongoErrorCodes.is_duplicate_key_code(e.get("code")) for e in write_errors):
        return DuplicateKeyError(message, cause=error)

    return BulkOperationError(
        message,
        cause=error,
        errors=write_errors,
        write_concern_errors=write_concern_errors,
        result=BulkWriteResult(details, True),
    )


def _error_code(error: BaseException) -> int | None:
    code = getattr(error, "code", None)
    return code if isinstance(code, int) and not isinstance(code, bool) else None


def _error_labels(error: BaseException) -> tuple[str, ...]:
    labels = getattr(error, "_error_labels", None)
    if labels is None:
        details = getattr(error, "details", None)
        labels = details.get("errorLabels", ()) if isinstance(details, dict) else ()

    return tuple(labels)


def _is_security_failure(error: BaseException) -> bool:
    cause = error.__cause__
    return cause is not None and type(cause).__name__ in SECURITY_EXCEPTIONS


@contextmanager
def translated_errors(translator: MongoExceptionTranslator | None = None):
    """Raises driver errors inside the block as their translated data access errors.

    Errors without a translation propagate unchanged.
    """
    try:
        yield
    except PyMongoError as error:
        match (translator or MongoExceptionTranslator()).translate_exception_if_possible(error):
            case Optional.Some(translated):
                raise translated from error

        raise
