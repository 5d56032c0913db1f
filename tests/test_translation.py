import pytest
from pymongo.errors import (
    AutoReconnect,
    BulkWriteError,
    CollectionInvalid,
    InvalidOperation,
    OperationFailure,
    PyMongoError,
    ServerSelectionTimeoutError,
    WTimeoutError,
)
from pymongo.errors import DuplicateKeyError as DriverDuplicateKeyError

from mongomap.exceptions import (
    BulkOperationError,
    ClientSessionError,
    DataAccessResourceFailureError,
    DataIntegrityViolationError,
    DuplicateKeyError,
    InvalidDataAccessApiUsageError,
    InvalidDataAccessResourceUsageError,
    PermissionDeniedError,
    TransientClientSessionError,
    UncategorizedMongoDbError,
)
from mongomap.translation import MongoErrorCodes, MongoExceptionTranslator, translated_errors


DuplicateKeyException = type("DuplicateKeyException", (Exception,), {})
MongoSecurityException = type("MongoSecurityException", (Exception,), {})


@pytest.fixture
def translator():
    return MongoExceptionTranslator()


def translate(translator, error):
    return translator.translate_exception_if_possible(error).value_or(None)


def test_duplicate_key_class_name(translator):
    translated = translate(translator, DuplicateKeyException("E11000"))
    assert isinstance(translated, DuplicateKeyError)


@pytest.mark.parametrize(
    "error, expected",
    [
        (DriverDuplicateKeyError("E11000", 11000), DuplicateKeyError),
        (AutoReconnect("connection reset"), DataAccessResourceFailureError),
        (ServerSelectionTimeoutError("no servers"), DataAccessResourceFailureError),
        (CollectionInvalid("exists"), InvalidDataAccessResourceUsageError),
        (WTimeoutError("timeout", 64), DataIntegrityViolationError),
        (InvalidOperation("closed"), InvalidDataAccessApiUsageError),
    ],
)
def test_class_names(translator, error, expected):
    assert type(translate(translator, error)) is expected


@pytest.mark.parametrize(
    "code, expected",
    [
        (11000, DuplicateKeyError),
        (6, DataAccessResourceFailureError),
        (121, DataIntegrityViolationError),
        (40, InvalidDataAccessApiUsageError),
        (12010, InvalidDataAccessApiUsageError),
        (13, PermissionDeniedError),
        (251, ClientSessionError),
    ],
)
def test_error_codes(translator, code, expected):
    assert type(translate(translator, OperationFailure("failed", code))) is expected


def test_transient_transaction_label(translator):
    error = OperationFailure("write conflict", 112, {"errorLabels": ["TransientTransactionError"]})
    assert isinstance(translate(translator, error), TransientClientSessionError)


def test_security_cause(translator):
    error = PyMongoError("authentication failed")
    error.__cause__ = MongoSecurityException()
    assert isinstance(translate(translator, error), PermissionDeniedError)


def test_uncategorized_driver_errors(translator):
    translated = translate(translator, OperationFailure("bad value", 2))
    assert type(translated) is UncategorizedMongoDbError
    assert translated.code == 2


def test_foreign_exceptions_are_not_translated(translator):
    assert translate(translator, ValueError("nope")) is None
    assert translate(translator, type("SomethingElse", (Exception,), {})()) is None


def test_translated_errors_keep_the_cause(translator):
    error = AutoReconnect("down")
    translated = translate(translator, error)
    assert translated.cause is error


def test_bulk_write_errors(translator):
    duplicate = BulkWriteError({"writeErrors": [{"index": 0, "code": 11000, "errmsg": "dup"}], "nInserted": 0})
    assert isinstance(translate(translator, duplicate), DuplicateKeyError)

    concern = BulkWriteError({"writeErrors": [], "writeConcernErrors": [{"code": 64}], "nInserted": 1})
    assert type(translate(translator, concern)) is DataIntegrityViolationError

    failed = BulkWriteError({"writeErrors": [{"index": 0, "code": 2, "errmsg": "bad"}], "nInserted": 0})
    translated = translate(translator, failed)
    assert isinstance(translated, BulkOperationError)
    assert translated.errors == [{"index": 0, "code": 2, "errmsg": "bad"}]


def test_error_code_tables():
    assert MongoErrorCodes.is_duplicate_key_code(11000)
    assert not MongoErrorCodes.is_duplicate_key_code(None)
    assert MongoErrorCodes.is_permission_denied_code(18)
    assert MongoErrorCodes.is_client_session_failure_code(251)
    assert MongoErrorCodes.get_error_description(11000) == "DuplicateKey"
    assert MongoErrorCodes.get_error_description(99999) is None


def test_translated_errors_context_manager():
    with pytest.raises(DataAccessResourceFailureError) as error:
        with translated_errors():
            raise AutoReconnect("down")

    assert isinstance(error.value.__cause__, AutoReconnect)


def test_translated_errors_leaves_other_errors_alone():
    with pytest.raises(KeyError):
        with translated_errors():
            raise KeyError("missing")
