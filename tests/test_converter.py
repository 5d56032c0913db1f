from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated
from uuid import UUID

import pytest
from bson import Binary, Decimal128, ObjectId

from mongomap.convert import ConversionService, MongoConverter
from mongomap.exceptions import ConversionError, MappingError
from mongomap.mapping import MappingContext, StoreAs, document

OBJECT_ID_HEX = "5f1d7c9e8b3a4c2d1e0f9a8b"

test_context = MappingContext()


class Status(Enum):
    ACTIVE = 1
    CLOSED = 2


@dataclass
class Address:
    street: Annotated[str, StoreAs("street_name")]
    city: str


@document(collection="people", alias="person", context=test_context)
@dataclass
class Person:
    name: Annotated[str, StoreAs("full_name")]
    status: Status = Status.ACTIVE
    address: Address | None = None
    tags: set[str] = field(default_factory=set)
    id: str | None = None


@pytest.fixture
def converter():
    return MongoConverter(test_context)


def test_conversion_service_converts_object_id_strings():
    assert ConversionService().convert(OBJECT_ID_HEX, ObjectId) == ObjectId(OBJECT_ID_HEX)


def test_conversion_service_identity():
    object_id = ObjectId()
    assert ConversionService().convert(object_id, ObjectId) is object_id


def test_conversion_service_rejects_invalid_values():
    with pytest.raises(ConversionError):
        ConversionService().convert("not-an-object-id", ObjectId)


def test_conversion_service_without_converter():
    with pytest.raises(ConversionError):
        ConversionService().convert(1.5, ObjectId)


def test_conversion_service_names_union_targets():
    with pytest.raises(ConversionError, match=r"int \| None"):
        ConversionService().convert("abc", int | None)


def test_conversion_service_uses_base_class_converters():
    class Label(str):
        pass

    assert ConversionService().convert(Label(OBJECT_ID_HEX), ObjectId) == ObjectId(OBJECT_ID_HEX)


def test_registered_writer_wins():
    service = ConversionService().register_writer(Status, lambda status: status.value)
    assert MongoConverter(test_context, service).convert_to_mongo_type(Status.CLOSED) == 2


@pytest.mark.parametrize(
    "value, expected",
    [
        (Status.ACTIVE, "ACTIVE"),
        (date(2024, 5, 1), datetime(2024, 5, 1)),
        (Decimal("1.50"), Decimal128("1.50")),
        ({"when": date(2024, 5, 1)}, {"when": datetime(2024, 5, 1)}),
        ((1, Status.CLOSED), [1, "CLOSED"]),
    ],
)
def test_convert_to_mongo_type(converter, value, expected):
    assert converter.convert_to_mongo_type(value) == expected


def test_uuids_are_stored_as_standard_binary(converter):
    value = UUID("12345678-1234-5678-1234-567812345678")
    stored = converter.convert_to_mongo_type(value)
    assert isinstance(stored, Binary)
    assert stored.subtype == 4


def test_write_entity(converter):
    person = Person("Ada", address=Address("Main St", "London"), id=OBJECT_ID_HEX)
    assert converter.write(person) == {
        "full_name": "Ada",
        "status": "ACTIVE",
        "address": {"street_name": "Main St", "city": "London"},
        "tags": [],
        "_id": ObjectId(OBJECT_ID_HEX),
        "_class": "person",
    }


def test_write_omits_missing_id(converter):
    assert "_id" not in converter.write(Person("Ada"))


def test_write_keeps_ids_that_are_not_object_ids(converter):
    assert converter.write(Person("Ada", id="ada"))["_id"] == "ada"


def test_read_entity(converter):
    person = converter.read(
        Person,
        {
            "_id": ObjectId(OBJECT_ID_HEX),
            "full_name": "Ada",
            "status": "CLOSED",
            "address": {"street_name": "Main St", "city": "London"},
            "tags": ["a", "b"],
            "_class": "person",
        },
    )
    assert person == Person("Ada", Status.CLOSED, Address("Main St", "London"), {"a", "b"}, OBJECT_ID_HEX)


def test_read_rejects_incomplete_documents(converter):
    with pytest.raises(MappingError):
        converter.read(Person, {"status": "ACTIVE"})


def test_read_requires_an_entity_type(converter):
    with pytest.raises(MappingError):
        converter.read(int, {})
