from dataclasses import dataclass, field
from enum import Enum
from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo.errors import CollectionInvalid

from mongomap.mapping import EntityDescriptor, MappingContext, document
from mongomap.schema import JsonSchemaCreator, apply_schema, delete_schema


class Status(Enum):
    ACTIVE = 1
    BANNED = 2


@dataclass
class Address:
    city: str


@dataclass
class Person:
    name: str
    age: int
    status: Status
    address: Address | None
    tags: list[str]
    verified: bool = False
    id: str | None = None


@dataclass
class TreeNode:
    name: str
    children: list["TreeNode"] = field(default_factory=list)


@pytest.fixture
def context():
    return MappingContext()


@pytest.fixture
def creator(context):
    return JsonSchemaCreator(context)


def test_person_schema(creator):
    schema = creator.create_schema_for(Person)["$jsonSchema"]

    assert schema["bsonType"] == "object"
    assert schema["required"] == ["name", "age", "status", "tags", "verified"]
    assert schema["properties"] == {
        "name": {"bsonType": "string"},
        "age": {"bsonType": ["int", "long"]},
        "status": {"enum": ["ACTIVE", "BANNED"]},
        "address": {"bsonType": "object", "required": ["city"], "properties": {"city": {"bsonType": "string"}}},
        "tags": {"bsonType": "array", "items": {"bsonType": "string"}},
        "verified": {"bsonType": "bool"},
        "_id": {"bsonType": "objectId"},
    }


def test_self_referencing_entities_stop_at_the_cycle(context, creator):
    context.register(EntityDescriptor.builder(TreeNode).field("name", str).field("children", list[TreeNode]).build())
    schema = creator.create_schema_for(TreeNode)["$jsonSchema"]
    assert schema["properties"]["children"] == {"bsonType": "array", "items": {}}


def test_simple_types_have_no_schema(creator):
    with pytest.raises(TypeError):
        creator.create_schema_for(int)


def database():
    db = MagicMock()
    db.create_collection = AsyncMock()
    db.command = AsyncMock()
    db.drop_collection = AsyncMock()
    return db


@pytest.mark.asyncio
async def test_apply_schema_creates_collections(context):
    @document(collection="people", context=context)
    @dataclass
    class Member:
        name: str

    db = database()
    await apply_schema(db, [Member], context)

    validator = JsonSchemaCreator(context).create_schema_for(Member)
    db.create_collection.assert_awaited_once_with("people", validator=validator, session=None)
    db.command.assert_not_awaited()


@pytest.mark.asyncio
async def test_apply_schema_updates_existing_collections(context):
    db = database()
    db.create_collection.side_effect = CollectionInvalid("collection Address already exists")
    await apply_schema(db, [Address], context)

    db.command.assert_awaited_once_with(
        "collMod",
        "Address",
        validator={"$jsonSchema": {"bsonType": "object", "required": ["city"], "properties": {"city": {"bsonType": "string"}}}},
        session=None,
    )


@pytest.mark.asyncio
async def test_delete_schema_drops_collections(context):
    db = database()
    await delete_schema(db, [Person, Address], context)
    assert [call.args[0] for call in db.drop_collection.await_args_list] == ["Person", "Address"]


@pytest.mark.asyncio
async def test_apply_schema_rejects_simple_types(context):
    with pytest.raises(TypeError):
        await apply_schema(database(), [str], context)
