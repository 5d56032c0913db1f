"""
JSON Schema

Derives MongoDB `$jsonSchema` validators from entity descriptors and applies them to collections. Properties map onto
BSON types, non-optional properties are required, enums list their stored names, and embedded entities are described
recursively. An entity that is reached again while it is still being described, such as a tree node holding a list of
child nodes, is emitted as an untyped `{}` schema.
"""
from collections.abc import Iterable
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from bson import Binary, Decimal128, Int64, ObjectId, Regex
from loguru import logger
from motor.motor_asyncio import AsyncIOMotorClientSession, AsyncIOMotorDatabase
from pymongo.errors import CollectionInvalid

from mongomap.mapping import EntityDescriptor, MappingContext, PropertyDescriptor, get_default_context
from mongomap.translation import translated_errors


BSON_TYPES: dict[type, str | list[str]] = {
    bool: "bool",
    int: ["int", "long"],
    Int64: "long",
    float: "double",
    str: "string",
    bytes: "binData",
    Binary: "binData",
    UUID: "binData",
    datetime: "date",
    date: "date",
    Decimal: "decimal",
    Decimal128: "decimal",
    ObjectId: "objectId",
    Regex: "regex",
    dict: "object",
}


class JsonSchemaCreator:
    """Creates `$jsonSchema` validator documents for entity types."""

    def __init__(self, mapping_context: MappingContext | None = None):
        self.mapping_context = mapping_context or get_default_context()

    def create_schema_for(self, entity_type: type) -> dict[str, Any]:
        descriptor = self.mapping_context.get_entity(entity_type)
        if descriptor is None:
            raise TypeError(f"{entity_type!r} is not an entity type")

        return {"$jsonSchema": self._object_schema(descriptor, frozenset())}

    def _object_schema(self, descriptor: EntityDescriptor, path: frozenset[type]) -> dict[str, Any]:
        path |= {descriptor.type}
        properties = {}
        required = []
        for prop in descriptor.persistent_properties:
            properties[prop.field_name] = self._property_schema(prop, descriptor, path)
            if not prop.is_optional:
                required.append(prop.field_name)

        schema: dict[str, Any] = {"bsonType": "object"}
        if required:
            schema["required"] = required

        schema["properties"] = properties
        return schema

    def _property_schema(
        self, prop: PropertyDescriptor, descriptor: EntityDescriptor, path: frozenset[type]
    ) -> dict[str, Any]:
        if prop.converter is not None:
            return {}

        if prop.is_id:
            return self._type_schema(descriptor.native_id_type, path)

        if prop.is_collection:
            return {"bsonType": "array", "items": self._type_schema(prop.element_type, path)}

        return self._type_schema(prop.type, path)

    def _type_schema(self, type_: Any, path: frozenset[type]) -> dict[str, Any]:
        match type_:
            case type() if issubclass(type_, Enum):
                return {"enum": [member.name for member in type_]}

            case type() if type_ in path:
                logger.debug(f"Cycle detected at {type_.__name__}, emitting an untyped schema")
                return {}

            case type() if (bson_type := _bson_type(type_)) is not None:
                return {"bsonType": bson_type}

            case _ if (nested := self.mapping_context.get_entity(type_)) is not None:
                return self._object_schema(nested, path)

            case _:
                return {}


async def apply_schema(
    db: AsyncIOMotorDatabase,
    entity_types: Iterable[type],
    mapping_context: MappingContext | None = None,
    session: AsyncIOMotorClientSession | None = None,
):
    """Creates the collection of each entity type with its validator, updating the validator of existing collections."""
    creator = JsonSchemaCreator(mapping_context)
    for entity_type in entity_types:
        descriptor = creator.mapping_context.get_entity(entity_type)
        if descriptor is None:
            raise TypeError(f"{entity_type!r} is not an entity type")

        validator = creator.create_schema_for(entity_type)
        name = descriptor.collection_name
        with translated_errors():
            try:
                await db.create_collection(name, validator=validator, session=session)
            except CollectionInvalid:
                await db.command("collMod", name, validator=validator, session=session)

        logger.debug(f"Applied schema to {name!r}")


async def delete_schema(
    db: AsyncIOMotorDatabase,
    entity_types: Iterable[type],
    mapping_context: MappingContext | None = None,
    session: AsyncIOMotorClientSession | None = None,
):
    """Drops the collection of each entity type."""
    context = mapping_context or get_default_context()
    for entity_type in entity_types:
        descriptor = context.get_entity(entity_type)
        if descriptor is None:
            raise TypeError(f"{entity_type!r} is not an entity type")

        with translated_errors():
            await db.drop_collection(descriptor.collection_name, session=session)

        logger.debug(f"Dropped {descriptor.collection_name!r}")


def _bson_type(type_: type) -> str | list[str] | None:
    for klass in type_.__mro__:
        if klass in BSON_TYPES:
            return BSON_TYPES[klass]

    return None

