"""
Mongo Converter

Converts between Python values and the values the driver can store. `convert_to_mongo_type` is the generic "to
storage" path used by the query and update mappers, `write` turns an entity instance into a document, and `read` turns
a document back into an entity instance.
"""
import re
from collections.abc import Mapping
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any, Type, TypeVar
from uuid import UUID

from bson import Binary, Code, DBRef, Decimal128, Int64, MaxKey, MinKey, ObjectId, Regex, Timestamp
from bson.binary import UuidRepresentation

from mongomap.convert.conversions import ConversionService
from mongomap.exceptions import ConversionError, MappingError
from mongomap.mapping import EntityDescriptor, MappingContext, PropertyDescriptor, get_default_context


T = TypeVar("T")

DEFAULT_TYPE_KEY = "_class"

NATIVE_TYPES = (
    str, int, float, bool, bytes, type(None),
    datetime, ObjectId, Decimal128, Binary, Int64, Regex, re.Pattern,
    DBRef, Code, Timestamp, MinKey, MaxKey,
)


class MongoConverter:
    """Converts values and entities to and from their stored representation.

    Attributes:
        conversion_service: The converters consulted for identifier coercion and custom writers
        mapping_context: The source of entity descriptors
        type_key: The document key type aliases are written under, `None` disables type aliases
    """
    def __init__(
        self,
        mapping_context: MappingContext | None = None,
        conversion_service: ConversionService | None = None,
        *,
        type_key: str | None = DEFAULT_TYPE_KEY,
        uuid_representation: int = UuidRepresentation.STANDARD,
    ):
        self.mapping_context = mapping_context or get_default_context()
        self.conversion_service = conversion_service or ConversionService()
        self.type_key = type_key
        self._uuid_representation = uuid_representation

    def convert_to_mongo_type(self, value: Any) -> Any:
        """Converts a value to a type the driver can store.

        Registered writers win over the generic rules. Enums are stored by name, dates as midnight datetimes, decimals as
        `Decimal128`, UUIDs as binary, mappings and collections are converted recursively, and entity instances are
        written as embedded documents. Values of any other type are returned unchanged.
        """
        if (writer := self.conversion_service.get_writer(type(value))) is not None:
            return writer(value)

        match value:
            case Enum():
                return value.name

            case _ if isinstance(value, NATIVE_TYPES):
                return value

            case date():
                return datetime.combine(value, time())

            case Decimal():
                return Decimal128(value)

            case UUID():
                return Binary.from_uuid(value, self._uuid_representation)

            case Mapping():
                return {str(key): self.convert_to_mongo_type(item) for key, item in value.items()}

            case list() | tuple() | set() | frozenset():
                return [self.convert_to_mongo_type(item) for item in value]

            case _ if self.mapping_context.is_entity_type(type(value)):
                return self.write(value)

            case _:
                return value

    def write(self, entity: Any, descriptor: EntityDescriptor | None = None) -> dict[str, Any]:
        """Writes an entity instance to a new document.

        The id is stored under `_id` and omitted while it is `None`. String ids that are valid object id hex strings
        are stored as `ObjectId`.
        """
        if entity is None:
            raise ValueError("Cannot write None to a document")

        if isinstance(entity, Mapping):
            return self.convert_to_mongo_type(entity)

        descriptor = descriptor or self._require_entity(type(entity))
        document = {}
        for prop in descriptor.persistent_properties:
            value = getattr(entity, prop.name, None)
            if prop.is_id:
                if value is not None:
                    document[prop.field_name] = self._write_id(value, descriptor)

                continue

            document[prop.field_name] = self.write_property(prop, value)

        if self.type_key and descriptor.alias:
            document[self.type_key] = descriptor.alias

        return document

    def write_property(self, prop: PropertyDescriptor, value: Any) -> Any:
        """Converts a property value with the property's converter, or the generic rules when it declares none."""
        if value is None:
            return None

        if prop.converter is None:
            return self.convert_to_mongo_type(value)

        if prop.is_collection and isinstance(value, (list, tuple, set, frozenset)):
            return [prop.converter.write(item) for item in value]

        return prop.converter.write(value)

    def read(self, entity_type: Type[T], document: Mapping[str, Any]) -> T:
        """Reads a document into a new instance of the entity type."""
        descriptor = self._require_entity(entity_type)
        init_data = {}
        for prop in descriptor.persistent_properties:
            if prop.field_name not in document:
                continue

            init_data[prop.name] = self.read_property(prop, document[prop.field_name])

        try:
            return entity_type(**init_data)
        except TypeError as error:
            raise MappingError(
                f"Failed to instantiate {entity_type.__name__} from document {dict(document)!r}: {error}"
            ) from error

    def read_property(self, prop: PropertyDescriptor, value: Any) -> Any:
        if value is None:
            return None

        if prop.converter is not None:
            if prop.is_collection and isinstance(value, list):
                return [prop.converter.read(item) for item in value]

            return prop.converter.read(value)

        if prop.is_collection and isinstance(value, list):
            items = [self._read_value(prop.element_type, item) for item in value]
            return prop.type(items) if prop.type in (tuple, set, frozenset) else items

        return self._read_value(prop.type, value)

    def _read_value(self, target: Any, value: Any) -> Any:
        match value:
            case Mapping() if (nested := self.mapping_context.get_entity(target)) is not None:
                return self.read(nested.type, value)

            case str() if isinstance(target, type) and issubclass(target, Enum):
                return target[value]

            case ObjectId() if target is str:
                return str(value)

            case Decimal128() if target is Decimal:
                return value.to_decimal()

            case Binary() if target is UUID:
                return value.as_uuid(self._uuid_representation)

            case datetime() if target is date:
                return value.date()

            case _:
                return value

    def _write_id(self, value: Any, descriptor: EntityDescriptor) -> Any:
        try:
            return self.conversion_service.convert(value, descriptor.native_id_type)
        except ConversionError:
            return self.convert_to_mongo_type(value)

    def _require_entity(self, entity_type: type) -> EntityDescriptor:
        descriptor = self.mapping_context.get_entity(entity_type)
        if descriptor is None:
            raise MappingError(f"{entity_type!r} is not an entity type")

        return descriptor

