"""
Query Mapper

Rewrites a filter document written against a domain type into the document the driver receives. Every key of the
filter is classified and handled by kind:

-   **Id key**: `id`/`_id`, or the entity's declared id property. The key becomes `_id` and values are coerced to the
    entity's native id type, including the operands of `$in`, `$nin`, and `$ne`.
-   **Combinator**: `$and`, `$or`, `$nor`. Each branch is mapped as a filter of its own.
-   **Operator**: any other `$`-prefixed key. The operand is mapped in the context of the enclosing property.
-   **Field**: a property path. The name is translated to its storage alias and the value is converted.

The mapper holds no state besides its converter, so one instance can be shared freely. Input documents are never
modified and mapping an already mapped document returns an equal document. Two keys of one document that map to the
same storage key, like `id` next to `_id` or a property next to its alias, are rejected.
"""
from collections.abc import Mapping
from typing import Any

from bson import ObjectId

from mongomap.convert.converter import MongoConverter
from mongomap.exceptions import ConversionError, InvalidDataAccessApiUsageError
from mongomap.mapping import DEFAULT_ID_NAMES, ID_FIELD_NAME, EntityDescriptor, PropertyDescriptor


COMBINATORS = frozenset({"$and", "$or", "$nor"})
ID_OPERATORS = ("$in", "$nin", "$ne")
LIST_OPERATORS = frozenset({"$in", "$nin", "$all"})
VALUE_OPERATORS = frozenset({"$eq", "$ne", "$gt", "$gte", "$lt", "$lte", "$in", "$nin", "$all"})


class QueryMapper:
    """Maps filter documents onto the stored representation of an entity.

    Attributes:
        converter: Converts values to storable types and supplies the conversion service and mapping context
    """
    def __init__(self, converter: MongoConverter):
        if converter is None:
            raise ValueError("QueryMapper requires a converter")

        self.converter = converter
        self.conversion_service = converter.conversion_service
        self.mapping_context = converter.mapping_context

    def get_mapped_object(
        self, query: Mapping[str, Any] | None, entity: EntityDescriptor | None = None
    ) -> dict[str, Any]:
        """Maps a filter document.

        Args:
            query: The filter to map, `None` is treated as an empty filter
            entity: The descriptor of the queried type, if known

        Returns:
            A new document with storage field names and converted values.
        """
        return self._map_document(query, entity)

    def get_mapped_sort(
        self, sort: Mapping[str, Any] | None, entity: EntityDescriptor | None = None
    ) -> dict[str, Any]:
        return {self.determine_key(key, entity): direction for key, direction in (sort or {}).items()}

    def get_mapped_fields(
        self, fields: Mapping[str, Any] | None, entity: EntityDescriptor | None = None
    ) -> dict[str, Any]:
        return {self.determine_key(key, entity): projection for key, projection in (fields or {}).items()}

    def is_id_key(self, key: str, entity: EntityDescriptor | None) -> bool:
        """Whether a key refers to the identifier.

        A declared id property is authoritative. Without one, the raw keys `id` and `_id` are used.
        """
        if entity is not None and (id_property := entity.id_property) is not None:
            return key in (id_property.name, id_property.field_name)

        return key in DEFAULT_ID_NAMES

    def determine_key(self, key: str, entity: EntityDescriptor | None) -> str:
        """Translates a property path into the storage field path."""
        if self.is_id_key(key, entity):
            return ID_FIELD_NAME

        return self._resolve_path(key, entity)[0]

    def convert_id(self, id_value: Any, entity: EntityDescriptor | None = None) -> Any:
        """Coerces a value to the entity's native id type on a best effort basis.

        The conversion service is tried first, then the generic storage conversion. When neither produces a value, the
        original value is returned unchanged. This never raises.
        """
        target = entity.native_id_type if entity is not None else ObjectId
        try:
            return self.conversion_service.convert(id_value, target)
        except ConversionError:
            pass

        try:
            return self.converter.convert_to_mongo_type(id_value)
        except (ConversionError, TypeError, ValueError):
            return id_value

    def _map_document(self, query: Mapping[str, Any] | None, entity: EntityDescriptor | None) -> dict[str, Any]:
        result = {}
        for key, value in (query or {}).items():
            mapped_key, mapped_value = self._map_entry(key, value, entity)
            if mapped_key in result:
                raise InvalidDataAccessApiUsageError(
                    f"Filter key '{key}' maps to '{mapped_key}', which is already present in the filter"
                )

            result[mapped_key] = mapped_value

        return result

    def _map_entry(self, key: str, value: Any, entity: EntityDescriptor | None) -> tuple[str, Any]:
        if key in COMBINATORS:
            return key, self._map_combinator(value, entity)

        if self.is_id_key(key, entity):
            return ID_FIELD_NAME, self._map_id_value(value, entity)

        if key.startswith("$"):
            return key, self._map_operand(key, value, None, entity)

        mapped_key, prop, nested = self._resolve_path(key, entity)
        return mapped_key, self._map_value(value, prop, nested)

    def _map_combinator(self, value: Any, entity: EntityDescriptor | None) -> Any:
        match value:
            case list() | tuple():
                return [
                    self._map_document(condition, entity) if isinstance(condition, Mapping) else condition
                    for condition in value
                ]

            case _:
                return self.converter.convert_to_mongo_type(value)

    def _map_id_value(self, value: Any, entity: EntityDescriptor | None) -> Any:
        match value:
            case Mapping() if any(operator in value for operator in ID_OPERATORS):
                return {
                    operator: self._map_id_operand(operator, operand, entity)
                    for operator, operand in value.items()
                }

            case Mapping():
                return self._map_document(value, None)

            case _:
                return self.convert_id(value, entity)

    def _map_id_operand(self, operator: str, operand: Any, entity: EntityDescriptor | None) -> Any:
        match operator, operand:
            case ("$in" | "$nin"), (list() | tuple() | set() | frozenset()):
                return [self.convert_id(item, entity) for item in operand]

            case "$ne", _:
                return self.convert_id(operand, entity)

            case _:
                return operand

    def _map_value(
        self, value: Any, prop: PropertyDescriptor | None, nested: EntityDescriptor | None
    ) -> Any:
        match value:
            case Mapping() if _is_operator_document(value):
                return {
                    operator: self._map_operand(operator, operand, prop, nested)
                    for operator, operand in value.items()
                }

            case Mapping():
                return self._map_document(value, nested)

            case list() | tuple():
                return [self._map_value(item, prop, nested) for item in value]

            case _:
                return self._convert_property_value(value, prop)

    def _map_operand(
        self,
        operator: str,
        operand: Any,
        prop: PropertyDescriptor | None,
        nested: EntityDescriptor | None,
    ) -> Any:
        """Maps the operand of a query operator within the context of the property it applies to.

        Property converters only apply to operators that compare against property values. Operands of other operators,
        like the flag of `$exists` or the pattern of `$regex`, get the generic storage conversion.
        """
        if operator not in VALUE_OPERATORS:
            prop = None

        match operand:
            case Mapping():
                return self._map_document(operand, nested)

            case list() | tuple() | set() | frozenset() if operator in LIST_OPERATORS:
                return [self._map_value(item, prop, nested) for item in operand]

            case list() | tuple():
                return [
                    self._map_document(item, nested)
                    if isinstance(item, Mapping)
                    else self._convert_property_value(item, prop)
                    for item in operand
                ]

            case _:
                return self._convert_property_value(operand, prop)

    def _convert_property_value(self, value: Any, prop: PropertyDescriptor | None) -> Any:
        if prop is not None and prop.converter is not None and value is not None:
            return prop.converter.write(value)

        return self.converter.convert_to_mongo_type(value)

    def _resolve_path(
        self, key: str, entity: EntityDescriptor | None
    ) -> tuple[str, PropertyDescriptor | None, EntityDescriptor | None]:
        """Walks a dotted property path through the entity descriptors.

        Positional segments (`$`, `$[]`, `$[identifier]`) and numeric indexes are kept as they are. A segment that is
        not a known property ends the walk and the rest of the path is kept verbatim.

        Returns:
            The storage path, the leaf property if the whole path resolved, and the entity described by the leaf.
        """
        if entity is None:
            return key, None, None

        segments = key.split(".")
        mapped = []
        current = entity
        prop = None
        for index, segment in enumerate(segments):
            if segment.startswith("$") or segment.isdigit():
                mapped.append(segment)
                continue

            if current is None or (prop := current.get_property(segment)) is None:
                mapped.extend(segments[index:])
                return ".".join(mapped), None, None

            mapped.append(prop.field_name)
            current = self.mapping_context.get_entity(prop.actual_type)

        return ".".join(mapped), prop, current


def _is_operator_document(value: Mapping[str, Any]) -> bool:
    return bool(value) and all(isinstance(key, str) and key.startswith("$") for key in value)
