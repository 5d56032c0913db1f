"""
Update Mapper

Maps update documents the way the `QueryMapper` maps filters. Three shapes of update are understood:

-   Operator documents such as `{"$set": {...}, "$inc": {...}}`. Field names inside each operator are translated and
    values converted according to the operator's semantics.
-   Replacement documents, which contain no operators and are mapped like a filter.
-   Aggregation pipelines, a list of `$set`/`$unset`/`$replaceWith` style stages.
"""
from collections.abc import Mapping
from typing import Any

from mongomap.convert.query_mapper import QueryMapper
from mongomap.exceptions import InvalidDataAccessApiUsageError
from mongomap.mapping import ID_FIELD_NAME, EntityDescriptor, PropertyDescriptor


KEY_ONLY_OPERATORS = frozenset({"$unset", "$currentDate", "$pop"})
ARRAY_APPEND_OPERATORS = frozenset({"$push", "$addToSet"})
PIPELINE_FIELD_STAGES = frozenset({"$set", "$addFields", "$project"})
PIPELINE_ROOT_STAGES = frozenset({"$replaceWith", "$replaceRoot"})


class UpdateMapper(QueryMapper):
    """Maps update documents onto the stored representation of an entity."""

    def get_mapped_object(
        self, update: Mapping[str, Any] | list[Mapping[str, Any]] | None, entity: EntityDescriptor | None = None
    ) -> dict[str, Any] | list[dict[str, Any]]:
        match update:
            case None:
                return {}

            case list() | tuple():
                return [self._map_pipeline_stage(stage, entity) for stage in update]

            case Mapping() if is_update_document(update):
                return {
                    operator: self._map_update_operator(operator, fields, entity)
                    for operator, fields in update.items()
                }

            case Mapping():
                return self._map_document(update, entity)

            case _:
                raise TypeError(f"Cannot map an update of type {type(update).__name__}")

    def _map_update_operator(self, operator: str, fields: Any, entity: EntityDescriptor | None) -> Any:
        if not isinstance(fields, Mapping):
            return self.converter.convert_to_mongo_type(fields)

        mapped = {}
        for key, value in fields.items():
            mapped_key, prop, nested = self._resolve_update_key(key, entity)
            if mapped_key in mapped:
                raise InvalidDataAccessApiUsageError(
                    f"Update key '{key}' of {operator} maps to '{mapped_key}', which is already present in the update"
                )

            if mapped_key == ID_FIELD_NAME and operator not in KEY_ONLY_OPERATORS:
                mapped[mapped_key] = self.convert_id(value, entity)
            else:
                mapped[mapped_key] = self._map_update_value(operator, value, prop, nested, entity)

        return mapped

    def _map_update_value(
        self,
        operator: str,
        value: Any,
        prop: PropertyDescriptor | None,
        nested: EntityDescriptor | None,
        entity: EntityDescriptor | None,
    ) -> Any:
        match operator:
            case _ if operator in KEY_ONLY_OPERATORS:
                return value

            case "$rename":
                return self.determine_key(value, entity) if isinstance(value, str) else value

            case _ if operator in ARRAY_APPEND_OPERATORS:
                return self._map_array_append(value, prop, nested)

            case "$pull":
                return self._map_pull(value, prop, nested)

            case "$pullAll":
                return [self._convert_element(item, prop, nested) for item in value]

            case _:
                return self._convert_update_value(value, prop, nested)

    def _map_array_append(self, value: Any, prop: PropertyDescriptor | None, nested: EntityDescriptor | None) -> Any:
        if isinstance(value, Mapping) and "$each" in value:
            mapped = dict(value)
            mapped["$each"] = [self._convert_element(item, prop, nested) for item in value["$each"]]
            if isinstance(mapped.get("$sort"), Mapping):
                mapped["$sort"] = self.get_mapped_sort(mapped["$sort"], nested)

            return mapped

        return self._convert_element(value, prop, nested)

    def _map_pull(self, value: Any, prop: PropertyDescriptor | None, nested: EntityDescriptor | None) -> Any:
        """`$pull` takes either a value to remove or a condition matched against each element."""
        match value:
            case Mapping() if value and all(key.startswith("$") for key in value):
                return self._map_value(value, prop, nested)

            case Mapping():
                return self._map_document(value, nested)

            case _:
                return self._convert_element(value, prop, nested)

    def _convert_update_value(self, value: Any, prop: PropertyDescriptor | None, nested: EntityDescriptor | None) -> Any:
        match value:
            case None:
                return None

            case Mapping() if nested is not None:
                return self._map_document(value, nested)

            case list() | tuple() if prop is not None and prop.is_collection and prop.converter is None:
                return [self._convert_element(item, prop, nested) for item in value]

            case _ if prop is not None and prop.converter is not None:
                return self.converter.write_property(prop, value)

            case _:
                return self.converter.convert_to_mongo_type(value)

    def _convert_element(self, value: Any, prop: PropertyDescriptor | None, nested: EntityDescriptor | None) -> Any:
        match value:
            case Mapping() if nested is not None:
                return self._map_document(value, nested)

            case _ if prop is not None and prop.converter is not None and value is not None:
                return prop.converter.write(value)

            case _:
                return self.converter.convert_to_mongo_type(value)

    def _resolve_update_key(
        self, key: str, entity: EntityDescriptor | None
    ) -> tuple[str, PropertyDescriptor | None, EntityDescriptor | None]:
        if self.is_id_key(key, entity):
            return ID_FIELD_NAME, entity.id_property if entity else None, None

        return self._resolve_path(key, entity)

    def _map_pipeline_stage(self, stage: Mapping[str, Any], entity: EntityDescriptor | None) -> dict[str, Any]:
        mapped = {}
        for operator, operand in stage.items():
            match operator, operand:
                case "$unset", str():
                    mapped[operator] = self.determine_key(operand, entity)

                case "$unset", list() | tuple():
                    mapped[operator] = [self.determine_key(name, entity) for name in operand]

                case _, Mapping() if operator in PIPELINE_FIELD_STAGES:
                    mapped[operator] = {
                        self.determine_key(key, entity): self._map_expression(value, entity)
                        for key, value in operand.items()
                    }

                case _ if operator in PIPELINE_ROOT_STAGES:
                    mapped[operator] = self._map_expression(operand, entity)

                case _:
                    mapped[operator] = operand

        return mapped

    def _map_expression(self, expression: Any, entity: EntityDescriptor | None) -> Any:
        """Maps `$field` references in an aggregation expression. Variables (`$$name`) are kept."""
        match expression:
            case str() if expression.startswith("$") and not expression.startswith("$$"):
                return f"${self.determine_key(expression[1:], entity)}"

            case Mapping():
                return {key: self._map_expression(value, entity) for key, value in expression.items()}

            case list() | tuple():
                return [self._map_expression(item, entity) for item in expression]

            case _:
                return self.converter.convert_to_mongo_type(expression)


def is_update_document(document: Mapping[str, Any]) -> bool:
    """Whether a document consists of update operators rather than replacement fields."""
    return bool(document) and all(isinstance(key, str) and key.startswith("$") for key in document)
