"""
Aggregation

Builders for aggregation pipelines. Stages are written against property names and are rendered through an aggregation
context: `AggregationContext` leaves field names as they are, `TypedAggregationContext` translates them through an
entity descriptor and maps `$match` filters with the `QueryMapper`.

    ```python
    pipeline = Aggregation(
        match(where("age").gte(18)),
        group("city", total=sum_of("age")),
        sort("total", Direction.DESCENDING),
        limit(10),
    ).to_pipeline(TypedAggregationContext(descriptor, query_mapper))
    ```

`AggregationUpdate` builds the pipeline form of an update, usable anywhere an `Update` is accepted by the bulk
operations.
"""
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, Self

from mongomap.convert import QueryMapper
from mongomap.mapping import EntityDescriptor
from mongomap.query import Criteria, Direction


class AggregationContext:
    """Renders stages without any field translation."""

    def get_mapped_object(self, document: Mapping[str, Any]) -> dict[str, Any]:
        return dict(document)

    def get_field_name(self, name: str) -> str:
        return name

    def get_reference(self, name: str) -> str:
        """The `$`-prefixed field path for a property name."""
        return f"${self.get_field_name(name.removeprefix('$'))}"

    def map_expression(self, expression: Any) -> Any:
        """Translates `$field` paths in an expression. Variables (`$$name`) are kept as they are."""
        match expression:
            case str() if expression.startswith("$") and not expression.startswith("$$"):
                return self.get_reference(expression)

            case Mapping():
                return {key: self.map_expression(value) for key, value in expression.items()}

            case list() | tuple():
                return [self.map_expression(item) for item in expression]

            case _:
                return expression


class TypedAggregationContext(AggregationContext):
    """Renders stages for an input entity, translating property names to storage names."""

    def __init__(self, entity: EntityDescriptor, query_mapper: QueryMapper):
        self.entity = entity
        self.query_mapper = query_mapper

    def get_mapped_object(self, document: Mapping[str, Any]) -> dict[str, Any]:
        return self.query_mapper.get_mapped_object(document, self.entity)

    def get_field_name(self, name: str) -> str:
        return self.query_mapper.determine_key(name, self.entity)

    def map_expression(self, expression: Any) -> Any:
        mapped = super().map_expression(expression)
        return self.query_mapper.converter.convert_to_mongo_type(mapped)


class Stage(Protocol):
    def to_document(self, context: AggregationContext) -> dict[str, Any]:
        ...


@dataclass(frozen=True)
class MatchStage:
    criteria: Criteria | Mapping[str, Any]

    def to_document(self, context: AggregationContext) -> dict[str, Any]:
        document = self.criteria.to_document() if isinstance(self.criteria, Criteria) else self.criteria
        return {"$match": context.get_mapped_object(document)}


@dataclass(frozen=True)
class SortStage:
    orders: tuple[tuple[str, int], ...]

    def to_document(self, context: AggregationContext) -> dict[str, Any]:
        return {"$sort": {context.get_field_name(name): direction for name, direction in self.orders}}


@dataclass(frozen=True)
class ProjectStage:
    fields: Mapping[str, Any]

    def to_document(self, context: AggregationContext) -> dict[str, Any]:
        return {
            "$project": {
                context.get_field_name(name): context.map_expression(value) for name, value in self.fields.items()
            }
        }


@dataclass(frozen=True)
class UnwindStage:
    path: str
    preserve_null_and_empty_arrays: bool = False
    include_array_index: str | None = None

    def to_document(self, context: AggregationContext) -> dict[str, Any]:
        reference = context.get_reference(self.path)
        if not self.preserve_null_and_empty_arrays and self.include_array_index is None:
            return {"$unwind": reference}

        options = {"path": reference}
        if self.include_array_index is not None:
            options["includeArrayIndex"] = self.include_array_index

        if self.preserve_null_and_empty_arrays:
            options["preserveNullAndEmptyArrays"] = True

        return {"$unwind": options}


@dataclass(frozen=True)
class LookupStage:
    from_collection: str
    local_field: str
    foreign_field: str
    as_field: str

    def to_document(self, context: AggregationContext) -> dict[str, Any]:
        return {
            "$lookup": {
                "from": self.from_collection,
                "localField": context.get_field_name(self.local_field),
                "foreignField": self.foreign_field,
                "as": self.as_field,
            }
        }


@dataclass(frozen=True)
class GroupStage:
    keys: tuple[str, ...]
    accumulators: Mapping[str, Any] = field(default_factory=dict)

    def to_document(self, context: AggregationContext) -> dict[str, Any]:
        match self.keys:
            case ():
                group_id = None

            case (key,):
                group_id = context.get_reference(key)

            case _:
                group_id = {key.replace(".", "_"): context.get_reference(key) for key in self.keys}

        group = {"_id": group_id}
        for name, expression in self.accumulators.items():
            group[name] = context.map_expression(expression)

        return {"$group": group}


@dataclass(frozen=True)
class FieldsStage:
    operator: str
    fields: Mapping[str, Any]

    def to_document(self, context: AggregationContext) -> dict[str, Any]:
        return {
            self.operator: {
                context.get_field_name(name): context.map_expression(value) for name, value in self.fields.items()
            }
        }


@dataclass(frozen=True)
class UnsetStage:
    fields: tuple[str, ...]

    def to_document(self, context: AggregationContext) -> dict[str, Any]:
        names = [context.get_field_name(name) for name in self.fields]
        return {"$unset": names[0] if len(names) == 1 else names}


@dataclass(frozen=True)
class ReplaceWithStage:
    replacement: Any

    def to_document(self, context: AggregationContext) -> dict[str, Any]:
        return {"$replaceWith": context.map_expression(self.replacement)}


@dataclass(frozen=True)
class RawStage:
    document: Mapping[str, Any]

    def to_document(self, context: AggregationContext) -> dict[str, Any]:
        return dict(self.document)


def match(criteria: Criteria | Mapping[str, Any]) -> MatchStage:
    return MatchStage(criteria)


def sort(key: str | Mapping[str, Direction | int], direction: Direction = Direction.ASCENDING) -> SortStage:
    if isinstance(key, Mapping):
        return SortStage(tuple((name, _direction_value(value)) for name, value in key.items()))

    return SortStage(((key, direction.value),))


def skip(count: int) -> RawStage:
    return RawStage({"$skip": count})


def limit(count: int) -> RawStage:
    return RawStage({"$limit": count})


def project(*fields: str, **expressions: Any) -> ProjectStage:
    """Includes the named fields and adds computed fields from expressions."""
    return ProjectStage({**dict.fromkeys(fields, 1), **expressions})


def unwind(path: str, *, preserve_null_and_empty_arrays: bool = False, include_array_index: str | None = None) -> UnwindStage:
    return UnwindStage(path, preserve_null_and_empty_arrays, include_array_index)


def lookup(from_collection: str, local_field: str, foreign_field: str, as_field: str) -> LookupStage:
    return LookupStage(from_collection, local_field, foreign_field, as_field)


def group(*keys: str, **accumulators: Any) -> GroupStage:
    return GroupStage(keys, accumulators)


def count(field_name: str = "count") -> RawStage:
    return RawStage({"$count": field_name})


def add_fields(**fields: Any) -> FieldsStage:
    return FieldsStage("$addFields", fields)


def stage(document: Mapping[str, Any]) -> RawStage:
    """A stage passed to the server as it is written."""
    if len(document) != 1:
        raise ValueError(f"An aggregation stage has exactly one operator, got {list(document)}")

    return RawStage(document)


def sum_of(name: str | int) -> dict[str, Any]:
    return {"$sum": f"${name}" if isinstance(name, str) else name}


def avg_of(name: str) -> dict[str, Any]:
    return {"$avg": f"${name}"}


class Aggregation:
    """An ordered pipeline of stages."""

    def __init__(self, *stages: Stage):
        self.stages: list[Stage] = list(stages)

    def then(self, *stages: Stage) -> Self:
        self.stages.extend(stages)
        return self

    def to_pipeline(self, context: AggregationContext | None = None) -> list[dict[str, Any]]:
        context = context or AggregationContext()
        return [stage.to_document(context) for stage in self.stages]

    def __repr__(self):
        return f"<{type(self).__name__} {self.to_pipeline()!r}>"


class AggregationUpdate:
    """An update expressed as an aggregation pipeline of `$set`, `$unset` and `$replaceWith` stages."""

    def __init__(self):
        self.stages: list[Stage] = []

    @classmethod
    def update(cls) -> "AggregationUpdate":
        return cls()

    def set(self, key: str, value: Any) -> Self:
        self.stages.append(FieldsStage("$set", {key: value}))
        return self

    def unset(self, *keys: str) -> Self:
        self.stages.append(UnsetStage(keys))
        return self

    def replace_with(self, replacement: Any) -> Self:
        self.stages.append(ReplaceWithStage(replacement))
        return self

    def to_pipeline(self, context: AggregationContext | None = None) -> list[dict[str, Any]]:
        context = context or AggregationContext()
        return [stage.to_document(context) for stage in self.stages]

    @property
    def array_filters(self) -> list[dict[str, Any]]:
        return []

    def __repr__(self):
        return f"<{type(self).__name__} {self.to_pipeline()!r}>"


def _direction_value(direction: Direction | int) -> int:
    return direction.value if isinstance(direction, Direction) else direction
