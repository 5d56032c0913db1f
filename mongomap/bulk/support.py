"""
Bulk Operation Support

The parts shared by the synchronous and asynchronous bulk operations: the bulk mode, the accumulated write models,
the context carrying mappers and lifecycle hooks, and the translation of a write model into a driver request.

Write models are a closed union. Inserts and replacements carry the source entity so lifecycle events can be published
for them. Filters and updates are kept unmapped until execution.
"""
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any

from loguru import logger
from pymongo import DeleteMany, DeleteOne, InsertOne, ReplaceOne, UpdateMany, UpdateOne
from pymongo.errors import BulkWriteError, PyMongoError
from tramp.optionals import Optional

from mongomap.aggregation import AggregationUpdate
from mongomap.convert import MongoConverter, QueryMapper, UpdateMapper
from mongomap.events import (
    AfterSaveEvent,
    BeforeConvertEvent,
    BeforeSaveEvent,
    EntityCallbacks,
    EventPublisher,
    MappingEvent,
)
from mongomap.mapping import EntityDescriptor
from mongomap.query import Query, Update, as_query
from mongomap.translation import MongoExceptionTranslator, translate_bulk_write_error


class BulkMode(Enum):
    """How the server executes a bulk write.

    `ORDERED` stops at the first failing operation. `UNORDERED` attempts every operation and reports all failures.
    """
    ORDERED = auto()
    UNORDERED = auto()


UpdateDefinition = Update | AggregationUpdate | Mapping[str, Any] | list[Mapping[str, Any]]


@dataclass
class InsertModel:
    source: Any
    document: dict[str, Any] | None = None


@dataclass
class UpdateModel:
    query: Query
    update: UpdateDefinition
    multi: bool = False
    upsert: bool = False


@dataclass
class ReplaceModel:
    query: Query
    source: Any
    upsert: bool = False
    document: dict[str, Any] | None = None


@dataclass
class DeleteModel:
    query: Query
    multi: bool = True


WriteModel = InsertModel | UpdateModel | ReplaceModel | DeleteModel


@dataclass(frozen=True)
class BulkOperationContext:
    """Everything a bulk operation needs besides the collection.

    Attributes:
        mode: Ordered or unordered execution
        entity: The descriptor used to map filters and updates, `None` for untyped bulk operations
        query_mapper: Maps filters
        update_mapper: Maps updates
        event_publisher: Receives lifecycle events for inserts and replacements
        entity_callbacks: Called at each lifecycle point for inserts and replacements
    """
    mode: BulkMode
    entity: EntityDescriptor | None
    query_mapper: QueryMapper
    update_mapper: UpdateMapper
    event_publisher: EventPublisher | None = None
    entity_callbacks: EntityCallbacks | None = None


@dataclass
class BulkWriteOptions:
    ordered: bool = True
    bypass_document_validation: bool | None = None
    comment: Any = None

    @classmethod
    def for_mode(cls, mode: BulkMode) -> "BulkWriteOptions":
        match mode:
            case BulkMode.ORDERED:
                return cls(ordered=True)

            case BulkMode.UNORDERED:
                return cls(ordered=False)

            case _:
                raise ValueError(f"Unknown bulk mode {mode!r}")

    def to_kwargs(self) -> dict[str, Any]:
        kwargs = {"ordered": self.ordered}
        if self.bypass_document_validation is not None:
            kwargs["bypass_document_validation"] = self.bypass_document_validation

        if self.comment is not None:
            kwargs["comment"] = self.comment

        return kwargs


@dataclass
class PreparedWrite:
    """A write model paired with the driver request built from it."""
    model: WriteModel
    request: Any
    source: Any = None
    document: dict[str, Any] | None = field(default=None, repr=False)


class BulkOperationsSupport:
    """Accumulates write models and turns them into driver requests."""

    def __init__(
        self,
        collection_name: str,
        context: BulkOperationContext,
        converter: MongoConverter,
        translator: MongoExceptionTranslator | None = None,
    ):
        if not collection_name:
            raise ValueError("Bulk operations require a collection name")

        if context is None:
            raise ValueError("Bulk operations require a BulkOperationContext")

        self.collection_name = collection_name
        self.context = context
        self.converter = converter
        self.translator = translator or MongoExceptionTranslator()
        self._models: list[WriteModel] = []
        self._options = BulkWriteOptions.for_mode(context.mode)

    @property
    def models(self) -> tuple[WriteModel, ...]:
        return tuple(self._models)

    @property
    def options(self) -> BulkWriteOptions:
        return self._options

    def bypass_document_validation(self, bypass: bool = True):
        self._options.bypass_document_validation = bypass
        return self

    def _add_update(self, query: Any, update: UpdateDefinition, *, multi: bool, upsert: bool):
        if update is None:
            raise ValueError("Update must not be None")

        self._models.append(UpdateModel(as_query(query), update, multi=multi, upsert=upsert))
        return self

    def _add_delete(self, query: Any, *, multi: bool):
        self._models.append(DeleteModel(as_query(query), multi=multi))
        return self

    def reset(self):
        """Drops the accumulated models and restores the write options of the bulk mode."""
        self._models = []
        self._options = BulkWriteOptions.for_mode(self.context.mode)

    def _to_document(self, source: Any) -> dict[str, Any]:
        if isinstance(source, Mapping):
            return dict(source)

        return self.converter.write(source)

    def _build_request(self, model: WriteModel, document: dict[str, Any] | None = None) -> Any:
        match model:
            case InsertModel():
                return InsertOne(document)

            case ReplaceModel(query=query, upsert=upsert):
                return ReplaceOne(
                    self._map_query(query),
                    document,
                    upsert=upsert,
                    collation=_collation(query),
                )

            case UpdateModel(query=query, update=update, multi=multi, upsert=upsert):
                request_type = UpdateMany if multi else UpdateOne
                return request_type(
                    self._map_query(query),
                    self._map_update(update),
                    upsert=upsert,
                    collation=_collation(query),
                    array_filters=_array_filters(update),
                )

            case DeleteModel(query=query, multi=multi):
                request_type = DeleteMany if multi else DeleteOne
                return request_type(self._map_query(query), collation=_collation(query))

            case _:
                raise TypeError(f"Unknown write model {model!r}")

    def _map_query(self, query: Query) -> dict[str, Any]:
        return self.context.query_mapper.get_mapped_object(query.to_document(), self.context.entity)

    def _map_update(self, update: UpdateDefinition) -> dict[str, Any] | list[dict[str, Any]]:
        match update:
            case Update():
                document = update.to_document()

            case AggregationUpdate():
                document = update.to_pipeline()

            case _:
                document = update

        return self.context.update_mapper.get_mapped_object(document, self.context.entity)

    def _publish(self, event: MappingEvent):
        if self.context.event_publisher is not None:
            self.context.event_publisher.publish(event)

    def _before_convert_event(self, source: Any):
        self._publish(BeforeConvertEvent(source, None, self.collection_name))

    def _before_save_event(self, write: PreparedWrite):
        self._publish(BeforeSaveEvent(write.source, write.document, self.collection_name))

    def _after_save_event(self, write: PreparedWrite):
        self._publish(AfterSaveEvent(write.source, write.document, self.collection_name))

    def _log_execution(self, count: int):
        logger.debug(
            f"Executing {count} bulk write operation{'' if count == 1 else 's'} "
            f"({self.context.mode.name.lower()}) against {self.collection_name!r}"
        )

    def _translate(self, error: PyMongoError) -> BaseException:
        """The exception to raise for a failed bulk write, the original error when it cannot be translated."""
        if isinstance(error, BulkWriteError):
            return translate_bulk_write_error(error)

        match self.translator.translate_exception_if_possible(error):
            case Optional.Some(translated):
                return translated

            case _:
                return error


def _collation(query: Query):
    return query.collation.to_mongo_collation() if query.collation is not None else None


def _array_filters(update: UpdateDefinition) -> list[dict[str, Any]] | None:
    match update:
        case Update() if update.has_array_filters:
            return update.array_filters

        case _:
            return None
