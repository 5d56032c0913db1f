"""
Templates

`MongoTemplate` (pymongo) and `ReactiveMongoTemplate` (motor) are the entry points for working with entities. They
resolve the collection of an entity type, map filters and updates through the `QueryMapper` and `UpdateMapper`,
convert entities with the `MongoConverter`, publish lifecycle events for inserts, and raise every driver failure as a
translated `DataAccessError`.

Example:
    ```python
    from mongomap import MongoTemplate, Update, document, where
    from mongomap.config import MongoSettings, create_client, get_database

    @document(collection="people")
    @dataclass
    class Person:
        id: str | None
        name: str
        age: int

    settings = MongoSettings(database_name="example")
    template = MongoTemplate(get_database(create_client(settings), settings))

    template.insert(Person(None, "Alice", 30))
    adults = template.find(where("age").gte(18), Person)
    template.update_multi(where("name").is_("Alice"), Update().inc("age"), Person)
    ```
"""
from collections.abc import Mapping
from typing import Any, Type, TypeVar

from loguru import logger
from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.results import DeleteResult, UpdateResult

from mongomap.aggregation import Aggregation, AggregationContext, AggregationUpdate, TypedAggregationContext
from mongomap.bulk import BulkMode, BulkOperationContext, BulkOperations, ReactiveBulkOperations
from mongomap.convert import MongoConverter, QueryMapper, UpdateMapper
from mongomap.events import AfterSaveEvent, BeforeConvertEvent, BeforeSaveEvent, CallbackType, EntityCallbacks, EventPublisher
from mongomap.exceptions import MappingError
from mongomap.mapping import EntityDescriptor
from mongomap.query import Query, Update, as_query
from mongomap.translation import MongoExceptionTranslator, translated_errors


T = TypeVar("T")


class _TemplateSupport:
    """The driver independent parts of the templates."""

    def __init__(
        self,
        converter: MongoConverter | None = None,
        *,
        event_publisher: EventPublisher | None = None,
        entity_callbacks: EntityCallbacks | None = None,
        translator: MongoExceptionTranslator | None = None,
    ):
        self.converter = converter or MongoConverter()
        self.query_mapper = QueryMapper(self.converter)
        self.update_mapper = UpdateMapper(self.converter)
        self.event_publisher = event_publisher or EventPublisher()
        self.entity_callbacks = entity_callbacks
        self.translator = translator or MongoExceptionTranslator()

    def get_collection_name(self, entity_type: type) -> str:
        return self._entity(entity_type).collection_name

    def _entity(self, entity_type: type) -> EntityDescriptor:
        descriptor = self.converter.mapping_context.get_entity(entity_type)
        if descriptor is None:
            raise MappingError(f"{entity_type!r} is not an entity type")

        return descriptor

    def _optional_entity(self, entity_type: type | None) -> EntityDescriptor | None:
        return None if entity_type is None else self._entity(entity_type)

    def _resolve_collection_name(self, entity_type: type | None, collection_name: str | None) -> str:
        if collection_name:
            return collection_name

        if entity_type is None:
            raise ValueError("Either an entity type or a collection name is required")

        return self.get_collection_name(entity_type)

    def _find_options(self, query: Query, entity: EntityDescriptor) -> dict[str, Any]:
        options: dict[str, Any] = {"filter": self.query_mapper.get_mapped_object(query.to_document(), entity)}
        if fields := query.fields_document():
            options["projection"] = self.query_mapper.get_mapped_fields(fields, entity)

        if sort := query.sort_document():
            options["sort"] = list(self.query_mapper.get_mapped_sort(sort, entity).items())

        if query.skip_count:
            options["skip"] = query.skip_count

        if query.limit_count:
            options["limit"] = query.limit_count

        if query.collation is not None:
            options["collation"] = query.collation.to_mongo_collation()

        return options

    def _update_arguments(
        self, query: Query, update: Update | AggregationUpdate | Mapping[str, Any], entity: EntityDescriptor
    ) -> tuple[dict[str, Any], Any, dict[str, Any]]:
        match update:
            case Update():
                document = update.to_document()

            case AggregationUpdate():
                document = update.to_pipeline()

            case _:
                document = update

        options: dict[str, Any] = {}
        if query.collation is not None:
            options["collation"] = query.collation.to_mongo_collation()

        if isinstance(update, Update) and update.has_array_filters:
            options["array_filters"] = update.array_filters

        return (
            self.query_mapper.get_mapped_object(query.to_document(), entity),
            self.update_mapper.get_mapped_object(document, entity),
            options,
        )

    def _aggregation_context(self, entity_type: type | None) -> AggregationContext:
        if entity_type is None:
            return AggregationContext()

        return TypedAggregationContext(self._entity(entity_type), self.query_mapper)

    def _bulk_context(self, mode: BulkMode, entity_type: type | None) -> BulkOperationContext:
        return BulkOperationContext(
            mode=mode,
            entity=self._optional_entity(entity_type),
            query_mapper=self.query_mapper,
            update_mapper=self.update_mapper,
            event_publisher=self.event_publisher,
            entity_callbacks=self.entity_callbacks,
        )

    def _read_all(self, entity_type: Type[T], documents: list[Mapping[str, Any]]) -> list[T]:
        return [self.converter.read(entity_type, document) for document in documents]

    def _populate_id(self, entity: Any, document: Mapping[str, Any]):
        """Copies the id assigned on insert back onto the entity when it has none."""
        if isinstance(entity, Mapping):
            return

        descriptor = self._entity(type(entity))
        prop = descriptor.id_property
        if prop is None or "_id" not in document or getattr(entity, prop.name, None) is not None:
            return

        value = self.converter.read_property(prop, document["_id"])
        try:
            setattr(entity, prop.name, value)
        except AttributeError:
            logger.debug(f"Could not assign the generated id to immutable {type(entity).__name__}")


class MongoTemplate(_TemplateSupport):
    """Entity operations over a pymongo `Database`."""

    def __init__(self, database: Database, converter: MongoConverter | None = None, **kwargs):
        super().__init__(converter, **kwargs)
        self.database = database

    def get_collection(self, name: str) -> Collection:
        return self.database[name]

    def insert(self, entity: T, collection_name: str | None = None) -> T:
        """Inserts an entity, assigning the generated id to it when it had none."""
        if entity is None:
            raise ValueError("Cannot insert None")

        name = self._resolve_collection_name(None if isinstance(entity, Mapping) else type(entity), collection_name)
        self.event_publisher.publish(BeforeConvertEvent(entity, None, name))
        entity = self._callback(CallbackType.BEFORE_CONVERT, entity, name)
        document = self.converter.write(entity)
        self.event_publisher.publish(BeforeSaveEvent(entity, document, name))
        entity = self._callback(CallbackType.BEFORE_SAVE, entity, document, name)
        logger.debug(f"Inserting document into {name!r}")
        with translated_errors(self.translator):
            self.get_collection(name).insert_one(document)

        self._populate_id(entity, document)
        self.event_publisher.publish(AfterSaveEvent(entity, document, name))
        return self._callback(CallbackType.AFTER_SAVE, entity, document, name)

    def find(self, query: Query | Any, entity_type: Type[T], collection_name: str | None = None) -> list[T]:
        query = as_query(query)
        name = self._resolve_collection_name(entity_type, collection_name)
        options = self._find_options(query, self._entity(entity_type))
        logger.debug(f"find using filter {options['filter']} in {name!r}")
        with translated_errors(self.translator):
            documents = list(self.get_collection(name).find(**options))

        return self._read_all(entity_type, documents)

    def find_one(self, query: Query | Any, entity_type: Type[T], collection_name: str | None = None) -> T | None:
        query = as_query(query).copy().limit(1)
        results = self.find(query, entity_type, collection_name)
        return results[0] if results else None

    def count(self, query: Query | Any, entity_type: Type[T], collection_name: str | None = None) -> int:
        query = as_query(query)
        name = self._resolve_collection_name(entity_type, collection_name)
        entity = self._entity(entity_type)
        kwargs = {"collation": query.collation.to_mongo_collation()} if query.collation is not None else {}
        with translated_errors(self.translator):
            return self.get_collection(name).count_documents(
                self.query_mapper.get_mapped_object(query.to_document(), entity), **kwargs
            )

    def update_first(self, query: Query | Any, update: Update | AggregationUpdate | Mapping[str, Any], entity_type: type, collection_name: str | None = None) -> UpdateResult:
        return self._update(query, update, entity_type, collection_name, multi=False, upsert=False)

    def update_multi(self, query: Query | Any, update: Update | AggregationUpdate | Mapping[str, Any], entity_type: type, collection_name: str | None = None) -> UpdateResult:
        return self._update(query, update, entity_type, collection_name, multi=True, upsert=False)

    def upsert(self, query: Query | Any, update: Update | AggregationUpdate | Mapping[str, Any], entity_type: type, collection_name: str | None = None) -> UpdateResult:
        return self._update(query, update, entity_type, collection_name, multi=False, upsert=True)

    def remove(self, query: Query | Any, entity_type: type, collection_name: str | None = None) -> DeleteResult:
        query = as_query(query)
        name = self._resolve_collection_name(entity_type, collection_name)
        mapped = self.query_mapper.get_mapped_object(query.to_document(), self._entity(entity_type))
        kwargs = {"collation": query.collation.to_mongo_collation()} if query.collation is not None else {}
        logger.debug(f"Removing documents matching {mapped} from {name!r}")
        with translated_errors(self.translator):
            return self.get_collection(name).delete_many(mapped, **kwargs)

    def aggregate(
        self,
        aggregation: Aggregation,
        entity_type: type | None = None,
        output_type: Type[T] | None = None,
        collection_name: str | None = None,
    ) -> list[T] | list[dict[str, Any]]:
        """Runs a pipeline against the collection of `entity_type`, reading the results as `output_type` if given."""
        name = self._resolve_collection_name(entity_type, collection_name)
        pipeline = aggregation.to_pipeline(self._aggregation_context(entity_type))
        logger.debug(f"Executing aggregation {pipeline} on {name!r}")
        with translated_errors(self.translator):
            documents = list(self.get_collection(name).aggregate(pipeline))

        return documents if output_type is None else self._read_all(output_type, documents)

    def bulk_ops(
        self, mode: BulkMode, entity_type: type | None = None, collection_name: str | None = None
    ) -> BulkOperations:
        name = self._resolve_collection_name(entity_type, collection_name)
        return BulkOperations(
            self.get_collection(name), self._bulk_context(mode, entity_type), self.converter, self.translator
        )

    def _update(self, query, update, entity_type, collection_name, *, multi: bool, upsert: bool) -> UpdateResult:
        query = as_query(query)
        name = self._resolve_collection_name(entity_type, collection_name)
        mapped_query, mapped_update, options = self._update_arguments(query, update, self._entity(entity_type))
        logger.debug(f"Calling update using query: {mapped_query} and update: {mapped_update} in {name!r}")
        collection = self.get_collection(name)
        with translated_errors(self.translator):
            if multi:
                return collection.update_many(mapped_query, mapped_update, upsert=upsert, **options)

            return collection.update_one(mapped_query, mapped_update, upsert=upsert, **options)

    def _callback(self, callback_type: CallbackType, entity: Any, *args: Any) -> Any:
        if self.entity_callbacks is None:
            return entity

        return self.entity_callbacks.callback(callback_type, entity, *args)


class ReactiveMongoTemplate(_TemplateSupport):
    """Entity operations over a motor `AsyncIOMotorDatabase`."""

    def __init__(self, database: AsyncIOMotorDatabase, converter: MongoConverter | None = None, **kwargs):
        super().__init__(converter, **kwargs)
        self.database = database

    def get_collection(self, name: str) -> AsyncIOMotorCollection:
        return self.database[name]

    async def insert(self, entity: T, collection_name: str | None = None) -> T:
        """Inserts an entity, assigning the generated id to it when it had none."""
        if entity is None:
            raise ValueError("Cannot insert None")

        name = self._resolve_collection_name(None if isinstance(entity, Mapping) else type(entity), collection_name)
        self.event_publisher.publish(BeforeConvertEvent(entity, None, name))
        entity = await self._callback(CallbackType.BEFORE_CONVERT, entity, name)
        document = self.converter.write(entity)
        self.event_publisher.publish(BeforeSaveEvent(entity, document, name))
        entity = await self._callback(CallbackType.BEFORE_SAVE, entity, document, name)
        logger.debug(f"Inserting document into {name!r}")
        with translated_errors(self.translator):
            await self.get_collection(name).insert_one(document)

        self._populate_id(entity, document)
        self.event_publisher.publish(AfterSaveEvent(entity, document, name))
        return await self._callback(CallbackType.AFTER_SAVE, entity, document, name)

    async def find(self, query: Query | Any, entity_type: Type[T], collection_name: str | None = None) -> list[T]:
        query = as_query(query)
        name = self._resolve_collection_name(entity_type, collection_name)
        options = self._find_options(query, self._entity(entity_type))
        logger.debug(f"find using filter {options['filter']} in {name!r}")
        with translated_errors(self.translator):
            documents = await self.get_collection(name).find(**options).to_list(length=None)

        return self._read_all(entity_type, documents)

    async def find_one(self, query: Query | Any, entity_type: Type[T], collection_name: str | None = None) -> T | None:
        query = as_query(query).copy().limit(1)
        results = await self.find(query, entity_type, collection_name)
        return results[0] if results else None

    async def count(self, query: Query | Any, entity_type: Type[T], collection_name: str | None = None) -> int:
        query = as_query(query)
        name = self._resolve_collection_name(entity_type, collection_name)
        entity = self._entity(entity_type)
        kwargs = {"collation": query.collation.to_mongo_collation()} if query.collation is not None else {}
        with translated_errors(self.translator):
            return await self.get_collection(name).count_documents(
                self.query_mapper.get_mapped_object(query.to_document(), entity), **kwargs
            )

    async def update_first(self, query: Query | Any, update: Update | AggregationUpdate | Mapping[str, Any], entity_type: type, collection_name: str | None = None) -> UpdateResult:
        return await self._update(query, update, entity_type, collection_name, multi=False, upsert=False)

    async def update_multi(self, query: Query | Any, update: Update | AggregationUpdate | Mapping[str, Any], entity_type: type, collection_name: str | None = None) -> UpdateResult:
        return await self._update(query, update, entity_type, collection_name, multi=True, upsert=False)

    async def upsert(self, query: Query | Any, update: Update | AggregationUpdate | Mapping[str, Any], entity_type: type, collection_name: str | None = None) -> UpdateResult:
        return await self._update(query, update, entity_type, collection_name, multi=False, upsert=True)

    async def remove(self, query: Query | Any, entity_type: type, collection_name: str | None = None) -> DeleteResult:
        query = as_query(query)
        name = self._resolve_collection_name(entity_type, collection_name)
        mapped = self.query_mapper.get_mapped_object(query.to_document(), self._entity(entity_type))
        kwargs = {"collation": query.collation.to_mongo_collation()} if query.collation is not None else {}
        logger.debug(f"Removing documents matching {mapped} from {name!r}")
        with translated_errors(self.translator):
            return await self.get_collection(name).delete_many(mapped, **kwargs)

    async def aggregate(
        self,
        aggregation: Aggregation,
        entity_type: type | None = None,
        output_type: Type[T] | None = None,
        collection_name: str | None = None,
    ) -> list[T] | list[dict[str, Any]]:
        name = self._resolve_collection_name(entity_type, collection_name)
        pipeline = aggregation.to_pipeline(self._aggregation_context(entity_type))
        logger.debug(f"Executing aggregation {pipeline} on {name!r}")
        with translated_errors(self.translator):
            documents = await self.get_collection(name).aggregate(pipeline).to_list(length=None)

        return documents if output_type is None else self._read_all(output_type, documents)

    def bulk_ops(
        self, mode: BulkMode, entity_type: type | None = None, collection_name: str | None = None
    ) -> ReactiveBulkOperations:
        name = self._resolve_collection_name(entity_type, collection_name)
        return ReactiveBulkOperations(
            self.get_collection(name), self._bulk_context(mode, entity_type), self.converter, self.translator
        )

    async def _update(self, query, update, entity_type, collection_name, *, multi: bool, upsert: bool) -> UpdateResult:
        query = as_query(query)
        name = self._resolve_collection_name(entity_type, collection_name)
        mapped_query, mapped_update, options = self._update_arguments(query, update, self._entity(entity_type))
        logger.debug(f"Calling update using query: {mapped_query} and update: {mapped_update} in {name!r}")
        collection = self.get_collection(name)
        with translated_errors(self.translator):
            if multi:
                return await collection.update_many(mapped_query, mapped_update, upsert=upsert, **options)

            return await collection.update_one(mapped_query, mapped_update, upsert=upsert, **options)

    async def _callback(self, callback_type: CallbackType, entity: Any, *args: Any) -> Any:
        if self.entity_callbacks is None:
            return entity

        return await self.entity_callbacks.callback_async(callback_type, entity, *args)
