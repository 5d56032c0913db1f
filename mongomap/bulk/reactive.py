from typing import Any, Self

from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo.errors import PyMongoError
from pymongo.results import BulkWriteResult

from mongomap.bulk.operations import flatten
from mongomap.bulk.support import (
    BulkOperationContext,
    BulkOperationsSupport,
    InsertModel,
    PreparedWrite,
    ReplaceModel,
    UpdateDefinition,
    WriteModel,
)
from mongomap.convert import MongoConverter
from mongomap.events import CallbackType
from mongomap.query import Query, as_query
from mongomap.translation import MongoExceptionTranslator


class ReactiveBulkOperations(BulkOperationsSupport):
    """Bulk operations for the asyncio driver.

    Adding writes is synchronous and does no conversion. When `execute` is awaited, the writes are prepared one at a
    time in the order they were added: an entity's before-convert and before-save hooks, including awaitable callbacks,
    complete before the next entity is prepared. After-save hooks run in the same order once the bulk write succeeded.
    """
    def __init__(
        self,
        collection: AsyncIOMotorCollection,
        context: BulkOperationContext,
        converter: MongoConverter,
        translator: MongoExceptionTranslator | None = None,
    ):
        super().__init__(collection.name, context, converter, translator)
        self.collection = collection

    def insert(self, *documents: Any) -> Self:
        for source in flatten(documents):
            if source is None:
                raise ValueError("Cannot insert None")

            self._models.append(InsertModel(source))

        return self

    def update_one(self, query: Query | Any, update: UpdateDefinition) -> Self:
        return self._add_update(query, update, multi=False, upsert=False)

    def update_many(self, query: Query | Any, update: UpdateDefinition) -> Self:
        return self._add_update(query, update, multi=True, upsert=False)

    def upsert(self, query: Query | Any, update: UpdateDefinition) -> Self:
        return self._add_update(query, update, multi=True, upsert=True)

    def remove(self, *queries: Query | Any) -> Self:
        for query in flatten(queries):
            self._add_delete(query, multi=True)

        return self

    def remove_one(self, query: Query | Any) -> Self:
        return self._add_delete(query, multi=False)

    def replace_one(self, query: Query | Any, replacement: Any, upsert: bool = False) -> Self:
        if replacement is None:
            raise ValueError("Replacement must not be None")

        self._models.append(ReplaceModel(as_query(query), replacement, upsert))
        return self

    async def execute(self) -> BulkWriteResult:
        """Prepares and submits the accumulated writes.

        Raises:
            DataIntegrityViolationError: When the server reports write concern errors.
            BulkOperationError: When any write fails. Carries the partial result and the write errors.
            DataAccessError: For any other translatable driver failure.
        """
        try:
            prepared = []
            for model in self._models:
                prepared.append(await self._prepare(model))

            self._log_execution(len(prepared))
            try:
                result = await self.collection.bulk_write(
                    [write.request for write in prepared], **self.options.to_kwargs()
                )
            except PyMongoError as error:
                if (translated := self._translate(error)) is error:
                    raise

                raise translated from error

            for write in prepared:
                if write.document is not None:
                    await self._after_save(write)

            return result
        finally:
            self.reset()

    async def _prepare(self, model: WriteModel) -> PreparedWrite:
        match model:
            case InsertModel(source=source) | ReplaceModel(source=source):
                self._before_convert_event(source)
                source = await self._callback(CallbackType.BEFORE_CONVERT, source)
                document = self._to_document(source)
                write = PreparedWrite(model, None, source, document)
                self._before_save_event(write)
                write.source = await self._callback(CallbackType.BEFORE_SAVE, source, document)
                write.request = self._build_request(model, document)
                return write

            case _:
                return PreparedWrite(model, self._build_request(model))

    async def _after_save(self, write: PreparedWrite):
        self._after_save_event(write)
        write.source = await self._callback(CallbackType.AFTER_SAVE, write.source, write.document)

    async def _callback(self, callback_type: CallbackType, source: Any, *args: Any) -> Any:
        if self.context.entity_callbacks is None:
            return source

        return await self.context.entity_callbacks.callback_async(callback_type, source, *args, self.collection_name)
