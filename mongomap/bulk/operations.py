from collections.abc import Iterable
from typing import Any, Self

from pymongo.collection import Collection
from pymongo.errors import PyMongoError
from pymongo.results import BulkWriteResult

from mongomap.bulk.support import (
    BulkOperationContext,
    BulkOperationsSupport,
    DeleteModel,
    InsertModel,
    PreparedWrite,
    ReplaceModel,
    UpdateDefinition,
    UpdateModel,
)
from mongomap.convert import MongoConverter
from mongomap.events import CallbackType
from mongomap.query import Query, as_query
from mongomap.translation import MongoExceptionTranslator


class BulkOperations(BulkOperationsSupport):
    """Accumulates writes against one collection and submits them as a single bulk write.

    Entities are converted to documents as they are added, after the before-convert event. Filters and updates are
    mapped when `execute` is called. Every method returns the bulk operations so calls can be chained:

        ```python
        result = (
            template.bulk_ops(BulkMode.UNORDERED, Person)
            .insert(alice, bob)
            .update_one(where("name").is_("Carol"), Update().inc("visits"))
            .remove(where("active").is_(False))
            .execute()
        )
        ```

    After `execute` returns or raises, the bulk operations are empty and can be reused.
    """
    def __init__(
        self,
        collection: Collection,
        context: BulkOperationContext,
        converter: MongoConverter,
        translator: MongoExceptionTranslator | None = None,
    ):
        super().__init__(collection.name, context, converter, translator)
        self.collection = collection

    def insert(self, *documents: Any) -> Self:
        """Adds an insert for each entity or document. A single list argument inserts each of its items."""
        for source in flatten(documents):
            if source is None:
                raise ValueError("Cannot insert None")

            source = self._before_convert(source)
            self._models.append(InsertModel(source, self._to_document(source)))

        return self

    def update_one(self, query: Query | Any, update: UpdateDefinition) -> Self:
        return self._add_update(query, update, multi=False, upsert=False)

    def update_many(self, query: Query | Any, update: UpdateDefinition) -> Self:
        return self._add_update(query, update, multi=True, upsert=False)

    def upsert(self, query: Query | Any, update: UpdateDefinition) -> Self:
        return self._add_update(query, update, multi=True, upsert=True)

    def remove(self, *queries: Query | Any) -> Self:
        """Adds a delete of every document matching each query."""
        for query in flatten(queries):
            self._add_delete(query, multi=True)

        return self

    def remove_one(self, query: Query | Any) -> Self:
        return self._add_delete(query, multi=False)

    def replace_one(self, query: Query | Any, replacement: Any, upsert: bool = False) -> Self:
        if replacement is None:
            raise ValueError("Replacement must not be None")

        replacement = self._before_convert(replacement)
        self._models.append(ReplaceModel(as_query(query), replacement, upsert, self._to_document(replacement)))
        return self

    def execute(self) -> BulkWriteResult:
        """Submits the accumulated writes.

        Raises:
            DataIntegrityViolationError: When the server reports write concern errors.
            BulkOperationError: When any write fails. Carries the partial result and the write errors.
            DataAccessError: For any other translatable driver failure.
        """
        try:
            prepared = [self._prepare(model) for model in self._models]
            self._log_execution(len(prepared))
            try:
                result = self.collection.bulk_write(
                    [write.request for write in prepared], **self.options.to_kwargs()
                )
            except PyMongoError as error:
                if (translated := self._translate(error)) is error:
                    raise

                raise translated from error

            for write in prepared:
                if write.document is not None:
                    self._after_save(write)

            return result
        finally:
            self.reset()

    def _prepare(self, model: InsertModel | UpdateModel | ReplaceModel | DeleteModel) -> PreparedWrite:
        match model:
            case InsertModel(source=source, document=document) | ReplaceModel(source=source, document=document):
                write = PreparedWrite(model, None, source, document)
                self._before_save_event(write)
                write.source = self._callback(CallbackType.BEFORE_SAVE, source, document)
                write.request = self._build_request(model, document)
                return write

            case _:
                return PreparedWrite(model, self._build_request(model))

    def _before_convert(self, source: Any) -> Any:
        self._before_convert_event(source)
        return self._callback(CallbackType.BEFORE_CONVERT, source)

    def _after_save(self, write: PreparedWrite):
        self._after_save_event(write)
        write.source = self._callback(CallbackType.AFTER_SAVE, write.source, write.document)

    def _callback(self, callback_type: CallbackType, source: Any, *args: Any) -> Any:
        if self.context.entity_callbacks is None:
            return source

        return self.context.entity_callbacks.callback(callback_type, source, *args, self.collection_name)


def flatten(items: tuple[Any, ...]) -> Iterable[Any]:
    if len(items) == 1 and isinstance(items[0], (list, tuple)):
        return items[0]

    return items
