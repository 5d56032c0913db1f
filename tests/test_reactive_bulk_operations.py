from dataclasses import dataclass, replace
from typing import Annotated
from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo import InsertOne, ReplaceOne, UpdateOne
from pymongo.errors import BulkWriteError
from pymongo.results import BulkWriteResult

from mongomap.bulk import BulkMode, BulkOperationContext, InsertModel, ReactiveBulkOperations
from mongomap.convert import MongoConverter, QueryMapper, UpdateMapper
from mongomap.events import CallbackType, EntityCallbacks, EventPublisher, MappingEvent
from mongomap.exceptions import BulkOperationError
from mongomap.mapping import MappingContext, StoreAs
from mongomap.query import Update, where


@dataclass
class Account:
    owner: Annotated[str, StoreAs("owner_name")]
    balance: int = 0
    id: str | None = None


def bulk_write_details(**counts):
    details = {
        "writeErrors": [],
        "writeConcernErrors": [],
        "nInserted": 0,
        "nUpserted": 0,
        "nMatched": 0,
        "nModified": 0,
        "nRemoved": 0,
        "upserted": [],
    }
    details.update(counts)
    return details


@pytest.fixture
def collection():
    collection = MagicMock()
    collection.name = "accounts"
    collection.bulk_write = AsyncMock(return_value=BulkWriteResult(bulk_write_details(nInserted=2), True))
    return collection


@pytest.fixture
def trace():
    return []


@pytest.fixture
def callbacks():
    return EntityCallbacks()


def create_bulk(collection, trace, callbacks, mode=BulkMode.ORDERED):
    mapping_context = MappingContext()
    converter = MongoConverter(mapping_context)
    publisher = EventPublisher()
    publisher.subscribe(MappingEvent, lambda event: trace.append((type(event).__name__, event.source.owner)))
    context = BulkOperationContext(
        mode=mode,
        entity=mapping_context.get_entity(Account),
        query_mapper=QueryMapper(converter),
        update_mapper=UpdateMapper(converter),
        event_publisher=publisher,
        entity_callbacks=callbacks,
    )
    return ReactiveBulkOperations(collection, context, converter)


@pytest.fixture
def bulk(collection, trace, callbacks):
    return create_bulk(collection, trace, callbacks)


def test_adding_writes_does_not_convert(bulk, trace):
    bulk.insert(Account("ada"), Account("bob"))
    assert trace == []
    assert all(isinstance(model, InsertModel) and model.document is None for model in bulk.models)


@pytest.mark.asyncio
async def test_execute_submits_mapped_requests(bulk, collection):
    result = await (
        bulk.insert(Account("ada", 5))
        .update_one(where("owner").is_("bob"), Update().inc("balance"))
        .replace_one(where("owner").is_("carl"), Account("carl"))
        .execute()
    )

    assert result.inserted_count == 2
    collection.bulk_write.assert_awaited_once()
    assert collection.bulk_write.call_args.args[0] == [
        InsertOne({"owner_name": "ada", "balance": 5}),
        UpdateOne({"owner_name": "bob"}, {"$inc": {"balance": 1}}, upsert=False, collation=None, array_filters=None),
        ReplaceOne({"owner_name": "carl"}, {"owner_name": "carl", "balance": 0}, upsert=False, collation=None),
    ]
    assert collection.bulk_write.call_args.kwargs == {"ordered": True}


@pytest.mark.asyncio
async def test_unordered_mode(collection, trace, callbacks):
    bulk = create_bulk(collection, trace, callbacks, mode=BulkMode.UNORDERED)
    await bulk.insert(Account("ada")).execute()
    assert collection.bulk_write.call_args.kwargs == {"ordered": False}


@pytest.mark.asyncio
async def test_each_entity_is_prepared_before_the_next(bulk, trace, callbacks):
    async def before_convert(account, collection_name):
        trace.append(("before_convert", account.owner))
        return account

    async def after_save(account, document, collection_name):
        trace.append(("after_save", account.owner))

    callbacks.register(CallbackType.BEFORE_CONVERT, before_convert)
    callbacks.register(CallbackType.AFTER_SAVE, after_save)

    await bulk.insert(Account("ada"), Account("bob")).execute()

    assert trace == [
        ("BeforeConvertEvent", "ada"),
        ("before_convert", "ada"),
        ("BeforeSaveEvent", "ada"),
        ("BeforeConvertEvent", "bob"),
        ("before_convert", "bob"),
        ("BeforeSaveEvent", "bob"),
        ("AfterSaveEvent", "ada"),
        ("after_save", "ada"),
        ("AfterSaveEvent", "bob"),
        ("after_save", "bob"),
    ]


@pytest.mark.asyncio
async def test_async_callbacks_can_replace_entities(bulk, collection, callbacks):
    async def before_convert(account, collection_name):
        return replace(account, balance=10)

    callbacks.register(CallbackType.BEFORE_CONVERT, before_convert)
    await bulk.insert(Account("ada")).execute()
    assert collection.bulk_write.call_args.args[0] == [InsertOne({"owner_name": "ada", "balance": 10})]


@pytest.mark.asyncio
async def test_failure_skips_after_save_and_resets(bulk, collection, trace):
    collection.bulk_write.side_effect = BulkWriteError(
        bulk_write_details(nInserted=1, writeErrors=[{"index": 1, "code": 11000, "errmsg": "duplicate", "op": {}}])
    )
    bulk.insert(Account("ada"), Account("bob"))

    with pytest.raises(BulkOperationError) as error:
        await bulk.execute()

    assert error.value.result.inserted_count == 1
    assert not any(name == "AfterSaveEvent" for name, _ in trace)
    assert bulk.models == ()


@pytest.mark.asyncio
async def test_reset_after_execute(bulk):
    await bulk.insert(Account("ada")).bypass_document_validation().execute()
    assert bulk.models == ()
    assert bulk.options.bypass_document_validation is None
