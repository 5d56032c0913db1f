from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated

import pytest
from bson import ObjectId

from mongomap.convert import MongoConverter, UpdateMapper, is_update_document
from mongomap.exceptions import InvalidDataAccessApiUsageError
from mongomap.mapping import MappingContext, StoreAs

OBJECT_ID_HEX = "5f1d7c9e8b3a4c2d1e0f9a8b"


class Color(Enum):
    RED = "r"
    BLUE = "b"


@dataclass
class LineItem:
    sku: Annotated[str, StoreAs("code")]
    quantity: int = 1


@dataclass
class Order:
    customer: Annotated[str, StoreAs("customer_name")]
    items: list[LineItem] = field(default_factory=list)
    colors: list[Color] = field(default_factory=list)
    total: int = 0
    id: str | None = None


@pytest.fixture
def context():
    return MappingContext()


@pytest.fixture
def mapper(context):
    return UpdateMapper(MongoConverter(context))


@pytest.fixture
def order(context):
    return context.get_entity(Order)


def test_set_translates_field_names(mapper, order):
    assert mapper.get_mapped_object({"$set": {"customer": "Ada", "items.$.sku": "A1"}}, order) == {
        "$set": {"customer_name": "Ada", "items.$.code": "A1"}
    }


def test_set_converts_values(mapper, order):
    assert mapper.get_mapped_object({"$set": {"colors": [Color.RED]}}, order) == {"$set": {"colors": ["RED"]}}


def test_set_writes_embedded_entities(mapper, order):
    mapped = mapper.get_mapped_object({"$set": {"items.0": LineItem("A1", 2)}}, order)
    assert mapped == {"$set": {"items.0": {"code": "A1", "quantity": 2}}}


def test_set_maps_lists_of_embedded_documents(mapper, order):
    mapped = mapper.get_mapped_object(
        {"$set": {"items": [{"sku": "A1", "quantity": 2}, LineItem("B2")], "colors": [Color.BLUE]}}, order
    )
    assert mapped == {
        "$set": {"items": [{"code": "A1", "quantity": 2}, {"code": "B2", "quantity": 1}], "colors": ["BLUE"]}
    }


def test_set_keys_collide_with_their_aliases(mapper, order):
    with pytest.raises(InvalidDataAccessApiUsageError):
        mapper.get_mapped_object({"$set": {"customer": "Ada", "customer_name": "Grace"}}, order)


def test_id_values_are_coerced(mapper, order):
    assert mapper.get_mapped_object({"$set": {"id": OBJECT_ID_HEX}}, order) == {
        "$set": {"_id": ObjectId(OBJECT_ID_HEX)}
    }


def test_key_only_operators_keep_their_operands(mapper, order):
    update = {"$unset": {"customer": ""}, "$currentDate": {"total": {"$type": "timestamp"}}, "$pop": {"items": -1}}
    assert mapper.get_mapped_object(update, order) == {
        "$unset": {"customer_name": ""},
        "$currentDate": {"total": {"$type": "timestamp"}},
        "$pop": {"items": -1},
    }


def test_rename_translates_targets(mapper, order):
    assert mapper.get_mapped_object({"$rename": {"total": "customer"}}, order) == {
        "$rename": {"total": "customer_name"}
    }


def test_push_each_converts_elements(mapper, order):
    update = {"$push": {"items": {"$each": [LineItem("A1")], "$sort": {"sku": 1}, "$slice": 5}}}
    assert mapper.get_mapped_object(update, order) == {
        "$push": {"items": {"$each": [{"code": "A1", "quantity": 1}], "$sort": {"code": 1}, "$slice": 5}}
    }


def test_add_to_set_converts_the_element(mapper, order):
    assert mapper.get_mapped_object({"$addToSet": {"colors": Color.BLUE}}, order) == {
        "$addToSet": {"colors": "BLUE"}
    }


def test_pull_criteria_use_the_element_entity(mapper, order):
    assert mapper.get_mapped_object({"$pull": {"items": {"sku": "A1", "quantity": {"$lt": 2}}}}, order) == {
        "$pull": {"items": {"code": "A1", "quantity": {"$lt": 2}}}
    }


def test_pull_operator_conditions(mapper, order):
    assert mapper.get_mapped_object({"$pull": {"colors": {"$in": [Color.RED, Color.BLUE]}}}, order) == {
        "$pull": {"colors": {"$in": ["RED", "BLUE"]}}
    }


def test_pull_all_converts_elements(mapper, order):
    assert mapper.get_mapped_object({"$pullAll": {"colors": [Color.RED]}}, order) == {
        "$pullAll": {"colors": ["RED"]}
    }


def test_replacement_documents_are_mapped_like_filters(mapper, order):
    assert mapper.get_mapped_object({"customer": "Ada", "total": 3}, order) == {"customer_name": "Ada", "total": 3}


def test_pipeline_updates(mapper, order):
    pipeline = [
        {"$set": {"customer": {"$concat": ["$customer", " ", "$$NOW"]}}},
        {"$unset": ["total", "items.sku"]},
        {"$replaceWith": {"$mergeObjects": ["$$ROOT", {"customer": "$customer"}]}},
    ]
    assert mapper.get_mapped_object(pipeline, order) == [
        {"$set": {"customer_name": {"$concat": ["$customer_name", " ", "$$NOW"]}}},
        {"$unset": ["total", "items.code"]},
        {"$replaceWith": {"$mergeObjects": ["$$ROOT", {"customer": "$customer_name"}]}},
    ]


def test_none_is_an_empty_update(mapper):
    assert mapper.get_mapped_object(None) == {}


def test_invalid_update_type(mapper):
    with pytest.raises(TypeError):
        mapper.get_mapped_object(42)


def test_mapping_an_update_is_idempotent(mapper, order):
    update = {"$set": {"customer": "Ada", "id": OBJECT_ID_HEX}, "$push": {"items": {"$each": [LineItem("A1")]}}}
    mapped = mapper.get_mapped_object(update, order)
    assert mapper.get_mapped_object(mapped, order) == mapped


def test_is_update_document():
    assert is_update_document({"$set": {"a": 1}})
    assert not is_update_document({"a": 1})
    assert not is_update_document({})
