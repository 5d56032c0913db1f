import pytest
from bson import Regex

from mongomap.exceptions import InvalidDataAccessApiUsageError
from mongomap.query import Collation, Criteria, Direction, Position, Query, Update, as_query, where


def test_criteria_chain():
    criteria = where("age").gte(18).lt(65).and_("name").is_("Ada")
    assert criteria.to_document() == {"age": {"$gte": 18, "$lt": 65}, "name": "Ada"}


def test_criteria_rejects_duplicate_keys():
    with pytest.raises(InvalidDataAccessApiUsageError):
        where("age").is_(1).and_("age").is_(2).to_document()


def test_criteria_rejects_a_second_is():
    with pytest.raises(InvalidDataAccessApiUsageError):
        where("age").is_(1).is_(2)


def test_criteria_rejects_is_with_operators():
    with pytest.raises(InvalidDataAccessApiUsageError):
        where("age").is_(1).gt(0).to_document()


def test_not_negates_the_next_operator():
    assert where("age").not_().gt(5).to_document() == {"age": {"$not": {"$gt": 5}}}


def test_not_with_is_is_rejected():
    with pytest.raises(InvalidDataAccessApiUsageError):
        where("age").not_().is_(5)


def test_regex():
    assert where("name").regex("^A", "i").to_document() == {"name": Regex("^A", "i")}
    assert where("name").not_().regex("^A").to_document() == {"name": {"$not": Regex("^A")}}


def test_list_operators_accept_values_or_a_collection():
    assert where("tag").in_("a", "b").to_document() == where("tag").in_(["a", "b"]).to_document()
    assert where("tag").nin({"a"}).to_document() == {"tag": {"$nin": ["a"]}}
    assert where("tag").all("a", "b").to_document() == {"tag": {"$all": ["a", "b"]}}


def test_list_operators_reject_mixed_arguments():
    with pytest.raises(InvalidDataAccessApiUsageError):
        where("tag").in_(["a"], "b")


def test_misc_operators():
    criteria = where("n").mod(3, 1).and_("tags").size(2).and_("x").exists(False).and_("y").type("string", 2)
    assert criteria.to_document() == {
        "n": {"$mod": [3, 1]},
        "tags": {"$size": 2},
        "x": {"$exists": False},
        "y": {"$type": ["string", 2]},
    }


def test_elem_match():
    criteria = where("items").elem_match(where("sku").is_("A1").and_("quantity").gt(2))
    assert criteria.to_document() == {"items": {"$elemMatch": {"sku": "A1", "quantity": {"$gt": 2}}}}


def test_combinator_operators():
    criteria = Criteria().or_operator(where("a").is_(1), where("b").is_(2))
    assert criteria.to_document() == {"$or": [{"a": 1}, {"b": 2}]}

    criteria = where("c").is_(3).nor_operator(where("d").is_(4))
    assert criteria.to_document() == {"c": 3, "$nor": [{"d": 4}]}


def test_query_documents():
    query = (
        Query(where("name").is_("Ada"))
        .sort("age", Direction.DESCENDING)
        .skip(10)
        .limit(5)
        .include("name")
        .exclude("id")
    )
    assert query.to_document() == {"name": "Ada"}
    assert query.sort_document() == {"age": -1}
    assert query.fields_document() == {"name": 1, "id": 0}
    assert (query.skip_count, query.limit_count) == (10, 5)


def test_query_copy_is_independent():
    query = Query(where("name").is_("Ada")).sort("age").skip(2).include("name").with_collation("fr")
    copied = query.copy().limit(1).sort("name").add_criteria({"age": 3})

    assert copied.to_document() == {"name": "Ada", "age": 3}
    assert copied.sort_document() == {"age": 1, "name": 1}
    assert (copied.skip_count, copied.limit_count) == (2, 1)
    assert copied.fields_document() == {"name": 1}
    assert copied.collation == Collation("fr")

    assert query.to_document() == {"name": "Ada"}
    assert query.sort_document() == {"age": 1}
    assert query.limit_count == 0


def test_query_rejects_duplicate_criteria():
    with pytest.raises(InvalidDataAccessApiUsageError):
        Query(where("name").is_("Ada")).add_criteria({"name": "Bob"})


def test_query_rejects_negative_paging():
    with pytest.raises(ValueError):
        Query().limit(-1)

    with pytest.raises(ValueError):
        Query().skip(-1)


def test_query_collation():
    assert Query().with_collation("fr").collation == Collation("fr")


def test_as_query():
    query = Query()
    assert as_query(query) is query
    assert as_query(None).to_document() == {}
    assert as_query({"a": 1}).to_document() == {"a": 1}
    assert as_query(where("a").is_(1)).to_document() == {"a": 1}
    with pytest.raises(TypeError):
        as_query(42)


def test_update_document():
    update = Update().set("name", "Ada").inc("visits").push("tags", "new").unset("legacy")
    assert update.to_document() == {
        "$set": {"name": "Ada"},
        "$inc": {"visits": 1},
        "$push": {"tags": "new"},
        "$unset": {"legacy": 1},
    }


def test_update_array_operators():
    update = (
        Update()
        .push_all("scores", [1, 2], slice=-5, position=0)
        .add_to_set("tags", "a", "b")
        .pop("queue", Position.FIRST)
        .pull("items", where("quantity").lte(0))
        .pull_all("flags", ["x"])
    )
    assert update.to_document() == {
        "$push": {"scores": {"$each": [1, 2], "$position": 0, "$slice": -5}},
        "$addToSet": {"tags": {"$each": ["a", "b"]}},
        "$pop": {"queue": -1},
        "$pull": {"items": {"quantity": {"$lte": 0}}},
        "$pullAll": {"flags": ["x"]},
    }


def test_update_misc_operators():
    update = (
        Update()
        .set_on_insert("created", 1)
        .mul("price", 2)
        .min("low", 0)
        .max("high", 9)
        .rename("old", "new")
        .current_date("touched", timestamp=True)
    )
    assert update.to_document() == {
        "$setOnInsert": {"created": 1},
        "$mul": {"price": 2},
        "$min": {"low": 0},
        "$max": {"high": 9},
        "$rename": {"old": "new"},
        "$currentDate": {"touched": {"$type": "timestamp"}},
    }


def test_update_array_filters():
    update = Update().set("grades.$[g].passed", True).filter_array(where("g.score").gte(50))
    assert update.has_array_filters
    assert update.array_filters == [{"g.score": {"$gte": 50}}]


def test_update_from_document():
    update = Update.from_document({"_id": 1, "name": "Ada", "age": 3}, "age")
    assert update.to_document() == {"$set": {"name": "Ada"}}
    assert Update.from_document({"$inc": {"n": 1}}).to_document() == {"$inc": {"n": 1}}


def test_update_modifies():
    update = Update.update("name", "Ada").inc("visits")
    assert update.modifies("name")
    assert update.modifies("visits")
    assert not update.modifies("age")


def test_update_equality():
    assert Update().set("a", 1) == Update.update("a", 1)
    assert Update().set("a", 1) != Update().set("a", 2)


def test_collation_document():
    collation = Collation.of("de").with_strength(2).with_case_first("upper").with_numeric_ordering()
    assert collation.to_document() == {"locale": "de", "strength": 2, "caseFirst": "upper", "numericOrdering": True}


def test_collation_to_driver_collation():
    assert Collation.of("en").with_strength(1).to_mongo_collation().document == {"locale": "en", "strength": 1}


def test_collation_from_document():
    assert Collation.from_document({"locale": "en", "caseLevel": True}) == Collation("en", case_level=True)


def test_collation_validation():
    with pytest.raises(ValueError):
        Collation.of("en").with_strength(6)

    with pytest.raises(ValueError):
        Collation("")
