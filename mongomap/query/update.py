"""
Update

A fluent builder for update documents. Operators are collected per field in insertion order:

    ```python
    Update().set("name", "Alice").inc("visits", 1).push("tags", "new").to_document()
    # {"$set": {"name": "Alice"}, "$inc": {"visits": 1}, "$push": {"tags": "new"}}
    ```

Array filters declared with `filter_array` are not part of the document, they are passed to the driver as update
options alongside it.
"""
from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Any, Self

from mongomap.query.criteria import Criteria


class Position(Enum):
    """The end of an array `pop` removes from."""
    FIRST = -1
    LAST = 1


class Update:
    def __init__(self):
        self._operators: dict[str, dict[str, Any]] = {}
        self._array_filters: list[dict[str, Any]] = []

    @classmethod
    def update(cls, key: str, value: Any) -> "Update":
        """Creates an update that sets a single key."""
        return cls().set(key, value)

    @classmethod
    def from_document(cls, document: Mapping[str, Any], *exclude: str) -> "Update":
        """Creates an update from a document.

        Operator documents are copied as they are. A plain document becomes a `$set` of each of its keys, the `_id` key
        and any excluded keys are skipped.
        """
        update = cls()
        if document and all(key.startswith("$") for key in document):
            for operator, fields in document.items():
                update._operators[operator] = dict(fields) if isinstance(fields, Mapping) else fields

            return update

        for key, value in document.items():
            if key == "_id" or key in exclude:
                continue

            update.set(key, value)

        return update

    def set(self, key: str, value: Any) -> Self:
        return self._add("$set", key, value)

    def set_on_insert(self, key: str, value: Any) -> Self:
        return self._add("$setOnInsert", key, value)

    def unset(self, key: str) -> Self:
        return self._add("$unset", key, 1)

    def inc(self, key: str, amount: int | float = 1) -> Self:
        return self._add("$inc", key, amount)

    def mul(self, key: str, multiplier: int | float) -> Self:
        return self._add("$mul", key, multiplier)

    def min(self, key: str, value: Any) -> Self:
        return self._add("$min", key, value)

    def max(self, key: str, value: Any) -> Self:
        return self._add("$max", key, value)

    def push(self, key: str, value: Any) -> Self:
        return self._add("$push", key, value)

    def push_all(
        self, key: str, values: Iterable[Any], *, slice: int | None = None, position: int | None = None
    ) -> Self:
        """Appends every value with `$each`, optionally trimming the array with `$slice`."""
        modifiers = {"$each": list(values)}
        if position is not None:
            modifiers["$position"] = position

        if slice is not None:
            modifiers["$slice"] = slice

        return self._add("$push", key, modifiers)

    def add_to_set(self, key: str, *values: Any) -> Self:
        """Adds a value to an array unless present. Several values are added with `$each`."""
        return self._add("$addToSet", key, values[0] if len(values) == 1 else {"$each": list(values)})

    def pop(self, key: str, position: Position = Position.LAST) -> Self:
        return self._add("$pop", key, position.value)

    def pull(self, key: str, value: Any) -> Self:
        """Removes matching elements. `value` is either an element or `Criteria` the elements are matched against."""
        if isinstance(value, Criteria):
            value = value.to_document()

        return self._add("$pull", key, value)

    def pull_all(self, key: str, values: Iterable[Any]) -> Self:
        return self._add("$pullAll", key, list(values))

    def rename(self, old_name: str, new_name: str) -> Self:
        return self._add("$rename", old_name, new_name)

    def current_date(self, key: str, *, timestamp: bool = False) -> Self:
        return self._add("$currentDate", key, {"$type": "timestamp"} if timestamp else True)

    def filter_array(self, criteria: Criteria | Mapping[str, Any]) -> Self:
        """Adds an array filter that selects the elements updated through an `$[identifier]` path."""
        document = criteria.to_document() if isinstance(criteria, Criteria) else dict(criteria)
        self._array_filters.append(document)
        return self

    @property
    def array_filters(self) -> list[dict[str, Any]]:
        return list(self._array_filters)

    @property
    def has_array_filters(self) -> bool:
        return bool(self._array_filters)

    def modifies(self, key: str) -> bool:
        """Whether any operator of this update touches the key."""
        return any(isinstance(fields, Mapping) and key in fields for fields in self._operators.values())

    def to_document(self) -> dict[str, Any]:
        return {
            operator: dict(fields) if isinstance(fields, Mapping) else fields
            for operator, fields in self._operators.items()
        }

    def _add(self, operator: str, key: str, value: Any) -> Self:
        self._operators.setdefault(operator, {})[key] = value
        return self

    def __eq__(self, other):
        if not isinstance(other, Update):
            return NotImplemented

        return self.to_document() == other.to_document() and self._array_filters == other._array_filters

    def __repr__(self):
        return f"<{type(self).__name__} {self.to_document()!r}>"
