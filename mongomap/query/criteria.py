"""
Criteria

A fluent builder for filter documents. Each `Criteria` is bound to one field key and collects operators for it. Calling
`and_` starts a new criteria for another key in the same chain, and `to_document` merges the whole chain into a single
filter:

    ```python
    where("age").gte(18).lt(65).and_("name").is_("Alice").to_document()
    # {"age": {"$gte": 18, "$lt": 65}, "name": "Alice"}
    ```

Field keys are property names. They are translated to storage names by the `QueryMapper` when the filter is executed.
"""
from collections.abc import Iterable
from typing import Any, Self

from bson import Regex

from mongomap.exceptions import InvalidDataAccessApiUsageError


_NOT_SET = object()


class Criteria:
    """Criteria for a single field key, chained with the criteria for other keys."""

    def __init__(self, key: str | None = None, *, _chain: list["Criteria"] | None = None):
        self.key = key
        self._operators: dict[str, Any] = {}
        self._is_value: Any = _NOT_SET
        self._negate_next = False
        self._chain = _chain if _chain is not None else []
        self._chain.append(self)

    def and_(self, key: str) -> "Criteria":
        """Starts criteria for another key that is combined with this chain."""
        return Criteria(key, _chain=self._chain)

    def is_(self, value: Any) -> Self:
        if self._is_value is not _NOT_SET:
            raise InvalidDataAccessApiUsageError(
                f"Multiple 'is' values declared for {self.key!r}, use 'and_' with multiple criteria"
            )

        if self._negate_next:
            raise InvalidDataAccessApiUsageError("'not_' can't be used with 'is_', use 'ne' instead")

        self._is_value = value
        return self

    def ne(self, value: Any) -> Self:
        return self._add("$ne", value)

    def lt(self, value: Any) -> Self:
        return self._add("$lt", value)

    def lte(self, value: Any) -> Self:
        return self._add("$lte", value)

    def gt(self, value: Any) -> Self:
        return self._add("$gt", value)

    def gte(self, value: Any) -> Self:
        return self._add("$gte", value)

    def in_(self, *values: Any) -> Self:
        return self._add("$in", _as_list("in_", values))

    def nin(self, *values: Any) -> Self:
        return self._add("$nin", _as_list("nin", values))

    def all(self, *values: Any) -> Self:
        return self._add("$all", _as_list("all", values))

    def mod(self, divisor: int | float, remainder: int | float) -> Self:
        return self._add("$mod", [divisor, remainder])

    def size(self, size: int) -> Self:
        return self._add("$size", size)

    def exists(self, exists: bool = True) -> Self:
        return self._add("$exists", exists)

    def type(self, *types: int | str) -> Self:
        """Matches values of the given BSON type numbers or aliases."""
        return self._add("$type", types[0] if len(types) == 1 else list(types))

    def not_(self) -> Self:
        """Negates the operator that follows with `$not`."""
        self._negate_next = True
        return self

    def regex(self, pattern: str, options: str | None = None) -> Self:
        regex = Regex(pattern, options or "")
        if self._negate_next:
            self._negate_next = False
            self._operators["$not"] = regex
            return self

        return self.is_(regex)

    def elem_match(self, criteria: "Criteria") -> Self:
        return self._add("$elemMatch", criteria.to_document())

    def or_operator(self, *criteria: "Criteria") -> Self:
        return self._add_combinator("$or", criteria)

    def nor_operator(self, *criteria: "Criteria") -> Self:
        return self._add_combinator("$nor", criteria)

    def and_operator(self, *criteria: "Criteria") -> Self:
        return self._add_combinator("$and", criteria)

    def to_document(self) -> dict[str, Any]:
        """Builds the filter document for the whole chain.

        Raises:
            InvalidDataAccessApiUsageError: When two criteria in the chain use the same key.
        """
        document = {}
        for criteria in self._chain:
            for key, value in criteria._single_document().items():
                if key in document:
                    raise InvalidDataAccessApiUsageError(
                        f"Can't add a second {key!r} expression specified as {key!r}: {value!r}, criteria already "
                        f"contains {key!r}: {document[key]!r}"
                    )

                document[key] = value

        return document

    def _single_document(self) -> dict[str, Any]:
        if self.key is None:
            return {}

        if self._is_value is not _NOT_SET:
            if self._operators:
                raise InvalidDataAccessApiUsageError(
                    f"Criteria for {self.key!r} combines an 'is' value with operators {', '.join(self._operators)}"
                )

            return {self.key: self._is_value}

        return {self.key: dict(self._operators)}

    def _add(self, operator: str, value: Any) -> Self:
        if self._negate_next:
            self._negate_next = False
            self._operators["$not"] = {operator: value}
        else:
            self._operators[operator] = value

        return self

    def _add_combinator(self, operator: str, criteria: Iterable["Criteria"]) -> Self:
        Criteria(operator, _chain=self._chain).is_([c.to_document() for c in criteria])
        return self

    def __repr__(self):
        return f"<{type(self).__name__} {self.to_document()!r}>"


def where(key: str) -> Criteria:
    """Starts a criteria chain for a field key."""
    return Criteria(key)


def _as_list(operator: str, values: tuple[Any, ...]) -> list[Any]:
    if len(values) == 1 and isinstance(values[0], (list, tuple, set, frozenset)):
        return list(values[0])

    if any(isinstance(value, (list, tuple, set, frozenset)) for value in values):
        raise InvalidDataAccessApiUsageError(
            f"'{operator}' accepts either a single collection or individual values, not both"
        )

    return list(values)
