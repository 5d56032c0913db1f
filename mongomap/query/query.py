from collections.abc import Mapping
from enum import Enum
from typing import Any, Self

from mongomap.exceptions import InvalidDataAccessApiUsageError
from mongomap.query.collation import Collation
from mongomap.query.criteria import Criteria


class Direction(Enum):
    ASCENDING = 1
    DESCENDING = -1


class Query:
    """A filter with its sort order, paging, projection, and collation.

    Attributes:
        collation: The collation applied to the query and to writes built from it
    """
    def __init__(self, criteria: Criteria | Mapping[str, Any] | None = None):
        self._criteria: dict[str, Any] = {}
        self._sort: dict[str, int] = {}
        self._fields: dict[str, Any] = {}
        self._skip = 0
        self._limit = 0
        self.collation: Collation | None = None
        if criteria is not None:
            self.add_criteria(criteria)

    @classmethod
    def query(cls, criteria: Criteria | Mapping[str, Any]) -> "Query":
        return cls(criteria)

    def add_criteria(self, criteria: Criteria | Mapping[str, Any]) -> Self:
        """Adds criteria to the filter.

        Raises:
            InvalidDataAccessApiUsageError: When the filter already has criteria for one of the keys.
        """
        document = criteria.to_document() if isinstance(criteria, Criteria) else criteria
        for key, value in document.items():
            if key in self._criteria:
                raise InvalidDataAccessApiUsageError(
                    f"Can't add a second {key!r} criteria, query already contains {key!r}: {self._criteria[key]!r}"
                )

            self._criteria[key] = value

        return self

    def sort(self, key: str, direction: Direction = Direction.ASCENDING) -> Self:
        self._sort[key] = direction.value
        return self

    def skip(self, skip: int) -> Self:
        if skip < 0:
            raise ValueError(f"Skip must not be negative, got {skip}")

        self._skip = skip
        return self

    def limit(self, limit: int) -> Self:
        if limit < 0:
            raise ValueError(f"Limit must not be negative, got {limit}")

        self._limit = limit
        return self

    def include(self, *keys: str) -> Self:
        self._fields.update(dict.fromkeys(keys, 1))
        return self

    def exclude(self, *keys: str) -> Self:
        self._fields.update(dict.fromkeys(keys, 0))
        return self

    def with_collation(self, collation: Collation | str | None) -> Self:
        self.collation = Collation.of(collation) if isinstance(collation, str) else collation
        return self

    def copy(self) -> "Query":
        """A new query with the same criteria and options, changes to either don't affect the other."""
        query = type(self)(self._criteria)
        query._sort = dict(self._sort)
        query._fields = dict(self._fields)
        query._skip = self._skip
        query._limit = self._limit
        query.collation = self.collation
        return query

    @property
    def skip_count(self) -> int:
        return self._skip

    @property
    def limit_count(self) -> int:
        return self._limit

    def to_document(self) -> dict[str, Any]:
        return dict(self._criteria)

    def sort_document(self) -> dict[str, int]:
        return dict(self._sort)

    def fields_document(self) -> dict[str, Any]:
        return dict(self._fields)

    def __repr__(self):
        return (
            f"<{type(self).__name__} filter={self._criteria!r} sort={self._sort!r} fields={self._fields!r} "
            f"skip={self._skip} limit={self._limit}>"
        )


def as_query(query: Query | Criteria | Mapping[str, Any] | None) -> Query:
    """Accepts any of the filter shapes taken by the templates and bulk operations."""
    match query:
        case Query():
            return query

        case None:
            return Query()

        case Criteria() | Mapping():
            return Query(query)

        case _:
            raise TypeError(f"Expected a Query, Criteria, or mapping, got {type(query).__name__}")
