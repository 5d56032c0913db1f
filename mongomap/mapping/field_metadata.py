"""
Field Metadata for Describing How Entity Properties Are Stored

Metadata values are attached to class attributes through `typing.Annotated`. When a descriptor is derived from a class
the metadata tells mongomap which attribute is the identifier, which storage name a property uses, whether a custom
converter applies, and which attributes are never persisted.

Metadata values combine with the `|` operator.

Example:
    ```python
    from typing import Annotated
    from dataclasses import dataclass
    from mongomap import document, Id, StoreAs, ConvertWith

    @document(collection="accounts")
    @dataclass
    class Account:
        owner: Annotated[str, StoreAs("owner_name")]
        balance: Annotated[Money, ConvertWith(MoneyConverter()) | StoreAs("bal")]
        id: Annotated[str, Id] = None
    ```
"""
from collections import ChainMap
from itertools import zip_longest
from typing import Any, MutableMapping, Protocol, Type, TypeVar, cast, runtime_checkable

from tramp.optionals import Optional, Nothing, Some


T = TypeVar("T")


@runtime_checkable
class PropertyConverter(Protocol):
    """Converts a single property between its Python value and its stored value."""

    def write(self, value: Any) -> Any:
        ...

    def read(self, value: Any) -> Any:
        ...


class FieldMetadata:
    """
    Base type for all field metadata.

    Attributes:
        metadata: The key-value pairs carried by this metadata
    """

    metadata: MutableMapping[str, Any]

    def __contains__(self, key: str) -> bool:
        return key in self.metadata

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, FieldMetadata):
            return NotImplemented

        return self.metadata == other.metadata

    def __hash__(self):
        return hash(tuple((key, id(value)) for key, value in self.metadata.items()))

    def __or__(self, other: "FieldMetadata") -> "FieldMetadata":
        if not isinstance(other, FieldMetadata):
            return NotImplemented

        return AggregateMetadata(self, other)

    def __repr__(self):
        return f"{type(self).__name__}({', '.join(f'{k}={v!r}' for k, v in self.metadata.items())})"

    def get(self, key: str, default: T = None) -> T:
        return self.metadata.get(key, default)

    def matches(self, check_for: "FieldMetadata | Type[FieldMetadata]") -> bool:
        """
        Check whether this metadata is of a given metadata type or equal to a given metadata instance.
        """
        match check_for:
            case type() as metadata_type if issubclass(metadata_type, FieldMetadata):
                return isinstance(self, metadata_type)

            case FieldMetadata() as metadata:
                return self == metadata

            case _:
                return False


class AggregateMetadata(FieldMetadata):
    """
    Several metadata values applied to the same property.

    Lookups walk the aggregated values in the order they were combined, so the first value to define a key wins.
    """

    metadata: ChainMap[str, Any]

    def __init__(self, *fields: FieldMetadata) -> None:
        self._fields: list[FieldMetadata] = []
        self.metadata = ChainMap({})

        for field in fields:
            self._add_field(field)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, AggregateMetadata):
            return NotImplemented

        return all(a == b for a, b in zip_longest(self._fields, other._fields))

    def __or__(self, other: FieldMetadata) -> FieldMetadata:
        if not isinstance(other, FieldMetadata):
            return NotImplemented

        return AggregateMetadata(*self._fields, other)

    def __hash__(self):
        return hash(tuple(hash(field) for field in self._fields))

    def __iter__(self):
        return iter(self._fields)

    def _add_field(self, field: FieldMetadata) -> None:
        if isinstance(field, AggregateMetadata):
            for inner in field:
                self._add_field(inner)

            return

        self._fields.append(field)
        self.metadata.maps.append(field.metadata)

    def matches(self, metadata: "FieldMetadata | Type[FieldMetadata]") -> bool:
        return any(f.matches(metadata) for f in self._fields)


class MetadataFlag(FieldMetadata):
    """
    Metadata that marks a property as having some trait. Flags carry a single `True` value and are singletons.
    """


class StoreAs(FieldMetadata):
    """
    Stores the property under a different field name.

    Example:
        ```python
        name: Annotated[str, StoreAs("full_name")]
        ```
    """

    def __init__(self, store_as: str):
        if not store_as:
            raise ValueError("StoreAs requires a non-empty field name")

        self.metadata = {"store_as": store_as}


class ConvertWith(FieldMetadata):
    """
    Converts the property with a custom `PropertyConverter` instead of the generic conversion rules.
    """

    def __init__(self, converter: PropertyConverter):
        if not isinstance(converter, PropertyConverter):
            raise TypeError(f"{converter!r} does not implement write() and read()")

        self.metadata = {"converter": converter}


def create_metadata_type(
    name: str, metadata_type: "Optional[Type[FieldMetadata]]" = Nothing(), /, **kwargs
) -> Type[FieldMetadata]:
    """
    Create a metadata type whose instances carry the given metadata values.

    Args:
        name: The name of the new type
        metadata_type: The base type, `FieldMetadata` when nothing is given
        **kwargs: The metadata values every instance carries
    """
    return cast(
        Type[FieldMetadata],
        type(name, (metadata_type.value_or(FieldMetadata),), {"metadata": kwargs}),
    )


def create_metadata_flag(name: str) -> FieldMetadata:
    """
    Create a singleton metadata flag.
    """
    return create_metadata_type(name, Some(MetadataFlag), **{f"__flag_{name}": True})()


Id = create_metadata_flag("Id")
"""
Marks the identifier property. The identifier is always stored as `_id`.

Example:
    ```python
    id: Annotated[str, Id] = None
    ```
"""

Transient = create_metadata_flag("Transient")
"""
Marks a property that is never written to or read from the database.
"""
