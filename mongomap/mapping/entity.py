"""
Entity Descriptors

An `EntityDescriptor` is the immutable description of how a domain type is stored: the collection it lives in, the
storage name of each property, which property is the identifier, and which properties use custom converters. The query
and update mappers, the converter, and the schema creator all work from descriptors, never from the classes directly.

Descriptors are either built explicitly:

    ```python
    descriptor = (
        EntityDescriptor.builder(Person)
        .collection("people")
        .id("id", str)
        .field("name", str, store_as="full_name")
        .build()
    )
    ```

or derived from a class' `typing.Annotated` hints with `EntityDescriptor.from_type(Person)`.
"""
import dataclasses
import types
from collections.abc import Mapping, Sequence, Set
from typing import Annotated, Any, ClassVar, Union, get_args, get_origin

import tramp.annotations
from bson import ObjectId

from mongomap.exceptions import MappingError
from mongomap.mapping.field_metadata import (
    AggregateMetadata,
    ConvertWith,
    FieldMetadata,
    Id,
    PropertyConverter,
    StoreAs,
    Transient,
)


ID_FIELD_NAME = "_id"
DEFAULT_ID_NAMES = ("id", "_id")

_COLLECTION_ORIGINS = (list, tuple, set, frozenset, Sequence, Set)
_FRAMEWORK_MODULES = {"builtins", "abc", "typing", "pydantic", "attr", "attrs"}


@dataclasses.dataclass(frozen=True)
class PropertyDescriptor:
    """How one property of an entity is stored.

    Attributes:
        name: The attribute name on the Python type
        field_name: The name of the field in the stored document
        type: The declared type with `Optional` and `Annotated` wrappers removed
        element_type: The element type when the property is a list, tuple, or set
        is_id: Whether this property is the entity's identifier
        is_optional: Whether the declared type admits `None`
        converter: A custom converter used instead of the generic conversion rules
        transient: Whether the property is skipped when reading and writing documents
    """
    name: str
    field_name: str
    type: Any = Any
    element_type: Any = None
    is_id: bool = False
    is_optional: bool = False
    converter: PropertyConverter | None = None
    transient: bool = False

    @property
    def is_collection(self) -> bool:
        return self.element_type is not None

    @property
    def actual_type(self) -> Any:
        """The element type of collection properties, otherwise the declared type."""
        return self.element_type if self.is_collection else self.type


@dataclasses.dataclass(frozen=True)
class EntityDescriptor:
    """The storage description of a domain type.

    Attributes:
        type: The described Python type
        collection_name: The collection documents of this type are stored in
        properties: The properties in declaration order
        alias: The type alias written under the converter's type key, if any
    """
    type: type
    collection_name: str
    properties: tuple[PropertyDescriptor, ...]
    alias: str | None = None

    _by_name: dict[str, PropertyDescriptor] = dataclasses.field(init=False, repr=False, compare=False)
    _by_field_name: dict[str, PropertyDescriptor] = dataclasses.field(init=False, repr=False, compare=False)

    def __post_init__(self):
        ids = [prop for prop in self.properties if prop.is_id]
        if len(ids) > 1:
            raise MappingError(
                f"{self.type.__name__} declares more than one id property: {', '.join(p.name for p in ids)}"
            )

        object.__setattr__(self, "_by_name", {prop.name: prop for prop in self.properties})
        object.__setattr__(self, "_by_field_name", {prop.field_name: prop for prop in self.properties})

    @property
    def id_property(self) -> PropertyDescriptor | None:
        return next((prop for prop in self.properties if prop.is_id), None)

    @property
    def id_field_name(self) -> str:
        return ID_FIELD_NAME

    @property
    def native_id_type(self) -> type:
        """The type identifiers of this entity are coerced to. `ObjectId` unless the id declares another type."""
        prop = self.id_property
        if prop is None or prop.type in (Any, object, str, ObjectId):
            return ObjectId

        return prop.type

    @property
    def persistent_properties(self) -> tuple[PropertyDescriptor, ...]:
        return tuple(prop for prop in self.properties if not prop.transient)

    def get_property(self, name: str) -> PropertyDescriptor | None:
        """Find a property by its attribute name or by its stored field name."""
        return self._by_name.get(name) or self._by_field_name.get(name)

    def __contains__(self, name: str) -> bool:
        return self.get_property(name) is not None

    @classmethod
    def builder(cls, entity_type: type) -> "EntityDescriptorBuilder":
        return EntityDescriptorBuilder(entity_type)

    @classmethod
    def from_type(
        cls, entity_type: type, *, collection: str | None = None, alias: str | None = None
    ) -> "EntityDescriptor":
        """Derive a descriptor from the annotations of a class.

        The id property is the one flagged with `Id`. Without a flag, a property named `id` or `_id`, or stored as
        `_id`, is used. A type with none of these has no id property.
        """
        properties = [
            _create_property(name, annotation)
            for name, annotation in _get_annotations(entity_type).items()
        ]

        if not any(prop.is_id for prop in properties):
            properties = _mark_default_id(properties)

        return cls(
            type=entity_type,
            collection_name=collection or entity_type.__name__,
            properties=tuple(properties),
            alias=alias,
        )


class EntityDescriptorBuilder:
    """Builds an `EntityDescriptor` without reading any annotations."""

    def __init__(self, entity_type: type):
        self._type = entity_type
        self._collection: str | None = None
        self._alias: str | None = None
        self._properties: dict[str, PropertyDescriptor] = {}

    def collection(self, name: str) -> "EntityDescriptorBuilder":
        self._collection = name
        return self

    def alias(self, alias: str) -> "EntityDescriptorBuilder":
        self._alias = alias
        return self

    def id(self, name: str = "id", type_: Any = ObjectId) -> "EntityDescriptorBuilder":
        prop_type, _, _ = _unwrap_type(type_)
        self._properties[name] = PropertyDescriptor(
            name=name, field_name=ID_FIELD_NAME, type=prop_type, is_id=True, is_optional=True
        )
        return self

    def field(
        self,
        name: str,
        type_: Any = Any,
        *,
        store_as: str | None = None,
        converter: PropertyConverter | None = None,
        optional: bool = False,
    ) -> "EntityDescriptorBuilder":
        prop_type, element_type, is_optional = _unwrap_type(type_)
        self._properties[name] = PropertyDescriptor(
            name=name,
            field_name=store_as or name,
            type=prop_type,
            element_type=element_type,
            is_optional=optional or is_optional,
            converter=converter,
        )
        return self

    def convert(self, name: str, converter: PropertyConverter) -> "EntityDescriptorBuilder":
        self._properties[name] = dataclasses.replace(self._require(name), converter=converter)
        return self

    def transient(self, name: str) -> "EntityDescriptorBuilder":
        self._properties[name] = dataclasses.replace(self._require(name), transient=True)
        return self

    def build(self) -> EntityDescriptor:
        return EntityDescriptor(
            type=self._type,
            collection_name=self._collection or self._type.__name__,
            properties=tuple(self._properties.values()),
            alias=self._alias,
        )

    def _require(self, name: str) -> PropertyDescriptor:
        try:
            return self._properties[name]
        except KeyError:
            raise MappingError(f"{self._type.__name__} has no property {name!r}, declare it with field() first") from None


def _get_annotations(entity_type: type) -> dict[str, Any]:
    annotations = {}
    for klass in reversed(entity_type.__mro__):
        if klass is object or klass.__module__.partition(".")[0] in _FRAMEWORK_MODULES:
            continue

        for name, annotation in tramp.annotations.get_annotations(
            klass, tramp.annotations.Format.FORWARDREF
        ).items():
            if name.startswith("_") and name not in DEFAULT_ID_NAMES:
                continue

            annotations[name] = annotation

    resolved = {}
    for name, annotation in annotations.items():
        annotation = _evaluate(annotation)
        if annotation is ClassVar or get_origin(annotation) is ClassVar:
            continue

        resolved[name] = annotation

    return resolved


def _evaluate(annotation: Any) -> Any:
    if isinstance(annotation, tramp.annotations.ForwardRef):
        try:
            return annotation.evaluate()
        except NameError:
            return Any

    return annotation


def _create_property(name: str, annotation: Any) -> PropertyDescriptor:
    metadata = AggregateMetadata()
    if get_origin(annotation) is Annotated:
        annotation, *args = get_args(annotation)
        for arg in args:
            match arg:
                case FieldMetadata():
                    metadata |= arg

    prop_type, element_type, is_optional = _unwrap_type(_evaluate(annotation))
    is_id = metadata.matches(Id)
    converter = metadata.get("converter") if metadata.matches(ConvertWith) else None
    field_name = metadata.get("store_as") if metadata.matches(StoreAs) else name
    return PropertyDescriptor(
        name=name,
        field_name=ID_FIELD_NAME if is_id else field_name,
        type=prop_type,
        element_type=element_type,
        is_id=is_id,
        is_optional=is_optional or is_id,
        converter=converter,
        transient=metadata.matches(Transient),
    )


def _mark_default_id(properties: list[PropertyDescriptor]) -> list[PropertyDescriptor]:
    candidate = next(
        (
            prop
            for prop in properties
            if not prop.transient and (prop.name in DEFAULT_ID_NAMES or prop.field_name == ID_FIELD_NAME)
        ),
        None,
    )
    return [
        dataclasses.replace(prop, is_id=True, field_name=ID_FIELD_NAME, is_optional=True)
        if prop is candidate
        else prop
        for prop in properties
    ]


def _unwrap_type(annotation: Any) -> tuple[Any, Any, bool]:
    """Split an annotation into its bare type, its element type if it is a collection, and whether it is optional."""
    is_optional = False
    if get_origin(annotation) is Annotated:
        annotation = get_args(annotation)[0]

    if get_origin(annotation) in (Union, types.UnionType):
        args = [arg for arg in get_args(annotation) if arg is not type(None)]
        is_optional = len(args) < len(get_args(annotation))
        annotation = args[0] if len(args) == 1 else Any

    origin = get_origin(annotation)
    if origin in _COLLECTION_ORIGINS:
        args = get_args(annotation)
        return origin, _evaluate(args[0]) if args else Any, is_optional

    if annotation in _COLLECTION_ORIGINS:
        return annotation, Any, is_optional

    if origin is not None and isinstance(origin, type) and issubclass(origin, Mapping):
        return dict, None, is_optional

    return annotation, None, is_optional
