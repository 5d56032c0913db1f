"""
Mapping Context

The mapping context owns the entity descriptors of an application. A descriptor is built the first time its type is
looked up and then reused for the life of the process, so every mapper sharing a context sees the same, immutable
descriptor. A default context is used by the `document` decorator when no other context is given.
"""
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, TypeVar
from uuid import UUID

from bson import Binary, Decimal128, Int64, ObjectId, Regex
from loguru import logger

from mongomap.mapping.entity import EntityDescriptor


T = TypeVar("T")

DOCUMENT_OPTIONS_DUNDER_NAME = "__mongomap__"

SIMPLE_TYPES = (
    str, int, float, bool, bytes, complex, type(None),
    date, datetime, Decimal, UUID, Enum,
    ObjectId, Decimal128, Binary, Int64, Regex,
    dict, list, tuple, set, frozenset,
)

_default_context = None


class MappingContext:
    """A cache of entity descriptors.

    Types are described in one of three ways. An explicitly registered descriptor always wins. Types decorated with
    `document` use the collection and alias given to the decorator. Any other annotated class is described from its
    annotations on first use. Simple types, such as `str` or `datetime`, are never entities.

    Attributes:
        entities (dict[type, EntityDescriptor]): The descriptors built so far
        documents (set[type]): The types declared with `document` or registered explicitly
    """
    def __init__(self, *descriptors: EntityDescriptor):
        self._entities: dict[type, EntityDescriptor] = {}
        self.documents: set[type] = set()
        for descriptor in descriptors:
            self.register(descriptor)

    @property
    def entities(self) -> dict[type, EntityDescriptor]:
        return dict(self._entities)

    def __contains__(self, entity_type: type) -> bool:
        return entity_type in self._entities or entity_type in self.documents

    def add_document(self, entity_type: type):
        """Declares a type as a stored document. Its descriptor is built on first lookup."""
        self.documents.add(entity_type)
        self._entities.pop(entity_type, None)

    def __repr__(self):
        return f"<{type(self).__name__}: contains {len(self._entities)} entit{'y' if len(self._entities) == 1 else 'ies'}>"

    def register(self, descriptor: EntityDescriptor) -> EntityDescriptor:
        """Adds a descriptor to the context, replacing any descriptor previously built for the same type."""
        self._entities[descriptor.type] = descriptor
        self.documents.add(descriptor.type)
        logger.debug(f"Registered entity descriptor for {descriptor.type.__name__} -> {descriptor.collection_name!r}")
        return descriptor

    def get_entity(self, entity_type: Any) -> EntityDescriptor | None:
        """Returns the descriptor for a type, building and caching it on first use.

        Returns:
            The descriptor, or `None` when the type is a simple type or has no annotations to describe.
        """
        if entity_type in self._entities:
            return self._entities[entity_type]

        if not self.is_entity_type(entity_type):
            return None

        options = getattr(entity_type, DOCUMENT_OPTIONS_DUNDER_NAME, {})
        descriptor = EntityDescriptor.from_type(
            entity_type, collection=options.get("collection"), alias=options.get("alias")
        )
        return self._entities.setdefault(entity_type, descriptor)

    @staticmethod
    def is_entity_type(entity_type: Any) -> bool:
        if not isinstance(entity_type, type) or issubclass(entity_type, SIMPLE_TYPES):
            return False

        return _is_document(entity_type) or bool(getattr(entity_type, "__annotations__", None))


def _is_document(entity_type: Any) -> bool:
    return DOCUMENT_OPTIONS_DUNDER_NAME in getattr(entity_type, "__dict__", {})


def get_default_context() -> MappingContext:
    """Retrieves the default `MappingContext`, creating it on first use."""
    global _default_context
    if not _default_context:
        _default_context = MappingContext()

    return _default_context


def document(
    entity_type: type[T] | None = None,
    *,
    collection: str | None = None,
    alias: str | None = None,
    context: MappingContext | None = None,
) -> type[T] | Callable[[type[T]], type[T]]:
    """Marks a class as a stored document.

    Can be used bare (`@document`) or with options (`@document(collection="people")`). The descriptor is built from
    the class annotations the first time the context is asked for it, so annotations may reference classes that are
    declared later in the module.

    Args:
        collection: The collection name, defaults to the class name
        alias: A type alias written to stored documents
        context: The mapping context to register with, defaults to the default context
    """
    def wrap(cls: type[T]) -> type[T]:
        setattr(cls, DOCUMENT_OPTIONS_DUNDER_NAME, {"collection": collection, "alias": alias})
        (context or get_default_context()).add_document(cls)
        return cls

    return wrap if entity_type is None else wrap(entity_type)
