"""
Lifecycle Events

Entities pass through three lifecycle points on their way to the database, each is announced twice: as an event
published to listeners of the `EventPublisher`, and as a call to the registered `EntityCallbacks`. Callbacks may return
a replacement entity, listeners only observe.

-   **Before convert**: the entity is about to be converted to a document.
-   **Before save**: the document has been produced and is about to be written.
-   **After save**: the write succeeded.
"""
import inspect
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Callable

from loguru import logger


@dataclass(frozen=True)
class MappingEvent:
    """Attributes:
    source: The entity the event is about
    document: The document the entity was converted to, `None` before conversion
    collection_name: The collection the entity is written to
    """
    source: Any
    document: dict[str, Any] | None
    collection_name: str


class BeforeConvertEvent(MappingEvent):
    pass


class BeforeSaveEvent(MappingEvent):
    pass


class AfterSaveEvent(MappingEvent):
    pass


Listener = Callable[[MappingEvent], Any]


class EventPublisher:
    """Delivers events to the listeners subscribed to the event's type or any of its base types."""

    def __init__(self):
        self._listeners: dict[type[MappingEvent], list[Listener]] = defaultdict(list)

    def subscribe(self, event_type: type[MappingEvent], listener: Listener) -> Listener:
        self._listeners[event_type].append(listener)
        return listener

    def unsubscribe(self, event_type: type[MappingEvent], listener: Listener):
        self._listeners[event_type].remove(listener)

    def publish(self, event: MappingEvent):
        for event_type in type(event).__mro__:
            for listener in self._listeners.get(event_type, ()):
                listener(event)


class CallbackType(Enum):
    BEFORE_CONVERT = auto()
    BEFORE_SAVE = auto()
    AFTER_SAVE = auto()


class EntityCallbacks:
    """Callbacks that may modify or replace an entity at each lifecycle point.

    Before-convert callbacks are called with `(entity, collection_name)`, before-save and after-save callbacks with
    `(entity, document, collection_name)`. Every callback returns the entity to continue with. Callbacks registered for
    a type apply to its subclasses, callbacks registered for `object` apply to everything.
    """
    def __init__(self):
        self._callbacks: dict[CallbackType, list[tuple[type, Callable[..., Any]]]] = defaultdict(list)

    def register(self, callback_type: CallbackType, callback: Callable[..., Any], entity_type: type = object) -> Callable[..., Any]:
        self._callbacks[callback_type].append((entity_type, callback))
        return callback

    def callback(self, callback_type: CallbackType, entity: Any, *args: Any) -> Any:
        for callback in self._callbacks_for(callback_type, entity):
            result = callback(entity, *args)
            if inspect.isawaitable(result):
                raise TypeError(
                    f"{callback_type.name} callback {callback!r} returned an awaitable, use callback_async"
                )

            entity = _replacement(entity, result)

        return entity

    async def callback_async(self, callback_type: CallbackType, entity: Any, *args: Any) -> Any:
        for callback in self._callbacks_for(callback_type, entity):
            result = callback(entity, *args)
            if inspect.isawaitable(result):
                result = await result

            entity = _replacement(entity, result)

        return entity

    def _callbacks_for(self, callback_type: CallbackType, entity: Any) -> list[Callable[..., Any]]:
        return [
            callback
            for entity_type, callback in self._callbacks.get(callback_type, ())
            if isinstance(entity, entity_type)
        ]


def _replacement(entity: Any, result: Any) -> Any:
    if result is None:
        logger.debug(f"Entity callback returned None for {type(entity).__name__}, keeping the original entity")
        return entity

    return result
