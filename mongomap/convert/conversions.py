"""
Conversion Service

A registry of converters between Python types. The query mapper uses it to coerce identifiers to their native
representation, and the `MongoConverter` consults its writers before applying the generic storage conversions.
"""
from decimal import Decimal
from typing import Any, Callable
from uuid import UUID

from bson import Decimal128, ObjectId
from bson.errors import BSONError

from mongomap.exceptions import ConversionError


Converter = Callable[[Any], Any]


class ConversionService:
    """Converts values between types using registered converters.

    Converters are registered for a `(source type, target type)` pair and are found by walking the MRO of the value's
    type, so a converter registered for a base class applies to its subclasses.

    Writers are a separate registry of converters from a Python type to whatever representation it should be stored
    as. They take precedence over the generic storage conversions of the `MongoConverter`.
    """
    def __init__(self, *, register_defaults: bool = True):
        self._converters: dict[tuple[type, type], Converter] = {}
        self._writers: dict[type, Converter] = {}
        if register_defaults:
            self._register_defaults()

    def register(self, source: type, target: type, converter: Converter) -> "ConversionService":
        self._converters[source, target] = converter
        return self

    def register_writer(self, source: type, converter: Converter) -> "ConversionService":
        self._writers[source] = converter
        return self

    def can_convert(self, source: type, target: type) -> bool:
        return issubclass(source, target) or self._find(self._converters, source, target) is not None

    def convert(self, value: Any, target: type) -> Any:
        """Converts a value to the target type.

        Raises:
            ConversionError: When no converter is registered or the converter rejects the value.
        """
        if isinstance(value, target):
            return value

        converter = self._find(self._converters, type(value), target)
        if converter is None:
            raise ConversionError(
                f"No converter from {type(value).__name__} to {_type_name(target)}", value=value, target_type=target
            )

        try:
            return converter(value)
        except (BSONError, TypeError, ValueError, ArithmeticError) as error:
            raise ConversionError(
                f"Cannot convert {value!r} to {_type_name(target)}: {error}", value=value, target_type=target
            ) from error

    def get_writer(self, source: type) -> Converter | None:
        for klass in source.__mro__:
            if klass in self._writers:
                return self._writers[klass]

        return None

    @staticmethod
    def _find(registry: dict[tuple[type, type], Converter], source: type, target: type) -> Converter | None:
        for klass in source.__mro__:
            if (klass, target) in registry:
                return registry[klass, target]

        return None

    def _register_defaults(self):
        self.register(str, ObjectId, ObjectId)
        self.register(bytes, ObjectId, ObjectId)
        self.register(ObjectId, str, str)
        self.register(str, UUID, UUID)
        self.register(UUID, str, str)
        self.register(str, Decimal128, Decimal128)
        self.register(int, Decimal128, lambda value: Decimal128(Decimal(value)))
        self.register(Decimal, Decimal128, Decimal128)
        self.register(Decimal128, Decimal, Decimal128.to_decimal)


def _type_name(target: Any) -> str:
    return getattr(target, "__name__", repr(target))
