from dataclasses import dataclass, replace
from typing import Any, Literal, Self

from pymongo.collation import Collation as MongoCollation


@dataclass(frozen=True)
class Collation:
    """Language specific rules for string comparison.

    Collations are immutable, each `with_*` method returns a modified copy.

    Attributes:
        locale: The ICU locale, `"simple"` for binary comparison
        strength: The comparison level, 1 through 5
    """
    locale: str
    strength: int | None = None
    case_level: bool | None = None
    case_first: Literal["upper", "lower", "off"] | None = None
    numeric_ordering: bool | None = None
    alternate: Literal["non-ignorable", "shifted"] | None = None
    max_variable: Literal["punct", "space"] | None = None
    normalization: bool | None = None
    backwards: bool | None = None

    def __post_init__(self):
        if not self.locale:
            raise ValueError("A collation requires a locale")

    @classmethod
    def of(cls, locale: str) -> "Collation":
        return cls(locale)

    @classmethod
    def simple(cls) -> "Collation":
        return cls("simple")

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "Collation":
        return cls(
            locale=document["locale"],
            strength=document.get("strength"),
            case_level=document.get("caseLevel"),
            case_first=document.get("caseFirst"),
            numeric_ordering=document.get("numericOrdering"),
            alternate=document.get("alternate"),
            max_variable=document.get("maxVariable"),
            normalization=document.get("normalization"),
            backwards=document.get("backwards"),
        )

    def with_strength(self, strength: int) -> Self:
        if not 1 <= strength <= 5:
            raise ValueError(f"Collation strength must be between 1 and 5, got {strength}")

        return replace(self, strength=strength)

    def with_case_level(self, case_level: bool = True) -> Self:
        return replace(self, case_level=case_level)

    def with_case_first(self, case_first: Literal["upper", "lower", "off"]) -> Self:
        return replace(self, case_first=case_first)

    def with_numeric_ordering(self, numeric_ordering: bool = True) -> Self:
        return replace(self, numeric_ordering=numeric_ordering)

    def to_document(self) -> dict[str, Any]:
        options = {
            "locale": self.locale,
            "strength": self.strength,
            "caseLevel": self.case_level,
            "caseFirst": self.case_first,
            "numericOrdering": self.numeric_ordering,
            "alternate": self.alternate,
            "maxVariable": self.max_variable,
            "normalization": self.normalization,
            "backwards": self.backwards,
        }
        return {key: value for key, value in options.items() if value is not None}

    def to_mongo_collation(self) -> MongoCollation:
        document = self.to_document()
        return MongoCollation(document.pop("locale"), **document)
