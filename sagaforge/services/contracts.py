"""Request and result contracts shared by the generation flows.

Every flow exchanges small, transient values: a request validated before any
prompt is rendered, and a result whose shape is enforced before it reaches the
caller.  Payloads use the camelCase names the browser sends
(``seriesOutline``); the dataclasses expose the snake_case equivalents.

Validation is structural only.  It checks presence, type and non-emptiness of
required text and never looks at what the text says.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Mapping, Optional, Tuple, Type, TypeVar

ROOT_FIELD = "__root__"

# (attribute, payload name, required)
FieldSpec = Tuple[str, str, bool]

ContractT = TypeVar("ContractT", bound="TextContract")


class ValidationError(ValueError):
    """Raised when a payload does not satisfy a flow contract.

    ``fields`` lists the offending payload names in declaration order and
    ``messages`` maps each of them to a human readable explanation.
    """

    def __init__(self, messages: Mapping[str, str]):
        self.messages: Dict[str, str] = dict(messages)
        self.fields: Tuple[str, ...] = tuple(self.messages)
        summary = "; ".join(f"{name}: {message}" for name, message in self.messages.items())
        super().__init__(summary or "The payload is invalid.")


def _validate_text_fields(
    raw: Any,
    field_specs: Tuple[FieldSpec, ...],
    *,
    allow_empty: bool,
) -> Dict[str, Optional[str]]:
    if not isinstance(raw, Mapping):
        raise ValidationError({ROOT_FIELD: "Expected an object."})

    values: Dict[str, Optional[str]] = {}
    errors: Dict[str, str] = {}
    for attribute, name, required in field_specs:
        value = raw.get(name)
        if value is None:
            if required:
                errors[name] = "This field is required."
            values[attribute] = None
            continue
        if not isinstance(value, str):
            errors[name] = "Must be a string."
            continue
        if not value.strip():
            if required and not allow_empty:
                errors[name] = "This field must not be empty."
                continue
            if not required:
                value = None
        values[attribute] = value

    if errors:
        raise ValidationError(errors)
    return values


class TextContract:
    """Behaviour shared by the text-only request and result dataclasses."""

    FIELDS: ClassVar[Tuple[FieldSpec, ...]] = ()
    ALLOW_EMPTY: ClassVar[bool] = False

    @classmethod
    def from_payload(cls: Type[ContractT], raw: Any) -> ContractT:
        values = _validate_text_fields(raw, cls.FIELDS, allow_empty=cls.ALLOW_EMPTY)
        return cls(**values)

    def to_payload(self) -> Dict[str, str]:
        payload: Dict[str, str] = {}
        for attribute, name, _required in self.FIELDS:
            value = getattr(self, attribute)
            if value is not None:
                payload[name] = value
        return payload

    def validate(self: ContractT) -> ContractT:
        """Re-check an instance that was constructed directly."""

        _validate_text_fields(self.to_payload(), self.FIELDS, allow_empty=self.ALLOW_EMPTY)
        return self


@dataclass(frozen=True)
class ChapterGenerationRequest(TextContract):
    series_outline: str
    worldbuilding_information: str
    book_outline: str
    chapter_outline: str
    chapter_length: Optional[str] = None
    writing_style: Optional[str] = None

    FIELDS: ClassVar[Tuple[FieldSpec, ...]] = (
        ("series_outline", "seriesOutline", True),
        ("worldbuilding_information", "worldbuildingInformation", True),
        ("book_outline", "bookOutline", True),
        ("chapter_outline", "chapterOutline", True),
        ("chapter_length", "chapterLength", False),
        ("writing_style", "writingStyle", False),
    )


@dataclass(frozen=True)
class ChapterGenerationResult(TextContract):
    chapter_text: str

    FIELDS: ClassVar[Tuple[FieldSpec, ...]] = (("chapter_text", "chapterText", True),)
    ALLOW_EMPTY: ClassVar[bool] = True
    DESCRIPTIONS: ClassVar[Dict[str, str]] = {
        "chapterText": "The generated text for the chapter.",
    }


@dataclass(frozen=True)
class WorldSummaryRequest(TextContract):
    world_context: str

    FIELDS: ClassVar[Tuple[FieldSpec, ...]] = (("world_context", "worldContext", True),)


@dataclass(frozen=True)
class WorldSummaryResult(TextContract):
    summary: str

    FIELDS: ClassVar[Tuple[FieldSpec, ...]] = (("summary", "summary", True),)
    ALLOW_EMPTY: ClassVar[bool] = True
    DESCRIPTIONS: ClassVar[Dict[str, str]] = {
        "summary": "A summary of the key concepts and elements from the world context.",
    }


@dataclass(frozen=True)
class OutputShape:
    """The structural schema a model reply must satisfy."""

    name: str
    result_type: Type[TextContract]

    @property
    def text_fields(self) -> Tuple[str, ...]:
        return tuple(name for _attribute, name, _required in self.result_type.FIELDS)

    def json_schema(self) -> Dict[str, Any]:
        descriptions = getattr(self.result_type, "DESCRIPTIONS", {})
        properties: Dict[str, Any] = {}
        for name in self.text_fields:
            entry: Dict[str, Any] = {"type": "string"}
            if name in descriptions:
                entry["description"] = descriptions[name]
            properties[name] = entry
        return {
            "type": "object",
            "properties": properties,
            "required": list(self.text_fields),
            "additionalProperties": False,
        }

    def coerce(self, raw: Any) -> TextContract:
        return self.result_type.from_payload(raw)


CHAPTER_TEXT_SHAPE = OutputShape(name="chapter_text", result_type=ChapterGenerationResult)
WORLD_SUMMARY_SHAPE = OutputShape(name="world_summary", result_type=WorldSummaryResult)


__all__ = [
    "CHAPTER_TEXT_SHAPE",
    "ChapterGenerationRequest",
    "ChapterGenerationResult",
    "OutputShape",
    "ROOT_FIELD",
    "TextContract",
    "ValidationError",
    "WORLD_SUMMARY_SHAPE",
    "WorldSummaryRequest",
    "WorldSummaryResult",
]
