"""
Form Schema Model
=================

Normalized field/schema representation shared by both inference
strategies, the PDF fill engine and the dynamic form validator.

The field ``id`` is the join key between a schema, the submitted data
and native PDF widget names, so it must be unique within a schema.
Field order is rendering order, and also the vertical stacking order
used when values are drawn onto a page without native widgets.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FieldType(str, Enum):
    """Closed set of input kinds a form field may have."""
    TEXT = "text"
    EMAIL = "email"
    PHONE = "phone"
    DATE = "date"
    CHECKBOX = "checkbox"
    RADIO = "radio"
    SELECT = "select"
    TEXTAREA = "textarea"
    SIGNATURE = "signature"

    @classmethod
    def _missing_(cls, value: object):
        if isinstance(value, str):
            lowered = value.strip().lower()
            alias = _FIELD_TYPE_ALIASES.get(lowered, lowered)
            for member in cls:
                if member.value == alias:
                    return member
        return None

    @property
    def requires_options(self) -> bool:
        return self in (FieldType.SELECT, FieldType.RADIO)


# Spellings seen from language models and older schemas
_FIELD_TYPE_ALIASES: Dict[str, str] = {
    "tel": "phone",
    "telephone": "phone",
    "string": "text",
    "dropdown": "select",
}


class FieldValidation(BaseModel):
    """Optional per-field constraints."""
    min: Optional[int] = None
    max: Optional[int] = None
    pattern: Optional[str] = None


class FieldPosition(BaseModel):
    """Page coordinates (PDF user space, origin bottom-left)."""
    x: float
    y: float
    width: float = 0.0
    height: float = 0.0


class FormField(BaseModel):
    """One inferred or authored form field."""
    id: str = Field(..., min_length=1, description="Unique within a schema; matches submitted data keys and widget names")
    label: str = Field(..., description="Human-readable caption")
    type: FieldType = FieldType.TEXT
    required: bool = False
    placeholder: Optional[str] = None
    options: Optional[List[str]] = None
    validation: Optional[FieldValidation] = None
    position: Optional[FieldPosition] = None

    @field_validator('options')
    @classmethod
    def _strip_options(cls, options: Optional[List[str]]) -> Optional[List[str]]:
        if options is None:
            return None
        return [str(option) for option in options]

    @model_validator(mode='after')
    def _check_options(self) -> 'FormField':
        if self.type.requires_options and not self.options:
            raise ValueError(f"Field '{self.id}' of type {self.type.value} needs at least one option")
        return self


class FormSchema(BaseModel):
    """Ordered field list plus metadata describing one form."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    title: str
    description: Optional[str] = None
    fields: List[FormField] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator('fields')
    @classmethod
    def _unique_ids(cls, fields: List[FormField]) -> List[FormField]:
        seen = set()
        for form_field in fields:
            if form_field.id in seen:
                raise ValueError(f"Duplicate field id '{form_field.id}'")
            seen.add(form_field.id)
        return fields

    @classmethod
    def new(cls, title: str, fields: List[FormField], description: Optional[str] = None) -> 'FormSchema':
        now = utc_now()
        return cls(title=title, description=description, fields=fields, created_at=now, updated_at=now)

    def touch(self) -> None:
        self.updated_at = utc_now()

    def field_ids(self) -> List[str]:
        return [f.id for f in self.fields]

    def get_field(self, field_id: str) -> Optional[FormField]:
        for form_field in self.fields:
            if form_field.id == field_id:
                return form_field
        return None


def is_blank(value: Any) -> bool:
    """An omitted answer: absent, None or the empty string."""
    return value is None or (isinstance(value, str) and value == '')


def is_checked(value: Any) -> bool:
    """Interpret a submitted checkbox value."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"true", "yes", "on", "1"}
    return False


def display_value(value: Any) -> str:
    """String form of a submitted value for drawing and summaries."""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return str(value)
