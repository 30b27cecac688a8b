"""
Server-side validation of form submissions.

A pydantic model is built per schema with ``create_model``; each field
id becomes an alias so submitted data validates exactly as keyed by the
renderer.
"""
import logging
import re
from typing import Annotated, Any, Callable, Dict, List, Mapping, Optional, Tuple, Type

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, ValidationError, create_model

from formless.services.form_pipeline.schema import FieldType, FormField

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
PHONE_RE = re.compile(r'^[+]?[1-9]\d{0,15}$')

SUBMITTER_EMAIL_KEY = 'submitter_email'

INVALID_EMAIL = 'Please enter a valid email address'
INVALID_PHONE = 'Please enter a valid phone number'


class SubmissionValidationError(Exception):
    """Raised when submitted data does not satisfy a form's fields."""

    def __init__(self, errors: Dict[str, str]):
        self.errors = errors
        super().__init__(f"Invalid submission: {', '.join(f'{k}: {v}' for k, v in errors.items())}")


def _string_rules(form_field: FormField) -> Callable[[str], str]:
    def check(value: str) -> str:
        field_type = form_field.type
        if value == '':
            if form_field.required:
                raise ValueError(f"{form_field.label} is required")
            if field_type == FieldType.DATE:
                raise ValueError("Date is required")
            if field_type == FieldType.SIGNATURE:
                raise ValueError("Signature is required")
            return value

        if field_type == FieldType.EMAIL and not EMAIL_RE.match(value):
            raise ValueError(INVALID_EMAIL)
        if field_type == FieldType.PHONE and not PHONE_RE.match(value):
            raise ValueError(INVALID_PHONE)

        if field_type == FieldType.TEXT and form_field.validation is not None:
            minimum, maximum = form_field.validation.min, form_field.validation.max
            if minimum and len(value) < minimum:
                raise ValueError(f"Minimum {minimum} characters")
            if maximum and len(value) > maximum:
                raise ValueError(f"Maximum {maximum} characters")
        return value

    return check


def build_submission_model(fields: List[FormField]) -> Type[BaseModel]:
    """Create a pydantic model validating data keyed by field id."""
    definitions: Dict[str, Tuple[Any, Any]] = {}
    for index, form_field in enumerate(fields):
        attribute = f"field_{index}"
        if form_field.type == FieldType.CHECKBOX:
            definitions[attribute] = (bool, Field(default=False, alias=form_field.id))
            continue

        checked_str = Annotated[str, AfterValidator(_string_rules(form_field))]
        if form_field.required:
            definitions[attribute] = (checked_str, Field(..., alias=form_field.id))
        else:
            definitions[attribute] = (Optional[checked_str], Field(default=None, alias=form_field.id))

    return create_model(
        'SubmissionData',
        __config__=ConfigDict(extra='ignore', coerce_numbers_to_str=True),
        **definitions
    )


def split_submitter_email(data: Mapping[str, Any]) -> Tuple[Dict[str, Any], Optional[str]]:
    """Separate the submitter's contact address from the answers."""
    answers = dict(data)
    email = answers.pop(SUBMITTER_EMAIL_KEY, None)
    if isinstance(email, str):
        email = email.strip() or None
    return answers, email


def validate_submission(fields: List[FormField], data: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Validate submitted data against a form's fields.

    Args:
        fields: Schema fields
        data: Submitted values keyed by field id (``submitter_email`` excluded)

    Returns:
        Cleaned values keyed by field id; unknown keys and omitted optional
        fields are dropped, checkboxes default to False

    Raises:
        SubmissionValidationError: With a ``{field_id: message}`` mapping
    """
    labels = {f.id: f.label for f in fields}
    model = build_submission_model(fields)
    present = {key: value for key, value in data.items() if value is not None}

    try:
        instance = model.model_validate(present)
    except ValidationError as e:
        errors: Dict[str, str] = {}
        for error in e.errors():
            field_id = str(error['loc'][0]) if error['loc'] else '__root__'
            if field_id in errors:
                continue
            if error['type'] == 'missing':
                errors[field_id] = f"{labels.get(field_id, field_id)} is required"
            elif error['type'] == 'value_error':
                errors[field_id] = str(error['ctx']['error'])
            else:
                errors[field_id] = error['msg']
        logger.info(f"Submission rejected: {len(errors)} invalid field(s)")
        raise SubmissionValidationError(errors) from e

    return instance.model_dump(by_alias=True, exclude_none=True)


def validate_submitter_email(email: Optional[str]) -> Optional[str]:
    if email is None:
        return None
    if not EMAIL_RE.match(email):
        raise SubmissionValidationError({SUBMITTER_EMAIL_KEY: INVALID_EMAIL})
    return email
