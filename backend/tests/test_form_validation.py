import pytest

from formless.services.form_pipeline.schema import FieldValidation, FormField
from formless.services.form_validation import (
    INVALID_EMAIL, INVALID_PHONE, SubmissionValidationError, split_submitter_email,
    validate_submission, validate_submitter_email
)

FIELDS = [
    FormField(id="name", label="Full Name", required=True, validation=FieldValidation(min=2, max=20)),
    FormField(id="email", label="Email", type="email"),
    FormField(id="phone", label="Phone", type="phone"),
    FormField(id="dob", label="Date of Birth", type="date"),
    FormField(id="agree", label="I agree", type="checkbox", required=True),
    FormField(id="notes", label="Notes", type="textarea", validation=FieldValidation(max=3)),
    FormField(id="signature", label="Signature", type="signature", required=True),
]


def errors_for(data):
    with pytest.raises(SubmissionValidationError) as excinfo:
        validate_submission(FIELDS, data)
    return excinfo.value.errors


def test_valid_submission_is_cleaned():
    data = validate_submission(FIELDS, {
        "name": "Ada",
        "email": "",
        "phone": "+14155550100",
        "signature": "Ada L.",
        "unexpected": "dropped",
    })

    assert data == {"name": "Ada", "email": "", "phone": "+14155550100", "agree": False, "signature": "Ada L."}


def test_required_fields_must_be_present():
    errors = errors_for({})

    assert errors == {"name": "Full Name is required", "signature": "Signature is required"}


def test_required_text_must_not_be_empty():
    assert errors_for({"name": "", "signature": "x"}) == {"name": "Full Name is required"}


@pytest.mark.parametrize("field_id, value, message", [
    ("email", "not-an-email", INVALID_EMAIL),
    ("email", "a@b", INVALID_EMAIL),
    ("phone", "0123", INVALID_PHONE),
    ("phone", "+1 415 555", INVALID_PHONE),
    ("phone", "12345678901234567", INVALID_PHONE),
    ("dob", "", "Date is required"),
    ("name", "A", "Minimum 2 characters"),
    ("name", "A" * 21, "Maximum 20 characters"),
])
def test_field_rules(field_id, value, message):
    data = {"name": "Ada", "signature": "Ada L.", field_id: value}

    assert errors_for(data) == {field_id: message}


def test_length_bounds_apply_to_text_only():
    data = validate_submission(FIELDS, {"name": "Ada", "signature": "s", "notes": "a long note"})

    assert data["notes"] == "a long note"


def test_checkbox_values_are_booleans():
    data = validate_submission(FIELDS, {"name": "Ada", "signature": "s", "agree": "on"})

    assert data["agree"] is True
    assert "agree" in errors_for({"name": "Ada", "signature": "s", "agree": "maybe"})


def test_numbers_are_accepted_as_strings():
    data = validate_submission(FIELDS, {"name": "Ada", "signature": "s", "phone": 4155550100})

    assert data["phone"] == "4155550100"


def test_submitter_email_is_separated():
    answers, email = split_submitter_email({"name": "Ada", "submitter_email": " ada@example.com "})

    assert answers == {"name": "Ada"}
    assert email == "ada@example.com"
    assert validate_submitter_email(email) == email
    with pytest.raises(SubmissionValidationError):
        validate_submitter_email("nope")
