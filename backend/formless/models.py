"""
Pydantic models for stored records and API request/response schemas.
"""
import uuid
from enum import Enum
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime

from formless.services.form_pipeline.schema import FormField, FormSchema, utc_now


class SubmissionStatus(str, Enum):
    """Lifecycle of a submission."""
    PENDING = "pending"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class FormRecord(BaseModel):
    """Stored form: the uploaded PDF plus its inferred schema."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    name: str
    original_filename: str
    pdf_url: str
    form_schema: FormSchema = Field(..., alias="schema")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class SubmissionRecord(BaseModel):
    """Stored submission of one form."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    form_id: str
    data: Dict[str, Any] = Field(default_factory=dict)
    submitter_email: Optional[str] = None
    status: SubmissionStatus = SubmissionStatus.PENDING
    submitted_at: datetime = Field(default_factory=utc_now)
    completed_pdf_url: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str
    timestamp: datetime


class ExtractResponse(BaseModel):
    """Fields inferred from an uploaded document."""
    fields: List[FormField]
    source: str = Field(..., description="heuristic, ai_extracted or fallback")
    strategy: str
    warning: Optional[str] = None
    text_length: int = 0


class UploadResponse(BaseModel):
    """Response for a PDF upload that created a form."""
    model_config = ConfigDict(populate_by_name=True)

    form_id: str = Field(..., alias="formId")
    message: str
    warning: Optional[str] = None


class SchemaUpdateRequest(BaseModel):
    """Owner edits to a form's fields."""
    title: Optional[str] = None
    description: Optional[str] = None
    fields: List[FormField]


class SubmitResponse(BaseModel):
    """Response for an accepted submission."""
    model_config = ConfigDict(populate_by_name=True)

    message: str
    submission_id: str = Field(..., alias="submissionId")


class GenerateFormRequest(BaseModel):
    """Request for a new interactive PDF built from a field list."""
    title: Optional[str] = None
    fields: List[FormField] = Field(..., min_length=1)


class RateLimitStatus(BaseModel):
    """Rate limit status response model."""
    limit: int
    window_seconds: float
    active_keys: int
    tracked_keys: int
    rejected: int
    sweeper_running: bool
