"""
Form API Routes
===============

REST API endpoints for turning PDFs into digital forms.

Endpoints:
- POST /api/extract - Infer fields from a PDF or image
- POST /api/upload - Upload a PDF and create a form
- GET /api/forms - List a user's forms
- GET /api/forms/{form_id} - Get a form and its schema
- GET /api/forms/{form_id}/submissions - List a form's submissions
- PUT /api/forms/{form_id}/schema - Replace a form's fields
- POST /api/forms/{form_id}/submit - Submit answers
- GET /api/forms/{form_id}/submissions/{submission_id}/pdf - Completed PDF
- POST /api/forms/generate - Build an interactive PDF from fields
- GET /api/files/{path} - Serve a stored file
"""

import logging
import mimetypes
import re
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, File, Header, HTTPException, Query, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import Response
from pydantic import ValidationError

from formless.config import Config
from formless.models import (
    ExtractResponse, FormRecord, GenerateFormRequest, SchemaUpdateRequest,
    SubmissionRecord, SubmitResponse, UploadResponse
)
from formless.services.form_pipeline import (
    DocumentKind, FormExtractionPipeline, FormSchema, InferenceStrategy, PDFFillEngine,
    TextExtractionError, UnsupportedDocumentError, create_form_pdf
)
from formless.services.form_store import (
    FormNotFoundError, InMemoryFormStore, StorageError, SubmissionNotFoundError
)
from formless.services.form_validation import (
    SubmissionValidationError, split_submitter_email, validate_submission, validate_submitter_email
)
from formless.utils.pdf_handler import PDFHandler
from formless.utils.rate_limiter import client_identifier, rate_limit_key

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Forms"])

ANONYMOUS_USER = "anonymous"


# ============================================================================
# Dependencies
# ============================================================================

def get_store(request: Request) -> InMemoryFormStore:
    return request.app.state.store


def get_pipeline(request: Request) -> FormExtractionPipeline:
    return request.app.state.pipeline


def get_fill_engine(request: Request) -> PDFFillEngine:
    return request.app.state.fill_engine


def rate_limited(action: str):
    """Dependency enforcing the app's rate limiter for one action."""

    def check(request: Request):
        limiter = getattr(request.app.state, 'rate_limiter', None)
        if limiter is None:
            return
        peer = request.client.host if request.client else None
        key = rate_limit_key(client_identifier(request.headers, peer), action)
        if not limiter.is_allowed(key):
            raise HTTPException(
                status_code=429,
                detail="Too many requests. Please try again later.",
                headers={"Retry-After": str(int(limiter.window_seconds))}
            )

    return check


def _form_or_404(store: InMemoryFormStore, form_id: str) -> FormRecord:
    try:
        return store.get_form(form_id)
    except FormNotFoundError:
        raise HTTPException(status_code=404, detail="Form not found")


def _safe_name(name: str) -> str:
    return re.sub(r'[^A-Za-z0-9._-]+', '_', name).strip('_') or 'form'


# ============================================================================
# Extraction
# ============================================================================

@router.post("/extract", response_model=ExtractResponse, dependencies=[Depends(rate_limited("extract"))])
async def extract_fields(
    file: UploadFile = File(..., description="PDF or image to analyze"),
    strategy: Optional[InferenceStrategy] = Query(None, description="heuristic or ai (defaults to config)"),
    pipeline: FormExtractionPipeline = Depends(get_pipeline)
) -> ExtractResponse:
    """
    Infer form fields from a document without creating a form.

    PDFs are read through their text layer, images through OCR.
    """
    try:
        kind = DocumentKind.from_mime_type(file.content_type)
    except UnsupportedDocumentError as e:
        raise HTTPException(status_code=400, detail=str(e))

    document = await file.read()
    if not document:
        raise HTTPException(status_code=400, detail="Empty file uploaded")

    try:
        output = await run_in_threadpool(pipeline.process, document, kind, strategy, None, file.content_type)
    except TextExtractionError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return ExtractResponse(
        fields=output.fields,
        source=output.inference.source.value,
        strategy=output.inference.strategy.value,
        warning=output.warning,
        text_length=len(output.text)
    )


@router.post("/upload", response_model=UploadResponse, dependencies=[Depends(rate_limited("upload"))])
async def upload_form(
    file: UploadFile = File(..., description="PDF form to digitize"),
    strategy: Optional[InferenceStrategy] = Query(None, description="heuristic or ai (defaults to config)"),
    x_user_id: Optional[str] = Header(None),
    store: InMemoryFormStore = Depends(get_store),
    pipeline: FormExtractionPipeline = Depends(get_pipeline)
) -> UploadResponse:
    """
    Upload a PDF, infer its fields and create a form.

    A form is created even when no fields can be inferred; the response
    then carries a warning.
    """
    if (file.content_type or '').split(';')[0].strip().lower() != 'application/pdf':
        raise HTTPException(status_code=400, detail="Only PDF files are supported")

    pdf_bytes = await file.read()
    if not pdf_bytes:
        raise HTTPException(status_code=400, detail="Empty file uploaded")
    if len(pdf_bytes) > Config.MAX_UPLOAD_BYTES:
        raise HTTPException(
            status_code=413,
            detail=f"File too large: {len(pdf_bytes)} bytes (maximum {Config.MAX_UPLOAD_BYTES})"
        )
    if not PDFHandler.is_pdf(pdf_bytes):
        raise HTTPException(status_code=400, detail="Invalid PDF format")

    user_id = x_user_id or ANONYMOUS_USER
    original_filename = file.filename or 'form.pdf'
    name = Path(original_filename).stem or 'form'
    form_id = str(uuid.uuid4())

    logger.info(f"Uploading {original_filename} ({len(pdf_bytes)} bytes) for user {user_id}")
    pdf_url = store.put_file(f"forms/{user_id}/{form_id}.pdf", pdf_bytes)

    warning = None
    try:
        output = await run_in_threadpool(pipeline.process, pdf_bytes, DocumentKind.PDF, strategy)
        fields = output.fields
        warning = output.warning
    except TextExtractionError as e:
        logger.warning(f"Creating form {form_id} without fields: {e}")
        fields = []
        warning = f"{e}; the form was created without fields"

    try:
        form_schema = FormSchema.new(title=name, fields=fields)
    except ValidationError as e:
        logger.error(f"Inferred fields for form {form_id} are inconsistent: {e}")
        form_schema = FormSchema.new(title=name, fields=[])
        warning = "Inferred fields were inconsistent; the form was created without fields"

    record = store.add_form(FormRecord(
        id=form_id,
        user_id=user_id,
        name=name,
        original_filename=original_filename,
        pdf_url=pdf_url,
        form_schema=form_schema
    ))

    message = "Form uploaded and processed successfully"
    if warning:
        message = "Form uploaded; fields need review"
    return UploadResponse(form_id=record.id, message=message, warning=warning)


# ============================================================================
# Forms
# ============================================================================

@router.get("/forms", response_model=List[FormRecord])
async def list_forms(
    x_user_id: Optional[str] = Header(None),
    store: InMemoryFormStore = Depends(get_store)
):
    """List the calling user's forms, newest first."""
    return store.list_forms(user_id=x_user_id or ANONYMOUS_USER)


@router.post("/forms/generate")
async def generate_form(request: GenerateFormRequest):
    """Build a new interactive PDF form from a field list."""
    title = request.title or "form"
    pdf_bytes = await run_in_threadpool(create_form_pdf, request.fields, title)
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{_safe_name(title)}.pdf"'}
    )


@router.get("/forms/{form_id}", response_model=FormRecord)
async def get_form(form_id: str, store: InMemoryFormStore = Depends(get_store)):
    """Get a form with its schema."""
    return _form_or_404(store, form_id)


@router.put("/forms/{form_id}/schema", response_model=FormRecord)
async def update_form_schema(
    form_id: str,
    update: SchemaUpdateRequest,
    x_user_id: Optional[str] = Header(None),
    store: InMemoryFormStore = Depends(get_store)
):
    """Replace a form's fields. Only the form's owner may edit it."""
    form = _form_or_404(store, form_id)
    if (x_user_id or ANONYMOUS_USER) != form.user_id:
        raise HTTPException(status_code=403, detail="Only the form owner can edit its fields")

    try:
        return store.update_schema(form_id, update.fields, title=update.title, description=update.description)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False, include_input=False))


# ============================================================================
# Submissions
# ============================================================================

@router.post("/forms/{form_id}/submit", response_model=SubmitResponse, dependencies=[Depends(rate_limited("submit"))])
async def submit_form(
    form_id: str,
    payload: Dict[str, Any] = Body(...),
    store: InMemoryFormStore = Depends(get_store)
) -> SubmitResponse:
    """Validate answers against the form's fields and store a pending submission."""
    form = _form_or_404(store, form_id)
    answers, submitter_email = split_submitter_email(payload)

    try:
        validate_submitter_email(submitter_email)
        data = validate_submission(form.form_schema.fields, answers)
    except SubmissionValidationError as e:
        raise HTTPException(status_code=422, detail={"message": "Invalid submission", "errors": e.errors})

    submission = store.add_submission(SubmissionRecord(
        form_id=form_id,
        data=data,
        submitter_email=submitter_email
    ))
    return SubmitResponse(message="Form submitted successfully", submission_id=submission.id)


@router.get("/forms/{form_id}/submissions", response_model=List[SubmissionRecord])
async def list_submissions(
    form_id: str,
    x_user_id: Optional[str] = Header(None),
    store: InMemoryFormStore = Depends(get_store)
):
    """List a form's submissions, newest first. Only the form's owner may read them."""
    form = _form_or_404(store, form_id)
    if (x_user_id or ANONYMOUS_USER) != form.user_id:
        raise HTTPException(status_code=403, detail="Only the form owner can view submissions")
    submissions = store.list_submissions(form_id)
    return sorted(submissions, key=lambda submission: submission.submitted_at, reverse=True)


@router.get("/forms/{form_id}/submissions/{submission_id}/pdf")
async def download_submission_pdf(
    form_id: str,
    submission_id: str,
    store: InMemoryFormStore = Depends(get_store),
    fill_engine: PDFFillEngine = Depends(get_fill_engine)
):
    """
    Fill the form's PDF with a submission and return it.

    The completed PDF is stored and the submission marked completed
    before the response is sent.
    """
    form = _form_or_404(store, form_id)
    try:
        submission = store.get_submission(form_id, submission_id)
    except SubmissionNotFoundError:
        raise HTTPException(status_code=404, detail="Submission not found")

    try:
        original = store.fetch_pdf(form.pdf_url)
    except StorageError as e:
        # The fill engine synthesizes a summary document from empty input
        logger.warning(f"Source PDF for form {form_id} unavailable: {e}")
        original = b''

    pdf_bytes = await run_in_threadpool(
        fill_engine.fill, original, form.form_schema.fields, submission.data, form.form_schema.title
    )

    filename = f"{form.name}-submission-{submission.id}.pdf"
    try:
        completed_url = store.put_file(f"completed/{form.user_id}/{filename}", pdf_bytes)
        store.complete_submission(submission.id, completed_url)
    except Exception as e:
        logger.error(f"Failed to store completed PDF for submission {submission.id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to store completed PDF")

    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{_safe_name(filename)}"'}
    )


# ============================================================================
# Files
# ============================================================================

@router.get("/files/{path:path}")
async def serve_file(path: str, store: InMemoryFormStore = Depends(get_store)):
    """Serve a stored file."""
    data = store.get_file(path)
    if data is None:
        raise HTTPException(status_code=404, detail="File not found")
    media_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
    return Response(content=data, media_type=media_type)
