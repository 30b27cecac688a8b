"""
In-memory persistence for forms, submissions and stored files.
"""
import logging
from threading import Lock
from typing import Dict, List, Optional

from formless.models import FormRecord, SubmissionRecord, SubmissionStatus
from formless.services.form_pipeline.schema import FormField, FormSchema
from formless.utils.pdf_handler import PDFHandler

logger = logging.getLogger(__name__)

FILES_PREFIX = "/api/files/"


class FormNotFoundError(Exception):
    """Raised when a form id is unknown."""


class SubmissionNotFoundError(Exception):
    """Raised when a submission id is unknown for a form."""


class StorageError(Exception):
    """Raised when a stored file cannot be read."""


class InMemoryFormStore:
    """
    Process-local store guarded by a single lock.

    Files are addressed by a relative path and exposed under
    ``/api/files/{path}``.
    """

    def __init__(self, pdf_handler: Optional[PDFHandler] = None):
        self.forms: Dict[str, FormRecord] = {}
        self.submissions: Dict[str, SubmissionRecord] = {}
        self.blobs: Dict[str, bytes] = {}
        self.pdf_handler = pdf_handler or PDFHandler()
        self.lock = Lock()

    # Files

    def put_file(self, path: str, data: bytes) -> str:
        """Store bytes at ``path`` and return their public URL."""
        path = path.lstrip('/')
        with self.lock:
            self.blobs[path] = data
        logger.info(f"Stored {len(data)} bytes at {path}")
        return f"{FILES_PREFIX}{path}"

    def get_file(self, path: str) -> Optional[bytes]:
        with self.lock:
            return self.blobs.get(path.lstrip('/'))

    def fetch_pdf(self, url: str) -> bytes:
        """
        Load a PDF by URL: stored files directly, http(s) URLs over the network.

        Raises:
            StorageError: If the file is missing or cannot be downloaded
        """
        if url.startswith(FILES_PREFIX):
            data = self.get_file(url[len(FILES_PREFIX):])
        elif url.startswith(('http://', 'https://')):
            data = self.pdf_handler.download_pdf(url)
        else:
            data = None

        if data is None:
            raise StorageError(f"Could not load PDF from {url}")
        return data

    # Forms

    def add_form(self, form: FormRecord) -> FormRecord:
        with self.lock:
            self.forms[form.id] = form
        logger.info(f"Created form {form.id} ({len(form.form_schema.fields)} field(s)) for user {form.user_id}")
        return form

    def get_form(self, form_id: str) -> FormRecord:
        with self.lock:
            form = self.forms.get(form_id)
        if form is None:
            raise FormNotFoundError(f"Form not found: {form_id}")
        return form

    def list_forms(self, user_id: Optional[str] = None) -> List[FormRecord]:
        with self.lock:
            forms = list(self.forms.values())
        if user_id is not None:
            forms = [form for form in forms if form.user_id == user_id]
        return sorted(forms, key=lambda form: form.created_at, reverse=True)

    def update_schema(
        self,
        form_id: str,
        fields: List[FormField],
        title: Optional[str] = None,
        description: Optional[str] = None
    ) -> FormRecord:
        """Replace a form's fields and bump both update timestamps."""
        with self.lock:
            form = self.forms.get(form_id)
            if form is None:
                raise FormNotFoundError(f"Form not found: {form_id}")

            current = form.form_schema
            schema = FormSchema(
                id=current.id,
                title=title or current.title,
                description=description if description is not None else current.description,
                fields=fields,
                created_at=current.created_at
            )
            schema.touch()
            updated = form.model_copy(update={'form_schema': schema, 'updated_at': schema.updated_at})
            self.forms[form_id] = updated
        return updated

    # Submissions

    def add_submission(self, submission: SubmissionRecord) -> SubmissionRecord:
        with self.lock:
            if submission.form_id not in self.forms:
                raise FormNotFoundError(f"Form not found: {submission.form_id}")
            self.submissions[submission.id] = submission
        logger.info(f"Stored submission {submission.id} for form {submission.form_id}")
        return submission

    def get_submission(self, form_id: str, submission_id: str) -> SubmissionRecord:
        with self.lock:
            submission = self.submissions.get(submission_id)
        if submission is None or submission.form_id != form_id:
            raise SubmissionNotFoundError(f"Submission not found: {submission_id}")
        return submission

    def list_submissions(self, form_id: str) -> List[SubmissionRecord]:
        with self.lock:
            return [s for s in self.submissions.values() if s.form_id == form_id]

    def complete_submission(self, submission_id: str, completed_pdf_url: str) -> SubmissionRecord:
        """Mark a submission completed once its PDF is stored."""
        with self.lock:
            submission = self.submissions.get(submission_id)
            if submission is None:
                raise SubmissionNotFoundError(f"Submission not found: {submission_id}")
            updated = submission.model_copy(update={
                'status': SubmissionStatus.COMPLETED,
                'completed_pdf_url': completed_pdf_url,
            })
            self.submissions[submission_id] = updated
        return updated
