"""Shared fixtures: PDFs built with reportlab, fake OCR workers and fake HTTP sessions."""
from io import BytesIO
from typing import Dict, List, Optional

import pytest
import requests
from fastapi.testclient import TestClient
from pypdf import PdfReader
from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas

from formless.services.form_pipeline.ocr_workers import OCRWorker, RECOGNIZING_TEXT


def build_text_pdf(pages: List[List[str]]) -> bytes:
    buffer = BytesIO()
    report = canvas.Canvas(buffer, pagesize=letter)
    for lines in pages:
        report.setFont("Helvetica", 12)
        y = 720
        for line in lines:
            report.drawString(72, y, line)
            y -= 24
        report.showPage()
    report.save()
    return buffer.getvalue()


def build_widget_pdf() -> bytes:
    """One page with a text field, a checkbox, a radio group and a dropdown."""
    buffer = BytesIO()
    report = canvas.Canvas(buffer, pagesize=letter)
    report.setFont("Helvetica", 12)
    report.drawString(72, 740, "Membership Application")
    form = report.acroForm
    form.textfield(name="full_name", x=72, y=680, width=300, height=25, value="")
    form.checkbox(name="agree", x=72, y=640, size=15, buttonStyle="check", checked=False)
    form.radio(name="color", value="Red", selected=False, x=72, y=600, size=15)
    form.radio(name="color", value="Blue", selected=False, x=172, y=600, size=15)
    form.choice(name="plan", x=72, y=540, width=200, height=25, options=["Basic", "Pro"], value="Basic")
    report.save()
    return buffer.getvalue()


def pdf_text(pdf_bytes: bytes) -> str:
    reader = PdfReader(BytesIO(pdf_bytes))
    return "\n".join(page.extract_text() or "" for page in reader.pages)


class FakeOCRWorker(OCRWorker):
    """Worker returning canned text and recording its lifecycle."""

    backend_name = 'fake'
    instances: List['FakeOCRWorker'] = []

    def __init__(self, logger_callback=None, texts: Optional[List[str]] = None,
                 fail_on_load: bool = False, fail_on_recognize: bool = False):
        super().__init__(logger_callback)
        self.texts = list(texts or ["Full Name:\nEmail:"])
        self.fail_on_load = fail_on_load
        self.fail_on_recognize = fail_on_recognize
        self.recognized: List[bytes] = []
        FakeOCRWorker.instances.append(self)

    def load(self):
        self._emit('loading tesseract core', 0.0)
        if self.fail_on_load:
            raise RuntimeError("backend unavailable")
        self.loaded = True

    def recognize(self, image_bytes: bytes) -> str:
        self._emit(RECOGNIZING_TEXT, 0.5)
        if self.fail_on_recognize:
            raise RuntimeError("recognition crashed")
        self.recognized.append(image_bytes)
        self._emit(RECOGNIZING_TEXT, 1.0)
        return self.texts[min(len(self.recognized), len(self.texts)) - 1]

    def terminate(self):
        self.terminated = True


class FakeResponse:
    def __init__(self, payload=None, status_code: int = 200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")

    def json(self):
        return self.payload


class FakeSession:
    """Records posted requests and replays one response."""

    def __init__(self, response: FakeResponse):
        self.response = response
        self.calls: List[Dict] = []

    def post(self, url, **kwargs):
        self.calls.append({'url': url, **kwargs})
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def gemini_reply(text: str) -> FakeResponse:
    return FakeResponse({'candidates': [{'content': {'parts': [{'text': text}]}}]})


@pytest.fixture(autouse=True)
def reset_fake_workers():
    FakeOCRWorker.instances = []
    yield


@pytest.fixture
def text_pdf():
    return build_text_pdf([["Full Name:", "Email Address:", "Phone:"]])


@pytest.fixture
def widget_pdf():
    return build_widget_pdf()


@pytest.fixture
def client():
    from formless.main import app
    from formless.services.form_pipeline import (
        AIFieldExtractor, FieldInferenceService, FormExtractionPipeline, PDFFillEngine, TextExtractionService
    )
    from formless.services.form_store import InMemoryFormStore
    from formless.utils.rate_limiter import RateLimiter

    ai_session = FakeSession(gemini_reply('[{"id": "full_name", "label": "Full Name", "type": "text"}]'))
    app.state.store = InMemoryFormStore()
    app.state.fill_engine = PDFFillEngine()
    app.state.rate_limiter = RateLimiter(limit=1000, window_seconds=60)
    app.state.pipeline = FormExtractionPipeline(
        text_service=TextExtractionService(worker_factory=lambda callback: FakeOCRWorker(callback)),
        inference_service=FieldInferenceService(
            ai_extractor=AIFieldExtractor(provider='gemini', api_key='test-key', session=ai_session)
        )
    )
    return TestClient(app)
