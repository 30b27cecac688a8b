from io import BytesIO

import pytest
from PIL import Image

from conftest import FakeOCRWorker, build_text_pdf
from formless.services.form_pipeline.text_extraction import (
    EXTRACTION_FAILED_MESSAGE, DocumentKind, TextExtractionError, TextExtractionService,
    UnsupportedDocumentError, page_marker
)


def png_bytes():
    buffer = BytesIO()
    Image.new('RGB', (20, 20), 'white').save(buffer, format='PNG')
    return buffer.getvalue()


def fake_factory(**kwargs):
    return lambda callback: FakeOCRWorker(callback, **kwargs)


class FakePDFHandler:
    def __init__(self, pages):
        self.pages = pages

    def pdf_to_images(self, pdf_bytes, first_page_only=True, dpi=None):
        return [Image.new('RGB', (10, 10), 'white') for _ in range(self.pages)]

    def image_to_bytes(self, image, format='PNG'):
        return b'png'


def test_pdf_pages_are_marked_in_order():
    pdf = build_text_pdf([["Full Name:", "Email:"], ["Signature"]])
    progress = []

    text = TextExtractionService().extract_text(pdf, DocumentKind.PDF, on_progress=progress.append)

    assert text.startswith(page_marker(1))
    assert text.index(page_marker(1)) < text.index("Full Name:") < text.index(page_marker(2)) < text.index("Signature")
    assert "Full Name:\nEmail:" in text
    assert progress == [50, 99]


def test_corrupt_pdf_raises_domain_error():
    with pytest.raises(TextExtractionError) as excinfo:
        TextExtractionService().extract_text(b"%PDF-1.4 not really a pdf", DocumentKind.PDF)

    assert str(excinfo.value) == EXTRACTION_FAILED_MESSAGE


def test_image_ocr_reports_recognition_progress_and_terminates():
    progress = []
    service = TextExtractionService(worker_factory=fake_factory(texts=["  Email:\n"]))

    text = service.extract_text(png_bytes(), DocumentKind.IMAGE, on_progress=progress.append)

    assert text == "Email:"
    # the loading event is filtered out
    assert progress == [50, 100]
    assert FakeOCRWorker.instances[0].terminated


@pytest.mark.parametrize("failure", [{'fail_on_load': True}, {'fail_on_recognize': True}])
def test_worker_is_terminated_on_failure(failure):
    service = TextExtractionService(worker_factory=fake_factory(**failure))

    with pytest.raises(TextExtractionError):
        service.extract_text(png_bytes(), DocumentKind.IMAGE)

    assert len(FakeOCRWorker.instances) == 1
    assert FakeOCRWorker.instances[0].terminated


def test_repeated_calls_use_fresh_workers():
    service = TextExtractionService(worker_factory=fake_factory())

    service.extract_text(png_bytes(), DocumentKind.IMAGE)
    service.extract_text(png_bytes(), DocumentKind.IMAGE)

    assert len(FakeOCRWorker.instances) == 2
    assert all(worker.terminated for worker in FakeOCRWorker.instances)


def test_scanned_pdf_is_ocrd_page_by_page():
    progress = []
    service = TextExtractionService(
        worker_factory=fake_factory(texts=["Name:", "Date:"]),
        pdf_handler=FakePDFHandler(pages=2)
    )

    text = service.extract_text(b"%PDF", DocumentKind.SCANNED_PDF, on_progress=progress.append)

    assert text == f"{page_marker(1)}\nName:\n\n{page_marker(2)}\nDate:"
    assert progress == [50, 99]
    assert FakeOCRWorker.instances[0].terminated


def test_scanned_pdf_without_pages_fails():
    service = TextExtractionService(worker_factory=fake_factory(), pdf_handler=FakePDFHandler(pages=0))

    with pytest.raises(TextExtractionError):
        service.extract_text(b"%PDF", DocumentKind.SCANNED_PDF)

    assert FakeOCRWorker.instances == []


@pytest.mark.parametrize("mime_type, kind", [
    ("application/pdf", DocumentKind.PDF),
    ("image/png", DocumentKind.IMAGE),
    ("image/jpeg; charset=binary", DocumentKind.IMAGE),
])
def test_document_kind_from_mime_type(mime_type, kind):
    assert DocumentKind.from_mime_type(mime_type) == kind


def test_unsupported_mime_type():
    with pytest.raises(UnsupportedDocumentError):
        DocumentKind.from_mime_type("text/plain")
