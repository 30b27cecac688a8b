"""
Text Extraction Engine
======================

Turns a raw document into plain text using one of two strategies:

- native PDF text-layer extraction (pypdf), page by page in order; runs
  sharing a baseline are joined with single spaces, one line per baseline
- image OCR through a scoped OCR worker (Tesseract or Textract)

Scanned PDFs without a text layer can be rasterised and sent through
OCR page by page.

Every backend failure is logged and re-raised as a single
``TextExtractionError`` so callers see one uniform error.
"""
import logging
from enum import Enum
from io import BytesIO
from typing import Callable, List, Optional

from pypdf import PdfReader

from formless.utils.pdf_handler import PDFHandler
from .ocr_workers import OCRProgress, OCRWorker, RECOGNIZING_TEXT, create_ocr_worker

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]
WorkerFactory = Callable[[Optional[Callable[[OCRProgress], None]]], OCRWorker]

EXTRACTION_FAILED_MESSAGE = "Failed to extract text from the document"

# Runs whose baselines differ by more than this (in points) start a new line
LINE_TOLERANCE = 2.0


class TextExtractionError(Exception):
    """Raised when a document's text cannot be extracted."""

    def __init__(self, message: str = EXTRACTION_FAILED_MESSAGE):
        super().__init__(message)


class UnsupportedDocumentError(ValueError):
    """Raised for MIME types the extraction path does not accept."""


class DocumentKind(str, Enum):
    """Kinds of document the engine can read."""
    PDF = "pdf"
    IMAGE = "image"
    SCANNED_PDF = "scanned_pdf"

    @classmethod
    def from_mime_type(cls, mime_type: Optional[str]) -> 'DocumentKind':
        mime = (mime_type or '').split(';')[0].strip().lower()
        if mime == 'application/pdf':
            return cls.PDF
        if mime.startswith('image/'):
            return cls.IMAGE
        raise UnsupportedDocumentError(f"Unsupported document type: {mime_type or 'unknown'}")


def page_marker(page_number: int) -> str:
    return f"--- Page {page_number} ---"


class TextExtractionService:
    """Extracts plain text from PDFs and images."""

    def __init__(self, worker_factory: Optional[WorkerFactory] = None, pdf_handler: Optional[PDFHandler] = None):
        """
        Initialize the extraction service.

        Args:
            worker_factory: Creates an unloaded OCR worker given a progress logger
                (defaults to the configured backend)
            pdf_handler: Helper used to rasterise scanned PDFs
        """
        self.worker_factory = worker_factory or (lambda callback: create_ocr_worker(callback))
        self.pdf_handler = pdf_handler or PDFHandler()

    def extract_text(
        self,
        document: bytes,
        kind: DocumentKind,
        on_progress: Optional[ProgressCallback] = None
    ) -> str:
        """
        Extract text from a document.

        Args:
            document: Raw document bytes
            kind: Document kind (pdf, image or scanned_pdf)
            on_progress: Optional callback receiving integer progress values

        Returns:
            Extracted text

        Raises:
            TextExtractionError: If the backend fails for any reason
        """
        kind = DocumentKind(kind)
        if kind == DocumentKind.PDF:
            return self.extract_text_from_pdf(document, on_progress)
        if kind == DocumentKind.SCANNED_PDF:
            return self.extract_text_from_scanned_pdf(document, on_progress)
        return self.extract_text_from_image(document, on_progress)

    def extract_text_from_pdf(self, pdf_bytes: bytes, on_progress: Optional[ProgressCallback] = None) -> str:
        """Read the PDF text layer page by page, prefixing each page with a marker."""
        try:
            reader = PdfReader(BytesIO(pdf_bytes))
            total_pages = len(reader.pages)
            full_text = ''

            for page_number, page in enumerate(reader.pages, start=1):
                lines: List[List[str]] = []
                baseline: List[Optional[float]] = [None]

                def collect_run(text, cm, tm, font_dict, font_size):
                    if not text or not text.strip():
                        return
                    y = tm[4] * cm[1] + tm[5] * cm[3] + cm[5]
                    if not lines or baseline[0] is None or abs(y - baseline[0]) > LINE_TOLERANCE:
                        lines.append([])
                    baseline[0] = y
                    lines[-1].append(text.strip())

                page.extract_text(visitor_text=collect_run)
                page_text = '\n'.join(' '.join(runs) for runs in lines).strip()
                full_text += f"\n\n{page_marker(page_number)}\n{page_text}"

                if on_progress:
                    on_progress(min(99, (page_number * 100) // total_pages))

            logger.info(f"Extracted text layer from {total_pages} page(s): {len(full_text)} chars")
            return full_text.strip()

        except Exception as e:
            logger.error(f"PDF text extraction failed: {e}", exc_info=True)
            raise TextExtractionError() from e

    def extract_text_from_image(self, image_bytes: bytes, on_progress: Optional[ProgressCallback] = None) -> str:
        """OCR a single image with a fresh worker that is always terminated."""
        worker = None
        try:
            worker = self.worker_factory(self._recognition_logger(on_progress))
            worker.load()
            text = worker.recognize(image_bytes)
            return (text or '').strip()
        except Exception as e:
            logger.error(f"Image OCR failed: {e}", exc_info=True)
            raise TextExtractionError() from e
        finally:
            if worker is not None:
                self._terminate(worker)

    def extract_text_from_scanned_pdf(self, pdf_bytes: bytes, on_progress: Optional[ProgressCallback] = None) -> str:
        """Rasterise every page and OCR it, keeping the page markers of the text-layer path."""
        worker = None
        try:
            images = self.pdf_handler.pdf_to_images(pdf_bytes, first_page_only=False)
            if not images:
                raise RuntimeError("PDF could not be rasterised (poppler may not be installed)")

            worker = self.worker_factory(None)
            worker.load()

            full_text = ''
            for page_number, image in enumerate(images, start=1):
                page_text = worker.recognize(self.pdf_handler.image_to_bytes(image, format='PNG'))
                full_text += f"\n\n{page_marker(page_number)}\n{(page_text or '').strip()}"
                if on_progress:
                    on_progress(min(99, (page_number * 100) // len(images)))

            logger.info(f"OCR'd scanned PDF with {len(images)} page(s): {len(full_text)} chars")
            return full_text.strip()

        except Exception as e:
            logger.error(f"Scanned PDF OCR failed: {e}", exc_info=True)
            raise TextExtractionError() from e
        finally:
            if worker is not None:
                self._terminate(worker)

    @staticmethod
    def _recognition_logger(on_progress: Optional[ProgressCallback]):
        if on_progress is None:
            return None

        def report(event: OCRProgress):
            if event.status == RECOGNIZING_TEXT:
                on_progress(round(event.progress * 100))

        return report

    @staticmethod
    def _terminate(worker: OCRWorker):
        try:
            worker.terminate()
        except Exception as e:
            logger.warning(f"Failed to terminate {worker.backend_name} OCR worker: {e}")
