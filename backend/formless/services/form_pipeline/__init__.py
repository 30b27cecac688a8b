"""
Form Pipeline
=============

Turns an uploaded document into a digital form, and a submission back
into a completed PDF.

Pipeline Stages:
1. TEXT EXTRACTION: PDF text layer, or OCR for images and scanned PDFs
2. FIELD INFERENCE: heuristic header patterns, or AI structured extraction
3. SCHEMA: normalized FormField / FormSchema models
4. PDF FILL: native widgets where present, drawn text otherwise, then flatten

Every inference run is tagged with its source (heuristic, ai_extracted
or fallback) so callers can tell when a default field set was used.
"""

from .schema import FieldType, FieldValidation, FieldPosition, FormField, FormSchema
from .text_extraction import DocumentKind, TextExtractionError, TextExtractionService, UnsupportedDocumentError
from .ocr_workers import OCRWorker, TesseractWorker, TextractWorker, create_ocr_worker
from .field_patterns import FieldPatternMatcher, default_fields
from .inference import FieldInferenceService, InferenceResult, InferenceSource, InferenceStrategy
from .ai_extractor import AIFieldExtractor, sample_fields
from .pdf_fill import PDFFillEngine, PDFFillError
from .pdf_generator import build_summary_pdf, create_form_pdf
from .pipeline import ExtractionOutput, FormExtractionPipeline

__all__ = [
    'FormExtractionPipeline',
    'ExtractionOutput',
    'FieldType',
    'FieldValidation',
    'FieldPosition',
    'FormField',
    'FormSchema',
    'DocumentKind',
    'TextExtractionService',
    'TextExtractionError',
    'UnsupportedDocumentError',
    'OCRWorker',
    'TesseractWorker',
    'TextractWorker',
    'create_ocr_worker',
    'FieldPatternMatcher',
    'default_fields',
    'FieldInferenceService',
    'InferenceResult',
    'InferenceSource',
    'InferenceStrategy',
    'AIFieldExtractor',
    'sample_fields',
    # PDF output
    'PDFFillEngine',
    'PDFFillError',
    'build_summary_pdf',
    'create_form_pdf',
]
