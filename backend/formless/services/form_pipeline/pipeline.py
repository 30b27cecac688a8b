"""
Form Extraction Pipeline
========================

Coordinates the two extraction stages for one uploaded document.

Stages:
-------
1. TEXT: native text layer (PDF) or OCR (image / scanned PDF)
2. FIELDS: heuristic header matching or AI structured extraction

Progress is reported as ``(percent, status)``:
0 "Extracting text...", 10 "Processing PDF..." / "Processing image...",
10-90 while text is extracted, 90 "Analyzing form fields...", 100 "Done!".

With the AI strategy a text failure is not fatal, since the model can
read the raw document. With the heuristic strategy there is nothing to
match against, so the ``TextExtractionError`` propagates.
"""

import hashlib
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from formless.config import Config
from .inference import FieldInferenceService, InferenceResult, InferenceStrategy
from .text_extraction import DocumentKind, TextExtractionError, TextExtractionService

logger = logging.getLogger(__name__)

StageCallback = Callable[[float, str], None]

_MIME_TYPES = {
    DocumentKind.PDF: 'application/pdf',
    DocumentKind.SCANNED_PDF: 'application/pdf',
    DocumentKind.IMAGE: 'image/png',
}


@dataclass
class ExtractionOutput:
    """Result of running the pipeline on one document."""
    inference: InferenceResult
    text: str = ""
    text_error: Optional[str] = None
    input_hash: str = ""
    processing_time_ms: int = 0

    @property
    def fields(self):
        return self.inference.fields

    @property
    def warning(self) -> Optional[str]:
        return self.inference.warning

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = self.inference.to_dict()
        result.update({
            'text_length': len(self.text),
            'text_error': self.text_error,
            'input_hash': self.input_hash,
            'processing_time_ms': self.processing_time_ms,
        })
        return result


class FormExtractionPipeline:
    """
    Turns a document into a list of form fields.

    Example usage:

        pipeline = FormExtractionPipeline()
        with open('intake.pdf', 'rb') as f:
            output = pipeline.process(f.read(), DocumentKind.PDF, InferenceStrategy.HEURISTIC)
        print([field.id for field in output.fields])
    """

    def __init__(
        self,
        text_service: Optional[TextExtractionService] = None,
        inference_service: Optional[FieldInferenceService] = None
    ):
        self.text_service = text_service or TextExtractionService()
        self.inference_service = inference_service or FieldInferenceService()

    def process(
        self,
        document: bytes,
        kind: DocumentKind,
        strategy: Optional[InferenceStrategy] = None,
        on_progress: Optional[StageCallback] = None,
        mime_type: Optional[str] = None
    ) -> ExtractionOutput:
        """
        Extract text and infer fields for a document.

        Args:
            document: Raw document bytes
            kind: Document kind
            strategy: Inference strategy (defaults to Config.EXTRACTION_STRATEGY)
            on_progress: Optional ``(percent, status)`` callback
            mime_type: MIME type passed to the AI backend

        Returns:
            ExtractionOutput with the tagged inference result

        Raises:
            TextExtractionError: Text extraction failed and the strategy is heuristic
        """
        start = time.time()
        kind = DocumentKind(kind)
        strategy = InferenceStrategy(strategy or Config.EXTRACTION_STRATEGY)
        report = on_progress or (lambda progress, status: None)
        input_hash = hashlib.sha256(document).hexdigest()[:16]

        logger.info(f"Processing {kind.value} document {input_hash} with {strategy.value} strategy")

        report(0, "Extracting text...")
        report(10, "Processing image..." if kind == DocumentKind.IMAGE else "Processing PDF...")

        text = ""
        text_error = None
        try:
            text = self.text_service.extract_text(
                document, kind, on_progress=lambda p: report(10 + p * 0.8, self._stage_status(kind, p))
            )
        except TextExtractionError as e:
            if strategy == InferenceStrategy.HEURISTIC:
                raise
            text_error = str(e)
            logger.warning(f"Text extraction failed for {input_hash}; sending the document to the AI backend alone")

        report(90, "Analyzing form fields...")
        inference = self.inference_service.infer(
            strategy,
            text=text or None,
            document=document,
            mime_type=mime_type or _MIME_TYPES[kind]
        )
        report(100, "Done!")

        output = ExtractionOutput(
            inference=inference,
            text=text,
            text_error=text_error,
            input_hash=input_hash,
            processing_time_ms=int((time.time() - start) * 1000)
        )
        logger.info(
            f"Extracted {len(output.fields)} field(s) from {input_hash} "
            f"({inference.source.value}) in {output.processing_time_ms}ms"
        )
        return output

    @staticmethod
    def _stage_status(kind: DocumentKind, progress: float) -> str:
        if kind == DocumentKind.IMAGE:
            return f"Extracting text {progress}%"
        return f"Processing page {progress}%"
