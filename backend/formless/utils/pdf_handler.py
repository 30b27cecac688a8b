"""
Source document I/O: remote PDFs come in over HTTP, scanned pages go out
to the OCR workers as PNG images.
"""
import logging
from io import BytesIO
from typing import List, Optional

import requests
from pdf2image import convert_from_bytes
from PIL import Image

from formless.config import Config

logger = logging.getLogger(__name__)

PDF_MAGIC = b'%PDF'
DOWNLOAD_TIMEOUT = 30


class PDFHandler:

    @staticmethod
    def is_pdf(data: bytes) -> bool:
        return data[:4] == PDF_MAGIC

    @staticmethod
    def download_pdf(url: str, timeout: int = DOWNLOAD_TIMEOUT) -> Optional[bytes]:
        """
        Fetch a remote source document.

        The body must start with the PDF signature and stay within
        ``Config.MAX_UPLOAD_BYTES``; the Content-Type header is not trusted.
        Returns None when the document cannot be used.
        """
        try:
            response = requests.get(url, timeout=timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Download of {url} failed: {e}")
            return None

        body = response.content
        if len(body) > Config.MAX_UPLOAD_BYTES:
            logger.error(f"{url} is {len(body)} bytes, over the {Config.MAX_UPLOAD_BYTES} byte limit")
            return None
        if not PDFHandler.is_pdf(body):
            content_type = response.headers.get('Content-Type', '')
            logger.error(f"{url} is not a PDF (Content-Type: {content_type or 'unknown'})")
            return None

        logger.info(f"Fetched {len(body)} bytes from {url}")
        return body

    @staticmethod
    def pdf_to_images(pdf_bytes: bytes, first_page_only: bool = True, dpi: Optional[int] = None) -> List[Image.Image]:
        """Rasterise pages at ``dpi`` (Config.SCAN_DPI by default); [] if poppler fails."""
        options = {'dpi': dpi or Config.SCAN_DPI}
        if first_page_only:
            options.update(first_page=1, last_page=1)
        try:
            pages = convert_from_bytes(pdf_bytes, **options)
        except Exception as e:
            logger.error(f"Could not rasterise PDF: {e}")
            return []
        logger.debug(f"Rasterised {len(pages)} page(s) at {options['dpi']} dpi")
        return pages

    @staticmethod
    def image_to_bytes(image: Image.Image, format: str = 'PNG') -> bytes:
        buffer = BytesIO()
        image.save(buffer, format=format)
        return buffer.getvalue()
