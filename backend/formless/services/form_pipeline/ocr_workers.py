"""
OCR worker backends for image text recognition.

Each worker is a scoped resource: ``load()`` acquires the backend,
``recognize()`` runs one recognition and ``terminate()`` releases
everything. Workers are context managers so the release happens on
every exit path.
"""
import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Callable, List, Optional

import boto3
import pytesseract
from botocore.exceptions import ClientError
from PIL import Image, ImageSequence

from formless.config import Config

logger = logging.getLogger(__name__)

RECOGNIZING_TEXT = 'recognizing text'


@dataclass
class OCRProgress:
    """Progress signal emitted by a worker; ``progress`` is a fraction in [0, 1]."""
    status: str
    progress: float


ProgressLogger = Callable[[OCRProgress], None]


class OCRWorker:
    """Base class for OCR backends."""

    backend_name = 'base'

    def __init__(self, logger_callback: Optional[ProgressLogger] = None):
        self.logger_callback = logger_callback
        self.loaded = False
        self.terminated = False

    def _emit(self, status: str, progress: float):
        if self.logger_callback:
            self.logger_callback(OCRProgress(status=status, progress=progress))

    def load(self) -> None:
        raise NotImplementedError

    def recognize(self, image_bytes: bytes) -> str:
        raise NotImplementedError

    def terminate(self) -> None:
        raise NotImplementedError

    def __enter__(self) -> 'OCRWorker':
        self.load()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.terminate()
        return False


class TesseractWorker(OCRWorker):
    """Tesseract OCR via pytesseract, English model with automatic page segmentation."""

    backend_name = 'tesseract'

    def __init__(
        self,
        logger_callback: Optional[ProgressLogger] = None,
        language: Optional[str] = None,
        tesseract_cmd: Optional[str] = None,
        timeout: Optional[int] = None
    ):
        super().__init__(logger_callback)
        self.language = language or Config.OCR_LANGUAGE
        self.tesseract_cmd = tesseract_cmd or Config.TESSERACT_CMD
        self.timeout = timeout if timeout is not None else Config.OCR_TIMEOUT
        # psm 1: automatic page segmentation with orientation and script detection
        self.tesseract_config = '--psm 1 -c preserve_interword_spaces=1'
        self._images: List[Image.Image] = []

    def load(self) -> None:
        self._emit('loading tesseract core', 0.0)
        if self.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = self.tesseract_cmd
        version = pytesseract.get_tesseract_version()
        self._emit('initializing api', 0.5)
        languages = pytesseract.get_languages(config='')
        if self.language not in languages:
            raise RuntimeError(f"Tesseract language '{self.language}' is not installed")
        self.loaded = True
        self._emit('initialized api', 1.0)
        logger.info(f"Tesseract worker ready (version {version}, language {self.language})")

    def recognize(self, image_bytes: bytes) -> str:
        if not self.loaded:
            raise RuntimeError("Worker must be loaded before recognition")

        image = Image.open(BytesIO(image_bytes))
        self._images.append(image)
        frames = [frame.convert('RGB') for frame in ImageSequence.Iterator(image)]
        self._images.extend(frames)

        texts = []
        self._emit(RECOGNIZING_TEXT, 0.0)
        for index, frame in enumerate(frames, start=1):
            text = pytesseract.image_to_string(
                frame,
                lang=self.language,
                config=self.tesseract_config,
                timeout=self.timeout
            )
            texts.append(text.strip())
            self._emit(RECOGNIZING_TEXT, index / len(frames))

        return '\n\n'.join(t for t in texts if t).strip()

    def terminate(self) -> None:
        for image in self._images:
            try:
                image.close()
            except Exception as e:
                logger.debug(f"Failed to close OCR image: {e}")
        self._images = []
        self.loaded = False
        self.terminated = True


class TextractWorker(OCRWorker):
    """AWS Textract detect_document_text on a single image."""

    backend_name = 'textract'

    def __init__(self, logger_callback: Optional[ProgressLogger] = None, client=None):
        super().__init__(logger_callback)
        self.client = client

    def load(self) -> None:
        self._emit('initializing textract client', 0.0)
        if self.client is None:
            config = Config.get_boto3_config()
            if 'profile_name' in config:
                session = boto3.Session(profile_name=config['profile_name'])
                self.client = session.client('textract', region_name=config['region_name'])
            else:
                self.client = boto3.client('textract', **config)
        self.loaded = True
        self._emit('initialized textract client', 1.0)
        logger.info("Initialized AWS Textract worker")

    def recognize(self, image_bytes: bytes) -> str:
        if not self.loaded:
            raise RuntimeError("Worker must be loaded before recognition")

        self._emit(RECOGNIZING_TEXT, 0.0)
        try:
            response = self.client.detect_document_text(Document={'Bytes': image_bytes})
        except ClientError as e:
            error_msg = str(e)
            if "ExpiredTokenException" in error_msg or "expired" in error_msg.lower():
                logger.error(f"Textract error: AWS credentials have expired. {error_msg}")
            elif "InvalidClientTokenId" in error_msg:
                logger.error(f"Textract error: AWS credentials are invalid. {error_msg}")
            else:
                logger.error(f"Textract error: {e}")
            raise

        text_blocks = [
            block.get('Text', '')
            for block in response.get('Blocks', [])
            if block.get('BlockType') == 'LINE' and block.get('Text')
        ]
        self._emit(RECOGNIZING_TEXT, 1.0)
        logger.info(f"Textract recognition complete: {len(text_blocks)} lines")
        return '\n'.join(text_blocks)

    def terminate(self) -> None:
        close = getattr(self.client, 'close', None)
        if callable(close):
            try:
                close()
            except Exception as e:
                logger.debug(f"Failed to close Textract client: {e}")
        self.client = None
        self.loaded = False
        self.terminated = True


def create_ocr_worker(
    logger_callback: Optional[ProgressLogger] = None,
    backend: Optional[str] = None
) -> OCRWorker:
    """Create an (unloaded) worker for the configured OCR backend."""
    backend = (backend or Config.OCR_BACKEND).lower()
    if backend == 'textract':
        return TextractWorker(logger_callback=logger_callback)
    if backend == 'tesseract':
        return TesseractWorker(logger_callback=logger_callback)
    raise ValueError(f"Unknown OCR backend: {backend}")
