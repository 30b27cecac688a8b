"""
AI Structured Field Extraction
==============================

Sends a document (and/or its extracted text) to a generative model with
a fixed instruction and parses the reply as a bare JSON array of form
fields.

Providers:
- ``gemini``: REST ``generateContent``; the raw document is attached as
  inline base64 data so the model can read it directly.
- ``openai``: any OpenAI-compatible ``/chat/completions`` endpoint; text only.

Failure handling:
One attempt per document, no retry. An HTTP error, an empty reply, a
JSON parse error or a reply that does not match the field shape all
produce the fixed sample schema, flagged with a warning. The upload flow
therefore always ends up with a usable form.
"""

import base64
import json
import logging
from typing import Any, Dict, List, Optional

import requests
from pydantic import ValidationError

from formless.config import Config
from .inference import InferenceResult, InferenceSource, InferenceStrategy
from .schema import FieldType, FormField

logger = logging.getLogger(__name__)

AI_FALLBACK_WARNING = "AI extraction failed"


class AIExtractionError(Exception):
    """Raised internally when the AI backend reply cannot be used."""


class AIFieldExtractor:
    """
    Infers form fields with a large language model.

    Every failure is logged and converted into the sample schema so the
    caller only has to inspect ``InferenceResult.source``.
    """

    SYSTEM_PROMPT = """You are an AI that extracts form fields from PDF documents. Analyze the provided PDF and return a JSON array of form fields.

Each field should have this structure:
{
  "id": "unique_id",
  "label": "Field Label",
  "type": "text|email|phone|date|checkbox|radio|select|textarea|signature",
  "required": boolean,
  "placeholder": "optional placeholder text",
  "options": ["array", "of", "options"] (only for radio/select),
  "validation": {
    "min": number,
    "max": number,
    "pattern": "regex pattern"
  }
}

Field type guidelines:
- text: General text input
- email: Email addresses
- phone: Phone numbers
- date: Date fields
- checkbox: Single checkboxes
- radio: Multiple choice (one option)
- select: Dropdown selections
- textarea: Large text areas
- signature: Signature fields

Return ONLY the JSON array, no other text."""

    USER_PROMPT = (
        "Please analyze this PDF and extract all form fields. "
        "Pay attention to labels, field types, and whether fields appear to be required."
    )

    def __init__(
        self,
        provider: Optional[str] = None,
        api_key: Optional[str] = None,
        model_name: Optional[str] = None,
        api_base: Optional[str] = None,
        timeout: Optional[int] = None,
        temperature: Optional[float] = None,
        max_output_tokens: Optional[int] = None,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the extractor.

        Args:
            provider: 'gemini' or 'openai' (defaults to Config.AI_PROVIDER)
            api_key: API key (defaults to the provider's key from config)
            model_name: Model name to use
            api_base: Base URL for the API
            timeout: Request timeout in seconds
            temperature: Sampling temperature
            max_output_tokens: Output token cap
            session: Optional requests session (used by tests)
        """
        self.provider = (provider or Config.AI_PROVIDER).lower()
        if self.provider not in ('gemini', 'openai'):
            raise ValueError(f"Unknown AI provider: {self.provider}")

        if self.provider == 'openai':
            self.api_key = api_key or Config.OPENAI_API_KEY
            self.model_name = model_name or Config.OPENAI_MODEL
            self.api_base = (api_base or Config.OPENAI_API_BASE).rstrip('/')
        else:
            self.api_key = api_key or Config.GEMINI_API_KEY
            self.model_name = model_name or Config.GEMINI_MODEL
            self.api_base = (api_base or Config.GEMINI_API_BASE).rstrip('/')

        self.timeout = timeout or Config.AI_TIMEOUT
        self.temperature = Config.AI_TEMPERATURE if temperature is None else temperature
        self.max_output_tokens = max_output_tokens or Config.AI_MAX_OUTPUT_TOKENS
        self.session = session or requests.Session()

        if not self.is_available:
            logger.warning(
                f"{self.provider} API key not configured. AI extraction will return the sample schema."
            )

    @property
    def is_available(self) -> bool:
        """Check if the AI backend is configured."""
        return bool(self.api_key)

    def extract(
        self,
        text: Optional[str] = None,
        document: Optional[bytes] = None,
        mime_type: str = 'application/pdf'
    ) -> InferenceResult:
        """
        Extract form fields from a document.

        Args:
            text: Extracted document text, if available
            document: Raw document bytes, if available
            mime_type: MIME type of ``document``

        Returns:
            InferenceResult tagged AI_EXTRACTED on success, FALLBACK otherwise
        """
        if not self.is_available:
            return self._fallback("AI backend is not configured")

        try:
            content = self._request_content(text, document, mime_type)
            fields = self.parse_fields(content)
        except requests.RequestException as e:
            logger.error(f"{self.provider} request failed: {e}")
            return self._fallback(f"AI backend error: {e}")
        except AIExtractionError as e:
            logger.error(f"{self.provider} extraction error: {e}")
            return self._fallback(str(e))

        logger.info(f"AI extraction produced {len(fields)} field(s) with {self.model_name}")
        return InferenceResult(
            source=InferenceSource.AI_EXTRACTED,
            strategy=InferenceStrategy.AI,
            fields=fields
        )

    def _request_content(self, text: Optional[str], document: Optional[bytes], mime_type: str) -> str:
        if self.provider == 'openai':
            content = self._call_openai(text)
        else:
            content = self._call_gemini(text, document, mime_type)

        if content is not None and not isinstance(content, str):
            raise AIExtractionError(f"Unexpected {type(content).__name__} content from {self.provider}")
        if not content or not content.strip():
            raise AIExtractionError(f"No content received from {self.provider}")
        return content

    def _call_gemini(self, text: Optional[str], document: Optional[bytes], mime_type: str) -> Optional[str]:
        parts: List[Dict[str, Any]] = [{"text": f"{self.SYSTEM_PROMPT}\n\n{self.USER_PROMPT}"}]
        if document:
            parts.append({
                "inline_data": {
                    "mime_type": mime_type,
                    "data": base64.b64encode(document).decode('ascii')
                }
            })
        if text:
            parts.append({"text": f"Extracted document text:\n{text}"})

        payload = {
            "contents": [{"parts": parts}],
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self.max_output_tokens,
                "responseMimeType": "application/json"
            }
        }

        response = self.session.post(
            f"{self.api_base}/models/{self.model_name}:generateContent",
            headers={"Content-Type": "application/json", "x-goog-api-key": self.api_key},
            json=payload,
            timeout=self.timeout
        )
        response.raise_for_status()

        result = response.json()
        try:
            return result['candidates'][0]['content']['parts'][0]['text']
        except (KeyError, IndexError, TypeError):
            return None

    def _call_openai(self, text: Optional[str]) -> Optional[str]:
        user_content = self.USER_PROMPT
        if text:
            user_content += f"\n\nDocument text:\n{text}"

        payload = {
            "model": self.model_name,
            "messages": [
                {"role": "system", "content": self.SYSTEM_PROMPT},
                {"role": "user", "content": user_content}
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_output_tokens
        }

        response = self.session.post(
            f"{self.api_base}/chat/completions",
            headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
            json=payload,
            timeout=self.timeout
        )
        response.raise_for_status()

        result = response.json()
        try:
            return result['choices'][0]['message']['content']
        except (KeyError, IndexError, TypeError):
            return None

    @staticmethod
    def parse_fields(content: str) -> List[FormField]:
        """
        Parse a model reply strictly as a JSON array of fields.

        Missing ids become ``field_{n}`` (1-based position); repeated ids
        get a numeric suffix so the schema stays unique.

        Raises:
            AIExtractionError: If the reply is not a valid field array
        """
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise AIExtractionError(f"Invalid JSON response from AI: {e}") from e

        if not isinstance(data, list):
            raise AIExtractionError("AI response is not a JSON array")

        fields: List[FormField] = []
        used_ids = set()
        for index, item in enumerate(data, start=1):
            if not isinstance(item, dict):
                raise AIExtractionError(f"AI field #{index} is not an object")

            raw = dict(item)
            base_id = str(raw.get('id') or '').strip() or f"field_{index}"
            field_id, suffix = base_id, 1
            while field_id in used_ids:
                suffix += 1
                field_id = f"{base_id}_{suffix}"
            used_ids.add(field_id)
            raw['id'] = field_id
            if not raw.get('label'):
                raw['label'] = raw['id']

            try:
                fields.append(FormField.model_validate(raw))
            except ValidationError as e:
                raise AIExtractionError(f"AI field #{index} does not match the field shape: {e}") from e

        return fields

    @staticmethod
    def _fallback(reason: str) -> InferenceResult:
        return InferenceResult(
            source=InferenceSource.FALLBACK,
            strategy=InferenceStrategy.AI,
            fields=sample_fields(),
            warning=AI_FALLBACK_WARNING,
            error=reason
        )


def sample_fields() -> List[FormField]:
    """Common intake-form fields used when AI extraction fails."""
    return [
        FormField(id='full_name', label='Full Name', type=FieldType.TEXT, required=True,
                  placeholder='Enter your full name'),
        FormField(id='email', label='Email Address', type=FieldType.EMAIL, required=True,
                  placeholder='Enter your email'),
        FormField(id='phone', label='Phone Number', type=FieldType.PHONE, required=False,
                  placeholder='Enter your phone number'),
        FormField(id='date_of_birth', label='Date of Birth', type=FieldType.DATE, required=True),
        FormField(id='address', label='Address', type=FieldType.TEXTAREA, required=False,
                  placeholder='Enter your full address'),
        FormField(id='emergency_contact', label='Emergency Contact', type=FieldType.TEXT, required=False,
                  placeholder='Emergency contact name'),
        FormField(id='signature', label='Signature', type=FieldType.SIGNATURE, required=True),
    ]
