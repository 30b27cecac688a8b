"""
Field Inference Engine entry point.

Both strategies return an ``InferenceResult`` whose ``source`` says which
branch produced the fields: heuristic matching, AI extraction, or a
deterministic fallback set.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from .field_patterns import FieldPatternMatcher, default_fields
from .schema import FormField

if TYPE_CHECKING:
    from .ai_extractor import AIFieldExtractor

logger = logging.getLogger(__name__)

HEURISTIC_FALLBACK_WARNING = "No form fields recognised; default fields used"


class InferenceStrategy(str, Enum):
    """Strategy requested for an extraction."""
    HEURISTIC = "heuristic"
    AI = "ai"


class InferenceSource(str, Enum):
    """Which branch produced the fields."""
    HEURISTIC = "heuristic"
    AI_EXTRACTED = "ai_extracted"
    FALLBACK = "fallback"


@dataclass
class InferenceResult:
    """Fields produced by one inference run, tagged with their origin."""
    source: InferenceSource
    strategy: InferenceStrategy
    fields: List[FormField] = field(default_factory=list)
    warning: Optional[str] = None
    error: Optional[str] = None

    @property
    def used_fallback(self) -> bool:
        return self.source == InferenceSource.FALLBACK

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'source': self.source.value,
            'strategy': self.strategy.value,
            'fields': [f.model_dump(mode='json', exclude_none=True) for f in self.fields],
            'warning': self.warning,
        }


class FieldInferenceService:
    """Runs exactly one inference strategy per request."""

    def __init__(
        self,
        matcher: Optional[FieldPatternMatcher] = None,
        ai_extractor: Optional['AIFieldExtractor'] = None
    ):
        from .ai_extractor import AIFieldExtractor

        self.matcher = matcher or FieldPatternMatcher()
        self._ai_extractor = ai_extractor
        self._ai_extractor_cls = AIFieldExtractor

    @property
    def ai_extractor(self) -> 'AIFieldExtractor':
        # Created on first use so heuristic-only deployments never touch AI settings
        if self._ai_extractor is None:
            self._ai_extractor = self._ai_extractor_cls()
        return self._ai_extractor

    def infer_heuristic(self, text: str) -> InferenceResult:
        """Pattern-match the text; fall back to the default triple when nothing matches."""
        fields = self.matcher.infer_fields(text)
        if not fields:
            logger.warning("Heuristic inference found no fields; using default fields")
            return InferenceResult(
                source=InferenceSource.FALLBACK,
                strategy=InferenceStrategy.HEURISTIC,
                fields=default_fields(),
                warning=HEURISTIC_FALLBACK_WARNING,
                error="no recognisable field headers"
            )

        return InferenceResult(
            source=InferenceSource.HEURISTIC,
            strategy=InferenceStrategy.HEURISTIC,
            fields=fields
        )

    def infer_ai(
        self,
        text: Optional[str] = None,
        document: Optional[bytes] = None,
        mime_type: str = 'application/pdf'
    ) -> InferenceResult:
        """Ask the AI backend; failures come back as FALLBACK results."""
        return self.ai_extractor.extract(text=text, document=document, mime_type=mime_type)

    def infer(
        self,
        strategy: InferenceStrategy,
        text: Optional[str] = None,
        document: Optional[bytes] = None,
        mime_type: str = 'application/pdf'
    ) -> InferenceResult:
        """Dispatch to the requested strategy."""
        strategy = InferenceStrategy(strategy)
        if strategy == InferenceStrategy.HEURISTIC:
            result = self.infer_heuristic(text or '')
        else:
            result = self.infer_ai(text=text, document=document, mime_type=mime_type)

        logger.info(
            f"Inference ({strategy.value}) produced {len(result.fields)} field(s) from {result.source.value}"
        )
        return result
