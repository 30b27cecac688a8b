"""
Heuristic field inference over extracted text.
Matches each text line against an ordered list of header patterns.
"""
import logging
import re
from dataclasses import dataclass
from typing import List, Optional

from .schema import FieldType, FormField

logger = logging.getLogger(__name__)

# Optional trailing colon or dash after a header word
_SUFFIX = r'\s*[:\-]?\s*$'


@dataclass(frozen=True)
class PatternRule:
    """A header pattern and the canonical field it produces."""
    field_type: FieldType
    pattern: str
    field_id: str
    label: str

    def compile(self) -> re.Pattern:
        return re.compile(self.pattern, re.IGNORECASE)


class FieldPatternMatcher:
    """Infers form fields from text lines ending in a known header."""

    # Declared priority order: the first matching rule wins for a line
    RULES: List[PatternRule] = [
        PatternRule(FieldType.TEXT, r'\b(?:(?:full|first|last|your)\s+)?(?:first|last|sur|user|given|family|nick)?name' + _SUFFIX, 'name', 'Full Name'),
        PatternRule(FieldType.EMAIL, r'\be[\s\-]?mail(?:\s+address)?' + _SUFFIX, 'email', 'Email'),
        PatternRule(FieldType.PHONE, r'\b(?:phone|telephone|mobile|cell)(?:\s+(?:phone|number|no\.?))?' + _SUFFIX, 'phone', 'Phone Number'),
        PatternRule(FieldType.DATE, r'\b(?:date(?:\s+of\s+birth)?|dob|birth\s*date)' + _SUFFIX, 'date', 'Date'),
        PatternRule(FieldType.TEXTAREA, r'\b(?:address|street|city|state|zip(?:\s+code)?|postal\s+code|country)' + _SUFFIX, 'address', 'Address'),
        PatternRule(FieldType.TEXT, r'\b(?:company|organi[sz]ation|employer)' + _SUFFIX, 'company', 'Company'),
        PatternRule(FieldType.TEXT, r'\b(?:job\s+)?(?:title|position)' + _SUFFIX, 'title', 'Job Title'),
    ]

    def __init__(self, rules: Optional[List[PatternRule]] = None):
        """Initialize the matcher and compile its rules."""
        self.rules = list(rules or self.RULES)
        self.compiled_rules = [(rule, rule.compile()) for rule in self.rules]
        logger.info(f"Initialized FieldPatternMatcher with {len(self.rules)} rules")

    def match_line(self, line: str) -> Optional[PatternRule]:
        """
        Find the first rule whose header pattern matches a line.

        Args:
            line: A single line of extracted text

        Returns:
            The matching rule, or None
        """
        stripped = line.strip()
        if not stripped:
            return None

        for rule, pattern in self.compiled_rules:
            if pattern.search(stripped):
                logger.debug(f"Matched '{stripped}' to field '{rule.field_id}'")
                return rule
        return None

    def infer_fields(self, text: str) -> List[FormField]:
        """
        Infer fields in first-seen order; repeated headers are not duplicated.

        Returns an empty list when nothing matches.
        """
        fields: List[FormField] = []
        seen_ids = set()

        for line in (text or '').split('\n'):
            rule = self.match_line(line)
            if rule is None or rule.field_id in seen_ids:
                continue
            seen_ids.add(rule.field_id)
            fields.append(FormField(
                id=rule.field_id,
                label=rule.label,
                type=rule.field_type,
                required=False
            ))

        logger.info(f"Pattern matching found {len(fields)} field(s)")
        return fields


def default_fields() -> List[FormField]:
    """Minimal fields used when no header is recognised."""
    return [
        FormField(id='name', label='Full Name', type=FieldType.TEXT, required=False),
        FormField(id='email', label='Email', type=FieldType.EMAIL, required=False),
        FormField(id='phone', label='Phone', type=FieldType.PHONE, required=False),
    ]
