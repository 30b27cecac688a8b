"""
PDF synthesis with reportlab.

Two documents are built from scratch here:

- ``create_form_pdf``: a new interactive AcroForm laid out top to bottom,
  one label line plus one widget per field.
- ``build_summary_pdf``: the static "label: value" listing produced when a
  submission cannot be written onto its source document.
"""
import logging
from datetime import datetime
from io import BytesIO
from typing import Any, List, Mapping, Optional

from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.utils import simpleSplit
from reportlab.pdfgen import canvas

from .schema import FieldType, FormField, display_value, is_blank, utc_now

logger = logging.getLogger(__name__)

PAGE_WIDTH, PAGE_HEIGHT = letter

# Interactive form layout
LEFT_MARGIN = 50
TOP_MARGIN = 100
BOTTOM_MARGIN = 100
LABEL_FONT_SIZE = 12
CAPTION_FONT_SIZE = 10
LABEL_HEIGHT = 15
LABEL_GAP = 5
FIELD_HEIGHT = 25
FIELD_SPACING = 40
TEXT_FIELD_WIDTH = 300
TEXTAREA_WIDTH = 400
TEXTAREA_HEIGHT = FIELD_HEIGHT * 2
CHECKBOX_SIZE = 15
RADIO_SPACING = 100
SELECT_WIDTH = 200
SIGNATURE_CAPTION = "(Digital Signature)"
SIGNATURE_CAPTION_X = 360

# Summary document layout
SUMMARY_TITLE_Y = 750
SUMMARY_HEADER_Y = 720
SUMMARY_FIRST_LINE_Y = 680
SUMMARY_LINE_STEP = 20
SUMMARY_BOTTOM = 50
SUMMARY_FOOTER_GAP = 40
SUMMARY_HEADER = "Form Submission"

_SINGLE_LINE_TYPES = {FieldType.TEXT, FieldType.EMAIL, FieldType.PHONE, FieldType.DATE}

# Encoding reportlab uses for the standard Type 1 fonts
STANDARD_FONT_ENCODING = 'cp1252'


def unrenderable_characters(text: str) -> str:
    """Characters of ``text`` that the standard fonts draw as empty boxes."""
    missing = []
    for char in text:
        if char in '\r\n\t' or char in missing:
            continue
        try:
            char.encode(STANDARD_FONT_ENCODING)
        except UnicodeEncodeError:
            missing.append(char)
    return ''.join(missing)


def warn_unrenderable(text: str, font: str = "Helvetica") -> None:
    missing = unrenderable_characters(text)
    if missing:
        logger.warning(f"{font} cannot render {missing!r}; those characters are drawn as boxes")


def widget_height(form_field: FormField) -> float:
    """Height of the input widget drawn for a field."""
    if form_field.type == FieldType.TEXTAREA:
        return TEXTAREA_HEIGHT
    return FIELD_HEIGHT


def create_form_pdf(fields: List[FormField], title: Optional[str] = None) -> bytes:
    """
    Build a new interactive PDF form for a field list.

    Args:
        fields: Fields in rendering order
        title: Optional document title metadata

    Returns:
        PDF bytes with one AcroForm widget (or radio group) per field
    """
    buffer = BytesIO()
    report = canvas.Canvas(buffer, pagesize=letter)
    if title:
        report.setTitle(title)

    y = PAGE_HEIGHT - TOP_MARGIN
    pages = 1

    for form_field in fields:
        height = widget_height(form_field)
        if y - (LABEL_HEIGHT + LABEL_GAP + height) < BOTTOM_MARGIN:
            report.showPage()
            pages += 1
            y = PAGE_HEIGHT - TOP_MARGIN

        label = form_field.label + (" *" if form_field.required else "")
        report.setFont("Helvetica", LABEL_FONT_SIZE)
        report.drawString(LEFT_MARGIN, y, label)
        y -= LABEL_HEIGHT + LABEL_GAP

        _draw_widget(report, form_field, y - height)
        y -= height + FIELD_SPACING

    report.save()
    logger.info(f"Generated interactive PDF form with {len(fields)} field(s) on {pages} page(s)")
    return buffer.getvalue()


def _draw_widget(report: canvas.Canvas, form_field: FormField, bottom: float) -> None:
    form = report.acroForm
    tooltip = form_field.placeholder or form_field.label

    if form_field.type in _SINGLE_LINE_TYPES:
        form.textfield(
            name=form_field.id, tooltip=tooltip,
            x=LEFT_MARGIN, y=bottom, width=TEXT_FIELD_WIDTH, height=FIELD_HEIGHT,
            borderColor=colors.black, fillColor=colors.white, textColor=colors.black,
        )

    elif form_field.type == FieldType.TEXTAREA:
        form.textfield(
            name=form_field.id, tooltip=tooltip,
            x=LEFT_MARGIN, y=bottom, width=TEXTAREA_WIDTH, height=TEXTAREA_HEIGHT,
            fieldFlags='multiline',
            borderColor=colors.black, fillColor=colors.white, textColor=colors.black,
        )

    elif form_field.type == FieldType.CHECKBOX:
        form.checkbox(
            name=form_field.id, tooltip=tooltip,
            x=LEFT_MARGIN, y=bottom, size=CHECKBOX_SIZE,
            buttonStyle='check', checked=False,
            borderColor=colors.black, fillColor=colors.white,
        )

    elif form_field.type == FieldType.RADIO:
        report.setFont("Helvetica", CAPTION_FONT_SIZE)
        for index, option in enumerate(form_field.options or []):
            x = LEFT_MARGIN + index * RADIO_SPACING
            form.radio(
                name=form_field.id, tooltip=tooltip, value=option, selected=False,
                x=x, y=bottom, size=CHECKBOX_SIZE, buttonStyle='circle',
                borderColor=colors.black, fillColor=colors.white,
            )
            report.drawString(x + 20, bottom + 2, option)

    elif form_field.type == FieldType.SELECT:
        options = form_field.options or []
        form.choice(
            name=form_field.id, tooltip=tooltip,
            x=LEFT_MARGIN, y=bottom, width=SELECT_WIDTH, height=FIELD_HEIGHT,
            options=options, value=options[0],
            borderColor=colors.black, fillColor=colors.white, textColor=colors.black,
        )

    elif form_field.type == FieldType.SIGNATURE:
        form.textfield(
            name=form_field.id, tooltip=tooltip,
            x=LEFT_MARGIN, y=bottom, width=TEXT_FIELD_WIDTH, height=FIELD_HEIGHT,
            borderColor=colors.black, fillColor=colors.white, textColor=colors.black,
        )
        report.setFont("Helvetica", CAPTION_FONT_SIZE)
        report.drawString(SIGNATURE_CAPTION_X, bottom + 8, SIGNATURE_CAPTION)


def summary_lines(fields: List[FormField], values: Mapping[str, Any]) -> List[str]:
    """``label: value`` for every field with a non-empty submitted value."""
    lines = []
    for form_field in fields:
        value = values.get(form_field.id)
        if is_blank(value):
            continue
        lines.append(f"{form_field.label}: {display_value(value)}")
    return lines


def build_summary_pdf(
    title: str,
    fields: List[FormField],
    values: Mapping[str, Any],
    submitted_at: Optional[datetime] = None
) -> bytes:
    """
    Synthesize a static document listing every answered field.

    Long lines wrap to the page width and continue on new pages as needed.
    """
    submitted_at = submitted_at or utc_now()
    buffer = BytesIO()
    report = canvas.Canvas(buffer, pagesize=letter)
    report.setTitle(title or SUMMARY_HEADER)
    text_width = PAGE_WIDTH - 2 * LEFT_MARGIN

    report.setFont("Helvetica-Bold", 16)
    report.drawString(LEFT_MARGIN, SUMMARY_TITLE_Y, title or "Untitled Form")
    report.setFont("Helvetica", 14)
    report.drawString(LEFT_MARGIN, SUMMARY_HEADER_Y, SUMMARY_HEADER)

    y = SUMMARY_FIRST_LINE_Y
    last_y = SUMMARY_HEADER_Y
    report.setFont("Helvetica", 10)
    for line in summary_lines(fields, values):
        warn_unrenderable(line)
        for segment in _wrap(line, text_width):
            if y < SUMMARY_BOTTOM:
                report.showPage()
                report.setFont("Helvetica", 10)
                y = SUMMARY_TITLE_Y
            report.drawString(LEFT_MARGIN, y, segment)
            last_y = y
            y -= SUMMARY_LINE_STEP

    footer_y = last_y - SUMMARY_FOOTER_GAP
    if footer_y < SUMMARY_BOTTOM - SUMMARY_LINE_STEP:
        report.showPage()
        footer_y = SUMMARY_TITLE_Y
    report.setFont("Helvetica", 8)
    report.setFillColor(colors.grey)
    report.drawString(LEFT_MARGIN, footer_y, f"Submitted: {submitted_at.strftime('%Y-%m-%d %H:%M:%S %Z').strip()}")

    report.save()
    return buffer.getvalue()


def _wrap(line: str, width: float) -> List[str]:
    segments: List[str] = []
    for part in line.split('\n'):
        segments.extend(simpleSplit(part, "Helvetica", 10, width) or [''])
    return segments
