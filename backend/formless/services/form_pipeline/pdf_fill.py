"""
PDF-Fill Engine
===============

Writes submitted values onto the source PDF and flattens it.

Per field, in schema order:
1. blank values (absent, None, "") are skipped
2. the field id is resolved to a native widget of a compatible kind
3. a resolved widget is filled; otherwise the value is drawn at the
   field's position (or the default coordinate)
4. any error for one field is logged and the field is drawn as
   ``label: value`` at a position stacked by its schema index

Flattening burns every widget value into the page content with reportlab
overlays and then removes the widgets and the ``/AcroForm`` dictionary.

A source document that cannot be processed at all is replaced by a
synthesized summary document, so ``fill`` always returns PDF bytes.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass
from io import BytesIO
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from pypdf import PdfReader, PdfWriter
from reportlab.lib.utils import simpleSplit
from reportlab.pdfgen import canvas

from .native_widgets import OFF_STATE, NativeWidget, Rect, WidgetIndex, WidgetKind, strip_form_widgets
from .pdf_generator import build_summary_pdf, warn_unrenderable
from .schema import FieldType, FormField, display_value, is_blank, is_checked

logger = logging.getLogger(__name__)

DEFAULT_X = 50
DEFAULT_Y = 700
STACK_STEP = 20
STACK_MIN_Y = 36
TEXT_FONT = "Helvetica"
TEXT_FONT_SIZE = 10
MIN_WIDGET_FONT_SIZE = 6
LINE_SPACING = 1.2
CHECK_FONT = "ZapfDingbats"
CHECK_FONT_SIZE = 12
CHECK_GLYPH = "4"
RADIO_GLYPH = "l"


class PDFFillError(Exception):
    """Raised internally when the source document cannot be filled."""


@dataclass
class DrawOp:
    """A single string drawn on an overlay page."""
    x: float
    y: float
    text: str
    font: str = TEXT_FONT
    size: float = TEXT_FONT_SIZE


def _wrap_lines(text: str, size: float, width: float) -> List[str]:
    lines: List[str] = []
    for part in text.split('\n'):
        lines.extend(simpleSplit(part, TEXT_FONT, size, width) or [''])
    return lines


class PageOverlay:
    """Collects drawing operations per page and merges them in one pass."""

    def __init__(self):
        self._ops: Dict[int, List[DrawOp]] = defaultdict(list)

    def __len__(self) -> int:
        return sum(len(ops) for ops in self._ops.values())

    def text(self, page_index: int, x: float, y: float, text: str, size: float = TEXT_FONT_SIZE) -> None:
        """Draw text with its first line's baseline at (x, y); later lines go downward."""
        warn_unrenderable(text, TEXT_FONT)
        for offset, line in enumerate(text.split('\n')):
            if line:
                self._ops[page_index].append(DrawOp(x, y - offset * size * LINE_SPACING, line, size=size))

    def check(self, page_index: int, x: float, y: float, size: float = CHECK_FONT_SIZE, glyph: str = CHECK_GLYPH) -> None:
        self._ops[page_index].append(DrawOp(x, y, glyph, font=CHECK_FONT, size=size))

    def text_in_rect(self, page_index: int, rect: Rect, text: str, multiline: bool = False) -> None:
        """
        Draw a widget value inside its rectangle.

        Multi-line values are wrapped to the width and the font shrinks down
        to MIN_WIDGET_FONT_SIZE until they fit; whatever still does not fit
        continues below the rectangle.
        """
        warn_unrenderable(text, TEXT_FONT)
        x0, y0, x1, y1 = rect
        height = y1 - y0
        size = max(MIN_WIDGET_FONT_SIZE, min(TEXT_FONT_SIZE, height * 0.7))

        if not multiline:
            baseline = y0 + (height - size) / 2 + size * 0.22
            self._ops[page_index].append(DrawOp(x0 + 2, baseline, text.replace('\n', ' '), size=size))
            return

        width = max(x1 - x0 - 4, MIN_WIDGET_FONT_SIZE)
        lines = _wrap_lines(text, size, width)
        while size > MIN_WIDGET_FONT_SIZE and len(lines) * size * LINE_SPACING > height - 2:
            size = max(MIN_WIDGET_FONT_SIZE, size - 1)
            lines = _wrap_lines(text, size, width)
        if len(lines) * size * LINE_SPACING > height - 2:
            logger.warning(
                f"Value needs {len(lines)} lines and overflows its {x1 - x0:.0f}x{height:.0f} widget "
                f"on page {page_index + 1}; drawing the rest below it"
            )

        y = y1 - size - 2
        for line in lines:
            if line:
                self._ops[page_index].append(DrawOp(x0 + 2, y, line, size=size))
            y -= size * LINE_SPACING

    def check_in_rect(self, page_index: int, rect: Rect, glyph: str = CHECK_GLYPH) -> None:
        x0, y0, x1, y1 = rect
        size = max(MIN_WIDGET_FONT_SIZE, min(x1 - x0, y1 - y0) * 0.8)
        self.check(page_index, x0 + (x1 - x0 - size * 0.85) / 2, y0 + (y1 - y0 - size * 0.7) / 2, size, glyph)

    def merge_into(self, writer: PdfWriter) -> int:
        """Render each page's operations with reportlab and merge them onto the writer's pages."""
        merged = 0
        for page_index, ops in sorted(self._ops.items()):
            if not ops or page_index >= len(writer.pages):
                continue
            page = writer.pages[page_index]
            width, height = float(page.mediabox.width), float(page.mediabox.height)

            buffer = BytesIO()
            report = canvas.Canvas(buffer, pagesize=(width, height))
            for op in ops:
                report.setFont(op.font, op.size)
                report.drawString(op.x, op.y, op.text)
            report.save()

            overlay_page = PdfReader(BytesIO(buffer.getvalue())).pages[0]
            page.merge_page(overlay_page)
            merged += 1
        return merged


class PDFFillEngine:
    """Fills and flattens PDFs from a field list and submitted values."""

    def fill(
        self,
        original_pdf_bytes: bytes,
        fields: Sequence[FormField],
        values: Optional[Mapping[str, Any]],
        title: Optional[str] = None
    ) -> bytes:
        """
        Produce the completed PDF for a submission.

        Args:
            original_pdf_bytes: Source document
            fields: Schema fields, in order
            values: Submitted values keyed by field id
            title: Form title used if a summary document has to be synthesized

        Returns:
            PDF bytes; never raises for a bad source document
        """
        values = values or {}
        try:
            return self._fill_document(original_pdf_bytes, fields, values)
        except Exception as e:
            logger.error(f"Could not fill source PDF, synthesizing a summary document instead: {e}", exc_info=True)
            return build_summary_pdf(title or "Form Submission", list(fields), values)

    def _fill_document(self, original_pdf_bytes: bytes, fields: Sequence[FormField], values: Mapping[str, Any]) -> bytes:
        if not original_pdf_bytes:
            raise PDFFillError("Source PDF is empty")

        reader = PdfReader(BytesIO(original_pdf_bytes))
        if len(reader.pages) == 0:
            raise PDFFillError("Source PDF has no pages")

        writer = PdfWriter(clone_from=reader)
        widgets = WidgetIndex.from_writer(writer)
        overlay = PageOverlay()

        native = drawn = failed = 0
        for index, form_field in enumerate(fields):
            value = values.get(form_field.id)
            if is_blank(value):
                continue
            try:
                if self.fill_field(widgets, overlay, form_field, value):
                    native += 1
                else:
                    drawn += 1
            except Exception as e:
                failed += 1
                logger.warning(f"Could not fill field '{form_field.id}', drawing it as text: {e}")
                overlay.text(0, DEFAULT_X, self.stacked_y(index), f"{form_field.label}: {display_value(value)}")

        self.flatten(writer, widgets, overlay)
        overlay.merge_into(writer)

        output = BytesIO()
        writer.write(output)
        logger.info(f"Filled PDF: {native} native, {drawn} drawn, {failed} fallback field(s)")
        return output.getvalue()

    def fill_field(self, widgets: WidgetIndex, overlay: PageOverlay, form_field: FormField, value: Any) -> bool:
        """
        Fill one field. Returns True when a native widget took the value,
        False when it was drawn (or, for an unchecked box, nothing was needed).
        """
        if form_field.type == FieldType.CHECKBOX:
            checked = is_checked(value)
            widget = widgets.locate(form_field.id, (WidgetKind.CHECKBOX,))
            if widget is not None:
                widget.set_checked(checked)
                return True
            if checked:
                x, y = self.field_origin(form_field)
                overlay.check(0, x, y)
            return False

        text = display_value(value)
        if form_field.type == FieldType.RADIO:
            widget = widgets.locate(form_field.id, (WidgetKind.RADIO,))
            if widget is not None:
                widget.select_option(text)
                return True
        elif form_field.type == FieldType.SELECT:
            widget = widgets.locate(form_field.id, (WidgetKind.CHOICE,))
            if widget is not None:
                widget.set_text(text)
                return True

        widget = widgets.locate(form_field.id, (WidgetKind.TEXT,))
        if widget is not None:
            widget.set_text(text)
            return True

        x, y = self.field_origin(form_field)
        overlay.text(0, x, y, text)
        return False

    def flatten(self, writer: PdfWriter, widgets: WidgetIndex, overlay: PageOverlay) -> None:
        """Queue every widget's current value for burning, then remove the widgets."""
        for widget in widgets:
            self._burn_widget(widget, overlay)
        removed = strip_form_widgets(writer)
        logger.debug(f"Flattened form: removed {removed} widget annotation(s)")

    @staticmethod
    def _burn_widget(widget: NativeWidget, overlay: PageOverlay) -> None:
        if widget.kind in (WidgetKind.CHECKBOX, WidgetKind.RADIO):
            glyph = CHECK_GLYPH if widget.kind == WidgetKind.CHECKBOX else RADIO_GLYPH
            for annotation in widget.annotations:
                state = annotation.appearance_state
                if annotation.rect is not None and state and state != OFF_STATE:
                    overlay.check_in_rect(annotation.page_index, annotation.rect, glyph)
            return

        if widget.kind not in (WidgetKind.TEXT, WidgetKind.CHOICE):
            return

        value = widget.value
        if isinstance(value, list):
            text = ", ".join(str(v) for v in value)
        else:
            text = '' if value is None else str(value)
        if not text:
            return

        for annotation in widget.annotations:
            if annotation.rect is not None:
                overlay.text_in_rect(annotation.page_index, annotation.rect, text, multiline=widget.is_multiline)

    @staticmethod
    def field_origin(form_field: FormField) -> Tuple[float, float]:
        if form_field.position is None:
            return DEFAULT_X, DEFAULT_Y
        return form_field.position.x, form_field.position.y

    @staticmethod
    def stacked_y(index: int) -> float:
        return max(STACK_MIN_Y, DEFAULT_Y - index * STACK_STEP)
