"""
Native AcroForm widget access for the PDF fill engine.

Builds an index of every widget annotation in a document, keyed by the
field's fully qualified name and by its terminal name, so a form field
id can be resolved to ``Optional[NativeWidget]`` before any value is
written.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from pypdf import PdfWriter
from pypdf.generic import ArrayObject, DictionaryObject, NameObject, TextStringObject

logger = logging.getLogger(__name__)

Rect = Tuple[float, float, float, float]

# /Ff bit positions (PDF 32000-1, 12.7.4)
MULTILINE_FLAG = 1 << 12
RADIO_FLAG = 1 << 15
PUSHBUTTON_FLAG = 1 << 16

OFF_STATE = '/Off'


class WidgetKind(str, Enum):
    """Kinds of native form control."""
    TEXT = "text"
    CHECKBOX = "checkbox"
    RADIO = "radio"
    CHOICE = "choice"
    SIGNATURE = "signature"
    PUSHBUTTON = "pushbutton"


@dataclass
class WidgetAnnotation:
    """One visual widget of a field on a page."""
    page_index: int
    annotation: DictionaryObject

    @property
    def rect(self) -> Optional[Rect]:
        raw = self.annotation.get('/Rect')
        raw = raw.get_object() if raw is not None else None
        if not raw or len(raw) != 4:
            return None
        x0, y0, x1, y1 = (float(v) for v in raw)
        return (min(x0, x1), min(y0, y1), max(x0, x1), max(y0, y1))

    @property
    def appearance_state(self) -> Optional[str]:
        state = self.annotation.get('/AS')
        return str(state) if state is not None else None

    def on_state(self) -> Optional[str]:
        """Name of the first non-Off normal appearance, e.g. '/Yes'."""
        appearance = self.annotation.get('/AP')
        if appearance is None:
            return None
        normal = appearance.get_object().get('/N')
        if normal is None:
            return None
        normal = normal.get_object()
        if not isinstance(normal, DictionaryObject):
            return None
        for state in normal.keys():
            if state != OFF_STATE:
                return str(state)
        return None


@dataclass
class NativeWidget:
    """A terminal form field together with all of its widget annotations."""
    name: str
    kind: WidgetKind
    field: DictionaryObject
    annotations: List[WidgetAnnotation] = field(default_factory=list)

    @property
    def flags(self) -> int:
        return int(_inherited(self.field, '/Ff') or 0)

    @property
    def is_multiline(self) -> bool:
        return bool(self.flags & MULTILINE_FLAG)

    @property
    def value(self):
        return _inherited(self.field, '/V')

    def set_text(self, value: str) -> None:
        self.field[NameObject('/V')] = TextStringObject(value)

    def set_checked(self, checked: bool) -> None:
        state = OFF_STATE
        for widget in self.annotations:
            widget_state = (widget.on_state() or '/Yes') if checked else OFF_STATE
            widget.annotation[NameObject('/AS')] = NameObject(widget_state)
            state = widget_state
        self.field[NameObject('/V')] = NameObject(state)

    def select_option(self, option: str) -> None:
        """Turn on the radio widget whose on-state matches ``option``."""
        target = None
        for widget in self.annotations:
            state = widget.on_state()
            if state is not None and state.lstrip('/') == option:
                target = widget
                break
        if target is None:
            raise ValueError(f"'{option}' is not an option of radio group '{self.name}'")

        selected = target.on_state()
        for widget in self.annotations:
            widget.annotation[NameObject('/AS')] = NameObject(selected if widget is target else OFF_STATE)
        self.field[NameObject('/V')] = NameObject(selected)


def _inherited(obj: DictionaryObject, key: str):
    """Look up an inheritable field attribute through the /Parent chain."""
    seen = 0
    while obj is not None and seen < 32:
        if key in obj:
            return obj[key]
        parent = obj.get('/Parent')
        obj = parent.get_object() if parent is not None else None
        seen += 1
    return None


def _terminal_field(annotation: DictionaryObject) -> DictionaryObject:
    """The field dictionary holding /V for a widget (merged or via /Parent)."""
    if '/T' in annotation or '/Parent' not in annotation:
        return annotation
    return annotation['/Parent'].get_object()


def _qualified_name(field_dict: DictionaryObject) -> Optional[str]:
    parts: List[str] = []
    obj = field_dict
    while obj is not None and len(parts) < 32:
        partial = obj.get('/T')
        if partial:
            parts.append(str(partial))
        parent = obj.get('/Parent')
        obj = parent.get_object() if parent is not None else None
    if not parts:
        return None
    return '.'.join(reversed(parts))


def _widget_kind(field_dict: DictionaryObject) -> Optional[WidgetKind]:
    field_type = _inherited(field_dict, '/FT')
    flags = int(_inherited(field_dict, '/Ff') or 0)
    if field_type == '/Tx':
        return WidgetKind.TEXT
    if field_type == '/Ch':
        return WidgetKind.CHOICE
    if field_type == '/Sig':
        return WidgetKind.SIGNATURE
    if field_type == '/Btn':
        if flags & PUSHBUTTON_FLAG:
            return WidgetKind.PUSHBUTTON
        if flags & RADIO_FLAG:
            return WidgetKind.RADIO
        return WidgetKind.CHECKBOX
    return None


class WidgetIndex:
    """Index of a document's native widgets by field name."""

    def __init__(self, widgets: Sequence[NativeWidget]):
        self._widgets = list(widgets)
        self._by_name: Dict[str, NativeWidget] = {}
        for widget in self._widgets:
            self._by_name.setdefault(widget.name, widget)
        # Terminal names are a convenience alias; qualified names win on conflict
        for widget in self._widgets:
            short = widget.name.rsplit('.', 1)[-1]
            self._by_name.setdefault(short, widget)

    @classmethod
    def from_writer(cls, writer: PdfWriter) -> 'WidgetIndex':
        widgets: Dict[int, NativeWidget] = {}
        order: List[int] = []

        for page_index, page in enumerate(writer.pages):
            for annotation in _page_widgets(page):
                field_dict = _terminal_field(annotation)
                key = id(field_dict)
                if key not in widgets:
                    name = _qualified_name(field_dict)
                    kind = _widget_kind(field_dict)
                    if name is None or kind is None:
                        continue
                    widgets[key] = NativeWidget(name=name, kind=kind, field=field_dict)
                    order.append(key)
                widgets[key].annotations.append(WidgetAnnotation(page_index, annotation))

        logger.debug(f"Indexed {len(order)} native form field(s)")
        return cls([widgets[key] for key in order])

    def __len__(self) -> int:
        return len(self._widgets)

    def __iter__(self) -> Iterator[NativeWidget]:
        return iter(self._widgets)

    def locate(self, name: str, kinds: Sequence[WidgetKind]) -> Optional[NativeWidget]:
        """Return the widget named ``name`` if it is one of ``kinds``."""
        widget = self._by_name.get(name)
        if widget is None or widget.kind not in kinds:
            return None
        return widget


def _page_widgets(page) -> Iterator[DictionaryObject]:
    annots = page.get('/Annots')
    if not annots:
        return
    for annot_ref in annots.get_object():
        annot = annot_ref.get_object()
        if annot.get('/Subtype') == '/Widget':
            yield annot


def strip_form_widgets(writer: PdfWriter) -> int:
    """Remove every widget annotation and the /AcroForm dictionary."""
    removed = 0
    for page in writer.pages:
        annots = page.get('/Annots')
        if not annots:
            continue

        kept = ArrayObject()
        for annot_ref in annots.get_object():
            annot = annot_ref.get_object()
            if annot.get('/Subtype') == '/Widget':
                removed += 1
                continue
            kept.append(annot_ref)

        if kept:
            page[NameObject('/Annots')] = kept
        elif '/Annots' in page:
            del page['/Annots']

    if '/AcroForm' in writer._root_object:
        del writer._root_object['/AcroForm']
    return removed
