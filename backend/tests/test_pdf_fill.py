import logging
from io import BytesIO

import pytest
from pypdf import PdfReader, PdfWriter
from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas

from conftest import build_text_pdf, pdf_text
from formless.services.form_pipeline.native_widgets import WidgetIndex, WidgetKind
from formless.services.form_pipeline.pdf_fill import DEFAULT_Y, STACK_STEP, PDFFillEngine
from formless.services.form_pipeline.schema import FieldPosition, FormField


@pytest.fixture
def engine():
    return PDFFillEngine()


@pytest.fixture
def plain_pdf():
    return build_text_pdf([["Registration"]])


def font_names(pdf_bytes):
    names = set()
    for page in PdfReader(BytesIO(pdf_bytes)).pages:
        resources = page['/Resources'] if '/Resources' in page else {}
        fonts = resources['/Font'] if '/Font' in resources else {}
        for font in fonts.values():
            names.add(str(font.get_object().get('/BaseFont')))
    return names


@pytest.fixture
def notes_pdf():
    buffer = BytesIO()
    report = canvas.Canvas(buffer, pagesize=letter)
    report.acroForm.textfield(name="notes", x=72, y=600, width=200, height=30, value="", fieldFlags="multiline")
    report.showPage()
    report.save()
    return buffer.getvalue()


def widget_annotations(pdf_bytes):
    found = []
    for page in PdfReader(BytesIO(pdf_bytes)).pages:
        annots = page['/Annots'] if '/Annots' in page else []
        for annot in annots:
            if annot.get_object().get('/Subtype') == '/Widget':
                found.append(annot)
    return found


def test_empty_value_draws_nothing(engine, plain_pdf):
    fields = [FormField(id="email", label="Email", type="email")]

    output = engine.fill(plain_pdf, fields, {"email": ""})

    assert pdf_text(output) == pdf_text(plain_pdf)


def test_corrupt_source_produces_summary_document(engine):
    fields = [FormField(id="x", label="X", type="text")]

    output = engine.fill(b"this is not a pdf", fields, {"x": "hello"}, title="Intake Form")

    text = pdf_text(output)
    assert output.startswith(b"%PDF")
    assert "X: hello" in text
    assert "Intake Form" in text
    assert "Form Submission" in text
    assert "Submitted:" in text


def test_summary_skips_blank_values_and_renders_booleans(engine):
    fields = [
        FormField(id="name", label="Name"),
        FormField(id="nickname", label="Nickname"),
        FormField(id="agree", label="Agree", type="checkbox"),
    ]

    text = pdf_text(engine.fill(b"", fields, {"name": "Ada", "nickname": "", "agree": False}, title="T"))

    assert "Name: Ada" in text
    assert "Nickname" not in text
    assert "Agree: No" in text


def test_unchecked_checkbox_without_widget_draws_nothing(engine, plain_pdf):
    fields = [FormField(id="agree", label="I agree", type="checkbox")]

    output = engine.fill(plain_pdf, fields, {"agree": False})

    assert not any("ZapfDingbats" in name for name in font_names(output))
    assert pdf_text(output) == pdf_text(plain_pdf)


def test_checked_checkbox_without_widget_draws_glyph(engine, plain_pdf):
    fields = [FormField(id="agree", label="I agree", type="checkbox", position=FieldPosition(x=72, y=600))]

    output = engine.fill(plain_pdf, fields, {"agree": "yes"})

    assert any("ZapfDingbats" in name for name in font_names(output))


def test_value_without_widget_is_drawn_as_text(engine, plain_pdf):
    fields = [
        FormField(id="name", label="Name", position=FieldPosition(x=72, y=500)),
        FormField(id="notes", label="Notes", type="textarea"),
    ]

    output = engine.fill(plain_pdf, fields, {"name": "Grace Hopper", "notes": "first line\nsecond line"})

    text = pdf_text(output)
    assert "Registration" in text
    assert "Grace Hopper" in text
    assert "first line" in text and "second line" in text
    assert "Name:" not in text


def test_native_widgets_are_filled_and_flattened(engine, widget_pdf):
    fields = [
        FormField(id="full_name", label="Full Name"),
        FormField(id="agree", label="Agree", type="checkbox"),
        FormField(id="color", label="Color", type="radio", options=["Red", "Blue"]),
        FormField(id="plan", label="Plan", type="select", options=["Basic", "Pro"]),
    ]

    output = engine.fill(widget_pdf, fields, {"full_name": "Ada Lovelace", "agree": True, "color": "Blue", "plan": "Pro"})

    reader = PdfReader(BytesIO(output))
    text = pdf_text(output)
    assert widget_annotations(output) == []
    assert "/AcroForm" not in reader.trailer["/Root"]
    assert "Membership Application" in text
    assert "Ada Lovelace" in text
    assert "Pro" in text
    assert any("ZapfDingbats" in name for name in font_names(output))


def test_unchecked_native_checkbox_is_not_marked(engine, widget_pdf):
    fields = [FormField(id="agree", label="Agree", type="checkbox")]

    output = engine.fill(widget_pdf, fields, {"agree": False})

    assert widget_annotations(output) == []
    assert not any("ZapfDingbats" in name for name in font_names(output))


def test_field_failure_falls_back_to_label_and_value(engine, widget_pdf):
    fields = [
        FormField(id="full_name", label="Full Name"),
        FormField(id="color", label="Color", type="radio", options=["Red", "Blue"]),
    ]

    output = engine.fill(widget_pdf, fields, {"full_name": "Ada", "color": "Green"})

    text = pdf_text(output)
    assert "Color: Green" in text
    assert "Ada" in text
    assert widget_annotations(output) == []


def test_stacked_fallback_position_follows_schema_index(engine):
    assert engine.stacked_y(0) == DEFAULT_Y
    assert engine.stacked_y(3) == DEFAULT_Y - 3 * STACK_STEP


def test_widget_index_resolves_names_and_kinds(widget_pdf):
    index = WidgetIndex.from_writer(PdfWriter(clone_from=PdfReader(BytesIO(widget_pdf))))

    assert len(index) == 4
    assert index.locate("full_name", (WidgetKind.TEXT,)).kind == WidgetKind.TEXT
    assert index.locate("full_name", (WidgetKind.CHECKBOX,)) is None
    assert index.locate("color", (WidgetKind.RADIO,)).annotations[1].on_state() == "/Blue"
    assert index.locate("plan", (WidgetKind.CHOICE,)) is not None
    assert index.locate("missing", tuple(WidgetKind)) is None


def test_long_multiline_value_is_drawn_in_full(engine, notes_pdf, caplog):
    fields = [FormField(id="notes", label="Notes", type="textarea")]
    value = " ".join(f"word{i}" for i in range(60))

    with caplog.at_level(logging.WARNING):
        output = engine.fill(notes_pdf, fields, {"notes": value})

    text = pdf_text(output)
    assert "word0" in text and "word30" in text and "word59" in text
    assert widget_annotations(output) == []
    assert "overflows" in caplog.text


def test_short_multiline_value_fits_without_warning(engine, notes_pdf, caplog):
    fields = [FormField(id="notes", label="Notes", type="textarea")]

    with caplog.at_level(logging.WARNING):
        output = engine.fill(notes_pdf, fields, {"notes": "Ring the bell"})

    assert "Ring the bell" in pdf_text(output)
    assert "overflows" not in caplog.text


def test_characters_outside_standard_fonts_are_reported(engine, plain_pdf, caplog):
    fields = [FormField(id="name", label="Name", position=FieldPosition(x=72, y=500))]

    with caplog.at_level(logging.WARNING):
        output = engine.fill(plain_pdf, fields, {"name": "José 日本"})

    assert output.startswith(b"%PDF")
    assert "日本" in caplog.text
    assert "é" not in caplog.text
