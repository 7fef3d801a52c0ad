"""Shared fixtures for SKFill tests."""

from io import BytesIO

import pytest
from pypdf import PdfWriter
from pypdf.generic import (
    ArrayObject,
    DictionaryObject,
    FloatObject,
    NameObject,
    NullObject,
    NumberObject,
    TextStringObject,
)

from skfill.models import FieldDescriptor, FieldType, PageFields


VALID_SIGNATURE = "data:image/png;base64," + "A" * 120


def _page_one_annotations() -> list[dict]:
    """Raw annotations as the PDF engine reports them (camelCase keys)."""
    return [
        {"fieldType": "Tx", "fieldName": "full_name", "rect": [50, 700, 300, 720], "fieldFlags": 2},
        {"fieldType": "Tx", "fieldName": "email_address", "rect": [50, 660, 300, 680], "fieldFlags": 2},
        {"fieldType": "Tx", "fieldName": "phone", "rect": [50, 620, 300, 640], "fieldFlags": 0},
        {"fieldType": "Tx", "fieldName": "date_of_birth", "rect": [50, 580, 300, 600], "fieldFlags": 2},
        {
            "fieldType": "Btn",
            "fieldName": "gender",
            "rect": [50, 540, 62, 552],
            "fieldFlags": 32768 | 2,
            "radioButton": True,
            "buttonValue": "male",
        },
        {
            "fieldType": "Btn",
            "fieldName": "gender",
            "rect": [100, 540, 112, 552],
            "fieldFlags": 32768 | 2,
            "radioButton": True,
            "buttonValue": "female",
        },
        {
            "fieldType": "Ch",
            "fieldName": "state",
            "rect": [50, 500, 200, 520],
            "options": [{"exportValue": "CA", "displayValue": "CA"}, {"exportValue": "NY", "displayValue": "NY"}],
        },
        {"fieldType": "Tx", "fieldName": "X_internal", "rect": [0, 0, 1, 1]},
        {"fieldType": "Tx", "fieldName": "dbID", "rect": [0, 0, 1, 1]},
        {"fieldType": None, "fieldName": "decoration", "rect": [0, 0, 10, 10]},
    ]


def _page_two_annotations() -> list[dict]:
    return [
        {"fieldType": "Btn", "fieldName": "agree_terms", "rect": [50, 300, 62, 312], "fieldFlags": 2, "checkBox": True},
        {"fieldType": "Tx", "fieldName": "notes", "rect": [50, 200, 500, 280], "multiLine": True},
        {"fieldType": "Tx", "fieldName": "office_use", "rect": [50, 150, 200, 170], "fieldFlags": 3, "readOnly": True},
        {"fieldType": "Sig", "fieldName": "signature", "rect": [50, 80, 300, 120], "fieldFlags": 2},
    ]


@pytest.fixture
def page_one_annotations() -> list[dict]:
    return _page_one_annotations()


@pytest.fixture
def page_two_annotations() -> list[dict]:
    return _page_two_annotations()


@pytest.fixture
def document_pages() -> list[dict]:
    """Two-page document input for extract_document."""
    return [
        {"page_number": 1, "raw_annotations": _page_one_annotations()},
        {"page_number": 2, "raw_annotations": _page_two_annotations()},
    ]


@pytest.fixture
def abc_fields() -> list[PageFields]:
    """Three required text fields a, b, c plus a required signature."""
    return [
        PageFields(
            page_number=1,
            fields=[
                FieldDescriptor(id="a", name="A", field_type=FieldType.TEXT, required=True, page_number=1),
                FieldDescriptor(id="b", name="B", field_type=FieldType.TEXT, required=True, page_number=1),
            ],
        ),
        PageFields(
            page_number=2,
            fields=[
                FieldDescriptor(id="c", name="C", field_type=FieldType.TEXT, required=True, page_number=2),
                FieldDescriptor(id="sig", name="Signature", field_type=FieldType.SIGNATURE, required=True, page_number=2),
                FieldDescriptor(id="notes", name="Notes", field_type=FieldType.TEXT, page_number=2),
            ],
        ),
    ]


@pytest.fixture
def valid_signature() -> str:
    """A drawn-signature data URI long enough to pass validation."""
    return VALID_SIGNATURE


@pytest.fixture
def tmp_store(tmp_path):
    """Create a temporary SessionStore."""
    from skfill.store import SessionStore

    return SessionStore(base_dir=tmp_path)


def _name(value: str) -> NameObject:
    return NameObject(value)


def _widget(entries: dict) -> DictionaryObject:
    widget = DictionaryObject()
    widget[_name("/Type")] = _name("/Annot")
    widget[_name("/Subtype")] = _name("/Widget")
    for key, value in entries.items():
        widget[_name(key)] = value
    return widget


def _rect(*coords: float) -> ArrayObject:
    return ArrayObject([FloatObject(c) for c in coords])


@pytest.fixture
def sample_form_pdf() -> bytes:
    """One-page PDF with a text field, a radio pair and a signature field."""
    writer = PdfWriter()
    page = writer.add_blank_page(width=612, height=792)

    radio_parent = DictionaryObject()
    radio_parent[_name("/FT")] = _name("/Btn")
    radio_parent[_name("/T")] = TextStringObject("choice")
    radio_parent[_name("/Ff")] = NumberObject(32768)
    radio_parent[_name("/V")] = _name("/yes")

    def radio_kid(state: str, x: float) -> DictionaryObject:
        appearance = DictionaryObject()
        normal = DictionaryObject()
        normal[_name(f"/{state}")] = NullObject()
        normal[_name("/Off")] = NullObject()
        appearance[_name("/N")] = normal
        return _widget({"/Parent": radio_parent, "/Rect": _rect(x, 600, x + 12, 612), "/AP": appearance})

    annots = ArrayObject(
        [
            _widget(
                {
                    "/FT": _name("/Tx"),
                    "/T": TextStringObject("full_name"),
                    "/Rect": _rect(50, 700, 300, 720),
                    "/Ff": NumberObject(2),
                    "/V": TextStringObject("Ada"),
                    "/MaxLen": NumberObject(40),
                    "/TU": TextStringObject("Your full name"),
                }
            ),
            radio_kid("yes", 50),
            radio_kid("no", 100),
            _widget(
                {
                    "/FT": _name("/Sig"),
                    "/T": TextStringObject("signature"),
                    "/Rect": _rect(50, 100, 300, 140),
                }
            ),
            _widget(
                {
                    "/FT": _name("/Btn"),
                    "/T": TextStringObject("submit_button"),
                    "/Rect": _rect(400, 50, 500, 80),
                    "/Ff": NumberObject(65536),
                }
            ),
        ]
    )
    page[_name("/Annots")] = annots

    buf = BytesIO()
    writer.write(buf)
    return buf.getvalue()
