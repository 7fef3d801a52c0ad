"""Annotation sources: where raw per-page widget records come from.

A source answers two questions: how many pages the document has, and
which widget annotations sit on a given page. Records are plain dicts
using the engine's camelCase keys so they feed straight into
:func:`skfill.normalizer.normalize_page`.

Directory of implementations::

    PypdfAnnotationSource   reads /Annots widgets from a real PDF (pypdf)
    JsonAnnotationSource    replays a JSON dump {"pages": [...]}
"""

import asyncio
import io
import json
import logging
from pathlib import Path
from typing import Any, Optional, Protocol, Union, runtime_checkable

from pypdf import PdfReader
from pypdf.generic import NameObject

logger = logging.getLogger("skfill.sources")

_OFF_STATES = {"/Off", "Off"}
_FF_RADIO = 1 << 15
_FF_PUSHBUTTON = 1 << 16
_FF_MULTILINE = 1 << 12
_FF_READ_ONLY = 1


@runtime_checkable
class AnnotationSource(Protocol):
    """Anything that can list widget annotations page by page."""

    def page_count(self) -> int: ...

    def get_annotations(self, page_number: int) -> list[dict[str, Any]]: ...

    async def aget_annotations(self, page_number: int) -> list[dict[str, Any]]: ...


class _ThreadedSource:
    """Async access for sources whose reads are blocking."""

    async def aget_annotations(self, page_number: int) -> list[dict[str, Any]]:
        return await asyncio.to_thread(self.get_annotations, page_number)

    def page_count(self) -> int:
        raise NotImplementedError

    def get_annotations(self, page_number: int) -> list[dict[str, Any]]:
        raise NotImplementedError

    def _check_page(self, page_number: int) -> None:
        if not 1 <= page_number <= self.page_count():
            raise IndexError(
                f"Page {page_number} out of range (1-{self.page_count()})"
            )


# ---------------------------------------------------------------------------
# JSON dump
# ---------------------------------------------------------------------------

class JsonAnnotationSource(_ThreadedSource):
    """Annotations replayed from a JSON document.

    Expected shape::

        {"pages": [{"page_number": 1, "annotations": [{...}, ...]}, ...]}

    Pages missing from the dump are treated as having no annotations.
    """

    def __init__(self, data: dict[str, Any]) -> None:
        self._pages: dict[int, list[dict[str, Any]]] = {}
        for position, page in enumerate(data.get("pages", []), start=1):
            number = int(page.get("page_number") or page.get("pageNumber") or position)
            self._pages[number] = list(page.get("annotations") or [])
        self._count = int(data.get("page_count") or max(self._pages, default=0))

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "JsonAnnotationSource":
        return cls(json.loads(Path(path).read_text(encoding="utf-8")))

    def page_count(self) -> int:
        return self._count

    def get_annotations(self, page_number: int) -> list[dict[str, Any]]:
        self._check_page(page_number)
        return [dict(a) for a in self._pages.get(page_number, [])]


# ---------------------------------------------------------------------------
# pypdf
# ---------------------------------------------------------------------------

class PypdfAnnotationSource(_ThreadedSource):
    """Widget annotations read from a PDF with pypdf.

    Field attributes (``/FT``, ``/Ff``, ``/V``, ``/Opt``...) are looked
    up on the widget first and then along its ``/Parent`` chain, since
    radio kids and split widgets keep them on the parent field.
    Push buttons are skipped; they carry no fillable value.
    """

    def __init__(self, reader: PdfReader) -> None:
        self.reader = reader

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "PypdfAnnotationSource":
        return cls(PdfReader(str(path)))

    @classmethod
    def from_bytes(cls, data: bytes) -> "PypdfAnnotationSource":
        return cls(PdfReader(io.BytesIO(data)))

    def page_count(self) -> int:
        return len(self.reader.pages)

    def get_annotations(self, page_number: int) -> list[dict[str, Any]]:
        self._check_page(page_number)
        page = self.reader.pages[page_number - 1]
        records: list[dict[str, Any]] = []
        for ref in page.get("/Annots") or []:
            annot = ref.get_object()
            if annot.get("/Subtype") != "/Widget":
                continue
            record = _widget_record(annot)
            if record is None:
                continue
            records.append(record)
        logger.debug("Page %d: %d widget annotations", page_number, len(records))
        return records


def _inherited(annot: Any, key: str) -> Any:
    node: Any = annot
    while node is not None:
        value = node.get(key)
        if value is not None:
            return value
        parent = node.get("/Parent")
        node = parent.get_object() if parent is not None else None
    return None


def _qualified_name(annot: Any) -> Optional[str]:
    parts: list[str] = []
    node: Any = annot
    while node is not None:
        title = node.get("/T")
        if title is not None:
            parts.append(str(title))
        parent = node.get("/Parent")
        node = parent.get_object() if parent is not None else None
    return ".".join(reversed(parts)) if parts else None


def _pdf_value(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, NameObject):
        return str(value)[1:]
    if isinstance(value, list):
        return [_pdf_value(v) for v in value]
    return str(value)


def _button_value(annot: Any) -> Optional[str]:
    appearance = annot.get("/AP")
    if appearance is None:
        return None
    normal = appearance.get_object().get("/N")
    if normal is None or not hasattr(normal, "keys"):
        return None
    for state in normal.get_object().keys():
        if state not in _OFF_STATES:
            return str(state).lstrip("/")
    return None


def _widget_record(annot: Any) -> Optional[dict[str, Any]]:
    field_type = _inherited(annot, "/FT")
    flags = int(_inherited(annot, "/Ff") or 0)
    code = str(field_type).lstrip("/") if field_type is not None else None

    if code == "Btn" and flags & _FF_PUSHBUTTON:
        logger.debug("Skipping push button %s", _qualified_name(annot))
        return None

    rect = annot.get("/Rect")
    is_radio = code == "Btn" and bool(flags & _FF_RADIO)
    max_len = _inherited(annot, "/MaxLen")
    tooltip = _inherited(annot, "/TU")

    return {
        "fieldType": code,
        "fieldName": _qualified_name(annot),
        "rect": [float(c) for c in rect] if rect is not None else None,
        "fieldFlags": flags,
        "readOnly": bool(flags & _FF_READ_ONLY),
        "fieldValue": _pdf_value(_inherited(annot, "/V")),
        "options": _pdf_value(_inherited(annot, "/Opt")),
        "multiLine": bool(flags & _FF_MULTILINE),
        "maxLen": int(max_len) if max_len is not None else None,
        "checkBox": code == "Btn" and not is_radio,
        "radioButton": is_radio,
        "buttonValue": _button_value(annot) if code == "Btn" else None,
        "alternativeText": str(tooltip) if tooltip is not None else None,
    }


def load_source(path: Union[str, Path]) -> AnnotationSource:
    """Open a PDF or a ``.json`` annotation dump."""
    path = Path(path)
    if path.suffix.lower() == ".json":
        return JsonAnnotationSource.from_path(path)
    return PypdfAnnotationSource.from_path(path)
