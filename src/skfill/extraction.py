"""Whole-document field extraction.

Runs the normalizer once per page, tolerates pages that fail to load,
and folds the per-page results into a document-wide field index.
"""

import hashlib
import itertools
import json
import logging
from typing import Any, Iterable, Iterator, NamedTuple, Optional

from .models import (
    ExtractionResult,
    FieldDescriptor,
    FieldIndexEntry,
    FieldType,
    PageFields,
    RawAnnotation,
)
from .normalizer import normalize_page

logger = logging.getLogger("skfill.extraction")


def extract_document(
    pages: Iterable[Any],
    denylist: Optional[Iterable[str]] = None,
    *,
    smart_detection: bool = True,
) -> ExtractionResult:
    """Extract every page of a document.

    Args:
        pages: Page records, each a mapping with ``page_number`` and either
            ``raw_annotations`` (a list) or ``loader`` (a callable that
            returns the list and may raise).
        denylist: Field-name patterns to drop (normalizer default if None).
        smart_detection: Passed through to the normalizer.

    Returns:
        ExtractionResult with pages in document order. A page that fails
        to load or normalize contributes an empty PageFields.
    """
    page_fields: list[PageFields] = []
    for position, entry in enumerate(pages, start=1):
        page_number = int(entry.get("page_number") or entry.get("pageNumber") or position)
        try:
            loader = entry.get("loader")
            if loader is not None:
                raw = loader()
            else:
                raw = entry.get("raw_annotations") or entry.get("annotations") or []
            page = normalize_page(raw, page_number, denylist, smart_detection=smart_detection)
        except Exception as exc:
            logger.warning("Failed to extract page %d: %s", page_number, exc)
            page = PageFields(page_number=page_number)
        page_fields.append(page)

    result = ExtractionResult(
        page_fields=page_fields, field_index=build_field_index(page_fields)
    )
    logger.info(
        "Extracted %d fields from %d pages", len(result.field_index), len(page_fields)
    )
    return result


async def extract_document_async(
    source: Any,
    denylist: Optional[Iterable[str]] = None,
    *,
    smart_detection: bool = True,
) -> ExtractionResult:
    """Extract every page from an async annotation source.

    ``source`` follows :class:`skfill.sources.AnnotationSource`. Each page
    is awaited in turn; a failing page becomes an empty PageFields.
    """
    page_fields: list[PageFields] = []
    for page_number in range(1, source.page_count() + 1):
        try:
            raw = await source.aget_annotations(page_number)
            page = normalize_page(raw, page_number, denylist, smart_detection=smart_detection)
        except Exception as exc:
            logger.warning("Failed to extract page %d: %s", page_number, exc)
            page = PageFields(page_number=page_number)
        page_fields.append(page)

    return ExtractionResult(
        page_fields=page_fields, field_index=build_field_index(page_fields)
    )


def build_field_index(page_fields: Iterable[PageFields]) -> dict[str, FieldIndexEntry]:
    """Merge per-page fields into one entry per id.

    Repeats of the same id append their page. The first occurrence keeps
    its type and required flag. Keys come back sorted.
    """
    index: dict[str, FieldIndexEntry] = {}
    for page in page_fields:
        for field in page.fields:
            entry = index.get(field.id)
            if entry is None:
                index[field.id] = FieldIndexEntry(
                    field_type=field.field_type,
                    required=field.required,
                    pages=[page.page_number],
                )
                continue
            if (entry.field_type, entry.required) != (field.field_type, field.required):
                logger.debug(
                    "Field %s on page %d conflicts with first occurrence, keeping first",
                    field.id,
                    page.page_number,
                )
            if page.page_number not in entry.pages:
                entry.pages.append(page.page_number)
                entry.pages.sort()
    return {key: index[key] for key in sorted(index)}


# ---------------------------------------------------------------------------
# Page re-extraction
# ---------------------------------------------------------------------------

class PageTicket(NamedTuple):
    """Handle for one requested page extraction."""

    page_number: int
    serial: int


class PageExtractionTracker:
    """Apply only the most recently requested page extraction.

    Call :meth:`begin` when a page is requested and :meth:`complete` when
    its annotations arrive. Results for a request that was superseded by a
    later :meth:`begin` are discarded. Completing a page with the same raw
    annotations it was last extracted from returns the cached result.
    """

    def __init__(
        self,
        denylist: Optional[Iterable[str]] = None,
        smart_detection: bool = True,
    ) -> None:
        self._denylist = tuple(denylist) if denylist is not None else None
        self._smart_detection = smart_detection
        self._serials = itertools.count(1)
        self._current: Optional[PageTicket] = None
        self._cache: dict[int, tuple[str, PageFields]] = {}
        self.normalize_calls = 0

    @property
    def current_page(self) -> Optional[int]:
        return self._current.page_number if self._current else None

    def begin(self, page_number: int) -> PageTicket:
        ticket = PageTicket(page_number, next(self._serials))
        if self._current is not None:
            logger.debug(
                "Page %d request supersedes page %d",
                page_number,
                self._current.page_number,
            )
        self._current = ticket
        return ticket

    def complete(self, ticket: PageTicket, raw_annotations: list[Any]) -> Optional[PageFields]:
        """Finish a requested extraction.

        Returns:
            The page's fields, or None when the ticket is stale.
        """
        if ticket != self._current:
            logger.debug("Discarding stale extraction for page %d", ticket.page_number)
            return None

        fingerprint = _fingerprint(raw_annotations)
        cached = self._cache.get(ticket.page_number)
        if cached is not None and cached[0] == fingerprint:
            return cached[1]

        self.normalize_calls += 1
        page = normalize_page(
            raw_annotations,
            ticket.page_number,
            self._denylist,
            smart_detection=self._smart_detection,
        )
        self._cache[ticket.page_number] = (fingerprint, page)
        return page


def _fingerprint(raw_annotations: Iterable[Any]) -> str:
    items = [
        a.model_dump(by_alias=True) if isinstance(a, RawAnnotation) else a
        for a in raw_annotations
    ]
    payload = json.dumps(items, sort_keys=True, default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Queries over extracted pages
# ---------------------------------------------------------------------------

def iter_fields(page_fields: Iterable[PageFields]) -> Iterator[FieldDescriptor]:
    """Yield every field in document order."""
    for page in page_fields:
        yield from page.fields


def get_required_fields(page_fields: Iterable[PageFields]) -> list[FieldDescriptor]:
    """Required, editable fields in document order, one per id."""
    seen: set[str] = set()
    required: list[FieldDescriptor] = []
    for field in iter_fields(page_fields):
        if field.required and not field.read_only and field.id not in seen:
            seen.add(field.id)
            required.append(field)
    return required


def get_fields_by_type(
    page_fields: Iterable[PageFields], field_type: FieldType
) -> list[FieldDescriptor]:
    return [f for f in iter_fields(page_fields) if f.field_type == field_type]


def find_field_by_id(
    page_fields: Iterable[PageFields], field_id: str
) -> Optional[FieldDescriptor]:
    for field in iter_fields(page_fields):
        if field.id == field_id:
            return field
    return None
