"""Turn one page of raw engine annotations into typed field descriptors.

The PDF engine reports every widget annotation as a loosely typed record.
This module maps those records onto :class:`FieldDescriptor`, groups radio
widgets, drops housekeeping fields and keeps going when a single record is
malformed. The output is deterministic: identical input always yields an
equal :class:`PageFields`, in source order.
"""

import hashlib
import logging
import re
from fnmatch import fnmatchcase
from typing import Any, Iterable, Optional

from pydantic import ValidationError

from .models import (
    FieldDescriptor,
    FieldType,
    PageFields,
    RadioGroup,
    RawAnnotation,
)

logger = logging.getLogger("skfill.normalizer")

# AcroForm field flag bits (PDF 32000-1, table 221/226/228).
FF_READ_ONLY = 1
FF_REQUIRED = 1 << 1
FF_MULTILINE = 1 << 12
FF_RADIO = 1 << 15
FF_PUSHBUTTON = 1 << 16

# Housekeeping fields some form generators embed. Glob patterns.
DEFAULT_DENYLIST: tuple[str, ...] = (
    "X_*",
    "dbTablename",
    "dbAction",
    "dbID",
    "zPaper",
    "kbup",
)

_FIELD_TYPE_MAP: dict[str, FieldType] = {
    "Tx": FieldType.TEXT,
    "text": FieldType.TEXT,
    "Ch": FieldType.DROPDOWN,
    "choice": FieldType.DROPDOWN,
    "Sig": FieldType.SIGNATURE,
    "signature": FieldType.SIGNATURE,
}

_BUTTON_CODES = {"Btn", "button"}

_OFF_VALUES = {"", "Off", "/Off", "false", "False"}

_WORD_RE = re.compile(r"[A-Z]?[a-z]+|[A-Z]+(?![a-z])|\d+")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def normalize_page(
    raw_annotations: Iterable[Any],
    page_number: int,
    denylist: Optional[Iterable[str]] = None,
    *,
    smart_detection: bool = True,
) -> PageFields:
    """Normalize one page's annotations.

    Args:
        raw_annotations: Engine records (mappings, objects or RawAnnotation).
        page_number: 1-indexed page the annotations belong to.
        denylist: Glob patterns of field names to drop entirely.
            Defaults to :data:`DEFAULT_DENYLIST`.
        smart_detection: Refine plain text fields into email/phone/date
            from their names.

    Returns:
        PageFields with fields in source order and radio groups layered
        on top of the flat list.
    """
    patterns = tuple(DEFAULT_DENYLIST if denylist is None else denylist)
    fields: list[FieldDescriptor] = []
    seen_ids: set[str] = set()

    for index, item in enumerate(raw_annotations):
        try:
            raw = _coerce(item)
        except ValidationError as exc:
            logger.warning(
                "Skipping malformed annotation #%d on page %d: %s",
                index,
                page_number,
                exc.errors()[0].get("msg", exc),
            )
            continue

        if not raw.field_type:
            logger.debug(
                "Skipping non-field annotation #%d on page %d", index, page_number
            )
            continue

        if raw.field_name and is_denied(raw.field_name, patterns):
            logger.debug("Skipping system field %s on page %d", raw.field_name, page_number)
            continue

        try:
            field = _build_field(raw, page_number, index, seen_ids, smart_detection)
        except (ValueError, TypeError, ValidationError) as exc:
            logger.warning(
                "Skipping annotation %r on page %d: %s",
                raw.field_name,
                page_number,
                exc,
            )
            continue

        seen_ids.add(field.id)
        fields.append(field)

    fields, groups = _group_radios(fields)

    logger.debug(
        "Page %d: %d fields (%d required), %d radio groups",
        page_number,
        len(fields),
        sum(1 for f in fields if f.required),
        len(groups),
    )
    return PageFields(page_number=page_number, fields=fields, radio_groups=groups)


def map_field_type(raw: RawAnnotation) -> FieldType:
    """Map the engine's field-type code to a :class:`FieldType`.

    Unknown codes fall back to TEXT so new annotation kinds still show up.
    """
    code = raw.field_type or ""
    if code in _BUTTON_CODES:
        is_radio = raw.radio_button or bool(raw.field_flags & FF_RADIO)
        if is_radio and not raw.check_box:
            return FieldType.RADIO
        return FieldType.CHECKBOX
    return _FIELD_TYPE_MAP.get(code, FieldType.TEXT)


def is_required(raw: RawAnnotation) -> bool:
    """Required flag bit, or a ``*`` or lowercase ``required`` marker in the name.

    The name marker can only add requiredness, never remove it.
    """
    if raw.field_flags & FF_REQUIRED:
        return True
    name = raw.field_name or ""
    return "*" in name or "required" in name


def is_denied(name: str, patterns: Iterable[str]) -> bool:
    return any(fnmatchcase(name, p) for p in patterns)


def slugify(name: str) -> str:
    """Readable slug of a native field name. Lossy; see :func:`field_key`."""
    return re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_") or "field"


def field_key(name: str) -> str:
    """Document-wide id for an exact native field name.

    Names that already are slugs are used as-is. Any other name gets its
    slug plus ``-`` and a short digest of the exact name, so two names that
    differ only in case or punctuation never share an id, while the same
    name on different pages always does. Slugs never contain ``-``.
    """
    slug = slugify(name)
    if slug == name:
        return slug
    return f"{slug}-{hashlib.sha1(name.encode('utf-8')).hexdigest()[:8]}"


def refine_text_type(name: str) -> FieldType:
    """Guess email/phone/date from a text field's name."""
    lower = name.lower()
    words = {w.lower() for w in _WORD_RE.findall(name)}
    if "email" in lower or "e-mail" in lower:
        return FieldType.EMAIL
    if "phone" in lower or "mobile" in lower or "tel" in words:
        return FieldType.PHONE
    if words & {"date", "dob"}:
        return FieldType.DATE
    return FieldType.TEXT


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _coerce(item: Any) -> RawAnnotation:
    if isinstance(item, RawAnnotation):
        return item
    return RawAnnotation.model_validate(item, from_attributes=True)


def _build_field(
    raw: RawAnnotation,
    page_number: int,
    index: int,
    seen_ids: set[str],
    smart_detection: bool,
) -> FieldDescriptor:
    field_type = map_field_type(raw)
    if smart_detection and field_type == FieldType.TEXT and raw.field_name:
        field_type = refine_text_type(raw.field_name)

    if raw.field_name:
        base_id = field_key(raw.field_name)
        if field_type == FieldType.RADIO and raw.button_value:
            base_id = f"{base_id}__{field_key(raw.button_value)}"
    else:
        base_id = f"field_p{page_number}_{index}"
    field_id = _unique(base_id, seen_ids)

    is_text = field_type in (
        FieldType.TEXT,
        FieldType.EMAIL,
        FieldType.PHONE,
        FieldType.DATE,
    )
    return FieldDescriptor(
        id=field_id,
        name=raw.field_name or field_id,
        field_type=field_type,
        required=is_required(raw),
        read_only=raw.read_only or bool(raw.field_flags & FF_READ_ONLY),
        page_number=page_number,
        rect=list(raw.rect) if raw.rect else [0.0, 0.0, 0.0, 0.0],
        options=_option_labels(raw.options) if field_type == FieldType.DROPDOWN else [],
        group_name=raw.field_name if field_type == FieldType.RADIO else None,
        value=_initial_value(raw.field_value, field_type),
        max_length=raw.max_len if is_text and raw.max_len else None,
        multiline=is_text and (raw.multi_line or bool(raw.field_flags & FF_MULTILINE)),
        placeholder=raw.alternative_text
        or ("Click to sign" if field_type == FieldType.SIGNATURE else None),
        button_value=raw.button_value
        if field_type in (FieldType.RADIO, FieldType.CHECKBOX)
        else None,
    )


def _unique(base_id: str, seen_ids: set[str]) -> str:
    if base_id not in seen_ids:
        return base_id
    n = 2
    while f"{base_id}__{n}" in seen_ids:
        n += 1
    return f"{base_id}__{n}"


def _option_labels(options: Optional[list[Any]]) -> list[str]:
    labels: list[str] = []
    for opt in options or []:
        if isinstance(opt, dict):
            label = opt.get("displayValue") or opt.get("exportValue")
        elif isinstance(opt, (list, tuple)) and opt:
            label = opt[-1]
        else:
            label = opt
        if label is not None:
            labels.append(str(label))
    return labels


def _initial_value(value: Any, field_type: FieldType) -> Any:
    if value is None:
        return None
    if field_type == FieldType.CHECKBOX:
        if isinstance(value, bool):
            return value
        return str(value) not in _OFF_VALUES
    if field_type == FieldType.RADIO:
        text = str(value)
        return None if text in _OFF_VALUES else text
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return str(value)


def _group_radios(
    fields: list[FieldDescriptor],
) -> tuple[list[FieldDescriptor], list[RadioGroup]]:
    members: dict[str, list[str]] = {}
    choices: dict[str, list[str]] = {}
    for f in fields:
        if f.field_type != FieldType.RADIO or not f.group_name:
            continue
        members.setdefault(f.group_name, []).append(f.id)
        if f.button_value and f.button_value not in choices.setdefault(f.group_name, []):
            choices[f.group_name].append(f.button_value)

    if not members:
        return fields, []

    grouped = [
        f.model_copy(update={"options": list(choices.get(f.group_name, []))})
        if f.field_type == FieldType.RADIO and f.group_name in members
        else f
        for f in fields
    ]
    groups = [
        RadioGroup(group_name=name, member_field_ids=ids)
        for name, ids in members.items()
    ]
    return grouped, groups
