"""Field and form validation.

Each field type has a fixed rule table: a required check with a
type-specific message, then a format check for non-empty values. On top
of that a field may carry a declarative pattern, a maximum length,
dropdown options and extra :class:`ValidationRule` entries, including
custom cross-field validators.

Built-in results are memoized per field id. An entry is reused only
while the value and the field's own rule set stay the same. Custom
validators run on every call since they may read other fields.
"""

import json
import logging
import re
from collections import OrderedDict
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional

from pydantic import ValidationError

from .config import FormConfig
from .models import (
    FieldDescriptor,
    FieldError,
    FieldType,
    FormValidationResult,
    RuleType,
    ValidationResult,
)

logger = logging.getLogger("skfill.validation")

EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")
PHONE_RE = re.compile(r"^\+?[\d\s().\-]+$")
DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y")
MAX_PHONE_DIGITS = 15

INVALID_CONFIGURATION = "Invalid field configuration"
INVALID_FORMAT = "Invalid format"
INVALID_OPTION = "Selected value is not a valid option"

REQUIRED_MESSAGES: dict[FieldType, str] = {
    FieldType.TEXT: "This field is required",
    FieldType.EMAIL: "Email address is required",
    FieldType.PHONE: "Phone number is required",
    FieldType.DATE: "Date is required",
    FieldType.SIGNATURE: "Signature is required",
    FieldType.CHECKBOX: "Please select an option",
    FieldType.RADIO: "Please select an option",
    FieldType.DROPDOWN: "Please select an option",
}

FORMAT_MESSAGES: dict[FieldType, str] = {
    FieldType.EMAIL: "Please enter a valid email address",
    FieldType.PHONE: "Please enter a valid phone number",
    FieldType.DATE: "Please enter a valid date",
    FieldType.SIGNATURE: "Please provide a valid signature",
}


def is_empty(value: Any, field_type: FieldType = FieldType.TEXT) -> bool:
    """Whether ``value`` counts as "no answer" for a field of this type."""
    if value is None:
        return True
    if isinstance(value, str):
        if not value.strip():
            return True
        if field_type == FieldType.CHECKBOX:
            return value.strip().lower() in ("false", "off")
        return False
    if isinstance(value, bool):
        return value is False and field_type == FieldType.CHECKBOX
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


def is_valid_date(value: str) -> bool:
    text = value.strip()
    for fmt in DATE_FORMATS:
        try:
            datetime.strptime(text, fmt)
            return True
        except ValueError:
            continue
    return False


def _value_key(value: Any) -> str:
    return type(value).__name__ + ":" + json.dumps(value, sort_keys=True, default=str)


def _rules_fingerprint(field: FieldDescriptor) -> tuple:
    validation = field.validation
    return (
        field.field_type,
        field.required,
        validation.pattern if validation else None,
        validation.message if validation else None,
        field.max_length,
        tuple(field.options),
        tuple(
            (r.rule_type, r.message, r.pattern, r.limit)
            for r in field.rules
            if r.validator is None
        ),
    )


class ValidationEngine:
    """Validates single fields and whole forms.

    Args:
        config: Limits (phone digits, signature length) and cache size.
        format_checks: Run the built-in email/phone/date/signature format
            checks. Declarative patterns and custom rules always run.
    """

    def __init__(
        self,
        config: Optional[FormConfig] = None,
        *,
        format_checks: bool = True,
    ) -> None:
        self.config = config or FormConfig()
        self.format_checks = format_checks
        self._cache: "OrderedDict[str, tuple[tuple, list[str]]]" = OrderedDict()
        self._hits = 0
        self._misses = 0

    # ------------------------------------------------------------------
    # Single field
    # ------------------------------------------------------------------

    def validate_field(
        self,
        field: Any,
        value: Any,
        *,
        validate_required: bool = True,
        validate_format: bool = True,
        exclude_read_only: bool = True,
        all_fields: Optional[list[FieldDescriptor]] = None,
    ) -> ValidationResult:
        """Validate one value against one field.

        Args:
            field: A FieldDescriptor, or a mapping that can be parsed into one.
            value: The candidate value.
            validate_required: Apply the required check.
            validate_format: Apply format, length and option checks.
            exclude_read_only: Read-only fields always pass.
            all_fields: Every field with its current value, handed to
                custom validators.

        Returns:
            ValidationResult. Never raises for bad field objects; those
            produce an "Invalid field configuration" failure.
        """
        descriptor = self._coerce(field)
        if descriptor is None:
            return ValidationResult(
                is_valid=False,
                errors=[INVALID_CONFIGURATION],
                field_name=_best_effort_name(field),
            )

        if exclude_read_only and descriptor.read_only:
            return ValidationResult(is_valid=True, field_name=descriptor.name)

        key = (
            _value_key(value),
            _rules_fingerprint(descriptor),
            validate_required,
            validate_format,
            self.format_checks,
        )
        cached = self._cache.get(descriptor.id)
        if cached is not None and cached[0] == key:
            self._hits += 1
            self._cache.move_to_end(descriptor.id)
            errors = list(cached[1])
        else:
            self._misses += 1
            errors = self._builtin_errors(descriptor, value, validate_required, validate_format)
            self._remember(descriptor.id, key, errors)

        # A required-but-empty field reports only the required message.
        if not (errors and is_empty(value, descriptor.field_type)):
            errors.extend(self._custom_errors(descriptor, value, all_fields))

        return ValidationResult(
            is_valid=not errors, errors=errors, field_name=descriptor.name
        )

    # ------------------------------------------------------------------
    # Whole form
    # ------------------------------------------------------------------

    def validate_form(
        self,
        fields: Iterable[FieldDescriptor],
        values: Mapping[str, Any],
        **options: Any,
    ) -> FormValidationResult:
        """Validate every field against ``values``.

        Fields repeated across pages are validated once. A radio group
        reports its errors and its missing-required entry once, under the
        first button. Custom validators see every field with its current
        value filled in.
        """
        unique: dict[str, FieldDescriptor] = {}
        for field in fields:
            unique.setdefault(field.id, field)
        current = [
            f.model_copy(update={"value": values.get(f.id, f.value)})
            for f in unique.values()
        ]

        field_results: list[ValidationResult] = []
        errors: list[FieldError] = []
        missing: list[str] = []
        reported_groups: set[str] = set()
        for field in current:
            value = values.get(field.id)
            result = self.validate_field(field, value, all_fields=current, **options)
            field_results.append(result)
            if field.field_type == FieldType.RADIO and field.group_name:
                if field.group_name in reported_groups:
                    continue
                reported_groups.add(field.group_name)
            errors.extend(FieldError(field_id=field.id, message=m) for m in result.errors)
            if field.required and not field.read_only and is_empty(value, field.field_type):
                missing.append(field.id)

        is_valid = all(r.is_valid for r in field_results)
        logger.debug(
            "Validated %d fields: %d errors, %d missing required",
            len(field_results),
            len(errors),
            len(missing),
        )
        return FormValidationResult(
            is_valid=is_valid,
            field_results=field_results,
            errors=errors,
            missing_required=missing,
        )

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def clear_cache(self, field_id: Optional[str] = None) -> None:
        if field_id is None:
            self._cache.clear()
        else:
            self._cache.pop(field_id, None)

    def cache_stats(self) -> dict[str, int]:
        return {
            "size": len(self._cache),
            "max_size": self.config.validation_cache_size,
            "hits": self._hits,
            "misses": self._misses,
        }

    def _remember(self, field_id: str, key: tuple, errors: list[str]) -> None:
        limit = self.config.validation_cache_size
        if limit <= 0:
            return
        self._cache[field_id] = (key, list(errors))
        self._cache.move_to_end(field_id)
        while len(self._cache) > limit:
            self._cache.popitem(last=False)

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    @staticmethod
    def _coerce(field: Any) -> Optional[FieldDescriptor]:
        if isinstance(field, FieldDescriptor):
            return field
        try:
            return FieldDescriptor.model_validate(field)
        except (ValidationError, TypeError, ValueError) as exc:
            logger.warning("Invalid field configuration: %s", exc)
            return None

    def _builtin_errors(
        self,
        field: FieldDescriptor,
        value: Any,
        validate_required: bool,
        validate_format: bool,
    ) -> list[str]:
        if is_empty(value, field.field_type):
            if not validate_required:
                return []
            for rule in field.rules:
                if rule.rule_type == RuleType.REQUIRED:
                    return [rule.message]
            if field.required:
                return [REQUIRED_MESSAGES.get(field.field_type, REQUIRED_MESSAGES[FieldType.TEXT])]
            return []

        if not validate_format:
            return []

        errors: list[str] = []
        if self.format_checks:
            message = self._format_error(field.field_type, value)
            if message:
                errors.append(message)

        text = value if isinstance(value, str) else str(value)
        if field.max_length and len(text) > field.max_length:
            errors.append(f"Text exceeds maximum length of {field.max_length} characters")

        if field.field_type == FieldType.DROPDOWN and field.options:
            chosen = value if isinstance(value, (list, tuple)) else [value]
            if any(str(v) not in field.options for v in chosen):
                errors.append(INVALID_OPTION)

        if field.validation and field.validation.pattern:
            message = _pattern_error(
                field.validation.pattern, text, field.validation.message or INVALID_FORMAT
            )
            if message:
                errors.append(message)

        for rule in field.rules:
            if rule.rule_type == RuleType.FORMAT and rule.pattern:
                message = _pattern_error(rule.pattern, text, rule.message)
                if message:
                    errors.append(message)
            elif rule.rule_type == RuleType.LENGTH and rule.limit is not None:
                if len(text) > rule.limit:
                    errors.append(rule.message)
        return errors

    def _format_error(self, field_type: FieldType, value: Any) -> Optional[str]:
        text = str(value).strip()
        if field_type == FieldType.EMAIL:
            ok = bool(EMAIL_RE.match(text))
        elif field_type == FieldType.PHONE:
            digits = sum(c.isdigit() for c in text)
            ok = (
                bool(PHONE_RE.match(text))
                and self.config.min_phone_digits <= digits <= MAX_PHONE_DIGITS
            )
        elif field_type == FieldType.DATE:
            ok = is_valid_date(text)
        elif field_type == FieldType.SIGNATURE:
            ok = (
                isinstance(value, str)
                and value.startswith("data:image/")
                and len(value) > self.config.signature_min_length
            )
        else:
            return None
        return None if ok else FORMAT_MESSAGES[field_type]

    @staticmethod
    def _custom_errors(
        field: FieldDescriptor,
        value: Any,
        all_fields: Optional[list[FieldDescriptor]],
    ) -> list[str]:
        errors: list[str] = []
        empty = is_empty(value, field.field_type)
        for rule in field.rules:
            if rule.validator is None:
                continue
            if empty and not rule.when_empty:
                continue
            try:
                ok = bool(rule.validator(value, field, all_fields or []))
            except Exception as exc:
                logger.warning("Custom rule on field %s raised: %s", field.id, exc)
                ok = False
            if not ok:
                errors.append(rule.message)
        return errors


def _pattern_error(pattern: str, text: str, message: str) -> Optional[str]:
    try:
        matched = re.search(pattern, text) is not None
    except re.error as exc:
        logger.warning("Bad validation pattern %r: %s", pattern, exc)
        return INVALID_CONFIGURATION
    return None if matched else message


def _best_effort_name(field: Any) -> str:
    if isinstance(field, Mapping):
        name = field.get("name") or field.get("id")
    else:
        name = getattr(field, "name", None) or getattr(field, "id", None)
    return str(name) if name else ""
