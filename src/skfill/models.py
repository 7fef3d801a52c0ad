"""Core data models for SKFill guided form filling.

Everything the extraction, validation and wizard layers exchange is a
pydantic model. Raw annotation records come from the PDF engine and are
loosely typed; field descriptors are the normalized, typed view the rest
of the system works with.

Rectangles stay in PDF page space (bottom-left origin, unordered corners)
on the descriptors. Use :mod:`skfill.coords` to map them to viewport space.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel
from pydantic.json_schema import SkipJsonSchema


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class FieldType(str, Enum):
    """Normalized form field types."""

    TEXT = "text"
    EMAIL = "email"
    PHONE = "phone"
    DATE = "date"
    CHECKBOX = "checkbox"
    RADIO = "radio"
    DROPDOWN = "dropdown"
    SIGNATURE = "signature"


class RuleType(str, Enum):
    """Kinds of validation rules."""

    REQUIRED = "required"
    FORMAT = "format"
    LENGTH = "length"
    CUSTOM = "custom"


class WizardPhase(str, Enum):
    """Phases of the guided filling wizard."""

    START = "start"
    FILLING = "filling"
    SIGNING = "signing"
    COMPLETE = "complete"


class ButtonType(str, Enum):
    """What the wizard button does when clicked."""

    START = "start"
    NEXT = "next"
    SIGN = "sign"
    SUBMIT = "submit"


class ButtonColor(str, Enum):
    """Theme color of the wizard button."""

    PRIMARY = "primary"
    WARNING = "warning"
    SECONDARY = "secondary"
    SUCCESS = "success"


# ---------------------------------------------------------------------------
# Raw engine records
# ---------------------------------------------------------------------------

class RawAnnotation(BaseModel):
    """One widget annotation as reported by the PDF engine.

    Accepts both snake_case and the engine's camelCase keys
    (``fieldType``, ``fieldName``, ``fieldFlags``...). Unknown keys
    are ignored. The record is read, never written back.
    """

    field_type: Optional[str] = None
    field_name: Optional[str] = None
    rect: Optional[list[float]] = None
    field_flags: int = 0
    read_only: bool = False
    field_value: Any = None
    options: Optional[list[Any]] = None
    multi_line: bool = False
    max_len: Optional[int] = None
    check_box: bool = False
    radio_button: bool = False
    button_value: Optional[str] = None
    alternative_text: Optional[str] = None

    model_config = {
        "populate_by_name": True,
        "alias_generator": to_camel,
        "extra": "ignore",
    }

    @field_validator("rect")
    @classmethod
    def _four_corners(cls, v: Optional[list[float]]) -> Optional[list[float]]:
        if v is not None and len(v) != 4:
            raise ValueError(f"rect must have 4 coordinates, got {len(v)}")
        return v

    @field_validator("field_flags", mode="before")
    @classmethod
    def _flags_default(cls, v: Any) -> Any:
        return 0 if v is None else v

    @field_validator(
        "read_only", "multi_line", "check_box", "radio_button", mode="before"
    )
    @classmethod
    def _bool_default(cls, v: Any) -> Any:
        return False if v is None else v


# ---------------------------------------------------------------------------
# Field descriptors
# ---------------------------------------------------------------------------

class FieldValidation(BaseModel):
    """Declarative validation rule attached to a field."""

    pattern: Optional[str] = None
    message: Optional[str] = None


class ValidationRule(BaseModel):
    """A single rule evaluated by the validation engine.

    ``required`` rules replace the built-in "required" message, ``format``
    rules match ``pattern`` against the value and ``length`` rules cap it
    at ``limit`` characters. Custom rules carry a
    ``validator(value, field, all_fields) -> bool``; the callable is never
    serialized. Set ``when_empty`` for cross-field rules that must run even
    when the field itself has no value (for example a field that becomes
    required depending on another one).
    """

    rule_type: RuleType = Field(RuleType.CUSTOM, alias="type")
    message: str = "Invalid value"
    pattern: Optional[str] = None
    limit: Optional[int] = None
    validator: SkipJsonSchema[Optional[Callable[..., bool]]] = Field(None, exclude=True)
    when_empty: bool = False

    model_config = {"populate_by_name": True}


class FieldDescriptor(BaseModel):
    """A single normalized form field.

    Attributes:
        id: Stable identifier derived from the native field name.
        name: Human-readable label.
        field_type: Normalized type.
        required: Whether a value is needed before submission.
        read_only: Not user-editable; never penalized by validation.
        page_number: 1-indexed page the widget sits on.
        rect: ``[x1, y1, x2, y2]`` in page space, corners unordered.
        options: Choices for dropdown and radio fields.
        group_name: Shared logical choice for radio widgets.
        validation: Optional declarative pattern rule.
        rules: Extra rules, including custom cross-field validators.
        value: Value pre-filled in the PDF, if any.
        max_length: Maximum text length declared by the PDF.
        multiline: Multi-line text widget.
        placeholder: Hint text shown in an empty widget.
        button_value: Export value of a checkbox or radio widget.
        pages: Every page the field appears on (document index only).
    """

    id: str
    name: str
    field_type: FieldType = Field(FieldType.TEXT, alias="type")
    required: bool = False
    read_only: bool = False
    page_number: int = Field(1, ge=1)
    rect: list[float] = Field(default_factory=lambda: [0.0, 0.0, 0.0, 0.0])
    options: list[str] = Field(default_factory=list)
    group_name: Optional[str] = None
    validation: Optional[FieldValidation] = None
    rules: list[ValidationRule] = Field(default_factory=list)
    value: Any = None
    max_length: Optional[int] = None
    multiline: bool = False
    placeholder: Optional[str] = None
    button_value: Optional[str] = None
    pages: list[int] = Field(default_factory=list)

    model_config = {"populate_by_name": True}

    @property
    def is_signature(self) -> bool:
        return self.field_type == FieldType.SIGNATURE


class RadioGroup(BaseModel):
    """Radio widgets that share one logical choice."""

    group_name: str
    member_field_ids: list[str] = Field(default_factory=list)


class PageFields(BaseModel):
    """All fields extracted from one page."""

    page_number: int
    fields: list[FieldDescriptor] = Field(default_factory=list)
    radio_groups: list[RadioGroup] = Field(default_factory=list)


class FieldIndexEntry(BaseModel):
    """Document-wide summary of one field id."""

    field_type: FieldType = Field(alias="type")
    required: bool
    pages: list[int] = Field(default_factory=list)

    model_config = {"populate_by_name": True}


class ExtractionResult(BaseModel):
    """Whole-document extraction output.

    ``page_fields`` keeps document order for rendering; ``field_index``
    is keyed by field id in lexicographic order.
    """

    page_fields: list[PageFields] = Field(default_factory=list)
    field_index: dict[str, FieldIndexEntry] = Field(default_factory=dict)

    @property
    def field_ids(self) -> list[str]:
        return list(self.field_index)


class ViewportRect(BaseModel):
    """Axis-aligned rectangle in viewport space (top-left origin)."""

    x: float
    y: float
    width: float
    height: float


# ---------------------------------------------------------------------------
# Validation results
# ---------------------------------------------------------------------------

class ValidationResult(BaseModel):
    """Outcome of validating one field."""

    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    field_name: str = ""


class FieldError(BaseModel):
    """One error message attached to a field id."""

    field_id: str
    message: str


class FormValidationResult(BaseModel):
    """Outcome of validating a whole form."""

    is_valid: bool
    field_results: list[ValidationResult] = Field(default_factory=list)
    errors: list[FieldError] = Field(default_factory=list)
    missing_required: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Form and wizard state
# ---------------------------------------------------------------------------

class Tooltip(BaseModel):
    """Guidance bubble anchored to a field."""

    visible: bool = True
    message: str = ""
    field_id: Optional[str] = None


class WizardState(BaseModel):
    """Guided-navigation state.

    ``field_history`` is the trail of previously visited fields and never
    contains the current field. Outside wizard mode the phase is START.
    """

    is_wizard_mode: bool = False
    current_phase: WizardPhase = WizardPhase.START
    field_history: list[str] = Field(default_factory=list)
    highlighted_field_id: Optional[str] = None
    tooltip: Optional[Tooltip] = None


class FormState(BaseModel):
    """Complete snapshot of one form-filling session.

    Only :func:`skfill.wizard.transition` produces new snapshots; readers
    treat instances as immutable.
    """

    all_page_fields: list[PageFields] = Field(default_factory=list)
    required_fields: list[FieldDescriptor] = Field(default_factory=list)
    values: dict[str, Any] = Field(default_factory=dict)
    completed_field_ids: set[str] = Field(default_factory=set)
    validation_errors: dict[str, str] = Field(default_factory=dict)
    validation_result: Optional[FormValidationResult] = None
    current_field_id: Optional[str] = None
    current_page_number: int = 1
    wizard: WizardState = Field(default_factory=WizardState)
    is_submitting: bool = False
    is_submitted: bool = False
    submission_error: Optional[str] = None


class FormProgress(BaseModel):
    """Required-field completion summary."""

    completed: int = 0
    total: int = 0
    percentage: int = 0


class WizardButtonState(BaseModel):
    """Everything the UI needs to render the wizard button."""

    button_type: ButtonType = Field(alias="type")
    text: str
    color: ButtonColor
    disabled: bool = False

    model_config = {"populate_by_name": True}


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

class SessionRecord(BaseModel):
    """A stored form session: the snapshot plus bookkeeping."""

    session_id: str = Field(default_factory=lambda: uuid4().hex)
    title: str = ""
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    state: FormState = Field(default_factory=FormState)


class SubmissionRecord(BaseModel):
    """Values handed over by one successful submission."""

    session_id: str
    submitted_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    values: dict[str, Any] = Field(default_factory=dict)
