"""Form and wizard state machine.

All state lives in an immutable :class:`FormState` snapshot. The only way
to change it is :func:`transition`, a pure function of the current
snapshot and one command object. :class:`FormSession` wraps that function
with the command API a UI talks to, plus the read-only queries derived
from state (button state, progress, next field).

Wizard phases move ``start -> filling -> signing -> complete``. Only
``StartWizard`` leaves ``start``. The later phases follow from which
required fields have values, so they are recomputed after every command
rather than pushed by callers.
"""

import functools
import inspect
import logging
import uuid
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from pydantic import BaseModel, Field

from .config import FeatureFlagService, FormConfig
from .errors import UnknownFieldError
from .extraction import extract_document, extract_document_async, get_required_fields
from .models import (
    ButtonColor,
    ButtonType,
    ExtractionResult,
    FieldDescriptor,
    FieldType,
    FormProgress,
    FormState,
    FormValidationResult,
    PageFields,
    Tooltip,
    ValidationResult,
    WizardButtonState,
    WizardPhase,
    WizardState,
)
from .validation import ValidationEngine, is_empty

logger = logging.getLogger("skfill.wizard")

VALIDATION_FAILED_MESSAGE = (
    "Form validation failed. Please correct the errors and try again."
)

# Points of vertical slack within which two widgets share a row.
ROW_THRESHOLD = 10.0

SubmitHandler = Callable[[dict[str, Any]], Union[Awaitable[None], None]]


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

class Command(BaseModel):
    """Base for every state machine command."""

    model_config = {"frozen": True}


class SetFormFields(Command):
    page_fields: list[PageFields]


class SetFieldValue(Command):
    field_id: str
    value: Any = None


class SetCurrentField(Command):
    field_id: Optional[str] = None


class SetCurrentPage(Command):
    page_number: int = Field(ge=1)


class MarkFieldCompleted(Command):
    field_id: str


class MarkFieldIncomplete(Command):
    field_id: str


class SetValidationResult(Command):
    result: FormValidationResult


class SetValidationErrors(Command):
    """Merge per-field error messages into ``validation_errors``."""

    errors: dict[str, str]


class ClearValidationErrors(Command):
    """Clear one field's error, or all of them when ``field_id`` is None."""

    field_id: Optional[str] = None


class StartWizard(Command):
    pass


class StopWizard(Command):
    pass


class ToggleWizard(Command):
    pass


class NavigateToField(Command):
    field_id: str


class NavigateBack(Command):
    pass


class ShowTooltip(Command):
    field_id: Optional[str] = None
    message: str


class HideTooltip(Command):
    pass


class SubmitStarted(Command):
    pass


class SubmitSucceeded(Command):
    pass


class SubmitFailed(Command):
    error: str


class SubmitFinished(Command):
    pass


class ResetForm(Command):
    pass


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def iter_unique_fields(page_fields: Iterable[PageFields]) -> list[FieldDescriptor]:
    """Every field once, first occurrence in document order."""
    seen: dict[str, FieldDescriptor] = {}
    for page in page_fields:
        for field in page.fields:
            seen.setdefault(field.id, field)
    return list(seen.values())


def lookup_field(state: FormState, field_id: Optional[str]) -> Optional[FieldDescriptor]:
    if field_id is None:
        return None
    for page in state.all_page_fields:
        for field in page.fields:
            if field.id == field_id:
                return field
    return None


def has_value(field: FieldDescriptor, value: Any) -> bool:
    return not is_empty(value, field.field_type)


def _compare_position(a: FieldDescriptor, b: FieldDescriptor) -> int:
    if a.page_number != b.page_number:
        return a.page_number - b.page_number
    a_top = max(a.rect[1], a.rect[3])
    b_top = max(b.rect[1], b.rect[3])
    # PDF y grows upwards, so the higher top comes first.
    if abs(a_top - b_top) > ROW_THRESHOLD:
        return -1 if a_top > b_top else 1
    a_left = min(a.rect[0], a.rect[2])
    b_left = min(b.rect[0], b.rect[2])
    return (a_left > b_left) - (a_left < b_left)


def sort_fields_by_position(fields: Iterable[FieldDescriptor]) -> list[FieldDescriptor]:
    """Fields in reading order.

    Page first, then top to bottom, then left to right. Widgets whose tops
    are within :data:`ROW_THRESHOLD` points count as one row. Returns a
    new list; ties keep their input order.
    """
    return sorted(fields, key=functools.cmp_to_key(_compare_position))


def guidance_message(
    phase: Optional[WizardPhase],
    progress: FormProgress,
    signatures_left: int = 0,
    is_submitted: bool = False,
) -> str:
    """One-line status shown beside the wizard button.

    Args:
        phase: Current wizard phase, or None when unknown.
        progress: Required-field progress.
        signatures_left: Required signature fields still empty.
        is_submitted: Whether the form has been submitted.
    """
    if progress.total == 0:
        return "This PDF doesn't contain any required form fields."
    if phase == WizardPhase.START:
        noun = "field" if progress.total == 1 else "fields"
        return f"Ready to begin! This form has {progress.total} required {noun} to complete."
    if phase == WizardPhase.FILLING:
        remaining = progress.total - progress.completed
        return (
            f"{progress.completed} of {progress.total} required fields completed. "
            f"{remaining} remaining."
        )
    if phase == WizardPhase.SIGNING:
        noun = "field" if signatures_left == 1 else "fields"
        return f"Required fields complete! Now sign {signatures_left} signature {noun}."
    if phase == WizardPhase.COMPLETE:
        if is_submitted:
            return "Form completed successfully!"
        return "All required fields and signatures complete! Ready to submit."
    return f"Form progress: {progress.percentage}% complete."


def tooltip_message_for(field: FieldDescriptor) -> str:
    """Guidance text shown next to a highlighted field."""
    if field.is_signature:
        return "Click to add your signature"
    if field.required:
        return f"Required: {field.name}"
    return f"Optional: {field.name}"


def derive_phase(
    is_wizard_mode: bool,
    required_fields: list[FieldDescriptor],
    values: dict[str, Any],
) -> WizardPhase:
    """Wizard phase implied by which required fields have values."""
    if not is_wizard_mode:
        return WizardPhase.START
    plain = [f for f in required_fields if not f.is_signature]
    signatures = [f for f in required_fields if f.is_signature]
    if not all(has_value(f, values.get(f.id)) for f in plain):
        return WizardPhase.FILLING
    if not all(has_value(f, values.get(f.id)) for f in signatures):
        return WizardPhase.SIGNING
    return WizardPhase.COMPLETE


_BUTTONS: dict[WizardPhase, tuple[ButtonType, str, ButtonColor]] = {
    WizardPhase.START: (ButtonType.START, "Start", ButtonColor.PRIMARY),
    WizardPhase.FILLING: (ButtonType.NEXT, "Next", ButtonColor.WARNING),
    WizardPhase.SIGNING: (ButtonType.SIGN, "Sign", ButtonColor.SECONDARY),
    WizardPhase.COMPLETE: (ButtonType.SUBMIT, "Submit", ButtonColor.SUCCESS),
}


def wizard_button_state(
    is_wizard_mode: bool,
    required_fields: list[FieldDescriptor],
    values: dict[str, Any],
    is_submitting: bool,
    is_submitted: bool = False,
) -> WizardButtonState:
    """Type, label, color and enabled state of the wizard button."""
    phase = derive_phase(is_wizard_mode, required_fields, values)
    button_type, text, color = _BUTTONS[phase]
    disabled = is_submitting or (button_type == ButtonType.SUBMIT and is_submitted)
    return WizardButtonState(
        button_type=button_type, text=text, color=color, disabled=disabled
    )


# ---------------------------------------------------------------------------
# Transition function
# ---------------------------------------------------------------------------

_Handler = Callable[[FormState, Any], FormState]
_HANDLERS: dict[type, _Handler] = {}


def _handles(command_type: type) -> Callable[[_Handler], _Handler]:
    def register(fn: _Handler) -> _Handler:
        _HANDLERS[command_type] = fn
        return fn

    return register


def transition(state: FormState, command: Command) -> FormState:
    """Apply one command and return the next snapshot.

    ``state`` is left untouched. Field ids that are not part of the form
    are accepted here; :class:`FormSession` rejects them before dispatch.

    Raises:
        TypeError: If ``command`` is not a known command type.
    """
    handler = _HANDLERS.get(type(command))
    if handler is None:
        raise TypeError(f"Unknown command: {type(command).__name__}")
    new_state = handler(state, command)
    if new_state.wizard.is_wizard_mode:
        phase = derive_phase(True, new_state.required_fields, new_state.values)
        if phase != new_state.wizard.current_phase:
            logger.debug(
                "Wizard phase %s -> %s",
                new_state.wizard.current_phase.value,
                phase.value,
            )
            new_state = _with_wizard(new_state, current_phase=phase)
    return new_state


def _with_wizard(state: FormState, **changes: Any) -> FormState:
    return state.model_copy(update={"wizard": state.wizard.model_copy(update=changes)})


def _focus_updates(state: FormState, field_id: Optional[str]) -> dict[str, Any]:
    """Page switch and tooltip that follow the current field."""
    field = lookup_field(state, field_id)
    updates: dict[str, Any] = {"highlighted_field_id": field_id, "tooltip": None}
    if field is not None and state.wizard.is_wizard_mode:
        updates["tooltip"] = Tooltip(
            visible=True, message=tooltip_message_for(field), field_id=field.id
        )
    return updates


@_handles(SetFormFields)
def _set_form_fields(state: FormState, cmd: SetFormFields) -> FormState:
    values = dict(state.values)
    completed = set(state.completed_field_ids)
    for field in iter_unique_fields(cmd.page_fields):
        if field.id not in values and field.value is not None:
            values[field.id] = field.value
            if has_value(field, field.value):
                completed.add(field.id)
    return state.model_copy(
        update={
            "all_page_fields": list(cmd.page_fields),
            "required_fields": get_required_fields(cmd.page_fields),
            "values": values,
            "completed_field_ids": completed,
        }
    )


@_handles(SetFieldValue)
def _set_field_value(state: FormState, cmd: SetFieldValue) -> FormState:
    field = lookup_field(state, cmd.field_id)
    targets: list[tuple[str, Optional[FieldDescriptor]]] = [(cmd.field_id, field)]
    if field is not None and field.field_type == FieldType.RADIO and field.group_name:
        # One choice per group: every widget of the group carries the value.
        targets = [
            (f.id, f)
            for f in iter_unique_fields(state.all_page_fields)
            if f.field_type == FieldType.RADIO and f.group_name == field.group_name
        ]

    values = dict(state.values)
    errors = dict(state.validation_errors)
    completed = set(state.completed_field_ids)
    for field_id, target in targets:
        values[field_id] = cmd.value
        errors.pop(field_id, None)
        field_type = target.field_type if target is not None else FieldType.TEXT
        if is_empty(cmd.value, field_type):
            completed.discard(field_id)
        else:
            completed.add(field_id)
    return state.model_copy(
        update={
            "values": values,
            "validation_errors": errors,
            "completed_field_ids": completed,
        }
    )


@_handles(SetCurrentField)
def _set_current_field(state: FormState, cmd: SetCurrentField) -> FormState:
    history = [h for h in state.wizard.field_history if h != cmd.field_id]
    updates: dict[str, Any] = {"current_field_id": cmd.field_id}
    field = lookup_field(state, cmd.field_id)
    if field is not None:
        updates["current_page_number"] = field.page_number
    new_state = state.model_copy(update=updates)
    return _with_wizard(new_state, field_history=history)


@_handles(SetCurrentPage)
def _set_current_page(state: FormState, cmd: SetCurrentPage) -> FormState:
    return state.model_copy(update={"current_page_number": cmd.page_number})


@_handles(MarkFieldCompleted)
def _mark_completed(state: FormState, cmd: MarkFieldCompleted) -> FormState:
    return state.model_copy(
        update={"completed_field_ids": state.completed_field_ids | {cmd.field_id}}
    )


@_handles(MarkFieldIncomplete)
def _mark_incomplete(state: FormState, cmd: MarkFieldIncomplete) -> FormState:
    return state.model_copy(
        update={"completed_field_ids": state.completed_field_ids - {cmd.field_id}}
    )


@_handles(SetValidationResult)
def _set_validation_result(state: FormState, cmd: SetValidationResult) -> FormState:
    errors: dict[str, str] = {}
    for error in cmd.result.errors:
        errors.setdefault(error.field_id, error.message)
    return state.model_copy(
        update={"validation_result": cmd.result, "validation_errors": errors}
    )


@_handles(SetValidationErrors)
def _set_validation_errors(state: FormState, cmd: SetValidationErrors) -> FormState:
    return state.model_copy(
        update={"validation_errors": {**state.validation_errors, **cmd.errors}}
    )


@_handles(ClearValidationErrors)
def _clear_validation_errors(state: FormState, cmd: ClearValidationErrors) -> FormState:
    if cmd.field_id is None:
        return state.model_copy(update={"validation_errors": {}})
    errors = dict(state.validation_errors)
    errors.pop(cmd.field_id, None)
    return state.model_copy(update={"validation_errors": errors})


@_handles(StartWizard)
def _start_wizard(state: FormState, cmd: StartWizard) -> FormState:
    if state.wizard.is_wizard_mode:
        return state
    return _with_wizard(state, is_wizard_mode=True, current_phase=WizardPhase.FILLING)


@_handles(StopWizard)
def _stop_wizard(state: FormState, cmd: StopWizard) -> FormState:
    return state.model_copy(update={"wizard": WizardState()})


@_handles(ToggleWizard)
def _toggle_wizard(state: FormState, cmd: ToggleWizard) -> FormState:
    if state.wizard.is_wizard_mode:
        return _stop_wizard(state, StopWizard())
    return _start_wizard(state, StartWizard())


@_handles(NavigateToField)
def _navigate_to_field(state: FormState, cmd: NavigateToField) -> FormState:
    previous = state.current_field_id
    history = [h for h in state.wizard.field_history if h != cmd.field_id]
    if previous is not None and previous != cmd.field_id:
        history.append(previous)

    updates: dict[str, Any] = {"current_field_id": cmd.field_id}
    field = lookup_field(state, cmd.field_id)
    if field is not None:
        updates["current_page_number"] = field.page_number
    new_state = state.model_copy(update=updates)
    return _with_wizard(
        new_state, field_history=history, **_focus_updates(state, cmd.field_id)
    )


@_handles(NavigateBack)
def _navigate_back(state: FormState, cmd: NavigateBack) -> FormState:
    history = list(state.wizard.field_history)
    if not history:
        if state.current_field_id is None:
            return state
        new_state = state.model_copy(update={"current_field_id": None})
        return _with_wizard(new_state, highlighted_field_id=None, tooltip=None)

    target = history.pop()
    updates: dict[str, Any] = {"current_field_id": target}
    field = lookup_field(state, target)
    if field is not None:
        updates["current_page_number"] = field.page_number
    new_state = state.model_copy(update=updates)
    return _with_wizard(new_state, field_history=history, **_focus_updates(state, target))


@_handles(ShowTooltip)
def _show_tooltip(state: FormState, cmd: ShowTooltip) -> FormState:
    return _with_wizard(
        state,
        tooltip=Tooltip(visible=True, message=cmd.message, field_id=cmd.field_id),
    )


@_handles(HideTooltip)
def _hide_tooltip(state: FormState, cmd: HideTooltip) -> FormState:
    return _with_wizard(state, tooltip=None)


@_handles(SubmitStarted)
def _submit_started(state: FormState, cmd: SubmitStarted) -> FormState:
    return state.model_copy(update={"is_submitting": True, "submission_error": None})


@_handles(SubmitSucceeded)
def _submit_succeeded(state: FormState, cmd: SubmitSucceeded) -> FormState:
    return state.model_copy(update={"is_submitted": True, "submission_error": None})


@_handles(SubmitFailed)
def _submit_failed(state: FormState, cmd: SubmitFailed) -> FormState:
    return state.model_copy(update={"is_submitted": False, "submission_error": cmd.error})


@_handles(SubmitFinished)
def _submit_finished(state: FormState, cmd: SubmitFinished) -> FormState:
    return state.model_copy(update={"is_submitting": False})


@_handles(ResetForm)
def _reset_form(state: FormState, cmd: ResetForm) -> FormState:
    return FormState(
        all_page_fields=state.all_page_fields,
        required_fields=state.required_fields,
    )


# ---------------------------------------------------------------------------
# Session facade
# ---------------------------------------------------------------------------

class FormSession:
    """One user's form-filling session.

    Holds the current snapshot and exposes the command API. Commands that
    name a field id check it against the loaded fields first.

    Args:
        on_submit: Called with a copy of the values once the form passes
            validation. May be a coroutine function. Raising marks the
            submission as failed with the exception's message.
        engine: Validation engine (built from ``config`` and ``flags`` if None).
        flags: Feature flags. Defaults apply until ``flags.init()``.
        config: Tunables shared with extraction and validation.
        state: Snapshot to resume from.
        session_id: Stable id used by the store and HTTP layer.
    """

    def __init__(
        self,
        on_submit: Optional[SubmitHandler] = None,
        *,
        engine: Optional[ValidationEngine] = None,
        flags: Optional[FeatureFlagService] = None,
        config: Optional[FormConfig] = None,
        state: Optional[FormState] = None,
        session_id: Optional[str] = None,
    ) -> None:
        self.config = config or FormConfig()
        self.flags = flags or FeatureFlagService()
        self.engine = engine or ValidationEngine(
            self.config,
            format_checks=self.flags.is_enabled("ENHANCED_FIELD_VALIDATION"),
        )
        self.on_submit = on_submit
        self.state = state or FormState()
        self.session_id = session_id or uuid.uuid4().hex

    def dispatch(self, command: Command) -> FormState:
        self.state = transition(self.state, command)
        return self.state

    # ------------------------------------------------------------------
    # Loading fields
    # ------------------------------------------------------------------

    def load_pages(self, pages: Iterable[Any]) -> ExtractionResult:
        """Extract ``pages`` and install the resulting fields."""
        result = extract_document(
            pages,
            self.config.denylist,
            smart_detection=self.flags.is_enabled("SMART_FIELD_DETECTION"),
        )
        self.set_form_fields(result.page_fields)
        return result

    async def load_source(self, source: Any) -> ExtractionResult:
        """Extract every page of an annotation source and install the fields."""
        result = await extract_document_async(
            source,
            self.config.denylist,
            smart_detection=self.flags.is_enabled("SMART_FIELD_DETECTION"),
        )
        self.set_form_fields(result.page_fields)
        return result

    def set_form_fields(self, page_fields: list[PageFields]) -> FormState:
        self.engine.clear_cache()
        state = self.dispatch(SetFormFields(page_fields=page_fields))
        logger.info(
            "Session %s: %d fields, %d required",
            self.session_id[:8],
            len(self.all_fields),
            len(state.required_fields),
        )
        return state

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def set_field_value(self, field_id: str, value: Any) -> FormState:
        self._require_field(field_id)
        return self.dispatch(SetFieldValue(field_id=field_id, value=value))

    def set_current_field(self, field_id: Optional[str]) -> FormState:
        if field_id is not None:
            self._require_field(field_id)
        return self.dispatch(SetCurrentField(field_id=field_id))

    def set_current_page(self, page_number: int) -> FormState:
        return self.dispatch(SetCurrentPage(page_number=page_number))

    def mark_field_completed(self, field_id: str) -> FormState:
        self._require_field(field_id)
        return self.dispatch(MarkFieldCompleted(field_id=field_id))

    def mark_field_incomplete(self, field_id: str) -> FormState:
        self._require_field(field_id)
        return self.dispatch(MarkFieldIncomplete(field_id=field_id))

    def set_validation_result(self, result: FormValidationResult) -> FormState:
        return self.dispatch(SetValidationResult(result=result))

    def clear_validation_errors(self, field_id: Optional[str] = None) -> FormState:
        return self.dispatch(ClearValidationErrors(field_id=field_id))

    def start_wizard(self) -> FormState:
        logger.info("Session %s: wizard started", self.session_id[:8])
        return self.dispatch(StartWizard())

    def stop_wizard(self) -> FormState:
        logger.info("Session %s: wizard stopped", self.session_id[:8])
        return self.dispatch(StopWizard())

    def toggle_wizard(self) -> FormState:
        return self.dispatch(ToggleWizard())

    def navigate_to_field(self, field_id: str) -> FormState:
        self._require_field(field_id)
        return self.dispatch(NavigateToField(field_id=field_id))

    def navigate_back(self) -> FormState:
        return self.dispatch(NavigateBack())

    def show_tooltip(self, field_id: str, message: Optional[str] = None) -> FormState:
        field = self._require_field(field_id)
        return self.dispatch(
            ShowTooltip(field_id=field_id, message=message or tooltip_message_for(field))
        )

    def hide_tooltip(self) -> FormState:
        return self.dispatch(HideTooltip())

    def reset_form(self) -> FormState:
        logger.info("Session %s: form reset", self.session_id[:8])
        self.engine.clear_cache()
        return self.dispatch(ResetForm())

    async def submit_form(self) -> bool:
        """Validate and hand the values to ``on_submit``.

        Returns:
            True when the handler completed. False when the form was
            invalid, the handler raised, or a submission was already
            running (in which case nothing happens).
        """
        if self.state.is_submitting:
            logger.warning(
                "Session %s: submission already in progress, ignoring",
                self.session_id[:8],
            )
            return False

        self.dispatch(SubmitStarted())
        try:
            result = self.validate_form()
            self.dispatch(SetValidationResult(result=result))
            if not result.is_valid:
                logger.info(
                    "Session %s: submission blocked, %d errors",
                    self.session_id[:8],
                    len(result.errors),
                )
                self.dispatch(SubmitFailed(error=VALIDATION_FAILED_MESSAGE))
                return False

            if self.on_submit is not None:
                outcome = self.on_submit(dict(self.state.values))
                if inspect.isawaitable(outcome):
                    await outcome
            self.dispatch(SubmitSucceeded())
            logger.info("Session %s: submitted", self.session_id[:8])
            return True
        except Exception as exc:
            logger.warning("Session %s: submission failed: %s", self.session_id[:8], exc)
            self.dispatch(SubmitFailed(error=str(exc)))
            return False
        finally:
            self.dispatch(SubmitFinished())

    async def handle_wizard_button_click(self) -> FormState:
        """Do whatever the wizard button currently offers."""
        button = self.get_wizard_button_state()
        if button.disabled:
            return self.state

        if button.button_type == ButtonType.SUBMIT:
            await self.submit_form()
            return self.state
        if button.button_type == ButtonType.START:
            self.start_wizard()

        phase = self.current_phase
        target = None
        if phase in (WizardPhase.FILLING, WizardPhase.SIGNING):
            target = self._next_unfilled(signatures=phase == WizardPhase.SIGNING)
        if target is not None:
            self.navigate_to_field(target.id)
        return self.state

        if target is not None:
            self.navigate_to_field(target.id)
        return self.state

    # ------------------------------------------------------------------
    # Field events
    # ------------------------------------------------------------------

    def on_field_focus(self, field_id: str) -> FormState:
        field = self._require_field(field_id)
        self.dispatch(SetCurrentField(field_id=field_id))
        if self.state.wizard.is_wizard_mode:
            self.dispatch(ShowTooltip(field_id=field_id, message=tooltip_message_for(field)))
        return self.state

    def on_field_change(self, field_id: str, value: Any) -> FormState:
        return self.set_field_value(field_id, value)

    def on_field_blur(self, field_id: str) -> ValidationResult:
        """Validate the field that lost focus and record its first error."""
        result = self.validate_field(field_id)
        if result.errors:
            self.dispatch(SetValidationErrors(errors={field_id: result.errors[0]}))
        else:
            self.dispatch(ClearValidationErrors(field_id=field_id))
        return result

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def all_fields(self) -> list[FieldDescriptor]:
        return iter_unique_fields(self.state.all_page_fields)

    @property
    def current_phase(self) -> WizardPhase:
        s = self.state
        return derive_phase(s.wizard.is_wizard_mode, s.required_fields, s.values)

    def get_wizard_button_state(self) -> WizardButtonState:
        s = self.state
        return wizard_button_state(
            s.wizard.is_wizard_mode,
            s.required_fields,
            s.values,
            s.is_submitting,
            s.is_submitted,
        )

    def get_form_progress(self) -> FormProgress:
        required_ids = {f.id for f in self.state.required_fields}
        total = len(required_ids)
        completed = len(required_ids & self.state.completed_field_ids)
        percentage = round(100 * completed / total) if total else 0
        return FormProgress(completed=completed, total=total, percentage=percentage)

    def get_next_required_field(self) -> Optional[FieldDescriptor]:
        for field in sort_fields_by_position(self.state.required_fields):
            if field.id not in self.state.completed_field_ids:
                return field
        return None

    def get_next_incomplete_field(self) -> Optional[FieldDescriptor]:
        for field in sort_fields_by_position(self.all_fields):
            if field.read_only:
                continue
            if field.id not in self.state.completed_field_ids:
                return field
        return None

    def get_guidance_message(self) -> str:
        values = self.state.values
        signatures_left = sum(
            1
            for f in self.state.required_fields
            if f.is_signature and not has_value(f, values.get(f.id))
        )
        return guidance_message(
            self.current_phase,
            self.get_form_progress(),
            signatures_left,
            self.state.is_submitted,
        )

    def find_field_by_id(self, field_id: str) -> Optional[FieldDescriptor]:
        return lookup_field(self.state, field_id)

    def get_field_value(self, field_id: str) -> Any:
        return self.state.values.get(field_id)

    def is_field_completed(self, field_id: str) -> bool:
        return field_id in self.state.completed_field_ids

    def get_signature_fields(self) -> list[FieldDescriptor]:
        return [f for f in self.all_fields if f.is_signature]

    def has_required_fields(self) -> bool:
        return bool(self.state.required_fields)

    def has_signature_fields(self) -> bool:
        return any(f.is_signature for f in self.all_fields)

    def are_required_fields_completed(self) -> bool:
        return all(f.id in self.state.completed_field_ids for f in self.state.required_fields)

    def validate_field(self, field_id: str) -> ValidationResult:
        field = self._require_field(field_id)
        return self.engine.validate_field(
            field, self.state.values.get(field_id), all_fields=self._fields_with_values()
        )

    def validate_form(self) -> FormValidationResult:
        return self.engine.validate_form(self.all_fields, self.state.values)

    def tooltip_message_for(self, field: FieldDescriptor) -> str:
        return tooltip_message_for(field)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_field(self, field_id: str) -> FieldDescriptor:
        field = lookup_field(self.state, field_id)
        if field is None:
            raise UnknownFieldError(field_id)
        return field

    def _next_unfilled(self, signatures: bool) -> Optional[FieldDescriptor]:
        """First required field of the given kind with no value, in reading order.

        Reads values, the same source :func:`derive_phase` uses.
        """
        values = self.state.values
        for field in sort_fields_by_position(self.state.required_fields):
            if field.is_signature != signatures:
                continue
            if not has_value(field, values.get(field.id)):
                return field
        return None

    def _fields_with_values(self) -> list[FieldDescriptor]:
        values = self.state.values
        return [
            f.model_copy(update={"value": values.get(f.id, f.value)})
            for f in self.all_fields
        ]
