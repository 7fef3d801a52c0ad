"""SKFill REST API: FastAPI server for guided form filling.

Each session wraps a :class:`FormSession`. Endpoints map one-to-one onto
its commands and queries. Every response carries the full snapshot plus
the derived wizard button and progress so a thin UI can render straight
from it.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .config import FeatureFlagService, FormConfig
from .errors import SessionNotFoundError, UnknownFieldError
from .models import (
    FormProgress,
    FormState,
    FormValidationResult,
    ValidationResult,
    WizardButtonState,
    WizardPhase,
)
from .store import SessionStore
from .wizard import FormSession

logger = logging.getLogger("skfill.api")

_config = FormConfig.from_env()
_store = SessionStore(_config.data_dir)
_flags = FeatureFlagService()
_sessions: dict[str, FormSession] = {}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    _flags.init()
    yield
    _flags.destroy()


app = FastAPI(
    title="SKFill",
    description="Guided PDF form filling: extraction, validation and a step-by-step wizard.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def configure(
    store: Optional[SessionStore] = None,
    flags: Optional[FeatureFlagService] = None,
    config: Optional[FormConfig] = None,
) -> None:
    """Swap the module-level store, flags or config and drop live sessions."""
    global _store, _flags, _config
    if config is not None:
        _config = config
    if store is not None:
        _store = store
    if flags is not None:
        _flags = flags
    _sessions.clear()


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------

class PageInput(BaseModel):
    """Raw annotations of one page, as reported by the PDF engine."""

    page_number: int = Field(ge=1)
    annotations: list[dict[str, Any]] = []


class CreateSessionRequest(BaseModel):
    """Request body for starting a new form session."""

    title: str = ""
    pages: list[PageInput] = []


class FieldValueRequest(BaseModel):
    """Request body for setting a field value."""

    value: Any = None


class SessionView(BaseModel):
    """Snapshot plus everything derived from it."""

    session_id: str
    title: str = ""
    phase: WizardPhase
    button: WizardButtonState
    progress: FormProgress
    guidance: str = ""
    state: FormState


class SubmitResult(BaseModel):
    """Outcome of a submit request."""

    submitted: bool
    submission_error: Optional[str] = None
    session: SessionView


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _new_session(session_id: Optional[str] = None, state: Optional[FormState] = None) -> FormSession:
    session = FormSession(flags=_flags, config=_config, state=state, session_id=session_id)
    sid = session.session_id
    session.on_submit = lambda values: _store.append_submission(sid, values)
    return session


def _get_session(session_id: str) -> FormSession:
    session = _sessions.get(session_id)
    if session is not None:
        return session
    try:
        record = _store.load(session_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")
    session = _new_session(session_id=record.session_id, state=record.state)
    _sessions[session_id] = session
    return session


def _persist(session: FormSession, title: Optional[str] = None) -> str:
    if _flags.is_enabled("FORM_STATE_PERSISTENCE"):
        return _store.save(session.session_id, session.state, title=title).title
    return title or ""


def _title(session_id: str) -> str:
    try:
        return _store.load(session_id).title
    except SessionNotFoundError:
        return ""


def _view(session: FormSession, title: Optional[str] = None) -> SessionView:
    return SessionView(
        session_id=session.session_id,
        title=title if title is not None else _title(session.session_id),
        phase=session.current_phase,
        button=session.get_wizard_button_state(),
        progress=session.get_form_progress(),
        guidance=session.get_guidance_message(),
        state=session.state,
    )


def _unknown_field(exc: UnknownFieldError) -> HTTPException:
    return HTTPException(status_code=404, detail=str(exc))


# ---------------------------------------------------------------------------
# Session endpoints
# ---------------------------------------------------------------------------

@app.post("/api/sessions", response_model=SessionView, status_code=201)
async def create_session(req: CreateSessionRequest) -> SessionView:
    """Extract fields from raw page annotations and open a session."""
    session = _new_session()
    session.load_pages(
        {"page_number": p.page_number, "raw_annotations": p.annotations}
        for p in req.pages
    )
    _sessions[session.session_id] = session
    title = _persist(session, title=req.title)
    logger.info("Created session %s (%s)", session.session_id[:8], req.title or "untitled")
    return _view(session, title=title)


@app.get("/api/sessions", response_model=list[SessionView])
async def list_sessions() -> list[SessionView]:
    """List stored sessions, most recently updated first."""
    views = []
    for record in _store.list_sessions():
        session = _sessions.get(record.session_id) or _new_session(
            session_id=record.session_id, state=record.state
        )
        views.append(_view(session, title=record.title))
    return views


@app.get("/api/sessions/{session_id}", response_model=SessionView)
async def get_session(session_id: str) -> SessionView:
    """Get a session's snapshot."""
    return _view(_get_session(session_id))


@app.delete("/api/sessions/{session_id}", status_code=204)
async def delete_session(session_id: str) -> None:
    """Delete a session."""
    live = _sessions.pop(session_id, None)
    if not _store.delete(session_id) and live is None:
        raise HTTPException(status_code=404, detail="Session not found")


@app.put("/api/sessions/{session_id}/values/{field_id}", response_model=SessionView)
async def set_field_value(session_id: str, field_id: str, req: FieldValueRequest) -> SessionView:
    """Set one field's value."""
    session = _get_session(session_id)
    try:
        session.on_field_change(field_id, req.value)
    except UnknownFieldError as exc:
        raise _unknown_field(exc)
    _persist(session)
    return _view(session)


@app.post("/api/sessions/{session_id}/fields/{field_id}/blur", response_model=ValidationResult)
async def blur_field(session_id: str, field_id: str) -> ValidationResult:
    """Validate a field after the user leaves it."""
    session = _get_session(session_id)
    try:
        result = session.on_field_blur(field_id)
    except UnknownFieldError as exc:
        raise _unknown_field(exc)
    _persist(session)
    return result


# ---------------------------------------------------------------------------
# Wizard endpoints
# ---------------------------------------------------------------------------

@app.post("/api/sessions/{session_id}/wizard/{action}", response_model=SessionView)
async def wizard_action(session_id: str, action: str) -> SessionView:
    """Run a wizard action: ``start``, ``stop``, ``button`` or ``back``."""
    session = _get_session(session_id)
    if action == "start":
        session.start_wizard()
    elif action == "stop":
        session.stop_wizard()
    elif action == "button":
        await session.handle_wizard_button_click()
    elif action == "back":
        session.navigate_back()
    else:
        raise HTTPException(status_code=400, detail=f"Unknown wizard action: {action}")
    _persist(session)
    return _view(session)


@app.post("/api/sessions/{session_id}/navigate/{field_id}", response_model=SessionView)
async def navigate(session_id: str, field_id: str) -> SessionView:
    """Move to a field, remembering the previous one."""
    session = _get_session(session_id)
    try:
        session.navigate_to_field(field_id)
    except UnknownFieldError as exc:
        raise _unknown_field(exc)
    _persist(session)
    return _view(session)


@app.get("/api/sessions/{session_id}/progress", response_model=FormProgress)
async def get_progress(session_id: str) -> FormProgress:
    """Required-field completion."""
    return _get_session(session_id).get_form_progress()


# ---------------------------------------------------------------------------
# Validation and submission
# ---------------------------------------------------------------------------

@app.post("/api/sessions/{session_id}/validate", response_model=FormValidationResult)
async def validate_session(session_id: str) -> FormValidationResult:
    """Validate every field and record the result on the session."""
    session = _get_session(session_id)
    result = session.validate_form()
    session.set_validation_result(result)
    _persist(session)
    return result


@app.post("/api/sessions/{session_id}/submit", response_model=SubmitResult)
async def submit_session(session_id: str) -> SubmitResult:
    """Validate and submit. Submitted values are appended to the store."""
    session = _get_session(session_id)
    submitted = await session.submit_form()
    _persist(session)
    return SubmitResult(
        submitted=submitted,
        submission_error=session.state.submission_error,
        session=_view(session),
    )


@app.post("/api/sessions/{session_id}/reset", response_model=SessionView)
async def reset_session(session_id: str) -> SessionView:
    """Clear values and wizard state, keeping the fields."""
    session = _get_session(session_id)
    session.reset_form()
    _persist(session)
    return _view(session)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

@app.get("/api/health")
async def health() -> dict:
    """Health check."""
    return {
        "status": "ok",
        "service": "skfill",
        "version": "0.1.0",
    }
