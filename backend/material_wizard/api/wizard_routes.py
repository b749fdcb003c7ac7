"""
Material wizard routes.

Each wizard lives server-side as a session owned by the caller's token.
Every mutating endpoint returns the session view plus any pending notices,
so the client renders straight from the response.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from material_wizard.models.material_draft import EntryType, LibraryMaterial
from material_wizard.services import wizard_engine as engine
from material_wizard.services.backend_client import BackendClient
from material_wizard.services.reference_data import BackendReferenceData, ReferenceCache
from material_wizard.services.review_formatter import build_review
from material_wizard.services.session_store import SessionStore
from material_wizard.api.deps import (
    get_backend_client,
    get_reference_cache,
    get_session,
    get_session_store,
    owner_key,
)
from material_wizard.services.wizard_session import SessionLockedError, WizardSession

router = APIRouter(prefix="/api/v1/material-wizard", tags=["Material Wizard"])
logger = logging.getLogger("material-wizard")


# ─── Request schemas ─────────────────────────────────────────────────────────

class _CamelRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StartSessionRequest(_CamelRequest):
    project_id: Optional[str] = None   # prefill, e.g. from ?projectId= on the page URL


class EntryTypeRequest(_CamelRequest):
    entry_type: EntryType


class ProjectRequest(_CamelRequest):
    project_id: str = Field(default="")


# ─── Helpers ────────────────────────────────────────────────────────────────

def _respond(session: WizardSession, **extra) -> Dict[str, Any]:
    body = session.view()
    body["notices"] = [n.model_dump(by_alias=True) for n in session.drain_notices()]
    body.update(extra)
    return body


def _unprocessable(e: Exception) -> HTTPException:
    if isinstance(e, ValidationError):
        # Inputs left out: a rejected NaN cannot be JSON-encoded
        return HTTPException(
            status_code=422,
            detail=e.errors(include_url=False, include_context=False, include_input=False),
        )
    if isinstance(e, engine.WizardValidationError):
        return HTTPException(status_code=422, detail=e.message)
    return HTTPException(status_code=422, detail=str(e).strip("'\""))


def _conflict(e: engine.WizardStateError) -> HTTPException:
    return HTTPException(status_code=409, detail=str(e))


# ─── Endpoints ──────────────────────────────────────────────────────────────

@router.post("/sessions", status_code=201)
async def start_session(
    req: Optional[StartSessionRequest] = None,
    client: BackendClient = Depends(get_backend_client),
    cache: ReferenceCache = Depends(get_reference_cache),
    store: SessionStore = Depends(get_session_store),
    owner: str = Depends(owner_key),
):
    """Open a wizard: loads user, categories and projects, applies role/project defaults."""
    await store.sweep()
    session = WizardSession(
        store.new_id(),
        reference=BackendReferenceData(client, cache),
        materials=client,
    )
    await session.start(project_id=req.project_id if req else None)
    store.add(session, owner=owner)
    logger.info(f"Wizard session {session.id} started", extra={"session_id": session.id})
    return _respond(session)


@router.get("/sessions/{session_id}")
async def get_wizard(session: WizardSession = Depends(get_session)):
    return _respond(session)


@router.delete("/sessions/{session_id}", status_code=204)
async def abandon_wizard(
    session: WizardSession = Depends(get_session),
    store: SessionStore = Depends(get_session_store),
):
    await store.discard(session.id)


@router.post("/sessions/{session_id}/entry-type")
async def choose_entry_type(req: EntryTypeRequest, session: WizardSession = Depends(get_session)):
    try:
        await session.choose_entry_type(req.entry_type)
    except SessionLockedError as e:
        raise _conflict(e)
    return _respond(session)


@router.post("/sessions/{session_id}/change-selection")
async def change_selection(session: WizardSession = Depends(get_session)):
    try:
        await session.change_selection()
    except SessionLockedError as e:
        raise _conflict(e)
    return _respond(session)


@router.post("/sessions/{session_id}/emergency-override")
async def emergency_override(session: WizardSession = Depends(get_session)):
    """'Continue Anyway (Emergency)': switch a new purchase to a retroactive entry."""
    role = session.user.role if session.user else None
    if not engine.can_create_material(role):
        raise HTTPException(status_code=403, detail="Insufficient permissions to create materials")
    try:
        await session.emergency_override()
    except engine.WizardStateError as e:
        raise _conflict(e)
    return _respond(session)


@router.post("/sessions/{session_id}/project")
async def select_project(req: ProjectRequest, session: WizardSession = Depends(get_session)):
    try:
        await session.select_project(req.project_id)
    except SessionLockedError as e:
        raise _conflict(e)
    return _respond(session)


@router.patch("/sessions/{session_id}/fields")
async def update_fields(
    updates: Dict[str, Any] = Body(...),
    session: WizardSession = Depends(get_session),
):
    try:
        await session.update_fields(updates)
    except SessionLockedError as e:
        raise _conflict(e)
    except (ValidationError, KeyError, engine.WizardStateError, engine.WizardValidationError) as e:
        raise _unprocessable(e)
    return _respond(session)


@router.patch("/sessions/{session_id}/finishing")
async def update_finishing(
    updates: Dict[str, Any] = Body(...),
    session: WizardSession = Depends(get_session),
):
    try:
        await session.update_finishing(updates)
    except SessionLockedError as e:
        raise _conflict(e)
    except (ValidationError, KeyError) as e:
        raise _unprocessable(e)
    return _respond(session)


@router.post("/sessions/{session_id}/library-material")
async def apply_library_material(material: LibraryMaterial, session: WizardSession = Depends(get_session)):
    try:
        await session.apply_library_material(material)
    except SessionLockedError as e:
        raise _conflict(e)
    return _respond(session)


@router.post("/sessions/{session_id}/next")
async def next_step(session: WizardSession = Depends(get_session)):
    """Advance if the current step validates; otherwise state.error carries the reason."""
    try:
        advanced = await session.next_step()
    except engine.WizardStateError as e:
        raise _conflict(e)
    return _respond(session, advanced=advanced)


@router.post("/sessions/{session_id}/prev")
async def prev_step(session: WizardSession = Depends(get_session)):
    try:
        await session.prev_step()
    except engine.WizardStateError as e:
        raise _conflict(e)
    return _respond(session)


@router.get("/sessions/{session_id}/review")
async def review(session: WizardSession = Depends(get_session)):
    return build_review(
        session.state.draft,
        categories=session.categories,
        projects=session.projects,
        phases=session.phases,
        floors=session.floors,
    )


@router.post("/sessions/{session_id}/submit")
async def submit(
    session: WizardSession = Depends(get_session),
    store: SessionStore = Depends(get_session_store),
):
    """
    Create the material. On success the session is closed and the response
    carries the redirect to the new material; on failure the session stays on
    the review step with the error set.
    """
    try:
        outcome = await session.submit()
    except engine.WizardStateError as e:
        raise _conflict(e)

    if not outcome.ok:
        body = _respond(session, outcome=outcome.model_dump(by_alias=True))
        status_code = 422 if outcome.failure == "validation" else 502
        raise HTTPException(status_code=status_code, detail=body)

    body = _respond(session, outcome=outcome.model_dump(by_alias=True))
    await store.discard(session.id)
    return body
