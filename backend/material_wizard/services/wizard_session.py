"""
wizard_session.py — Async controller for one material entry wizard

Binds a WizardState to its collaborators (reference data + materials
endpoint) and runs the side effects the pure engine leaves out:

  - Mount: fetch the user (default entry type by role), categories and
    projects; prefill or auto-select the project
  - Project switching: floors/phases refetched for the new project, stale
    selections dropped, in-flight refreshes for an older project cancelled
  - Submit: final validation, POST, capital-warning / success notices,
    redirect to the created material

One session is owned by one user; the lock only serialises overlapping
requests from that user's client.
"""
import asyncio
import logging
import time
from typing import Any, Dict, List, Literal, Optional, Protocol

from material_wizard.config import (
    CAPITAL_WARNING_DURATION_MS,
    DEFAULT_NOTICE_DURATION_MS,
    MATERIAL_DETAIL_PATH,
    UNIT_OPTIONS,
)
from material_wizard.models.material_draft import (
    CamelModel,
    Category,
    CurrentUser,
    EntryType,
    Floor,
    LibraryMaterial,
    Notice,
    Phase,
    Project,
    WizardState,
)
from material_wizard.services import finishing
from material_wizard.services import wizard_engine as engine
from material_wizard.services.backend_client import BackendError
from material_wizard.services.perf_monitor import tracker
from material_wizard.services.reference_data import ReferenceData

logger = logging.getLogger("material-wizard")


class MaterialsEndpoint(Protocol):
    async def create_material(self, payload: Dict[str, Any]) -> Dict[str, Any]: ...


class SessionLockedError(engine.WizardStateError):
    """The draft is being submitted or has been submitted; edits are refused."""


class SubmitOutcome(CamelModel):
    ok: bool
    failure: Optional[Literal["validation", "backend"]] = None
    material_id: Optional[str] = None
    redirect_to: Optional[str] = None
    capital_warning: Optional[dict] = None
    error: Optional[str] = None


class WizardSession:
    def __init__(
        self,
        session_id: str,
        reference: ReferenceData,
        materials: MaterialsEndpoint,
        state: Optional[WizardState] = None,
    ):
        self.id = session_id
        self.reference = reference
        self.materials = materials
        self.state = state or WizardState()

        self.user: Optional[CurrentUser] = None
        self.categories: List[Category] = []
        self.projects: List[Project] = []
        self.floors: List[Floor] = []
        self.phases: List[Phase] = []
        self.notices: List[Notice] = []

        self.submitting = False
        self.completed = False
        self.closed = False
        self.last_active = time.monotonic()

        self._lock = asyncio.Lock()
        self._refresh_task: Optional[asyncio.Task] = None

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    def touch(self) -> None:
        self.last_active = time.monotonic()

    async def start(self, project_id: Optional[str] = None) -> None:
        """Load reference data and apply role/project defaults."""
        self.user, self.categories, self.projects = await asyncio.gather(
            self.reference.current_user(),
            self.reference.categories(),
            self.reference.projects(),
        )
        tracker.record_session_started()

        async with self._lock:
            if self.user is not None and self.state.entry_type is None:
                default = engine.default_entry_type_for_role(self.user.role)
                if default is not None:
                    self.state = engine.choose_entry_type(self.state, default)

            initial_project = project_id or self.state.draft.project_id
            if not initial_project and len(self.projects) == 1:
                initial_project = self.projects[0].id
            if initial_project:
                self.state = engine.set_fields(self.state, {"project_id": initial_project})
            task = self._schedule_refresh()

        await self._apply_refresh(task)

    async def close(self) -> None:
        """Abandon the session; any in-flight fetch is cancelled and never applied."""
        async with self._lock:
            self.closed = True
            if self._refresh_pending():
                self._refresh_task.cancel()
            self._refresh_task = None

    def _ensure_editable(self) -> None:
        """Caller holds the lock."""
        if self.submitting:
            raise SessionLockedError("Submission in progress; the draft cannot be changed")
        if self.completed:
            raise SessionLockedError("This material has already been submitted")

    # -----------------------------------------------------------------------
    # Project-scoped lists
    # -----------------------------------------------------------------------

    def _refresh_pending(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    def _schedule_refresh(self) -> Optional[asyncio.Task]:
        """Cancel any older refresh and start one for the current project. Caller holds the lock."""
        if self._refresh_pending():
            self._refresh_task.cancel()
        self._refresh_task = None

        project_id = self.state.draft.project_id
        if not project_id:
            self.floors, self.phases = [], []
            return None

        async def _fetch():
            return await asyncio.gather(
                self.reference.floors(project_id),
                self.reference.phases(project_id),
            )

        self._refresh_task = asyncio.create_task(_fetch())
        return self._refresh_task

    async def _apply_refresh(self, task: Optional[asyncio.Task]) -> bool:
        """Wait for ``task`` and apply its lists unless it was superseded. Returns True if applied."""
        if task is None:
            return False
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        if task.cancelled():
            return False

        floors, phases = task.result()
        async with self._lock:
            if self.closed or task is not self._refresh_task:
                return False
            self.floors, self.phases = floors, phases
            self.state = self.state.model_copy(update={
                "draft": engine.prune_stale_selection(self.state.draft, floors, phases),
            })
            self._refresh_task = None
        return True

    # -----------------------------------------------------------------------
    # Entry-type gate
    # -----------------------------------------------------------------------

    async def choose_entry_type(self, entry_type: EntryType) -> None:
        async with self._lock:
            self._ensure_editable()
            self.state = engine.choose_entry_type(self.state, entry_type)

    async def change_selection(self) -> None:
        async with self._lock:
            self._ensure_editable()
            self.state = engine.reset_entry_type(self.state)

    async def emergency_override(self) -> None:
        async with self._lock:
            self._ensure_editable()
            role = self.user.role if self.user else None
            self.state = engine.emergency_override(self.state, role)
            logger.info(f"Session {self.id}: emergency override by role {role}")

    # -----------------------------------------------------------------------
    # Draft edits
    # -----------------------------------------------------------------------

    async def update_fields(self, updates: Dict[str, Any]) -> None:
        """
        Apply field edits; a project change triggers a floor/phase refresh.

        With the project unchanged and its lists loaded, a phase or floor that
        is not in those lists is rejected with WizardValidationError. Ids sent
        alongside a new project are checked by the refresh instead.
        """
        async with self._lock:
            self._ensure_editable()
            before = self.state.draft.project_id
            state = engine.set_fields(self.state, updates)
            task = None
            if state.draft.project_id != before:
                self.state = state
                task = self._schedule_refresh()
            else:
                if not self._refresh_pending():
                    engine.validate_selection(state.draft, self.floors, self.phases)
                self.state = state
        await self._apply_refresh(task)

    async def select_project(self, project_id: str) -> None:
        await self.update_fields({"project_id": project_id})

    async def update_finishing(self, updates: Dict[str, Any]) -> None:
        async with self._lock:
            self._ensure_editable()
            self.state = engine.set_finishing_fields(self.state, updates)

    async def apply_library_material(self, material: LibraryMaterial) -> None:
        async with self._lock:
            self._ensure_editable()
            self.state = engine.apply_library_material(self.state, material)

    # -----------------------------------------------------------------------
    # Navigation
    # -----------------------------------------------------------------------

    async def next_step(self) -> bool:
        async with self._lock:
            self._ensure_editable()
            before = self.state.step
            self.state = engine.advance(self.state)
            return self.state.step != before

    async def prev_step(self) -> None:
        async with self._lock:
            self._ensure_editable()
            self.state = engine.retreat(self.state)

    # -----------------------------------------------------------------------
    # Submit
    # -----------------------------------------------------------------------

    def _notify(self, level: str, message: str, duration_ms: int = DEFAULT_NOTICE_DURATION_MS) -> None:
        self.notices.append(Notice(level=level, message=message, duration_ms=duration_ms))

    def drain_notices(self) -> List[Notice]:
        notices, self.notices = self.notices, []
        return notices

    async def submit(self) -> SubmitOutcome:
        async with self._lock:
            if self.submitting:
                raise SessionLockedError("Submission already in progress")
            if self.completed:
                raise SessionLockedError("This material has already been submitted")
            if self._refresh_pending():
                raise engine.WizardStateError("Floors and phases for the project are still loading")
            self.submitting = True
            self.state = engine.clear_error(self.state)
            state, floors, phases = self.state, self.floors, self.phases

        try:
            try:
                payload = engine.prepare_submission(state, self.categories)
                engine.validate_selection(state.draft, floors, phases)
            except engine.WizardValidationError as e:
                self.state = self.state.model_copy(update={"error": e.message})
                return SubmitOutcome(ok=False, failure="validation", error=e.message)

            try:
                created = await self.materials.create_material(payload)
            except BackendError as e:
                logger.error(f"Create material error (session {self.id}): {e.message}")
                tracker.record_submission(ok=False)
                self.state = self.state.model_copy(update={"error": e.message})
                self._notify("error", e.message)
                return SubmitOutcome(ok=False, failure="backend", error=e.message)

            tracker.record_submission(ok=True)
            material_id = str(created.get("_id", ""))
            warning = created.get("capitalWarning")
            if warning:
                self._notify(
                    "warning",
                    f"Material created but capital insufficient: {warning.get('message', '')}",
                    CAPITAL_WARNING_DURATION_MS,
                )
            else:
                self._notify("success", "Material created successfully!")

            self.completed = True
            return SubmitOutcome(
                ok=True,
                material_id=material_id,
                redirect_to=MATERIAL_DETAIL_PATH.format(material_id=material_id),
                capital_warning=warning or None,
            )
        finally:
            self.submitting = False

    # -----------------------------------------------------------------------
    # View
    # -----------------------------------------------------------------------

    def view(self) -> Dict[str, Any]:
        """Everything the client needs to render the current screen."""
        draft = self.state.draft
        category_name = engine.resolve_category_name(draft, self.categories)
        finishing_kind = (
            finishing.finishing_type(category_name)
            if finishing.is_finishing_category(category_name) else None
        )
        role = self.user.role if self.user else None
        view: Dict[str, Any] = {
            "sessionId": self.id,
            "state": self.state.model_dump(by_alias=True, mode="json"),
            "wizardActive": engine.wizard_active(self.state),
            "progress": engine.progress(self.state),
            "total": engine.calculate_total(draft),
            "unitOptions": UNIT_OPTIONS,
            "categories": [c.model_dump(by_alias=True) for c in self.categories],
            "projects": [p.model_dump(by_alias=True) for p in self.projects],
            "floors": [f.model_dump(by_alias=True) for f in self.floors],
            "phases": [p.model_dump(by_alias=True) for p in self.phases],
            "finishingType": finishing_kind,
            "missingFinishingFields": finishing.missing_fields(category_name, draft.finishing_details),
            "canEmergencyOverride": (
                self.state.entry_type == EntryType.NEW_PURCHASE and engine.can_create_material(role)
            ),
            "completed": self.completed,
        }
        if self.state.entry_type == EntryType.NEW_PURCHASE:
            view["materialRequestUrl"] = engine.new_purchase_redirect(draft)
        return view
