"""
wizard_engine.py — Material entry wizard state machine

Pure functions only: every transition takes a WizardState and returns a new
one, nothing here performs I/O. The async session controller
(wizard_session.py) wires these to the REST backend.

Covers:
  - Entry-type gate (chooser, new-purchase redirect, emergency override)
  - Per-step validation and forward/backward navigation
  - Field updates with project/unit side effects
  - Material-library prefill
  - Derived total
  - Final submission validation and payload assembly
"""
from typing import Dict, Iterable, List, Optional
from urllib.parse import urlencode

from material_wizard.config import (
    CREATE_MATERIAL_ROLES,
    CUSTOM_UNIT,
    DEFAULT_UNIT,
    FIRST_STEP,
    LAST_STEP,
    MATERIAL_REQUEST_PATH,
    NEW_PURCHASE_DEFAULT_ROLES,
    STEP_TITLES,
)
from material_wizard.models.material_draft import (
    Category,
    EntryType,
    Floor,
    LibraryMaterial,
    MaterialDraft,
    Phase,
    WizardState,
)
from material_wizard.services import finishing


class WizardValidationError(ValueError):
    """A draft failed the checks for a step (or the final submit)."""

    def __init__(self, step: int, message: str):
        super().__init__(message)
        self.step = step
        self.message = message


class WizardStateError(RuntimeError):
    """A transition was requested that the current state does not allow."""


# ---------------------------------------------------------------------------
# Entry-type gate
# ---------------------------------------------------------------------------

def _normalise_role(role: Optional[str]) -> str:
    return (role or "").strip().lower()


def default_entry_type_for_role(role: Optional[str]) -> Optional[EntryType]:
    if _normalise_role(role) in NEW_PURCHASE_DEFAULT_ROLES:
        return EntryType.NEW_PURCHASE
    return None


def can_create_material(role: Optional[str]) -> bool:
    return _normalise_role(role) in CREATE_MATERIAL_ROLES


def choose_entry_type(state: WizardState, entry_type: EntryType) -> WizardState:
    return state.model_copy(update={"entry_type": EntryType(entry_type), "error": None})


def reset_entry_type(state: WizardState) -> WizardState:
    return state.model_copy(update={"entry_type": None, "emergency_override": False, "error": None})


def emergency_override(state: WizardState, role: Optional[str]) -> WizardState:
    """Switch a new-purchase session to a retroactive entry ("Continue Anyway")."""
    if state.entry_type != EntryType.NEW_PURCHASE:
        raise WizardStateError("Emergency override is only available from the new purchase workflow")
    if not can_create_material(role):
        raise WizardStateError(f"Role '{role or 'unknown'}' may not create materials directly")
    return state.model_copy(update={
        "entry_type": EntryType.RETROACTIVE_ENTRY,
        "emergency_override": True,
        "error": None,
    })


def new_purchase_redirect(draft: MaterialDraft) -> str:
    if draft.project_id:
        return f"{MATERIAL_REQUEST_PATH}?{urlencode({'projectId': draft.project_id})}"
    return MATERIAL_REQUEST_PATH


def wizard_active(state: WizardState) -> bool:
    return state.entry_type == EntryType.RETROACTIVE_ENTRY


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _blank(value: Optional[str]) -> bool:
    return not value or not value.strip()


def _validate_core(draft: MaterialDraft) -> None:
    if not draft.project_id:
        raise WizardValidationError(1, "Please select a project")
    if _blank(draft.name):
        raise WizardValidationError(1, "Material name is required")
    if not draft.phase_id:
        raise WizardValidationError(1, "Please select a construction phase")


def _validate_quantity(draft: MaterialDraft) -> None:
    if draft.quantity is None or draft.quantity <= 0:
        raise WizardValidationError(2, "Please enter a valid quantity")


def _validate_costs(draft: MaterialDraft, entry_type: Optional[EntryType]) -> None:
    if entry_type == EntryType.RETROACTIVE_ENTRY:
        if draft.unit_cost is not None and draft.unit_cost <= 0:
            raise WizardValidationError(3, "If provided, unit cost must be greater than 0")
        if draft.estimated_unit_cost is not None and draft.estimated_unit_cost <= 0:
            raise WizardValidationError(3, "If provided, estimated unit cost must be greater than 0")
        return
    if draft.unit_cost is None or draft.unit_cost <= 0:
        raise WizardValidationError(3, "Please enter a valid unit cost")
    if _blank(draft.supplier_name):
        raise WizardValidationError(3, "Supplier name is required")


def validate_step(step: int, draft: MaterialDraft, entry_type: Optional[EntryType]) -> None:
    """
    Raise WizardValidationError if ``draft`` does not satisfy ``step``.

    Step 4 (documents) is optional and step 5 (review) defers to
    validate_submission, so both always pass here.
    """
    if step == 1:
        _validate_core(draft)
    elif step == 2:
        _validate_quantity(draft)
        if _blank(draft.unit):
            raise WizardValidationError(2, "Please select a unit")
        if draft.unit == CUSTOM_UNIT and _blank(draft.custom_unit):
            raise WizardValidationError(2, "Please enter a custom unit name")
    elif step == 3:
        _validate_costs(draft, entry_type)


def is_step_valid(step: int, draft: MaterialDraft, entry_type: Optional[EntryType]) -> bool:
    try:
        validate_step(step, draft, entry_type)
    except WizardValidationError:
        return False
    return True


def validate_submission(draft: MaterialDraft, entry_type: Optional[EntryType]) -> None:
    """Re-check the required fields regardless of which step the user is on."""
    _validate_core(draft)
    _validate_quantity(draft)
    _validate_costs(draft, entry_type)


# ---------------------------------------------------------------------------
# Navigation
# ---------------------------------------------------------------------------

def _require_active(state: WizardState) -> None:
    if not wizard_active(state):
        raise WizardStateError("Select a retroactive entry before using the wizard steps")


def advance(state: WizardState) -> WizardState:
    """Move forward one step if the current one validates; otherwise record the error."""
    _require_active(state)
    if state.step >= LAST_STEP:
        return state
    try:
        validate_step(state.step, state.draft, state.entry_type)
    except WizardValidationError as e:
        return state.model_copy(update={"error": e.message})
    return state.model_copy(update={"step": state.step + 1, "error": None})


def retreat(state: WizardState) -> WizardState:
    _require_active(state)
    if state.step <= FIRST_STEP:
        return state
    return state.model_copy(update={"step": state.step - 1})


def clear_error(state: WizardState) -> WizardState:
    return state.model_copy(update={"error": None})


# ---------------------------------------------------------------------------
# Field updates
# ---------------------------------------------------------------------------

def _field_name(key: str) -> str:
    if key in MaterialDraft.model_fields:
        return key
    for name, info in MaterialDraft.model_fields.items():
        if info.alias == key:
            return name
    raise KeyError(f"Unknown draft field: {key}")


def set_fields(state: WizardState, updates: Dict[str, object]) -> WizardState:
    """
    Apply a batch of field updates to the draft.

    Keys may be camelCase or snake_case. Changing the project clears the
    floor and phase selections unless the same batch sets them; switching the
    unit away from "others" clears the custom unit. finishingDetails must go
    through set_finishing_fields.
    """
    current = state.draft.model_dump()
    changes = {_field_name(k): v for k, v in updates.items()}
    if "finishing_details" in changes:
        raise WizardStateError("Use the finishing details setter to change finishingDetails")

    merged = {**current, **changes}
    if "project_id" in changes and changes["project_id"] != current["project_id"]:
        for scoped in ("floor", "phase_id"):
            if scoped not in changes:
                merged[scoped] = ""
    if "unit" in changes and changes["unit"] != CUSTOM_UNIT:
        merged["custom_unit"] = ""

    draft = MaterialDraft.model_validate(merged)
    return state.model_copy(update={"draft": draft})


def set_finishing_fields(state: WizardState, updates: Dict[str, object]) -> WizardState:
    details = finishing.merge_details(state.draft.finishing_details, updates)
    draft = state.draft.model_copy(update={"finishing_details": details})
    return state.model_copy(update={"draft": draft})


def apply_library_material(state: WizardState, material: LibraryMaterial) -> WizardState:
    """Prefill the draft from a material-library entry without discarding entered values."""
    d = state.draft
    estimated = d.estimated_unit_cost
    if d.unit_cost is None and material.default_unit_cost is not None:
        estimated = material.default_unit_cost
    draft = MaterialDraft.model_validate({
        **d.model_dump(),
        "name": material.name or d.name,
        "description": material.description or d.description,
        "unit": material.default_unit or d.unit or DEFAULT_UNIT,
        "category_id": material.category_id or d.category_id,
        "category": material.category or d.category,
        "estimated_unit_cost": estimated,
        "library_material_id": material.id or d.library_material_id,
    })
    return state.model_copy(update={"draft": draft})


def prune_stale_selection(
    draft: MaterialDraft,
    floors: Optional[Iterable[Floor]] = None,
    phases: Optional[Iterable[Phase]] = None,
) -> MaterialDraft:
    """Drop floor/phase ids that are not in freshly fetched lists for the project."""
    update = {}
    if floors is not None and draft.floor and draft.floor not in {f.id for f in floors}:
        update["floor"] = ""
    if phases is not None and draft.phase_id and draft.phase_id not in {p.id for p in phases}:
        update["phase_id"] = ""
    return draft.model_copy(update=update) if update else draft


def validate_selection(draft: MaterialDraft, floors: Iterable[Floor], phases: Iterable[Phase]) -> None:
    """Raise unless the selected phase (and floor, if any) belong to the project's lists."""
    if draft.phase_id and draft.phase_id not in {p.id for p in phases}:
        raise WizardValidationError(1, "Selected phase does not belong to this project")
    if draft.floor and draft.floor not in {f.id for f in floors}:
        raise WizardValidationError(1, "Selected floor does not belong to this project")


# ---------------------------------------------------------------------------
# Derived values
# ---------------------------------------------------------------------------

def effective_unit_cost(draft: MaterialDraft) -> float:
    return draft.unit_cost or draft.estimated_unit_cost or 0.0


def calculate_total(draft: MaterialDraft) -> str:
    qty = draft.quantity or 0.0
    return f"{qty * effective_unit_cost(draft):.2f}"


def resolved_unit(draft: MaterialDraft) -> str:
    if draft.unit == CUSTOM_UNIT:
        return draft.custom_unit.strip()
    return draft.unit.strip()


def resolve_category_name(draft: MaterialDraft, categories: Iterable[Category]) -> str:
    if draft.category:
        return draft.category
    if draft.category_id:
        for c in categories:
            if c.id == draft.category_id:
                return c.name or ""
    return ""


# ---------------------------------------------------------------------------
# Payload assembly
# ---------------------------------------------------------------------------

# Fields rebuilt explicitly below rather than copied from the draft
_OVERRIDDEN_FIELDS = {
    "finishingDetails",
    "unit",
    "category",
    "categoryId",
    "retroactiveNotes",
    "originalPurchaseDate",
    "documentationStatus",
    "costStatus",
}


def build_payload(
    draft: MaterialDraft,
    entry_type: Optional[EntryType],
    categories: Iterable[Category] = (),
) -> Dict[str, object]:
    """
    Shape the POST /api/materials body.

    Unset values are left out entirely so the backend never sees empty cost
    or supplier keys. The record is always created as a retroactive entry;
    ``isRetroactiveEntry`` carries the user's own selection.
    """
    payload: Dict[str, object] = {
        key: value
        for key, value in draft.model_dump(by_alias=True).items()
        if key not in _OVERRIDDEN_FIELDS and value is not None and value != ""
    }

    category_name = resolve_category_name(draft, categories)
    payload["quantityPurchased"] = draft.quantity
    payload["unit"] = resolved_unit(draft)
    payload["category"] = category_name
    payload["categoryId"] = draft.category_id or None
    payload["entryType"] = EntryType.RETROACTIVE_ENTRY.value
    payload["isRetroactiveEntry"] = entry_type == EntryType.RETROACTIVE_ENTRY

    if finishing.is_finishing_category(category_name) and draft.finishing_details.has_content():
        payload["finishingDetails"] = draft.finishing_details.model_dump(by_alias=True)

    if entry_type == EntryType.RETROACTIVE_ENTRY:
        payload["retroactiveNotes"] = draft.retroactive_notes or ""
        payload["originalPurchaseDate"] = draft.original_purchase_date or draft.date_purchased
        payload["documentationStatus"] = draft.documentation_status or "missing"
        payload["costStatus"] = draft.cost_status or ("actual" if draft.unit_cost else "missing")

    return payload


def prepare_submission(
    state: WizardState,
    categories: Iterable[Category] = (),
) -> Dict[str, object]:
    """Validate the whole draft and return the payload, or raise."""
    if not wizard_active(state):
        # New purchases go through the material-request workflow; never rewrite that intent here.
        raise WizardStateError("Only retroactive entries can be submitted from this wizard")
    validate_submission(state.draft, state.entry_type)
    return build_payload(state.draft, state.entry_type, categories)


def progress(state: WizardState) -> List[Dict[str, object]]:
    """Step indicator rows for the client."""
    return [
        {"step": n, "title": STEP_TITLES[n], "completed": n < state.step, "current": n == state.step}
        for n in range(FIRST_STEP, LAST_STEP + 1)
    ]
