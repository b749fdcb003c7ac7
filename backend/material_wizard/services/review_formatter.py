"""Review-step summary: display strings for the draft before submit."""
from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional

from material_wizard.config import CURRENCY_SYMBOL
from material_wizard.models.material_draft import Category, MaterialDraft, Phase, Floor, Project
from material_wizard.services import finishing
from material_wizard.services import wizard_engine as engine


def money(amount: Any, symbol: str = CURRENCY_SYMBOL, places: int = 2) -> str:
    """
    Format ``amount`` with thousands separators, e.g. ``KES 12,500.00``.

    Values that are not finite numbers render as ``KES n/a``.
    """
    try:
        value = Decimal(str(amount or 0))
    except InvalidOperation:
        return f"{symbol} n/a"
    if not value.is_finite():
        return f"{symbol} n/a"
    value = value.quantize(Decimal(10) ** -places, rounding=ROUND_HALF_UP)
    sign = "-" if value < 0 else ""
    return f"{sign}{symbol} {abs(value):,.{places}f}"


def display_date(iso_value: Optional[str]) -> str:
    """``2024-03-07`` -> ``07 Mar 2024``; unparsable values are returned unchanged."""
    if not iso_value:
        return ""
    try:
        return date.fromisoformat(iso_value[:10]).strftime("%d %b %Y")
    except ValueError:
        return iso_value


def _label(records: Iterable, record_id: str, *attrs: str) -> str:
    for r in records:
        if r.id == record_id:
            for attr in attrs:
                value = getattr(r, attr, "")
                if value:
                    return value
            return record_id
    return record_id


def cost_basis(draft: MaterialDraft) -> str:
    if draft.unit_cost:
        return "actual"
    if draft.estimated_unit_cost:
        return "estimated"
    return "missing"


def build_review(
    draft: MaterialDraft,
    categories: Iterable[Category] = (),
    projects: Iterable[Project] = (),
    phases: Iterable[Phase] = (),
    floors: Iterable[Floor] = (),
) -> Dict[str, Any]:
    categories = list(categories)
    basis = cost_basis(draft)
    unit_cost_text = money(engine.effective_unit_cost(draft))
    if basis == "estimated":
        unit_cost_text += " (Estimated)"
    elif basis == "missing":
        unit_cost_text += " (Missing)"

    documents: List[str] = []
    if draft.receipt_file_url:
        documents.append("Receipt uploaded")
    if draft.invoice_file_url:
        documents.append("Invoice uploaded")
    if draft.delivery_note_file_url:
        documents.append("Delivery note uploaded")

    category_name = engine.resolve_category_name(draft, categories)
    quantity = "" if draft.quantity is None else f"{draft.quantity:g}"

    return {
        "project": _label(projects, draft.project_id, "project_name", "project_code"),
        "phase": _label(phases, draft.phase_id, "phase_name", "phase_code"),
        "floor": _label(floors, draft.floor, "name") if draft.floor else "",
        "name": draft.name,
        "category": category_name,
        "quantity": f"{quantity} {engine.resolved_unit(draft)}".strip(),
        "unitCost": unit_cost_text,
        "costBasis": basis,
        "total": money(engine.calculate_total(draft)),
        "supplier": draft.supplier_name,
        "datePurchased": display_date(draft.date_purchased),
        "originalPurchaseDate": display_date(draft.original_purchase_date),
        "documents": documents,
        "finishingType": finishing.finishing_type(category_name) if finishing.is_finishing_category(category_name) else None,
        "missingFinishingFields": finishing.missing_fields(category_name, draft.finishing_details),
        "notes": draft.notes,
    }
