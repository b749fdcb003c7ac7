"""
Material draft and wizard state models.

The draft is serialised camelCase on the wire (the REST backend and the web
client both speak camelCase) and snake_case in Python. Empty strings sent for
numeric fields are treated as "not entered" and stored as None.
"""
from datetime import date
from enum import Enum
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from material_wizard.config import (
    DEFAULT_UNIT,
    ENTRY_NEW_PURCHASE,
    ENTRY_RETROACTIVE,
    FIRST_STEP,
    LAST_STEP,
)


class EntryType(str, Enum):
    NEW_PURCHASE = ENTRY_NEW_PURCHASE
    RETROACTIVE_ENTRY = ENTRY_RETROACTIVE


PaymentMethod = Literal["CASH", "M_PESA", "BANK_TRANSFER", "CHEQUE"]
DocumentationStatus = Literal["complete", "partial", "missing"]
CostStatus = Literal["actual", "estimated", "missing", "pending"]


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
        # Quantities and costs must be finite
        allow_inf_nan=False,
    )


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


# ─── Draft ──────────────────────────────────────────────────────────────────

class FinishingDetails(CamelModel):
    """Extra metadata captured for finishing-category materials."""
    brand: str = ""
    colour: str = ""
    technician_name: str = ""
    installation_team: str = ""
    material_type: str = ""
    team_leader: str = ""
    tile_type: str = ""
    square_meters: str = ""
    contract_number: str = ""
    payment_schedule: str = ""
    installation_date: str = ""
    warranty_documents: List[str] = Field(default_factory=list)

    def has_content(self) -> bool:
        for value in self.model_dump().values():
            if isinstance(value, list):
                if value:
                    return True
            elif value not in (None, ""):
                return True
        return False


class MaterialDraft(CamelModel):
    """In-memory material record built up across the wizard steps."""
    project_id: str = ""
    name: str = ""
    description: str = ""
    category: str = ""
    category_id: str = ""
    floor: str = ""
    phase_id: str = ""
    quantity: Optional[float] = None
    unit: str = DEFAULT_UNIT
    custom_unit: str = ""
    unit_cost: Optional[float] = None
    estimated_unit_cost: Optional[float] = None
    library_material_id: str = ""
    supplier_name: str = ""
    payment_method: PaymentMethod = "CASH"
    invoice_number: str = ""
    invoice_date: str = ""
    date_purchased: str = Field(default_factory=lambda: date.today().isoformat())
    notes: str = ""
    # Document URLs handed over by the upload widget
    receipt_file_url: Optional[str] = None
    invoice_file_url: Optional[str] = None
    delivery_note_file_url: Optional[str] = None
    # Retroactive metadata
    retroactive_notes: str = ""
    original_purchase_date: str = ""
    documentation_status: DocumentationStatus = "missing"
    cost_status: Optional[CostStatus] = "missing"
    finishing_details: FinishingDetails = Field(default_factory=FinishingDetails)

    @field_validator("quantity", "unit_cost", "estimated_unit_cost", "cost_status", mode="before")
    @classmethod
    def _empty_is_unset(cls, value):
        return _blank_to_none(value)

    @field_validator("receipt_file_url", "invoice_file_url", "delivery_note_file_url", mode="before")
    @classmethod
    def _empty_url_is_unset(cls, value):
        return _blank_to_none(value)


# ─── Wizard state ───────────────────────────────────────────────────────────

class WizardState(CamelModel):
    step: int = Field(default=FIRST_STEP, ge=FIRST_STEP, le=LAST_STEP)
    entry_type: Optional[EntryType] = None
    emergency_override: bool = False
    draft: MaterialDraft = Field(default_factory=MaterialDraft)
    error: Optional[str] = None


class Notice(CamelModel):
    """Toast-style message for the client to display."""
    level: Literal["success", "warning", "error", "info"]
    message: str
    duration_ms: int


# ─── Reference records from the REST backend ──────────────────────────────

class ReferenceRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str = Field(alias="_id")

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value):
        return value if value is None else str(value)


class Category(ReferenceRecord):
    name: str = ""


class Floor(ReferenceRecord):
    name: str = ""
    floor_number: Optional[int] = Field(default=None, alias="floorNumber")


class Phase(ReferenceRecord):
    phase_name: str = Field(default="", alias="phaseName")
    phase_code: str = Field(default="", alias="phaseCode")


class Project(ReferenceRecord):
    project_name: str = Field(default="", alias="projectName")
    project_code: str = Field(default="", alias="projectCode")
    location: str = ""


class CurrentUser(ReferenceRecord):
    role: str = ""
    email: str = ""
    first_name: str = Field(default="", alias="firstName")
    last_name: str = Field(default="", alias="lastName")


class LibraryMaterial(ReferenceRecord):
    """Material-library entry used to prefill a draft."""
    name: str = ""
    description: str = ""
    default_unit: str = Field(default="", alias="defaultUnit")
    category_id: Optional[str] = Field(default=None, alias="categoryId")
    category: str = ""
    default_unit_cost: Optional[float] = Field(default=None, alias="defaultUnitCost", allow_inf_nan=False)

    @field_validator("category_id", mode="before")
    @classmethod
    def _stringify_category_id(cls, value):
        return None if value is None else str(value)


class ApiEnvelope(BaseModel):
    """`{success, data, error}` wrapper used by every backend endpoint."""
    success: bool = False
    data: Any = None
    error: Optional[str] = None
    message: Optional[str] = None
