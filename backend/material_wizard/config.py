"""
Material wizard configuration — single source of truth for step metadata,
unit options, role defaults, finishing categories and runtime settings.

Import from here in services and routes rather than hardcoding values.
"""
from __future__ import annotations

import os

# Load .env file automatically in dev (no-op if python-dotenv not installed or file missing)
try:
    from dotenv import load_dotenv
    load_dotenv()
except ImportError:
    pass


# ── Wizard steps ───────────────────────────────────────────────────────────────

FIRST_STEP: int = 1
LAST_STEP: int = 5

STEP_TITLES: dict[int, str] = {
    1: "Basic Info",
    2: "Quantities",
    3: "Costs",
    4: "Documents",
    5: "Review",
}


# ── Entry types ────────────────────────────────────────────────────────────────

ENTRY_NEW_PURCHASE: str = "new_purchase"
ENTRY_RETROACTIVE: str = "retroactive_entry"

# Roles steered to the material-request workflow by default.
# Every other role sees the entry-type chooser.
NEW_PURCHASE_DEFAULT_ROLES: frozenset[str] = frozenset({"clerk", "supervisor", "site_clerk"})

# Roles allowed to create materials directly (gates the emergency override)
CREATE_MATERIAL_ROLES: frozenset[str] = frozenset({"clerk", "project_manager", "pm", "owner", "supervisor"})

# Where new purchases are sent instead of this wizard
MATERIAL_REQUEST_PATH: str = "/material-requests/new"
MATERIAL_DETAIL_PATH: str = "/items/{material_id}"


# ── Units ──────────────────────────────────────────────────────────────────────

CUSTOM_UNIT: str = "others"
DEFAULT_UNIT: str = "piece"

UNIT_OPTIONS: list[str] = [
    "piece",
    "bag",
    "kg",
    "ton",
    "liter",
    "gallon",
    "meter",
    "square meter",
    "cubic meter",
    "roll",
    "sheet",
    "box",
    "carton",
    "pack",
    "set",
    "pair",
    "dozen",
    CUSTOM_UNIT,
]


# ── Draft enumerations ─────────────────────────────────────────────────────────

PAYMENT_METHODS: list[str] = ["CASH", "M_PESA", "BANK_TRANSFER", "CHEQUE"]
DOCUMENTATION_STATUSES: list[str] = ["complete", "partial", "missing"]
COST_STATUSES: list[str] = ["actual", "estimated", "missing", "pending"]


# ── Finishing categories ───────────────────────────────────────────────────────
# Category names are matched case-insensitively by substring.

FINISHING_CATEGORIES: list[str] = [
    "electrical works",
    "plumbing works",
    "joinery",
    "carpentry",
    "paintwork",
    "tiling",
    "terrazzo",
    "lift installation",
]

# Resolution order matters: first keyword hit wins
FINISHING_TYPE_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("electrical", ("electrical",)),
    ("plumbing",   ("plumbing",)),
    ("joinery",    ("joinery", "carpentry")),
    ("paintwork",  ("paintwork", "paint")),
    ("tiling",     ("tiling", "terrazzo")),
    ("lift",       ("lift",)),
]

FINISHING_REQUIRED_FIELDS: dict[str, list[str]] = {
    "electrical": ["brand", "technician_name"],
    "plumbing":   ["brand", "technician_name"],
    "joinery":    ["material_type", "installation_team"],
    "paintwork":  ["brand", "colour", "team_leader"],
    "tiling":     ["tile_type", "square_meters", "brand"],  # brand doubles as tile supplier
    "lift":       ["contract_number", "payment_schedule", "warranty_documents"],
}


# ── Notices ────────────────────────────────────────────────────────────────────

CAPITAL_WARNING_DURATION_MS: int = 10_000
DEFAULT_NOTICE_DURATION_MS: int = 5_000


# ── Runtime settings (env) ─────────────────────────────────────────────────────

BACKEND_BASE_URL: str = os.getenv("BACKEND_BASE_URL", "http://localhost:3000")
BACKEND_TIMEOUT_SECONDS: float = float(os.getenv("BACKEND_TIMEOUT_SECONDS", "15"))

# Categories/projects are refetched per wizard mount in the web client; cache them here
REFERENCE_CACHE_TTL_SECONDS: float = float(os.getenv("REFERENCE_CACHE_TTL_SECONDS", "300"))

# Abandoned sessions are dropped after this much inactivity
SESSION_IDLE_TTL_SECONDS: float = float(os.getenv("SESSION_IDLE_TTL_SECONDS", "3600"))

CURRENCY_SYMBOL: str = os.getenv("CURRENCY_SYMBOL", "KES")
