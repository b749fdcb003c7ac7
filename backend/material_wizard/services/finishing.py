"""Finishing-category matching and per-type required fields."""
from typing import List, Optional

from material_wizard.config import (
    FINISHING_CATEGORIES,
    FINISHING_REQUIRED_FIELDS,
    FINISHING_TYPE_KEYWORDS,
)
from material_wizard.models.material_draft import FinishingDetails


def is_finishing_category(category_name: Optional[str]) -> bool:
    if not category_name:
        return False
    name = category_name.lower()
    return any(fc in name for fc in FINISHING_CATEGORIES)


def finishing_type(category_name: Optional[str]) -> Optional[str]:
    """
    Resolve the finishing sub-form type for a category name.

    Returns one of electrical, plumbing, joinery, paintwork, tiling, lift,
    or None when the name does not hit any keyword.
    """
    if not category_name:
        return None
    name = category_name.lower()
    for kind, keywords in FINISHING_TYPE_KEYWORDS:
        if any(k in name for k in keywords):
            return kind
    return None


def required_fields(category_name: Optional[str]) -> List[str]:
    kind = finishing_type(category_name) if is_finishing_category(category_name) else None
    if kind is None:
        return []
    return list(FINISHING_REQUIRED_FIELDS[kind])


def missing_fields(category_name: Optional[str], details: FinishingDetails) -> List[str]:
    """Required finishing fields still blank, as camelCase names for the client."""
    missing = []
    for field in required_fields(category_name):
        value = getattr(details, field)
        if isinstance(value, list):
            filled = bool(value)
        else:
            filled = bool(str(value).strip())
        if not filled:
            missing.append(FinishingDetails.model_fields[field].alias or field)
    return missing


def merge_details(details: FinishingDetails, updates: dict) -> FinishingDetails:
    """Merge field updates into the existing nested object; untouched fields keep their values."""
    merged = details.model_dump()
    for key, value in updates.items():
        field = _field_name(key)
        if field is None:
            raise KeyError(f"Unknown finishing field: {key}")
        merged[field] = value
    return FinishingDetails.model_validate(merged)


def _field_name(key: str) -> Optional[str]:
    if key in FinishingDetails.model_fields:
        return key
    for name, info in FinishingDetails.model_fields.items():
        if info.alias == key:
            return name
    return None
