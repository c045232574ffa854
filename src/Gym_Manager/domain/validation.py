"""
Gym_Manager.domain.validation

Input validation for every entity the data service writes.

Each normalize_* function takes the full candidate field dict (after merging
a partial update onto the current values), collects every problem it finds,
and either raises ValidationFailed with the whole list or returns a cleaned
copy ready for the repositories.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from Gym_Manager.domain.errors import ValidationFailed
from Gym_Manager.domain.models import EXPENSE_CATEGORIES, FITNESS_GOALS, GENDERS


# ---------------------------------------------------------------------------
# Scalars
# ---------------------------------------------------------------------------


def parse_day(value: Any) -> date:
    """
    Accept a date, a datetime, 'YYYY-MM-DD' or an ISO datetime string.
    Raises ValueError for anything else.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if len(text) > 10:
            return datetime.fromisoformat(text).date()
        return date.fromisoformat(text)
    raise ValueError(f"not a date: {value!r}")


def to_iso_day(value: Any) -> str:
    return parse_day(value).isoformat()


def _text(fields: Dict[str, Any], key: str, label: str, errors: List[str], required: bool) -> Optional[str]:
    raw = fields.get(key)
    if raw is None:
        if required:
            errors.append(f"{label} is required.")
        return None
    if not isinstance(raw, str):
        errors.append(f"{label} must be text.")
        return None
    cleaned = " ".join(raw.split())
    if required and not cleaned:
        errors.append(f"{label} is required.")
        return None
    return cleaned or None


def _number(
    fields: Dict[str, Any],
    key: str,
    label: str,
    errors: List[str],
    required: bool = True,
    minimum: float = 0.0,
    strictly_positive: bool = False,
) -> Optional[float]:
    raw = fields.get(key)
    if raw is None or raw == "":
        if required:
            errors.append(f"{label} is required.")
        return None
    if isinstance(raw, bool):
        errors.append(f"{label} must be numeric.")
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        errors.append(f"{label} must be numeric.")
        return None
    if strictly_positive and value <= minimum:
        errors.append(f"{label} must be greater than {minimum:g}.")
        return None
    if value < minimum:
        errors.append(f"{label} cannot be less than {minimum:g}.")
        return None
    return value


def _integer(
    fields: Dict[str, Any],
    key: str,
    label: str,
    errors: List[str],
    required: bool = True,
    minimum: int = 0,
) -> Optional[int]:
    raw = fields.get(key)
    if raw is None or raw == "":
        if required:
            errors.append(f"{label} is required.")
        return None
    if isinstance(raw, bool):
        errors.append(f"{label} must be a whole number.")
        return None
    try:
        value = int(raw)
    except (TypeError, ValueError):
        errors.append(f"{label} must be a whole number.")
        return None
    if isinstance(raw, float) and not raw.is_integer():
        errors.append(f"{label} must be a whole number.")
        return None
    if value < minimum:
        errors.append(f"{label} cannot be less than {minimum}.")
        return None
    return value


def _day(fields: Dict[str, Any], key: str, label: str, errors: List[str]) -> Optional[str]:
    raw = fields.get(key)
    if raw is None or raw == "":
        errors.append(f"{label} is required.")
        return None
    try:
        return to_iso_day(raw)
    except (TypeError, ValueError):
        errors.append(f"{label} must be a valid date (YYYY-MM-DD).")
        return None


def _choice(
    fields: Dict[str, Any],
    key: str,
    label: str,
    choices: Tuple[str, ...],
    errors: List[str],
    required: bool = True,
) -> Optional[str]:
    raw = fields.get(key)
    if raw is None or raw == "":
        if required:
            errors.append(f"{label} is required.")
        return None
    value = str(raw).strip().lower()
    if value not in choices:
        errors.append(f"{label} must be one of: {', '.join(choices)}.")
        return None
    return value


def _raise_if(errors: List[str]) -> None:
    if errors:
        raise ValidationFailed(errors)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


def normalize_subscriber_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    errors: List[str] = []
    cleaned: Dict[str, Any] = {
        "name": _text(fields, "name", "Name", errors, required=True),
        "gender": _choice(fields, "gender", "Gender", GENDERS, errors),
        "age": _integer(fields, "age", "Age", errors, required=False, minimum=1),
        "height": _number(fields, "height", "Height", errors, required=False, strictly_positive=True),
        "weight": _number(fields, "weight", "Weight", errors, required=False, strictly_positive=True),
        "fitness_goal": _choice(fields, "fitness_goal", "Fitness goal", FITNESS_GOALS, errors, required=False),
        "custom_goal": _text(fields, "custom_goal", "Custom goal", errors, required=False),
        "phone": _text(fields, "phone", "Phone", errors, required=False),
        "subscription_date": _day(fields, "subscription_date", "Subscription date", errors),
        "subscription_duration": _integer(
            fields, "subscription_duration", "Subscription duration", errors, minimum=1
        ),
        "residence": _text(fields, "residence", "Residence", errors, required=False) or "",
        "price": _number(fields, "price", "Price", errors),
        "debt": _number(fields, "debt", "Debt", errors),
        "notes": _text(fields, "notes", "Notes", errors, required=False),
        "shower": bool(fields.get("shower", False)),
    }
    if cleaned["fitness_goal"] != "custom":
        cleaned["custom_goal"] = None
    _raise_if(errors)
    return cleaned


def normalize_product_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    errors: List[str] = []
    cleaned = {
        "name": _text(fields, "name", "Product name", errors, required=True),
        "quantity": _integer(fields, "quantity", "Quantity", errors, minimum=0),
        "purchase_price": _number(fields, "purchase_price", "Purchase price", errors),
        "selling_price": _number(fields, "selling_price", "Selling price", errors),
        "description": _text(fields, "description", "Description", errors, required=False),
    }
    _raise_if(errors)
    return cleaned


def normalize_expense_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    errors: List[str] = []
    cleaned = {
        "name": _text(fields, "name", "Expense name", errors, required=True),
        "amount": _number(fields, "amount", "Amount", errors, strictly_positive=True),
        "category": _choice(fields, "category", "Category", EXPENSE_CATEGORIES, errors),
        "description": _text(fields, "description", "Description", errors, required=False),
        "date": _day(fields, "date", "Date", errors),
    }
    _raise_if(errors)
    return cleaned


def normalize_class_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    errors: List[str] = []
    cleaned = {
        "name": _text(fields, "name", "Name", errors, required=True),
        "age": _integer(fields, "age", "Age", errors, required=False, minimum=1),
        "date": _day(fields, "date", "Date", errors),
        "price": _number(fields, "price", "Price", errors),
    }
    _raise_if(errors)
    return cleaned


def normalize_training_types(training_types: Iterable[Any]) -> Tuple[str, ...]:
    if isinstance(training_types, str):
        training_types = [training_types]
    cleaned: List[str] = []
    for raw in training_types or []:
        value = " ".join(str(raw).split()).lower()
        if value and value not in cleaned:
            cleaned.append(value)
    if not cleaned:
        raise ValidationFailed(["Select at least one training type."])
    return tuple(cleaned)


def positive_quantity(value: Any, label: str = "Quantity") -> int:
    errors: List[str] = []
    quantity = _integer({"q": value}, "q", label, errors, minimum=1)
    _raise_if(errors)
    return int(quantity)


def reject_fields(changes: Dict[str, Any], forbidden: Iterable[str], allowed: Iterable[str]) -> None:
    """
    Partial updates may only name known, directly editable fields.
    """
    allowed_set = set(allowed)
    errors = []
    for key in changes:
        if key in forbidden:
            errors.append(f"{key} cannot be set directly.")
        elif key not in allowed_set:
            errors.append(f"Unknown field: {key}.")
    _raise_if(errors)
