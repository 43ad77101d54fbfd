# validation.py
import re
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from schemas import FormField, FormSchema

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    try:
        float(str(value).strip())
    except ValueError:
        return False
    return True


def is_iso_date(value: Any) -> bool:
    try:
        date.fromisoformat(str(value).strip())
    except ValueError:
        return False
    return True


def _field_errors(field: FormField, value: Any) -> List[str]:
    errors = []

    if field.type == "email":
        if not isinstance(value, str) or not EMAIL_RE.match(value):
            errors.append(f"Field '{field.name}' must be a valid email address")
    elif field.type == "number":
        if not is_number(value):
            errors.append(f"Field '{field.name}' must be a valid number")
    elif field.type == "checkbox":
        if field.required and field.options and not isinstance(value, list):
            errors.append(f"Field '{field.name}' must be an array of selected options")
        elif field.options and isinstance(value, list):
            if any(v not in field.options for v in value):
                errors.append(f"Field '{field.name}' contains invalid option")
    elif field.type in ("select", "radio"):
        if field.options and isinstance(value, str) and value not in field.options:
            errors.append(f"Field '{field.name}' contains invalid option")
    elif field.type == "date":
        if not is_iso_date(value):
            errors.append(f"Field '{field.name}' must be a valid date (YYYY-MM-DD)")

    return errors


def validate_submission(data: Dict[str, Any], schema: FormSchema) -> Tuple[bool, List[str]]:
    """
    Check submitted answers against the form schema.

    Returns (is_valid, errors). Answers for ids that are not in the schema
    are ignored here; the caller decides whether to keep them.
    """
    errors: List[str] = []

    for field in schema.fields:
        value = data.get(field.id)
        if is_empty(value):
            if field.required:
                errors.append(f"Field '{field.name}' is required")
            continue
        errors.extend(_field_errors(field, value))

    return len(errors) == 0, errors


def validate_answer(field: FormField, value: str) -> Optional[str]:
    """Single typed answer in the step-by-step filler; the message to show, or None."""
    if field.required and is_empty(value):
        return f"{field.name} is required."
    if is_empty(value):
        return None

    if field.type == "email" and not EMAIL_RE.match(value):
        return "Please enter a valid email address."
    if field.type == "number" and not is_number(value):
        return "Please enter a valid number."
    if field.type in ("select", "radio") and field.options and value not in field.options:
        return "Please select a valid option."
    return None
