"""Required-field checks applied before a ticket is submitted."""

from __future__ import annotations

from typing import Any, Iterable

from .errors import ValidationFailure
from .models import Ticket


def get_nested_value(source: Any, path: str) -> Any:
    """Resolve a dotted ``path`` against attributes and mapping keys."""

    current = source
    for key in path.split("."):
        if current is None:
            return None
        if isinstance(current, dict):
            current = current.get(key)
        else:
            current = getattr(current, key, None)
    return current


def is_field_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def missing_fields(ticket: Ticket, required: Iterable[str]) -> list[str]:
    return [path for path in required if is_field_empty(get_nested_value(ticket, path))]


def ensure_submittable(ticket: Ticket, required: Iterable[str]) -> None:
    missing = missing_fields(ticket, required)
    if missing:
        raise ValidationFailure(f"Required fields missing for submission: {', '.join(missing)}")
