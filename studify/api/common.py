from __future__ import annotations

from typing import Any, Optional
from uuid import UUID

from studify.errors import ValidationError


def require_uuid(value: Optional[str], label: str) -> str:
    """Reject missing or malformed ids before they reach the store."""
    if not value:
        raise ValidationError(f"{label} ID is required")
    try:
        UUID(str(value))
    except ValueError:
        raise ValidationError(f"Valid {label.lower()} ID is required")
    return str(value)


def ok(data: Any = None, **extra: Any) -> dict[str, Any]:
    body: dict[str, Any] = {"success": True, "data": data}
    body.update(extra)
    return body
