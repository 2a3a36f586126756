from __future__ import annotations

from uuid import UUID

from rest_framework.exceptions import ValidationError


def uuid_or_none(value: str | None, field_name: str) -> UUID | None:
    if not value:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        raise ValidationError({field_name: "Invalid UUID"})


def uuid_or_400(value, field_name: str = "id") -> UUID:
    out = uuid_or_none(value, field_name)
    if out is None:
        raise ValidationError({field_name: "This field is required."})
    return out
