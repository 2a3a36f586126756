# hm_ledger/common/scope.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from rest_framework.exceptions import ValidationError

MISSING_SCOPE_MSG = "Missing scope headers. Provide X-Tenant-Id and X-Facility-Id."
INVALID_SCOPE_MSG = "Invalid scope headers. X-Tenant-Id and X-Facility-Id must be UUIDs."


@dataclass(frozen=True)
class Scope:
    tenant_id: UUID
    facility_id: UUID


HDR_TENANT = "X-Tenant-Id"
HDR_FACILITY = "X-Facility-Id"


def _parse_uuid(value) -> Optional[UUID]:
    try:
        return UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        return None


def _get_header(request, name: str) -> Optional[str]:
    """
    request.headers is case-insensitive; fallback to META for pytest/client.
    """
    headers = getattr(request, "headers", None)
    if headers is not None:
        v = headers.get(name)
        if v:
            return v

    meta_key = "HTTP_" + name.upper().replace("-", "_")
    return request.META.get(meta_key)


def resolve_scope(request) -> Optional[Scope]:
    """
    Returns Scope if BOTH headers are present and valid, None if neither is sent.
    Raises ValidationError for partial or malformed headers.
    """
    tenant_raw = _get_header(request, HDR_TENANT)
    facility_raw = _get_header(request, HDR_FACILITY)

    if not tenant_raw and not facility_raw:
        return None
    if not tenant_raw or not facility_raw:
        raise ValidationError({"detail": MISSING_SCOPE_MSG})

    tenant_id = _parse_uuid(tenant_raw)
    facility_id = _parse_uuid(facility_raw)
    if not tenant_id or not facility_id:
        raise ValidationError({"detail": INVALID_SCOPE_MSG})

    return Scope(tenant_id=tenant_id, facility_id=facility_id)


def require_scope(request) -> Scope:
    scope = resolve_scope(request)
    if scope is None:
        raise ValidationError({"detail": MISSING_SCOPE_MSG})

    request.tenant_id = scope.tenant_id
    request.facility_id = scope.facility_id
    return scope
