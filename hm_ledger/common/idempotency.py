# hm_ledger/common/idempotency.py
from __future__ import annotations

from hm_ledger.common.models import IdempotencyRecord


def get_key(request):
    # In DRF test client: "HTTP_IDEMPOTENCY_KEY" becomes request.META["HTTP_IDEMPOTENCY_KEY"]
    return request.META.get("HTTP_IDEMPOTENCY_KEY")


def _lookup(tenant_id, facility_id, user_id, method, path, key) -> dict:
    return {
        "tenant_id": tenant_id,
        "facility_id": facility_id,
        "user_id": int(user_id or 0),
        "method": method.upper(),
        "path": path,
        "idempotency_key": str(key),
    }


def load_response(tenant_id, facility_id, user_id, method, path, key):
    if not key:
        return None

    rec = IdempotencyRecord.objects.filter(**_lookup(tenant_id, facility_id, user_id, method, path, key)).first()
    return None if rec is None else rec.response_data


def save_response(tenant_id, facility_id, user_id, method, path, key, response_data, status_code: int = 200):
    """
    Records the response for a key. Must run inside the transaction that
    performed the write: a second request carrying the same key hits the
    unique constraint here and its write rolls back with it.
    """
    if not key:
        return
    IdempotencyRecord.objects.create(
        **_lookup(tenant_id, facility_id, user_id, method, path, key),
        status_code=int(status_code),
        response_data=response_data,
    )


def replay_or_raise(tenant_id, facility_id, user_id, method, path, key, exc: Exception):
    """
    Called when a write carrying `key` failed. A concurrent request with the
    same key may have won the race (unique clash on the record, or a business
    rule tripped by its effect); its stored response is returned. Otherwise
    `exc` is re-raised.
    """
    cached = load_response(tenant_id, facility_id, user_id, method, path, key)
    if cached is None:
        raise exc
    return cached
