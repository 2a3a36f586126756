# hm_ledger/common/locks.py
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Tuple

# (namespace, key) -> [lock, holders]
_REGISTRY: Dict[Tuple[str, str], list] = {}
_REGISTRY_LOCK = threading.Lock()


@contextmanager
def scoped_lock(namespace: str, key) -> Iterator[None]:
    """
    Per-key mutex for ledger writes ("invoice", "order", "prescription").

    Take it OUTSIDE transaction.atomic so the second caller only opens its
    transaction after the first one committed, and therefore reads the
    committed paid_amount / payment_status. Rows are still re-read with
    select_for_update() inside the transaction, which is what serializes
    separate processes on PostgreSQL.

    Re-entrant: a service holding the invoice lock may call another service
    that asks for the same key.
    """
    registry_key = (namespace, str(key))

    with _REGISTRY_LOCK:
        entry = _REGISTRY.get(registry_key)
        if entry is None:
            entry = [threading.RLock(), 0]
            _REGISTRY[registry_key] = entry
        entry[1] += 1

    lock = entry[0]
    lock.acquire()
    try:
        yield
    finally:
        lock.release()
        with _REGISTRY_LOCK:
            entry[1] -= 1
            if entry[1] == 0:
                _REGISTRY.pop(registry_key, None)


def active_lock_count() -> int:
    with _REGISTRY_LOCK:
        return len(_REGISTRY)
