# hm_ledger/pharmacy/interactions.py
from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List

from django.conf import settings
from django.db.models import Q
from django.utils.module_loading import import_string

from hm_ledger.pharmacy.models import DrugInteraction

Checker = Callable[..., List[Dict[str, Any]]]


def check_interactions(new_codes: Iterable[str], existing_codes: Iterable[str] = ()) -> List[Dict[str, Any]]:
    """
    Default checker backed by DrugInteraction rows.
    Reports pairs among the new drugs and between new and already-prescribed
    drugs; existing-existing pairs were acknowledged when they were prescribed.
    """
    new = sorted({c for c in new_codes if c})
    existing = sorted({c for c in existing_codes if c} - set(new))
    if not new:
        return []

    universe = set(new) | set(existing)
    rows = DrugInteraction.objects.filter(
        Q(drug_a__in=new, drug_b__in=universe) | Q(drug_b__in=new, drug_a__in=universe)
    ).order_by("drug_a", "drug_b")

    out: List[Dict[str, Any]] = []
    seen = set()
    for row in rows:
        pair = tuple(sorted((row.drug_a, row.drug_b)))
        if pair in seen or row.drug_a == row.drug_b:
            continue
        seen.add(pair)
        out.append(
            {
                "drug_a": row.drug_a,
                "drug_b": row.drug_b,
                "severity": row.severity,
                "description": row.description,
            }
        )
    return out


def get_checker() -> Checker:
    path = getattr(settings, "HM_LEDGER_DRUG_INTERACTION_CHECKER", "") or ""
    if not path:
        return check_interactions
    return import_string(path)
