# hm_ledger/pharmacy/exceptions.py
from __future__ import annotations

from hm_ledger.common.api.exceptions import ConflictError


class SafetyWarning(ConflictError):
    """
    Prescription rejected because of drug interactions. The caller may
    resubmit with override_safety=true after reviewing `interactions`.
    """
    default_detail = "Drug interaction warning. Resubmit with override_safety to proceed."
    default_code = "SAFETY_WARNING"

    def __init__(self, interactions: list[dict], detail: str | None = None):
        self.interactions = list(interactions)
        super().__init__(
            detail={
                "detail": detail or self.default_detail,
                "interactions": self.interactions,
            }
        )
