# hm_ledger/orders/exceptions.py
from __future__ import annotations

from rest_framework import status

from hm_ledger.common.api.exceptions import BusinessRuleError, ConflictError


class InvalidTransition(ConflictError):
    default_detail = "Transition is not allowed from the current state."
    default_code = "invalid_transition"


class PaymentRequired(BusinessRuleError):
    """
    Raised by the fulfillment gate. Clients show "settle billing first"
    for this code rather than a generic error.
    """
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_detail = "Payment is required before this order can be fulfilled."
    default_code = "payment_required"
