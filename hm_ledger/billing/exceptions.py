# hm_ledger/billing/exceptions.py
from __future__ import annotations

from hm_ledger.common.api.exceptions import BusinessRuleError, ConflictError


class InvalidDiscount(BusinessRuleError):
    default_detail = "Discount must be between 0 and the invoice total."
    default_code = "invalid_discount"


class InvalidAmount(BusinessRuleError):
    default_detail = "Amount must be greater than zero."
    default_code = "invalid_amount"


class ReasonRequired(BusinessRuleError):
    default_detail = "A reason is required."
    default_code = "reason_required"


class InvoiceNotPayable(ConflictError):
    default_detail = "Invoice does not accept payments in its current state."
    default_code = "invoice_not_payable"


class OverpaymentRejected(ConflictError):
    default_detail = "Payment exceeds the remaining balance."
    default_code = "overpayment_rejected"


class ReturnAlreadyExists(ConflictError):
    default_detail = "Invoice already has an active credit note."
    default_code = "return_already_exists"
