# hm_ledger/billing/aggregator.py
from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from hm_ledger.billing.exceptions import InvalidDiscount
from hm_ledger.billing.models import Invoice, InvoiceStatus
from hm_ledger.common.money import ZERO, money_sum, to_money


class InvoiceAggregator:
    """
    Pure totals arithmetic for invoices. No queries, no saves.

    recompute() sets total_amount from the attached charges and validates the
    caller-set discount against it. Calling it twice with the same inputs
    yields the same invoice.
    """

    @staticmethod
    def recompute(invoice: Invoice, charges: Iterable) -> Invoice:
        total = money_sum(c.total_amount for c in charges)
        discount = to_money(invoice.discount_amount or ZERO, "discount_amount")

        InvoiceAggregator.validate_discount(total=total, discount=discount)

        invoice.total_amount = total
        invoice.discount_amount = discount
        return invoice

    @staticmethod
    def validate_discount(*, total: Decimal, discount: Decimal) -> None:
        if discount < ZERO:
            raise InvalidDiscount("Discount cannot be negative.")
        if discount > total:
            raise InvalidDiscount(f"Discount {discount} exceeds invoice total {total}.")

    @staticmethod
    def status_for(*, paid_amount: Decimal, net_amount: Decimal) -> str:
        if paid_amount == net_amount:
            return InvoiceStatus.PAID
        if ZERO < paid_amount < net_amount:
            return InvoiceStatus.PARTIALLY_PAID
        return InvoiceStatus.ISSUED
