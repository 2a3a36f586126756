# hm_ledger/billing/statement.py
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Iterator, List
from uuid import UUID

from hm_ledger.billing.selectors import credit_notes_filtered, invoices_filtered, payments_filtered
from hm_ledger.charges.selectors import charges_filtered
from hm_ledger.common.money import MONEY_PLACES, ZERO


class RowKind:
    INVOICE = "INVOICE"
    PAYMENT = "PAYMENT"
    CREDIT_NOTE = "CREDIT_NOTE"


# Same-instant tie-break: a document precedes its own settlement.
_KIND_RANK = {
    RowKind.INVOICE: 0,
    RowKind.PAYMENT: 1,
    RowKind.CREDIT_NOTE: 2,
}


@dataclass(frozen=True)
class StatementRow:
    date: datetime
    kind: str
    ref: str
    description: str
    debit: Decimal
    credit: Decimal
    running_balance: Decimal


@dataclass(frozen=True)
class _Entry:
    date: datetime
    kind: str
    ref: str
    description: str
    debit: Decimal
    credit: Decimal


class Statement:
    """
    Lazy, restartable row sequence. Every iteration rebuilds the rows from the
    sources and recomputes balances from zero, so two passes always agree.

    Sign convention: positive balance = patient owes; negative = refund due.
    """

    def __init__(self, *, charges: Iterable, invoices: Iterable, payments: Iterable, credit_notes: Iterable):
        self._charges = charges
        self._invoices = invoices
        self._payments = payments
        self._credit_notes = credit_notes

    def _entries(self) -> List[_Entry]:
        lines_by_invoice = defaultdict(list)
        for charge in self._charges:
            if charge.invoice_id is not None:
                lines_by_invoice[charge.invoice_id].append(charge.description or charge.source_type)

        entries: List[_Entry] = []

        for inv in self._invoices:
            if inv.issued_at is None:
                continue
            net = inv.net_amount
            if net == ZERO:
                continue
            ref = inv.invoice_number or str(inv.id)
            lines = lines_by_invoice.get(inv.id, [])
            entries.append(
                _Entry(
                    date=inv.issued_at,
                    kind=RowKind.INVOICE,
                    ref=ref,
                    description=f"Invoice {ref}" + (f": {', '.join(lines)}" if lines else ""),
                    debit=net,
                    credit=ZERO,
                )
            )

        for pay in self._payments:
            inv_ref = pay.invoice.invoice_number if pay.invoice_id else ""
            entries.append(
                _Entry(
                    date=pay.paid_at,
                    kind=RowKind.PAYMENT,
                    ref=pay.reference or inv_ref,
                    description=f"Payment ({pay.method}) for {inv_ref}".strip(),
                    debit=ZERO,
                    credit=pay.amount,
                )
            )

        for cn in self._credit_notes:
            entries.append(
                _Entry(
                    date=cn.created_at,
                    kind=RowKind.CREDIT_NOTE,
                    ref=cn.credit_note_number,
                    description=f"Credit note for {cn.original_invoice.invoice_number}: {cn.reason}",
                    # total_amount is already negative: it lowers what the patient owes.
                    debit=cn.total_amount,
                    credit=ZERO,
                )
            )

        entries.sort(key=lambda e: (e.date, _KIND_RANK[e.kind]))
        return entries

    def __iter__(self) -> Iterator[StatementRow]:
        balance = ZERO
        for e in self._entries():
            balance = (balance + e.debit - e.credit).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)
            yield StatementRow(
                date=e.date,
                kind=e.kind,
                ref=e.ref,
                description=e.description,
                debit=e.debit,
                credit=e.credit,
                running_balance=balance,
            )

    def rows(self) -> List[StatementRow]:
        return list(self)

    @property
    def closing_balance(self) -> Decimal:
        balance = ZERO
        for row in self:
            balance = row.running_balance
        return balance


class StatementProjector:
    @staticmethod
    def project(*, charges: Iterable = (), invoices: Iterable = (), payments: Iterable = (), credit_notes: Iterable = ()) -> Statement:
        return Statement(charges=charges, invoices=invoices, payments=payments, credit_notes=credit_notes)


class StatementService:
    @staticmethod
    def for_patient(*, tenant_id: UUID, facility_id: UUID, patient_id: UUID) -> Statement:
        return StatementProjector.project(
            charges=charges_filtered(tenant_id=tenant_id, facility_id=facility_id, patient_id=patient_id),
            invoices=invoices_filtered(tenant_id=tenant_id, facility_id=facility_id, patient_id=patient_id),
            payments=payments_filtered(tenant_id=tenant_id, facility_id=facility_id, patient_id=patient_id),
            credit_notes=credit_notes_filtered(tenant_id=tenant_id, facility_id=facility_id, patient_id=patient_id),
        )
