from datetime import datetime, timezone as dt_timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from hm_ledger.billing.services import CreditNoteService
from hm_ledger.billing.statement import RowKind, StatementProjector, StatementService

T0 = datetime(2025, 1, 1, 9, 0, tzinfo=dt_timezone.utc)


def _invoice(net, at=T0, number="INV-000001"):
    return SimpleNamespace(
        id=number,
        invoice_number=number,
        issued_at=at,
        net_amount=Decimal(net),
    )


def _payment(invoice, amount, at=T0, reference=""):
    return SimpleNamespace(
        invoice_id=invoice.id,
        invoice=invoice,
        amount=Decimal(amount),
        paid_at=at,
        method="CASH",
        reference=reference,
    )


def test_same_instant_invoice_sorts_before_its_payment():
    inv = _invoice("100")
    statement = StatementProjector.project(invoices=[inv], payments=[_payment(inv, "100")])

    rows = statement.rows()
    assert [r.kind for r in rows] == [RowKind.INVOICE, RowKind.PAYMENT]
    assert [r.running_balance for r in rows] == [Decimal("100.000"), Decimal("0.000")]


def test_payment_listed_first_in_input_still_follows_invoice():
    inv = _invoice("100")
    statement = StatementProjector.project(payments=[_payment(inv, "40")], invoices=[inv])
    assert [r.kind for r in statement] == [RowKind.INVOICE, RowKind.PAYMENT]


def test_iterating_twice_yields_identical_rows():
    inv = _invoice("100")
    statement = StatementProjector.project(invoices=[inv], payments=[_payment(inv, "30")])
    assert statement.rows() == statement.rows()
    assert statement.closing_balance == Decimal("70.000")


def test_unissued_and_zero_net_invoices_are_skipped():
    draft = SimpleNamespace(id="d", invoice_number="", issued_at=None, net_amount=Decimal("10"))
    free = _invoice("0", number="INV-000002")
    assert StatementProjector.project(invoices=[draft, free]).rows() == []


@pytest.mark.django_db
def test_patient_statement_with_payments_and_return(tenant_id, facility_id, patient, make_charge, issue, pay):
    inv = issue([make_charge("100", description="Consultation")])
    pay(inv, "40")
    pay(inv, "60")

    statement = StatementService.for_patient(tenant_id=tenant_id, facility_id=facility_id, patient_id=patient.id)
    rows = statement.rows()
    assert [r.running_balance for r in rows] == [Decimal("100.000"), Decimal("60.000"), Decimal("0.000")]
    assert "Consultation" in rows[0].description

    CreditNoteService.create_return(
        tenant_id=tenant_id, facility_id=facility_id, invoice_id=inv.id, reason="Duplicate visit"
    )

    rows = StatementService.for_patient(tenant_id=tenant_id, facility_id=facility_id, patient_id=patient.id).rows()
    assert rows[-1].kind == RowKind.CREDIT_NOTE
    assert rows[-1].debit == Decimal("-100.000")
    # Negative balance: the clinic owes the patient a refund.
    assert rows[-1].running_balance == Decimal("-100.000")
