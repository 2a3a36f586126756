from decimal import Decimal

import pytest

from hm_ledger.audit.selectors import list_audit_events
from hm_ledger.billing.models import CreditNote, Invoice, InvoiceStatus, Payment
from hm_ledger.billing.services import CreditNoteService
from hm_ledger.orders.gating import OrderGatingService
from hm_ledger.orders.models import Order, PaymentStatus

pytestmark = pytest.mark.django_db


class GateDown(Exception):
    pass


def _boom(**kwargs):
    raise GateDown("gating store unavailable")


def test_failed_paid_flip_rolls_back_the_payment(monkeypatch, tenant_id, facility_id, lab_order, issue, pay):
    order, charge = lab_order
    inv = issue([charge])
    monkeypatch.setattr(OrderGatingService, "mark_paid_for_invoice", _boom)

    with pytest.raises(GateDown):
        pay(inv, "100")

    assert not Payment.objects.filter(invoice_id=inv.id).exists()
    inv = Invoice.objects.get(id=inv.id)
    assert inv.paid_amount == Decimal("0.000")
    assert inv.status == InvoiceStatus.ISSUED
    assert Order.objects.get(id=order.id).payment_status == PaymentStatus.PENDING
    assert not list_audit_events(
        tenant_id=tenant_id, facility_id=facility_id, entity_id=inv.id, event_code="billing.payment_applied"
    ).exists()


def test_failed_revert_rolls_back_the_credit_note(monkeypatch, tenant_id, facility_id, lab_order, issue, pay):
    order, charge = lab_order
    inv = issue([charge])
    pay(inv, "100")
    monkeypatch.setattr(OrderGatingService, "revert_for_invoice", _boom)

    with pytest.raises(GateDown):
        CreditNoteService.create_return(
            tenant_id=tenant_id, facility_id=facility_id, invoice_id=inv.id, reason="Sample haemolysed"
        )

    assert not CreditNote.objects.filter(original_invoice_id=inv.id).exists()
    inv = Invoice.objects.get(id=inv.id)
    assert inv.status == InvoiceStatus.PAID
    assert inv.paid_amount == Decimal("100.000")
    assert Order.objects.get(id=order.id).payment_status == PaymentStatus.PAID
