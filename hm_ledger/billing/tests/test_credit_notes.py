from decimal import Decimal

import pytest

from hm_ledger.billing.exceptions import InvoiceNotPayable, ReasonRequired, ReturnAlreadyExists
from hm_ledger.billing.models import CreditNote, InvoiceStatus
from hm_ledger.billing.services import CreditNoteService, InvoiceService
from hm_ledger.common.events import subscribe, unsubscribe
from hm_ledger.orders.exceptions import InvalidTransition
from hm_ledger.orders.models import OrderStatus, PaymentStatus
from hm_ledger.orders.services import OrderService

pytestmark = pytest.mark.django_db


def _return(tenant_id, facility_id, invoice, reason="Patient refused test"):
    return CreditNoteService.create_return(
        tenant_id=tenant_id, facility_id=facility_id, invoice_id=invoice.id, reason=reason
    )


def test_return_negates_net_and_cancels_invoice(tenant_id, facility_id, make_charge, issue, pay):
    inv = issue([make_charge("120")], discount="20")
    pay(inv, "100")

    cn = _return(tenant_id, facility_id, inv)

    assert cn.total_amount == Decimal("-100.000")
    assert cn.is_active
    assert cn.credit_note_number == "CN-000001"
    inv.refresh_from_db()
    assert inv.status == InvoiceStatus.CANCELLED
    assert inv.cancelled_at is not None


@pytest.mark.parametrize("paid", [None, "40"])
def test_issued_and_partially_paid_invoices_are_returnable(tenant_id, facility_id, make_charge, issue, pay, paid):
    inv = issue([make_charge("100")])
    if paid:
        pay(inv, paid)

    cn = _return(tenant_id, facility_id, inv)
    assert cn.total_amount == Decimal("-100.000")


def test_second_return_rejected(tenant_id, facility_id, make_charge, issue):
    inv = issue([make_charge("50")])
    _return(tenant_id, facility_id, inv)

    with pytest.raises(ReturnAlreadyExists):
        _return(tenant_id, facility_id, inv)
    assert CreditNote.objects.filter(original_invoice=inv).count() == 1


@pytest.mark.parametrize("reason", ["", "   "])
def test_reason_required(tenant_id, facility_id, make_charge, issue, reason):
    inv = issue([make_charge("50")])
    with pytest.raises(ReasonRequired):
        _return(tenant_id, facility_id, inv, reason=reason)


def test_draft_cannot_be_returned(tenant_id, facility_id, encounter):
    draft = InvoiceService.create_draft(tenant_id=tenant_id, facility_id=facility_id, encounter_id=encounter.id)
    with pytest.raises(InvalidTransition):
        _return(tenant_id, facility_id, draft)


def test_returned_invoice_accepts_no_payment(tenant_id, facility_id, make_charge, issue, pay):
    inv = issue([make_charge("50")])
    _return(tenant_id, facility_id, inv)
    with pytest.raises(InvoiceNotPayable):
        pay(inv, "10")


def test_return_resets_unfulfilled_orders_but_keeps_completed_ones(
    tenant_id, facility_id, encounter, cbc_item, issue, pay
):
    done, done_charge = OrderService.create_order(
        tenant_id=tenant_id, facility_id=facility_id, encounter_id=encounter.id, order_type="LAB",
        service_item_id=cbc_item.id,
    )
    waiting, waiting_charge = OrderService.create_order(
        tenant_id=tenant_id, facility_id=facility_id, encounter_id=encounter.id, order_type="LAB",
        service_item_id=cbc_item.id,
    )
    inv = issue([done_charge, waiting_charge])
    pay(inv, "200")

    OrderService.start(tenant_id=tenant_id, facility_id=facility_id, order_id=done.id)
    OrderService.complete(tenant_id=tenant_id, facility_id=facility_id, order_id=done.id, result_payload={"hb": 13})

    _return(tenant_id, facility_id, inv)

    done.refresh_from_db()
    waiting.refresh_from_db()
    # A rendered service is not un-rendered by a refund.
    assert done.status == OrderStatus.COMPLETED
    assert done.payment_status == PaymentStatus.PAID
    assert done.result_payload == {"hb": 13}
    # The order that was never fulfilled is gated again.
    assert waiting.status == OrderStatus.PENDING
    assert waiting.payment_status == PaymentStatus.PENDING


def test_return_leaves_waived_orders_alone(tenant_id, facility_id, lab_order, issue):
    order, charge = lab_order
    OrderService.waive(tenant_id=tenant_id, facility_id=facility_id, order_id=order.id, reason="Charity case")
    inv = issue([charge])

    _return(tenant_id, facility_id, inv)

    order.refresh_from_db()
    assert order.payment_status == PaymentStatus.WAIVED


def test_credit_note_event_fires_after_commit(tenant_id, facility_id, make_charge, issue, django_capture_on_commit_callbacks):
    got = []

    @subscribe("billing.credit_note_created")
    def handler(payload):
        got.append(payload)

    try:
        inv = issue([make_charge("50")])
        with django_capture_on_commit_callbacks(execute=True):
            cn = _return(tenant_id, facility_id, inv)
    finally:
        unsubscribe("billing.credit_note_created", handler)

    assert got == [
        {
            "tenant_id": str(tenant_id),
            "facility_id": str(facility_id),
            "invoice_id": str(inv.id),
            "credit_note_id": str(cn.id),
        }
    ]
