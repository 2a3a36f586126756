import pytest

from hm_ledger.orders.exceptions import PaymentRequired
from hm_ledger.orders.gating import OrderGatingService
from hm_ledger.orders.models import OrderStatus, PaymentStatus
from hm_ledger.orders.services import OrderService

pytestmark = pytest.mark.django_db


def test_can_fulfill_is_a_function_of_payment_status(lab_order):
    order, _charge = lab_order

    for status, expected in [("PENDING", False), ("PAID", True), ("WAIVED", True)]:
        order.payment_status = status
        assert OrderGatingService.can_fulfill(order) is expected


def test_start_rejected_until_invoice_paid(tenant_id, facility_id, lab_order, issue, pay):
    order, charge = lab_order

    with pytest.raises(PaymentRequired):
        OrderService.start(tenant_id=tenant_id, facility_id=facility_id, order_id=order.id)

    inv = issue([charge])
    pay(inv, "50")
    order.refresh_from_db()
    assert order.payment_status == PaymentStatus.PENDING
    with pytest.raises(PaymentRequired):
        OrderService.start(tenant_id=tenant_id, facility_id=facility_id, order_id=order.id)

    pay(inv, "50")
    order.refresh_from_db()
    assert order.payment_status == PaymentStatus.PAID

    started = OrderService.start(tenant_id=tenant_id, facility_id=facility_id, order_id=order.id)
    assert started.status == OrderStatus.IN_PROGRESS


def test_gate_rereads_after_credit_note(tenant_id, facility_id, lab_order, issue, pay):
    from hm_ledger.billing.services import CreditNoteService

    order, charge = lab_order
    inv = issue([charge])
    pay(inv, "100")

    stale = type(order).objects.get(id=order.id)
    assert stale.payment_status == PaymentStatus.PAID

    CreditNoteService.create_return(tenant_id=tenant_id, facility_id=facility_id, invoice_id=inv.id, reason="Refund")

    # The service locks and re-reads the row; the stale copy above is irrelevant.
    with pytest.raises(PaymentRequired):
        OrderService.start(tenant_id=tenant_id, facility_id=facility_id, order_id=stale.id)


def test_fully_discounted_invoice_releases_its_orders(tenant_id, facility_id, lab_order, issue):
    order, charge = lab_order
    issue([charge], discount="100")

    order.refresh_from_db()
    assert order.payment_status == PaymentStatus.PAID


def test_waived_order_can_be_fulfilled_without_invoice(tenant_id, facility_id, lab_order):
    order, _charge = lab_order
    OrderService.waive(tenant_id=tenant_id, facility_id=facility_id, order_id=order.id, reason="Staff benefit")

    started = OrderService.start(tenant_id=tenant_id, facility_id=facility_id, order_id=order.id)
    assert started.status == OrderStatus.IN_PROGRESS
