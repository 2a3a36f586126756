from decimal import Decimal

import pytest
from rest_framework.exceptions import ValidationError

from hm_ledger.billing.exceptions import ReasonRequired
from hm_ledger.billing.services import CreditNoteService
from hm_ledger.charges.models import Charge
from hm_ledger.common.events import subscribe, unsubscribe
from hm_ledger.orders.exceptions import InvalidTransition
from hm_ledger.orders.models import OrderResult, OrderStatus, PaymentStatus
from hm_ledger.orders.services import OrderService

pytestmark = pytest.mark.django_db


def _paid_lab_order(tenant_id, facility_id, lab_order, issue, pay):
    order, charge = lab_order
    inv = issue([charge])
    pay(inv, "100")
    return order, inv


def test_create_order_generates_a_charge(lab_order, cbc_item):
    order, charge = lab_order

    assert order.payment_status == PaymentStatus.PENDING
    assert order.status == OrderStatus.PENDING
    assert charge.source_type == "LAB"
    assert charge.source_id == order.id
    assert charge.total_amount == cbc_item.default_price


def test_create_order_rejects_item_of_another_type(tenant_id, facility_id, encounter, xray_item):
    with pytest.raises(ValidationError):
        OrderService.create_order(
            tenant_id=tenant_id,
            facility_id=facility_id,
            encounter_id=encounter.id,
            order_type="LAB",
            service_item_id=xray_item.id,
        )


def test_complete_twice_keeps_latest_payload_and_versions(tenant_id, facility_id, lab_order, issue, pay):
    order, _inv = _paid_lab_order(tenant_id, facility_id, lab_order, issue, pay)
    OrderService.start(tenant_id=tenant_id, facility_id=facility_id, order_id=order.id)

    first = OrderService.complete(
        tenant_id=tenant_id, facility_id=facility_id, order_id=order.id, result_payload={"hb": 11.2}
    )
    completed_at = first.completed_at
    second = OrderService.complete(
        tenant_id=tenant_id, facility_id=facility_id, order_id=order.id, result_payload={"hb": 12.1}
    )

    assert second.status == OrderStatus.COMPLETED
    assert second.result_payload == {"hb": 12.1}
    assert second.completed_at == completed_at

    versions = list(OrderResult.objects.filter(order=order).order_by("version"))
    assert [(v.version, v.is_amendment) for v in versions] == [(1, False), (2, True)]
    assert versions[0].result_payload == {"hb": 11.2}


def test_complete_requires_object_payload(tenant_id, facility_id, lab_order):
    order, _charge = lab_order
    with pytest.raises(ValidationError):
        OrderService.complete(tenant_id=tenant_id, facility_id=facility_id, order_id=order.id, result_payload=[1])


def test_dispatch_events_fire_on_commit(tenant_id, facility_id, lab_order, issue, pay, django_capture_on_commit_callbacks):
    order, _inv = _paid_lab_order(tenant_id, facility_id, lab_order, issue, pay)
    got = []

    @subscribe("lab.order_started")
    def on_started(payload):
        got.append(("started", payload["order_id"]))

    @subscribe("lab.result_amended")
    def on_amended(payload):
        got.append(("amended", payload["outcome"]))

    try:
        with django_capture_on_commit_callbacks(execute=True):
            OrderService.start(tenant_id=tenant_id, facility_id=facility_id, order_id=order.id)
            OrderService.complete(tenant_id=tenant_id, facility_id=facility_id, order_id=order.id, result_payload={})
            OrderService.complete(tenant_id=tenant_id, facility_id=facility_id, order_id=order.id, result_payload={"x": 1})
    finally:
        unsubscribe("lab.order_started", on_started)
        unsubscribe("lab.result_amended", on_amended)

    assert got == [("started", str(order.id)), ("amended", "AMENDED")]


def test_radiology_schedule_then_start(tenant_id, facility_id, encounter, xray_item, issue, pay):
    order, charge = OrderService.create_order(
        tenant_id=tenant_id,
        facility_id=facility_id,
        encounter_id=encounter.id,
        order_type="RADIOLOGY",
        service_item_id=xray_item.id,
        priority="URGENT",
    )
    scheduled = OrderService.schedule(tenant_id=tenant_id, facility_id=facility_id, order_id=order.id)
    assert scheduled.status == OrderStatus.SCHEDULED
    assert scheduled.scheduled_at is not None

    pay(issue([charge]), "250")
    started = OrderService.start(tenant_id=tenant_id, facility_id=facility_id, order_id=order.id)
    assert started.status == OrderStatus.IN_PROGRESS


def test_cancel_then_nothing_else(tenant_id, facility_id, lab_order):
    order, _charge = lab_order
    cancelled = OrderService.cancel(tenant_id=tenant_id, facility_id=facility_id, order_id=order.id)
    assert cancelled.status == OrderStatus.CANCELLED
    assert cancelled.cancelled_at is not None

    with pytest.raises(InvalidTransition):
        OrderService.cancel(tenant_id=tenant_id, facility_id=facility_id, order_id=order.id)
    with pytest.raises(InvalidTransition):
        OrderService.waive(tenant_id=tenant_id, facility_id=facility_id, order_id=order.id, reason="x")


def test_waive_requires_reason_and_is_idempotent(tenant_id, facility_id, lab_order):
    order, _charge = lab_order

    with pytest.raises(ReasonRequired):
        OrderService.waive(tenant_id=tenant_id, facility_id=facility_id, order_id=order.id, reason=" ")

    first = OrderService.waive(tenant_id=tenant_id, facility_id=facility_id, order_id=order.id, reason="Charity")
    again = OrderService.waive(tenant_id=tenant_id, facility_id=facility_id, order_id=order.id, reason="Other")
    assert first.payment_status == again.payment_status == PaymentStatus.WAIVED
    assert again.waiver_reason == "Charity"


def test_paid_order_cannot_be_waived(tenant_id, facility_id, lab_order, issue, pay):
    order, _inv = _paid_lab_order(tenant_id, facility_id, lab_order, issue, pay)
    with pytest.raises(InvalidTransition):
        OrderService.waive(tenant_id=tenant_id, facility_id=facility_id, order_id=order.id, reason="late")


def test_rebill_after_return_copies_snapshot_price(tenant_id, facility_id, lab_order, cbc_item, issue, pay):
    from hm_ledger.charges.services import ServiceItemService

    order, inv = _paid_lab_order(tenant_id, facility_id, lab_order, issue, pay)

    # Settled orders have nothing to rebill.
    with pytest.raises(InvalidTransition):
        OrderService.rebill(tenant_id=tenant_id, facility_id=facility_id, order_id=order.id)

    CreditNoteService.create_return(tenant_id=tenant_id, facility_id=facility_id, invoice_id=inv.id, reason="Refund")
    ServiceItemService.upsert(
        tenant_id=tenant_id,
        facility_id=facility_id,
        code=cbc_item.code,
        name=cbc_item.name,
        source_type=cbc_item.source_type,
        default_price="180",
    )

    charge = OrderService.rebill(tenant_id=tenant_id, facility_id=facility_id, order_id=order.id)
    assert charge.invoice_id is None
    assert charge.unit_price == Decimal("100.000")
    assert Charge.objects.filter(source_id=order.id).count() == 2

    # Billing the new charge settles the order again.
    pay(issue([charge]), "100")
    order.refresh_from_db()
    assert order.payment_status == PaymentStatus.PAID


def test_create_order_rolls_back_when_response_cannot_be_recorded(tenant_id, facility_id, encounter, cbc_item):
    from django.db import IntegrityError

    from hm_ledger.orders.models import Order

    def _duplicate_key(order):
        raise IntegrityError("duplicate idempotency key")

    with pytest.raises(IntegrityError):
        OrderService.create_order(
            tenant_id=tenant_id,
            facility_id=facility_id,
            encounter_id=encounter.id,
            order_type="LAB",
            service_item_id=cbc_item.id,
            record_response=_duplicate_key,
        )

    assert Order.objects.count() == 0
    assert Charge.objects.count() == 0
