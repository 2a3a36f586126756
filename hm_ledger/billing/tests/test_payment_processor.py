from decimal import Decimal

import pytest
from django.core.exceptions import ValidationError as DjangoValidationError
from rest_framework.exceptions import ValidationError

from hm_ledger.audit.selectors import list_audit_events
from hm_ledger.billing.exceptions import InvalidAmount, InvoiceNotPayable, OverpaymentRejected
from hm_ledger.billing.models import InvoiceStatus, Payment
from hm_ledger.billing.services import InvoiceService, PaymentService

pytestmark = pytest.mark.django_db


def test_partial_then_full_payment(tenant_id, facility_id, make_charge, issue, pay):
    inv = issue([make_charge("100")])

    pay(inv, "60")
    inv.refresh_from_db()
    assert inv.status == InvoiceStatus.PARTIALLY_PAID
    assert inv.paid_amount == Decimal("60.000")
    assert inv.remaining_amount == Decimal("40.000")

    pay(inv, "40")
    inv.refresh_from_db()
    assert inv.status == InvoiceStatus.PAID
    assert inv.paid_amount == Decimal("100.000")
    assert inv.paid_at is not None

    events = list_audit_events(
        tenant_id=tenant_id, facility_id=facility_id, entity_id=inv.id, event_code="billing.payment_applied"
    )
    assert len(events) == 2


def test_payment_respects_discount(make_charge, issue, pay):
    inv = issue([make_charge("100")], discount="10")

    with pytest.raises(OverpaymentRejected):
        pay(inv, "100")

    pay(inv, "90")
    inv.refresh_from_db()
    assert inv.status == InvoiceStatus.PAID


def test_overpayment_by_one_unit_rejected_and_nothing_written(make_charge, issue, pay):
    inv = issue([make_charge("100")])
    pay(inv, "99.999")

    with pytest.raises(OverpaymentRejected):
        pay(inv, "0.002")

    inv.refresh_from_db()
    assert inv.paid_amount == Decimal("99.999")
    assert inv.status == InvoiceStatus.PARTIALLY_PAID
    assert Payment.objects.filter(invoice=inv).count() == 1


@pytest.mark.parametrize("amount", ["0", "-5", "0.0004"])
def test_non_positive_amount_rejected(make_charge, issue, pay, amount):
    # 0.0004 rounds to 0.000 at ledger precision.
    inv = issue([make_charge("10")])
    with pytest.raises(InvalidAmount):
        pay(inv, amount)


def test_unknown_method_rejected(make_charge, issue, pay):
    inv = issue([make_charge("10")])
    with pytest.raises(ValidationError):
        pay(inv, "5", method="BITCOIN")


def test_draft_invoice_not_payable(tenant_id, facility_id, encounter, make_charge):
    draft = InvoiceService.create_draft(tenant_id=tenant_id, facility_id=facility_id, encounter_id=encounter.id)
    InvoiceService.attach_charges(
        tenant_id=tenant_id, facility_id=facility_id, invoice_id=draft.id, charge_ids=[make_charge("10").id]
    )
    with pytest.raises(InvoiceNotPayable):
        PaymentService.apply_payment(
            tenant_id=tenant_id, facility_id=facility_id, invoice_id=draft.id, amount=Decimal("5")
        )


def test_paid_invoice_rejects_further_payment(make_charge, issue, pay):
    inv = issue([make_charge("10")])
    pay(inv, "10")
    with pytest.raises(OverpaymentRejected):
        pay(inv, "0.001")


def test_payments_are_immutable(make_charge, issue, pay):
    inv = issue([make_charge("10")])
    payment = pay(inv, "5")
    payment.amount = Decimal("1")
    with pytest.raises(DjangoValidationError):
        payment.save()


def test_payment_scoped_to_tenant(tenant_id, make_charge, issue):
    import uuid

    from rest_framework.exceptions import NotFound

    inv = issue([make_charge("10")])
    with pytest.raises(NotFound):
        PaymentService.apply_payment(
            tenant_id=tenant_id, facility_id=uuid.uuid4(), invoice_id=inv.id, amount=Decimal("5")
        )
