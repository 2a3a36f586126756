import threading
from decimal import Decimal

import pytest
from django.db import connection
from rest_framework.test import APIClient

from hm_ledger.billing.exceptions import OverpaymentRejected
from hm_ledger.billing.models import Invoice, InvoiceStatus, Payment
from hm_ledger.billing.services import PaymentService


def _race(tenant_id, facility_id, invoice_id, amounts):
    barrier = threading.Barrier(len(amounts))
    outcomes = []
    outcomes_lock = threading.Lock()

    def worker(amount):
        try:
            barrier.wait()
            PaymentService.apply_payment(
                tenant_id=tenant_id, facility_id=facility_id, invoice_id=invoice_id, amount=Decimal(amount)
            )
            result = "ok"
        except OverpaymentRejected:
            result = "rejected"
        except Exception as exc:  # surfaced by the assertion below
            result = repr(exc)
        finally:
            connection.close()
        with outcomes_lock:
            outcomes.append(result)

    threads = [threading.Thread(target=worker, args=(a,)) for a in amounts]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return outcomes


@pytest.mark.django_db(transaction=True)
def test_two_concurrent_full_payments_only_one_wins(tenant_id, facility_id, make_charge, issue):
    inv = issue([make_charge("100")])

    outcomes = _race(tenant_id, facility_id, inv.id, ["100", "100"])

    assert sorted(outcomes) == ["ok", "rejected"]
    inv = Invoice.objects.get(id=inv.id)
    assert inv.paid_amount == Decimal("100.000")
    assert inv.status == InvoiceStatus.PAID
    assert Payment.objects.filter(invoice_id=inv.id).count() == 1


@pytest.mark.django_db(transaction=True)
def test_many_concurrent_partial_payments_never_exceed_net(tenant_id, facility_id, make_charge, issue):
    inv = issue([make_charge("100")])

    outcomes = _race(tenant_id, facility_id, inv.id, ["30"] * 6)

    assert outcomes.count("ok") == 3
    assert outcomes.count("rejected") == 3
    inv = Invoice.objects.get(id=inv.id)
    assert inv.paid_amount == Decimal("90.000")
    assert inv.status == InvoiceStatus.PARTIALLY_PAID


@pytest.mark.django_db(transaction=True)
@pytest.mark.parametrize("amount", ["30", "100"])
def test_same_idempotency_key_from_two_threads_posts_one_payment(
    user, headers, tenant_id, facility_id, make_charge, issue, amount
):
    inv = issue([make_charge("100")])
    url = f"/api/v1/billing/invoices/{inv.id}/payments/"
    barrier = threading.Barrier(2)
    responses = []
    responses_lock = threading.Lock()

    def worker():
        client = APIClient()
        client.force_authenticate(user=user)
        try:
            barrier.wait()
            r = client.post(url, {"amount": amount}, format="json", HTTP_IDEMPOTENCY_KEY="till-7-receipt-42", **headers)
        finally:
            connection.close()
        with responses_lock:
            responses.append(r)

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert [r.status_code for r in responses] == [201, 201], [r.data for r in responses]
    assert str(responses[0].data["id"]) == str(responses[1].data["id"])
    assert Payment.objects.filter(invoice_id=inv.id).count() == 1
    inv = Invoice.objects.get(id=inv.id)
    assert inv.paid_amount == Decimal(amount)
