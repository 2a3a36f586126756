# hm_ledger/conftest.py
import uuid
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from hm_ledger.patients.models import Patient


def scope_headers(tenant_id, facility_id):
    """
    Standard scope headers used by the scope resolver.
    DRF test client requires HTTP_ prefix.
    """
    return {
        "HTTP_X_TENANT_ID": str(tenant_id),
        "HTTP_X_FACILITY_ID": str(facility_id),
    }


@pytest.fixture
def tenant_id():
    return uuid.UUID("00000000-0000-0000-0000-000000000001")


@pytest.fixture
def facility_id():
    return uuid.UUID("00000000-0000-0000-0000-000000000101")


@pytest.fixture
def headers(tenant_id, facility_id):
    return scope_headers(tenant_id, facility_id)


@pytest.fixture
def user(db):
    User = get_user_model()
    return User.objects.create_user(username="cashier", password="testpass", is_active=True)


@pytest.fixture
def api_client(user):
    c = APIClient()
    c.force_authenticate(user=user)
    return c


@pytest.fixture
def patient(db, tenant_id, facility_id):
    return Patient.objects.create(
        tenant_id=tenant_id,
        facility_id=facility_id,
        full_name="Test Patient",
        mrn="MRN-TEST-001",
    )


@pytest.fixture
def encounter(tenant_id, facility_id, patient, user):
    from hm_ledger.encounters.services import EncounterService

    return EncounterService.create(
        tenant_id=tenant_id,
        facility_id=facility_id,
        patient_id=patient.id,
        reason="Fever",
        attending_doctor_id=user.id,
    )


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------
def _item(tenant_id, facility_id, code, name, source_type, price):
    from hm_ledger.charges.services import ServiceItemService

    return ServiceItemService.upsert(
        tenant_id=tenant_id,
        facility_id=facility_id,
        code=code,
        name=name,
        source_type=source_type,
        default_price=Decimal(price),
    )


@pytest.fixture
def consult_item(db, tenant_id, facility_id):
    return _item(tenant_id, facility_id, "consult", "Consultation", "CONSULTATION", "40.000")


@pytest.fixture
def cbc_item(db, tenant_id, facility_id):
    return _item(tenant_id, facility_id, "cbc", "Complete blood count", "LAB", "100.000")


@pytest.fixture
def xray_item(db, tenant_id, facility_id):
    return _item(tenant_id, facility_id, "chest-xray", "Chest X-ray", "RADIOLOGY", "250.000")


@pytest.fixture
def drugs(db, tenant_id, facility_id):
    """
    warfarin + aspirin interact (MAJOR); paracetamol is clean.
    """
    from hm_ledger.pharmacy.models import DrugInteraction

    items = {
        "warfarin": _item(tenant_id, facility_id, "warfarin", "Warfarin 5mg", "PHARMACY", "12.500"),
        "aspirin": _item(tenant_id, facility_id, "aspirin", "Aspirin 75mg", "PHARMACY", "3.250"),
        "paracetamol": _item(tenant_id, facility_id, "paracetamol", "Paracetamol 500mg", "PHARMACY", "2.000"),
    }
    DrugInteraction.objects.create(
        drug_a="aspirin",
        drug_b="warfarin",
        severity="MAJOR",
        description="Increased bleeding risk",
    )
    return items


# ---------------------------------------------------------------------------
# Ledger helpers
# ---------------------------------------------------------------------------
@pytest.fixture
def make_charge(tenant_id, facility_id, encounter):
    from hm_ledger.charges.services import ChargeService

    def _make(amount="100.000", *, source_type="CONSULTATION", source_id=None, quantity=1, description="Consultation"):
        return ChargeService.create_charge(
            tenant_id=tenant_id,
            facility_id=facility_id,
            encounter_id=encounter.id,
            source_type=source_type,
            source_id=source_id,
            quantity=quantity,
            unit_price=Decimal(amount),
            description=description,
        )

    return _make


@pytest.fixture
def issue(tenant_id, facility_id, encounter):
    """
    issue(charges, discount="0") -> issued Invoice
    """
    from hm_ledger.billing.services import InvoiceService

    def _issue(charges, discount="0.000"):
        return InvoiceService.issue_invoice(
            tenant_id=tenant_id,
            facility_id=facility_id,
            encounter_id=encounter.id,
            charge_ids=[c.id for c in charges],
            discount_amount=Decimal(discount),
        )

    return _issue


@pytest.fixture
def pay(tenant_id, facility_id):
    from hm_ledger.billing.services import PaymentService

    def _pay(invoice, amount, method="CASH", reference=""):
        return PaymentService.apply_payment(
            tenant_id=tenant_id,
            facility_id=facility_id,
            invoice_id=invoice.id,
            amount=Decimal(amount),
            method=method,
            reference=reference,
        )

    return _pay


@pytest.fixture
def lab_order(tenant_id, facility_id, encounter, cbc_item):
    """
    LAB order with its generating charge: (order, charge).
    """
    from hm_ledger.orders.services import OrderService

    return OrderService.create_order(
        tenant_id=tenant_id,
        facility_id=facility_id,
        encounter_id=encounter.id,
        order_type="LAB",
        service_item_id=cbc_item.id,
    )
