# hm_ledger/billing/selectors.py
from __future__ import annotations

from uuid import UUID

from django.db.models import QuerySet

from hm_ledger.billing.models import CreditNote, Invoice, Payment


def invoices_qs(*, tenant_id: UUID, facility_id: UUID) -> QuerySet[Invoice]:
    return Invoice.objects.filter(tenant_id=tenant_id, facility_id=facility_id)


def invoices_filtered(
    *,
    tenant_id: UUID,
    facility_id: UUID,
    patient_id: UUID | None = None,
    encounter_id: UUID | None = None,
    status: str | None = None,
) -> QuerySet[Invoice]:
    qs = invoices_qs(tenant_id=tenant_id, facility_id=facility_id).order_by("-created_at")

    if patient_id:
        qs = qs.filter(patient_id=patient_id)

    if encounter_id:
        qs = qs.filter(encounter_id=encounter_id)

    if status:
        qs = qs.filter(status=status)

    return qs


def payments_filtered(
    *,
    tenant_id: UUID,
    facility_id: UUID,
    invoice_id: UUID | None = None,
    patient_id: UUID | None = None,
) -> QuerySet[Payment]:
    qs = (
        Payment.objects.filter(tenant_id=tenant_id, facility_id=facility_id)
        .select_related("invoice")
        .order_by("paid_at")
    )
    if invoice_id:
        qs = qs.filter(invoice_id=invoice_id)
    if patient_id:
        qs = qs.filter(invoice__patient_id=patient_id)
    return qs


def credit_notes_filtered(
    *,
    tenant_id: UUID,
    facility_id: UUID,
    invoice_id: UUID | None = None,
    patient_id: UUID | None = None,
    active_only: bool = True,
) -> QuerySet[CreditNote]:
    qs = (
        CreditNote.objects.filter(tenant_id=tenant_id, facility_id=facility_id)
        .select_related("original_invoice")
        .order_by("created_at")
    )
    if active_only:
        qs = qs.filter(is_active=True)
    if invoice_id:
        qs = qs.filter(original_invoice_id=invoice_id)
    if patient_id:
        qs = qs.filter(original_invoice__patient_id=patient_id)
    return qs
