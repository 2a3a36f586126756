from __future__ import annotations

from uuid import UUID

from django.db.models import QuerySet

from hm_ledger.charges.models import Charge, ServiceItem


def get_active_service_item(*, tenant_id: UUID, facility_id: UUID, code: str) -> ServiceItem | None:
    return (
        ServiceItem.objects.filter(
            tenant_id=tenant_id,
            facility_id=facility_id,
            code=code,
            is_active=True,
        )
        .order_by("-created_at")
        .first()
    )


def charges_filtered(
    *,
    tenant_id: UUID,
    facility_id: UUID,
    encounter_id: UUID | None = None,
    patient_id: UUID | None = None,
    invoice_id: UUID | None = None,
    uninvoiced: bool = False,
) -> QuerySet[Charge]:
    qs = (
        Charge.objects.filter(tenant_id=tenant_id, facility_id=facility_id)
        .select_related("service_item")
        .order_by("created_at")
    )

    if encounter_id:
        qs = qs.filter(encounter_id=encounter_id)
    if patient_id:
        qs = qs.filter(encounter__patient_id=patient_id)
    if invoice_id:
        qs = qs.filter(invoice_id=invoice_id)
    if uninvoiced:
        qs = qs.filter(invoice__isnull=True)

    return qs


def charges_for_source(*, tenant_id: UUID, facility_id: UUID, source_type, source_id: UUID) -> QuerySet[Charge]:
    if isinstance(source_type, str):
        source_type = [source_type]
    return Charge.objects.filter(
        tenant_id=tenant_id,
        facility_id=facility_id,
        source_type__in=list(source_type),
        source_id=source_id,
    ).order_by("created_at")
