# hm_ledger/orders/gating.py
from __future__ import annotations

import logging
from uuid import UUID

from django.apps import apps
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from hm_ledger.billing.models import InvoiceStatus
from hm_ledger.charges.models import Charge, ChargeSourceType
from hm_ledger.orders.exceptions import PaymentRequired
from hm_ledger.orders.models import PaymentStatus

logger = logging.getLogger(__name__)

FULFILLABLE_PAYMENT_STATUSES = frozenset({PaymentStatus.PAID, PaymentStatus.WAIVED})

# A charge stops holding its document back once its invoice is settled or reversed.
_CLOSED_INVOICE_STATUSES = (InvoiceStatus.PAID, InvoiceStatus.CANCELLED)

# charge source types -> (gated model, status that counts as "service rendered")
_GATED_SOURCES = (
    ((ChargeSourceType.LAB, ChargeSourceType.RADIOLOGY), ("orders", "Order"), "COMPLETED"),
    ((ChargeSourceType.PHARMACY,), ("pharmacy", "Prescription"), "DISPENSED"),
)


class OrderGatingService:
    """
    Fulfillment permission is a pure function of payment_status.

    The sync helpers below are the only writers of payment_status PENDING <-> PAID
    and are always called inside the billing transaction that caused the change,
    so the ledger write and the gating write commit or roll back together.
    """

    @staticmethod
    def can_fulfill(doc) -> bool:
        return doc.payment_status in FULFILLABLE_PAYMENT_STATUSES

    @staticmethod
    def ensure_can_fulfill(doc, *, action: str) -> None:
        if OrderGatingService.can_fulfill(doc):
            return
        logger.warning(
            "Blocked %s on %s %s: payment_status=%s",
            action,
            type(doc).__name__,
            doc.pk,
            doc.payment_status,
        )
        raise PaymentRequired(f"Cannot {action}: billing for this {type(doc).__name__.lower()} is not settled.")

    @staticmethod
    def _gated_ids_for_invoice(*, tenant_id: UUID, facility_id: UUID, invoice_id: UUID, source_types) -> list:
        return list(
            Charge.objects.filter(
                tenant_id=tenant_id,
                facility_id=facility_id,
                invoice_id=invoice_id,
                source_type__in=list(source_types),
                source_id__isnull=False,
            )
            .values_list("source_id", flat=True)
            .distinct()
        )

    @staticmethod
    def _with_open_charges(*, tenant_id: UUID, facility_id: UUID, ids, source_types) -> set:
        """Documents that still have a charge uninvoiced or on an unsettled invoice."""
        return set(
            Charge.objects.filter(
                tenant_id=tenant_id,
                facility_id=facility_id,
                source_type__in=list(source_types),
                source_id__in=ids,
            )
            .filter(Q(invoice__isnull=True) | ~Q(invoice__status__in=_CLOSED_INVOICE_STATUSES))
            .values_list("source_id", flat=True)
        )

    @staticmethod
    @transaction.atomic
    def mark_paid_for_invoice(*, tenant_id: UUID, facility_id: UUID, invoice_id: UUID) -> int:
        """
        Invoice settled: PENDING -> PAID for every gated document whose charge
        is on it, provided none of its other charges is still unbilled or
        unpaid. WAIVED stays WAIVED.
        """
        flipped = 0
        for source_types, model_label, _done_status in _GATED_SOURCES:
            ids = OrderGatingService._gated_ids_for_invoice(
                tenant_id=tenant_id, facility_id=facility_id, invoice_id=invoice_id, source_types=source_types
            )
            held = OrderGatingService._with_open_charges(
                tenant_id=tenant_id, facility_id=facility_id, ids=ids, source_types=source_types
            )
            if held:
                logger.info("Invoice %s settled but %d document(s) still have open charges", invoice_id, len(held))
            ids = [i for i in ids if i not in held]
            if not ids:
                continue
            model = apps.get_model(*model_label)
            flipped += model.objects.filter(
                tenant_id=tenant_id,
                facility_id=facility_id,
                id__in=ids,
                payment_status=PaymentStatus.PENDING,
            ).update(payment_status=PaymentStatus.PAID, updated_at=timezone.now())

        if flipped:
            logger.info("Invoice %s settled: %d gated document(s) marked PAID", invoice_id, flipped)
        return flipped

    @staticmethod
    @transaction.atomic
    def revert_for_invoice(*, tenant_id: UUID, facility_id: UUID, invoice_id: UUID) -> int:
        """
        Invoice reversed by a credit note: PAID -> PENDING, except where the
        clinical act was already rendered (COMPLETED order / DISPENSED
        prescription). Money can be returned after the service; the service
        is not un-done.
        """
        reverted = 0
        for source_types, model_label, done_status in _GATED_SOURCES:
            ids = OrderGatingService._gated_ids_for_invoice(
                tenant_id=tenant_id, facility_id=facility_id, invoice_id=invoice_id, source_types=source_types
            )
            if not ids:
                continue
            model = apps.get_model(*model_label)
            reverted += (
                model.objects.filter(
                    tenant_id=tenant_id,
                    facility_id=facility_id,
                    id__in=ids,
                    payment_status=PaymentStatus.PAID,
                )
                .exclude(status=done_status)
                .update(payment_status=PaymentStatus.PENDING, updated_at=timezone.now())
            )

        if reverted:
            logger.info("Invoice %s reversed: %d gated document(s) reset to PENDING", invoice_id, reverted)
        return reverted
