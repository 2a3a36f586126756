# hm_ledger/pharmacy/services.py
from __future__ import annotations

import logging
from uuid import UUID

from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError

from hm_ledger.audit.services import AuditService
from hm_ledger.charges.models import ChargeSourceType
from hm_ledger.charges.selectors import get_active_service_item
from hm_ledger.charges.services import ChargeService
from hm_ledger.common.events import publish_on_commit
from hm_ledger.common.locks import scoped_lock
from hm_ledger.encounters.services import EncounterService
from hm_ledger.orders.exceptions import InvalidTransition
from hm_ledger.orders.gating import OrderGatingService
from hm_ledger.pharmacy.exceptions import SafetyWarning
from hm_ledger.pharmacy.interactions import get_checker
from hm_ledger.pharmacy.models import Prescription, PrescriptionItem, PrescriptionStatus

logger = logging.getLogger(__name__)


class PrescriptionService:
    """
    Prescribing with the drug-safety override protocol, and gated dispensing.
    """

    @staticmethod
    def _existing_drug_codes(*, tenant_id: UUID, facility_id: UUID, encounter_id: UUID) -> list[str]:
        return list(
            PrescriptionItem.objects.filter(
                tenant_id=tenant_id,
                facility_id=facility_id,
                prescription__encounter_id=encounter_id,
                prescription__status__in=[PrescriptionStatus.PENDING, PrescriptionStatus.DISPENSED],
            )
            .values_list("service_item__code", flat=True)
            .distinct()
        )

    @staticmethod
    @transaction.atomic
    def submit(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        encounter_id: UUID,
        items: list[dict],
        override_safety: bool = False,
        override_reason: str = "",
        doctor_id: int | None = None,
        notes: str = "",
        actor_user_id: int | None = None,
    ) -> Prescription:
        """
        items: [{"drug_code": "warfarin", "quantity": 1, "dosage": "5mg od"}, ...]

        Without override_safety, any interaction rejects the whole submission
        with SafetyWarning (nothing is written). With it, the prescription and
        its PHARMACY charges are created and tagged as overridden.
        """
        if not items:
            raise ValidationError({"items": "Provide at least one item."})

        encounter = EncounterService.get_scoped(
            tenant_id=tenant_id, facility_id=facility_id, encounter_id=encounter_id
        )

        resolved = []
        for idx, raw in enumerate(items):
            code = (raw.get("drug_code") or "").strip()
            item = get_active_service_item(tenant_id=tenant_id, facility_id=facility_id, code=code) if code else None
            if item is None or item.source_type != ChargeSourceType.PHARMACY:
                raise ValidationError({"items": {idx: f"Unknown pharmacy item '{code}'."}})
            resolved.append((item, raw))

        new_codes = [item.code for item, _raw in resolved]
        existing_codes = PrescriptionService._existing_drug_codes(
            tenant_id=tenant_id, facility_id=facility_id, encounter_id=encounter.id
        )
        interactions = get_checker()(new_codes, existing_codes)

        if interactions and not override_safety:
            logger.warning(
                "Prescription for encounter %s blocked: %d interaction(s) %s",
                encounter.id,
                len(interactions),
                [(i["drug_a"], i["drug_b"], i["severity"]) for i in interactions],
            )
            raise SafetyWarning(interactions)

        overridden = bool(override_safety and interactions)

        rx = Prescription.objects.create(
            tenant_id=tenant_id,
            facility_id=facility_id,
            encounter=encounter,
            doctor_id=doctor_id,
            safety_override=overridden,
            override_reason=(override_reason or "")[:255] if overridden else "",
            acknowledged_interactions=interactions if overridden else [],
            notes=notes or "",
        )

        for item, raw in resolved:
            charge = ChargeService.create_charge(
                tenant_id=tenant_id,
                facility_id=facility_id,
                encounter_id=encounter.id,
                source_type=ChargeSourceType.PHARMACY,
                source_id=rx.id,
                service_item_id=item.id,
                quantity=raw.get("quantity", 1),
                safety_override=overridden,
                actor_user_id=actor_user_id,
            )
            PrescriptionItem.objects.create(
                tenant_id=tenant_id,
                facility_id=facility_id,
                prescription=rx,
                service_item=item,
                charge=charge,
                quantity=charge.quantity,
                dosage=raw.get("dosage") or "",
            )

        if overridden:
            AuditService.log(
                tenant_id=tenant_id,
                facility_id=facility_id,
                event_code="pharmacy.safety_override",
                entity_type="Prescription",
                entity_id=rx.id,
                actor_user_id=actor_user_id,
                metadata={"interactions": interactions, "reason": rx.override_reason},
            )
            logger.info("Prescription %s submitted over %d interaction warning(s)", rx.id, len(interactions))
        else:
            logger.info("Prescription %s submitted with %d item(s)", rx.id, len(resolved))

        return rx

    @staticmethod
    def dispense(*, tenant_id: UUID, facility_id: UUID, prescription_id: UUID) -> Prescription:
        with scoped_lock("prescription", prescription_id):
            return PrescriptionService._dispense_locked(
                tenant_id=tenant_id, facility_id=facility_id, prescription_id=prescription_id
            )

    @staticmethod
    @transaction.atomic
    def _dispense_locked(*, tenant_id: UUID, facility_id: UUID, prescription_id: UUID) -> Prescription:
        rx = PrescriptionService._get_locked(tenant_id=tenant_id, facility_id=facility_id, prescription_id=prescription_id)

        OrderGatingService.ensure_can_fulfill(rx, action="dispense")
        if rx.status != PrescriptionStatus.PENDING:
            raise InvalidTransition(f"Cannot dispense a prescription in status {rx.status}.")

        rx.status = PrescriptionStatus.DISPENSED
        rx.dispensed_at = timezone.now()
        rx.save(update_fields=["status", "dispensed_at", "updated_at"])

        publish_on_commit(
            "pharmacy.prescription_dispensed",
            {
                "tenant_id": str(tenant_id),
                "facility_id": str(facility_id),
                "prescription_id": str(rx.id),
                "encounter_id": str(rx.encounter_id),
            },
        )
        logger.info("Prescription %s dispensed", rx.id)
        return rx

    @staticmethod
    def cancel(*, tenant_id: UUID, facility_id: UUID, prescription_id: UUID) -> Prescription:
        with scoped_lock("prescription", prescription_id):
            return PrescriptionService._cancel_locked(
                tenant_id=tenant_id, facility_id=facility_id, prescription_id=prescription_id
            )

    @staticmethod
    @transaction.atomic
    def _cancel_locked(*, tenant_id: UUID, facility_id: UUID, prescription_id: UUID) -> Prescription:
        rx = PrescriptionService._get_locked(tenant_id=tenant_id, facility_id=facility_id, prescription_id=prescription_id)
        if rx.status != PrescriptionStatus.PENDING:
            raise InvalidTransition(f"Cannot cancel a prescription in status {rx.status}.")

        rx.status = PrescriptionStatus.CANCELLED
        rx.cancelled_at = timezone.now()
        rx.save(update_fields=["status", "cancelled_at", "updated_at"])
        return rx

    @staticmethod
    def _get_locked(*, tenant_id: UUID, facility_id: UUID, prescription_id: UUID) -> Prescription:
        try:
            return Prescription.objects.select_for_update().get(
                id=prescription_id, tenant_id=tenant_id, facility_id=facility_id
            )
        except Prescription.DoesNotExist:
            raise NotFound("Prescription not found in this scope.")
