# hm_ledger/encounters/services.py
from __future__ import annotations

from uuid import UUID

from django.db import IntegrityError, transaction
from rest_framework.exceptions import ValidationError

from hm_ledger.encounters.models import Encounter, EncounterStatus
from hm_ledger.patients.models import Patient


class EncounterService:
    @staticmethod
    @transaction.atomic
    def create(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        patient_id: UUID,
        reason: str = "",
        attending_doctor_id: int | None = None,
    ) -> Encounter:
        patient = Patient.objects.get(id=patient_id, tenant_id=tenant_id, facility_id=facility_id)

        try:
            with transaction.atomic():
                return Encounter.objects.create(
                    tenant_id=tenant_id,
                    facility_id=facility_id,
                    patient=patient,
                    status=EncounterStatus.OPEN,
                    reason=reason or "",
                    attending_doctor_id=attending_doctor_id,
                )
        except IntegrityError:
            raise ValidationError({"patient": "Patient already has an open encounter in this facility."})

    @staticmethod
    def get_scoped(*, tenant_id: UUID, facility_id: UUID, encounter_id: UUID) -> Encounter:
        try:
            return Encounter.objects.get(id=encounter_id, tenant_id=tenant_id, facility_id=facility_id)
        except Encounter.DoesNotExist:
            raise ValidationError({"encounter": "Encounter not found in this scope."})
