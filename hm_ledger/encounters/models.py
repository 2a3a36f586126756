# hm_ledger/encounters/models.py
from django.conf import settings
from django.db import models
from django.db.models import Q

from hm_ledger.common.models import ScopedModel
from hm_ledger.patients.models import Patient


class EncounterStatus(models.TextChoices):
    OPEN = "OPEN", "Open"
    CLOSED = "CLOSED", "Closed"
    CANCELLED = "CANCELLED", "Cancelled"


class Encounter(ScopedModel):
    """
    Visit container. Charges are owned by the encounter they were raised in.
    """
    patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name="encounters")

    status = models.CharField(max_length=16, choices=EncounterStatus.choices, default=EncounterStatus.OPEN, db_index=True)
    reason = models.CharField(max_length=255, blank=True)

    attending_doctor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="doctor_encounters",
        null=True,
        blank=True,
    )

    closed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "encounters_encounter"
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "patient"]),
        ]
        constraints = [
            # One active encounter per patient per facility.
            models.UniqueConstraint(
                fields=["tenant_id", "facility_id", "patient"],
                condition=Q(status="OPEN"),
                name="uq_open_encounter_per_patient_scope",
            ),
        ]

    def __str__(self) -> str:
        return f"Encounter({self.patient_id}, {self.status})"
