# hm_ledger/patients/models.py
from django.db import models
from hm_ledger.common.models import ScopedModel


class Patient(ScopedModel):
    """
    Patient record scoped to tenant+facility.
    Only what the ledger and statements need: identity and MRN.
    """
    full_name = models.CharField(max_length=255)
    phone = models.CharField(max_length=32, blank=True)

    # facility-local medical record number
    mrn = models.CharField(max_length=64)

    class Meta:
        db_table = "patients_patient"
        constraints = [
            models.UniqueConstraint(
                fields=["tenant_id", "facility_id", "mrn"],
                name="uq_patient_scope_mrn",
            ),
        ]
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "full_name"]),
        ]

    def __str__(self) -> str:
        return f"{self.full_name} ({self.mrn})"
