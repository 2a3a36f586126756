# hm_ledger/pharmacy/models.py
from django.conf import settings
from django.db import models

from hm_ledger.charges.models import Charge, ServiceItem
from hm_ledger.common.models import ScopedModel, TimeStampedModel
from hm_ledger.encounters.models import Encounter
from hm_ledger.orders.models import PaymentStatus


class PrescriptionStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    DISPENSED = "DISPENSED", "Dispensed"
    CANCELLED = "CANCELLED", "Cancelled"


class Prescription(ScopedModel):
    """
    Same two axes as orders: payment_status gates dispensing,
    status tracks the pharmacy workflow.
    """
    encounter = models.ForeignKey(Encounter, on_delete=models.CASCADE, related_name="prescriptions")
    doctor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="prescriptions",
        null=True,
        blank=True,
    )

    payment_status = models.CharField(
        max_length=16, choices=PaymentStatus.choices, default=PaymentStatus.PENDING, db_index=True
    )
    status = models.CharField(
        max_length=16, choices=PrescriptionStatus.choices, default=PrescriptionStatus.PENDING, db_index=True
    )

    # Submitted over a drug-safety warning; the acknowledged interactions are kept for audit.
    safety_override = models.BooleanField(default=False)
    override_reason = models.CharField(max_length=255, blank=True)
    acknowledged_interactions = models.JSONField(default=list, blank=True)

    notes = models.TextField(blank=True)
    dispensed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "pharmacy_prescription"
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "encounter"]),
            models.Index(fields=["tenant_id", "facility_id", "status"]),
        ]


class PrescriptionItem(ScopedModel):
    prescription = models.ForeignKey(Prescription, on_delete=models.CASCADE, related_name="items")
    service_item = models.ForeignKey(ServiceItem, on_delete=models.PROTECT, related_name="prescription_items")
    charge = models.OneToOneField(
        Charge,
        on_delete=models.PROTECT,
        related_name="prescription_item",
        null=True,
        blank=True,
    )

    quantity = models.PositiveIntegerField(default=1)
    dosage = models.CharField(max_length=255, blank=True)

    class Meta:
        db_table = "pharmacy_prescription_item"
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "prescription"]),
        ]


class InteractionSeverity(models.TextChoices):
    MINOR = "MINOR", "Minor"
    MODERATE = "MODERATE", "Moderate"
    MAJOR = "MAJOR", "Major"
    CONTRAINDICATED = "CONTRAINDICATED", "Contraindicated"


class DrugInteraction(TimeStampedModel):
    """
    Interaction knowledge base read by the default checker.
    Pairs are stored once; lookups match both orders.
    """
    drug_a = models.SlugField(max_length=64)
    drug_b = models.SlugField(max_length=64)
    severity = models.CharField(max_length=16, choices=InteractionSeverity.choices)
    description = models.CharField(max_length=255, blank=True)

    class Meta:
        db_table = "pharmacy_drug_interaction"
        constraints = [
            models.UniqueConstraint(fields=["drug_a", "drug_b"], name="uq_drug_interaction_pair"),
        ]
        indexes = [
            models.Index(fields=["drug_a"]),
            models.Index(fields=["drug_b"]),
        ]

    def __str__(self) -> str:
        return f"{self.drug_a} x {self.drug_b} ({self.severity})"
