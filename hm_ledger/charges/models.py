# hm_ledger/charges/models.py
from __future__ import annotations

from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import models

from hm_ledger.common.models import ScopedModel
from hm_ledger.common.money import to_money
from hm_ledger.encounters.models import Encounter


class ChargeSourceType(models.TextChoices):
    CONSULTATION = "CONSULTATION", "Consultation"
    LAB = "LAB", "Lab"
    RADIOLOGY = "RADIOLOGY", "Radiology"
    PHARMACY = "PHARMACY", "Pharmacy"
    BED = "BED", "Bed"
    PROCEDURE = "PROCEDURE", "Procedure"


class ServiceItem(ScopedModel):
    """
    Price catalog. One record per tenant+facility+code.
    Charges snapshot default_price at charge time; editing the catalog
    never re-prices existing charges.
    """
    code = models.SlugField(max_length=64)
    name = models.CharField(max_length=255)
    source_type = models.CharField(max_length=16, choices=ChargeSourceType.choices)

    default_price = models.DecimalField(max_digits=14, decimal_places=3, default=Decimal("0.000"))

    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = "charges_service_item"
        constraints = [
            models.UniqueConstraint(
                fields=["tenant_id", "facility_id", "code"],
                name="uq_service_item_scope_code",
            )
        ]
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "source_type", "is_active"]),
        ]

    def __str__(self) -> str:
        return f"{self.code} ({self.default_price})"


class Charge(ScopedModel):
    """
    One billable clinical fact, owned by its encounter.

    Append-only: after creation the only mutable column is `invoice`
    (attach on invoicing, detach when a DRAFT invoice is cancelled).
    """
    IMMUTABLE_FIELDS = (
        "encounter_id",
        "source_type",
        "source_id",
        "service_item_id",
        "quantity",
        "unit_price",
        "total_amount",
        "safety_override",
    )

    encounter = models.ForeignKey(Encounter, on_delete=models.PROTECT, related_name="charges")

    source_type = models.CharField(max_length=16, choices=ChargeSourceType.choices, db_index=True)
    # Order / prescription id that generated the charge (no FK: producers live in other apps).
    source_id = models.UUIDField(null=True, blank=True, db_index=True)
    service_item = models.ForeignKey(
        ServiceItem,
        on_delete=models.PROTECT,
        related_name="charges",
        null=True,
        blank=True,
    )
    description = models.CharField(max_length=255, blank=True)

    quantity = models.PositiveIntegerField(default=1)
    unit_price = models.DecimalField(max_digits=14, decimal_places=3)
    total_amount = models.DecimalField(max_digits=14, decimal_places=3)

    invoice = models.ForeignKey(
        "billing.Invoice",
        on_delete=models.PROTECT,
        related_name="charges",
        null=True,
        blank=True,
    )

    # Set when a prescription was submitted over a drug-safety warning.
    safety_override = models.BooleanField(default=False)

    created_by_user_id = models.IntegerField(null=True, blank=True)

    class Meta:
        db_table = "charges_charge"
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "encounter"]),
            models.Index(fields=["tenant_id", "facility_id", "invoice"]),
            models.Index(fields=["tenant_id", "facility_id", "source_type", "source_id"]),
        ]

    def __str__(self) -> str:
        return f"Charge({self.source_type}, {self.total_amount})"

    def save(self, *args, **kwargs):
        if self._state.adding:
            self.unit_price = to_money(self.unit_price, "unit_price")
            self.total_amount = to_money(self.unit_price * int(self.quantity), "total_amount")
            return super().save(*args, **kwargs)

        original = type(self).objects.filter(pk=self.pk).values(*self.IMMUTABLE_FIELDS).first()
        if original is not None:
            changed = [f for f in self.IMMUTABLE_FIELDS if original[f] != getattr(self, f)]
            if changed:
                raise ValidationError(f"Charge fields are immutable once created: {', '.join(changed)}")
        return super().save(*args, **kwargs)
