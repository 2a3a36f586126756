# hm_ledger/orders/models.py
from django.conf import settings
from django.db import models

from hm_ledger.charges.models import ServiceItem
from hm_ledger.common.models import ScopedModel
from hm_ledger.encounters.models import Encounter


class OrderType(models.TextChoices):
    LAB = "LAB", "Lab"
    RADIOLOGY = "RADIOLOGY", "Radiology"


class OrderPriority(models.TextChoices):
    ROUTINE = "ROUTINE", "Routine"
    URGENT = "URGENT", "Urgent"
    STAT = "STAT", "Stat"


class PaymentStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    PAID = "PAID", "Paid"
    WAIVED = "WAIVED", "Waived"


class OrderStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    SCHEDULED = "SCHEDULED", "Scheduled"  # radiology only, treated as PENDING
    IN_PROGRESS = "IN_PROGRESS", "In Progress"
    COMPLETED = "COMPLETED", "Completed"
    CANCELLED = "CANCELLED", "Cancelled"


class Order(ScopedModel):
    """
    Lab or radiology request. Two independent axes:
      payment_status  - driven by the ledger (invoice paid / credit note / waiver)
      status          - driven by ClinicalOrderStateMachine
    """
    encounter = models.ForeignKey(Encounter, on_delete=models.CASCADE, related_name="orders")
    order_type = models.CharField(max_length=16, choices=OrderType.choices)
    priority = models.CharField(max_length=16, choices=OrderPriority.choices, default=OrderPriority.ROUTINE)

    service_item = models.ForeignKey(
        ServiceItem,
        on_delete=models.PROTECT,
        related_name="orders",
        null=True,
        blank=True,
    )
    doctor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="ordered_orders",
        null=True,
        blank=True,
    )

    payment_status = models.CharField(
        max_length=16, choices=PaymentStatus.choices, default=PaymentStatus.PENDING, db_index=True
    )
    status = models.CharField(max_length=16, choices=OrderStatus.choices, default=OrderStatus.PENDING, db_index=True)

    result_payload = models.JSONField(default=dict, blank=True)
    waiver_reason = models.CharField(max_length=255, blank=True)
    notes = models.TextField(blank=True)

    scheduled_at = models.DateTimeField(null=True, blank=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "orders_order"
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "encounter"]),
            models.Index(fields=["tenant_id", "facility_id", "order_type", "status"]),
        ]

    def __str__(self) -> str:
        return f"{self.order_type} order {self.id} ({self.status}/{self.payment_status})"


class OrderResult(ScopedModel):
    """
    Append-only result versions. Version 1 is the first result,
    every later version is an amendment.
    """
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="results")

    version = models.PositiveIntegerField()
    result_payload = models.JSONField(default=dict)
    is_amendment = models.BooleanField(default=False)

    recorded_by_user_id = models.IntegerField(null=True, blank=True)

    class Meta:
        db_table = "orders_order_result"
        constraints = [
            models.UniqueConstraint(
                fields=["tenant_id", "facility_id", "order", "version"],
                name="uq_order_result_version_per_order_scope",
            )
        ]
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "order"]),
        ]
