# hm_ledger/billing/models.py
from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Q
from django.utils import timezone

from hm_ledger.common.models import ScopedModel
from hm_ledger.encounters.models import Encounter
from hm_ledger.patients.models import Patient


def _default_currency() -> str:
    return getattr(settings, "HM_LEDGER_CURRENCY", "LYD")


class InvoiceStatus(models.TextChoices):
    DRAFT = "DRAFT", "Draft"
    ISSUED = "ISSUED", "Issued"
    PARTIALLY_PAID = "PARTIALLY_PAID", "Partially Paid"
    PAID = "PAID", "Paid"
    CANCELLED = "CANCELLED", "Cancelled"


class Invoice(ScopedModel):
    """
    Billing document grouping the charges of one encounter.

    total_amount is always the sum of attached charges (InvoiceAggregator);
    paid_amount is written only by PaymentService.
    """
    patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name="invoices")
    encounter = models.ForeignKey(Encounter, on_delete=models.PROTECT, related_name="invoices")

    invoice_number = models.CharField(max_length=32, blank=True)  # assigned on issue
    status = models.CharField(max_length=32, choices=InvoiceStatus.choices, default=InvoiceStatus.DRAFT, db_index=True)

    currency = models.CharField(max_length=8, default=_default_currency)

    total_amount = models.DecimalField(max_digits=14, decimal_places=3, default=Decimal("0.000"))
    discount_amount = models.DecimalField(max_digits=14, decimal_places=3, default=Decimal("0.000"))
    paid_amount = models.DecimalField(max_digits=14, decimal_places=3, default=Decimal("0.000"))

    issued_at = models.DateTimeField(null=True, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    notes = models.TextField(blank=True)

    class Meta:
        db_table = "billing_invoice"
        constraints = [
            models.UniqueConstraint(
                fields=["tenant_id", "facility_id", "invoice_number"],
                condition=~Q(invoice_number=""),
                name="uq_invoice_scope_number",
            )
        ]
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "status", "created_at"]),
            models.Index(fields=["tenant_id", "facility_id", "patient", "created_at"]),
            models.Index(fields=["tenant_id", "facility_id", "encounter", "created_at"]),
        ]

    def __str__(self) -> str:
        return f"{self.invoice_number or self.id} ({self.status})"

    @property
    def net_amount(self) -> Decimal:
        return (self.total_amount or Decimal("0.000")) - (self.discount_amount or Decimal("0.000"))

    @property
    def remaining_amount(self) -> Decimal:
        return self.net_amount - (self.paid_amount or Decimal("0.000"))


class PaymentMethod(models.TextChoices):
    CASH = "CASH", "Cash"
    CARD = "CARD", "Card"
    TRANSFER = "TRANSFER", "Bank Transfer"
    INSURANCE = "INSURANCE", "Insurance"
    OTHER = "OTHER", "Other"


class Payment(ScopedModel):
    """
    Immutable once created; corrections go through a credit note and a new payment.
    """
    invoice = models.ForeignKey(Invoice, on_delete=models.PROTECT, related_name="payments")
    amount = models.DecimalField(max_digits=14, decimal_places=3)
    method = models.CharField(max_length=16, choices=PaymentMethod.choices, default=PaymentMethod.CASH)

    reference = models.CharField(max_length=64, blank=True)
    paid_at = models.DateTimeField(default=timezone.now)
    recorded_by_user_id = models.IntegerField(null=True, blank=True)

    class Meta:
        db_table = "billing_payment"
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "invoice", "paid_at"]),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError("Payments are immutable once recorded.")
        return super().save(*args, **kwargs)


class CreditNote(ScopedModel):
    """
    Full reversal of an issued invoice. total_amount is the negated net amount.
    At most one active credit note per invoice (partial unique constraint).
    """
    original_invoice = models.ForeignKey(Invoice, on_delete=models.PROTECT, related_name="credit_notes")
    credit_note_number = models.CharField(max_length=32)

    reason = models.TextField()
    total_amount = models.DecimalField(max_digits=14, decimal_places=3)
    is_active = models.BooleanField(default=True)

    created_by_user_id = models.IntegerField(null=True, blank=True)

    class Meta:
        db_table = "billing_credit_note"
        constraints = [
            models.UniqueConstraint(
                fields=["original_invoice"],
                condition=Q(is_active=True),
                name="uq_active_credit_note_per_invoice",
            ),
            models.UniqueConstraint(
                fields=["tenant_id", "facility_id", "credit_note_number"],
                name="uq_credit_note_scope_number",
            ),
        ]
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "created_at"]),
        ]

    def __str__(self) -> str:
        return f"{self.credit_note_number} -> {self.original_invoice_id}"
