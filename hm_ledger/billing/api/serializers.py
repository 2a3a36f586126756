# hm_ledger/billing/api/serializers.py
from __future__ import annotations

from decimal import Decimal

from rest_framework import serializers

from hm_ledger.billing.models import CreditNote, Invoice, Payment, PaymentMethod
from hm_ledger.charges.api.serializers import ChargeSerializer

MONEY = {"max_digits": 14, "decimal_places": 3}


class PaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payment
        fields = [
            "id",
            "tenant_id",
            "facility_id",
            "invoice",
            "amount",
            "method",
            "reference",
            "paid_at",
            "recorded_by_user_id",
            "created_at",
        ]
        read_only_fields = fields


class CreditNoteSerializer(serializers.ModelSerializer):
    class Meta:
        model = CreditNote
        fields = [
            "id",
            "tenant_id",
            "facility_id",
            "original_invoice",
            "credit_note_number",
            "reason",
            "total_amount",
            "is_active",
            "created_by_user_id",
            "created_at",
        ]
        read_only_fields = fields


class InvoiceSerializer(serializers.ModelSerializer):
    charges = ChargeSerializer(many=True, read_only=True)
    payments = PaymentSerializer(many=True, read_only=True)
    net_amount = serializers.DecimalField(read_only=True, **MONEY)
    remaining_amount = serializers.DecimalField(read_only=True, **MONEY)

    class Meta:
        model = Invoice
        fields = [
            "id",
            "tenant_id",
            "facility_id",
            "patient",
            "encounter",
            "invoice_number",
            "status",
            "currency",
            "total_amount",
            "discount_amount",
            "net_amount",
            "paid_amount",
            "remaining_amount",
            "issued_at",
            "paid_at",
            "cancelled_at",
            "notes",
            "charges",
            "payments",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class InvoiceCreateSerializer(serializers.Serializer):
    encounter = serializers.UUIDField()
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class InvoiceIssueSerializer(serializers.Serializer):
    encounter = serializers.UUIDField()
    charge_ids = serializers.ListField(child=serializers.UUIDField(), allow_empty=False)
    discount_amount = serializers.DecimalField(default=Decimal("0.000"), **MONEY)
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class AttachChargesSerializer(serializers.Serializer):
    charge_ids = serializers.ListField(child=serializers.UUIDField(), allow_empty=False)


class DiscountSerializer(serializers.Serializer):
    discount_amount = serializers.DecimalField(**MONEY)


class ReasonSerializer(serializers.Serializer):
    # Blank is accepted here so the service can answer with reason_required.
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class PaymentCreateSerializer(serializers.Serializer):
    amount = serializers.DecimalField(**MONEY)
    method = serializers.ChoiceField(choices=PaymentMethod.choices, default=PaymentMethod.CASH)
    reference = serializers.CharField(required=False, allow_blank=True, default="", max_length=64)


class StatementRowSerializer(serializers.Serializer):
    date = serializers.DateTimeField()
    kind = serializers.CharField()
    ref = serializers.CharField()
    description = serializers.CharField()
    debit = serializers.DecimalField(**MONEY)
    credit = serializers.DecimalField(**MONEY)
    running_balance = serializers.DecimalField(**MONEY)
