# hm_ledger/pharmacy/api/serializers.py
from __future__ import annotations

from rest_framework import serializers

from hm_ledger.pharmacy.models import Prescription, PrescriptionItem


class PrescriptionItemSerializer(serializers.ModelSerializer):
    drug_code = serializers.CharField(source="service_item.code", read_only=True)

    class Meta:
        model = PrescriptionItem
        fields = ["id", "drug_code", "service_item", "charge", "quantity", "dosage"]
        read_only_fields = fields


class PrescriptionSerializer(serializers.ModelSerializer):
    items = PrescriptionItemSerializer(many=True, read_only=True)

    class Meta:
        model = Prescription
        fields = [
            "id",
            "tenant_id",
            "facility_id",
            "encounter",
            "doctor",
            "payment_status",
            "status",
            "safety_override",
            "override_reason",
            "acknowledged_interactions",
            "notes",
            "items",
            "dispensed_at",
            "cancelled_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class PrescriptionItemInputSerializer(serializers.Serializer):
    drug_code = serializers.SlugField(max_length=64)
    quantity = serializers.IntegerField(min_value=1, default=1)
    dosage = serializers.CharField(required=False, allow_blank=True, default="", max_length=255)


class PrescriptionCreateSerializer(serializers.Serializer):
    encounter = serializers.UUIDField()
    items = PrescriptionItemInputSerializer(many=True, allow_empty=False)
    override_safety = serializers.BooleanField(default=False)
    override_reason = serializers.CharField(required=False, allow_blank=True, default="")
    notes = serializers.CharField(required=False, allow_blank=True, default="")

    def validate(self, attrs):
        if attrs.get("override_safety") and not (attrs.get("override_reason") or "").strip():
            raise serializers.ValidationError({"override_reason": "Required when override_safety is set."})
        return attrs
