# hm_ledger/charges/api/serializers.py
from __future__ import annotations

from rest_framework import serializers

from hm_ledger.charges.models import Charge, ChargeSourceType


class ChargeSerializer(serializers.ModelSerializer):
    class Meta:
        model = Charge
        fields = [
            "id",
            "tenant_id",
            "facility_id",
            "encounter",
            "source_type",
            "source_id",
            "service_item",
            "description",
            "quantity",
            "unit_price",
            "total_amount",
            "invoice",
            "safety_override",
            "created_at",
        ]
        read_only_fields = fields


class ChargeCreateSerializer(serializers.Serializer):
    encounter = serializers.UUIDField()
    source_type = serializers.ChoiceField(choices=ChargeSourceType.choices)
    source_id = serializers.UUIDField(required=False, allow_null=True)
    service_item = serializers.UUIDField(required=False, allow_null=True)
    quantity = serializers.IntegerField(min_value=1, default=1)
    unit_price = serializers.DecimalField(max_digits=14, decimal_places=3, required=False, allow_null=True)
    description = serializers.CharField(required=False, allow_blank=True, default="")
