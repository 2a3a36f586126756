# hm_ledger/orders/api/serializers.py
from __future__ import annotations

from rest_framework import serializers

from hm_ledger.orders.gating import OrderGatingService
from hm_ledger.orders.models import Order, OrderPriority, OrderResult, OrderType
from hm_ledger.orders.state_machine import ClinicalOrderStateMachine


class OrderResultSerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderResult
        fields = ["id", "version", "result_payload", "is_amendment", "recorded_by_user_id", "created_at"]
        read_only_fields = fields


class OrderSerializer(serializers.ModelSerializer):
    results = OrderResultSerializer(many=True, read_only=True)
    can_fulfill = serializers.SerializerMethodField()
    allowed_actions = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            "id",
            "tenant_id",
            "facility_id",
            "encounter",
            "order_type",
            "priority",
            "service_item",
            "doctor",
            "payment_status",
            "status",
            "can_fulfill",
            "allowed_actions",
            "result_payload",
            "results",
            "waiver_reason",
            "notes",
            "scheduled_at",
            "started_at",
            "completed_at",
            "cancelled_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_can_fulfill(self, obj) -> bool:
        return OrderGatingService.can_fulfill(obj)

    def get_allowed_actions(self, obj) -> list[str]:
        return ClinicalOrderStateMachine.allowed_actions(obj)


class OrderCreateSerializer(serializers.Serializer):
    encounter = serializers.UUIDField()
    order_type = serializers.ChoiceField(choices=OrderType.choices)
    service_item = serializers.UUIDField(required=False, allow_null=True)
    priority = serializers.ChoiceField(choices=OrderPriority.choices, required=False)
    unit_price = serializers.DecimalField(max_digits=14, decimal_places=3, required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class ScheduleSerializer(serializers.Serializer):
    scheduled_at = serializers.DateTimeField(required=False, allow_null=True)


class CompleteSerializer(serializers.Serializer):
    result_payload = serializers.JSONField()

    def validate_result_payload(self, value):
        if not isinstance(value, dict):
            raise serializers.ValidationError("Result payload must be an object.")
        return value


class WaiveSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="")
