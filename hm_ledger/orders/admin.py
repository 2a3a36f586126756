# hm_ledger/orders/admin.py
from __future__ import annotations

from django.contrib import admin

from hm_ledger.orders.models import Order, OrderResult


class OrderResultInline(admin.TabularInline):
    model = OrderResult
    extra = 0
    fields = ("version", "is_amendment", "result_payload", "recorded_by_user_id", "created_at")
    readonly_fields = fields
    can_delete = False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "tenant_id",
        "facility_id",
        "encounter",
        "order_type",
        "priority",
        "payment_status",
        "status",
        "created_at",
        "updated_at",
    )
    list_filter = ("order_type", "priority", "payment_status", "status")
    search_fields = ("id", "encounter_id")
    ordering = ("-created_at",)
    readonly_fields = ("created_at", "updated_at")
    raw_id_fields = ("encounter", "service_item", "doctor")
    list_select_related = ("encounter",)
    inlines = [OrderResultInline]
