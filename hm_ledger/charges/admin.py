# hm_ledger/charges/admin.py
from __future__ import annotations

from django.contrib import admin

from hm_ledger.charges.models import Charge, ServiceItem


@admin.register(ServiceItem)
class ServiceItemAdmin(admin.ModelAdmin):
    list_display = ("code", "name", "source_type", "default_price", "is_active", "tenant_id", "facility_id")
    list_filter = ("source_type", "is_active")
    search_fields = ("code", "name")
    ordering = ("code",)


@admin.register(Charge)
class ChargeAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "tenant_id",
        "facility_id",
        "encounter",
        "source_type",
        "source_id",
        "quantity",
        "unit_price",
        "total_amount",
        "invoice",
        "safety_override",
        "created_at",
    )
    list_filter = ("source_type", "safety_override")
    search_fields = ("id", "encounter__id", "source_id", "description")
    ordering = ("-created_at",)
    readonly_fields = ("created_at", "updated_at", "total_amount")
    raw_id_fields = ("encounter", "service_item", "invoice")
    list_select_related = ("encounter", "invoice")

    def has_delete_permission(self, request, obj=None):
        return False
