from __future__ import annotations

from django.contrib import admin

from hm_ledger.common.models import IdempotencyRecord


@admin.register(IdempotencyRecord)
class IdempotencyRecordAdmin(admin.ModelAdmin):
    list_display = ("id", "tenant_id", "facility_id", "method", "path", "idempotency_key", "status_code", "created_at")
    search_fields = ("idempotency_key", "path")
    ordering = ("-created_at",)
    readonly_fields = ("created_at", "updated_at")
