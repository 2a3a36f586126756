# hm_ledger/pharmacy/admin.py
from __future__ import annotations

from django.contrib import admin

from hm_ledger.pharmacy.models import DrugInteraction, Prescription, PrescriptionItem


class PrescriptionItemInline(admin.TabularInline):
    model = PrescriptionItem
    extra = 0
    fields = ("service_item", "quantity", "dosage", "charge")
    readonly_fields = fields
    can_delete = False


@admin.register(Prescription)
class PrescriptionAdmin(admin.ModelAdmin):
    list_display = ("id", "encounter", "payment_status", "status", "safety_override", "created_at")
    list_filter = ("payment_status", "status", "safety_override")
    search_fields = ("id", "encounter_id", "override_reason")
    ordering = ("-created_at",)
    readonly_fields = ("created_at", "updated_at", "acknowledged_interactions")
    raw_id_fields = ("encounter", "doctor")
    inlines = [PrescriptionItemInline]


@admin.register(DrugInteraction)
class DrugInteractionAdmin(admin.ModelAdmin):
    list_display = ("drug_a", "drug_b", "severity", "description")
    list_filter = ("severity",)
    search_fields = ("drug_a", "drug_b", "description")
