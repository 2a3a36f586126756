# hm_ledger/encounters/admin.py
from django.contrib import admin

from hm_ledger.encounters.models import Encounter


@admin.register(Encounter)
class EncounterAdmin(admin.ModelAdmin):
    list_display = ("id", "tenant_id", "facility_id", "patient", "status", "attending_doctor", "created_at")
    list_filter = ("status",)
    search_fields = ("id", "patient__mrn", "patient__full_name")
    ordering = ("-created_at",)
    raw_id_fields = ("patient", "attending_doctor")
