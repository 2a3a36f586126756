# hm_ledger/patients/admin.py
from django.contrib import admin

from hm_ledger.patients.models import Patient


@admin.register(Patient)
class PatientAdmin(admin.ModelAdmin):
    list_display = ("id", "tenant_id", "facility_id", "mrn", "full_name", "phone", "created_at")
    search_fields = ("mrn", "full_name", "phone")
    ordering = ("-created_at",)
