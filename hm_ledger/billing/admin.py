# hm_ledger/billing/admin.py
from __future__ import annotations

from django.contrib import admin

from hm_ledger.billing.models import CreditNote, Invoice, Payment


class PaymentInline(admin.TabularInline):
    model = Payment
    extra = 0
    fields = ("id", "amount", "method", "reference", "paid_at")
    readonly_fields = fields
    can_delete = False


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = (
        "invoice_number",
        "tenant_id",
        "facility_id",
        "patient",
        "encounter",
        "status",
        "total_amount",
        "discount_amount",
        "paid_amount",
        "issued_at",
    )
    list_filter = ("status", "currency")
    search_fields = ("id", "invoice_number", "patient__full_name", "patient__mrn")
    ordering = ("-created_at",)
    readonly_fields = ("created_at", "updated_at", "total_amount", "paid_amount", "issued_at", "paid_at", "cancelled_at")
    raw_id_fields = ("patient", "encounter")
    inlines = [PaymentInline]


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ("id", "invoice", "amount", "method", "reference", "paid_at", "recorded_by_user_id")
    list_filter = ("method",)
    search_fields = ("id", "reference", "invoice__invoice_number")
    ordering = ("-paid_at",)
    raw_id_fields = ("invoice",)

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(CreditNote)
class CreditNoteAdmin(admin.ModelAdmin):
    list_display = ("credit_note_number", "original_invoice", "total_amount", "is_active", "created_at")
    list_filter = ("is_active",)
    search_fields = ("credit_note_number", "original_invoice__invoice_number", "reason")
    ordering = ("-created_at",)
    readonly_fields = ("created_at", "updated_at", "total_amount")
    raw_id_fields = ("original_invoice",)
