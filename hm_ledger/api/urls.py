# hm_ledger/api/urls.py
from __future__ import annotations

from django.urls import path
from rest_framework.routers import DefaultRouter

from hm_ledger.billing.api.views import InvoicePaymentsView, InvoiceViewSet, PatientStatementView
from hm_ledger.charges.api.views import ChargeViewSet
from hm_ledger.orders.api.views import OrderViewSet
from hm_ledger.pharmacy.api.views import PrescriptionViewSet

router = DefaultRouter()

router.register(r"charges", ChargeViewSet, basename="charges")
router.register(r"billing/invoices", InvoiceViewSet, basename="billing-invoices")
router.register(r"orders", OrderViewSet, basename="orders")
router.register(r"pharmacy/prescriptions", PrescriptionViewSet, basename="pharmacy-prescriptions")

urlpatterns = [
    # Invoice payments (non-ViewSet endpoint)
    path(
        "billing/invoices/<uuid:invoice_id>/payments/",
        InvoicePaymentsView.as_view(),
        name="billing-invoice-payments",
    ),
    path(
        "patients/<uuid:patient_id>/statement/",
        PatientStatementView.as_view(),
        name="patient-statement",
    ),

    # Router URLs last (so explicit paths win if ever overlapping)
    *router.urls,
]
