# hm_ledger/billing/api/views.py
from __future__ import annotations

from uuid import UUID

from django.conf import settings
from django.db import IntegrityError
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import APIException, NotFound
from rest_framework.response import Response
from rest_framework.views import APIView

from hm_ledger.billing.api.serializers import (
    AttachChargesSerializer,
    CreditNoteSerializer,
    DiscountSerializer,
    InvoiceCreateSerializer,
    InvoiceIssueSerializer,
    InvoiceSerializer,
    PaymentCreateSerializer,
    PaymentSerializer,
    ReasonSerializer,
    StatementRowSerializer,
)
from hm_ledger.billing.models import Invoice
from hm_ledger.billing.selectors import invoices_filtered, payments_filtered
from hm_ledger.billing.services import CreditNoteService, InvoiceService, PaymentService
from hm_ledger.billing.statement import StatementService
from hm_ledger.common.api.pagination import paginate
from hm_ledger.common.api.params import uuid_or_400, uuid_or_none
from hm_ledger.common.idempotency import get_key, load_response, replay_or_raise, save_response
from hm_ledger.common.money import ZERO
from hm_ledger.common.scope import require_scope
from hm_ledger.patients.models import Patient

SCOPE_HEADERS = [
    OpenApiParameter(name="X-Tenant-Id", location=OpenApiParameter.HEADER, required=True, type=str),
    OpenApiParameter(name="X-Facility-Id", location=OpenApiParameter.HEADER, required=True, type=str),
]


def _invoice_or_404(scope, pk) -> Invoice:
    inv_id = uuid_or_400(pk, "invoice")
    inv = (
        invoices_filtered(tenant_id=scope.tenant_id, facility_id=scope.facility_id)
        .prefetch_related("charges", "payments")
        .filter(id=inv_id)
        .first()
    )
    if inv is None:
        raise NotFound("Invoice not found in this scope.")
    return inv


class InvoiceViewSet(viewsets.GenericViewSet):
    """
    Invoices:
    - list/retrieve
    - create draft, attach charges, discount, finalize, cancel (DRAFT only)
    - issue (draft + attach + discount + finalize in one call)
    - return (credit note)
    """
    serializer_class = InvoiceSerializer
    queryset = Invoice.objects.none()

    def _reply(self, scope, invoice_id, code=status.HTTP_200_OK) -> Response:
        return Response(InvoiceSerializer(_invoice_or_404(scope, invoice_id)).data, status=code)

    @extend_schema(
        tags=["Billing"],
        responses={200: InvoiceSerializer(many=True)},
        parameters=SCOPE_HEADERS
        + [
            OpenApiParameter(name="patient", type=OpenApiTypes.UUID, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="encounter", type=OpenApiTypes.UUID, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="status", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False),
        ],
    )
    def list(self, request):
        scope = require_scope(request)

        qs = invoices_filtered(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            patient_id=uuid_or_none(request.query_params.get("patient"), "patient"),
            encounter_id=uuid_or_none(request.query_params.get("encounter"), "encounter"),
            status=request.query_params.get("status"),
        ).prefetch_related("charges", "payments")

        return paginate(request, qs, InvoiceSerializer)

    @extend_schema(tags=["Billing"], responses={200: InvoiceSerializer}, parameters=SCOPE_HEADERS)
    def retrieve(self, request, pk=None):
        scope = require_scope(request)
        return self._reply(scope, pk)

    @extend_schema(
        tags=["Billing"],
        request=InvoiceCreateSerializer,
        responses={201: InvoiceSerializer},
        parameters=SCOPE_HEADERS,
    )
    def create(self, request):
        scope = require_scope(request)

        ser = InvoiceCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        inv = InvoiceService.create_draft(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            encounter_id=ser.validated_data["encounter"],
            notes=ser.validated_data.get("notes", ""),
        )
        return self._reply(scope, inv.id, status.HTTP_201_CREATED)

    @extend_schema(
        tags=["Billing"],
        request=InvoiceIssueSerializer,
        responses={201: InvoiceSerializer},
        parameters=SCOPE_HEADERS,
    )
    @action(detail=False, methods=["post"], url_path="issue")
    def issue(self, request):
        scope = require_scope(request)

        ser = InvoiceIssueSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data

        inv = InvoiceService.issue_invoice(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            encounter_id=data["encounter"],
            charge_ids=data["charge_ids"],
            discount_amount=data.get("discount_amount"),
            notes=data.get("notes", ""),
            actor_user_id=getattr(request.user, "id", None),
        )
        return self._reply(scope, inv.id, status.HTTP_201_CREATED)

    @extend_schema(
        tags=["Billing"],
        request=AttachChargesSerializer,
        responses={200: InvoiceSerializer},
        parameters=SCOPE_HEADERS,
    )
    @action(detail=True, methods=["post"], url_path="charges")
    def charges(self, request, pk=None):
        scope = require_scope(request)

        ser = AttachChargesSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        inv = InvoiceService.attach_charges(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            invoice_id=uuid_or_400(pk, "invoice"),
            charge_ids=ser.validated_data["charge_ids"],
        )
        return self._reply(scope, inv.id)

    @extend_schema(
        tags=["Billing"],
        request=DiscountSerializer,
        responses={200: InvoiceSerializer},
        parameters=SCOPE_HEADERS,
    )
    @action(detail=True, methods=["post"], url_path="discount")
    def discount(self, request, pk=None):
        scope = require_scope(request)

        ser = DiscountSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        inv = InvoiceService.set_discount(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            invoice_id=uuid_or_400(pk, "invoice"),
            discount_amount=ser.validated_data["discount_amount"],
        )
        return self._reply(scope, inv.id)

    @extend_schema(tags=["Billing"], request=None, responses={200: InvoiceSerializer}, parameters=SCOPE_HEADERS)
    @action(detail=True, methods=["post"], url_path="finalize")
    def finalize(self, request, pk=None):
        scope = require_scope(request)

        inv = InvoiceService.finalize(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            invoice_id=uuid_or_400(pk, "invoice"),
            actor_user_id=getattr(request.user, "id", None),
        )
        return self._reply(scope, inv.id)

    @extend_schema(tags=["Billing"], request=ReasonSerializer, responses={200: InvoiceSerializer}, parameters=SCOPE_HEADERS)
    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None):
        scope = require_scope(request)

        ser = ReasonSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        inv = InvoiceService.cancel(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            invoice_id=uuid_or_400(pk, "invoice"),
            reason=ser.validated_data.get("reason", ""),
        )
        return self._reply(scope, inv.id)

    @extend_schema(
        tags=["Billing"],
        request=ReasonSerializer,
        responses={201: CreditNoteSerializer},
        parameters=SCOPE_HEADERS,
    )
    @action(detail=True, methods=["post"], url_path="return")
    def create_return(self, request, pk=None):
        scope = require_scope(request)

        ser = ReasonSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        cn = CreditNoteService.create_return(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            invoice_id=uuid_or_400(pk, "invoice"),
            reason=ser.validated_data.get("reason", ""),
            actor_user_id=getattr(request.user, "id", None),
        )
        return Response(CreditNoteSerializer(cn).data, status=status.HTTP_201_CREATED)


class InvoicePaymentsView(APIView):
    """
    /billing/invoices/<invoice_id>/payments/
    - GET list payments
    - POST apply a payment (Idempotency-Key honoured)
    """

    @extend_schema(tags=["Billing"], responses={200: PaymentSerializer(many=True)}, parameters=SCOPE_HEADERS)
    def get(self, request, invoice_id: UUID):
        scope = require_scope(request)
        inv = _invoice_or_404(scope, invoice_id)

        payments = payments_filtered(tenant_id=scope.tenant_id, facility_id=scope.facility_id, invoice_id=inv.id)
        return Response(PaymentSerializer(payments, many=True).data, status=status.HTTP_200_OK)

    @extend_schema(
        tags=["Billing"],
        request=PaymentCreateSerializer,
        responses={201: PaymentSerializer},
        parameters=SCOPE_HEADERS
        + [OpenApiParameter(name="Idempotency-Key", location=OpenApiParameter.HEADER, required=False, type=str)],
    )
    def post(self, request, invoice_id: UUID):
        scope = require_scope(request)

        idem = get_key(request)
        if idem:
            cached = load_response(scope.tenant_id, scope.facility_id, request.user.id, request.method, request.path, idem)
            if cached is not None:
                return Response(cached, status=status.HTTP_201_CREATED)

        ser = PaymentCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        def _record(pay):
            save_response(
                scope.tenant_id,
                scope.facility_id,
                request.user.id,
                request.method,
                request.path,
                idem,
                PaymentSerializer(pay).data,
                201,
            )

        try:
            pay = PaymentService.apply_payment(
                tenant_id=scope.tenant_id,
                facility_id=scope.facility_id,
                invoice_id=uuid_or_400(invoice_id, "invoice"),
                amount=ser.validated_data["amount"],
                method=ser.validated_data.get("method"),
                reference=ser.validated_data.get("reference", ""),
                actor_user_id=getattr(request.user, "id", None),
                record_response=_record if idem else None,
            )
        except (IntegrityError, APIException) as exc:
            if not idem:
                raise
            cached = replay_or_raise(
                scope.tenant_id, scope.facility_id, request.user.id, request.method, request.path, idem, exc
            )
            return Response(cached, status=status.HTTP_201_CREATED)

        return Response(PaymentSerializer(pay).data, status=status.HTTP_201_CREATED)


class PatientStatementView(APIView):
    """
    /patients/<patient_id>/statement/
    Chronological running-balance statement (negative closing balance = refund due).
    """

    @extend_schema(tags=["Billing"], responses={200: OpenApiTypes.OBJECT}, parameters=SCOPE_HEADERS)
    def get(self, request, patient_id: UUID):
        scope = require_scope(request)

        patient = Patient.objects.filter(
            id=patient_id, tenant_id=scope.tenant_id, facility_id=scope.facility_id
        ).first()
        if patient is None:
            raise NotFound("Patient not found in this scope.")

        statement = StatementService.for_patient(
            tenant_id=scope.tenant_id, facility_id=scope.facility_id, patient_id=patient.id
        )
        rows = statement.rows()

        return Response(
            {
                "patient": str(patient.id),
                "currency": settings.HM_LEDGER_CURRENCY,
                "closing_balance": str(rows[-1].running_balance if rows else ZERO),
                "rows": StatementRowSerializer(rows, many=True).data,
            },
            status=status.HTTP_200_OK,
        )
