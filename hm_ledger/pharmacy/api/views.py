# hm_ledger/pharmacy/api/views.py
from __future__ import annotations

from drf_spectacular.utils import extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import NotFound
from rest_framework.response import Response

from hm_ledger.common.api.params import uuid_or_400
from hm_ledger.common.scope import require_scope
from hm_ledger.pharmacy.api.serializers import PrescriptionCreateSerializer, PrescriptionSerializer
from hm_ledger.pharmacy.models import Prescription
from hm_ledger.pharmacy.services import PrescriptionService


def _prescription_payload(scope, prescription_id) -> dict:
    rx = (
        Prescription.objects.filter(tenant_id=scope.tenant_id, facility_id=scope.facility_id, id=prescription_id)
        .prefetch_related("items__service_item")
        .first()
    )
    if rx is None:
        raise NotFound("Prescription not found in this scope.")
    return PrescriptionSerializer(rx).data


class PrescriptionViewSet(viewsets.GenericViewSet):
    """
    POST without override_safety answers 409 SAFETY_WARNING when the drugs
    interact; resubmit with override_safety + override_reason to proceed.
    """
    serializer_class = PrescriptionSerializer
    queryset = Prescription.objects.none()

    @extend_schema(tags=["Pharmacy"], request=PrescriptionCreateSerializer, responses={201: PrescriptionSerializer})
    def create(self, request):
        scope = require_scope(request)

        ser = PrescriptionCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data

        rx = PrescriptionService.submit(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            encounter_id=data["encounter"],
            items=[dict(i) for i in data["items"]],
            override_safety=data.get("override_safety", False),
            override_reason=data.get("override_reason", ""),
            doctor_id=getattr(request.user, "id", None),
            notes=data.get("notes", ""),
            actor_user_id=getattr(request.user, "id", None),
        )
        return Response(_prescription_payload(scope, rx.id), status=status.HTTP_201_CREATED)

    @extend_schema(tags=["Pharmacy"], responses={200: PrescriptionSerializer})
    def retrieve(self, request, pk=None):
        scope = require_scope(request)
        return Response(_prescription_payload(scope, uuid_or_400(pk, "prescription")), status=status.HTTP_200_OK)

    @extend_schema(tags=["Pharmacy"], request=None, responses={200: PrescriptionSerializer})
    @action(detail=True, methods=["post"], url_path="dispense")
    def dispense(self, request, pk=None):
        scope = require_scope(request)

        rx = PrescriptionService.dispense(
            tenant_id=scope.tenant_id, facility_id=scope.facility_id, prescription_id=uuid_or_400(pk, "prescription")
        )
        return Response(_prescription_payload(scope, rx.id), status=status.HTTP_200_OK)

    @extend_schema(tags=["Pharmacy"], request=None, responses={200: PrescriptionSerializer})
    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None):
        scope = require_scope(request)

        rx = PrescriptionService.cancel(
            tenant_id=scope.tenant_id, facility_id=scope.facility_id, prescription_id=uuid_or_400(pk, "prescription")
        )
        return Response(_prescription_payload(scope, rx.id), status=status.HTTP_200_OK)
