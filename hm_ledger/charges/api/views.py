# hm_ledger/charges/api/views.py
from __future__ import annotations

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status, viewsets
from rest_framework.response import Response

from hm_ledger.charges.api.serializers import ChargeCreateSerializer, ChargeSerializer
from hm_ledger.charges.models import Charge
from hm_ledger.charges.selectors import charges_filtered
from hm_ledger.charges.services import ChargeService
from hm_ledger.common.api.pagination import paginate
from hm_ledger.common.api.params import uuid_or_none
from hm_ledger.common.scope import require_scope


class ChargeViewSet(viewsets.GenericViewSet):
    """
    Charge producers post here; the ledger never edits or deletes a charge.
    """
    serializer_class = ChargeSerializer
    queryset = Charge.objects.none()

    @extend_schema(
        tags=["Charges"],
        responses={200: ChargeSerializer(many=True)},
        parameters=[
            OpenApiParameter(name="encounter", type=OpenApiTypes.UUID, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="patient", type=OpenApiTypes.UUID, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(
                name="uninvoiced",
                type=OpenApiTypes.BOOL,
                location=OpenApiParameter.QUERY,
                required=False,
                description="Only charges not yet attached to an invoice.",
            ),
        ],
    )
    def list(self, request):
        scope = require_scope(request)

        qs = charges_filtered(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            encounter_id=uuid_or_none(request.query_params.get("encounter"), "encounter"),
            patient_id=uuid_or_none(request.query_params.get("patient"), "patient"),
            uninvoiced=(request.query_params.get("uninvoiced") or "").lower() in ("1", "true", "yes"),
        )
        return paginate(request, qs, ChargeSerializer)

    @extend_schema(
        tags=["Charges"],
        request=ChargeCreateSerializer,
        responses={201: ChargeSerializer},
    )
    def create(self, request):
        scope = require_scope(request)

        ser = ChargeCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data

        charge = ChargeService.create_charge(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            encounter_id=data["encounter"],
            source_type=data["source_type"],
            source_id=data.get("source_id"),
            service_item_id=data.get("service_item"),
            quantity=data.get("quantity", 1),
            unit_price=data.get("unit_price"),
            description=data.get("description", ""),
            actor_user_id=getattr(request.user, "id", None),
        )
        return Response(ChargeSerializer(charge).data, status=status.HTTP_201_CREATED)
