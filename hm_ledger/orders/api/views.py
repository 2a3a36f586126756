# hm_ledger/orders/api/views.py
from __future__ import annotations

from django.db import IntegrityError
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import APIException, NotFound
from rest_framework.response import Response

from hm_ledger.charges.api.serializers import ChargeSerializer
from hm_ledger.common.api.pagination import paginate
from hm_ledger.common.api.params import uuid_or_400, uuid_or_none
from hm_ledger.common.idempotency import get_key, load_response, replay_or_raise, save_response
from hm_ledger.common.scope import require_scope
from hm_ledger.orders.api.serializers import (
    CompleteSerializer,
    OrderCreateSerializer,
    OrderSerializer,
    ScheduleSerializer,
    WaiveSerializer,
)
from hm_ledger.orders.models import Order
from hm_ledger.orders.selectors import OrderSelector
from hm_ledger.orders.services import OrderService


def _order_payload(scope, order_id) -> dict:
    try:
        order = OrderSelector.get_order(
            tenant_id=scope.tenant_id, facility_id=scope.facility_id, order_id=order_id
        )
    except OrderSelector.NotFound:
        raise NotFound("Order not found in this scope.")
    return OrderSerializer(order).data


class OrderViewSet(viewsets.GenericViewSet):
    """
    Lab / radiology orders.
    start and complete are refused with 402 payment_required until the
    order is PAID or WAIVED.
    """
    serializer_class = OrderSerializer
    queryset = Order.objects.none()

    @extend_schema(
        tags=["Orders"],
        responses={200: OrderSerializer(many=True)},
        parameters=[
            OpenApiParameter(name="encounter", type=OpenApiTypes.UUID, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="order_type", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="status", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(
                name="payment_status", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False
            ),
        ],
    )
    def list(self, request):
        scope = require_scope(request)

        qs = OrderSelector.list_orders(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            encounter_id=uuid_or_none(request.query_params.get("encounter"), "encounter"),
            order_type=request.query_params.get("order_type"),
            status=request.query_params.get("status"),
            payment_status=request.query_params.get("payment_status"),
        )
        return paginate(request, qs, OrderSerializer)

    @extend_schema(tags=["Orders"], responses={200: OrderSerializer})
    def retrieve(self, request, pk=None):
        scope = require_scope(request)
        return Response(_order_payload(scope, uuid_or_400(pk, "order")), status=status.HTTP_200_OK)

    @extend_schema(
        tags=["Orders"],
        request=OrderCreateSerializer,
        responses={201: OrderSerializer},
        parameters=[OpenApiParameter(name="Idempotency-Key", location=OpenApiParameter.HEADER, required=False, type=str)],
    )
    def create(self, request):
        scope = require_scope(request)

        idem = get_key(request)
        if idem:
            cached = load_response(scope.tenant_id, scope.facility_id, request.user.id, request.method, request.path, idem)
            if cached is not None:
                return Response(cached, status=status.HTTP_201_CREATED)

        ser = OrderCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data

        def _record(order):
            save_response(
                scope.tenant_id,
                scope.facility_id,
                request.user.id,
                request.method,
                request.path,
                idem,
                _order_payload(scope, order.id),
                201,
            )

        try:
            order, _charge = OrderService.create_order(
                tenant_id=scope.tenant_id,
                facility_id=scope.facility_id,
                encounter_id=data["encounter"],
                order_type=data["order_type"],
                service_item_id=data.get("service_item"),
                priority=data.get("priority"),
                doctor_id=getattr(request.user, "id", None),
                notes=data.get("notes", ""),
                unit_price=data.get("unit_price"),
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

        return Response(_order_payload(scope, order.id), status=status.HTTP_201_CREATED)

    @extend_schema(tags=["Orders"], request=ScheduleSerializer, responses={200: OrderSerializer})
    @action(detail=True, methods=["post"], url_path="schedule")
    def schedule(self, request, pk=None):
        scope = require_scope(request)

        ser = ScheduleSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        order = OrderService.schedule(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            order_id=uuid_or_400(pk, "order"),
            scheduled_at=ser.validated_data.get("scheduled_at"),
        )
        return Response(_order_payload(scope, order.id), status=status.HTTP_200_OK)

    @extend_schema(tags=["Orders"], request=None, responses={200: OrderSerializer})
    @action(detail=True, methods=["post"], url_path="start")
    def start(self, request, pk=None):
        scope = require_scope(request)

        order = OrderService.start(
            tenant_id=scope.tenant_id, facility_id=scope.facility_id, order_id=uuid_or_400(pk, "order")
        )
        return Response(_order_payload(scope, order.id), status=status.HTTP_200_OK)

    @extend_schema(tags=["Orders"], request=CompleteSerializer, responses={200: OrderSerializer})
    @action(detail=True, methods=["post"], url_path="complete")
    def complete(self, request, pk=None):
        scope = require_scope(request)

        ser = CompleteSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        order = OrderService.complete(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            order_id=uuid_or_400(pk, "order"),
            result_payload=ser.validated_data["result_payload"],
            actor_user_id=getattr(request.user, "id", None),
        )
        return Response(_order_payload(scope, order.id), status=status.HTTP_200_OK)

    @extend_schema(tags=["Orders"], request=None, responses={200: OrderSerializer})
    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None):
        scope = require_scope(request)

        order = OrderService.cancel(
            tenant_id=scope.tenant_id, facility_id=scope.facility_id, order_id=uuid_or_400(pk, "order")
        )
        return Response(_order_payload(scope, order.id), status=status.HTTP_200_OK)

    @extend_schema(tags=["Orders"], request=WaiveSerializer, responses={200: OrderSerializer})
    @action(detail=True, methods=["post"], url_path="waive")
    def waive(self, request, pk=None):
        scope = require_scope(request)

        ser = WaiveSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        order = OrderService.waive(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            order_id=uuid_or_400(pk, "order"),
            reason=ser.validated_data.get("reason", ""),
            actor_user_id=getattr(request.user, "id", None),
        )
        return Response(_order_payload(scope, order.id), status=status.HTTP_200_OK)

    @extend_schema(tags=["Orders"], request=None, responses={201: ChargeSerializer})
    @action(detail=True, methods=["post"], url_path="rebill")
    def rebill(self, request, pk=None):
        scope = require_scope(request)

        charge = OrderService.rebill(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            order_id=uuid_or_400(pk, "order"),
            actor_user_id=getattr(request.user, "id", None),
        )
        return Response(ChargeSerializer(charge).data, status=status.HTTP_201_CREATED)
