# hm_ledger/orders/selectors.py
from __future__ import annotations

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db.models import QuerySet

from hm_ledger.orders.models import Order, OrderResult


class OrderSelector:
    class NotFound(Exception):
        pass

    @staticmethod
    def get_order(*, tenant_id, facility_id, order_id) -> Order:
        try:
            return (
                Order.objects.select_related("encounter", "service_item")
                .prefetch_related("results")
                .get(id=order_id, tenant_id=tenant_id, facility_id=facility_id)
            )
        except (Order.DoesNotExist, ValueError, DjangoValidationError):
            raise OrderSelector.NotFound()

    @staticmethod
    def list_orders(
        *,
        tenant_id,
        facility_id,
        encounter_id=None,
        order_type=None,
        status=None,
        payment_status=None,
    ) -> QuerySet[Order]:
        qs = (
            Order.objects.filter(tenant_id=tenant_id, facility_id=facility_id)
            .select_related("encounter", "service_item")
            .prefetch_related("results")
            .order_by("-created_at")
        )
        if encounter_id:
            qs = qs.filter(encounter_id=encounter_id)
        if order_type:
            qs = qs.filter(order_type=order_type)
        if status:
            qs = qs.filter(status=status)
        if payment_status:
            qs = qs.filter(payment_status=payment_status)
        return qs


def latest_result_for_order(*, tenant_id, facility_id, order_id) -> OrderResult | None:
    return (
        OrderResult.objects.filter(tenant_id=tenant_id, facility_id=facility_id, order_id=order_id)
        .order_by("-version")
        .first()
    )
