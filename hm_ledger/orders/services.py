# hm_ledger/orders/services.py
from __future__ import annotations

import logging
from uuid import UUID

from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError

from hm_ledger.audit.services import AuditService
from hm_ledger.billing.exceptions import ReasonRequired
from hm_ledger.billing.models import InvoiceStatus
from hm_ledger.charges.models import Charge, ChargeSourceType, ServiceItem
from hm_ledger.charges.selectors import charges_for_source
from hm_ledger.charges.services import ChargeService
from hm_ledger.common.events import publish_on_commit
from hm_ledger.common.locks import scoped_lock
from hm_ledger.encounters.services import EncounterService
from hm_ledger.orders.exceptions import InvalidTransition
from hm_ledger.orders.models import Order, OrderPriority, OrderResult, OrderStatus, OrderType, PaymentStatus
from hm_ledger.orders.selectors import latest_result_for_order
from hm_ledger.orders.state_machine import ClinicalOrderStateMachine, TransitionResult

logger = logging.getLogger(__name__)

_SOURCE_TYPE_FOR_ORDER = {
    OrderType.LAB: ChargeSourceType.LAB,
    OrderType.RADIOLOGY: ChargeSourceType.RADIOLOGY,
}


class OrderService:
    """
    Write-model operations for lab / radiology orders.

    Clinical transitions run under the per-order lock and re-read the row
    with select_for_update, so the payment gate always sees the committed
    payment_status (a credit note may have reset it a moment ago).
    """

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _get_locked(*, tenant_id: UUID, facility_id: UUID, order_id: UUID) -> Order:
        try:
            return Order.objects.select_for_update().get(id=order_id, tenant_id=tenant_id, facility_id=facility_id)
        except Order.DoesNotExist:
            raise NotFound("Order not found in this scope.")

    @staticmethod
    def _dispatch(order: Order, result: TransitionResult) -> None:
        payload = {
            "tenant_id": str(order.tenant_id),
            "facility_id": str(order.facility_id),
            "order_id": str(order.id),
            "encounter_id": str(order.encounter_id),
            "order_type": order.order_type,
            "status": result.to_status,
            "outcome": result.outcome,
        }
        for event_name in result.events:
            publish_on_commit(event_name, payload)

    # ------------------------------------------------------------------
    # Create / billing side
    # ------------------------------------------------------------------
    @staticmethod
    @transaction.atomic
    def create_order(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        encounter_id: UUID,
        order_type: str,
        service_item_id: UUID | None = None,
        priority: str | None = None,
        doctor_id: int | None = None,
        notes: str = "",
        unit_price=None,
        actor_user_id: int | None = None,
        record_response=None,
    ) -> tuple[Order, Charge | None]:
        """
        Creates the order and, when a catalog item is given, its generating
        charge in the same transaction. Without a catalog item the order
        simply waits PENDING until billing catches up.

        `record_response(order)` runs before commit; a duplicate
        Idempotency-Key raised there undoes the order and its charge.
        """
        if order_type not in OrderType.values:
            raise ValidationError({"order_type": f"Unknown order type '{order_type}'."})

        encounter = EncounterService.get_scoped(
            tenant_id=tenant_id, facility_id=facility_id, encounter_id=encounter_id
        )

        item = None
        if service_item_id:
            item = ServiceItem.objects.filter(
                id=service_item_id, tenant_id=tenant_id, facility_id=facility_id, is_active=True
            ).first()
            if item is None:
                raise ValidationError({"service_item": "Active service item not found in this scope."})
            if item.source_type != _SOURCE_TYPE_FOR_ORDER[order_type]:
                raise ValidationError({"service_item": f"Service item is not a {order_type} item."})

        order = Order.objects.create(
            tenant_id=tenant_id,
            facility_id=facility_id,
            encounter=encounter,
            order_type=order_type,
            priority=priority or OrderPriority.ROUTINE,
            service_item=item,
            doctor_id=doctor_id,
            notes=notes or "",
        )

        charge = None
        if item is not None:
            charge = ChargeService.create_charge(
                tenant_id=tenant_id,
                facility_id=facility_id,
                encounter_id=encounter.id,
                source_type=_SOURCE_TYPE_FOR_ORDER[order_type],
                source_id=order.id,
                service_item_id=item.id,
                unit_price=unit_price,
                actor_user_id=actor_user_id,
            )

        if record_response is not None:
            record_response(order)

        logger.info("Order %s created (%s, charge=%s)", order.id, order_type, charge.id if charge else None)
        return order, charge

    @staticmethod
    def rebill(*, tenant_id: UUID, facility_id: UUID, order_id: UUID, actor_user_id: int | None = None) -> Charge:
        with scoped_lock("order", order_id):
            return OrderService._rebill_locked(
                tenant_id=tenant_id, facility_id=facility_id, order_id=order_id, actor_user_id=actor_user_id
            )

    @staticmethod
    @transaction.atomic
    def _rebill_locked(*, tenant_id: UUID, facility_id: UUID, order_id: UUID, actor_user_id: int | None) -> Charge:
        """
        New charge for an order whose previous charge was reversed by a credit
        note. The unit price is carried over from the last charge, not re-read
        from the catalog.
        """
        order = OrderService._get_locked(tenant_id=tenant_id, facility_id=facility_id, order_id=order_id)

        if order.status == OrderStatus.CANCELLED:
            raise InvalidTransition("Cannot rebill a cancelled order.")
        if order.payment_status != PaymentStatus.PENDING:
            raise InvalidTransition(f"Order payment status is {order.payment_status}; nothing to rebill.")

        charges = list(
            charges_for_source(
                tenant_id=tenant_id,
                facility_id=facility_id,
                source_type=_SOURCE_TYPE_FOR_ORDER[order.order_type],
                source_id=order.id,
            ).select_related("invoice")
        )
        if not charges:
            raise ValidationError({"order": "Order has no charge to rebill."})

        open_charges = [
            c for c in charges if c.invoice is None or c.invoice.status != InvoiceStatus.CANCELLED
        ]
        if open_charges:
            raise InvalidTransition("Order already has an open charge.")

        last = charges[-1]
        charge = ChargeService.create_charge(
            tenant_id=tenant_id,
            facility_id=facility_id,
            encounter_id=order.encounter_id,
            source_type=last.source_type,
            source_id=order.id,
            service_item_id=last.service_item_id,
            quantity=last.quantity,
            unit_price=last.unit_price,
            description=last.description,
            actor_user_id=actor_user_id,
        )
        logger.info("Order %s rebilled with charge %s", order.id, charge.id)
        return charge

    @staticmethod
    def waive(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        order_id: UUID,
        reason: str,
        actor_user_id: int | None = None,
    ) -> Order:
        if not (reason or "").strip():
            raise ReasonRequired("A waiver reason is required.")

        with scoped_lock("order", order_id):
            return OrderService._waive_locked(
                tenant_id=tenant_id,
                facility_id=facility_id,
                order_id=order_id,
                reason=reason.strip(),
                actor_user_id=actor_user_id,
            )

    @staticmethod
    @transaction.atomic
    def _waive_locked(*, tenant_id, facility_id, order_id, reason: str, actor_user_id) -> Order:
        order = OrderService._get_locked(tenant_id=tenant_id, facility_id=facility_id, order_id=order_id)

        if order.payment_status == PaymentStatus.WAIVED:
            return order
        if order.payment_status == PaymentStatus.PAID:
            raise InvalidTransition("Order is already paid.")
        if order.status == OrderStatus.CANCELLED:
            raise InvalidTransition("Cannot waive a cancelled order.")

        order.payment_status = PaymentStatus.WAIVED
        order.waiver_reason = reason[:255]
        order.save(update_fields=["payment_status", "waiver_reason", "updated_at"])

        AuditService.log(
            tenant_id=tenant_id,
            facility_id=facility_id,
            event_code="orders.payment_waived",
            entity_type="Order",
            entity_id=order.id,
            actor_user_id=actor_user_id,
            metadata={"reason": reason},
        )
        logger.info("Order %s payment waived", order.id)
        return order

    # ------------------------------------------------------------------
    # Clinical transitions
    # ------------------------------------------------------------------
    @staticmethod
    def schedule(*, tenant_id: UUID, facility_id: UUID, order_id: UUID, scheduled_at=None) -> Order:
        with scoped_lock("order", order_id):
            return OrderService._transition_locked(
                tenant_id=tenant_id,
                facility_id=facility_id,
                order_id=order_id,
                action="schedule",
                scheduled_at=scheduled_at,
            )

    @staticmethod
    def start(*, tenant_id: UUID, facility_id: UUID, order_id: UUID) -> Order:
        with scoped_lock("order", order_id):
            return OrderService._transition_locked(
                tenant_id=tenant_id, facility_id=facility_id, order_id=order_id, action="start"
            )

    @staticmethod
    def complete(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        order_id: UUID,
        result_payload: dict,
        actor_user_id: int | None = None,
    ) -> Order:
        if not isinstance(result_payload, dict):
            raise ValidationError({"result_payload": "Result payload must be an object."})

        with scoped_lock("order", order_id):
            return OrderService._transition_locked(
                tenant_id=tenant_id,
                facility_id=facility_id,
                order_id=order_id,
                action="complete",
                result_payload=result_payload,
                actor_user_id=actor_user_id,
            )

    @staticmethod
    def cancel(*, tenant_id: UUID, facility_id: UUID, order_id: UUID) -> Order:
        with scoped_lock("order", order_id):
            return OrderService._transition_locked(
                tenant_id=tenant_id, facility_id=facility_id, order_id=order_id, action="cancel"
            )

    @staticmethod
    @transaction.atomic
    def _transition_locked(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        order_id: UUID,
        action: str,
        result_payload: dict | None = None,
        scheduled_at=None,
        actor_user_id: int | None = None,
    ) -> Order:
        order = OrderService._get_locked(tenant_id=tenant_id, facility_id=facility_id, order_id=order_id)
        result = ClinicalOrderStateMachine.apply(order, action)

        now = timezone.now()
        order.status = result.to_status
        update_fields = ["status", "updated_at"]

        if action == "schedule":
            order.scheduled_at = scheduled_at or now
            update_fields.append("scheduled_at")
        elif action == "start":
            order.started_at = now
            update_fields.append("started_at")
        elif action == "complete":
            latest = latest_result_for_order(tenant_id=tenant_id, facility_id=facility_id, order_id=order.id)
            OrderResult.objects.create(
                tenant_id=tenant_id,
                facility_id=facility_id,
                order=order,
                version=1 if latest is None else latest.version + 1,
                result_payload=result_payload or {},
                is_amendment=result.is_amendment,
                recorded_by_user_id=actor_user_id,
            )
            order.result_payload = result_payload or {}
            update_fields.append("result_payload")
            if not result.is_amendment:
                order.completed_at = now
                update_fields.append("completed_at")
        elif action == "cancel":
            order.cancelled_at = now
            update_fields.append("cancelled_at")

        order.save(update_fields=update_fields)
        OrderService._dispatch(order, result)

        logger.info("Order %s %s: %s -> %s (%s)", order.id, action, result.from_status, result.to_status, result.outcome)
        return order
