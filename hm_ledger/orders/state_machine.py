# hm_ledger/orders/state_machine.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Tuple

from hm_ledger.orders.exceptions import InvalidTransition
from hm_ledger.orders.gating import OrderGatingService
from hm_ledger.orders.models import OrderStatus, OrderType


class Outcome:
    TRANSITIONED = "TRANSITIONED"
    AMENDED = "AMENDED"


@dataclass(frozen=True)
class TransitionResult:
    action: str
    from_status: str
    to_status: str
    outcome: str
    events: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_amendment(self) -> bool:
        return self.outcome == Outcome.AMENDED


class ClinicalOrderStateMachine:
    """
    Shared by lab and radiology orders:

        PENDING ──start──> IN_PROGRESS ──complete──> COMPLETED ─┐
           │  (SCHEDULED)        │                       ^      │ complete
           └──────cancel─────────┴──> CANCELLED          └──────┘ (amendment)

    Pure: decides the next status and the dispatch events, never saves.
    start/complete consult the payment gate first, on whatever row the
    caller hands in, so the caller must pass a freshly locked row.
    """

    TRANSITIONS: Dict[str, Dict[str, str]] = {
        "schedule": {
            OrderStatus.PENDING: OrderStatus.SCHEDULED,
        },
        "start": {
            OrderStatus.PENDING: OrderStatus.IN_PROGRESS,
            OrderStatus.SCHEDULED: OrderStatus.IN_PROGRESS,
        },
        "complete": {
            OrderStatus.IN_PROGRESS: OrderStatus.COMPLETED,
            OrderStatus.COMPLETED: OrderStatus.COMPLETED,
        },
        "cancel": {
            OrderStatus.PENDING: OrderStatus.CANCELLED,
            OrderStatus.SCHEDULED: OrderStatus.CANCELLED,
            OrderStatus.IN_PROGRESS: OrderStatus.CANCELLED,
        },
    }

    GATED_ACTIONS = frozenset({"start", "complete"})

    EVENT_SUFFIX = {
        ("schedule", Outcome.TRANSITIONED): "order_scheduled",
        ("start", Outcome.TRANSITIONED): "order_started",
        ("complete", Outcome.TRANSITIONED): "result_recorded",
        ("complete", Outcome.AMENDED): "result_amended",
        ("cancel", Outcome.TRANSITIONED): "order_cancelled",
    }

    @classmethod
    def apply(cls, order, action: str) -> TransitionResult:
        if action not in cls.TRANSITIONS:
            raise InvalidTransition(f"Unknown order action '{action}'.")

        if action in cls.GATED_ACTIONS:
            OrderGatingService.ensure_can_fulfill(order, action=action)

        if action == "schedule" and order.order_type != OrderType.RADIOLOGY:
            raise InvalidTransition("Only radiology orders can be scheduled.")

        current = order.status
        target = cls.TRANSITIONS[action].get(current)
        if target is None:
            raise InvalidTransition(f"Cannot {action} an order in status {current}.")

        outcome = Outcome.AMENDED if current == target else Outcome.TRANSITIONED
        event = f"{order.order_type.lower()}.{cls.EVENT_SUFFIX[(action, outcome)]}"

        return TransitionResult(
            action=action,
            from_status=current,
            to_status=target,
            outcome=outcome,
            events=(event,),
        )

    @classmethod
    def schedule(cls, order) -> TransitionResult:
        return cls.apply(order, "schedule")

    @classmethod
    def start(cls, order) -> TransitionResult:
        return cls.apply(order, "start")

    @classmethod
    def complete(cls, order) -> TransitionResult:
        return cls.apply(order, "complete")

    @classmethod
    def cancel(cls, order) -> TransitionResult:
        return cls.apply(order, "cancel")

    @classmethod
    def allowed_actions(cls, order) -> list[str]:
        out = []
        for action, table in cls.TRANSITIONS.items():
            if order.status not in table:
                continue
            if action == "schedule" and order.order_type != OrderType.RADIOLOGY:
                continue
            if action in cls.GATED_ACTIONS and not OrderGatingService.can_fulfill(order):
                continue
            out.append(action)
        return out
