# hm_ledger/charges/services.py
from __future__ import annotations

import logging
from decimal import Decimal
from uuid import UUID

from django.db import transaction
from rest_framework.exceptions import ValidationError

from hm_ledger.charges.models import Charge, ChargeSourceType, ServiceItem
from hm_ledger.common.money import ZERO, to_money
from hm_ledger.encounters.models import Encounter, EncounterStatus

logger = logging.getLogger(__name__)


class ServiceItemService:
    @staticmethod
    def upsert(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        code: str,
        name: str,
        source_type: str,
        default_price,
        is_active: bool = True,
    ) -> ServiceItem:
        default_price = to_money(default_price, "default_price")
        if default_price < ZERO:
            raise ValidationError({"default_price": "Must be >= 0"})
        if source_type not in ChargeSourceType.values:
            raise ValidationError({"source_type": f"Unknown source type '{source_type}'."})

        obj, _ = ServiceItem.objects.update_or_create(
            tenant_id=tenant_id,
            facility_id=facility_id,
            code=code,
            defaults={
                "name": name,
                "source_type": source_type,
                "default_price": default_price,
                "is_active": is_active,
            },
        )
        return obj


class ChargeService:
    """
    Entry point for charge producers (lab, radiology, pharmacy, bed, consultation).
    """

    @staticmethod
    @transaction.atomic
    def create_charge(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        encounter_id: UUID,
        source_type: str,
        source_id: UUID | None = None,
        service_item_id: UUID | None = None,
        quantity: int = 1,
        unit_price=None,
        description: str = "",
        safety_override: bool = False,
        actor_user_id: int | None = None,
    ) -> Charge:
        if source_type not in ChargeSourceType.values:
            raise ValidationError({"source_type": f"Unknown source type '{source_type}'."})

        try:
            quantity = int(quantity)
        except (TypeError, ValueError):
            raise ValidationError({"quantity": "Quantity must be a whole number."})
        if quantity <= 0:
            raise ValidationError({"quantity": "Quantity must be > 0."})

        try:
            encounter = Encounter.objects.get(id=encounter_id, tenant_id=tenant_id, facility_id=facility_id)
        except Encounter.DoesNotExist:
            raise ValidationError({"encounter": "Encounter not found in this scope."})
        if encounter.status == EncounterStatus.CANCELLED:
            raise ValidationError({"encounter": "Cannot charge a cancelled encounter."})

        item = None
        if service_item_id:
            item = ServiceItem.objects.filter(
                id=service_item_id, tenant_id=tenant_id, facility_id=facility_id, is_active=True
            ).first()
            if item is None:
                raise ValidationError({"service_item": "Active service item not found in this scope."})

        if unit_price is None:
            if item is None:
                raise ValidationError({"unit_price": "Provide unit_price or a catalog service_item."})
            # Snapshot: the charge keeps this price even if the catalog changes later.
            unit_price = item.default_price

        unit_price = to_money(unit_price, "unit_price")
        if unit_price < ZERO:
            raise ValidationError({"unit_price": "Unit price must be >= 0."})

        charge = Charge.objects.create(
            tenant_id=tenant_id,
            facility_id=facility_id,
            encounter=encounter,
            source_type=source_type,
            source_id=source_id,
            service_item=item,
            description=description or (item.name if item else ""),
            quantity=quantity,
            unit_price=unit_price,
            total_amount=unit_price * Decimal(quantity),
            safety_override=bool(safety_override),
            created_by_user_id=actor_user_id,
        )

        logger.info(
            "Charge %s created: encounter=%s source=%s:%s total=%s%s",
            charge.id,
            encounter.id,
            source_type,
            source_id,
            charge.total_amount,
            " (safety override)" if charge.safety_override else "",
        )
        return charge
