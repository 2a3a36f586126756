# hm_ledger/billing/services.py
from __future__ import annotations

import logging
import re
from decimal import Decimal
from uuid import UUID

from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError

from hm_ledger.audit.services import AuditService
from hm_ledger.billing.aggregator import InvoiceAggregator
from hm_ledger.billing.exceptions import (
    InvalidAmount,
    InvalidDiscount,
    InvoiceNotPayable,
    OverpaymentRejected,
    ReasonRequired,
    ReturnAlreadyExists,
)
from hm_ledger.billing.models import CreditNote, Invoice, InvoiceStatus, Payment, PaymentMethod
from hm_ledger.charges.models import Charge
from hm_ledger.common.events import publish_on_commit
from hm_ledger.common.locks import scoped_lock
from hm_ledger.common.money import ZERO, money_sum, to_money
from hm_ledger.encounters.services import EncounterService
from hm_ledger.orders.exceptions import InvalidTransition
from hm_ledger.orders.gating import OrderGatingService

logger = logging.getLogger(__name__)

RETURNABLE_STATUSES = (InvoiceStatus.ISSUED, InvoiceStatus.PARTIALLY_PAID, InvoiceStatus.PAID)


def _get_invoice_locked(*, tenant_id: UUID, facility_id: UUID, invoice_id: UUID) -> Invoice:
    try:
        return Invoice.objects.select_for_update().get(id=invoice_id, tenant_id=tenant_id, facility_id=facility_id)
    except Invoice.DoesNotExist:
        raise NotFound("Invoice not found in this scope.")


def _has_active_credit_note(invoice: Invoice) -> bool:
    return CreditNote.objects.filter(
        tenant_id=invoice.tenant_id,
        facility_id=invoice.facility_id,
        original_invoice=invoice,
        is_active=True,
    ).exists()


def _next_number_locked(*, model, field: str, prefix: str, tenant_id: UUID, facility_id: UUID) -> str:
    latest = (
        model.objects.select_for_update()
        .filter(tenant_id=tenant_id, facility_id=facility_id, **{f"{field}__startswith": f"{prefix}-"})
        .order_by(f"-{field}")
        .values_list(field, flat=True)
        .first()
    )

    if not latest:
        return f"{prefix}-000001"

    m = re.match(rf"{prefix}-(\d{{6}})$", latest.strip())
    if not m:
        return f"{prefix}-{timezone.now().strftime('%y%m%d%H%M%S')}"

    n = int(m.group(1)) + 1
    return f"{prefix}-{n:06d}"


class InvoiceService:
    @staticmethod
    @transaction.atomic
    def create_draft(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        encounter_id: UUID,
        notes: str = "",
    ) -> Invoice:
        encounter = EncounterService.get_scoped(
            tenant_id=tenant_id, facility_id=facility_id, encounter_id=encounter_id
        )
        return Invoice.objects.create(
            tenant_id=tenant_id,
            facility_id=facility_id,
            patient_id=encounter.patient_id,
            encounter=encounter,
            status=InvoiceStatus.DRAFT,
            notes=notes or "",
        )

    @staticmethod
    def _ensure_editable(invoice: Invoice) -> None:
        if invoice.status != InvoiceStatus.DRAFT:
            raise InvalidTransition(f"Invoice is {invoice.status}; only DRAFT invoices can be edited.")

    @staticmethod
    def _recalc_totals(invoice: Invoice) -> None:
        charges = Charge.objects.filter(
            tenant_id=invoice.tenant_id,
            facility_id=invoice.facility_id,
            invoice=invoice,
        )
        InvoiceAggregator.recompute(invoice, charges)
        invoice.save(update_fields=["total_amount", "discount_amount", "updated_at"])

    # ------------------------------------------------------------------
    # Attach charges
    # ------------------------------------------------------------------
    @staticmethod
    def attach_charges(*, tenant_id: UUID, facility_id: UUID, invoice_id: UUID, charge_ids: list[UUID]) -> Invoice:
        with scoped_lock("invoice", invoice_id):
            return InvoiceService._attach_charges_locked(
                tenant_id=tenant_id, facility_id=facility_id, invoice_id=invoice_id, charge_ids=charge_ids
            )

    @staticmethod
    @transaction.atomic
    def _attach_charges_locked(*, tenant_id, facility_id, invoice_id, charge_ids) -> Invoice:
        invoice = _get_invoice_locked(tenant_id=tenant_id, facility_id=facility_id, invoice_id=invoice_id)
        InvoiceService._ensure_editable(invoice)

        wanted = {str(cid) for cid in charge_ids or []}
        if not wanted:
            raise ValidationError({"charge_ids": "Provide at least one charge."})

        charges = list(
            Charge.objects.select_for_update().filter(tenant_id=tenant_id, facility_id=facility_id, id__in=wanted)
        )
        missing = wanted - {str(c.id) for c in charges}
        if missing:
            raise ValidationError({"charge_ids": f"Unknown charge(s): {', '.join(sorted(missing))}"})

        for charge in charges:
            if charge.encounter_id != invoice.encounter_id:
                raise ValidationError({"charge_ids": f"Charge {charge.id} belongs to another encounter."})
            if charge.invoice_id is not None and charge.invoice_id != invoice.id:
                raise ValidationError({"charge_ids": f"Charge {charge.id} is already invoiced."})

        for charge in charges:
            if charge.invoice_id is None:
                charge.invoice = invoice
                charge.save(update_fields=["invoice", "updated_at"])

        InvoiceService._recalc_totals(invoice)
        return invoice

    # ------------------------------------------------------------------
    # Discount
    # ------------------------------------------------------------------
    @staticmethod
    def set_discount(*, tenant_id: UUID, facility_id: UUID, invoice_id: UUID, discount_amount) -> Invoice:
        with scoped_lock("invoice", invoice_id):
            return InvoiceService._set_discount_locked(
                tenant_id=tenant_id, facility_id=facility_id, invoice_id=invoice_id, discount_amount=discount_amount
            )

    @staticmethod
    @transaction.atomic
    def _set_discount_locked(*, tenant_id, facility_id, invoice_id, discount_amount) -> Invoice:
        invoice = _get_invoice_locked(tenant_id=tenant_id, facility_id=facility_id, invoice_id=invoice_id)
        InvoiceService._ensure_editable(invoice)

        discount = to_money(discount_amount, "discount_amount")
        if discount < ZERO:
            raise InvalidDiscount("Discount cannot be negative.")

        invoice.discount_amount = discount
        InvoiceService._recalc_totals(invoice)
        return invoice

    # ------------------------------------------------------------------
    # Finalize / issue
    # ------------------------------------------------------------------
    @staticmethod
    def finalize(*, tenant_id: UUID, facility_id: UUID, invoice_id: UUID, actor_user_id: int | None = None) -> Invoice:
        with scoped_lock("invoice", invoice_id):
            return InvoiceService._finalize_locked(
                tenant_id=tenant_id, facility_id=facility_id, invoice_id=invoice_id, actor_user_id=actor_user_id
            )

    @staticmethod
    @transaction.atomic
    def _finalize_locked(*, tenant_id, facility_id, invoice_id, actor_user_id) -> Invoice:
        invoice = _get_invoice_locked(tenant_id=tenant_id, facility_id=facility_id, invoice_id=invoice_id)
        InvoiceService._ensure_editable(invoice)

        has_charges = Charge.objects.filter(tenant_id=tenant_id, facility_id=facility_id, invoice=invoice).exists()
        if not has_charges:
            raise ValidationError({"invoice": "Cannot issue an empty invoice."})

        InvoiceService._recalc_totals(invoice)

        now = timezone.now()
        invoice.invoice_number = _next_number_locked(
            model=Invoice, field="invoice_number", prefix="INV", tenant_id=tenant_id, facility_id=facility_id
        )
        invoice.status = InvoiceStatus.ISSUED
        invoice.issued_at = now

        # Nothing to collect (fully discounted or zero-priced): settled on issue.
        if invoice.net_amount == ZERO:
            invoice.status = InvoiceStatus.PAID
            invoice.paid_at = now

        invoice.save(update_fields=["invoice_number", "status", "issued_at", "paid_at", "updated_at"])

        if invoice.status == InvoiceStatus.PAID:
            OrderGatingService.mark_paid_for_invoice(tenant_id=tenant_id, facility_id=facility_id, invoice_id=invoice.id)

        AuditService.log(
            tenant_id=tenant_id,
            facility_id=facility_id,
            event_code="billing.invoice_issued",
            entity_type="Invoice",
            entity_id=invoice.id,
            actor_user_id=actor_user_id,
            metadata={
                "invoice_number": invoice.invoice_number,
                "total_amount": str(invoice.total_amount),
                "discount_amount": str(invoice.discount_amount),
            },
        )
        logger.info(
            "Invoice %s issued as %s: total=%s discount=%s status=%s",
            invoice.id,
            invoice.invoice_number,
            invoice.total_amount,
            invoice.discount_amount,
            invoice.status,
        )
        return invoice

    @staticmethod
    def issue_invoice(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        encounter_id: UUID,
        charge_ids: list[UUID],
        discount_amount=ZERO,
        notes: str = "",
        actor_user_id: int | None = None,
    ) -> Invoice:
        """
        Cashier flow in one transaction: draft, attach charges, discount, issue.
        Any failure leaves no draft behind.
        """
        with transaction.atomic():
            draft = InvoiceService.create_draft(
                tenant_id=tenant_id, facility_id=facility_id, encounter_id=encounter_id, notes=notes
            )
            with scoped_lock("invoice", draft.id):
                InvoiceService._attach_charges_locked(
                    tenant_id=tenant_id, facility_id=facility_id, invoice_id=draft.id, charge_ids=charge_ids
                )
                InvoiceService._set_discount_locked(
                    tenant_id=tenant_id,
                    facility_id=facility_id,
                    invoice_id=draft.id,
                    discount_amount=discount_amount if discount_amount is not None else ZERO,
                )
                return InvoiceService._finalize_locked(
                    tenant_id=tenant_id, facility_id=facility_id, invoice_id=draft.id, actor_user_id=actor_user_id
                )

    # ------------------------------------------------------------------
    # Cancel (DRAFT only)
    # ------------------------------------------------------------------
    @staticmethod
    def cancel(*, tenant_id: UUID, facility_id: UUID, invoice_id: UUID, reason: str = "") -> Invoice:
        with scoped_lock("invoice", invoice_id):
            return InvoiceService._cancel_locked(
                tenant_id=tenant_id, facility_id=facility_id, invoice_id=invoice_id, reason=reason
            )

    @staticmethod
    @transaction.atomic
    def _cancel_locked(*, tenant_id, facility_id, invoice_id, reason: str) -> Invoice:
        invoice = _get_invoice_locked(tenant_id=tenant_id, facility_id=facility_id, invoice_id=invoice_id)
        if invoice.status != InvoiceStatus.DRAFT:
            raise InvalidTransition(
                f"Invoice is {invoice.status}; issued invoices are reversed with a credit note, not cancelled."
            )

        # Detached charges can be invoiced again.
        detached = Charge.objects.filter(tenant_id=tenant_id, facility_id=facility_id, invoice=invoice).update(
            invoice=None, updated_at=timezone.now()
        )

        invoice.discount_amount = ZERO
        InvoiceAggregator.recompute(invoice, [])
        invoice.status = InvoiceStatus.CANCELLED
        invoice.cancelled_at = timezone.now()
        if reason:
            invoice.notes = (invoice.notes + "\n" + f"CANCELLED: {reason}").strip()

        invoice.save(
            update_fields=["status", "cancelled_at", "notes", "total_amount", "discount_amount", "updated_at"]
        )
        logger.info("Draft invoice %s cancelled, %d charge(s) detached", invoice.id, detached)
        return invoice


class PaymentService:
    @staticmethod
    def apply_payment(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        invoice_id: UUID,
        amount,
        method: str = PaymentMethod.CASH,
        reference: str = "",
        actor_user_id: int | None = None,
        record_response=None,
    ) -> Payment:
        """
        The only writer of Invoice.paid_amount.

        Runs under the per-invoice lock; the overpayment check and the write
        happen against the committed paid total, so two concurrent full
        payments cannot both pass.

        `record_response(payment)` runs inside the payment transaction; if it
        raises (a replayed Idempotency-Key) the payment rolls back with it.
        """
        amount = to_money(amount, "amount")
        if amount <= ZERO:
            raise InvalidAmount()
        if method not in PaymentMethod.values:
            raise ValidationError({"method": f"Unknown payment method '{method}'."})

        with scoped_lock("invoice", invoice_id):
            return PaymentService._apply_payment_locked(
                tenant_id=tenant_id,
                facility_id=facility_id,
                invoice_id=invoice_id,
                amount=amount,
                method=method,
                reference=reference,
                actor_user_id=actor_user_id,
                record_response=record_response,
            )

    @staticmethod
    @transaction.atomic
    def _apply_payment_locked(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        invoice_id: UUID,
        amount: Decimal,
        method: str,
        reference: str,
        actor_user_id: int | None,
        record_response,
    ) -> Payment:
        invoice = _get_invoice_locked(tenant_id=tenant_id, facility_id=facility_id, invoice_id=invoice_id)

        if invoice.status in (InvoiceStatus.DRAFT, InvoiceStatus.CANCELLED):
            raise InvoiceNotPayable(f"Invoice is {invoice.status} and cannot accept payments.")
        if _has_active_credit_note(invoice):
            raise InvoiceNotPayable("Invoice has been reversed by a credit note.")

        paid_so_far = money_sum(
            Payment.objects.filter(tenant_id=tenant_id, facility_id=facility_id, invoice=invoice).values_list(
                "amount", flat=True
            )
        )
        net = invoice.net_amount
        if paid_so_far + amount > net:
            logger.warning(
                "Overpayment rejected on invoice %s: paid=%s amount=%s net=%s",
                invoice.id,
                paid_so_far,
                amount,
                net,
            )
            raise OverpaymentRejected(
                f"Payment of {amount} exceeds the remaining balance of {net - paid_so_far}."
            )

        now = timezone.now()
        payment = Payment.objects.create(
            tenant_id=tenant_id,
            facility_id=facility_id,
            invoice=invoice,
            amount=amount,
            method=method,
            reference=reference or "",
            paid_at=now,
            recorded_by_user_id=actor_user_id,
        )

        invoice.paid_amount = paid_so_far + amount
        invoice.status = InvoiceAggregator.status_for(paid_amount=invoice.paid_amount, net_amount=net)
        if invoice.status == InvoiceStatus.PAID:
            invoice.paid_at = now
        invoice.save(update_fields=["paid_amount", "status", "paid_at", "updated_at"])

        # Same transaction as the payment row: both commit or neither does.
        if invoice.status == InvoiceStatus.PAID:
            OrderGatingService.mark_paid_for_invoice(tenant_id=tenant_id, facility_id=facility_id, invoice_id=invoice.id)

        AuditService.log(
            tenant_id=tenant_id,
            facility_id=facility_id,
            event_code="billing.payment_applied",
            entity_type="Invoice",
            entity_id=invoice.id,
            actor_user_id=actor_user_id,
            metadata={
                "payment_id": str(payment.id),
                "amount": str(amount),
                "method": method,
                "status": invoice.status,
            },
        )
        if record_response is not None:
            record_response(payment)

        logger.info(
            "Payment %s applied to invoice %s: amount=%s paid=%s/%s status=%s",
            payment.id,
            invoice.id,
            amount,
            invoice.paid_amount,
            net,
            invoice.status,
        )
        return payment


class CreditNoteService:
    @staticmethod
    def create_return(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        invoice_id: UUID,
        reason: str,
        actor_user_id: int | None = None,
    ) -> CreditNote:
        reason = (reason or "").strip()
        if not reason:
            raise ReasonRequired("A return reason is required.")

        # Same lock as payments: a return never interleaves with a payment on the invoice.
        with scoped_lock("invoice", invoice_id):
            return CreditNoteService._create_return_locked(
                tenant_id=tenant_id,
                facility_id=facility_id,
                invoice_id=invoice_id,
                reason=reason,
                actor_user_id=actor_user_id,
            )

    @staticmethod
    @transaction.atomic
    def _create_return_locked(*, tenant_id, facility_id, invoice_id, reason: str, actor_user_id) -> CreditNote:
        invoice = _get_invoice_locked(tenant_id=tenant_id, facility_id=facility_id, invoice_id=invoice_id)

        if _has_active_credit_note(invoice):
            raise ReturnAlreadyExists()
        if invoice.status not in RETURNABLE_STATUSES:
            raise InvalidTransition(f"Cannot return an invoice in status {invoice.status}.")

        cn = CreditNote.objects.create(
            tenant_id=tenant_id,
            facility_id=facility_id,
            original_invoice=invoice,
            credit_note_number=_next_number_locked(
                model=CreditNote,
                field="credit_note_number",
                prefix="CN",
                tenant_id=tenant_id,
                facility_id=facility_id,
            ),
            reason=reason,
            total_amount=-invoice.net_amount,
            is_active=True,
            created_by_user_id=actor_user_id,
        )

        previous_status = invoice.status
        invoice.status = InvoiceStatus.CANCELLED
        invoice.cancelled_at = timezone.now()
        invoice.save(update_fields=["status", "cancelled_at", "updated_at"])

        reverted = OrderGatingService.revert_for_invoice(
            tenant_id=tenant_id, facility_id=facility_id, invoice_id=invoice.id
        )

        AuditService.log(
            tenant_id=tenant_id,
            facility_id=facility_id,
            event_code="billing.credit_note_created",
            entity_type="Invoice",
            entity_id=invoice.id,
            actor_user_id=actor_user_id,
            metadata={
                "credit_note_id": str(cn.id),
                "credit_note_number": cn.credit_note_number,
                "total_amount": str(cn.total_amount),
                "previous_status": previous_status,
                "reason": reason,
                "reverted_documents": reverted,
            },
        )
        publish_on_commit(
            "billing.credit_note_created",
            {
                "tenant_id": str(tenant_id),
                "facility_id": str(facility_id),
                "invoice_id": str(invoice.id),
                "credit_note_id": str(cn.id),
            },
        )
        logger.info(
            "Credit note %s created for invoice %s (%s): total=%s, %d gated document(s) reverted",
            cn.credit_note_number,
            invoice.invoice_number,
            previous_status,
            cn.total_amount,
            reverted,
        )
        return cn
