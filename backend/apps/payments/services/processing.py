"""
Traitement des paiements d'aide.

Machine à états : ``pending|scheduled -> processing -> completed|failed``,
``failed -> (retry) -> processing``, tout statut non terminal -> ``cancelled``.
Un paiement ``completed`` est immuable.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional, Tuple

from django.db import transaction
from django.db.models import Count, Q, QuerySet, Sum
from django.utils import timezone

from apps.budget.models import Allocation
from apps.budget.services.allocation import credit
from apps.demandes.models import Demande
from apps.demandes.services.workflow import PAYABLE_STATUSES, link_payment
from apps.notifications.models import Notification
from apps.notifications.services.dispatcher import notify
from apps.payments.gateways import get_gateway
from apps.payments.models import PartyType, Payment
from core.exceptions import (
    InvalidStateError,
    NotFoundError,
    RetryExhaustedError,
    RetryNotAllowedError,
    ValidationError,
    retry_on_dependency_failure,
)
from core.rbac.checker import rbac
from core.utils.backoff import next_retry_at
from identity.models import CoreIdentity, SysAuditLog

logger = logging.getLogger(__name__)

Status = Payment.Status
Method = Payment.Method

PROCESSING_RATES = {
    Method.BANK_TRANSFER: Decimal("0.005"),
    Method.MOBILE_PAYMENT: Decimal("0.01"),
    Method.CARD: Decimal("0.025"),
}
BANK_TRANSFER_LARGE_AMOUNT = Decimal("10000")

OPEN_STATUSES = frozenset({Status.PENDING, Status.SCHEDULED, Status.PROCESSING, Status.FAILED})


def compute_fees(payment_method: str, amount: Decimal) -> Tuple[Decimal, Decimal]:
    """Frais de traitement (taux par moyen de paiement) et frais bancaires fixes."""
    rate = PROCESSING_RATES.get(payment_method, Decimal("0"))
    processing_fee = (amount * rate).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    if payment_method == Method.BANK_TRANSFER:
        bank_fee = Decimal("50") if amount > BANK_TRANSFER_LARGE_AMOUNT else Decimal("25")
    elif payment_method == Method.MOBILE_PAYMENT:
        bank_fee = Decimal("10")
    elif payment_method == Method.CARD:
        bank_fee = Decimal("15")
    else:
        bank_fee = Decimal("0")
    return processing_fee, bank_fee


def visible_payments(actor: CoreIdentity) -> QuerySet[Payment]:
    queryset = Payment.objects.select_related("demande", "allocation", "processed_by")
    if rbac.can(role=actor.role, action="read_all", resource="PAYMENT"):
        return queryset
    return queryset.filter(destination_type=PartyType.USER, destination_id=actor.pk)


def _lock(payment: Payment) -> Payment:
    locked = Payment.objects.select_for_update().filter(pk=payment.pk).first()
    if locked is None:
        raise NotFoundError("Paiement introuvable.")
    return locked


def _lock_with_demande(payment: Payment) -> Tuple[Payment, Optional[Demande]]:
    """Verrouille la demande liée puis le paiement (ordre global : demande, paiement, enveloppe)."""
    demande_id = Payment.objects.filter(pk=payment.pk).values_list("demande_id", flat=True).first()
    demande = None
    if demande_id is not None:
        demande = Demande.objects.select_for_update().filter(pk=demande_id).first()
    return _lock(payment), demande


def _ensure_payable(demande: Optional[Demande]) -> None:
    if demande is not None and demande.status not in PAYABLE_STATUSES:
        raise InvalidStateError(
            "La demande liée ne peut plus recevoir de paiement.",
            details={"demande_status": demande.status},
        )


def _recipient(payment: Payment) -> Optional[CoreIdentity]:
    ref = payment.destination
    if ref.type != PartyType.USER:
        return None
    return ref.resolve()


def _audit(payment: Payment, action: str, actor: Optional[CoreIdentity], **payload) -> None:
    SysAuditLog.record(
        action=action,
        entity_type="PAYMENT",
        entity_id=payment.pk,
        actor=actor,
        payload={"reference": payment.reference, "status": payment.status, **payload},
    )


def _disburse(payment: Payment, actor: CoreIdentity, *, count_failure: bool) -> Payment:
    now = timezone.now()
    payment.processing_fee, payment.bank_fee = compute_fees(payment.payment_method, payment.amount)
    payment.status = Status.PROCESSING
    payment.processed_by = actor
    payment.processed_at = now
    payment.save()

    try:
        result = get_gateway(payment.payment_method).disburse(payment)
        success, transaction_id, error = result.success, result.transaction_id, result.error
    except Exception as exc:  # noqa: BLE001
        logger.exception("Prestataire en erreur pour le paiement %s", payment.reference)
        success, transaction_id, error = False, "", str(exc) or exc.__class__.__name__

    recipient = _recipient(payment)
    if success:
        payment.status = Status.COMPLETED
        payment.transaction_id = transaction_id
        payment.delivered_at = now
        payment.failure_reason = ""
        payment.retry_after = None
        payment.save()
        if payment.allocation_id:
            Allocation.objects.filter(pk=payment.allocation_id).exclude(status=Allocation.Status.CANCELLED).update(
                status=Allocation.Status.PAID, updated_at=now
            )
        if payment.demande_id:
            link_payment(payment.demande, payment)
        _audit(payment, "PAYMENT_COMPLETED", actor, transaction_id=transaction_id)
        logger.info("Paiement %s effectué (%s)", payment.reference, transaction_id)
        if recipient is not None:
            notify(
                recipient,
                "Paiement effectué",
                f"Le paiement {payment.reference} de {payment.amount} a été effectué.",
                Notification.Type.PAYMENT,
                category=Notification.Category.SUCCESS,
                related_payment=payment,
                related_demande=payment.demande,
            )
        return payment

    if count_failure:
        payment.retry_count += 1
    payment.status = Status.FAILED
    payment.failure_reason = error or "Échec du décaissement."
    payment.retry_after = next_retry_at(payment.retry_count, payment.max_retries, now)
    payment.save()
    _audit(payment, "PAYMENT_FAILED", actor, reason=payment.failure_reason, retry_count=payment.retry_count)
    logger.warning(
        "Paiement %s en échec (%s/%s): %s",
        payment.reference,
        payment.retry_count,
        payment.max_retries,
        payment.failure_reason,
    )
    if recipient is not None:
        notify(
            recipient,
            "Paiement en échec",
            f"Le paiement {payment.reference} n'a pas pu être effectué. Une nouvelle tentative sera programmée.",
            Notification.Type.PAYMENT,
            category=Notification.Category.ERROR,
            priority=Notification.Priority.HIGH,
            related_payment=payment,
            related_demande=payment.demande,
        )
    return payment


@retry_on_dependency_failure
def process(payment: Payment, actor: CoreIdentity) -> Payment:
    rbac.authorize(actor, action="process", resource="PAYMENT")
    with transaction.atomic():
        payment, demande = _lock_with_demande(payment)
        if payment.status not in {Status.PENDING, Status.SCHEDULED}:
            raise InvalidStateError(
                f"Un paiement au statut '{payment.status}' ne peut pas être traité.",
                details={"status": payment.status},
            )
        if payment.status == Status.SCHEDULED and payment.scheduled_date and payment.scheduled_date > timezone.now():
            raise InvalidStateError(
                "Ce paiement est planifié pour une date ultérieure.",
                details={"scheduled_date": payment.scheduled_date.isoformat()},
            )
        _ensure_payable(demande)
        return _disburse(payment, actor, count_failure=True)


@retry_on_dependency_failure
def retry(payment: Payment, actor: CoreIdentity, now: Optional[datetime] = None) -> Payment:
    rbac.authorize(actor, action="retry", resource="PAYMENT")
    now = now or timezone.now()
    with transaction.atomic():
        payment, demande = _lock_with_demande(payment)
        if payment.status != Status.FAILED:
            raise InvalidStateError(
                "Seul un paiement en échec peut être relancé.", details={"status": payment.status}
            )
        if payment.retry_count >= payment.max_retries:
            raise RetryExhaustedError(
                details={"retry_count": payment.retry_count, "max_retries": payment.max_retries}
            )
        if payment.retry_after and now < payment.retry_after:
            raise RetryNotAllowedError(
                details={"retry_after": payment.retry_after.isoformat(), "retry_count": payment.retry_count}
            )
        _ensure_payable(demande)
        payment.retry_count += 1
        logger.info("Relance du paiement %s (tentative %s)", payment.reference, payment.retry_count)
        return _disburse(payment, actor, count_failure=False)


def _cancel_locked(payment: Payment, actor: Optional[CoreIdentity], reason: str) -> Payment:
    now = timezone.now()
    payment.status = Status.CANCELLED
    payment.cancelled_at = now
    payment.cancel_reason = reason or ""
    payment.retry_after = None
    payment.save()
    if payment.allocation_id:
        Allocation.objects.filter(pk=payment.allocation_id).update(status=Allocation.Status.CANCELLED, updated_at=now)
    if payment.source_type == PartyType.BUDGET_POOL:
        pool = payment.source.resolve()
        if pool is not None:
            credit(pool, payment.amount, actor, reason=f"Annulation {payment.reference}")
    _audit(payment, "PAYMENT_CANCELLED", actor, reason=payment.cancel_reason)
    recipient = _recipient(payment)
    if recipient is not None:
        notify(
            recipient,
            "Paiement annulé",
            f"Le paiement {payment.reference} a été annulé.",
            Notification.Type.PAYMENT,
            category=Notification.Category.WARNING,
            related_payment=payment,
            related_demande=payment.demande,
        )
    logger.info("Paiement %s annulé", payment.reference)
    return payment


@retry_on_dependency_failure
def cancel(payment: Payment, actor: CoreIdentity, reason: str = "") -> Payment:
    rbac.authorize(actor, action="cancel", resource="PAYMENT")
    with transaction.atomic():
        payment, _ = _lock_with_demande(payment)
        if payment.status in {Status.COMPLETED, Status.CANCELLED}:
            raise InvalidStateError(
                f"Un paiement au statut '{payment.status}' ne peut pas être annulé.",
                details={"status": payment.status},
            )
        return _cancel_locked(payment, actor, reason)


def release_open_payments(demande, actor: Optional[CoreIdentity], reason: str = "") -> int:
    """Annule les paiements non aboutis d'une demande (transaction de l'appelant)."""
    pks = list(
        Payment.objects.filter(demande=demande, status__in=OPEN_STATUSES).order_by("pk").values_list("pk", flat=True)
    )
    released = 0
    for pk in pks:
        payment = Payment.objects.select_for_update().get(pk=pk)
        if payment.status in OPEN_STATUSES:
            _cancel_locked(payment, actor, reason)
            released += 1
    return released


@retry_on_dependency_failure
def schedule(payment: Payment, actor: CoreIdentity, scheduled_date: datetime) -> Payment:
    rbac.authorize(actor, action="schedule", resource="PAYMENT")
    if scheduled_date is None or scheduled_date <= timezone.now():
        raise ValidationError("La date de paiement doit être dans le futur.")
    with transaction.atomic():
        payment = _lock(payment)
        if payment.status not in {Status.PENDING, Status.SCHEDULED}:
            raise InvalidStateError(
                f"Un paiement au statut '{payment.status}' ne peut pas être planifié.",
                details={"status": payment.status},
            )
        payment.status = Status.SCHEDULED
        payment.scheduled_date = scheduled_date
        payment.save(update_fields=["status", "scheduled_date", "updated_at"])
        _audit(payment, "PAYMENT_SCHEDULED", actor, scheduled_date=scheduled_date.isoformat())
    return payment


def add_internal_note(payment: Payment, actor: CoreIdentity, note: str) -> Payment:
    rbac.authorize(actor, action="process", resource="PAYMENT")
    if not (note or "").strip():
        raise ValidationError("La note ne peut pas être vide.")
    with transaction.atomic():
        payment = _lock(payment)
        stamp = timezone.now().strftime("%Y-%m-%d %H:%M")
        line = f"[{stamp}] {actor.email}: {note.strip()}"
        payment.internal_notes = f"{payment.internal_notes}\n{line}".strip()
        payment.save(update_fields=["internal_notes", "updated_at"])
    return payment


def payment_statistics(queryset: QuerySet[Payment]) -> Dict[str, Any]:
    by_status = {row["status"]: row["count"] for row in queryset.values("status").annotate(count=Count("id"))}
    totals = queryset.aggregate(
        total=Sum("amount"),
        completed=Sum("amount", filter=Q(status=Status.COMPLETED)),
        processing_fees=Sum("processing_fee", filter=Q(status=Status.COMPLETED)),
        bank_fees=Sum("bank_fee", filter=Q(status=Status.COMPLETED)),
    )
    count = sum(by_status.values())
    attempted = by_status.get(Status.COMPLETED, 0) + by_status.get(Status.FAILED, 0)
    success_rate = (
        (Decimal(by_status.get(Status.COMPLETED, 0)) / Decimal(attempted)).quantize(Decimal("0.0001"))
        if attempted
        else Decimal("0")
    )
    return {
        "count": count,
        "by_status": {status: by_status.get(status, 0) for status in Status.values},
        "total_amount": str(totals["total"] or Decimal("0")),
        "completed_amount": str(totals["completed"] or Decimal("0")),
        "total_fees": str((totals["processing_fees"] or Decimal("0")) + (totals["bank_fees"] or Decimal("0"))),
        "success_rate": str(success_rate),
    }
