"""
Machine à états des demandes d'aide.

Chaque opération publique :
- vérifie les droits (RBAC + propriété) avant toute écriture ;
- verrouille la demande (``select_for_update``) dans une transaction ;
- trace la transition (``DemandeStatusHistory`` + ``SysAuditLog``) ;
- planifie les notifications, livrées après commit.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, FrozenSet, Optional

from django.db import transaction
from django.db.models import Count, QuerySet, Sum
from django.utils import timezone

from apps.demandes import storage
from apps.demandes.models import Demande, DemandeDocument, DemandeStatusHistory
from apps.notifications.models import Notification
from apps.notifications.services.dispatcher import notify
from core.exceptions import (
    AuthorizationError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
    retry_on_dependency_failure,
)
from core.rbac.checker import ROLE_ADMIN, ROLE_CASE_WORKER, ROLE_USER, rbac
from core.utils.references import next_reference
from identity.models import CoreIdentity, SysAuditLog

logger = logging.getLogger(__name__)

Status = Demande.Status

DEMANDE_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    Status.DRAFT: frozenset({Status.SUBMITTED, Status.CANCELLED}),
    Status.SUBMITTED: frozenset(
        {Status.UNDER_REVIEW, Status.PENDING_DOCS, Status.APPROVED, Status.REJECTED, Status.CANCELLED}
    ),
    Status.UNDER_REVIEW: frozenset({Status.PENDING_DOCS, Status.APPROVED, Status.REJECTED, Status.CANCELLED}),
    Status.PENDING_DOCS: frozenset(
        {Status.UNDER_REVIEW, Status.APPROVED, Status.REJECTED, Status.CANCELLED, Status.EXPIRED}
    ),
    Status.APPROVED: frozenset({Status.PARTIALLY_PAID, Status.PAID, Status.CANCELLED, Status.EXPIRED}),
    Status.PARTIALLY_PAID: frozenset({Status.PAID, Status.CANCELLED}),
    Status.REJECTED: frozenset({Status.CANCELLED}),
    Status.EXPIRED: frozenset({Status.CANCELLED}),
    Status.PAID: frozenset(),
    Status.CANCELLED: frozenset(),
}

REVIEWABLE_STATUSES = frozenset({Status.SUBMITTED, Status.UNDER_REVIEW, Status.PENDING_DOCS})
PAYABLE_STATUSES = frozenset({Status.APPROVED, Status.PARTIALLY_PAID})
TERMINAL_STATUSES = frozenset({Status.PAID, Status.CANCELLED})

DECISION_APPROVE = "approve"
DECISION_REJECT = "reject"
DECISION_REQUEST_DOCS = "request_docs"
DECISIONS = (DECISION_APPROVE, DECISION_REJECT, DECISION_REQUEST_DOCS)


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in DEMANDE_TRANSITIONS.get(from_status, frozenset())


def _lock(demande: Demande) -> Demande:
    try:
        return Demande.objects.select_for_update().get(pk=demande.pk)
    except Demande.DoesNotExist as exc:
        raise NotFoundError("Demande introuvable.") from exc


def _transition(demande: Demande, to_status: str, actor: Optional[CoreIdentity], motif: str = "") -> None:
    from_status = demande.status
    if not can_transition(from_status, to_status):
        logger.warning("Demande %s: transition refusée %s -> %s", demande.reference, from_status, to_status)
        raise InvalidTransitionError(
            f"Transition '{from_status}' -> '{to_status}' non autorisée.",
            details={"from": from_status, "to": to_status},
        )
    demande.status = to_status
    DemandeStatusHistory.objects.create(
        demande=demande,
        from_status=from_status,
        to_status=to_status,
        changed_by=actor,
        motif=motif or "",
    )
    SysAuditLog.record(
        action="DEMANDE_STATUS_CHANGED",
        entity_type="DEMANDE",
        entity_id=demande.pk,
        actor=actor,
        payload={"reference": demande.reference, "from": from_status, "to": to_status, "motif": motif or ""},
    )
    logger.info("Demande %s: %s -> %s", demande.reference, from_status, to_status)


def _ensure_owner(demande: Demande, actor: CoreIdentity) -> None:
    if demande.user_id != actor.pk:
        raise AuthorizationError("Seul le demandeur peut effectuer cette action.")


def _notify_status(demande: Demande, title: str, message: str, *, extra_recipient=None, **kwargs) -> None:
    notify(
        demande.user,
        title,
        message,
        Notification.Type.REQUEST_STATUS,
        related_demande=demande,
        action_url=f"/demandes/{demande.pk}",
        **kwargs,
    )
    if extra_recipient is not None and extra_recipient.pk != demande.user_id:
        notify(
            extra_recipient,
            title,
            message,
            Notification.Type.REQUEST_STATUS,
            related_demande=demande,
            action_url=f"/demandes/{demande.pk}",
        )


def _to_amount(value: Any, field: str) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValidationError(f"Montant invalide pour '{field}'.", details={field: str(value)}) from exc
    if not amount.is_finite():
        raise ValidationError(f"Montant invalide pour '{field}'.", details={field: str(value)})
    return amount


def visible_demandes(actor: CoreIdentity) -> QuerySet[Demande]:
    queryset = Demande.objects.select_related("user", "assigned_to", "reviewed_by")
    if rbac.can(role=actor.role, action="read_all", resource="DEMANDE"):
        return queryset
    return queryset.filter(user=actor)


@retry_on_dependency_failure
def create_demande(
    actor: CoreIdentity,
    description: str,
    montant: Any,
    category: str = Demande.Category.OTHER,
    *,
    owner: Optional[CoreIdentity] = None,
) -> Demande:
    rbac.authorize(actor, action="create", resource="DEMANDE")
    if owner is not None and owner.pk != actor.pk and actor.role != ROLE_ADMIN:
        raise AuthorizationError("Seul un administrateur peut déposer une demande pour un tiers.")
    owner = owner or actor
    amount = _to_amount(montant, "montant")
    if amount <= 0:
        raise ValidationError("Le montant demandé doit être strictement positif.", details={"montant": str(amount)})
    if category not in Demande.Category.values:
        raise ValidationError("Catégorie inconnue.", details={"category": category})
    if not (description or "").strip():
        raise ValidationError("La description est obligatoire.")

    with transaction.atomic():
        demande = Demande(
            reference=next_reference(Demande, "DEM"),
            description=description.strip(),
            montant=amount,
            category=category,
            user=owner,
        )
        demande.full_clean()
        demande.save()
        DemandeStatusHistory.objects.create(
            demande=demande, from_status="", to_status=Status.DRAFT, changed_by=actor
        )
        SysAuditLog.record(
            action="DEMANDE_CREATED",
            entity_type="DEMANDE",
            entity_id=demande.pk,
            actor=actor,
            payload={"reference": demande.reference, "montant": str(amount), "category": category},
        )
    logger.info("Demande %s créée pour %s", demande.reference, owner.email)
    return demande


@retry_on_dependency_failure
def submit(demande: Demande, actor: CoreIdentity) -> Demande:
    rbac.authorize(actor, action="submit", resource="DEMANDE")
    with transaction.atomic():
        demande = _lock(demande)
        _ensure_owner(demande, actor)
        if demande.status != Status.DRAFT:
            raise InvalidStateError(
                "Seule une demande en brouillon peut être soumise.", details={"status": demande.status}
            )
        _transition(demande, Status.SUBMITTED, actor)
        demande.submitted_at = timezone.now()
        demande.save(update_fields=["status", "submitted_at", "updated_at"])
        _notify_status(
            demande,
            "Demande soumise",
            f"Votre demande {demande.reference} a bien été soumise.",
        )
    return demande


@retry_on_dependency_failure
def start_review(demande: Demande, actor: CoreIdentity) -> Demande:
    rbac.authorize(actor, action="start_review", resource="DEMANDE")
    with transaction.atomic():
        demande = _lock(demande)
        _transition(demande, Status.UNDER_REVIEW, actor)
        update_fields = ["status", "updated_at"]
        if demande.assigned_to_id is None:
            demande.assigned_to = actor
            update_fields.append("assigned_to")
        demande.save(update_fields=update_fields)
        _notify_status(
            demande,
            "Demande en cours d'examen",
            f"Votre demande {demande.reference} est en cours d'examen.",
        )
    return demande


@retry_on_dependency_failure
def review(
    demande: Demande,
    actor: CoreIdentity,
    decision: str,
    motif: Optional[str] = None,
    approved_amount: Any = None,
    documents_due_at: Optional[datetime] = None,
) -> Demande:
    """Décision d'instruction : approve, reject ou request_docs."""
    rbac.authorize(actor, action="review", resource="DEMANDE")
    with transaction.atomic():
        demande = _lock(demande)
        if demande.status not in REVIEWABLE_STATUSES:
            logger.warning("Demande %s: examen refusé au statut %s", demande.reference, demande.status)
            raise InvalidTransitionError(
                f"Une demande au statut '{demande.status}' ne peut pas être examinée.",
                details={"status": demande.status},
            )
        if decision not in DECISIONS:
            raise ValidationError("Décision inconnue.", details={"decision": decision, "allowed": list(DECISIONS)})

        now = timezone.now()
        motif = (motif or "").strip()
        update_fields = ["status", "motif", "reviewed_at", "reviewed_by", "updated_at"]

        if decision == DECISION_APPROVE:
            amount = demande.montant if approved_amount in (None, "") else _to_amount(approved_amount, "approved_amount")
            if amount <= 0 or amount > demande.montant:
                raise ValidationError(
                    "Le montant approuvé doit être positif et ne pas dépasser le montant demandé.",
                    details={"approved_amount": str(amount), "montant": str(demande.montant)},
                )
            _transition(demande, Status.APPROVED, actor, motif)
            demande.approved_amount = amount
            update_fields.append("approved_amount")
            title = "Demande approuvée"
            message = f"Votre demande {demande.reference} a été approuvée pour un montant de {amount}."
            category = Notification.Category.SUCCESS
        elif decision == DECISION_REJECT:
            if not motif:
                raise ValidationError("Un motif est obligatoire pour rejeter une demande.")
            _transition(demande, Status.REJECTED, actor, motif)
            title = "Demande rejetée"
            message = f"Votre demande {demande.reference} a été rejetée : {motif}"
            category = Notification.Category.WARNING
        else:
            if documents_due_at is not None and documents_due_at <= now:
                raise ValidationError("La date limite des pièces doit être dans le futur.")
            _transition(demande, Status.PENDING_DOCS, actor, motif)
            demande.documents_due_at = documents_due_at
            update_fields.append("documents_due_at")
            title = "Pièces justificatives requises"
            message = f"Des pièces complémentaires sont requises pour la demande {demande.reference}."
            if motif:
                message = f"{message} {motif}"
            category = Notification.Category.WARNING

        demande.motif = motif
        demande.reviewed_at = now
        demande.reviewed_by = actor
        if demande.assigned_to_id is None and actor.role == ROLE_CASE_WORKER:
            demande.assigned_to = actor
            update_fields.append("assigned_to")
        demande.save(update_fields=update_fields)
        _notify_status(
            demande,
            title,
            message[:1000],
            extra_recipient=demande.assigned_to if demande.assigned_to_id != actor.pk else None,
            category=category,
            action_required=decision == DECISION_REQUEST_DOCS,
        )
    return demande


@retry_on_dependency_failure
def assign(demande: Demande, actor: CoreIdentity, case_worker_id) -> Demande:
    rbac.authorize(actor, action="assign", resource="DEMANDE")
    case_worker = CoreIdentity.objects.filter(pk=case_worker_id, is_active=True).first()
    if case_worker is None:
        raise NotFoundError("Travailleur social introuvable.", details={"case_worker_id": str(case_worker_id)})
    if case_worker.role not in {ROLE_CASE_WORKER, ROLE_ADMIN}:
        raise ValidationError(
            "L'identité ciblée n'est pas un travailleur social.", details={"role": case_worker.role}
        )
    with transaction.atomic():
        demande = _lock(demande)
        if demande.status in TERMINAL_STATUSES:
            raise InvalidStateError(
                "Impossible d'assigner une demande clôturée.", details={"status": demande.status}
            )
        previous = demande.assigned_to_id
        demande.assigned_to = case_worker
        demande.save(update_fields=["assigned_to", "updated_at"])
        SysAuditLog.record(
            action="DEMANDE_ASSIGNED",
            entity_type="DEMANDE",
            entity_id=demande.pk,
            actor=actor,
            payload={
                "reference": demande.reference,
                "previous": str(previous) if previous else None,
                "assigned_to": str(case_worker.pk),
            },
        )
        notify(
            case_worker,
            "Nouvelle demande assignée",
            f"La demande {demande.reference} vous a été assignée.",
            Notification.Type.APPROVAL_REQUIRED,
            related_demande=demande,
            action_required=True,
            action_url=f"/demandes/{demande.pk}",
        )
        if case_worker.pk != demande.user_id:
            notify(
                demande.user,
                "Dossier pris en charge",
                f"Votre demande {demande.reference} a été confiée à {case_worker.full_name}.",
                Notification.Type.REQUEST_STATUS,
                related_demande=demande,
            )
    logger.info("Demande %s assignée à %s", demande.reference, case_worker.email)
    return demande


@retry_on_dependency_failure
def cancel(demande: Demande, actor: CoreIdentity, motif: Optional[str] = None) -> Demande:
    from apps.payments.services.processing import release_open_payments

    rbac.authorize(actor, action="cancel", resource="DEMANDE")
    with transaction.atomic():
        demande = _lock(demande)
        if actor.role == ROLE_USER:
            _ensure_owner(demande, actor)
        if demande.status in TERMINAL_STATUSES:
            raise InvalidStateError(
                f"Une demande au statut '{demande.status}' ne peut pas être annulée.",
                details={"status": demande.status},
            )
        motif = (motif or "").strip()
        _transition(demande, Status.CANCELLED, actor, motif)
        demande.motif = motif or demande.motif
        demande.save(update_fields=["status", "motif", "updated_at"])
        released = release_open_payments(demande, actor, reason=motif or "Demande annulée")
        if released:
            logger.info("Demande %s: %s paiement(s) annulé(s)", demande.reference, released)
        _notify_status(
            demande,
            "Demande annulée",
            f"La demande {demande.reference} a été annulée.",
            extra_recipient=demande.assigned_to,
        )
    return demande


@retry_on_dependency_failure
def add_document(demande: Demande, actor: CoreIdentity, uploaded_file) -> DemandeDocument:
    rbac.authorize(actor, action="upload_document", resource="DEMANDE")
    if uploaded_file is None:
        raise ValidationError("Aucun fichier fourni.")
    with transaction.atomic():
        demande = _lock(demande)
        is_owner = demande.user_id == actor.pk
        if actor.role == ROLE_USER and not is_owner:
            raise AuthorizationError("Seul le demandeur peut ajouter des pièces à cette demande.")
        if demande.status in TERMINAL_STATUSES:
            raise InvalidStateError(
                "Impossible d'ajouter une pièce à une demande clôturée.", details={"status": demande.status}
            )
        stored_name = storage.store(uploaded_file, reference=demande.reference)
        document = DemandeDocument.objects.create(
            demande=demande,
            file=stored_name,
            original_name=getattr(uploaded_file, "name", "") or "document",
            content_type=getattr(uploaded_file, "content_type", "") or "",
            size=getattr(uploaded_file, "size", 0) or 0,
            uploaded_by=actor,
        )
        SysAuditLog.record(
            action="DEMANDE_DOCUMENT_ADDED",
            entity_type="DEMANDE",
            entity_id=demande.pk,
            actor=actor,
            payload={"reference": demande.reference, "file": stored_name},
        )
        if demande.status == Status.PENDING_DOCS and is_owner:
            _transition(demande, Status.UNDER_REVIEW, actor, "Pièces reçues")
            demande.save(update_fields=["status", "updated_at"])
            if demande.assigned_to_id:
                notify(
                    demande.assigned_to,
                    "Pièces reçues",
                    f"De nouvelles pièces ont été déposées pour la demande {demande.reference}.",
                    Notification.Type.APPROVAL_REQUIRED,
                    related_demande=demande,
                    action_required=True,
                )
    return document


def link_payment(demande: Demande, payment) -> Demande:
    """Répercute un paiement effectué sur la demande (appelé dans la transaction du paiement)."""
    from apps.payments.models import Payment

    demande = _lock(demande)
    paid = (
        Payment.objects.filter(demande=demande, status=Payment.Status.COMPLETED).aggregate(total=Sum("amount"))[
            "total"
        ]
        or Decimal("0")
    )
    target = Status.PAID if paid >= demande.payable_amount else Status.PARTIALLY_PAID
    if demande.status not in PAYABLE_STATUSES:
        raise InvalidTransitionError(
            f"Une demande au statut '{demande.status}' ne peut pas recevoir de paiement.",
            details={"status": demande.status},
        )
    if target != demande.status:
        _transition(demande, target, payment.processed_by, f"Paiement {payment.reference}")
    demande.paid_amount = paid
    if demande.payment_id is None:
        demande.payment = payment
    demande.save(update_fields=["status", "paid_amount", "payment", "updated_at"])
    return demande


@retry_on_dependency_failure
def delete_draft(demande: Demande, actor: CoreIdentity) -> None:
    with transaction.atomic():
        demande = _lock(demande)
        if actor.role != ROLE_ADMIN:
            _ensure_owner(demande, actor)
        if demande.status != Status.DRAFT:
            raise InvalidStateError(
                "Seule une demande en brouillon peut être supprimée.", details={"status": demande.status}
            )
        SysAuditLog.record(
            action="DEMANDE_DELETED",
            entity_type="DEMANDE",
            entity_id=demande.pk,
            actor=actor,
            payload={"reference": demande.reference},
        )
        demande.delete()


def expire_stale(now: Optional[datetime] = None) -> int:
    """Expire les demandes en attente de pièces dont la date limite est dépassée."""
    now = now or timezone.now()
    candidates = list(
        Demande.objects.filter(status=Status.PENDING_DOCS, documents_due_at__lt=now).values_list("pk", flat=True)
    )
    expired = 0
    for pk in candidates:
        with transaction.atomic():
            demande = Demande.objects.select_for_update().select_related("user").filter(pk=pk).first()
            if demande is None or demande.status != Status.PENDING_DOCS:
                continue
            _transition(demande, Status.EXPIRED, None, "Délai de dépôt des pièces dépassé")
            demande.save(update_fields=["status", "updated_at"])
            _notify_status(
                demande,
                "Demande expirée",
                f"Le délai de dépôt des pièces pour la demande {demande.reference} est dépassé.",
                category=Notification.Category.WARNING,
            )
            expired += 1
    if expired:
        logger.info("%s demande(s) expirée(s)", expired)
    return expired


def dashboard_stats(queryset: QuerySet[Demande]) -> Dict[str, Any]:
    by_status = {row["status"]: row["count"] for row in queryset.values("status").annotate(count=Count("id"))}
    totals = queryset.aggregate(
        requested=Sum("montant"),
        approved=Sum("approved_amount"),
        paid=Sum("paid_amount"),
    )
    return {
        "total": sum(by_status.values()),
        "by_status": {status: by_status.get(status, 0) for status in Status.values},
        "amount_requested": str(totals["requested"] or Decimal("0")),
        "amount_approved": str(totals["approved"] or Decimal("0")),
        "amount_paid": str(totals["paid"] or Decimal("0")),
    }
