"""
Allocation et transferts entre enveloppes budgétaires.

Invariant : ``0 <= remaining <= montant`` pour chaque enveloppe. Toute
mutation de solde se fait sous verrou ligne et incrémente ``version``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional

from django.db import IntegrityError, transaction
from django.db.models import Avg, Count, Q, Sum
from django.utils import timezone

from apps.budget.models import DEFAULT_ALERT_THRESHOLDS, Allocation, BudgetPool, PoolTransfer
from apps.demandes.models import Demande
from apps.notifications.models import Notification
from apps.notifications.services.dispatcher import notify
from core.exceptions import (
    DuplicateError,
    InsufficientFundsError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    PoolNotActiveError,
    ValidationError,
    retry_on_dependency_failure,
)
from core.rbac.checker import rbac
from core.utils.references import next_reference
from identity.models import CoreIdentity, SysAuditLog

logger = logging.getLogger(__name__)

Status = BudgetPool.Status

POOL_TRANSITIONS = {
    Status.DRAFT: frozenset({Status.ACTIVE}),
    Status.ACTIVE: frozenset({Status.FROZEN, Status.DEPLETED, Status.EXPIRED}),
    Status.FROZEN: frozenset({Status.ACTIVE, Status.EXPIRED}),
    Status.DEPLETED: frozenset({Status.ACTIVE}),
    Status.EXPIRED: frozenset(),
}

UPDATABLE_FIELDS = (
    "name",
    "description",
    "department",
    "end_date",
    "allocation_rules",
    "alert_thresholds",
    "managed_by",
)

ZERO = Decimal("0")


@dataclass(frozen=True)
class AllocationResult:
    pool: BudgetPool
    allocation: Allocation
    payment: Any


def _amount(value: Any, field: str = "amount") -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValidationError(f"Montant invalide pour '{field}'.", details={field: str(value)}) from exc
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Le montant doit être strictement positif.", details={field: str(value)})
    return amount


def _pool_total(value: Any, field: str = "montant") -> Decimal:
    """Montant d'enveloppe : fini et positif ou nul."""
    try:
        total = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValidationError("Montant invalide.", details={field: str(value)}) from exc
    if not total.is_finite():
        raise ValidationError("Montant invalide.", details={field: str(value)})
    if total < 0:
        raise ValidationError("Le montant d'une enveloppe ne peut pas être négatif.", details={field: str(value)})
    return total


def _lock_pools(*pools: BudgetPool) -> Dict[Any, BudgetPool]:
    """Verrouille les enveloppes dans l'ordre des clés primaires."""
    pks = sorted({pool.pk for pool in pools}, key=str)
    locked = {}
    for pk in pks:
        pool = BudgetPool.objects.select_for_update().filter(pk=pk).first()
        if pool is None:
            raise NotFoundError("Enveloppe budgétaire introuvable.", details={"pool_id": str(pk)})
        locked[pk] = pool
    return locked


def _audit(pool: BudgetPool, action: str, actor: Optional[CoreIdentity], **payload) -> None:
    SysAuditLog.record(
        action=action,
        entity_type="BUDGET_POOL",
        entity_id=pool.pk,
        actor=actor,
        payload={"reference": pool.reference, "remaining": str(pool.remaining), "version": pool.version, **payload},
    )


def _ensure_active(pool: BudgetPool, today: Optional[date] = None) -> None:
    today = today or timezone.localdate()
    if pool.status != Status.ACTIVE:
        raise PoolNotActiveError(
            f"L'enveloppe {pool.name} n'est pas active.", details={"pool": str(pool.pk), "status": pool.status}
        )
    if pool.end_date and pool.end_date < today:
        raise PoolNotActiveError(
            f"L'enveloppe {pool.name} est arrivée à échéance.",
            details={"pool": str(pool.pk), "end_date": pool.end_date.isoformat()},
        )


def _ensure_can_receive(pool: BudgetPool) -> None:
    """Une enveloppe épuisée (non échue) peut recevoir des fonds ; sinon elle doit être active."""
    if pool.status == Status.DEPLETED and not _is_past_end(pool):
        return
    _ensure_active(pool)


def _is_past_end(pool: BudgetPool) -> bool:
    return pool.end_date is not None and pool.end_date < timezone.localdate()


def _sync_balance_status(pool: BudgetPool, actor: Optional[CoreIdentity]) -> None:
    """Active à solde nul -> depleted ; épuisée avec solde et non échue -> active."""
    if pool.status == Status.ACTIVE and pool.remaining == 0:
        _apply_status(pool, Status.DEPLETED, actor)
    elif pool.status == Status.DEPLETED and pool.remaining > 0 and not _is_past_end(pool):
        _apply_status(pool, Status.ACTIVE, actor)


def visible_pools(actor: CoreIdentity):
    rbac.authorize(actor, action="read", resource="BUDGET_POOL")
    return BudgetPool.objects.select_related("managed_by", "created_by")


@retry_on_dependency_failure
def create_pool(
    actor: CoreIdentity,
    *,
    name: str,
    fiscal_year: int,
    montant: Any,
    department: str = "",
    description: str = "",
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    allocation_rules: Optional[Dict[str, Any]] = None,
    alert_thresholds: Optional[Dict[str, Any]] = None,
    managed_by: Optional[CoreIdentity] = None,
) -> BudgetPool:
    rbac.authorize(actor, action="create", resource="BUDGET_POOL")
    total = _pool_total(montant)
    if BudgetPool.objects.filter(name=name, fiscal_year=fiscal_year, department=department or "").exists():
        raise DuplicateError(
            "Une enveloppe portant ce nom existe déjà pour cet exercice et ce service.",
            details={"name": name, "fiscal_year": fiscal_year, "department": department or ""},
        )
    thresholds = dict(DEFAULT_ALERT_THRESHOLDS)
    thresholds.update(alert_thresholds or {})
    pool = BudgetPool(
        reference=next_reference(BudgetPool, "POOL"),
        name=name,
        fiscal_year=fiscal_year,
        montant=total,
        remaining=total,
        department=department or "",
        description=description or "",
        start_date=start_date or timezone.localdate(),
        end_date=end_date,
        allocation_rules=allocation_rules or {},
        alert_thresholds=thresholds,
        managed_by=managed_by,
        created_by=actor,
    )
    pool.full_clean(validate_unique=False)
    try:
        with transaction.atomic():
            pool.save()
            _audit(pool, "BUDGET_POOL_CREATED", actor, montant=str(total))
    except IntegrityError as exc:
        raise DuplicateError("Une enveloppe identique existe déjà.") from exc
    logger.info("Enveloppe %s créée (%s)", pool.reference, total)
    return pool


@retry_on_dependency_failure
def update_pool(pool: BudgetPool, actor: CoreIdentity, **changes) -> BudgetPool:
    """Mise à jour des métadonnées ; un nouveau ``montant`` ajuste le solde du même écart."""
    rbac.authorize(actor, action="update", resource="BUDGET_POOL")
    unknown = set(changes) - set(UPDATABLE_FIELDS) - {"montant"}
    if unknown:
        raise ValidationError("Champs non modifiables.", details={"fields": sorted(unknown)})
    with transaction.atomic():
        pool = _lock_pools(pool)[pool.pk]
        if pool.status == Status.EXPIRED:
            raise InvalidStateError("Une enveloppe expirée ne peut plus être modifiée.")
        for field in UPDATABLE_FIELDS:
            if field in changes:
                setattr(pool, field, changes[field])
        if "montant" in changes:
            new_total = _pool_total(changes["montant"])
            committed = pool.montant - pool.remaining
            if new_total < committed:
                raise ValidationError(
                    "Le nouveau montant est inférieur aux sommes déjà engagées.",
                    details={"montant": str(new_total), "committed": str(committed)},
                )
            pool.remaining = new_total - committed
            pool.montant = new_total
            pool.version += 1
            _sync_balance_status(pool, actor)
        pool.full_clean(validate_unique=False)
        if BudgetPool.objects.filter(
            name=pool.name, fiscal_year=pool.fiscal_year, department=pool.department
        ).exclude(pk=pool.pk).exists():
            raise DuplicateError("Une enveloppe portant ce nom existe déjà pour cet exercice et ce service.")
        pool.save()
        _audit(pool, "BUDGET_POOL_UPDATED", actor, fields=sorted(changes))
    return pool


@retry_on_dependency_failure
def change_status(pool: BudgetPool, actor: CoreIdentity, status: str) -> BudgetPool:
    rbac.authorize(actor, action="update", resource="BUDGET_POOL")
    if status not in Status.values:
        raise ValidationError("Statut inconnu.", details={"status": status})
    with transaction.atomic():
        pool = _lock_pools(pool)[pool.pk]
        _apply_status(pool, status, actor)
        pool.save(update_fields=["status", "updated_at"])
    return pool


def _apply_status(pool: BudgetPool, status: str, actor: Optional[CoreIdentity]) -> None:
    if status not in POOL_TRANSITIONS.get(pool.status, frozenset()):
        raise InvalidTransitionError(
            f"Transition '{pool.status}' -> '{status}' non autorisée pour une enveloppe.",
            details={"from": pool.status, "to": status},
        )
    if status == Status.ACTIVE:
        if pool.montant <= 0 or pool.remaining <= 0:
            raise InvalidStateError("Une enveloppe sans solde ne peut pas être activée.")
        if pool.end_date and pool.end_date < timezone.localdate():
            raise InvalidStateError("Une enveloppe échue ne peut pas être activée.")
    previous = pool.status
    pool.status = status
    _audit(pool, "BUDGET_POOL_STATUS_CHANGED", actor, **{"from": previous, "to": status})
    logger.info("Enveloppe %s: %s -> %s", pool.reference, previous, status)


def _check_rules(pool: BudgetPool, demande: Demande, amount: Decimal) -> None:
    rules = pool.allocation_rules or {}
    violations: List[str] = []
    max_amount = rules.get("max_amount_per_request")
    if max_amount is not None and amount > Decimal(str(max_amount)):
        violations.append(f"montant supérieur au plafond par demande ({max_amount})")
    categories = rules.get("allowed_categories")
    if categories and demande.category not in categories:
        violations.append(f"catégorie '{demande.category}' non éligible")
    threshold = rules.get("eligibility_threshold")
    if threshold is not None and demande.user.eligibility_score < threshold:
        violations.append(f"score d'éligibilité inférieur à {threshold}")
    if violations:
        raise ValidationError(
            "La demande ne respecte pas les règles d'allocation de l'enveloppe.",
            details={"rules": violations},
        )


def outstanding_amount(demande: Demande) -> Decimal:
    """Montant approuvé restant à couvrir par de nouvelles allocations."""
    allocated = (
        Allocation.objects.filter(demande=demande)
        .exclude(status=Allocation.Status.CANCELLED)
        .aggregate(total=Sum("amount"))["total"]
        or ZERO
    )
    return demande.payable_amount - allocated


@retry_on_dependency_failure
def allocate(
    pool: BudgetPool,
    demande: Demande,
    amount: Any,
    actor: CoreIdentity,
    notes: str = "",
    payment_method: Optional[str] = None,
) -> AllocationResult:
    """Réserve ``amount`` sur l'enveloppe et crée le paiement en attente correspondant."""
    from apps.payments.models import PartyRef, PartyType, Payment

    rbac.authorize(actor, action="allocate", resource="BUDGET_POOL")
    amount = _amount(amount)
    method = payment_method or Payment.Method.BANK_TRANSFER
    if method not in Payment.Method.values:
        raise ValidationError("Moyen de paiement inconnu.", details={"payment_method": method})

    with transaction.atomic():
        demande = Demande.objects.select_for_update().select_related("user").filter(pk=demande.pk).first()
        if demande is None:
            raise NotFoundError("Demande introuvable.")
        pool = _lock_pools(pool)[pool.pk]
        _ensure_active(pool)
        if demande.status not in {Demande.Status.APPROVED, Demande.Status.PARTIALLY_PAID}:
            raise InvalidStateError(
                "Seule une demande approuvée peut recevoir une allocation.",
                details={"status": demande.status},
            )
        outstanding = outstanding_amount(demande)
        if amount > outstanding:
            raise ValidationError(
                "Le montant dépasse le reste à allouer pour cette demande.",
                details={"amount": str(amount), "outstanding": str(outstanding)},
            )
        _check_rules(pool, demande, amount)
        if amount > pool.remaining:
            logger.warning(
                "Enveloppe %s: fonds insuffisants (%s demandés, %s disponibles)",
                pool.reference,
                amount,
                pool.remaining,
            )
            raise InsufficientFundsError(
                details={"requested": str(amount), "remaining": str(pool.remaining), "pool": str(pool.pk)}
            )

        pool.remaining -= amount
        pool.version += 1
        _sync_balance_status(pool, actor)
        pool.save(update_fields=["remaining", "version", "status", "updated_at"])

        allocation = Allocation.objects.create(
            pool=pool, demande=demande, amount=amount, allocated_by=actor, notes=notes or ""
        )
        payment = Payment(
            reference=next_reference(Payment, "PAY"),
            payment_method=method,
            amount=amount,
            demande=demande,
            allocation=allocation,
        )
        payment.source = PartyRef(PartyType.BUDGET_POOL, pool.pk)
        payment.destination = PartyRef(PartyType.USER, demande.user_id)
        payment.save()
        _audit(pool, "BUDGET_ALLOCATED", actor, demande=demande.reference, amount=str(amount), payment=payment.reference)

        notify(
            demande.user,
            "Aide allouée",
            f"Un montant de {amount} a été alloué à votre demande {demande.reference}.",
            Notification.Type.PAYMENT,
            category=Notification.Category.SUCCESS,
            related_demande=demande,
            related_payment=payment,
            related_budget_pool=pool,
        )
        _notify_low_balance(pool)
    logger.info("Allocation de %s sur %s pour %s", amount, pool.reference, demande.reference)
    return AllocationResult(pool=pool, allocation=allocation, payment=payment)


def _notify_low_balance(pool: BudgetPool) -> None:
    if pool.managed_by_id is None or not pool.montant:
        return
    thresholds = {**DEFAULT_ALERT_THRESHOLDS, **(pool.alert_thresholds or {})}
    ratio = pool.remaining / pool.montant * 100
    if ratio <= Decimal(str(thresholds["critical_balance_alert"])):
        priority, category = Notification.Priority.CRITICAL, Notification.Category.URGENT
    elif ratio <= Decimal(str(thresholds["low_balance_warning"])):
        priority, category = Notification.Priority.HIGH, Notification.Category.WARNING
    else:
        return
    notify(
        pool.managed_by,
        "Solde d'enveloppe bas",
        f"L'enveloppe {pool.name} ne dispose plus que de {pool.remaining} ({ratio:.1f} %).",
        Notification.Type.ALERT,
        category=category,
        priority=priority,
        related_budget_pool=pool,
    )


@retry_on_dependency_failure
def transfer(
    source: BudgetPool,
    destination: BudgetPool,
    amount: Any,
    actor: CoreIdentity,
    reason: str = "",
) -> PoolTransfer:
    """Déplace ``amount`` (montant et solde) d'une enveloppe active vers une autre."""
    rbac.authorize(actor, action="transfer", resource="BUDGET_POOL")
    if source.pk == destination.pk:
        raise ValidationError("La source et la destination doivent être différentes.")
    amount = _amount(amount)
    with transaction.atomic():
        locked = _lock_pools(source, destination)
        source, destination = locked[source.pk], locked[destination.pk]
        _ensure_active(source)
        _ensure_can_receive(destination)
        if amount > source.remaining:
            raise InsufficientFundsError(
                details={"requested": str(amount), "remaining": str(source.remaining), "pool": str(source.pk)}
            )
        source.montant -= amount
        source.remaining -= amount
        source.version += 1
        destination.montant += amount
        destination.remaining += amount
        destination.version += 1
        _sync_balance_status(source, actor)
        _sync_balance_status(destination, actor)
        source.save(update_fields=["montant", "remaining", "version", "status", "updated_at"])
        destination.save(update_fields=["montant", "remaining", "version", "status", "updated_at"])
        record = PoolTransfer.objects.create(
            source=source,
            destination=destination,
            amount=amount,
            reason=reason or "",
            transferred_by=actor,
        )
        _audit(source, "BUDGET_TRANSFER_OUT", actor, destination=destination.reference, amount=str(amount))
        _audit(destination, "BUDGET_TRANSFER_IN", actor, source=source.reference, amount=str(amount))
    logger.info("Transfert de %s: %s -> %s", amount, source.reference, destination.reference)
    return record


def credit(pool: BudgetPool, amount: Any, actor: Optional[CoreIdentity] = None, reason: str = "") -> BudgetPool:
    """Compensation interne : restitue ``amount`` au solde, plafonné au montant total.

    Doit être appelée dans une transaction ouverte par l'opération appelante.
    """
    amount = _amount(amount)
    pool = _lock_pools(pool)[pool.pk]
    pool.remaining = min(pool.montant, pool.remaining + amount)
    pool.version += 1
    _sync_balance_status(pool, actor)
    pool.save(update_fields=["remaining", "version", "status", "updated_at"])
    _audit(pool, "BUDGET_CREDITED", actor, amount=str(amount), reason=reason)
    return pool


@retry_on_dependency_failure
def delete_pool(pool: BudgetPool, actor: CoreIdentity) -> None:
    rbac.authorize(actor, action="delete", resource="BUDGET_POOL")
    with transaction.atomic():
        pool = _lock_pools(pool)[pool.pk]
        if (
            Allocation.objects.filter(pool=pool).exists()
            or PoolTransfer.objects.filter(Q(source=pool) | Q(destination=pool)).exists()
        ):
            raise InvalidStateError("Une enveloppe ayant des allocations ou des transferts ne peut être supprimée.")
        _audit(pool, "BUDGET_POOL_DELETED", actor)
        pool.delete()


def expire_pools(now: Optional[datetime] = None) -> int:
    today = timezone.localdate(now) if now else timezone.localdate()
    candidates = list(
        BudgetPool.objects.filter(status__in=[Status.ACTIVE, Status.FROZEN], end_date__lt=today).values_list(
            "pk", flat=True
        )
    )
    expired = 0
    for pk in candidates:
        with transaction.atomic():
            pool = BudgetPool.objects.select_for_update().filter(pk=pk).first()
            if pool is None or pool.status not in {Status.ACTIVE, Status.FROZEN}:
                continue
            _apply_status(pool, Status.EXPIRED, None)
            pool.save(update_fields=["status", "updated_at"])
            expired += 1
    if expired:
        logger.info("%s enveloppe(s) expirée(s)", expired)
    return expired


def get_pool_analytics(pool: BudgetPool, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Indicateurs de consommation, calendrier et alertes d'une enveloppe."""
    from apps.payments.models import PartyType, Payment

    pool.refresh_from_db()
    today = timezone.localdate(now) if now else timezone.localdate()
    allocations = Allocation.objects.filter(pool=pool)
    live = allocations.exclude(status=Allocation.Status.CANCELLED)
    aggregates = live.aggregate(total=Sum("amount"), average=Avg("amount"), count=Count("id"))
    by_status = {row["status"]: row["count"] for row in allocations.values("status").annotate(count=Count("id"))}
    spent = (
        Payment.objects.filter(
            source_type=PartyType.BUDGET_POOL, source_id=pool.pk, status=Payment.Status.COMPLETED
        ).aggregate(total=Sum("amount"))["total"]
        or ZERO
    )

    montant = pool.montant or ZERO
    remaining = pool.remaining if pool.remaining is not None else montant
    utilization = ((montant - remaining) / montant) if montant else ZERO
    utilization = utilization.quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP)

    total_days = elapsed_days = remaining_days = None
    if pool.end_date:
        total_days = max((pool.end_date - pool.start_date).days, 0)
        elapsed_days = min(max((today - pool.start_date).days, 0), total_days)
        remaining_days = max((pool.end_date - today).days, 0)
    else:
        elapsed_days = max((today - pool.start_date).days, 0)

    thresholds = {**DEFAULT_ALERT_THRESHOLDS, **(pool.alert_thresholds or {})}
    balance_pct = (remaining / montant * 100) if montant else ZERO
    alerts = {
        "low_balance": bool(montant) and balance_pct <= Decimal(str(thresholds["low_balance_warning"])),
        "critical_balance": bool(montant) and balance_pct <= Decimal(str(thresholds["critical_balance_alert"])),
        "expiration_warning": remaining_days is not None
        and remaining_days <= int(thresholds["expiration_warning"]),
    }

    average = aggregates["average"]
    return {
        "pool": str(pool.pk),
        "reference": pool.reference,
        "status": pool.status,
        "total_amount": str(montant),
        "remaining": str(remaining),
        "allocated_amount": str(aggregates["total"] or ZERO),
        "spent_amount": str(spent),
        "utilization_rate": str(utilization),
        "allocation_count": aggregates["count"] or 0,
        "allocations_by_status": {status: by_status.get(status, 0) for status in Allocation.Status.values},
        "average_allocation": str(Decimal(average).quantize(Decimal("0.01"))) if average is not None else "0",
        "timeline": {
            "total_days": total_days,
            "elapsed_days": elapsed_days,
            "remaining_days": remaining_days,
        },
        "alerts": alerts,
    }


def pools_summary(pools: Iterable[BudgetPool]) -> Dict[str, Any]:
    pools = list(pools)
    total = sum((p.montant for p in pools), ZERO)
    remaining = sum((p.remaining or ZERO for p in pools), ZERO)
    return {
        "count": len(pools),
        "total_amount": str(total),
        "remaining": str(remaining),
        "utilization_rate": str(((total - remaining) / total).quantize(Decimal("0.0001")) if total else ZERO),
    }
