"""Tests pour apps/budget/services/allocation.py"""
from datetime import timedelta
from decimal import Decimal

import pytest
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.utils import timezone

from apps.budget.models import Allocation, BudgetPool, PoolTransfer
from apps.budget.services import allocation
from apps.demandes.models import Demande
from apps.notifications.models import Notification
from apps.payments.models import PartyType, Payment
from core.exceptions import (
    AuthorizationError,
    DuplicateError,
    InsufficientFundsError,
    InvalidStateError,
    InvalidTransitionError,
    PoolNotActiveError,
    ValidationError,
)
from identity.models import SysAuditLog


@pytest.mark.django_db
class TestPoolLifecycle:
    """Création et statuts d'une enveloppe"""

    def test_create_pool_starts_draft_with_full_balance(self, make_pool):
        pool = make_pool("10000", activate=False)
        assert pool.status == BudgetPool.Status.DRAFT
        assert pool.remaining == Decimal("10000")
        assert pool.reference.startswith("POOL-")
        assert pool.alert_thresholds["low_balance_warning"] == 20

    def test_create_pool_requires_finance_role(self, case_worker):
        with pytest.raises(AuthorizationError):
            allocation.create_pool(case_worker, name="Fonds", fiscal_year=2026, montant="1000")

    def test_duplicate_name_rejected(self, make_pool):
        make_pool(name="Fonds hiver")
        with pytest.raises(DuplicateError):
            make_pool(name="Fonds hiver")

    def test_end_date_before_start_rejected(self, finance_manager):
        today = timezone.localdate()
        with pytest.raises(DjangoValidationError) as excinfo:
            allocation.create_pool(
                finance_manager,
                name="Fonds",
                fiscal_year=2026,
                montant="1000",
                start_date=today,
                end_date=today - timedelta(days=1),
            )
        assert "end_date" in str(excinfo.value)

    def test_invalid_allocation_rules_rejected(self, finance_manager):
        with pytest.raises(DjangoValidationError):
            allocation.create_pool(
                finance_manager,
                name="Fonds",
                fiscal_year=2026,
                montant="1000",
                allocation_rules={"unknown_rule": 1},
            )
        assert BudgetPool.objects.count() == 0

    def test_status_transitions(self, make_pool, finance_manager):
        pool = make_pool()
        assert pool.status == BudgetPool.Status.ACTIVE
        pool = allocation.change_status(pool, finance_manager, BudgetPool.Status.FROZEN)
        assert pool.status == BudgetPool.Status.FROZEN
        pool = allocation.change_status(pool, finance_manager, BudgetPool.Status.EXPIRED)
        with pytest.raises(InvalidTransitionError):
            allocation.change_status(pool, finance_manager, BudgetPool.Status.ACTIVE)

    def test_empty_pool_cannot_be_activated(self, make_pool):
        with pytest.raises(InvalidStateError):
            make_pool("0")

    def test_update_montant_keeps_committed(self, make_pool, make_demande, finance_manager):
        pool = make_pool("10000")
        allocation.allocate(pool, make_demande("4000", approve=True), "4000", finance_manager)
        pool = allocation.update_pool(pool, finance_manager, montant="12000")
        assert pool.montant == Decimal("12000")
        assert pool.remaining == Decimal("8000")
        with pytest.raises(ValidationError):
            allocation.update_pool(pool, finance_manager, montant="3000")

    def test_update_montant_to_committed_depletes_then_reactivates(self, make_pool, make_demande, finance_manager):
        pool = make_pool("10000")
        allocation.allocate(pool, make_demande("4000", approve=True), "4000", finance_manager)

        pool = allocation.update_pool(pool, finance_manager, montant="4000")
        assert pool.remaining == Decimal("0")
        assert pool.status == BudgetPool.Status.DEPLETED

        pool = allocation.update_pool(pool, finance_manager, montant="6000")
        assert pool.remaining == Decimal("2000")
        assert pool.status == BudgetPool.Status.ACTIVE

    @pytest.mark.parametrize("montant", ["abc", "NaN", "Infinity", "-1"])
    def test_update_invalid_montant(self, make_pool, finance_manager, montant):
        pool = make_pool("10000")
        with pytest.raises(ValidationError):
            allocation.update_pool(pool, finance_manager, montant=montant)
        pool.refresh_from_db()
        assert pool.montant == Decimal("10000")

    @pytest.mark.parametrize("montant", ["NaN", "sNaN", "-Infinity", "dix mille", None])
    def test_create_invalid_montant(self, finance_manager, montant):
        with pytest.raises(ValidationError):
            allocation.create_pool(finance_manager, name="Fonds", fiscal_year=2026, montant=montant)
        assert BudgetPool.objects.count() == 0

    def test_create_zero_montant_stays_draft(self, finance_manager):
        pool = allocation.create_pool(finance_manager, name="Fonds", fiscal_year=2026, montant="0")
        assert pool.status == BudgetPool.Status.DRAFT
        assert pool.remaining == Decimal("0")

    def test_update_unknown_field(self, make_pool, finance_manager):
        with pytest.raises(ValidationError):
            allocation.update_pool(make_pool(), finance_manager, remaining="1")

    def test_delete_pool_with_allocations_refused(self, make_pool, make_demande, finance_manager, admin_identity):
        pool = make_pool()
        allocation.allocate(pool, make_demande("1000", approve=True), "1000", finance_manager)
        with pytest.raises(InvalidStateError):
            allocation.delete_pool(pool, admin_identity)

    def test_delete_unused_pool(self, make_pool, admin_identity):
        pool = make_pool(activate=False)
        allocation.delete_pool(pool, admin_identity)
        assert not BudgetPool.objects.filter(pk=pool.pk).exists()

    def test_expire_pools(self, make_pool):
        pool = make_pool(end_date=timezone.localdate() + timedelta(days=3))
        assert allocation.expire_pools() == 0
        assert allocation.expire_pools(timezone.now() + timedelta(days=5)) == 1
        pool.refresh_from_db()
        assert pool.status == BudgetPool.Status.EXPIRED


@pytest.mark.django_db
class TestAllocate:
    """Allocation d'une enveloppe à une demande approuvée"""

    def test_allocate_creates_pending_payment(self, make_pool, make_demande, finance_manager, citizen):
        pool = make_pool("10000")
        demande = make_demande("4000", approve=True)

        result = allocation.allocate(pool, demande, "4000", finance_manager, notes="Urgence")

        assert result.pool.remaining == Decimal("6000")
        assert result.pool.version == 1
        assert result.allocation.status == Allocation.Status.RESERVED
        payment = result.payment
        assert payment.status == Payment.Status.PENDING
        assert payment.amount == Decimal("4000")
        assert payment.source_type == PartyType.BUDGET_POOL
        assert payment.source_id == pool.pk
        assert payment.destination_type == PartyType.USER
        assert payment.destination_id == citizen.pk
        assert Notification.objects.filter(recipient=citizen, related_payment=payment).exists()
        assert SysAuditLog.objects.filter(action="BUDGET_ALLOCATED", entity_id=pool.pk).exists()

    def test_insufficient_funds_leaves_pool_unchanged(self, make_pool, make_demande, finance_manager):
        pool = make_pool("10000")
        allocation.allocate(pool, make_demande("4000", approve=True), "4000", finance_manager)
        other = make_demande("8000", approve=True)

        with pytest.raises(InsufficientFundsError) as excinfo:
            allocation.allocate(pool, other, "7000", finance_manager)

        pool.refresh_from_db()
        assert pool.remaining == Decimal("6000")
        assert excinfo.value.details["remaining"] == "6000.00"
        assert Allocation.objects.filter(demande=other).count() == 0
        assert Payment.objects.filter(demande=other).count() == 0

    def test_exact_balance_depletes_pool(self, make_pool, make_demande, finance_manager):
        pool = make_pool("3000")
        result = allocation.allocate(pool, make_demande("3000", approve=True), "3000", finance_manager)
        assert result.pool.remaining == Decimal("0")
        assert result.pool.status == BudgetPool.Status.DEPLETED
        alert = Notification.objects.get(recipient=finance_manager, type=Notification.Type.ALERT)
        assert alert.priority == Notification.Priority.CRITICAL

    def test_inactive_pool_refused(self, make_pool, make_demande, finance_manager):
        pool = make_pool(activate=False)
        with pytest.raises(PoolNotActiveError):
            allocation.allocate(pool, make_demande("100", approve=True), "100", finance_manager)

    def test_unapproved_demande_refused(self, make_pool, make_demande, finance_manager):
        with pytest.raises(InvalidStateError):
            allocation.allocate(make_pool(), make_demande("100"), "100", finance_manager)

    def test_amount_above_outstanding_refused(self, make_pool, make_demande, finance_manager):
        pool = make_pool()
        demande = make_demande("1000", approve=True)
        allocation.allocate(pool, demande, "600", finance_manager)
        with pytest.raises(ValidationError):
            allocation.allocate(pool, demande, "500", finance_manager)
        assert allocation.outstanding_amount(demande) == Decimal("400")

    def test_non_positive_amount_refused(self, make_pool, make_demande, finance_manager):
        with pytest.raises(ValidationError):
            allocation.allocate(make_pool(), make_demande("100", approve=True), "-5", finance_manager)

    def test_allocation_rules_enforced(self, make_pool, make_demande, finance_manager):
        pool = make_pool(
            allocation_rules={
                "max_amount_per_request": 500,
                "allowed_categories": [Demande.Category.HEALTH],
                "eligibility_threshold": 80,
            }
        )
        with pytest.raises(ValidationError) as excinfo:
            allocation.allocate(pool, make_demande("1000", approve=True), "1000", finance_manager)
        assert len(excinfo.value.details["rules"]) == 3

    def test_locks_demande_before_pool(self, make_pool, make_demande, finance_manager, lock_order):
        pool = make_pool("10000")
        demande = make_demande("1000", approve=True)
        lock_order.clear()
        allocation.allocate(pool, demande, "1000", finance_manager)
        assert list(dict.fromkeys(lock_order)) == ["Demande", "BudgetPool"]

    def test_case_worker_cannot_allocate(self, make_pool, make_demande, case_worker):
        with pytest.raises(AuthorizationError):
            allocation.allocate(make_pool(), make_demande("100", approve=True), "100", case_worker)


@pytest.mark.django_db
class TestTransferAndCredit:
    def test_transfer_moves_total_and_balance(self, make_pool, finance_manager):
        source = make_pool("10000", name="Source")
        destination = make_pool("2000", name="Destination")

        record = allocation.transfer(source, destination, "2500", finance_manager, reason="Rééquilibrage")

        source.refresh_from_db()
        destination.refresh_from_db()
        assert (source.montant, source.remaining) == (Decimal("7500"), Decimal("7500"))
        assert (destination.montant, destination.remaining) == (Decimal("4500"), Decimal("4500"))
        assert record.amount == Decimal("2500")
        assert PoolTransfer.objects.count() == 1

    @pytest.mark.parametrize("source_total, amount", [("10000", "3000"), ("3000", "3000")])
    def test_round_trip_restores_both_pools(self, make_pool, finance_manager, source_total, amount):
        source = make_pool(source_total, name="Source")
        destination = make_pool("2000", name="Destination")

        allocation.transfer(source, destination, amount, finance_manager)
        source.refresh_from_db()
        emptied = source.remaining == 0
        assert source.status == (BudgetPool.Status.DEPLETED if emptied else BudgetPool.Status.ACTIVE)
        assert emptied is (amount == source_total)

        allocation.transfer(destination, source, amount, finance_manager)
        source.refresh_from_db()
        destination.refresh_from_db()
        assert (source.montant, source.remaining) == (Decimal(source_total), Decimal(source_total))
        assert (destination.montant, destination.remaining) == (Decimal("2000"), Decimal("2000"))
        assert source.status == destination.status == BudgetPool.Status.ACTIVE

    def test_depleted_source_cannot_send(self, make_pool, finance_manager):
        source = make_pool("1000", name="Source")
        destination = make_pool("1000", name="Destination")
        allocation.transfer(source, destination, "1000", finance_manager)
        with pytest.raises(PoolNotActiveError):
            allocation.transfer(source, destination, "1", finance_manager)

    def test_transfer_same_pool_refused(self, make_pool, finance_manager):
        pool = make_pool()
        with pytest.raises(ValidationError):
            allocation.transfer(pool, pool, "10", finance_manager)

    def test_transfer_to_frozen_pool_refused(self, make_pool, finance_manager):
        source = make_pool(name="Source")
        destination = make_pool(name="Gelée")
        allocation.change_status(destination, finance_manager, BudgetPool.Status.FROZEN)
        with pytest.raises(PoolNotActiveError):
            allocation.transfer(source, destination, "10", finance_manager)

    def test_transfer_insufficient_funds(self, make_pool, finance_manager):
        source = make_pool("100", name="Source")
        destination = make_pool(name="Destination")
        with pytest.raises(InsufficientFundsError):
            allocation.transfer(source, destination, "100.01", finance_manager)
        source.refresh_from_db()
        assert source.remaining == Decimal("100")

    def test_credit_capped_and_reactivates(self, make_pool, make_demande, finance_manager):
        pool = make_pool("1000")
        allocation.allocate(pool, make_demande("1000", approve=True), "1000", finance_manager)
        with transaction.atomic():
            pool = allocation.credit(pool, "5000", finance_manager, reason="Annulation")
        assert pool.remaining == Decimal("1000")
        assert pool.status == BudgetPool.Status.ACTIVE


@pytest.mark.django_db
class TestAnalytics:
    def test_pool_analytics(self, make_pool, make_demande, finance_manager):
        pool = make_pool("10000", end_date=timezone.localdate() + timedelta(days=10))
        allocation.allocate(pool, make_demande("4000", approve=True), "4000", finance_manager)
        allocation.allocate(pool, make_demande("5000", approve=True), "5000", finance_manager)

        analytics = allocation.get_pool_analytics(pool)

        assert analytics["utilization_rate"] == "0.9000"
        assert analytics["allocation_count"] == 2
        assert analytics["allocated_amount"] == "9000.00"
        assert analytics["average_allocation"] == "4500.00"
        assert analytics["alerts"] == {
            "low_balance": True,
            "critical_balance": False,
            "expiration_warning": True,
        }
        assert analytics["timeline"]["remaining_days"] == 10

    def test_pools_summary(self, make_pool):
        make_pool("1000", name="A")
        make_pool("3000", name="B")
        summary = allocation.pools_summary(BudgetPool.objects.all())
        assert summary["count"] == 2
        assert Decimal(summary["total_amount"]) == Decimal("4000")
        assert summary["utilization_rate"] == "0.0000"
