"""Tests pour apps/payments/services/processing.py"""
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest
from django.utils import timezone

from apps.budget.models import Allocation, BudgetPool
from apps.budget.services import allocation
from apps.demandes.models import Demande
from apps.demandes.services import workflow
from apps.notifications.models import Notification
from apps.payments.gateways import GatewayResult, RejectingGateway, SimulatedGateway, get_gateway
from apps.payments.models import CompletedPaymentError, Payment
from apps.payments.services import processing
from core.exceptions import (
    AuthorizationError,
    InvalidStateError,
    RetryExhaustedError,
    RetryNotAllowedError,
    ValidationError,
)

REJECTING = {"default": "apps.payments.gateways.RejectingGateway"}


@pytest.fixture
def pending_payment(make_pool, make_demande, finance_manager):
    pool = make_pool("10000")
    demande = make_demande("4000", approve=True)
    return allocation.allocate(pool, demande, "4000", finance_manager).payment


class TestComputeFees:
    """Barème des frais"""

    def test_bank_transfer_fees(self):
        assert processing.compute_fees("bank_transfer", Decimal("4000")) == (Decimal("20.00"), Decimal("25"))
        assert processing.compute_fees("bank_transfer", Decimal("20000")) == (Decimal("100.00"), Decimal("50"))

    def test_mobile_and_card_fees(self):
        assert processing.compute_fees("mobile_payment", Decimal("1000")) == (Decimal("10.00"), Decimal("10"))
        assert processing.compute_fees("card", Decimal("1000")) == (Decimal("25.00"), Decimal("15"))

    def test_cash_has_no_fees(self):
        assert processing.compute_fees("cash", Decimal("1000")) == (Decimal("0.00"), Decimal("0"))


class TestGateways:
    def test_default_gateway_is_simulated(self, settings):
        settings.PAYMENT_GATEWAYS = {"default": "apps.payments.gateways.SimulatedGateway"}
        assert isinstance(get_gateway("card"), SimulatedGateway)

    def test_gateway_per_method(self, settings):
        settings.PAYMENT_GATEWAYS = {
            "default": "apps.payments.gateways.SimulatedGateway",
            "cash": "apps.payments.gateways.RejectingGateway",
        }
        assert isinstance(get_gateway("cash"), RejectingGateway)

    def test_missing_gateway(self, settings):
        settings.PAYMENT_GATEWAYS = {}
        with pytest.raises(KeyError):
            get_gateway("card")


@pytest.mark.django_db
class TestProcess:
    """Traitement d'un paiement"""

    def test_success_completes_payment_and_demande(self, pending_payment, finance_manager, citizen):
        payment = processing.process(pending_payment, finance_manager)

        assert payment.status == Payment.Status.COMPLETED
        assert payment.transaction_id.startswith("TXN-")
        assert payment.processed_by == finance_manager
        assert payment.processing_fee == Decimal("20.00")
        assert payment.bank_fee == Decimal("25")
        demande = Demande.objects.get(pk=payment.demande_id)
        assert demande.status == Demande.Status.PAID
        assert demande.paid_amount == Decimal("4000")
        assert demande.payment_id == payment.pk
        assert Allocation.objects.get(pk=payment.allocation_id).status == Allocation.Status.PAID
        assert Notification.objects.filter(
            recipient=citizen, related_payment=payment, title="Paiement effectué"
        ).exists()

    def test_partial_allocation_marks_partially_paid(self, make_pool, make_demande, finance_manager):
        pool = make_pool("10000")
        demande = make_demande("4000", approve=True)
        payment = allocation.allocate(pool, demande, "1500", finance_manager).payment
        processing.process(payment, finance_manager)
        demande.refresh_from_db()
        assert demande.status == Demande.Status.PARTIALLY_PAID
        assert demande.paid_amount == Decimal("1500")

    def test_failure_sets_backoff(self, pending_payment, finance_manager, settings):
        settings.PAYMENT_GATEWAYS = REJECTING
        before = timezone.now()

        payment = processing.process(pending_payment, finance_manager)

        assert payment.status == Payment.Status.FAILED
        assert payment.retry_count == 1
        assert payment.failure_reason == "Prestataire de paiement indisponible."
        assert payment.retry_after >= before + timedelta(minutes=2)
        demande = Demande.objects.get(pk=payment.demande_id)
        assert demande.status == Demande.Status.APPROVED

    def test_gateway_exception_is_a_failure(self, pending_payment, finance_manager):
        with patch("apps.payments.services.processing.get_gateway") as gateway:
            gateway.return_value.disburse.side_effect = ConnectionError("timeout")
            payment = processing.process(pending_payment, finance_manager)
        assert payment.status == Payment.Status.FAILED
        assert payment.failure_reason == "timeout"

    def test_process_twice_refused(self, pending_payment, finance_manager):
        processing.process(pending_payment, finance_manager)
        with pytest.raises(InvalidStateError):
            processing.process(pending_payment, finance_manager)

    def test_citizen_cannot_process(self, pending_payment, citizen):
        with pytest.raises(AuthorizationError):
            processing.process(pending_payment, citizen)

    def test_scheduled_in_future_refused(self, pending_payment, finance_manager):
        processing.schedule(pending_payment, finance_manager, timezone.now() + timedelta(days=2))
        with pytest.raises(InvalidStateError):
            processing.process(pending_payment, finance_manager)

    def test_locks_demande_before_payment(self, pending_payment, finance_manager, lock_order):
        lock_order.clear()
        processing.process(pending_payment, finance_manager)
        assert list(dict.fromkeys(lock_order))[:2] == ["Demande", "Payment"]

    def test_demande_no_longer_payable_not_disbursed(self, pending_payment, finance_manager):
        Demande.objects.filter(pk=pending_payment.demande_id).update(status=Demande.Status.CANCELLED)
        with patch("apps.payments.services.processing.get_gateway") as gateway:
            with pytest.raises(InvalidStateError) as excinfo:
                processing.process(pending_payment, finance_manager)
        gateway.return_value.disburse.assert_not_called()
        assert excinfo.value.details == {"demande_status": Demande.Status.CANCELLED}
        pending_payment.refresh_from_db()
        assert pending_payment.status == Payment.Status.PENDING
        assert pending_payment.transaction_id == ""

    def test_completed_payment_is_immutable(self, pending_payment, finance_manager):
        payment = processing.process(pending_payment, finance_manager)
        payment.amount = Decimal("1")
        with pytest.raises(CompletedPaymentError):
            payment.save()
        processing.add_internal_note(payment, finance_manager, "Contrôle effectué")
        payment.refresh_from_db()
        assert "Contrôle effectué" in payment.internal_notes


@pytest.mark.django_db
class TestRetry:
    """Relance d'un paiement en échec"""

    def test_retry_before_backoff_refused(self, pending_payment, finance_manager, settings):
        settings.PAYMENT_GATEWAYS = REJECTING
        payment = processing.process(pending_payment, finance_manager)
        with pytest.raises(RetryNotAllowedError) as excinfo:
            processing.retry(payment, finance_manager)
        assert "retry_after" in excinfo.value.details

    def test_retry_after_backoff_succeeds(self, pending_payment, finance_manager, settings):
        settings.PAYMENT_GATEWAYS = REJECTING
        payment = processing.process(pending_payment, finance_manager)
        settings.PAYMENT_GATEWAYS = {"default": "apps.payments.gateways.SimulatedGateway"}

        payment = processing.retry(payment, finance_manager, now=payment.retry_after + timedelta(seconds=1))

        assert payment.status == Payment.Status.COMPLETED
        assert payment.retry_count == 2
        assert payment.retry_after is None

    def test_retry_exhaustion(self, pending_payment, finance_manager, settings):
        settings.PAYMENT_GATEWAYS = REJECTING
        Payment.objects.filter(pk=pending_payment.pk).update(
            status=Payment.Status.FAILED, retry_count=2, max_retries=3, retry_after=None
        )

        payment = processing.retry(pending_payment, finance_manager)
        assert payment.status == Payment.Status.FAILED
        assert payment.retry_count == 3
        assert payment.retry_after is None

        with pytest.raises(RetryExhaustedError):
            processing.retry(payment, finance_manager)

    def test_retry_requires_failed_status(self, pending_payment, finance_manager):
        with pytest.raises(InvalidStateError):
            processing.retry(pending_payment, finance_manager)


@pytest.mark.django_db
class TestCancelAndSchedule:
    def test_cancel_restores_pool_balance(self, pending_payment, finance_manager):
        payment = processing.cancel(pending_payment, finance_manager, "Doublon")

        assert payment.status == Payment.Status.CANCELLED
        assert payment.cancel_reason == "Doublon"
        pool = BudgetPool.objects.get(pk=payment.source_id)
        assert pool.remaining == Decimal("10000")
        assert Allocation.objects.get(pk=payment.allocation_id).status == Allocation.Status.CANCELLED
        assert allocation.outstanding_amount(payment.demande) == Decimal("4000")

    def test_cancel_notifies_beneficiary(self, pending_payment, finance_manager, citizen):
        assert processing._recipient(pending_payment) == citizen
        processing.cancel(pending_payment, finance_manager, "Doublon")
        assert Notification.objects.filter(
            recipient=citizen, related_payment=pending_payment, title="Paiement annulé"
        ).exists()

    def test_cancel_locks_demande_payment_then_pool(self, pending_payment, finance_manager, lock_order):
        lock_order.clear()
        processing.cancel(pending_payment, finance_manager)
        assert list(dict.fromkeys(lock_order)) == ["Demande", "Payment", "BudgetPool"]

    def test_demande_cancel_follows_same_lock_order(self, pending_payment, citizen, lock_order):
        demande = Demande.objects.get(pk=pending_payment.demande_id)
        lock_order.clear()
        workflow.cancel(demande, citizen, "Situation régularisée")
        assert list(dict.fromkeys(lock_order)) == ["Demande", "Payment", "BudgetPool"]

    def test_cancel_completed_refused(self, pending_payment, finance_manager):
        processing.process(pending_payment, finance_manager)
        with pytest.raises(InvalidStateError):
            processing.cancel(pending_payment, finance_manager)

    def test_cancelling_demande_releases_payments(self, pending_payment, citizen):
        demande = Demande.objects.get(pk=pending_payment.demande_id)
        workflow.cancel(demande, citizen, "Situation régularisée")
        pending_payment.refresh_from_db()
        assert pending_payment.status == Payment.Status.CANCELLED
        assert BudgetPool.objects.get(pk=pending_payment.source_id).remaining == Decimal("10000")

    def test_schedule_in_past_refused(self, pending_payment, finance_manager):
        with pytest.raises(ValidationError):
            processing.schedule(pending_payment, finance_manager, timezone.now() - timedelta(minutes=1))

    def test_schedule_then_process_when_due(self, pending_payment, finance_manager):
        payment = processing.schedule(pending_payment, finance_manager, timezone.now() + timedelta(hours=1))
        assert payment.status == Payment.Status.SCHEDULED
        Payment.objects.filter(pk=payment.pk).update(scheduled_date=timezone.now() - timedelta(minutes=1))
        payment = processing.process(payment, finance_manager)
        assert payment.status == Payment.Status.COMPLETED


@pytest.mark.django_db
class TestVisibilityAndStatistics:
    def test_citizen_sees_own_payments(self, pending_payment, citizen, other_citizen, finance_manager):
        assert list(processing.visible_payments(citizen)) == [pending_payment]
        assert list(processing.visible_payments(other_citizen)) == []
        assert processing.visible_payments(finance_manager).count() == 1

    def test_statistics(self, make_pool, make_demande, finance_manager, settings):
        pool = make_pool("10000")
        ok = allocation.allocate(pool, make_demande("4000", approve=True), "4000", finance_manager).payment
        ko = allocation.allocate(pool, make_demande("1000", approve=True), "1000", finance_manager).payment
        processing.process(ok, finance_manager)
        settings.PAYMENT_GATEWAYS = REJECTING
        processing.process(ko, finance_manager)

        stats = processing.payment_statistics(Payment.objects.all())

        assert stats["count"] == 2
        assert stats["by_status"]["completed"] == 1
        assert stats["by_status"]["failed"] == 1
        assert Decimal(stats["completed_amount"]) == Decimal("4000")
        assert Decimal(stats["total_fees"]) == Decimal("45")
        assert stats["success_rate"] == "0.5000"


class TestGatewayResult:
    def test_result_is_frozen(self):
        result = GatewayResult(success=True, transaction_id="TXN-1")
        with pytest.raises(Exception):
            result.success = False
