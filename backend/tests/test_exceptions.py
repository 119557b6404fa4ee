"""Tests pour core/exceptions.py et core/utils"""
from datetime import date, datetime, timedelta
from unittest.mock import Mock

import pytest
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, OperationalError
from django.http import Http404
from django.utils import timezone
from rest_framework import exceptions as drf_exceptions

from core.exceptions import (
    DependencyError,
    InsufficientFundsError,
    InvalidTransitionError,
    RetryExhaustedError,
    api_exception_handler,
    retry_on_dependency_failure,
)
from core.utils.backoff import backoff_delay, next_retry_at
from core.utils.file_namer import FileNamer
from core.utils.references import next_reference


class TestApiExceptionHandler:
    """Rendu homogène {message, statusCode, details}"""

    def test_workflow_error_with_details(self):
        exc = InsufficientFundsError(details={"remaining": "6000.00"})
        response = api_exception_handler(exc, {})
        assert response.status_code == 409
        assert response.data == {
            "message": "Fonds insuffisants dans l'enveloppe budgétaire.",
            "statusCode": 409,
            "details": {"remaining": "6000.00"},
        }

    def test_workflow_error_without_details(self):
        response = api_exception_handler(InvalidTransitionError(), {})
        assert response.status_code == 409
        assert "details" not in response.data

    def test_retry_exhausted_is_conflict(self):
        assert api_exception_handler(RetryExhaustedError(), {}).status_code == 409

    def test_dependency_error_is_503(self):
        response = api_exception_handler(DependencyError(), {})
        assert response.status_code == 503

    def test_django_validation_error(self):
        exc = DjangoValidationError({"end_date": ["Date invalide."]})
        response = api_exception_handler(exc, {})
        assert response.status_code == 400
        assert response.data["details"] == {"end_date": ["Date invalide."]}

    def test_integrity_error(self):
        response = api_exception_handler(IntegrityError("duplicate"), {})
        assert response.status_code == 409

    def test_http404(self):
        response = api_exception_handler(Http404(), {})
        assert response.status_code == 404
        assert response.data["statusCode"] == 404

    def test_drf_validation_error(self):
        exc = drf_exceptions.ValidationError({"amount": ["Ce champ est obligatoire."]})
        response = api_exception_handler(exc, {})
        assert response.status_code == 400
        assert response.data["message"] == "Données invalides."
        assert response.data["details"] == {"amount": ["Ce champ est obligatoire."]}

    def test_drf_not_authenticated(self):
        response = api_exception_handler(drf_exceptions.NotAuthenticated(), {})
        assert response.status_code == 401
        assert response.data["statusCode"] == 401

    def test_unexpected_error_hidden(self, settings):
        settings.DEBUG = False
        response = api_exception_handler(RuntimeError("boom"), {"view": Mock()})
        assert response.status_code == 500
        assert "boom" not in response.data["message"]


class TestRetryOnDependencyFailure:
    """Tests pour le décorateur retry_on_dependency_failure"""

    def test_retries_then_succeeds(self, settings):
        settings.DEPENDENCY_RETRY_ATTEMPTS = 3
        settings.DEPENDENCY_RETRY_DELAY_SECONDS = 0
        calls = Mock(side_effect=[OperationalError("locked"), "ok"])

        @retry_on_dependency_failure
        def operation():
            return calls()

        assert operation() == "ok"
        assert calls.call_count == 2

    def test_raises_dependency_error_after_attempts(self, settings):
        settings.DEPENDENCY_RETRY_ATTEMPTS = 2
        settings.DEPENDENCY_RETRY_DELAY_SECONDS = 0
        calls = Mock(side_effect=OperationalError("down"))

        @retry_on_dependency_failure
        def operation():
            return calls()

        with pytest.raises(DependencyError) as excinfo:
            operation()
        assert calls.call_count == 2
        assert excinfo.value.details == {"operation": "operation"}

    def test_business_errors_not_retried(self, settings):
        settings.DEPENDENCY_RETRY_DELAY_SECONDS = 0
        calls = Mock(side_effect=InsufficientFundsError())

        @retry_on_dependency_failure
        def operation():
            return calls()

        with pytest.raises(InsufficientFundsError):
            operation()
        assert calls.call_count == 1


class TestBackoff:
    def test_backoff_delay_is_exponential(self):
        assert backoff_delay(0) == timedelta(minutes=1)
        assert backoff_delay(1) == timedelta(minutes=2)
        assert backoff_delay(3) == timedelta(minutes=8)

    def test_next_retry_at(self):
        now = timezone.make_aware(datetime(2026, 10, 17, 12, 0))
        assert next_retry_at(2, 3, now) == now + timedelta(minutes=4)

    def test_next_retry_at_exhausted(self):
        assert next_retry_at(3, 3) is None


class TestFileNamer:
    def test_generate_normalizes_name(self):
        result = FileNamer().generate(
            doc_type="doc",
            reference="DEM-2026-000012",
            original_name="certificat médical.PDF",
            issued_on=date(2026, 10, 17),
        )
        assert result.filename == "2026_1017_DOC_DEM-2026-000012_CERTIFICAT_MEDICAL.pdf"
        assert result.extension == "pdf"

    def test_generate_without_extension(self):
        result = FileNamer().generate(
            doc_type="DOC",
            reference="DEM-2026-000001",
            original_name="justificatif",
            issued_on=date(2026, 1, 5),
        )
        assert result.filename == "2026_0105_DOC_DEM-2026-000001_JUSTIFICATIF.bin"


@pytest.mark.django_db
class TestNextReference:
    def test_sequence_increments(self, make_demande):
        from apps.demandes.models import Demande

        year = timezone.now().year
        first = make_demande()
        second = make_demande()
        assert first.reference == f"DEM-{year}-000001"
        assert second.reference == f"DEM-{year}-000002"
        assert next_reference(Demande, "DEM") == f"DEM-{year}-000003"

    def test_sequence_per_year(self, make_demande):
        from apps.demandes.models import Demande

        make_demande()
        assert next_reference(Demande, "DEM", year=1999) == "DEM-1999-000001"
