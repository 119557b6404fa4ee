"""ViewSet pour le suivi et le traitement des paiements."""
from __future__ import annotations

from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.viewsets import ReadOnlyModelViewSet

from apps.payments.models import Payment
from apps.payments.services import processing

from .mixins import IdentityMixin
from .permissions import ActiveRolePermission
from .serializers import (
    InternalNoteSerializer,
    PaymentCancelSerializer,
    PaymentScheduleSerializer,
    PaymentSerializer,
)


class PaymentViewSet(IdentityMixin, ReadOnlyModelViewSet):
    """
    GET /api/payments/ : gestionnaires financiers (le bénéficiaire voit ses paiements)
    POST /api/payments/<id>/process/ | retry/ | cancel/ | schedule/ | notes/
    GET /api/payments/dashboard-stats/
    """

    queryset = Payment.objects.none()
    serializer_class = PaymentSerializer
    permission_classes = (ActiveRolePermission,)

    def get_queryset(self):  # type: ignore[override]
        queryset = processing.visible_payments(self.identity)
        params = self.request.query_params
        if params.get("status"):
            queryset = queryset.filter(status=params["status"])
        if params.get("demande"):
            queryset = queryset.filter(demande_id=params["demande"])
        return queryset

    def _respond(self, payment: Payment) -> Response:
        return Response(self.get_serializer(payment).data)

    @action(detail=True, methods=["POST"], url_path="process")
    def process(self, request, pk=None, *args, **kwargs):
        return self._respond(processing.process(self.get_object(), self.identity))

    @action(detail=True, methods=["POST"], url_path="retry")
    def retry(self, request, pk=None, *args, **kwargs):
        return self._respond(processing.retry(self.get_object(), self.identity))

    @action(detail=True, methods=["POST"], url_path="cancel")
    def cancel(self, request, pk=None, *args, **kwargs):
        serializer = PaymentCancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        payment = processing.cancel(self.get_object(), self.identity, serializer.validated_data.get("reason", ""))
        return self._respond(payment)

    @action(detail=True, methods=["POST"], url_path="schedule")
    def schedule(self, request, pk=None, *args, **kwargs):
        serializer = PaymentScheduleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        payment = processing.schedule(self.get_object(), self.identity, serializer.validated_data["scheduled_date"])
        return self._respond(payment)

    @action(detail=True, methods=["POST"], url_path="notes")
    def notes(self, request, pk=None, *args, **kwargs):
        serializer = InternalNoteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        payment = processing.add_internal_note(self.get_object(), self.identity, serializer.validated_data["note"])
        return self._respond(payment)

    @action(detail=False, methods=["GET"], url_path="dashboard-stats")
    def dashboard_stats(self, request, *args, **kwargs):
        return Response(processing.payment_statistics(self.get_queryset()))
