"""ViewSet pour les enveloppes budgétaires."""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.viewsets import ModelViewSet

from apps.budget.models import BudgetPool
from apps.budget.services import allocation as budget

from .mixins import IdentityMixin
from .permissions import ActiveRolePermission
from .serializers import (
    AllocateSerializer,
    AllocationSerializer,
    BudgetPoolSerializer,
    BudgetPoolWriteSerializer,
    PaymentSerializer,
    PoolStatusSerializer,
    PoolTransferSerializer,
    TransferSerializer,
)


class BudgetPoolViewSet(IdentityMixin, ModelViewSet):
    """
    GET/POST /api/budget-pools/ ; PATCH/DELETE /api/budget-pools/<id>/
    POST /api/budget-pools/<id>/allocate/ | transfer/ | status/
    GET /api/budget-pools/<id>/analytics/
    """

    queryset = BudgetPool.objects.none()
    serializer_class = BudgetPoolSerializer
    permission_classes = (ActiveRolePermission,)
    http_method_names = ["get", "post", "patch", "delete", "head", "options"]

    def get_queryset(self):  # type: ignore[override]
        queryset = budget.visible_pools(self.identity)
        params = self.request.query_params
        if params.get("status"):
            queryset = queryset.filter(status=params["status"])
        if params.get("fiscal_year"):
            queryset = queryset.filter(fiscal_year=params["fiscal_year"])
        if params.get("department"):
            queryset = queryset.filter(department=params["department"])
        return queryset

    def _pool_response(self, pool: BudgetPool, http_status=status.HTTP_200_OK) -> Response:
        pool.refresh_from_db()
        return Response(BudgetPoolSerializer(pool).data, status=http_status)

    def create(self, request, *args, **kwargs):  # type: ignore[override]
        serializer = BudgetPoolWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        pool = budget.create_pool(self.identity, **serializer.validated_data)
        return self._pool_response(pool, status.HTTP_201_CREATED)

    def partial_update(self, request, *args, **kwargs):  # type: ignore[override]
        serializer = BudgetPoolWriteSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        pool = budget.update_pool(self.get_object(), self.identity, **serializer.validated_data)
        return self._pool_response(pool)

    def destroy(self, request, *args, **kwargs):  # type: ignore[override]
        budget.delete_pool(self.get_object(), self.identity)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=["POST"], url_path="allocate")
    def allocate(self, request, pk=None, *args, **kwargs):
        serializer = AllocateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        result = budget.allocate(
            self.get_object(),
            data["demande"],
            data["amount"],
            self.identity,
            notes=data.get("notes", ""),
            payment_method=data.get("payment_method"),
        )
        context = self.get_serializer_context()
        return Response(
            {
                "pool": BudgetPoolSerializer(result.pool).data,
                "allocation": AllocationSerializer(result.allocation).data,
                "payment": PaymentSerializer(result.payment, context=context).data,
            },
            status=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=["POST"], url_path="transfer")
    def transfer(self, request, pk=None, *args, **kwargs):
        serializer = TransferSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        pool_transfer = budget.transfer(
            self.get_object(), data["destination"], data["amount"], self.identity, reason=data.get("reason", "")
        )
        return Response(PoolTransferSerializer(pool_transfer).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["POST"], url_path="status")
    def change_status(self, request, pk=None, *args, **kwargs):
        serializer = PoolStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        pool = budget.change_status(self.get_object(), self.identity, serializer.validated_data["status"])
        return self._pool_response(pool)

    @action(detail=True, methods=["GET"], url_path="analytics")
    def analytics(self, request, pk=None, *args, **kwargs):
        return Response(budget.get_pool_analytics(self.get_object()))
