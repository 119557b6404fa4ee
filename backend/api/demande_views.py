"""ViewSet pour le cycle de vie des demandes d'aide."""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import action
from rest_framework.parsers import FormParser, JSONParser, MultiPartParser
from rest_framework.response import Response
from rest_framework.viewsets import ModelViewSet

from apps.demandes.models import Demande
from apps.demandes.services import workflow

from .mixins import IdentityMixin
from .permissions import ActiveRolePermission
from .serializers import (
    DemandeAssignSerializer,
    DemandeCreateSerializer,
    DemandeDocumentSerializer,
    DemandeReviewSerializer,
    DemandeSerializer,
    DocumentUploadSerializer,
    MotifSerializer,
)


class DemandeViewSet(IdentityMixin, ModelViewSet):
    """
    GET /api/demandes/ : liste (le citoyen ne voit que ses demandes)
    POST /api/demandes/ : création en brouillon
    POST /api/demandes/<id>/submit/ | start-review/ | review/ | assign/ | cancel/
    POST /api/demandes/<id>/documents/ : ajout d'une pièce justificative
    GET /api/demandes/dashboard-stats/
    DELETE /api/demandes/<id>/ : brouillon uniquement
    """

    queryset = Demande.objects.none()
    serializer_class = DemandeSerializer
    permission_classes = (ActiveRolePermission,)
    parser_classes = (JSONParser, FormParser, MultiPartParser)
    http_method_names = ["get", "post", "delete", "head", "options"]

    def get_queryset(self):  # type: ignore[override]
        queryset = workflow.visible_demandes(self.identity).prefetch_related("documents", "history")
        params = self.request.query_params
        if params.get("status"):
            queryset = queryset.filter(status=params["status"])
        if params.get("category"):
            queryset = queryset.filter(category=params["category"])
        if params.get("assigned_to") == "me":
            queryset = queryset.filter(assigned_to=self.identity)
        return queryset

    def _respond(self, demande: Demande, http_status=status.HTTP_200_OK) -> Response:
        demande = self.get_queryset().get(pk=demande.pk)
        return Response(DemandeSerializer(demande, context=self.get_serializer_context()).data, status=http_status)

    def create(self, request, *args, **kwargs):  # type: ignore[override]
        serializer = DemandeCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        demande = workflow.create_demande(
            self.identity,
            data["description"],
            data["montant"],
            data["category"],
            owner=data.get("user"),
        )
        return self._respond(demande, status.HTTP_201_CREATED)

    def destroy(self, request, *args, **kwargs):  # type: ignore[override]
        workflow.delete_draft(self.get_object(), self.identity)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=["POST"], url_path="submit")
    def submit(self, request, pk=None, *args, **kwargs):
        return self._respond(workflow.submit(self.get_object(), self.identity))

    @action(detail=True, methods=["POST"], url_path="start-review")
    def start_review(self, request, pk=None, *args, **kwargs):
        return self._respond(workflow.start_review(self.get_object(), self.identity))

    @action(detail=True, methods=["POST"], url_path="review")
    def review(self, request, pk=None, *args, **kwargs):
        serializer = DemandeReviewSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        demande = workflow.review(
            self.get_object(),
            self.identity,
            data["decision"],
            motif=data.get("motif"),
            approved_amount=data.get("approved_amount"),
            documents_due_at=data.get("documents_due_at"),
        )
        return self._respond(demande)

    @action(detail=True, methods=["POST"], url_path="assign")
    def assign(self, request, pk=None, *args, **kwargs):
        serializer = DemandeAssignSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        demande = workflow.assign(self.get_object(), self.identity, serializer.validated_data["case_worker_id"])
        return self._respond(demande)

    @action(detail=True, methods=["POST"], url_path="cancel")
    def cancel(self, request, pk=None, *args, **kwargs):
        serializer = MotifSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        demande = workflow.cancel(self.get_object(), self.identity, serializer.validated_data.get("motif"))
        return self._respond(demande)

    @action(detail=True, methods=["POST"], url_path="documents")
    def documents(self, request, pk=None, *args, **kwargs):
        serializer = DocumentUploadSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        document = workflow.add_document(self.get_object(), self.identity, serializer.validated_data["file"])
        return Response(DemandeDocumentSerializer(document).data, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["GET"], url_path="dashboard-stats")
    def dashboard_stats(self, request, *args, **kwargs):
        return Response(workflow.dashboard_stats(workflow.visible_demandes(self.identity)))
