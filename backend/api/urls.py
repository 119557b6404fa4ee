from __future__ import annotations

from django.urls import include, path
from drf_yasg import openapi
from drf_yasg.views import get_schema_view
from rest_framework import permissions
from rest_framework.routers import DefaultRouter
from rest_framework_simplejwt.views import TokenRefreshView

from .auth import obtain_token
from .budget_views import BudgetPoolViewSet
from .content_views import AnnouncementViewSet, ContentViewSet
from .demande_views import DemandeViewSet
from .health import health
from .notification_views import NotificationViewSet
from .payment_views import PaymentViewSet
from .views import dashboard_data, notifications_overview
from .viewsets import CoreIdentityViewSet

router = DefaultRouter()
router.register(r"identities", CoreIdentityViewSet, basename="core-identity")
router.register(r"demandes", DemandeViewSet, basename="demandes")
router.register(r"budget-pools", BudgetPoolViewSet, basename="budget-pools")
router.register(r"payments", PaymentViewSet, basename="payments")
router.register(r"notifications", NotificationViewSet, basename="notifications")
router.register(r"content", ContentViewSet, basename="content")
router.register(r"announcements", AnnouncementViewSet, basename="announcements")

schema_view = get_schema_view(
    openapi.Info(
        title="Aide Sociale API",
        default_version="v1",
        description="API de gestion des aides sociales (demandes, budget, paiements, notifications).",
    ),
    public=True,
    permission_classes=[permissions.AllowAny],
)

urlpatterns = [
    path("token/", obtain_token, name="obtain-token"),
    path("token/refresh/", TokenRefreshView.as_view(), name="token-refresh"),
    path("dashboard/", dashboard_data, name="dashboard-data"),
    path("dashboard/notifications/", notifications_overview, name="dashboard-notifications"),
    path("health/", health, name="health"),
    path("swagger/", schema_view.with_ui("swagger", cache_timeout=0), name="swagger-ui"),
    path("redoc/", schema_view.with_ui("redoc", cache_timeout=0), name="redoc"),
    path("", include(router.urls)),
]
