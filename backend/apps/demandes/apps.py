from __future__ import annotations

from django.apps import AppConfig


class DemandesConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.demandes"
    label = "demandes"
    verbose_name = "Demandes d'aide"
