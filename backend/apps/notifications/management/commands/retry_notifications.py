"""Traitements planifiés des notifications (cron) : relance, envois planifiés, expiration."""
from __future__ import annotations

from django.core.management.base import BaseCommand

from apps.notifications.services.dispatcher import clean_expired, process_scheduled, retry_failed


class Command(BaseCommand):
    help = "Relance les notifications en échec dont le délai de back-off est écoulé."

    def add_arguments(self, parser) -> None:
        parser.add_argument(
            "--scheduled", action="store_true", help="Livre aussi les notifications planifiées arrivées à échéance."
        )
        parser.add_argument(
            "--clean-expired", action="store_true", help="Supprime aussi les notifications expirées."
        )

    def handle(self, *args, **options) -> None:
        if options["scheduled"]:
            self.stdout.write(f"==> {process_scheduled()} notification(s) planifiée(s) livrée(s)")
        retried = retry_failed()
        if options["clean_expired"]:
            self.stdout.write(f"==> {clean_expired()} notification(s) expirée(s) supprimée(s)")
        self.stdout.write(self.style.SUCCESS(f"{retried} notification(s) relancée(s)."))
