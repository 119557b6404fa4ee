"""Expiration planifiée des enveloppes échues et des demandes en attente de pièces."""
from __future__ import annotations

from django.core.management.base import BaseCommand

from apps.budget.services.allocation import expire_pools
from apps.demandes.services.workflow import expire_stale


class Command(BaseCommand):
    help = "Expire les enveloppes arrivées à échéance et les demandes dont le délai de pièces est dépassé."

    def add_arguments(self, parser) -> None:
        parser.add_argument("--skip-pools", action="store_true", help="N'expire pas les enveloppes.")
        parser.add_argument("--skip-demandes", action="store_true", help="N'expire pas les demandes.")

    def handle(self, *args, **options) -> None:
        if not options["skip_pools"]:
            self.stdout.write(f"==> {expire_pools()} enveloppe(s) expirée(s)")
        if not options["skip_demandes"]:
            self.stdout.write(f"==> {expire_stale()} demande(s) expirée(s)")
        self.stdout.write(self.style.SUCCESS("Expiration terminée."))
