from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import List

from django.contrib.auth import get_user_model
from django.contrib.auth.hashers import make_password
from django.core.management.base import BaseCommand
from django.db import transaction
from django.utils import timezone

from apps.budget.models import BudgetPool
from apps.budget.services.allocation import change_status, create_pool
from identity.models import CoreIdentity


@dataclass(frozen=True)
class DemoUserSpec:
    email: str
    phone: str
    password: str
    first_name: str
    last_name: str
    role: str
    wilaya: str = ""


class Command(BaseCommand):
    help = "Seed des identités de démonstration (un compte par rôle) et d'une enveloppe budgétaire."

    def add_arguments(self, parser) -> None:
        parser.add_argument(
            "--pool-amount",
            default="1000000",
            help="Montant de l'enveloppe de démonstration.",
        )

    def handle(self, *args, **options) -> None:
        users = self._demo_users()
        identities = {spec.role: self._create_user(spec) for spec in users}
        self._seed_pool(identities[CoreIdentity.Role.FINANCE_MANAGER], Decimal(str(options["pool_amount"])))
        self._print_credentials(users)
        self.stdout.write(self.style.SUCCESS("Seed demo terminé."))

    def _demo_users(self) -> List[DemoUserSpec]:
        return [
            DemoUserSpec(
                email="admin@aide-sociale.dz",
                phone="+213550000000",
                password="admin123!",
                first_name="Admin",
                last_name="Plateforme",
                role=CoreIdentity.Role.ADMIN,
            ),
            DemoUserSpec(
                email="travailleur.social@aide-sociale.dz",
                phone="+213550000001",
                password="social123!",
                first_name="Nadia",
                last_name="Benali",
                role=CoreIdentity.Role.CASE_WORKER,
                wilaya="Alger",
            ),
            DemoUserSpec(
                email="finance@aide-sociale.dz",
                phone="+213550000002",
                password="finance123!",
                first_name="Karim",
                last_name="Haddad",
                role=CoreIdentity.Role.FINANCE_MANAGER,
            ),
            DemoUserSpec(
                email="citoyen@aide-sociale.dz",
                phone="+213550000003",
                password="citoyen123!",
                first_name="Samir",
                last_name="Mansouri",
                role=CoreIdentity.Role.USER,
                wilaya="Oran",
            ),
        ]

    def _create_user(self, spec: DemoUserSpec) -> CoreIdentity:
        User = get_user_model()
        is_admin = spec.role == CoreIdentity.Role.ADMIN
        with transaction.atomic():
            user, created = User.objects.get_or_create(
                username=spec.email,
                defaults={
                    "email": spec.email,
                    "is_active": True,
                    "is_staff": is_admin,
                    "is_superuser": is_admin,
                },
            )
            if created:
                user.password = make_password(spec.password)
                user.save(update_fields=["password"])

            identity, created = CoreIdentity.objects.get_or_create(
                email=spec.email,
                defaults={
                    "phone": spec.phone,
                    "first_name": spec.first_name,
                    "last_name": spec.last_name,
                    "role": spec.role,
                    "wilaya": spec.wilaya,
                },
            )
            if not created and identity.role != spec.role:
                identity.role = spec.role
                identity.save(update_fields=["role", "updated_at"])
        return identity

    def _seed_pool(self, manager: CoreIdentity, amount: Decimal) -> None:
        year = timezone.localdate().year
        if BudgetPool.objects.filter(name="Aide d'urgence", fiscal_year=year).exists():
            self.stdout.write("==> Enveloppe de démonstration déjà présente")
            return
        pool = create_pool(manager, name="Aide d'urgence", fiscal_year=year, montant=amount, department="Solidarité")
        pool = change_status(pool, manager, BudgetPool.Status.ACTIVE)
        self.stdout.write(f"==> Enveloppe {pool.reference} créée ({amount})")

    def _print_credentials(self, users: List[DemoUserSpec]) -> None:
        self.stdout.write("\nIdentifiants de démonstration :")
        for spec in users:
            self.stdout.write(f"  - {spec.role:<16} {spec.email} / {spec.password}")
