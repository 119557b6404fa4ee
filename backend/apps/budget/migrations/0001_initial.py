from __future__ import annotations

import uuid
from decimal import Decimal

import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models

import apps.budget.models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("core_identity", "0001_initial"),
        ("demandes", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="BudgetPool",
            fields=[
                ("id", models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False, serialize=False)),
                ("reference", models.CharField(editable=False, max_length=32, unique=True)),
                ("name", models.CharField(max_length=200)),
                ("description", models.TextField(blank=True)),
                ("department", models.CharField(blank=True, max_length=100)),
                ("fiscal_year", models.PositiveIntegerField()),
                (
                    "montant",
                    models.DecimalField(
                        decimal_places=2,
                        max_digits=14,
                        validators=[django.core.validators.MinValueValidator(Decimal("0"))],
                    ),
                ),
                ("remaining", models.DecimalField(blank=True, decimal_places=2, max_digits=14, null=True)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("draft", "Brouillon"),
                            ("active", "Active"),
                            ("frozen", "Gelée"),
                            ("depleted", "Épuisée"),
                            ("expired", "Expirée"),
                        ],
                        default="draft",
                        max_length=16,
                    ),
                ),
                ("start_date", models.DateField(default=django.utils.timezone.localdate)),
                ("end_date", models.DateField(blank=True, null=True)),
                (
                    "allocation_rules",
                    models.JSONField(
                        blank=True, default=dict, validators=[apps.budget.models.validate_allocation_rules]
                    ),
                ),
                (
                    "alert_thresholds",
                    models.JSONField(blank=True, default=apps.budget.models.default_alert_thresholds),
                ),
                ("version", models.PositiveIntegerField(default=0)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "managed_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="managed_pools",
                        to="core_identity.coreidentity",
                    ),
                ),
                (
                    "created_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="created_pools",
                        to="core_identity.coreidentity",
                    ),
                ),
            ],
            options={
                "db_table": "BUDGET_POOL",
                "ordering": ("-fiscal_year", "name"),
                "constraints": [
                    models.UniqueConstraint(
                        fields=("name", "fiscal_year", "department"),
                        name="budget_pool_unique_name_year_department",
                    ),
                    models.CheckConstraint(
                        check=models.Q(montant__gte=0), name="budget_pool_montant_non_negative"
                    ),
                    models.CheckConstraint(
                        check=models.Q(remaining__gte=0) & models.Q(remaining__lte=models.F("montant")),
                        name="budget_pool_remaining_within_montant",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Allocation",
            fields=[
                ("id", models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False, serialize=False)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=14)),
                (
                    "status",
                    models.CharField(
                        choices=[("reserved", "Réservée"), ("paid", "Payée"), ("cancelled", "Annulée")],
                        default="reserved",
                        max_length=16,
                    ),
                ),
                ("notes", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "pool",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="allocations",
                        to="budget.budgetpool",
                    ),
                ),
                (
                    "demande",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="allocations",
                        to="demandes.demande",
                    ),
                ),
                (
                    "allocated_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to="core_identity.coreidentity",
                    ),
                ),
            ],
            options={
                "db_table": "BUDGET_ALLOCATION",
                "ordering": ("-created_at",),
                "constraints": [
                    models.CheckConstraint(check=models.Q(amount__gt=0), name="allocation_amount_positive"),
                ],
            },
        ),
        migrations.CreateModel(
            name="PoolTransfer",
            fields=[
                ("id", models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False, serialize=False)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=14)),
                ("reason", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "source",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="outgoing_transfers",
                        to="budget.budgetpool",
                    ),
                ),
                (
                    "destination",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="incoming_transfers",
                        to="budget.budgetpool",
                    ),
                ),
                (
                    "transferred_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to="core_identity.coreidentity",
                    ),
                ),
            ],
            options={
                "db_table": "BUDGET_POOL_TRANSFER",
                "ordering": ("-created_at",),
                "constraints": [
                    models.CheckConstraint(check=models.Q(amount__gt=0), name="pool_transfer_amount_positive"),
                ],
            },
        ),
    ]
