from __future__ import annotations

import uuid
from decimal import Decimal

import django.db.models.deletion
from django.db import migrations, models

import apps.payments.models

PARTY_CHOICES = [("User", "Bénéficiaire"), ("BudgetPool", "Enveloppe budgétaire")]


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("core_identity", "0001_initial"),
        ("demandes", "0001_initial"),
        ("budget", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Payment",
            fields=[
                ("id", models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False, serialize=False)),
                ("reference", models.CharField(editable=False, max_length=32, unique=True)),
                (
                    "payment_method",
                    models.CharField(
                        choices=[
                            ("bank_transfer", "Virement bancaire"),
                            ("check", "Chèque"),
                            ("cash", "Espèces"),
                            ("mobile_payment", "Paiement mobile"),
                            ("card", "Carte"),
                            ("other", "Autre"),
                        ],
                        default="bank_transfer",
                        max_length=16,
                    ),
                ),
                ("amount", models.DecimalField(decimal_places=2, max_digits=14)),
                ("source_type", models.CharField(choices=PARTY_CHOICES, max_length=16)),
                ("source_id", models.UUIDField()),
                ("destination_type", models.CharField(choices=PARTY_CHOICES, max_length=16)),
                ("destination_id", models.UUIDField()),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "En attente"),
                            ("scheduled", "Planifié"),
                            ("processing", "En cours"),
                            ("completed", "Effectué"),
                            ("failed", "Échoué"),
                            ("cancelled", "Annulé"),
                        ],
                        default="pending",
                        max_length=16,
                    ),
                ),
                ("scheduled_date", models.DateTimeField(blank=True, null=True)),
                ("retry_count", models.PositiveSmallIntegerField(default=0)),
                (
                    "max_retries",
                    models.PositiveSmallIntegerField(default=apps.payments.models._default_max_retries),
                ),
                ("retry_after", models.DateTimeField(blank=True, null=True)),
                ("transaction_id", models.CharField(blank=True, max_length=128)),
                ("failure_reason", models.TextField(blank=True)),
                ("processing_fee", models.DecimalField(decimal_places=2, default=Decimal("0"), max_digits=12)),
                ("bank_fee", models.DecimalField(decimal_places=2, default=Decimal("0"), max_digits=12)),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                ("delivered_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("cancel_reason", models.TextField(blank=True)),
                ("internal_notes", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "demande",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payments",
                        to="demandes.demande",
                    ),
                ),
                (
                    "allocation",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payments",
                        to="budget.allocation",
                    ),
                ),
                (
                    "processed_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="processed_payments",
                        to="core_identity.coreidentity",
                    ),
                ),
            ],
            options={
                "db_table": "PAYMENT",
                "ordering": ("-created_at",),
                "indexes": [
                    models.Index(fields=["status"], name="PAYMENT_status_idx"),
                    models.Index(fields=["source_type", "source_id"], name="PAYMENT_source_idx"),
                    models.Index(fields=["destination_type", "destination_id"], name="PAYMENT_destination_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(check=models.Q(amount__gt=0), name="payment_amount_positive"),
                    models.CheckConstraint(
                        check=~(
                            models.Q(source_type=models.F("destination_type"))
                            & models.Q(source_id=models.F("destination_id"))
                        ),
                        name="payment_source_differs_from_destination",
                    ),
                ],
            },
        ),
    ]
