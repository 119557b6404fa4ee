from __future__ import annotations

import uuid
from decimal import Decimal

import django.core.validators
import django.db.models.deletion
from django.db import migrations, models

STATUS_CHOICES = [
    ("draft", "Brouillon"),
    ("submitted", "Soumise"),
    ("under_review", "En cours d'examen"),
    ("pending_docs", "Pièces manquantes"),
    ("approved", "Approuvée"),
    ("rejected", "Rejetée"),
    ("cancelled", "Annulée"),
    ("expired", "Expirée"),
    ("partially_paid", "Partiellement payée"),
    ("paid", "Payée"),
]


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("core_identity", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Demande",
            fields=[
                ("id", models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False, serialize=False)),
                ("reference", models.CharField(editable=False, max_length=32, unique=True)),
                ("description", models.TextField()),
                (
                    "category",
                    models.CharField(
                        choices=[
                            ("food", "Alimentation"),
                            ("health", "Santé"),
                            ("housing", "Logement"),
                            ("education", "Éducation"),
                            ("emergency", "Urgence"),
                            ("other", "Autre"),
                        ],
                        default="other",
                        max_length=16,
                    ),
                ),
                (
                    "montant",
                    models.DecimalField(
                        decimal_places=2,
                        max_digits=12,
                        validators=[django.core.validators.MinValueValidator(Decimal("0.01"))],
                    ),
                ),
                ("approved_amount", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("paid_amount", models.DecimalField(decimal_places=2, default=Decimal("0"), max_digits=12)),
                ("status", models.CharField(choices=STATUS_CHOICES, default="draft", max_length=16)),
                ("motif", models.TextField(blank=True)),
                ("documents_due_at", models.DateTimeField(blank=True, null=True)),
                ("submitted_at", models.DateTimeField(blank=True, null=True)),
                ("reviewed_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="demandes",
                        to="core_identity.coreidentity",
                    ),
                ),
                (
                    "assigned_to",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="assigned_demandes",
                        to="core_identity.coreidentity",
                    ),
                ),
                (
                    "reviewed_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="reviewed_demandes",
                        to="core_identity.coreidentity",
                    ),
                ),
            ],
            options={
                "db_table": "DEMANDE",
                "ordering": ("-created_at",),
                "indexes": [
                    models.Index(fields=["status"], name="DEMANDE_status_idx"),
                    models.Index(fields=["user", "status"], name="DEMANDE_user_status_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(check=models.Q(montant__gt=0), name="demande_montant_positive"),
                    models.CheckConstraint(
                        check=models.Q(paid_amount__gte=0), name="demande_paid_amount_non_negative"
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="DemandeDocument",
            fields=[
                ("id", models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False, serialize=False)),
                ("file", models.CharField(max_length=255)),
                ("original_name", models.CharField(max_length=255)),
                ("content_type", models.CharField(blank=True, max_length=128)),
                ("size", models.PositiveIntegerField(default=0)),
                ("uploaded_at", models.DateTimeField(auto_now_add=True)),
                (
                    "demande",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="documents",
                        to="demandes.demande",
                    ),
                ),
                (
                    "uploaded_by",
                    models.ForeignKey(
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="uploaded_documents",
                        to="core_identity.coreidentity",
                    ),
                ),
            ],
            options={"db_table": "DEMANDE_DOCUMENT", "ordering": ("uploaded_at",)},
        ),
        migrations.CreateModel(
            name="DemandeStatusHistory",
            fields=[
                ("id", models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False, serialize=False)),
                ("from_status", models.CharField(blank=True, choices=STATUS_CHOICES, max_length=16)),
                ("to_status", models.CharField(choices=STATUS_CHOICES, max_length=16)),
                ("motif", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "changed_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to="core_identity.coreidentity",
                    ),
                ),
                (
                    "demande",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="history",
                        to="demandes.demande",
                    ),
                ),
            ],
            options={"db_table": "DEMANDE_STATUS_HISTORY", "ordering": ("created_at",)},
        ),
    ]
