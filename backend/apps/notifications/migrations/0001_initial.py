from __future__ import annotations

import uuid

import django.core.validators
import django.db.models.deletion
from django.db import migrations, models

import apps.notifications.models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("core_identity", "0001_initial"),
        ("demandes", "0002_demande_payment"),
        ("budget", "0001_initial"),
        ("payments", "0001_initial"),
        ("content", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Notification",
            fields=[
                ("id", models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False, serialize=False)),
                ("title", models.CharField(max_length=200)),
                ("message", models.TextField(max_length=1000)),
                (
                    "type",
                    models.CharField(
                        choices=[
                            ("system", "Système"),
                            ("request_status", "Statut de demande"),
                            ("payment", "Paiement"),
                            ("announcement", "Annonce"),
                            ("reminder", "Rappel"),
                            ("alert", "Alerte"),
                            ("welcome", "Bienvenue"),
                            ("approval_required", "Approbation requise"),
                            ("document_required", "Document requis"),
                            ("deadline_approaching", "Échéance proche"),
                        ],
                        default="system",
                        max_length=32,
                    ),
                ),
                (
                    "category",
                    models.CharField(
                        choices=[
                            ("info", "Information"),
                            ("success", "Succès"),
                            ("warning", "Avertissement"),
                            ("error", "Erreur"),
                            ("urgent", "Urgent"),
                        ],
                        default="info",
                        max_length=16,
                    ),
                ),
                (
                    "priority",
                    models.CharField(
                        choices=[
                            ("low", "Basse"),
                            ("normal", "Normale"),
                            ("high", "Haute"),
                            ("critical", "Critique"),
                        ],
                        default="normal",
                        max_length=16,
                    ),
                ),
                ("action_required", models.BooleanField(default=False)),
                ("action_url", models.CharField(blank=True, max_length=500)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "En attente"),
                            ("sent", "Envoyée"),
                            ("delivered", "Livrée"),
                            ("read", "Lue"),
                            ("clicked", "Cliquée"),
                            ("failed", "Échec"),
                            ("cancelled", "Annulée"),
                        ],
                        default="pending",
                        max_length=16,
                    ),
                ),
                ("is_read", models.BooleanField(default=False)),
                ("read_at", models.DateTimeField(blank=True, null=True)),
                ("is_clicked", models.BooleanField(default=False)),
                ("clicked_at", models.DateTimeField(blank=True, null=True)),
                ("sent_at", models.DateTimeField(blank=True, null=True)),
                ("retry_count", models.PositiveSmallIntegerField(default=0)),
                (
                    "max_retries",
                    models.PositiveSmallIntegerField(
                        default=apps.notifications.models._default_max_retries,
                        validators=[django.core.validators.MaxValueValidator(10)],
                    ),
                ),
                ("retry_after", models.DateTimeField(blank=True, null=True)),
                ("is_deleted", models.BooleanField(default=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "recipient",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="notifications",
                        to="core_identity.coreidentity",
                    ),
                ),
                (
                    "related_demande",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to="demandes.demande",
                    ),
                ),
                (
                    "related_payment",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to="payments.payment",
                    ),
                ),
                (
                    "related_budget_pool",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to="budget.budgetpool",
                    ),
                ),
                (
                    "related_announcement",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to="content.announcement",
                    ),
                ),
            ],
            options={
                "db_table": "NOTIFICATION",
                "ordering": ("-created_at",),
                "base_manager_name": "all_objects",
                "indexes": [
                    models.Index(fields=["recipient", "is_read"], name="NOTIF_recipient_read_idx"),
                    models.Index(fields=["status", "retry_after"], name="NOTIF_status_retry_idx"),
                ],
            },
            managers=[("all_objects", models.Manager())],
        ),
        migrations.CreateModel(
            name="NotificationDelivery",
            fields=[
                ("id", models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False, serialize=False)),
                (
                    "channel",
                    models.CharField(
                        choices=[
                            ("in_app", "Dans l'application"),
                            ("email", "E-mail"),
                            ("sms", "SMS"),
                            ("push", "Push"),
                        ],
                        max_length=16,
                    ),
                ),
                ("enabled", models.BooleanField(default=True)),
                ("delivered", models.BooleanField(default=False)),
                ("delivered_at", models.DateTimeField(blank=True, null=True)),
                ("attempts", models.PositiveSmallIntegerField(default=0)),
                ("last_attempt", models.DateTimeField(blank=True, null=True)),
                ("error_message", models.TextField(blank=True)),
                (
                    "notification",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="deliveries",
                        to="notifications.notification",
                    ),
                ),
            ],
            options={
                "db_table": "NOTIFICATION_DELIVERY",
                "constraints": [
                    models.UniqueConstraint(
                        fields=("notification", "channel"), name="notification_delivery_unique_channel"
                    ),
                ],
            },
        ),
    ]
