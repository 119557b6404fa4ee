from __future__ import annotations

import uuid

import django.core.validators
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="CoreIdentity",
            fields=[
                ("id", models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False, serialize=False)),
                ("email", models.EmailField(unique=True, max_length=254)),
                ("phone", models.CharField(max_length=32, unique=True)),
                ("first_name", models.CharField(max_length=150)),
                ("last_name", models.CharField(max_length=150)),
                (
                    "role",
                    models.CharField(
                        choices=[
                            ("admin", "Administrateur"),
                            ("case_worker", "Travailleur social"),
                            ("finance_manager", "Gestionnaire financier"),
                            ("user", "Citoyen"),
                        ],
                        default="user",
                        max_length=32,
                    ),
                ),
                ("wilaya", models.CharField(blank=True, max_length=64)),
                (
                    "eligibility_score",
                    models.PositiveSmallIntegerField(
                        default=0,
                        validators=[
                            django.core.validators.MinValueValidator(0),
                            django.core.validators.MaxValueValidator(100),
                        ],
                    ),
                ),
                ("email_notifications", models.BooleanField(default=True)),
                ("sms_notifications", models.BooleanField(default=False)),
                ("push_device_tokens", models.JSONField(blank=True, default=list)),
                ("is_active", models.BooleanField(default=True)),
                ("metadata", models.JSONField(default=dict, blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={"db_table": "CORE_IDENTITY", "ordering": ("last_name", "first_name")},
        ),
        migrations.CreateModel(
            name="SysAuditLog",
            fields=[
                ("id", models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False, serialize=False)),
                ("action", models.CharField(max_length=64)),
                ("entity_type", models.CharField(max_length=128)),
                ("entity_id", models.UUIDField()),
                ("actor_email", models.EmailField(blank=True, max_length=254)),
                ("active_role", models.CharField(blank=True, max_length=64)),
                ("ip_address", models.GenericIPAddressField(blank=True, null=True)),
                ("user_agent", models.TextField(blank=True)),
                ("payload", models.JSONField(default=dict, blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={"db_table": "SYS_AUDIT_LOG", "ordering": ("-created_at",)},
        ),
    ]
