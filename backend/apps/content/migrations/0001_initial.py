from __future__ import annotations

import uuid

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("core_identity", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Content",
            fields=[
                ("id", models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False, serialize=False)),
                (
                    "level",
                    models.CharField(
                        choices=[
                            ("programme", "Programme"),
                            ("chapitre", "Chapitre"),
                            ("sous_chapitre", "Sous-chapitre"),
                            ("article", "Article"),
                        ],
                        default="article",
                        max_length=16,
                    ),
                ),
                ("name", models.CharField(max_length=100)),
                ("title", models.CharField(max_length=255)),
                ("text", models.TextField(blank=True)),
                ("position", models.PositiveIntegerField(default=0)),
                ("is_deleted", models.BooleanField(default=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "parent",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="children",
                        to="content.content",
                    ),
                ),
            ],
            options={"db_table": "CONTENT", "ordering": ("position", "name"), "base_manager_name": "all_objects"},
            managers=[("all_objects", models.Manager())],
        ),
        migrations.CreateModel(
            name="Announcement",
            fields=[
                ("id", models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False, serialize=False)),
                ("title", models.CharField(max_length=200)),
                ("body", models.TextField(max_length=1000)),
                ("target_roles", models.JSONField(blank=True, default=list)),
                ("is_published", models.BooleanField(default=False)),
                ("published_at", models.DateTimeField(blank=True, null=True)),
                ("is_deleted", models.BooleanField(default=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "created_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="announcements",
                        to="core_identity.coreidentity",
                    ),
                ),
            ],
            options={"db_table": "ANNOUNCEMENT", "ordering": ("-created_at",), "base_manager_name": "all_objects"},
            managers=[("all_objects", models.Manager())],
        ),
    ]
