from __future__ import annotations

from django.db import migrations, models


class Migration(migrations.Migration):
    dependencies = [
        ("notifications", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="notification",
            name="scheduled_for",
            field=models.DateTimeField(blank=True, null=True),
        ),
        migrations.AddField(
            model_name="notification",
            name="expires_at",
            field=models.DateTimeField(blank=True, null=True),
        ),
        migrations.AddIndex(
            model_name="notification",
            index=models.Index(fields=["scheduled_for", "status"], name="NOTIF_scheduled_status_idx"),
        ),
        migrations.AddIndex(
            model_name="notification",
            index=models.Index(fields=["expires_at", "status"], name="NOTIF_expires_status_idx"),
        ),
    ]
