"""
Migration: Dead-letter queue for failed venue operations and menu snapshots.
"""

import uuid

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


PLATFORM_CHOICES = [
    ("uber_eats", "Uber Eats"),
    ("wolt", "Wolt"),
    ("lieferando", "Lieferando"),
    ("just_eat", "Just Eat"),
    ("deliveroo", "Deliveroo"),
    ("smood", "Smood"),
    ("glovo", "Glovo"),
]

COUNTRY_CHOICES = [
    ("DE", "Germany"),
    ("AT", "Austria"),
    ("CH", "Switzerland"),
    ("IT", "Italy"),
    ("ES", "Spain"),
    ("FR", "France"),
    ("UK", "United Kingdom"),
    ("NL", "Netherlands"),
    ("BE", "Belgium"),
    ("PL", "Poland"),
]


class Migration(migrations.Migration):

    dependencies = [
        ("scout", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="FailedOperation",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "operation_type",
                    models.CharField(
                        choices=[
                            ("dish_extraction", "Dish Extraction"),
                            ("menu_persist", "Menu Persist"),
                        ],
                        max_length=30,
                    ),
                ),
                (
                    "platform",
                    models.CharField(blank=True, choices=PLATFORM_CHOICES, max_length=20),
                ),
                (
                    "country",
                    models.CharField(blank=True, choices=COUNTRY_CHOICES, max_length=2),
                ),
                ("error", models.TextField()),
                ("context", models.JSONField(blank=True, default=dict)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending_retry", "Pending Retry"),
                            ("requires_manual", "Requires Manual Review"),
                            ("resolved", "Resolved"),
                        ],
                        default="pending_retry",
                        max_length=20,
                    ),
                ),
                ("attempts", models.IntegerField(default=0)),
                ("max_attempts", models.IntegerField(default=5)),
                ("next_retry_at", models.DateTimeField(blank=True, null=True)),
                ("manual_review_reason", models.CharField(blank=True, max_length=500)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("last_attempt_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "venue",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="failed_operations",
                        to="scout.discoveredvenue",
                    ),
                ),
            ],
            options={
                "db_table": "failed_operations",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "next_retry_at"],
                        name="failed_oper_status_e41b7a_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="MenuSnapshot",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("taken_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("dishes", models.JSONField(blank=True, default=list)),
                ("dish_count", models.IntegerField(default=0)),
                ("tracked_dish_count", models.IntegerField(default=0)),
                ("menu_hash", models.CharField(max_length=32)),
                ("changes", models.JSONField(blank=True, default=list)),
                (
                    "venue",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="menu_snapshots",
                        to="scout.discoveredvenue",
                    ),
                ),
            ],
            options={
                "db_table": "menu_snapshots",
                "ordering": ["-taken_at"],
                "get_latest_by": "taken_at",
            },
        ),
    ]
