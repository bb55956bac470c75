"""
Migration: Initial schema for strategies, search credentials, venues,
dishes, chains, budget tracking, feedback and pipeline runs.
"""

import uuid

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models

import scout.models


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

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="DiscoveryStrategy",
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
                    "query_template",
                    models.CharField(
                        help_text="Search query template, e.g. '{product} {city}'",
                        max_length=500,
                    ),
                ),
                ("platform", models.CharField(choices=PLATFORM_CHOICES, max_length=20)),
                ("country", models.CharField(choices=COUNTRY_CHOICES, max_length=2)),
                (
                    "tier",
                    models.PositiveSmallIntegerField(
                        choices=[(1, "High"), (2, "Medium"), (3, "Low")],
                        default=2,
                        help_text="Only the learning loop changes this field",
                    ),
                ),
                (
                    "origin",
                    models.CharField(
                        choices=[
                            ("seed", "Seed"),
                            ("evolved", "Evolved"),
                            ("manual", "Manual"),
                            ("agent", "Agent Generated"),
                        ],
                        default="seed",
                        max_length=10,
                    ),
                ),
                (
                    "success_rate",
                    models.PositiveSmallIntegerField(
                        default=50,
                        help_text="Percent of reviewed discoveries that were true positives",
                    ),
                ),
                ("total_uses", models.IntegerField(default=0)),
                ("successful_discoveries", models.IntegerField(default=0)),
                ("false_positives", models.IntegerField(default=0)),
                ("last_used_at", models.DateTimeField(blank=True, null=True)),
                ("deprecated_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "discovery_strategies",
                "ordering": ["tier", "-success_rate"],
                "verbose_name_plural": "Discovery strategies",
                "indexes": [
                    models.Index(
                        fields=["platform", "country"],
                        name="discovery_s_platfor_3f1a2c_idx",
                    ),
                    models.Index(
                        fields=["tier", "success_rate"],
                        name="discovery_s_tier_8d4e61_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="SearchEngineCredential",
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
                ("name", models.CharField(max_length=100, unique=True)),
                (
                    "backend",
                    models.CharField(
                        choices=[
                            ("google_cse", "Google Custom Search"),
                            ("serpapi", "SerpAPI"),
                        ],
                        default="google_cse",
                        max_length=20,
                    ),
                ),
                ("api_key", models.CharField(max_length=255)),
                (
                    "engine_id",
                    models.CharField(
                        blank=True,
                        help_text="Custom Search engine id (cx)",
                        max_length=255,
                    ),
                ),
                ("daily_free_quota", models.IntegerField(default=100)),
                ("used_today", models.IntegerField(default=0)),
                ("quota_date", models.DateField(default=scout.models.utc_today)),
                (
                    "uses_paid_budget",
                    models.BooleanField(
                        default=False,
                        help_text="May serve paid queries once all free quotas are exhausted",
                    ),
                ),
                ("is_active", models.BooleanField(default=True)),
                ("consecutive_failures", models.IntegerField(default=0)),
                ("last_used_at", models.DateTimeField(blank=True, null=True)),
                ("last_error", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                "db_table": "search_engine_credentials",
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="Chain",
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
                ("name", models.CharField(max_length=200, unique=True)),
                ("aliases", models.JSONField(blank=True, default=list)),
                (
                    "countries",
                    models.JSONField(
                        blank=True,
                        default=list,
                        help_text="Country codes; empty means all",
                    ),
                ),
                ("products", models.JSONField(blank=True, default=list)),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                "db_table": "chains",
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="PipelineRun",
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
                    "kind",
                    models.CharField(
                        choices=[
                            ("discovery", "Discovery"),
                            ("extraction", "Extraction"),
                            ("learning", "Learning"),
                            ("pipeline", "Quality Pipeline"),
                        ],
                        max_length=20,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("running", "Running"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                            ("cancelled", "Cancelled"),
                        ],
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("config", models.JSONField(blank=True, default=dict)),
                ("stats", models.JSONField(blank=True, default=dict)),
                ("error_message", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "db_table": "pipeline_runs",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["kind", "created_at"],
                        name="pipeline_ru_kind_5b7c0e_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="DiscoveredVenue",
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
                ("name", models.CharField(max_length=300)),
                ("url", models.URLField(max_length=1000)),
                ("normalized_url", models.CharField(max_length=1000, unique=True)),
                ("platform", models.CharField(choices=PLATFORM_CHOICES, max_length=20)),
                ("venue_id", models.CharField(blank=True, max_length=255)),
                (
                    "resolved_country",
                    models.CharField(choices=COUNTRY_CHOICES, max_length=2),
                ),
                (
                    "configured_country",
                    models.CharField(blank=True, choices=COUNTRY_CHOICES, max_length=2),
                ),
                ("brand_misuse_flag", models.BooleanField(default=False)),
                ("raw_snippet", models.TextField(blank=True)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("discovered", "Discovered"),
                            ("extracted", "Extracted"),
                            ("verified", "Verified"),
                            ("rejected", "Rejected"),
                        ],
                        default="discovered",
                        max_length=20,
                    ),
                ),
                (
                    "extraction_skipped",
                    models.BooleanField(
                        default=False,
                        help_text="Chain products were used instead of page extraction",
                    ),
                ),
                ("last_extracted_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "chain",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="venues",
                        to="scout.chain",
                    ),
                ),
                (
                    "strategy",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="venues",
                        to="scout.discoverystrategy",
                    ),
                ),
                (
                    "run",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="venues",
                        to="scout.pipelinerun",
                    ),
                ),
            ],
            options={
                "db_table": "discovered_venues",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["platform", "resolved_country"],
                        name="discovered__platfor_9a0b3d_idx",
                    ),
                    models.Index(
                        fields=["status", "created_at"],
                        name="discovered__status_2c6f14_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="DiscoveredDish",
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
                ("name", models.CharField(max_length=300)),
                ("description", models.TextField(blank=True)),
                (
                    "price_amount",
                    models.DecimalField(
                        blank=True, decimal_places=2, max_digits=10, null=True
                    ),
                ),
                ("price_currency", models.CharField(blank=True, max_length=3)),
                ("category", models.CharField(blank=True, max_length=200)),
                ("product_tag", models.CharField(blank=True, max_length=100)),
                ("confidence", models.FloatField(default=0.0)),
                (
                    "source",
                    models.CharField(
                        choices=[
                            ("extraction", "Page Extraction"),
                            ("chain", "Chain Registry"),
                        ],
                        default="extraction",
                        max_length=20,
                    ),
                ),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "venue",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="dishes",
                        to="scout.discoveredvenue",
                    ),
                ),
            ],
            options={
                "db_table": "discovered_dishes",
                "ordering": ["venue", "name"],
                "verbose_name_plural": "Discovered dishes",
            },
        ),
        migrations.CreateModel(
            name="BudgetDay",
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
                ("date", models.DateField(unique=True)),
                ("search_queries_free", models.IntegerField(default=0)),
                ("search_queries_paid", models.IntegerField(default=0)),
                (
                    "ai_calls",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Call counts keyed by provider",
                    ),
                ),
                (
                    "search_cost",
                    models.DecimalField(decimal_places=4, default=0, max_digits=12),
                ),
                (
                    "ai_cost",
                    models.DecimalField(decimal_places=4, default=0, max_digits=12),
                ),
                (
                    "total_cost",
                    models.DecimalField(decimal_places=4, default=0, max_digits=12),
                ),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "budget_days",
                "ordering": ["-date"],
            },
        ),
        migrations.CreateModel(
            name="ThrottleEvent",
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
                ("timestamp", models.DateTimeField(default=django.utils.timezone.now)),
                ("reason", models.CharField(max_length=500)),
                (
                    "budget_day",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="throttle_events",
                        to="scout.budgetday",
                    ),
                ),
            ],
            options={
                "db_table": "throttle_events",
                "ordering": ["timestamp"],
            },
        ),
        migrations.CreateModel(
            name="FeedbackRecord",
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
                ("subject_id", models.CharField(max_length=255)),
                ("platform", models.CharField(choices=PLATFORM_CHOICES, max_length=20)),
                ("country", models.CharField(choices=COUNTRY_CHOICES, max_length=2)),
                (
                    "strategy_id",
                    models.CharField(blank=True, db_index=True, max_length=64),
                ),
                (
                    "result_type",
                    models.CharField(
                        choices=[
                            ("true_positive", "True Positive"),
                            ("false_positive", "False Positive"),
                            ("error", "Error"),
                        ],
                        max_length=20,
                    ),
                ),
                ("reviewed_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("notes", models.TextField(blank=True)),
            ],
            options={
                "db_table": "feedback_records",
                "ordering": ["-reviewed_at"],
                "indexes": [
                    models.Index(
                        fields=["platform", "country"],
                        name="feedback_re_platfor_71d2e8_idx",
                    ),
                    models.Index(
                        fields=["reviewed_at"],
                        name="feedback_re_reviewe_c4a90f_idx",
                    ),
                ],
            },
        ),
    ]
