"""
Django models for the Delivery Scout service.

Models:
- DiscoveryStrategy: Search query templates with performance metrics and tier
- SearchEngineCredential: Quota-limited search backend credentials
- Chain: Registry of multi-location brands with pre-verified products
- DiscoveredVenue: Venue candidates emitted by discovery for intake
- DiscoveredDish: Menu items extracted from (or pre-verified for) a venue
- BudgetDay / ThrottleEvent: Per-day spend counters and throttle history
- FeedbackRecord: Append-only review outcomes driving the learning loop
- PipelineRun: Run-level counters for discovery, extraction and learning
"""

import uuid

from django.db import models
from django.utils import timezone


def utc_today():
    return timezone.now().date()


class Platform(models.TextChoices):
    """Food-delivery platforms."""

    UBER_EATS = "uber_eats", "Uber Eats"
    WOLT = "wolt", "Wolt"
    LIEFERANDO = "lieferando", "Lieferando"
    JUST_EAT = "just_eat", "Just Eat"
    DELIVEROO = "deliveroo", "Deliveroo"
    SMOOD = "smood", "Smood"
    GLOVO = "glovo", "Glovo"


class Country(models.TextChoices):
    """Countries the service operates in."""

    DE = "DE", "Germany"
    AT = "AT", "Austria"
    CH = "CH", "Switzerland"
    IT = "IT", "Italy"
    ES = "ES", "Spain"
    FR = "FR", "France"
    UK = "UK", "United Kingdom"
    NL = "NL", "Netherlands"
    BE = "BE", "Belgium"
    PL = "PL", "Poland"


class StrategyTier(models.IntegerChoices):
    """Coarse performance bucket controlling scheduling priority."""

    HIGH = 1, "High"
    MEDIUM = 2, "Medium"
    LOW = 3, "Low"


class StrategyOrigin(models.TextChoices):
    """How a strategy came to exist."""

    SEED = "seed", "Seed"
    EVOLVED = "evolved", "Evolved"
    MANUAL = "manual", "Manual"
    AGENT = "agent", "Agent Generated"


class SearchBackendType(models.TextChoices):
    GOOGLE_CSE = "google_cse", "Google Custom Search"
    SERPAPI = "serpapi", "SerpAPI"


class FeedbackResult(models.TextChoices):
    TRUE_POSITIVE = "true_positive", "True Positive"
    FALSE_POSITIVE = "false_positive", "False Positive"
    ERROR = "error", "Error"


class VenueStatus(models.TextChoices):
    """Intake status of a discovered venue."""

    DISCOVERED = "discovered", "Discovered"
    EXTRACTED = "extracted", "Extracted"
    VERIFIED = "verified", "Verified"
    REJECTED = "rejected", "Rejected"


class DishSource(models.TextChoices):
    EXTRACTION = "extraction", "Page Extraction"
    CHAIN = "chain", "Chain Registry"


class RunKind(models.TextChoices):
    DISCOVERY = "discovery", "Discovery"
    EXTRACTION = "extraction", "Extraction"
    LEARNING = "learning", "Learning"
    PIPELINE = "pipeline", "Quality Pipeline"


class RunStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    RUNNING = "running", "Running"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    CANCELLED = "cancelled", "Cancelled"


class FailedOperationType(models.TextChoices):
    DISH_EXTRACTION = "dish_extraction", "Dish Extraction"
    MENU_PERSIST = "menu_persist", "Menu Persist"


class FailedOperationStatus(models.TextChoices):
    PENDING_RETRY = "pending_retry", "Pending Retry"
    REQUIRES_MANUAL = "requires_manual", "Requires Manual Review"
    RESOLVED = "resolved", "Resolved"


class DiscoveryStrategy(models.Model):
    """
    A parametrized search-query template scoped to a platform and country.

    Templates may reference {product} and {city}. Strategies are never hard
    deleted: deprecation sets deprecated_at and drops the tier to LOW.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    query_template = models.CharField(
        max_length=500,
        help_text="Search query template, e.g. '{product} {city}'",
    )
    platform = models.CharField(max_length=20, choices=Platform.choices)
    country = models.CharField(max_length=2, choices=Country.choices)

    tier = models.PositiveSmallIntegerField(
        choices=StrategyTier.choices,
        default=StrategyTier.MEDIUM,
        help_text="Only the learning loop changes this field",
    )
    origin = models.CharField(
        max_length=10, choices=StrategyOrigin.choices, default=StrategyOrigin.SEED
    )

    # Metrics
    success_rate = models.PositiveSmallIntegerField(
        default=50,
        help_text="Percent of reviewed discoveries that were true positives",
    )
    total_uses = models.IntegerField(default=0)
    successful_discoveries = models.IntegerField(default=0)
    false_positives = models.IntegerField(default=0)

    last_used_at = models.DateTimeField(null=True, blank=True)
    deprecated_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "discovery_strategies"
        ordering = ["tier", "-success_rate"]
        verbose_name_plural = "Discovery strategies"
        indexes = [
            models.Index(fields=["platform", "country"], name="discovery_s_platfor_3f1a2c_idx"),
            models.Index(fields=["tier", "success_rate"], name="discovery_s_tier_8d4e61_idx"),
        ]

    def __str__(self):
        return f"[T{self.tier}] {self.platform}/{self.country}: {self.query_template}"

    @property
    def is_active(self) -> bool:
        return self.deprecated_at is None

    def render_query(self, product: str = "", city: str = "") -> str:
        """Fill the template placeholders and collapse whitespace."""
        query = self.query_template.replace("{product}", product or "")
        query = query.replace("{city}", city or "")
        return " ".join(query.split())


class SearchEngineCredential(models.Model):
    """
    Credentials for one search backend with a daily free quota.

    used_today resets to 0 at the UTC day boundary (tracked via quota_date).
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=100, unique=True)
    backend = models.CharField(
        max_length=20,
        choices=SearchBackendType.choices,
        default=SearchBackendType.GOOGLE_CSE,
    )
    api_key = models.CharField(max_length=255)
    engine_id = models.CharField(
        max_length=255, blank=True, help_text="Custom Search engine id (cx)"
    )

    # Quota
    daily_free_quota = models.IntegerField(default=100)
    used_today = models.IntegerField(default=0)
    quota_date = models.DateField(default=utc_today)
    uses_paid_budget = models.BooleanField(
        default=False,
        help_text="May serve paid queries once all free quotas are exhausted",
    )

    # Health
    is_active = models.BooleanField(default=True)
    consecutive_failures = models.IntegerField(default=0)
    last_used_at = models.DateTimeField(null=True, blank=True)
    last_error = models.TextField(blank=True)

    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "search_engine_credentials"
        ordering = ["name"]

    def __str__(self):
        return f"{self.name} ({self.used_today}/{self.daily_free_quota})"

    @property
    def remaining_free(self) -> int:
        return max(0, self.daily_free_quota - self.used_today)


class Chain(models.Model):
    """
    A known multi-location brand with a pre-verified product list.

    products is a list of {"name", "product_tag", "price_amount", "price_currency"}.
    """

    name = models.CharField(max_length=200, unique=True)
    aliases = models.JSONField(default=list, blank=True)
    countries = models.JSONField(
        default=list, blank=True, help_text="Country codes; empty means all"
    )
    products = models.JSONField(default=list, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "chains"
        ordering = ["name"]

    def __str__(self):
        return self.name

    def operates_in(self, country: str) -> bool:
        return not self.countries or country in self.countries


class DiscoveredVenue(models.Model):
    """Venue candidate created by discovery and consumed by intake/review."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=300)
    url = models.URLField(max_length=1000)
    normalized_url = models.CharField(max_length=1000, unique=True)
    platform = models.CharField(max_length=20, choices=Platform.choices)
    venue_id = models.CharField(max_length=255, blank=True)

    resolved_country = models.CharField(max_length=2, choices=Country.choices)
    configured_country = models.CharField(
        max_length=2, choices=Country.choices, blank=True
    )
    chain = models.ForeignKey(
        Chain, on_delete=models.SET_NULL, null=True, blank=True, related_name="venues"
    )
    brand_misuse_flag = models.BooleanField(default=False)
    raw_snippet = models.TextField(blank=True)

    status = models.CharField(
        max_length=20, choices=VenueStatus.choices, default=VenueStatus.DISCOVERED
    )
    extraction_skipped = models.BooleanField(
        default=False, help_text="Chain products were used instead of page extraction"
    )
    strategy = models.ForeignKey(
        DiscoveryStrategy,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="venues",
    )
    run = models.ForeignKey(
        "PipelineRun",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="venues",
    )

    last_extracted_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "discovered_venues"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["platform", "resolved_country"], name="discovered__platfor_9a0b3d_idx"),
            models.Index(fields=["status", "created_at"], name="discovered__status_2c6f14_idx"),
        ]

    def __str__(self):
        return f"{self.name} ({self.platform}/{self.resolved_country})"


class DiscoveredDish(models.Model):
    """A menu item for a venue. Validity is re-checked, never stored."""

    venue = models.ForeignKey(
        DiscoveredVenue, on_delete=models.CASCADE, related_name="dishes"
    )
    name = models.CharField(max_length=300)
    description = models.TextField(blank=True)
    price_amount = models.DecimalField(
        max_digits=10, decimal_places=2, null=True, blank=True
    )
    price_currency = models.CharField(max_length=3, blank=True)
    category = models.CharField(max_length=200, blank=True)
    product_tag = models.CharField(max_length=100, blank=True)
    confidence = models.FloatField(default=0.0)
    source = models.CharField(
        max_length=20, choices=DishSource.choices, default=DishSource.EXTRACTION
    )
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "discovered_dishes"
        ordering = ["venue", "name"]
        verbose_name_plural = "Discovered dishes"

    def __str__(self):
        return f"{self.name} @ {self.venue_id}"


class BudgetDay(models.Model):
    """
    Spend counters for one UTC calendar day.

    Mutated only through BudgetGovernor, which increments inside
    transaction.atomic() with a row lock.
    """

    date = models.DateField(unique=True)
    search_queries_free = models.IntegerField(default=0)
    search_queries_paid = models.IntegerField(default=0)
    ai_calls = models.JSONField(
        default=dict, blank=True, help_text="Call counts keyed by provider"
    )
    search_cost = models.DecimalField(max_digits=12, decimal_places=4, default=0)
    ai_cost = models.DecimalField(max_digits=12, decimal_places=4, default=0)
    total_cost = models.DecimalField(max_digits=12, decimal_places=4, default=0)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "budget_days"
        ordering = ["-date"]

    def __str__(self):
        return f"Budget {self.date}: ${self.total_cost}"

    @property
    def total_search_queries(self) -> int:
        return self.search_queries_free + self.search_queries_paid


class ThrottleEvent(models.Model):
    budget_day = models.ForeignKey(
        BudgetDay, on_delete=models.CASCADE, related_name="throttle_events"
    )
    timestamp = models.DateTimeField(default=timezone.now)
    reason = models.CharField(max_length=500)

    class Meta:
        db_table = "throttle_events"
        ordering = ["timestamp"]

    def __str__(self):
        return f"{self.timestamp:%Y-%m-%d %H:%M} {self.reason}"


class FeedbackRecord(models.Model):
    """
    Review outcome for a discovered subject. Append-only.

    strategy_id is free text so feedback can reference strategies that were
    never stored (e.g. "agent-generated").
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    subject_id = models.CharField(max_length=255)
    platform = models.CharField(max_length=20, choices=Platform.choices)
    country = models.CharField(max_length=2, choices=Country.choices)
    strategy_id = models.CharField(max_length=64, blank=True, db_index=True)
    result_type = models.CharField(max_length=20, choices=FeedbackResult.choices)
    reviewed_at = models.DateTimeField(default=timezone.now)
    notes = models.TextField(blank=True)

    class Meta:
        db_table = "feedback_records"
        ordering = ["-reviewed_at"]
        indexes = [
            models.Index(fields=["platform", "country"], name="feedback_re_platfor_71d2e8_idx"),
            models.Index(fields=["reviewed_at"], name="feedback_re_reviewe_c4a90f_idx"),
        ]

    def __str__(self):
        return f"{self.result_type} {self.platform}/{self.country} ({self.subject_id})"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("FeedbackRecord is append-only")
        super().save(*args, **kwargs)


class PipelineRun(models.Model):
    """Run-level record for discovery, extraction, learning and full pipeline runs."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    kind = models.CharField(max_length=20, choices=RunKind.choices)
    status = models.CharField(
        max_length=20, choices=RunStatus.choices, default=RunStatus.PENDING
    )
    config = models.JSONField(default=dict, blank=True)
    stats = models.JSONField(default=dict, blank=True)
    error_message = models.TextField(blank=True)

    created_at = models.DateTimeField(default=timezone.now)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "pipeline_runs"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["kind", "created_at"], name="pipeline_ru_kind_5b7c0e_idx"),
        ]

    def __str__(self):
        return f"{self.kind} run {self.id} ({self.status})"

    @property
    def duration_seconds(self):
        """Calculate run duration."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def start(self):
        """Mark run as started."""
        self.status = RunStatus.RUNNING
        self.started_at = timezone.now()
        self.save(update_fields=["status", "started_at"])

    def complete(self, stats: dict = None, status: str = RunStatus.COMPLETED, error_message: str = ""):
        """Mark run as finished and store its counters."""
        self.status = status
        self.completed_at = timezone.now()
        if stats is not None:
            self.stats = stats
        if error_message:
            self.error_message = error_message
        self.save(update_fields=["status", "completed_at", "stats", "error_message"])


class FailedOperation(models.Model):
    """
    Dead-letter entry for a venue operation that failed.

    Retried by DeadLetterQueue with exponential backoff; once attempts
    reaches max_attempts the entry is escalated to manual review.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    operation_type = models.CharField(max_length=30, choices=FailedOperationType.choices)
    venue = models.ForeignKey(
        DiscoveredVenue,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="failed_operations",
    )
    platform = models.CharField(max_length=20, choices=Platform.choices, blank=True)
    country = models.CharField(max_length=2, choices=Country.choices, blank=True)
    error = models.TextField()
    context = models.JSONField(default=dict, blank=True)

    status = models.CharField(
        max_length=20,
        choices=FailedOperationStatus.choices,
        default=FailedOperationStatus.PENDING_RETRY,
    )
    attempts = models.IntegerField(default=0)
    max_attempts = models.IntegerField(default=5)
    next_retry_at = models.DateTimeField(null=True, blank=True)
    manual_review_reason = models.CharField(max_length=500, blank=True)

    created_at = models.DateTimeField(default=timezone.now)
    last_attempt_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "failed_operations"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "next_retry_at"], name="failed_oper_status_e41b7a_idx"),
        ]

    def __str__(self):
        return f"{self.operation_type} {self.status} ({self.attempts}/{self.max_attempts})"


class MenuSnapshot(models.Model):
    """
    Extracted menu of a venue at one point in time.

    changes lists what happened to tracked dishes (those with a product
    tag) since the previous snapshot of the same venue.
    """

    venue = models.ForeignKey(
        DiscoveredVenue, on_delete=models.CASCADE, related_name="menu_snapshots"
    )
    taken_at = models.DateTimeField(default=timezone.now)
    dishes = models.JSONField(default=list, blank=True)
    dish_count = models.IntegerField(default=0)
    tracked_dish_count = models.IntegerField(default=0)
    menu_hash = models.CharField(max_length=32)
    changes = models.JSONField(default=list, blank=True)

    class Meta:
        db_table = "menu_snapshots"
        ordering = ["-taken_at"]
        get_latest_by = "taken_at"

    def __str__(self):
        return f"Menu of {self.venue_id} at {self.taken_at:%Y-%m-%d %H:%M}"

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)
