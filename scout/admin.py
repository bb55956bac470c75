"""
Django admin configuration for Delivery Scout models.

Admin is the only UI. FeedbackRecord rows are append-only and cannot be
edited or deleted here; PipelineRun, BudgetDay and MenuSnapshot are written
by the pipeline and shown read-only. Failed operations can be requeued or
resolved by hand.
"""

from django.contrib import admin
from django.utils import timezone
from django.utils.html import format_html

from scout.extraction.snapshots import summarize_changes
from scout.monitoring.dead_letter import get_dead_letter_queue
from scout.models import (
    BudgetDay,
    Chain,
    DiscoveredDish,
    DiscoveredVenue,
    DiscoveryStrategy,
    FailedOperation,
    FailedOperationStatus,
    FeedbackRecord,
    MenuSnapshot,
    PipelineRun,
    RunStatus,
    SearchEngineCredential,
    ThrottleEvent,
)
from scout.strategies.store import StrategyStore


@admin.register(DiscoveryStrategy)
class DiscoveryStrategyAdmin(admin.ModelAdmin):
    list_display = [
        "query_template",
        "platform",
        "country",
        "tier",
        "origin",
        "success_rate",
        "total_uses",
        "successful_discoveries",
        "false_positives",
        "is_active_display",
    ]
    list_filter = ["platform", "country", "tier", "origin"]
    search_fields = ["query_template"]
    readonly_fields = [
        "id",
        "total_uses",
        "successful_discoveries",
        "false_positives",
        "last_used_at",
        "deprecated_at",
        "created_at",
        "updated_at",
    ]
    ordering = ["-success_rate", "tier"]
    actions = ["deprecate_strategies"]

    def is_active_display(self, obj):
        return obj.is_active
    is_active_display.boolean = True
    is_active_display.short_description = "Active"

    @admin.action(description="Deprecate selected strategies")
    def deprecate_strategies(self, request, queryset):
        store = StrategyStore()
        count = 0
        for strategy in queryset.filter(deprecated_at__isnull=True):
            store.deprecate(strategy)
            count += 1
        self.message_user(request, f"Deprecated {count} strategies.")


@admin.register(SearchEngineCredential)
class SearchEngineCredentialAdmin(admin.ModelAdmin):
    list_display = [
        "name",
        "backend",
        "is_active",
        "used_today",
        "daily_free_quota",
        "uses_paid_budget",
        "consecutive_failures",
        "last_used_at",
    ]
    list_filter = ["backend", "is_active", "uses_paid_budget"]
    search_fields = ["name"]
    readonly_fields = ["id", "used_today", "quota_date", "consecutive_failures",
                       "last_used_at", "last_error", "created_at"]
    actions = ["reset_quota"]

    @admin.action(description="Reset today's free quota usage")
    def reset_quota(self, request, queryset):
        count = queryset.update(used_today=0, quota_date=timezone.now().date())
        self.message_user(request, f"Reset quota on {count} credentials.")


@admin.register(Chain)
class ChainAdmin(admin.ModelAdmin):
    list_display = ["name", "is_active", "countries", "product_count"]
    list_filter = ["is_active"]
    search_fields = ["name"]

    def product_count(self, obj):
        return len(obj.products or [])
    product_count.short_description = "Products"


class DiscoveredDishInline(admin.TabularInline):
    model = DiscoveredDish
    extra = 0
    fields = ["name", "price_amount", "price_currency", "category", "product_tag", "source", "confidence"]
    readonly_fields = ["source", "confidence"]


@admin.register(DiscoveredVenue)
class DiscoveredVenueAdmin(admin.ModelAdmin):
    list_display = [
        "name",
        "platform",
        "resolved_country",
        "country_mismatch",
        "chain",
        "status",
        "extraction_skipped",
        "created_at",
    ]
    list_filter = ["platform", "resolved_country", "status", "extraction_skipped", "brand_misuse_flag"]
    search_fields = ["name", "url", "venue_id"]
    readonly_fields = ["id", "normalized_url", "strategy", "run", "last_extracted_at", "created_at"]
    raw_id_fields = ["chain"]
    inlines = [DiscoveredDishInline]

    def country_mismatch(self, obj):
        return bool(obj.configured_country) and obj.configured_country != obj.resolved_country
    country_mismatch.boolean = True
    country_mismatch.short_description = "Mismatch"


@admin.register(DiscoveredDish)
class DiscoveredDishAdmin(admin.ModelAdmin):
    list_display = ["name", "venue", "price_amount", "price_currency", "product_tag", "source", "confidence"]
    list_filter = ["source", "product_tag", "price_currency"]
    search_fields = ["name", "venue__name"]
    raw_id_fields = ["venue"]


class ThrottleEventInline(admin.TabularInline):
    model = ThrottleEvent
    extra = 0
    readonly_fields = ["timestamp", "reason"]
    can_delete = False


@admin.register(BudgetDay)
class BudgetDayAdmin(admin.ModelAdmin):
    list_display = [
        "date",
        "search_queries_free",
        "search_queries_paid",
        "total_search_queries",
        "search_cost",
        "ai_cost",
        "total_cost",
        "throttle_count",
    ]
    date_hierarchy = "date"
    list_filter = ["date"]
    readonly_fields = [
        "date",
        "search_queries_free",
        "search_queries_paid",
        "ai_calls",
        "search_cost",
        "ai_cost",
        "total_cost",
        "updated_at",
    ]
    inlines = [ThrottleEventInline]

    def throttle_count(self, obj):
        return obj.throttle_events.count()
    throttle_count.short_description = "Throttles"

    def has_add_permission(self, request):
        return False


@admin.register(FeedbackRecord)
class FeedbackRecordAdmin(admin.ModelAdmin):
    """Append-only: records can be added but never edited or deleted."""

    list_display = ["subject_id", "platform", "country", "strategy_id", "result_type", "reviewed_at"]
    list_filter = ["platform", "country", "result_type"]
    search_fields = ["subject_id", "strategy_id", "notes"]
    date_hierarchy = "reviewed_at"

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(PipelineRun)
class PipelineRunAdmin(admin.ModelAdmin):
    list_display = ["id", "kind", "status_badge", "started_at", "duration_display", "created_at"]
    list_filter = ["kind", "status"]
    search_fields = ["id", "error_message"]
    readonly_fields = [
        "id", "kind", "status", "config", "stats", "error_message",
        "created_at", "started_at", "completed_at",
    ]

    def status_badge(self, obj):
        colors = {
            RunStatus.PENDING: "gray",
            RunStatus.RUNNING: "blue",
            RunStatus.COMPLETED: "green",
            RunStatus.FAILED: "red",
            RunStatus.CANCELLED: "orange",
        }
        return format_html(
            '<span style="color: {};">{}</span>', colors.get(obj.status, "black"), obj.status.title()
        )
    status_badge.short_description = "Status"
    status_badge.admin_order_field = "status"

    def duration_display(self, obj):
        seconds = obj.duration_seconds
        if seconds is None:
            if obj.started_at and obj.status == RunStatus.RUNNING:
                seconds = (timezone.now() - obj.started_at).total_seconds()
            else:
                return "-"
        if seconds < 60:
            return f"{seconds:.1f}s"
        if seconds < 3600:
            return f"{seconds / 60:.1f}m"
        return f"{seconds / 3600:.1f}h"
    duration_display.short_description = "Duration"

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(FailedOperation)
class FailedOperationAdmin(admin.ModelAdmin):
    list_display = [
        "operation_type",
        "venue",
        "platform",
        "country",
        "status_badge",
        "attempts_display",
        "next_retry_at",
        "last_attempt_at",
    ]
    list_filter = ["status", "operation_type", "platform", "country"]
    search_fields = ["error", "venue__name", "manual_review_reason"]
    readonly_fields = [
        "id", "operation_type", "venue", "platform", "country", "error", "context",
        "attempts", "max_attempts", "next_retry_at", "created_at", "last_attempt_at",
    ]
    actions = ["requeue_operations", "mark_resolved"]

    def status_badge(self, obj):
        colors = {
            FailedOperationStatus.PENDING_RETRY: "orange",
            FailedOperationStatus.REQUIRES_MANUAL: "red",
            FailedOperationStatus.RESOLVED: "green",
        }
        return format_html(
            '<span style="color: {};">{}</span>',
            colors.get(obj.status, "black"),
            obj.get_status_display(),
        )
    status_badge.short_description = "Status"
    status_badge.admin_order_field = "status"

    def attempts_display(self, obj):
        return f"{obj.attempts}/{obj.max_attempts}"
    attempts_display.short_description = "Attempts"

    @admin.action(description="Retry selected operations now")
    def requeue_operations(self, request, queryset):
        count = get_dead_letter_queue().requeue(queryset)
        self.message_user(request, f"Requeued {count} failed operations.")

    @admin.action(description="Mark selected operations resolved")
    def mark_resolved(self, request, queryset):
        dlq = get_dead_letter_queue()
        count = 0
        for operation in queryset.exclude(status=FailedOperationStatus.RESOLVED):
            dlq.mark_resolved(operation)
            count += 1
        self.message_user(request, f"Resolved {count} failed operations.")


@admin.register(MenuSnapshot)
class MenuSnapshotAdmin(admin.ModelAdmin):
    list_display = ["venue", "taken_at", "dish_count", "tracked_dish_count", "change_summary"]
    list_filter = ["taken_at"]
    search_fields = ["venue__name"]
    date_hierarchy = "taken_at"
    raw_id_fields = ["venue"]

    def change_summary(self, obj):
        if not obj.changes:
            return "-"
        summary = summarize_changes(obj.changes)
        return ", ".join(f"{count} {kind.replace('_', ' ')}" for kind, count in summary.items() if count)
    change_summary.short_description = "Changes"

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
