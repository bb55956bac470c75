"""
Tests for the Celery tasks.

Tasks are called directly; agents and the extractor are patched where a
task would otherwise reach the network or a browser.
"""

from datetime import timedelta
from unittest.mock import Mock, patch

import pytest


@pytest.mark.django_db
class TestRunDiscovery:
    """Tests for the run_discovery task."""

    def test_configuration_error_reported(self, strategy):
        """Without search credentials the task fails cleanly."""
        from scout.models import PipelineRun
        from scout.tasks import run_discovery

        result = run_discovery(platforms=["lieferando"], countries=["DE"])

        assert result["status"] == "failed"
        assert "credentials" in result["error"]
        assert PipelineRun.objects.count() == 0

    def test_passes_config_to_agent(self):
        from scout.tasks import run_discovery

        with patch("scout.discovery.agent.DiscoveryAgent") as mock_agent:
            mock_agent.return_value.run.return_value.to_dict.return_value = {"state": "done"}
            result = run_discovery(platforms=["uber_eats"], countries=["CH"], max_queries=5, city="Zurich")

        config = mock_agent.call_args[0][0]
        assert config.platforms == ["uber_eats"]
        assert config.countries == ["CH"]
        assert config.max_queries == 5
        assert config.city == "Zurich"
        assert result == {"status": "completed", "state": "done"}


@pytest.mark.django_db
class TestRunExtraction:
    """Tests for the run_extraction task."""

    def test_nothing_pending(self):
        from scout.models import PipelineRun
        from scout.tasks import run_extraction

        result = run_extraction()

        assert result == {"status": "completed", "venues_attempted": 0}
        assert PipelineRun.objects.count() == 0

    def test_extracts_pending_venues(self, venue):
        from scout.extraction.agent import ExtractionResult
        from scout.models import PipelineRun, RunKind, RunStatus
        from scout.tasks import run_extraction

        extractor = Mock(return_value=ExtractionResult(venues_attempted=1, venues_succeeded=1, dishes_valid=4))
        with patch("scout.extraction.agent.extract_venues", extractor):
            result = run_extraction(limit=5)

        assert [v.pk for v in extractor.call_args[0][0]] == [venue.pk]
        assert result["venues_succeeded"] == 1
        assert result["dishes_valid"] == 4

        run = PipelineRun.objects.get(pk=result["run_id"])
        assert run.kind == RunKind.EXTRACTION
        assert run.status == RunStatus.COMPLETED
        assert run.stats["venues_attempted"] == 1

    def test_failure_marks_run_failed(self, venue):
        from scout.models import PipelineRun, RunStatus
        from scout.tasks import run_extraction

        with patch("scout.extraction.agent.extract_venues", side_effect=RuntimeError("no browser")):
            with pytest.raises(RuntimeError):
                run_extraction()

        run = PipelineRun.objects.get()
        assert run.status == RunStatus.FAILED
        assert run.error_message == "no browser"


@pytest.mark.django_db
class TestMaintenanceTasks:
    """Tests for learning, quota reset and budget retention tasks."""

    def test_learning_cycle_records_run(self):
        from scout.models import PipelineRun, RunKind, RunStatus
        from scout.tasks import run_learning_cycle

        result = run_learning_cycle(dry_run=True)

        run = PipelineRun.objects.get(pk=result["run_id"])
        assert run.kind == RunKind.LEARNING
        assert run.status == RunStatus.COMPLETED
        assert run.config == {"window_days": None, "dry_run": True}
        assert result["feedback_analyzed"] == 0

    def test_reset_search_quotas(self, credential):
        from scout.models import utc_today
        from scout.tasks import reset_search_quotas

        credential.used_today = 3
        credential.quota_date = utc_today() - timedelta(days=1)
        credential.save()

        result = reset_search_quotas()

        assert result == {"status": "completed", "credentials_reset": 1}
        credential.refresh_from_db()
        assert credential.used_today == 0
        assert credential.quota_date == utc_today()

    def test_purge_budget_history(self):
        from scout.models import BudgetDay, utc_today
        from scout.tasks import purge_budget_history

        today = utc_today()
        BudgetDay.objects.create(date=today - timedelta(days=120))
        BudgetDay.objects.create(date=today - timedelta(days=10))

        result = purge_budget_history(days=90)

        assert result == {"status": "completed", "days_purged": 1}
        assert list(BudgetDay.objects.values_list("date", flat=True)) == [today - timedelta(days=10)]

    def test_quality_pipeline_task(self):
        from scout.tasks import run_quality_pipeline

        report = Mock()
        report.to_dict.return_value = {"run_id": "r-1", "dry_run": True, "steps": {}}
        with patch("scout.pipeline.QualityPipeline") as mock_pipeline:
            mock_pipeline.return_value.run.return_value = report
            result = run_quality_pipeline(countries=["DE"], dry_run=True)

        assert result == {"status": "completed", "run_id": "r-1", "dry_run": True, "steps": {}}
        assert mock_pipeline.return_value.run.call_args[1]["dry_run"] is True
