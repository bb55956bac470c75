"""
Management command to run the quality pipeline.

Usage:
    python manage.py run_pipeline                       # Full pass
    python manage.py run_pipeline --dry-run             # Gates + learning preview only
    python manage.py run_pipeline --platform lieferando --country DE --max-queries 10
    python manage.py run_pipeline --skip-discovery --skip-extraction
    python manage.py run_pipeline --stats               # Strategy and budget overview
"""

from django.core.management.base import BaseCommand, CommandError

from scout.exceptions import ConfigurationError
from scout.platforms.registry import available_platforms, get_adapter


class Command(BaseCommand):
    help = "Run source gates, discovery, extraction, verification and learning"

    def add_arguments(self, parser):
        parser.add_argument(
            "--platform",
            action="append",
            dest="platforms",
            help="Platform to include (repeatable, default: all registered)",
        )
        parser.add_argument(
            "--country",
            action="append",
            dest="countries",
            help="Country code to include (repeatable, default: all supported)",
        )
        parser.add_argument(
            "--max-queries",
            type=int,
            default=None,
            help="Cap on search queries for the discovery step",
        )
        parser.add_argument(
            "--limit",
            type=int,
            default=20,
            help="Maximum venues to extract (default: 20)",
        )
        parser.add_argument("--skip-discovery", action="store_true", help="Skip the discovery step")
        parser.add_argument("--skip-extraction", action="store_true", help="Skip the extraction step")
        parser.add_argument("--skip-learning", action="store_true", help="Skip the learning step")
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Report gates and tier changes without searching, extracting or writing tiers",
        )
        parser.add_argument(
            "--stats",
            action="store_true",
            help="Show strategy and budget statistics and exit",
        )

    def handle(self, *args, **options):
        if options["stats"]:
            self._show_statistics()
            return

        platforms = options["platforms"] or []
        for platform in platforms:
            try:
                get_adapter(platform)
            except ConfigurationError as e:
                raise CommandError(str(e))

        if options["dry_run"]:
            self.stdout.write(self.style.WARNING("DRY RUN - No searches, extraction or tier writes"))

        from scout.pipeline import QualityPipeline

        report = QualityPipeline().run(
            platforms=platforms,
            countries=[c.upper() for c in options["countries"] or []],
            max_queries=options["max_queries"],
            extraction_limit=options["limit"],
            dry_run=options["dry_run"],
            skip_discovery=options["skip_discovery"],
            skip_extraction=options["skip_extraction"],
            skip_learning=options["skip_learning"],
        )

        self._print_report(report)
        self.stdout.write(self.style.SUCCESS(f"Pipeline run {report.run_id} completed"))

    def _print_report(self, report):
        gates = report.steps.get("gates", {})
        self.stdout.write("\nSource gates:")
        for source in gates.get("healthy", []):
            self.stdout.write(
                f"  OK       {source['platform']}/{source['country']}: "
                f"{source['success_rate']}% ({source['samples']} samples)"
            )
        for source in gates.get("excluded", []):
            self.stdout.write(
                self.style.WARNING(
                    f"  EXCLUDED {source['platform']}/{source['country']}: {source['reason']}"
                )
            )

        for step in ("discovery", "extraction", "learning"):
            data = report.steps.get(step, {})
            if data.get("skipped"):
                self.stdout.write(f"\n{step.title()}: skipped ({data.get('reason')})")
            elif data.get("error"):
                self.stdout.write(self.style.ERROR(f"\n{step.title()}: {data['error']}"))
            else:
                self.stdout.write(f"\n{step.title()}:")
                stats = data.get("stats", data)
                for key, value in stats.items():
                    if isinstance(value, (int, float, bool, str)):
                        self.stdout.write(f"  {key}: {value}")

        verification = report.steps.get("verification", {})
        self.stdout.write(
            f"\nVerification: {len(verification.get('venues', {}))} venues, "
            f"{verification.get('invalid_dishes', 0)} invalid dishes"
        )

    def _show_statistics(self):
        from scout.budget.governor import get_budget_governor
        from scout.strategies.store import StrategyStore

        stats = StrategyStore().get_stats()
        tiers = stats["tiers"]
        self.stdout.write("\n=== Strategy Statistics ===")
        self.stdout.write(f"Active strategies: {tiers['total']}")
        self.stdout.write(f"  Tier 1: {tiers['high']}")
        self.stdout.write(f"  Tier 2: {tiers['medium']}")
        self.stdout.write(f"  Tier 3: {tiers['low']}")
        self.stdout.write(f"  Untested: {tiers['untested']}")
        for origin, count in sorted(stats["by_origin"].items()):
            self.stdout.write(f"  Origin {origin}: {count}")

        if stats["top_strategies"]:
            self.stdout.write("\nTop strategies:")
            for s in stats["top_strategies"]:
                self.stdout.write(
                    f"  [{s['success_rate']}%] {s['platform']}/{s['country']}: {s['query_template']}"
                )
        if stats["struggling_strategies"]:
            self.stdout.write("\nStruggling strategies:")
            for s in stats["struggling_strategies"]:
                self.stdout.write(
                    self.style.WARNING(
                        f"  [{s['success_rate']}%] {s['platform']}/{s['country']}: {s['query_template']}"
                    )
                )

        budget = get_budget_governor().get_status()
        self.stdout.write("\n=== Budget ===")
        for key, value in budget.items():
            self.stdout.write(f"  {key}: {value}")

        self.stdout.write(f"\nRegistered platforms: {', '.join(available_platforms())}")
