"""
Management command to seed default discovery strategies.

Creates one seed strategy per template for every supported
(platform, country) pair. Existing (platform, country, template)
combinations are left alone, so the command is safe to re-run.

Usage:
    python manage.py seed_strategies
    python manage.py seed_strategies --platform lieferando
    python manage.py seed_strategies --dry-run
"""

from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from scout.exceptions import ConfigurationError
from scout.models import DiscoveryStrategy, StrategyOrigin, StrategyTier
from scout.platforms.registry import available_platforms, get_adapter

DEFAULT_TEMPLATES = [
    "{product}",
    "{product} {city}",
    "{product} chicken",
    "{product} kebab",
    "{product} vegan bowl",
]


class Command(BaseCommand):
    help = "Seed default discovery strategies for every supported platform/country"

    def add_arguments(self, parser):
        parser.add_argument(
            "--platform",
            action="append",
            dest="platforms",
            help="Platform to seed (repeatable, default: all registered)",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be seeded without making changes",
        )

    def handle(self, *args, **options):
        dry_run = options["dry_run"]
        platforms = options["platforms"] or available_platforms()

        if dry_run:
            self.stdout.write(self.style.WARNING("DRY RUN - No changes will be made"))

        to_create = []
        skipped = 0
        for platform in platforms:
            try:
                adapter = get_adapter(platform)
            except ConfigurationError as e:
                raise CommandError(str(e))

            for country in adapter.supported_countries:
                existing = set(
                    DiscoveryStrategy.objects.filter(platform=platform, country=country)
                    .values_list("query_template", flat=True)
                )
                for template in DEFAULT_TEMPLATES:
                    if template in existing:
                        skipped += 1
                        continue
                    to_create.append(
                        DiscoveryStrategy(
                            query_template=template,
                            platform=platform,
                            country=country,
                            tier=StrategyTier.MEDIUM,
                            origin=StrategyOrigin.SEED,
                        )
                    )

        for strategy in to_create:
            self.stdout.write(f"  + {strategy.platform}/{strategy.country}: {strategy.query_template}")

        if dry_run:
            self.stdout.write(f"\nWould create {len(to_create)} strategies ({skipped} already exist)")
            return

        with transaction.atomic():
            DiscoveryStrategy.objects.bulk_create(to_create)

        self.stdout.write(
            self.style.SUCCESS(f"Created {len(to_create)} strategies ({skipped} already exist)")
        )
