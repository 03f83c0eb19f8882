# projections/management/commands/rebuild_projection.py
"""
Management command to rebuild a contract's read models from its events.

This is the core disaster recovery / maintenance tool for the read models.
Events are the source of truth; read models can always be rebuilt.

The processor's rows and applied-event markers are deleted, then the whole
stream is replayed from the beginning. The stored checkpoint is left where it
is (it only ever moves forward). Stop run_indexers for the contract first.

Usage:
    # Rebuild the lender read models
    python manage.py rebuild_projection --contract lender

    # Show what would happen without writing
    python manage.py rebuild_projection --contract lender --dry-run

    # List contracts with a registered processor
    python manage.py rebuild_projection --list
"""

import logging
import time

from django.core.management.base import BaseCommand, CommandError

from events.models import ContractEvent
from indexer.errors import IndexerHalted
from indexer.runner import build_engine
from projections.base import processor_registry

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    """Rebuild read models from the event store."""

    help = "Rebuild a contract's read models from the event store"

    def add_arguments(self, parser):
        parser.add_argument(
            "--contract",
            type=str,
            help="Contract whose read models to rebuild",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would happen without making changes",
        )
        parser.add_argument(
            "--list",
            action="store_true",
            help="List contracts with a registered processor",
        )

    def handle(self, *args, **options):
        if options["list"]:
            return self._list_processors()

        contract = options["contract"]
        if not contract:
            raise CommandError("Must specify --contract <name> or --list")

        processor = processor_registry.get(contract)
        if processor is None:
            available = ", ".join(processor_registry.contracts())
            raise CommandError(f"Unknown contract: {contract}\nAvailable: {available}")

        total_events = ContractEvent.objects.filter(contract=contract).count()
        self.stdout.write(f"\nRebuilding {processor.name}")
        self.stdout.write(f"  Events to replay: {total_events:,}")

        if options["dry_run"]:
            self.stdout.write(self.style.WARNING("\n[DRY RUN] No changes made."))
            return

        start_time = time.time()

        self.stdout.write("  Clearing existing data...")
        processor.reset()

        self.stdout.write("  Replaying events...")
        engine = build_engine(contract, ignore_last_commit=True)
        try:
            processed = engine.catch_up()
        except IndexerHalted as e:
            logger.exception(f"Read model rebuild failed: {contract}")
            raise CommandError(f"Rebuild of {contract} halted after {engine.processed} events: {e}")

        elapsed = time.time() - start_time
        rate = processed / elapsed if elapsed > 0 else 0
        self.stdout.write(
            self.style.SUCCESS(
                f"  Complete: {processed:,} events in {elapsed:.2f}s "
                f"({rate:.0f} events/sec)"
            )
        )

    def _list_processors(self):
        self.stdout.write("\nRegistered processors:\n")

        for processor in processor_registry.all():
            self.stdout.write(f"  {processor.contract}: {processor.name}")

        self.stdout.write(f"\nTotal: {len(processor_registry.contracts())} processors")
