# indexer/management/commands/run_indexers.py
"""
Management command to run the contract indexers.

Usage:
    # Index every configured contract, then follow new events (daemon mode)
    python manage.py run_indexers

    # Only the lender contract
    python manage.py run_indexers --contract lender

    # Replay the issuer stream from the beginning (checkpoint is kept)
    python manage.py run_indexers --ignore-last-commit issuer

    # Catch up with the backlog and exit
    python manage.py run_indexers --once

SIGINT/SIGTERM stop the streams gracefully: the event in flight finishes and
its checkpoint is written before the process exits.
"""

import signal
import threading

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.core.management.base import BaseCommand, CommandError

from events.sources import DatabaseEventSource
from indexer.backoff import RetryPolicy
from indexer.runner import IndexerSupervisor, build_engine


class Command(BaseCommand):
    """Run one indexing engine per contract."""

    help = "Index contract events into the read models"

    def add_arguments(self, parser):
        parser.add_argument(
            "--contract",
            action="append",
            dest="contracts",
            help="Contract to index (repeatable; default: INDEXER_CONTRACTS)",
        )
        parser.add_argument(
            "--ignore-last-commit",
            action="append",
            dest="ignore_last_commit",
            default=[],
            metavar="CONTRACT",
            help="Start this contract from the beginning of its stream (repeatable)",
        )
        parser.add_argument(
            "--once",
            action="store_true",
            help="Process the current backlog and exit instead of following new events",
        )
        parser.add_argument(
            "--poll-interval",
            type=float,
            help="Seconds between polls for new events (default: INDEXER_POLL_INTERVAL)",
        )
        parser.add_argument(
            "--processor-retries",
            type=int,
            help="Extra attempts for a failing event before its stream halts "
                 "(default: INDEXER_PROCESSOR_RETRIES)",
        )

    def handle(self, *args, **options):
        contracts = options["contracts"] or list(settings.INDEXER_CONTRACTS)
        replay = set(options["ignore_last_commit"])

        unknown = replay - set(contracts)
        if unknown:
            raise CommandError(
                f"--ignore-last-commit names contract(s) not being indexed: {', '.join(sorted(unknown))}"
            )

        if options["processor_retries"] is not None and options["processor_retries"] < 0:
            raise CommandError("--processor-retries must be zero or more")

        policy = RetryPolicy.from_settings(processor_retries=options["processor_retries"])
        source = DatabaseEventSource(poll_interval=options["poll_interval"])
        stop_event = threading.Event()

        try:
            engines = [
                build_engine(
                    contract,
                    ignore_last_commit=contract in replay,
                    policy=policy,
                    source=source,
                    stop_event=stop_event,
                )
                for contract in contracts
            ]
            supervisor = IndexerSupervisor(engines)
        except ImproperlyConfigured as e:
            raise CommandError(str(e))

        if options["once"]:
            self.stdout.write(f"Catching up: {', '.join(contracts)}")
            supervisor.run_once()
        else:
            self._run_daemon(supervisor)

        self._report(supervisor)

    def _run_daemon(self, supervisor):
        self.stdout.write(
            f"Indexing {', '.join(supervisor.contracts)} (Ctrl+C to stop)"
        )

        def _shutdown(signum, frame):
            self.stdout.write(self.style.WARNING("\nStopping indexers..."))
            supervisor.stop()

        previous = {
            sig: signal.signal(sig, _shutdown)
            for sig in (signal.SIGINT, signal.SIGTERM)
        }
        try:
            supervisor.start()
            supervisor.wait()
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)

    def _report(self, supervisor):
        for contract in supervisor.contracts:
            processed = supervisor.processed.get(contract, 0)
            error = supervisor.errors.get(contract)
            if error is not None:
                self.stdout.write(
                    self.style.ERROR(f"  {contract}: halted after {processed} events: {error}")
                )
            else:
                self.stdout.write(
                    self.style.SUCCESS(f"  {contract}: processed {processed} events")
                )

        if supervisor.errors:
            raise CommandError(
                f"Halted streams: {', '.join(sorted(supervisor.errors))}"
            )
