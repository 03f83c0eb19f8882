# events/management/commands/import_events.py
"""
Management command to load upstream contract events into the event store.

The input is either a JSON array of documents or JSON lines (one document
per line). Each document carries its upstream ``id`` and ``type`` next to the
event's fields:

    {"id": "evt-1", "type": "AssetCreated", "token": "0x..", "name": "Gold", "symbol": "GLD", "timestamp": 1700000000}

Documents are stored in file order and keyed by their upstream id, so
re-running an import only appends what is new.

Usage:
    python manage.py import_events --contract issuer --in issuer-events.json
    python manage.py import_events --contract lender --in lender.jsonl --dry-run
"""

import json

from django.core.management.base import BaseCommand, CommandError

from events.emitter import EventConflict, InvalidEventDocument, append_document, split_document
from events.models import ContractEvent


def _read_documents(path):
    try:
        with open(path, encoding="utf-8") as f:
            text = f.read()
    except OSError as e:
        raise CommandError(f"Cannot read {path}: {e}")

    stripped = text.lstrip()
    if not stripped:
        return []

    if stripped.startswith("["):
        try:
            documents = json.loads(stripped)
        except json.JSONDecodeError as e:
            raise CommandError(f"{path} is not valid JSON: {e}")
    else:
        documents = []
        for lineno, line in enumerate(text.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                documents.append(json.loads(line))
            except json.JSONDecodeError as e:
                raise CommandError(f"{path}:{lineno} is not valid JSON: {e}")

    for index, document in enumerate(documents):
        if not isinstance(document, dict):
            raise CommandError(f"Document {index} in {path} is not an object")
    return documents


class Command(BaseCommand):
    """Import upstream contract events."""

    help = "Load upstream contract events (JSON array or JSON lines) into the event store"

    def add_arguments(self, parser):
        parser.add_argument(
            "--contract",
            required=True,
            help="Contract stream the events belong to",
        )
        parser.add_argument(
            "--in",
            dest="path",
            required=True,
            metavar="FILE",
            help="File with the upstream documents",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Validate the file and report what would be imported",
        )

    def handle(self, *args, **options):
        contract = options["contract"]
        documents = _read_documents(options["path"])

        if options["dry_run"]:
            return self._dry_run(contract, documents)

        created = 0
        existing = 0
        for index, document in enumerate(documents):
            try:
                event, was_created = append_document(contract, document)
            except (InvalidEventDocument, EventConflict) as e:
                raise CommandError(f"Document {index}: {e}")

            if was_created:
                created += 1
            else:
                existing += 1

        self.stdout.write(
            self.style.SUCCESS(
                f"Imported {created} {contract} events ({existing} already stored)"
            )
        )

    def _dry_run(self, contract, documents):
        ids = []
        for index, document in enumerate(documents):
            try:
                external_id, _, _ = split_document(document)
            except InvalidEventDocument as e:
                raise CommandError(f"Document {index}: {e}")
            ids.append(external_id)

        stored = set(
            ContractEvent.objects.filter(contract=contract, external_id__in=ids)
            .values_list("external_id", flat=True)
        )
        new = len([i for i in ids if i not in stored])

        self.stdout.write(f"{len(documents)} documents read for {contract}")
        self.stdout.write(f"  New: {new}")
        self.stdout.write(f"  Already stored: {len(ids) - new}")
        self.stdout.write(self.style.WARNING("[DRY RUN] No changes made."))
