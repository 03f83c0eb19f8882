# events/emitter.py
"""
Event ingestion.

Upstream contract events enter the event store only through these functions,
which ensure:
1. Idempotency by upstream document id (re-importing is a no-op)
2. Proper sequencing (the store assigns the per-contract key)
3. Payload hashes, so a document that changed upstream is detected

Upstream documents look like:

    {"id": "0xabc...-3", "type": "KYCGranted", "account": "0x12...", "token": "0x9f..."}

``id`` and ``type`` are envelope fields; everything else is the event's fields.
"""

from datetime import datetime, timezone as dt_timezone
from typing import Any, Dict, Mapping, Optional, Tuple
import logging

from django.db import IntegrityError, transaction
from django.utils import timezone

from events.models import ContractEvent
from events.serialization import compute_payload_hash


logger = logging.getLogger(__name__)

ENVELOPE_FIELDS = ("id", "type")


class InvalidEventDocument(ValueError):
    """An upstream document is missing its envelope fields."""
    pass


class EventConflict(ValueError):
    """
    A document id was imported before with different contents.

    Stored events are immutable; the upstream store changed a document it
    already published.
    """

    def __init__(self, contract: str, external_id: str, stored_hash: str, new_hash: str):
        self.contract = contract
        self.external_id = external_id
        self.stored_hash = stored_hash
        self.new_hash = new_hash
        super().__init__(
            f"{contract} document {external_id} changed upstream "
            f"(stored {stored_hash[:12]}, received {new_hash[:12]})"
        )


def _occurred_at(data: Mapping[str, Any]) -> Optional[datetime]:
    """Event time from its unix ``timestamp`` field, when it has one."""
    value = data.get("timestamp")
    if isinstance(value, bool):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=dt_timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def split_document(document: Mapping[str, Any]) -> Tuple[str, str, Dict[str, Any]]:
    """
    Split an upstream document into (external_id, event_type, fields).

    Raises:
        InvalidEventDocument: ``id`` or ``type`` is missing or empty
    """
    missing = [f for f in ENVELOPE_FIELDS if not str(document.get(f) or "").strip()]
    if missing:
        raise InvalidEventDocument(f"Document missing {', '.join(missing)}: {dict(document)!r}"[:500])

    fields = {k: v for k, v in document.items() if k not in ENVELOPE_FIELDS}
    return str(document["id"]), str(document["type"]), fields


def append_event(
    *,
    contract: str,
    event_type: str,
    data: Dict[str, Any],
    external_id: str,
    occurred_at: Optional[datetime] = None,
) -> Tuple[ContractEvent, bool]:
    """
    Store one upstream event.

    Args:
        contract: Stream the event belongs to ("issuer", "lender", ...)
        event_type: Upstream type discriminator
        data: Event fields
        external_id: Upstream document id (idempotency key within the contract)
        occurred_at: Event time; defaults to the ``timestamp`` field, then now

    Returns:
        (event, created): the stored event and whether this call created it

    Raises:
        ValueError: If external_id is missing
        EventConflict: If external_id exists with a different payload
    """
    if not external_id or not str(external_id).strip():
        raise ValueError("external_id is required")

    payload_hash = compute_payload_hash({"type": event_type, **data})
    if occurred_at is None:
        occurred_at = _occurred_at(data) or timezone.now()

    # Quick idempotency check (common case)
    existing = ContractEvent.objects.filter(contract=contract, external_id=external_id).first()
    if existing:
        return _check_existing(existing, payload_hash), False

    try:
        with transaction.atomic():
            event = ContractEvent.objects.create(
                contract=contract,
                event_type=event_type,
                data=data,
                external_id=external_id,
                payload_hash=payload_hash,
                occurred_at=occurred_at,
            )
    except IntegrityError:
        # Another importer stored the same document first.
        existing = ContractEvent.objects.filter(contract=contract, external_id=external_id).first()
        if existing is None:
            raise
        return _check_existing(existing, payload_hash), False

    logger.debug(
        f"Stored {contract} event {event.sequence} ({event_type})",
        extra={"contract": contract, "key": event.sequence, "external_id": external_id},
    )
    return event, True


def append_document(contract: str, document: Mapping[str, Any]) -> Tuple[ContractEvent, bool]:
    """Store an upstream document as-is (see ``split_document``)."""
    external_id, event_type, fields = split_document(document)
    return append_event(
        contract=contract,
        event_type=event_type,
        data=fields,
        external_id=external_id,
    )


def _check_existing(event: ContractEvent, payload_hash: str) -> ContractEvent:
    if event.payload_hash and event.payload_hash != payload_hash:
        raise EventConflict(event.contract, event.external_id, event.payload_hash, payload_hash)
    return event
