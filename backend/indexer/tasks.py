"""
Celery tasks for background indexing.

Tasks:
- index_contract_backlog: Catch one contract stream up with its backlog
- check_indexer_health: Periodic check of stream states and checkpoint lag

A backlog task and the run_indexers daemon must not work on the same
contract at the same time; the checkpoint store does not arbitrate between
writers.

Usage:
    from indexer.tasks import index_contract_backlog
    index_contract_backlog.delay("issuer")
"""
import logging

from celery import shared_task
from django.conf import settings

from indexer.backoff import RetryPolicy
from indexer.errors import IndexerHalted, SourceUnavailable

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    autoretry_for=(SourceUnavailable,),
    retry_backoff=True,
)
def index_contract_backlog(self, contract: str, ignore_last_commit: bool = False) -> dict:
    """
    Process every committed event of ``contract`` after its checkpoint.

    Returns:
        Dict with the number of events processed, or the halt reason

    Raises:
        SourceUnavailable: the event store stayed unreadable past
            INDEXER_TASK_SOURCE_RETRIES; Celery retries the task
    """
    from indexer.runner import build_engine

    logger.info(f"Catching up contract {contract}")

    # A bounded source budget lets an outage fail the task so Celery retries it.
    policy = RetryPolicy.from_settings(source_retries=settings.INDEXER_TASK_SOURCE_RETRIES)
    engine = build_engine(contract, ignore_last_commit=ignore_last_commit, policy=policy)
    try:
        processed = engine.catch_up()
    except IndexerHalted as e:
        logger.error(f"Backlog task for {contract} halted: {e}", extra={"contract": contract})
        return {
            "contract": contract,
            "processed": engine.processed,
            "status": "halted",
            "error": e.to_dict(),
        }

    logger.info(f"Contract {contract} caught up: {processed} events processed")
    return {
        "contract": contract,
        "processed": processed,
        "status": "success",
    }


@shared_task(bind=True)
def check_indexer_health(self) -> dict:
    """
    Log halted streams and streams lagging past INDEXER_LAG_THRESHOLD.

    Designed to run periodically from celery beat.
    """
    from ops.health import stream_report

    report = stream_report()
    threshold = settings.INDEXER_LAG_THRESHOLD

    for contract, stream in report.items():
        if stream["state"] == "halted":
            logger.error(
                f"Indexer stream {contract} is halted: {stream['last_error']}",
                extra={"contract": contract},
            )
        elif stream["lag"] > threshold:
            logger.warning(
                f"Indexer stream {contract} is {stream['lag']} events behind",
                extra={"contract": contract, "lag": stream["lag"]},
            )

    return {"streams": report}
