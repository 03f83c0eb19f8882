"""
Prometheus metrics endpoint.

Exposes indexer metrics in Prometheus format for scraping.

Metrics updated by the indexing engine (through MetricsObserver):
- indexer_stream_state: 1 for the current state of each contract stream
- indexer_events_processed_total: Events handed to a processor successfully
- indexer_checkpoint_key: Last persisted checkpoint per contract
- indexer_events_skipped_total: Records dropped for being at/below the cursor
- indexer_processor_failures_total: Failed processor calls
- indexer_checkpoint_failures_total: Failed checkpoint writes
- indexer_source_failures_total: Event source read failures

Metrics collected at scrape time:
- indexer_events_stored: Events in the store by contract and type
- indexer_stream_lag: Events after the checkpoint per contract
- indexer_request_duration_seconds: HTTP request duration histogram
"""
import logging
import re
import time

from django.db import models
from django.http import HttpResponse
from django.views import View
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

logger = logging.getLogger(__name__)


# Stream metrics (pushed by the engine)
STREAM_STATE = Gauge(
    "indexer_stream_state",
    "Current state of a contract stream (1 = in this state)",
    ["contract", "state"],
)

EVENTS_PROCESSED = Counter(
    "indexer_events_processed_total",
    "Events processed successfully",
    ["contract"],
)

CHECKPOINT_KEY = Gauge(
    "indexer_checkpoint_key",
    "Last persisted checkpoint key",
    ["contract"],
)

EVENTS_SKIPPED = Counter(
    "indexer_events_skipped_total",
    "Records dropped because their key was at or below the cursor",
    ["contract"],
)

PROCESSOR_FAILURES = Counter(
    "indexer_processor_failures_total",
    "Processor calls that raised",
    ["contract"],
)

CHECKPOINT_FAILURES = Counter(
    "indexer_checkpoint_failures_total",
    "Checkpoint writes that failed",
    ["contract"],
)

SOURCE_FAILURES = Counter(
    "indexer_source_failures_total",
    "Event source reads that failed",
    ["contract"],
)

# Store metrics (collected on scrape)
EVENTS_STORED = Gauge(
    "indexer_events_stored",
    "Events in the event store",
    ["contract", "event_type"],
)

STREAM_LAG = Gauge(
    "indexer_stream_lag",
    "Events stored after the contract's checkpoint",
    ["contract"],
)

# Request metrics
REQUEST_DURATION = Histogram(
    "indexer_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "status"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

ACTIVE_REQUESTS = Gauge(
    "indexer_active_requests",
    "Number of requests currently being processed",
)


def collect_metrics():
    """Collect current store-derived metric values."""
    from events.models import ContractEvent, EventCheckpoint

    try:
        event_counts = (
            ContractEvent.objects
            .values("contract", "event_type")
            .annotate(count=models.Count("id"))
        )
        for row in event_counts:
            EVENTS_STORED.labels(
                contract=row["contract"],
                event_type=row["event_type"],
            ).set(row["count"])

        for checkpoint in EventCheckpoint.objects.all():
            STREAM_LAG.labels(contract=checkpoint.contract).set(checkpoint.get_lag())
            CHECKPOINT_KEY.labels(contract=checkpoint.contract).set(checkpoint.last_key)

    except Exception as e:
        logger.error(f"Error collecting metrics: {e}")


def get_prometheus_response():
    """Generate Prometheus metrics response."""
    try:
        collect_metrics()
        output = generate_latest()
        return HttpResponse(output, content_type=CONTENT_TYPE_LATEST)

    except Exception as e:
        logger.error(f"Error generating metrics: {e}")
        return HttpResponse(
            f"# Error generating metrics: {e}\n",
            content_type="text/plain",
            status=500,
        )


class MetricsView(View):
    """
    Prometheus metrics endpoint.

    Exposes metrics in Prometheus format at /_metrics.
    Should be protected in production (internal network only).
    """

    def get(self, request):
        return get_prometheus_response()


def track_request_metrics(get_response):
    """
    Middleware to track request duration metrics.

    Add to MIDDLEWARE after SecurityMiddleware:
        "ops.metrics.track_request_metrics",
    """

    def middleware(request):
        start = time.time()
        ACTIVE_REQUESTS.inc()
        status = 500

        try:
            response = get_response(request)
            status = response.status_code
            return response
        finally:
            ACTIVE_REQUESTS.dec()
            duration = time.time() - start

            # Normalize endpoint for cardinality control
            endpoint = re.sub(r"/\d+/", "/{id}/", request.path)

            REQUEST_DURATION.labels(
                method=request.method,
                endpoint=endpoint[:50],  # Truncate long paths
                status=f"{status // 100}xx",
            ).observe(duration)

    return middleware
