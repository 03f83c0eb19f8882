"""
Health check endpoints for operations monitoring.

Provides health checks for:
- Database connectivity (all configured databases)
- Celery broker (Redis) connectivity
- Indexer streams (halted streams, checkpoint lag)

Endpoints:
- /_health/live    - Kubernetes liveness probe (is the process running?)
- /_health/ready   - Kubernetes readiness probe (can we serve traffic?)
- /_health/full    - Full health report (for debugging/dashboards)
"""
import logging
import time
from typing import Dict, Any

import redis

from django.conf import settings
from django.db import connections
from django.http import JsonResponse
from django.views import View

logger = logging.getLogger(__name__)


def stream_report() -> Dict[str, Dict[str, Any]]:
    """
    State and lag of every known contract stream.

    A stream is known once it has a checkpoint, a persisted status, or is
    configured in INDEXER_CONTRACTS.
    """
    from events.models import ContractEvent, EventCheckpoint
    from indexer.models import IndexerStreamStatus

    checkpoints = {c.contract: c for c in EventCheckpoint.objects.all()}
    statuses = {s.contract: s for s in IndexerStreamStatus.objects.all()}
    contracts = sorted(set(settings.INDEXER_CONTRACTS) | set(checkpoints) | set(statuses))

    report = {}
    for contract in contracts:
        checkpoint = checkpoints.get(contract)
        status = statuses.get(contract)

        if checkpoint is not None:
            lag = checkpoint.get_lag()
        else:
            lag = ContractEvent.objects.filter(contract=contract).count()

        report[contract] = {
            "state": status.state if status else "unknown",
            "checkpoint": checkpoint.last_key if checkpoint else None,
            "lag": lag,
            "error_count": checkpoint.error_count if checkpoint else 0,
            "last_error": status.last_error if status else "",
        }
    return report


class HealthCheck:
    """Health check implementation."""

    @staticmethod
    def check_database(alias: str = "default") -> Dict[str, Any]:
        """Check database connectivity."""
        start = time.time()
        try:
            conn = connections[alias]
            conn.ensure_connection()
            with conn.cursor() as cursor:
                cursor.execute("SELECT 1")
                cursor.fetchone()
            duration_ms = (time.time() - start) * 1000
            return {
                "status": "healthy",
                "alias": alias,
                "duration_ms": round(duration_ms, 2),
            }
        except Exception as e:
            duration_ms = (time.time() - start) * 1000
            return {
                "status": "unhealthy",
                "alias": alias,
                "error": str(e),
                "duration_ms": round(duration_ms, 2),
            }

    @staticmethod
    def check_all_databases() -> Dict[str, Any]:
        """Check all configured databases."""
        results = {}
        all_healthy = True

        for alias in settings.DATABASES.keys():
            result = HealthCheck.check_database(alias)
            results[alias] = result
            if result["status"] != "healthy":
                all_healthy = False

        return {
            "status": "healthy" if all_healthy else "degraded",
            "databases": results,
        }

    @staticmethod
    def check_broker() -> Dict[str, Any]:
        """Check the Celery broker (Redis) used for backlog tasks."""
        if getattr(settings, "CELERY_TASK_ALWAYS_EAGER", False):
            return {"status": "skipped", "reason": "Tasks run eagerly"}

        start = time.time()
        try:
            client = redis.from_url(settings.CELERY_BROKER_URL)
            client.ping()
            duration_ms = (time.time() - start) * 1000
            return {
                "status": "healthy",
                "duration_ms": round(duration_ms, 2),
            }
        except Exception as e:
            duration_ms = (time.time() - start) * 1000
            return {
                "status": "unhealthy",
                "error": str(e),
                "duration_ms": round(duration_ms, 2),
            }

    @staticmethod
    def check_streams() -> Dict[str, Any]:
        """Check indexer streams: any halted stream is unhealthy, lag degrades."""
        try:
            streams = stream_report()
        except Exception as e:
            return {
                "status": "error",
                "error": str(e),
            }

        lag_threshold = settings.INDEXER_LAG_THRESHOLD
        halted = [c for c, s in streams.items() if s["state"] == "halted"]
        lagging = [c for c, s in streams.items() if s["lag"] >= lag_threshold]

        if halted:
            status = "unhealthy"
        elif lagging:
            status = "degraded"
        else:
            status = "healthy"

        return {
            "status": status,
            "threshold": lag_threshold,
            "halted": halted,
            "lagging": lagging,
            "streams": streams,
        }

    @staticmethod
    def get_full_health() -> Dict[str, Any]:
        """Get comprehensive health report."""
        checks = {
            "databases": HealthCheck.check_all_databases(),
            "broker": HealthCheck.check_broker(),
            "streams": HealthCheck.check_streams(),
        }

        # Determine overall status
        statuses = [c.get("status", "unknown") for c in checks.values()]
        if all(s == "healthy" or s == "skipped" for s in statuses):
            overall = "healthy"
        elif any(s == "unhealthy" for s in statuses):
            overall = "unhealthy"
        else:
            overall = "degraded"

        return {
            "status": overall,
            "checks": checks,
            "version": getattr(settings, "VERSION", "unknown"),
            "environment": "production" if not settings.DEBUG else "development",
        }


class LivenessView(View):
    """
    Kubernetes liveness probe.

    Returns 200 if the process is running.
    This should be very fast and not check external dependencies.
    """

    def get(self, request):
        return JsonResponse({"status": "alive"})


class ReadinessView(View):
    """
    Kubernetes readiness probe.

    Returns 200 if the service can handle traffic.
    Checks database connectivity.
    """

    def get(self, request):
        db_check = HealthCheck.check_database("default")

        if db_check["status"] == "healthy":
            return JsonResponse({
                "status": "ready",
                "database": db_check,
            })
        else:
            return JsonResponse({
                "status": "not_ready",
                "database": db_check,
            }, status=503)


class FullHealthView(View):
    """
    Full health check for debugging and dashboards.

    Returns comprehensive health information.
    Should be protected in production (internal network only).
    """

    def get(self, request):
        health = HealthCheck.get_full_health()

        status_code = 200 if health["status"] == "healthy" else 503
        return JsonResponse(health, status=status_code)
