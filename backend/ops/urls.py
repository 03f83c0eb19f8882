"""
Operations endpoints, mounted outside the authenticated API.

/_health/ is served from ``urlpatterns``; /_metrics/ from
``metrics_patterns``. Restrict both to the internal network in production.
"""
from django.urls import path

from ops.health import FullHealthView, LivenessView, ReadinessView
from ops.metrics import MetricsView

urlpatterns = [
    path("live", LivenessView.as_view(), name="health-live"),
    path("ready", ReadinessView.as_view(), name="health-ready"),
    path("full", FullHealthView.as_view(), name="health-full"),
]

metrics_patterns = [
    path("", MetricsView.as_view(), name="metrics"),
]
