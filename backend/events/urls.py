# events/urls.py
"""
URL configuration for the indexer API.
"""

from django.urls import path

from events.views import (
    CheckpointListView,
    EventDetailView,
    EventListView,
    StreamStatusListView,
)


app_name = "events"

urlpatterns = [
    # Event listing and detail
    path("events/", EventListView.as_view(), name="event-list"),
    path("events/<str:contract>/<int:sequence>/", EventDetailView.as_view(), name="event-detail"),

    # Stream progress
    path("checkpoints/", CheckpointListView.as_view(), name="checkpoint-list"),
    path("streams/", StreamStatusListView.as_view(), name="stream-list"),
]
