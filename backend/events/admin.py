# events/admin.py
"""
Django admin configuration for event store models.

Events are read-only in admin (they're immutable).
Checkpoints are shown for diagnosing streams; their keys are never edited
here, only their error counters can be reset.
"""

from django.contrib import admin
from django.utils.html import format_html
import json

from .models import ContractEvent, EventCheckpoint


@admin.register(ContractEvent)
class ContractEventAdmin(admin.ModelAdmin):
    """
    Admin interface for ContractEvents.
    Read-only since events are immutable.
    """

    list_display = [
        "contract", "sequence", "event_type", "external_id", "occurred_at",
    ]
    list_filter = ["contract", "event_type", "occurred_at"]
    search_fields = ["event_type", "external_id"]
    date_hierarchy = "occurred_at"
    ordering = ["contract", "-sequence"]

    readonly_fields = [
        "contract", "sequence", "event_type", "data_formatted",
        "external_id", "payload_hash", "occurred_at", "recorded_at",
    ]

    fieldsets = (
        ("Event Identity", {
            "fields": ("contract", "sequence", "event_type"),
        }),
        ("Payload", {
            "fields": ("data_formatted", "payload_hash"),
        }),
        ("Upstream", {
            "fields": ("external_id",),
            "classes": ("collapse",),
        }),
        ("Timestamps", {
            "fields": ("occurred_at", "recorded_at"),
        }),
    )

    def data_formatted(self, obj):
        """Format JSON data for display."""
        return format_html(
            "<pre style='white-space: pre-wrap; max-width: 600px;'>{}</pre>",
            json.dumps(obj.data, indent=2, default=str),
        )
    data_formatted.short_description = "Data"

    def has_add_permission(self, request):
        return False  # Events arrive through import_events only

    def has_change_permission(self, request, obj=None):
        return False  # Events are immutable

    def has_delete_permission(self, request, obj=None):
        return False  # Events are immutable


@admin.register(EventCheckpoint)
class EventCheckpointAdmin(admin.ModelAdmin):

    list_display = [
        "contract", "last_key", "lag", "last_processed_at", "error_count",
    ]
    search_fields = ["contract"]
    ordering = ["contract"]

    readonly_fields = [
        "contract", "last_key", "last_processed_at", "error_count",
        "last_error", "created_at", "updated_at",
    ]

    actions = ["reset_errors"]

    def lag(self, obj):
        return obj.get_lag()
    lag.short_description = "Lag"

    def has_add_permission(self, request):
        return False  # Written by the indexing engine

    def has_delete_permission(self, request, obj=None):
        return False  # Checkpoints are never deleted

    @admin.action(description="Reset error counts")
    def reset_errors(self, request, queryset):
        updated = queryset.update(error_count=0, last_error="")
        self.message_user(request, f"Reset errors for {updated} checkpoint(s).")
