# indexer/admin.py
"""Django admin for stream statuses."""

from django.contrib import admin
from django.utils.html import format_html

from .models import IndexerStreamStatus


@admin.register(IndexerStreamStatus)
class IndexerStreamStatusAdmin(admin.ModelAdmin):
    list_display = ["contract", "state_badge", "last_key", "halted_at", "updated_at"]
    list_filter = ["state"]
    ordering = ["contract"]
    readonly_fields = ["contract", "state", "last_key", "last_error", "halted_at", "updated_at"]

    def state_badge(self, obj):
        color = "#c0392b" if obj.is_halted else "#27ae60"
        return format_html('<span style="color: {};">{}</span>', color, obj.get_state_display())
    state_badge.short_description = "State"

    def has_add_permission(self, request):
        return False  # Reported by the running engines

    def has_change_permission(self, request, obj=None):
        return False
