# events/serializers.py
"""
Serializers for the indexer's read-only API.
"""

from rest_framework import serializers

from events.models import ContractEvent, EventCheckpoint
from indexer.models import IndexerStreamStatus


class ContractEventSerializer(serializers.ModelSerializer):

    class Meta:
        model = ContractEvent
        fields = [
            'contract',
            'sequence',
            'event_type',
            'data',
            'external_id',
            'payload_hash',
            'occurred_at',
            'recorded_at',
        ]
        read_only_fields = fields


class EventCheckpointSerializer(serializers.ModelSerializer):
    """Checkpoint with the number of stored events still ahead of it."""

    lag = serializers.SerializerMethodField()

    class Meta:
        model = EventCheckpoint
        fields = [
            'contract',
            'last_key',
            'last_processed_at',
            'error_count',
            'last_error',
            'lag',
            'updated_at',
        ]
        read_only_fields = fields

    def get_lag(self, obj) -> int:
        return obj.get_lag()


class IndexerStreamStatusSerializer(serializers.ModelSerializer):

    class Meta:
        model = IndexerStreamStatus
        fields = [
            'contract',
            'state',
            'last_key',
            'last_error',
            'halted_at',
            'updated_at',
        ]
        read_only_fields = fields
