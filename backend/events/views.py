# events/views.py
"""
Indexer API views.

Read-only views over the event store, the checkpoints and the stream
statuses. All endpoints require authentication.
"""

from rest_framework import generics
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated

from events.models import ContractEvent, EventCheckpoint
from events.serializers import (
    ContractEventSerializer,
    EventCheckpointSerializer,
    IndexerStreamStatusSerializer,
)
from indexer.models import IndexerStreamStatus


class EventListView(generics.ListAPIView):
    """
    List stored events, newest first.

    GET /api/indexer/events/

    Supports filtering by:
    - contract: Stream identifier (exact match)
    - event_type: Filter by event type (exact match)
    - after: Events with a sequence greater than this
    """

    serializer_class = ContractEventSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        qs = ContractEvent.objects.order_by('-recorded_at', '-id')

        contract = self.request.query_params.get('contract')
        if contract:
            qs = qs.filter(contract=contract)

        event_type = self.request.query_params.get('event_type')
        if event_type:
            qs = qs.filter(event_type=event_type)

        after = self.request.query_params.get('after')
        if after:
            try:
                qs = qs.filter(sequence__gt=int(after))
            except ValueError:
                raise ValidationError({'after': 'Must be an integer.'})

        return qs[:1000]  # Limit for safety


class EventDetailView(generics.RetrieveAPIView):
    """
    GET /api/indexer/events/<contract>/<sequence>/
    """

    serializer_class = ContractEventSerializer
    permission_classes = [IsAuthenticated]
    queryset = ContractEvent.objects.all()

    def get_object(self):
        return generics.get_object_or_404(
            self.get_queryset(),
            contract=self.kwargs['contract'],
            sequence=self.kwargs['sequence'],
        )


class CheckpointListView(generics.ListAPIView):
    """
    GET /api/indexer/checkpoints/

    Shows how far each contract stream has been indexed.
    """

    serializer_class = EventCheckpointSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        return EventCheckpoint.objects.order_by('contract')


class StreamStatusListView(generics.ListAPIView):
    """
    GET /api/indexer/streams/

    Shows the lifecycle state of each contract stream.
    """

    serializer_class = IndexerStreamStatusSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        return IndexerStreamStatus.objects.order_by('contract')
