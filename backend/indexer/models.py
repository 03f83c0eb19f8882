# indexer/models.py
"""
Per-contract stream health.

The engine reports its lifecycle here so processes other than the one
running the stream (the web process serving /_health, the admin) can tell
a halted stream from a running one.
"""

from django.db import models


class IndexerStreamStatus(models.Model):

    class State(models.TextChoices):
        STARTING = "starting", "Starting"
        CATCHING_UP = "catching_up", "Catching up"
        LIVE = "live", "Live"
        HALTED = "halted", "Halted"
        STOPPED = "stopped", "Stopped"

    contract = models.CharField(max_length=64, unique=True)

    state = models.CharField(
        max_length=20,
        choices=State.choices,
        default=State.STARTING,
    )

    last_key = models.BigIntegerField(
        null=True,
        blank=True,
        help_text="Last event key the stream processed",
    )

    last_error = models.TextField(
        blank=True,
        default="",
        help_text="Error that halted the stream",
    )

    halted_at = models.DateTimeField(null=True, blank=True)

    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Indexer Stream Status"
        verbose_name_plural = "Indexer Stream Statuses"

    def __str__(self):
        return f"{self.contract}: {self.state}"

    @property
    def is_halted(self) -> bool:
        return self.state == self.State.HALTED
