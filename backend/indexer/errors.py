# indexer/errors.py
"""
Failure taxonomy of the indexing engine.

Only IndexerHalted is fatal, and only for the contract stream that raised
it; the supervisor keeps every other stream running.

- SourceUnavailable: backlog/subscribe failed transiently. Retried with
  backoff while the stream stays paused at its checkpoint, forever unless
  the policy sets a source retry budget.
- ProcessorError: the contract's processor raised. The checkpoint is
  withheld; the event is retried per policy and then the stream halts.
- CheckpointWriteError: the processor succeeded but the checkpoint could not
  be persisted. Retried with backoff, then the stream halts. Moving on to the
  next event would risk a silent gap.
- IndexerHalted: the stream stopped and needs an operator.

A malformed or unknown event payload is not an error at all.
"""

from typing import Any, Dict, Optional


class IndexerError(Exception):
    """
    Base class for indexer failures.

    Carries the contract stream and, where known, the event key involved.
    """

    def __init__(
        self,
        message: str,
        contract: Optional[str] = None,
        key: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.contract = contract
        self.key = key
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a dictionary for logging/diagnostics."""
        return {
            'error_type': self.__class__.__name__,
            'message': str(self),
            'contract': self.contract,
            'key': self.key,
            'details': self.details,
        }


class SourceUnavailable(IndexerError):
    """The event source could not be read."""
    pass


class CheckpointReadError(SourceUnavailable):
    """The stored checkpoint could not be read; retried like the source."""
    pass


class ProcessorError(IndexerError):
    """The contract's processor failed on an event."""
    pass


class CheckpointWriteError(IndexerError):
    """A checkpoint could not be persisted."""
    pass


class IndexerHalted(IndexerError):
    """
    The stream stopped on an unrecoverable failure.

    ``cause`` is the ProcessorError or CheckpointWriteError that exhausted
    its retries.
    """

    def __init__(
        self,
        message: str,
        cause: Optional[IndexerError] = None,
        contract: Optional[str] = None,
        key: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, contract, key, details)
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        if self.cause:
            result['cause'] = self.cause.to_dict()
        return result
