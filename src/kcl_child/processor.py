"""
Record Processor Interface
==========================

The capability interface implemented by user code.

One RecordProcessor instance serves one shard for the lifetime of the
process. Every hook is a coroutine; returning from it is the completion
signal for the action, and raising from it is fatal to the process.

Lifecycle:
    initialize → process_records* → (shutdown_requested → process_records*)*
               → lease_lost | shard_ended

Example:
    class Printer(RecordProcessor):
        async def initialize(self, initialization_input):
            self.shard_id = initialization_input.shard_id

        async def process_records(self, process_records_input):
            for record in process_records_input.records:
                handle(record.data)
            await process_records_input.checkpointer.checkpoint()

        async def lease_lost(self, lease_lost_input):
            pass

        async def shard_ended(self, shard_ended_input):
            await shard_ended_input.checkpointer.checkpoint()
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional

from kcl_child.models.record import Record

if TYPE_CHECKING:
    from kcl_child.engine.checkpointer import Checkpointer


@dataclass(frozen=True)
class InitializationInput:
    """
    Attributes:
        shard_id: Shard assigned to this process
        sequence_number: Checkpoint processing resumes after, if any
        sub_sequence_number: Sub-sequence part of that checkpoint
    """

    shard_id: str
    sequence_number: Optional[str] = None
    sub_sequence_number: Optional[int] = None


@dataclass(frozen=True)
class ProcessRecordsInput:
    """
    Attributes:
        records: Records in shard order
        millis_behind_latest: How far the batch is behind the tip of the shard
        checkpointer: Checkpoint handle valid until process_records returns
    """

    records: List[Record]
    millis_behind_latest: int
    checkpointer: "Checkpointer" = field(repr=False)


@dataclass(frozen=True)
class LeaseLostInput:
    """The lease was taken by another worker; checkpointing is not possible."""


@dataclass(frozen=True)
class ShardEndedInput:
    """The shard was split or merged; checkpoint to mark it finished."""

    checkpointer: "Checkpointer" = field(repr=False)


@dataclass(frozen=True)
class ShutdownRequestedInput:
    """The worker is shutting down; a last chance to checkpoint."""

    checkpointer: "Checkpointer" = field(repr=False)


class RecordProcessor(ABC):
    """
    Base class for shard record processors.

    Subclasses must implement initialize, process_records, lease_lost and
    shard_ended. shutdown_requested is optional; processors that do not
    override it are acknowledged without being called.
    """

    @abstractmethod
    async def initialize(self, initialization_input: InitializationInput) -> None:
        """Called once before any records are delivered."""

    @abstractmethod
    async def process_records(self, process_records_input: ProcessRecordsInput) -> None:
        """Called for every batch of records."""

    @abstractmethod
    async def lease_lost(self, lease_lost_input: LeaseLostInput) -> None:
        """Called when another worker owns the shard. Terminal."""

    @abstractmethod
    async def shard_ended(self, shard_ended_input: ShardEndedInput) -> None:
        """
        Called when the end of the shard is reached. Terminal.

        Implementations should checkpoint before returning; otherwise the
        daemon does not consider the shard complete and child shards wait.
        """

    async def shutdown_requested(self, shutdown_requested_input: ShutdownRequestedInput) -> None:
        """Optional hook called when the worker is asked to shut down."""

    def supports_shutdown_requested(self) -> bool:
        """Whether this processor overrides shutdown_requested."""
        return type(self).shutdown_requested is not RecordProcessor.shutdown_requested
