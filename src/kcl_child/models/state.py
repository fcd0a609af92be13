"""
Engine State Models
===================

Lifecycle state owned by a single engine instance.

Core Concepts:
    - ProcessorState: Discrete lifecycle states of the record processor
    - EngineState: The one mutable object shared by the dispatcher and the
      checkpoint coordinator. Nothing outside the turn-processing loop
      mutates it.

Lifecycle:
    CREATED → INITIALIZING → PROCESSING
    PROCESSING → PROCESSING (processRecords, shutdownRequested)
    PROCESSING → SHUTTING_DOWN → TERMINATED (leaseLost, shardEnded)
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ProcessorState(str, Enum):
    """
    Lifecycle states for one shard's record processor.

    Attributes:
        CREATED: Process started, waiting for initialize
        INITIALIZING: initialize is in flight
        PROCESSING: Ready for records and lifecycle actions
        SHUTTING_DOWN: A terminal action is in flight
        TERMINATED: Terminal action acknowledged, engine exits
    """

    CREATED = "CREATED"
    INITIALIZING = "INITIALIZING"
    PROCESSING = "PROCESSING"
    SHUTTING_DOWN = "SHUTTING_DOWN"
    TERMINATED = "TERMINATED"


@dataclass
class EngineState:
    """
    Mutable protocol state for one shard.

    Attributes:
        processor_state: Current lifecycle state
        shard_id: Shard assigned by initialize
        checkpoint_outstanding: A checkpoint request awaits its ack
        turn: Sequence number of the most recent action turn (0 = none yet)
        turn_open: An action turn is in flight
        turn_checkpointed: A checkpoint succeeded during the current turn
        last_delivered_sequence_number: Sequence number of the last record
            handed to the processor
        fatal: Fatal fault raised during a nested checkpoint round trip;
            re-raised by the dispatcher even if user code swallowed it
    """

    processor_state: ProcessorState = ProcessorState.CREATED
    shard_id: Optional[str] = None
    checkpoint_outstanding: bool = False
    turn: int = 0
    turn_open: bool = False
    turn_checkpointed: bool = False
    last_delivered_sequence_number: Optional[str] = None
    fatal: Optional[BaseException] = None

    @property
    def terminated(self) -> bool:
        return self.processor_state == ProcessorState.TERMINATED

    def begin_turn(self) -> int:
        """Start a new action turn and return its number."""
        self.turn += 1
        self.turn_open = True
        self.turn_checkpointed = False
        return self.turn

    def end_turn(self) -> None:
        self.turn_open = False
