"""
Data Models
===========

Pydantic models for the protocol spoken with the daemon.

Models:
    Record:
        - Record: A data record with its base64 payload decoded

    Actions (inbound):
        - InitializeAction, ProcessRecordsAction, LeaseLostAction,
          ShardEndedAction, ShutdownRequestedAction, CheckpointAck
        - Action: Tagged union of the above

    Messages (outbound):
        - StatusMessage, CheckpointRequest

    State:
        - ProcessorState: Lifecycle enum
        - EngineState: Mutable per-shard protocol state
"""

from kcl_child.models.record import Record
from kcl_child.models.actions import (
    LIFECYCLE_ACTIONS,
    Action,
    ActionName,
    CheckpointAck,
    CheckpointRequest,
    InitializeAction,
    LeaseLostAction,
    OutboundMessage,
    ProcessRecordsAction,
    ShardEndedAction,
    ShutdownRequestedAction,
    StatusMessage,
    WireMessage,
)
from kcl_child.models.state import EngineState, ProcessorState

__all__ = [
    # Record
    "Record",
    # Actions
    "Action",
    "ActionName",
    "LIFECYCLE_ACTIONS",
    "WireMessage",
    "InitializeAction",
    "ProcessRecordsAction",
    "LeaseLostAction",
    "ShardEndedAction",
    "ShutdownRequestedAction",
    "CheckpointAck",
    # Messages
    "OutboundMessage",
    "StatusMessage",
    "CheckpointRequest",
    # State
    "ProcessorState",
    "EngineState",
]
