"""
Action Schema
=============

Pydantic models for every message exchanged with the daemon.

Inbound (daemon -> child), one JSON object per line:
    {"action": "initialize", "shardId": "shard-0001"}
    {"action": "processRecords", "records": [...], "millisBehindLatest": 0}
    {"action": "leaseLost"}
    {"action": "shardEnded"}
    {"action": "shutdownRequested"}
    {"action": "checkpoint", "sequenceNumber": "100", "error": null}

Outbound (child -> daemon):
    {"action": "status", "responseFor": "initialize"}
    {"action": "checkpoint", "sequenceNumber": "100"}

Inbound messages are a tagged union discriminated on ``action``. Fields the
models do not declare are ignored, so newer daemons can add fields freely.
"""

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from kcl_child.models.record import Record


class ActionName(str, Enum):
    """Values of the ``action`` tag."""

    INITIALIZE = "initialize"
    PROCESS_RECORDS = "processRecords"
    LEASE_LOST = "leaseLost"
    SHARD_ENDED = "shardEnded"
    SHUTDOWN_REQUESTED = "shutdownRequested"
    CHECKPOINT = "checkpoint"
    STATUS = "status"


# Actions that are acknowledged with a status message
LIFECYCLE_ACTIONS = frozenset({
    ActionName.INITIALIZE,
    ActionName.PROCESS_RECORDS,
    ActionName.LEASE_LOST,
    ActionName.SHARD_ENDED,
    ActionName.SHUTDOWN_REQUESTED,
})


class WireMessage(BaseModel):
    """Base class for anything that crosses the transport."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def to_wire(self) -> Dict[str, Any]:
        """JSON-compatible dict using wire field names, unset optionals dropped."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# =============================================================================
# Inbound actions
# =============================================================================

class InitializeAction(WireMessage):
    """
    First action for a shard.

    Attributes:
        shard_id: Shard this process is responsible for
        sequence_number: Checkpoint the daemon resumes from, if known
        sub_sequence_number: Sub-sequence part of that checkpoint
    """

    action: Literal["initialize"] = "initialize"
    shard_id: str = Field(..., alias="shardId")
    sequence_number: Optional[str] = Field(default=None, alias="sequenceNumber")
    sub_sequence_number: Optional[int] = Field(default=None, alias="subSequenceNumber")


class ProcessRecordsAction(WireMessage):
    """A batch of records, in shard order."""

    action: Literal["processRecords"] = "processRecords"
    records: List[Record] = Field(...)
    millis_behind_latest: int = Field(..., ge=0, alias="millisBehindLatest")


class LeaseLostAction(WireMessage):
    action: Literal["leaseLost"] = "leaseLost"


class ShardEndedAction(WireMessage):
    action: Literal["shardEnded"] = "shardEnded"


class ShutdownRequestedAction(WireMessage):
    action: Literal["shutdownRequested"] = "shutdownRequested"


class CheckpointAck(WireMessage):
    """
    Daemon's answer to a checkpoint request.

    ``error`` absent means the checkpoint was recorded. When present it holds
    the name of the exception the daemon hit (e.g. ``ThrottlingException``).
    """

    action: Literal["checkpoint"] = "checkpoint"
    sequence_number: Optional[str] = Field(default=None, alias="sequenceNumber")
    sub_sequence_number: Optional[int] = Field(default=None, alias="subSequenceNumber")
    error: Optional[str] = Field(default=None)


Action = Annotated[
    Union[
        InitializeAction,
        ProcessRecordsAction,
        LeaseLostAction,
        ShardEndedAction,
        ShutdownRequestedAction,
        CheckpointAck,
    ],
    Field(discriminator="action"),
]


# =============================================================================
# Outbound messages
# =============================================================================

class StatusMessage(WireMessage):
    """Acknowledges that the named action has completed."""

    action: Literal["status"] = "status"
    response_for: ActionName = Field(..., alias="responseFor")

    @field_validator("response_for")
    @classmethod
    def _lifecycle_action_only(cls, value: ActionName) -> ActionName:
        if value not in LIFECYCLE_ACTIONS:
            raise ValueError(f"status cannot acknowledge '{value.value}'")
        return value


class CheckpointRequest(WireMessage):
    """
    Asks the daemon to record a checkpoint.

    A ``sequence_number`` of None asks the daemon to checkpoint at the last
    record it delivered to this process; it is sent as an explicit null.
    """

    action: Literal["checkpoint"] = "checkpoint"
    sequence_number: Optional[str] = Field(default=None, alias="sequenceNumber")
    sub_sequence_number: Optional[int] = Field(default=None, ge=0, alias="subSequenceNumber")

    def to_wire(self) -> Dict[str, Any]:
        payload = super().to_wire()
        payload.setdefault("sequenceNumber", None)
        return payload


OutboundMessage = Annotated[
    Union[StatusMessage, CheckpointRequest],
    Field(discriminator="action"),
]
