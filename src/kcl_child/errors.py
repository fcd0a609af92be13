"""
Error Taxonomy
==============

Exception types raised by the protocol engine.

Fatal (the process exits non-zero, nothing else is acknowledged):
    - ProtocolFault: malformed frame, unknown action, out-of-order action
    - IOFault: read/write/flush failure or unexpected end of stream
    - UserLogicFault: a record processor capability raised

Recoverable (surfaced to the caller of ``Checkpointer.checkpoint``):
    - CheckpointFault: the daemon rejected a checkpoint, or the checkpoint
      could not be attempted (already in progress, turn already finished)
"""

from enum import Enum
from typing import Optional


class KclChildError(Exception):
    """Base class for all engine errors."""


class ProtocolFault(KclChildError):
    """Raised when the daemon's messages violate the protocol."""


class IOFault(KclChildError):
    """Raised on transport failures and premature end of stream."""


class UserLogicFault(KclChildError):
    """Raised when a record processor capability fails instead of completing."""

    def __init__(self, action: str, cause: BaseException) -> None:
        self.action = action
        self.cause = cause
        super().__init__(
            f"Record processor failed while handling '{action}': "
            f"{type(cause).__name__}: {cause}"
        )


class CheckpointFaultKind(str, Enum):
    """
    Machine-readable reason a checkpoint did not succeed.

    Attributes:
        ALREADY_IN_PROGRESS: Another checkpoint is still awaiting its ack
        OUT_OF_TURN: The checkpointer was used after its action completed
        INVALID_STATE: Daemon could not record the checkpoint (lease table state)
        SHUTDOWN: The shard was handed off or the worker is shutting down
        THROTTLING: The checkpoint store throttled the request
        DEPENDENCY: A daemon-side dependency failed
        INVALID_ARGUMENT: The sequence number was rejected
        UNKNOWN: Any other error string reported by the daemon
    """

    ALREADY_IN_PROGRESS = "ALREADY_IN_PROGRESS"
    OUT_OF_TURN = "OUT_OF_TURN"
    INVALID_STATE = "INVALID_STATE"
    SHUTDOWN = "SHUTDOWN"
    THROTTLING = "THROTTLING"
    DEPENDENCY = "DEPENDENCY"
    INVALID_ARGUMENT = "INVALID_ARGUMENT"
    UNKNOWN = "UNKNOWN"


# Daemon error names as they appear in checkpoint acks
_DAEMON_ERROR_KINDS = {
    "InvalidStateException": CheckpointFaultKind.INVALID_STATE,
    "ShutdownException": CheckpointFaultKind.SHUTDOWN,
    "ThrottlingException": CheckpointFaultKind.THROTTLING,
    "KinesisClientLibDependencyException": CheckpointFaultKind.DEPENDENCY,
    "IllegalArgumentException": CheckpointFaultKind.INVALID_ARGUMENT,
    "InvalidArgumentException": CheckpointFaultKind.INVALID_ARGUMENT,
}


def map_daemon_error(error: str) -> CheckpointFaultKind:
    """
    Map the error string of a checkpoint ack to a CheckpointFaultKind.

    The daemon reports the simple class name of the exception it hit,
    sometimes followed by a message; only the leading name is matched.
    """
    name = error.strip().split(":", 1)[0].strip()
    name = name.rsplit(".", 1)[-1]
    return _DAEMON_ERROR_KINDS.get(name, CheckpointFaultKind.UNKNOWN)


class CheckpointFault(KclChildError):
    """Raised to the caller of a checkpoint that did not succeed."""

    def __init__(
        self,
        kind: CheckpointFaultKind,
        message: str = "",
        sequence_number: Optional[str] = None,
    ) -> None:
        self.kind = kind
        self.message = message
        self.sequence_number = sequence_number
        detail = f": {message}" if message else ""
        super().__init__(f"Checkpoint failed ({kind.value}){detail}")

    @classmethod
    def from_daemon_error(
        cls,
        error: str,
        sequence_number: Optional[str] = None,
    ) -> "CheckpointFault":
        """Build a fault from the ``error`` field of a checkpoint ack."""
        return cls(map_daemon_error(error), error, sequence_number)
