"""
Checkpoint Coordinator
======================

Request/response rendezvous for checkpoints.

The wire protocol has no correlation identifiers, so a checkpoint is a
strict nested exchange inside the action turn that issued it:

    child  → {"action":"checkpoint","sequenceNumber":"100"}
    daemon → {"action":"checkpoint"}              (or with "error")

While the request is outstanding the very next inbound frame belongs to
the coordinator, not the dispatcher.

Rules:
    - At most one checkpoint outstanding; a second attempt fails fast
      with ALREADY_IN_PROGRESS and writes nothing
    - A Checkpointer handle only works during the turn it was issued for
    - Anything but a checkpoint ack in reply, a decode failure, or end of
      stream is fatal; the fault is recorded on the EngineState so the
      dispatcher re-raises it even if user code catches it
    - A daemon-reported error is a recoverable CheckpointFault; no retry
    - A started round trip always runs to completion, even if the
      awaiting caller is cancelled
"""

import asyncio
import logging
from typing import Optional

from kcl_child.errors import (
    CheckpointFault,
    CheckpointFaultKind,
    IOFault,
    KclChildError,
    ProtocolFault,
)
from kcl_child.models.actions import CheckpointAck, CheckpointRequest
from kcl_child.models.record import Record
from kcl_child.models.state import EngineState
from kcl_child.stream.codec import MessageCodec
from kcl_child.stream.transport import FrameTransport


logger = logging.getLogger(__name__)


class CheckpointMetrics:
    """Metrics for CheckpointCoordinator observability."""

    __slots__ = (
        "requested",
        "succeeded",
        "failed",
        "rejected",
    )

    def __init__(self) -> None:
        self.requested: int = 0
        self.succeeded: int = 0
        self.failed: int = 0
        self.rejected: int = 0

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "requested": self.requested,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "rejected": self.rejected,
        }


class Checkpointer:
    """
    Checkpoint handle given to process_records, shard_ended and
    shutdown_requested.

    Example:
        async def process_records(self, process_records_input):
            ...
            last = process_records_input.records[-1]
            try:
                await process_records_input.checkpointer.checkpoint_record(last)
            except CheckpointFault as e:
                if e.kind is CheckpointFaultKind.THROTTLING:
                    ...
    """

    def __init__(self, coordinator: "CheckpointCoordinator", turn: int) -> None:
        self._coordinator = coordinator
        self._turn = turn

    async def checkpoint(
        self,
        sequence_number: Optional[str] = None,
        sub_sequence_number: Optional[int] = None,
    ) -> Optional[str]:
        """
        Checkpoint at a sequence number.

        Args:
            sequence_number: Position to record; None checkpoints at the last
                record delivered to this processor
            sub_sequence_number: Position inside an aggregated record

        Returns:
            Sequence number acknowledged by the daemon

        Raises:
            CheckpointFault: The checkpoint was refused or could not be sent
        """
        return await self._coordinator.checkpoint(
            self._turn, sequence_number, sub_sequence_number
        )

    async def checkpoint_record(self, record: Record) -> Optional[str]:
        """Checkpoint at the position of ``record``."""
        return await self.checkpoint(record.sequence_number, record.sub_sequence_number)


class CheckpointCoordinator:
    """
    Performs checkpoint round trips over the shared transport.

    Attributes:
        metrics: Operational metrics
    """

    def __init__(
        self,
        transport: FrameTransport,
        codec: MessageCodec,
        state: EngineState,
    ) -> None:
        self._transport = transport
        self._codec = codec
        self._state = state

        self._idle = asyncio.Event()
        self._idle.set()
        self._inflight: Optional[asyncio.Task] = None

        self.metrics = CheckpointMetrics()

    @property
    def outstanding(self) -> bool:
        """Whether a checkpoint request awaits its ack."""
        return self._state.checkpoint_outstanding

    def checkpointer(self) -> Checkpointer:
        """Issue a handle bound to the current turn."""
        return Checkpointer(self, self._state.turn)

    async def checkpoint(
        self,
        turn: int,
        sequence_number: Optional[str],
        sub_sequence_number: Optional[int],
    ) -> Optional[str]:
        """Run one checkpoint round trip on behalf of the turn ``turn``."""
        state = self._state

        if state.fatal is not None:
            raise state.fatal

        if not state.turn_open or turn != state.turn:
            self.metrics.rejected += 1
            raise CheckpointFault(
                CheckpointFaultKind.OUT_OF_TURN,
                "checkpointer used after its action completed",
                sequence_number,
            )

        if state.checkpoint_outstanding:
            self.metrics.rejected += 1
            raise CheckpointFault(
                CheckpointFaultKind.ALREADY_IN_PROGRESS,
                "another checkpoint is awaiting its acknowledgement",
                sequence_number,
            )

        request = CheckpointRequest(
            sequence_number=sequence_number,
            sub_sequence_number=sub_sequence_number,
        )

        state.checkpoint_outstanding = True
        self._idle.clear()
        self.metrics.requested += 1
        self._inflight = asyncio.create_task(self._round_trip(request))

        # The round trip keeps going if this caller is cancelled
        ack = await asyncio.shield(self._inflight)

        if ack.error is not None:
            self.metrics.failed += 1
            logger.warning(
                f"Checkpoint at {sequence_number} rejected by daemon: {ack.error}"
            )
            raise CheckpointFault.from_daemon_error(ack.error, sequence_number)

        self.metrics.succeeded += 1
        state.turn_checkpointed = True
        acknowledged = ack.sequence_number if ack.sequence_number is not None else sequence_number
        logger.debug(f"Checkpoint acknowledged at {acknowledged}")
        return acknowledged

    async def wait_idle(self) -> None:
        """Wait until no checkpoint is outstanding."""
        await self._idle.wait()

        inflight = self._inflight
        if inflight is not None and inflight.done() and not inflight.cancelled():
            # Retrieve so an unobserved failure is not reported by the loop;
            # the fault itself is already on the EngineState
            inflight.exception()

    async def _round_trip(self, request: CheckpointRequest) -> CheckpointAck:
        try:
            self._transport.write_frame(self._codec.encode(request))

            frame = await self._transport.read_frame()
            if frame is None:
                raise IOFault("Input closed while awaiting a checkpoint acknowledgement")

            reply = self._codec.decode(frame)
            if not isinstance(reply, CheckpointAck):
                raise ProtocolFault(
                    f"Expected a checkpoint acknowledgement, received '{reply.action}'"
                )
            return reply
        except KclChildError as e:
            self._state.fatal = e
            raise
        finally:
            self._state.checkpoint_outstanding = False
            self._idle.set()
