"""
Action Dispatcher
=================

Per-shard lifecycle state machine.

The dispatcher reads one frame, decodes it, checks it against the
transition table, awaits the matching RecordProcessor hook, waits for any
checkpoint the hook started, acknowledges the action and only then reads
the next frame. Exactly one action is in flight at any time.

Transition Table:
    CREATED    + initialize        → INITIALIZING  → PROCESSING
    PROCESSING + processRecords    → PROCESSING    → PROCESSING
    PROCESSING + shutdownRequested → PROCESSING    → PROCESSING
    PROCESSING + leaseLost         → SHUTTING_DOWN → TERMINATED
    PROCESSING + shardEnded        → SHUTTING_DOWN → TERMINATED
    anything else                  → ProtocolFault

Failure Rules:
    - A hook that raises is a UserLogicFault; the action is not acknowledged
    - A fatal fault from a nested checkpoint round trip is re-raised after
      the hook returns, even if the hook caught it
    - End of stream before a terminal action is an IOFault
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from kcl_child.engine.checkpointer import CheckpointCoordinator
from kcl_child.engine.status import StatusReporter
from kcl_child.errors import IOFault, ProtocolFault, UserLogicFault
from kcl_child.models.actions import (
    Action,
    ActionName,
    InitializeAction,
    ProcessRecordsAction,
)
from kcl_child.models.state import EngineState, ProcessorState
from kcl_child.processor import (
    InitializationInput,
    LeaseLostInput,
    ProcessRecordsInput,
    RecordProcessor,
    ShardEndedInput,
    ShutdownRequestedInput,
)
from kcl_child.stream.codec import MessageCodec
from kcl_child.stream.transport import FrameTransport


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transition:
    """
    One row of the lifecycle table.

    Attributes:
        required: State the processor must be in to accept the action
        during: State while the hook runs
        after: State once the action is acknowledged
    """

    required: ProcessorState
    during: ProcessorState
    after: ProcessorState

    @property
    def terminal(self) -> bool:
        return self.after == ProcessorState.TERMINATED


TRANSITIONS: Dict[ActionName, Transition] = {
    ActionName.INITIALIZE: Transition(
        ProcessorState.CREATED, ProcessorState.INITIALIZING, ProcessorState.PROCESSING
    ),
    ActionName.PROCESS_RECORDS: Transition(
        ProcessorState.PROCESSING, ProcessorState.PROCESSING, ProcessorState.PROCESSING
    ),
    ActionName.SHUTDOWN_REQUESTED: Transition(
        ProcessorState.PROCESSING, ProcessorState.PROCESSING, ProcessorState.PROCESSING
    ),
    ActionName.LEASE_LOST: Transition(
        ProcessorState.PROCESSING, ProcessorState.SHUTTING_DOWN, ProcessorState.TERMINATED
    ),
    ActionName.SHARD_ENDED: Transition(
        ProcessorState.PROCESSING, ProcessorState.SHUTTING_DOWN, ProcessorState.TERMINATED
    ),
}


class DispatcherMetrics:
    """Metrics for ActionDispatcher observability."""

    __slots__ = (
        "actions",
        "records_delivered",
        "last_sequence_number",
    )

    def __init__(self) -> None:
        self.actions: Dict[str, int] = {}
        self.records_delivered: int = 0
        self.last_sequence_number: Optional[str] = None

    def count(self, action: ActionName) -> None:
        self.actions[action.value] = self.actions.get(action.value, 0) + 1

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "actions": dict(self.actions),
            "records_delivered": self.records_delivered,
            "last_sequence_number": self.last_sequence_number,
        }


class ActionDispatcher:
    """
    Drives one RecordProcessor through the shard lifecycle.

    Attributes:
        processor: User record processor
        state: Engine state shared with the checkpoint coordinator
        metrics: Operational metrics

    Example:
        dispatcher = ActionDispatcher(
            processor=MyProcessor(),
            transport=transport,
            codec=codec,
            state=state,
            coordinator=CheckpointCoordinator(transport, codec, state),
            reporter=StatusReporter(transport, codec),
        )

        # Returns after a terminal action is acknowledged
        await dispatcher.run()
    """

    def __init__(
        self,
        processor: RecordProcessor,
        transport: FrameTransport,
        codec: MessageCodec,
        state: EngineState,
        coordinator: CheckpointCoordinator,
        reporter: StatusReporter,
        warn_on_shard_end_without_checkpoint: bool = True,
    ) -> None:
        self.processor = processor
        self.state = state
        self._transport = transport
        self._codec = codec
        self._coordinator = coordinator
        self._reporter = reporter
        self.warn_on_shard_end_without_checkpoint = warn_on_shard_end_without_checkpoint

        self.metrics = DispatcherMetrics()

    async def run(self) -> None:
        """
        Process actions until a terminal action has been acknowledged.

        Raises:
            ProtocolFault: Invalid or out-of-order action
            IOFault: Transport failure or premature end of stream
            UserLogicFault: A processor hook raised
        """
        while not self.state.terminated:
            frame = await self._transport.read_frame()
            if frame is None:
                raise IOFault(
                    f"Input closed before a terminal action "
                    f"(state={self.state.processor_state.value})"
                )
            await self.dispatch(self._codec.decode(frame))

        logger.info(f"Shard {self.state.shard_id} terminated")

    async def dispatch(self, action: Action) -> None:
        """
        Handle a single decoded action, including its acknowledgement.

        Args:
            action: Action decoded from the daemon's stream
        """
        name = ActionName(action.action)
        transition = TRANSITIONS.get(name)
        if transition is None:
            raise ProtocolFault(
                f"Unsolicited '{name.value}' with no checkpoint outstanding"
            )

        current = self.state.processor_state
        if current != transition.required:
            raise ProtocolFault(
                f"Action '{name.value}' is not valid in state {current.value}"
            )

        turn = self.state.begin_turn()
        self.state.processor_state = transition.during
        logger.debug(f"Turn {turn}: dispatching '{name.value}'")

        await self._invoke(name, action)
        await self._coordinator.wait_idle()
        self.state.end_turn()

        if self.state.fatal is not None:
            raise self.state.fatal

        if (
            name == ActionName.SHARD_ENDED
            and not self.state.turn_checkpointed
            and self.warn_on_shard_end_without_checkpoint
        ):
            logger.warning(
                f"Shard {self.state.shard_id} ended without a successful checkpoint; "
                f"the daemon will not mark it complete"
            )

        self.state.processor_state = transition.after
        self._reporter.report(name)
        self.metrics.count(name)

        if transition.terminal:
            logger.info(f"Terminal action '{name.value}' acknowledged")

    async def _invoke(self, name: ActionName, action: Action) -> None:
        """Await the processor hook for ``action``."""
        processor = self.processor
        try:
            if name == ActionName.INITIALIZE:
                await processor.initialize(self._initialization_input(action))

            elif name == ActionName.PROCESS_RECORDS:
                await processor.process_records(self._process_records_input(action))

            elif name == ActionName.LEASE_LOST:
                await processor.lease_lost(LeaseLostInput())

            elif name == ActionName.SHARD_ENDED:
                await processor.shard_ended(
                    ShardEndedInput(checkpointer=self._coordinator.checkpointer())
                )

            elif name == ActionName.SHUTDOWN_REQUESTED:
                if processor.supports_shutdown_requested():
                    await processor.shutdown_requested(
                        ShutdownRequestedInput(checkpointer=self._coordinator.checkpointer())
                    )
                else:
                    logger.debug("Processor has no shutdown_requested hook, acknowledging")

        except (Exception, asyncio.CancelledError) as e:
            fatal = self.state.fatal
            if fatal is e:
                raise
            if fatal is not None:
                raise fatal from e
            raise UserLogicFault(name.value, e) from e

    def _initialization_input(self, action: InitializeAction) -> InitializationInput:
        self.state.shard_id = action.shard_id
        logger.info(
            f"Initializing shard {action.shard_id}"
            + (f" from checkpoint {action.sequence_number}" if action.sequence_number else "")
        )
        return InitializationInput(
            shard_id=action.shard_id,
            sequence_number=action.sequence_number,
            sub_sequence_number=action.sub_sequence_number,
        )

    def _process_records_input(self, action: ProcessRecordsAction) -> ProcessRecordsInput:
        records = action.records
        if records:
            last = records[-1].sequence_number
            self.state.last_delivered_sequence_number = last
            self.metrics.last_sequence_number = last
        self.metrics.records_delivered += len(records)
        return ProcessRecordsInput(
            records=records,
            millis_behind_latest=action.millis_behind_latest,
            checkpointer=self._coordinator.checkpointer(),
        )
