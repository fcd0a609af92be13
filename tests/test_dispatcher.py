"""
Dispatcher Tests
================

Lifecycle sequencing, acknowledgements and fatal paths.
"""

import asyncio
import json
import logging

import pytest

from kcl_child.errors import CheckpointFault, ProtocolFault, UserLogicFault
from kcl_child.models import ProcessorState


INITIALIZE = {"action": "initialize", "shardId": "shard-0001"}
LEASE_LOST = {"action": "leaseLost"}
SHARD_ENDED = {"action": "shardEnded"}
SHUTDOWN_REQUESTED = {"action": "shutdownRequested"}
CHECKPOINT_OK = {"action": "checkpoint"}


def records(*sequence_numbers):
    return {
        "action": "processRecords",
        "records": [
            {"data": "SGVsbG8=", "partitionKey": "k1", "sequenceNumber": seq}
            for seq in sequence_numbers
        ],
        "millisBehindLatest": 0,
    }


def status(action):
    return {"action": "status", "responseFor": action}


def kinds(events):
    """Collapse the event log to (kind, detail) pairs that are easy to compare."""
    collapsed = []
    for event in events:
        if event[0] == "call":
            collapsed.append(event)
        elif event[0] in ("read", "write"):
            collapsed.append((event[0], json.loads(event[1])["action"]))
        else:
            collapsed.append(event)
    return collapsed


class TestLifecycle:
    """Tests for legal action sequences."""

    def test_checkpoint_scenario(self, make_engine, sample_process_records):
        """Verify the initialize, processRecords and checkpoint exchange."""
        acknowledged = []

        async def on_records(process_records_input):
            acknowledged.append(await process_records_input.checkpointer.checkpoint("100"))

        engine, transport, processor, events = make_engine(
            [INITIALIZE, sample_process_records, CHECKPOINT_OK, LEASE_LOST],
            process_records=on_records,
        )

        assert asyncio.run(engine.run()) == 0

        assert transport.sent() == [
            status("initialize"),
            {"action": "checkpoint", "sequenceNumber": "100"},
            status("processRecords"),
            status("leaseLost"),
        ]
        assert acknowledged == ["100"]

        record = processor.inputs["process_records"][0].records[0]
        assert record.data == b"Hello"
        assert record.sequence_number == "100"
        assert processor.inputs["initialize"][0].shard_id == "shard-0001"

    def test_strict_turn_interleaving(self, make_engine, sample_process_records):
        """Verify reads, hook calls and writes never overlap across turns."""
        async def on_records(process_records_input):
            await process_records_input.checkpointer.checkpoint("100")

        engine, transport, processor, events = make_engine(
            [INITIALIZE, sample_process_records, CHECKPOINT_OK, LEASE_LOST],
            process_records=on_records,
        )
        asyncio.run(engine.run())

        assert kinds(events) == [
            ("read", "initialize"),
            ("call", "initialize"),
            ("write", "status"),
            ("read", "processRecords"),
            ("call", "process_records"),
            ("write", "checkpoint"),
            ("read", "checkpoint"),
            ("write", "status"),
            ("read", "leaseLost"),
            ("call", "lease_lost"),
            ("write", "status"),
        ]

    def test_status_written_only_after_completion(self, make_engine):
        """Verify status is written only after the hook returns."""
        observed = []

        engine, transport, processor, events = make_engine(
            [INITIALIZE, records("1"), LEASE_LOST],
        )

        async def slow_records(process_records_input):
            for _ in range(5):
                await asyncio.sleep(0)
                observed.append(len(transport.written))

        processor.hooks["process_records"] = slow_records

        assert asyncio.run(engine.run()) == 0
        assert observed == [1, 1, 1, 1, 1]
        assert transport.reads == 3

    def test_one_call_and_one_status_per_action(self, make_engine):
        """Verify each action gets one hook call and one status."""
        inbound = [INITIALIZE, records("1"), records("2", "3"), SHUTDOWN_REQUESTED, records("4"), LEASE_LOST]
        engine, transport, processor, events = make_engine(inbound)

        assert asyncio.run(engine.run()) == 0

        calls = [e[1] for e in events if e[0] == "call"]
        assert calls == [
            "initialize",
            "process_records",
            "process_records",
            "shutdown_requested",
            "process_records",
            "lease_lost",
        ]
        assert [m["responseFor"] for m in transport.sent()] == [
            "initialize",
            "processRecords",
            "processRecords",
            "shutdownRequested",
            "processRecords",
            "leaseLost",
        ]
        assert engine.dispatcher.metrics.records_delivered == 4
        assert engine.state.last_delivered_sequence_number == "4"

    def test_lease_lost_terminates_without_reading_further(self, make_engine):
        """Verify leaseLost stops the loop without another read."""
        engine, transport, processor, events = make_engine(
            [INITIALIZE, LEASE_LOST, records("1"), SHARD_ENDED],
        )

        assert asyncio.run(engine.run()) == 0
        assert transport.reads == 2
        assert transport.remaining == 2
        assert transport.sent()[-1] == status("leaseLost")
        assert engine.state.processor_state == ProcessorState.TERMINATED

    def test_shard_ended_with_checkpoint(self, make_engine, caplog):
        """Verify shardEnded with a checkpoint terminates quietly."""
        async def on_shard_ended(shard_ended_input):
            await shard_ended_input.checkpointer.checkpoint()

        engine, transport, processor, events = make_engine(
            [INITIALIZE, records("1"), SHARD_ENDED, CHECKPOINT_OK, records("2")],
            shard_ended=on_shard_ended,
        )

        with caplog.at_level(logging.WARNING):
            assert asyncio.run(engine.run()) == 0

        assert transport.sent()[-2:] == [
            {"action": "checkpoint", "sequenceNumber": None},
            status("shardEnded"),
        ]
        assert transport.remaining == 1
        assert "without a successful checkpoint" not in caplog.text

    def test_shard_ended_without_checkpoint_warns(self, make_engine, caplog):
        """Verify shardEnded without a checkpoint logs a warning."""
        engine, transport, processor, events = make_engine([INITIALIZE, SHARD_ENDED])

        with caplog.at_level(logging.WARNING):
            assert asyncio.run(engine.run()) == 0

        assert "without a successful checkpoint" in caplog.text

    def test_shutdown_requested_is_not_terminal(self, make_engine):
        """Verify shutdownRequested keeps the processor running."""
        async def on_shutdown(shutdown_requested_input):
            await shutdown_requested_input.checkpointer.checkpoint("1")

        engine, transport, processor, events = make_engine(
            [INITIALIZE, records("1"), SHUTDOWN_REQUESTED, CHECKPOINT_OK, records("2"), LEASE_LOST],
            shutdown_requested=on_shutdown,
        )

        assert asyncio.run(engine.run()) == 0
        assert [m.get("responseFor") for m in transport.sent()] == [
            "initialize",
            "processRecords",
            None,
            "shutdownRequested",
            "processRecords",
            "leaseLost",
        ]

    def test_shutdown_requested_is_optional(self, make_engine, minimal_processor):
        """Verify shutdownRequested is acknowledged without a hook."""
        engine, transport, processor, events = make_engine(
            [INITIALIZE, SHUTDOWN_REQUESTED, LEASE_LOST],
            processor=minimal_processor,
        )

        assert asyncio.run(engine.run()) == 0
        assert minimal_processor.calls == ["initialize", "lease_lost"]
        assert status("shutdownRequested") in transport.sent()

    def test_states_seen_by_hooks(self, make_engine):
        """Verify the processor state during each hook."""
        seen = {}
        engine, transport, processor, events = make_engine([INITIALIZE, records("1"), LEASE_LOST])

        def remember(name):
            async def hook(_):
                seen[name] = engine.state.processor_state
            return hook

        for name in ("initialize", "process_records", "lease_lost"):
            processor.hooks[name] = remember(name)

        asyncio.run(engine.run())

        assert seen == {
            "initialize": ProcessorState.INITIALIZING,
            "process_records": ProcessorState.PROCESSING,
            "lease_lost": ProcessorState.SHUTTING_DOWN,
        }
        assert engine.state.processor_state == ProcessorState.TERMINATED


class TestFatalPaths:
    """Tests for conditions that end the process non-zero."""

    @pytest.mark.parametrize("inbound", [
        [records("1")],
        [LEASE_LOST],
        [INITIALIZE, INITIALIZE],
        [INITIALIZE, CHECKPOINT_OK],
    ])
    def test_out_of_order_actions(self, make_engine, inbound):
        """Verify out-of-order actions raise ProtocolFault."""
        engine, transport, processor, events = make_engine(inbound + [LEASE_LOST])

        with pytest.raises(ProtocolFault):
            asyncio.run(engine.dispatcher.run())

        # Nothing acknowledged for the offending action
        assert len(transport.written) == len(inbound) - 1

    def test_undecodable_frame_stops_everything(self, make_engine):
        """Verify an undecodable frame stops without further status."""
        engine, transport, processor, events = make_engine(
            [INITIALIZE, '{"action":"processRecords","records":[{"data":', LEASE_LOST],
        )

        assert asyncio.run(engine.run()) == 1
        assert transport.sent() == [status("initialize")]
        assert transport.remaining == 1
        assert "lease_lost" not in processor.inputs

    def test_end_of_stream_before_terminal_action(self, make_engine):
        """Verify end of stream before a terminal action is fatal."""
        engine, transport, processor, events = make_engine([INITIALIZE, records("1")])

        assert asyncio.run(engine.run()) == 1
        assert len(transport.sent()) == 2

    def test_hook_failure_is_not_acknowledged(self, make_engine):
        """Verify a failing hook gets no status."""
        async def explode(process_records_input):
            raise RuntimeError("downstream unavailable")

        engine, transport, processor, events = make_engine(
            [INITIALIZE, records("1"), LEASE_LOST],
            process_records=explode,
        )

        with pytest.raises(UserLogicFault) as excinfo:
            asyncio.run(engine.dispatcher.run())

        assert excinfo.value.action == "processRecords"
        assert isinstance(excinfo.value.cause, RuntimeError)
        assert transport.sent() == [status("initialize")]
        assert transport.remaining == 1

    def test_hook_failure_exit_status(self, make_engine):
        """Verify a failing hook makes the engine exit non-zero."""
        async def explode(initialization_input):
            raise ValueError("bad config")

        engine, transport, processor, events = make_engine([INITIALIZE, LEASE_LOST], initialize=explode)

        assert asyncio.run(engine.run()) == 1
        assert transport.written == []

    def test_unhandled_checkpoint_fault_is_fatal(self, make_engine):
        """Verify an uncaught CheckpointFault becomes a UserLogicFault."""
        async def on_records(process_records_input):
            await process_records_input.checkpointer.checkpoint("1")

        engine, transport, processor, events = make_engine(
            [INITIALIZE, records("1"), {"action": "checkpoint", "error": "ThrottlingException"}, LEASE_LOST],
            process_records=on_records,
        )

        with pytest.raises(UserLogicFault) as excinfo:
            asyncio.run(engine.dispatcher.run())

        assert isinstance(excinfo.value.cause, CheckpointFault)
        assert status("processRecords") not in transport.sent()
