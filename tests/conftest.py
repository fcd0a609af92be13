"""
Test Configuration
==================

Pytest fixtures and test doubles for kcl-child.

    - FakeTransport: scripted inbound frames, records outbound frames
    - RecordingProcessor: logs every hook call, optional per-hook behaviour
    - make_engine: builds an Engine over a FakeTransport with a shared
      event log so tests can assert the interleaving of reads, hook calls
      and writes
"""

import json
from collections import deque
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import pytest

from kcl_child.main import Engine
from kcl_child.processor import RecordProcessor
from kcl_child.stream.frame import Frame


Inbound = Union[str, Dict[str, Any]]


class FakeTransport:
    """In-memory transport; inbound frames are consumed in order."""

    def __init__(self, inbound: List[Inbound], events: Optional[list] = None) -> None:
        self._inbound = deque(inbound)
        self.events = events if events is not None else []
        self.written: List[str] = []
        self.reads = 0

    async def read_frame(self) -> Optional[Frame]:
        self.reads += 1
        if not self._inbound:
            self.events.append(("eof",))
            return None
        item = self._inbound.popleft()
        payload = item if isinstance(item, str) else json.dumps(item)
        self.events.append(("read", payload))
        return Frame(payload=payload, index=self.reads)

    def write_frame(self, frame: Frame) -> None:
        self.written.append(frame.payload)
        self.events.append(("write", frame.payload))

    @property
    def remaining(self) -> int:
        return len(self._inbound)

    def sent(self) -> List[dict]:
        return [json.loads(p) for p in self.written]


Hook = Callable[[Any], Awaitable[None]]


class RecordingProcessor(RecordProcessor):
    """Processor that logs calls and delegates to optional async callables."""

    def __init__(self, events: Optional[list] = None, **hooks: Hook) -> None:
        self.events = events if events is not None else []
        self.hooks = hooks
        self.inputs: Dict[str, list] = {}

    async def _call(self, name: str, value: Any) -> None:
        self.events.append(("call", name))
        self.inputs.setdefault(name, []).append(value)
        hook = self.hooks.get(name)
        if hook is not None:
            await hook(value)

    async def initialize(self, initialization_input):
        await self._call("initialize", initialization_input)

    async def process_records(self, process_records_input):
        await self._call("process_records", process_records_input)

    async def lease_lost(self, lease_lost_input):
        await self._call("lease_lost", lease_lost_input)

    async def shard_ended(self, shard_ended_input):
        await self._call("shard_ended", shard_ended_input)

    async def shutdown_requested(self, shutdown_requested_input):
        await self._call("shutdown_requested", shutdown_requested_input)


class MinimalProcessor(RecordProcessor):
    """Implements only the required hooks."""

    def __init__(self) -> None:
        self.calls: List[str] = []

    async def initialize(self, initialization_input):
        self.calls.append("initialize")

    async def process_records(self, process_records_input):
        self.calls.append("process_records")

    async def lease_lost(self, lease_lost_input):
        self.calls.append("lease_lost")

    async def shard_ended(self, shard_ended_input):
        self.calls.append("shard_ended")


@pytest.fixture
def make_engine():
    """Factory: make_engine(inbound, **hooks) -> (engine, transport, processor, events)."""

    def _make(inbound: List[Inbound], processor: Optional[RecordProcessor] = None, **hooks: Hook):
        events: list = []
        transport = FakeTransport(inbound, events)
        if processor is None:
            processor = RecordingProcessor(events, **hooks)
        engine = Engine(processor, transport)
        return engine, transport, processor, events

    return _make


@pytest.fixture
def sample_process_records():
    """Provide the processRecords payload from the protocol walkthrough."""
    return {
        "action": "processRecords",
        "records": [{"data": "SGVsbG8=", "partitionKey": "k1", "sequenceNumber": "100"}],
        "millisBehindLatest": 0,
    }


@pytest.fixture
def minimal_processor():
    """Provide a processor without a shutdown_requested hook."""
    return MinimalProcessor()
