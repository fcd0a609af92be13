"""
kcl-child
=========

Child-process side of the multi-language record processing protocol.

An orchestrating daemon owns shards, leases and checkpoint storage. It
spawns one child process per shard and drives it over stdin/stdout with
newline-delimited JSON actions. This package implements that child: it
frames and decodes the actions, sequences calls into a user-supplied
RecordProcessor, performs checkpoint round trips and acknowledges every
action in order.

Components:
    - stream: Line transport and JSON codec
    - models: Pydantic wire models and engine state
    - engine: Dispatcher, checkpoint coordinator, status reporter
    - processor: RecordProcessor interface implemented by user code

Example:
    from kcl_child import RecordProcessor, main

    class Printer(RecordProcessor):
        async def initialize(self, initialization_input): ...
        async def process_records(self, process_records_input): ...
        async def lease_lost(self, lease_lost_input): ...
        async def shard_ended(self, shard_ended_input):
            await shard_ended_input.checkpointer.checkpoint()

    main(Printer())
"""

__version__ = "0.1.0"

from kcl_child.errors import (
    CheckpointFault,
    CheckpointFaultKind,
    IOFault,
    KclChildError,
    ProtocolFault,
    UserLogicFault,
)
from kcl_child.models import ProcessorState, Record
from kcl_child.processor import (
    InitializationInput,
    LeaseLostInput,
    ProcessRecordsInput,
    RecordProcessor,
    ShardEndedInput,
    ShutdownRequestedInput,
)
from kcl_child.engine import Checkpointer
from kcl_child.main import Engine, main, run_processor

__all__ = [
    "__version__",
    # Processor interface
    "RecordProcessor",
    "InitializationInput",
    "ProcessRecordsInput",
    "LeaseLostInput",
    "ShardEndedInput",
    "ShutdownRequestedInput",
    "Checkpointer",
    "Record",
    "ProcessorState",
    # Running
    "Engine",
    "run_processor",
    "main",
    # Errors
    "KclChildError",
    "ProtocolFault",
    "IOFault",
    "UserLogicFault",
    "CheckpointFault",
    "CheckpointFaultKind",
]
