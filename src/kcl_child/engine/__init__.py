"""
Engine Module
=============

Turn-by-turn protocol machinery.

Components:
    - ActionDispatcher: Lifecycle state machine; one action in flight
    - CheckpointCoordinator: Nested checkpoint request/ack rendezvous
    - Checkpointer: Per-turn checkpoint handle handed to processors
    - StatusReporter: Acknowledges each completed action
"""

from kcl_child.engine.checkpointer import (
    CheckpointCoordinator,
    Checkpointer,
    CheckpointMetrics,
)
from kcl_child.engine.status import StatusReporter
from kcl_child.engine.dispatcher import (
    TRANSITIONS,
    ActionDispatcher,
    DispatcherMetrics,
    Transition,
)

__all__ = [
    "ActionDispatcher",
    "DispatcherMetrics",
    "Transition",
    "TRANSITIONS",
    "CheckpointCoordinator",
    "Checkpointer",
    "CheckpointMetrics",
    "StatusReporter",
]
