#!/usr/bin/env python3
"""
Daemon Session Replay
=====================

Standalone script that plays the daemon's side of the protocol against a
record processor child process.

This script:
    1. Spawns the child command with piped stdin/stdout
    2. Sends initialize, a number of processRecords batches and a
       terminal action (shardEnded or leaseLost)
    3. Answers every checkpoint request, optionally rejecting the first
       one with a daemon error
    4. Checks that every action is acknowledged in order
    5. Reports a summary and the child's exit status

Usage:
    python scripts/replay_session.py -- python my_processor.py
    python scripts/replay_session.py --batches 20 --terminal leaseLost -- python my_processor.py
    python scripts/replay_session.py --reject-first ThrottlingException -- python my_processor.py
"""

import argparse
import asyncio
import logging
import os
import sys
import time
from typing import List, Optional

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from kcl_child.errors import ProtocolFault
from kcl_child.models import (
    ActionName,
    CheckpointAck,
    CheckpointRequest,
    InitializeAction,
    LeaseLostAction,
    ProcessRecordsAction,
    Record,
    ShardEndedAction,
    StatusMessage,
    WireMessage,
)
from kcl_child.stream import Frame, MessageCodec


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)
logger = logging.getLogger(__name__)


class SessionError(Exception):
    """The child did not follow the protocol."""


class DaemonSession:
    """Drives one child process through a scripted shard lifecycle."""

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        reject_first: Optional[str] = None,
    ) -> None:
        self.process = process
        self.codec = MessageCodec()
        self.reject_first = reject_first

        self.checkpoints: List[Optional[str]] = []
        self.acknowledged: List[str] = []
        self.rejected: int = 0

    async def send(self, message: WireMessage) -> None:
        frame = self.codec.encode(message)
        self.process.stdin.write(frame.payload.encode("utf-8") + b"\n")
        await self.process.stdin.drain()

    async def receive(self) -> WireMessage:
        line = await self.process.stdout.readline()
        if not line:
            raise SessionError("child closed stdout")
        try:
            return self.codec.decode_message(Frame(line.decode("utf-8").rstrip("\n")))
        except ProtocolFault as e:
            raise SessionError(f"unparseable output from child: {line!r}") from e

    async def run_action(self, message: WireMessage, name: ActionName) -> None:
        """Send an action and answer checkpoints until it is acknowledged."""
        await self.send(message)

        while True:
            reply = await self.receive()

            if isinstance(reply, CheckpointRequest):
                self.checkpoints.append(reply.sequence_number)
                if self.reject_first and self.rejected == 0:
                    self.rejected += 1
                    logger.info(f"Rejecting checkpoint {reply.sequence_number} with {self.reject_first}")
                    await self.send(CheckpointAck(
                        sequence_number=reply.sequence_number,
                        error=self.reject_first,
                    ))
                else:
                    await self.send(CheckpointAck(sequence_number=reply.sequence_number))
                continue

            if not isinstance(reply, StatusMessage) or reply.response_for != name:
                raise SessionError(
                    f"expected status for {name.value}, got {reply.to_wire()}"
                )
            self.acknowledged.append(name.value)
            return


def make_batch(batch: int, size: int) -> ProcessRecordsAction:
    """Build a batch of synthetic records with increasing sequence numbers."""
    now_ms = int(time.time() * 1000)
    records = [
        Record(
            data=f"record-{batch}-{i}".encode("utf-8"),
            partition_key=f"pk-{i % 4}",
            sequence_number=f"{batch * size + i:056d}",
            approximate_arrival_timestamp=now_ms,
        )
        for i in range(size)
    ]
    return ProcessRecordsAction(records=records, millis_behind_latest=0)


async def run_session(
    command: List[str],
    shard_id: str,
    batches: int,
    batch_size: int,
    terminal: str,
    reject_first: Optional[str],
) -> dict:
    """
    Run one scripted session.

    Returns:
        Summary dict
    """
    logger.info("=" * 60)
    logger.info("Daemon Session Replay")
    logger.info("=" * 60)
    logger.info(f"Command: {' '.join(command)}")
    logger.info(f"Shard: {shard_id}, batches: {batches} x {batch_size}, terminal: {terminal}")
    logger.info("=" * 60)

    process = await asyncio.create_subprocess_exec(
        *command,
        stdin=asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.PIPE,
    )
    session = DaemonSession(process, reject_first=reject_first)
    start_time = time.time()
    error: Optional[str] = None

    try:
        await session.run_action(InitializeAction(shard_id=shard_id), ActionName.INITIALIZE)
        for batch in range(batches):
            await session.run_action(make_batch(batch, batch_size), ActionName.PROCESS_RECORDS)

        if terminal == "shardEnded":
            await session.run_action(ShardEndedAction(), ActionName.SHARD_ENDED)
        else:
            await session.run_action(LeaseLostAction(), ActionName.LEASE_LOST)
    except SessionError as e:
        error = str(e)
        logger.error(f"Session failed: {e}")
    finally:
        process.stdin.close()

    exit_code = await process.wait()
    total_time = time.time() - start_time

    logger.info("=" * 60)
    logger.info("FINAL SUMMARY")
    logger.info("=" * 60)
    logger.info(f"Total runtime: {total_time:.2f} seconds")
    logger.info(f"Actions acknowledged: {len(session.acknowledged)}")
    logger.info(f"Checkpoints requested: {len(session.checkpoints)}")
    logger.info(f"Checkpoints rejected: {session.rejected}")
    logger.info(f"Last checkpoint: {session.checkpoints[-1] if session.checkpoints else None}")
    logger.info(f"Child exit status: {exit_code}")
    logger.info("=" * 60)

    return {
        "duration": total_time,
        "acknowledged": session.acknowledged,
        "checkpoints": len(session.checkpoints),
        "exit_code": exit_code,
        "error": error,
    }


def main():
    parser = argparse.ArgumentParser(
        description="Replay a daemon session against a record processor child process"
    )
    parser.add_argument("--shard-id", default="shardId-000000000000", help="Shard id to initialize")
    parser.add_argument("--batches", type=int, default=5, help="Number of processRecords batches (default: 5)")
    parser.add_argument("--batch-size", type=int, default=10, help="Records per batch (default: 10)")
    parser.add_argument(
        "--terminal",
        choices=["shardEnded", "leaseLost"],
        default="shardEnded",
        help="Terminal action to finish with (default: shardEnded)",
    )
    parser.add_argument(
        "--reject-first",
        metavar="ERROR",
        default=None,
        help="Answer the first checkpoint with this daemon error",
    )
    parser.add_argument("command", nargs=argparse.REMAINDER, help="Child command, after --")

    args = parser.parse_args()
    command = args.command[1:] if args.command[:1] == ["--"] else args.command
    if not command:
        parser.error("a child command is required")

    result = asyncio.run(run_session(
        command=command,
        shard_id=args.shard_id,
        batches=args.batches,
        batch_size=args.batch_size,
        terminal=args.terminal,
        reject_first=args.reject_first,
    ))

    sys.exit(0 if result["error"] is None and result["exit_code"] == 0 else 1)


if __name__ == "__main__":
    main()
