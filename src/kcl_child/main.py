"""
kcl-child Entry Point
=====================

Assembles the protocol engine around a RecordProcessor and runs it over
stdin/stdout until the shard terminates.

Exit Status:
    0 - A terminal action (leaseLost, shardEnded) was acknowledged
    1 - Any fatal fault: protocol violation, transport failure, end of
        stream before a terminal action, or a processor hook that raised

Example:
    from kcl_child import RecordProcessor, main

    class MyProcessor(RecordProcessor):
        ...

    if __name__ == "__main__":
        main(MyProcessor())
"""

import asyncio
import contextlib
import logging
import sys
from typing import BinaryIO, Optional

from kcl_child.config import Settings, load_config, setup_logging
from kcl_child.engine import (
    ActionDispatcher,
    CheckpointCoordinator,
    StatusReporter,
)
from kcl_child.errors import IOFault, ProtocolFault, UserLogicFault
from kcl_child.models.state import EngineState
from kcl_child.processor import RecordProcessor
from kcl_child.stream import FrameTransport, LineTransport, MessageCodec


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1


class Engine:
    """
    One shard's protocol engine.

    Owns the EngineState and wires transport, codec, checkpoint
    coordinator, status reporter and dispatcher around it.

    Example:
        engine = Engine.from_streams(MyProcessor(), sys.stdin.buffer, sys.stdout.buffer)
        exit_code = asyncio.run(engine.run())
    """

    def __init__(
        self,
        processor: RecordProcessor,
        transport: FrameTransport,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.transport = transport
        self.codec = MessageCodec()
        self.state = EngineState()
        self.coordinator = CheckpointCoordinator(transport, self.codec, self.state)
        self.reporter = StatusReporter(transport, self.codec)
        self.dispatcher = ActionDispatcher(
            processor=processor,
            transport=transport,
            codec=self.codec,
            state=self.state,
            coordinator=self.coordinator,
            reporter=self.reporter,
            warn_on_shard_end_without_checkpoint=(
                self.settings.engine.warn_on_shard_end_without_checkpoint
            ),
        )

    @classmethod
    def from_streams(
        cls,
        processor: RecordProcessor,
        input_stream: BinaryIO,
        output_stream: BinaryIO,
        settings: Optional[Settings] = None,
    ) -> "Engine":
        """Build an engine over a pair of binary streams."""
        settings = settings or Settings()
        transport = LineTransport(
            input_stream,
            output_stream,
            read_chunk_size=settings.transport.read_chunk_size,
            max_frame_bytes=settings.transport.max_frame_bytes,
            encoding=settings.transport.encoding,
        )
        return cls(processor, transport, settings)

    async def run(self) -> int:
        """
        Run until the shard terminates.

        Returns:
            EXIT_OK after a terminal action is acknowledged, EXIT_FATAL otherwise
        """
        exit_code = EXIT_FATAL
        try:
            await self.dispatcher.run()
            exit_code = EXIT_OK
        except UserLogicFault as e:
            logger.error(f"Fatal: {e}", exc_info=e.cause)
        except (ProtocolFault, IOFault) as e:
            logger.error(f"Fatal {type(e).__name__}: {e}")
        except Exception:
            logger.exception("Fatal: unexpected engine failure")
        finally:
            self._log_summary()
        return exit_code

    def metrics(self) -> dict:
        """Get engine metrics for observability."""
        return {
            "shard_id": self.state.shard_id,
            "processor_state": self.state.processor_state.value,
            "dispatcher": self.dispatcher.metrics.to_dict(),
            "checkpoints": self.coordinator.metrics.to_dict(),
            "acknowledged": self.reporter.acknowledged,
        }

    def _log_summary(self) -> None:
        m = self.metrics()
        logger.info(
            f"Shard {m['shard_id']} summary: state={m['processor_state']}, "
            f"actions={m['dispatcher']['actions']}, "
            f"records={m['dispatcher']['records_delivered']}, "
            f"checkpoints={m['checkpoints']}"
        )


def run_processor(
    processor: RecordProcessor,
    settings: Optional[Settings] = None,
    input_stream: Optional[BinaryIO] = None,
    output_stream: Optional[BinaryIO] = None,
) -> int:
    """
    Run a processor over stdin/stdout and return the exit status.

    Args:
        processor: Record processor for this shard
        settings: Configuration (loaded from file/environment if None)
        input_stream: Override for stdin
        output_stream: Override for stdout

    Returns:
        EXIT_OK or EXIT_FATAL
    """
    if settings is None:
        settings = load_config()
    setup_logging(settings)

    engine = Engine.from_streams(
        processor,
        input_stream or sys.stdin.buffer,
        output_stream or sys.stdout.buffer,
        settings,
    )

    if settings.engine.redirect_stdout:
        # Keep stray print() calls off the protocol stream
        with contextlib.redirect_stdout(sys.stderr):
            return asyncio.run(engine.run())
    return asyncio.run(engine.run())


def main(processor: RecordProcessor) -> None:
    """Run ``processor`` and exit the process with its status."""
    sys.exit(run_processor(processor))
