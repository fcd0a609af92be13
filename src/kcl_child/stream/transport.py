"""
Line Transport
==============

Newline framing over a pair of binary streams.

This module provides the LineTransport class which:
    - Reads the inbound stream in chunks off the event loop thread
    - Buffers partial reads until a full line is available
    - Hands out exactly one frame per read_frame() call
    - Writes one frame per line and flushes before returning

Design Rules:
    - Splits purely on b"\\n"; a trailing b"\\r" is dropped, blank lines skipped
    - Bytes past a newline stay in the buffer and are not decoded until
      the next read_frame() call. Reads are chunked for throughput, so the
      buffer may hold later frames, but nothing past the current boundary
      is acted on before the engine asks for it
    - Clean end of stream returns None; end of stream in the middle of a
      line is an IOFault
    - Nothing but protocol frames is ever written to the output stream
"""

import asyncio
import logging
from typing import BinaryIO, Callable, Optional, Protocol

from kcl_child.errors import IOFault, ProtocolFault
from kcl_child.stream.frame import Frame


logger = logging.getLogger(__name__)

DEFAULT_READ_CHUNK_SIZE = 64 * 1024
DEFAULT_MAX_FRAME_BYTES = 64 * 1024 * 1024


class FrameTransport(Protocol):
    """
    Protocol for frame transports.

    The engine only needs these two operations; tests substitute an
    in-memory implementation.
    """

    async def read_frame(self) -> Optional[Frame]:
        """Return the next frame, or None at end of stream."""
        ...

    def write_frame(self, frame: Frame) -> None:
        """Write a frame and flush it."""
        ...


class TransportMetrics:
    """Metrics for LineTransport observability."""

    __slots__ = (
        "frames_read",
        "frames_written",
        "bytes_read",
        "bytes_written",
        "blank_lines",
    )

    def __init__(self) -> None:
        self.frames_read: int = 0
        self.frames_written: int = 0
        self.bytes_read: int = 0
        self.bytes_written: int = 0
        self.blank_lines: int = 0

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "frames_read": self.frames_read,
            "frames_written": self.frames_written,
            "bytes_read": self.bytes_read,
            "bytes_written": self.bytes_written,
            "blank_lines": self.blank_lines,
        }


class LineTransport:
    """
    Newline-delimited frame transport over binary streams.

    Attributes:
        read_chunk_size: Maximum bytes requested per underlying read
        max_frame_bytes: Largest frame accepted before failing
        encoding: Text encoding of frames
        metrics: Operational metrics

    Example:
        transport = LineTransport(sys.stdin.buffer, sys.stdout.buffer)

        frame = await transport.read_frame()
        transport.write_frame(Frame('{"action":"status","responseFor":"initialize"}'))
    """

    def __init__(
        self,
        input_stream: BinaryIO,
        output_stream: BinaryIO,
        read_chunk_size: int = DEFAULT_READ_CHUNK_SIZE,
        max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES,
        encoding: str = "utf-8",
    ) -> None:
        """
        Initialize transport.

        Args:
            input_stream: Stream the daemon writes actions to (stdin)
            output_stream: Stream the daemon reads responses from (stdout)
            read_chunk_size: Bytes per underlying read. Must be >= 1.
            max_frame_bytes: Frame size limit. Must be >= 1.
            encoding: Text encoding of frames
        """
        if read_chunk_size < 1:
            raise ValueError("read_chunk_size must be >= 1")
        if max_frame_bytes < 1:
            raise ValueError("max_frame_bytes must be >= 1")

        self._input = input_stream
        self._output = output_stream
        self.read_chunk_size = read_chunk_size
        self.max_frame_bytes = max_frame_bytes
        self.encoding = encoding

        # read1 returns whatever is available instead of blocking for a full chunk
        self._read: Callable[[int], bytes] = getattr(input_stream, "read1", input_stream.read)

        self._buffer = bytearray()
        self._scan_from: int = 0
        self._eof: bool = False

        self.metrics = TransportMetrics()

    @property
    def buffered(self) -> int:
        """Bytes read from the input stream but not yet framed."""
        return len(self._buffer)

    async def read_frame(self) -> Optional[Frame]:
        """
        Read the next frame.

        Returns:
            The next non-blank frame, or None on clean end of stream

        Raises:
            IOFault: Read failure, oversized frame or truncated final line
            ProtocolFault: Frame is not valid text in the configured encoding
        """
        while True:
            newline = self._buffer.find(b"\n", self._scan_from)
            if newline >= 0:
                raw = bytes(self._buffer[:newline])
                del self._buffer[: newline + 1]
                self._scan_from = 0

                if len(raw) > self.max_frame_bytes:
                    raise IOFault(f"Frame exceeds {self.max_frame_bytes} bytes")
                if raw.endswith(b"\r"):
                    raw = raw[:-1]
                if not raw.strip():
                    self.metrics.blank_lines += 1
                    continue
                return self._to_frame(raw)

            self._scan_from = len(self._buffer)
            if len(self._buffer) > self.max_frame_bytes:
                raise IOFault(
                    f"Frame exceeds {self.max_frame_bytes} bytes without a newline"
                )

            if self._eof:
                if self._buffer:
                    raise IOFault(
                        f"Input closed in the middle of a frame "
                        f"({len(self._buffer)} bytes buffered)"
                    )
                return None

            chunk = await self._read_chunk()
            if not chunk:
                logger.debug("Input stream reached end of file")
                self._eof = True
            else:
                self.metrics.bytes_read += len(chunk)
                self._buffer.extend(chunk)

    def write_frame(self, frame: Frame) -> None:
        """
        Write a frame followed by a newline and flush.

        Raises:
            ProtocolFault: Frame payload contains a newline
            IOFault: Write or flush failed
        """
        if "\n" in frame.payload:
            raise ProtocolFault("Refusing to write a frame containing a newline")

        data = frame.payload.encode(self.encoding) + b"\n"
        try:
            self._output.write(data)
            self._output.flush()
        except (OSError, ValueError) as e:
            raise IOFault(f"Failed to write frame: {e}") from e

        self.metrics.frames_written += 1
        self.metrics.bytes_written += len(data)

    async def _read_chunk(self) -> bytes:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._read, self.read_chunk_size)
        except (OSError, ValueError) as e:
            raise IOFault(f"Failed to read from input stream: {e}") from e

    def _to_frame(self, raw: bytes) -> Frame:
        try:
            payload = raw.decode(self.encoding)
        except UnicodeDecodeError as e:
            raise ProtocolFault(f"Frame is not valid {self.encoding}: {e}") from e

        self.metrics.frames_read += 1
        return Frame(payload=payload, index=self.metrics.frames_read)
