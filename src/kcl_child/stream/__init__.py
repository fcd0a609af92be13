"""
Stream Module
=============

Framing and encoding of the line protocol.

This module provides the transport layer for the engine:
    - Frame: One newline-delimited message
    - LineTransport: Chunked reader / flushing writer over binary streams
    - MessageCodec: JSON <-> typed action conversion

Example:
    from kcl_child.stream import LineTransport, MessageCodec

    transport = LineTransport(sys.stdin.buffer, sys.stdout.buffer)
    codec = MessageCodec()

    frame = await transport.read_frame()
    action = codec.decode(frame)
"""

from kcl_child.stream.frame import Frame
from kcl_child.stream.transport import FrameTransport, LineTransport, TransportMetrics
from kcl_child.stream.codec import MessageCodec


__all__ = [
    "Frame",
    "FrameTransport",
    "LineTransport",
    "TransportMetrics",
    "MessageCodec",
]
