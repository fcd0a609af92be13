"""
Status Reporter
===============

Acknowledges completed actions to the daemon.
"""

import logging

from kcl_child.models.actions import ActionName, StatusMessage
from kcl_child.stream.codec import MessageCodec
from kcl_child.stream.transport import FrameTransport


logger = logging.getLogger(__name__)


class StatusReporter:
    """Writes ``{"action":"status","responseFor":...}`` after each action."""

    def __init__(self, transport: FrameTransport, codec: MessageCodec) -> None:
        self._transport = transport
        self._codec = codec
        self.acknowledged: int = 0

    def report(self, action: ActionName) -> None:
        """
        Acknowledge a completed action.

        Args:
            action: The lifecycle action that finished

        Raises:
            IOFault: The status frame could not be written
        """
        frame = self._codec.encode(StatusMessage(response_for=action))
        self._transport.write_frame(frame)
        self.acknowledged += 1
        logger.debug(f"Acknowledged '{action.value}'")
