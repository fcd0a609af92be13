"""
Message Codec
=============

Converts frames to typed actions and typed messages to frames.

Design Rules:
    - Every required field is validated by the pydantic models
    - Unknown fields are ignored
    - Anything that fails validation is a ProtocolFault; there is no
      way to resynchronize with the daemon, so callers treat it as fatal
"""

import json
import logging

from pydantic import TypeAdapter, ValidationError

from kcl_child.errors import ProtocolFault
from kcl_child.models.actions import Action, OutboundMessage, WireMessage
from kcl_child.stream.frame import Frame


logger = logging.getLogger(__name__)


def _summarize(error: ValidationError) -> str:
    """One-line description of a validation error, without echoing payloads."""
    parts = []
    for detail in error.errors(include_url=False, include_input=False):
        location = ".".join(str(p) for p in detail.get("loc", ())) or "<frame>"
        parts.append(f"{location}: {detail.get('msg')}")
    return "; ".join(parts)


class MessageCodec:
    """
    JSON codec for the line protocol.

    Example:
        codec = MessageCodec()

        action = codec.decode(Frame('{"action":"leaseLost"}'))
        frame = codec.encode(StatusMessage(response_for=ActionName.LEASE_LOST))
    """

    def __init__(self) -> None:
        self._actions: TypeAdapter = TypeAdapter(Action)
        self._outbound: TypeAdapter = TypeAdapter(OutboundMessage)

    def decode(self, frame: Frame) -> Action:
        """
        Decode an inbound frame.

        Args:
            frame: Frame read from the daemon

        Returns:
            One of the inbound action models

        Raises:
            ProtocolFault: Invalid JSON, unknown action, or bad fields
        """
        try:
            action = self._actions.validate_json(frame.payload)
        except ValidationError as e:
            raise ProtocolFault(
                f"Invalid action in frame {frame.index}: {_summarize(e)}"
            ) from e

        logger.debug(f"Decoded '{action.action}' from frame {frame.index}")
        return action

    def decode_message(self, frame: Frame) -> WireMessage:
        """
        Decode an outbound frame (status or checkpoint request).

        Used by tools and tests that play the daemon's side.
        """
        try:
            return self._outbound.validate_json(frame.payload)
        except ValidationError as e:
            raise ProtocolFault(f"Invalid message: {_summarize(e)}") from e

    def encode(self, message: WireMessage) -> Frame:
        """
        Encode a message as a compact single-line JSON frame.

        Args:
            message: Any wire model

        Returns:
            Frame ready for the transport
        """
        payload = json.dumps(message.to_wire(), separators=(",", ":"), ensure_ascii=False)
        return Frame(payload=payload)
