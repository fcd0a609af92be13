"""
Frame Data Model
=================

One line of the protocol, without its terminating newline.

Design Rules:
    - A frame never contains a newline
    - Does NOT parse the payload; that is the codec's job
"""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Frame:
    """
    A single newline-delimited message.

    Attributes:
        payload: Decoded text of the line (no trailing newline)
        index: 1-based position among frames read from the daemon,
            0 for frames produced locally
    """

    payload: str
    index: int = 0

    def __repr__(self) -> str:
        """Compact repr that doesn't dump large record batches."""
        preview = self.payload if len(self.payload) <= 80 else self.payload[:77] + "..."
        return f"Frame(index={self.index}, payload={preview!r})"
