"""
Record Model
============

A single data record delivered inside a ``processRecords`` action.

Wire format:
    {
        "data": "SGVsbG8=",
        "partitionKey": "k1",
        "sequenceNumber": "49590338271490256608559692538361571095921575989136588898",
        "subSequenceNumber": 0,
        "approximateArrivalTimestamp": 1707321234567
    }

``data`` is base64 text on the wire and raw bytes in Python.
``subSequenceNumber`` is only present for records unpacked from an
aggregated record.
"""

import base64
import binascii
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


class Record(BaseModel):
    """
    Immutable record as handed to ``RecordProcessor.process_records``.

    Attributes:
        data: Decoded record payload
        partition_key: Producer-supplied partition key
        sequence_number: Opaque sequence number, ordered within the shard
        sub_sequence_number: Position inside an aggregated record, if any
        approximate_arrival_timestamp: Arrival time in epoch milliseconds
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    data: bytes = Field(
        ...,
        description="Record payload (base64 on the wire)",
    )

    partition_key: str = Field(
        ...,
        alias="partitionKey",
        description="Partition key the producer used",
    )

    sequence_number: str = Field(
        ...,
        alias="sequenceNumber",
        description="Sequence number within the shard",
    )

    sub_sequence_number: Optional[int] = Field(
        default=None,
        ge=0,
        alias="subSequenceNumber",
        description="Sub-sequence number for aggregated records",
    )

    approximate_arrival_timestamp: Optional[float] = Field(
        default=None,
        alias="approximateArrivalTimestamp",
        description="Approximate arrival time (epoch milliseconds)",
    )

    @field_validator("data", mode="before")
    @classmethod
    def _decode_data(cls, value: Any) -> bytes:
        if isinstance(value, (bytes, bytearray)):
            return bytes(value)
        if not isinstance(value, str):
            raise ValueError("data must be base64 encoded text")
        try:
            return base64.b64decode(value, validate=True)
        except binascii.Error as e:
            raise ValueError(f"data is not valid base64: {e}") from e

    @field_serializer("data")
    def _encode_data(self, value: bytes) -> str:
        return base64.b64encode(value).decode("ascii")

    @property
    def arrival_time(self) -> Optional[datetime]:
        """Arrival timestamp as an aware UTC datetime."""
        if self.approximate_arrival_timestamp is None:
            return None
        return datetime.fromtimestamp(
            self.approximate_arrival_timestamp / 1000.0, tz=timezone.utc
        )

    def __repr__(self) -> str:
        """Compact repr that doesn't dump the full payload."""
        return (
            f"Record(sequence_number={self.sequence_number!r}, "
            f"sub_sequence_number={self.sub_sequence_number}, "
            f"partition_key={self.partition_key!r}, "
            f"size={len(self.data)})"
        )
