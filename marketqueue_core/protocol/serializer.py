"""MarketQueue Serializer - Envelope and Record Serialization.

Serializers turn the plain-data form of an envelope (``JobEnvelope.to_dict``)
or a dead-letter record into bytes and back. Values the broker never stores
natively are normalized on the way in:

- enums become their value
- sets and tuples become lists (sets sorted)
- datetimes and dates become ISO-8601 strings
- bytes inside JSON become latin-1 text

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from datetime import date, datetime
from enum import Enum
from typing import Any

import msgpack


def _normalize(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    if isinstance(value, tuple):
        return list(value)
    raise TypeError(f"Cannot serialize {type(value).__name__} in a job envelope")


class Serializer(ABC):
    """Abstract envelope serializer."""

    @abstractmethod
    def serialize(self, data: Any) -> bytes:
        pass

    @abstractmethod
    def deserialize(self, data: bytes) -> Any:
        """Deserialize bytes.

        Raises:
            ValueError: If ``data`` is not a valid blob for this format
        """
        pass

    @property
    @abstractmethod
    def content_type(self) -> str:
        pass


class JSONSerializer(Serializer):
    """Compact JSON, readable with ``redis-cli``."""

    def serialize(self, data: Any) -> bytes:
        return json.dumps(data, separators=(",", ":"), default=self._default).encode("utf-8")

    @staticmethod
    def _default(value: Any) -> Any:
        if isinstance(value, (bytes, bytearray)):
            return bytes(value).decode("latin-1")
        return _normalize(value)

    def deserialize(self, data: bytes) -> Any:
        if isinstance(data, str):
            data = data.encode("utf-8")
        try:
            return json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ValueError(f"Corrupt {self.content_type} blob: {e}") from e

    @property
    def content_type(self) -> str:
        return "application/json"


class MsgPackSerializer(Serializer):
    """MessagePack, the default broker format."""

    def serialize(self, data: Any) -> bytes:
        return msgpack.packb(data, use_bin_type=True, default=_normalize)

    def deserialize(self, data: bytes) -> Any:
        try:
            return msgpack.unpackb(data, raw=False)
        except (msgpack.exceptions.UnpackException, ValueError) as e:
            raise ValueError(f"Corrupt {self.content_type} blob: {e}") from e

    @property
    def content_type(self) -> str:
        return "application/msgpack"


__all__ = ["Serializer", "JSONSerializer", "MsgPackSerializer"]
