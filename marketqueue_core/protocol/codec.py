"""MarketQueue Codec - Pluggable Codec System.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from marketqueue_core.protocol.serializer import Serializer, JSONSerializer, MsgPackSerializer
from marketqueue_core.protocol.compressor import (
    Compressor,
    GzipCompressor,
    LZ4Compressor,
    NoCompressor,
)


class Codec:
    """Envelope codec combining serialization and compression."""

    def __init__(
        self,
        serializer: Optional[Serializer] = None,
        compressor: Optional[Compressor] = None,
    ):
        self.serializer = serializer or MsgPackSerializer()
        self.compressor = compressor or NoCompressor()

    def encode(self, data: Any) -> bytes:
        """Encode data to bytes."""
        serialized = self.serializer.serialize(data)
        return self.compressor.compress(serialized)

    def decode(self, data: bytes) -> Any:
        """Decode bytes to data."""
        decompressed = self.compressor.decompress(data)
        return self.serializer.deserialize(decompressed)

    @property
    def content_type(self) -> str:
        return self.serializer.content_type

    @property
    def content_encoding(self) -> str:
        return self.compressor.encoding

    def __repr__(self) -> str:
        return f"Codec({self.content_type}, {self.content_encoding})"


class CodecRegistry:
    """Registry for codec lookup by name."""

    _codecs: Dict[str, Codec] = {}

    @classmethod
    def register(cls, name: str, codec: Codec) -> None:
        """Register a codec."""
        cls._codecs[name] = codec

    @classmethod
    def get(cls, name: str) -> Codec:
        """Get a codec by name.

        Raises:
            ValueError: If no codec is registered under the name
        """
        try:
            return cls._codecs[name]
        except KeyError:
            raise ValueError(
                f"Unknown codec {name!r}; known: {sorted(cls._codecs)}"
            ) from None

    @classmethod
    def names(cls) -> list:
        return sorted(cls._codecs)


CodecRegistry.register("json", Codec(JSONSerializer()))
CodecRegistry.register("json+gzip", Codec(JSONSerializer(), GzipCompressor()))
CodecRegistry.register("msgpack", Codec(MsgPackSerializer()))
CodecRegistry.register("msgpack+lz4", Codec(MsgPackSerializer(), LZ4Compressor()))


__all__ = ["Codec", "CodecRegistry"]
