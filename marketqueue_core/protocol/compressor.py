"""MarketQueue Compressor - Envelope Compression.

Most envelopes are a few hundred bytes, where compression costs more than
it saves. A compressor only compresses payloads of at least ``min_size``
bytes and prefixes every blob with one marker byte so both forms decode:

    0x00 + raw bytes
    0x01 + compressed bytes

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import gzip
from abc import ABC, abstractmethod

import lz4.frame

RAW = b"\x00"
COMPRESSED = b"\x01"


class Compressor(ABC):
    """Size-gated envelope compressor."""

    def __init__(self, min_size: int = 1024):
        self.min_size = min_size

    @abstractmethod
    def _compress(self, data: bytes) -> bytes:
        pass

    @abstractmethod
    def _decompress(self, data: bytes) -> bytes:
        pass

    @property
    @abstractmethod
    def encoding(self) -> str:
        pass

    def compress(self, data: bytes) -> bytes:
        if len(data) < self.min_size:
            return RAW + data
        return COMPRESSED + self._compress(data)

    def decompress(self, data: bytes) -> bytes:
        """Decompress a marked blob.

        Raises:
            ValueError: If the blob carries no known marker
        """
        marker, body = data[:1], data[1:]
        if marker == RAW:
            return body
        if marker == COMPRESSED:
            return self._decompress(body)
        raise ValueError(f"Unknown {self.encoding} blob marker: {marker!r}")


class GzipCompressor(Compressor):
    """Gzip, paired with JSON for blobs other tools may read."""

    def __init__(self, min_size: int = 1024, level: int = 6):
        super().__init__(min_size)
        self.level = level

    def _compress(self, data: bytes) -> bytes:
        return gzip.compress(data, compresslevel=self.level)

    def _decompress(self, data: bytes) -> bytes:
        return gzip.decompress(data)

    @property
    def encoding(self) -> str:
        return "gzip"


class LZ4Compressor(Compressor):
    """LZ4 frames, for large report and analytics payloads."""

    def _compress(self, data: bytes) -> bytes:
        return lz4.frame.compress(data)

    def _decompress(self, data: bytes) -> bytes:
        return lz4.frame.decompress(data)

    @property
    def encoding(self) -> str:
        return "lz4"


class NoCompressor(Compressor):
    """Passthrough; blobs carry no marker."""

    def __init__(self):
        super().__init__(min_size=0)

    def _compress(self, data: bytes) -> bytes:
        return data

    def _decompress(self, data: bytes) -> bytes:
        return data

    def compress(self, data: bytes) -> bytes:
        return data

    def decompress(self, data: bytes) -> bytes:
        return data

    @property
    def encoding(self) -> str:
        return "identity"


__all__ = ["Compressor", "GzipCompressor", "LZ4Compressor", "NoCompressor"]
