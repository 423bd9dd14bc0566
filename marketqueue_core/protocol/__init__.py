"""MarketQueue Protocol Module - Envelope Serialization & Encoding.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from marketqueue_core.protocol.serializer import Serializer, JSONSerializer, MsgPackSerializer
from marketqueue_core.protocol.compressor import Compressor, GzipCompressor, LZ4Compressor, NoCompressor
from marketqueue_core.protocol.codec import Codec, CodecRegistry

__all__ = [
    "Serializer", "JSONSerializer", "MsgPackSerializer",
    "Compressor", "GzipCompressor", "LZ4Compressor", "NoCompressor",
    "Codec", "CodecRegistry",
]
