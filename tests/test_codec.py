"""Tests for the wire codecs."""

from datetime import datetime, timezone

import pytest

from marketqueue_core.protocol import (
    Codec,
    CodecRegistry,
    GzipCompressor,
    JSONSerializer,
    LZ4Compressor,
    MsgPackSerializer,
    NoCompressor,
)
from marketqueue_core.queue.envelope import JobEnvelope, JobState
from marketqueue_core.queue.names import JobType, QueueName


@pytest.mark.parametrize("name", ["json", "json+gzip", "msgpack", "msgpack+lz4"])
def test_registered_codecs_carry_envelopes(name, payment_data):
    envelope = JobEnvelope.create(QueueName.PAYMENT_RETRY, JobType.RETRY_PAYMENT, payment_data, now=1000.0)
    codec = CodecRegistry.get(name)

    restored = JobEnvelope.from_dict(codec.decode(codec.encode(envelope.to_dict())))

    assert restored.id == envelope.id
    assert restored.payload == payment_data
    assert restored.state == JobState.WAITING
    assert restored.available_at == 1000.0


def test_unknown_codec():
    with pytest.raises(ValueError):
        CodecRegistry.get("xml")
    assert "msgpack" in CodecRegistry.names()


class TestCompression:
    @pytest.mark.parametrize("compressor", [GzipCompressor(), LZ4Compressor()], ids=["gzip", "lz4"])
    def test_small_blobs_stay_raw(self, compressor):
        blob = compressor.compress(b'{"to":"buyer@example.com"}')
        assert blob == b'\x00{"to":"buyer@example.com"}'
        assert compressor.decompress(blob) == b'{"to":"buyer@example.com"}'

    @pytest.mark.parametrize("compressor", [GzipCompressor(), LZ4Compressor()], ids=["gzip", "lz4"])
    def test_large_blobs_compressed(self, compressor):
        data = b"revenue," * 1000
        blob = compressor.compress(data)
        assert blob[:1] == b"\x01"
        assert len(blob) < len(data)
        assert compressor.decompress(blob) == data

    def test_unknown_marker(self):
        with pytest.raises(ValueError):
            GzipCompressor().decompress(b"\x07garbage")

    def test_passthrough(self):
        assert NoCompressor().compress(b"abc") == b"abc"


class TestSerializers:
    def test_normalizes_values(self):
        data = {
            "state": JobState.ACTIVE,
            "at": datetime(2026, 3, 10, 6, 0, tzinfo=timezone.utc),
            "tags": {"b", "a"},
            "range": ("2026-03-01", "2026-03-31"),
        }
        expected = {
            "state": "active",
            "at": "2026-03-10T06:00:00+00:00",
            "tags": ["a", "b"],
            "range": ["2026-03-01", "2026-03-31"],
        }
        for serializer in (JSONSerializer(), MsgPackSerializer()):
            assert serializer.deserialize(serializer.serialize(data)) == expected

    def test_unserializable(self):
        with pytest.raises(TypeError):
            MsgPackSerializer().serialize({"handler": object()})

    @pytest.mark.parametrize("serializer", [JSONSerializer(), MsgPackSerializer()], ids=["json", "msgpack"])
    def test_corrupt_blob(self, serializer):
        with pytest.raises(ValueError):
            serializer.deserialize(b"\xc1\xff{not valid")


def test_codec_repr():
    assert repr(Codec(JSONSerializer(), GzipCompressor())) == "Codec(application/json, gzip)"
