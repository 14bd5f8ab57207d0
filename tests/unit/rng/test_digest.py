"""Unit tests for the digest entropy source."""

import hashlib

import pytest

from camnoise.core.errors import InvalidArgumentError
from camnoise.rng.digest import DigestRng, digest_bits


def msb_first(data: bytes):
    return [bool((byte >> shift) & 1) for byte in data for shift in range(7, -1, -1)]


class TestDigestBits:
    """Hashing blobs into bits."""

    def test_sha512_msb_first(self):
        bits = digest_bits(b"abc")

        assert len(bits) == 512
        assert bits == msb_first(hashlib.sha512(b"abc").digest())

    def test_other_algorithm(self):
        assert digest_bits(b"abc", "sha256") == msb_first(hashlib.sha256(b"abc").digest())

    def test_unknown_algorithm(self):
        with pytest.raises(InvalidArgumentError):
            digest_bits(b"abc", "not-a-hash")


class TestDigestRng:
    """Typed values over fed digests."""

    def test_feed_then_read(self):
        with DigestRng("sha256") as rng:
            stream = rng.uint8s()

            assert rng.feed(b"frame-1") == 256

            expected = hashlib.sha256(b"frame-1").digest()
            assert [stream.next(1.0) for _ in range(4)] == list(expected[:4])

    def test_feed_accepts_bytearray(self):
        with DigestRng() as rng:
            stream = rng.booleans()

            rng.feed(bytearray(b"abc"))

            assert stream.next(1.0) == msb_first(hashlib.sha512(b"abc").digest())[0]

    def test_algorithm_name_normalized(self):
        with DigestRng("SHA256") as rng:
            assert rng.algorithm == "sha256"

    def test_unknown_algorithm_rejected(self):
        with pytest.raises(InvalidArgumentError):
            DigestRng("md17")

    def test_stream_ends_after_close(self):
        rng = DigestRng()
        stream = rng.uint64s()

        rng.close()

        with pytest.raises(StopIteration):
            stream.next(1.0)
