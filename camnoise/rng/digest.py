"""Hash-based entropy tributary.

:class:`DigestRng` hashes each byte blob it is fed (typically an encoded
camera frame) and publishes the digest bits, most significant bit of the
first byte first, through the same typed API as :class:`NoiseRng`.
"""

from __future__ import annotations

import hashlib
from typing import Iterator, List

from camnoise.core.errors import InvalidArgumentError
from camnoise.core.logging_utils import LoggerLike, ensure_structured_logger
from camnoise.rng.bus import BroadcastChannel
from camnoise.rng.values import RandomValues

DEFAULT_ALGORITHM = "sha512"


def digest_bits(data: bytes, algorithm: str = DEFAULT_ALGORITHM) -> List[bool]:
    """Bits of ``hashlib.new(algorithm, data)`` in MSB-first order."""
    try:
        digest = hashlib.new(algorithm, data).digest()
    except (TypeError, ValueError) as exc:
        raise InvalidArgumentError(f"Unsupported digest algorithm '{algorithm}'") from exc
    return list(_iter_bits(digest))


def _iter_bits(data: bytes) -> Iterator[bool]:
    for byte in data:
        for shift in range(7, -1, -1):
            yield bool((byte >> shift) & 1)


class DigestRng(RandomValues):
    """Typed values from digests of fed byte blobs."""

    def __init__(
        self,
        algorithm: str = DEFAULT_ALGORITHM,
        *,
        capacity: int = 4096,
        logger: LoggerLike = None,
    ) -> None:
        if algorithm.lower() not in hashlib.algorithms_available:
            raise InvalidArgumentError(f"Unsupported digest algorithm '{algorithm}'")
        self._algorithm = algorithm.lower()
        self._logger = ensure_structured_logger(logger, fallback_name="DigestRng")
        self._bits: BroadcastChannel[bool] = BroadcastChannel(capacity, name=f"digest-{self._algorithm}", logger=self._logger)

    @property
    def algorithm(self) -> str:
        return self._algorithm

    def feed(self, data: bytes) -> int:
        """Hash ``data`` and publish its bits; returns the number published.

        Blocks while a subscriber's queue is full, like any producer.
        """
        return self._bits.publish_many(digest_bits(bytes(data), self._algorithm))

    def close(self) -> None:
        self._bits.close()

    def __enter__(self) -> "DigestRng":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _bit_channel(self) -> BroadcastChannel[bool]:
        return self._bits


__all__ = ["DEFAULT_ALGORITHM", "DigestRng", "digest_bits"]
