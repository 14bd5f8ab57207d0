"""Blum-Blum-Shub quadratic residue bit generator.

Used only to whiten camera bits (``DebiasMethod.XOR_WITH_CSPRNG``); it never
sees sensor data. Each output bit squares the state modulo ``n = p * q``
(both primes congruent to 3 mod 4) and returns the least significant bit.
"""

from __future__ import annotations

import math
import secrets
from typing import Optional

from cryptography.hazmat.primitives.asymmetric import rsa

from camnoise.core.errors import InvalidArgumentError
from camnoise.core.logging_utils import get_module_logger

logger = get_module_logger("BlumBlumShub")

_MIN_MODULUS_BITS = 1024
_PUBLIC_EXPONENT = 65537


def generate_blum_modulus(bits: int = _MIN_MODULUS_BITS) -> int:
    """Return ``p * q`` for fresh primes with ``p % 4 == q % 4 == 3``.

    RSA key generation already yields two balanced, distinct primes; keys are
    drawn until both factors are Blum primes (one in four draws on average).
    """
    if bits < _MIN_MODULUS_BITS:
        raise InvalidArgumentError(f"modulus must be at least {_MIN_MODULUS_BITS} bits, got {bits}")
    attempts = 0
    while True:
        attempts += 1
        numbers = rsa.generate_private_key(
            public_exponent=_PUBLIC_EXPONENT,
            key_size=bits,
        ).private_numbers()
        if numbers.p % 4 == 3 and numbers.q % 4 == 3:
            logger.debug("Generated %d-bit Blum modulus after %d key(s)", bits, attempts)
            return numbers.p * numbers.q


class BlumBlumShub:
    """Deterministic given ``(modulus, seed)``; seeded from ``secrets`` otherwise."""

    def __init__(
        self,
        bits: int = _MIN_MODULUS_BITS,
        *,
        modulus: Optional[int] = None,
        seed: Optional[int] = None,
    ) -> None:
        if modulus is None:
            modulus = generate_blum_modulus(bits)
        if modulus < 21:
            raise InvalidArgumentError(f"modulus must be at least 21 (3 * 7), got {modulus}")
        self._n = modulus
        self._state = 0
        self.set_seed(seed if seed is not None else self._random_seed())

    def _random_seed(self) -> int:
        while True:
            candidate = secrets.randbelow(self._n - 3) + 2
            if math.gcd(candidate, self._n) == 1:
                return candidate

    def set_seed(self, seed: int) -> None:
        """Reset the state to ``seed**2 mod n``; the seed must be coprime to ``n``."""
        seed %= self._n
        if seed in (0, 1, self._n - 1) or math.gcd(seed, self._n) != 1:
            raise InvalidArgumentError("seed must be coprime to the modulus and not 0, 1 or n - 1")
        self._state = pow(seed, 2, self._n)

    @property
    def modulus_bits(self) -> int:
        return self._n.bit_length()

    def next_bit(self) -> int:
        self._state = pow(self._state, 2, self._n)
        return self._state & 1

    def next_bits(self, count: int) -> int:
        """Return ``count`` bits packed MSB-first into an int."""
        if count < 0:
            raise InvalidArgumentError("count must be non-negative")
        result = 0
        for _ in range(count):
            result = (result << 1) | self.next_bit()
        return result


__all__ = ["BlumBlumShub", "generate_blum_modulus"]
