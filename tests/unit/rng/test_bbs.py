"""Unit tests for the Blum-Blum-Shub generator."""

from unittest.mock import MagicMock, patch

import pytest

from camnoise.core.errors import InvalidArgumentError
from camnoise.rng.bbs import BlumBlumShub, generate_blum_modulus

MODULUS = 253  # 11 * 23


def _reference_bits(seed: int, count: int, modulus: int = MODULUS):
    state = seed * seed % modulus
    bits = []
    for _ in range(count):
        state = state * state % modulus
        bits.append(state & 1)
    return bits


class TestBlumBlumShubOutput:
    """Bit sequence for a fixed modulus and seed."""

    def test_bits_follow_repeated_squaring(self):
        generator = BlumBlumShub(modulus=MODULUS, seed=3)

        bits = [generator.next_bit() for _ in range(40)]

        assert bits == _reference_bits(3, 40)

    def test_same_seed_same_sequence(self):
        first = BlumBlumShub(modulus=MODULUS, seed=5)
        second = BlumBlumShub(modulus=MODULUS, seed=5)

        assert [first.next_bit() for _ in range(32)] == [second.next_bit() for _ in range(32)]

    def test_next_bits_packs_msb_first(self):
        generator = BlumBlumShub(modulus=MODULUS, seed=3)
        expected = 0
        for bit in _reference_bits(3, 8):
            expected = (expected << 1) | bit

        assert generator.next_bits(8) == expected

    def test_next_bits_zero_count(self):
        generator = BlumBlumShub(modulus=MODULUS, seed=3)

        assert generator.next_bits(0) == 0

    def test_next_bits_negative_count(self):
        generator = BlumBlumShub(modulus=MODULUS, seed=3)

        with pytest.raises(InvalidArgumentError):
            generator.next_bits(-1)

    def test_set_seed_restarts_sequence(self):
        generator = BlumBlumShub(modulus=MODULUS, seed=3)
        first = [generator.next_bit() for _ in range(16)]

        generator.set_seed(3)

        assert [generator.next_bit() for _ in range(16)] == first

    def test_random_seed_is_valid(self):
        generator = BlumBlumShub(modulus=MODULUS)

        bits = [generator.next_bit() for _ in range(64)]

        assert set(bits) <= {0, 1}

    def test_modulus_bits(self):
        assert BlumBlumShub(modulus=MODULUS, seed=3).modulus_bits == 8


class TestBlumBlumShubValidation:
    """Seed and modulus checks."""

    @pytest.mark.parametrize("seed", [0, 1, MODULUS - 1, 11, 23, 22])
    def test_rejects_degenerate_seeds(self, seed):
        with pytest.raises(InvalidArgumentError):
            BlumBlumShub(modulus=MODULUS, seed=seed)

    def test_rejects_tiny_modulus(self):
        with pytest.raises(InvalidArgumentError):
            BlumBlumShub(modulus=9, seed=2)

    def test_generate_rejects_short_modulus(self):
        with pytest.raises(InvalidArgumentError):
            generate_blum_modulus(512)


class TestGenerateBlumModulus:
    """Prime selection on top of RSA key generation."""

    def _key(self, p, q):
        key = MagicMock()
        key.private_numbers.return_value.p = p
        key.private_numbers.return_value.q = q
        return key

    def test_retries_until_both_primes_are_3_mod_4(self):
        keys = [self._key(13, 23), self._key(11, 29), self._key(11, 23)]

        with patch("camnoise.rng.bbs.rsa.generate_private_key", side_effect=keys) as generate:
            modulus = generate_blum_modulus(1024)

        assert modulus == 253
        assert generate.call_count == 3
        assert generate.call_args.kwargs["key_size"] == 1024

    def test_default_constructor_uses_generated_modulus(self):
        with patch("camnoise.rng.bbs.generate_blum_modulus", return_value=MODULUS) as generate:
            generator = BlumBlumShub(2048, seed=3)

        generate.assert_called_once_with(2048)
        assert generator.modulus_bits == 8

    @pytest.mark.slow
    def test_real_modulus_factors_are_blum_primes(self):
        modulus = generate_blum_modulus(1024)

        assert modulus.bit_length() in (1023, 1024)
        assert modulus % 4 == 1
