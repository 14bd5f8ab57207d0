"""Unit tests for raw bit extraction and whitening."""

import pytest

from camnoise.core.errors import InvalidArgumentError
from camnoise.rng.bbs import BlumBlumShub
from camnoise.rng.debias import DebiasMethod, Debiaser, ReferenceMode, raw_bit

T, F = True, False


def small_csprng():
    return BlumBlumShub(modulus=253, seed=3)


class TestRawBit:
    """Comparison of the newest sample with its reference."""

    def test_brighter_is_true(self):
        assert raw_bit([10.0, 12.0]) is True

    def test_darker_is_false(self):
        assert raw_bit([12.0, 10.0]) is False

    def test_tie_emits_nothing(self):
        assert raw_bit([10.0, 10.0]) is None

    def test_single_sample_emits_nothing(self):
        assert raw_bit([10.0]) is None
        assert raw_bit([]) is None

    def test_window_start_reference(self):
        history = [10.0, 20.0, 15.0]

        assert raw_bit(history, ReferenceMode.PREVIOUS) is False
        assert raw_bit(history, ReferenceMode.WINDOW_START) is True

    def test_median_reference(self):
        assert raw_bit([10.0, 30.0, 20.0, 25.0], ReferenceMode.MEDIAN) is True
        assert raw_bit([10.0, 30.0, 20.0, 12.0], ReferenceMode.MEDIAN) is False

    def test_median_tie_emits_nothing(self):
        assert raw_bit([10.0, 30.0, 20.0], ReferenceMode.MEDIAN) is None

    def test_parse_reference(self):
        assert ReferenceMode.parse("Median") is ReferenceMode.MEDIAN
        with pytest.raises(InvalidArgumentError):
            ReferenceMode.parse("mean")


class TestVonNeumann:
    """Intra-stream pairing of consecutive raw bits."""

    def test_pairs_are_consumed_without_overlap(self):
        debiaser = Debiaser(DebiasMethod.VON_NEUMANN)

        # pairs (T,F) (F,T) (T,T)
        assert debiaser.process([T, F, F, T, T, T]) == [T, F]

    def test_equal_pair_discarded(self):
        debiaser = Debiaser(DebiasMethod.VON_NEUMANN)

        # pairs (T,F) then (T,T)
        assert debiaser.process([T, F, T, T]) == [T]

    def test_pending_bit_carries_across_ticks(self):
        debiaser = Debiaser(DebiasMethod.VON_NEUMANN)

        assert debiaser.process([F]) == []
        assert debiaser.process([T]) == [F]

    def test_ties_are_skipped_not_paired(self):
        debiaser = Debiaser(DebiasMethod.VON_NEUMANN)

        assert debiaser.process([T, None, F]) == [T]

    def test_reset_drops_pending_bit(self):
        debiaser = Debiaser(DebiasMethod.VON_NEUMANN)
        debiaser.process([T])

        debiaser.reset()

        assert debiaser.process([F, F]) == []


class TestInterframeVonNeumann:
    """Pairs are formed per pixel across ticks."""

    def test_pairs_each_pixel_with_its_previous_bit(self):
        debiaser = Debiaser(DebiasMethod.INTERFRAME_VON_NEUMANN)

        assert debiaser.process([T, T]) == []
        assert debiaser.process([F, T]) == [T]
        assert debiaser.process([F, F]) == []
        assert debiaser.process([T, F]) == [F]

    def test_adjacent_pixels_are_not_paired(self):
        debiaser = Debiaser(DebiasMethod.INTERFRAME_VON_NEUMANN)

        assert debiaser.process([T, F]) == []


class TestInterpixelXor:
    """XOR across distinct pixels."""

    def test_true_false_gives_true(self):
        assert Debiaser(DebiasMethod.INTERPIXEL_XOR).process([T, F]) == [T]

    def test_true_true_gives_false(self):
        assert Debiaser(DebiasMethod.INTERPIXEL_XOR).process([T, T]) == [F]

    def test_never_discards_complete_groups(self):
        debiaser = Debiaser(DebiasMethod.INTERPIXEL_XOR)

        assert debiaser.process([T, F, F, F, T, T]) == [T, F, F]

    def test_group_of_three(self):
        debiaser = Debiaser(DebiasMethod.INTERPIXEL_XOR, xor_group_size=3)

        assert debiaser.process([T, T, T, F]) == [T]

    def test_same_pixel_replaces_stale_bit(self):
        debiaser = Debiaser(DebiasMethod.INTERPIXEL_XOR)

        assert debiaser.feed(T, pixel=0) is None
        assert debiaser.feed(F, pixel=0) is None
        assert debiaser.feed(T, pixel=1) is T

    def test_group_size_below_two_rejected(self):
        with pytest.raises(InvalidArgumentError):
            Debiaser(DebiasMethod.INTERPIXEL_XOR, xor_group_size=1)


class TestCsprngXor:
    """XOR with the Blum-Blum-Shub generator."""

    def test_xors_with_generator_bits(self):
        reference = small_csprng()
        expected = [bool(reference.next_bit()) != T for _ in range(16)]
        debiaser = Debiaser(DebiasMethod.XOR_WITH_CSPRNG, csprng_factory=small_csprng)

        assert debiaser.process([T] * 16) == expected

    def test_never_discards(self):
        debiaser = Debiaser(DebiasMethod.XOR_WITH_CSPRNG, csprng_factory=small_csprng)

        assert len(debiaser.process([T, F, None, T])) == 3

    def test_generator_created_lazily(self):
        calls = []

        def factory():
            calls.append(1)
            return small_csprng()

        debiaser = Debiaser(DebiasMethod.XOR_WITH_CSPRNG, csprng_factory=factory)
        assert calls == []

        debiaser.process([T, F])
        debiaser.process([T])

        assert calls == [1]


class TestMethodSelection:
    """Passthrough and runtime switching."""

    def test_none_passes_bits_through(self):
        assert Debiaser(DebiasMethod.NONE).process([T, F, None, F]) == [T, F, F]

    def test_parse_by_value(self):
        assert DebiasMethod.parse("XOR_CSPRNG") is DebiasMethod.XOR_WITH_CSPRNG
        assert DebiasMethod.parse(DebiasMethod.NONE) is DebiasMethod.NONE

    def test_parse_unknown(self):
        with pytest.raises(InvalidArgumentError):
            DebiasMethod.parse("sha256")

    def test_switching_method_resets_state(self):
        debiaser = Debiaser(DebiasMethod.VON_NEUMANN)
        debiaser.process([T])

        debiaser.method = "none"
        debiaser.method = DebiasMethod.VON_NEUMANN

        assert debiaser.process([F, F]) == []

    def test_setting_same_method_keeps_state(self):
        debiaser = Debiaser(DebiasMethod.VON_NEUMANN)
        debiaser.process([T])

        debiaser.method = DebiasMethod.VON_NEUMANN

        assert debiaser.process([F]) == [T]
