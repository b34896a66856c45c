"""
Unit tests for the random fund splitter.
"""

import random
from decimal import Decimal

import pytest

from redpacket.allocator import MIN_SHARE, draw_share, split
from redpacket.errors import ValidationError


class TestDrawShare:
    """Test a single draw."""

    def test_last_share_is_exact_remainder(self):
        assert draw_share(Decimal("3.17"), 1) == Decimal("3.17")

    def test_bounds(self):
        rng = random.Random(5)
        for _ in range(500):
            share = draw_share(Decimal("10.00"), 4, rng)
            assert MIN_SHARE <= share <= Decimal("5.00")
            assert share <= Decimal("10.00") - MIN_SHARE * 3

    def test_leaves_a_cent_for_everyone(self):
        rng = random.Random(11)
        for _ in range(200):
            share = draw_share(Decimal("0.05"), 5, rng)
            assert share == MIN_SHARE

    def test_share_is_whole_cents(self):
        rng = random.Random(2)
        for _ in range(100):
            share = draw_share(Decimal("7.77"), 3, rng)
            assert share == share.quantize(Decimal("0.01"))

    def test_rejects_no_remaining_shares(self):
        with pytest.raises(ValidationError):
            draw_share(Decimal("1.00"), 0)

    def test_rejects_underfunded_pool(self):
        with pytest.raises(ValidationError):
            draw_share(Decimal("0.02"), 3)


class TestSplit:
    """Test splitting a whole envelope."""

    @pytest.mark.parametrize("total,count", [("10.00", 3), ("0.03", 3), ("100.00", 100), ("1.00", 1), ("5.55", 7)])
    def test_shares_sum_to_total(self, total, count):
        rng = random.Random(total + str(count))
        shares = split(Decimal(total), count, rng)
        assert len(shares) == count
        assert sum(shares) == Decimal(total)
        assert all(share >= MIN_SHARE for share in shares)

    def test_first_share_mean_is_near_average(self):
        rng = random.Random(1234)
        draws = [draw_share(Decimal("10.00"), 5, rng) for _ in range(4000)]
        mean = sum(draws) / len(draws)
        assert Decimal("1.85") < mean < Decimal("2.15")

    def test_rejects_bad_count(self):
        with pytest.raises(ValidationError):
            split(Decimal("1.00"), 0)

    def test_rejects_total_below_minimum(self):
        with pytest.raises(ValidationError):
            split(Decimal("0.02"), 3)
