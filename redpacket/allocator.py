"""
Fair random split of an envelope ("two-times-average" method).

Each draw is uniform on (0, 2 * remaining / remaining_count], floored at one
cent and capped so every later recipient can still get a cent. The expected
share therefore stays at the running average while any single draw can be
up to twice that.
"""

import random
from decimal import Decimal
from typing import List, Optional

from redpacket.errors import ValidationError
from redpacket.money import CENT, quantize

MIN_SHARE = CENT


def draw_share(remaining: Decimal, remaining_count: int, rng: Optional[random.Random] = None) -> Decimal:
    """
    Draw one claimant's share of the pool.

    Args:
        remaining: Money left in the envelope
        remaining_count: Shares still unclaimed, including this one
        rng: Random source (module default when omitted)

    Returns:
        The share, rounded to the cent. The last share is the exact remainder.
    """
    remaining = quantize(remaining)
    if remaining_count < 1:
        raise ValidationError("No shares remaining")
    if remaining < MIN_SHARE * remaining_count:
        raise ValidationError(f"{remaining} cannot cover {remaining_count} shares of at least {MIN_SHARE}")

    if remaining_count == 1:
        return remaining

    rng = rng or random
    upper = max(MIN_SHARE, 2 * remaining / remaining_count)
    # 1 - random() lies in (0, 1], so the draw lies in (0, upper]
    share = upper * Decimal(repr(1.0 - rng.random()))
    share = max(MIN_SHARE, share)
    share = min(share, remaining - MIN_SHARE * (remaining_count - 1))
    return quantize(share)


def split(total: Decimal, count: int, rng: Optional[random.Random] = None) -> List[Decimal]:
    """Split ``total`` into ``count`` shares of at least one cent that sum to ``total``."""
    total = quantize(total)
    if count < 1:
        raise ValidationError("count must be at least 1")
    if total < MIN_SHARE * count:
        raise ValidationError(f"{count} shares need at least {MIN_SHARE * count}")

    shares = []
    remaining = total
    for remaining_count in range(count, 0, -1):
        share = draw_share(remaining, remaining_count, rng)
        shares.append(share)
        remaining = quantize(remaining - share)
    return shares
