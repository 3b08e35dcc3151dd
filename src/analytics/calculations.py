"""
Small numeric helpers shared by the aggregator.
"""

import math


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves toward +infinity"""
    return int(math.floor(value + 0.5))


def growth_rate(previous: float, current: float) -> int:
    """
    Period-over-period growth in whole percent.

    0 -> 0 is 0%, and 0 -> anything positive is +100% by convention, so the
    function never divides by zero.

    Example:
        >>> growth_rate(100, 50)
        -50
    """
    if previous == 0:
        return 100 if current > 0 else 0
    return round_half_up((current - previous) / previous * 100)


def safe_average(total: float, count: int) -> float:
    if count == 0:
        return 0.0
    return round(total / count, 2)
