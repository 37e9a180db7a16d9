import math


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def round_half_up(value: float) -> int:
    """
    Rounds .5 away from the floor (2.5 -> 3, -2.5 -> -2).
    The ledgers were tuned with this rule; Python's round() is banker's rounding.
    """
    return int(math.floor(value + 0.5))


def round_to(value: float, places: int = 2) -> float:
    factor = 10 ** places
    return math.floor(value * factor + 0.5) / factor
