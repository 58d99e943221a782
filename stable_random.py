"""
Reproducible pseudo-random streams keyed by coordinates.

The factor scorers add a little jitter so scores don't look suspiciously
round.  The jitter must be identical for the same location on every run, so
each stream is seeded from the coordinates plus a purpose tag ("traffic",
"safety", ...).  Not suitable for anything but cosmetic variance.
"""

from typing import Callable

_UINT32 = 2 ** 32

# Numerical Recipes LCG constants.
LCG_MULTIPLIER = 1664525
LCG_INCREMENT = 1013904223


def _to_int32(value: int) -> int:
    """Wrap an arbitrary int to a signed 32-bit value."""
    value &= 0xFFFFFFFF
    return value - _UINT32 if value >= 0x80000000 else value


def string_hash(text: str) -> int:
    """31-multiplier rolling hash over *text*, as a non-negative int.

    Each step computes ``(h << 5) - h + ord(ch)`` wrapped to signed 32 bits;
    the result is the absolute value of the final state.
    """
    h = 0
    for ch in text:
        h = _to_int32((h << 5) - h + ord(ch))
    return abs(h)


def seed_string(lat: float, lng: float, tag: str) -> str:
    # + 0.0 turns -0.0 into 0.0 so both format as "0.000000"
    return f"{lat + 0.0:.6f}_{lng + 0.0:.6f}_{tag}"


def make_rng(lat: float, lng: float, tag: str = "") -> Callable[[], float]:
    """Return a generator of floats in [0, 1) seeded by (lat, lng, tag).

    Two generators built from the same arguments yield the same sequence.
    """
    state = string_hash(seed_string(lat, lng, tag))

    def _next() -> float:
        nonlocal state
        state = (state * LCG_MULTIPLIER + LCG_INCREMENT) % _UINT32
        return state / _UINT32

    return _next
