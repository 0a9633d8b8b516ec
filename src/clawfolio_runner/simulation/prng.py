"""Seed hashing and the deterministic generator behind the simulation.

Both functions work in unsigned 32-bit arithmetic so a given seed text
yields bit-identical draws on every run and platform.
"""

from __future__ import annotations

_MASK32 = 0xFFFFFFFF
_FNV_OFFSET_BASIS = 2166136261
_MULBERRY_INCREMENT = 0x6D2B79F5
_TWO_POW_32 = 4294967296.0


def hash_seed(text: str) -> int:
    """Hash ``text`` to an unsigned 32-bit seed (FNV-1a variant).

    The multiply by the FNV prime is expressed as the shift-and-add
    ``h + (h<<1) + (h<<4) + (h<<7) + (h<<8) + (h<<24)``.
    """
    h = _FNV_OFFSET_BASIS
    for ch in text:
        h = (h ^ ord(ch)) & _MASK32
        h = (h + (h << 1) + (h << 4) + (h << 7) + (h << 8) + (h << 24)) & _MASK32
    return h


def seed_text(chain_id: int, bot_id: int, now: int, tick_interval_seconds: int) -> str:
    """Seed text for one bot in one tick bucket."""
    return f"{chain_id}:{bot_id}:{tick_bucket(now, tick_interval_seconds)}"


def tick_bucket(now: int, tick_interval_seconds: int) -> int:
    return now // tick_interval_seconds


class Mulberry32:
    """Mulberry32 generator yielding floats in [0, 1).

    The generator is a plain stateful value: construct one per bot per
    tick and pass it to whatever consumes draws, in order.

    Example:
        ```python
        rng = Mulberry32(hash_seed("10143:0:57000000"))
        signal = rng.next_float() * 2 - 1
        ```
    """

    def __init__(self, seed: int) -> None:
        self._state = seed & _MASK32

    @property
    def state(self) -> int:
        return self._state

    def next_u32(self) -> int:
        self._state = (self._state + _MULBERRY_INCREMENT) & _MASK32
        t = self._state
        x = ((t ^ (t >> 15)) * (1 | t)) & _MASK32
        x = (x ^ ((x + (((x ^ (x >> 7)) * (61 | x)) & _MASK32)) & _MASK32)) & _MASK32
        return (x ^ (x >> 14)) & _MASK32

    def next_float(self) -> float:
        return self.next_u32() / _TWO_POW_32
