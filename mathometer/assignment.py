"""Counterbalancing primitives: permutation, circular rotation and side alternation."""

from __future__ import annotations

import random
from collections.abc import Iterator, Sequence
from typing import TypeVar

T = TypeVar("T")

SIDES = (1, 2)


def permute(n: int, rng: random.Random) -> list[int]:
    """Uniformly random permutation of ``0..n-1`` (Fisher-Yates)."""

    if n < 0:
        raise ValueError("n must be >= 0")
    order = list(range(n))
    rng.shuffle(order)
    return order


def rotate(seq: Sequence[T], k: int) -> list[T]:
    """Right-rotate ``seq`` by ``k mod len(seq)``. Always returns a new list."""

    n = len(seq)
    if n == 0:
        return []
    k = k % n
    items = list(seq)
    if k == 0:
        return items
    return items[n - k :] + items[: n - k]


def alternate(prev: int) -> int:
    if prev not in SIDES:
        raise ValueError(f"side must be 1 or 2, got {prev!r}")
    return 3 - prev


def random_side(rng: random.Random) -> int:
    return 1 if rng.random() < 0.5 else 2


def alternation(first: int, count: int) -> Iterator[int]:
    if first not in SIDES:
        raise ValueError(f"side must be 1 or 2, got {first!r}")
    side = first
    for i in range(count):
        if i > 0:
            side = alternate(side)
        yield side
