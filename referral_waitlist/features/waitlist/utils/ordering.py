"""
Timestamp arithmetic behind the queue order.

Rank is the ascending order of ``timestamp``. Moving an entry means giving
it a timestamp strictly between two neighbours, so nothing else has to be
renumbered. Integer midpoints run out once neighbours are less than two
apart, at which point the queue is re-spaced.
"""
from typing import Iterator, Sequence, TypeVar

T = TypeVar("T")


def midpoint(lower: int, upper: int) -> int:
    return (int(lower) + int(upper)) // 2


def has_room_between(lower: int, upper: int) -> bool:
    return int(upper) - int(lower) >= 2


def chunked(items: Sequence[T], size: int) -> Iterator[tuple[int, Sequence[T]]]:
    if size <= 0:
        raise ValueError("batch size must be positive")
    for batch_index, start in enumerate(range(0, len(items), size)):
        yield batch_index, items[start:start + size]
