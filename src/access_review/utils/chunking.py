"""Helpers for resolving large id sets in store-sized pieces."""

from __future__ import annotations

from itertools import islice
from typing import Iterable, Iterator, TypeVar

T = TypeVar("T")


def chunked(values: Iterable[T], size: int) -> Iterator[list[T]]:
    if size < 1:
        raise ValueError(f"Chunk size must be positive, got {size}")
    iterator = iter(values)
    while True:
        chunk = list(islice(iterator, size))
        if not chunk:
            return
        yield chunk


def unique(values: Iterable[T]) -> list[T]:
    """De-duplicate while keeping first-seen order."""
    seen: set[T] = set()
    result: list[T] = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        result.append(value)
    return result
