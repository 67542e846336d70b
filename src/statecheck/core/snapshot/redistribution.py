# src/statecheck/core/snapshot/redistribution.py
"""Redistribution of snapshot partitions onto restored subtasks.

State is written the same way whatever its semantics; the mode recorded
next to it only matters here, when partitions captured at one parallelism
are handed to readers at another.

    SPLIT      every element lands on exactly one reader
    UNION      every reader receives the full merged list
    BROADCAST  every reader receives one (identical) map
"""

from collections.abc import Sequence
from typing import Any

from statecheck.contracts.enums import RedistributionMode


def redistribute(
    partitions: Sequence[Sequence[Any]],
    mode: RedistributionMode,
    parallelism: int,
) -> list[list[Any]]:
    """Assign stored per-subtask partitions to `parallelism` readers.

    Args:
        partitions: Payloads in original subtask order
        mode: Redistribution semantics recorded with the state
        parallelism: Number of readers to restore to

    Returns:
        One list per reader, in reader order

    Raises:
        ValueError: If parallelism < 1 or there are no partitions
    """
    if parallelism < 1:
        raise ValueError(f"parallelism must be >= 1, got {parallelism}")
    if not partitions:
        raise ValueError("cannot redistribute state with no partitions")

    if mode == RedistributionMode.SPLIT:
        return _split(partitions, parallelism)
    if mode == RedistributionMode.UNION:
        merged = [element for partition in partitions for element in partition]
        return [list(merged) for _ in range(parallelism)]
    if mode == RedistributionMode.BROADCAST:
        # Reader i takes the copy of original subtask i mod N
        return [list(partitions[i % len(partitions)]) for i in range(parallelism)]
    raise ValueError(f"Unknown redistribution mode: {mode!r}")


def _split(partitions: Sequence[Sequence[Any]], parallelism: int) -> list[list[Any]]:
    """Concatenate in subtask order, then cut into near-even contiguous ranges.

    The first `len % parallelism` readers get one extra element.
    """
    merged = [element for partition in partitions for element in partition]
    base, extra = divmod(len(merged), parallelism)
    readers: list[list[Any]] = []
    start = 0
    for i in range(parallelism):
        size = base + (1 if i < extra else 0)
        readers.append(merged[start : start + size])
        start += size
    return readers
