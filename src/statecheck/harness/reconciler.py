# src/statecheck/harness/reconciler.py
"""Compares read-back state with the reference sequence.

Parallel execution loses global order, so both sides are sorted before
comparison: numerically for list and union state and broadcast keys,
lexicographically for broadcast values.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any

import structlog

from statecheck.contracts.errors import VerificationMismatch

logger = structlog.get_logger(__name__)

LIST_STATE_LABEL = "Unexpected elements read from list state"
UNION_STATE_LABEL = "Unexpected elements read from union state"
BROADCAST_KEYS_LABEL = "Unexpected element in broadcast state keys"
BROADCAST_VALUES_LABEL = "Unexpected element in broadcast state values"


class ResultReconciler:
    """Normalizes read-back streams and checks them against a reference."""

    def __init__(self, reference: Sequence[int]) -> None:
        self._reference = tuple(reference)

    @property
    def reference(self) -> tuple[int, ...]:
        return self._reference

    @staticmethod
    def collect(records: Iterable[Any]) -> list[Any]:
        """Drain a read-back stream into a list."""
        return list(records)

    def reconcile_list(self, label: str, records: Iterable[Any]) -> list[Any]:
        """Check that a list or union read-back holds exactly the reference elements.

        Duplicates count: the comparison is between sorted multisets.

        Returns:
            The normalized read-back

        Raises:
            VerificationMismatch: If the sorted sequences differ
        """
        actual = sorted(self.collect(records))
        expected = sorted(self._reference)
        self._check(label, expected, actual)
        return actual

    def reconcile_broadcast(self, records: Iterable[tuple[Any, Any]]) -> tuple[list[Any], list[Any]]:
        """Check broadcast keys and values independently.

        Broadcast state is a map, so the expected keys are the distinct
        reference elements and the expected values their string forms.

        Returns:
            (sorted keys, sorted values)

        Raises:
            VerificationMismatch: If keys or values differ
        """
        entries = self.collect(records)
        keys = sorted(key for key, _ in entries)
        values = sorted(value for _, value in entries)

        distinct = set(self._reference)
        self._check(BROADCAST_KEYS_LABEL, sorted(distinct), keys)
        self._check(BROADCAST_VALUES_LABEL, sorted(str(e) for e in distinct), values)
        return keys, values

    @staticmethod
    def _check(label: str, expected: list[Any], actual: list[Any]) -> None:
        if expected != actual:
            logger.warning("State mismatch", label=label, expected=expected, actual=actual)
            raise VerificationMismatch(label, expected, actual)
