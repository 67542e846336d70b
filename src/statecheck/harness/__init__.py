# src/statecheck/harness/__init__.py
"""Snapshot verification harness.

- DeterministicSource / CompletionSignal: Emit the reference sequence once
- StatefulAccumulator: Operator writing list, union and broadcast state
- JobCoordinator: Submit, await, snapshot and cancel under one deadline
- ResultReconciler: Order-insensitive comparison with the reference
- StateSnapshotHarness: verify_list_state / verify_union_state / verify_broadcast_state
"""

from statecheck.harness.coordinator import JobCoordinator
from statecheck.harness.operator import StatefulAccumulator
from statecheck.harness.reconciler import (
    BROADCAST_KEYS_LABEL,
    BROADCAST_VALUES_LABEL,
    LIST_STATE_LABEL,
    UNION_STATE_LABEL,
    ResultReconciler,
)
from statecheck.harness.source import CompletionSignal, DeterministicSource
from statecheck.harness.verification import StateSnapshotHarness

__all__ = [
    "BROADCAST_KEYS_LABEL",
    "BROADCAST_VALUES_LABEL",
    "LIST_STATE_LABEL",
    "UNION_STATE_LABEL",
    "CompletionSignal",
    "DeterministicSource",
    "JobCoordinator",
    "ResultReconciler",
    "StateSnapshotHarness",
    "StatefulAccumulator",
]
