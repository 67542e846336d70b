# src/statecheck/engine/functions.py
"""Base classes for user functions run by the local engine.

Sources implement SourceFunction. Stateful operators with a primary and
a broadcast input implement BroadcastProcessFunction.

Operator lifecycle per subtask:
1. copy of the graph's function instance is made for the subtask
2. initialize_state(ctx) - bind state handles
3. open() - set up in-memory structures
4. process_element / process_broadcast_element - per element
5. snapshot_state(ctx) - once per snapshot, under the checkpoint lock
6. close() - on cancellation or failure
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from statecheck.contracts.engine import SourceContext
from statecheck.contracts.state import MapStateDescriptor
from statecheck.engine.state import BroadcastState, OperatorStateStore, ReadOnlyBroadcastState


class SourceFunction(ABC):
    """A non-parallel source.

    run() is called on a dedicated thread and may block until cancel()
    is called from another thread.
    """

    @abstractmethod
    def run(self, ctx: SourceContext) -> None:
        ...

    @abstractmethod
    def cancel(self) -> None:
        ...


@dataclass(frozen=True)
class FunctionInitializationContext:
    """Passed to initialize_state()."""

    operator_state_store: OperatorStateStore
    subtask_index: int
    parallelism: int


@dataclass(frozen=True)
class FunctionSnapshotContext:
    """Passed to snapshot_state()."""

    snapshot_id: str
    subtask_index: int


class ReadOnlyContext:
    """Context for the primary input; broadcast state is read-only."""

    def __init__(self, store: OperatorStateStore, subtask_index: int) -> None:
        self._store = store
        self.subtask_index = subtask_index

    def get_broadcast_state(self, descriptor: MapStateDescriptor) -> Mapping[Any, Any]:
        return ReadOnlyBroadcastState(self._store.get_broadcast_state(descriptor))


class Context(ReadOnlyContext):
    """Context for the broadcast input; broadcast state is writable."""

    def get_broadcast_state(self, descriptor: MapStateDescriptor) -> BroadcastState:  # type: ignore[override]
        return self._store.get_broadcast_state(descriptor)


class BroadcastProcessFunction(ABC):
    """Operator with a rebalanced primary input and a broadcast input."""

    def initialize_state(self, context: FunctionInitializationContext) -> None:
        """Bind operator state. Override in stateful operators."""
        pass

    def open(self) -> None:
        pass

    @abstractmethod
    def process_element(self, value: Any, ctx: ReadOnlyContext) -> None:
        ...

    @abstractmethod
    def process_broadcast_element(self, value: Any, ctx: Context) -> None:
        ...

    def snapshot_state(self, context: FunctionSnapshotContext) -> None:
        """Flush in-memory state into state handles. Override in stateful operators."""
        pass

    def close(self) -> None:
        pass
