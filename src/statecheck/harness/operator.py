# src/statecheck/harness/operator.py
"""Stateful operator whose snapshot feeds all three state semantics."""

from __future__ import annotations

from typing import Any

from statecheck.contracts.state import ListStateDescriptor, MapStateDescriptor
from statecheck.engine.functions import (
    BroadcastProcessFunction,
    Context,
    FunctionInitializationContext,
    FunctionSnapshotContext,
    ReadOnlyContext,
)
from statecheck.engine.state import ListState


class StatefulAccumulator(BroadcastProcessFunction):
    """Buffers primary input and mirrors broadcast input into broadcast state.

    At snapshot time the buffer is written verbatim into a partitioned list
    state and a union list state through one write path; only the restore
    behaviour of the two differs. Broadcast elements are stored as
    element -> str(element).
    """

    def __init__(
        self,
        list_descriptor: ListStateDescriptor,
        union_descriptor: ListStateDescriptor,
        broadcast_descriptor: MapStateDescriptor,
    ) -> None:
        self.list_descriptor = list_descriptor
        self.union_descriptor = union_descriptor
        self.broadcast_descriptor = broadcast_descriptor
        self._elements: list[Any] = []
        self._list_state: ListState | None = None
        self._union_state: ListState | None = None

    def initialize_state(self, context: FunctionInitializationContext) -> None:
        store = context.operator_state_store
        self._list_state = store.get_list_state(self.list_descriptor)
        self._union_state = store.get_union_list_state(self.union_descriptor)

    def open(self) -> None:
        self._elements = []

    def process_element(self, value: Any, ctx: ReadOnlyContext) -> None:
        self._elements.append(value)

    def process_broadcast_element(self, value: Any, ctx: Context) -> None:
        ctx.get_broadcast_state(self.broadcast_descriptor).put(value, str(value))

    def snapshot_state(self, context: FunctionSnapshotContext) -> None:
        if self._list_state is None or self._union_state is None:
            raise RuntimeError("snapshot_state() called before initialize_state()")
        for state in (self._list_state, self._union_state):
            state.update(self._elements)
