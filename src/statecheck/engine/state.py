# src/statecheck/engine/state.py
"""Operator state held by the hash-map backend.

One OperatorStateStore exists per subtask. Operators register list state
in split or union mode and write into it at snapshot time; broadcast state
is declared by the graph and mutated directly as broadcast elements arrive.

All state writes go through the same ListState / BroadcastState objects
whatever their redistribution mode. The mode is only recorded here and
acted on when a snapshot is restored.
"""

from collections.abc import Iterable, Iterator, Mapping
from typing import Any

from statecheck.contracts.enums import RedistributionMode
from statecheck.contracts.snapshot import StatePartition
from statecheck.contracts.state import ListStateDescriptor, MapStateDescriptor


class ListState:
    """Ordered list of elements owned by one subtask."""

    def __init__(self) -> None:
        self._items: list[Any] = []

    def get(self) -> list[Any]:
        return list(self._items)

    def add(self, value: Any) -> None:
        self._items.append(value)

    def update(self, values: Iterable[Any]) -> None:
        """Replace the whole list."""
        self._items = list(values)

    def clear(self) -> None:
        self._items = []


class BroadcastState:
    """Key/value map replicated to every subtask."""

    def __init__(self) -> None:
        self._entries: dict[Any, Any] = {}

    def put(self, key: Any, value: Any) -> None:
        self._entries[key] = value

    def get(self, key: Any) -> Any:
        return self._entries.get(key)

    def contains(self, key: Any) -> bool:
        return key in self._entries

    def remove(self, key: Any) -> None:
        self._entries.pop(key, None)

    def items(self) -> list[tuple[Any, Any]]:
        return list(self._entries.items())

    def __len__(self) -> int:
        return len(self._entries)


class ReadOnlyBroadcastState(Mapping[Any, Any]):
    """View of broadcast state handed to the primary input."""

    def __init__(self, state: BroadcastState) -> None:
        self._state = state

    def __getitem__(self, key: Any) -> Any:
        if not self._state.contains(key):
            raise KeyError(key)
        return self._state.get(key)

    def __iter__(self) -> Iterator[Any]:
        return iter([k for k, _ in self._state.items()])

    def __len__(self) -> int:
        return len(self._state)


class OperatorStateStore:
    """Named state containers of one subtask."""

    def __init__(self, broadcast_descriptors: Iterable[MapStateDescriptor] = ()) -> None:
        self._list_states: dict[str, tuple[RedistributionMode, ListState]] = {}
        self._broadcast_states: dict[str, BroadcastState] = {d.name: BroadcastState() for d in broadcast_descriptors}

    def get_list_state(self, descriptor: ListStateDescriptor) -> ListState:
        """Register (or fetch) list state redistributed by splitting on restore."""
        return self._register(descriptor, RedistributionMode.SPLIT)

    def get_union_list_state(self, descriptor: ListStateDescriptor) -> ListState:
        """Register (or fetch) list state handed whole to every subtask on restore."""
        return self._register(descriptor, RedistributionMode.UNION)

    def get_broadcast_state(self, descriptor: MapStateDescriptor) -> BroadcastState:
        if descriptor.name not in self._broadcast_states:
            raise KeyError(f"Broadcast state '{descriptor.name}' is not declared on any broadcast input")
        return self._broadcast_states[descriptor.name]

    def _register(self, descriptor: ListStateDescriptor, mode: RedistributionMode) -> ListState:
        if descriptor.name in self._broadcast_states:
            raise ValueError(f"State name '{descriptor.name}' is already used by broadcast state")
        existing = self._list_states.get(descriptor.name)
        if existing is not None:
            registered_mode, state = existing
            if registered_mode != mode:
                raise ValueError(f"State '{descriptor.name}' already registered in {registered_mode.value} mode, requested {mode.value}")
            return state
        state = ListState()
        self._list_states[descriptor.name] = (mode, state)
        return state

    def snapshot(self) -> list[StatePartition]:
        """Copy every container into immutable partitions."""
        partitions = [StatePartition(state_name=name, mode=mode, payload=tuple(state.get())) for name, (mode, state) in self._list_states.items()]
        partitions.extend(
            StatePartition(state_name=name, mode=RedistributionMode.BROADCAST, payload=tuple(state.items()))
            for name, state in self._broadcast_states.items()
        )
        return partitions
