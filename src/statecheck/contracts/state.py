"""State descriptors shared by writers and readers.

A descriptor names a state container and declares the Python types of what
it holds. The same descriptor shape is used to register state inside a
running operator and to read it back from a snapshot.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ListStateDescriptor:
    """Descriptor for list-shaped operator state (split or union)."""

    name: str
    element_type: type = int

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("state name must not be empty")


@dataclass(frozen=True)
class MapStateDescriptor:
    """Descriptor for map-shaped broadcast state."""

    name: str
    key_type: type = int
    value_type: type = str

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("state name must not be empty")
