# src/statecheck/core/canonical.py
"""Deterministic hashing for snapshot integrity and graph identity.

Values are first reduced to JSON primitives (tuples become lists, sets
become sorted lists), then serialized with RFC 8785 (JCS) so that equal
values always produce equal bytes. Non-finite floats are rejected: a
payload digest over ``NaN`` could never be re-verified.
"""

from __future__ import annotations

import hashlib
import math
from typing import TYPE_CHECKING, Any

import rfc8785

if TYPE_CHECKING:
    from statecheck.engine.graph import JobGraph


def _normalize_for_canonical(data: Any) -> Any:
    if data is None or isinstance(data, str | int):
        return data
    if isinstance(data, float):
        if not math.isfinite(data):
            raise ValueError(f"Cannot canonicalize non-finite float {data!r} in state payload")
        return data
    if isinstance(data, list | tuple):
        return [_normalize_for_canonical(item) for item in data]
    if isinstance(data, set | frozenset):
        return sorted(_normalize_for_canonical(item) for item in data)
    if isinstance(data, dict):
        return {str(key): _normalize_for_canonical(value) for key, value in data.items()}
    raise TypeError(f"Cannot canonicalize value of type {type(data).__name__}")


def canonical_json(obj: Any) -> str:
    """Serialize to RFC 8785 canonical JSON (sorted keys, no whitespace).

    Raises:
        ValueError: On NaN or Infinity anywhere in obj
        TypeError: On values with no JSON form
    """
    encoded: bytes = rfc8785.dumps(_normalize_for_canonical(obj))
    return encoded.decode("utf-8")


def stable_hash(obj: Any) -> str:
    """SHA-256 hex digest of the canonical JSON form of obj."""
    return hashlib.sha256(canonical_json(obj).encode("utf-8")).hexdigest()


def _vertex_entries(graph: JobGraph) -> list[dict[str, Any]]:
    entries = []
    for vertex_id in graph.get_nx_graph().nodes():
        info = graph.get_vertex_info(vertex_id)
        entries.append({"vertex_id": vertex_id, "kind": info.kind.value, "uid": info.uid, "parallelism": info.parallelism})
    return sorted(entries, key=lambda entry: entry["vertex_id"])


def _edge_entries(graph: JobGraph) -> list[dict[str, Any]]:
    entries = [
        {
            "from": source,
            "to": target,
            "partitioning": data["partitioning"].value,
            "broadcast_states": sorted(descriptor.name for descriptor in data["broadcast_descriptors"]),
        }
        for source, target, data in graph.get_nx_graph().edges(data=True)
    ]
    return sorted(entries, key=lambda entry: (entry["from"], entry["to"], entry["partitioning"]))


def compute_topology_hash(graph: JobGraph) -> str:
    """Identity of a job graph's shape, stored in every snapshot header.

    Covers vertex kinds, operator uids, parallelism, edge partitioning and
    the broadcast states an edge carries. The job id and the user functions
    are not part of it, so two submissions of the same pipeline hash
    equal.
    """
    return stable_hash({"vertices": _vertex_entries(graph), "edges": _edge_entries(graph)})
