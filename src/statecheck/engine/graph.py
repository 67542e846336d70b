# src/statecheck/engine/graph.py
"""JobGraph: the dataflow submitted to a cluster.

Wraps a NetworkX MultiDiGraph. A source may feed the same operator over
two edges (a rebalanced primary input and a broadcast input), so parallel
edges between one vertex pair are required; edges are keyed by their
partitioning.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import networkx as nx
from networkx import MultiDiGraph

from statecheck.contracts.enums import Partitioning, VertexKind
from statecheck.contracts.state import MapStateDescriptor

if TYPE_CHECKING:
    from statecheck.engine.functions import BroadcastProcessFunction, SourceFunction


class GraphValidationError(ValueError):
    """Raised when graph validation fails."""

    pass


@dataclass(frozen=True, slots=True)
class VertexInfo:
    """Information stored on each vertex."""

    vertex_id: str
    kind: VertexKind
    parallelism: int
    uid: str | None = None
    function: Any = None


@dataclass(frozen=True, slots=True)
class InputEdge:
    """One input of an operator vertex."""

    from_id: str
    partitioning: Partitioning
    broadcast_descriptors: tuple[MapStateDescriptor, ...] = ()


class JobGraph:
    """Job graph for one submission.

    The job id is fixed at construction, so a caller can always name the
    job it submitted (and cancel it) even if submission never returned.
    """

    def __init__(self, job_id: str | None = None, name: str = "statecheck-job") -> None:
        self.job_id = job_id if job_id is not None else uuid.uuid4().hex
        self.name = name
        self._graph: MultiDiGraph[str] = nx.MultiDiGraph()

    # === Construction ===

    def add_source(self, vertex_id: str, function: SourceFunction) -> None:
        """Add the (non-parallel) source vertex."""
        self._add_vertex(VertexInfo(vertex_id=vertex_id, kind=VertexKind.SOURCE, parallelism=1, function=function))

    def add_operator(self, vertex_id: str, function: BroadcastProcessFunction, *, uid: str, parallelism: int) -> None:
        """Add a stateful operator vertex. `uid` names its state in snapshots."""
        self._add_vertex(
            VertexInfo(
                vertex_id=vertex_id,
                kind=VertexKind.OPERATOR,
                parallelism=parallelism,
                uid=uid,
                function=function,
            )
        )

    def add_sink(self, vertex_id: str, parallelism: int = 1) -> None:
        """Add a discarding sink vertex."""
        self._add_vertex(VertexInfo(vertex_id=vertex_id, kind=VertexKind.SINK, parallelism=parallelism))

    def connect(
        self,
        from_id: str,
        to_id: str,
        partitioning: Partitioning,
        *,
        broadcast_descriptors: tuple[MapStateDescriptor, ...] = (),
    ) -> None:
        """Add an edge. Broadcast edges carry the descriptors of the state they feed."""
        if from_id not in self._graph or to_id not in self._graph:
            raise GraphValidationError(f"Cannot connect unknown vertices {from_id!r} -> {to_id!r}")
        if partitioning == Partitioning.BROADCAST and not broadcast_descriptors:
            raise GraphValidationError(f"Broadcast edge {from_id!r} -> {to_id!r} needs at least one MapStateDescriptor")
        if partitioning != Partitioning.BROADCAST and broadcast_descriptors:
            raise GraphValidationError(f"Only broadcast edges carry state descriptors ({from_id!r} -> {to_id!r})")
        if self._graph.has_edge(from_id, to_id, key=partitioning.value):
            raise GraphValidationError(f"Duplicate {partitioning.value} edge {from_id!r} -> {to_id!r}")
        self._graph.add_edge(
            from_id,
            to_id,
            key=partitioning.value,
            partitioning=partitioning,
            broadcast_descriptors=broadcast_descriptors,
        )

    def _add_vertex(self, info: VertexInfo) -> None:
        if info.vertex_id in self._graph:
            raise GraphValidationError(f"Duplicate vertex id {info.vertex_id!r}")
        self._graph.add_node(info.vertex_id, info=info)

    @classmethod
    def broadcast_pipeline(
        cls,
        source: SourceFunction,
        operator: BroadcastProcessFunction,
        *,
        uid: str,
        parallelism: int,
        broadcast_descriptor: MapStateDescriptor,
        job_id: str | None = None,
    ) -> JobGraph:
        """Build source -> (rebalance + broadcast) -> operator -> discarding sink."""
        graph = cls(job_id=job_id)
        graph.add_source("source", source)
        graph.add_operator("operator", operator, uid=uid, parallelism=parallelism)
        graph.add_sink("sink", parallelism=parallelism)
        graph.connect("source", "operator", Partitioning.REBALANCE)
        graph.connect("source", "operator", Partitioning.BROADCAST, broadcast_descriptors=(broadcast_descriptor,))
        graph.connect("operator", "sink", Partitioning.FORWARD)
        return graph

    # === Queries ===

    def get_nx_graph(self) -> MultiDiGraph[str]:
        """Return the underlying NetworkX graph (read-only use)."""
        return self._graph

    def get_vertex_info(self, vertex_id: str) -> VertexInfo:
        info: VertexInfo = self._graph.nodes[vertex_id]["info"]
        return info

    def vertices(self, kind: VertexKind | None = None) -> list[VertexInfo]:
        infos = [data["info"] for _, data in self._graph.nodes(data=True)]
        if kind is None:
            return infos
        return [info for info in infos if info.kind == kind]

    def get_source(self) -> VertexInfo:
        sources = self.vertices(VertexKind.SOURCE)
        if len(sources) != 1:
            raise GraphValidationError(f"Graph must have exactly one source, found {len(sources)}")
        return sources[0]

    def get_operators(self) -> list[VertexInfo]:
        return self.vertices(VertexKind.OPERATOR)

    def get_inputs(self, vertex_id: str) -> list[InputEdge]:
        return [
            InputEdge(
                from_id=u,
                partitioning=data["partitioning"],
                broadcast_descriptors=data["broadcast_descriptors"],
            )
            for u, _, data in self._graph.in_edges(vertex_id, data=True)
        ]

    # === Validation ===

    def validate(self) -> None:
        """Validate the graph structure.

        Validates:
        1. Graph is acyclic
        2. Exactly one source exists
        3. Every operator has parallelism >= 1, a unique uid, and is fed
           directly by the source
        4. All vertices are reachable from the source

        Raises:
            GraphValidationError: If validation fails
        """
        if not nx.is_directed_acyclic_graph(self._graph):
            try:
                cycle = nx.find_cycle(self._graph)
                cycle_str = " -> ".join(f"{edge[0]}" for edge in cycle)
                raise GraphValidationError(f"Graph contains a cycle: {cycle_str}")
            except nx.NetworkXNoCycle:
                raise GraphValidationError("Graph contains a cycle") from None

        source = self.get_source()

        operators = self.get_operators()
        if not operators:
            raise GraphValidationError("Graph must have at least one operator")

        seen_uids: set[str] = set()
        for op in operators:
            if op.parallelism < 1:
                raise GraphValidationError(f"Operator {op.vertex_id!r} has invalid parallelism {op.parallelism}")
            if not op.uid:
                raise GraphValidationError(f"Operator {op.vertex_id!r} has no uid")
            if op.uid in seen_uids:
                raise GraphValidationError(f"Duplicate operator uid {op.uid!r}")
            seen_uids.add(op.uid)

            inputs = self.get_inputs(op.vertex_id)
            if not inputs:
                raise GraphValidationError(f"Operator {op.vertex_id!r} has no inputs")
            foreign = [edge.from_id for edge in inputs if edge.from_id != source.vertex_id]
            if foreign:
                raise GraphValidationError(f"Operator {op.vertex_id!r} must be fed by the source only, found inputs from {sorted(foreign)}")

        reachable = nx.descendants(self._graph, source.vertex_id)
        reachable.add(source.vertex_id)
        unreachable = set(self._graph.nodes()) - reachable
        if unreachable:
            raise GraphValidationError(f"Unreachable vertices: {sorted(unreachable)}")
