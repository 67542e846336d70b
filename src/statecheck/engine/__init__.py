# src/statecheck/engine/__init__.py
"""Local engine: an in-process stream execution collaborator.

This package implements the engine-side protocols from
statecheck.contracts.engine so snapshot verification can run without an
external cluster:
- LocalCluster: Job submission, status, snapshot trigger and cancellation
- JobGraph: Source -> stateful operator dataflow (NetworkX)
- SourceFunction / BroadcastProcessFunction: User function base classes
- Clock / Deadline: Time abstraction for deadline-bounded waits

Example:
    from statecheck.engine import JobGraph, LocalCluster

    with LocalCluster() as cluster:
        job_id = cluster.submit_job(graph).result()
"""

from statecheck.engine.clock import DEFAULT_CLOCK, Clock, Deadline, MockClock, SystemClock
from statecheck.engine.cluster import LocalCluster
from statecheck.engine.functions import (
    BroadcastProcessFunction,
    Context,
    FunctionInitializationContext,
    FunctionSnapshotContext,
    ReadOnlyContext,
    SourceFunction,
)
from statecheck.engine.graph import GraphValidationError, JobGraph
from statecheck.engine.state import BroadcastState, ListState, OperatorStateStore

__all__ = [
    "DEFAULT_CLOCK",
    "BroadcastProcessFunction",
    "BroadcastState",
    "Clock",
    "Context",
    "Deadline",
    "FunctionInitializationContext",
    "FunctionSnapshotContext",
    "GraphValidationError",
    "JobGraph",
    "ListState",
    "LocalCluster",
    "MockClock",
    "OperatorStateStore",
    "ReadOnlyContext",
    "SourceFunction",
    "SystemClock",
]
