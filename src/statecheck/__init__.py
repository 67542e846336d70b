"""
Statecheck: snapshot verification for stateful stream-processing jobs.

Drives a live job to a deterministic state, captures a consistent snapshot
while it runs, and re-reads that snapshot offline to prove the partitioned,
union, and broadcast operator state it holds is exactly what the job built.
"""

__version__ = "0.1.0"
