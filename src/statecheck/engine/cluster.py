# src/statecheck/engine/cluster.py
"""LocalCluster: an in-process cluster implementing ClusterClient.

Every control operation (submit, snapshot, cancel) runs on a small thread
pool and is handed back as a Future, like a remote cluster client would.
Jobs themselves run on their own source threads (see runtime.py).
"""

from __future__ import annotations

import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import UTC, datetime
from pathlib import Path
from typing import Self

import structlog

from statecheck.contracts.enums import JobStatus, SnapshotFormat
from statecheck.contracts.errors import JobNotFoundError, SubmissionError
from statecheck.contracts.snapshot import SnapshotMetadata
from statecheck.core.canonical import compute_topology_hash
from statecheck.core.config import StateBackendSettings
from statecheck.core.snapshot.writer import SnapshotWriter
from statecheck.engine.graph import GraphValidationError, JobGraph
from statecheck.engine.runtime import ExecutionJob

logger = structlog.get_logger(__name__)


class LocalCluster:
    """Thread-backed mini cluster.

    Example:
        with LocalCluster() as cluster:
            job_id = cluster.submit_job(graph).result()
            path = cluster.trigger_snapshot(job_id, tmp_dir, SnapshotFormat.CANONICAL).result()
            cluster.cancel_job(job_id).result()
    """

    def __init__(
        self,
        *,
        max_workers: int = 4,
        backend: StateBackendSettings | None = None,
        cancel_join_timeout: float = 10.0,
    ) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="statecheck-cluster")
        self._backend = backend if backend is not None else StateBackendSettings()
        self._cancel_join_timeout = cancel_join_timeout
        self._jobs: dict[str, ExecutionJob] = {}
        self._topology_hashes: dict[str, str] = {}
        self._jobs_lock = threading.Lock()
        self._writer = SnapshotWriter()
        self._closed = False

    # === ClusterClient ===

    def submit_job(self, graph: JobGraph) -> Future[str]:
        return self._executor.submit(self._accept, graph)

    def get_job_status(self, job_id: str) -> JobStatus:
        return self._get(job_id).status

    def trigger_snapshot(self, job_id: str, directory: Path, snapshot_format: SnapshotFormat) -> Future[Path]:
        return self._executor.submit(self._snapshot, job_id, Path(directory), snapshot_format)

    def cancel_job(self, job_id: str) -> Future[None]:
        return self._executor.submit(self._cancel, job_id)

    # === Extras ===

    def get_job_failure(self, job_id: str) -> BaseException | None:
        """Cause of a FAILED job, None otherwise."""
        return self._get(job_id).failure

    def close(self) -> None:
        """Cancel every live job and stop the control thread pool."""
        if self._closed:
            return
        self._closed = True
        with self._jobs_lock:
            jobs = list(self._jobs.values())
        for job in jobs:
            job.cancel()
        self._executor.shutdown(wait=True)

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.close()

    # === Control operations (run on the pool) ===

    def _accept(self, graph: JobGraph) -> str:
        try:
            graph.validate()
        except GraphValidationError as e:
            logger.warning("Job rejected", job_id=graph.job_id, reason=str(e))
            raise SubmissionError(graph.job_id, str(e)) from e

        with self._jobs_lock:
            if graph.job_id in self._jobs:
                raise SubmissionError(graph.job_id, "a job with this id was already submitted")
            job = ExecutionJob(graph, cancel_join_timeout=self._cancel_join_timeout)
            self._jobs[graph.job_id] = job
            self._topology_hashes[graph.job_id] = compute_topology_hash(graph)

        logger.info("Job submitted", job_id=graph.job_id, name=graph.name)
        self._executor.submit(job.deploy)
        return graph.job_id

    def _snapshot(self, job_id: str, directory: Path, snapshot_format: SnapshotFormat) -> Path:
        job = self._get(job_id)
        snapshot_id = uuid.uuid4().hex
        logger.info("Snapshot triggered", job_id=job_id, snapshot_id=snapshot_id, snapshot_format=snapshot_format.value)

        states = job.capture_snapshot(snapshot_id)
        metadata = SnapshotMetadata(
            snapshot_id=snapshot_id,
            job_id=job_id,
            snapshot_format=snapshot_format,
            format_version=SnapshotMetadata.CURRENT_FORMAT_VERSION,
            parallelism=job.parallelism,
            topology_hash=self._topology_hashes[job_id],
            backend=self._backend.kind,
            created_at=datetime.now(UTC),
        )
        return self._writer.write(directory, metadata, states)

    def _cancel(self, job_id: str) -> None:
        self._get(job_id).cancel()

    def _get(self, job_id: str) -> ExecutionJob:
        with self._jobs_lock:
            job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job
