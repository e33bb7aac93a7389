"""
Background job manager for indexing and deletion work.

Jobs run as asyncio tasks bounded by a worker semaphore. Every attempt runs
under a hard timeout; failed attempts are retried with exponential backoff
until ``max_retries`` is exhausted. Revoked credentials end a job at once.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Awaitable, Dict, List, Optional, Sequence

from store_rag.config.settings import settings
from store_rag.errors import IndexingFailedError, ReconnectionRequiredError
from store_rag.indexing.namespace_indexer import IndexReport, NamespaceIndexer
from store_rag.ingestion.records import DataType, utc_now
from store_rag.integrations import (
    JobEvent,
    JobEventSink,
    LoggingEventSink,
    SyncBookkeeping,
    TokenProvider,
)
from store_rag.utils.async_utils import async_timeout
from store_rag.utils.logger import get_logger

logger = get_logger(__name__)


class JobType(str, Enum):
    FULL_INDEX = "full_index"
    CLEANUP_SYNC = "cleanup_sync"
    DELETE = "delete"


class JobPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class JobState(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    FAILED_RETRYING = "failed_retrying"


ACTIVE_STATES = (JobState.QUEUED, JobState.RUNNING, JobState.FAILED_RETRYING)
SYNC_JOB_TYPES = (JobType.FULL_INDEX, JobType.CLEANUP_SYNC)


@dataclass
class JobResult:
    """Final outcome of a job, across all of its attempts."""
    job_id: str
    store_id: str
    job_type: JobType
    success: bool
    execution_time_ms: float
    operations: List[str] = field(default_factory=list)
    retry_count: int = 0
    error: Optional[str] = None
    reconnection_required: bool = False
    report: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'job_id': self.job_id,
            'store_id': self.store_id,
            'job_type': self.job_type.value,
            'success': self.success,
            'execution_time_ms': round(self.execution_time_ms, 2),
            'operations': list(self.operations),
            'retry_count': self.retry_count,
            'error': self.error,
            'reconnection_required': self.reconnection_required,
            'report': self.report,
        }


@dataclass
class StateTransition:
    state: JobState
    at: datetime = field(default_factory=utc_now)
    error: Optional[str] = None


@dataclass
class Job:
    job_id: str
    job_type: JobType
    store_id: str
    priority: JobPriority = JobPriority.MEDIUM
    max_retries: int = 3
    data_types: Optional[List[DataType]] = None
    reason: Optional[str] = None
    incremental: bool = False
    state: JobState = JobState.QUEUED
    retry_count: int = 0
    created_at: datetime = field(default_factory=utc_now)
    history: List[StateTransition] = field(default_factory=list)
    result: Optional[JobResult] = None
    done: asyncio.Event = field(default_factory=asyncio.Event, repr=False, compare=False)

    def __post_init__(self):
        self.history.append(StateTransition(self.state))

    @property
    def is_active(self) -> bool:
        return self.state in ACTIVE_STATES

    def transition(self, state: JobState, error: Optional[str] = None) -> None:
        self.state = state
        self.history.append(StateTransition(state, error=error))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'job_id': self.job_id,
            'job_type': self.job_type.value,
            'store_id': self.store_id,
            'priority': self.priority.value,
            'state': self.state.value,
            'retry_count': self.retry_count,
            'max_retries': self.max_retries,
            'data_types': [dt.value for dt in self.data_types] if self.data_types else None,
            'incremental': self.incremental,
            'created_at': self.created_at.isoformat(),
            'history': [
                {'state': t.state.value, 'at': t.at.isoformat(), 'error': t.error}
                for t in self.history
            ],
            'result': self.result.to_dict() if self.result else None,
        }


def _describe(error: BaseException) -> str:
    if isinstance(error, asyncio.TimeoutError):
        return "attempt timed out"
    return str(error) or type(error).__name__


class BackgroundJobManager:
    """
    Runs full index, cleanup-and-reindex and delete jobs in the background.

    A submission for a ``(job_type, store_id)`` pair that already has a job in
    flight returns the in-flight job's id instead of starting a second one.

    Examples:
        >>> jobs = BackgroundJobManager(indexer, token_provider, bookkeeping)
        >>> job_id = jobs.submit(JobType.FULL_INDEX, "42")
        >>> result = await jobs.wait_for(job_id)
    """

    def __init__(self,
                 indexer: NamespaceIndexer,
                 token_provider: TokenProvider,
                 bookkeeping: Optional[SyncBookkeeping] = None,
                 event_sink: Optional[JobEventSink] = None,
                 max_concurrent_jobs: Optional[int] = None,
                 max_retries: Optional[int] = None,
                 retry_base_delay: Optional[float] = None,
                 index_timeout: Optional[float] = None,
                 delete_step_timeout: Optional[float] = None,
                 history_limit: Optional[int] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.indexer = indexer
        self.token_provider = token_provider
        self.bookkeeping = bookkeeping
        self.event_sink = event_sink or LoggingEventSink()
        self.max_concurrent_jobs = max_concurrent_jobs or settings.max_concurrent_jobs
        self.max_retries = settings.job_max_retries if max_retries is None else max_retries
        self.retry_base_delay = settings.job_retry_base_delay if retry_base_delay is None else retry_base_delay
        self.index_timeout = index_timeout or settings.index_job_timeout
        self.delete_step_timeout = delete_step_timeout or settings.delete_step_timeout
        self.history_limit = history_limit or settings.job_history_limit
        self._sleep = sleep

        self._semaphore = asyncio.Semaphore(self.max_concurrent_jobs)
        self._jobs: Dict[str, Job] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._accepting = True
        self.logger = get_logger(__name__, component="job_manager")

    def submit(self,
               job_type: JobType,
               store_id: str,
               priority: JobPriority = JobPriority.MEDIUM,
               max_retries: Optional[int] = None,
               data_types: Optional[Sequence[DataType]] = None,
               reason: Optional[str] = None,
               incremental: bool = False) -> str:
        """
        Queue a job and return its id without waiting for it.

        Must be called from a running event loop.
        """
        if not self._accepting:
            raise RuntimeError("Job manager is shut down")
        if not store_id:
            raise ValueError("store_id is required")

        job_type = JobType(job_type)
        for job in self._jobs.values():
            if job.job_type is job_type and job.store_id == store_id and job.is_active:
                self.logger.info(
                    "Job coalesced with in-flight job",
                    job_id=job.job_id,
                    job_type=job_type.value,
                    store_id=store_id
                )
                return job.job_id

        job = Job(
            job_id=f"{job_type.value}_{store_id}_{uuid.uuid4().hex[:8]}",
            job_type=job_type,
            store_id=store_id,
            priority=JobPriority(priority),
            max_retries=self.max_retries if max_retries is None else max_retries,
            data_types=[DataType(dt) for dt in data_types] if data_types else None,
            reason=reason,
            incremental=incremental,
        )
        self._jobs[job.job_id] = job

        task = asyncio.get_running_loop().create_task(self._run(job))
        self._tasks[job.job_id] = task
        task.add_done_callback(lambda _, job_id=job.job_id: self._tasks.pop(job_id, None))

        self.logger.info(
            "Job queued",
            job_id=job.job_id,
            job_type=job_type.value,
            store_id=store_id,
            priority=job.priority.value
        )
        return job.job_id

    def submit_index_job(self, store_id: str, priority: JobPriority = JobPriority.MEDIUM,
                         incremental: bool = False) -> str:
        """With ``incremental`` only records changed since the last sync are fetched."""
        return self.submit(JobType.FULL_INDEX, store_id, priority, incremental=incremental)

    def submit_cleanup_job(self, store_id: str, data_types: Optional[Sequence[DataType]] = None,
                           priority: JobPriority = JobPriority.MEDIUM) -> str:
        return self.submit(JobType.CLEANUP_SYNC, store_id, priority, data_types=data_types)

    def submit_delete_job(self, store_id: str, reason: str = "store_deletion",
                          priority: JobPriority = JobPriority.HIGH) -> str:
        return self.submit(JobType.DELETE, store_id, priority, reason=reason)

    def get_job(self, job_id: str) -> Job:
        """Raises KeyError for unknown ids."""
        if job_id not in self._jobs:
            raise KeyError(job_id)
        return self._jobs[job_id]

    def last_job_for(self, store_id: str, job_types: Optional[Sequence[JobType]] = None) -> Optional[Job]:
        jobs = [
            job for job in self._jobs.values()
            if job.store_id == store_id and (job_types is None or job.job_type in job_types)
        ]
        return max(jobs, key=lambda job: job.created_at) if jobs else None

    def last_sync_job_for(self, store_id: str) -> Optional[Job]:
        """Latest full_index or cleanup_sync job; delete jobs are not syncs."""
        return self.last_job_for(store_id, SYNC_JOB_TYPES)

    async def wait_for(self, job_id: str, timeout: Optional[float] = None) -> JobResult:
        job = self.get_job(job_id)
        await asyncio.wait_for(job.done.wait(), timeout=timeout)
        return job.result

    async def _run(self, job: Job) -> None:
        started = time.perf_counter()
        try:
            await self._attempt_until_done(job, started)
        except asyncio.CancelledError:
            if job.result is None:
                await self._finish(job, started, success=False, error="cancelled")
            raise

    async def _attempt_until_done(self, job: Job, started: float) -> None:
        while True:
            delay: Optional[float] = None
            async with self._semaphore:
                job.transition(JobState.RUNNING)
                self.logger.info(
                    "Job attempt started",
                    job_id=job.job_id,
                    attempt=job.retry_count + 1
                )
                try:
                    operations, report = await self._execute(job)
                except ReconnectionRequiredError as e:
                    await self._finish(job, started, success=False, error=str(e),
                                       reconnection_required=True)
                    return
                except Exception as e:
                    error = _describe(e)
                    if job.retry_count < job.max_retries:
                        delay = self.retry_base_delay * (2 ** job.retry_count)
                        job.transition(JobState.FAILED_RETRYING, error)
                        self.logger.warning(
                            "Job attempt failed, retrying",
                            job_id=job.job_id,
                            retry_count=job.retry_count,
                            delay=delay,
                            error=error
                        )
                    else:
                        report = e.details if isinstance(e, IndexingFailedError) else None
                        await self._finish(job, started, success=False, error=error, report=report)
                        return
                else:
                    await self._finish(job, started, success=True, operations=operations, report=report)
                    return

            await self._sleep(delay)
            job.retry_count += 1
            job.transition(JobState.QUEUED)

    async def _execute(self, job: Job):
        if job.job_type is JobType.DELETE:
            operations = await async_timeout(
                self.indexer.delete_store_data(
                    job.store_id,
                    reason=job.reason or "store_deletion",
                    step_timeout=self.delete_step_timeout,
                    owner=job.job_id
                ),
                self.delete_step_timeout * 3,
                operation="delete_job"
            )
            if self.bookkeeping is not None:
                await self.bookkeeping.clear_sync(job.store_id)
                operations.append("sync_timestamp_cleared")
            return operations, None

        operations = []
        credentials = await self.token_provider.get_credentials(job.store_id)
        operations.append("credentials_loaded")

        since = None
        if job.incremental and self.bookkeeping is not None:
            record = await self.bookkeeping.get_store_record(job.store_id)
            since = record.last_sync_at if record else None
            if since is not None:
                operations.append("incremental_cursor_loaded")

        if job.job_type is JobType.CLEANUP_SYNC:
            run = self.indexer.cleanup_and_reindex(job.store_id, credentials, job.data_types)
        else:
            run = self.indexer.index_store_data(job.store_id, credentials, job.data_types, since=since)
        report: IndexReport = await async_timeout(run, self.index_timeout, operation=job.job_type.value)

        if report.deleted_types:
            operations.append("namespaces_cleared")
        operations.extend(
            f"indexed_{dt.value}_{counts.indexed}" for dt, counts in report.per_type.items()
            if counts.indexed
        )
        if not report.success:
            raise IndexingFailedError(job.store_id, [dt.value for dt in report.failed_types])

        if self.bookkeeping is not None:
            await self.bookkeeping.mark_synced(job.store_id, report.last_indexed_at)
            operations.append("sync_timestamp_updated")
        return operations, report.to_dict()

    async def _finish(self, job: Job, started: float, success: bool,
                      operations: Optional[List[str]] = None,
                      error: Optional[str] = None,
                      reconnection_required: bool = False,
                      report: Optional[Dict[str, Any]] = None) -> None:
        job.result = JobResult(
            job_id=job.job_id,
            store_id=job.store_id,
            job_type=job.job_type,
            success=success,
            execution_time_ms=(time.perf_counter() - started) * 1000,
            operations=operations or [],
            retry_count=job.retry_count,
            error=error,
            reconnection_required=reconnection_required,
            report=report,
        )
        job.transition(JobState.SUCCEEDED if success else JobState.FAILED, error)
        job.done.set()
        self._prune_history()

        if success:
            self.logger.info(
                "Job succeeded",
                job_id=job.job_id,
                retry_count=job.retry_count,
                execution_time_ms=round(job.result.execution_time_ms, 2)
            )
        else:
            self.logger.error(
                "Job failed",
                job_id=job.job_id,
                retry_count=job.retry_count,
                reconnection_required=reconnection_required,
                error=error
            )

        event = JobEvent(
            event="job_completed" if success else "job_failed",
            job_id=job.job_id,
            store_id=job.store_id,
            job_type=job.job_type.value,
            payload={
                'success': success,
                'retry_count': job.retry_count,
                'error': error,
                'reconnection_required': reconnection_required,
            },
        )
        try:
            await self.event_sink.publish(event)
        except Exception as e:
            self.logger.error("Failed to publish job event", job_id=job.job_id, error=str(e))

    def _prune_history(self) -> None:
        """Drop the oldest finished jobs beyond ``history_limit``; the latest jobs per store stay."""
        excess = len(self._jobs) - self.history_limit
        if excess <= 0:
            return

        latest: Dict[Any, Job] = {}
        for job in self._jobs.values():
            keys = [job.store_id]
            if job.job_type in SYNC_JOB_TYPES:
                keys.append((job.store_id, "sync"))
            for key in keys:
                if key not in latest or job.created_at >= latest[key].created_at:
                    latest[key] = job
        keep = {job.job_id for job in latest.values()}

        for job_id, job in list(self._jobs.items()):
            if excess <= 0:
                break
            if job.is_active or job_id in keep:
                continue
            del self._jobs[job_id]
            excess -= 1

    def get_stats(self) -> Dict[str, Any]:
        jobs = list(self._jobs.values())
        finished = [job.result.execution_time_ms for job in jobs if job.result]
        return {
            'total_jobs': len(jobs),
            'queued_jobs': sum(1 for job in jobs if job.state in (JobState.QUEUED, JobState.FAILED_RETRYING)),
            'running_jobs': sum(1 for job in jobs if job.state is JobState.RUNNING),
            'completed_jobs': sum(1 for job in jobs if job.state is JobState.SUCCEEDED),
            'failed_jobs': sum(1 for job in jobs if job.state is JobState.FAILED),
            'average_execution_time_ms': round(sum(finished) / len(finished), 2) if finished else 0.0,
            'max_concurrent_jobs': self.max_concurrent_jobs,
        }

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop accepting jobs and cancel the ones still in flight."""
        self._accepting = False
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks, timeout=timeout)
        self.logger.info("Job manager shut down", cancelled=len(tasks))
