"""
Bounded worker pool driving the regeneration loop over the tasks of a job.

N worker coroutines pull task ids from an asyncio queue, claim each task
with the store's conditional update and hand it to the processor for its
kind. While a task runs, a keep-alive coroutine refreshes its heartbeat
so no other queue sees it as stalled during long generation phases. A
watchdog coroutine periodically reclaims tasks stuck in processing past
the stall window (skipping tasks in flight in this queue) and queues
them again. When the batch is done the job status is aggregated and the
notifiers run; their failures are recorded, never raised.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from adlingo.config import STALL_WINDOW_SECONDS, WATCHDOG_INTERVAL_SECONDS, WORKER_CONCURRENCY
from adlingo.core.exceptions import TaskNotFoundError
from adlingo.models import TaskKind, TaskStatus
from adlingo.persistence.database import Database
from adlingo.pipeline.regeneration import RegenerationLoop, TaskOutcome
from adlingo.services.notifications import Notifier, run_notifiers

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    """Summary of one batch run."""
    job_id: str
    status: TaskStatus
    outcomes: Dict[str, TaskOutcome] = field(default_factory=dict)
    reclaimed: List[str] = field(default_factory=list)
    notification_errors: Dict[str, str] = field(default_factory=dict)
    duration_seconds: float = 0.0

    @property
    def completed(self) -> int:
        return sum(1 for o in self.outcomes.values() if o.status == TaskStatus.COMPLETED)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes.values() if o.status == TaskStatus.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'job_id': self.job_id,
            'status': self.status.value,
            'completed': self.completed,
            'failed': self.failed,
            'reclaimed': list(self.reclaimed),
            'notification_errors': dict(self.notification_errors),
            'duration_seconds': round(self.duration_seconds, 2),
            'tasks': [o.to_dict() for o in self.outcomes.values()],
        }


class WorkerQueue:
    """
    Runs the pending tasks of a job with at most ``concurrency`` in flight.

    In-flight bookkeeping (queued and claimed task ids) lives on the instance
    and is reset at the start of every ``run``.
    """

    def __init__(self,
                 store: Database,
                 processors: Mapping[TaskKind, RegenerationLoop],
                 concurrency: int = WORKER_CONCURRENCY,
                 stall_window: float = STALL_WINDOW_SECONDS,
                 watchdog_interval: float = WATCHDOG_INTERVAL_SECONDS,
                 heartbeat_interval: Optional[float] = None,
                 notifiers: Optional[List[Notifier]] = None,
                 on_task_done: Optional[Callable[[TaskOutcome], None]] = None):
        self.store = store
        self.processors = dict(processors)
        self.concurrency = max(1, concurrency)
        self.stall_window = stall_window
        self.watchdog_interval = watchdog_interval
        self.heartbeat_interval = heartbeat_interval or stall_window / 4
        self.notifiers = notifiers or []
        self.on_task_done = on_task_done

        self._queue: Optional[asyncio.Queue] = None
        self._queued: Set[str] = set()
        self._inflight: Set[str] = set()
        self._outcomes: Dict[str, TaskOutcome] = {}
        self._reclaimed: List[str] = []

    @property
    def inflight(self) -> Set[str]:
        return set(self._inflight)

    async def run(self, job_id: str) -> BatchResult:
        """
        Process every pending task of a job until none is pending or processing.

        Raises:
            TaskNotFoundError: Unknown job
        """
        if self.store.get_job(job_id) is None:
            raise TaskNotFoundError(f"Job not found: {job_id}", task_id=job_id)

        started = time.monotonic()
        self._queue = asyncio.Queue()
        self._queued = set()
        self._inflight = set()
        self._outcomes = {}
        self._reclaimed = []

        self.store.update_job_status(job_id, TaskStatus.PROCESSING)
        queued = self._enqueue_pending(job_id)
        logger.info(f"Job {job_id}: {queued} task(s) queued, {self.concurrency} worker(s)")

        workers = [asyncio.create_task(self._worker()) for _ in range(self.concurrency)]
        watchdog = asyncio.create_task(self._watchdog(job_id))

        try:
            while True:
                await self._queue.join()
                outstanding = self.store.list_tasks(job_id, (TaskStatus.PENDING, TaskStatus.PROCESSING))
                if not outstanding:
                    break
                # Tasks held elsewhere; wait for them to finish or for the watchdog to reclaim them
                if not self._enqueue_pending(job_id):
                    await asyncio.sleep(self.watchdog_interval)
        finally:
            for coroutine in workers + [watchdog]:
                coroutine.cancel()
            await asyncio.gather(*workers, watchdog, return_exceptions=True)

        return await self._finish_batch(job_id, time.monotonic() - started)

    def _enqueue_pending(self, job_id: str) -> int:
        added = 0
        for task in self.store.list_tasks(job_id, (TaskStatus.PENDING,)):
            if task.id in self._queued or task.id in self._inflight:
                continue
            self._queued.add(task.id)
            self._queue.put_nowait(task.id)
            added += 1
        return added

    async def _worker(self):
        while True:
            task_id = await self._queue.get()
            self._queued.discard(task_id)
            try:
                await self._process(task_id)
            finally:
                self._queue.task_done()

    async def _process(self, task_id: str):
        if not self.store.claim_task(task_id):
            return

        self._inflight.add(task_id)
        keep_alive = asyncio.create_task(self._keep_alive(task_id))
        try:
            task = self.store.require_task(task_id)
            processor = self.processors.get(task.kind)
            if processor is None:
                message = f"No processor configured for {task.kind.value} tasks"
                self.store.fail_task(task_id, message)
                outcome = TaskOutcome(task_id=task_id, status=TaskStatus.FAILED, error=message)
            else:
                outcome = await processor.run(task)
        except Exception as e:
            # One task must never take down its worker
            logger.exception(f"Task {task_id} crashed: {e}")
            self.store.fail_task(task_id, str(e))
            outcome = TaskOutcome(task_id=task_id, status=TaskStatus.FAILED, error=str(e))
        finally:
            keep_alive.cancel()
            await asyncio.gather(keep_alive, return_exceptions=True)
            self._inflight.discard(task_id)

        self._outcomes[task_id] = outcome
        if self.on_task_done:
            self.on_task_done(outcome)

    async def _keep_alive(self, task_id: str):
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            self.store.heartbeat(task_id)

    async def _watchdog(self, job_id: str):
        while True:
            await asyncio.sleep(self.watchdog_interval)
            reclaimed = self.store.reclaim_stalled(
                self.stall_window, exclude_ids=self._inflight, job_id=job_id
            )
            if reclaimed:
                self._reclaimed.extend(reclaimed)
                self._enqueue_pending(job_id)

    async def _finish_batch(self, job_id: str, duration: float) -> BatchResult:
        counts = self.store.job_status_counts(job_id)
        status = TaskStatus.FAILED if counts[TaskStatus.FAILED.value] else TaskStatus.COMPLETED
        self.store.update_job_status(job_id, status)

        result = BatchResult(
            job_id=job_id,
            status=status,
            outcomes=dict(self._outcomes),
            reclaimed=list(self._reclaimed),
            duration_seconds=duration,
        )
        logger.info(
            f"Job {job_id} {status.value}: {counts[TaskStatus.COMPLETED.value]} completed, "
            f"{counts[TaskStatus.FAILED.value]} failed"
        )

        if self.notifiers:
            result.notification_errors = await run_notifiers(self.notifiers, self.batch_summary(job_id, status))
        return result

    def batch_summary(self, job_id: str, status: TaskStatus) -> Dict[str, Any]:
        """Payload handed to notifiers: final artifact and score per task."""
        return {
            'job_id': job_id,
            'status': status.value,
            'tasks': [
                {
                    'task_id': task.id,
                    'language': task.language,
                    'aspect_ratio': task.aspect_ratio,
                    'status': task.status.value,
                    'artifact': task.result if task.kind == TaskKind.IMAGE else task.active_version_id,
                    'quality_score': task.quality_score,
                }
                for task in self.store.list_tasks(job_id)
            ],
        }
