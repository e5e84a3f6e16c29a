"""
Unit tests for the bounded worker queue.
"""
import asyncio
import time

import pytest

from adlingo.core.exceptions import RetryExhaustedError, TaskClaimError, TaskNotFoundError
from adlingo.models import TaskKind, TaskStatus
from adlingo.pipeline.jobs import requeue_job
from adlingo.pipeline.regeneration import TaskOutcome
from adlingo.pipeline.worker_queue import WorkerQueue
from adlingo.services.notifications import Notifier


class RecordingProcessor:
    """Processor stand-in tracking how many tasks run at once."""

    def __init__(self, store, delay=0.01, fail_ids=(), crash_ids=()):
        self.store = store
        self.delay = delay
        self.fail_ids = set(fail_ids)
        self.crash_ids = set(crash_ids)
        self.active = 0
        self.peak = 0
        self.seen = []

    async def run(self, task):
        self.seen.append(task.id)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.active -= 1

        if task.id in self.crash_ids:
            raise RuntimeError("processor exploded")
        if task.id in self.fail_ids:
            self.store.fail_task(task.id, "generation failed")
            return TaskOutcome(task_id=task.id, status=TaskStatus.FAILED, error="generation failed")

        version = self.store.create_version(task.id, f"https://cdn/{task.id}.png")
        self.store.complete_task(task.id)
        return TaskOutcome(task_id=task.id, status=TaskStatus.COMPLETED, attempts=1,
                           accepted=True, active_version_id=version.id)


class RecordingNotifier(Notifier):
    name = "recorder"

    def __init__(self):
        self.summaries = []

    async def notify(self, summary):
        self.summaries.append(summary)


class FailingNotifier(Notifier):
    name = "export"

    async def notify(self, summary):
        raise RetryExhaustedError("export webhook down", attempts=3)


def image_job(store, count):
    job = store.create_job("ads", TaskKind.IMAGE)
    tasks = [
        store.create_task(job.id, TaskKind.IMAGE, "sv", f"https://cdn/src{i}.png", aspect_ratio="1:1")
        for i in range(count)
    ]
    return job, tasks


class TestBatchRun:

    @pytest.mark.asyncio
    async def test_all_tasks_completed_within_concurrency(self, store):
        job, tasks = image_job(store, 6)
        processor = RecordingProcessor(store)
        queue = WorkerQueue(store, {TaskKind.IMAGE: processor}, concurrency=2)

        result = await queue.run(job.id)

        assert result.status == TaskStatus.COMPLETED
        assert result.completed == 6
        assert sorted(processor.seen) == sorted(t.id for t in tasks)
        assert processor.peak == 2
        assert store.get_job(job.id).status == TaskStatus.COMPLETED
        assert queue.inflight == set()

    @pytest.mark.asyncio
    async def test_any_failure_fails_the_job(self, store):
        job, tasks = image_job(store, 3)
        processor = RecordingProcessor(store, fail_ids={tasks[1].id})

        result = await WorkerQueue(store, {TaskKind.IMAGE: processor}, concurrency=3).run(job.id)

        assert result.status == TaskStatus.FAILED
        assert (result.completed, result.failed) == (2, 1)
        assert store.get_job(job.id).status == TaskStatus.FAILED

    @pytest.mark.asyncio
    async def test_crash_isolated_to_its_task(self, store):
        job, tasks = image_job(store, 3)
        processor = RecordingProcessor(store, crash_ids={tasks[0].id})

        result = await WorkerQueue(store, {TaskKind.IMAGE: processor}, concurrency=1).run(job.id)

        crashed = store.get_task(tasks[0].id)
        assert crashed.status == TaskStatus.FAILED
        assert "processor exploded" in crashed.error_message
        assert result.completed == 2
        assert result.outcomes[tasks[0].id].status == TaskStatus.FAILED

    @pytest.mark.asyncio
    async def test_missing_processor_fails_task(self, store):
        job, tasks = image_job(store, 1)

        result = await WorkerQueue(store, {TaskKind.PAGE: RecordingProcessor(store)}).run(job.id)

        assert result.failed == 1
        assert "No processor configured" in store.get_task(tasks[0].id).error_message

    @pytest.mark.asyncio
    async def test_only_pending_tasks_run(self, store):
        job, tasks = image_job(store, 2)
        store.claim_task(tasks[0].id)
        store.complete_task(tasks[0].id)
        processor = RecordingProcessor(store)

        await WorkerQueue(store, {TaskKind.IMAGE: processor}).run(job.id)

        assert processor.seen == [tasks[1].id]

    @pytest.mark.asyncio
    async def test_task_done_callback(self, store):
        job, tasks = image_job(store, 3)
        done = []

        await WorkerQueue(store, {TaskKind.IMAGE: RecordingProcessor(store)},
                          on_task_done=done.append).run(job.id)

        assert sorted(o.task_id for o in done) == sorted(t.id for t in tasks)

    @pytest.mark.asyncio
    async def test_unknown_job(self, store):
        with pytest.raises(TaskNotFoundError):
            await WorkerQueue(store, {}).run("missing")


class TestWatchdog:

    @pytest.mark.asyncio
    async def test_stalled_task_reclaimed_and_processed(self, store):
        job, tasks = image_job(store, 2)
        stalled = tasks[0]
        # Claimed by a worker that died long ago
        store.claim_task(stalled.id)
        store._write(lambda cursor: cursor.execute(
            "UPDATE tasks SET updated_at = ? WHERE id = ?", (time.time() - 600, stalled.id)
        ))
        processor = RecordingProcessor(store)
        queue = WorkerQueue(store, {TaskKind.IMAGE: processor},
                            stall_window=60, watchdog_interval=0.01)

        result = await asyncio.wait_for(queue.run(job.id), timeout=5)

        assert result.reclaimed == [stalled.id]
        assert stalled.id in processor.seen
        assert store.get_task(stalled.id).status == TaskStatus.COMPLETED
        assert result.status == TaskStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_long_task_kept_alive_against_second_queue(self, store):
        job, tasks = image_job(store, 1)
        processor = RecordingProcessor(store, delay=0.6)
        first = WorkerQueue(store, {TaskKind.IMAGE: processor}, stall_window=0.2, watchdog_interval=0.05)
        second = WorkerQueue(store, {TaskKind.IMAGE: processor}, stall_window=0.2, watchdog_interval=0.05)

        running = asyncio.create_task(first.run(job.id))
        await asyncio.sleep(0.4)
        with pytest.raises(TaskClaimError):
            requeue_job(store, job.id, include_stalled=True, stall_window=0.2)
        requeued = store.requeue_tasks(job.id, include_stalled=True, stall_window=0.2)
        other = await asyncio.wait_for(second.run(job.id), timeout=5)
        result = await asyncio.wait_for(running, timeout=5)

        assert requeued == []
        assert processor.seen == [tasks[0].id]
        assert processor.peak == 1
        assert store.count_versions(tasks[0].id) == 1
        assert other.reclaimed == [] and result.reclaimed == []
        assert result.status == TaskStatus.COMPLETED

    def test_crashed_run_can_be_requeued(self, store):
        job, tasks = image_job(store, 1)
        store.update_job_status(job.id, TaskStatus.PROCESSING)
        store.claim_task(tasks[0].id)
        store._write(lambda cursor: cursor.execute(
            "UPDATE tasks SET updated_at = ? WHERE id = ?", (time.time() - 600, tasks[0].id)
        ))

        assert requeue_job(store, job.id, include_stalled=True, stall_window=60) == [tasks[0].id]


class TestNotifications:

    @pytest.mark.asyncio
    async def test_summary_delivered(self, store):
        job, tasks = image_job(store, 2)
        notifier = RecordingNotifier()

        await WorkerQueue(store, {TaskKind.IMAGE: RecordingProcessor(store)},
                          notifiers=[notifier]).run(job.id)

        summary = notifier.summaries[0]
        assert summary['job_id'] == job.id
        assert summary['status'] == 'completed'
        assert {t['artifact'] for t in summary['tasks']} == {f"https://cdn/{t.id}.png" for t in tasks}

    @pytest.mark.asyncio
    async def test_notifier_failure_recorded_not_raised(self, store):
        job, _ = image_job(store, 1)
        recorder = RecordingNotifier()

        result = await WorkerQueue(store, {TaskKind.IMAGE: RecordingProcessor(store)},
                                   notifiers=[FailingNotifier(), recorder]).run(job.id)

        assert result.status == TaskStatus.COMPLETED
        assert "export webhook down" in result.notification_errors['export']
        assert len(recorder.summaries) == 1
        assert store.get_job(job.id).status == TaskStatus.COMPLETED
