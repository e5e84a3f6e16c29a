"""
Job creation and engine wiring.

``Engine`` builds the provider, gates, processors and worker queue from an
EngineConfig. The image generator and storage backend are only built when a
job with image tasks is run, so page-only runs need no image credentials.
"""
import logging
from typing import Callable, Dict, Iterable, List, Optional

from adlingo.config import ASPECT_RATIOS, STALL_WINDOW_SECONDS, EngineConfig
from adlingo.core.batch_dispatcher import BatchDispatcher
from adlingo.core.exceptions import TaskClaimError, TaskNotFoundError, ValidationError
from adlingo.core.llm import LLMProvider, create_provider
from adlingo.core.quality_gate import QualityGate
from adlingo.core.retry_manager import RetryConfig, RetryManager
from adlingo.models import TaskKind, TaskStatus, TranslationJob, Version
from adlingo.persistence.database import Database
from adlingo.pipeline.image_translator import ImageTaskProcessor
from adlingo.pipeline.page_translator import PageTaskProcessor, PageTranslator
from adlingo.pipeline.regeneration import RegenerationLoop, TaskOutcome
from adlingo.pipeline.worker_queue import BatchResult, WorkerQueue
from adlingo.services.image_generator import KieImageGenerator
from adlingo.services.notifications import Notifier, build_notifiers
from adlingo.services.storage import StorageService, create_storage

logger = logging.getLogger(__name__)


def _require_languages(languages: Iterable[str]) -> List[str]:
    result = [lang.strip() for lang in languages if lang and lang.strip()]
    if not result:
        raise ValidationError("At least one target language is required")
    return result


def create_page_job(store: Database, name: str, html: str, languages: Iterable[str]) -> TranslationJob:
    """One page task per target language."""
    if not html or not html.strip():
        raise ValidationError("Page HTML is empty")
    languages = _require_languages(languages)
    job = store.create_job(name, TaskKind.PAGE)
    for language in languages:
        store.create_task(job.id, TaskKind.PAGE, language, html)
    logger.info(f"Created page job {job.id} with {len(languages)} task(s)")
    return job


def create_image_job(store: Database, name: str, image_urls: Iterable[str],
                     languages: Iterable[str], aspect_ratios: Iterable[str] = ('1:1',)) -> TranslationJob:
    """One image task per image x language x aspect ratio."""
    images = [url for url in image_urls if url]
    if not images:
        raise ValidationError("At least one source image is required")
    languages = _require_languages(languages)
    ratios = list(aspect_ratios)
    unknown = [r for r in ratios if r not in ASPECT_RATIOS]
    if unknown or not ratios:
        raise ValidationError(f"Unsupported aspect ratio(s): {unknown}; use {ASPECT_RATIOS}")

    job = store.create_job(name, TaskKind.IMAGE)
    for image in images:
        for language in languages:
            for ratio in ratios:
                store.create_task(job.id, TaskKind.IMAGE, language, image, aspect_ratio=ratio)
    logger.info(f"Created image job {job.id} with {len(images) * len(languages) * len(ratios)} task(s)")
    return job


def requeue_job(store: Database, job_id: str, include_stalled: bool = False,
                stall_window: float = STALL_WINDOW_SECONDS) -> List[str]:
    """
    Requeue failed (and optionally stalled) tasks of a job.

    A job in processing with a task whose heartbeat is still inside the
    stall window belongs to a live run and is refused.

    Raises:
        TaskNotFoundError: Unknown job
        TaskClaimError: The job is still being run
    """
    job = store.get_job(job_id)
    if job is None:
        raise TaskNotFoundError(f"Job not found: {job_id}", task_id=job_id)
    if job.status == TaskStatus.PROCESSING and store.count_live_tasks(job_id, stall_window):
        raise TaskClaimError(f"Job {job_id} is still running", context={'job_id': job_id})
    requeued = store.requeue_tasks(job_id, include_stalled=include_stalled, stall_window=stall_window)
    if requeued:
        logger.info(f"Requeued {len(requeued)} task(s) of job {job_id}")
    return requeued


def activate_task_version(store: Database, task_id: str, version_id: str) -> Version:
    """Switch the active version of a task that no worker holds."""
    task = store.require_task(task_id)
    if task.status == TaskStatus.PROCESSING or not store.claim_task(task_id, allowed=(task.status,)):
        raise TaskClaimError(f"Task {task_id} is being processed", context={'task_id': task_id})
    try:
        return store.activate_version(task_id, version_id)
    finally:
        store.release_task(task_id, task.status, task.error_message)


class Engine:
    """Builds and owns the collaborators needed to run jobs."""

    def __init__(self,
                 config: EngineConfig,
                 store: Optional[Database] = None,
                 provider: Optional[LLMProvider] = None,
                 generator: Optional[KieImageGenerator] = None,
                 storage: Optional[StorageService] = None,
                 notifiers: Optional[List[Notifier]] = None):
        self.config = config
        self.store = store or Database(config.database_path)
        self.retry_manager = RetryManager(RetryConfig(
            max_attempts=config.retry_max_attempts,
            initial_delay=config.retry_initial_delay,
            max_delay=config.retry_max_delay,
            backoff_factor=config.retry_backoff_factor,
        ))
        self._provider = provider
        self._generator = generator
        self._storage = storage
        self.notifiers = notifiers if notifiers is not None else build_notifiers(self.retry_manager)

    @property
    def provider(self) -> LLMProvider:
        if self._provider is None:
            self._provider = create_provider(
                api_key=self.config.openai_api_key,
                model=self.config.model,
                api_endpoint=self.config.openai_endpoint,
            )
        return self._provider

    def _gate(self, threshold: int) -> QualityGate:
        return QualityGate(
            self.provider,
            retry_manager=self.retry_manager,
            threshold=threshold,
            do_not_translate=self.config.do_not_translate,
        )

    def page_gate(self) -> QualityGate:
        return self._gate(self.config.page_quality_threshold)

    def page_processor(self) -> PageTaskProcessor:
        dispatcher = BatchDispatcher(
            self.provider,
            retry_manager=self.retry_manager,
            chunk_size=self.config.chunk_size,
            token_budget=self.config.chunk_token_budget,
            max_concurrent_chunks=self.config.max_concurrent_chunks,
            do_not_translate=self.config.do_not_translate,
        )
        return PageTaskProcessor(
            self.store,
            self.page_gate(),
            PageTranslator(dispatcher),
            max_versions=self.config.max_versions,
            quality_check_enabled=self.config.quality_check_enabled,
        )

    def image_processor(self) -> ImageTaskProcessor:
        if self._generator is None:
            self._generator = KieImageGenerator(
                api_key=self.config.kie_api_key,
                base_url=self.config.kie_endpoint,
                model=self.config.kie_model,
                retry_manager=self.retry_manager,
            )
        if self._storage is None:
            self._storage = create_storage(self.config.storage_backend)
        return ImageTaskProcessor(
            self.store,
            self._gate(self.config.quality_threshold),
            self._generator,
            self._storage,
            max_versions=self.config.max_versions,
            quality_check_enabled=self.config.quality_check_enabled,
        )

    def processors_for(self, kind: TaskKind) -> Dict[TaskKind, RegenerationLoop]:
        if kind == TaskKind.PAGE:
            return {TaskKind.PAGE: self.page_processor()}
        return {TaskKind.IMAGE: self.image_processor()}

    async def run_job(self, job_id: str,
                      on_task_done: Optional[Callable[[TaskOutcome], None]] = None) -> BatchResult:
        job = self.store.get_job(job_id)
        if job is None:
            raise TaskNotFoundError(f"Job not found: {job_id}", task_id=job_id)

        queue = WorkerQueue(
            self.store,
            self.processors_for(job.kind),
            concurrency=self.config.concurrency,
            stall_window=self.config.stall_window,
            watchdog_interval=self.config.watchdog_interval,
            notifiers=self.notifiers,
            on_task_done=on_task_done,
        )
        return await queue.run(job_id)

    async def close(self):
        if self._provider is not None:
            await self._provider.close()
        if self._generator is not None:
            await self._generator.close()
        if self._storage is not None:
            await self._storage.close()
