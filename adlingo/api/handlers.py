"""
Background execution of jobs started from the HTTP API.
"""
import asyncio
import logging
import threading

from adlingo.config import EngineConfig
from adlingo.core.exceptions import TranslationError
from adlingo.models import TaskStatus
from adlingo.persistence.database import Database
from adlingo.pipeline.jobs import Engine

logger = logging.getLogger(__name__)


async def perform_job(job_id: str, config: EngineConfig, store: Database):
    engine = Engine(config, store=store)
    try:
        result = await engine.run_job(job_id)
        logger.info(f"Job {job_id} finished: {result.to_dict()['status']}")
        return result
    finally:
        await engine.close()


def run_job_async_wrapper(job_id: str, config: EngineConfig, store: Database):
    """
    Run a job on a fresh event loop (thread target).

    Args:
        job_id: Job to run
        config: Engine configuration built from the request
        store: Shared database
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        loop.run_until_complete(perform_job(job_id, config, store))
    except TranslationError as e:
        logger.error(f"Job {job_id} aborted: {e}")
        store.update_job_status(job_id, TaskStatus.FAILED)
    except Exception:
        logger.exception(f"Uncaught error in job wrapper {job_id}")
        store.update_job_status(job_id, TaskStatus.FAILED)
    finally:
        loop.close()


def start_job(job_id: str, config: EngineConfig, store: Database) -> threading.Thread:
    """Start a job in a separate daemon thread."""
    thread = threading.Thread(
        target=run_job_async_wrapper,
        args=(job_id, config, store),
        name=f"job-{job_id[:8]}",
    )
    thread.daemon = True
    thread.start()
    return thread
