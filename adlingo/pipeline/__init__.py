"""
Task orchestration: the regeneration loop, its page and image variants, the
worker queue and job wiring.
"""

from .image_translator import ImageTaskProcessor
from .jobs import Engine, activate_task_version, create_image_job, create_page_job, requeue_job
from .page_translator import (
    CorrectionRun,
    PageTaskProcessor,
    PageTranslation,
    PageTranslator,
    apply_corrections,
    review_corrected,
)
from .regeneration import AttemptContext, RegenerationLoop, TaskOutcome, select_best_version
from .worker_queue import BatchResult, WorkerQueue

__all__ = [
    'AttemptContext',
    'BatchResult',
    'CorrectionRun',
    'Engine',
    'ImageTaskProcessor',
    'PageTaskProcessor',
    'PageTranslation',
    'PageTranslator',
    'RegenerationLoop',
    'TaskOutcome',
    'WorkerQueue',
    'activate_task_version',
    'apply_corrections',
    'create_image_job',
    'create_page_job',
    'requeue_job',
    'review_corrected',
    'select_best_version',
]
