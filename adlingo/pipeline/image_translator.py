"""
Image variant of the regeneration loop.

Each attempt asks the generation service to recreate the source image with
translated text, copies the result into artifact storage and scores it
against the source with a vision call.
"""
import logging
from typing import Optional

from adlingo.config import MAX_VERSIONS
from adlingo.core.quality_gate import QualityGate
from adlingo.models import QualityAnalysis, TaskKind, TranslationTask
from adlingo.persistence.database import Database
from adlingo.pipeline.regeneration import AttemptContext, RegenerationLoop
from adlingo.prompts import build_image_generation_prompt
from adlingo.services.image_generator import KieImageGenerator
from adlingo.services.storage import StorageService, artifact_path

logger = logging.getLogger(__name__)

DEFAULT_ASPECT_RATIO = "1:1"


class ImageTaskProcessor(RegenerationLoop):
    """Regeneration loop for one image x language x aspect ratio task."""

    kind = TaskKind.IMAGE

    def __init__(self,
                 store: Database,
                 gate: QualityGate,
                 generator: KieImageGenerator,
                 storage: StorageService,
                 max_versions: int = MAX_VERSIONS,
                 quality_check_enabled: bool = True):
        super().__init__(store, gate, max_versions, quality_check_enabled)
        self.generator = generator
        self.storage = storage

    async def generate(self, task: TranslationTask, context: AttemptContext) -> str:
        prompt = build_image_generation_prompt(task.language, context.correction)
        aspect_ratio = task.aspect_ratio or DEFAULT_ASPECT_RATIO

        result = await self.generator.generate(prompt, task.source, aspect_ratio)
        data = await self.generator.download(result.urls[0])
        url = await self.storage.upload(artifact_path(task.job_id, task.id), data, "image/png")
        logger.debug(f"Task {task.id}: stored generated image at {url}")
        return url

    async def score(self, task: TranslationTask, context: AttemptContext, artifact: str) -> QualityAnalysis:
        return await self.gate.score_images(task.source, artifact, task.language)


def image_task_label(task: TranslationTask, source_name: Optional[str] = None) -> str:
    """Short human label: source / language / ratio."""
    name = source_name or task.source.rsplit('/', 1)[-1]
    return f"{name} [{task.language} {task.aspect_ratio or DEFAULT_ASPECT_RATIO}]"
