"""
Page translation: extract -> dispatch -> reinsert, and the page variant of the
regeneration loop.

Later attempts first try the review's suggested corrections through the safe
patcher; when there are none, or none could be located, the page is
re-dispatched with the review issues as feedback.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from adlingo.config import FIX_STALE_SECONDS, MAX_VERSIONS
from adlingo.core.batch_dispatcher import BatchDispatcher, DispatchResult
from adlingo.core.exceptions import TaskClaimError, ValidationError
from adlingo.core.html.extractor import StructuralExtractor
from adlingo.core.html.patcher import SafePatcher
from adlingo.core.html.reinsertion import ReinsertionEngine
from adlingo.core.html.xml_helpers import extract_readable_text
from adlingo.core.quality_gate import QualityGate
from adlingo.models import (
    CorrectionInput,
    PreviousReview,
    QualityAnalysis,
    TaskKind,
    TaskStatus,
    TranslationTask,
    Version,
)
from adlingo.persistence.database import Database
from adlingo.pipeline.regeneration import AttemptContext, RegenerationLoop

logger = logging.getLogger(__name__)


@dataclass
class PageTranslation:
    """A translated document plus what happened on the way."""
    html: str
    dispatch: DispatchResult
    metadata: Dict[str, str] = field(default_factory=dict)


class PageTranslator:
    """Translates one HTML document into one language."""

    def __init__(self,
                 dispatcher: BatchDispatcher,
                 extractor: Optional[StructuralExtractor] = None,
                 reinsertion: Optional[ReinsertionEngine] = None,
                 translate_metadata: bool = True):
        self.dispatcher = dispatcher
        self.extractor = extractor or StructuralExtractor()
        self.reinsertion = reinsertion or ReinsertionEngine()
        self.translate_metadata = translate_metadata

    async def translate(self, html: str, language: str, feedback: str = "") -> PageTranslation:
        """
        Args:
            html: Source document
            language: Target language code
            feedback: Issues from a previous review round

        Raises:
            ExtractionError: If the document cannot be parsed
            DispatchError: If every chunk failed
        """
        extraction = self.extractor.extract(html)
        logger.info(f"Page extraction ({language}): {extraction.stats()}")

        dispatch = await self.dispatcher.dispatch(
            extraction.units,
            language,
            context=extract_readable_text(html),
            feedback=feedback,
        )

        metadata: Dict[str, str] = {}
        if self.translate_metadata and extraction.metadata:
            metadata = await self.dispatcher.translate_metadata(extraction.metadata, language)

        document = self.reinsertion.reinsert(extraction, dispatch.translations, metadata)
        return PageTranslation(html=document, dispatch=dispatch, metadata=metadata)


def review_feedback(analysis: Optional[QualityAnalysis]) -> str:
    """Itemized review issues, fed back to the dispatcher on re-translation."""
    if analysis is None:
        return ""
    lines = [f"- {issue}" for issue in analysis.all_issues]
    lines.extend(f"- Person name handled wrongly: {name}" for name in analysis.name_localization)
    if analysis.overall_assessment:
        lines.append(f"Overall: {analysis.overall_assessment}")
    return "\n".join(lines)


class PageTaskProcessor(RegenerationLoop):
    """Regeneration loop for page tasks."""

    kind = TaskKind.PAGE

    def __init__(self,
                 store: Database,
                 gate: QualityGate,
                 translator: PageTranslator,
                 patcher: Optional[SafePatcher] = None,
                 max_versions: int = MAX_VERSIONS,
                 quality_check_enabled: bool = True):
        super().__init__(store, gate, max_versions, quality_check_enabled)
        self.translator = translator
        self.patcher = patcher or SafePatcher()

    async def generate(self, task: TranslationTask, context: AttemptContext) -> str:
        context.review = None
        correction = context.correction

        if context.previous_artifact and correction and correction.corrections:
            patch = self.patcher.apply(context.previous_artifact, correction.corrections)
            if patch.applied:
                previous = context.previous_analysis
                context.review = PreviousReview(
                    applied_corrections=patch.applied_corrections,
                    previous_score=previous.score if previous else 0,
                    previous_issues=previous.all_issues if previous else [],
                )
                logger.info(
                    f"Task {task.id}: patched {patch.applied} correction(s), "
                    f"{len(patch.failed)} not found"
                )
                return patch.html
            logger.info(f"Task {task.id}: no suggested correction could be applied, re-translating")

        translation = await self.translator.translate(
            task.source, task.language, feedback=review_feedback(context.previous_analysis)
        )
        if translation.dispatch.is_partial:
            logger.warning(
                f"Task {task.id}: {len(translation.dispatch.failed_units)} unit(s) kept their source text"
            )
        return translation.html

    async def score(self, task: TranslationTask, context: AttemptContext, artifact: str) -> QualityAnalysis:
        return await self.gate.score_text(task.source, artifact, task.language, previous=context.review)


@dataclass
class CorrectionRun:
    """Outcome of applying stored review corrections to a page task."""
    task_id: str
    applied: int
    failed: List[str]
    version: Version
    previous_review: PreviousReview

    def to_dict(self):
        return {
            'task_id': self.task_id,
            'applied': self.applied,
            'failed': self.failed,
            'version_id': self.version.id,
            'version_number': self.version.version_number,
            'previous_review': {
                'applied_corrections': [c.to_dict() for c in self.previous_review.applied_corrections],
                'previous_score': self.previous_review.previous_score,
                'previous_issues': self.previous_review.previous_issues,
            },
        }


def apply_corrections(store: Database,
                      task_id: str,
                      patcher: Optional[SafePatcher] = None,
                      stale_seconds: float = FIX_STALE_SECONDS,
                      max_versions: int = MAX_VERSIONS) -> CorrectionRun:
    """
    Apply the active version's suggested corrections as a new version.

    A task stuck in processing for longer than ``stale_seconds`` is first
    forced to failed so it can be claimed. The active version and the
    version ceiling are checked only once the task is claimed; a refused
    request hands the task back in the state it was claimed from.

    Raises:
        TaskNotFoundError: Unknown task
        ValidationError: Not a page task, nothing to apply, or no version slot left
        TaskClaimError: The task is being processed
    """
    task = store.require_task(task_id)
    if task.kind != TaskKind.PAGE:
        raise ValidationError(f"Corrections can only be applied to page tasks, got {task.kind.value}")

    store.fail_if_stale(task_id, stale_seconds)
    task = store.require_task(task_id)
    if task.status == TaskStatus.PENDING:
        raise ValidationError("Task has no translated version yet")
    if task.status not in (TaskStatus.COMPLETED, TaskStatus.FAILED) \
            or not store.claim_task(task_id, allowed=(task.status,)):
        raise TaskClaimError(f"Task {task_id} is already being processed", context={'task_id': task_id})

    try:
        active = store.get_active_version(task_id)
        analysis = active.quality_analysis if active else None
        if active is None or not active.artifact:
            raise ValidationError("Task has no translated version yet")
        if analysis is None or not analysis.suggested_corrections:
            raise ValidationError("The active version has no suggested corrections")
        if store.count_versions(task_id) >= max_versions:
            raise ValidationError(f"Task already has {max_versions} versions")
    except ValidationError:
        store.release_task(task_id, task.status, task.error_message)
        raise

    try:
        patch = (patcher or SafePatcher()).apply(active.artifact, analysis.suggested_corrections)
        version = store.create_version(
            task_id, patch.html,
            activate=True,
            correction_input=CorrectionInput(corrections=list(analysis.suggested_corrections)),
        )
        store.complete_task(task_id)
    except Exception as e:
        store.fail_task(task_id, f"Applying corrections failed: {e}")
        raise

    logger.info(f"Task {task_id}: applied {patch.applied} correction(s), {len(patch.failed)} not found")
    return CorrectionRun(
        task_id=task_id,
        applied=patch.applied,
        failed=patch.failed,
        version=version,
        previous_review=PreviousReview(
            applied_corrections=patch.applied_corrections,
            previous_score=analysis.score,
            previous_issues=analysis.all_issues,
        ),
    )


async def review_corrected(store: Database, gate: QualityGate, run: CorrectionRun) -> QualityAnalysis:
    """Re-score the version produced by apply_corrections, with the score floor."""
    task = store.require_task(run.task_id)
    analysis = await gate.score_text(task.source, run.version.artifact, task.language,
                                     previous=run.previous_review)
    store.record_version_analysis(run.version.id, analysis)
    return analysis
