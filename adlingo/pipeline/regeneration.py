"""
Quality-gated regeneration loop shared by page and image tasks.

One run of the loop owns a claimed task. Each attempt generates an artifact,
stores it as the new active version, scores it and either accepts it or
builds correction input for the next attempt. The number of attempts is
bounded by MAX_VERSIONS minus the versions the task already has, so a task
never holds more than MAX_VERSIONS version rows.

When the ceiling is reached without passing, the best version is made
active: highest score wins, unscored versions rank lowest, ties go to the
newest version.
"""
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from adlingo.config import MAX_VERSIONS
from adlingo.core.exceptions import TranslationError
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

logger = logging.getLogger(__name__)

# Errors that end a run with the task failed (or completed on its best version)
ATTEMPT_ERRORS = (TranslationError, httpx.HTTPError)


@dataclass
class AttemptContext:
    """
    State carried from one attempt to the next.

    Attributes:
        attempt: 1-based attempt number within this run
        previous_artifact: artifact of the last stored version, if any
        previous_analysis: its quality analysis, if it was scored
        correction: correction input built from previous_analysis
        review: previous-review context for scoring a patched artifact
    """
    attempt: int = 0
    previous_artifact: Optional[str] = None
    previous_analysis: Optional[QualityAnalysis] = None
    correction: Optional[CorrectionInput] = None
    review: Optional[PreviousReview] = None


@dataclass
class TaskOutcome:
    """Final state of a task after one run."""
    task_id: str
    status: TaskStatus
    attempts: int = 0
    accepted: bool = False
    active_version_id: Optional[str] = None
    quality_score: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'task_id': self.task_id,
            'status': self.status.value,
            'attempts': self.attempts,
            'accepted': self.accepted,
            'active_version_id': self.active_version_id,
            'quality_score': self.quality_score,
            'error': self.error,
        }


def select_best_version(versions: List[Version]) -> Optional[Version]:
    """Highest score wins; unscored versions rank lowest; ties go to the newest."""
    usable = [v for v in versions if v.succeeded]
    if not usable:
        return None
    return max(
        usable,
        key=lambda v: (v.quality_score if v.quality_score is not None else -1, v.version_number)
    )


class RegenerationLoop(ABC):
    """
    Drives generate -> persist -> score -> correct cycles for one task kind.

    Subclasses implement ``generate`` and ``score``.
    """

    kind: TaskKind

    def __init__(self,
                 store: Database,
                 gate: QualityGate,
                 max_versions: int = MAX_VERSIONS,
                 quality_check_enabled: bool = True):
        self.store = store
        self.gate = gate
        self.max_versions = max_versions
        self.quality_check_enabled = quality_check_enabled

    @abstractmethod
    async def generate(self, task: TranslationTask, context: AttemptContext) -> str:
        """Produce the artifact for this attempt (URL or document)."""

    @abstractmethod
    async def score(self, task: TranslationTask, context: AttemptContext, artifact: str) -> QualityAnalysis:
        """Score an artifact against the task source."""

    def build_correction(self, analysis: QualityAnalysis) -> CorrectionInput:
        return self.gate.build_correction(analysis)

    def _initial_context(self, task: TranslationTask) -> AttemptContext:
        """Continue from the active version when the task already has history."""
        context = AttemptContext()
        active = self.store.get_active_version(task.id)
        if active is None or not active.succeeded:
            return context
        context.previous_artifact = active.artifact
        context.previous_analysis = active.quality_analysis
        if active.quality_analysis is not None and not self.gate.passes(active.quality_analysis):
            context.correction = self.build_correction(active.quality_analysis)
        return context

    async def run(self, task: TranslationTask) -> TaskOutcome:
        """
        Run the loop for a task already claimed by the caller.

        Returns:
            TaskOutcome; the task is left completed or failed
        """
        budget = self.max_versions - self.store.count_versions(task.id)
        context = self._initial_context(task)
        last_error: Optional[str] = None

        if budget <= 0:
            logger.info(f"Task {task.id} already has {self.max_versions} versions, no attempts left")

        while context.attempt < budget:
            context.attempt += 1
            self.store.heartbeat(task.id)
            started = time.monotonic()

            try:
                artifact = await self.generate(task, context)
            except ATTEMPT_ERRORS as e:
                last_error = str(e)
                logger.error(f"Task {task.id} attempt {context.attempt} failed: {e}")
                self.store.create_version(
                    task.id, None,
                    activate=False,
                    correction_input=context.correction,
                    generation_duration_seconds=time.monotonic() - started,
                    error_message=last_error,
                )
                break

            version = self.store.create_version(
                task.id, artifact,
                activate=True,
                correction_input=context.correction,
                generation_duration_seconds=time.monotonic() - started,
            )
            logger.info(f"Task {task.id}: stored version {version.version_number}")

            if not self.quality_check_enabled:
                return self._finish(task, context.attempt, accepted=True)

            try:
                analysis = await self.score(task, context, artifact)
            except ATTEMPT_ERRORS as e:
                logger.warning(f"Task {task.id}: scoring version {version.version_number} failed: {e}")
                break

            self.store.record_version_analysis(version.id, analysis)

            if self.gate.passes(analysis):
                logger.info(
                    f"Task {task.id}: version {version.version_number} accepted "
                    f"(score {analysis.score} >= {self.gate.threshold})"
                )
                return self._finish(task, context.attempt, accepted=True)

            logger.info(
                f"Task {task.id}: version {version.version_number} scored {analysis.score} "
                f"< {self.gate.threshold}"
            )
            context.previous_artifact = artifact
            context.previous_analysis = analysis
            context.correction = self.build_correction(analysis)

        return self._settle(task, context.attempt, last_error)

    def _finish(self, task: TranslationTask, attempts: int, accepted: bool) -> TaskOutcome:
        self.store.complete_task(task.id)
        current = self.store.require_task(task.id)
        return TaskOutcome(
            task_id=task.id,
            status=TaskStatus.COMPLETED,
            attempts=attempts,
            accepted=accepted,
            active_version_id=current.active_version_id,
            quality_score=current.quality_score,
        )

    def _settle(self, task: TranslationTask, attempts: int, error: Optional[str]) -> TaskOutcome:
        """Complete on the best usable version, or fail when there is none."""
        best = select_best_version(self.store.list_versions(task.id))
        if best is None:
            message = error or "No usable version was produced"
            self.store.fail_task(task.id, message)
            return TaskOutcome(task_id=task.id, status=TaskStatus.FAILED, attempts=attempts, error=message)

        if not best.is_active:
            self.store.activate_version(task.id, best.id)
        logger.info(
            f"Task {task.id}: completed on version {best.version_number} "
            f"(score {best.quality_score}) without passing the threshold"
        )
        outcome = self._finish(task, attempts, accepted=False)
        outcome.error = error
        return outcome
