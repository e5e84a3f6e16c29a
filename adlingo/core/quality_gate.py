"""
Quality gate: scoring calls and correction synthesis.

Images are scored by a vision call comparing the source and candidate
images. Pages are scored on the readable text of both documents; page
review also returns suggested find/replace corrections. Below the
threshold, the gate builds the correction input for the next attempt.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

from adlingo.config import (
    ANALYSIS_CHAR_LIMIT,
    ANALYSIS_MAX_TOKENS,
    QUALITY_THRESHOLD,
)
from adlingo.core.html.xml_helpers import extract_readable_text
from adlingo.core.llm.base import LLMProvider
from adlingo.core.retry_manager import RetryManager
from adlingo.models import CorrectionInput, PreviousReview, QualityAnalysis
from adlingo.prompts import build_image_quality_prompt, build_page_review_prompt

logger = logging.getLogger(__name__)


@dataclass
class GateDecision:
    """Outcome of one gate evaluation."""
    analysis: QualityAnalysis
    accepted: bool
    correction: Optional[CorrectionInput] = None


class QualityGate:
    """Scores candidates and decides whether another attempt is needed."""

    def __init__(self,
                 provider: LLMProvider,
                 retry_manager: Optional[RetryManager] = None,
                 threshold: int = QUALITY_THRESHOLD,
                 analysis_char_limit: int = ANALYSIS_CHAR_LIMIT,
                 do_not_translate: Optional[List[str]] = None):
        self.provider = provider
        self.retry_manager = retry_manager or RetryManager()
        self.threshold = threshold
        self.analysis_char_limit = analysis_char_limit
        self.do_not_translate = do_not_translate

    def passes(self, analysis: QualityAnalysis) -> bool:
        return analysis.score >= self.threshold

    async def score_images(self, source_url: str, candidate_url: str, language: str) -> QualityAnalysis:
        """Vision scoring of a translated image against its source."""
        prompt = build_image_quality_prompt(language)
        payload = await self.retry_manager.execute_with_retry(
            self.provider.generate_json,
            prompt.user,
            system_prompt=prompt.system,
            images=[source_url, candidate_url],
            max_tokens=800,
            operation_id=f"score_image_{language}",
        )
        analysis = QualityAnalysis.from_payload(payload)
        logger.info(f"Image quality score ({language}): {analysis.score}")
        return analysis

    async def score_text(self, source_html: str, candidate_html: str, language: str,
                         previous: Optional[PreviousReview] = None) -> QualityAnalysis:
        """
        Language scoring of a translated page.

        When ``previous`` is given (re-review after a patch), the score is
        floored at the previous score: applied corrections can only improve
        the page.
        """
        limit = self.analysis_char_limit
        original_text = extract_readable_text(source_html)[:limit]
        translated_text = extract_readable_text(candidate_html)[:limit]

        prompt = build_page_review_prompt(
            original_text, translated_text, language,
            previous=previous, do_not_translate=self.do_not_translate,
        )
        payload = await self.retry_manager.execute_with_retry(
            self.provider.generate_json,
            prompt.user,
            system_prompt=prompt.system,
            max_tokens=ANALYSIS_MAX_TOKENS,
            operation_id=f"review_page_{language}",
        )
        analysis = QualityAnalysis.from_payload(payload)

        if previous is not None and previous.applied_corrections and analysis.score < previous.previous_score:
            logger.info(
                f"Score floor: model returned {analysis.score}, previous was "
                f"{previous.previous_score}, using floor"
            )
            analysis.score = previous.previous_score

        logger.info(
            f"Page quality score ({language}): {analysis.score}, "
            f"{len(analysis.suggested_corrections)} suggested corrections"
        )
        return analysis

    def build_correction(self, analysis: QualityAnalysis) -> CorrectionInput:
        """
        Synthesize the correction input for the next attempt.

        corrected_text is the "should read" directive (perceived text plus
        itemized fixes); visual_instructions combines the assessment with the
        same fixes.
        """
        fixes = []
        if analysis.spelling_errors:
            fixes.append(f"Fix spelling errors: {', '.join(analysis.spelling_errors)}")
        if analysis.grammar_issues:
            fixes.append(f"Fix grammar: {', '.join(analysis.grammar_issues)}")
        if analysis.missing_text:
            fixes.append(f"Include missing text: {', '.join(analysis.missing_text)}")
        if analysis.fluency_issues:
            fixes.append(f"Improve fluency: {', '.join(analysis.fluency_issues)}")
        if analysis.context_errors:
            fixes.append(f"Fix context errors: {', '.join(analysis.context_errors)}")

        if analysis.extracted_text:
            corrected_text = f"The translated text should read: {analysis.extracted_text}\n" + "\n".join(fixes)
        else:
            corrected_text = "\n".join(fixes)

        instructions = []
        if analysis.overall_assessment:
            instructions.append(analysis.overall_assessment)
        if fixes:
            instructions.append(f"Please correct these issues: {'; '.join(fixes)}")

        return CorrectionInput(
            corrected_text=corrected_text.strip(),
            visual_instructions="\n".join(instructions),
            corrections=list(analysis.suggested_corrections),
        )

    def decide(self, analysis: QualityAnalysis) -> GateDecision:
        """Accept at or above the threshold, otherwise attach a correction."""
        if self.passes(analysis):
            return GateDecision(analysis=analysis, accepted=True)
        return GateDecision(analysis=analysis, accepted=False, correction=self.build_correction(analysis))
