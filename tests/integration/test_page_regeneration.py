"""
Integration tests for page translation: extract -> dispatch -> reinsert, the
page regeneration loop (patch first, re-translate otherwise) and applying
stored review corrections.
"""
import json
import time

import pytest

from adlingo.core.batch_dispatcher import BatchDispatcher
from adlingo.core.exceptions import TaskClaimError, TaskNotFoundError, ValidationError
from adlingo.core.html.xml_helpers import extract_tag_sequence
from adlingo.core.quality_gate import QualityGate
from adlingo.models import CorrectionItem, QualityAnalysis, TaskKind, TaskStatus
from adlingo.pipeline import (
    PageTaskProcessor,
    PageTranslator,
    apply_corrections,
    create_page_job,
    review_corrected,
)
from tests.fakes import FakeProvider, score_reply

PHRASES = [
    ("The pillow that changes everything", "Kudden som ändrar allt"),
    ("Anna Svensson tried it for", "Anna Svensson testade den i"),
    ("Welcome back", "Välkommen tillbaka"),
    ("30 nights", "30 nätter"),
    ("A soft pillow", "En mjuk kudde"),
    ("tonight", "i natt"),
    ("better", "bättre"),
    ("Sleep", "Sov"),
]


def fake_swedish(call):
    """Scripted dispatch reply translating known phrases, markup untouched."""
    translated = {}
    for key, value in json.loads(call['prompt']).items():
        for source, target in PHRASES:
            value = value.replace(source, target)
        translated[key] = value
    return translated


def make_translator(retry_manager, token_counter, provider=None):
    provider = provider or FakeProvider(default=fake_swedish)
    dispatcher = BatchDispatcher(provider, retry_manager=retry_manager, token_counter=token_counter)
    return PageTranslator(dispatcher), provider


@pytest.fixture
def page_task(store, sample_html):
    job = create_page_job(store, "landing", sample_html, ["sv"])
    task = store.list_tasks(job.id)[0]
    store.claim_task(task.id)
    return task


class TestPageTranslator:

    @pytest.mark.asyncio
    async def test_translated_page_keeps_structure(self, retry_manager, token_counter, sample_html):
        translator, provider = make_translator(retry_manager, token_counter)

        translation = await translator.translate(sample_html, "sv")

        html = translation.html
        assert "Välkommen tillbaka" in html
        assert "Sov <strong>bättre</strong> i natt" in html
        assert "Anna Svensson testade den i <em>30 nätter</em>." in html
        assert 'alt="En mjuk kudde"' in html
        assert "<title>Sov bättre i natt</title>" in html
        assert 'window.track = function() { return "<p>not text</p>"; };' in html
        assert extract_tag_sequence(html) == extract_tag_sequence(sample_html)
        assert translation.metadata == {
            'title': 'Sov bättre i natt',
            'description': 'Kudden som ändrar allt',
        }
        # one unit chunk plus the metadata request
        assert len(provider.calls) == 2
        assert "Welcome back" in provider.calls[0]['system_prompt']

    @pytest.mark.asyncio
    async def test_partial_dispatch_keeps_source_text(self, retry_manager, token_counter, sample_html):
        def drop_heading(call):
            translated = fake_swedish(call)
            translated.pop('b1', None)
            return translated

        translator, _ = make_translator(retry_manager, token_counter, FakeProvider(default=drop_heading))

        translation = await translator.translate(sample_html, "sv")

        assert translation.dispatch.failed_units == {'b1': 'missing from model response'}
        assert "Sleep <strong>better</strong> tonight</h1>" in translation.html
        assert "Välkommen tillbaka" in translation.html


class TestPageRegeneration:

    def make_processor(self, store, retry_manager, token_counter, reviews, **kwargs):
        translator, dispatch_provider = make_translator(retry_manager, token_counter)
        review_provider = FakeProvider(reviews)
        gate = QualityGate(review_provider, retry_manager, threshold=85)
        processor = PageTaskProcessor(store, gate, translator, **kwargs)
        return processor, dispatch_provider, review_provider

    @pytest.mark.asyncio
    async def test_suggested_corrections_patched_before_retranslating(
            self, store, retry_manager, token_counter, page_task):
        processor, dispatch_provider, review_provider = self.make_processor(
            store, retry_manager, token_counter,
            [
                score_reply(72, fluency_issues=["Stiff verb"], suggested_corrections=[
                    {"find": "Svensson testade", "replace": "Svensson provade"},
                ]),
                score_reply(90),
            ],
        )

        outcome = await processor.run(page_task)

        assert outcome.accepted
        assert outcome.attempts == 2
        versions = store.list_versions(page_task.id)
        assert len(versions) == 2
        assert "Anna Svensson provade den i <em>30 nätter</em>." in versions[1].artifact
        assert versions[1].correction_input.corrections == [
            CorrectionItem("Svensson testade", "Svensson provade")
        ]
        assert extract_tag_sequence(versions[1].artifact) == extract_tag_sequence(versions[0].artifact)
        # only the first attempt went through the dispatcher
        assert len(dispatch_provider.calls) == 2
        second_review = review_provider.calls[1]['system_prompt']
        assert "CORRECTIONS ALREADY APPLIED" in second_review
        assert "The previous score was 72" in second_review

    @pytest.mark.asyncio
    async def test_score_floor_then_retranslation_with_feedback(
            self, store, retry_manager, token_counter, page_task):
        processor, dispatch_provider, _ = self.make_processor(
            store, retry_manager, token_counter,
            [
                score_reply(72, suggested_corrections=[{"find": "testade", "replace": "provade"}]),
                score_reply(60, fluency_issues=["Heading still reads stiff"]),
                score_reply(88),
            ],
        )

        outcome = await processor.run(page_task)

        versions = store.list_versions(page_task.id)
        assert [v.quality_score for v in versions] == [72, 72, 88]
        assert outcome.accepted
        assert store.get_active_version(page_task.id).version_number == 3
        # the third attempt re-translated with the second review's issues as feedback
        assert len(dispatch_provider.calls) == 4
        assert "Heading still reads stiff" in dispatch_provider.calls[2]['system_prompt']

    @pytest.mark.asyncio
    async def test_unlocatable_corrections_fall_back_to_retranslation(
            self, store, retry_manager, token_counter, page_task):
        processor, dispatch_provider, review_provider = self.make_processor(
            store, retry_manager, token_counter,
            [
                score_reply(70, grammar_issues=["Odd word"], suggested_corrections=[
                    {"find": "text that is not on the page", "replace": "x"},
                ]),
                score_reply(86),
            ],
        )

        outcome = await processor.run(page_task)

        assert outcome.accepted
        assert len(dispatch_provider.calls) == 4
        assert "Odd word" in dispatch_provider.calls[2]['system_prompt']
        assert "CORRECTIONS ALREADY APPLIED" not in review_provider.calls[1]['system_prompt']


def stored_page(store, sample_html, score=80, corrections=None, status=TaskStatus.COMPLETED):
    """A page task with one scored version carrying suggested corrections."""
    job = create_page_job(store, "landing", sample_html, ["sv"])
    task = store.list_tasks(job.id)[0]
    store.claim_task(task.id)
    version = store.create_version(task.id, sample_html.replace("tried it for", "testade den i"))
    store.record_version_analysis(version.id, QualityAnalysis(
        score=score,
        fluency_issues=["Literal verb"],
        suggested_corrections=corrections if corrections is not None
        else [CorrectionItem("testade den i", "provade den i")],
    ))
    if status == TaskStatus.COMPLETED:
        store.complete_task(task.id)
    elif status == TaskStatus.FAILED:
        store.fail_task(task.id, "boom")
    return task


class TestApplyCorrections:

    def test_creates_patched_active_version(self, store, sample_html):
        task = stored_page(store, sample_html)

        run = apply_corrections(store, task.id)

        assert run.applied == 1
        assert run.failed == []
        assert run.version.version_number == 2
        refreshed = store.get_task(task.id)
        assert refreshed.status == TaskStatus.COMPLETED
        assert refreshed.active_version_id == run.version.id
        assert "provade den i" in refreshed.result
        assert run.previous_review.previous_score == 80
        assert run.previous_review.previous_issues == ["Literal verb"]

    def test_failed_task_can_be_fixed(self, store, sample_html):
        task = stored_page(store, sample_html, status=TaskStatus.FAILED)

        assert apply_corrections(store, task.id).applied == 1

    def test_processing_task_rejected(self, store, sample_html):
        task = stored_page(store, sample_html, status=TaskStatus.PROCESSING)

        with pytest.raises(TaskClaimError):
            apply_corrections(store, task.id)

    def test_stale_processing_task_recovered(self, store, sample_html):
        task = stored_page(store, sample_html, status=TaskStatus.PROCESSING)
        store._write(lambda cursor: cursor.execute(
            "UPDATE tasks SET updated_at = ? WHERE id = ?", (time.time() - 3600, task.id)
        ))

        run = apply_corrections(store, task.id, stale_seconds=600)

        assert run.applied == 1
        assert store.get_task(task.id).status == TaskStatus.COMPLETED

    def test_nothing_to_apply(self, store, sample_html):
        task = stored_page(store, sample_html, corrections=[])

        with pytest.raises(ValidationError):
            apply_corrections(store, task.id)
        assert store.get_task(task.id).status == TaskStatus.COMPLETED

    def test_version_ceiling(self, store, sample_html):
        task = stored_page(store, sample_html)

        with pytest.raises(ValidationError):
            apply_corrections(store, task.id, max_versions=1)
        assert store.get_task(task.id).status == TaskStatus.COMPLETED
        assert store.count_versions(task.id) == 1

    def test_refused_fix_keeps_failure_message(self, store, sample_html):
        task = stored_page(store, sample_html, status=TaskStatus.FAILED)

        with pytest.raises(ValidationError):
            apply_corrections(store, task.id, max_versions=1)

        refreshed = store.get_task(task.id)
        assert (refreshed.status, refreshed.error_message) == (TaskStatus.FAILED, "boom")

    def test_pending_task_has_nothing_to_fix(self, store, sample_html):
        job = create_page_job(store, "landing", sample_html, ["sv"])
        task = store.list_tasks(job.id)[0]

        with pytest.raises(ValidationError):
            apply_corrections(store, task.id)
        assert store.get_task(task.id).status == TaskStatus.PENDING

    def test_concurrent_fix_cannot_exceed_version_ceiling(self, store, sample_html, monkeypatch):
        task = stored_page(store, sample_html)
        store.create_version(task.id, sample_html)
        store.create_version(task.id, sample_html)
        fourth = store.create_version(task.id, sample_html.replace("tried it for", "testade den i"))
        store.record_version_analysis(fourth.id, QualityAnalysis(
            score=80, suggested_corrections=[CorrectionItem("testade den i", "provade den i")],
        ))
        claim_task = store.claim_task
        competing = []

        def claim_after_competing_fix(task_id, **kwargs):
            # Another request completes its fix between our checks and our claim
            if not competing:
                competing.append(None)
                competing[0] = apply_corrections(store, task_id, max_versions=5)
            return claim_task(task_id, **kwargs)

        monkeypatch.setattr(store, "claim_task", claim_after_competing_fix)

        with pytest.raises(ValidationError):
            apply_corrections(store, task.id, max_versions=5)

        assert store.count_versions(task.id) == 5
        assert competing[0].version.version_number == 5
        assert store.get_active_version(task.id).id == competing[0].version.id
        assert store.get_task(task.id).status == TaskStatus.COMPLETED

    def test_image_task_rejected(self, store):
        job = store.create_job("ads", TaskKind.IMAGE)
        task = store.create_task(job.id, TaskKind.IMAGE, "sv", "https://cdn/a.png", "1:1")

        with pytest.raises(ValidationError):
            apply_corrections(store, task.id)

    def test_unknown_task(self, store):
        with pytest.raises(TaskNotFoundError):
            apply_corrections(store, "missing")

    def test_unmatched_corrections_reported(self, store, sample_html):
        task = stored_page(store, sample_html, corrections=[
            CorrectionItem("testade den i", "provade den i"),
            CorrectionItem("not on the page", "x"),
        ])

        run = apply_corrections(store, task.id)

        assert run.applied == 1
        assert run.failed == ["not on the page"]

    @pytest.mark.asyncio
    async def test_review_after_fix_uses_score_floor(self, store, retry_manager, sample_html):
        task = stored_page(store, sample_html, score=80)
        run = apply_corrections(store, task.id)
        provider = FakeProvider([score_reply(71)])

        analysis = await review_corrected(store, QualityGate(provider, retry_manager), run)

        assert analysis.score == 80
        assert store.get_version(run.version.id).quality_score == 80
        assert store.get_task(task.id).quality_score == 80
        assert '"testade den i" -> "provade den i"' in provider.calls[0]['system_prompt']
