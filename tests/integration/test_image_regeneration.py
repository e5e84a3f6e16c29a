"""
Integration tests for the image regeneration loop: generation, storage,
vision scoring and version bookkeeping against a real SQLite store.
"""
import pytest

from adlingo.config import EngineConfig
from adlingo.core.exceptions import GenerationError, LLMRequestError
from adlingo.core.quality_gate import QualityGate
from adlingo.models import QualityAnalysis, TaskKind, TaskStatus
from adlingo.pipeline import Engine, ImageTaskProcessor, create_image_job
from adlingo.services.image_generator import GenerationResult
from adlingo.services.storage import LocalStorage
from tests.fakes import FakeProvider, score_reply


class FakeGenerator:
    """Generation service stand-in; ``failures`` maps attempt number -> error."""

    def __init__(self, failures=None):
        self.failures = failures or {}
        self.prompts = []
        self.closed = False

    async def generate(self, prompt, reference_image, aspect_ratio):
        self.prompts.append(prompt)
        attempt = len(self.prompts)
        if attempt in self.failures:
            raise self.failures[attempt]
        return GenerationResult(task_id=f"kie-{attempt}", urls=[f"https://kie.test/out{attempt}.png"])

    async def download(self, url):
        return b"PNG:" + url.encode()

    async def close(self):
        self.closed = True


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(root=str(tmp_path / "artifacts"), public_url="https://files.test")


@pytest.fixture
def image_task(store):
    job = create_image_job(store, "ads", ["https://cdn/pillow.png"], ["sv"], ["4:5"])
    task = store.list_tasks(job.id)[0]
    store.claim_task(task.id)
    return task


def make_processor(store, storage, retry_manager, scores, generator=None, **kwargs):
    provider = FakeProvider(scores)
    gate = QualityGate(provider, retry_manager, threshold=80)
    processor = ImageTaskProcessor(store, gate, generator or FakeGenerator(), storage, **kwargs)
    return processor, provider


class TestRegenerationLoop:

    @pytest.mark.asyncio
    async def test_second_attempt_passes(self, store, storage, retry_manager, image_task):
        processor, provider = make_processor(store, storage, retry_manager, [
            score_reply(60, spelling_errors=["Sömm"], extracted_text="Sov bättre med Sömm"),
            score_reply(85),
        ])

        outcome = await processor.run(image_task)

        assert outcome.status == TaskStatus.COMPLETED
        assert outcome.accepted
        assert outcome.attempts == 2
        assert outcome.quality_score == 85

        versions = store.list_versions(image_task.id)
        assert [v.version_number for v in versions] == [1, 2]
        assert [v.is_active for v in versions] == [False, True]
        assert [v.quality_score for v in versions] == [60, 85]
        assert versions[1].correction_input is not None
        assert "Sömm" in versions[1].correction_input.corrected_text

        task = store.get_task(image_task.id)
        assert task.status == TaskStatus.COMPLETED
        assert task.result == versions[1].artifact
        assert task.result.startswith("https://files.test/image-jobs/")

        second_prompt = processor.generator.prompts[1]
        assert "Use these exact corrected translations" in second_prompt
        assert "Fix spelling errors: Sömm" in second_prompt
        assert provider.calls[0]['images'] == ["https://cdn/pillow.png", versions[0].artifact]

    @pytest.mark.asyncio
    async def test_first_pass_accepted_immediately(self, store, storage, retry_manager, image_task):
        processor, _ = make_processor(store, storage, retry_manager, [score_reply(92)])

        outcome = await processor.run(image_task)

        assert outcome.accepted and outcome.attempts == 1
        assert store.count_versions(image_task.id) == 1
        assert "Swedish" in processor.generator.prompts[0]

    @pytest.mark.asyncio
    async def test_ceiling_keeps_best_version(self, store, storage, retry_manager, image_task):
        processor, _ = make_processor(store, storage, retry_manager,
                                      [score_reply(s) for s in (50, 70, 65, 70, 40)], max_versions=5)

        outcome = await processor.run(image_task)

        versions = store.list_versions(image_task.id)
        assert len(versions) == 5
        assert outcome.status == TaskStatus.COMPLETED
        assert not outcome.accepted
        # Tie between v2 and v4 goes to the newest
        active = store.get_active_version(image_task.id)
        assert active.version_number == 4
        assert [v.is_active for v in versions].count(True) == 1
        task = store.get_task(image_task.id)
        assert task.result == active.artifact
        assert task.quality_score == 70

    @pytest.mark.asyncio
    async def test_generation_error_without_versions_fails(self, store, storage, retry_manager, image_task):
        generator = FakeGenerator({1: GenerationError("Kie task failed: content policy")})
        processor, provider = make_processor(store, storage, retry_manager, [], generator=generator)

        outcome = await processor.run(image_task)

        assert outcome.status == TaskStatus.FAILED
        assert "content policy" in outcome.error
        task = store.get_task(image_task.id)
        assert task.status == TaskStatus.FAILED
        assert "content policy" in task.error_message

        versions = store.list_versions(image_task.id)
        assert len(versions) == 1
        assert versions[0].artifact is None
        assert not versions[0].is_active
        assert "content policy" in versions[0].error_message
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_generation_error_after_scored_version(self, store, storage, retry_manager, image_task):
        generator = FakeGenerator({2: GenerationError("Kie task failed: timeout upstream")})
        processor, _ = make_processor(store, storage, retry_manager, [score_reply(55)], generator=generator)

        outcome = await processor.run(image_task)

        assert outcome.status == TaskStatus.COMPLETED
        assert not outcome.accepted
        assert "timeout upstream" in outcome.error
        versions = store.list_versions(image_task.id)
        assert [v.is_active for v in versions] == [True, False]
        assert store.get_task(image_task.id).quality_score == 55

    @pytest.mark.asyncio
    async def test_scoring_failure_keeps_unscored_version(self, store, storage, retry_manager, image_task):
        processor, _ = make_processor(store, storage, retry_manager,
                                      [LLMRequestError("rejected", status_code=400)])

        outcome = await processor.run(image_task)

        assert outcome.status == TaskStatus.COMPLETED
        assert not outcome.accepted
        versions = store.list_versions(image_task.id)
        assert len(versions) == 1
        assert versions[0].is_active
        assert versions[0].quality_score is None

    @pytest.mark.asyncio
    async def test_quality_check_disabled(self, store, storage, retry_manager, image_task):
        processor, provider = make_processor(store, storage, retry_manager, [], quality_check_enabled=False)

        outcome = await processor.run(image_task)

        assert outcome.accepted
        assert store.count_versions(image_task.id) == 1
        assert provider.calls == []


class TestResume:

    @pytest.mark.asyncio
    async def test_resume_uses_active_version_correction(self, store, storage, retry_manager, image_task):
        previous = store.create_version(image_task.id, "https://files.test/old.png")
        store.record_version_analysis(previous.id, QualityAnalysis(score=62, grammar_issues=["Wrong tense"]))
        processor, _ = make_processor(store, storage, retry_manager, [score_reply(90)])

        outcome = await processor.run(image_task)

        assert outcome.accepted
        assert "Fix grammar: Wrong tense" in processor.generator.prompts[0]
        assert [v.version_number for v in store.list_versions(image_task.id)] == [1, 2]

    @pytest.mark.asyncio
    async def test_exhausted_budget_settles_on_best(self, store, storage, retry_manager, image_task):
        for score in (40, 75, 60):
            version = store.create_version(image_task.id, f"https://files.test/v{score}.png")
            store.record_version_analysis(version.id, QualityAnalysis(score=score))
        processor, provider = make_processor(store, storage, retry_manager, [], max_versions=3)

        outcome = await processor.run(image_task)

        assert outcome.status == TaskStatus.COMPLETED
        assert outcome.attempts == 0
        assert store.get_active_version(image_task.id).quality_score == 75
        assert processor.generator.prompts == []
        assert provider.calls == []


class TestEngineBatch:

    @pytest.mark.asyncio
    async def test_image_job_end_to_end(self, store, storage):
        job = create_image_job(store, "ads", ["https://cdn/a.png"], ["sv", "da"], ["1:1", "9:16"])
        generator = FakeGenerator()
        config = EngineConfig(concurrency=2, quality_threshold=80)
        engine = Engine(config, store=store, provider=FakeProvider(default=score_reply(91)),
                        generator=generator, storage=storage, notifiers=[])

        result = await engine.run_job(job.id)
        await engine.close()

        assert result.status == TaskStatus.COMPLETED
        assert result.completed == 4
        tasks = store.list_tasks(job.id)
        assert {(t.language, t.aspect_ratio) for t in tasks} == {
            ("sv", "1:1"), ("sv", "9:16"), ("da", "1:1"), ("da", "9:16"),
        }
        assert all(t.quality_score == 91 for t in tasks)
        assert len(generator.prompts) == 4
        assert generator.closed
        assert store.get_job(job.id).status == TaskStatus.COMPLETED
        assert all(t.kind == TaskKind.IMAGE for t in tasks)
