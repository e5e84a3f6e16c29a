"""
Unit tests for the command-line interface.
"""
import json

import pytest

import translate
from adlingo.core.exceptions import TaskClaimError
from adlingo.models import CorrectionItem, QualityAnalysis, TaskKind, TaskStatus
from adlingo.persistence.database import Database


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "cli.db")


def run_cli(argv):
    return translate.build_parser().parse_args(argv)


class TestParser:

    def test_page_command(self):
        args = run_cli(["page", "-i", "landing.html", "-l", "sv", "da", "--threshold", "90"])

        assert args.command == "page"
        assert args.languages == ["sv", "da"]
        assert args.threshold == 90

    def test_image_ratios_restricted(self):
        with pytest.raises(SystemExit):
            run_cli(["images", "--image", "https://cdn/a.png", "-l", "sv", "-r", "16:9"])

    def test_repeatable_images(self):
        args = run_cli(["images", "--image", "https://cdn/a.png", "--image", "https://cdn/b.png",
                        "-l", "sv", "-r", "1:1", "4:5"])

        assert args.images == ["https://cdn/a.png", "https://cdn/b.png"]
        assert args.ratios == ["1:1", "4:5"]


class TestCommands:

    @pytest.mark.asyncio
    async def test_status_json(self, db_path, capsys):
        store = Database(db_path)
        job = store.create_job("ads", TaskKind.IMAGE)
        store.create_task(job.id, TaskKind.IMAGE, "sv", "https://cdn/a.png", "1:1")
        store.close()

        code = await translate.main(run_cli(["status", job.id, "--json", "--db", db_path]))

        payload = json.loads(capsys.readouterr().out)
        assert code == 0
        assert payload['counts']['pending'] == 1
        assert payload['tasks'][0]['aspect_ratio'] == "1:1"

    @pytest.mark.asyncio
    async def test_retry_with_nothing_failed(self, db_path, capsys):
        store = Database(db_path)
        job = store.create_job("ads", TaskKind.IMAGE)
        store.close()

        code = await translate.main(run_cli(["retry", job.id, "--db", db_path]))

        assert code == 0
        assert "Nothing to retry." in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_retry_refused_while_job_running(self, db_path):
        store = Database(db_path)
        job = store.create_job("ads", TaskKind.IMAGE)
        task = store.create_task(job.id, TaskKind.IMAGE, "sv", "https://cdn/a.png", "1:1")
        store.update_job_status(job.id, TaskStatus.PROCESSING)
        store.claim_task(task.id)
        store.close()

        with pytest.raises(TaskClaimError):
            await translate.main(run_cli(["retry", job.id, "--include-stalled", "--db", db_path]))

    @pytest.mark.asyncio
    async def test_fix_applies_stored_corrections(self, db_path, capsys):
        store = Database(db_path)
        job = store.create_job("landing", TaskKind.PAGE)
        task = store.create_task(job.id, TaskKind.PAGE, "sv", "<p>Hi there</p>")
        store.claim_task(task.id)
        version = store.create_version(task.id, "<p>Hej hopp</p>")
        store.record_version_analysis(version.id, QualityAnalysis(
            score=70, suggested_corrections=[CorrectionItem("Hej hopp", "Hej där")],
        ))
        store.complete_task(task.id)
        store.close()

        code = await translate.main(run_cli(["fix", task.id, "--db", db_path]))

        assert code == 0
        assert "Applied 1 correction(s), 0 not found" in capsys.readouterr().out
        check = Database(db_path)
        try:
            refreshed = check.get_task(task.id)
            assert refreshed.result == "<p>Hej där</p>"
            assert refreshed.status == TaskStatus.COMPLETED
        finally:
            check.close()
