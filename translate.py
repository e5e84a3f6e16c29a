"""
Command-line interface for page and image ad translation
"""
import argparse
import asyncio
import json
import os
import sys

from tqdm.auto import tqdm

from adlingo.config import ASPECT_RATIOS, OUTPUT_DIR, EngineConfig
from adlingo.core.exceptions import TranslationError
from adlingo.models import TaskKind, TaskStatus
from adlingo.pipeline.image_translator import image_task_label
from adlingo.pipeline.jobs import Engine, create_image_job, create_page_job, requeue_job
from adlingo.pipeline.page_translator import apply_corrections, review_corrected
from adlingo.utils.unified_logger import setup_cli_logger


def _add_engine_arguments(parser):
    parser.add_argument("-m", "--model", default=None, help="Text/vision model (default from OPENAI_MODEL).")
    parser.add_argument("--db", dest="database_path", default=None, help="SQLite database path.")
    parser.add_argument("--concurrency", type=int, default=None, help="Worker count.")
    parser.add_argument("--max-versions", dest="max_versions", type=int, default=None,
                        help="Attempt ceiling per task.")
    parser.add_argument("--threshold", type=int, default=None, help="Quality threshold (0-100).")
    parser.add_argument("--no-quality-check", action="store_true", help="Accept the first version without scoring.")
    parser.add_argument("--no-color", action="store_true", help="Disable colored output.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Translate marketing pages and image ads with quality-gated regeneration.")
    sub = parser.add_subparsers(dest="command", required=True)

    page = sub.add_parser("page", help="Translate an HTML page into one or more languages.")
    page.add_argument("-i", "--input", required=True, help="Path to the HTML file.")
    page.add_argument("-l", "--languages", nargs="+", required=True, help="Target language codes (sv da no de).")
    page.add_argument("-o", "--output-dir", default=OUTPUT_DIR, help=f"Output folder (default: {OUTPUT_DIR}).")
    page.add_argument("--name", default=None, help="Job name (default: input filename).")
    _add_engine_arguments(page)

    images = sub.add_parser("images", help="Translate image ads.")
    images.add_argument("--image", dest="images", action="append", required=True,
                        help="Public URL of a source image (repeatable).")
    images.add_argument("-l", "--languages", nargs="+", required=True, help="Target language codes.")
    images.add_argument("-r", "--ratios", nargs="+", default=[ASPECT_RATIOS[0]], choices=ASPECT_RATIOS,
                        help="Aspect ratios to generate.")
    images.add_argument("--name", default="images", help="Job name.")
    _add_engine_arguments(images)

    fix = sub.add_parser("fix", help="Apply the stored review corrections of a page task.")
    fix.add_argument("task_id")
    fix.add_argument("--review", action="store_true", help="Re-score the corrected page.")
    _add_engine_arguments(fix)

    retry = sub.add_parser("retry", help="Requeue failed tasks of a job and run it again.")
    retry.add_argument("job_id")
    retry.add_argument("--include-stalled", action="store_true", help="Also requeue stalled processing tasks.")
    _add_engine_arguments(retry)

    status = sub.add_parser("status", help="Show job and task status.")
    status.add_argument("job_id")
    status.add_argument("--json", action="store_true", help="Print JSON.")
    _add_engine_arguments(status)

    return parser


async def _run_with_progress(engine: Engine, job_id: str, total: int):
    with tqdm(total=total, desc="Tasks", unit="task") as bar:
        def on_task_done(outcome):
            bar.update(1)
            if outcome.status == TaskStatus.FAILED:
                tqdm.write(f"Task {outcome.task_id} failed: {outcome.error}")

        return await engine.run_job(job_id, on_task_done=on_task_done)


def _write_pages(engine: Engine, job_id: str, input_path: str, output_dir: str):
    os.makedirs(output_dir, exist_ok=True)
    stem = os.path.splitext(os.path.basename(input_path))[0]
    for task in engine.store.list_tasks(job_id):
        if not task.result:
            continue
        path = os.path.join(output_dir, f"{stem}_{task.language}.html")
        with open(path, 'w', encoding='utf-8') as f:
            f.write(task.result)
        print(f"  {task.language}: {path} (score {task.quality_score})")


def _print_status(engine: Engine, job_id: str, as_json: bool):
    job = engine.store.get_job(job_id)
    if job is None:
        raise TranslationError(f"Job not found: {job_id}")
    tasks = engine.store.list_tasks(job_id)
    if as_json:
        print(json.dumps({
            **job.to_dict(),
            'counts': engine.store.job_status_counts(job_id),
            'tasks': [t.to_dict() for t in tasks],
        }, indent=2))
        return

    print(f"Job {job.id} ({job.name}, {job.kind.value}): {job.status.value}")
    for task in tasks:
        label = image_task_label(task) if task.kind == TaskKind.IMAGE else task.language
        versions = engine.store.count_versions(task.id)
        line = f"  {task.id}  {label:<32} {task.status.value:<10} score={task.quality_score} versions={versions}"
        if task.error_message:
            line += f"  error: {task.error_message}"
        print(line)


async def main(args) -> int:
    config = EngineConfig.from_cli_args(args)
    engine = Engine(config)

    try:
        if args.command == "page":
            with open(args.input, 'r', encoding='utf-8') as f:
                html = f.read()
            job = create_page_job(engine.store, args.name or os.path.basename(args.input), html, args.languages)
            result = await _run_with_progress(engine, job.id, len(args.languages))
            _write_pages(engine, job.id, args.input, args.output_dir)

        elif args.command == "images":
            job = create_image_job(engine.store, args.name, args.images, args.languages, args.ratios)
            total = len(args.images) * len(args.languages) * len(args.ratios)
            result = await _run_with_progress(engine, job.id, total)
            for task in engine.store.list_tasks(job.id):
                print(f"  {image_task_label(task)}: {task.result} (score {task.quality_score})")

        elif args.command == "fix":
            run = apply_corrections(engine.store, args.task_id, max_versions=config.max_versions)
            print(f"Applied {run.applied} correction(s), {len(run.failed)} not found")
            for preview in run.failed:
                print(f"  not found: {preview}")
            if args.review and config.quality_check_enabled:
                analysis = await review_corrected(engine.store, engine.page_gate(), run)
                print(f"New score: {analysis.score}")
            return 0

        elif args.command == "retry":
            requeued = requeue_job(
                engine.store, args.job_id, include_stalled=args.include_stalled, stall_window=config.stall_window
            )
            if not requeued:
                print("Nothing to retry.")
                return 0
            result = await _run_with_progress(engine, args.job_id, len(requeued))

        else:
            _print_status(engine, args.job_id, args.json)
            return 0

        print(f"Job {result.job_id}: {result.status.value} "
              f"({result.completed} completed, {result.failed} failed, {result.duration_seconds:.1f}s)")
        for name, error in result.notification_errors.items():
            print(f"  notification '{name}' failed: {error}")
        return 0 if result.status == TaskStatus.COMPLETED else 1
    finally:
        await engine.close()


if __name__ == "__main__":
    args = build_parser().parse_args()
    logger = setup_cli_logger(enable_colors=not args.no_color, verbose=args.verbose or None)

    try:
        sys.exit(asyncio.run(main(args)))
    except TranslationError as e:
        logger.error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        sys.exit(130)
