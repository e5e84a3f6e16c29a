"""
Flask routes for the translation API.

- job routes: create page/image jobs, job status, manual retry
- task routes: task status with active version score, versions, version
  activation, applying review corrections
- /api/patch: stateless safe patching of a document
"""
import logging
import time

from flask import Blueprint, jsonify, request

from adlingo import __version__
from adlingo.config import ASPECT_RATIOS, STALL_WINDOW_SECONDS, EngineConfig, parse_bool
from adlingo.core.exceptions import TaskClaimError, TaskNotFoundError, ValidationError
from adlingo.core.html.patcher import SafePatcher
from adlingo.models import CorrectionItem
from adlingo.pipeline.jobs import activate_task_version, create_image_job, create_page_job, requeue_job
from adlingo.pipeline.page_translator import apply_corrections

logger = logging.getLogger(__name__)


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _job_payload(store, job):
    tasks = store.list_tasks(job.id)
    return {
        **job.to_dict(),
        'counts': store.job_status_counts(job.id),
        'tasks': [task.to_dict() for task in tasks],
    }


def create_job_blueprint(store, start_job):
    """
    Create and configure the job blueprint

    Args:
        store: Database instance
        start_job: Function (job_id, EngineConfig) starting a job in the background
    """
    bp = Blueprint('jobs', __name__)

    @bp.route('/api/health', methods=['GET'])
    def health_check():
        return jsonify({"status": "ok", "version": __version__, "timestamp": time.time()})

    @bp.route('/api/jobs/page', methods=['POST'])
    def create_page_job_request():
        """Create a page job (one task per language) and start it"""
        data = _json_body()
        job = create_page_job(
            store,
            data.get('name') or 'page',
            data.get('html', ''),
            data.get('languages') or [],
        )
        start_job(job.id, EngineConfig.from_web_request(data))
        return jsonify({"job_id": job.id, "message": "Page job queued."}), 202

    @bp.route('/api/jobs/images', methods=['POST'])
    def create_image_job_request():
        """Create an image job (image x language x ratio) and start it"""
        data = _json_body()
        job = create_image_job(
            store,
            data.get('name') or 'images',
            data.get('images') or [],
            data.get('languages') or [],
            data.get('aspect_ratios') or [ASPECT_RATIOS[0]],
        )
        start_job(job.id, EngineConfig.from_web_request(data))
        return jsonify({"job_id": job.id, "message": "Image job queued."}), 202

    @bp.route('/api/jobs', methods=['GET'])
    def list_jobs():
        return jsonify({"jobs": [job.to_dict() for job in store.list_jobs()]})

    @bp.route('/api/jobs/<job_id>', methods=['GET'])
    def get_job_status(job_id):
        job = store.get_job(job_id)
        if job is None:
            raise TaskNotFoundError(f"Job not found: {job_id}", task_id=job_id)
        return jsonify(_job_payload(store, job))

    @bp.route('/api/jobs/<job_id>/retry', methods=['POST'])
    def retry_job(job_id):
        """Requeue failed (and optionally stalled) tasks, then run the job again"""
        data = request.get_json(silent=True) or {}
        requeued = requeue_job(
            store, job_id,
            include_stalled=parse_bool(data.get('include_stalled')),
            stall_window=STALL_WINDOW_SECONDS,
        )
        if requeued:
            start_job(job_id, EngineConfig.from_web_request(data))
        return jsonify({"job_id": job_id, "requeued": requeued})

    return bp


def create_task_blueprint(store):
    """
    Create and configure the task blueprint

    Args:
        store: Database instance
    """
    bp = Blueprint('tasks', __name__)
    patcher = SafePatcher()

    @bp.route('/api/tasks/<task_id>', methods=['GET'])
    def get_task_status(task_id):
        """Task status plus the active version's score, queryable mid-flight"""
        task = store.require_task(task_id)
        active = store.get_active_version(task_id)
        payload = task.to_dict()
        payload['active_version'] = {
            'id': active.id,
            'version_number': active.version_number,
            'quality_score': active.quality_score,
        } if active else None
        payload['version_count'] = store.count_versions(task_id)
        return jsonify(payload)

    @bp.route('/api/tasks/<task_id>/result', methods=['GET'])
    def get_task_result(task_id):
        task = store.require_task(task_id)
        return jsonify({'id': task.id, 'status': task.status.value, 'result': task.result})

    @bp.route('/api/tasks/<task_id>/versions', methods=['GET'])
    def list_task_versions(task_id):
        store.require_task(task_id)
        versions = store.list_versions(task_id)
        include_artifact = request.args.get('artifacts') == '1'
        items = []
        for version in versions:
            item = version.to_dict()
            if not include_artifact:
                item.pop('artifact')
            items.append(item)
        return jsonify({"task_id": task_id, "versions": items})

    @bp.route('/api/tasks/<task_id>/versions/<version_id>/activate', methods=['POST'])
    def activate_version_request(task_id, version_id):
        version = activate_task_version(store, task_id, version_id)
        return jsonify(version.to_dict())

    @bp.route('/api/tasks/<task_id>/fix', methods=['POST'])
    def apply_task_corrections(task_id):
        """Apply the active version's suggested corrections as a new version"""
        run = apply_corrections(store, task_id, patcher=patcher)
        return jsonify(run.to_dict())

    @bp.route('/api/patch', methods=['POST'])
    def patch_document():
        """Apply find/replace corrections to visible text of a document"""
        data = _json_body()
        document = data.get('html')
        if not isinstance(document, str) or not document:
            raise ValidationError("Missing or empty field: html")
        corrections = CorrectionItem.parse_list(data.get('corrections'))
        result = patcher.apply(document, corrections)
        return jsonify({
            'html': result.html,
            'applied': result.applied,
            'failed': result.failed,
            'replacements': result.replacements,
        })

    return bp


def configure_routes(app, store, start_job):
    """
    Register all blueprints and error handlers

    Args:
        app: Flask application instance
        store: Database instance
        start_job: Function (job_id, EngineConfig) starting a job in the background
    """
    app.register_blueprint(create_job_blueprint(store, start_job))
    app.register_blueprint(create_task_blueprint(store))
    _register_error_handlers(app)


def _register_error_handlers(app):
    """Register global error handlers"""

    @app.errorhandler(TaskNotFoundError)
    def not_found(error):
        return jsonify({"error": error.message}), 404

    @app.errorhandler(ValidationError)
    def bad_request(error):
        return jsonify({"error": error.message}), 400

    @app.errorhandler(TaskClaimError)
    def conflict(error):
        return jsonify({"error": error.message}), 409

    @app.errorhandler(404)
    def route_not_found(error):
        return jsonify({"error": "API Endpoint not found"}), 404

    @app.errorhandler(500)
    def internal_server_error(error):
        logger.error(f"Internal server error: {error}")
        return jsonify({"error": "Internal server error", "details": str(error)}), 500
