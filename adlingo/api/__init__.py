"""
HTTP API: Flask blueprints and background job execution.
"""

from .handlers import start_job
from .routes import configure_routes, create_job_blueprint, create_task_blueprint

__all__ = ['configure_routes', 'create_job_blueprint', 'create_task_blueprint', 'start_job']
