"""
Flask server for the translation API
"""
import logging
import os
import sys
from datetime import datetime

from flask import Flask
from flask_cors import CORS

from adlingo.api.handlers import start_job
from adlingo.api.routes import configure_routes
from adlingo.config import DATABASE_PATH, HOST, OPENAI_API_KEY, OPENAI_MODEL, PORT, EngineConfig
from adlingo.persistence.database import Database
from adlingo.utils.unified_logger import setup_api_logger

logger = logging.getLogger("adlingo.server")

# Reduce verbosity of werkzeug (Flask HTTP server logs)
logging.getLogger('werkzeug').setLevel(logging.WARNING)


def validate_configuration():
    """Validate required configuration before starting server"""
    issues = []

    if not PORT or not isinstance(PORT, int):
        issues.append("PORT must be a valid integer")
    if not OPENAI_MODEL:
        issues.append("OPENAI_MODEL must be configured")
    if not OPENAI_API_KEY:
        issues.append("OPENAI_API_KEY must be configured")

    if issues:
        logger.error("=" * 70)
        logger.error("CONFIGURATION ERROR")
        logger.error("=" * 70)
        for issue in issues:
            logger.error(f"   - {issue}")
        logger.error("Create a .env file from .env.example and restart the server.")
        raise ValueError("Configuration validation failed. See errors above.")

    logger.info("Configuration validated successfully")


def create_app(store: Database = None, job_starter=None) -> Flask:
    """
    Build the Flask application.

    Args:
        store: Database to serve (DATABASE_PATH when None)
        job_starter: Function (job_id, EngineConfig) running a job in the background
    """
    store = store or Database(DATABASE_PATH)

    def start_job_wrapper(job_id: str, config: EngineConfig):
        """Wrapper to inject the store into the job starter"""
        start_job(job_id, config, store)

    app = Flask(__name__)
    CORS(app)
    configure_routes(app, store, job_starter or start_job_wrapper)
    return app


if __name__ == '__main__':
    setup_api_logger()
    validate_configuration()

    directory = os.path.dirname(DATABASE_PATH)
    if directory:
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError as e:
            logger.error(f"Critical error: Unable to create data folder '{directory}': {e}")
            sys.exit(1)

    app = create_app()

    logger.info("=" * 60)
    logger.info(f"ADLINGO TRANSLATION SERVER (Version {datetime.now().strftime('%Y%m%d-%H%M')})")
    logger.info("=" * 60)
    logger.info(f"   - API: http://{HOST}:{PORT}/api/")
    logger.info(f"   - Health Check: http://{HOST}:{PORT}/api/health")
    logger.info(f"   - Database: {DATABASE_PATH}")

    if HOST == '0.0.0.0':
        logger.warning("Server is binding to 0.0.0.0 (all network interfaces)")
        logger.warning("   For production, use a proper WSGI server like gunicorn:")
        logger.warning("   gunicorn -w 1 --threads 8 --bind 0.0.0.0:5000 'translation_api:create_app()'")

    app.run(host=HOST, port=PORT, debug=False, threaded=True)
