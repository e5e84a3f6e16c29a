"""
Centralized configuration
"""
import os
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import List
from dotenv import load_dotenv

_config_logger = logging.getLogger('config')

_env_file = Path.cwd() / '.env'
_dotenv_result = load_dotenv(_env_file)


def parse_bool(value, default: bool = False) -> bool:
    """Read a flag from env or request data: only 'true' (any case) is true."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() == 'true'


# Debug mode
DEBUG_MODE = parse_bool(os.getenv('DEBUG_MODE'), False)

# Server configuration
HOST = os.getenv('HOST', '127.0.0.1')
PORT = int(os.getenv('PORT', '5000'))
OUTPUT_DIR = os.getenv('OUTPUT_DIR', 'translated_files')
DATABASE_PATH = os.getenv('DATABASE_PATH', 'data/adlingo.db')

# Text model (OpenAI chat completions)
OPENAI_API_KEY = os.getenv('OPENAI_API_KEY', '')
OPENAI_API_ENDPOINT = os.getenv('OPENAI_API_ENDPOINT', 'https://api.openai.com/v1/chat/completions')
OPENAI_MODEL = os.getenv('OPENAI_MODEL', 'gpt-4o')
REQUEST_TIMEOUT = int(os.getenv('REQUEST_TIMEOUT', '120'))
TRANSLATION_TEMPERATURE = float(os.getenv('TRANSLATION_TEMPERATURE', '0.3'))
ANALYSIS_MAX_TOKENS = int(os.getenv('ANALYSIS_MAX_TOKENS', '4000'))

# Batch dispatch
# A typical landing page fits into one or two chunks so names stay consistent
CHUNK_SIZE = int(os.getenv('CHUNK_SIZE', '80'))
CHUNK_TOKEN_BUDGET = int(os.getenv('CHUNK_TOKEN_BUDGET', '12000'))
MAX_CONCURRENT_CHUNKS = int(os.getenv('MAX_CONCURRENT_CHUNKS', '4'))
CONTEXT_CHAR_LIMIT = int(os.getenv('CONTEXT_CHAR_LIMIT', '4000'))
ANALYSIS_CHAR_LIMIT = int(os.getenv('ANALYSIS_CHAR_LIMIT', '8000'))

# Regeneration loop
MAX_VERSIONS = int(os.getenv('MAX_VERSIONS', '5'))
QUALITY_THRESHOLD = int(os.getenv('QUALITY_THRESHOLD', '80'))
PAGE_QUALITY_THRESHOLD = int(os.getenv('PAGE_QUALITY_THRESHOLD', '85'))
QUALITY_CHECK_ENABLED = parse_bool(os.getenv('QUALITY_CHECK_ENABLED'), True)

# Worker queue
WORKER_CONCURRENCY = int(os.getenv('WORKER_CONCURRENCY', '10'))
STALL_WINDOW_SECONDS = float(os.getenv('STALL_WINDOW_SECONDS', '120'))
WATCHDOG_INTERVAL_SECONDS = float(os.getenv('WATCHDOG_INTERVAL_SECONDS', '15'))
FIX_STALE_SECONDS = float(os.getenv('FIX_STALE_SECONDS', '600'))

# Retry client
RETRY_MAX_ATTEMPTS = int(os.getenv('RETRY_MAX_ATTEMPTS', '3'))
RETRY_INITIAL_DELAY = float(os.getenv('RETRY_INITIAL_DELAY', '1.0'))
RETRY_MAX_DELAY = float(os.getenv('RETRY_MAX_DELAY', '10.0'))
RETRY_BACKOFF_FACTOR = float(os.getenv('RETRY_BACKOFF_FACTOR', '2.0'))

# Image generation (Kie)
KIE_API_KEY = os.getenv('KIE_API_KEY', '')
KIE_API_ENDPOINT = os.getenv('KIE_API_ENDPOINT', 'https://api.kie.ai/api/v1')
KIE_MODEL = os.getenv('KIE_MODEL', 'nano-banana-pro')
KIE_RESOLUTION = os.getenv('KIE_RESOLUTION', '2K')
KIE_POLL_TIMEOUT = float(os.getenv('KIE_POLL_TIMEOUT', '280'))
ASPECT_RATIOS = ['1:1', '9:16', '4:5']

# Storage
STORAGE_BACKEND = os.getenv('STORAGE_BACKEND', 'local')  # 'local' or 'supabase'
STORAGE_LOCAL_DIR = os.getenv('STORAGE_LOCAL_DIR', 'storage')
STORAGE_PUBLIC_URL = os.getenv('STORAGE_PUBLIC_URL', '')
SUPABASE_URL = os.getenv('SUPABASE_URL', '')
SUPABASE_SERVICE_KEY = os.getenv('SUPABASE_SERVICE_KEY', '')
STORAGE_BUCKET = os.getenv('STORAGE_BUCKET', 'translated-images')

# Batch notifications
EXPORT_WEBHOOK_URL = os.getenv('EXPORT_WEBHOOK_URL', '')
NOTIFY_WEBHOOK_URL = os.getenv('NOTIFY_WEBHOOK_URL', '')
NOTIFY_EMAIL = os.getenv('NOTIFY_EMAIL', '')

# Brand and product names that are never translated
DO_NOT_TRANSLATE = [
    name.strip()
    for name in os.getenv('DO_NOT_TRANSLATE', 'HappySleep, Hydro13').split(',')
    if name.strip()
]

SOURCE_LANGUAGE = os.getenv('SOURCE_LANGUAGE', 'English')

if DEBUG_MODE:
    _config_logger.setLevel(logging.DEBUG)
    _config_logger.debug("=" * 60)
    _config_logger.debug("LOADED CONFIGURATION VALUES:")
    _config_logger.debug(f"   .env loaded: {_dotenv_result}")
    _config_logger.debug(f"   OPENAI_MODEL: {OPENAI_MODEL}")
    _config_logger.debug(f"   OPENAI_API_KEY: {'***' + OPENAI_API_KEY[-4:] if OPENAI_API_KEY else '(not set)'}")
    _config_logger.debug(f"   KIE_API_KEY: {'***' + KIE_API_KEY[-4:] if KIE_API_KEY else '(not set)'}")
    _config_logger.debug(f"   STORAGE_BACKEND: {STORAGE_BACKEND}")
    _config_logger.debug(f"   DATABASE_PATH: {DATABASE_PATH}")
    _config_logger.debug("=" * 60)


@dataclass
class EngineConfig:
    """Unified configuration for both CLI and web interfaces"""

    # Text model
    openai_api_key: str = OPENAI_API_KEY
    openai_endpoint: str = OPENAI_API_ENDPOINT
    model: str = OPENAI_MODEL
    timeout: int = REQUEST_TIMEOUT
    temperature: float = TRANSLATION_TEMPERATURE

    # Dispatch
    chunk_size: int = CHUNK_SIZE
    chunk_token_budget: int = CHUNK_TOKEN_BUDGET
    max_concurrent_chunks: int = MAX_CONCURRENT_CHUNKS

    # Regeneration
    max_versions: int = MAX_VERSIONS
    quality_threshold: int = QUALITY_THRESHOLD
    page_quality_threshold: int = PAGE_QUALITY_THRESHOLD
    quality_check_enabled: bool = QUALITY_CHECK_ENABLED

    # Worker queue
    concurrency: int = WORKER_CONCURRENCY
    stall_window: float = STALL_WINDOW_SECONDS
    watchdog_interval: float = WATCHDOG_INTERVAL_SECONDS

    # Retry
    retry_max_attempts: int = RETRY_MAX_ATTEMPTS
    retry_initial_delay: float = RETRY_INITIAL_DELAY
    retry_max_delay: float = RETRY_MAX_DELAY
    retry_backoff_factor: float = RETRY_BACKOFF_FACTOR

    # Image generation
    kie_api_key: str = KIE_API_KEY
    kie_endpoint: str = KIE_API_ENDPOINT
    kie_model: str = KIE_MODEL

    # Persistence and storage
    database_path: str = DATABASE_PATH
    storage_backend: str = STORAGE_BACKEND

    do_not_translate: List[str] = field(default_factory=lambda: list(DO_NOT_TRANSLATE))
    enable_colors: bool = True

    @classmethod
    def from_cli_args(cls, args) -> 'EngineConfig':
        """Create config from CLI arguments"""
        config = cls()
        for attr in ('model', 'concurrency', 'max_versions', 'database_path'):
            value = getattr(args, attr, None)
            if value is not None:
                setattr(config, attr, value)
        threshold = getattr(args, 'threshold', None)
        if threshold is not None:
            config.quality_threshold = threshold
            config.page_quality_threshold = threshold
        if getattr(args, 'no_quality_check', False):
            config.quality_check_enabled = False
        config.enable_colors = not getattr(args, 'no_color', False)
        return config

    @classmethod
    def from_web_request(cls, request_data: dict) -> 'EngineConfig':
        """Create config from web request data"""
        config = cls()
        config.model = request_data.get('model', OPENAI_MODEL)
        config.quality_threshold = int(request_data.get('quality_threshold', QUALITY_THRESHOLD))
        config.page_quality_threshold = int(request_data.get('quality_threshold', PAGE_QUALITY_THRESHOLD))
        config.max_versions = int(request_data.get('max_versions', MAX_VERSIONS))
        config.quality_check_enabled = parse_bool(request_data.get('quality_check'), QUALITY_CHECK_ENABLED)
        return config
