"""
External services: image generation, artifact storage and notifications.
"""
from .image_generator import GenerationResult, KieImageGenerator
from .notifications import Notifier, WebhookNotifier, build_notifiers, run_notifiers
from .storage import LocalStorage, StorageService, SupabaseStorage, artifact_path, create_storage

__all__ = [
    'GenerationResult',
    'KieImageGenerator',
    'Notifier',
    'WebhookNotifier',
    'build_notifiers',
    'run_notifiers',
    'LocalStorage',
    'StorageService',
    'SupabaseStorage',
    'artifact_path',
    'create_storage',
]
