"""
Artifact storage for generated images.

Two backends: a local directory (written with aiofiles, served from
STORAGE_PUBLIC_URL or as file paths) and a Supabase storage bucket reached
over its REST API.
"""
import logging
import os
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import aiofiles
import httpx

from adlingo.config import (
    REQUEST_TIMEOUT,
    STORAGE_BACKEND,
    STORAGE_BUCKET,
    STORAGE_LOCAL_DIR,
    STORAGE_PUBLIC_URL,
    SUPABASE_SERVICE_KEY,
    SUPABASE_URL,
)
from adlingo.core.exceptions import ConfigurationError, StorageError

logger = logging.getLogger(__name__)


def artifact_path(job_id: str, task_id: str, extension: str = "png") -> str:
    """Storage path for a new artifact: image-jobs/{job}/{task}/{uuid}.{ext}"""
    return f"image-jobs/{job_id}/{task_id}/{uuid.uuid4()}.{extension}"


class StorageService(ABC):
    """Uploads artifacts and returns their public URL."""

    @abstractmethod
    async def upload(self, path: str, data: bytes, content_type: str = "image/png") -> str:
        pass

    async def close(self):
        pass


class LocalStorage(StorageService):

    def __init__(self, root: str = STORAGE_LOCAL_DIR, public_url: str = STORAGE_PUBLIC_URL):
        self.root = Path(root)
        self.public_url = public_url.rstrip('/')

    async def upload(self, path: str, data: bytes, content_type: str = "image/png") -> str:
        target = self.root / path
        if target.exists():
            raise StorageError(f"Artifact already exists: {path}")
        try:
            os.makedirs(target.parent, exist_ok=True)
            async with aiofiles.open(target, 'wb') as f:
                await f.write(data)
        except OSError as e:
            raise StorageError(f"Upload failed: {e}", context={'path': path}) from e

        logger.debug(f"Stored {len(data)} bytes at {target}")
        if self.public_url:
            return f"{self.public_url}/{path}"
        return target.resolve().as_uri()


class SupabaseStorage(StorageService):
    """Supabase storage bucket via the storage REST API."""

    def __init__(self,
                 url: str = SUPABASE_URL,
                 service_key: str = SUPABASE_SERVICE_KEY,
                 bucket: str = STORAGE_BUCKET,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        if not url or not service_key:
            raise ConfigurationError("SUPABASE_URL and SUPABASE_SERVICE_KEY are required for supabase storage")
        self.url = url.rstrip('/')
        self.bucket = bucket
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(REQUEST_TIMEOUT),
            headers={
                "Authorization": f"Bearer {service_key}",
                "apikey": service_key,
            },
            transport=transport,
        )

    def public_url(self, path: str) -> str:
        return f"{self.url}/storage/v1/object/public/{self.bucket}/{path}"

    async def upload(self, path: str, data: bytes, content_type: str = "image/png") -> str:
        try:
            response = await self._client.post(
                f"{self.url}/storage/v1/object/{self.bucket}/{path}",
                content=data,
                headers={"Content-Type": content_type, "x-upsert": "false"},
            )
        except httpx.TransportError as e:
            raise StorageError(f"Upload failed: {e}", context={'path': path}, recoverable=True) from e

        if response.status_code >= 400:
            raise StorageError(
                f"Upload failed ({response.status_code}): {response.text[:200]}",
                context={'path': path},
                recoverable=response.status_code >= 500,
            )
        return self.public_url(path)

    async def close(self):
        await self._client.aclose()


def create_storage(backend: str = STORAGE_BACKEND, **kwargs) -> StorageService:
    """Create the configured storage backend."""
    if backend == 'local':
        return LocalStorage(**kwargs)
    if backend == 'supabase':
        return SupabaseStorage(**kwargs)
    raise ConfigurationError(f"Unknown storage backend: {backend}")
