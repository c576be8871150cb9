"""Object store backends."""

from imagepipe.core.config import Settings
from imagepipe.storage.base import ObjectStore
from imagepipe.storage.local import LocalObjectStore


def get_object_store(settings: Settings) -> ObjectStore:
    """Build the object store selected by ``OBJECT_STORE_BACKEND``."""
    if settings.OBJECT_STORE_BACKEND == "gcs":
        from imagepipe.storage.gcs import GCSObjectStore

        return GCSObjectStore(
            project_id=settings.GCP_PROJECT_ID,
            endpoint=settings.STORAGE_ENDPOINT or None,
        )
    if settings.OBJECT_STORE_BACKEND == "local":
        return LocalObjectStore(settings.OBJECT_STORE_PATH)
    raise ValueError(f"Unknown OBJECT_STORE_BACKEND: {settings.OBJECT_STORE_BACKEND}")


__all__ = ["ObjectStore", "LocalObjectStore", "get_object_store"]
