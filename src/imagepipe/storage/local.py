"""Local filesystem object store."""

import asyncio
from pathlib import Path

from imagepipe.core.exceptions import ObjectNotFoundError, TransientError
from imagepipe.storage.base import ObjectStore


class LocalObjectStore(ObjectStore):
    """Objects stored as ``{base_path}/{bucket}/{key}``."""

    def __init__(self, base_path: str | Path = "data/buckets"):
        self.base_path = Path(base_path)

    def get_object_path(self, bucket: str, key: str) -> Path:
        """Resolve an object path, refusing keys that escape the bucket."""
        bucket_root = (self.base_path / bucket).resolve()
        target = (bucket_root / key).resolve()
        if bucket_root != target and bucket_root not in target.parents:
            raise ObjectNotFoundError(f"Object key escapes bucket: {bucket}/{key}")
        return target

    async def fetch(self, bucket: str, key: str) -> bytes:
        path = self.get_object_path(bucket, key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except (FileNotFoundError, IsADirectoryError) as e:
            raise ObjectNotFoundError(f"Object not found: {bucket}/{key}") from e
        except OSError as e:
            raise TransientError(f"Failed to read {bucket}/{key}: {e}") from e
