import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

from facepunch.config import get_settings
from facepunch.core.errors import StorageError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredObject:
    url: str
    key: str


class ObjectStore:
    """
    Filesystem-backed object store for enrollment images and punch evidence.

    Objects are addressed by a relative key; `url` is the public reference
    stored on attendance rows and resolved back to a key by `resolve_key`.
    """

    def __init__(self, root: str, url_prefix: str = "/uploads", timeout: float = 10.0):
        self.root = Path(root)
        self.url_prefix = "/" + url_prefix.strip("/") if url_prefix.strip("/") else ""
        self.timeout = timeout
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        path = (self.root / key).resolve()
        root = self.root.resolve()
        if root != path and root not in path.parents:
            raise StorageError("Invalid object key", details=key)
        return path

    def url_for(self, key: str) -> str:
        return f"{self.url_prefix}/{key}"

    def resolve_key(self, reference: Optional[str]) -> Optional[str]:
        """Object key for a stored URL or key; None when nothing usable remains"""
        if not reference:
            return None

        value = reference
        if "://" in value:
            try:
                value = unquote(urlparse(value).path)
            except ValueError:
                logger.warning(f"Unable to parse object reference: {reference}")
                return None

        value = value.lstrip("/")
        prefix = self.url_prefix.lstrip("/")
        if prefix and value.startswith(prefix + "/"):
            value = value[len(prefix) + 1:]

        return value or None

    async def _run(self, operation: str, func, *args):
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"Storage {operation} timed out after {self.timeout}s")
            raise StorageError(f"Storage {operation} timed out")
        except StorageError:
            raise
        except OSError as e:
            logger.error(f"Storage {operation} failed: {e}")
            raise StorageError(f"Storage {operation} failed", details=str(e))

    def _write(self, key: str, data: bytes) -> None:
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".part")
        with open(tmp_path, "wb") as fh:
            fh.write(data)
        os.replace(tmp_path, path)

    def _read(self, key: str) -> bytes:
        with open(self.path_for(key), "rb") as fh:
            return fh.read()

    def _exists(self, key: str) -> bool:
        return self.path_for(key).is_file()

    async def put(self, data: bytes, name: str) -> StoredObject:
        key = name.lstrip("/")
        await self._run("upload", self._write, key, data)
        logger.info(f"Stored {len(data)} bytes at {key}")
        return StoredObject(url=self.url_for(key), key=key)

    async def get(self, key: str) -> bytes:
        return await self._run("download", self._read, key)

    async def exists(self, key: str) -> bool:
        return await self._run("lookup", self._exists, key)


_object_store: Optional[ObjectStore] = None


def get_object_store() -> ObjectStore:
    global _object_store
    if _object_store is None:
        settings = get_settings()
        _object_store = ObjectStore(
            root=settings.upload_dir,
            url_prefix=settings.upload_url_prefix,
            timeout=settings.storage_timeout,
        )
    return _object_store
