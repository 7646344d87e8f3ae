"""
Local filesystem cold store.

Stores each record as an object in a directory tree, the way a bucket in an
object store would hold it: a payload blob plus a small JSON metadata
document. Intended for development, tests, and single-host deployments
where the cold tier is cheap bulk disk.

Layout::

    <root>/objects/<h[0:2]>/<h>.bin    payload bytes
    <root>/objects/<h[0:2]>/<h>.json   key, created_at, size_bytes, checksum

where ``h`` is the SHA-256 hex digest of the record key. The metadata file
is written last and removed first, so its presence marks a complete object.
"""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from datetime import datetime
from pathlib import Path

import aiofiles
import aiofiles.os

from tierstore.adapters.interface import ColdStore
from tierstore.observability import (
    ATTR_RECORD_KEY,
    ATTR_RECORD_SIZE,
    ATTR_TIER,
    Tracer,
    create_tracer,
)
from tierstore.records import Record

logger = logging.getLogger(__name__)


class FileSystemColdStore(ColdStore):
    """
    ColdStore backed by files under a root directory.

    Writes go to a temporary file and are moved into place with an atomic
    rename, so readers never observe a partially written object.

    Example:
        >>> store = FileSystemColdStore("/var/lib/tierstore/cold")
        >>> await store.put(record)
        >>> await store.get(record.key)
    """

    def __init__(
        self,
        root: str | Path,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._root = Path(root)
        self._objects_dir = self._root / "objects"
        logger.debug("FileSystemColdStore initialized at %s", self._root)

    def _paths(self, key: str) -> tuple[Path, Path]:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        directory = self._objects_dir / digest[:2]
        return directory / f"{digest}.bin", directory / f"{digest}.json"

    async def _write_atomic(self, path: Path, data: bytes) -> None:
        tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
        async with aiofiles.open(tmp_path, "wb") as f:
            await f.write(data)
        await aiofiles.os.replace(tmp_path, path)

    async def get(self, key: str) -> Record | None:
        with self._tracer.span("tierstore.cold.get", {ATTR_RECORD_KEY: key, ATTR_TIER: "cold"}):
            blob_path, meta_path = self._paths(key)
            try:
                async with aiofiles.open(meta_path) as f:
                    meta = json.loads(await f.read())
                async with aiofiles.open(blob_path, "rb") as f:
                    payload = await f.read()
            except FileNotFoundError:
                return None

            return Record(
                key=meta["key"],
                payload=payload,
                created_at=datetime.fromisoformat(meta["created_at"]),
            )

    async def put(self, record: Record) -> None:
        with self._tracer.span(
            "tierstore.cold.put",
            {
                ATTR_RECORD_KEY: record.key,
                ATTR_RECORD_SIZE: record.size_bytes,
                ATTR_TIER: "cold",
            },
        ):
            blob_path, meta_path = self._paths(record.key)
            await aiofiles.os.makedirs(blob_path.parent, exist_ok=True)

            meta = {
                "key": record.key,
                "created_at": record.created_at.isoformat(),
                "size_bytes": record.size_bytes,
                "checksum": record.checksum,
            }
            await self._write_atomic(blob_path, record.payload)
            await self._write_atomic(meta_path, json.dumps(meta).encode("utf-8"))

            logger.debug("Stored cold object %s (%d bytes)", record.key, record.size_bytes)

    async def delete(self, key: str) -> bool:
        with self._tracer.span("tierstore.cold.delete", {ATTR_RECORD_KEY: key, ATTR_TIER: "cold"}):
            blob_path, meta_path = self._paths(key)
            existed = True
            try:
                await aiofiles.os.remove(meta_path)
            except FileNotFoundError:
                existed = False
            try:
                await aiofiles.os.remove(blob_path)
            except FileNotFoundError:
                pass

            if existed:
                logger.debug("Deleted cold object %s", key)
            return existed

    async def exists(self, key: str) -> bool:
        _, meta_path = self._paths(key)
        return await aiofiles.os.path.exists(meta_path)

    @property
    def root(self) -> Path:
        """Root directory of the store."""
        return self._root
