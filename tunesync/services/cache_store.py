"""File-backed snapshot cache used when the database is unreachable."""

import os
import json
import asyncio
import logging
import tempfile
from datetime import datetime, timezone
from functools import partial
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import TypeAdapter, ValidationError
from pydantic_core import to_jsonable_python

from tunesync.core.config import get_settings
from tunesync.schemas.cache import CacheSnapshot, DatasetLabel, PAYLOAD_TYPES

logger = logging.getLogger(__name__)

Label = Union[DatasetLabel, str]

# Credentials are only replaced, never aged out
NEVER_EXPIRES = {DatasetLabel.TOKENS.value}

def _label_value(label: Label) -> str:
    return label.value if isinstance(label, DatasetLabel) else str(label)

class LocalCache:
    """One JSON snapshot per (identity, dataset label).

    Files live at ``<cache_dir>/<identity_id>_<label>.json`` and hold the
    envelope ``{identityId, datasetLabel, payload, cachedAt}``. Writes are
    atomic (temp file + rename); concurrent writers resolve last-write-wins.
    """

    def __init__(
        self,
        cache_dir: Optional[Union[str, Path]] = None,
        max_age_seconds: Optional[Dict[str, int]] = None
    ):
        settings = get_settings()
        self.cache_dir = Path(cache_dir or settings.CACHE_DIR)
        if max_age_seconds is None:
            max_age_seconds = settings.CACHE_MAX_AGE_SECONDS
        self.max_age_seconds = {
            label: age for label, age in max_age_seconds.items()
            if label not in NEVER_EXPIRES
        }

    async def _run_sync(self, func, *args, **kwargs):
        """Run blocking file I/O in the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))

    @staticmethod
    def _validate_part(value: str, kind: str) -> None:
        if not value:
            raise ValueError(f"Cache {kind} must not be empty")
        if "/" in value or "\\" in value or ".." in value or os.sep in value:
            raise ValueError(f"Invalid cache {kind}: {value!r}")

    def _path(self, identity_id: str, label: str) -> Path:
        self._validate_part(identity_id, "identity id")
        self._validate_part(label, "label")
        return self.cache_dir / f"{identity_id}_{label}.json"

    # Blocking helpers

    def _write(self, path: Path, content: str) -> None:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.cache_dir), prefix=".", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def _read(self, path: Path) -> Optional[CacheSnapshot]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = f.read()
        except FileNotFoundError:
            return None
        try:
            return CacheSnapshot.model_validate_json(raw)
        except (ValidationError, ValueError) as e:
            logger.warning(f"Ignoring unreadable cache file {path.name}: {str(e)}")
            return None

    def _delete(self, path: Path) -> None:
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass

    def _scan(self, identity_id: str) -> List[Path]:
        if not self.cache_dir.is_dir():
            return []
        prefix = f"{identity_id}_"
        return sorted(
            p for p in self.cache_dir.iterdir()
            if p.name.startswith(prefix) and p.name.endswith(".json")
        )

    def _is_stale(self, snapshot: CacheSnapshot) -> bool:
        max_age = self.max_age_seconds.get(snapshot.dataset_label)
        if max_age is None:
            return False
        cached_at = snapshot.cached_at
        if cached_at.tzinfo is None:
            cached_at = cached_at.replace(tzinfo=timezone.utc)
        age = (datetime.now(timezone.utc) - cached_at).total_seconds()
        return age > max_age

    # Public API

    async def save(self, identity_id: str, label: Label, data: Any) -> CacheSnapshot:
        """Replace the snapshot for (identity, label) with ``data``."""
        label = _label_value(label)
        path = self._path(identity_id, label)
        snapshot = CacheSnapshot(
            identity_id=identity_id,
            dataset_label=label,
            payload=to_jsonable_python(data),
            cached_at=datetime.now(timezone.utc)
        )
        await self._run_sync(self._write, path, snapshot.model_dump_json(by_alias=True))
        logger.debug(f"Cached {label} for {identity_id}")
        return snapshot

    async def load_snapshot(self, identity_id: str, label: Label) -> Optional[CacheSnapshot]:
        """Full envelope, or None when missing, corrupt or stale."""
        label = _label_value(label)
        snapshot = await self._run_sync(self._read, self._path(identity_id, label))
        if snapshot is None:
            return None
        # Distinct keys can share a file name when ids or labels contain "_"
        if snapshot.identity_id != identity_id or snapshot.dataset_label != label:
            logger.warning(
                f"Cache file for {identity_id}/{label} holds "
                f"{snapshot.identity_id}/{snapshot.dataset_label}, ignoring it"
            )
            return None
        if self._is_stale(snapshot):
            logger.info(f"Cached {label} for {identity_id} is stale (cached at {snapshot.cached_at})")
            return None
        return snapshot

    async def load(self, identity_id: str, label: Label) -> Optional[Any]:
        snapshot = await self.load_snapshot(identity_id, label)
        return snapshot.payload if snapshot else None

    async def load_typed(self, identity_id: str, label: DatasetLabel) -> Optional[Any]:
        """Load and validate the payload against the type registered for the label."""
        label = DatasetLabel(_label_value(label))
        payload = await self.load(identity_id, label)
        if payload is None:
            return None
        try:
            return TypeAdapter(PAYLOAD_TYPES[label]).validate_python(payload)
        except ValidationError as e:
            logger.warning(f"Cached {label.value} for {identity_id} does not match its schema: {str(e)}")
            return None

    async def list_labels(self, identity_id: str) -> List[str]:
        self._validate_part(identity_id, "identity id")
        labels = []
        for path in await self._run_sync(self._scan, identity_id):
            snapshot = await self._run_sync(self._read, path)
            # Prefix matches can belong to another identity sharing the prefix
            if snapshot and snapshot.identity_id == identity_id:
                labels.append(snapshot.dataset_label)
        return labels

    async def load_all(self, identity_id: str) -> Dict[str, Any]:
        """Every fresh snapshot of an identity, keyed by label."""
        result = {}
        for label in await self.list_labels(identity_id):
            payload = await self.load(identity_id, label)
            if payload is not None:
                result[label] = payload
        return result

    async def delete(self, identity_id: str, label: Label) -> None:
        """Remove a snapshot; a missing one is not an error."""
        await self._run_sync(self._delete, self._path(identity_id, _label_value(label)))
