"""
FileRuntimeStore — the in-memory store, mirrored to one JSON file per collection.

    {data_dir}/flows.json  sessions.json  answers.json  custom_fields.json  actions.json

Writes go to a temp file that replaces the original, so a crash never leaves
a half-written collection. With flush_interval_s > 0 writes are batched and
flushed from the running event loop; call aclose() before shutdown.

Single process only. Suitable for demos and small deployments.
"""
from __future__ import annotations

import asyncio
import functools
import json
import os
import structlog
from collections import defaultdict
from pathlib import Path
from typing import Any, Optional

from database.store_memory import InMemoryRuntimeStore
from models.schemas import Action, Flow, Session

logger = structlog.get_logger()

# collection name → attribute of InMemoryRuntimeStore holding it
_COLLECTIONS: dict[str, str] = {
    "flows": "_flows",
    "sessions": "_sessions",
    "answers": "_answers",
    "custom_fields": "_custom_fields",
    "actions": "_actions",
}


def _persists(*collections: str):
    """Mark the collections a write method changes."""
    def decorator(method):
        @functools.wraps(method)
        async def wrapper(self: "FileRuntimeStore", *args, **kwargs):
            result = await method(self, *args, **kwargs)
            self._mark_dirty(*collections)
            return result
        return wrapper
    return decorator


class FileRuntimeStore(InMemoryRuntimeStore):

    def __init__(self, data_dir: str = "./data", flush_interval_s: float = 0):
        super().__init__()
        self._data_dir = Path(data_dir)
        self._data_dir.mkdir(parents=True, exist_ok=True)
        self._flush_interval = flush_interval_s
        self._dirty: set[str] = set()
        self._flush_task: Optional[asyncio.Task] = None
        self._restore()
        logger.info("file_store_initialized", data_dir=str(self._data_dir),
                    batched=flush_interval_s > 0)

    def _path(self, collection: str) -> Path:
        return self._data_dir / f"{collection}.json"

    def _restore(self) -> None:
        for collection, attr in _COLLECTIONS.items():
            path = self._path(collection)
            if not path.exists():
                continue
            try:
                data = json.loads(path.read_text())
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("file_store_load_error", collection=collection, error=str(e))
                continue
            if not isinstance(data, dict):
                logger.warning("file_store_unexpected_shape", collection=collection)
                continue
            setattr(self, attr, defaultdict(list, data) if collection == "actions" else data)
            logger.debug("file_store_loaded", collection=collection, records=len(data))

        self._flow_key_index = {f["key"]: fid for fid, f in self._flows.items() if f.get("key")}

    def _write(self, collection: str) -> None:
        path = self._path(collection)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(dict(getattr(self, _COLLECTIONS[collection])), indent=2, default=str))
        os.replace(tmp, path)

    def _mark_dirty(self, *collections: str) -> None:
        if self._flush_interval <= 0:
            for c in collections:
                self._write(c)
            return
        self._dirty.update(collections)
        if self._flush_task is None or self._flush_task.done():
            self._flush_task = asyncio.get_running_loop().create_task(self._flush_later())

    async def _flush_later(self) -> None:
        await asyncio.sleep(self._flush_interval)
        self._flush_dirty()

    def _flush_dirty(self) -> None:
        pending, self._dirty = self._dirty, set()
        for c in pending:
            self._write(c)

    def flush_all(self) -> None:
        """Write every collection to disk now."""
        for c in _COLLECTIONS:
            self._write(c)
        self._dirty.clear()
        logger.info("file_store_flushed_all")

    async def aclose(self) -> None:
        """Flush batched writes and stop the pending flush task."""
        if self._flush_task is not None and not self._flush_task.done():
            self._flush_task.cancel()
        self._flush_dirty()

    # ── Writes ────────────────────────────────────────────

    @_persists("flows")
    async def save_flow(self, flow: Flow) -> Flow:
        return await super().save_flow(flow)

    @_persists("sessions")
    async def upsert_session(self, session: Session, expected_version: Optional[int] = None) -> Session:
        return await super().upsert_session(session, expected_version)

    @_persists("answers")
    async def append_answer(self, flow_id: str, session_id: str, step_id: str,
                            question: str, answer: str) -> None:
        await super().append_answer(flow_id, session_id, step_id, question, answer)

    @_persists("custom_fields")
    async def upsert_custom_field_value(self, contact_key: str, field_id: str, value: str) -> None:
        await super().upsert_custom_field_value(contact_key, field_id, value)

    @_persists("actions")
    async def log_action(self, session_id: str, action: Action) -> None:
        await super().log_action(session_id, action)
