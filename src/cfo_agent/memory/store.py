"""
src/cfo_agent/memory/store.py - per-user long-term memory

Each user gets one record shared by all of their threads:
- last_actions: short summaries of what the agent did, oldest first
- known_risks: labels such as "dead_stock:SKU-12" (no duplicates)
- preferences: alert frequency, report format, ...

Records are created lazily with defaults on first load. With a path the whole
map is mirrored to a JSON file after every write; without one it lives in memory.
"""


import asyncio
import json
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
from pydantic import ValidationError

from cfo_agent.config import DEFAULT_PREFERENCES, MAX_STORED_ACTIONS
from cfo_agent.orchestrator.errors import StoreError
from cfo_agent.orchestrator.models import UserMemory


logger = structlog.get_logger()


class MemoryStore:

    def __init__(
            self,
            path: Optional[Path] = None,
            *,
            default_preferences: Optional[Dict[str, Any]] = None,
            max_actions: int = MAX_STORED_ACTIONS,
    ):

        self.path = path
        self.max_actions = max_actions
        self._default_preferences = dict(default_preferences or DEFAULT_PREFERENCES)
        self._records: Dict[str, UserMemory] = {}
        self._lock = asyncio.Lock()
        if path is not None and path.exists():
            try:
                self._records = self._read(path)
            except StoreError as e:
                # Best-effort: fall back to empty records
                logger.warning("Starting with empty user memory", path=str(path), error=str(e))

    # --- Persistence ------------------------------------------------------------
    @staticmethod
    def _read(path: Path) -> Dict[str, UserMemory]:

        try:
            with path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise StoreError(f"Could not read user memory from {path}: {e}") from e
        try:
            return {user_id: UserMemory.model_validate(record) for user_id, record in data.items()}
        except (AttributeError, ValidationError) as e:
            raise StoreError(f"Malformed user memory in {path}: {e}") from e

    @staticmethod
    def _write(path: Path, payload: str) -> None:

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".tmp")
            tmp.write_text(payload, encoding="utf-8")
            tmp.replace(path)
        except OSError as e:
            raise StoreError(f"Could not write user memory to {path}: {e}") from e

    async def _flush(self) -> None:
        """Internal: snapshot the records on the loop, write them in a worker thread."""

        if self.path is None:
            return
        payload = json.dumps(
            {uid: m.model_dump() for uid, m in self._records.items()}, indent=2, ensure_ascii=False
        )
        await asyncio.to_thread(self._write, self.path, payload)

    def _default(self) -> UserMemory:

        return UserMemory(preferences=dict(self._default_preferences))

    async def _get_or_create(self, user_id: str) -> UserMemory:

        record = self._records.get(user_id)
        if record is None:
            record = self._default()
            self._records[user_id] = record
            await self._flush()

        return record

    # --- Public API -------------------------------------------------------------
    async def load(self, user_id: str) -> UserMemory:
        """
        Return the user's memory, creating the default record on first access.

        Returns a copy: callers cannot mutate the stored record.
        """

        async with self._lock:
            record = await self._get_or_create(user_id)

            return record.model_copy(deep=True)

    async def append_action(self, user_id: str, summary: str) -> None:
        """Append an action summary, keeping only the most recent `max_actions`."""

        async with self._lock:
            record = await self._get_or_create(user_id)
            record.last_actions.append(summary)
            if len(record.last_actions) > self.max_actions:
                del record.last_actions[:-self.max_actions]
            await self._flush()

    async def add_risk(self, user_id: str, label: str) -> None:

        async with self._lock:
            record = await self._get_or_create(user_id)
            if label in record.known_risks:
                return
            record.known_risks.append(label)
            await self._flush()
