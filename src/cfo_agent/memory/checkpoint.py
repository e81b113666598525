"""
src/cfo_agent/memory/checkpoint.py - conversation snapshots keyed by thread

State is kept as serialized JSON, so every load hands back a fresh ThreadState
that nobody else holds a reference to. With a directory each thread is also
written to "<dir>/<thread>.json" (write to .tmp, then rename). Disk work runs
in a worker thread so other threads' turns keep moving.
"""


import asyncio
import hashlib
import re
from pathlib import Path
from typing import Dict, Optional

from pydantic import ValidationError

from cfo_agent.orchestrator.errors import CheckpointError, CorruptCheckpoint
from cfo_agent.orchestrator.models import ThreadState


_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]")


def _file_name(thread_key: str) -> str:
    """Internal: filesystem-safe, collision-free name for a thread key."""

    slug = _UNSAFE.sub("_", thread_key)[:60]
    digest = hashlib.sha1(thread_key.encode("utf-8")).hexdigest()[:8]

    return f"{slug}-{digest}.json"


def _read(path: Path) -> Optional[str]:

    if not path.exists():
        return None

    return path.read_text(encoding="utf-8")


def _write(directory: Path, path: Path, raw: str) -> None:

    directory.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp")
    tmp.write_text(raw, encoding="utf-8")
    tmp.replace(path)


class Checkpointer:

    def __init__(self, directory: Optional[Path] = None):

        self.directory = directory
        self._snapshots: Dict[str, str] = {}

    def _path(self, thread_key: str) -> Path:

        return self.directory / _file_name(thread_key)

    async def load(self, thread_key: str) -> Optional[ThreadState]:
        """
        Latest saved state for `thread_key`, or None for a new thread.

        A snapshot that cannot be read or parsed raises CheckpointError.
        """

        raw = self._snapshots.get(thread_key)
        if raw is None and self.directory is not None:
            try:
                raw = await asyncio.to_thread(_read, self._path(thread_key))
            except OSError as e:
                raise CheckpointError(f"Could not read checkpoint for '{thread_key}': {e}") from e
        if raw is None:
            return None

        try:
            state = ThreadState.model_validate_json(raw)
        except ValidationError as e:
            raise CorruptCheckpoint(f"Checkpoint for '{thread_key}' is corrupt: {e.error_count()} error(s)") from e
        self._snapshots[thread_key] = raw

        return state

    async def save(self, thread_key: str, state: ThreadState) -> None:
        """
        Persist `state`. The in-memory snapshot only changes once the disk
        write (if any) succeeded, so a failed save never half-applies.
        """

        raw = state.model_dump_json()
        if self.directory is not None:
            try:
                await asyncio.to_thread(_write, self.directory, self._path(thread_key), raw)
            except OSError as e:
                raise CheckpointError(f"Could not save checkpoint for '{thread_key}': {e}") from e
        self._snapshots[thread_key] = raw
