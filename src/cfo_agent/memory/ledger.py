"""
src/cfo_agent/memory/ledger.py - append-only audit ledger

One entry per orchestrator decision or tool execution. Entries are keyed
"<user>_<epoch ms>" (with "-<n>" appended when two land in the same millisecond)
and classified "frozen" or "success" from the tool name alone.
"""


import asyncio
from collections import OrderedDict
from pathlib import Path
from typing import List, Optional, Sequence

from cfo_agent.config import FROZEN_TOOL_MARKERS
from cfo_agent.orchestrator.errors import StoreError
from cfo_agent.orchestrator.models import AuditEntry
from cfo_agent.tools.permissions import audit_status


_RECENT_KEYS = 1024     # Millisecond buckets remembered for collision suffixes


def _append_line(path: Path, line: str) -> None:

    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as f:
        f.write(line + "\n")


class AuditLedger:

    def __init__(self, path: Optional[Path] = None, *, frozen_markers: Sequence[str] = FROZEN_TOOL_MARKERS):

        self.path = path
        self.frozen_markers = tuple(frozen_markers)
        self._entries: List[AuditEntry] = []
        self._keys: "OrderedDict[str, int]" = OrderedDict()
        self._lock = asyncio.Lock()

    def _key_for(self, entry: AuditEntry) -> str:

        base = f"{entry.user_id}_{int(entry.timestamp.timestamp() * 1000)}"
        seen = self._keys.pop(base, 0)
        self._keys[base] = seen + 1
        while len(self._keys) > _RECENT_KEYS:
            self._keys.popitem(last=False)

        return base if seen == 0 else f"{base}-{seen}"

    async def record(self, entry: AuditEntry) -> AuditEntry:
        """
        Write an entry. Key and status are assigned here; the stored entry is returned.
        """

        async with self._lock:
            stored = entry.model_copy(update={
                "key": self._key_for(entry),
                "status": audit_status(entry.tool, self.frozen_markers),
            })
            if self.path is not None:
                try:
                    await asyncio.to_thread(_append_line, self.path, stored.model_dump_json())
                except OSError as e:
                    raise StoreError(f"Could not append to audit ledger {self.path}: {e}") from e
            self._entries.append(stored)

        return stored

    def entries(self, user_id: Optional[str] = None) -> List[AuditEntry]:

        if user_id is None:
            return list(self._entries)

        return [e for e in self._entries if e.user_id == user_id]
