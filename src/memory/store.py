from __future__ import annotations

import copy
import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from protocol.errors import StorageError
from utils.io import append_jsonl, atomic_write_json, ensure_dir, read_json, read_jsonl

from .typing import EntryRow, JournalRow

logger = logging.getLogger(__name__)


# -----------------------------
# Internal types & helpers
# -----------------------------
def _utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _normalize_tags(tags: Optional[Iterable[str]]) -> Tuple[str, ...]:
    out: List[str] = []
    for t in tags or ():
        t = str(t).strip()
        if t and t not in out:
            out.append(t)
    return tuple(out)


@dataclass(frozen=True)
class MemoryEntry:
    key: str
    value: Any
    agent: str
    tags: Tuple[str, ...]
    updated_at: str

    def to_row(self) -> EntryRow:
        return {
            "key": self.key,
            "value": self.value,
            "agent": self.agent,
            "tags": list(self.tags),
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "MemoryEntry":
        return cls(
            key=str(row["key"]),
            value=row.get("value"),
            agent=str(row.get("agent", "")),
            tags=_normalize_tags(row.get("tags")),
            updated_at=str(row.get("updated_at", "")),
        )

    def copy(self) -> "MemoryEntry":
        return MemoryEntry(self.key, copy.deepcopy(self.value), self.agent, self.tags, self.updated_at)


# -----------------------------
# Memory Store
# -----------------------------
class MemoryStore:
    """
    Durable tagged key-value store scoped to one tenant.

    - Persists all entries to ``<dir>/memory.json`` (atomic rewrite per write)
    - Keeps a tag -> keys reverse index, rebuilt on load and kept in sync on
      every set/delete
    - Attributes each write to the agent that made it
    - Optional append-only journal at ``<dir>/journal.jsonl``

    Writes are last-write-wins. Values are never merged: callers that need
    merge semantics read, mutate their copy, then ``set`` the whole value.
    Reads hand out deep copies so a caller's mutation never leaks into the
    store without a ``set``.
    """

    def __init__(self, data_dir: str | Path, *, use_jsonl: bool = False) -> None:
        self.dir = Path(data_dir)
        self.mem_path = self.dir / "memory.json"
        self.journal_path = self.dir / "journal.jsonl"
        self.use_jsonl = use_jsonl
        self._entries: Dict[str, MemoryEntry] = {}
        self._tag_index: Dict[str, Set[str]] = {}
        self._lock = threading.RLock()
        self._initialized = False

    # ----------------- lifecycle -----------------
    async def init(self) -> None:
        """Open the backing directory and load persisted entries. Idempotent."""
        with self._lock:
            if self._initialized:
                return
            try:
                ensure_dir(self.dir)
                self._load()
            except OSError as e:
                raise StorageError(f"cannot open memory store at {self.dir}: {e}", e) from e
            self._initialized = True
            logger.info("Memory store opened at %s (%s entries)", self.dir, len(self._entries))

    @property
    def initialized(self) -> bool:
        return self._initialized

    # ----------------- persistence -----------------
    def _load(self) -> None:
        self._entries = {}
        if self.mem_path.exists():
            try:
                data = read_json(self.mem_path)
                rows = data.get("entries", []) if isinstance(data, dict) else None
                if not isinstance(rows, list):
                    raise ValueError("expected an object with an 'entries' list")
                for row in rows:
                    entry = MemoryEntry.from_row(row)
                    self._entries[entry.key] = entry
            except (ValueError, KeyError, TypeError, AttributeError) as e:
                # Corruption fallback: keep a backup and start fresh.
                bad = self.mem_path.with_suffix(".corrupt.json")
                logger.warning("Corrupt memory file %s (%s); moved to %s", self.mem_path, e, bad)
                self.mem_path.replace(bad)
                self._entries = {}
        self._rebuild_index()

    def _flush(self) -> None:
        payload = {"version": 1, "entries": [e.to_row() for e in self._entries.values()]}
        atomic_write_json(self.mem_path, payload)

    def _journal(self, op: str, key: str, agent: str) -> None:
        if not self.use_jsonl:
            return
        row: JournalRow = {"op": op, "key": key, "agent": agent, "ts": _utc_iso()}
        append_jsonl(self.journal_path, dict(row))

    def _require_init(self) -> None:
        if not self._initialized:
            raise StorageError(f"memory store at {self.dir} is not initialized")

    # ----------------- tag index -----------------
    def _rebuild_index(self) -> None:
        self._tag_index = {}
        for entry in self._entries.values():
            self._index_add(entry.key, entry.tags)

    def _index_add(self, key: str, tags: Iterable[str]) -> None:
        for tag in tags:
            self._tag_index.setdefault(tag, set()).add(key)

    def _index_remove(self, key: str, tags: Iterable[str]) -> None:
        for tag in tags:
            keys = self._tag_index.get(tag)
            if keys is None:
                continue
            keys.discard(key)
            if not keys:
                del self._tag_index[tag]

    # ----------------- writes -----------------
    async def set(
        self,
        key: str,
        value: Any,
        agent: str,
        tags: Optional[Iterable[str]] = None,
    ) -> MemoryEntry:
        """Upsert ``key``; replaces value, agent, tags and timestamp."""
        if not isinstance(key, str) or not key:
            raise ValueError("key must be a non-empty string")
        try:
            json.dumps(value)
        except (TypeError, ValueError) as e:
            raise ValueError(f"value for {key!r} is not JSON-serializable: {e}") from e

        entry = MemoryEntry(
            key=key,
            value=copy.deepcopy(value),
            agent=agent,
            tags=_normalize_tags(tags),
            updated_at=_utc_iso(),
        )
        with self._lock:
            self._require_init()
            previous = self._entries.get(key)
            if previous is not None:
                self._index_remove(key, previous.tags)
            self._entries[key] = entry
            self._index_add(key, entry.tags)
            try:
                self._flush()
                self._journal("set", key, agent)
            except OSError as e:
                # Roll back so memory never runs ahead of disk.
                self._index_remove(key, entry.tags)
                if previous is None:
                    del self._entries[key]
                else:
                    self._entries[key] = previous
                    self._index_add(key, previous.tags)
                raise StorageError(f"failed to write {key!r}: {e}", e) from e
        return entry.copy()

    async def delete(self, key: str, agent: str = "") -> bool:
        """Remove ``key``; returns whether it existed."""
        with self._lock:
            self._require_init()
            previous = self._entries.pop(key, None)
            if previous is None:
                return False
            self._index_remove(key, previous.tags)
            try:
                self._flush()
                self._journal("delete", key, agent or previous.agent)
            except OSError as e:
                self._entries[key] = previous
                self._index_add(key, previous.tags)
                raise StorageError(f"failed to delete {key!r}: {e}", e) from e
            return True

    # ----------------- reads -----------------
    def get(self, key: str, default: Any = None) -> Any:
        """Current value for ``key`` or ``default``; never raises for a missing key."""
        with self._lock:
            entry = self._entries.get(key)
            return default if entry is None else copy.deepcopy(entry.value)

    def get_entry(self, key: str) -> Optional[MemoryEntry]:
        with self._lock:
            entry = self._entries.get(key)
            return None if entry is None else entry.copy()

    def search(self, prefix: str) -> List[MemoryEntry]:
        """Entries whose key starts with ``prefix``, in insertion order."""
        with self._lock:
            return [e.copy() for k, e in self._entries.items() if k.startswith(prefix)]

    def by_tag(self, tag: str) -> List[MemoryEntry]:
        """Entries currently tagged with ``tag``, in insertion order."""
        with self._lock:
            keys = self._tag_index.get(tag, set())
            return [e.copy() for k, e in self._entries.items() if k in keys]

    def by_agent(self, agent: str) -> List[MemoryEntry]:
        """Entries last written by ``agent``, in insertion order."""
        with self._lock:
            return [e.copy() for e in self._entries.values() if e.agent == agent]

    def journal(self) -> List[JournalRow]:
        """Write journal rows, oldest first (empty unless ``use_jsonl``)."""
        return [row for row in read_jsonl(self.journal_path) if "op" in row]  # type: ignore[misc]

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def tags(self) -> Dict[str, List[str]]:
        """Snapshot of the reverse index (tag -> sorted keys)."""
        with self._lock:
            return {tag: sorted(keys) for tag, keys in self._tag_index.items()}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries
