from __future__ import annotations
from typing import Any, List, TypedDict


class EntryRow(TypedDict):
    """A single memory entry as persisted in ``memory.json``."""

    key: str            # unique within one store
    value: Any          # JSON-serializable payload
    agent: str          # name of the last writer
    tags: List[str]     # labels indexed for by_tag()
    updated_at: str     # ISO-8601 timestamp of the last write


class JournalRow(TypedDict):
    """One line of the optional append-only write journal."""

    op: str             # "set" | "delete"
    key: str
    agent: str
    ts: str
