from __future__ import annotations

import json
from pathlib import Path

import pytest

from memory.store import MemoryStore
from protocol.errors import StorageError


@pytest.mark.asyncio
async def test_set_then_get_roundtrip(tmp_path: Path):
    mem = MemoryStore(tmp_path / "memory")
    await mem.init()
    entry = await mem.set("brand_voice", "warm", "brand-manager", ["brand"])
    assert entry.key == "brand_voice"
    assert entry.agent == "brand-manager"
    assert entry.tags == ("brand",)
    assert mem.get("brand_voice") == "warm"


@pytest.mark.asyncio
async def test_missing_key_returns_default(tmp_path: Path):
    mem = MemoryStore(tmp_path)
    await mem.init()
    assert mem.get("nope") is None
    assert mem.get("nope", {}) == {}
    assert mem.get_entry("nope") is None


@pytest.mark.asyncio
async def test_overwrite_drops_stale_tags(tmp_path: Path):
    mem = MemoryStore(tmp_path)
    await mem.init()
    await mem.set("k", 1, "a", ["old", "shared"])
    await mem.set("k", 2, "b", ["shared", "new"])

    assert mem.get("k") == 2
    assert mem.get_entry("k").agent == "b"
    assert mem.by_tag("old") == []
    assert [e.key for e in mem.by_tag("shared")] == ["k"]
    assert [e.key for e in mem.by_tag("new")] == ["k"]
    assert "old" not in mem.tags()


@pytest.mark.asyncio
async def test_search_by_prefix_only_matches_prefix(tmp_path: Path):
    mem = MemoryStore(tmp_path)
    await mem.init()
    await mem.set("metrics:post1", {"views": 10}, "analytics", ["metrics", "twitter"])
    await mem.set("brand_voice", "x", "brand-manager")
    await mem.set("metrics:post2", {"views": 3}, "analytics", ["metrics"])
    await mem.set("feedback:1", "y", "brand-manager")

    assert [e.key for e in mem.search("metrics:")] == ["metrics:post1", "metrics:post2"]
    assert mem.search("nothing:") == []


@pytest.mark.asyncio
async def test_single_metrics_entry_found_by_search(tmp_path: Path):
    mem = MemoryStore(tmp_path)
    await mem.init()
    await mem.set("metrics:post1", {"views": 1}, "analytics", ["metrics", "twitter"])

    found = mem.search("metrics:")
    assert len(found) == 1
    assert found[0].key == "metrics:post1"


@pytest.mark.asyncio
async def test_by_agent_reflects_last_writer(tmp_path: Path):
    mem = MemoryStore(tmp_path)
    await mem.init()
    await mem.set("a", 1, "brand-manager")
    await mem.set("b", 2, "analytics")
    await mem.set("c", 3, "brand-manager")
    await mem.set("a", 4, "analytics")

    assert [e.key for e in mem.by_agent("brand-manager")] == ["c"]
    assert [e.key for e in mem.by_agent("analytics")] == ["a", "b"]


@pytest.mark.asyncio
async def test_reads_return_copies(tmp_path: Path):
    mem = MemoryStore(tmp_path)
    await mem.init()
    await mem.set("profile", {"keywords": ["a"]}, "x")

    value = mem.get("profile")
    value["keywords"].append("leak")
    assert mem.get("profile") == {"keywords": ["a"]}


@pytest.mark.asyncio
async def test_init_twice_keeps_entries(tmp_path: Path):
    mem = MemoryStore(tmp_path)
    await mem.init()
    await mem.set("k", "v", "a", ["t"])
    await mem.init()
    await mem.init()

    assert len(mem) == 1
    assert mem.get("k") == "v"
    assert mem.tags() == {"t": ["k"]}


@pytest.mark.asyncio
async def test_persists_across_instances(tmp_path: Path):
    first = MemoryStore(tmp_path)
    await first.init()
    await first.set("k", {"n": 1}, "agent", ["t1", "t2"])

    second = MemoryStore(tmp_path)
    await second.init()
    assert second.get("k") == {"n": 1}
    assert second.tags() == {"t1": ["k"], "t2": ["k"]}

    data = json.loads((tmp_path / "memory.json").read_text(encoding="utf-8"))
    assert data["version"] == 1
    assert data["entries"][0]["key"] == "k"


@pytest.mark.asyncio
async def test_delete_removes_entry_and_tags(tmp_path: Path):
    mem = MemoryStore(tmp_path)
    await mem.init()
    await mem.set("k", 1, "a", ["t"])

    assert await mem.delete("k") is True
    assert await mem.delete("k") is False
    assert "k" not in mem
    assert mem.by_tag("t") == []


@pytest.mark.asyncio
async def test_corrupt_file_is_moved_aside(tmp_path: Path):
    (tmp_path / "memory.json").write_text("{not json", encoding="utf-8")
    mem = MemoryStore(tmp_path)
    await mem.init()

    assert len(mem) == 0
    assert (tmp_path / "memory.corrupt.json").exists()
    await mem.set("k", 1, "a")
    assert mem.get("k") == 1


@pytest.mark.asyncio
async def test_non_serializable_value_rejected(tmp_path: Path):
    mem = MemoryStore(tmp_path)
    await mem.init()
    with pytest.raises(ValueError):
        await mem.set("k", object(), "a")
    assert "k" not in mem


@pytest.mark.asyncio
async def test_set_before_init_raises_storage_error(tmp_path: Path):
    mem = MemoryStore(tmp_path)
    with pytest.raises(StorageError):
        await mem.set("k", 1, "a")


@pytest.mark.asyncio
async def test_init_on_unusable_path_raises_storage_error(tmp_path: Path):
    blocker = tmp_path / "file"
    blocker.write_text("x", encoding="utf-8")
    mem = MemoryStore(blocker / "memory")
    with pytest.raises(StorageError) as exc:
        await mem.init()
    assert exc.value.error_code == "STORAGE_ERROR"
    assert exc.value.retryable is True


@pytest.mark.asyncio
async def test_journal_records_writes(tmp_path: Path):
    mem = MemoryStore(tmp_path, use_jsonl=True)
    await mem.init()
    await mem.set("k", 1, "a")
    await mem.delete("k", "b")

    rows = mem.journal()
    assert [(r["op"], r["key"], r["agent"]) for r in rows] == [("set", "k", "a"), ("delete", "k", "b")]


@pytest.mark.asyncio
async def test_keys_follow_insertion_order(tmp_path: Path):
    mem = MemoryStore(tmp_path)
    await mem.init()
    await mem.set("b", 1, "a")
    await mem.set("a", 2, "a")
    await mem.set("b", 3, "a")
    await mem.delete("a")
    await mem.set("c", 4, "a")

    assert mem.keys() == ["b", "c"]
