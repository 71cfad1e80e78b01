from __future__ import annotations

import json
from pathlib import Path

import pytest

from agents.brand_profile import DEFAULT_AUDIENCE, DEFAULT_TONE, DEFAULT_VOICE
from tenants.manager import TenantManager
from tenants.models import TenantSettings, merge_platforms, slugify


async def _manager(root: Path) -> TenantManager:
    tm = TenantManager(root)
    await tm.init()
    return tm


def test_slugify():
    assert slugify("Acme") == "acme"
    assert slugify("  Acme & Sons, Ltd. ") == "acme-sons-ltd"
    assert slugify("!!!") == ""


def test_settings_reject_unknown_content_type():
    with pytest.raises(ValueError):
        TenantSettings(default_type="podcast")


def test_merge_platforms_replaces_per_platform_and_removes_none():
    current = {"wordpress": {"WP_URL": "a", "WP_TOKEN": "t"}, "twitter": {"KEY": "k"}}
    merged = merge_platforms(current, {"wordpress": {"WP_URL": "b"}, "twitter": None})
    assert merged == {"wordpress": {"WP_URL": "b"}}
    assert current["wordpress"] == {"WP_URL": "a", "WP_TOKEN": "t"}


@pytest.mark.asyncio
async def test_create_acme_uses_documented_defaults(tmp_data_dir: Path):
    tm = await _manager(tmp_data_dir)
    tenant = await tm.create({"name": "Acme"})

    assert tenant.slug == "acme"
    assert tenant.brand.voice == DEFAULT_VOICE
    assert tenant.brand.tone == DEFAULT_TONE
    assert tenant.settings.platforms == ["local-file"]
    assert tenant.settings.default_type == "blog+social"
    assert tenant.settings.auto_publish is False
    assert tenant.id.startswith("tenant_")


@pytest.mark.asyncio
async def test_create_then_get_merges_over_defaults(tmp_data_dir: Path):
    tm = await _manager(tmp_data_dir)
    created = await tm.create({
        "name": "Globex",
        "brand": {"voice": "bold", "keywords": ["rockets"]},
        "settings": {"auto_publish": True, "platforms": ["wordpress"]},
    })

    tenant = tm.get(created.id)
    assert tenant is not None
    assert tenant.brand.to_dict() == {
        "voice": "bold",
        "tone": DEFAULT_TONE,
        "audience": DEFAULT_AUDIENCE,
        "industry": "technology",
        "keywords": ["rockets"],
        "avoid_words": [],
    }
    assert tenant.settings.to_dict() == {
        "default_type": "blog+social",
        "default_model": None,
        "auto_publish": True,
        "platforms": ["wordpress"],
    }


@pytest.mark.asyncio
async def test_create_requires_name(tmp_data_dir: Path):
    tm = await _manager(tmp_data_dir)
    with pytest.raises(ValueError):
        await tm.create({"brand": {"voice": "x"}})
    assert len(tm) == 0


@pytest.mark.asyncio
async def test_create_provisions_dirs_manifest_and_seeds(tmp_data_dir: Path):
    tm = await _manager(tmp_data_dir)
    tenant = await tm.create({"name": "Acme", "brand": {"tone": "cheeky"}})

    assert (tmp_data_dir / tenant.id / "memory").is_dir()
    assert tm.get_output_dir(tenant.id) == tmp_data_dir / tenant.id / "output"
    assert tm.get_output_dir(tenant.id).is_dir()

    manifest = json.loads((tmp_data_dir / "tenants.json").read_text(encoding="utf-8"))
    assert [t["id"] for t in manifest] == [tenant.id]

    memory = tm.get_memory(tenant.id)
    assert memory.get("brand_voice") == DEFAULT_VOICE
    assert memory.get("brand_tone") == "cheeky"
    assert memory.get("brand_audience") == DEFAULT_AUDIENCE
    assert memory.get("brand:acme")["tone"] == "cheeky"


@pytest.mark.asyncio
async def test_derived_slugs_are_unique(tmp_data_dir: Path):
    tm = await _manager(tmp_data_dir)
    a = await tm.create({"name": "Acme"})
    b = await tm.create({"name": "ACME"})
    c = await tm.create({"name": "acme!"})
    assert [a.slug, b.slug, c.slug] == ["acme", "acme-2", "acme-3"]
    assert tm.get_by_slug("acme-2").id == b.id


@pytest.mark.asyncio
async def test_lookups_for_unknown_tenant_are_absent(tmp_data_dir: Path):
    tm = await _manager(tmp_data_dir)
    assert tm.get("nope") is None
    assert tm.get_by_slug("nope") is None
    assert tm.get_memory("nope") is None
    assert tm.get_executor("nope") is None
    assert tm.get_output_dir("nope") is None
    assert tm.get_brand_guidelines("nope") == ""
    assert await tm.update("nope", {"name": "x"}) is None
    assert await tm.delete("nope") is False


@pytest.mark.asyncio
async def test_returned_records_are_copies(tmp_data_dir: Path):
    tm = await _manager(tmp_data_dir)
    tenant = await tm.create({"name": "Acme"})
    tenant.brand.voice = "mutated"
    assert tm.get(tenant.id).brand.voice == DEFAULT_VOICE


@pytest.mark.asyncio
async def test_update_platforms_rebuilds_executor_only(tmp_data_dir: Path):
    tm = await _manager(tmp_data_dir)
    tenant = await tm.create({
        "name": "Acme",
        "platforms": {"wordpress": {"WP_TOKEN": "old"}, "twitter": {"TW_KEY": "k"}},
    })
    memory_before = tm.get_memory(tenant.id)
    await memory_before.set("note", "kept", "tester")

    updated = await tm.update(tenant.id, {"platforms": {"wordpress": {"WP_TOKEN": "new"}, "twitter": None}})

    executor = tm.get_executor(tenant.id)
    assert executor.get_credential("WP_TOKEN") == "new"
    assert executor.get_credential("TW_KEY") is None
    assert executor.platforms == ["wordpress"]
    assert updated.platforms == {"wordpress": {"WP_TOKEN": "new"}}
    assert tm.get_memory(tenant.id) is memory_before
    assert tm.get_memory(tenant.id).get("note") == "kept"


@pytest.mark.asyncio
async def test_update_brand_unions_keywords_and_reseeds(tmp_data_dir: Path):
    tm = await _manager(tmp_data_dir)
    tenant = await tm.create({"name": "Acme", "brand": {"keywords": ["a", "b"]}})

    updated = await tm.update(tenant.id, {"brand": {"voice": "playful", "keywords": ["b", "c"]}})

    assert updated.brand.keywords == ["a", "b", "c"]
    assert updated.brand.tone == DEFAULT_TONE
    memory = tm.get_memory(tenant.id)
    assert memory.get("brand_voice") == "playful"
    assert memory.get("brand:acme")["keywords"] == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_update_rejects_bad_settings_without_changes(tmp_data_dir: Path):
    tm = await _manager(tmp_data_dir)
    tenant = await tm.create({"name": "Acme"})
    with pytest.raises(ValueError):
        await tm.update(tenant.id, {"name": "Renamed", "settings": {"default_type": "podcast"}})
    assert tm.get(tenant.id).name == "Acme"


@pytest.mark.asyncio
async def test_delete_unregisters_and_optionally_purges(tmp_data_dir: Path):
    tm = await _manager(tmp_data_dir)
    kept = await tm.create({"name": "Kept"})
    purged = await tm.create({"name": "Purged"})

    assert await tm.delete(kept.id) is True
    assert tm.get(kept.id) is None
    assert tm.get_memory(kept.id) is None
    assert (tmp_data_dir / kept.id).is_dir()

    assert await tm.delete(purged.id, purge=True) is True
    assert not (tmp_data_dir / purged.id).exists()
    assert json.loads((tmp_data_dir / "tenants.json").read_text(encoding="utf-8")) == []


@pytest.mark.asyncio
async def test_init_reloads_manifest_and_credentials(tmp_data_dir: Path):
    tm = await _manager(tmp_data_dir)
    tenant = await tm.create({"name": "Acme", "platforms": {"wordpress": {"WP_TOKEN": "t"}}})
    await tm.get_memory(tenant.id).set("note", 1, "tester")

    reloaded = await _manager(tmp_data_dir)
    assert reloaded.get(tenant.id).slug == "acme"
    assert reloaded.get_executor(tenant.id).credentials_for("wordpress") == {"WP_TOKEN": "t"}
    assert reloaded.get_memory(tenant.id).get("note") == 1


@pytest.mark.asyncio
async def test_init_is_idempotent(tmp_data_dir: Path):
    tm = await _manager(tmp_data_dir)
    tenant = await tm.create({"name": "Acme"})
    memory = tm.get_memory(tenant.id)
    await tm.init()
    assert len(tm) == 1
    assert tm.get_memory(tenant.id) is memory


@pytest.mark.asyncio
async def test_broken_manifest_means_no_tenants(tmp_data_dir: Path):
    (tmp_data_dir / "tenants.json").write_text("{oops", encoding="utf-8")
    tm = await _manager(tmp_data_dir)
    assert tm.list() == []
    assert tm.default_memory is not None


@pytest.mark.asyncio
async def test_brand_guidelines_include_brand_and_recent_learnings(tmp_data_dir: Path):
    tm = await _manager(tmp_data_dir)
    tenant = await tm.create({
        "name": "Acme Corp",
        "brand": {"voice": "witty", "avoid_words": ["synergy"]},
    })
    memory = tm.get_memory(tenant.id)
    for i in range(12):
        await memory.set(f"feedback:{i}", {"learning": f"rule {i}"}, "brand-manager", ["feedback"])
    await memory.set("metrics:p1", {"views": 1}, "analytics")

    text = tm.get_brand_guidelines(tenant.id)

    assert text.startswith("## Brand Writing Guidelines: Acme Corp\n")
    assert "**Voice:** witty" in text
    assert "**NEVER use these words:** synergy" in text
    assert "rule 11" in text
    assert "metrics:p1" not in text
    # Seeded brand keys count as brand-manager entries, so only the newest ten remain.
    assert "feedback:1:" not in text
    assert text == tm.get_brand_guidelines(tenant.id)
