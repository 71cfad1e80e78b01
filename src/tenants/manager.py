from __future__ import annotations

import copy
import logging
import shutil
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from agents.brand_profile import render_guidelines
from memory.store import MemoryStore
from protocol.errors import StorageError
from utils.io import atomic_write_json, ensure_dir, read_json

from .executor import Executor
from .models import (
    BrandSettings,
    TenantConfig,
    TenantSettings,
    merge_platforms,
    normalize_platforms,
    slugify,
)

logger = logging.getLogger(__name__)

BRAND_AGENT = "brand-manager"
MAX_GUIDELINE_LEARNINGS = 10


def _utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


# -----------------------------
# Tenant Manager
# -----------------------------
class TenantManager:
    """
    Owns every tenant record and the per-tenant resources built from it.

    Layout:
        data_dir/
          tenants.json          # manifest: JSON array of tenant records
          memory/               # default (non-tenant) memory store
          <tenant_id>/memory/   # tenant memory store
          <tenant_id>/output/   # tenant output directory

    The manager is an explicit object: whoever builds agents or a dispatcher
    gets a reference to it. Agents must re-fetch stores and executors from
    here instead of caching them.
    """

    def __init__(self, data_dir: Union[str, Path], *, use_jsonl: bool = False) -> None:
        self.root = Path(data_dir)
        self.manifest_path = self.root / "tenants.json"
        self.use_jsonl = use_jsonl
        self._tenants: Dict[str, TenantConfig] = {}
        self._memories: Dict[str, MemoryStore] = {}
        self._executors: Dict[str, Executor] = {}
        self._default_memory: Optional[MemoryStore] = None
        self._initialized = False

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "TenantManager":
        data_cfg = cfg.get("data", {}) or {}
        mem_cfg = cfg.get("memory", {}) or {}
        return cls(
            data_cfg.get("root", "data"),
            use_jsonl=bool(mem_cfg.get("use_jsonl", False)),
        )

    # ----------------- lifecycle -----------------
    async def init(self) -> None:
        """Load the manifest and provision every tenant. Idempotent."""
        if self._initialized:
            return
        try:
            ensure_dir(self.root)
        except OSError as e:
            raise StorageError(f"cannot create data dir {self.root}: {e}", e) from e

        self._default_memory = MemoryStore(self.root / "memory", use_jsonl=self.use_jsonl)
        await self._default_memory.init()

        for tenant in self._load_manifest():
            self._tenants[tenant.id] = tenant
            await self._provision(tenant)
        self._initialized = True
        logger.info("Tenants: %s loaded from %s", len(self._tenants), self.root)

    def _load_manifest(self) -> List[TenantConfig]:
        if not self.manifest_path.exists():
            return []
        try:
            raw = read_json(self.manifest_path)
            if not isinstance(raw, list):
                raise ValueError("manifest is not a JSON array")
            return [TenantConfig.from_dict(item) for item in raw]
        except (OSError, ValueError, KeyError, TypeError) as e:
            # A broken manifest means "no tenants yet", not a fatal error.
            logger.warning("Could not load tenant manifest %s: %s", self.manifest_path, e)
            return []

    def _save_manifest(self) -> None:
        try:
            atomic_write_json(self.manifest_path, [t.to_dict() for t in self._tenants.values()])
        except OSError as e:
            raise StorageError(f"failed to write {self.manifest_path}: {e}", e) from e

    # ----------------- provisioning -----------------
    def _tenant_dir(self, tenant_id: str) -> Path:
        return self.root / tenant_id

    async def _provision(self, tenant: TenantConfig) -> None:
        """Open the tenant's memory store, build its executor, create its output dir."""
        memory = MemoryStore(self._tenant_dir(tenant.id) / "memory", use_jsonl=self.use_jsonl)
        await memory.init()
        self._memories[tenant.id] = memory
        self._provision_executor(tenant)
        try:
            ensure_dir(self._tenant_dir(tenant.id) / "output")
        except OSError as e:
            raise StorageError(f"cannot create output dir for {tenant.id}: {e}", e) from e

    def _provision_executor(self, tenant: TenantConfig) -> None:
        self._executors[tenant.id] = Executor.from_platforms(tenant.platforms)

    async def _seed_brand(self, tenant: TenantConfig) -> None:
        """Mirror brand fields into memory so agents can read shared scalars."""
        memory = self._memories[tenant.id]
        brand = tenant.brand
        await memory.set("brand_voice", brand.voice, BRAND_AGENT, ["brand"])
        await memory.set("brand_tone", brand.tone, BRAND_AGENT, ["brand"])
        await memory.set("brand_audience", brand.audience, BRAND_AGENT, ["brand"])
        profile_key = f"brand:{tenant.slug}"
        profile = memory.get(profile_key)
        if not isinstance(profile, dict):
            profile = {}
        profile.update(brand.to_dict())
        profile["name"] = tenant.slug
        await memory.set(profile_key, profile, BRAND_AGENT, ["brand", tenant.slug])

    def _new_id(self) -> str:
        while True:
            tenant_id = f"tenant_{int(time.time() * 1000)}_{uuid.uuid4().hex[:4]}"
            if tenant_id not in self._tenants:
                return tenant_id

    def _unique_slug(self, base: str) -> str:
        base = base or "tenant"
        taken = {t.slug for t in self._tenants.values()}
        slug, n = base, 2
        while slug in taken:
            slug = f"{base}-{n}"
            n += 1
        return slug

    # ----------------- public API -----------------
    async def create(self, config: Mapping[str, Any]) -> TenantConfig:
        """Create a tenant from a partial config; ``name`` is required."""
        name = str(config.get("name") or "").strip()
        if not name:
            raise ValueError("Tenant name is required")

        explicit_slug = str(config.get("slug") or "").strip()
        slug = explicit_slug or self._unique_slug(slugify(name))
        if explicit_slug and self.get_by_slug(explicit_slug) is not None:
            logger.warning("Slug %r is already used by another tenant", explicit_slug)

        now = _utc_iso()
        tenant = TenantConfig(
            id=self._new_id(),
            name=name,
            slug=slug,
            brand=BrandSettings.from_dict(config.get("brand")),
            platforms=normalize_platforms(config.get("platforms")),
            settings=TenantSettings.from_dict(config.get("settings")),
            created_at=now,
            updated_at=now,
        )

        self._tenants[tenant.id] = tenant
        try:
            await self._provision(tenant)
        except StorageError:
            self._tenants.pop(tenant.id, None)
            self._memories.pop(tenant.id, None)
            self._executors.pop(tenant.id, None)
            raise
        self._save_manifest()
        await self._seed_brand(tenant)

        logger.info("Tenant created: %s (%s)", tenant.name, tenant.id)
        return copy.deepcopy(tenant)

    async def update(self, tenant_id: str, updates: Mapping[str, Any]) -> Optional[TenantConfig]:
        """Partially update a tenant; returns None for an unknown id.

        Scalars replace, ``brand`` and ``settings`` merge per field, and
        ``platforms`` replaces credentials per platform, after which only the
        executor is rebuilt. The memory store instance is left untouched.
        """
        tenant = self._tenants.get(tenant_id)
        if tenant is None:
            return None

        # Build everything first so a bad value leaves the record unchanged.
        name = str(updates.get("name") or "").strip() or tenant.name
        slug = str(updates.get("slug") or "").strip() or tenant.slug
        brand = tenant.brand.merged(updates["brand"]) if updates.get("brand") else tenant.brand
        settings = (
            tenant.settings.merged(updates["settings"]) if updates.get("settings") else tenant.settings
        )
        platforms_changed = isinstance(updates.get("platforms"), Mapping)
        platforms = (
            merge_platforms(tenant.platforms, updates["platforms"])
            if platforms_changed
            else tenant.platforms
        )

        brand_changed = brand != tenant.brand or slug != tenant.slug
        tenant.name, tenant.slug = name, slug
        tenant.brand, tenant.settings, tenant.platforms = brand, settings, platforms
        tenant.updated_at = _utc_iso()

        if platforms_changed:
            self._provision_executor(tenant)
        self._save_manifest()
        if brand_changed:
            await self._seed_brand(tenant)

        logger.info("Tenant updated: %s (%s)", tenant.name, tenant.id)
        return copy.deepcopy(tenant)

    async def delete(self, tenant_id: str, *, purge: bool = False) -> bool:
        """Unregister a tenant; ``purge=True`` also removes its data directory."""
        existed = self._tenants.pop(tenant_id, None) is not None
        self._memories.pop(tenant_id, None)
        self._executors.pop(tenant_id, None)
        if not existed:
            return False
        self._save_manifest()
        if purge:
            try:
                shutil.rmtree(self._tenant_dir(tenant_id), ignore_errors=False)
            except FileNotFoundError:
                pass
            except OSError as e:
                raise StorageError(f"failed to purge data for {tenant_id}: {e}", e) from e
        logger.info("Tenant deleted: %s (purge=%s)", tenant_id, purge)
        return True

    def get(self, tenant_id: str) -> Optional[TenantConfig]:
        tenant = self._tenants.get(tenant_id)
        return copy.deepcopy(tenant) if tenant else None

    def get_by_slug(self, slug: str) -> Optional[TenantConfig]:
        for tenant in self._tenants.values():
            if tenant.slug == slug:
                return copy.deepcopy(tenant)
        return None

    def list(self) -> List[TenantConfig]:
        return [copy.deepcopy(t) for t in self._tenants.values()]

    def get_memory(self, tenant_id: str) -> Optional[MemoryStore]:
        return self._memories.get(tenant_id)

    def get_executor(self, tenant_id: str) -> Optional[Executor]:
        return self._executors.get(tenant_id)

    def get_output_dir(self, tenant_id: str) -> Optional[Path]:
        if tenant_id not in self._tenants:
            return None
        return self._tenant_dir(tenant_id) / "output"

    @property
    def default_memory(self) -> Optional[MemoryStore]:
        """Store for work that is not scoped to a tenant (set up by init())."""
        return self._default_memory

    def get_brand_guidelines(self, tenant_id: str) -> str:
        """Guideline text from the tenant's brand plus recent brand-manager memory."""
        tenant = self._tenants.get(tenant_id)
        if tenant is None:
            return ""

        learned: List[tuple] = []
        memory = self._memories.get(tenant_id)
        if memory is not None:
            entries = sorted(memory.by_agent(BRAND_AGENT), key=lambda e: e.updated_at)
            learned = [(e.key, e.value) for e in entries[-MAX_GUIDELINE_LEARNINGS:]]

        return render_guidelines(
            tenant.brand.to_profile(tenant.slug),
            heading=f"## Brand Writing Guidelines: {tenant.name}",
            learned=learned,
            include_social=False,
        )

    def __len__(self) -> int:
        return len(self._tenants)

    def __contains__(self, tenant_id: object) -> bool:
        return tenant_id in self._tenants
