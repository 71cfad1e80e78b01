from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from agents.brand_profile import (
    DEFAULT_AUDIENCE,
    DEFAULT_INDUSTRY,
    DEFAULT_TONE,
    DEFAULT_VOICE,
    BrandProfile,
)
from utils.merge import MergeFn, apply_policy, replace, union_unique

CONTENT_TYPES = ("blog+social", "blog", "social")
DEFAULT_PUBLISH_PLATFORMS = ("local-file",)

Platforms = Dict[str, Dict[str, str]]


def slugify(name: str) -> str:
    """Lower-case and collapse non-alphanumeric runs into a single '-'."""
    return re.sub(r"[^a-z0-9]+", "-", (name or "").lower()).strip("-")


def _str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple, set)):
        value = [value]
    return union_unique([], [str(v) for v in value])


# -----------------------------
# Brand
# -----------------------------
@dataclass
class BrandSettings:
    """Per-tenant brand fields; defaults mirror the brand-manager profile."""
    voice: str = DEFAULT_VOICE
    tone: str = DEFAULT_TONE
    audience: str = DEFAULT_AUDIENCE
    industry: str = DEFAULT_INDUSTRY
    keywords: List[str] = field(default_factory=list)
    avoid_words: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "voice": self.voice,
            "tone": self.tone,
            "audience": self.audience,
            "industry": self.industry,
            "keywords": list(self.keywords),
            "avoid_words": list(self.avoid_words),
        }

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "BrandSettings":
        data = data or {}
        # Empty strings fall back to the defaults, like missing keys.
        return cls(
            voice=str(data.get("voice") or DEFAULT_VOICE),
            tone=str(data.get("tone") or DEFAULT_TONE),
            audience=str(data.get("audience") or DEFAULT_AUDIENCE),
            industry=str(data.get("industry") or DEFAULT_INDUSTRY),
            keywords=_str_list(data.get("keywords")),
            avoid_words=_str_list(data.get("avoid_words")),
        )

    def merged(self, updates: Mapping[str, Any]) -> "BrandSettings":
        cleaned = dict(updates)
        for key in ("keywords", "avoid_words"):
            if cleaned.get(key) is not None:
                cleaned[key] = _str_list(cleaned[key])
        return BrandSettings.from_dict(apply_policy(self.to_dict(), cleaned, BRAND_MERGE_POLICY))

    def to_profile(self, name: str) -> BrandProfile:
        return BrandProfile.from_dict(self.to_dict(), name=name)


BRAND_MERGE_POLICY: Dict[str, MergeFn] = {
    "voice": replace,
    "tone": replace,
    "audience": replace,
    "industry": replace,
    "keywords": union_unique,
    "avoid_words": union_unique,
}


# -----------------------------
# Settings
# -----------------------------
@dataclass
class TenantSettings:
    default_type: str = "blog+social"
    default_model: Optional[str] = None
    auto_publish: bool = False
    platforms: List[str] = field(default_factory=lambda: list(DEFAULT_PUBLISH_PLATFORMS))

    def __post_init__(self) -> None:
        if self.default_type not in CONTENT_TYPES:
            raise ValueError(
                f"default_type must be one of {', '.join(CONTENT_TYPES)}, got {self.default_type!r}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "default_type": self.default_type,
            "default_model": self.default_model,
            "auto_publish": self.auto_publish,
            "platforms": list(self.platforms),
        }

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "TenantSettings":
        data = data or {}
        platforms = data.get("platforms")
        return cls(
            default_type=str(data.get("default_type") or "blog+social"),
            default_model=data.get("default_model") or None,
            auto_publish=bool(data.get("auto_publish", False)),
            platforms=_str_list(platforms) if platforms else list(DEFAULT_PUBLISH_PLATFORMS),
        )

    def merged(self, updates: Mapping[str, Any]) -> "TenantSettings":
        return TenantSettings.from_dict(apply_policy(self.to_dict(), updates, SETTINGS_MERGE_POLICY))


SETTINGS_MERGE_POLICY: Dict[str, MergeFn] = {
    "default_type": replace,
    "default_model": replace,
    "auto_publish": replace,
    "platforms": replace,
}


# -----------------------------
# Platform credentials
# -----------------------------
def normalize_platforms(raw: Optional[Mapping[str, Any]]) -> Platforms:
    """Coerce ``{platform: {key: value}}`` into string maps; drops non-mapping entries."""
    out: Platforms = {}
    for platform, creds in (raw or {}).items():
        if not isinstance(creds, Mapping):
            continue
        out[str(platform)] = {str(k): str(v) for k, v in creds.items() if v is not None}
    return out


def merge_platforms(current: Platforms, updates: Mapping[str, Any]) -> Platforms:
    """Replace credentials per platform name; a ``None`` value removes the platform."""
    out = {p: dict(c) for p, c in current.items()}
    for platform, creds in updates.items():
        if creds is None:
            out.pop(str(platform), None)
        elif isinstance(creds, Mapping):
            out.update(normalize_platforms({platform: creds}))
    return out


# -----------------------------
# Tenant record
# -----------------------------
@dataclass
class TenantConfig:
    id: str
    name: str
    slug: str
    brand: BrandSettings = field(default_factory=BrandSettings)
    platforms: Platforms = field(default_factory=dict)
    settings: TenantSettings = field(default_factory=TenantSettings)
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "brand": self.brand.to_dict(),
            "platforms": {p: dict(c) for p, c in self.platforms.items()},
            "settings": self.settings.to_dict(),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TenantConfig":
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            slug=str(data.get("slug") or slugify(str(data["name"]))),
            brand=BrandSettings.from_dict(data.get("brand")),
            platforms=normalize_platforms(data.get("platforms")),
            settings=TenantSettings.from_dict(data.get("settings")),
            created_at=str(data.get("created_at", "")),
            updated_at=str(data.get("updated_at", "")),
        )
