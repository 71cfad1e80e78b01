from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Mapping, Sequence

from utils.merge import MergeFn, append_capped, apply_policy, merge_keys, replace, union_unique

MAX_EXAMPLES = 10
MAX_LEARNINGS = 20
EXAMPLE_PREVIEW_CHARS = 200

DEFAULT_VOICE = "professional yet approachable"
DEFAULT_TONE = "authoritative but friendly"
DEFAULT_AUDIENCE = "general"
DEFAULT_INDUSTRY = "technology"
DEFAULT_SOCIAL_STYLE: Dict[str, str] = {
    "twitter": "engaging threads with hooks and data",
    "linkedin": "thought leadership with insights",
    "instagram": "visual-friendly with emojis",
}


@dataclass
class BrandProfile:
    """
    Brand voice and style as maintained by the brand-manager agent.

    Fields:
        voice / tone / audience / industry: free-text writing guidance.
        keywords: words to work in when relevant (union on merge).
        avoid_words: words never to use (union on merge).
        examples: liked content snippets (append, keep last 10).
        social_style: per-network style notes (key merge).
        learnings: rules distilled from feedback (append, keep last 20).
    """
    name: str = "default"
    voice: str = DEFAULT_VOICE
    tone: str = DEFAULT_TONE
    audience: str = DEFAULT_AUDIENCE
    industry: str = DEFAULT_INDUSTRY
    keywords: List[str] = field(default_factory=list)
    avoid_words: List[str] = field(default_factory=list)
    examples: List[str] = field(default_factory=list)
    social_style: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_SOCIAL_STYLE))
    learnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None, *, name: str | None = None) -> "BrandProfile":
        """Build a profile from stored data, filling unknown or missing fields with defaults."""
        values = _coerce(data or {})
        if name is not None:
            values.setdefault("name", name)
        profile = cls(**values)
        profile.social_style = merge_keys(DEFAULT_SOCIAL_STYLE, profile.social_style)
        return profile

    def merged(self, updates: Mapping[str, Any]) -> "BrandProfile":
        return BrandProfile.from_dict(apply_policy(self.to_dict(), _coerce(updates), PROFILE_MERGE_POLICY))


_LIST_FIELDS = ("keywords", "avoid_words", "examples", "learnings")
_NETWORK_LABELS = {"twitter": "Twitter", "linkedin": "LinkedIn", "instagram": "Instagram"}


def _coerce(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Keep known fields and repair obvious shape mistakes in user input."""
    known = {f.name for f in fields(BrandProfile)}
    out: Dict[str, Any] = {}
    for key, value in data.items():
        if key not in known or value is None:
            continue
        if key in _LIST_FIELDS:
            if not isinstance(value, (list, tuple, set)):
                value = [value]
            value = [str(v) for v in value]
        elif key == "social_style":
            if not isinstance(value, Mapping):
                continue
            value = {str(k): str(v) for k, v in value.items()}
        else:
            value = str(value)
        out[key] = value
    return out


PROFILE_MERGE_POLICY: Dict[str, MergeFn] = {
    "name": replace,
    "voice": replace,
    "tone": replace,
    "audience": replace,
    "industry": replace,
    "keywords": union_unique,
    "avoid_words": union_unique,
    "examples": append_capped(MAX_EXAMPLES),
    "social_style": merge_keys,
    "learnings": append_capped(MAX_LEARNINGS),
}


def _format_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, sort_keys=True)


def render_guidelines(
    profile: BrandProfile,
    *,
    heading: str = "## Brand Writing Guidelines",
    learned: Sequence[tuple[str, Any]] = (),
    include_social: bool = True,
) -> str:
    """Render a deterministic guideline document for prompts.

    ``learned`` is an ordered list of (key, value) pairs pulled from memory
    and listed under "Learned preferences".
    """
    lines: List[str] = [heading, ""]
    lines.append(f"**Voice:** {profile.voice}")
    lines.append(f"**Tone:** {profile.tone}")
    lines.append(f"**Target Audience:** {profile.audience}")
    lines.append(f"**Industry:** {profile.industry}")

    if profile.keywords:
        lines.append(f"**Include these keywords when relevant:** {', '.join(profile.keywords)}")
    if profile.avoid_words:
        lines.append(f"**NEVER use these words:** {', '.join(profile.avoid_words)}")

    if profile.examples:
        lines += ["", "**Content examples the brand likes:**"]
        for i, example in enumerate(profile.examples, 1):
            preview = example[:EXAMPLE_PREVIEW_CHARS]
            suffix = "..." if len(example) > EXAMPLE_PREVIEW_CHARS else ""
            lines.append(f'{i}. "{preview}{suffix}"')

    if profile.learnings or learned:
        lines += ["", "**Learned preferences (from past feedback):**"]
        lines += [f"- {item}" for item in profile.learnings]
        lines += [f"- {key}: {_format_value(value)}" for key, value in learned]

    if include_social:
        lines += ["", "**Social Media Style:**"]
        for network in sorted(profile.social_style):
            label = _NETWORK_LABELS.get(network, network.capitalize())
            lines.append(f"- {label}: {profile.social_style[network]}")

    return "\n".join(lines) + "\n"
