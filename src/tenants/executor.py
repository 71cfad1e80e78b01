"""Credential-scoped executor handed to publishing agents."""
from __future__ import annotations

from typing import Dict, List, Mapping, Optional


class Executor:
    """Holds one tenant's outbound platform credentials.

    Credentials are kept per platform and also flattened into a single
    key space (later platforms win on key collisions) for integrations that
    look keys up directly, e.g. ``get_credential("WORDPRESS_TOKEN")``.
    """

    def __init__(self) -> None:
        self._credentials: Dict[str, str] = {}
        self._platforms: Dict[str, Dict[str, str]] = {}

    @classmethod
    def from_platforms(cls, platforms: Mapping[str, Mapping[str, str]]) -> "Executor":
        exe = cls()
        for platform, creds in platforms.items():
            for key, value in creds.items():
                exe.set_credential(key, value, platform=platform)
        return exe

    def set_credential(self, key: str, value: str, *, platform: Optional[str] = None) -> None:
        self._credentials[key] = value
        if platform:
            self._platforms.setdefault(platform, {})[key] = value

    def get_credential(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._credentials.get(key, default)

    def credentials_for(self, platform: str) -> Dict[str, str]:
        return dict(self._platforms.get(platform, {}))

    def has_credentials(self, platform: str) -> bool:
        return bool(self._platforms.get(platform))

    @property
    def platforms(self) -> List[str]:
        return sorted(self._platforms)

    def redacted(self) -> Dict[str, Dict[str, str]]:
        """Platform -> key -> '***', safe for logs and API responses."""
        return {p: {k: "***" for k in creds} for p, creds in sorted(self._platforms.items())}

    def __repr__(self) -> str:
        return f"Executor(platforms={self.platforms})"
