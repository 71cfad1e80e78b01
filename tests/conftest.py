"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import sys
from pathlib import Path
from typing import List, Sequence

import pytest

# Ensure src/ is on the import path (for local imports without installing as package)
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from llm.engine import ChatMessage, LLMResponse  # noqa: E402


class FakeLLM:
    """Async chat client that replays scripted replies and records prompts."""

    def __init__(self, *replies: str) -> None:
        self.replies: List[str] = list(replies)
        self.calls: List[List[ChatMessage]] = []

    async def chat(self, messages: Sequence[ChatMessage]) -> LLMResponse:
        self.calls.append(list(messages))
        content = self.replies.pop(0) if self.replies else ""
        return LLMResponse(content=content)


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the root directory of the project."""
    return Path(__file__).resolve().parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Default config.yaml path at the repo root."""
    return project_root / "config.yaml"


@pytest.fixture(scope="function")
def tmp_data_dir(tmp_path: Path) -> Path:
    """Provide a temporary data root for memory stores and tenant manifests."""
    d = tmp_path / "data"
    d.mkdir(parents=True, exist_ok=True)
    return d


@pytest.fixture(scope="function")
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture(scope="function")
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Ensure tests run with a clean environment (no leftover vars)."""
    import os

    for var in list(os.environ):
        if var == "BRANDHIVE_CONFIG" or var.startswith("BRANDHIVE__"):
            monkeypatch.delenv(var, raising=False)
    yield
