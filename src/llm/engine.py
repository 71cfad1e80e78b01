from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence, TypedDict

logger = logging.getLogger(__name__)


class ChatMessage(TypedDict):
    role: str       # "system" | "user" | "assistant"
    content: str


@dataclass
class LLMResponse:
    content: str


class LLMClient(Protocol):
    """What agents need from a language model: one async chat call."""

    async def chat(self, messages: Sequence[ChatMessage]) -> LLMResponse:
        ...


@dataclass
class Sampling:
    max_new_tokens: int = 512
    temperature: float = 0.7
    top_p: float = 0.95
    top_k: int = 50
    repeat_penalty: float = 1.1


class LLMEngine:
    """
    Thin, resilient wrapper around llama.cpp (GGUF) implementing LLMClient.

    Usage:
        engine = LLMEngine.from_config(cfg)
        reply = await engine.chat([{"role": "user", "content": "hi"}])

    Notes:
        - Prefers `create_chat_completion(messages=...)`; falls back to an
          instruct-style prompt with `create_completion` / callable API.
        - Auto-threads and GPU offload detection.
        - Retries without mmap if the filesystem rejects memory-mapping.
        - Blocking inference runs in a worker thread so the event loop stays free.
    """

    def __init__(self, model_path: str, *, sampling: Optional[Sampling] = None, **llama_kwargs: Any) -> None:
        model_file = Path(model_path)
        if not model_file.exists():
            raise FileNotFoundError(f"Model file not found: {model_file}")

        # Import llama lazily to avoid hard dependency for tests
        from llama_cpp import Llama, llama_supports_gpu_offload  # type: ignore

        threads = llama_kwargs.get("n_threads")
        if threads is None or int(threads) <= 0:
            llama_kwargs["n_threads"] = os.cpu_count() or 1

        if llama_kwargs.get("n_gpu_layers") is None:
            try:
                llama_kwargs["n_gpu_layers"] = -1 if llama_supports_gpu_offload() else 0
            except Exception:
                llama_kwargs["n_gpu_layers"] = 0

        llama_kwargs.setdefault("verbose", False)
        llama_kwargs = {k: v for k, v in llama_kwargs.items() if v is not None}

        try:
            self.llm = Llama(model_path=str(model_file), **llama_kwargs)
        except OSError as e:
            if llama_kwargs.get("use_mmap", True):
                logger.warning("mmap load failed, retrying without mmap: %s", e)
                llama_kwargs["use_mmap"] = False
                self.llm = Llama(model_path=str(model_file), **llama_kwargs)
            else:
                logger.exception("Failed to load model: %s", e)
                raise

        self.sampling = sampling or Sampling()
        self.default_stops = ["</s>", "###", "User:", "Assistant:"]

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "LLMEngine":
        """Build from the ``llm`` section of the loaded YAML config."""
        m = (cfg or {}).get("llm", {}) or {}
        model_dir = m.get("model_dir", "models")
        model_path = str(m.get("model_path") or "")
        if model_path and not os.path.isabs(model_path):
            model_path = os.path.join(model_dir, model_path)

        sampling = Sampling(
            max_new_tokens=int(m.get("max_new_tokens", 512)),
            temperature=float(m.get("temperature", 0.7)),
            top_p=float(m.get("top_p", 0.95)),
            top_k=int(m.get("top_k", 50)),
            repeat_penalty=float(m.get("repeat_penalty", 1.1)),
        )
        return cls(
            model_path,
            sampling=sampling,
            n_ctx=m.get("n_ctx", 4096),
            n_threads=m.get("n_threads"),
            n_gpu_layers=m.get("n_gpu_layers"),
            use_mmap=bool(m.get("use_mmap", True)),
        )

    # ----------------------------
    # Public API
    # ----------------------------
    async def chat(self, messages: Sequence[ChatMessage]) -> LLMResponse:
        text = await asyncio.to_thread(self._complete, list(messages))
        return LLMResponse(content=text.strip())

    # ----------------------------
    # Internals
    # ----------------------------
    def _complete(self, messages: List[ChatMessage]) -> str:
        s = self.sampling
        args = dict(
            max_tokens=int(s.max_new_tokens),
            temperature=float(s.temperature),
            top_p=float(s.top_p),
            top_k=int(s.top_k),
            repeat_penalty=float(s.repeat_penalty),
        )
        try:
            if hasattr(self.llm, "create_chat_completion"):
                out = self.llm.create_chat_completion(messages=messages, **args)  # type: ignore[attr-defined]
                return out["choices"][0]["message"]["content"] or ""
            prompt = self._render_chat(messages)
            if hasattr(self.llm, "create_completion"):
                out = self.llm.create_completion(prompt=prompt, stop=self.default_stops, **args)  # type: ignore[attr-defined]
            else:
                out = self.llm(prompt, stop=self.default_stops, **args)  # type: ignore[call-arg]
            return out["choices"][0]["text"]
        except Exception as e:
            logger.exception("LLM completion failed: %s", e)
            raise

    @staticmethod
    def _render_chat(messages: List[ChatMessage]) -> str:
        """Instruct-style prompt for builds without chat completion support."""
        lines: List[str] = []
        system = "\n".join(m["content"] for m in messages if m["role"] == "system").strip()
        if system:
            lines.append("### System\n" + system + "\n")
        for m in messages:
            if m["role"] == "user":
                lines.append("### User\n" + m["content"].strip() + "\n")
            elif m["role"] == "assistant":
                lines.append("### Assistant\n" + m["content"].strip() + "\n")
        lines.append("### Assistant\n")
        return "\n".join(lines)
