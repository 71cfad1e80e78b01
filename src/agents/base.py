"""
Agent Capability Contract
=========================

Every agent is a named, versioned unit with machine-readable capabilities
and one async entry point, ``handle(message) -> message``. The dispatcher
treats agents uniformly by name and never by concrete type.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, ClassVar, Dict, Mapping, Optional, Tuple

from protocol.errors import AgentError, InvalidInputError, UnknownActionError
from protocol.message import Message, MessageKind

if TYPE_CHECKING:
    from llm.engine import LLMClient
    from memory.store import MemoryStore
    from tenants.executor import Executor

logger = logging.getLogger(__name__)

ActionHandler = Callable[[Message, Dict[str, Any]], Awaitable[Any]]


@dataclass(frozen=True)
class Capability:
    """Descriptive schema for one action; not enforced at runtime."""
    name: str
    description: str
    input_schema: Dict[str, str] = field(default_factory=dict)
    output_schema: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": dict(self.input_schema),
            "output_schema": dict(self.output_schema),
        }


@dataclass
class AgentContext:
    """Collaborators handed to an agent when it is built for one request."""
    memory: "MemoryStore"
    llm: Optional["LLMClient"] = None
    tenant_id: Optional[str] = None
    brand_name: str = "default"
    executor: Optional["Executor"] = None
    output_dir: Optional[Path] = None


class BaseAgent(ABC):
    """
    Abstract base class for all agents.

    Contract:
    - Identity lives in class attributes so it can be discovered without
      building an agent
    - ``actions()`` maps task action names to handler coroutines; handlers
      return the result output or raise AgentError
    - Unknown actions are answered with UNKNOWN_ACTION (non-retryable)
    - No shared mutable state; agents share data only through the memory store
    """

    name: ClassVar[str]
    description: ClassVar[str] = ""
    version: ClassVar[str] = "1.0.0"
    capabilities: ClassVar[Tuple[Capability, ...]] = ()

    @classmethod
    def describe(cls) -> Dict[str, Any]:
        return {
            "name": cls.name,
            "description": cls.description,
            "version": cls.version,
            "capabilities": [c.to_dict() for c in cls.capabilities],
        }

    @classmethod
    @abstractmethod
    def from_context(cls, ctx: AgentContext) -> "BaseAgent":
        """Build the agent from per-request collaborators."""
        ...

    @abstractmethod
    def actions(self) -> Dict[str, ActionHandler]:
        ...

    async def handle(self, message: Message) -> Message:
        """Dispatch a task to its action handler and answer with a correlated envelope."""
        if message.kind is not MessageKind.TASK:
            return message.fail(
                "INVALID_MESSAGE",
                f"{self.name} only accepts task messages, got {message.kind.value}",
                sender=self.name,
            )

        task = message.task
        handler = self.actions().get(task.action)
        try:
            if handler is None:
                raise UnknownActionError(task.action)
            if not isinstance(task.input, Mapping):
                raise InvalidInputError(f"{task.action} input must be an object")
            output = await handler(message, dict(task.input))
        except AgentError as e:
            logger.info("Agent '%s' answered %s for action %r", self.name, e.error_code, task.action)
            return message.fail(e.error_code, e.detail, e.retryable, sender=self.name)
        return message.reply(output, sender=self.name)
