"""
Agent Dispatcher
================

Resolves the addressed agent and the tenant for every task and hands the
agent freshly fetched collaborators from the tenant registry. Whatever goes
wrong on the way is answered as a correlated ``error`` envelope; nothing
escapes ``dispatch()``.
"""
from __future__ import annotations

import logging
from collections import deque
from typing import TYPE_CHECKING, Any, Callable, Deque, Dict, List, Mapping, Optional, Type

from protocol.errors import ProtocolError, StorageError
from protocol.message import ErrorPayload, Message, MessageKind, create_message, message_from_dict

from .analytics import AnalyticsAgent
from .base import AgentContext, BaseAgent
from .brand_manager import BrandManagerAgent

if TYPE_CHECKING:
    from llm.engine import LLMClient
    from tenants.manager import TenantManager

logger = logging.getLogger(__name__)

AgentFactory = Callable[[AgentContext], BaseAgent]


class AgentDispatcher:
    """Routes task messages to agents by name.

    Owned explicitly by whoever builds it (the HTTP app, a CLI, a test);
    there is no module-level instance.
    """

    def __init__(self, tenants: "TenantManager", llm: Optional["LLMClient"] = None) -> None:
        self.tenants = tenants
        self.llm = llm
        self._agents: Dict[str, Type[BaseAgent]] = {}
        self._factories: Dict[str, AgentFactory] = {}
        self._message_log: Deque[Dict[str, Any]] = deque(maxlen=1000)

    def register(self, agent_cls: Type[BaseAgent], factory: Optional[AgentFactory] = None) -> None:
        """Register an agent class; ``factory`` defaults to ``agent_cls.from_context``."""
        self._agents[agent_cls.name] = agent_cls
        self._factories[agent_cls.name] = factory or agent_cls.from_context
        logger.info("Agent '%s' registered", agent_cls.name)

    @property
    def agent_names(self) -> List[str]:
        return sorted(self._agents)

    def capabilities(self) -> List[Dict[str, Any]]:
        return [self._agents[name].describe() for name in self.agent_names]

    def history(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Most recent routed envelopes, oldest first."""
        if limit <= 0:
            return []
        return list(self._message_log)[-limit:]

    # ----------------- dispatch -----------------
    def _context(self, tenant_id: Optional[str]) -> AgentContext:
        if tenant_id is None:
            memory = self.tenants.default_memory
            if memory is None:
                raise StorageError("tenant registry is not initialized")
            return AgentContext(memory=memory, llm=self.llm)

        tenant = self.tenants.get(tenant_id)
        memory = self.tenants.get_memory(tenant_id)
        if tenant is None or memory is None:
            raise ProtocolError(f"Unknown tenant: {tenant_id}", "UNKNOWN_TENANT")
        return AgentContext(
            memory=memory,
            llm=self.llm,
            tenant_id=tenant_id,
            brand_name=tenant.slug,
            executor=self.tenants.get_executor(tenant_id),
            output_dir=self.tenants.get_output_dir(tenant_id),
        )

    async def dispatch(self, message: Message, tenant_id: Optional[str] = None) -> Message:
        """Deliver ``message`` to its recipient and return the agent's answer."""
        self._log(message, tenant_id)
        try:
            if message.kind is not MessageKind.TASK:
                raise ProtocolError(f"Only task messages can be dispatched, got {message.kind.value}")
            factory = self._factories.get(message.recipient)
            if factory is None:
                raise ProtocolError(f"Unknown agent: {message.recipient}", "UNKNOWN_AGENT")
            agent = factory(self._context(tenant_id))
            answer = await agent.handle(message)
        except (ProtocolError, StorageError) as e:
            logger.warning("Dispatch to '%s' failed: %s", message.recipient, e.detail)
            answer = message.fail(e.error_code, e.detail, e.retryable, sender=message.recipient)
        except Exception as e:
            logger.exception("Agent '%s' raised while handling %s", message.recipient, message.id)
            answer = message.fail("AGENT_FAILURE", str(e) or type(e).__name__, True, sender=message.recipient)
        self._log(answer, tenant_id)
        return answer

    async def dispatch_raw(self, data: Any, tenant_id: Optional[str] = None) -> Message:
        """Parse a wire envelope and dispatch it.

        Malformed input is answered with an INVALID_MESSAGE error envelope,
        correlated to the incoming ``id`` when one was given.
        """
        try:
            message = message_from_dict(data)
        except ProtocolError as e:
            logger.warning("Rejected malformed envelope: %s", e.detail)
            fields = data if isinstance(data, Mapping) else {}
            answer = create_message(
                str(fields.get("to") or "dispatcher"),
                str(fields.get("from") or "unknown"),
                MessageKind.ERROR,
                ErrorPayload(code=e.error_code, message=e.detail, retryable=e.retryable),
                correlation_id=str(fields["id"]) if fields.get("id") else None,
            )
            self._log(answer, tenant_id)
            return answer
        return await self.dispatch(message, tenant_id)

    def _log(self, message: Message, tenant_id: Optional[str]) -> None:
        self._message_log.append({
            "id": message.id,
            "from": message.sender,
            "to": message.recipient,
            "kind": message.kind.value,
            "correlation_id": message.correlation_id,
            "tenant_id": tenant_id,
            "created_at": message.created_at,
        })


def create_default_dispatcher(tenants: "TenantManager", llm: Optional["LLMClient"] = None) -> AgentDispatcher:
    """Dispatcher with the built-in brand-manager and analytics agents."""
    dispatcher = AgentDispatcher(tenants, llm)
    dispatcher.register(BrandManagerAgent)
    dispatcher.register(AnalyticsAgent)
    return dispatcher
