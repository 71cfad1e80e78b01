from __future__ import annotations

from pathlib import Path

import pytest

from agents.base import AgentContext, BaseAgent
from agents.dispatcher import AgentDispatcher, create_default_dispatcher
from conftest import FakeLLM
from protocol.message import MessageKind, create_message, task
from tenants.manager import TenantManager


class ExplodingAgent(BaseAgent):
    name = "exploder"
    description = "Raises from every action"

    @classmethod
    def from_context(cls, ctx: AgentContext) -> "ExplodingAgent":
        return cls()

    def actions(self):
        return {"boom": self.boom}

    async def boom(self, message, data):
        raise RuntimeError("kaboom")


async def _dispatcher(root: Path, llm=None) -> AgentDispatcher:
    tenants = TenantManager(root)
    await tenants.init()
    return create_default_dispatcher(tenants, llm)


@pytest.mark.asyncio
async def test_capabilities_lists_registered_agents(tmp_data_dir: Path):
    dispatcher = await _dispatcher(tmp_data_dir)
    names = [a["name"] for a in dispatcher.capabilities()]
    assert names == ["analytics", "brand-manager"]


@pytest.mark.asyncio
@pytest.mark.parametrize("agent", ["analytics", "brand-manager"])
async def test_unknown_action_for_any_agent(tmp_data_dir: Path, agent: str):
    dispatcher = await _dispatcher(tmp_data_dir)
    msg = task("cli", agent, "unknown-action")
    reply = await dispatcher.dispatch(msg)

    assert reply.kind is MessageKind.ERROR
    assert reply.error.code == "UNKNOWN_ACTION"
    assert reply.error.retryable is False
    assert reply.correlation_id == msg.id


@pytest.mark.asyncio
async def test_unknown_agent_and_tenant_become_error_envelopes(tmp_data_dir: Path):
    dispatcher = await _dispatcher(tmp_data_dir)

    msg = task("cli", "publisher", "publish")
    reply = await dispatcher.dispatch(msg)
    assert reply.error.code == "UNKNOWN_AGENT"
    assert reply.correlation_id == msg.id

    msg = task("cli", "analytics", "report")
    reply = await dispatcher.dispatch(msg, tenant_id="tenant_missing")
    assert reply.error.code == "UNKNOWN_TENANT"
    assert reply.correlation_id == msg.id


@pytest.mark.asyncio
async def test_non_task_messages_are_rejected(tmp_data_dir: Path):
    dispatcher = await _dispatcher(tmp_data_dir)
    msg = create_message("cli", "analytics", "result", {"output": 1})
    reply = await dispatcher.dispatch(msg)
    assert reply.error.code == "INVALID_MESSAGE"


@pytest.mark.asyncio
async def test_handler_exceptions_become_agent_failure(tmp_data_dir: Path):
    dispatcher = await _dispatcher(tmp_data_dir)
    dispatcher.register(ExplodingAgent)
    msg = task("cli", "exploder", "boom")
    reply = await dispatcher.dispatch(msg)

    assert reply.error.code == "AGENT_FAILURE"
    assert reply.error.retryable is True
    assert "kaboom" in reply.error.message
    assert reply.correlation_id == msg.id


@pytest.mark.asyncio
async def test_tenant_scope_isolates_memory(tmp_data_dir: Path):
    dispatcher = await _dispatcher(tmp_data_dir)
    acme = await dispatcher.tenants.create({"name": "Acme"})
    globex = await dispatcher.tenants.create({"name": "Globex"})

    reply = await dispatcher.dispatch(
        task("cli", "analytics", "track", {"content_id": "p1", "platform": "twitter", "metrics": {"views": 3}}),
        tenant_id=acme.id,
    )
    assert reply.kind is MessageKind.RESULT

    assert len(dispatcher.tenants.get_memory(acme.id).search("metrics:")) == 1
    assert dispatcher.tenants.get_memory(globex.id).search("metrics:") == []
    assert dispatcher.tenants.default_memory.search("metrics:") == []


@pytest.mark.asyncio
async def test_tenant_brand_name_is_slug(tmp_data_dir: Path):
    dispatcher = await _dispatcher(tmp_data_dir)
    acme = await dispatcher.tenants.create({"name": "Acme", "brand": {"voice": "witty"}})

    reply = await dispatcher.dispatch(task("cli", "brand-manager", "get-brand-context"), tenant_id=acme.id)

    profile = reply.result.output["profile"]
    assert profile["name"] == "acme"
    assert profile["voice"] == "witty"


@pytest.mark.asyncio
async def test_learning_shows_up_in_tenant_guidelines(tmp_data_dir: Path):
    llm = FakeLLM('{"learning": "Lead with a number", "applies_to": "social"}')
    dispatcher = await _dispatcher(tmp_data_dir, llm)
    acme = await dispatcher.tenants.create({"name": "Acme"})

    await dispatcher.dispatch(
        task("cli", "brand-manager", "learn-from-feedback", {"feedback": "Needs more numbers"}),
        tenant_id=acme.id,
    )

    text = dispatcher.tenants.get_brand_guidelines(acme.id)
    assert "Lead with a number" in text


@pytest.mark.asyncio
async def test_history_records_requests_and_answers(tmp_data_dir: Path):
    dispatcher = await _dispatcher(tmp_data_dir)
    msg = task("cli", "analytics", "insights")
    reply = await dispatcher.dispatch(msg)

    log = dispatcher.history()
    assert [row["id"] for row in log] == [msg.id, reply.id]
    assert log[1]["correlation_id"] == msg.id
    assert dispatcher.history(limit=0) == []


@pytest.mark.asyncio
async def test_dispatch_raw_parses_wire_envelopes(tmp_data_dir: Path):
    dispatcher = await _dispatcher(tmp_data_dir)
    msg = task("cli", "analytics", "insights")

    reply = await dispatcher.dispatch_raw(msg.to_dict())

    assert reply.kind is MessageKind.RESULT
    assert reply.correlation_id == msg.id


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "data,correlation_id",
    [
        ({"id": "msg_bad", "from": "cli", "to": "analytics", "kind": "task", "payload": {"action": ""}}, "msg_bad"),
        ({"id": "msg_list", "from": "cli", "to": "analytics", "kind": "task",
          "payload": {"action": "report", "input": [1, 2]}}, "msg_list"),
        ({"from": "cli", "kind": "task"}, None),
        (["not", "an", "envelope"], None),
    ],
)
async def test_dispatch_raw_answers_malformed_input(tmp_data_dir: Path, data, correlation_id):
    dispatcher = await _dispatcher(tmp_data_dir)

    reply = await dispatcher.dispatch_raw(data)

    assert reply.kind is MessageKind.ERROR
    assert reply.error.code == "INVALID_MESSAGE"
    assert reply.error.retryable is False
    assert reply.correlation_id == correlation_id
    assert dispatcher.history()[-1]["id"] == reply.id


@pytest.mark.asyncio
async def test_non_object_task_input_answers_invalid_input(tmp_data_dir: Path):
    dispatcher = await _dispatcher(tmp_data_dir)
    msg = create_message("cli", "analytics", "task", {"action": "report", "input": ["days", 7]})

    reply = await dispatcher.dispatch(msg)

    assert reply.error.code == "INVALID_INPUT"
    assert reply.correlation_id == msg.id
