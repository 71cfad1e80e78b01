"""
Message Envelope Protocol
=========================

Typed request/response envelopes exchanged between agents. An envelope is a
tagged variant: ``kind`` selects exactly one payload type.

    task    -> TaskPayload(action, input)
    result  -> ResultPayload(success=True, output)
    error   -> ErrorPayload(code, message, retryable)

Every result or error carries the id of the task it answers as its
``correlation_id``. Envelopes are immutable once created.
"""
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Type, TypeVar, Union

from .errors import ProtocolError


class MessageKind(str, Enum):
    TASK = "task"
    RESULT = "result"
    ERROR = "error"


@dataclass(frozen=True)
class TaskPayload:
    action: str
    input: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.input) if isinstance(self.input, Mapping) else self.input
        return {"action": self.action, "input": data}


@dataclass(frozen=True)
class ResultPayload:
    output: Any = None
    success: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "output": self.output}


@dataclass(frozen=True)
class ErrorPayload:
    code: str
    message: str
    retryable: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "retryable": self.retryable}


Payload = Union[TaskPayload, ResultPayload, ErrorPayload]
P = TypeVar("P", TaskPayload, ResultPayload, ErrorPayload)

_PAYLOAD_TYPES: Dict[MessageKind, Type[Any]] = {
    MessageKind.TASK: TaskPayload,
    MessageKind.RESULT: ResultPayload,
    MessageKind.ERROR: ErrorPayload,
}


def _new_id() -> str:
    return f"msg_{uuid.uuid4().hex}"


@dataclass(frozen=True)
class Message:
    """
    Envelope for inter-agent communication.

    Immutable after creation; agents answer with a new envelope built via
    :meth:`reply` or :meth:`fail`.
    """
    sender: str
    recipient: str
    kind: MessageKind
    payload: Payload
    id: str = field(default_factory=_new_id)
    correlation_id: Optional[str] = None
    created_at: float = field(default_factory=time.time)

    # ----------------- typed payload access -----------------
    def _expect(self, kind: MessageKind, cls: Type[P]) -> P:
        if self.kind is not kind or not isinstance(self.payload, cls):
            raise ProtocolError(f"Expected a {kind.value} message, got {self.kind.value}")
        return self.payload

    @property
    def task(self) -> TaskPayload:
        return self._expect(MessageKind.TASK, TaskPayload)

    @property
    def result(self) -> ResultPayload:
        return self._expect(MessageKind.RESULT, ResultPayload)

    @property
    def error(self) -> ErrorPayload:
        return self._expect(MessageKind.ERROR, ErrorPayload)

    # ----------------- correlated answers -----------------
    def reply(self, output: Any, *, sender: Optional[str] = None) -> "Message":
        """Build the ``result`` answering this message."""
        return create_message(
            sender or self.recipient,
            self.sender,
            MessageKind.RESULT,
            ResultPayload(output=output),
            correlation_id=self.id,
        )

    def fail(
        self,
        code: str,
        message: str,
        retryable: bool = False,
        *,
        sender: Optional[str] = None,
    ) -> "Message":
        """Build the ``error`` answering this message."""
        return create_message(
            sender or self.recipient,
            self.sender,
            MessageKind.ERROR,
            ErrorPayload(code=code, message=message, retryable=retryable),
            correlation_id=self.id,
        )

    # ----------------- wire shape -----------------
    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "from": self.sender,
            "to": self.recipient,
            "kind": self.kind.value,
            "payload": self.payload.to_dict(),
            "correlation_id": self.correlation_id,
            "created_at": self.created_at,
        }


def _coerce_payload(kind: MessageKind, payload: Union[Payload, Mapping[str, Any]]) -> Payload:
    if not isinstance(payload, Mapping):
        return payload
    if kind is MessageKind.TASK:
        raw_input = payload.get("input") or {}
        if isinstance(raw_input, Mapping):
            raw_input = dict(raw_input)
        return TaskPayload(action=str(payload.get("action", "")), input=raw_input)
    if kind is MessageKind.RESULT:
        return ResultPayload(output=payload.get("output"), success=bool(payload.get("success", True)))
    return ErrorPayload(
        code=str(payload.get("code", "")),
        message=str(payload.get("message", "")),
        retryable=bool(payload.get("retryable", False)),
    )


def create_message(
    sender: str,
    recipient: str,
    kind: Union[MessageKind, str],
    payload: Union[Payload, Mapping[str, Any]],
    correlation_id: Optional[str] = None,
) -> Message:
    """Create an envelope with a freshly generated id.

    Plain mappings are coerced into the payload type selected by ``kind``;
    payload objects are taken as given.
    """
    kind = MessageKind(kind)
    return Message(
        sender=sender,
        recipient=recipient,
        kind=kind,
        payload=_coerce_payload(kind, payload),
        correlation_id=correlation_id,
    )


def task(
    sender: str,
    recipient: str,
    action: str,
    input: Optional[Mapping[str, Any]] = None,
) -> Message:
    """Shorthand for a ``task`` envelope."""
    return create_message(
        sender, recipient, MessageKind.TASK, TaskPayload(action=action, input=dict(input or {}))
    )


def message_from_dict(data: Any) -> Message:
    """Rebuild an envelope from its wire shape.

    Raises ProtocolError when the data is not a well-formed envelope.
    """
    if not isinstance(data, Mapping):
        raise ProtocolError("Message must be an object")
    missing = [k for k in ("from", "to", "kind", "payload") if k not in data]
    if missing:
        raise ProtocolError(f"Message is missing fields: {', '.join(missing)}")
    try:
        kind = MessageKind(data["kind"])
    except ValueError as e:
        raise ProtocolError(f"Unknown message kind: {data['kind']!r}") from e
    if not isinstance(data["payload"], Mapping):
        raise ProtocolError("Message payload must be an object")
    if kind is MessageKind.TASK and not isinstance(data["payload"].get("input") or {}, Mapping):
        raise ProtocolError("Task input must be an object")

    payload = _coerce_payload(kind, data["payload"])
    if isinstance(payload, TaskPayload) and not payload.action:
        raise ProtocolError("Task payload requires an action")

    fields: Dict[str, Any] = {
        "sender": str(data["from"]),
        "recipient": str(data["to"]),
        "kind": kind,
        "payload": payload,
        "correlation_id": data.get("correlation_id"),
    }
    if data.get("id"):
        fields["id"] = str(data["id"])
    if data.get("created_at") is not None:
        try:
            fields["created_at"] = float(data["created_at"])
        except (TypeError, ValueError) as e:
            raise ProtocolError(f"Invalid created_at: {data['created_at']!r}") from e
    return Message(**fields)
