"""
Shared fixtures: a scripted stand-in for the language model and a factory that
wires a fully in-memory Agent around it.
"""

from typing import Any, Callable, Dict, List, Optional, Sequence

import pytest

from cfo_agent.config import AgentSettings
from cfo_agent.memory.checkpoint import Checkpointer
from cfo_agent.memory.ledger import AuditLedger
from cfo_agent.memory.store import MemoryStore
from cfo_agent.orchestrator.models import Message, ToolCall
from cfo_agent.orchestrator.router import Agent
from cfo_agent.tools.catalog import build_registry
from cfo_agent.tools.registry import ToolRegistry


HEADER = "[CONFIDENCE: 90% | COMPLETENESS: 100% | ISSUES: None]"


def call(name: str, arguments: Optional[Dict[str, Any]] = None, call_id: str = "call_1") -> ToolCall:
    return ToolCall(id=call_id, name=name, arguments=arguments or {})


def asks(*calls: ToolCall) -> Message:
    return Message.assistant("", list(calls))


def answer(text: str) -> Message:
    return Message.assistant(f"{HEADER} {text}")


class ScriptedModel:
    """
    Replays a script of responses. Items may be a Message, an exception to raise,
    or an async callable taking the history. The last item repeats forever.
    """

    name = "fake-model"

    def __init__(self, script: Sequence[Any]) -> None:
        self.script = list(script)
        self.calls: List[Dict[str, Any]] = []

    async def invoke(self, system_instruction: str, history: Sequence[Message], tools: Sequence[Dict[str, Any]]) -> Message:
        self.calls.append({"system": system_instruction, "history": list(history), "tools": list(tools)})
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            return await item(history)
        return item


@pytest.fixture
def settings() -> AgentSettings:
    return AgentSettings(model_timeout_s=1.0, tool_timeout_s=1.0)


@pytest.fixture
def make_agent(settings: AgentSettings) -> Callable[..., Agent]:
    def _make(model: Any, *, registry: Optional[ToolRegistry] = None, **overrides: Any) -> Agent:
        effective = settings.model_copy(update=overrides) if overrides else settings
        return Agent(
            settings=effective,
            model=model,
            registry=registry or build_registry(effective),
            memory=MemoryStore(default_preferences=effective.default_preferences),
            ledger=AuditLedger(frozen_markers=effective.frozen_tool_markers),
            checkpointer=Checkpointer(),
        )

    return _make
