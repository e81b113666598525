"""
src/cfo_agent/orchestrator/node.py

The decision-making step: memory in, one model call, the next assistant message out.

Steps per call:
    1) Load user memory and summarise it (last N actions, known risks).
    2) Build the system instruction (specialists, confidence header, approval policy).
    3) Invoke the model with the full thread history, bounded by a timeout.
    4) Parse the confidence header, falling back to a fixed value when absent.
    5) Append an action summary to memory and write an audit entry, always.
    6) Return the assistant message. The caller appends it to history.

A failed or timed-out model call raises before anything is written, so the
thread is exactly as it was.
"""


import asyncio
from typing import Sequence

import structlog

from cfo_agent.config import AgentSettings
from cfo_agent.memory.ledger import AuditLedger
from cfo_agent.memory.store import MemoryStore
from cfo_agent.orchestrator import prompts
from cfo_agent.orchestrator.confidence import parse_header, strip_header
from cfo_agent.orchestrator.errors import ModelError, ModelTimeout, ModelUnavailable, StoreError
from cfo_agent.orchestrator.llm_openai import ModelClient
from cfo_agent.orchestrator.models import AuditEntry, Message, UserMemory
from cfo_agent.tools.registry import ToolRegistry


logger = structlog.get_logger()


def summarise_action(response: Message, max_chars: int) -> str:
    """Short memory line for a response: narrative without the header, or the tools requested."""

    text = strip_header(response.content)
    if not text and response.tool_calls:
        text = "Requested tools: " + ", ".join(tc.name for tc in response.tool_calls)
    if len(text) > max_chars:
        text = text[:max_chars].rstrip() + "..."

    return text


class OrchestratorNode:

    def __init__(
            self,
            settings: AgentSettings,
            model: ModelClient,
            registry: ToolRegistry,
            memory: MemoryStore,
            ledger: AuditLedger,
    ):

        self.settings = settings
        self.model = model
        self.registry = registry
        self.memory = memory
        self.ledger = ledger

    async def _load_memory(self, user_id: str) -> UserMemory:

        try:
            return await self.memory.load(user_id)
        except StoreError as e:
            logger.warning("User memory unavailable, continuing without it", user_id=user_id, error=str(e))
            return UserMemory(preferences=dict(self.settings.default_preferences))

    async def __call__(self, user_id: str, history: Sequence[Message]) -> Message:

        memory = await self._load_memory(user_id)
        context = prompts.memory_context(memory, self.settings.memory_context_actions)
        system_instruction = prompts.build_system_instruction(context)

        try:
            response = await asyncio.wait_for(
                self.model.invoke(system_instruction, list(history), self.registry.specs()),
                timeout=self.settings.model_timeout_s,
            )
        except asyncio.TimeoutError as e:
            raise ModelTimeout(f"{self.model.name} did not answer within {self.settings.model_timeout_s}s") from e
        except ModelError:
            raise
        except Exception as e:
            raise ModelUnavailable(f"{self.model.name} failed: {e}") from e

        header = parse_header(response.content)
        confidence = header.confidence if header else self.settings.fallback_confidence
        summary = summarise_action(response, self.settings.action_summary_chars)

        try:
            await self.memory.append_action(user_id, summary)
        except StoreError as e:
            logger.warning("Could not append action to memory", user_id=user_id, error=str(e))

        try:
            await self.ledger.record(AuditEntry(
                user_id=user_id,
                step="orchestrate",
                tool=self.model.name,
                input={"messages": len(history), "last": history[-1].content if history else ""},
                output={
                    "content": response.content,
                    "tool_calls": [tc.model_dump() for tc in response.tool_calls],
                },
                confidence=f"{confidence}%",
            ))
        except StoreError as e:
            logger.warning("Could not write audit entry", user_id=user_id, step="orchestrate", error=str(e))

        logger.debug(
            "Orchestrator responded",
            confidence=confidence,
            header_found=header is not None,
            tool_calls=[tc.name for tc in response.tool_calls],
        )

        return response
