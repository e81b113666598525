"""
src/cfo_agent/orchestrator/executor.py

Runs the tool calls of one assistant message and turns each outcome into a
tool_result message tagged with the originating call id.

- Schema failures never reach the tool; the SchemaError text becomes the result.
- Declined calls are not run; a rejection note becomes the result.
- Calls run concurrently but results come back in request order, all at once.
"""


import asyncio
from typing import AbstractSet, List, Sequence

import structlog

from cfo_agent.config import AgentSettings
from cfo_agent.memory.ledger import AuditLedger
from cfo_agent.memory.store import MemoryStore
from cfo_agent.orchestrator.errors import SchemaError, StoreError
from cfo_agent.orchestrator.models import AuditEntry, Message, ToolCall, ToolResult
from cfo_agent.tools.registry import ToolRegistry


logger = structlog.get_logger()

DECLINED_NOTE = "Declined by a human reviewer. The tool was not run; adjust the plan without it."


class ToolExecutionNode:

    def __init__(self, settings: AgentSettings, registry: ToolRegistry, memory: MemoryStore, ledger: AuditLedger):

        self.settings = settings
        self.registry = registry
        self.memory = memory
        self.ledger = ledger

    async def _run_one(self, user_id: str, call: ToolCall, declined: bool) -> ToolResult:

        if declined:
            result = ToolResult(name=call.name, call_id=call.id, ok=False, error=DECLINED_NOTE, error_kind="declined")
            await self._audit(user_id, "approval_declined", call, result)
            return result

        try:
            self.registry.validate(call.name, call.arguments)
        except SchemaError as e:
            result = ToolResult(name=call.name, call_id=call.id, ok=False, error=str(e), error_kind="schema")
        else:
            result = await self.registry.execute(call.name, call.arguments, call_id=call.id)

        await self._audit(user_id, "execute_tool", call, result)
        if result.ok and call.name == "dead_stock_oracle":
            await self._remember_risks(user_id, result)

        return result

    async def _audit(self, user_id: str, step: str, call: ToolCall, result: ToolResult) -> None:

        try:
            await self.ledger.record(AuditEntry(
                user_id=user_id,
                step=step,
                tool=call.name,
                input=call.arguments,
                output=result.model_dump(),
            ))
        except StoreError as e:
            logger.warning("Could not write audit entry", user_id=user_id, step=step, tool=call.name, error=str(e))

    async def _remember_risks(self, user_id: str, result: ToolResult) -> None:
        """Flag high-risk SKUs in user memory so later turns see them."""

        for row in (result.output or {}).get("analysis", []):
            if row.get("probability_of_dead_stock", 0) < self.settings.dead_stock_risk_threshold:
                continue
            try:
                await self.memory.add_risk(user_id, f"dead_stock:{row['sku']}")
            except StoreError as e:
                logger.warning("Could not record risk in memory", user_id=user_id, sku=row.get("sku"), error=str(e))

    async def run(self, user_id: str, calls: Sequence[ToolCall], declined_ids: AbstractSet[str] = frozenset()) -> List[Message]:

        results = await asyncio.gather(*(self._run_one(user_id, c, c.id in declined_ids) for c in calls))

        for result in results:
            if not result.ok:
                logger.info("Tool call did not succeed", tool=result.name, kind=result.error_kind, error=result.error)

        return [Message.tool_result(r) for r in results]
