"""
src/cfo_agent/orchestrator/router.py

Router: the per-turn state machine that drives orchestrate / execute / approve, plus the
caller-facing turn API (submit_turn, resolve_approval).

States:
    ORCHESTRATE     -> ask the model for the next message
    EXECUTE_TOOLS   -> run the requested tools, then back to ORCHESTRATE
    AWAIT_APPROVAL  -> a sensitive tool was requested; suspend and hand the calls to a human
    DONE            -> the turn is over

Every turn works on a fresh copy of the thread loaded from the checkpointer and
saves once at the end. A model failure or a failed save leaves the checkpoint
exactly as it was before the turn. The exception is resolve_approval, which also
stores the approved tool results on the still-pending request so they are never
produced twice.
"""


import asyncio
from contextlib import asynccontextmanager
from enum import Enum
from typing import AbstractSet, AsyncIterator, Dict, List, Optional, Tuple

import structlog

from cfo_agent.config import AgentSettings, Role
from cfo_agent.memory.checkpoint import Checkpointer
from cfo_agent.memory.ledger import AuditLedger
from cfo_agent.memory.store import MemoryStore
from cfo_agent.orchestrator.errors import AgentError, ApprovalStateError
from cfo_agent.orchestrator.executor import ToolExecutionNode
from cfo_agent.orchestrator.llm_openai import ModelClient, OpenAIModelClient
from cfo_agent.orchestrator.models import (
    ApprovalRequest,
    Message,
    ThreadState,
    ToolCall,
    TurnResult,
    TurnStatus,
)
from cfo_agent.orchestrator.node import OrchestratorNode
from cfo_agent.tools.catalog import build_registry
from cfo_agent.tools.permissions import gated_calls
from cfo_agent.tools.registry import ToolRegistry


logger = structlog.get_logger()

ITERATION_LIMIT_MARKER = "[ITERATION LIMIT REACHED]"
APOLOGY = "Sorry, I couldn't complete that request right now. Please try again."


class RouteState(str, Enum):

    ORCHESTRATE = "orchestrate"
    EXECUTE_TOOLS = "execute_tools"
    AWAIT_APPROVAL = "await_approval"
    DONE = "done"


def route(response: Message, interrupt_tools: AbstractSet[str]) -> RouteState:
    """Decide where to go after the orchestrator produced `response`."""

    if not response.tool_calls:
        return RouteState.DONE
    if gated_calls(response.tool_calls, interrupt_tools):
        return RouteState.AWAIT_APPROVAL

    return RouteState.EXECUTE_TOOLS


class Agent:
    """
    Caller-facing turn API. One instance per process; safe to share across
    concurrent turns. Turns on the same thread run one at a time.
    """

    def __init__(
            self,
            settings: AgentSettings,
            model: ModelClient,
            registry: ToolRegistry,
            memory: MemoryStore,
            ledger: AuditLedger,
            checkpointer: Checkpointer,
    ):

        self.settings = settings
        self.registry = registry
        self.memory = memory
        self.ledger = ledger
        self.checkpointer = checkpointer
        self.orchestrator = OrchestratorNode(settings, model, registry, memory, ledger)
        self.executor = ToolExecutionNode(settings, registry, memory, ledger)
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    # --- Turn API ---------------------------------------------------------------
    async def submit_turn(self, thread_key: str, user_id: str, user_message: str) -> TurnResult:
        """
        Start a turn with a new user message.

        Returns a final message, a list of calls waiting for approval, or an error.
        """

        async with self._thread_lock(thread_key):
            with structlog.contextvars.bound_contextvars(thread_key=thread_key, user_id=user_id):
                logger.info("Turn started")
                try:
                    state = await self.checkpointer.load(thread_key)
                    if state is None:
                        state = ThreadState(thread_key=thread_key, user_id=user_id)
                    if state.awaiting_approval:
                        names = ", ".join(tc.name for tc in state.approval.pending)
                        raise ApprovalStateError(f"Thread is waiting for approval of: {names}. Approve or decline first.")
                    state.messages.append(Message.user(user_message.strip()))
                    return await self._drive(state, RouteState.ORCHESTRATE)
                except AgentError as e:
                    return self._failed(thread_key, e)

    async def resolve_approval(self, thread_key: str, approved: bool) -> TurnResult:
        """
        Continue a suspended turn. Approve runs the pending calls; decline records a
        rejection for each one. Either way the model gets to react.

        The tool results are checkpointed, still under the suspension, before the
        model is asked again. If that call fails the thread stays suspended and
        resolving it again reuses the stored results: an approved send never
        goes out twice.
        """

        async with self._thread_lock(thread_key):
            with structlog.contextvars.bound_contextvars(thread_key=thread_key):
                try:
                    state = await self.checkpointer.load(thread_key)
                    if state is None or not state.awaiting_approval:
                        raise ApprovalStateError(f"Nothing is waiting for approval on thread '{thread_key}'.")
                    with structlog.contextvars.bound_contextvars(user_id=state.user_id):
                        request = state.approval
                        if request.results:
                            logger.info("Approval already carried out; reusing tool results", approved=approved)
                            results = list(request.results)
                        else:
                            logger.info(
                                "Approval resolved",
                                approved=approved,
                                tools=[tc.name for tc in request.pending],
                            )
                            declined = frozenset() if approved else frozenset(request.gated_ids)
                            results = await self.executor.run(state.user_id, request.tool_calls, declined)
                            request.results = results
                            await self.checkpointer.save(thread_key, state)
                        state.approval = None
                        state.messages.extend(results)
                        current, passes = self._after_execute(state, request.passes_used + 1)
                        return await self._drive(state, current, passes=passes)
                except AgentError as e:
                    return self._failed(thread_key, e)

    async def history(self, thread_key: str) -> List[Message]:

        state = await self.checkpointer.load(thread_key)

        return list(state.messages) if state else []

    # --- State machine ----------------------------------------------------------
    async def _drive(self, state: ThreadState, current: RouteState, *, passes: int = 0) -> TurnResult:

        pending_calls: List[ToolCall] = []

        while True:
            logger.debug("Route", state=current.value, passes=passes)

            if current is RouteState.ORCHESTRATE:
                response = await self.orchestrator(state.user_id, state.messages)
                state.messages.append(response)
                pending_calls = list(response.tool_calls)
                current = route(response, self.settings.interrupt_tools)

            elif current is RouteState.EXECUTE_TOOLS:
                results = await self.executor.run(state.user_id, pending_calls)
                state.messages.extend(results)
                current, passes = self._after_execute(state, passes + 1)

            elif current is RouteState.AWAIT_APPROVAL:
                gated = gated_calls(pending_calls, self.settings.interrupt_tools)
                state.approval = ApprovalRequest(
                    thread_key=state.thread_key,
                    tool_calls=pending_calls,
                    gated_ids=[tc.id for tc in gated],
                    passes_used=passes,
                )
                await self.checkpointer.save(state.thread_key, state)
                logger.info("Awaiting approval", tools=[tc.name for tc in gated])
                return TurnResult(
                    thread_key=state.thread_key,
                    status=TurnStatus.PENDING_APPROVAL,
                    pending_approval=gated,
                )

            else:
                await self.checkpointer.save(state.thread_key, state)
                logger.info("Turn finished", passes=passes)
                return TurnResult(
                    thread_key=state.thread_key,
                    status=TurnStatus.FINAL,
                    final_message=state.messages[-1],
                )

    def _after_execute(self, state: ThreadState, passes: int) -> Tuple[RouteState, int]:
        """Internal: where to go once a tool pass is in the history; enforces the pass limit."""

        if passes < self.settings.max_tool_iterations:
            return RouteState.ORCHESTRATE, passes

        logger.warning("Iteration limit reached", passes=passes)
        state.messages.append(Message.assistant(
            f"{ITERATION_LIMIT_MARKER} Stopped after {passes} tool passes without a final answer. "
            "Ask me to continue if you want me to keep going."
        ))

        return RouteState.DONE, passes

    @asynccontextmanager
    async def _thread_lock(self, thread_key: str) -> AsyncIterator[None]:
        """Internal: serialize turns per thread; a lock lives only while someone holds or waits on it."""

        lock = self._locks.setdefault(thread_key, asyncio.Lock())
        self._lock_users[thread_key] = self._lock_users.get(thread_key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[thread_key] -= 1
            if not self._lock_users[thread_key]:
                del self._lock_users[thread_key]
                del self._locks[thread_key]

    def _failed(self, thread_key: str, error: AgentError) -> TurnResult:

        if isinstance(error, ApprovalStateError):
            logger.info("Turn rejected", error=str(error))
            content = str(error)
        else:
            logger.error("Turn failed", error=str(error), error_type=type(error).__name__)
            content = APOLOGY

        return TurnResult(
            thread_key=thread_key,
            status=TurnStatus.ERROR,
            final_message=Message(role=Role.ASSISTANT, content=content),
            error=str(error),
            retryable=getattr(error, "retryable", False),
        )


def build_agent(settings: AgentSettings, model: Optional[ModelClient] = None) -> Agent:
    """Wire the default registry and stores from `settings`."""

    if model is None:
        model = OpenAIModelClient(api_key=settings.openai_api_key, model=settings.model, temperature=settings.temperature)
    threads_dir = settings.data_path("threads")

    return Agent(
        settings=settings,
        model=model,
        registry=build_registry(settings),
        memory=MemoryStore(
            settings.data_path("user_memory.json"),
            default_preferences=settings.default_preferences,
            max_actions=settings.max_stored_actions,
        ),
        ledger=AuditLedger(settings.data_path("agent_ledger.jsonl"), frozen_markers=settings.frozen_tool_markers),
        checkpointer=Checkpointer(threads_dir),
    )
