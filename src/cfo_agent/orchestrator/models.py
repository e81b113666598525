"""
src/cfo_agent/orchestrator/models.py

Pydantic models for messages, thread state, tool-calling I/O, audit entries and turn results.
"""


from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from cfo_agent.config import AuditStatus, Role


def utc_now() -> datetime:

    return datetime.now(timezone.utc)


class ToolCall(BaseModel):

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ToolResult(BaseModel):

    name: str
    call_id: Optional[str] = None
    ok: bool
    output: Any = None
    error: Optional[str] = None
    error_kind: Optional[str] = None    # "schema" | "execution" | "timeout" | "declined"


class Message(BaseModel):
    """One conversational turn. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)
    tool_call_id: Optional[str] = None      # Set on tool_result messages
    name: Optional[str] = None              # Tool name on tool_result messages

    @classmethod
    def user(cls, content: str) -> "Message":

        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: Optional[List[ToolCall]] = None) -> "Message":

        return cls(role=Role.ASSISTANT, content=content, tool_calls=tool_calls or [])

    @classmethod
    def tool_result(cls, result: ToolResult) -> "Message":

        return cls(
            role=Role.TOOL_RESULT,
            content=result.model_dump_json(),
            tool_call_id=result.call_id,
            name=result.name,
        )


class ApprovalRequest(BaseModel):
    """
    A suspended turn: the assistant asked for tools and at least one needs a human.

    tool_calls keeps every call from that assistant message in request order;
    gated_ids marks the ones that need approval. Once the decision has been
    carried out, results holds the tool_result messages so a retried decision
    reuses them instead of running the tools a second time.
    """

    thread_key: str
    tool_calls: List[ToolCall]
    gated_ids: List[str]
    passes_used: int = 0
    results: List[Message] = Field(default_factory=list)
    requested_at: datetime = Field(default_factory=utc_now)

    @property
    def pending(self) -> List[ToolCall]:

        return [tc for tc in self.tool_calls if tc.id in self.gated_ids]


class ThreadState(BaseModel):

    thread_key: str
    user_id: str
    messages: List[Message] = Field(default_factory=list)
    approval: Optional[ApprovalRequest] = None

    @property
    def awaiting_approval(self) -> bool:

        return self.approval is not None


class UserMemory(BaseModel):

    last_actions: List[str] = Field(default_factory=list)
    known_risks: List[str] = Field(default_factory=list)
    preferences: Dict[str, Any] = Field(default_factory=dict)

    def recent_actions(self, n: int) -> List[str]:

        return self.last_actions[-n:] if n > 0 else []


class ConfidenceHeader(BaseModel):

    confidence: int
    completeness: int
    issues: List[str] = Field(default_factory=list)
    narrative: str = ""


class AuditEntry(BaseModel):

    model_config = ConfigDict(frozen=True)

    user_id: str
    step: str
    tool: str
    input: Any = None
    output: Any = None
    confidence: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)
    key: Optional[str] = None               # Assigned by the ledger
    status: Optional[AuditStatus] = None    # Assigned by the ledger


class TurnStatus(str, Enum):

    FINAL = "final"
    PENDING_APPROVAL = "pending_approval"
    ERROR = "error"


class TurnResult(BaseModel):

    thread_key: str
    status: TurnStatus
    final_message: Optional[Message] = None
    pending_approval: List[ToolCall] = Field(default_factory=list)
    error: Optional[str] = None
    retryable: bool = False

    @property
    def ok(self) -> bool:

        return self.status is not TurnStatus.ERROR
