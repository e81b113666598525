"""
src/cfo_agent/orchestrator/errors.py

Error taxonomy for the agent.

Turn-fatal (the checkpoint is left untouched, the caller gets an apology):
- ModelUnavailable / ModelTimeout
- CheckpointError

Folded into the conversation as tool_result messages (the turn continues):
- SchemaError / ToolNotFound
- ToolExecutionError

Logged and swallowed:
- StoreError (user memory and audit ledger are best-effort)
"""


from typing import Optional


class AgentError(Exception):
    """Base class for everything the agent raises on purpose."""


# --- Model collaborator --------------------------------------------------------
class ModelError(AgentError):

    retryable: bool = True


class ModelUnavailable(ModelError):
    """Network, auth or provider failure while calling the language model."""


class ModelTimeout(ModelError):
    """The language model did not answer within the configured timeout."""


# --- Tools ---------------------------------------------------------------------
class SchemaError(AgentError):
    """Tool-call arguments do not satisfy the tool's declared schema."""

    def __init__(self, tool_name: str, message: str):

        super().__init__(f"{tool_name}: {message}")
        self.tool_name = tool_name
        self.message = message


class ToolNotFound(SchemaError):
    """The model asked for a tool that is not registered."""

    def __init__(self, tool_name: str, suggestion: Optional[str] = None):

        hint = f" (did you mean '{suggestion}'?)" if suggestion else ""
        super().__init__(tool_name, f"unknown tool{hint}")
        self.suggestion = suggestion


class ToolExecutionError(AgentError):
    """A tool ran but failed. Tools raise this for domain-level failures."""

    def __init__(self, tool_name: str, cause: object):

        super().__init__(f"{tool_name} failed: {cause}")
        self.tool_name = tool_name
        self.cause = cause


# --- Storage -------------------------------------------------------------------
class StoreError(AgentError):
    """User memory or audit ledger could not be read or written."""


class CheckpointError(AgentError):
    """Thread state could not be loaded or saved. Turn-fatal."""

    retryable: bool = True


class CorruptCheckpoint(CheckpointError):
    """The stored snapshot does not parse; retrying will not help."""

    retryable: bool = False


# --- Approval flow -------------------------------------------------------------
class ApprovalStateError(AgentError):
    """Approval resolved on a thread with nothing pending, or a new turn on a suspended one."""

    retryable: bool = False
