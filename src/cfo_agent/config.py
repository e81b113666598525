"""
src/cfo_agent/config.py
"""


import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, FrozenSet, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):

    USER = "user"
    ASSISTANT = "assistant"
    TOOL_RESULT = "tool_result"
    SYSTEM = "system"

class Priority(str, Enum):

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

class AuditStatus(str, Enum):

    SUCCESS = "success"
    FROZEN = "frozen"


# Defaults
DEFAULT_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
MAX_TOOL_ITERATIONS: int = 10               # ORCHESTRATE <-> EXECUTE_TOOLS passes per turn
MEMORY_CONTEXT_ACTIONS: int = 3             # Recent actions shown to the model
FALLBACK_CONFIDENCE: int = 85               # Used when the confidence header is missing
MAX_STORED_ACTIONS: int = 50
ACTION_SUMMARY_CHARS: int = 200
MODEL_TIMEOUT_S: float = 60.0
TOOL_TIMEOUT_S: float = 30.0
DEAD_STOCK_RISK_THRESHOLD: float = 0.7

# Tools that pause the turn until a human approves them
INTERRUPT_TOOLS: FrozenSet[str] = frozenset({
    "send_whatsapp_alert",
    "generate_gst_draft",
})

# Audit entries for tools whose name contains one of these are "frozen"
FROZEN_TOOL_MARKERS: Tuple[str, ...] = ("alert", "gst")

DEFAULT_PREFERENCES: Dict[str, Any] = {
    "alert_frequency": "weekly",
    "format": "WhatsApp+PDF",
}


class AgentSettings(BaseModel):
    """
    Process-wide configuration, built once at startup and handed to the agent.

    Frozen so that concurrent turns can share one instance safely.
    """

    model_config = ConfigDict(frozen=True)

    openai_api_key: Optional[str] = None
    model: str = DEFAULT_MODEL
    temperature: float = 0.2
    max_tool_iterations: int = MAX_TOOL_ITERATIONS
    memory_context_actions: int = MEMORY_CONTEXT_ACTIONS
    fallback_confidence: int = FALLBACK_CONFIDENCE
    max_stored_actions: int = MAX_STORED_ACTIONS
    action_summary_chars: int = ACTION_SUMMARY_CHARS
    model_timeout_s: float = MODEL_TIMEOUT_S
    tool_timeout_s: float = TOOL_TIMEOUT_S
    interrupt_tools: FrozenSet[str] = INTERRUPT_TOOLS
    frozen_tool_markers: Tuple[str, ...] = FROZEN_TOOL_MARKERS
    dead_stock_risk_threshold: float = DEAD_STOCK_RISK_THRESHOLD
    default_preferences: Dict[str, Any] = Field(default_factory=lambda: dict(DEFAULT_PREFERENCES))
    data_dir: Optional[Path] = None         # None keeps every store in memory
    log_level: str = "INFO"
    json_logs: bool = False

    @classmethod
    def from_env(cls, **overrides: Any) -> "AgentSettings":
        """Read settings from the environment; keyword overrides win."""

        values: Dict[str, Any] = {
            "openai_api_key": os.getenv("OPENAI_API_KEY"),
            "model": os.getenv("OPENAI_MODEL", DEFAULT_MODEL),
            "log_level": os.getenv("CFO_AGENT_LOG_LEVEL", "INFO"),
            "json_logs": os.getenv("CFO_AGENT_LOG_JSON", "").lower() in ("1", "true", "yes"),
        }
        data_dir = os.getenv("CFO_AGENT_DATA_DIR")
        if data_dir:
            values["data_dir"] = Path(data_dir)
        values.update(overrides)

        return cls(**values)

    def data_path(self, *parts: str) -> Optional[Path]:
        """Path under data_dir, or None when running purely in memory."""

        if self.data_dir is None:
            return None

        return self.data_dir.joinpath(*parts)
# EOF
