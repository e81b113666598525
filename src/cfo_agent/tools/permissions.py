"""
src/cfo_agent/tools/permissions.py - human-in-the-loop policy for tool calls

Two independent questions get asked about every tool name:

1) Does calling it need a human first? (interrupt set)
   Tools that reach outside the company (WhatsApp alerts) or produce
   regulatory paperwork (GST drafts) pause the turn until someone approves.

2) How is it classified in the audit ledger? (frozen markers)
   A step touching a tool whose name contains "alert" or "gst" is logged as
   "frozen": recorded, but its real-world effect waits for manual release.
   This looks only at the name, never at whether the call worked.

Usage:
    from cfo_agent.tools.permissions import requires_approval, audit_status
    if requires_approval(call.name, settings.interrupt_tools):
        ...
"""


from typing import AbstractSet, Iterable, List, Sequence

from cfo_agent.config import FROZEN_TOOL_MARKERS, INTERRUPT_TOOLS, AuditStatus
from cfo_agent.orchestrator.models import ToolCall


def requires_approval(tool_name: str, interrupt_tools: AbstractSet[str] = INTERRUPT_TOOLS) -> bool:
    """Return True if `tool_name` must be approved by a human before it runs."""

    return tool_name in interrupt_tools

def gated_calls(tool_calls: Iterable[ToolCall], interrupt_tools: AbstractSet[str] = INTERRUPT_TOOLS) -> List[ToolCall]:
    """The subset of `tool_calls` that needs approval, in request order."""

    return [tc for tc in tool_calls if requires_approval(tc.name, interrupt_tools)]

def audit_status(tool_name: str, markers: Sequence[str] = FROZEN_TOOL_MARKERS) -> AuditStatus:
    """
    Classify an audit entry by tool name alone.

    Args:
        tool_name: Tool (or model) name the step touched.
        markers: Case-insensitive substrings that mark a frozen category.
    """

    lowered = tool_name.lower()
    if any(marker.lower() in lowered for marker in markers):
        return AuditStatus.FROZEN

    return AuditStatus.SUCCESS
