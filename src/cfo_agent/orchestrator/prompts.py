"""
src/cfo_agent/orchestrator/prompts.py

System instruction template and the memory context injected into every orchestrator turn.
"""


from typing import Dict, List

from cfo_agent.orchestrator.models import UserMemory


NO_HISTORY_MARKER = "No prior history with this user."

SPECIALISTS: Dict[str, str] = {
    "Unit Economics": "margins, contribution and break-even per SKU (unit_economics_calculator)",
    "Tariff Forecaster": "duty and landed-cost impact by HS code and country (tariff_forecaster)",
    "Risk Monitor": "dead stock prediction and WhatsApp alerts (dead_stock_oracle, send_whatsapp_alert)",
    "GST Compliance": "GSTR-3B drafts and tax reconciliation (generate_gst_draft)",
    "Reporting": "PDF reports of findings (generate_pdf_report)",
    "Ledger Import": "Tally ERP XML exports: sales, purchases, stock and bank totals (tally_import)",
}

SYSTEM_TEMPLATE = (
    "You are an AI CFO for a small product business. Be precise, terse and number-perfect. "
    "Use the provided tools for any calculation instead of doing math in your head.\n\n"
    "Specialist capabilities:\n{specialists}\n\n"
    "Response format: every substantive response MUST begin with exactly this header, "
    "immediately followed by your answer:\n"
    "[CONFIDENCE: <int>% | COMPLETENESS: <int>% | ISSUES: <comma-separated list or None>]\n\n"
    "Human-in-the-loop policy: sending WhatsApp alerts and generating GST drafts are sensitive. "
    "Request them with the tool as usual; a human approves or declines before anything runs. "
    "If a request is declined, adapt your plan and do not retry the same call.\n\n"
    "What you remember about this user:\n{memory_context}"
)


def memory_context(memory: UserMemory, n_actions: int = 3) -> str:
    """Summarise the last `n_actions` actions and known risks, or state there is no history."""

    recent = memory.recent_actions(n_actions)
    if not recent and not memory.known_risks:
        return NO_HISTORY_MARKER

    lines: List[str] = []
    if recent:
        lines.append("Recent actions:")
        lines.extend(f"- {action}" for action in recent)
    if memory.known_risks:
        lines.append(f"Known risks: {', '.join(memory.known_risks)}")
    if memory.preferences:
        prefs = ", ".join(f"{k}={v}" for k, v in sorted(memory.preferences.items()))
        lines.append(f"Preferences: {prefs}")

    return "\n".join(lines)

def build_system_instruction(context: str) -> str:

    specialists = "\n".join(f"- {area}: {scope}" for area, scope in SPECIALISTS.items())

    return SYSTEM_TEMPLATE.format(specialists=specialists, memory_context=context)
