"""
src/cfo_agent/app.py

Local chat demo. Type a request; when the agent wants to send an alert or draft a
GST return, Approve / Decline buttons decide whether it runs. A Tally XML export
can be uploaded directly; its digest is logged and remembered for the user.
"""


import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import gradio as gr
import structlog

from cfo_agent.config import AgentSettings
from cfo_agent.observability import configure_logging
from cfo_agent.orchestrator.confidence import parse_header, strip_header
from cfo_agent.orchestrator.errors import StoreError, ToolExecutionError
from cfo_agent.orchestrator.models import AuditEntry, TurnResult, TurnStatus
from cfo_agent.orchestrator.router import Agent, build_agent
from cfo_agent.tools import tally


logger = structlog.get_logger()


APP_TITLE = "AI CFO Agent (Local Demo)"
APP_DESC = (
    "Try: 'Calculate unit economics for price=500, cogs=200, shipping=30, returns 10%' "
    "or 'send a WhatsApp alert about low stock'. Sensitive actions wait for your approval."
)


def render_result(result: TurnResult) -> Tuple[str, str]:
    """
    Turn a TurnResult into (chat text, approval panel JSON).
    """

    if result.status is TurnStatus.PENDING_APPROVAL:
        pending = [{"tool": tc.name, "arguments": tc.arguments} for tc in result.pending_approval]
        text = "Waiting for your approval: " + ", ".join(p["tool"] for p in pending)
        return text, json.dumps(pending, indent=2)

    content = result.final_message.content if result.final_message else "(no content)"
    header = parse_header(content)
    text = strip_header(content)
    if header:
        issues = ", ".join(header.issues) or "None"
        text = f"{text}\n\n_Confidence {header.confidence}% | Completeness {header.completeness}% | Issues: {issues}_"

    return text, "[]"

def app(agent: Agent):

    async def on_send(message: str, chat: List[Dict[str, Any]], thread_key: str, user_id: str):
        if not message.strip():
            return chat, "[]", ""
        result = await agent.submit_turn(thread_key, user_id, message)
        text, pending = render_result(result)
        chat = chat + [{"role": "user", "content": message}, {"role": "assistant", "content": text}]
        return chat, pending, ""

    async def on_decision(approved: bool, chat: List[Dict[str, Any]], thread_key: str):
        result = await agent.resolve_approval(thread_key, approved)
        text, pending = render_result(result)
        note = "Approved." if approved else "Declined."
        chat = chat + [{"role": "user", "content": note}, {"role": "assistant", "content": text}]
        return chat, pending

    async def on_approve(chat: List[Dict[str, Any]], thread_key: str):
        return await on_decision(True, chat, thread_key)

    async def on_decline(chat: List[Dict[str, Any]], thread_key: str):
        return await on_decision(False, chat, thread_key)

    async def on_tally_upload(path: Optional[str], user_id: str):
        if not path:
            return ""
        xml_text = await asyncio.to_thread(Path(path).read_text, encoding="utf-8", errors="replace")
        try:
            data = tally.parse_tally_xml(xml_text)
        except ToolExecutionError as e:
            return f"Import failed: {e}"
        summary = tally.import_summary(data)
        try:
            await agent.ledger.record(AuditEntry(
                user_id=user_id,
                step="tally_import",
                tool="tally_import",
                input={"file": Path(path).name, "size": len(xml_text)},
                output=data["metadata"],
                confidence=f"+{data['metadata']['confidence_boost']}%",
            ))
            await agent.memory.append_action(user_id, summary.splitlines()[0])
        except StoreError as e:
            logger.warning("Tally import not recorded", user_id=user_id, error=str(e))
        return summary

    with gr.Blocks(title=APP_TITLE) as demo:
        gr.Markdown(f"# {APP_TITLE}")
        gr.Markdown(APP_DESC)

        with gr.Row():
            thread_box = gr.Textbox(label="Thread", value="demo-thread")
            user_box = gr.Textbox(label="User", value="demo-user")

        chat = gr.Chatbot(label="Conversation", type="messages")
        msg = gr.Textbox(label="Message", placeholder="Ask your CFO agent...", lines=2)
        send = gr.Button("Send", variant="primary")

        with gr.Row():
            approve = gr.Button("Approve")
            decline = gr.Button("Decline", variant="stop")
        pending = gr.Code(label="Pending approval", language="json", value="[]")

        with gr.Row():
            tally_file = gr.File(label="Import Tally XML export", file_types=[".xml"], type="filepath")
            tally_summary = gr.Textbox(label="Tally import", lines=8, interactive=False)

        send.click(fn=on_send, inputs=[msg, chat, thread_box, user_box], outputs=[chat, pending, msg])
        approve.click(fn=on_approve, inputs=[chat, thread_box], outputs=[chat, pending])
        decline.click(fn=on_decline, inputs=[chat, thread_box], outputs=[chat, pending])
        tally_file.upload(fn=on_tally_upload, inputs=[tally_file, user_box], outputs=[tally_summary])

    return demo


if __name__ == "__main__":

    settings = AgentSettings.from_env()
    configure_logging(settings.log_level, settings.json_logs)
    app(build_agent(settings)).launch()

# EOF
