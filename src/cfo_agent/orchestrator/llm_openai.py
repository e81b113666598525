"""
src/cfo_agent/orchestrator/llm_openai.py

OpenAI client wrapper for function calling.
- ModelClient: what the orchestrator needs from any model (one async invoke)
- OpenAIModelClient: Chat Completions implementation
- to_openai_messages() / extract_tool_calls(): translate between our Message and the API shape
"""


import json
from typing import Any, Dict, List, Optional, Protocol, Sequence

import openai
from openai import AsyncOpenAI

from cfo_agent.config import DEFAULT_MODEL, Role
from cfo_agent.orchestrator.errors import ModelTimeout, ModelUnavailable
from cfo_agent.orchestrator.models import Message, ToolCall


class ModelClient(Protocol):

    name: str

    async def invoke(
            self,
            system_instruction: str,
            history: Sequence[Message],
            tools: Sequence[Dict[str, Any]],
    ) -> Message:
        ...


def to_openai_messages(system_instruction: str, history: Sequence[Message]) -> List[Dict[str, Any]]:
    """
    Convert thread history to Chat Completions messages. tool_result becomes role "tool".
    """

    out: List[Dict[str, Any]] = [{"role": "system", "content": system_instruction}]

    for msg in history:
        if msg.role is Role.TOOL_RESULT:
            out.append({"role": "tool", "tool_call_id": msg.tool_call_id, "content": msg.content})
        elif msg.role is Role.ASSISTANT:
            item: Dict[str, Any] = {"role": "assistant", "content": msg.content or None}
            if msg.tool_calls:
                item["tool_calls"] = [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {"name": tc.name, "arguments": json.dumps(tc.arguments)},
                    }
                    for tc in msg.tool_calls
                ]
            out.append(item)
        else:
            out.append({"role": msg.role.value, "content": msg.content})

    return out


def extract_tool_calls(choice) -> List[ToolCall]:
    """
    Normalize tool calls from the OpenAI response choice.

    Arguments that are not valid JSON become {} and fail schema validation later,
    which tells the model what it got wrong.
    """

    out = []
    tcs = getattr(choice.message, "tool_calls", None)

    if not tcs:
        return out

    for tc in tcs:
        if tc.type == "function" and tc.function:
            try:
                args = json.loads(tc.function.arguments or "{}")
            except ValueError:
                args = {}
            if not isinstance(args, dict):
                args = {}
            out.append(ToolCall(id=tc.id, name=tc.function.name, arguments=args))

    return out


class OpenAIModelClient:

    def __init__(self, api_key: Optional[str] = None, model: str = DEFAULT_MODEL, temperature: float = 0.2, client: Optional[AsyncOpenAI] = None):

        self.name = model
        self.temperature = temperature
        self._client = client or AsyncOpenAI(api_key=api_key)

    async def invoke(
            self,
            system_instruction: str,
            history: Sequence[Message],
            tools: Sequence[Dict[str, Any]],
    ) -> Message:
        """
        One Chat Completions call. Returns the assistant message with any tool calls.

        Raises:
            ModelTimeout if the request timed out.
            ModelUnavailable for connection, auth, rate-limit and server errors.
        """

        try:
            resp = await self._client.chat.completions.create(
                model=self.name,
                messages=to_openai_messages(system_instruction, history),
                tools=list(tools) or openai.NOT_GIVEN,
                temperature=self.temperature,
            )
        except openai.APITimeoutError as e:
            raise ModelTimeout(f"{self.name} timed out: {e}") from e
        except openai.APIError as e:
            raise ModelUnavailable(f"{self.name} unavailable: {e}") from e

        if not resp.choices:
            raise ModelUnavailable(f"{self.name} returned no choices")
        choice = resp.choices[0]

        return Message.assistant(choice.message.content or "", extract_tool_calls(choice))
