from types import SimpleNamespace

import httpx
import openai
import pytest

from cfo_agent.orchestrator.errors import ModelTimeout, ModelUnavailable
from cfo_agent.orchestrator.llm_openai import OpenAIModelClient, extract_tool_calls, to_openai_messages
from cfo_agent.orchestrator.models import Message, ToolResult

from conftest import asks, call


def _choice(content=None, tool_calls=None):
    return SimpleNamespace(message=SimpleNamespace(content=content, tool_calls=tool_calls))


def _fn_call(call_id, name, arguments):
    return SimpleNamespace(id=call_id, type="function", function=SimpleNamespace(name=name, arguments=arguments))


class _FakeCompletions:
    def __init__(self, outcome) -> None:
        self.outcome = outcome
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return self.outcome


def _client(outcome):
    completions = _FakeCompletions(outcome)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


def test_history_converts_to_chat_completions_messages() -> None:
    history = [
        Message.user("forecast duty"),
        asks(call("tariff_forecaster", {"country_code": "US"}, call_id="c1")),
        Message.tool_result(ToolResult(name="tariff_forecaster", call_id="c1", ok=True, output={"total_duty": 15})),
    ]

    out = to_openai_messages("SYSTEM", history)

    assert out[0] == {"role": "system", "content": "SYSTEM"}
    assert out[1] == {"role": "user", "content": "forecast duty"}
    assert out[2]["content"] is None
    assert out[2]["tool_calls"][0]["function"] == {"name": "tariff_forecaster", "arguments": '{"country_code": "US"}'}
    assert out[3]["role"] == "tool"
    assert out[3]["tool_call_id"] == "c1"


def test_extract_tool_calls_tolerates_bad_json() -> None:
    choice = _choice(tool_calls=[
        _fn_call("c1", "tariff_forecaster", '{"hs_code": "8517"}'),
        _fn_call("c2", "dead_stock_oracle", "{not json"),
    ])

    calls = extract_tool_calls(choice)

    assert [(c.id, c.name, c.arguments) for c in calls] == [
        ("c1", "tariff_forecaster", {"hs_code": "8517"}),
        ("c2", "dead_stock_oracle", {}),
    ]


def test_extract_tool_calls_without_calls_is_empty() -> None:
    assert extract_tool_calls(_choice(content="hi")) == []


async def test_invoke_returns_assistant_message() -> None:
    resp = SimpleNamespace(choices=[_choice(content="[CONFIDENCE: 80% | COMPLETENESS: 90% | ISSUES: None] ok")])
    client, completions = _client(resp)
    model = OpenAIModelClient(model="gpt-4o-mini", client=client)

    message = await model.invoke("SYSTEM", [Message.user("hi")], [{"type": "function"}])

    assert message.content.endswith("ok")
    assert message.tool_calls == []
    assert completions.kwargs["model"] == "gpt-4o-mini"
    assert completions.kwargs["tools"] == [{"type": "function"}]


async def test_invoke_maps_timeouts() -> None:
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    client, _ = _client(openai.APITimeoutError(request=request))

    with pytest.raises(ModelTimeout):
        await OpenAIModelClient(client=client).invoke("SYSTEM", [], [])


async def test_invoke_maps_connection_errors() -> None:
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    client, _ = _client(openai.APIConnectionError(request=request))

    with pytest.raises(ModelUnavailable):
        await OpenAIModelClient(client=client).invoke("SYSTEM", [], [])
