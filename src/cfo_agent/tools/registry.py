"""
src/cfo_agent/tools/registry.py - named tools, their schemas, and a safe execution bridge

This module provides:
- ParamSpec / ToolDescriptor: what a tool is called, what it takes, what runs
- ToolRegistry.register / resolve / validate / execute
- ToolRegistry.specs(): OpenAI function specs for the model

Key ideas:

1) Validate before any side effect
   validate() checks required parameters, JSON types, enums and rejects
   arguments the tool does not declare. Nothing runs until it passes.

2) Tools never throw past execute()
   Whatever goes wrong inside a tool (exception, timeout) comes back as a
   ToolResult with ok=False. Only task cancellation propagates.

3) Fuzzy suggestions (RapidFuzz)
   An unknown tool name is compared with registered names so the error
   can say "did you mean ...?" and the model can correct itself.
"""


import asyncio
import inspect
import json
from typing import Any, Callable, Dict, List, Mapping, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field
from rapidfuzz import fuzz, process

from cfo_agent.orchestrator.errors import SchemaError, ToolExecutionError, ToolNotFound
from cfo_agent.orchestrator.models import ToolResult


logger = structlog.get_logger()

_SUGGESTION_CUTOFF = 70


def _is_number(value: Any) -> bool:

    return isinstance(value, (int, float)) and not isinstance(value, bool)


_TYPE_CHECKS: Dict[str, Callable[[Any], bool]] = {
    "string": lambda v: isinstance(v, str),
    "number": _is_number,
    "integer": lambda v: isinstance(v, int) and not isinstance(v, bool),
    "boolean": lambda v: isinstance(v, bool),
    "array": lambda v: isinstance(v, list),
    "object": lambda v: isinstance(v, dict),
}


# --- Descriptors ---------------------------------------------------------------
class ParamSpec(BaseModel):

    model_config = ConfigDict(frozen=True)

    type: str
    required: bool = True
    description: str = ""
    enum: Optional[List[Any]] = None

    def json_schema(self) -> Dict[str, Any]:

        schema: Dict[str, Any] = {"type": self.type}
        if self.description:
            schema["description"] = self.description
        if self.enum is not None:
            schema["enum"] = list(self.enum)

        return schema


class ToolDescriptor(BaseModel):

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    description: str
    parameters: Dict[str, ParamSpec] = Field(default_factory=dict)
    fn: Callable[..., Any]


# --- Registry ------------------------------------------------------------------
class ToolRegistry:
    """
    Fixed set of named tools. Filled once at startup, read-only afterwards,
    so one instance is shared by every concurrent turn.
    """

    def __init__(self, timeout_s: Optional[float] = None):

        self._tools: Dict[str, ToolDescriptor] = {}
        self.timeout_s = timeout_s

    def __contains__(self, name: str) -> bool:

        return name in self._tools

    def __len__(self) -> int:

        return len(self._tools)

    @property
    def names(self) -> List[str]:

        return list(self._tools)

    def register(self, descriptor: ToolDescriptor) -> None:

        if descriptor.name in self._tools:
            raise ValueError(f"Tool '{descriptor.name}' is already registered.")
        for param, spec in descriptor.parameters.items():
            if spec.type not in _TYPE_CHECKS:
                raise ValueError(f"Tool '{descriptor.name}': unsupported type '{spec.type}' for '{param}'.")
        self._tools[descriptor.name] = descriptor

    def resolve(self, name: str) -> ToolDescriptor:

        descriptor = self._tools.get(name)
        if descriptor is None:
            raise ToolNotFound(name, suggestion=self._suggest(name))

        return descriptor

    def _suggest(self, name: str) -> Optional[str]:

        if not self._tools or not name:
            return None
        match = process.extractOne(name, self.names, scorer=fuzz.WRatio, score_cutoff=_SUGGESTION_CUTOFF)

        return match[0] if match else None

    def validate(self, name: str, arguments: Mapping[str, Any]) -> None:
        """
        Check `arguments` against the tool schema. Raises SchemaError (or ToolNotFound).
        """

        descriptor = self.resolve(name)
        if not isinstance(arguments, Mapping):
            raise SchemaError(name, "arguments must be an object")

        unexpected = sorted(set(arguments) - set(descriptor.parameters))
        if unexpected:
            raise SchemaError(name, f"unexpected argument(s): {', '.join(unexpected)}")

        for param, spec in descriptor.parameters.items():
            if param not in arguments or arguments[param] is None:
                if spec.required:
                    raise SchemaError(name, f"missing required argument '{param}'")
                continue
            value = arguments[param]
            if not _TYPE_CHECKS[spec.type](value):
                raise SchemaError(name, f"argument '{param}' must be of type {spec.type}, got {type(value).__name__}")
            if spec.enum is not None and value not in spec.enum:
                raise SchemaError(name, f"argument '{param}' must be one of {spec.enum}")

    async def execute(self, name: str, arguments: Mapping[str, Any], *, call_id: Optional[str] = None) -> ToolResult:
        """
        Run a tool and wrap the outcome. Callers validate first.

        Sync tool functions run in a worker thread so the timeout can fire and
        other turns keep moving.
        """

        try:
            descriptor = self.resolve(name)
        except ToolNotFound as e:
            return ToolResult(name=name, call_id=call_id, ok=False, error=str(e), error_kind="schema")

        kwargs = dict(arguments)
        try:
            if inspect.iscoroutinefunction(descriptor.fn):
                pending = descriptor.fn(**kwargs)
            else:
                pending = asyncio.to_thread(descriptor.fn, **kwargs)
            output = await asyncio.wait_for(pending, timeout=self.timeout_s)
            # Results go back to the model as JSON
            output = json.loads(json.dumps(output, default=str, ensure_ascii=False))
        except asyncio.TimeoutError:
            logger.warning("Tool timed out", tool=name, timeout_s=self.timeout_s)
            return ToolResult(
                name=name, call_id=call_id, ok=False,
                error=f"{name} timed out after {self.timeout_s}s", error_kind="timeout",
            )
        except ToolExecutionError as e:
            logger.warning("Tool failed", tool=name, error=str(e))
            return ToolResult(name=name, call_id=call_id, ok=False, error=str(e), error_kind="execution")
        except Exception as e:
            logger.warning("Tool raised", tool=name, error=str(e), error_type=type(e).__name__)
            wrapped = ToolExecutionError(name, e)
            return ToolResult(name=name, call_id=call_id, ok=False, error=str(wrapped), error_kind="execution")

        return ToolResult(name=name, call_id=call_id, ok=True, output=output)

    def specs(self) -> List[Dict[str, Any]]:
        """JSON schemas describing the tools we expose to the model."""

        return [_tool_spec(d) for d in self._tools.values()]


def _tool_spec(descriptor: ToolDescriptor) -> Dict[str, Any]:
    """Build an OpenAI function spec."""

    return {
        "type": "function",
        "function": {
            "name": descriptor.name,
            "description": descriptor.description,
            "parameters": {
                "type": "object",
                "properties": {p: s.json_schema() for p, s in descriptor.parameters.items()},
                "required": [p for p, s in descriptor.parameters.items() if s.required],
                "additionalProperties": False,
            },
        },
    }
