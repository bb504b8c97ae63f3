"""Base class for executable tools."""

from __future__ import annotations

import inspect
from abc import ABC, abstractmethod
from typing import Any, Callable, Literal

from pydantic import BaseModel

from agent.models import ExecutionContext


class ParameterSchema(BaseModel):
    """One parameter accepted by a tool."""

    name: str
    type: Literal["string", "number", "integer", "boolean", "object", "array"] = "string"
    required: bool = False
    description: str = ""
    default: Any = None


class Tool(ABC):
    """Abstract base class for tools the executor can invoke.

    Each tool exposes:
    - name: unique identifier
    - description: human-readable description
    - parameters: list of ParameterSchema describing accepted params
    - circuit: optional breaker name for the class of external call it makes
    - execute(): performs the action and returns its data, raising on failure
    """

    circuit: str | None = None

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique tool identifier."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description of what the tool does."""
        ...

    @property
    def parameters(self) -> list[ParameterSchema]:
        return []

    @abstractmethod
    async def execute(self, params: dict[str, Any], context: ExecutionContext) -> Any:
        """Run the tool with resolved parameters."""
        ...

    def input_schema(self) -> dict[str, Any]:
        """JSON Schema built from ``parameters``."""
        properties: dict[str, Any] = {}
        for param in self.parameters:
            prop: dict[str, Any] = {"type": param.type}
            if param.description:
                prop["description"] = param.description
            if param.default is not None:
                prop["default"] = param.default
            properties[param.name] = prop
        return {
            "type": "object",
            "properties": properties,
            "required": [p.name for p in self.parameters if p.required],
        }

    def to_descriptor(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema(),
        }


class FunctionTool(Tool):
    """Adapts a plain function ``fn(params, context)`` into a Tool."""

    def __init__(
        self,
        name: str,
        description: str,
        fn: Callable[[dict[str, Any], ExecutionContext], Any],
        parameters: list[ParameterSchema] | None = None,
        circuit: str | None = None,
    ):
        self._name = name
        self._description = description
        self._fn = fn
        self._parameters = parameters or []
        self.circuit = circuit

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def parameters(self) -> list[ParameterSchema]:
        return list(self._parameters)

    async def execute(self, params: dict[str, Any], context: ExecutionContext) -> Any:
        result = self._fn(params, context)
        if inspect.isawaitable(result):
            result = await result
        return result
