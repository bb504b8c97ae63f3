"""Tools the executor can invoke."""

from .base import FunctionTool, ParameterSchema, Tool
from .registry import ToolRegistry, create_default_registry

__all__ = [
    "FunctionTool",
    "ParameterSchema",
    "Tool",
    "ToolRegistry",
    "create_default_registry",
]
