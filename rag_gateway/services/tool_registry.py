"""Static registry of MCP tools with uniform argument validation."""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple, Type, Union

from pydantic import BaseModel, ConfigDict, StrictBool, StrictFloat, StrictInt, StrictStr, ValidationError, create_model

from rag_gateway.models.tool import ArgField, ArgKind, ToolDefinition

logger = logging.getLogger(__name__)

_KIND_TYPES = {
    ArgKind.STRING: StrictStr,
    ArgKind.INTEGER: StrictInt,
    ArgKind.NUMBER: Union[StrictInt, StrictFloat],
    ArgKind.BOOLEAN: StrictBool,
}


class ArgumentValidationError(Exception):
    """Raw tool arguments did not match the tool's declared fields."""

    def __init__(self, tool_name: str, errors: List[str]):
        self.tool_name = tool_name
        self.errors = errors
        super().__init__(f"Invalid arguments for tool {tool_name}: " + "; ".join(errors))


def compile_argument_model(tool_name: str, fields: Tuple[ArgField, ...]) -> Type[BaseModel]:
    """Build the strict pydantic model that validates a tool's arguments."""
    definitions: Dict[str, Any] = {}
    for arg in fields:
        python_type = _KIND_TYPES[arg.kind]
        if arg.required:
            definitions[arg.name] = (python_type, ...)
        else:
            definitions[arg.name] = (Optional[python_type], arg.default)
    model_name = "".join(part.title() for part in tool_name.split("_")) + "Arguments"
    return create_model(model_name, __config__=ConfigDict(extra="forbid"), **definitions)


def _format_errors(error: ValidationError) -> List[str]:
    messages = []
    for item in error.errors():
        path = ".".join(str(part) for part in item.get("loc", ())) or "arguments"
        messages.append(f"{path}: {item.get('msg', 'invalid value')}")
    return messages


class ToolRegistry:
    """
    Immutable name -> tool table built once at startup.

    The tools/list payload is serialized at construction and reused for
    every listing request.
    """

    def __init__(self, tools: Iterable[ToolDefinition]):
        self._tools: Dict[str, ToolDefinition] = {}
        self._validators: Dict[str, Type[BaseModel]] = {}
        for tool in tools:
            if tool.name in self._tools:
                raise ValueError(f"Duplicate tool name: {tool.name}")
            self._tools[tool.name] = tool
            self._validators[tool.name] = compile_argument_model(tool.name, tool.fields)

        self._list_payload: Dict[str, Any] = {
            "tools": [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "inputSchema": tool.input_schema(),
                }
                for tool in self._tools.values()
            ]
        }
        logger.info(f"Tool registry built with {len(self._tools)} tools")

    def list_payload(self) -> Dict[str, Any]:
        """Cached tools/list result (same object on every call)."""
        return self._list_payload

    def get(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools)

    def validate(self, name: str, arguments: Any) -> Dict[str, Any]:
        """
        Validate raw arguments for a registered tool.

        Args:
            name: Registered tool name
            arguments: Raw `arguments` value from the request (None means {})

        Returns:
            Arguments with defaults filled in

        Raises:
            KeyError: If the tool is not registered
            ArgumentValidationError: Listing every failing field
        """
        model = self._validators[name]
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise ArgumentValidationError(name, ["arguments: must be an object"])
        try:
            return model.model_validate(arguments).model_dump()
        except ValidationError as e:
            raise ArgumentValidationError(name, _format_errors(e)) from e

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
