"""Tool definition models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple


class ArgKind(str, Enum):
    """Primitive kinds a tool argument can take (JSON Schema type names)."""
    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"


@dataclass(frozen=True)
class ArgField:
    """Descriptor for one tool argument."""
    name: str
    kind: ArgKind
    description: str = ""
    required: bool = False
    default: Any = None

    def json_schema(self) -> Dict[str, Any]:
        schema: Dict[str, Any] = {"type": self.kind.value}
        if self.description:
            schema["description"] = self.description
        if not self.required and self.default is not None:
            schema["default"] = self.default
        return schema


@dataclass(frozen=True)
class ToolResult:
    """Textual tool outcome; failures are reported in-band with is_error set."""
    text: str
    is_error: bool = False

    @classmethod
    def success(cls, text: str) -> "ToolResult":
        return cls(text=text, is_error=False)

    @classmethod
    def failure(cls, text: str) -> "ToolResult":
        return cls(text=text, is_error=True)

    def to_content(self) -> Dict[str, Any]:
        """MCP tools/call result payload."""
        return {
            "content": [{"type": "text", "text": self.text}],
            "isError": self.is_error,
        }


ToolHandler = Callable[[Dict[str, Any], Optional[str]], Awaitable[ToolResult]]


@dataclass(frozen=True)
class ToolDefinition:
    """A named, schema-typed operation invocable by an agent client."""
    name: str
    description: str
    handler: ToolHandler = field(compare=False, repr=False)
    fields: Tuple[ArgField, ...] = ()
    tenant_scoped: bool = True

    def input_schema(self) -> Dict[str, Any]:
        """JSON Schema for the argument object."""
        schema: Dict[str, Any] = {
            "type": "object",
            "properties": {f.name: f.json_schema() for f in self.fields},
            "additionalProperties": False,
        }
        required = [f.name for f in self.fields if f.required]
        if required:
            schema["required"] = required
        return schema
