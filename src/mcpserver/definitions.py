"""
Capability definitions for the MCP server.

Tools, resources and prompts are each described by a pydantic model holding
their metadata plus a single handler callable. The engine invokes every
handler through the same contract: call with arguments, get a result or an
exception.
"""

import json
import re
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class ArgumentValidationError(ValueError):
    """Arguments do not match the declared schema."""


class ToolParameterType(str, Enum):
    """Standard parameter types for MCP tools."""

    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"


class ToolParameter(BaseModel):
    """Standard MCP tool parameter definition."""

    name: str
    type: ToolParameterType = ToolParameterType.STRING
    description: str = ""
    required: bool = False
    default: Optional[Any] = None
    enum: Optional[List[Any]] = None
    minimum: Optional[Union[int, float]] = None
    maximum: Optional[Union[int, float]] = None
    pattern: Optional[str] = None
    items: Optional["ToolParameter"] = None

    def to_schema(self) -> Dict[str, Any]:
        """Render this parameter as a JSON Schema property."""
        schema: Dict[str, Any] = {"type": self.type.value}
        if self.description:
            schema["description"] = self.description
        if self.enum:
            schema["enum"] = self.enum
        if self.minimum is not None:
            schema["minimum"] = self.minimum
        if self.maximum is not None:
            schema["maximum"] = self.maximum
        if self.pattern:
            schema["pattern"] = self.pattern
        if self.default is not None:
            schema["default"] = self.default
        if self.type == ToolParameterType.ARRAY and self.items:
            schema["items"] = self.items.to_schema()
        return schema

    @classmethod
    def from_schema(cls, name: str, schema: Dict[str, Any], required: bool) -> "ToolParameter":
        """Build a parameter from a JSON Schema property."""
        items = schema.get("items")
        param_type = schema.get("type", ToolParameterType.STRING.value)
        if isinstance(param_type, list):
            # ["string", "null"] style unions collapse to the first concrete type
            param_type = next((t for t in param_type if t != "null"), "string")
        return cls(
            name=name,
            type=ToolParameterType(param_type),
            description=schema.get("description", ""),
            required=required,
            default=schema.get("default"),
            enum=schema.get("enum"),
            minimum=schema.get("minimum"),
            maximum=schema.get("maximum"),
            pattern=schema.get("pattern"),
            items=cls.from_schema("items", items, False) if isinstance(items, dict) else None,
        )


ToolHandler = Callable[[Dict[str, Any]], Union[Any, Awaitable[Any]]]
ResourceHandler = Callable[[], Union[Any, Awaitable[Any]]]
PromptHandler = Callable[[Dict[str, Any]], Union[List[Any], Awaitable[List[Any]]]]


class ToolDefinition(BaseModel):
    """A named, schema-described, invocable capability."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str = ""
    parameters: List[ToolParameter] = Field(default_factory=list)
    handler: ToolHandler = Field(exclude=True)

    @property
    def key(self) -> str:
        return self.name

    @classmethod
    def from_schema(
        cls,
        name: str,
        description: str,
        input_schema: Dict[str, Any],
        handler: ToolHandler,
    ) -> "ToolDefinition":
        """Create a tool from a JSON Schema `inputSchema` object."""
        required = set(input_schema.get("required", []))
        parameters = [
            ToolParameter.from_schema(param_name, prop, param_name in required)
            for param_name, prop in (input_schema.get("properties") or {}).items()
        ]
        return cls(name=name, description=description, parameters=parameters, handler=handler)

    def input_schema(self) -> Dict[str, Any]:
        """Convert tool parameters to JSON Schema format."""
        return {
            "type": "object",
            "properties": {param.name: param.to_schema() for param in self.parameters},
            "required": [param.name for param in self.parameters if param.required],
        }

    def to_mcp(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema(),
        }

    def validate_arguments(self, arguments: Dict[str, Any]) -> None:
        """
        Validate tool arguments against the parameter schema.

        Raises:
            ArgumentValidationError: on a missing, unknown or mistyped argument
        """
        for param in self.parameters:
            if param.required and param.name not in arguments:
                raise ArgumentValidationError(f"Required parameter '{param.name}' is missing")

        declared = {param.name: param for param in self.parameters}
        for param_name, value in arguments.items():
            param_def = declared.get(param_name)
            if param_def is None:
                raise ArgumentValidationError(f"Unknown parameter '{param_name}'")

            type_error = _validate_parameter_type(param_def, value)
            if type_error:
                raise ArgumentValidationError(f"Parameter '{param_name}': {type_error}")


def _validate_parameter_type(param: ToolParameter, value: Any) -> Optional[str]:
    """
    Validate a single parameter value.

    Returns:
        None if valid, error message if invalid
    """
    if value is None:
        if param.required:
            return "is required but got null"
        return None

    # bool is an int subclass; keep it out of the numeric types
    is_number = isinstance(value, (int, float)) and not isinstance(value, bool)

    if param.type == ToolParameterType.STRING:
        if not isinstance(value, str):
            return f"expected string, got {type(value).__name__}"
        if param.pattern and not re.match(param.pattern, value):
            return f"does not match pattern {param.pattern}"

    elif param.type in (ToolParameterType.INTEGER, ToolParameterType.NUMBER):
        if param.type == ToolParameterType.INTEGER and not (is_number and isinstance(value, int)):
            return f"expected integer, got {type(value).__name__}"
        if not is_number:
            return f"expected number, got {type(value).__name__}"
        if param.minimum is not None and value < param.minimum:
            return f"must be >= {param.minimum}"
        if param.maximum is not None and value > param.maximum:
            return f"must be <= {param.maximum}"

    elif param.type == ToolParameterType.BOOLEAN:
        if not isinstance(value, bool):
            return f"expected boolean, got {type(value).__name__}"

    elif param.type == ToolParameterType.ARRAY:
        if not isinstance(value, list):
            return f"expected array, got {type(value).__name__}"
        if param.items:
            for i, item in enumerate(value):
                item_error = _validate_parameter_type(param.items, item)
                if item_error:
                    return f"item {i}: {item_error}"

    elif param.type == ToolParameterType.OBJECT:
        if not isinstance(value, dict):
            return f"expected object, got {type(value).__name__}"

    if param.enum and value not in param.enum:
        return f"must be one of {param.enum}, got {value}"

    return None


class ResourceDefinition(BaseModel):
    """A URI-addressed readable content source."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    uri: str
    name: str = ""
    description: str = ""
    mime_type: str = "text/plain"
    handler: ResourceHandler = Field(exclude=True)

    @property
    def key(self) -> str:
        return self.uri

    def to_mcp(self) -> Dict[str, Any]:
        return {
            "uri": self.uri,
            "name": self.name or self.uri,
            "description": self.description,
            "mimeType": self.mime_type,
        }

    def render_contents(self, content: Any) -> Dict[str, Any]:
        """Wrap handler output as an MCP `resources/read` result."""
        if isinstance(content, bytes):
            content = content.decode("utf-8", errors="replace")
        if isinstance(content, str):
            text = content
            mime_type = self.mime_type
        else:
            text = json.dumps(content, default=str)
            mime_type = "application/json" if self.mime_type == "text/plain" else self.mime_type
        return {"contents": [{"uri": self.uri, "mimeType": mime_type, "text": text}]}


class PromptArgument(BaseModel):
    """A named argument accepted by a prompt template."""

    name: str
    description: str = ""
    required: bool = False


class PromptDefinition(BaseModel):
    """A parameterized template rendering to role-tagged messages."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str = ""
    arguments: List[PromptArgument] = Field(default_factory=list)
    handler: PromptHandler = Field(exclude=True)

    @property
    def key(self) -> str:
        return self.name

    def to_mcp(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "arguments": [argument.model_dump() for argument in self.arguments],
        }

    def validate_arguments(self, arguments: Dict[str, Any]) -> None:
        for argument in self.arguments:
            if argument.required and arguments.get(argument.name) is None:
                raise ArgumentValidationError(f"Required argument '{argument.name}' is missing")

    def render_messages(self, messages: Any) -> Dict[str, Any]:
        """Normalize handler output into an MCP `prompts/get` result."""
        if isinstance(messages, (str, dict)):
            messages = [messages]
        if not isinstance(messages, list):
            raise TypeError(
                f"Prompt '{self.name}' handler must return a list of messages, "
                f"got {type(messages).__name__}"
            )
        return {
            "description": self.description,
            "messages": [_normalize_message(message) for message in messages],
        }


def _normalize_message(message: Any) -> Dict[str, Any]:
    if isinstance(message, str):
        return {"role": "user", "content": {"type": "text", "text": message}}
    if not isinstance(message, dict):
        raise TypeError(f"Prompt message must be a dict or string, got {type(message).__name__}")

    content = message.get("content", "")
    if isinstance(content, str):
        content = {"type": "text", "text": content}
    elif not isinstance(content, dict):
        content = {"type": "text", "text": json.dumps(content, default=str)}
    return {"role": message.get("role", "user"), "content": content}
