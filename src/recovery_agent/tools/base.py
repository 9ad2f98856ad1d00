"""Tool descriptors — how a capability is exposed to the model.

A tool is a name, a description the model reads to decide when to call it,
a JSON-schema-style argument spec, and an async executor. Descriptors are
immutable; the controller reads them, never changes them.

    lookup = create_tool(
        "lookup_medication_instructions",
        "Get patient-friendly information about a medication.",
        {
            "type": "object",
            "properties": {"medicationName": {"type": "string"}},
            "required": ["medicationName"],
        },
        execute_lookup,
    )
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

ToolExecutor = Callable[[dict[str, Any]], Awaitable[Any]]

# JSON-schema type name -> accepted Python types
_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "number": (int, float),
    "integer": (int,),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list, tuple),
}


@dataclass(frozen=True)
class ToolDescriptor:
    """A capability exposed to the model."""

    name: str
    description: str
    parameters: Mapping[str, Any]
    executor: ToolExecutor = field(repr=False, compare=False)

    @property
    def properties(self) -> Mapping[str, Mapping[str, Any]]:
        return self.parameters.get("properties", {})

    @property
    def required(self) -> list[str]:
        return list(self.parameters.get("required", []))

    def catalog_entry(self) -> str:
        """Describe the tool for the system prompt's tool catalog."""
        lines = [f"- {self.name}: {self.description}", "  Parameters:"]
        if not self.properties:
            lines.append("    (none)")
        for arg_name, spec in self.properties.items():
            flag = "required" if arg_name in self.required else "optional"
            arg_type = spec.get("type", "any")
            line = f"    - {arg_name}: {arg_type} ({flag})"
            if spec.get("description"):
                line += f" - {spec['description']}"
            if spec.get("enum"):
                line += f" [one of: {', '.join(map(str, spec['enum']))}]"
            lines.append(line)
        return "\n".join(lines)


def create_tool(
    name: str,
    description: str,
    parameters: Mapping[str, Any],
    executor: ToolExecutor,
) -> ToolDescriptor:
    """Build a ToolDescriptor, checking the schema is self-consistent.

    Raises:
        ValueError: If the name is empty or a required argument is not
            declared under ``properties``.
    """
    if not name or not name.strip():
        raise ValueError("Tool name must not be empty")

    properties = dict(parameters.get("properties", {}))
    required = list(parameters.get("required", []))
    undeclared = [r for r in required if r not in properties]
    if undeclared:
        raise ValueError(
            f"Tool {name!r} requires undeclared arguments: {', '.join(undeclared)}"
        )

    schema = MappingProxyType(
        {"type": "object", "properties": properties, "required": required}
    )
    return ToolDescriptor(name=name, description=description, parameters=schema, executor=executor)


def build_tool_registry(tools: Iterable[ToolDescriptor]) -> dict[str, ToolDescriptor]:
    """Index tools by name.

    Raises:
        ValueError: If two tools share a name.
    """
    registry: dict[str, ToolDescriptor] = {}
    for tool in tools:
        if tool.name in registry:
            raise ValueError(f"Duplicate tool name: {tool.name!r}")
        registry[tool.name] = tool
    return registry


@dataclass(frozen=True)
class ArgumentErrors:
    """Problems found in a tool call's arguments."""

    missing: list[str] = field(default_factory=list)
    invalid: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.missing or self.invalid)

    def to_observation(self, tool_name: str) -> dict[str, Any]:
        return {
            "error": "invalid_arguments",
            "tool": tool_name,
            "missing": self.missing,
            "invalid": self.invalid,
            "message": "Fix the arguments and call the tool again.",
        }


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_arguments(tool: ToolDescriptor, args: Mapping[str, Any]) -> ArgumentErrors:
    """Check required fields are present and declared types/enums match.

    A required string that is empty or only whitespace counts as missing.
    """
    missing = [name for name in tool.required if _is_blank(args.get(name))]
    invalid: list[str] = []

    for arg_name, value in args.items():
        spec = tool.properties.get(arg_name)
        if spec is None or value is None:
            continue
        expected = _JSON_TYPES.get(spec.get("type", ""))
        # bool is a subclass of int, but true/false is not a number here
        bad_type = expected is not None and (
            not isinstance(value, expected)
            or (isinstance(value, bool) and bool not in expected)
        )
        if bad_type:
            invalid.append(f"{arg_name}: expected {spec['type']}")
        elif spec.get("enum") and value not in spec["enum"]:
            invalid.append(f"{arg_name}: must be one of {', '.join(map(str, spec['enum']))}")

    return ArgumentErrors(missing=missing, invalid=invalid)
