"""
Action Resolver - turns a parsed action into a validated tool invocation.

The raw input comes straight from model text, so it is coerced into the
tool's JSON schema before anything is dispatched:

- no input -> ``{}``
- a JSON object (repaired if truncated) -> that object
- any other text -> the schema's single required (or single declared) field

Validation uses a pydantic model generated from the schema, which gives
lax coercion ("3" -> 3) and readable error messages for free.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, create_model

from ..errors import ResolutionError
from ..parsers import Value, parse_json_fragment
from .registry import ToolDescriptor, ToolRegistry

logger = logging.getLogger(__name__)

_JSON_TYPES: dict[str, Any] = {
    "string": str,
    "integer": int,
    "number": float,
    "boolean": bool,
    "array": list,
    "object": dict,
}


@dataclass(frozen=True)
class ActionRequest:
    """A validated tool invocation."""

    tool_name: str
    args: dict
    descriptor: ToolDescriptor = field(repr=False, compare=False)


def build_args_model(name: str, schema: dict) -> type[BaseModel]:
    """Generate a pydantic model for a JSON object schema."""
    properties: dict = schema.get("properties", {}) or {}
    required = set(schema.get("required", []) or [])
    fields: dict[str, Any] = {}
    for prop, prop_schema in properties.items():
        py_type = _JSON_TYPES.get((prop_schema or {}).get("type", ""), Any)
        if prop in required:
            fields[prop] = (py_type, ...)
        else:
            fields[prop] = (Optional[py_type], (prop_schema or {}).get("default"))
    model_name = "".join(part.title() for part in name.replace("-", "_").split("_")) + "Args"
    return create_model(  # type: ignore[call-overload]
        model_name,
        __config__=ConfigDict(extra="allow", coerce_numbers_to_str=True),
        **fields,
    )


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "input"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


class ActionResolver:
    """Resolve action names and raw inputs against a tool registry."""

    def __init__(self, registry: ToolRegistry):
        self.registry = registry
        self._models: dict[str, type[BaseModel]] = {}
        self._lock = threading.Lock()

    def resolve(self, action_name: str, raw_input: Optional[str]) -> ActionRequest:
        """
        Resolve an action into a validated request.

        Raises:
            ResolutionError: Non-retriable if the tool is unknown, retriable
                if the input does not fit the tool's schema.
        """
        descriptor = self.registry.lookup(action_name)
        if descriptor is None or descriptor.is_multitool:
            available = ", ".join(d.name for d in self.registry.list()) or "(none)"
            raise ResolutionError(
                f"Unknown tool '{action_name}'. Available tools: {available}",
                retriable=False,
            )

        args = self._coerce(descriptor, raw_input)
        validated = self._validate(descriptor, args)
        logger.debug("Resolved action '%s' with args %s", descriptor.name, validated)
        return ActionRequest(tool_name=descriptor.name, args=validated, descriptor=descriptor)

    def _coerce(self, descriptor: ToolDescriptor, raw_input: Optional[str]) -> dict:
        if raw_input is None:
            return {}

        text = raw_input.strip()
        if text.startswith("{"):
            parsed = parse_json_fragment(text)
            if isinstance(parsed, Value) and isinstance(parsed.value, dict):
                return parsed.value
            raise ResolutionError(
                f"Action Input for '{descriptor.name}' is not a valid JSON object: {text[:200]}",
                retriable=True,
            )

        schema = descriptor.input_schema or {}
        properties = list((schema.get("properties") or {}).keys())
        required = list(schema.get("required") or [])
        if len(required) == 1:
            return {required[0]: text}
        if len(properties) == 1:
            return {properties[0]: text}
        raise ResolutionError(
            f"Tool '{descriptor.name}' expects a JSON object with fields "
            f"{', '.join(properties) or '(none)'}; got plain text",
            retriable=True,
        )

    def _validate(self, descriptor: ToolDescriptor, args: dict) -> dict:
        model = self._model_for(descriptor)
        try:
            instance = model.model_validate(args)
        except ValidationError as e:
            raise ResolutionError(
                f"Invalid input for tool '{descriptor.name}': {_format_validation_error(e)}",
                retriable=True,
            ) from e
        return instance.model_dump(exclude_unset=True)

    def _model_for(self, descriptor: ToolDescriptor) -> type[BaseModel]:
        model = self._models.get(descriptor.name)
        if model is None:
            with self._lock:
                model = self._models.get(descriptor.name)
                if model is None:
                    model = build_args_model(descriptor.name, descriptor.input_schema or {})
                    self._models[descriptor.name] = model
        return model
