from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from ..messages import ToolDescriptor


class FunctionTool(ABC):
    """Built-in tool offered to the model alongside tool-server tools."""

    _TYPE_MAP = {
        "string": str,
        "integer": int,
        "number": (int, float),
        "boolean": bool,
        "array": list,
        "object": dict,
    }

    @property
    @abstractmethod
    def name(self) -> str:
        raise NotImplementedError

    @property
    @abstractmethod
    def description(self) -> str:
        raise NotImplementedError

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    async def execute(self, **kwargs: Any) -> str:
        """Run the tool and return a JSON (or plain text) payload."""
        raise NotImplementedError

    def progress_message(self, params: dict[str, Any]) -> Optional[str]:
        """Optional status line shown in the channel while the tool runs."""
        del params
        return None

    def validate_params(self, params: dict[str, Any]) -> list[str]:
        schema = self.parameters or {}
        if schema.get("type", "object") != "object":
            raise ValueError(f"Schema must be object type, got {schema.get('type')!r}")
        return self._validate(params, {**schema, "type": "object"}, "")

    def _validate(self, val: Any, schema: dict[str, Any], path: str) -> list[str]:
        t = schema.get("type")
        label = path or "parameter"
        expected = self._TYPE_MAP.get(t)
        if expected is not None and (
            not isinstance(val, expected) or (t != "boolean" and isinstance(val, bool))
        ):
            return [f"{label} should be {t}"]

        errors: list[str] = []
        if "enum" in schema and val not in schema["enum"]:
            errors.append(f"{label} must be one of {schema['enum']}")
        if t == "object":
            props = schema.get("properties", {})
            for key in schema.get("required", []):
                if key not in val:
                    errors.append(f"missing required {f'{path}.{key}' if path else key}")
            for key, value in val.items():
                if key in props:
                    child = f"{path}.{key}" if path else key
                    errors.extend(self._validate(value, props[key], child))
        if t == "array" and "items" in schema:
            for i, item in enumerate(val):
                errors.extend(
                    self._validate(item, schema["items"], f"{path}[{i}]" if path else f"[{i}]")
                )
        return errors

    def to_descriptor(self) -> ToolDescriptor:
        return ToolDescriptor(
            name=self.name, description=self.description, parameters=self.parameters
        )
