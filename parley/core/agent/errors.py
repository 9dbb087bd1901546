from __future__ import annotations


class ParleyError(Exception):
    """Base class for assistant core errors."""


class ProviderConfigurationError(ParleyError):
    """A required credential or endpoint for the selected provider is missing."""


class ProviderCallError(ParleyError):
    """The LLM backend returned a non-success response."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class ToolServerError(ParleyError):
    """Transport-level failure talking to an external tool server."""

    def __init__(self, server: str, message: str) -> None:
        super().__init__(f"MCP server '{server}': {message}")
        self.server = server


__all__ = [
    "ParleyError",
    "ProviderCallError",
    "ProviderConfigurationError",
    "ToolServerError",
]
