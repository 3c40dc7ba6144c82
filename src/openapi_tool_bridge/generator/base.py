"""Compiled tool catalog models.

An EnrichedDefinition is what gets cached on disk and served by the
registry; ToolInfo is the public face of a tool shown to callers.
"""

from typing import Any

from pydantic import BaseModel

from openapi_tool_bridge.parser.base import SecurityScheme


class ToolEndpoint(BaseModel):
    path: str  # /special-events/{eventId}
    url: str  # server URL + path template


class ParameterMapping(BaseModel):
    """Which flattened input field goes to which HTTP location."""

    path_params: list[str] = []
    query_params: list[str] = []
    header_params: list[str] = []
    cookie_params: list[str] = []
    body_schema: dict | None = None  # unflattened JSON body schema
    body_media_type: str | None = None

    def location_of(self, field: str) -> str | None:
        for location in ("path", "query", "header", "cookie"):
            if field in getattr(self, f"{location}_params"):
                return location
        return None


class AuthConfig(BaseModel):
    type: str  # basic / bearer / apiKey / oauth2 / openIdConnect
    credentials: dict[str, Any] = {}


class ToolDefinition(BaseModel):
    name: str
    description: str
    method: str  # uppercase
    endpoint: ToolEndpoint
    input_schema: dict
    parameter_mapping: ParameterMapping
    authentication: AuthConfig | None = None
    predefined_params: dict[str, Any] = {}
    security: list[dict] | None = None


class ToolInfo(BaseModel):
    name: str
    description: str
    input_schema: dict

    def to_protocol(self) -> dict:
        """Shape used by tool-calling protocols: {name, description, inputSchema}."""
        return {"name": self.name, "description": self.description, "inputSchema": self.input_schema}


class EnrichmentMetadata(BaseModel):
    source_file: str
    custom_file: str | None = None
    generated_at: str  # ISO-8601, UTC


class EnrichedDefinition(BaseModel):
    hash: str
    server_url: str
    security: list[SecurityScheme] = []
    tools: list[ToolDefinition] = []
    metadata: EnrichmentMetadata

    def find_tool(self, name: str) -> ToolDefinition | None:
        return next((tool for tool in self.tools if tool.name == name), None)
