"""Data models for parsed API descriptions and their customization sidecars.

The parser and the customization loader convert their input into these
models; the enricher consumes them and discards them afterwards.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

HTTP_METHODS = ("get", "post", "put", "delete", "patch", "head", "options")

JSON_MEDIA_TYPE = "application/json"


class ParsedParameter(BaseModel):
    """A single operation parameter (path, query, header, or cookie)."""

    name: str
    location: Literal["path", "query", "header", "cookie"]
    required: bool = False
    schema_: dict = Field(default_factory=dict, alias="schema")
    description: str | None = None
    style: str | None = None  # array serialization hint, not interpreted
    explode: bool | None = None

    model_config = ConfigDict(populate_by_name=True)


class ParsedRequestBody(BaseModel):
    """Request body: media type -> schema."""

    required: bool = False
    content: dict[str, dict] = {}
    description: str | None = None

    def schema_for(self, media_type: str) -> dict | None:
        return (self.content.get(media_type) or {}).get("schema")


class ParsedPath(BaseModel):
    """One (path, method) operation."""

    path: str
    method: str  # lowercase
    operation_id: str | None = None
    summary: str | None = None
    description: str | None = None
    parameters: list[ParsedParameter] = []
    request_body: ParsedRequestBody | None = None
    responses: dict = {}
    security: list[dict] | None = None


class SecurityScheme(BaseModel):
    """A declared security scheme from components.securitySchemes."""

    key: str = ""  # name under components.securitySchemes
    type: Literal["http", "apiKey", "oauth2", "openIdConnect"]
    scheme: str | None = None  # http: basic / bearer
    bearer_format: str | None = None
    location: Literal["header", "query", "cookie"] | None = None  # apiKey
    name: str | None = None  # apiKey field name
    flows: dict | None = None
    open_id_connect_url: str | None = None


class ParsedDefinition(BaseModel):
    """Normalized view of one API description file."""

    servers: list[str] = []
    paths: list[ParsedPath] = []
    security: list[SecurityScheme] = []
    hash: str

    model_config = ConfigDict(frozen=True)


class AuthenticationOverride(BaseModel):
    endpoint: str  # "*" or an exact tool name
    credentials: dict[str, Any]


class PredefinedParameters(BaseModel):
    global_: dict[str, Any] = Field(default_factory=dict, alias="global")
    endpoints: dict[str, dict[str, Any]] = {}

    model_config = ConfigDict(populate_by_name=True)

    def for_tool(self, tool_name: str) -> dict[str, Any]:
        """Global values overlaid with the tool's own."""
        return {**self.global_, **self.endpoints.get(tool_name, {})}


class CustomizationConfig(BaseModel):
    """Sidecar overrides for one definition file."""

    tool_aliases: dict[str, str] = Field(default_factory=dict, alias="toolAliases")
    predefined_parameters: PredefinedParameters = Field(
        default_factory=PredefinedParameters, alias="predefinedParameters"
    )
    authentication_overrides: list[AuthenticationOverride] = Field(
        default_factory=list, alias="authenticationOverrides"
    )

    model_config = ConfigDict(populate_by_name=True)

    def canonical(self) -> dict:
        """Plain dict in sidecar vocabulary, suitable for hashing."""
        return self.model_dump(by_alias=True)
