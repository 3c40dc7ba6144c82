"""Rebuild HTTP requests from flattened tool arguments.

Path fields are substituted into the endpoint template, query/header/cookie
fields are routed by the tool's ParameterMapping, and every remaining field
becomes part of the JSON body when the operation declared one.
"""

from dataclasses import dataclass, field, replace
from typing import Any
from urllib.parse import quote, urlencode

from requests.structures import CaseInsensitiveDict

from openapi_tool_bridge.generator.base import ToolDefinition
from openapi_tool_bridge.parser.base import JSON_MEDIA_TYPE


@dataclass
class HttpRequest:
    method: str
    url: str  # without query string
    headers: CaseInsensitiveDict = field(default_factory=CaseInsensitiveDict)
    params: dict[str, Any] | None = None  # query fields, lists repeat the key
    body: Any = None

    def copy(self) -> "HttpRequest":
        return replace(
            self,
            headers=CaseInsensitiveDict(self.headers),
            params=dict(self.params) if self.params is not None else None,
        )

    def query_items(self) -> list[tuple[str, str]]:
        items = []
        for name, value in (self.params or {}).items():
            values = value if isinstance(value, (list, tuple)) else [value]
            items.extend((name, format_value(v)) for v in values)
        return items

    def full_url(self) -> str:
        query = urlencode(self.query_items())
        return f"{self.url}?{query}" if query else self.url

    def add_cookie(self, name: str, value: Any) -> None:
        """Append to the Cookie header instead of overwriting it."""
        cookie = f"{name}={quote(format_value(value), safe='')}"
        existing = self.headers.get("Cookie")
        self.headers["Cookie"] = f"{existing}; {cookie}" if existing else cookie


def format_value(value: Any) -> str:
    """String form of an argument as it appears on the wire."""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def merge_arguments(tool: ToolDefinition, arguments: dict[str, Any]) -> dict[str, Any]:
    """Predefined values overlaid with the caller's; the caller wins."""
    supplied = {k: v for k, v in arguments.items() if v is not None}
    return {**tool.predefined_params, **supplied}


def build_request(tool: ToolDefinition, arguments: dict[str, Any], user_agent: str) -> HttpRequest:
    mapping = tool.parameter_mapping
    values = merge_arguments(tool, arguments)
    request = HttpRequest(method=tool.method, url=tool.endpoint.url)
    request.headers["User-Agent"] = user_agent

    for name in mapping.path_params:
        if name in values:
            request.url = request.url.replace(f"{{{name}}}", quote(format_value(values[name]), safe=""))

    query = {name: values[name] for name in mapping.query_params if name in values}
    request.params = query or None

    for name in mapping.header_params:
        if name in values:
            request.headers[name] = format_value(values[name])

    for name in mapping.cookie_params:
        if name in values:
            request.add_cookie(name, values[name])

    if mapping.body_schema is not None:
        body = {name: value for name, value in values.items() if mapping.location_of(name) is None}
        if body:
            request.body = body
    elif "body" in values and mapping.location_of("body") is None:
        request.body = values["body"]

    if request.body is not None:
        request.headers["Content-Type"] = mapping.body_media_type or JSON_MEDIA_TYPE

    return request
