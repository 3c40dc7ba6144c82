"""Authentication resolver.

Maps an authentication requirement plus credentials onto header, query or
cookie changes of an HttpRequest. oauth2 and openIdConnect are treated as
bearer tokens; no token acquisition flow is performed.
"""

import base64
from typing import Any

from openapi_tool_bridge.errors import ErrorType, ToolProxyError
from openapi_tool_bridge.generator.base import AuthConfig
from openapi_tool_bridge.parser.base import SecurityScheme

from .request import HttpRequest

TOKEN_TYPES = ("bearer", "oauth2", "openIdConnect")

DEFAULT_API_KEY_NAME = "X-API-Key"
DEFAULT_API_KEY_LOCATION = "header"


def infer_auth_type(credentials: dict[str, Any]) -> str | None:
    """Auth type from an explicit `type` key, else from the credential shape."""
    if credentials.get("type"):
        return str(credentials["type"])
    if credentials.get("username") and credentials.get("password"):
        return "basic"
    if credentials.get("token"):
        return "bearer"
    if credentials.get("key"):
        return "apiKey"
    return None


def merge_credentials(defaults: dict[str, Any] | None, tool: dict[str, Any] | None) -> dict[str, Any]:
    return {**(defaults or {}), **(tool or {})}


def apply_auth(
    request: HttpRequest,
    auth: AuthConfig,
    schemes: list[SecurityScheme] | None = None,
) -> HttpRequest:
    """Return a copy of request with auth applied.

    For apiKey, the location and field name come from the first declared
    apiKey scheme, else from the credentials (`in`, `name`), else the
    X-API-Key header.
    """
    request = request.copy()
    credentials = auth.credentials

    if auth.type == "basic":
        _apply_basic(request, credentials)
    elif auth.type in TOKEN_TYPES:
        _apply_bearer(request, credentials)
    elif auth.type == "apiKey":
        declared = next((s for s in schemes or [] if s.type == "apiKey" and s.name and s.location), None)
        if declared is not None:
            return apply_security_scheme(request, declared, credentials)
        _apply_api_key(
            request,
            credentials,
            credentials.get("name", DEFAULT_API_KEY_NAME),
            credentials.get("in", DEFAULT_API_KEY_LOCATION),
        )
    else:
        raise ToolProxyError(ErrorType.AUTHENTICATION_FAILED, f"Unsupported authentication type: {auth.type}")

    return request


def apply_security_scheme(
    request: HttpRequest,
    scheme: SecurityScheme,
    credentials: dict[str, Any],
) -> HttpRequest:
    """Apply a declared security scheme directly.

    apply_auth uses this for declared apiKey schemes; transport adapters may
    call it with a scheme of their choosing.
    """
    request = request.copy()

    if scheme.type == "http":
        if scheme.scheme == "basic":
            _apply_basic(request, credentials)
        elif scheme.scheme == "bearer":
            _apply_bearer(request, credentials)
        else:
            raise ToolProxyError(
                ErrorType.AUTHENTICATION_FAILED, f"Unsupported HTTP authentication scheme: {scheme.scheme}"
            )
    elif scheme.type == "apiKey":
        if not scheme.name or not scheme.location:
            raise ToolProxyError(ErrorType.AUTHENTICATION_FAILED, "API key scheme requires name and location")
        _apply_api_key(request, credentials, scheme.name, scheme.location)
    else:
        _apply_bearer(request, credentials)

    return request


def _apply_basic(request: HttpRequest, credentials: dict[str, Any]) -> None:
    username, password = credentials.get("username"), credentials.get("password")
    if not username or not password:
        raise ToolProxyError(
            ErrorType.AUTHENTICATION_FAILED, "Basic authentication requires username and password"
        )
    encoded = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    request.headers["Authorization"] = f"Basic {encoded}"


def _apply_bearer(request: HttpRequest, credentials: dict[str, Any]) -> None:
    token = credentials.get("token")
    if not token:
        raise ToolProxyError(ErrorType.AUTHENTICATION_FAILED, "Bearer authentication requires a token")
    request.headers["Authorization"] = f"Bearer {token}"


def _apply_api_key(request: HttpRequest, credentials: dict[str, Any], name: str, location: str) -> None:
    key = credentials.get("key")
    if not key:
        raise ToolProxyError(ErrorType.AUTHENTICATION_FAILED, "API key authentication requires a key")

    if location == "header":
        request.headers[name] = str(key)
    elif location == "query":
        request.params = {**(request.params or {}), name: key}
    elif location == "cookie":
        request.add_cookie(name, key)
    else:
        raise ToolProxyError(ErrorType.AUTHENTICATION_FAILED, f"Unsupported API key location: {location}")
