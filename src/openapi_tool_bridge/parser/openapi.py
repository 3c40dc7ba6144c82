"""OpenAPI 3.x document parser.

Loads one definition file, resolves every $ref with prance and extracts
servers, operations and security schemes into a ParsedDefinition.
Validation is advisory: a document that fails schema validation is still
parsed, with a warning.
"""

import hashlib
import json
import logging
import re
from pathlib import Path

import prance
import yaml
from prance.util.resolver import RefResolver
from prance.util.url import absurl

from openapi_tool_bridge.errors import ErrorType, ToolProxyError

from .base import (
    HTTP_METHODS,
    ParsedDefinition,
    ParsedParameter,
    ParsedPath,
    ParsedRequestBody,
    SecurityScheme,
)

logger = logging.getLogger(__name__)

SERVER_VARIABLE = re.compile(r"\{([^}]+)\}")


def content_hash(data: bytes) -> str:
    """sha256 hex digest of raw file content."""
    return hashlib.sha256(data).hexdigest()


def parse_openapi(file_path: Path) -> ParsedDefinition:
    """Parse an OpenAPI file into a ParsedDefinition.

    Raises ToolProxyError(INVALID_OPENAPI) when the file cannot be read,
    parsed or reference-resolved.
    """
    file_path = Path(file_path)
    try:
        raw = file_path.read_bytes()
        document = _resolve(file_path, yaml.safe_load(raw))
    except Exception as e:
        raise ToolProxyError(
            ErrorType.INVALID_OPENAPI,
            f"Failed to parse OpenAPI definition: {e}",
            {"file_path": str(file_path)},
        ) from e

    if not isinstance(document, dict):
        raise ToolProxyError(
            ErrorType.INVALID_OPENAPI,
            "Failed to parse OpenAPI definition: document is not a mapping",
            {"file_path": str(file_path)},
        )

    return ParsedDefinition(
        servers=_extract_servers(document),
        paths=_extract_paths(document),
        security=_extract_security_schemes(document),
        hash=content_hash(raw),
    )


def _resolve(file_path: Path, document) -> dict:
    """Return the document with all references resolved, as plain JSON data."""
    try:
        parser = prance.ResolvingParser(
            str(file_path),
            lazy=False,
            strict=False,
            recursion_limit_handler=_truncate_recursion,
        )
        resolved = parser.specification
    except prance.ValidationError as e:
        logger.warning(f"{file_path.name} failed validation, continuing: {e}")
        if not isinstance(document, dict):
            raise
        resolver = RefResolver(
            document,
            absurl(str(file_path.resolve())),
            recursion_limit_handler=_truncate_recursion,
        )
        resolver.resolve_references()
        resolved = resolver.specs

    # Drop loader-specific types (dates, ordered maps) so the result is JSON-safe.
    return json.loads(json.dumps(resolved, default=str))


def _truncate_recursion(limit, refstring, recursions):
    # Recursive schemas are cut off with an open schema instead of failing.
    return {}


def _extract_servers(doc: dict) -> list[str]:
    servers = []
    for server in doc.get("servers") or []:
        url = server.get("url", "")
        variables = server.get("variables") or {}
        url = SERVER_VARIABLE.sub(
            lambda m: str((variables.get(m.group(1)) or {}).get("default", m.group(0))),
            url,
        )
        servers.append(url)
    return servers


def _extract_paths(doc: dict) -> list[ParsedPath]:
    paths = []
    global_security = doc.get("security")

    for path, path_item in (doc.get("paths") or {}).items():
        if not isinstance(path_item, dict):
            continue
        for method in HTTP_METHODS:
            operation = path_item.get(method)
            if not isinstance(operation, dict):
                continue

            paths.append(
                ParsedPath(
                    path=path,
                    method=method,
                    operation_id=operation.get("operationId"),
                    summary=operation.get("summary"),
                    description=operation.get("description"),
                    parameters=_merge_parameters(
                        path_item.get("parameters") or [],
                        operation.get("parameters") or [],
                    ),
                    request_body=_parse_request_body(operation.get("requestBody")),
                    responses=operation.get("responses") or {},
                    security=operation.get("security", global_security),
                )
            )

    return paths


def _merge_parameters(path_level: list[dict], operation_level: list[dict]) -> list[ParsedParameter]:
    """Path-level parameters overridden by operation-level ones of the same name+location."""
    merged: dict[tuple[str, str], ParsedParameter] = {}
    for raw in [*path_level, *operation_level]:
        param = _parse_parameter(raw)
        if param is not None:
            merged[(param.name, param.location)] = param
    return list(merged.values())


def _parse_parameter(raw: dict) -> ParsedParameter | None:
    if not isinstance(raw, dict) or not raw.get("name"):
        return None
    location = raw.get("in", "query")
    if location not in ("path", "query", "header", "cookie"):
        logger.warning(f"Skipping parameter '{raw['name']}' with unsupported location '{location}'")
        return None

    return ParsedParameter(
        name=raw["name"],
        location=location,
        # Path parameters are always required in OpenAPI.
        required=bool(raw.get("required", False)) or location == "path",
        schema_=raw.get("schema") or {},
        description=raw.get("description"),
        style=raw.get("style"),
        explode=raw.get("explode"),
    )


def _parse_request_body(body: dict | None) -> ParsedRequestBody | None:
    if not isinstance(body, dict) or "content" not in body:
        return None
    return ParsedRequestBody(
        required=bool(body.get("required", False)),
        content={ct: data or {} for ct, data in (body.get("content") or {}).items()},
        description=body.get("description"),
    )


def _extract_security_schemes(doc: dict) -> list[SecurityScheme]:
    schemes = []
    declared = (doc.get("components") or {}).get("securitySchemes") or {}

    for key, raw in declared.items():
        if not isinstance(raw, dict):
            continue
        scheme_type = raw.get("type")

        if scheme_type == "http":
            http_scheme = (raw.get("scheme") or "").lower() or None
            fields = {"scheme": http_scheme}
            if http_scheme == "bearer":
                fields["bearer_format"] = raw.get("bearerFormat")
        elif scheme_type == "apiKey":
            location = raw.get("in")
            fields = {
                "location": location if location in ("header", "query", "cookie") else None,
                "name": raw.get("name"),
            }
        elif scheme_type == "oauth2":
            fields = {"flows": raw.get("flows")}
        elif scheme_type == "openIdConnect":
            fields = {"open_id_connect_url": raw.get("openIdConnectUrl")}
        else:
            logger.warning(f"Skipping security scheme '{key}' of unsupported type '{scheme_type}'")
            continue

        schemes.append(SecurityScheme(key=key, type=scheme_type, **fields))

    return schemes
