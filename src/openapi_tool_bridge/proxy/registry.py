"""Tool registry and proxy service.

Aggregates the compiled catalogs of every definition file in a directory,
lists their tools and executes tool calls as HTTP requests. Catalogs are
loaded on first use and kept in memory until reload(); external file
changes are not watched.
"""

import logging
import threading
from pathlib import Path
from typing import Any

import requests

from openapi_tool_bridge.config import BridgeConfig
from openapi_tool_bridge.errors import ErrorType, ToolProxyError
from openapi_tool_bridge.generator.base import AuthConfig, EnrichedDefinition, ToolDefinition, ToolInfo
from openapi_tool_bridge.generator.cache import DEFAULT_MAX_AGE
from openapi_tool_bridge.generator.enricher import DefinitionEnricher
from openapi_tool_bridge.parser.detect import find_definition_files

from .auth import apply_auth, infer_auth_type, merge_credentials
from .request import HttpRequest, build_request, format_value

logger = logging.getLogger(__name__)

FORM_MEDIA_TYPE = "application/x-www-form-urlencoded"
MULTIPART_MEDIA_TYPE = "multipart/form-data"


class ToolRegistry:
    """Serves tools compiled from a directory of OpenAPI definitions."""

    def __init__(
        self,
        config: BridgeConfig,
        enricher: DefinitionEnricher | None = None,
        session: requests.Session | None = None,
    ):
        self.config = config
        self.enricher = enricher or DefinitionEnricher(config.cache_directory, config.force_regeneration)
        self.session = session or requests.Session()
        self._catalogs: dict[str, EnrichedDefinition] = {}
        self._loaded = False
        self._locks_guard = threading.Lock()
        self._file_locks: dict[str, threading.Lock] = {}

    # -- catalog ----------------------------------------------------------------

    def list_tools(self) -> list[ToolInfo]:
        """Every callable tool; a name shadowed by an earlier definition is listed once."""
        self._ensure_loaded()
        tools: dict[str, ToolInfo] = {}
        for _, catalog in self._ordered_catalogs():
            for tool in catalog.tools:
                if tool.name not in tools:
                    tools[tool.name] = ToolInfo(
                        name=tool.name, description=tool.description, input_schema=tool.input_schema
                    )
        return list(tools.values())

    def reload(self) -> None:
        """Drop every loaded catalog and rescan the definitions directory."""
        self._catalogs.clear()
        self._loaded = False
        self._ensure_loaded()

    def loaded_definitions(self) -> list[str]:
        return [name for name, _ in self._ordered_catalogs()]

    def status(self) -> dict:
        return {
            "tools": [tool.to_protocol() for tool in self.list_tools()],
            "definitions": self.loaded_definitions(),
        }

    def cleanup_cache(self, max_age: float = DEFAULT_MAX_AGE) -> list[Path]:
        return self.enricher.cleanup_cache(max_age)

    def find_tool(self, name: str) -> tuple[ToolDefinition, EnrichedDefinition] | None:
        """First tool with this name, in definition load order."""
        self._ensure_loaded()
        for _, catalog in self._ordered_catalogs():
            tool = catalog.find_tool(name)
            if tool is not None:
                return tool, catalog
        return None

    def _ordered_catalogs(self) -> list[tuple[str, EnrichedDefinition]]:
        return sorted(self._catalogs.items())

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        directory = self.config.definitions_directory
        if not directory.is_dir():
            raise ToolProxyError(
                ErrorType.INVALID_OPENAPI,
                f"Definitions directory not found: {directory}",
                {"directory": str(directory)},
            )
        for path in find_definition_files(directory):
            self._load_definition(path)
        self._loaded = True
        logger.info(f"Loaded {len(self._catalogs)} definitions from {directory}")

    def _load_definition(self, path: Path) -> None:
        # One lock per file: concurrent first loads compile each file once.
        with self._locks_guard:
            lock = self._file_locks.setdefault(path.name, threading.Lock())
        with lock:
            if path.name in self._catalogs:
                return
            try:
                enriched = self.enricher.enrich_file(path)
            except Exception as e:
                logger.warning(f"Failed to load definition {path.name}: {e}")
                return
            for tool in enriched.tools:
                shadowing = self._owner_of(tool.name)
                if shadowing is not None:
                    logger.warning(f"Tool '{tool.name}' in {path.name} is shadowed by {shadowing}")
            self._catalogs[path.name] = enriched

    def _owner_of(self, tool_name: str) -> str | None:
        for name, catalog in self._catalogs.items():
            if catalog.find_tool(tool_name) is not None:
                return name
        return None

    # -- execution --------------------------------------------------------------

    def execute_tool(self, name: str, arguments: dict[str, Any] | None = None) -> dict:
        """Run a tool call and return {status, status_text, headers, body}.

        HTTP error statuses are returned like any other response. Raises
        ToolProxyError for unknown tools, missing required fields, bad
        credentials (all before any request is sent) and transport failures.
        """
        return self._send(self.build_request(name, arguments))

    def build_request(self, name: str, arguments: dict[str, Any] | None = None) -> HttpRequest:
        """The authenticated request execute_tool would send, without sending it."""
        arguments = arguments or {}
        tool, catalog = self._lookup(name)
        validate_arguments(tool, arguments)
        try:
            request = build_request(tool, arguments, self.config.user_agent)
        except (TypeError, ValueError) as e:
            raise ToolProxyError(ErrorType.API_REQUEST_FAILED, f"Request failed: {e}") from e
        return self._authenticate(request, tool, catalog)

    def _lookup(self, name: str) -> tuple[ToolDefinition, EnrichedDefinition]:
        found = self.find_tool(name)
        if found is None:
            raise ToolProxyError(ErrorType.MISSING_TOOL, f"Tool '{name}' not found")
        return found

    def _authenticate(self, request: HttpRequest, tool: ToolDefinition, catalog: EnrichedDefinition) -> HttpRequest:
        defaults = self.config.default_credentials
        if tool.authentication is not None:
            auth = AuthConfig(
                type=tool.authentication.type,
                credentials=merge_credentials(defaults, tool.authentication.credentials),
            )
            return apply_auth(request, auth, catalog.security)

        auth_type = infer_auth_type(defaults) if defaults else None
        if auth_type is None:
            return request
        return apply_auth(request, AuthConfig(type=auth_type, credentials=defaults), catalog.security)

    def _send(self, request: HttpRequest) -> dict:
        kwargs: dict[str, Any] = {"timeout": self.config.request_timeout}
        if request.params:
            kwargs["params"] = request.query_items()
        headers = dict(request.headers)

        if request.body is not None:
            media_type = request.headers.get("Content-Type", "")
            if media_type == MULTIPART_MEDIA_TYPE and isinstance(request.body, dict):
                # requests writes the multipart header itself, boundary included.
                headers.pop("Content-Type", None)
                kwargs["files"] = {k: (None, format_value(v)) for k, v in request.body.items()}
            elif media_type == FORM_MEDIA_TYPE or isinstance(request.body, (str, bytes)):
                kwargs["data"] = request.body
            else:
                kwargs["json"] = request.body
        kwargs["headers"] = headers

        logger.debug(f"API {request.method} {request.full_url()}")
        try:
            response = self.session.request(request.method, request.url, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise ToolProxyError(
                ErrorType.NETWORK_ERROR,
                f"Network error: {e}",
                {"method": request.method, "url": request.url},
            ) from e
        except (requests.RequestException, TypeError, ValueError) as e:
            # TypeError: a body value requests cannot encode as JSON.
            raise ToolProxyError(ErrorType.API_REQUEST_FAILED, f"Request failed: {e}") from e

        return normalize_response(response)


def validate_arguments(tool: ToolDefinition, arguments: dict[str, Any]) -> None:
    """Presence check of required fields; no deeper schema validation."""
    missing = [name for name in tool.input_schema.get("required", []) if arguments.get(name) is None]
    if missing:
        raise ToolProxyError(
            ErrorType.PARAMETER_VALIDATION,
            "Parameter validation failed: " + ", ".join(f"Missing required parameter: {m}" for m in missing),
            {"missing": missing},
        )


def normalize_response(response: requests.Response) -> dict:
    content_type = response.headers.get("Content-Type", "")
    body: Any = response.text
    if "json" in content_type and response.content:
        try:
            body = response.json()
        except ValueError:
            pass  # keep the raw text
    return {
        "status": response.status_code,
        "status_text": response.reason,
        "headers": dict(response.headers),
        "body": body,
    }
