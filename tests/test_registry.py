import base64
import shutil
import threading
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import requests

from openapi_tool_bridge.config import BridgeConfig
from openapi_tool_bridge.errors import ErrorType, ToolProxyError
from openapi_tool_bridge.generator.enricher import DefinitionEnricher
from openapi_tool_bridge.parser.openapi import parse_openapi
from openapi_tool_bridge.proxy.registry import ToolRegistry, normalize_response

FIXTURES = Path(__file__).parent / "fixtures"

ZOO_API = """
openapi: 3.0.3
info: {title: Zoo, version: "1"}
servers:
  - url: https://zoo.example/api/
paths:
  /events:
    get:
      operationId: listSpecialEvents
      summary: Zoo events
      responses: {'200': {description: ok}}
"""

KEYED_API = """
openapi: 3.0.3
info: {title: Keyed, version: "1"}
servers:
  - url: https://keyed.example
paths:
  /things:
    get:
      operationId: listThings
      responses: {'200': {description: ok}}
components:
  securitySchemes:
    QueryKey:
      type: apiKey
      in: query
      name: api_key
security:
  - QueryKey: []
"""


def _response(status=200, body=b"{}", content_type="application/json", reason="OK"):
    response = requests.Response()
    response.status_code = status
    response._content = body
    response.headers["Content-Type"] = content_type
    response.reason = reason
    response.encoding = "utf-8"
    return response


@pytest.fixture
def definitions(tmp_path, monkeypatch):
    monkeypatch.setenv("MUSEUM_PASSWORD", "s3cret")
    target = tmp_path / "definitions"
    target.mkdir()
    for name in ("museum-api.yaml", "museum-api.custom.yaml"):
        shutil.copy(FIXTURES / name, target / name)
    return target


@pytest.fixture
def session():
    mock = MagicMock()
    mock.request.return_value = _response(body=b'{"ok": true}')
    return mock


@pytest.fixture
def registry(definitions, session):
    config = BridgeConfig(definitions_directory=definitions, cache_directory=None)
    return ToolRegistry(config, session=session)


def _sent(session):
    args, kwargs = session.request.call_args
    return args[0], args[1], kwargs


class TestListTools:
    def test_lists_every_tool(self, registry):
        names = [tool.name for tool in registry.list_tools()]
        assert len(names) == 8
        assert "list-museum-hours" in names
        assert "put-notes" in names

    def test_protocol_shape(self, registry):
        info = next(t for t in registry.list_tools() if t.name == "createSpecialEvent")
        protocol = info.to_protocol()
        assert set(protocol) == {"name", "description", "inputSchema"}
        assert protocol["description"] == "Create special event"
        assert protocol["inputSchema"]["required"] == ["name", "location", "price"]

    def test_bad_definition_is_skipped(self, definitions, registry):
        (definitions / "broken.yaml").write_text("openapi: [unclosed\n  paths: {")
        assert len(registry.list_tools()) == 8
        assert registry.loaded_definitions() == ["museum-api.yaml"]

    def test_missing_directory(self, tmp_path, session):
        registry = ToolRegistry(BridgeConfig(definitions_directory=tmp_path / "nope"), session=session)
        with pytest.raises(ToolProxyError) as exc:
            registry.list_tools()
        assert exc.value.type == ErrorType.INVALID_OPENAPI

    def test_reload_picks_up_new_files(self, definitions, registry):
        assert registry.loaded_definitions() == ["museum-api.yaml"]
        (definitions / "zoo-api.yaml").write_text(ZOO_API)
        assert registry.loaded_definitions() == ["museum-api.yaml"]
        registry.reload()
        assert registry.loaded_definitions() == ["museum-api.yaml", "zoo-api.yaml"]

    def test_status(self, registry):
        status = registry.status()
        assert status["definitions"] == ["museum-api.yaml"]
        assert len(status["tools"]) == 8
        assert status["tools"][0]["name"] == "list-museum-hours"

    def test_concurrent_first_load_compiles_once(self, definitions, session):
        calls = []

        def counting_parser(path):
            calls.append(path)
            return parse_openapi(path)

        config = BridgeConfig(definitions_directory=definitions)
        registry = ToolRegistry(config, enricher=DefinitionEnricher(parser=counting_parser), session=session)
        threads = [threading.Thread(target=registry.list_tools) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert len(calls) == 1
        assert len(registry.list_tools()) == 8


class TestExecuteTool:
    def test_query_parameters_and_predefined_values(self, registry, session):
        result = registry.execute_tool("list-museum-hours", {"startDate": "2024-01-01", "limit": 20})
        method, url, kwargs = _sent(session)
        assert method == "GET"
        assert url == "https://api.museum.example/v1/museum-hours"
        assert kwargs["params"] == [("startDate", "2024-01-01"), ("page", "1"), ("limit", "20")]
        assert kwargs["timeout"] == 30.0
        assert "json" not in kwargs
        assert result["status"] == 200
        assert result["body"] == {"ok": True}

    def test_full_url_of_built_request(self, registry):
        request = registry.build_request("list-museum-hours", {"startDate": "2024-01-01", "limit": 20})
        assert request.full_url() == "https://api.museum.example/v1/museum-hours?startDate=2024-01-01&page=1&limit=20"

    def test_authentication_from_customization(self, registry, session):
        registry.execute_tool("listSpecialEvents", {})
        _, _, kwargs = _sent(session)
        expected = base64.b64encode(b"museum-admin:s3cret").decode()
        assert kwargs["headers"]["Authorization"] == f"Basic {expected}"
        assert kwargs["headers"]["User-Agent"].startswith("openapi-tool-bridge/")

    def test_path_parameter_is_percent_encoded(self, registry, session):
        registry.execute_tool("get-special-events-by-eventId", {"eventId": "café 1"})
        method, url, _ = _sent(session)
        assert method == "GET"
        assert url == "https://api.museum.example/v1/special-events/caf%C3%A9%201"

    def test_body_fields_are_unflattened(self, registry, session):
        registry.execute_tool("createSpecialEvent", {"name": "Night Tour", "location": "Hall A", "price": 25})
        method, url, kwargs = _sent(session)
        assert method == "POST"
        assert url == "https://api.museum.example/v1/special-events"
        assert kwargs["json"] == {
            "organizer": "museum-staff",
            "name": "Night Tour",
            "location": "Hall A",
            "price": 25,
        }
        assert kwargs["headers"]["Content-Type"] == "application/json"

    def test_header_cookie_and_array_query(self, registry, session):
        registry.execute_tool(
            "buyMuseumTickets",
            {
                "X-Request-Id": "req-1",
                "session": "abc",
                "tags": ["family", "weekend"],
                "ticketType": "general",
                "ticketDate": "2024-05-01",
            },
        )
        _, _, kwargs = _sent(session)
        assert kwargs["headers"]["X-Request-Id"] == "req-1"
        assert kwargs["headers"]["Cookie"] == "session=abc"
        assert kwargs["params"] == [("tags", "family"), ("tags", "weekend")]
        assert kwargs["json"] == {"ticketType": "general", "ticketDate": "2024-05-01"}

    def test_text_body(self, registry, session):
        registry.execute_tool("put-notes", {"body": "Closed on Monday"})
        method, _, kwargs = _sent(session)
        assert method == "PUT"
        assert kwargs["data"] == "Closed on Monday"
        assert kwargs["headers"]["Content-Type"] == "text/plain"

    def test_missing_required_fields_fail_before_sending(self, registry, session):
        with pytest.raises(ToolProxyError) as exc:
            registry.execute_tool("createSpecialEvent", {"name": "Night Tour"})
        assert exc.value.type == ErrorType.PARAMETER_VALIDATION
        assert exc.value.details == {"missing": ["location", "price"]}
        assert "Missing required parameter: location" in exc.value.message
        session.request.assert_not_called()

    def test_none_counts_as_missing(self, registry, session):
        with pytest.raises(ToolProxyError) as exc:
            registry.execute_tool("deleteSpecialEvent", {"eventId": None})
        assert exc.value.type == ErrorType.PARAMETER_VALIDATION
        session.request.assert_not_called()

    def test_alias_replaces_original_name(self, registry, session):
        with pytest.raises(ToolProxyError) as exc:
            registry.execute_tool("getMuseumHours", {})
        assert exc.value.type == ErrorType.MISSING_TOOL
        session.request.assert_not_called()

    def test_error_status_is_a_normal_result(self, registry, session):
        session.request.return_value = _response(404, b'{"detail": "no such event"}', reason="Not Found")
        result = registry.execute_tool("deleteSpecialEvent", {"eventId": "42"})
        assert result["status"] == 404
        assert result["status_text"] == "Not Found"
        assert result["body"] == {"detail": "no such event"}

    @pytest.mark.parametrize("failure", [requests.ConnectionError("refused"), requests.Timeout("slow")])
    def test_transport_failures_are_network_errors(self, registry, session, failure):
        session.request.side_effect = failure
        with pytest.raises(ToolProxyError) as exc:
            registry.execute_tool("listSpecialEvents", {})
        assert exc.value.type == ErrorType.NETWORK_ERROR
        assert exc.value.details == {"method": "GET", "url": "https://api.museum.example/v1/special-events"}

    def test_other_request_failures(self, registry, session):
        session.request.side_effect = requests.TooManyRedirects("loop")
        with pytest.raises(ToolProxyError) as exc:
            registry.execute_tool("listSpecialEvents", {})
        assert exc.value.type == ErrorType.API_REQUEST_FAILED

    def test_unencodable_body_is_a_request_failure(self, registry, session):
        session.request.side_effect = TypeError("Object of type date is not JSON serializable")
        with pytest.raises(ToolProxyError) as exc:
            registry.execute_tool("createSpecialEvent", {"name": "Night Tour", "location": "Hall A", "price": 25})
        assert exc.value.type == ErrorType.API_REQUEST_FAILED

    def test_sidecar_dates_are_sent_as_strings(self, definitions, session):
        (definitions / "museum-api.custom.yaml").write_text(
            "predefinedParameters:\n  endpoints:\n    createSpecialEvent:\n      since: 2024-01-01\n"
        )
        registry = ToolRegistry(BridgeConfig(definitions_directory=definitions), session=session)
        registry.execute_tool("createSpecialEvent", {"name": "Night Tour", "location": "Hall A", "price": 25})
        _, _, kwargs = _sent(session)
        assert kwargs["json"]["since"] == "2024-01-01"

    def test_unresolved_credentials_are_sent_verbatim(self, definitions, session, monkeypatch):
        monkeypatch.delenv("MUSEUM_PASSWORD")
        registry = ToolRegistry(BridgeConfig(definitions_directory=definitions), session=session)
        registry.execute_tool("listSpecialEvents", {})
        _, _, kwargs = _sent(session)
        expected = base64.b64encode(b"museum-admin:${MUSEUM_PASSWORD}").decode()
        assert kwargs["headers"]["Authorization"] == f"Basic {expected}"


class TestMultipleDefinitions:
    def test_first_loaded_definition_wins(self, definitions, session):
        (definitions / "aaa-zoo.yaml").write_text(ZOO_API)
        registry = ToolRegistry(BridgeConfig(definitions_directory=definitions), session=session)
        tool, catalog = registry.find_tool("listSpecialEvents")
        assert tool.description == "Zoo events"
        assert catalog.server_url == "https://zoo.example/api/"

        registry.execute_tool("listSpecialEvents", {})
        _, url, kwargs = _sent(session)
        assert url == "https://zoo.example/api/events"
        assert "Authorization" not in kwargs["headers"]

    def test_shadowed_tool_listed_once(self, definitions, session):
        (definitions / "aaa-zoo.yaml").write_text(ZOO_API)
        registry = ToolRegistry(BridgeConfig(definitions_directory=definitions), session=session)
        tools = [t for t in registry.list_tools() if t.name == "listSpecialEvents"]
        assert len(tools) == 1
        assert tools[0].description == "Zoo events"
        assert len(registry.list_tools()) == 8
        assert len(registry.status()["tools"]) == 8

    def test_default_credentials_use_declared_api_key(self, tmp_path, session):
        directory = tmp_path / "defs"
        directory.mkdir()
        (directory / "keyed.yaml").write_text(KEYED_API)
        config = BridgeConfig(definitions_directory=directory, default_credentials={"key": "k-123", "token": None})
        registry = ToolRegistry(config, session=session)
        registry.execute_tool("listThings", {})
        _, url, kwargs = _sent(session)
        assert url == "https://keyed.example/things"
        assert kwargs["params"] == [("api_key", "k-123")]


class TestNormalizeResponse:
    def test_json_body(self):
        result = normalize_response(_response(201, b'{"id": 1}', reason="Created"))
        assert result == {
            "status": 201,
            "status_text": "Created",
            "headers": {"Content-Type": "application/json"},
            "body": {"id": 1},
        }

    def test_text_body(self):
        result = normalize_response(_response(body=b"plain", content_type="text/plain"))
        assert result["body"] == "plain"

    def test_invalid_json_kept_as_text(self):
        result = normalize_response(_response(body=b"{oops"))
        assert result["body"] == "{oops"
