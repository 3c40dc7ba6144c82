"""Flatten an operation into one tool input schema.

Parameters from every location and the top-level properties of a JSON
request body end up side by side in a single object schema. The
ParameterMapping produced alongside it records where each field came from,
so the registry can invert the flattening at call time.
"""

import logging
from typing import Any

from openapi_tool_bridge.parser.base import JSON_MEDIA_TYPE, ParsedPath, ParsedRequestBody, PredefinedParameters

from .base import ParameterMapping

logger = logging.getLogger(__name__)

COMPOSITION_KEYWORDS = ("allOf", "oneOf", "anyOf")


def convert_schema(schema: Any) -> Any:
    """Translate an OpenAPI schema into plain JSON Schema.

    Structural keywords are converted recursively; anything else is copied
    verbatim. OpenAPI 3.0 `nullable` becomes a "null" member of `type`.
    """
    if not isinstance(schema, dict):
        return schema

    result = {}
    for key, value in schema.items():
        if key == "items":
            result[key] = convert_schema(value)
        elif key == "properties" and isinstance(value, dict):
            result[key] = {name: convert_schema(prop) for name, prop in value.items()}
        elif key == "additionalProperties":
            result[key] = value if isinstance(value, bool) else convert_schema(value)
        elif key in COMPOSITION_KEYWORDS and isinstance(value, list):
            result[key] = [convert_schema(member) for member in value]
        elif key == "nullable":
            continue
        else:
            result[key] = value

    if schema.get("nullable") is True and "type" in result:
        types = result["type"] if isinstance(result["type"], list) else [result["type"]]
        if "null" not in types:
            result["type"] = [*types, "null"]

    return result


def is_flattenable(schema: dict) -> bool:
    return isinstance(schema.get("properties"), dict) and schema.get("type", "object") == "object"


class SchemaConverter:
    """Builds the tool input schema and parameter mapping for operations."""

    def __init__(self, predefined: PredefinedParameters | None = None):
        self.predefined = predefined or PredefinedParameters()

    def input_schema(self, parsed_path: ParsedPath, tool_name: str) -> dict:
        properties: dict[str, dict] = {}
        required: list[str] = []

        for param in parsed_path.parameters:
            if param.name in properties:
                logger.warning(
                    f"{tool_name}: duplicate parameter '{param.name}' ({param.location}) skipped"
                )
                continue
            prop = convert_schema(param.schema_)
            if param.description:
                prop["description"] = param.description
            properties[param.name] = prop
            if param.required:
                required.append(param.name)

        self._add_request_body(parsed_path, tool_name, properties, required)

        for field, value in self.predefined.for_tool(tool_name).items():
            if field in properties:
                properties[field] = {**properties[field], "default": value}

        return {
            "type": "object",
            "properties": properties,
            "required": list(dict.fromkeys(required)),
        }

    def _add_request_body(self, parsed_path, tool_name, properties, required) -> None:
        body = parsed_path.request_body
        if body is None:
            return
        media_type, schema = _select_body(body)
        if schema is None:
            return

        body_schema = convert_schema(schema)
        if media_type == JSON_MEDIA_TYPE and is_flattenable(body_schema):
            for name, prop in body_schema["properties"].items():
                if name in properties:
                    logger.warning(f"{tool_name}: body property '{name}' collides with a parameter, skipped")
                    continue
                properties[name] = prop
            for name in body_schema.get("required") or []:
                if name in properties:
                    required.append(name)
        else:
            properties["body"] = body_schema
            if body.required:
                required.append("body")

    def parameter_mapping(self, parsed_path: ParsedPath) -> ParameterMapping:
        mapping = ParameterMapping()
        for param in parsed_path.parameters:
            if mapping.location_of(param.name) is None:
                getattr(mapping, f"{param.location}_params").append(param.name)

        if parsed_path.request_body is not None:
            media_type, schema = _select_body(parsed_path.request_body)
            if schema is not None:
                mapping.body_media_type = media_type
                body_schema = convert_schema(schema)
                if media_type == JSON_MEDIA_TYPE and is_flattenable(body_schema):
                    mapping.body_schema = body_schema
        return mapping


def _select_body(body: ParsedRequestBody) -> tuple[str | None, dict | None]:
    """JSON body first, else the first media type declaring a schema."""
    for media_type in (JSON_MEDIA_TYPE, *body.content):
        schema = body.schema_for(media_type)
        if schema is not None:
            return media_type, schema
    return None, None
