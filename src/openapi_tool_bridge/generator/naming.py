"""Tool name derivation.

operationId when present, otherwise `<method>-<static-path>[-by-<param>...]`,
e.g. GET /special-events/{eventId} -> get-special-events-by-eventId.
Aliases from the customization sidecar are applied last, by exact match.
"""

import re

from openapi_tool_bridge.parser.base import ParsedPath

PATH_PARAM = re.compile(r"\{([^}]+)\}")
NON_ALNUM = re.compile(r"[^a-zA-Z0-9]+")


class ToolNameGenerator:
    """Generates stable tool names for parsed operations."""

    def __init__(self, aliases: dict[str, str] | None = None):
        self.aliases = aliases or {}

    def generate(self, parsed_path: ParsedPath) -> str:
        """Final tool name, alias applied."""
        name = self.original_name(parsed_path)
        return self.aliases.get(name, name)

    def original_name(self, parsed_path: ParsedPath) -> str:
        """Name before alias lookup."""
        if parsed_path.operation_id:
            return parsed_path.operation_id
        return derive_name(parsed_path.method, parsed_path.path)


def derive_name(method: str, path: str) -> str:
    params = PATH_PARAM.findall(path)
    static_path = _dashed(PATH_PARAM.sub("", path)).lower()

    parts = [method.lower()]
    if static_path:
        parts.append(static_path)
    for param in params:
        param = _dashed(param)
        if param:
            parts.append(f"by-{param}")
    return "-".join(parts)


def _dashed(text: str) -> str:
    return NON_ALNUM.sub("-", text).strip("-")
