"""Customization sidecar loader.

A definition file `museum-api.yaml` may be accompanied by
`museum-api.custom.yaml` holding tool aliases, predefined parameter values
and authentication overrides. Malformed entries are dropped individually;
a missing sidecar yields an empty configuration.
"""

import json
import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

from openapi_tool_bridge.errors import ErrorType, ToolProxyError

from .base import AuthenticationOverride, CustomizationConfig, PredefinedParameters
from .detect import customization_path_for

logger = logging.getLogger(__name__)

ENV_PLACEHOLDER = re.compile(r"\$\{([^}]+)\}")


def load_customization(file_path: Path) -> CustomizationConfig:
    """Load and structurally validate a sidecar file (env placeholders untouched)."""
    file_path = Path(file_path)
    if not file_path.exists():
        return CustomizationConfig()

    try:
        data = yaml.safe_load(file_path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise ToolProxyError(
            ErrorType.INVALID_OPENAPI,
            f"Failed to load customization config: {e}",
            {"file_path": str(file_path)},
        ) from e

    return validate_customization(data)


def load_for_definition(definition_path: Path) -> tuple[CustomizationConfig, Path | None]:
    """Load and env-resolve the sidecar belonging to a definition file.

    Returns the config and the sidecar path (None when there is no sidecar).
    """
    custom_path = customization_path_for(Path(definition_path))
    config = resolve_environment_variables(load_customization(custom_path))
    return config, custom_path if custom_path.exists() else None


def validate_customization(data: Any) -> CustomizationConfig:
    if not isinstance(data, dict):
        return CustomizationConfig()
    # YAML dates and timestamps become strings, as they would after a cache round trip.
    data = json.loads(json.dumps(data, default=str))

    aliases = {}
    raw_aliases = data.get("toolAliases")
    if isinstance(raw_aliases, dict):
        for original, alias in raw_aliases.items():
            if isinstance(alias, str):
                aliases[str(original)] = alias
            else:
                logger.warning(f"Ignoring non-string alias for tool '{original}'")

    predefined = PredefinedParameters()
    raw_predefined = data.get("predefinedParameters")
    if isinstance(raw_predefined, dict):
        if isinstance(raw_predefined.get("global"), dict):
            predefined.global_ = raw_predefined["global"]
        if isinstance(raw_predefined.get("endpoints"), dict):
            predefined.endpoints = {
                str(tool): params
                for tool, params in raw_predefined["endpoints"].items()
                if isinstance(params, dict)
            }

    overrides = []
    raw_overrides = data.get("authenticationOverrides")
    if isinstance(raw_overrides, list):
        for entry in raw_overrides:
            if (
                isinstance(entry, dict)
                and isinstance(entry.get("endpoint"), str)
                and isinstance(entry.get("credentials"), dict)
            ):
                overrides.append(
                    AuthenticationOverride(endpoint=entry["endpoint"], credentials=entry["credentials"])
                )
            else:
                logger.warning(f"Ignoring malformed authentication override: {entry!r}")

    return CustomizationConfig(
        tool_aliases=aliases,
        predefined_parameters=predefined,
        authentication_overrides=overrides,
    )


def resolve_environment_variables(config: CustomizationConfig) -> CustomizationConfig:
    """Return a copy with ${NAME} placeholders replaced from the environment.

    Applies to authentication overrides and predefined parameters. Unset (or
    empty) variables leave the placeholder verbatim.
    """
    predefined = config.predefined_parameters
    return CustomizationConfig(
        tool_aliases=dict(config.tool_aliases),
        predefined_parameters=PredefinedParameters(
            global_=_substitute(predefined.global_),
            endpoints=_substitute(predefined.endpoints),
        ),
        authentication_overrides=[
            AuthenticationOverride(endpoint=o.endpoint, credentials=_substitute(o.credentials))
            for o in config.authentication_overrides
        ],
    )


def _substitute(value: Any) -> Any:
    if isinstance(value, str):
        return ENV_PLACEHOLDER.sub(lambda m: os.environ.get(m.group(1)) or m.group(0), value)
    if isinstance(value, dict):
        return {k: _substitute(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_substitute(v) for v in value]
    return value
