"""Runtime configuration for the tool registry."""

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, field_validator

VERSION = "0.1.0"

CREDENTIAL_ENV = {
    "username": "OPENAPI_USERNAME",
    "password": "OPENAPI_PASSWORD",
    "token": "OPENAPI_TOKEN",
    "key": "OPENAPI_API_KEY",
}


class BridgeConfig(BaseModel):
    definitions_directory: Path
    cache_directory: Path | None = None  # None disables caching
    force_regeneration: bool = False
    default_credentials: dict[str, Any] = {}
    request_timeout: float = 30.0  # seconds
    user_agent: str = f"openapi-tool-bridge/{VERSION}"

    @field_validator("default_credentials")
    @classmethod
    def _drop_unset(cls, value: dict[str, Any]) -> dict[str, Any]:
        return {k: v for k, v in value.items() if v is not None}

    @classmethod
    def from_env(cls, **overrides) -> "BridgeConfig":
        """Build from OPENAPI_* environment variables; keyword overrides win.

        OPENAPI_CACHE_DIR defaults to `<definitions>/.cache`; set it to an
        empty string to disable caching.
        """
        definitions = Path(
            overrides.get("definitions_directory") or os.getenv("OPENAPI_DEFINITIONS_DIR", "./definitions")
        )
        cache_dir = os.getenv("OPENAPI_CACHE_DIR")
        if cache_dir is None:
            cache = definitions / ".cache"
        else:
            cache = Path(cache_dir) if cache_dir else None

        values = {
            "definitions_directory": definitions,
            "cache_directory": cache,
            "force_regeneration": os.getenv("OPENAPI_FORCE_REGEN", "").lower() == "true",
            "default_credentials": {key: os.getenv(env) for key, env in CREDENTIAL_ENV.items()},
        }
        if os.getenv("OPENAPI_TIMEOUT"):
            values["request_timeout"] = float(os.environ["OPENAPI_TIMEOUT"])
        values.update({k: v for k, v in overrides.items() if k != "definitions_directory"})
        return cls(**values)
