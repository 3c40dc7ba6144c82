"""Compile a parsed definition into a tool catalog.

The catalog is keyed by a hash over the source file content and the
canonical form of its (env-resolved) customization, and cached on disk
when a cache directory is configured. A cached entry is reused as long as
its source file, and its customization file if one was recorded, still
exist; contents are not re-verified beyond the hash key.
"""

import hashlib
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from openapi_tool_bridge.parser.base import CustomizationConfig, ParsedDefinition
from openapi_tool_bridge.parser.customization import load_for_definition
from openapi_tool_bridge.parser.openapi import content_hash, parse_openapi
from openapi_tool_bridge.proxy.auth import infer_auth_type

from .base import AuthConfig, EnrichedDefinition, EnrichmentMetadata, ToolDefinition, ToolEndpoint
from .cache import DEFAULT_MAX_AGE, CacheStore
from .naming import ToolNameGenerator
from .schema import SchemaConverter

logger = logging.getLogger(__name__)


def combined_hash(source_hash: str, customization: CustomizationConfig) -> str:
    """Hash of source content + key-sorted customization; independent of key order."""
    payload = json.dumps(
        {
            "parsed": source_hash,
            "customization": json.dumps(customization.canonical(), sort_keys=True, default=str),
        },
        sort_keys=True,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class DefinitionEnricher:
    """Turns ParsedDefinitions into cached EnrichedDefinitions."""

    def __init__(
        self,
        cache_directory: Path | None = None,
        force_regeneration: bool = False,
        parser: Callable[[Path], ParsedDefinition] = parse_openapi,
    ):
        self.cache = CacheStore(cache_directory) if cache_directory else None
        self.force_regeneration = force_regeneration
        self.parser = parser

    def enrich_file(self, source_path: Path) -> EnrichedDefinition:
        """Compile a definition file, consulting the cache before parsing it."""
        source_path = Path(source_path)
        customization, custom_path = load_for_definition(source_path)
        try:
            source_hash = content_hash(source_path.read_bytes())
        except OSError:
            source_hash = None  # the parser reports the unreadable file

        if source_hash is not None:
            cached = self._load_cached(combined_hash(source_hash, customization), source_path)
            if cached is not None:
                return cached

        parsed = self.parser(source_path)
        return self.enrich(parsed, customization, source_path, custom_path)

    def enrich(
        self,
        parsed: ParsedDefinition,
        customization: CustomizationConfig,
        source_path: Path,
        custom_path: Path | None = None,
    ) -> EnrichedDefinition:
        hash = combined_hash(parsed.hash, customization)

        cached = self._load_cached(hash, Path(source_path))
        if cached is not None:
            return cached

        enriched = self._build(parsed, customization, Path(source_path), custom_path, hash)
        if self.cache is not None:
            self.cache.save(enriched)
        return enriched

    def _load_cached(self, hash: str, source_path: Path) -> EnrichedDefinition | None:
        if self.cache is None or self.force_regeneration:
            return None
        cached = self.cache.load(hash)
        if cached is None:
            logger.debug(f"Cache miss for {source_path.name} ({hash[:12]})")
            return None
        if not source_path.exists():
            return None
        if cached.metadata.custom_file and not Path(cached.metadata.custom_file).exists():
            return None
        logger.info(f"Loaded {source_path.name} from cache ({hash[:12]})")
        return cached

    def _build(self, parsed, customization, source_path, custom_path, hash) -> EnrichedDefinition:
        namer = ToolNameGenerator(customization.tool_aliases)
        converter = SchemaConverter(customization.predefined_parameters)
        server_url = parsed.servers[0] if parsed.servers else ""

        tools: dict[str, ToolDefinition] = {}
        for parsed_path in parsed.paths:
            name = namer.generate(parsed_path)
            if name in tools:
                logger.warning(
                    f"{source_path.name}: tool name '{name}' generated twice, "
                    f"{parsed_path.method.upper()} {parsed_path.path} replaces the earlier operation"
                )

            tools[name] = ToolDefinition(
                name=name,
                description=(
                    parsed_path.summary
                    or parsed_path.description
                    or f"{parsed_path.method.upper()} {parsed_path.path}"
                ),
                method=parsed_path.method.upper(),
                endpoint=ToolEndpoint(path=parsed_path.path, url=server_url.rstrip("/") + parsed_path.path),
                input_schema=converter.input_schema(parsed_path, name),
                parameter_mapping=converter.parameter_mapping(parsed_path),
                authentication=self._authentication_for(customization, name),
                predefined_params=customization.predefined_parameters.for_tool(name),
                security=parsed_path.security,
            )

        logger.info(f"Compiled {len(tools)} tools from {source_path.name}")
        return EnrichedDefinition(
            hash=hash,
            server_url=server_url,
            security=parsed.security,
            tools=list(tools.values()),
            metadata=EnrichmentMetadata(
                source_file=str(source_path),
                custom_file=str(custom_path) if custom_path else None,
                generated_at=datetime.now(timezone.utc).isoformat(),
            ),
        )

    @staticmethod
    def _authentication_for(customization: CustomizationConfig, tool_name: str) -> AuthConfig | None:
        """First override whose endpoint is '*' or exactly the tool name."""
        for override in customization.authentication_overrides:
            if override.endpoint in ("*", tool_name):
                return AuthConfig(
                    type=infer_auth_type(override.credentials) or "unknown",
                    credentials=override.credentials,
                )
        return None

    def cleanup_cache(self, max_age: float = DEFAULT_MAX_AGE) -> list[Path]:
        if self.cache is None:
            return []
        return self.cache.cleanup(max_age)
