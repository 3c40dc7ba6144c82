"""CLI entry point for openapi-tool-bridge."""

import json
import logging
from pathlib import Path

import click

from openapi_tool_bridge.config import BridgeConfig
from openapi_tool_bridge.errors import ToolProxyError
from openapi_tool_bridge.generator.enricher import DefinitionEnricher
from openapi_tool_bridge.proxy.registry import ToolRegistry

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _configure_logging(verbose: bool, debug: bool) -> None:
    level = logging.DEBUG if debug else logging.INFO if verbose else logging.WARNING
    logging.basicConfig(format=LOG_FORMAT, level=level)
    if not debug:
        logging.getLogger("urllib3").setLevel(logging.WARNING)


def _build_config(definitions: Path | None, cache_dir: Path | None, no_cache: bool, force: bool) -> BridgeConfig:
    overrides = {}
    if definitions is not None:
        overrides["definitions_directory"] = definitions
    if cache_dir is not None:
        overrides["cache_directory"] = cache_dir
    if no_cache:
        overrides["cache_directory"] = None
    if force:
        overrides["force_regeneration"] = True
    return BridgeConfig.from_env(**overrides)


def _echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2, ensure_ascii=False, default=str))


@click.group()
@click.option("--definitions", type=click.Path(file_okay=False, path_type=Path), default=None, help="Directory of OpenAPI definitions (default: $OPENAPI_DEFINITIONS_DIR or ./definitions).")
@click.option("--cache-dir", type=click.Path(file_okay=False, path_type=Path), default=None, help="Cache directory (default: <definitions>/.cache).")
@click.option("--no-cache", is_flag=True, help="Disable caching.")
@click.option("--force", is_flag=True, help="Ignore cached catalogs and recompile.")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose logging.")
@click.option("--debug", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx, definitions, cache_dir, no_cache, force, verbose, debug):
    """OpenAPI Tool Bridge: expose REST APIs described by OpenAPI as callable tools."""
    _configure_logging(verbose, debug)
    ctx.obj = _build_config(definitions, cache_dir, no_cache, force)


@main.command("list-tools")
@click.pass_obj
def list_tools(config: BridgeConfig):
    """List every tool compiled from the definitions directory."""
    try:
        tools = ToolRegistry(config).list_tools()
    except ToolProxyError as e:
        raise click.ClickException(e.message)
    _echo_json([tool.to_protocol() for tool in tools])


@main.command()
@click.argument("name")
@click.option("--args", "args_json", default="{}", help="Tool arguments as a JSON object.")
@click.option("--dry-run", is_flag=True, help="Print the HTTP request instead of sending it.")
@click.pass_obj
def call(config: BridgeConfig, name: str, args_json: str, dry_run: bool):
    """Execute tool NAME with the given arguments."""
    try:
        arguments = json.loads(args_json)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint="--args")
    if not isinstance(arguments, dict):
        raise click.BadParameter("must be a JSON object", param_hint="--args")

    registry = ToolRegistry(config)
    try:
        if dry_run:
            request = registry.build_request(name, arguments)
            _echo_json({
                "method": request.method,
                "url": request.full_url(),
                "headers": dict(request.headers),
                "body": request.body,
            })
        else:
            _echo_json(registry.execute_tool(name, arguments))
    except ToolProxyError as e:
        _echo_json(e.to_dict())
        raise SystemExit(1)


@main.command("compile")
@click.argument("definition", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_obj
def compile_definition(config: BridgeConfig, definition: Path):
    """Compile DEFINITION and print its enriched catalog."""
    enricher = DefinitionEnricher(config.cache_directory, config.force_regeneration)
    try:
        enriched = enricher.enrich_file(definition)
    except ToolProxyError as e:
        raise click.ClickException(e.message)
    click.echo(enriched.model_dump_json(indent=2))


@main.command("clean-cache")
@click.option("--max-age-days", default=7.0, type=float, help="Delete entries older than this many days.")
@click.pass_obj
def clean_cache(config: BridgeConfig, max_age_days: float):
    """Delete stale cache entries."""
    if config.cache_directory is None:
        click.echo("Caching is disabled.")
        return
    removed = DefinitionEnricher(config.cache_directory).cleanup_cache(max_age_days * 24 * 60 * 60)
    click.echo(f"Removed {len(removed)} files from {config.cache_directory}")
