"""Locate definition files and their customization sidecars."""

from pathlib import Path

DEFINITION_SUFFIXES = (".yaml", ".yml", ".json")

CUSTOMIZATION_MARKER = ".custom."
CUSTOMIZATION_SUFFIX = ".custom.yaml"
CACHE_MARKER = ".enriched."


def is_definition_file(file_path: Path) -> bool:
    """True for YAML/JSON files that are neither sidecars nor cache entries."""
    name = file_path.name
    if not file_path.is_file() or not name.lower().endswith(DEFINITION_SUFFIXES):
        return False
    return CUSTOMIZATION_MARKER not in name and CACHE_MARKER not in name


def find_definition_files(directory: Path) -> list[Path]:
    """Definition files directly inside directory, sorted by name.

    Sorting makes load order (and therefore tool-name shadowing) reproducible.
    """
    return sorted(p for p in directory.iterdir() if is_definition_file(p))


def customization_path_for(definition_path: Path) -> Path:
    """museum-api.yaml -> museum-api.custom.yaml, in the same directory."""
    return definition_path.with_name(definition_path.stem + CUSTOMIZATION_SUFFIX)
