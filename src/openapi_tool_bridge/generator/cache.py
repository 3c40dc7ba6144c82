"""On-disk cache of compiled catalogs.

Each entry is `<hash>.enriched.json` plus a `<hash>.hash` marker. Every
failure here is logged and reported as a miss; caching never breaks
compilation.
"""

import logging
import time
from pathlib import Path

from .base import EnrichedDefinition

logger = logging.getLogger(__name__)

ENTRY_SUFFIX = ".enriched.json"
MARKER_SUFFIX = ".hash"

DEFAULT_MAX_AGE = 7 * 24 * 60 * 60  # seconds


class CacheStore:
    """Directory of cached EnrichedDefinitions, keyed by combined hash."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def entry_path(self, hash: str) -> Path:
        return self.directory / f"{hash}{ENTRY_SUFFIX}"

    def load(self, hash: str) -> EnrichedDefinition | None:
        path = self.entry_path(hash)
        if not path.exists():
            return None
        try:
            return EnrichedDefinition.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:  # ValueError covers bad encoding and pydantic errors
            logger.warning(f"Ignoring unreadable cache entry {path.name}: {e}")
            return None

    def save(self, enriched: EnrichedDefinition) -> None:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            self.entry_path(enriched.hash).write_text(enriched.model_dump_json(indent=2), encoding="utf-8")
            (self.directory / f"{enriched.hash}{MARKER_SUFFIX}").write_text(enriched.hash, encoding="utf-8")
        except OSError as e:
            logger.warning(f"Failed to save to cache: {e}")

    def cleanup(self, max_age: float = DEFAULT_MAX_AGE) -> list[Path]:
        """Delete entries older than max_age seconds. Returns removed files."""
        removed = []
        if not self.directory.is_dir():
            return removed
        now = time.time()
        try:
            for path in self.directory.iterdir():
                if not path.name.endswith((ENTRY_SUFFIX, MARKER_SUFFIX)):
                    continue
                if now - path.stat().st_mtime > max_age:
                    path.unlink()
                    removed.append(path)
        except OSError as e:
            logger.warning(f"Failed to clean up cache: {e}")
        return removed
