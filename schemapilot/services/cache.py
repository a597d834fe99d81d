"""Site-scoped cache of page analysis outcomes (delta analysis).

The pipeline never touches the backing storage directly: it is handed a
:class:`CacheStore` and only calls :meth:`~CacheStore.read` and
:meth:`~CacheStore.write`.  Entries do not expire.
"""

import logging
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import urlparse

from pydantic import TypeAdapter, ValidationError

from schemapilot.models.cache import CacheEntry

logger = logging.getLogger(__name__)

DEFAULT_CACHE_DIR = Path.home() / ".cache" / "schemapilot"
_KEY_PREFIX = "schema-cache-"

_entries_adapter = TypeAdapter(Dict[str, CacheEntry])


def site_identity(site_url: str) -> str:
    """Return the cache namespace for *site_url*: host plus path, no scheme."""
    parsed = urlparse(site_url if "://" in site_url else f"https://{site_url}")
    host = (parsed.hostname or "").lower()
    path = parsed.path.rstrip("/")
    return f"{host}{path}"


class CacheStore:
    """Interface every cache backend implements."""

    def read(self, site: str) -> Dict[str, CacheEntry]:
        raise NotImplementedError

    def write(self, site: str, url: str, entry: CacheEntry) -> None:
        raise NotImplementedError

    def forget(self, site: str, url: str) -> None:
        raise NotImplementedError

    def clear(self, site: str) -> None:
        raise NotImplementedError

    def get(self, site: str, url: str) -> Optional[CacheEntry]:
        return self.read(site).get(url)


class MemoryCacheStore(CacheStore):
    """Process-local store, used by tests and throwaway runs."""

    def __init__(self) -> None:
        self._sites: Dict[str, Dict[str, CacheEntry]] = {}

    def read(self, site: str) -> Dict[str, CacheEntry]:
        return dict(self._sites.get(site, {}))

    def write(self, site: str, url: str, entry: CacheEntry) -> None:
        self._sites.setdefault(site, {})[url] = entry

    def forget(self, site: str, url: str) -> None:
        self._sites.get(site, {}).pop(url, None)

    def clear(self, site: str) -> None:
        self._sites.pop(site, None)


class JsonFileCacheStore(CacheStore):
    """One JSON document per site under *directory*.

    Every write rewrites the whole mapping for that site under a lock, so
    concurrent writers from worker threads never drop each other's entries.
    A file that is missing, unreadable or not a valid mapping reads as empty.
    """

    def __init__(self, directory: Path | str = DEFAULT_CACHE_DIR) -> None:
        self.directory = Path(directory)
        self._lock = threading.Lock()

    def _path(self, site: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9._-]+", "_", site) or "_"
        return self.directory / f"{_KEY_PREFIX}{safe}.json"

    def read(self, site: str) -> Dict[str, CacheEntry]:
        path = self._path(site)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Cache for %s is unreadable: %s", site, exc)
            return {}

        try:
            return _entries_adapter.validate_json(raw)
        except ValidationError as exc:
            logger.warning("Cache for %s is corrupt, ignoring it: %s", site, exc)
            return {}

    def _persist(self, site: str, entries: Dict[str, CacheEntry]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        payload = _entries_adapter.dump_json(entries, indent=2)
        # Write-then-rename so a crash never leaves a half-written blob
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(payload)
            os.replace(tmp_name, self._path(site))
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def write(self, site: str, url: str, entry: CacheEntry) -> None:
        with self._lock:
            entries = self.read(site)
            entries[url] = entry
            self._persist(site, entries)

    def forget(self, site: str, url: str) -> None:
        with self._lock:
            entries = self.read(site)
            if entries.pop(url, None) is not None:
                self._persist(site, entries)

    def clear(self, site: str) -> None:
        with self._lock:
            self._path(site).unlink(missing_ok=True)

