"""Template Store — lists and downloads named template workbooks as raw bytes.

The engine only ever sees bytes; how they were obtained is this module's
concern. Two backends:

- LocalTemplateStore: files under ``settings.templates_dir``.
- RedisTemplateStore: byte blobs under ``settings.redis_template_prefix``.

Both consult ``catalog.yaml`` (when present) to map template names to paths.
"""

import logging
from pathlib import Path
from typing import Optional

import redis as redis_lib

from backend.core import redis_client
from backend.core.config import settings
from backend.core.template_catalog import TemplateCatalog, load_catalog

logger = logging.getLogger(__name__)


class TemplateStoreError(Exception):
    """The storage backend could not serve the request."""


class TemplateNotFoundError(TemplateStoreError):
    """No template is stored under the requested name."""


def _templates_dir(templates_dir: Optional[str] = None) -> Path:
    path = Path(templates_dir or settings.templates_dir)
    if not path.is_absolute():
        path = settings.project_root / path
    return path


class TemplateStore:
    """Interface shared by the storage backends."""

    backend = "none"

    def list_templates(self) -> list[str]:
        raise NotImplementedError

    def download(self, name: str) -> bytes:
        raise NotImplementedError

    def check_connection(self) -> bool:
        return True


class LocalTemplateStore(TemplateStore):
    """Templates read from a directory, optionally indexed by a YAML catalog."""

    backend = "local"

    def __init__(self, templates_dir: Optional[str] = None, catalog_file: Optional[str] = None):
        self._dir = _templates_dir(templates_dir)
        self._catalog_path = self._dir / (catalog_file or settings.template_catalog)
        self._catalog: Optional[TemplateCatalog] = None

    def _get_catalog(self) -> Optional[TemplateCatalog]:
        if self._catalog is None and self._catalog_path.exists():
            self._catalog = load_catalog(self._catalog_path)
        return self._catalog

    def list_templates(self) -> list[str]:
        catalog = self._get_catalog()
        if catalog is not None:
            return catalog.names()
        if not self._dir.exists():
            return []
        return sorted(
            p.relative_to(self._dir).as_posix()
            for p in self._dir.rglob("*.xlsx")
            if not p.name.startswith("_")
        )

    def _resolve_path(self, name: str) -> Path:
        catalog = self._get_catalog()
        relative = name
        if catalog is not None:
            entry = catalog.get(name)
            if entry is None:
                raise TemplateNotFoundError(f"Template '{name}' is not in the catalog")
            relative = entry.path

        root = self._dir.resolve()
        path = (root / relative).resolve()
        if not path.is_relative_to(root):
            raise TemplateNotFoundError(f"Template '{name}' is outside the templates directory")
        return path

    def download(self, name: str) -> bytes:
        path = self._resolve_path(name)
        if not path.is_file():
            raise TemplateNotFoundError(f"Template file not found: {path.name}")
        content = path.read_bytes()
        logger.info(f"Loaded template '{name}' from {path} ({len(content)} bytes)")
        return content

    def check_connection(self) -> bool:
        return self._dir.exists()


class RedisTemplateStore(TemplateStore):
    """Templates stored as byte strings in Redis."""

    backend = "redis"

    def __init__(
        self,
        client: redis_lib.Redis,
        key_prefix: Optional[str] = None,
        catalog: Optional[TemplateCatalog] = None,
    ):
        self._client = client
        self._prefix = key_prefix if key_prefix is not None else settings.redis_template_prefix
        self._catalog = catalog

    def _key(self, name: str) -> str:
        path = name
        if self._catalog is not None:
            entry = self._catalog.get(name)
            if entry is None:
                raise TemplateNotFoundError(f"Template '{name}' is not in the catalog")
            path = entry.path
        return f"{self._prefix}{path}"

    def list_templates(self) -> list[str]:
        if self._catalog is not None:
            return self._catalog.names()
        try:
            keys = self._client.scan_iter(match=f"{self._prefix}*")
            names = []
            for key in keys:
                if isinstance(key, bytes):
                    key = key.decode("utf-8")
                names.append(key[len(self._prefix):])
        except redis_lib.RedisError as e:
            raise TemplateStoreError(f"Template storage unavailable: {e}") from e
        return sorted(names)

    def download(self, name: str) -> bytes:
        key = self._key(name)
        try:
            content = self._client.get(key)
        except redis_lib.RedisError as e:
            raise TemplateStoreError(f"Template storage unavailable: {e}") from e
        if content is None:
            raise TemplateNotFoundError(f"Template '{name}' not found in storage")
        logger.info(f"Downloaded template '{name}' from redis key {key} ({len(content)} bytes)")
        return content

    def check_connection(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis_lib.RedisError:
            return False


def get_template_store() -> TemplateStore:
    """Build the store selected by ``settings.template_backend``."""
    if settings.template_backend == "redis":
        catalog_path = _templates_dir() / settings.template_catalog
        catalog = load_catalog(catalog_path) if catalog_path.exists() else None
        return RedisTemplateStore(redis_client.get_redis_client(), catalog=catalog)
    return LocalTemplateStore()
