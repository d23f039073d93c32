"""Template Catalog — YAML index of the named templates a store can serve.

Example ``templates/catalog.yaml``::

    templates:
      business:
        path: business/business.xlsx
        description: Business contact sheet
      edu:
        path: edu/edu.xlsx
"""

import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class TemplateEntry(BaseModel):
    name: str
    path: str
    description: Optional[str] = None


class TemplateCatalog(BaseModel):
    templates: dict[str, TemplateEntry] = {}

    def get(self, name: str) -> Optional[TemplateEntry]:
        return self.templates.get(name)

    def names(self) -> list[str]:
        return [n for n in self.templates if not n.startswith("_")]


def parse_catalog(yaml_content: str) -> TemplateCatalog:
    """Parse catalog YAML. Entries may omit ``name``; the mapping key is used."""
    raw = yaml.safe_load(yaml_content) or {}
    if not isinstance(raw, dict):
        raise ValueError("Template catalog must be a YAML mapping")

    templates = {}
    for name, entry in (raw.get("templates") or {}).items():
        if isinstance(entry, str):
            entry = {"path": entry}
        if not isinstance(entry, dict) or "path" not in entry:
            raise ValueError(f"Template '{name}' needs a 'path'")
        templates[name] = TemplateEntry(name=name, **{k: v for k, v in entry.items() if k != "name"})
    return TemplateCatalog(templates=templates)


def load_catalog(catalog_path: Path) -> TemplateCatalog:
    """Load a catalog file. Raises FileNotFoundError when it does not exist."""
    if not catalog_path.exists():
        raise FileNotFoundError(f"Template catalog not found: {catalog_path}")

    catalog = parse_catalog(catalog_path.read_text())
    logger.info(f"Loaded template catalog {catalog_path} ({len(catalog.templates)} entries)")
    return catalog
