"""Mapping Store — the current template-to-source field mapping.

Holds one SourceKey per TemplateKey. All operations are synchronous and
total; the empty mapping is always valid. ``set`` is an unconditional
upsert: keeping one source field from feeding two template fields is left
to the presentation layer (see ``selected_source_keys``) and to the
auto-matcher, not enforced here.
"""

from __future__ import annotations

import logging
from typing import Iterable, Iterator, Mapping, Optional

from backend.core.workbook import SourceKey, TemplateKey

logger = logging.getLogger(__name__)


class MappingStore:
    """Mutable TemplateKey -> SourceKey mapping with insertion-ordered iteration."""

    def __init__(self, entries: Optional[Mapping[TemplateKey, SourceKey]] = None):
        self._entries: dict[TemplateKey, SourceKey] = dict(entries or {})

    def set(self, template_key: TemplateKey, source_key: SourceKey) -> None:
        self._entries[template_key] = source_key

    def clear(self, template_key: TemplateKey) -> None:
        self._entries.pop(template_key, None)

    def get(self, template_key: TemplateKey) -> Optional[SourceKey]:
        return self._entries.get(template_key)

    def update(self, entries: Mapping[TemplateKey, SourceKey]) -> None:
        """Bulk upsert, e.g. to apply auto-match proposals."""
        self._entries.update(entries)

    def replace(self, entries: Mapping[TemplateKey, SourceKey]) -> None:
        """Discard the current mapping and install ``entries``."""
        self._entries = dict(entries)

    def reset(self) -> None:
        if self._entries:
            logger.info(f"Mapping reset ({len(self._entries)} entries discarded)")
        self._entries = {}

    def selected_source_keys(self) -> set[SourceKey]:
        """Every source key currently bound to some template key."""
        return set(self._entries.values())

    def has_mapping_for_sheet(self, sheet_name: str) -> bool:
        """True if any template key of ``sheet_name`` has a binding."""
        return any(key.sheet == sheet_name for key in self._entries)

    def snapshot(self) -> dict[TemplateKey, SourceKey]:
        """Point-in-time copy for synthesis."""
        return dict(self._entries)

    def items(self) -> Iterable[tuple[TemplateKey, SourceKey]]:
        return list(self._entries.items())

    def __contains__(self, template_key: object) -> bool:
        return template_key in self._entries

    def __iter__(self) -> Iterator[TemplateKey]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)
