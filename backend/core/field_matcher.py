"""Field Matcher — proposes default template-to-source field correspondences.

Matching tiers, in priority order (first success wins):

1. Exact-normalized: lowercase + trim, compared for equality.
2. Loose-normalized: lowercase, everything outside [a-z0-9] removed.

Within a tier, candidate sheets are scanned in the order given and headers
in header order. Auto-matching only fills template keys that have no entry
yet; existing entries (auto or manual) are never overwritten.
"""

import logging
import re
from enum import Enum
from typing import Iterable, Mapping, Optional

from backend.core.workbook import Sheet, SourceKey, TemplateKey, Workbook

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9]")


class MatchPolicy(str, Enum):
    UNIQUE = "unique"  # a source field feeds at most one template field
    SHARED = "shared"  # a source field may satisfy several template fields


def normalize_exact(name: str) -> str:
    return name.lower().strip()


def normalize_loose(name: str) -> str:
    return _NON_ALNUM.sub("", name.lower())


def is_exact_match(a: str, b: str) -> bool:
    return normalize_exact(a) == normalize_exact(b)


def is_loose_match(a: str, b: str) -> bool:
    return normalize_loose(a) == normalize_loose(b)


def _source_key(sheet: Sheet, field_name: str) -> SourceKey:
    return SourceKey(sheet=sheet.name, field=field_name, source_id=sheet.source_id)


def _is_claimed(key: SourceKey, claimed: set[SourceKey]) -> bool:
    """An unscoped claim covers the same sheet|field in every source."""
    if key in claimed:
        return True
    return SourceKey(key.sheet, key.field) in claimed


def _scan(
    template_field: str,
    candidate_sheets: list[Sheet],
    normalize,
    claimed: set[SourceKey],
) -> Optional[SourceKey]:
    target = normalize(template_field)
    for sheet in candidate_sheets:
        for header in sheet.headers:
            if normalize(header.name) != target:
                continue
            key = _source_key(sheet, header.name)
            if _is_claimed(key, claimed):
                continue
            return key
    return None


def find_match(
    template_field: str,
    candidate_sheets: list[Sheet],
    claimed: Optional[set[SourceKey]] = None,
) -> Optional[SourceKey]:
    """Propose zero or one source field for ``template_field``.

    Candidates in ``claimed`` are skipped, so a lower tier may still succeed
    when every higher-tier candidate is already taken.
    """
    claimed = claimed or set()
    for normalize in (normalize_exact, normalize_loose):
        match = _scan(template_field, candidate_sheets, normalize, claimed)
        if match is not None:
            return match
    return None


def candidate_sheets(sources: Iterable[Workbook]) -> list[Sheet]:
    """All sheets of all sources, flattened in source order."""
    return [sheet for wb in sources for sheet in wb.sheets]


def auto_match(
    template: Workbook,
    sources: list[Workbook],
    existing: Optional[Mapping[TemplateKey, SourceKey]] = None,
    policy: MatchPolicy = MatchPolicy.UNIQUE,
) -> dict[TemplateKey, SourceKey]:
    """Compute new mapping entries for template keys without an entry.

    Returns only the additions; the caller merges them into its store.
    Under MatchPolicy.UNIQUE, source fields already bound in ``existing`` or
    earlier in this pass are not proposed again.
    """
    existing = existing or {}
    sheets = candidate_sheets(sources)
    if not sheets:
        return {}

    claimed: set[SourceKey] = set()
    if policy == MatchPolicy.UNIQUE:
        claimed.update(existing.values())

    proposals: dict[TemplateKey, SourceKey] = {}
    for template_sheet in template.sheets:
        for key in template_sheet.template_keys():
            if key in existing or key in proposals:
                continue
            match = find_match(key.field, sheets, claimed)
            if match is None:
                continue
            proposals[key] = match
            if policy == MatchPolicy.UNIQUE:
                claimed.add(match)

    logger.info(
        f"Auto-match proposed {len(proposals)} new mapping(s) "
        f"({len(existing)} existing, policy={policy.value})"
    )
    return proposals


def candidate_options(
    template_field: str,
    sources: list[Workbook],
    selected: set[SourceKey],
    current: Optional[SourceKey] = None,
) -> list[dict]:
    """Every source field a template field could be bound to.

    ``exact`` flags fields equal under exact normalization (highlighted in the
    UI); ``claimed`` flags fields already bound elsewhere (disabled in the UI).
    """
    others = {k for k in selected if k != current}
    options = []
    for sheet in candidate_sheets(sources):
        for header in sheet.headers:
            key = _source_key(sheet, header.name)
            options.append({
                "sheet": sheet.name,
                "field": header.name,
                "source_id": sheet.source_id,
                "exact": is_exact_match(template_field, header.name),
                "claimed": _is_claimed(key, others),
            })
    return options
