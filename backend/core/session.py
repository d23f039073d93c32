"""Reconcile Session — one user's template, sources and mapping.

The session owns the decoded workbooks and the MappingStore and re-runs the
matcher explicitly whenever its inputs change (template installed, sources
added, active source switched). Nothing recomputes implicitly.

Source roles:
- uploaded sources, in upload order;
- selected sources, an ordered subset used for columnar merges;
- the active source, the primary input for per-sheet generation.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from backend.core.config import settings
from backend.core.field_matcher import MatchPolicy, auto_match, candidate_options
from backend.core.id_gen import generate_id
from backend.core.mapping_store import MappingStore
from backend.core.synthesis_engine import GeneratedArtifact, GenerationMode, generate
from backend.core.workbook import SourceKey, TemplateKey, Workbook
from backend.core.workbook_codec import DecodeError, decode

logger = logging.getLogger(__name__)


class SessionNotFoundError(Exception):
    """No session with the requested id."""


class SessionStateError(Exception):
    """The session is not in a state that allows the operation."""


class UnknownSourceError(SessionStateError):
    """A source id does not belong to the session."""


class UploadTooLargeError(SessionStateError):
    """An uploaded file exceeds the configured size ceiling."""


@dataclass
class SourceFile:
    id: str
    name: str
    workbook: Workbook


@dataclass
class UploadError:
    filename: str
    message: str
    reason: str


def _check_size(name: str, content: bytes) -> None:
    if len(content) > settings.max_upload_bytes:
        raise UploadTooLargeError(
            f"File '{name}' is {len(content)} bytes, above the limit of "
            f"{settings.max_upload_bytes} bytes"
        )


class ReconcileSession:
    """State for one template-mapping session."""

    def __init__(
        self,
        session_id: str,
        match_policy: Optional[str] = None,
        reset_mapping_on_active_change: Optional[bool] = None,
    ):
        self.session_id = session_id
        self.created_at = datetime.now(timezone.utc)
        self.match_policy = MatchPolicy(match_policy or settings.match_policy)
        if reset_mapping_on_active_change is None:
            reset_mapping_on_active_change = settings.reset_mapping_on_active_change
        self.reset_mapping_on_active_change = reset_mapping_on_active_change

        self.template: Optional[Workbook] = None
        self.template_name: Optional[str] = None
        self.mapping = MappingStore()
        self._sources: dict[str, SourceFile] = {}
        self._selected: list[str] = []
        self.active_source_id: Optional[str] = None

    # --- sources ---

    @property
    def sources(self) -> list[SourceFile]:
        return list(self._sources.values())

    @property
    def selected_source_ids(self) -> list[str]:
        return list(self._selected)

    def get_source(self, source_id: str) -> SourceFile:
        source = self._sources.get(source_id)
        if source is None:
            raise UnknownSourceError(f"Source '{source_id}' not found in session")
        return source

    def working_sources(self) -> list[Workbook]:
        """Selected sources in selection order, or every upload when none is selected."""
        if self._selected:
            return [self._sources[sid].workbook for sid in self._selected]
        return [s.workbook for s in self._sources.values()]

    def active_first_sources(self) -> list[Workbook]:
        """Working sources with the active source moved to the front.

        Matching and per-sheet generation both read this order, so fields
        bind to the active file before any other.
        """
        sources = self.working_sources()
        if self.active_source_id is None:
            return sources
        active = self._sources[self.active_source_id].workbook
        return [active] + [wb for wb in sources if wb.id != active.id]

    def add_sources(self, files: list[tuple[str, bytes]]) -> tuple[list[SourceFile], list[UploadError]]:
        """Decode and add source files.

        A file that fails to decode is reported in the returned errors and
        does not stop the rest of the batch.
        """
        added: list[SourceFile] = []
        errors: list[UploadError] = []
        for name, content in files:
            try:
                _check_size(name, content)
                workbook = decode(content, workbook_id=generate_id("wb_"), name=name)
            except UploadTooLargeError as e:
                errors.append(UploadError(filename=name, message=str(e), reason="too_large"))
                continue
            except DecodeError as e:
                logger.warning(f"Session {self.session_id}: source '{name}' rejected: {e}")
                errors.append(UploadError(filename=name, message=str(e), reason=e.reason))
                continue
            source = SourceFile(id=workbook.id, name=name, workbook=workbook)
            self._sources[source.id] = source
            added.append(source)

        if added and self.active_source_id is None:
            self.active_source_id = added[0].id
        if added:
            logger.info(f"Session {self.session_id}: added {len(added)} source(s)")
            self.auto_match()
        return added, errors

    def remove_source(self, source_id: str) -> None:
        self.get_source(source_id)
        del self._sources[source_id]
        self._selected = [sid for sid in self._selected if sid != source_id]
        if self.active_source_id == source_id:
            self.active_source_id = None
            if self.reset_mapping_on_active_change:
                self.mapping.reset()
        logger.info(f"Session {self.session_id}: removed source {source_id}")

    def select_sources(self, source_ids: list[str]) -> None:
        """Set the ordered source selection (duplicates collapse to first position)."""
        for sid in source_ids:
            self.get_source(sid)
        self._selected = list(dict.fromkeys(source_ids))
        self.auto_match()

    def set_active_source(self, source_id: str) -> None:
        """Switch the active source, resetting the mapping when configured to."""
        self.get_source(source_id)
        if source_id == self.active_source_id:
            return
        if self.reset_mapping_on_active_change:
            self.mapping.reset()
        self.active_source_id = source_id
        logger.info(f"Session {self.session_id}: active source is now {source_id}")
        self.auto_match()

    # --- template ---

    def set_template(self, content: bytes, name: Optional[str] = None) -> Workbook:
        """Decode and install a template. DecodeError propagates to the caller."""
        _check_size(name or "template", content)
        workbook = decode(content, name=name)
        self.set_template_workbook(workbook, name)
        return workbook

    def set_template_workbook(self, workbook: Workbook, name: Optional[str] = None) -> None:
        self.template = workbook
        self.template_name = name or workbook.name
        logger.info(f"Session {self.session_id}: template '{self.template_name}' installed")
        self.auto_match()

    # --- mapping ---

    def auto_match(self) -> dict[TemplateKey, SourceKey]:
        """Fill unmapped template fields, preferring the active source."""
        if self.template is None or not self._sources:
            return {}
        proposals = auto_match(
            self.template,
            self.active_first_sources(),
            self.mapping.snapshot(),
            self.match_policy,
        )
        self.mapping.update(proposals)
        return proposals

    def set_mapping(self, template_key: TemplateKey, source_key: SourceKey) -> None:
        self.mapping.set(template_key, source_key)

    def clear_mapping(self, template_key: TemplateKey) -> None:
        self.mapping.clear(template_key)

    def mapping_options(self) -> list[dict]:
        """Per template field, the candidate source fields and their flags."""
        if self.template is None:
            return []
        sources = self.active_first_sources()
        selected = self.mapping.selected_source_keys()
        result = []
        for sheet in self.template.sheets:
            for key in sheet.template_keys():
                current = self.mapping.get(key)
                result.append({
                    "sheet": key.sheet,
                    "field": key.field,
                    "current": current,
                    "options": candidate_options(key.field, sources, selected, current),
                })
        return result

    # --- generation ---

    def generate(self, mode: GenerationMode = GenerationMode.PER_SHEET) -> GeneratedArtifact:
        if self.template is None or not self._sources:
            raise SessionStateError("Please upload both source and template files")

        if mode == GenerationMode.COLUMNAR_MERGE:
            sources = self.working_sources()
        else:
            sources = self.active_first_sources()

        return generate(
            self.template,
            sources,
            self.mapping.snapshot(),
            mode=mode,
            max_rows=settings.max_source_rows,
        )

    def reset(self) -> None:
        self.template = None
        self.template_name = None
        self.mapping.reset()
        self._sources = {}
        self._selected = []
        self.active_source_id = None
        logger.info(f"Session {self.session_id}: reset")


class SessionRegistry:
    """In-process registry of live sessions."""

    def __init__(self):
        self._sessions: dict[str, ReconcileSession] = {}

    def create(
        self,
        match_policy: Optional[str] = None,
        reset_mapping_on_active_change: Optional[bool] = None,
    ) -> ReconcileSession:
        session = ReconcileSession(
            generate_id("sess_"),
            match_policy=match_policy,
            reset_mapping_on_active_change=reset_mapping_on_active_change,
        )
        self._sessions[session.session_id] = session
        logger.info(f"Created session {session.session_id}")
        return session

    def get(self, session_id: str) -> ReconcileSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session '{session_id}' not found")
        return session

    def delete(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is None:
            raise SessionNotFoundError(f"Session '{session_id}' not found")
        logger.info(f"Deleted session {session_id}")

    def list_sessions(self) -> list[str]:
        return list(self._sessions)
