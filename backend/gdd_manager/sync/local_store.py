"""Local store: the in-process, durably persisted project collection.

Every mutating operation applies synchronously, writes the full
collection to local storage before returning and then notifies
subscribers (the sync scheduler) that the project changed.
"""

import json
import logging
import os
import tempfile
import uuid
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from gdd_manager.models.project import Project, Section, SectionUpdate, now_iso
from gdd_manager.models.sync import StoreChange
from gdd_manager.sync.exceptions import (
    DuplicateSectionNameError,
    InvalidParentError,
    ProjectNameTooShortError,
    ProjectNotFoundError,
    SectionNotFoundError,
)

logger = logging.getLogger(__name__)

STORAGE_KEY = "gdd_projects_v1"
MIN_PROJECT_TITLE_LENGTH = 3

ChangeListener = Callable[[str, StoreChange], None]


# ---------------------------------------------------------------------------
# Durable key/value storage
# ---------------------------------------------------------------------------

class LocalStorage:
    """JSON file holding a flat key/value mapping.

    Writes go through a temp file and ``os.replace`` so a crash mid-write
    never leaves a truncated snapshot behind.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def _read_all(self) -> dict[str, Any]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            logger.warning(f"Could not read local storage {self.path}: {e}")
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Local storage {self.path} is not valid JSON: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Local storage {self.path} does not hold an object, ignoring")
            return {}
        return data

    def _write_all(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def get(self, key: str, default: Any = None) -> Any:
        return self._read_all().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def remove(self, key: str) -> None:
        data = self._read_all()
        if data.pop(key, None) is not None:
            self._write_all(data)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _normalize_title(title: str) -> str:
    return " ".join(title.split()).casefold()


def _descendant_ids(sections: Iterable[Section], root_id: str) -> set[str]:
    """Transitive closure of children of ``root_id`` (excluding the root)."""
    children: dict[str | None, list[str]] = {}
    for s in sections:
        children.setdefault(s.parent_id, []).append(s.id)
    found: set[str] = set()
    stack = list(children.get(root_id, []))
    while stack:
        sid = stack.pop()
        if sid in found:
            continue
        found.add(sid)
        stack.extend(children.get(sid, []))
    return found


def _next_order(sections: Iterable[Section], parent_id: str | None) -> int:
    orders = [s.order for s in sections if s.parent_id == parent_id]
    return max(orders) + 1 if orders else 0


def _parse_projects(raw: Any, backfill: bool = False) -> tuple[list[Project], bool]:
    """Validate a raw snapshot. Returns (projects, backfilled_any)."""
    if not isinstance(raw, list):
        if raw is not None:
            logger.warning("Local snapshot is not a list, ignoring")
        return [], False

    projects: list[Project] = []
    seen: set[str] = set()
    backfilled = False
    for entry in raw:
        if not isinstance(entry, dict):
            logger.warning("Skipping malformed project entry in local snapshot")
            continue
        if backfill and (not entry.get("createdAt") or not entry.get("updatedAt")):
            now = now_iso()
            entry = {**entry, "createdAt": entry.get("createdAt") or now, "updatedAt": entry.get("updatedAt") or now}
            backfilled = True
        try:
            project = Project.model_validate(entry)
        except ValidationError as e:
            logger.warning(f"Skipping invalid project {entry.get('id')!r} in local snapshot: {e}")
            continue
        if project.id in seen:
            logger.warning(f"Skipping duplicate project id {project.id} in local snapshot")
            continue
        seen.add(project.id)
        projects.append(project)
    return projects, backfilled


# ---------------------------------------------------------------------------
# Local store
# ---------------------------------------------------------------------------

class LocalStore:
    """Owned container for the local project collection."""

    def __init__(self, storage: LocalStorage, storage_key: str = STORAGE_KEY) -> None:
        self._storage = storage
        self._storage_key = storage_key
        self._projects: list[Project] = []
        self._listeners: list[ChangeListener] = []

    # -- observation --------------------------------------------------------

    @property
    def projects(self) -> list[Project]:
        return list(self._projects)

    @property
    def storage(self) -> LocalStorage:
        return self._storage

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a change listener. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, project_id: str, change: StoreChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(project_id, change)
            except Exception:
                logger.exception(f"Store listener failed for project {project_id} ({change.value})")

    # -- persistence --------------------------------------------------------

    def _persist(self) -> None:
        try:
            self._storage.set(self._storage_key, [p.to_dict() for p in self._projects])
        except OSError as e:
            logger.warning(f"Could not persist projects to local storage: {e}")

    def _commit(self, projects: list[Project], changes: Iterable[tuple[str, StoreChange]] = ()) -> None:
        self._projects = projects
        self._persist()
        for project_id, change in changes:
            self._emit(project_id, change)

    def load_from_storage(self) -> int:
        """Hydrate from the durable snapshot. Returns the number of projects loaded."""
        projects, backfilled = _parse_projects(self._storage.get(self._storage_key), backfill=True)
        self._projects = projects
        if backfilled:
            logger.info("Backfilled missing timestamps in local snapshot")
            self._persist()
        logger.debug(f"Loaded {len(projects)} projects from local storage")
        return len(projects)

    def read_snapshot(self) -> list[Project]:
        """Read the durable snapshot without touching in-memory state."""
        projects, _ = _parse_projects(self._storage.get(self._storage_key))
        return projects

    def replace_all(self, projects: Iterable[Project]) -> None:
        """Replace the collection wholesale without emitting change events."""
        self._commit(list(projects))

    # -- lookup -------------------------------------------------------------

    def get_project(self, project_id: str) -> Project | None:
        for p in self._projects:
            if p.id == project_id:
                return p
        return None

    def _require_project(self, project_id: str) -> Project:
        project = self.get_project(project_id)
        if project is None:
            raise ProjectNotFoundError(f"Project {project_id} not found")
        return project

    def _require_section(self, project: Project, section_id: str) -> Section:
        section = project.section(section_id)
        if section is None:
            raise SectionNotFoundError(f"Section {section_id} not found in project {project.id}")
        return section

    def _replace_project(self, updated: Project) -> list[Project]:
        return [updated if p.id == updated.id else p for p in self._projects]

    def _touch(self, project: Project, **updates: Any) -> Project:
        return project.model_copy(update={**updates, "updated_at": now_iso()})

    # -- projects -----------------------------------------------------------

    def add_project(self, title: str, description: str = "") -> str:
        if len(title.strip()) < MIN_PROJECT_TITLE_LENGTH:
            raise ProjectNameTooShortError(
                f"Project title must be at least {MIN_PROJECT_TITLE_LENGTH} characters"
            )
        now = now_iso()
        project = Project(
            id=str(uuid.uuid4()),
            title=title,
            description=description,
            sections=[],
            created_at=now,
            updated_at=now,
        )
        self._commit([*self._projects, project], [(project.id, StoreChange.CREATED)])
        logger.debug(f"Created project {project.id}")
        return project.id

    def edit_project(self, project_id: str, title: str, description: str) -> None:
        if len(title.strip()) < MIN_PROJECT_TITLE_LENGTH:
            raise ProjectNameTooShortError(
                f"Project title must be at least {MIN_PROJECT_TITLE_LENGTH} characters"
            )
        project = self._require_project(project_id)
        updated = self._touch(project, title=title, description=description)
        self._commit(self._replace_project(updated), [(project_id, StoreChange.UPDATED)])

    def remove_project(self, project_id: str) -> None:
        self._require_project(project_id)
        remaining = [p for p in self._projects if p.id != project_id]
        self._commit(remaining, [(project_id, StoreChange.DELETED)])

    def update_project_settings(self, project_id: str, settings: dict[str, Any]) -> None:
        project = self._require_project(project_id)
        updated = self._touch(project, mind_map_settings=settings)
        self._commit(self._replace_project(updated), [(project_id, StoreChange.UPDATED)])

    def import_project(self, project: Project) -> None:
        """Replace or insert a project by id, keeping its timestamps."""
        remaining = [p for p in self._projects if p.id != project.id]
        self._commit([*remaining, project], [(project.id, StoreChange.UPDATED)])

    def import_all_projects(self, projects: Iterable[Project]) -> None:
        """Replace the whole collection. Dropped projects are reported as deleted."""
        incoming = list(projects)
        incoming_ids = {p.id for p in incoming}
        changes = [(p.id, StoreChange.DELETED) for p in self._projects if p.id not in incoming_ids]
        changes += [(p.id, StoreChange.UPDATED) for p in incoming]
        self._commit(incoming, changes)

    # -- sections -----------------------------------------------------------

    def has_duplicate_name(
        self,
        project_id: str,
        title: str,
        parent_id: str | None = None,
        exclude_id: str | None = None,
    ) -> bool:
        project = self.get_project(project_id)
        if project is None:
            return False
        wanted = _normalize_title(title)
        return any(
            s.parent_id == parent_id and s.id != exclude_id and _normalize_title(s.title) == wanted
            for s in project.sections
        )

    def count_descendants(self, project_id: str, section_id: str) -> int:
        project = self.get_project(project_id)
        if project is None:
            return 0
        return len(_descendant_ids(project.sections, section_id))

    def add_section(
        self,
        project_id: str,
        title: str,
        content: str = "",
        parent_id: str | None = None,
    ) -> str:
        project = self._require_project(project_id)
        if parent_id is not None and project.section(parent_id) is None:
            raise InvalidParentError(f"Parent section {parent_id} not found in project {project_id}")
        if self.has_duplicate_name(project_id, title, parent_id):
            raise DuplicateSectionNameError(f"A section named {title!r} already exists at this level")

        section = Section(
            id=str(uuid.uuid4()),
            title=title,
            content=content,
            created_at=now_iso(),
            parent_id=parent_id,
            order=_next_order(project.sections, parent_id),
        )
        updated = self._touch(project, sections=[*project.sections, section])
        self._commit(self._replace_project(updated), [(project_id, StoreChange.UPDATED)])
        return section.id

    def add_subsection(self, project_id: str, parent_id: str, title: str, content: str = "") -> str:
        return self.add_section(project_id, title, content, parent_id=parent_id)

    def update_section(self, project_id: str, section_id: str, update: SectionUpdate) -> None:
        """Apply the explicitly-set fields of ``update`` to a section."""
        project = self._require_project(project_id)
        section = self._require_section(project, section_id)
        values = update.provided()

        parent_id = values.get("parent_id", section.parent_id)
        if "parent_id" in values and parent_id != section.parent_id:
            if parent_id is not None:
                if project.section(parent_id) is None:
                    raise InvalidParentError(f"Parent section {parent_id} not found in project {project_id}")
                if parent_id == section_id or parent_id in _descendant_ids(project.sections, section_id):
                    raise InvalidParentError(f"Moving section {section_id} under {parent_id} would create a cycle")
            if "order" not in values:
                values["order"] = _next_order(project.sections, parent_id)

        title = values.get("title", section.title)
        if ("title" in values or "parent_id" in values) and self.has_duplicate_name(
            project_id, title, parent_id, exclude_id=section_id
        ):
            raise DuplicateSectionNameError(f"A section named {title!r} already exists at this level")

        new_section = section.model_copy(update=values)
        sections = [new_section if s.id == section_id else s for s in project.sections]
        updated = self._touch(project, sections=sections)
        self._commit(self._replace_project(updated), [(project_id, StoreChange.UPDATED)])

    def edit_section(
        self,
        project_id: str,
        section_id: str,
        title: str,
        content: str,
        color_or_order: str | int | None = None,
    ) -> None:
        """Positional edit kept for older callers.

        The last argument historically carried either a sibling order or a
        color; an int sets ``order`` and a string sets ``color``.
        """
        fields: dict[str, Any] = {"title": title, "content": content}
        if isinstance(color_or_order, bool):
            raise TypeError("color_or_order must be a color string or an integer order")
        if isinstance(color_or_order, int):
            fields["order"] = color_or_order
        elif isinstance(color_or_order, str):
            fields["color"] = color_or_order
        self.update_section(project_id, section_id, SectionUpdate(**fields))

    def remove_section(self, project_id: str, section_id: str) -> int:
        """Delete a section and all its descendants. Returns the number removed."""
        project = self._require_project(project_id)
        self._require_section(project, section_id)
        doomed = _descendant_ids(project.sections, section_id) | {section_id}
        updated = self._touch(project, sections=[s for s in project.sections if s.id not in doomed])
        self._commit(self._replace_project(updated), [(project_id, StoreChange.UPDATED)])
        return len(doomed)

    def _swap_with_sibling(self, project_id: str, section_id: str, offset: int) -> bool:
        project = self._require_project(project_id)
        section = self._require_section(project, section_id)
        siblings = sorted(
            (s for s in project.sections if s.parent_id == section.parent_id),
            key=lambda s: s.order,
        )
        index = next(i for i, s in enumerate(siblings) if s.id == section_id)
        target = index + offset
        if target < 0 or target >= len(siblings):
            return False
        other = siblings[target]
        swapped = {section.id: other.order, other.id: section.order}
        sections = [
            s.model_copy(update={"order": swapped[s.id]}) if s.id in swapped else s
            for s in project.sections
        ]
        updated = self._touch(project, sections=sections)
        self._commit(self._replace_project(updated), [(project_id, StoreChange.UPDATED)])
        return True

    def move_section_up(self, project_id: str, section_id: str) -> bool:
        return self._swap_with_sibling(project_id, section_id, -1)

    def move_section_down(self, project_id: str, section_id: str) -> bool:
        return self._swap_with_sibling(project_id, section_id, 1)

    def reorder_sections(self, project_id: str, section_ids: list[str]) -> None:
        """Set each listed section's order to its index in ``section_ids``."""
        project = self._require_project(project_id)
        positions = {sid: i for i, sid in enumerate(section_ids)}
        sections = [
            s.model_copy(update={"order": positions[s.id]}) if s.id in positions else s
            for s in project.sections
        ]
        updated = self._touch(project, sections=sections)
        self._commit(self._replace_project(updated), [(project_id, StoreChange.UPDATED)])
