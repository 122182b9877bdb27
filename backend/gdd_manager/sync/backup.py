"""Backup export and validated restore.

A backup is a JSON document carrying either one project or the whole
collection, plus ``exportDate`` and ``version`` metadata. Restores are
validated in full before the store is touched.
"""

import json
import logging
from typing import Any

from pydantic import ValidationError

from gdd_manager.models.project import Project, now_iso
from gdd_manager.sync.exceptions import BackupFormatError, ProjectNotFoundError
from gdd_manager.sync.local_store import LocalStore

logger = logging.getLogger(__name__)

BACKUP_VERSION = "1.0"


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

def export_project(store: LocalStore, project_id: str) -> dict[str, Any]:
    project = store.get_project(project_id)
    if project is None:
        raise ProjectNotFoundError(f"Project {project_id} not found")
    return {"project": project.to_dict(), "exportDate": now_iso(), "version": BACKUP_VERSION}


def export_all(store: LocalStore) -> dict[str, Any]:
    return {
        "projects": [p.to_dict() for p in store.projects],
        "exportDate": now_iso(),
        "version": BACKUP_VERSION,
    }


def dumps_backup(backup: dict[str, Any]) -> str:
    return json.dumps(backup, ensure_ascii=False, indent=2)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _validate_project(raw: Any) -> Project:
    if not isinstance(raw, dict):
        raise BackupFormatError("Backup project entry is not an object")
    try:
        project = Project.model_validate(raw)
    except ValidationError as e:
        raise BackupFormatError(f"Invalid project {raw.get('id')!r}: {e.error_count()} field errors") from e

    parents: dict[str, str | None] = {}
    for s in project.sections:
        if s.id in parents:
            raise BackupFormatError(f"Project {project.id} has duplicate section id {s.id}")
        parents[s.id] = s.parent_id

    for sid, parent in parents.items():
        if parent is not None and parent not in parents:
            raise BackupFormatError(f"Section {sid} references missing parent {parent}")

    for sid in parents:
        seen = {sid}
        cursor = parents[sid]
        while cursor is not None:
            if cursor in seen:
                raise BackupFormatError(f"Section {sid} is part of a parent cycle")
            seen.add(cursor)
            cursor = parents[cursor]
    return project


def parse_backup(raw: str | bytes | dict[str, Any]) -> tuple[list[Project], bool]:
    """Validate a backup. Returns (projects, is_single_project)."""
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise BackupFormatError(f"Backup is not valid JSON: {e}") from e
    else:
        data = raw
    if not isinstance(data, dict):
        raise BackupFormatError("Backup must be a JSON object")
    if not data.get("version") or not data.get("exportDate"):
        raise BackupFormatError("Backup is missing version or exportDate metadata")

    has_single = data.get("project") is not None
    has_many = data.get("projects") is not None
    if has_single == has_many:
        raise BackupFormatError("Backup must contain exactly one of 'project' or 'projects'")

    if has_single:
        return [_validate_project(data["project"])], True

    if not isinstance(data["projects"], list):
        raise BackupFormatError("'projects' must be a list")
    projects = [_validate_project(p) for p in data["projects"]]
    ids = [p.id for p in projects]
    if len(set(ids)) != len(ids):
        raise BackupFormatError("Backup contains duplicate project ids")
    return projects, False


# ---------------------------------------------------------------------------
# Restore
# ---------------------------------------------------------------------------

def restore_backup(
    store: LocalStore,
    raw: str | bytes | dict[str, Any],
    expected_project_id: str | None = None,
) -> list[str]:
    """Validate and import a backup. Returns the restored project ids.

    With ``expected_project_id`` only a single-project backup of that very
    project is accepted. A whole-collection backup replaces every project.
    """
    projects, single = parse_backup(raw)
    if expected_project_id is not None:
        if not single:
            raise BackupFormatError("Expected a single-project backup")
        if projects[0].id != expected_project_id:
            raise BackupFormatError(
                f"Backup belongs to project {projects[0].title!r}, not {expected_project_id}"
            )

    if single:
        store.import_project(projects[0])
    else:
        store.import_all_projects(projects)
    logger.info(f"Restored {len(projects)} project(s) from backup")
    return [p.id for p in projects]
