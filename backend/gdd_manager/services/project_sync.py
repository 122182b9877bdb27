"""Project sync service: shared by the sync endpoint and the direct-client path.

Maps between the ``Project`` wire shape and ORM rows and performs the
full-project write: project upsert, section upserts, then a tombstone
delete of remote sections missing from the pushed set.
"""

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from gdd_manager.db.models import ProjectRow, SectionRow
from gdd_manager.db.repositories import project_repo, section_repo
from gdd_manager.models.project import Project, Section, format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Row <-> model mapping
# ---------------------------------------------------------------------------

def section_to_values(section: Section) -> dict[str, Any]:
    return {
        "id": section.id,
        "parent_id": section.parent_id or None,
        "title": section.title,
        "content": section.content or "",
        "order": section.order,
        "color": section.color or None,
        "created_at": parse_timestamp(section.created_at),
    }


def row_to_section(row: SectionRow) -> Section:
    return Section(
        id=row.id,
        title=row.title,
        content=row.content or "",
        created_at=format_timestamp(row.created_at),
        parent_id=row.parent_id or None,
        order=row.order if row.order is not None else 0,
        color=row.color or None,
    )


def row_to_project(row: ProjectRow, sections: list[SectionRow]) -> Project:
    return Project(
        id=row.id,
        title=row.title,
        description=row.description or "",
        created_at=format_timestamp(row.created_at),
        updated_at=format_timestamp(row.updated_at),
        mind_map_settings=row.mindmap_settings or None,
        sections=[row_to_section(s) for s in sections if s.project_id == row.id],
    )


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

async def apply_project_sync(db: AsyncSession, owner_id: str, project: Project) -> None:
    """Write a whole project for ``owner_id``. The caller commits."""
    await project_repo.upsert_project(
        db,
        owner_id=owner_id,
        project_id=project.id,
        title=project.title,
        description=project.description or "",
        mindmap_settings=project.mind_map_settings or {},
        created_at=parse_timestamp(project.created_at),
        updated_at=parse_timestamp(project.updated_at),
    )
    await section_repo.upsert_sections(db, project.id, [section_to_values(s) for s in project.sections])
    removed = await section_repo.delete_sections_not_in(db, project.id, [s.id for s in project.sections])
    logger.info(
        f"Synced project {project.id} for owner {owner_id}: "
        f"{len(project.sections)} sections, {removed} removed"
    )


async def delete_project_for_owner(db: AsyncSession, owner_id: str, project_id: str) -> bool:
    """Delete a project and its sections. Returns False if nothing was deleted."""
    row = await project_repo.get_project(db, project_id)
    if row is None:
        return False
    if row.owner_id != owner_id:
        logger.warning(f"Owner {owner_id} cannot delete project {project_id}, ignoring")
        return False
    await section_repo.delete_sections_not_in(db, project_id, [])
    deleted = await project_repo.delete_project(db, project_id, owner_id)
    logger.info(f"Deleted project {project_id} for owner {owner_id}")
    return deleted


async def load_projects_for_owner(db: AsyncSession, owner_id: str) -> list[Project]:
    """Read every project (with sections) belonging to ``owner_id``."""
    rows = await project_repo.get_projects_by_owner(db, owner_id)
    sections = await section_repo.get_sections_for_projects(db, [r.id for r in rows])
    return [row_to_project(r, sections) for r in rows]
