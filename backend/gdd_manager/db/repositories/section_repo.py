"""Section repository."""

import logging
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from gdd_manager.db.exceptions import (
    DatabaseConnectionError,
    DatabaseError,
    DuplicateRecordError,
    PermissionDeniedError,
)
from gdd_manager.db.models import SectionRow

logger = logging.getLogger(__name__)


async def get_sections_for_projects(db: AsyncSession, project_ids: list[str]) -> list[SectionRow]:
    """Get all sections belonging to the given projects ordered by sibling order."""
    if not project_ids:
        return []
    try:
        result = await db.execute(
            select(SectionRow)
            .where(SectionRow.project_id.in_(project_ids))
            .order_by(SectionRow.order)
        )
        return list(result.scalars().all())
    except OperationalError as e:
        logger.error(f"Database connection error in get_sections_for_projects: {e}")
        raise DatabaseConnectionError("Database connection failed") from e
    except Exception as e:
        logger.error(f"Unexpected error getting sections: {e}")
        raise DatabaseError(f"Failed to get sections: {e}") from e


async def upsert_sections(db: AsyncSession, project_id: str, sections: list[dict[str, Any]]) -> int:
    """Upsert section rows for a project keyed by id. Returns count of rows written."""
    if not sections:
        return 0
    try:
        ids = [s["id"] for s in sections]
        result = await db.execute(select(SectionRow).where(SectionRow.id.in_(ids)))
        existing = {row.id: row for row in result.scalars().all()}

        for s in sections:
            row = existing.get(s["id"])
            if row is not None and row.project_id != project_id:
                raise PermissionDeniedError(f"Section {s['id']} belongs to another project")
            if row is None:
                row = SectionRow(id=s["id"], project_id=project_id)
                db.add(row)
                existing[s["id"]] = row
            row.parent_id = s.get("parent_id")
            row.title = s["title"]
            row.content = s.get("content", "")
            row.order = s.get("order", 0)
            row.color = s.get("color")
            row.created_at = s["created_at"]
        await db.flush()
        return len(sections)
    except PermissionDeniedError:
        logger.warning(f"Rejected section upsert for project {project_id}: id owned by another project")
        raise
    except IntegrityError as e:
        logger.error(f"Integrity error upserting sections for project {project_id}: {e}")
        raise DuplicateRecordError(f"Section conflicts with an existing record: {e}") from e
    except OperationalError as e:
        logger.error(f"Database connection error in upsert_sections: {e}")
        raise DatabaseConnectionError("Database connection failed") from e
    except DatabaseError:
        raise
    except Exception as e:
        logger.error(f"Unexpected error upserting sections for project {project_id}: {e}")
        raise DatabaseError(f"Failed to upsert sections: {e}") from e


async def delete_sections_not_in(db: AsyncSession, project_id: str, keep_ids: list[str]) -> int:
    """Delete a project's sections whose id is not in ``keep_ids``.

    An empty ``keep_ids`` deletes every section of the project.
    """
    try:
        stmt = delete(SectionRow).where(SectionRow.project_id == project_id)
        if keep_ids:
            stmt = stmt.where(SectionRow.id.not_in(keep_ids))
        result = await db.execute(stmt)
        await db.flush()
        return int(result.rowcount or 0)  # type: ignore[union-attr]
    except OperationalError as e:
        logger.error(f"Database connection error in delete_sections_not_in: {e}")
        raise DatabaseConnectionError("Database connection failed") from e
    except Exception as e:
        logger.error(f"Unexpected error pruning sections for project {project_id}: {e}")
        raise DatabaseError(f"Failed to delete sections: {e}") from e
