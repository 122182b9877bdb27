"""Project repository."""

import logging
from datetime import datetime
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
from gdd_manager.db.models import ProjectRow

logger = logging.getLogger(__name__)


async def get_project(db: AsyncSession, project_id: str) -> ProjectRow | None:
    """Get a project row by id regardless of owner."""
    try:
        result = await db.execute(select(ProjectRow).where(ProjectRow.id == project_id))
        return result.scalar_one_or_none()
    except OperationalError as e:
        logger.error(f"Database connection error in get_project: {e}")
        raise DatabaseConnectionError("Database connection failed") from e
    except Exception as e:
        logger.error(f"Unexpected error getting project {project_id}: {e}")
        raise DatabaseError(f"Failed to get project: {e}") from e


async def get_projects_by_owner(db: AsyncSession, owner_id: str) -> list[ProjectRow]:
    """Get all projects for an owner ordered by creation time."""
    try:
        result = await db.execute(
            select(ProjectRow)
            .where(ProjectRow.owner_id == owner_id)
            .order_by(ProjectRow.created_at)
        )
        return list(result.scalars().all())
    except OperationalError as e:
        logger.error(f"Database connection error in get_projects_by_owner for owner {owner_id}: {e}")
        raise DatabaseConnectionError("Database connection failed") from e
    except Exception as e:
        logger.error(f"Unexpected error getting projects for owner {owner_id}: {e}")
        raise DatabaseError(f"Failed to get projects: {e}") from e


async def upsert_project(
    db: AsyncSession,
    owner_id: str,
    project_id: str,
    title: str,
    description: str,
    mindmap_settings: dict[str, Any],
    created_at: datetime,
    updated_at: datetime,
) -> ProjectRow:
    """Insert or fully overwrite a project row keyed by id.

    Raises PermissionDeniedError if the id belongs to another owner.
    """
    try:
        row = await get_project(db, project_id)
        if row is not None and row.owner_id != owner_id:
            raise PermissionDeniedError(f"Project {project_id} belongs to another owner")
        if row is None:
            row = ProjectRow(id=project_id, owner_id=owner_id)
            db.add(row)
        row.title = title
        row.description = description
        row.mindmap_settings = mindmap_settings
        row.created_at = created_at
        row.updated_at = updated_at
        await db.flush()
        return row
    except PermissionDeniedError:
        logger.warning(f"Owner {owner_id} tried to overwrite project {project_id} owned by someone else")
        raise
    except IntegrityError as e:
        logger.error(f"Integrity error upserting project {project_id}: {e}")
        raise DuplicateRecordError(f"Project {project_id} conflicts with an existing record") from e
    except OperationalError as e:
        logger.error(f"Database connection error in upsert_project: {e}")
        raise DatabaseConnectionError("Database connection failed") from e
    except DatabaseError:
        raise
    except Exception as e:
        logger.error(f"Unexpected error upserting project {project_id}: {e}")
        raise DatabaseError(f"Failed to upsert project: {e}") from e


async def delete_project(db: AsyncSession, project_id: str, owner_id: str) -> bool:
    """Delete a project owned by ``owner_id``. Returns True if deleted."""
    try:
        result = await db.execute(
            delete(ProjectRow).where(ProjectRow.id == project_id, ProjectRow.owner_id == owner_id)
        )
        await db.flush()
        return bool(result.rowcount > 0)  # type: ignore[union-attr]
    except OperationalError as e:
        logger.error(f"Database connection error in delete_project: {e}")
        raise DatabaseConnectionError("Database connection failed") from e
    except Exception as e:
        logger.error(f"Unexpected error deleting project {project_id}: {e}")
        raise DatabaseError(f"Failed to delete project: {e}") from e
