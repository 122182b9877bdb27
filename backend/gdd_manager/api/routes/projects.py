"""Project sync endpoints used by the local-first client.

Responses are flat ``{"ok": true}`` / ``{"error": ...}`` objects: 400 for
a malformed body, 401 when there is no session, 500 when the write fails.
"""

import json
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from gdd_manager.api.dependencies import DbSession, OptionalUserId
from gdd_manager.db.exceptions import DatabaseError
from gdd_manager.models.project import Project
from gdd_manager.services import project_sync

logger = logging.getLogger(__name__)

router = APIRouter()


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def _read_body(request: Request) -> dict:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {}
    return body if isinstance(body, dict) else {}


# ---------------------------------------------------------------------------
# Upsert a whole project
# ---------------------------------------------------------------------------

@router.post("/sync")
async def sync_project(request: Request, user_id: OptionalUserId, db: DbSession) -> JSONResponse:
    """Upsert a project, its sections, and drop remote sections it no longer has."""
    body = await _read_body(request)
    raw = body.get("project")
    if not isinstance(raw, dict) or not raw.get("id"):
        return _error(400, "project is required")
    try:
        project = Project.model_validate(raw)
    except ValidationError as e:
        logger.warning(f"Rejected malformed project {raw.get('id')!r}: {e.error_count()} errors")
        return _error(400, "invalid project")

    if user_id is None:
        return _error(401, "unauthenticated")

    try:
        await project_sync.apply_project_sync(db, user_id, project)
        await db.commit()
    except DatabaseError as e:
        await db.rollback()
        logger.error(f"Project sync failed for {project.id}: {e}")
        return _error(500, str(e))
    return JSONResponse(content={"ok": True})


# ---------------------------------------------------------------------------
# Delete a project
# ---------------------------------------------------------------------------

@router.delete("/sync")
async def delete_project(request: Request, user_id: OptionalUserId, db: DbSession) -> JSONResponse:
    """Delete a project and its sections."""
    body = await _read_body(request)
    project_id = body.get("projectId")
    if not isinstance(project_id, str) or not project_id:
        return _error(400, "projectId is required")

    if user_id is None:
        return _error(401, "unauthenticated")

    try:
        await project_sync.delete_project_for_owner(db, user_id, project_id)
        await db.commit()
    except DatabaseError as e:
        await db.rollback()
        logger.error(f"Project delete failed for {project_id}: {e}")
        return _error(500, str(e))
    return JSONResponse(content={"ok": True})
