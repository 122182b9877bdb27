"""Session introspection endpoint."""

from fastapi import APIRouter

from gdd_manager.api.dependencies import CurrentUserId

router = APIRouter()


@router.get("/me")
async def me(current_user: CurrentUserId) -> dict:
    """Return the identity behind the current session (network identity check)."""
    return {"id": current_user}
