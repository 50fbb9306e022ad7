from __future__ import annotations

from fastapi import APIRouter, Depends

from app.agents.perspective import role_id
from app.api.deps import get_perspective_roles
from app.models.schemas import PerspectivesResponse

router = APIRouter(prefix="/api/perspectives", tags=["perspectives"])


@router.get("", response_model=PerspectivesResponse)
async def list_perspectives(roles: list[str] = Depends(get_perspective_roles)):
    """List the audience perspectives every analysis consults."""
    return PerspectivesResponse(perspectives=[{"id": role_id(r), "name": r} for r in roles])
