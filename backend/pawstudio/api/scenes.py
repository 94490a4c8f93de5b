"""
Public scene catalogue.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from pawstudio.database import get_db
from pawstudio.services.scene_service import SceneService

router = APIRouter()


class SceneResponse(BaseModel):
    """Scene as shown to users. The prompt stays server-side."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    credit_cost: int
    preview_image: Optional[str] = None
    display_order: int


class SceneListResponse(BaseModel):
    success: bool = True
    scenes: List[SceneResponse]


@router.get("", response_model=SceneListResponse)
async def list_scenes(db: AsyncSession = Depends(get_db)):
    """Active scenes ordered by display_order."""
    scenes = await SceneService.list_active(db)
    return SceneListResponse(scenes=[SceneResponse.model_validate(scene) for scene in scenes])
