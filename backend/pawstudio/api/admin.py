"""
Admin endpoints: scenes, users, statistics and the activity feed.
All routes require role admin or super_admin.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from pawstudio.auth.dependencies import require_admin
from pawstudio.config import settings
from pawstudio.database import get_db
from pawstudio.models.user import User
from pawstudio.services.admin_service import AdminService
from pawstudio.services.image_service import ImageService
from pawstudio.services.scene_service import SceneService
from pawstudio.storage.b2_client import B2Client, get_b2_client

router = APIRouter()


class AdminSceneResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    prompt: str
    category: Optional[str] = None
    credit_cost: int
    preview_image: Optional[str] = None
    is_active: bool
    display_order: int
    usage_count: int
    created_at: datetime
    updated_at: datetime


class SceneCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    prompt: str = Field(..., min_length=1)
    description: Optional[str] = None
    category: Optional[str] = None
    credit_cost: int = Field(1, ge=0)
    preview_image: Optional[str] = None
    is_active: bool = True
    display_order: int = 0


class SceneUpdateRequest(BaseModel):
    name: Optional[str] = None
    prompt: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    credit_cost: Optional[int] = Field(None, ge=0)
    preview_image: Optional[str] = None
    is_active: Optional[bool] = None
    display_order: Optional[int] = None


class AdminUserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    name: Optional[str] = None
    credits: int
    trial_mode: bool
    role: str
    email_verified: bool
    created_at: datetime
    updated_at: datetime


class UserUpdateRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    credits: Optional[int] = Field(None, ge=0)
    role: Optional[str] = None


# Scenes

@router.get("/scenes")
async def list_scenes(db: AsyncSession = Depends(get_db), admin: User = Depends(require_admin)):
    """All scenes, including inactive ones."""
    scenes = await SceneService.list_all(db)
    return {"success": True, "scenes": [AdminSceneResponse.model_validate(s) for s in scenes]}


@router.post("/scenes", status_code=201)
async def create_scene(
    request: SceneCreateRequest,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    scene = await SceneService.create(db, request.model_dump())
    return {"success": True, "scene": AdminSceneResponse.model_validate(scene)}


@router.post("/scenes/upload")
async def upload_scene_image(
    image: UploadFile = File(...),
    scene_id: Optional[int] = Form(None),
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    storage: B2Client = Depends(get_b2_client),
):
    """Upload a scene reference image (multipart field `image`, image/*, at most 10MB)."""
    data = await ImageService.read_upload(image, settings.max_scene_image_bytes)
    url = await SceneService.upload_image(db, storage, data, image.filename, image.content_type, scene_id)
    return {"success": True, "url": url, "message": "Scene image uploaded successfully"}


@router.get("/scenes/{scene_id}")
async def get_scene(scene_id: int, db: AsyncSession = Depends(get_db), admin: User = Depends(require_admin)):
    scene = await SceneService.get(db, scene_id)
    return {"success": True, "scene": AdminSceneResponse.model_validate(scene)}


@router.put("/scenes/{scene_id}")
async def update_scene(
    scene_id: int,
    request: SceneUpdateRequest,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    scene = await SceneService.update(db, scene_id, request.model_dump(exclude_unset=True))
    return {"success": True, "scene": AdminSceneResponse.model_validate(scene)}


@router.delete("/scenes/{scene_id}")
async def delete_scene(scene_id: int, db: AsyncSession = Depends(get_db), admin: User = Depends(require_admin)):
    """Hard-delete an unused scene; deactivate one that images were generated with."""
    deleted = await SceneService.delete(db, scene_id)
    if deleted:
        return {"success": True, "message": "Scene deleted successfully"}
    return {"success": True, "message": "Scene deactivated (has existing usage)"}


# Users

@router.get("/users")
async def list_users(
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    users = await AdminService.list_users(db, limit=limit, offset=offset)
    return {"success": True, "users": [AdminUserResponse.model_validate(u) for u in users]}


@router.patch("/users/{user_id}")
async def update_user(
    user_id: str,
    request: UserUpdateRequest,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    user = await AdminService.update_user(db, admin, user_id, **request.model_dump(exclude_unset=True))
    return {"success": True, "user": AdminUserResponse.model_validate(user)}


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    storage: B2Client = Depends(get_b2_client),
):
    await AdminService.delete_user(db, storage, admin, user_id)
    return {"success": True, "message": "User deleted successfully"}


# Stats

@router.get("/stats")
async def get_stats(db: AsyncSession = Depends(get_db), admin: User = Depends(require_admin)):
    return {"success": True, "stats": await AdminService.stats(db)}


# Activity

@router.get("/activity")
async def get_activity(
    type: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Merged feed of recent platform events, newest first."""
    feed = await AdminService.activity(db, event_type=type, limit=limit, offset=offset)
    return {"success": True, **feed}
