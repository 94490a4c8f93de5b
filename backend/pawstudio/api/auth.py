"""
Account endpoints for the authenticated user.
Sign-in itself is handled by the identity layer.
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from pawstudio.auth.dependencies import get_current_user
from pawstudio.database import get_db
from pawstudio.models.user import User
from pawstudio.services.account_service import AccountService
from pawstudio.storage.b2_client import B2Client, get_b2_client

router = APIRouter()


class ProfileStatistics(BaseModel):
    totalProcessed: int
    totalPending: int
    totalImages: int


class ProfileResponse(BaseModel):
    id: str
    email: str
    name: str
    credits: int
    role: str
    trialMode: bool
    emailVerified: bool
    created_at: datetime
    updated_at: datetime
    statistics: ProfileStatistics


class DeleteAccountRequest(BaseModel):
    confirmation: str


class AccountSummary(BaseModel):
    email: str
    name: Optional[str] = None
    credits: int
    photosToDelete: int
    generatedImagesToDelete: int
    memberSince: datetime


class DeleteAccountConfirmationResponse(BaseModel):
    success: bool
    message: str
    summary: AccountSummary


class DeleteAccountResponse(BaseModel):
    success: bool
    message: str
    deletedFiles: int


@router.get("/profile", response_model=ProfileResponse)
async def get_profile(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """User profile with image statistics."""
    statistics = await AccountService.image_statistics(db, current_user.id)
    return ProfileResponse(
        id=current_user.id,
        email=current_user.email,
        name=current_user.name or "",
        credits=current_user.credits,
        role=current_user.role or "user",
        trialMode=current_user.trial_mode,
        emailVerified=current_user.email_verified,
        created_at=current_user.created_at,
        updated_at=current_user.updated_at,
        statistics=ProfileStatistics(**statistics),
    )


@router.post("/complete-trial")
async def complete_trial(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """End the free trial; later generations are debited."""
    await AccountService.complete_trial(db, current_user)
    return {"success": True, "trialMode": False}


@router.post("/delete-account", response_model=DeleteAccountConfirmationResponse)
async def confirm_delete_account(
    request: DeleteAccountRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Confirmation step: returns what would be deleted."""
    summary = await AccountService.deletion_summary(db, current_user, request.confirmation)
    return DeleteAccountConfirmationResponse(
        success=True,
        message="Confirmation accepted. Call DELETE to proceed with account deletion.",
        summary=AccountSummary(**summary),
    )


@router.delete("/delete-account", response_model=DeleteAccountResponse)
async def delete_account(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    storage: B2Client = Depends(get_b2_client),
):
    """Delete stored files, then the account and all of its data."""
    deleted_files = await AccountService.delete_account(db, storage, current_user.id)
    return DeleteAccountResponse(
        success=True,
        message="Account deleted successfully",
        deletedFiles=deleted_files,
    )
