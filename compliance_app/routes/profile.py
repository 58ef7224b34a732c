"""
Profile API Routes
Read and merge the signed-in user's profile, and select a subscription plan.
"""
from fastapi import APIRouter, Depends

from compliance_app.exceptions import DocumentNotFoundError
from compliance_app.models.users import AuthUser, PlanSelection, ProfileUpdate
from compliance_app.paths import profile_path
from compliance_app.routes.auth.auth import get_current_user
from compliance_app.routes.responses import failure, success
from compliance_app.services.profile_service import PACKAGES, profile_service

router = APIRouter(prefix="/profile", tags=["profile"])


@router.get("")
async def get_profile(current_user: AuthUser = Depends(get_current_user)):
    try:
        profile = await profile_service.get_profile(current_user.id)
        if profile is None:
            return failure(DocumentNotFoundError(profile_path(current_user.id)))
        return success(profile)
    except Exception as exc:
        return failure(exc)


@router.patch("")
async def update_profile(body: ProfileUpdate, current_user: AuthUser = Depends(get_current_user)):
    """Merge the supplied fields; omitted fields keep their stored values."""
    try:
        await profile_service.update_profile(current_user.id, body)
        return success(await profile_service.get_profile(current_user.id))
    except Exception as exc:
        return failure(exc)


@router.get("/packages")
async def list_packages():
    return success(PACKAGES)


@router.post("/plan")
async def select_plan(body: PlanSelection, current_user: AuthUser = Depends(get_current_user)):
    try:
        return success(await profile_service.select_plan(current_user.id, body.package_id))
    except Exception as exc:
        return failure(exc)
