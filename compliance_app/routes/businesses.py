"""
Business API Routes
CRUD over the signed-in user's business locations.
"""
from fastapi import APIRouter, Depends, status

from compliance_app.exceptions import DocumentNotFoundError
from compliance_app.models.business import BusinessCreate, BusinessUpdate
from compliance_app.models.users import AuthUser
from compliance_app.paths import business_path
from compliance_app.routes.auth.auth import get_current_user
from compliance_app.routes.responses import failure, success
from compliance_app.services.business_service import business_service

router = APIRouter(prefix="/businesses", tags=["businesses"])


@router.get("")
async def list_businesses(current_user: AuthUser = Depends(get_current_user)):
    try:
        return success(await business_service.list_businesses(current_user.id))
    except Exception as exc:
        return failure(exc)


@router.post("")
async def create_business(body: BusinessCreate, current_user: AuthUser = Depends(get_current_user)):
    """Create a business. The owner is always the caller."""
    try:
        business_id = await business_service.add_business(current_user.id, body)
        business = await business_service.get_business(current_user.id, business_id)
        return success(business, status_code=status.HTTP_201_CREATED)
    except Exception as exc:
        return failure(exc)


@router.get("/{business_id}")
async def get_business(business_id: str, current_user: AuthUser = Depends(get_current_user)):
    try:
        business = await business_service.get_business(current_user.id, business_id)
        if business is None:
            return failure(DocumentNotFoundError(business_path(current_user.id, business_id)))
        return success(business)
    except Exception as exc:
        return failure(exc)


@router.patch("/{business_id}")
async def update_business(
    business_id: str,
    body: BusinessUpdate,
    current_user: AuthUser = Depends(get_current_user),
):
    try:
        await business_service.update_business(current_user.id, business_id, body)
        return success(await business_service.get_business(current_user.id, business_id))
    except Exception as exc:
        return failure(exc)


@router.delete("/{business_id}")
async def delete_business(business_id: str, current_user: AuthUser = Depends(get_current_user)):
    try:
        await business_service.delete_business(current_user.id, business_id)
        return success({"id": business_id, "deleted": True})
    except Exception as exc:
        return failure(exc)
