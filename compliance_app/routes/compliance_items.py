"""
Compliance Item API Routes
CRUD over one business's compliance items.
"""
from fastapi import APIRouter, Depends, status

from compliance_app.exceptions import DocumentNotFoundError
from compliance_app.models.compliance_item import ComplianceItemCreate, ComplianceItemUpdate
from compliance_app.models.users import AuthUser
from compliance_app.paths import compliance_item_path
from compliance_app.routes.auth.auth import get_current_user
from compliance_app.routes.responses import failure, success
from compliance_app.services.compliance_service import compliance_service

router = APIRouter(prefix="/businesses/{business_id}/compliance-items", tags=["compliance-items"])


@router.get("")
async def list_items(business_id: str, current_user: AuthUser = Depends(get_current_user)):
    try:
        return success(await compliance_service.list_items(current_user.id, business_id))
    except Exception as exc:
        return failure(exc)


@router.post("")
async def create_item(
    business_id: str,
    body: ComplianceItemCreate,
    current_user: AuthUser = Depends(get_current_user),
):
    try:
        item_id = await compliance_service.add_item(current_user.id, business_id, body)
        item = await compliance_service.get_item(current_user.id, business_id, item_id)
        return success(item, status_code=status.HTTP_201_CREATED)
    except Exception as exc:
        return failure(exc)


@router.get("/{item_id}")
async def get_item(business_id: str, item_id: str, current_user: AuthUser = Depends(get_current_user)):
    try:
        item = await compliance_service.get_item(current_user.id, business_id, item_id)
        if item is None:
            return failure(DocumentNotFoundError(compliance_item_path(current_user.id, business_id, item_id)))
        return success(item)
    except Exception as exc:
        return failure(exc)


@router.patch("/{item_id}")
async def update_item(
    business_id: str,
    item_id: str,
    body: ComplianceItemUpdate,
    current_user: AuthUser = Depends(get_current_user),
):
    try:
        await compliance_service.update_item(current_user.id, business_id, item_id, body)
        return success(await compliance_service.get_item(current_user.id, business_id, item_id))
    except Exception as exc:
        return failure(exc)


@router.post("/{item_id}/complete")
async def complete_item(business_id: str, item_id: str, current_user: AuthUser = Depends(get_current_user)):
    """Mark the item COMPLETED as of today."""
    try:
        await compliance_service.mark_complete(current_user.id, business_id, item_id)
        return success(await compliance_service.get_item(current_user.id, business_id, item_id))
    except Exception as exc:
        return failure(exc)


@router.delete("/{item_id}")
async def delete_item(business_id: str, item_id: str, current_user: AuthUser = Depends(get_current_user)):
    try:
        await compliance_service.delete_item(current_user.id, business_id, item_id)
        return success({"id": item_id, "deleted": True})
    except Exception as exc:
        return failure(exc)
