"""
Onboarding API Routes
Step-by-step onboarding conversation for the signed-in user.

Every response carries the current conversation session, including on
failure, so the client can show the error next to the transcript.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from compliance_app.agents.onboarding_machine import (
    BusinessBasicInfoForm,
    BusinessDescriptionForm,
    UserDetailsForm,
)
from compliance_app.exceptions import NoActiveSessionError
from compliance_app.models.users import AuthUser
from compliance_app.routes.auth.auth import get_current_user
from compliance_app.routes.responses import failure, success
from compliance_app.services.onboarding_service import onboarding_service

router = APIRouter(prefix="/onboarding", tags=["onboarding"])


class ChatMessageRequest(BaseModel):
    text: str = Field(min_length=1)

    class Config:
        str_strip_whitespace = True


def _failure(exc: Exception, user_id: str):
    return failure(exc, data=onboarding_service.get_session(user_id))


@router.post("/start")
async def start_onboarding(
    package_id: Optional[str] = Query(default=None),
    current_user: AuthUser = Depends(get_current_user),
):
    """Start a fresh conversation; any session in progress is replaced."""
    try:
        return success(await onboarding_service.start(current_user.id, package_id))
    except Exception as exc:
        return _failure(exc, current_user.id)


@router.get("/session")
async def get_session(current_user: AuthUser = Depends(get_current_user)):
    session = onboarding_service.get_session(current_user.id)
    if session is None:
        return failure(NoActiveSessionError())
    return success(session)


@router.delete("/session")
async def discard_session(current_user: AuthUser = Depends(get_current_user)):
    onboarding_service.discard(current_user.id)
    return success({"discarded": True})


@router.post("/user-details")
async def submit_user_details(body: UserDetailsForm, current_user: AuthUser = Depends(get_current_user)):
    try:
        return success(await onboarding_service.submit_user_details(current_user.id, body))
    except Exception as exc:
        return _failure(exc, current_user.id)


@router.post("/business-basic-info")
async def submit_business_basic_info(
    body: BusinessBasicInfoForm,
    current_user: AuthUser = Depends(get_current_user),
):
    try:
        return success(await onboarding_service.submit_business_basic_info(current_user.id, body))
    except Exception as exc:
        return _failure(exc, current_user.id)


@router.post("/business-description")
async def submit_business_description(
    body: BusinessDescriptionForm,
    current_user: AuthUser = Depends(get_current_user),
):
    try:
        return success(await onboarding_service.submit_business_description(current_user.id, body))
    except Exception as exc:
        return _failure(exc, current_user.id)


@router.post("/messages")
async def send_message(body: ChatMessageRequest, current_user: AuthUser = Depends(get_current_user)):
    try:
        return success(await onboarding_service.send_message(current_user.id, body.text))
    except Exception as exc:
        return _failure(exc, current_user.id)


@router.post("/complete/retry")
async def retry_completion(current_user: AuthUser = Depends(get_current_user)):
    try:
        return success(await onboarding_service.retry_completion(current_user.id))
    except Exception as exc:
        return _failure(exc, current_user.id)
