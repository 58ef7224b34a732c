# compliance_app/models/users.py
from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, EmailStr, Field

from compliance_app.models.common import as_utc, to_store_timestamp

# Input schema for signup (request body)
class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6)


# Input schema for login (request body)
class UserLogin(BaseModel):
    email: EmailStr
    password: str


# Identity resolved from a token or a sign-in
class AuthUser(BaseModel):
    id: str
    email: str


class UserProfile(BaseModel):
    """Profile document stored at {namespace}/users/{uid}/data/profile."""
    uid: str
    email: str = ""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    has_completed_onboarding: bool = False
    is_subscribed: bool = False
    subscription_package_id: Optional[str] = None
    subscription_start_date: Optional[datetime] = None
    trial_end_date: Optional[datetime] = None
    has_trial_used: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        populate_by_name = True
        from_attributes = True
        json_encoders = {
            datetime: lambda v: v.isoformat(),
        }

    @classmethod
    def from_document(cls, uid: str, data: Dict[str, Any]) -> "UserProfile":
        return cls(
            uid=uid,
            email=data.get("email") or "",
            first_name=data.get("first_name"),
            last_name=data.get("last_name"),
            has_completed_onboarding=bool(data.get("has_completed_onboarding", False)),
            is_subscribed=bool(data.get("is_subscribed", False)),
            subscription_package_id=data.get("subscription_package_id"),
            subscription_start_date=as_utc(data.get("subscription_start_date")),
            trial_end_date=as_utc(data.get("trial_end_date")),
            has_trial_used=bool(data.get("has_trial_used", False)),
            created_at=as_utc(data.get("created_at")),
            updated_at=as_utc(data.get("updated_at")),
        )


class ProfileUpdate(BaseModel):
    """Partial profile write; only fields that are set are merged."""
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    has_completed_onboarding: Optional[bool] = None
    is_subscribed: Optional[bool] = None
    subscription_package_id: Optional[str] = None
    subscription_start_date: Optional[datetime] = None
    trial_end_date: Optional[datetime] = None
    has_trial_used: Optional[bool] = None

    def to_update(self) -> Dict[str, Any]:
        return {
            key: to_store_timestamp(value)
            for key, value in self.model_dump(exclude_unset=True, exclude_none=True).items()
        }


class PlanSelection(BaseModel):
    package_id: str = Field(min_length=1)
