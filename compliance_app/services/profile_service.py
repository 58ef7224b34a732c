"""
Profile Service
One profile document per user at {namespace}/users/{uid}/data/profile.
All writes are merges, so omitted fields keep their stored values.
"""
import logging
from datetime import timedelta
from typing import Any, AsyncIterator, Dict, List, Optional, Union

from compliance_app.config import _now_utc, settings
from compliance_app.document_store import DocumentStore, document_store
from compliance_app.exceptions import UnauthenticatedError
from compliance_app.models.users import ProfileUpdate, UserProfile
from compliance_app.paths import profile_path

logger = logging.getLogger(__name__)

PACKAGES: List[Dict[str, Any]] = [
    {"id": "basic", "name": "Basic Compliance", "price": "$9.99/month",
     "features": ["Essential Licenses", "Basic Tax Reminders"]},
    {"id": "pro", "name": "Pro Compliance", "price": "$29.99/month",
     "features": ["All Basic Features", "OSHA & Safety", "HR & Employee Law", "Business Insurance"]},
    {"id": "premium", "name": "Premium Compliance", "price": "$49.99/month",
     "features": ["All Pro Features", "Advanced Regulatory Guidance", "Dedicated Support"]},
]


def require_user(user_id: Optional[str]) -> str:
    """Fail fast, before any database call, when no user id is resolved."""
    if not user_id:
        raise UnauthenticatedError()
    return user_id


class ProfileService:
    """Service for reading and merging user profiles."""

    def __init__(self, store: Optional[DocumentStore] = None, namespace: Optional[str] = None):
        self.store = store or document_store
        self.namespace = namespace

    def _path(self, user_id: str) -> str:
        return profile_path(user_id, self.namespace)

    async def get_profile(self, user_id: Optional[str]) -> Optional[UserProfile]:
        uid = require_user(user_id)
        data = await self.store.get(self._path(uid))
        if data is None:
            logger.info("No user profile found for %s", uid)
            return None
        return UserProfile.from_document(uid, data)

    async def profile_stream(self, user_id: Optional[str]) -> AsyncIterator[Optional[UserProfile]]:
        """Live profile; yields None while the document does not exist."""
        uid = require_user(user_id)
        async for data in self.store.watch_document(self._path(uid)):
            yield UserProfile.from_document(uid, data) if data is not None else None

    async def create_profile(self, user_id: Optional[str], email: str, **fields: Any) -> None:
        """Initial profile on sign-up. An existing profile only has its email refreshed."""
        uid = require_user(user_id)
        if await self.store.get(self._path(uid)) is not None:
            await self.store.merge_set(self._path(uid), {"email": email})
            return
        data = {
            "uid": uid,
            "email": email,
            "has_completed_onboarding": fields.pop("has_completed_onboarding", False),
            "has_trial_used": fields.pop("has_trial_used", False),
            "is_subscribed": fields.pop("is_subscribed", False),
            "subscription_package_id": fields.pop("subscription_package_id", None) or "free",
        }
        data.update(ProfileUpdate(**fields).to_update())
        await self.store.merge_set(self._path(uid), data)
        logger.info("User profile for %s created/updated", uid)

    async def update_profile(
        self,
        user_id: Optional[str],
        updates: Union[ProfileUpdate, Dict[str, Any]],
    ) -> None:
        uid = require_user(user_id)
        if isinstance(updates, dict):
            updates = ProfileUpdate(**updates)
        data = updates.to_update()
        try:
            await self.store.merge_set(self._path(uid), data)
        except Exception:
            logger.exception("Error updating user profile for %s", uid)
            raise
        logger.info("User profile for %s updated (%s)", uid, ", ".join(sorted(data)) or "timestamps only")

    async def select_plan(self, user_id: Optional[str], package_id: str) -> UserProfile:
        """Subscribe to a package; the first selection also starts the free trial."""
        uid = require_user(user_id)
        if package_id not in {p["id"] for p in PACKAGES}:
            raise ValueError(f"Unknown package: {package_id}")

        current = await self.get_profile(uid)
        now = _now_utc()
        fields: Dict[str, Any] = {
            "is_subscribed": True,
            "subscription_package_id": package_id,
            "subscription_start_date": now,
        }
        if current is None or not current.has_trial_used:
            fields["trial_end_date"] = now + timedelta(days=settings.trial_length_days)
            fields["has_trial_used"] = True
        await self.update_profile(uid, ProfileUpdate(**fields))
        return await self.get_profile(uid)


profile_service = ProfileService()
