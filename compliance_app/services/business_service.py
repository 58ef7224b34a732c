"""
Business Service
Business locations live under {namespace}/users/{uid}/businesses/{businessId}.
"""
import logging
from datetime import datetime, timezone
from typing import AsyncIterator, List, Optional

from compliance_app.document_store import DocumentStore, document_store
from compliance_app.models.business import Business, BusinessCreate, BusinessUpdate
from compliance_app.paths import business_path, businesses_path
from compliance_app.services.profile_service import require_user

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def active_business(businesses: List[Business]) -> Optional[Business]:
    """The business an account works with: the oldest one, ties broken by id."""
    if not businesses:
        return None
    return min(businesses, key=lambda b: (b.created_at or _EPOCH, b.id))


class BusinessService:
    """Service for managing a user's businesses."""

    def __init__(self, store: Optional[DocumentStore] = None, namespace: Optional[str] = None):
        self.store = store or document_store
        self.namespace = namespace

    async def add_business(self, user_id: Optional[str], data: BusinessCreate) -> str:
        """Create a business owned by `user_id` and return its generated id."""
        uid = require_user(user_id)
        document = data.to_document()
        document["owner_id"] = uid
        business_id = await self.store.add(businesses_path(uid, self.namespace), document)
        logger.info("Business %s created for user %s", business_id, uid)
        return business_id

    async def get_business(self, user_id: Optional[str], business_id: str) -> Optional[Business]:
        uid = require_user(user_id)
        data = await self.store.get(business_path(uid, business_id, self.namespace))
        if data is None:
            return None
        return Business.from_document(data)

    async def list_businesses(self, user_id: Optional[str]) -> List[Business]:
        uid = require_user(user_id)
        docs = await self.store.query(businesses_path(uid, self.namespace), {"owner_id": uid})
        return [Business.from_document(d) for d in docs]

    async def businesses_for_user(self, user_id: Optional[str]) -> AsyncIterator[List[Business]]:
        """Live list of the user's businesses. Order is not guaranteed."""
        uid = require_user(user_id)
        async for docs in self.store.watch_collection(businesses_path(uid, self.namespace), {"owner_id": uid}):
            yield [Business.from_document(d) for d in docs]

    async def update_business(self, user_id: Optional[str], business_id: str, data: BusinessUpdate) -> None:
        uid = require_user(user_id)
        await self.store.update(business_path(uid, business_id, self.namespace), data.to_update())
        logger.info("Business %s updated for user %s", business_id, uid)

    async def delete_business(self, user_id: Optional[str], business_id: str) -> None:
        uid = require_user(user_id)
        await self.store.delete(business_path(uid, business_id, self.namespace))
        logger.info("Business %s deleted for user %s", business_id, uid)


business_service = BusinessService()
