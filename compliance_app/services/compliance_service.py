"""
Compliance Service
Compliance items live under
{namespace}/users/{uid}/businesses/{businessId}/complianceItems/{itemId}.
"""
import logging
from datetime import date
from typing import AsyncIterator, List, Optional

from compliance_app.config import _now_utc
from compliance_app.document_store import DocumentStore, document_store
from compliance_app.models.compliance_item import (
    ComplianceItem,
    ComplianceItemCreate,
    ComplianceItemUpdate,
    ComplianceStatus,
)
from compliance_app.paths import compliance_item_path, compliance_items_path
from compliance_app.services.profile_service import require_user

logger = logging.getLogger(__name__)


class ComplianceService:
    """Service for managing the compliance items of one business."""

    def __init__(self, store: Optional[DocumentStore] = None, namespace: Optional[str] = None):
        self.store = store or document_store
        self.namespace = namespace

    def _collection(self, user_id: str, business_id: str) -> str:
        return compliance_items_path(user_id, business_id, self.namespace)

    def _item(self, user_id: str, business_id: str, item_id: str) -> str:
        return compliance_item_path(user_id, business_id, item_id, self.namespace)

    async def add_item(self, user_id: Optional[str], business_id: str, data: ComplianceItemCreate) -> str:
        uid = require_user(user_id)
        document = data.to_document()
        document["owner_id"] = uid
        document["business_id"] = business_id
        item_id = await self.store.add(self._collection(uid, business_id), document)
        logger.info("Compliance item %s created for business %s", item_id, business_id)
        return item_id

    async def get_item(self, user_id: Optional[str], business_id: str, item_id: str) -> Optional[ComplianceItem]:
        uid = require_user(user_id)
        data = await self.store.get(self._item(uid, business_id, item_id))
        if data is None:
            return None
        return ComplianceItem.from_document(data)

    async def list_items(self, user_id: Optional[str], business_id: str) -> List[ComplianceItem]:
        uid = require_user(user_id)
        docs = await self.store.query(self._collection(uid, business_id))
        return [ComplianceItem.from_document(d) for d in docs]

    async def items_for_business(
        self,
        user_id: Optional[str],
        business_id: str,
    ) -> AsyncIterator[List[ComplianceItem]]:
        """Live item list for one business. Order is not guaranteed."""
        uid = require_user(user_id)
        async for docs in self.store.watch_collection(self._collection(uid, business_id)):
            yield [ComplianceItem.from_document(d) for d in docs]

    async def update_item(
        self,
        user_id: Optional[str],
        business_id: str,
        item_id: str,
        data: ComplianceItemUpdate,
    ) -> None:
        uid = require_user(user_id)
        await self.store.update(self._item(uid, business_id, item_id), data.to_update())

    async def mark_complete(
        self,
        user_id: Optional[str],
        business_id: str,
        item_id: str,
        completed_on: Optional[date] = None,
    ) -> None:
        await self.update_item(
            user_id,
            business_id,
            item_id,
            ComplianceItemUpdate(
                status=ComplianceStatus.COMPLETED,
                last_completed_date=completed_on or _now_utc().date(),
            ),
        )
        logger.info("Compliance item %s marked as complete", item_id)

    async def delete_item(self, user_id: Optional[str], business_id: str, item_id: str) -> None:
        """Idempotent: deleting an unknown id succeeds."""
        uid = require_user(user_id)
        await self.store.delete(self._item(uid, business_id, item_id))
        logger.info("Compliance item %s deleted from business %s", item_id, business_id)


compliance_service = ComplianceService()
