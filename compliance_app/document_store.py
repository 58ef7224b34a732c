"""
Document Store
Path-addressable documents on top of a single MongoDB collection.

Each document is stored with `_id` set to its full path and `_parent` set to
the path of the collection that contains it, so point reads, collection
queries and change subscriptions are all plain `_id`/`_parent` lookups.
Writes go through an update pipeline so `created_at`/`updated_at` come from
the database clock (`$$NOW`), never from the caller.
"""
import logging
import re
from typing import Any, AsyncIterator, Dict, List, Optional
from uuid import uuid4

from motor.motor_asyncio import AsyncIOMotorCollection

from compliance_app.db import DOCUMENTS_COLLECTION, get_collection
from compliance_app.exceptions import DocumentNotFoundError
from compliance_app.paths import split_path

logger = logging.getLogger(__name__)

# Fields owned by the store; callers cannot write them.
RESERVED_FIELDS = {"_id", "_parent", "id", "created_at", "updated_at"}


def write_pipeline(parent: str, data: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Merge-write pipeline: set the given fields, keep the rest, stamp times."""
    fields = {
        key: {"$literal": value}
        for key, value in data.items()
        if key not in RESERVED_FIELDS
    }
    fields["_parent"] = {"$literal": parent}
    return [
        {"$set": fields},
        {
            "$set": {
                "created_at": {"$ifNull": ["$created_at", "$$NOW"]},
                "updated_at": "$$NOW",
            }
        },
    ]


def children_pattern(collection_path: str) -> str:
    """Regex matching the ids of direct children of a collection path."""
    return f"^{re.escape(collection_path)}/[^/]+$"


def to_snapshot(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    data = dict(doc)
    path = data.pop("_id")
    data.pop("_parent", None)
    data["id"] = path.rsplit("/", 1)[-1]
    return data


class DocumentStore:
    """
    Thin document-database facade used by the profile, business and
    compliance services.
    """

    def __init__(self, collection: Optional[AsyncIOMotorCollection] = None) -> None:
        self._collection = collection

    @property
    def collection(self) -> AsyncIOMotorCollection:
        if self._collection is None:
            self._collection = get_collection(DOCUMENTS_COLLECTION)
        return self._collection

    async def get(self, path: str) -> Optional[Dict[str, Any]]:
        """Point read. Returns None for a missing document."""
        doc = await self.collection.find_one({"_id": path})
        return to_snapshot(doc)

    async def merge_set(self, path: str, data: Dict[str, Any]) -> None:
        """Create the document if needed and merge `data` into it."""
        parent, _ = split_path(path)
        await self.collection.update_one({"_id": path}, write_pipeline(parent, data), upsert=True)

    async def update(self, path: str, data: Dict[str, Any]) -> None:
        """Merge `data` into an existing document."""
        parent, _ = split_path(path)
        result = await self.collection.update_one({"_id": path}, write_pipeline(parent, data))
        if result.matched_count == 0:
            raise DocumentNotFoundError(path)

    async def add(self, collection_path: str, data: Dict[str, Any]) -> str:
        """Create a document with a generated id and return that id."""
        doc_id = uuid4().hex
        path = f"{collection_path}/{doc_id}"
        await self.collection.update_one({"_id": path}, write_pipeline(collection_path, data), upsert=True)
        return doc_id

    async def delete(self, path: str) -> None:
        """Delete by path. Deleting a missing document is not an error."""
        await self.collection.delete_one({"_id": path})

    async def query(
        self,
        collection_path: str,
        filters: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        criteria = {"_parent": collection_path}
        criteria.update(filters or {})
        cursor = self.collection.find(criteria)
        docs = await cursor.to_list(length=None)
        return [to_snapshot(doc) for doc in docs]

    async def watch_document(self, path: str) -> AsyncIterator[Optional[Dict[str, Any]]]:
        """Yield the document now and again after every change to it."""
        pipeline = [{"$match": {"documentKey._id": path}}]
        async with self.collection.watch(pipeline) as change_stream:
            yield await self.get(path)
            async for _change in change_stream:
                yield await self.get(path)
        logger.debug("Released document watch on %s", path)

    async def watch_collection(
        self,
        collection_path: str,
        filters: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[List[Dict[str, Any]]]:
        """Yield the full result set now and again after every change under the path."""
        pipeline = [{"$match": {"documentKey._id": {"$regex": children_pattern(collection_path)}}}]
        async with self.collection.watch(pipeline) as change_stream:
            yield await self.query(collection_path, filters)
            async for _change in change_stream:
                yield await self.query(collection_path, filters)
        logger.debug("Released collection watch on %s", collection_path)


document_store = DocumentStore()
