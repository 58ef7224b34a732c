# compliance_app/db.py
from typing import Optional
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase, AsyncIOMotorCollection

from compliance_app.config import settings

_client: Optional[AsyncIOMotorClient] = None
_db: Optional[AsyncIOMotorDatabase] = None

DOCUMENTS_COLLECTION = "documents"
USERS_COLLECTION = "users"


def get_client() -> AsyncIOMotorClient:
    """
    Returns a singleton AsyncIOMotorClient. Creates it if not already created.
    """
    global _client
    if _client is None:
        if not settings.mongo_uri:
            raise RuntimeError("MONGO_URI not set in environment")
        _client = AsyncIOMotorClient(settings.mongo_uri, tz_aware=True)
    return _client


def get_database() -> AsyncIOMotorDatabase:
    """
    Returns the configured database object.
    """
    global _db
    if _db is None:
        if not settings.mongo_db_name:
            raise RuntimeError("MONGO_DB_NAME not set in environment")
        _db = get_client()[settings.mongo_db_name]
    return _db


def get_collection(name: str) -> AsyncIOMotorCollection:
    """
    Convenience to get a collection from the configured DB.
    Usage: users = get_collection('users'); await users.find_one({...})
    """
    return get_database()[name]


def close_client() -> None:
    """
    Close the motor client - call this on application shutdown.
    """
    global _client, _db
    if _client is not None:
        _client.close()
        _client = None
        _db = None


async def create_indexes() -> None:
    users = get_collection(USERS_COLLECTION)
    await users.create_index("email", unique=True)

    documents = get_collection(DOCUMENTS_COLLECTION)
    await documents.create_index("_parent")
    await documents.create_index([("_parent", 1), ("owner_id", 1)])
