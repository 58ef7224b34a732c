"""
Tests for the MongoDB-backed document store adapter.
"""
import re
from unittest.mock import AsyncMock, MagicMock

import pytest

from compliance_app.document_store import DocumentStore, children_pattern, to_snapshot, write_pipeline
from compliance_app.exceptions import DocumentNotFoundError


# =============================================================================
# Pipeline and snapshot helpers
# =============================================================================

def test_write_pipeline_stamps_server_times():
    """Test timestamps come from $$NOW and created_at is only set once."""
    pipeline = write_pipeline("ns/users/u1/businesses", {"name": "Mill"})

    assert pipeline[0]["$set"]["name"] == {"$literal": "Mill"}
    assert pipeline[0]["$set"]["_parent"] == {"$literal": "ns/users/u1/businesses"}
    assert pipeline[1]["$set"]["created_at"] == {"$ifNull": ["$created_at", "$$NOW"]}
    assert pipeline[1]["$set"]["updated_at"] == "$$NOW"


def test_write_pipeline_drops_reserved_fields():
    """Test callers cannot overwrite ids or timestamps."""
    pipeline = write_pipeline("c", {"id": "x", "_id": "y", "created_at": 1, "updated_at": 2, "title": "t"})

    assert set(pipeline[0]["$set"]) == {"title", "_parent"}


def test_write_pipeline_literal_protects_dollar_strings():
    """Test user text starting with '$' is not read as a field path."""
    pipeline = write_pipeline("c", {"notes": "$100 fee"})

    assert pipeline[0]["$set"]["notes"] == {"$literal": "$100 fee"}


def test_children_pattern_matches_direct_children_only():
    """Test the change-stream filter matches one level below the collection."""
    pattern = re.compile(children_pattern("ns/users/u1/businesses"))

    assert pattern.match("ns/users/u1/businesses/b1")
    assert not pattern.match("ns/users/u1/businesses/b1/complianceItems/i1")
    assert not pattern.match("ns/users/u2/businesses/b1")


def test_to_snapshot_exposes_id():
    """Test storage fields are replaced by the document id."""
    snapshot = to_snapshot({"_id": "ns/users/u1/businesses/b1", "_parent": "ns/users/u1/businesses", "name": "Mill"})

    assert snapshot == {"id": "b1", "name": "Mill"}
    assert to_snapshot(None) is None


# =============================================================================
# DocumentStore over a mocked collection
# =============================================================================

@pytest.mark.asyncio
async def test_get_missing_document_returns_none():
    """Test point reads return None rather than raising."""
    collection = MagicMock()
    collection.find_one = AsyncMock(return_value=None)

    assert await DocumentStore(collection).get("ns/config/remote") is None


@pytest.mark.asyncio
async def test_merge_set_upserts():
    """Test merge_set creates the document when it does not exist."""
    collection = MagicMock()
    collection.update_one = AsyncMock()

    await DocumentStore(collection).merge_set("ns/users/u1/data/profile", {"first_name": "Ada"})

    args, kwargs = collection.update_one.call_args
    assert args[0] == {"_id": "ns/users/u1/data/profile"}
    assert kwargs["upsert"] is True


@pytest.mark.asyncio
async def test_update_missing_document_raises():
    """Test update of a missing document raises DocumentNotFoundError."""
    collection = MagicMock()
    collection.update_one = AsyncMock(return_value=MagicMock(matched_count=0))

    with pytest.raises(DocumentNotFoundError):
        await DocumentStore(collection).update("ns/users/u1/businesses/nope", {"name": "x"})


@pytest.mark.asyncio
async def test_add_generates_id_under_collection():
    """Test add writes to a generated path under the collection."""
    collection = MagicMock()
    collection.update_one = AsyncMock()

    doc_id = await DocumentStore(collection).add("ns/users/u1/businesses", {"name": "Mill"})

    args, _ = collection.update_one.call_args
    assert args[0] == {"_id": f"ns/users/u1/businesses/{doc_id}"}
    assert doc_id


@pytest.mark.asyncio
async def test_query_filters_by_parent_and_equality():
    """Test collection queries combine the parent path with equality filters."""
    cursor = MagicMock()
    cursor.to_list = AsyncMock(return_value=[{"_id": "c/b1", "_parent": "c", "owner_id": "u1"}])
    collection = MagicMock()
    collection.find = MagicMock(return_value=cursor)

    docs = await DocumentStore(collection).query("c", {"owner_id": "u1"})

    collection.find.assert_called_once_with({"_parent": "c", "owner_id": "u1"})
    assert docs == [{"id": "b1", "owner_id": "u1"}]


@pytest.mark.asyncio
async def test_delete_is_idempotent():
    """Test deleting a missing document does not raise."""
    collection = MagicMock()
    collection.delete_one = AsyncMock(return_value=MagicMock(deleted_count=0))

    await DocumentStore(collection).delete("c/missing")

    collection.delete_one.assert_awaited_once_with({"_id": "c/missing"})
