"""
Shared fixtures: an in-memory document store and users collection standing
in for MongoDB, and a scripted Gemini client.
"""
import asyncio
import copy
import os
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

# Settings has no default signing key; it must exist before compliance_app.config is imported.
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

import pytest
from pymongo.errors import DuplicateKeyError

from compliance_app.document_store import RESERVED_FIELDS, to_snapshot
from compliance_app.exceptions import DocumentNotFoundError
from compliance_app.paths import split_path
from compliance_app.services.business_service import BusinessService
from compliance_app.services.compliance_service import ComplianceService
from compliance_app.services.identity_service import IdentityGateway
from compliance_app.services.profile_service import ProfileService
from compliance_app.services.remote_config_service import GEMINI_API_KEY_FLAG, RemoteConfigService

NAMESPACE = "test-ns"


def _reject_plain_dates(value: Any) -> None:
    """BSON cannot encode datetime.date; fail the same way a real write would."""
    if isinstance(value, date) and not isinstance(value, datetime):
        raise TypeError(f"cannot encode object: {value!r}, of type: {type(value)!r}")
    if isinstance(value, dict):
        for item in value.values():
            _reject_plain_dates(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            _reject_plain_dates(item)


class InMemoryDocumentStore:
    """Implements the DocumentStore interface over a dict keyed by path."""

    def __init__(self) -> None:
        self.docs: Dict[str, Dict[str, Any]] = {}
        self.calls: List[Tuple[str, str]] = []
        self.fail_writes: Optional[Exception] = None
        self._next_id = 0
        self._watchers: List["asyncio.Queue[str]"] = []
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    @property
    def watcher_count(self) -> int:
        return len(self._watchers)

    def _server_now(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    def _notify(self, path: str) -> None:
        for queue in list(self._watchers):
            queue.put_nowait(path)

    def _snapshot(self, path: str) -> Optional[Dict[str, Any]]:
        doc = self.docs.get(path)
        if doc is None:
            return None
        return to_snapshot({"_id": path, **copy.deepcopy(doc)})

    def _write(self, path: str, data: Dict[str, Any], must_exist: bool) -> None:
        if self.fail_writes is not None:
            raise self.fail_writes
        _reject_plain_dates(data)
        parent, _ = split_path(path)
        existing = self.docs.get(path)
        if existing is None and must_exist:
            raise DocumentNotFoundError(path)
        doc = dict(existing or {})
        doc.update({k: copy.deepcopy(v) for k, v in data.items() if k not in RESERVED_FIELDS})
        now = self._server_now()
        doc.setdefault("created_at", now)
        doc["updated_at"] = now
        doc["_parent"] = parent
        self.docs[path] = doc
        self._notify(path)

    async def get(self, path: str) -> Optional[Dict[str, Any]]:
        self.calls.append(("get", path))
        return self._snapshot(path)

    async def merge_set(self, path: str, data: Dict[str, Any]) -> None:
        self.calls.append(("merge_set", path))
        self._write(path, data, must_exist=False)

    async def update(self, path: str, data: Dict[str, Any]) -> None:
        self.calls.append(("update", path))
        self._write(path, data, must_exist=True)

    async def add(self, collection_path: str, data: Dict[str, Any]) -> str:
        self.calls.append(("add", collection_path))
        self._next_id += 1
        doc_id = f"doc{self._next_id}"
        self._write(f"{collection_path}/{doc_id}", data, must_exist=False)
        return doc_id

    async def delete(self, path: str) -> None:
        self.calls.append(("delete", path))
        if self.docs.pop(path, None) is not None:
            self._notify(path)

    async def query(self, collection_path: str, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        self.calls.append(("query", collection_path))
        filters = filters or {}
        return [
            self._snapshot(path)
            for path, doc in self.docs.items()
            if doc["_parent"] == collection_path and all(doc.get(k) == v for k, v in filters.items())
        ]

    async def watch_document(self, path: str):
        queue: "asyncio.Queue[str]" = asyncio.Queue()
        self._watchers.append(queue)
        try:
            yield self._snapshot(path)
            while True:
                changed = await queue.get()
                if changed == path:
                    yield self._snapshot(path)
        finally:
            self._watchers.remove(queue)

    async def watch_collection(self, collection_path: str, filters: Optional[Dict[str, Any]] = None):
        queue: "asyncio.Queue[str]" = asyncio.Queue()
        self._watchers.append(queue)
        try:
            yield await self.query(collection_path, filters)
            while True:
                changed = await queue.get()
                if split_path(changed)[0] == collection_path:
                    yield await self.query(collection_path, filters)
        finally:
            self._watchers.remove(queue)


class InMemoryUsersCollection:
    """The few motor collection methods the identity service uses."""

    def __init__(self) -> None:
        self.docs: Dict[str, Dict[str, Any]] = {}

    @staticmethod
    def _matches(doc: Dict[str, Any], criteria: Dict[str, Any]) -> bool:
        return all(doc.get(k) == v for k, v in criteria.items())

    async def find_one(self, criteria: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        for doc in self.docs.values():
            if self._matches(doc, criteria):
                return dict(doc)
        return None

    async def insert_one(self, doc: Dict[str, Any]) -> None:
        if any(existing["email"] == doc["email"] for existing in self.docs.values()):
            raise DuplicateKeyError("E11000 duplicate key error collection: users index: email_1")
        self.docs[doc["_id"]] = dict(doc)

    async def update_one(self, criteria: Dict[str, Any], update: Dict[str, Any]) -> None:
        for doc in self.docs.values():
            if self._matches(doc, criteria):
                for key, amount in update.get("$inc", {}).items():
                    doc[key] = doc.get(key, 0) + amount
                doc.update(update.get("$set", {}))
                return


class FakeGemini:
    """Scripted replies; each call pops the next one (an exception is raised)."""

    def __init__(self) -> None:
        self.text_replies: List[Any] = []
        self.structured_replies: List[Any] = []
        self.text_calls: List[List[Dict[str, Any]]] = []
        self.structured_calls: List[Tuple[List[Dict[str, Any]], Dict[str, Any]]] = []
        self.api_keys: List[str] = []

    def factory(self, api_key: str) -> "FakeGemini":
        self.api_keys.append(api_key)
        return self

    @staticmethod
    def _next(replies: List[Any]) -> Any:
        reply = replies.pop(0) if replies else None
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def generate_text(self, contents):
        self.text_calls.append(copy.deepcopy(contents))
        return self._next(self.text_replies)

    async def generate_structured(self, contents, schema):
        self.structured_calls.append((copy.deepcopy(contents), schema))
        return self._next(self.structured_replies)


async def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def users() -> InMemoryUsersCollection:
    return InMemoryUsersCollection()


@pytest.fixture
def profiles(store) -> ProfileService:
    return ProfileService(store, namespace=NAMESPACE)


@pytest.fixture
def businesses(store) -> BusinessService:
    return BusinessService(store, namespace=NAMESPACE)


@pytest.fixture
def compliance(store) -> ComplianceService:
    return ComplianceService(store, namespace=NAMESPACE)


@pytest.fixture
def remote_config(store) -> RemoteConfigService:
    return RemoteConfigService(
        store,
        minimum_fetch_interval=timedelta(seconds=5),
        defaults={GEMINI_API_KEY_FLAG: "test-key"},
        namespace=NAMESPACE,
    )


@pytest.fixture
def gemini() -> FakeGemini:
    return FakeGemini()


@pytest.fixture
def gateway(users, profiles) -> IdentityGateway:
    return IdentityGateway(users=users, profiles=profiles)


@pytest.fixture
def business_payload() -> Dict[str, Any]:
    return {
        "name": "Byron Mills",
        "type": "Textile",
        "legal_entity": "llc",
        "address": {"street": "1 Loom St", "city": "Derby", "state": "DBY", "zip": "00001", "country": "UK"},
        "phone": "555-0100",
    }
