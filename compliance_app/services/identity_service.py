"""
Identity Service
Email/password accounts in the `users` collection with JWT access and
refresh tokens.

Tokens carry the user's `session_version` as the `sv` claim; signing out
bumps the stored version, which revokes every token issued before it.
"""
import hashlib
import logging
from typing import Any, AsyncIterator, Dict, Optional
from uuid import uuid4

from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.errors import DuplicateKeyError

from compliance_app.config import JWT_ALGORITHM, JWT_SECRET, _now_utc, create_access_token, create_refresh_token
from compliance_app.db import USERS_COLLECTION, get_collection
from compliance_app.exceptions import (
    EmailAlreadyRegisteredError,
    InvalidCredentialsError,
    UnauthenticatedError,
)
from compliance_app.models.users import AuthUser
from compliance_app.services.profile_service import ProfileService, profile_service
from compliance_app.streams import StateFeed

logger = logging.getLogger(__name__)

pwd_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")


def _prehash(password: str) -> bytes:
    """
    Pre-hash arbitrary-length password with SHA-256 and return raw bytes.
    This ensures bcrypt always receives a fixed-length input (32 bytes).
    """
    return hashlib.sha256(password.encode("utf-8")).digest()


def hash_password(password: str) -> str:
    return pwd_ctx.hash(_prehash(password))


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return pwd_ctx.verify(_prehash(plain), hashed)
    except ValueError:
        return False


def issue_tokens(user_doc: Dict[str, Any]) -> Dict[str, str]:
    claims = {
        "sub": user_doc["_id"],
        "email": user_doc["email"],
        "sv": int(user_doc.get("session_version", 0)),
    }
    return {
        "access_token": create_access_token(claims),
        "refresh_token": create_refresh_token(claims),
    }


def decode_token(token: str, expected_type: str = "access") -> Dict[str, Any]:
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError as exc:
        raise UnauthenticatedError("Invalid or expired token") from exc
    if payload.get("type") != expected_type:
        raise UnauthenticatedError(f"Invalid {expected_type} token")
    if not payload.get("sub"):
        raise UnauthenticatedError("Invalid token payload")
    return payload


def user_info(user_doc: Dict[str, Any]) -> Dict[str, Any]:
    created_at = user_doc.get("created_at")
    return {
        "id": user_doc["_id"],
        "email": user_doc["email"],
        "created_at": created_at.isoformat() if created_at else None,
    }


class IdentityGateway:
    """
    One client's view of the identity provider. `current_user_changes()`
    emits the signed-in user (or None) on every change; `ready` turns true
    after the first emission.
    """

    def __init__(self, users=None, profiles: Optional[ProfileService] = None):
        self._users = users
        self.profiles = profiles or profile_service
        self._feed: StateFeed[Optional[AuthUser]] = StateFeed()

    @property
    def users(self):
        if self._users is None:
            self._users = get_collection(USERS_COLLECTION)
        return self._users

    @property
    def ready(self) -> bool:
        return self._feed.has_value

    def current_user(self) -> Optional[AuthUser]:
        return self._feed.value

    def current_user_changes(self) -> AsyncIterator[Optional[AuthUser]]:
        return self._feed.changes()

    def _emit(self, user: Optional[AuthUser]) -> None:
        self._feed.set(user)
        logger.info("Auth state changed. User: %s", user.id if user else "None")

    async def sign_up(self, email: str, password: str) -> Dict[str, Any]:
        if await self.users.find_one({"email": email}):
            raise EmailAlreadyRegisteredError(email)

        user_doc = {
            "_id": str(uuid4()),
            "email": email,
            "password_hash": hash_password(password),
            "session_version": 0,
            "created_at": _now_utc(),
        }
        try:
            await self.users.insert_one(user_doc)
        except DuplicateKeyError as exc:
            raise EmailAlreadyRegisteredError(email) from exc

        self._emit(AuthUser(id=user_doc["_id"], email=email))
        await self.profiles.create_profile(user_doc["_id"], email)
        logger.info("User account created and signed in: %s", user_doc["_id"])
        return {"user": user_info(user_doc), **issue_tokens(user_doc)}

    async def sign_in(self, email: str, password: str) -> Dict[str, Any]:
        user_doc = await self.users.find_one({"email": email})
        if not user_doc or not verify_password(password, user_doc.get("password_hash", "")):
            raise InvalidCredentialsError()
        self._emit(AuthUser(id=user_doc["_id"], email=user_doc["email"]))
        return {"user": user_info(user_doc), **issue_tokens(user_doc)}

    async def sign_out(self) -> None:
        user = self.current_user()
        if user is None:
            raise UnauthenticatedError()
        await self.users.update_one({"_id": user.id}, {"$inc": {"session_version": 1}})
        self._emit(None)
        logger.info("User signed out: %s", user.id)

    async def restore(self, token: str, expected_type: str = "access") -> AuthUser:
        """Resolve a token into the current user; a rejected token signs the client out."""
        try:
            user_doc = await self._resolve(token, expected_type)
        except UnauthenticatedError:
            self._emit(None)
            raise
        user = AuthUser(id=user_doc["_id"], email=user_doc["email"])
        self._emit(user)
        return user

    async def refresh(self, refresh_token: str) -> Dict[str, str]:
        user_doc = await self._resolve(refresh_token, expected_type="refresh")
        self._emit(AuthUser(id=user_doc["_id"], email=user_doc["email"]))
        return issue_tokens(user_doc)

    async def _resolve(self, token: str, expected_type: str) -> Dict[str, Any]:
        payload = decode_token(token, expected_type)
        user_doc = await self.users.find_one({"_id": payload["sub"]})
        if not user_doc:
            raise UnauthenticatedError("User not found")
        if int(payload.get("sv", 0)) != int(user_doc.get("session_version", 0)):
            raise UnauthenticatedError("Session has been signed out")
        return user_doc
