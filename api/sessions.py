"""
Server-side sessions stored in MongoDB.

The cookie only carries a random session id signed with the session secret;
session data lives in the ``sessions`` collection and expires through a TTL index.
"""

import copy
import hashlib
import hmac
import secrets
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import structlog
from motor.motor_asyncio import AsyncIOMotorCollection
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

logger = structlog.get_logger(__name__)

REGENERATE_KEY = "session.regenerate"


def sign_session_id(session_id: str, secret: str) -> str:
    signature = hmac.new(secret.encode(), session_id.encode(), hashlib.sha256).hexdigest()
    return f"{session_id}.{signature}"


def unsign_session_id(value: Optional[str], secret: str) -> Optional[str]:
    """
    Verify a signed cookie value.

    Returns:
        The session id, or None if the value is missing or tampered with
    """
    if not value or "." not in value:
        return None
    session_id, signature = value.rsplit(".", 1)
    expected = hmac.new(secret.encode(), session_id.encode(), hashlib.sha256).hexdigest()
    if not hmac.compare_digest(signature, expected):
        return None
    return session_id


def regenerate_session(request: Request) -> None:
    """Move the session to a fresh id when the response is sent (call on login)."""
    request.scope[REGENERATE_KEY] = True


class SessionStore:
    """Persists session data in a MongoDB collection."""

    def __init__(self, collection: AsyncIOMotorCollection, ttl_seconds: int):
        self.collection = collection
        self.ttl_seconds = ttl_seconds

    async def load(self, session_id: str) -> Optional[Dict[str, Any]]:
        doc = await self.collection.find_one(
            {"_id": session_id, "expiresAt": {"$gt": datetime.utcnow()}}
        )
        return doc.get("data", {}) if doc else None

    async def save(self, session_id: str, data: Dict[str, Any]) -> None:
        expires_at = datetime.utcnow() + timedelta(seconds=self.ttl_seconds)
        await self.collection.update_one(
            {"_id": session_id},
            {"$set": {"data": data, "expiresAt": expires_at}},
            upsert=True,
        )

    async def delete(self, session_id: str) -> None:
        await self.collection.delete_one({"_id": session_id})


class SessionMiddleware(BaseHTTPMiddleware):
    """
    Loads ``request.session`` before the route runs and persists it afterwards.

    The store is looked up on ``app.state.session_store``; without one, sessions
    exist only for the duration of a request.
    """

    def __init__(
        self,
        app: ASGIApp,
        secret: str,
        cookie_name: str = "library.sid",
        max_age: int = 24 * 60 * 60,
        https_only: bool = False,
    ):
        super().__init__(app)
        self.secret = secret
        self.cookie_name = cookie_name
        self.max_age = max_age
        self.https_only = https_only

    async def dispatch(self, request: Request, call_next) -> Response:
        store: Optional[SessionStore] = getattr(request.app.state, "session_store", None)

        session_id = unsign_session_id(request.cookies.get(self.cookie_name), self.secret)
        data: Dict[str, Any] = {}
        if store is not None and session_id:
            loaded = await store.load(session_id)
            if loaded is None:
                session_id = None
            else:
                data = loaded

        request.scope["session"] = data
        initial = copy.deepcopy(data)

        response = await call_next(request)

        if store is None:
            return response

        regenerate = request.scope.pop(REGENERATE_KEY, False)

        if data and (data != initial or regenerate):
            previous_id = session_id
            if regenerate or not session_id:
                session_id = secrets.token_urlsafe(32)
            await store.save(session_id, data)
            if previous_id and previous_id != session_id:
                await store.delete(previous_id)
                logger.debug("Session regenerated")
            self._set_cookie(response, session_id)
        elif not data and initial and session_id:
            await store.delete(session_id)
            response.delete_cookie(self.cookie_name, path="/")
            logger.debug("Session destroyed")

        return response

    def _set_cookie(self, response: Response, session_id: str) -> None:
        response.set_cookie(
            self.cookie_name,
            sign_session_id(session_id, self.secret),
            max_age=self.max_age,
            path="/",
            httponly=True,
            secure=self.https_only,
            samesite="none" if self.https_only else "lax",
        )
