"""
Authentication for the FastAPI API.

Callers are identified by the ``x-demo-user`` header or by the ``userId``
stored in their server-side session (demo login or Google OAuth). Write
endpoints only insist on an identity when ``REQUIRE_AUTH`` is enabled.
"""

import secrets
from typing import Dict, Optional

import structlog
from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import RedirectResponse
from fastapi.security import APIKeyCookie, APIKeyHeader

from api.config import config as api_config
from api.database import APIDatabaseService, get_db_service
from api.errors import AuthenticationError, ServiceUnavailableError
from api.models import AuthResponse, DemoLoginRequest, ErrorResponse, UserResponse
from api.oauth import GoogleOAuthClient, OAuthError, get_oauth_client
from api.sessions import regenerate_session

logger = structlog.get_logger(__name__)

DEMO_HEADER = "x-demo-user"
DEFAULT_DEMO_USER = "demo-user-123"

router = APIRouter(prefix="/auth", tags=["Authentication"])

# Security schemes listed in the API docs
demo_header_scheme = APIKeyHeader(
    name=DEMO_HEADER,
    scheme_name="demoHeader",
    description="Demo authentication: any user id",
    auto_error=False,
)
session_cookie_scheme = APIKeyCookie(
    name=api_config.session_cookie_name,
    scheme_name="cookieAuth",
    description="Session cookie set by /auth/demo/login or /auth/google/callback",
    auto_error=False,
)


def demo_user(user_id: str) -> UserResponse:
    """Profile reported for demo identities."""
    return UserResponse(
        id=user_id,
        display_name="Demo User",
        email="demo@example.com",
        role="user",
        is_demo=True,
    )


def user_from_document(user_doc: Dict) -> UserResponse:
    return UserResponse(
        id=str(user_doc["_id"]),
        display_name=user_doc.get("displayName") or "User",
        email=user_doc.get("email"),
        avatar=user_doc.get("avatar"),
        role=user_doc.get("role", "user"),
    )


def _session(request: Request) -> Dict:
    return request.scope.get("session", {})


async def get_optional_user(
    request: Request,
    header_user: Optional[str] = Depends(demo_header_scheme),
    _session_cookie: Optional[str] = Depends(session_cookie_scheme),
) -> Optional[UserResponse]:
    """
    Resolve the caller's identity, if any.

    The demo header wins over the session so API clients can act as any user.
    """
    if header_user:
        return demo_user(header_user)

    session = _session(request)
    user_id = session.get("userId")
    if not user_id:
        return None

    if session.get("authProvider") == "google":
        return UserResponse(id=user_id, **session.get("profile", {}))

    return demo_user(user_id)


async def require_user(user: Optional[UserResponse] = Depends(get_optional_user)) -> UserResponse:
    """Dependency for endpoints that always need an identity."""
    if user is None:
        raise AuthenticationError()
    return user


async def authorize_write(
    request: Request,
    user: Optional[UserResponse] = Depends(get_optional_user),
) -> Optional[UserResponse]:
    """
    Dependency guarding mutating endpoints.

    Raises:
        AuthenticationError: If authentication is required and the caller is anonymous
    """
    if user is None and api_config.require_auth:
        logger.warning("Anonymous write rejected", method=request.method, path=request.url.path)
        raise AuthenticationError()
    return user


# Demo authentication

@router.post("/demo/login", response_model=AuthResponse, response_model_exclude_none=True)
async def demo_login(request: Request, payload: Optional[DemoLoginRequest] = Body(None)):
    """Log in as a demo user; the identity is kept in the server-side session."""
    user_id = (payload.user_id if payload else None) or DEFAULT_DEMO_USER

    session = _session(request)
    session["userId"] = user_id
    session["authProvider"] = "demo"
    regenerate_session(request)

    logger.info("Demo user logged in", user_id=user_id)
    return AuthResponse(message="Demo login successful", user=demo_user(user_id))


@router.post("/demo/logout", response_model=AuthResponse, response_model_exclude_none=True)
async def demo_logout(request: Request):
    _session(request).clear()
    return AuthResponse(message="Demo logout successful")


@router.get(
    "/demo/current",
    response_model=AuthResponse,
    response_model_exclude_none=True,
    responses={401: {"model": ErrorResponse}},
)
async def demo_current(request: Request):
    """Return the demo user stored in the session."""
    user_id = _session(request).get("userId")
    if not user_id:
        raise AuthenticationError(
            "Log in with POST /auth/demo/login first",
            error="Not authenticated (demo)",
        )
    return AuthResponse(user=demo_user(user_id))


# Google OAuth

@router.get("/google", status_code=302, responses={503: {"model": ErrorResponse}})
async def google_login(
    request: Request,
    oauth_client: Optional[GoogleOAuthClient] = Depends(get_oauth_client),
):
    """Redirect to the Google consent screen."""
    if oauth_client is None:
        raise ServiceUnavailableError("Google OAuth is not configured")

    state = secrets.token_urlsafe(16)
    _session(request)["oauthState"] = state
    return RedirectResponse(oauth_client.authorization_url(state), status_code=302)


@router.get("/google/callback", response_model=AuthResponse, response_model_exclude_none=True)
async def google_callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    oauth_client: Optional[GoogleOAuthClient] = Depends(get_oauth_client),
    db_service: APIDatabaseService = Depends(get_db_service),
):
    """Complete the Google login and store the user in the session."""
    if oauth_client is None:
        raise ServiceUnavailableError("Google OAuth is not configured")

    session = _session(request)
    expected_state = session.pop("oauthState", None)
    if error or not code or not state or state != expected_state:
        logger.warning("Google OAuth callback rejected", error=error, state_matches=state == expected_state)
        return RedirectResponse("/auth/failure", status_code=302)

    try:
        profile = await oauth_client.fetch_profile(code)
    except OAuthError:
        return RedirectResponse("/auth/failure", status_code=302)

    user_doc = await db_service.upsert_oauth_user(profile)
    user = user_from_document(user_doc)
    session["userId"] = user.id
    session["authProvider"] = "google"
    session["profile"] = user.model_dump(exclude={"id", "is_demo"}, exclude_none=True)
    regenerate_session(request)

    return AuthResponse(message="Login successful", user=user)


@router.get("/logout", response_model=AuthResponse, response_model_exclude_none=True)
async def logout(request: Request):
    _session(request).clear()
    return AuthResponse(message="Logged out successfully")


@router.get(
    "/current",
    response_model=AuthResponse,
    response_model_exclude_none=True,
    responses={401: {"model": ErrorResponse}},
)
async def current_user(user: UserResponse = Depends(require_user)):
    """Return the authenticated user."""
    return AuthResponse(user=user)


@router.get("/failure", responses={401: {"model": ErrorResponse}})
async def auth_failure():
    raise AuthenticationError("Sign-in was cancelled or rejected", error="Authentication failed")
