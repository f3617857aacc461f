"""
GitHub sign-in for the web front end.

Flow:
    /auth/github/login     — set a signed state cookie, redirect to GitHub
    /auth/github/callback  — check state, exchange the code, load the GitHub
                             identity, upsert the user, set the session cookie
    /auth/signout          — clear the session cookie

The session cookie holds the same HS256 JWT the API accepts as a bearer
credential. The user's role is always read from the database.
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from urllib.parse import urlencode

import httpx
import structlog
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from yellowbook.api.auth import InvalidCredential, resolve_user
from yellowbook.config import settings
from yellowbook.db.models import User

logger = structlog.get_logger(__name__)

GITHUB_AUTHORIZE_URL = "https://github.com/login/oauth/authorize"
GITHUB_TOKEN_URL = "https://github.com/login/oauth/access_token"
GITHUB_API_URL = "https://api.github.com"

SESSION_COOKIE = "yellowbook_session"
STATE_COOKIE = "yellowbook_oauth_state"
STATE_TTL_MINUTES = 10


class GitHubOAuthError(Exception):
    """The OAuth exchange or identity lookup failed."""


def github_configured() -> bool:
    return bool(settings.GITHUB_CLIENT_ID and settings.GITHUB_CLIENT_SECRET)


def safe_callback_url(url: Optional[str]) -> str:
    """Only same-site relative paths are followed after sign-in."""
    if not url or not url.startswith("/") or url.startswith("//") or "\\" in url:
        return "/"
    return url


def new_oauth_state(callback_url: str) -> tuple[str, str]:
    """
    Create a random state value and the signed cookie that carries it
    together with the post-sign-in destination.

    Returns:
        ``(state, cookie_value)``
    """
    state = secrets.token_urlsafe(24)
    expire = datetime.now(timezone.utc) + timedelta(minutes=STATE_TTL_MINUTES)
    cookie = jwt.encode(
        {"state": state, "next": safe_callback_url(callback_url), "exp": expire},
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM,
    )
    return state, cookie


def check_oauth_state(cookie_value: Optional[str], state: Optional[str]) -> str:
    """
    Verify the state echoed by GitHub against the cookie.

    Returns:
        The post-sign-in destination.

    Raises:
        GitHubOAuthError: missing, expired or mismatched state.
    """
    if not cookie_value or not state:
        raise GitHubOAuthError("missing OAuth state")
    try:
        payload = jwt.decode(cookie_value, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        raise GitHubOAuthError(f"invalid OAuth state: {e}") from e
    if not secrets.compare_digest(str(payload.get("state", "")), state):
        raise GitHubOAuthError("OAuth state mismatch")
    return safe_callback_url(payload.get("next"))


def authorize_url(state: str, redirect_uri: str) -> str:
    query = urlencode({
        "client_id": settings.GITHUB_CLIENT_ID,
        "redirect_uri": redirect_uri,
        "scope": "read:user user:email",
        "state": state,
    })
    return f"{GITHUB_AUTHORIZE_URL}?{query}"


async def exchange_code(code: str, redirect_uri: str, http: httpx.AsyncClient) -> str:
    """Trade the authorization code for a GitHub access token."""
    resp = await http.post(
        GITHUB_TOKEN_URL,
        data={
            "client_id": settings.GITHUB_CLIENT_ID,
            "client_secret": settings.GITHUB_CLIENT_SECRET,
            "code": code,
            "redirect_uri": redirect_uri,
        },
        headers={"Accept": "application/json"},
    )
    if resp.status_code != 200:
        raise GitHubOAuthError(f"token exchange failed with status {resp.status_code}")
    payload = resp.json()
    token = payload.get("access_token")
    if not token:
        raise GitHubOAuthError(payload.get("error_description") or "no access token returned")
    return token


async def fetch_github_identity(access_token: str, http: httpx.AsyncClient) -> dict[str, Any]:
    """
    Load the signed-in GitHub account.

    Returns:
        ``{github_id, email, name, image}``; the primary verified address is
        used when the profile e-mail is private.
    """
    headers = {
        "Authorization": f"Bearer {access_token}",
        "Accept": "application/vnd.github+json",
    }
    resp = await http.get(f"{GITHUB_API_URL}/user", headers=headers)
    if resp.status_code != 200:
        raise GitHubOAuthError(f"profile lookup failed with status {resp.status_code}")
    profile = resp.json()

    email = profile.get("email")
    if not email:
        resp = await http.get(f"{GITHUB_API_URL}/user/emails", headers=headers)
        if resp.status_code == 200:
            for entry in resp.json():
                if entry.get("primary") and entry.get("verified"):
                    email = entry.get("email")
                    break
    if not email:
        raise GitHubOAuthError("GitHub account has no verified e-mail address")

    return {
        "github_id": str(profile["id"]),
        "email": email,
        "name": profile.get("name") or profile.get("login"),
        "image": profile.get("avatar_url"),
    }


def session_user(token: Optional[str], db: Session) -> Optional[User]:
    """Resolve the session cookie to a stored user, or ``None``."""
    if not token:
        return None
    try:
        return resolve_user(token, db)
    except InvalidCredential as e:
        logger.info("web_session_invalid", error=str(e))
        return None
