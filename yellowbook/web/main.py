"""
Yellowbook Web Front End

Server-rendered Jinja2 pages over the Directory API.

Pages:
  GET  /                          — Hero search and listing grid
  GET  /yellow-books/search?q=    — Substring results with a marker map
  GET  /yellow-books/assistant    — Assistant chat page (browser calls the API)
  GET  /yellow-books/{listing_id} — Listing detail with an OpenStreetMap embed
  GET  /admin                     — Admin dashboard (GitHub sign-in, admin role)
  GET  /auth/signin               — Sign-in page
  GET  /auth/github/login         — Start GitHub OAuth
  GET  /auth/github/callback      — Finish GitHub OAuth
  POST /auth/signout              — Clear the session
  POST /api/revalidate            — Drop cached page data by path or tag
"""

import secrets
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import httpx
import structlog
import uvicorn
from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.orm import Session

from yellowbook.api.auth import create_access_token
from yellowbook.cache.redis_cache import PAGE_CACHE_PREFIX, delete_cached, get_cache_client, invalidate_prefix
from yellowbook.config import settings
from yellowbook.db import dal
from yellowbook.db.session import dispose_engine, get_db
from yellowbook.observability import configure_logging, configure_sentry
from yellowbook.web import auth as web_auth
from yellowbook.web.client import (
    LISTINGS_PATH,
    DirectoryAPIError,
    DirectoryClient,
    listing_path,
    page_cache_key,
)
from yellowbook.web.maps import detail_map_url, marker_positions, results_map_url

logger = structlog.get_logger(__name__)

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))

ADMIN_RECENT_LISTINGS = 10
REVALIDATE_TAG = "yellow-books"


# =============================================================================
# Application Lifespan
# =============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    configure_sentry()

    cache_client = get_cache_client()
    app.state.directory = DirectoryClient(cache_client=cache_client)
    app.state.github_http = httpx.AsyncClient(timeout=settings.API_TIMEOUT_SECONDS)

    logger.info("web_startup", api_url=settings.API_URL, page_cache=cache_client is not None)

    yield

    await app.state.directory.aclose()
    await app.state.github_http.aclose()
    if cache_client is not None:
        cache_client.close()
    dispose_engine()
    logger.info("web_shutdown")


app = FastAPI(
    title="Yellowbook",
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
)


def get_directory(request: Request) -> DirectoryClient:
    return request.app.state.directory


def get_github_http(request: Request) -> httpx.AsyncClient:
    return request.app.state.github_http


def _error_page(request: Request, status_code: int, title: str, message: str) -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "error.html",
        {"title": title, "message": message},
        status_code=status_code,
    )


def _api_unavailable(request: Request, exc: Exception) -> HTMLResponse:
    logger.error("web_api_unavailable", path=request.url.path, error=str(exc))
    return _error_page(request, 502, "Service unavailable", "The directory could not be loaded.")


# =============================================================================
# Public Pages
# =============================================================================
@app.get("/", response_class=HTMLResponse)
async def home(request: Request, directory: DirectoryClient = Depends(get_directory)):
    try:
        listings = await directory.list_listings()
    except (httpx.HTTPError, DirectoryAPIError) as e:
        return _api_unavailable(request, e)
    return templates.TemplateResponse(request, "home.html", {"listings": listings})


@app.get("/yellow-books/search", response_class=HTMLResponse)
async def search_page(
    request: Request,
    q: str = Query(""),
    directory: DirectoryClient = Depends(get_directory),
):
    query = q.strip()
    results = []
    if query:
        try:
            results = await directory.search_listings(query)
        except (httpx.HTTPError, DirectoryAPIError) as e:
            return _api_unavailable(request, e)

    context = {
        "query": query,
        "results": results,
        "map_url": results_map_url(results) if results else None,
        "markers": marker_positions(results),
    }
    return templates.TemplateResponse(request, "search.html", context)


@app.get("/yellow-books/assistant", response_class=HTMLResponse)
async def assistant_page(request: Request):
    search_url = f"{settings.PUBLIC_API_URL.rstrip('/')}/api/ai/yellow-books/search"
    return templates.TemplateResponse(request, "assistant.html", {"search_url": search_url})


@app.get("/yellow-books/{listing_id}", response_class=HTMLResponse)
async def detail_page(
    request: Request,
    listing_id: str,
    directory: DirectoryClient = Depends(get_directory),
):
    try:
        listing = await directory.get_listing(listing_id)
    except (httpx.HTTPError, DirectoryAPIError) as e:
        return _api_unavailable(request, e)

    if listing is None:
        return _error_page(request, 404, "Not found", "This business is not in the directory.")

    context = {
        "listing": listing,
        "map_url": detail_map_url(listing["latitude"], listing["longitude"]),
    }
    return templates.TemplateResponse(request, "detail.html", context)


# =============================================================================
# Admin Dashboard
# =============================================================================
@app.get("/admin", response_class=HTMLResponse)
async def admin_page(
    request: Request,
    db: Session = Depends(get_db),
    directory: DirectoryClient = Depends(get_directory),
):
    token = request.cookies.get(web_auth.SESSION_COOKIE)
    user = web_auth.session_user(token, db)
    if user is None:
        return RedirectResponse("/auth/signin?callbackUrl=/admin", status_code=303)

    if user.role != "admin":
        logger.warning("web_admin_access_denied", user_id=user.id)
        return templates.TemplateResponse(request, "access_denied.html", {}, status_code=403)

    try:
        stats = await directory.get_stats(token)
        users = await directory.list_users(token)
        listings = await directory.list_listings(fresh=True)
    except (httpx.HTTPError, DirectoryAPIError) as e:
        return _api_unavailable(request, e)

    context = {
        "user": user,
        "stats": stats,
        "users": users,
        "listings": listings[:ADMIN_RECENT_LISTINGS],
    }
    return templates.TemplateResponse(request, "admin.html", context)


# =============================================================================
# Authentication
# =============================================================================
@app.get("/auth/signin", response_class=HTMLResponse)
async def signin_page(
    request: Request,
    callbackUrl: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    callback_url = web_auth.safe_callback_url(callbackUrl)
    if web_auth.session_user(request.cookies.get(web_auth.SESSION_COOKIE), db) is not None:
        return RedirectResponse(callback_url, status_code=303)

    context = {"callback_url": callback_url, "github_enabled": web_auth.github_configured()}
    return templates.TemplateResponse(request, "signin.html", context)


@app.get("/auth/github/login")
async def github_login(request: Request, callbackUrl: Optional[str] = Query(None)):
    if not web_auth.github_configured():
        return _error_page(request, 503, "Sign-in unavailable", "GitHub sign-in is not configured.")

    state, cookie = web_auth.new_oauth_state(callbackUrl or "/")
    redirect_uri = str(request.url_for("github_callback"))
    response = RedirectResponse(web_auth.authorize_url(state, redirect_uri), status_code=303)
    response.set_cookie(
        web_auth.STATE_COOKIE,
        cookie,
        max_age=web_auth.STATE_TTL_MINUTES * 60,
        httponly=True,
        samesite="lax",
    )
    return response


@app.get("/auth/github/callback", name="github_callback")
async def github_callback(
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    http: httpx.AsyncClient = Depends(get_github_http),
):
    log = logger.bind(path="github_callback")
    try:
        next_url = web_auth.check_oauth_state(request.cookies.get(web_auth.STATE_COOKIE), state)
        if not code:
            raise web_auth.GitHubOAuthError("missing authorization code")
        redirect_uri = str(request.url_for("github_callback"))
        access_token = await web_auth.exchange_code(code, redirect_uri, http)
        identity = await web_auth.fetch_github_identity(access_token, http)
    except (web_auth.GitHubOAuthError, httpx.HTTPError) as e:
        log.warning("github_signin_failed", error=str(e))
        return _error_page(request, 400, "Sign-in failed", "GitHub sign-in could not be completed.")

    try:
        user = dal.upsert_github_user(
            identity["github_id"],
            identity["email"],
            identity["name"],
            identity["image"],
            db=db,
        )
    except RuntimeError as e:
        log.error("github_user_upsert_failed", error=str(e))
        return _error_page(request, 500, "Sign-in failed", "Your account could not be saved.")

    log.info("github_signin_complete", user_id=user["id"], role=user["role"])
    session_token = create_access_token(user["id"], role=user["role"])
    response = RedirectResponse(next_url, status_code=303)
    response.set_cookie(
        web_auth.SESSION_COOKIE,
        session_token,
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        httponly=True,
        samesite="lax",
    )
    response.delete_cookie(web_auth.STATE_COOKIE)
    return response


@app.post("/auth/signout")
async def signout():
    response = RedirectResponse("/", status_code=303)
    response.delete_cookie(web_auth.SESSION_COOKIE)
    return response


# =============================================================================
# On-demand Revalidation
# =============================================================================
def _api_path_for_page(path: str) -> str:
    """Map a page path to the API path whose cached data backs it."""
    if path in ("/", LISTINGS_PATH):
        return LISTINGS_PATH
    if path.startswith(f"{LISTINGS_PATH}/"):
        return listing_path(path[len(LISTINGS_PATH) + 1:])
    return path


@app.post("/api/revalidate")
async def revalidate(
    secret: Optional[str] = Query(None),
    path: Optional[str] = Query(None),
    tag: Optional[str] = Query(None),
    directory: DirectoryClient = Depends(get_directory),
):
    """Invalidate cached page data for one page (``path``) or every page (``tag``)."""
    expected = settings.REVALIDATION_SECRET
    if not expected or not secret or not secrets.compare_digest(secret, expected):
        return JSONResponse({"message": "Invalid token"}, status_code=401)

    now = int(time.time() * 1000)
    if path:
        deleted = delete_cached(page_cache_key(_api_path_for_page(path)), directory.cache_client)
        logger.info("page_revalidated", page=path, deleted=deleted)
        return {"revalidated": True, "path": path, "now": now}

    if tag:
        deleted = invalidate_prefix(PAGE_CACHE_PREFIX, directory.cache_client) if tag == REVALIDATE_TAG else 0
        logger.info("tag_revalidated", tag=tag, deleted=deleted)
        return {"revalidated": True, "tag": tag, "now": now}

    return JSONResponse({"message": "Missing path or tag parameter"}, status_code=400)


def run_web() -> None:
    """Console entry point: serve the front end with uvicorn on WEB_HOST:WEB_PORT."""
    uvicorn.run("yellowbook.web.main:app", host=settings.WEB_HOST, port=settings.WEB_PORT)
