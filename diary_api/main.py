import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .auth import AccessPolicy
from .clock import Clock, SystemClock
from .config import CORS_ALLOW_ORIGINS, DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from .database import SessionLocal, shutdown_db, startup_db
from .engine import DiaryEngine, make_preview
from .errors import DiaryError, RateLimited, Unauthorized
from .rate_limit import WriteRateLimiter
from .schemas import (
    AdminSession,
    AdminSessionCreate,
    Entry,
    EntryPage,
    SubmitTodayRequest,
    TodayEmpty,
    Version,
    VersionList,
)
from .turnstile import (
    get_turnstile_client,
    get_turnstile_secret,
    require_turnstile,
    shutdown_turnstile_client,
    startup_turnstile_client,
)

_logger = logging.getLogger(__name__)
_clock = SystemClock()
bearer = HTTPBearer(auto_error=False)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await startup_db()
    await startup_turnstile_client()
    yield
    await shutdown_turnstile_client()
    await shutdown_db()


app = FastAPI(title="Shared Diary API", lifespan=lifespan)

if CORS_ALLOW_ORIGINS:
    allow_all = "*" in CORS_ALLOW_ORIGINS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if allow_all else CORS_ALLOW_ORIGINS,
        allow_credentials=not allow_all,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(DiaryError)
async def diary_error_handler(request: Request, exc: DiaryError) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthorized) else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
        headers=headers,
    )


def get_clock() -> Clock:
    return _clock


def get_access_policy(clock: Clock = Depends(get_clock)) -> AccessPolicy:
    return AccessPolicy(SessionLocal, clock=clock)


def get_engine(
    clock: Clock = Depends(get_clock),
    access_policy: AccessPolicy = Depends(get_access_policy),
) -> DiaryEngine:
    return DiaryEngine(SessionLocal, clock=clock, access_policy=access_policy)


def get_rate_limiter(clock: Clock = Depends(get_clock)) -> WriteRateLimiter:
    return WriteRateLimiter(SessionLocal, clock=clock)


def get_credential(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
) -> str | None:
    return credentials.credentials if credentials else None


def client_key(request: Request) -> str:
    forwarded = request.headers.get("CF-Connecting-IP")
    if forwarded:
        return forwarded
    if request.client is not None:
        return request.client.host
    return "unknown"


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/today", response_model=Entry | TodayEmpty)
async def get_today(engine: DiaryEngine = Depends(get_engine)):
    today, entry = await engine.read_today()
    if entry is None:
        return {"date": today, "content": None, "can_edit": True}
    return {**entry, "can_edit": True}


@app.post("/api/today", response_model=Entry, status_code=201)
async def post_today(
    payload: SubmitTodayRequest,
    request: Request,
    engine: DiaryEngine = Depends(get_engine),
    limiter: WriteRateLimiter = Depends(get_rate_limiter),
    turnstile_client: httpx.AsyncClient | None = Depends(get_turnstile_client),
    turnstile_secret: str | None = Depends(get_turnstile_secret),
):
    key = client_key(request)
    if await limiter.is_limited(key):
        raise RateLimited()
    await require_turnstile(turnstile_client, turnstile_secret, payload.turnstile_token, key)

    entry = await engine.submit_today(payload.content)
    try:
        await limiter.record(key)
    except DiaryError as exc:
        _logger.warning("Failed to record write for rate limiting: %s", exc)
    return {**entry, "can_edit": True}


@app.get("/api/entries", response_model=EntryPage)
async def list_entries(
    cursor: str | None = Query(default=None),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    exclude_today: bool = Query(default=False),
    engine: DiaryEngine = Depends(get_engine),
):
    return await engine.list_entries(cursor=cursor, limit=limit, exclude_today=exclude_today)


@app.get("/api/entries/{entry_date}", response_model=Entry)
async def get_entry(entry_date: str, engine: DiaryEngine = Depends(get_engine)):
    entry = await engine.get_by_date(entry_date)
    if entry is None:
        raise HTTPException(status_code=404, detail="Entry not found")
    return {**entry, "can_edit": engine.can_edit(entry_date)}


@app.post("/api/admin/sessions", response_model=AdminSession, status_code=201)
async def create_admin_session(
    payload: AdminSessionCreate,
    access_policy: AccessPolicy = Depends(get_access_policy),
):
    return await access_policy.create_session(payload.admin_token)


@app.delete("/api/admin/sessions", status_code=204)
async def delete_admin_session(
    credential: str | None = Depends(get_credential),
    access_policy: AccessPolicy = Depends(get_access_policy),
):
    if not await access_policy.revoke_session(credential):
        raise Unauthorized()


@app.get("/api/admin/entries/{entry_date}/versions", response_model=VersionList)
async def admin_list_versions(
    entry_date: str,
    credential: str | None = Depends(get_credential),
    engine: DiaryEngine = Depends(get_engine),
):
    versions = await engine.list_versions(entry_date, credential)
    current = await engine.get_by_date(entry_date)
    return {
        "entry_date": entry_date,
        "current_content": current["content"] if current else None,
        "versions": [
            {
                "version_number": version["version_number"],
                "created_at": version["created_at"],
                "preview": make_preview(version["content"]),
            }
            for version in versions
        ],
    }


@app.get(
    "/api/admin/entries/{entry_date}/versions/{version_number}",
    response_model=Version,
)
async def admin_get_version(
    entry_date: str,
    version_number: int,
    credential: str | None = Depends(get_credential),
    engine: DiaryEngine = Depends(get_engine),
):
    version = await engine.get_version(entry_date, version_number, credential)
    if version is None:
        raise HTTPException(status_code=404, detail="Version not found")
    return version
