import asyncio
import logging
import os
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Tuple

import aiofiles
from fastapi import APIRouter, Depends, FastAPI, File, Request, Response, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles
from starlette.concurrency import run_in_threadpool
from starlette.middleware.sessions import SessionMiddleware

from auth import (
    SESSION_COOKIE,
    SESSION_MAX_AGE,
    current_user,
    hash_password,
    identity_key,
    login_session,
    logout_session,
    new_id,
    public_user,
    require_user,
    verify_password,
)
from catalog import catalog_from_settings, known_ids, sync_catalog
from config import Settings, get_settings
from database import JsonStore
from errors import (
    AppError,
    Conflict,
    InvalidInput,
    NotFound,
    PayloadTooLarge,
    RangeUnsatisfiable,
    Unauthenticated,
)
from reactions import apply_reaction
from schemas import (
    COMMENT_MAX_LENGTH,
    Comment,
    CommentRequest,
    CredentialsRequest,
    ReactionRequest,
    User,
)
from streaming import iter_file, plan_range

logger = logging.getLogger(__name__)

UPLOAD_CHUNK_SIZE = 1024 * 1024

router = APIRouter()


# -------------------- Lifecycle --------------------
async def _resync_periodically(store: JsonStore, catalog, interval: int) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await run_in_threadpool(sync_catalog, store, catalog)
        except Exception:
            logger.exception("Periodic catalog sync failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.profile_pics_dir.mkdir(parents=True, exist_ok=True)
    store = JsonStore.load(settings.db_path)
    catalog = catalog_from_settings(settings)
    app.state.store = store
    app.state.catalog = catalog
    await run_in_threadpool(sync_catalog, store, catalog)

    task = None
    if settings.sync_interval_seconds > 0:
        task = asyncio.create_task(
            _resync_periodically(store, catalog, settings.sync_interval_seconds)
        )
    logger.info("XTube ready, data in %s", settings.data_dir)
    try:
        yield
    finally:
        if task is not None:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task


# -------------------- Dependencies --------------------
def get_store(request: Request) -> JsonStore:
    return request.app.state.store


def get_catalog(request: Request):
    return request.app.state.catalog


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_current_user(request: Request, store: JsonStore = Depends(get_store)) -> Optional[User]:
    return current_user(request, store)


def get_required_user(request: Request, store: JsonStore = Depends(get_store)) -> User:
    return require_user(request, store)


def _dump(model) -> dict:
    return model.model_dump(by_alias=True, mode="json")


# -------------------- Error handlers --------------------
async def range_error_handler(request: Request, exc: RangeUnsatisfiable) -> Response:
    return Response(status_code=416, headers={"Content-Range": f"bytes */{exc.file_size}"})


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(status_code=400, content={"detail": message})


# -------------------- Basic Routes --------------------
@router.get("/health")
def health():
    return {"status": "ok"}


# -------------------- Auth --------------------
@router.get("/api/me")
def me(user: Optional[User] = Depends(get_current_user)):
    return {"user": _dump(public_user(user)) if user else None}


@router.post("/api/signup")
def signup(payload: CredentialsRequest, request: Request, store: JsonStore = Depends(get_store)):
    username, password = payload.username, payload.password
    if not username or not password:
        raise InvalidInput("Username and password are required")
    if not 3 <= len(username) <= 32:
        raise InvalidInput("Username must be 3-32 characters")
    if len(password) < 6:
        raise InvalidInput("Password must be at least 6 characters")
    password_hash = hash_password(password)
    with store.transaction() as data:
        if data.find_username(username):
            raise Conflict("Username already exists")
        user = User(id=new_id(), username=username, password_hash=password_hash)
        data.users.append(user)
    login_session(request, user)
    logger.info("New user signed up: %s", username)
    return {"user": _dump(public_user(user))}


@router.post("/api/login")
def login(payload: CredentialsRequest, request: Request, store: JsonStore = Depends(get_store)):
    with store.read() as data:
        user = data.find_username(payload.username)
    if user is None or not verify_password(payload.password, user.password_hash):
        raise Unauthenticated("Invalid username or password")
    login_session(request, user)
    logger.info("User logged in: %s", user.username)
    return {"user": _dump(public_user(user))}


@router.post("/api/logout", status_code=204)
def logout(request: Request):
    logout_session(request)
    return Response(status_code=204)


@router.post("/api/profile-picture")
async def upload_profile_picture(
    file: Optional[UploadFile] = File(None),
    user: User = Depends(get_required_user),
    store: JsonStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    if file is None or not file.filename:
        raise InvalidInput("No file provided")
    if not (file.content_type or "").startswith("image/"):
        logger.info("Rejected profile picture upload of type %s", file.content_type)
        raise InvalidInput("Only image uploads are allowed")

    ext = (os.path.splitext(file.filename)[1] or ".png").lower()
    filename = f"{user.id}{ext}"
    dest = settings.profile_pics_dir / filename
    tmp = dest.with_name(f".{filename}.part")
    written = 0
    try:
        async with aiofiles.open(tmp, "wb") as out:
            while chunk := await file.read(UPLOAD_CHUNK_SIZE):
                written += len(chunk)
                if written > settings.max_upload_bytes:
                    logger.info("Rejected profile picture over %d MB", settings.max_upload_mb)
                    raise PayloadTooLarge(f"File exceeds {settings.max_upload_mb} MB")
                await out.write(chunk)
        os.replace(tmp, dest)
    finally:
        Path(tmp).unlink(missing_ok=True)

    def _associate() -> User:
        with store.transaction() as data:
            stored = data.find_user(user.id)
            if stored is None:
                raise Unauthenticated("Authentication required")
            stored.profile_pic = filename
            return stored.model_copy()

    updated = await run_in_threadpool(_associate)
    return {"user": _dump(public_user(updated))}


# -------------------- Video Feed & Counters --------------------
@router.get("/api/videos")
def list_videos(store: JsonStore = Depends(get_store), catalog=Depends(get_catalog)):
    return {"videos": [_dump(v) for v in sync_catalog(store, catalog)]}


@router.post("/api/videos/{video_id}/view")
def record_view(video_id: str, store: JsonStore = Depends(get_store), catalog=Depends(get_catalog)):
    def _view(data, meta):
        meta.views += 1
        return meta.views

    return {"views": store.mutate(video_id, known_ids(catalog), _view)}


# -------------------- Likes --------------------
@router.post("/api/videos/{video_id}/react")
def react(
    video_id: str,
    payload: ReactionRequest,
    request: Request,
    response: Response,
    store: JsonStore = Depends(get_store),
    catalog=Depends(get_catalog),
    settings: Settings = Depends(get_app_settings),
    user: Optional[User] = Depends(get_current_user),
):
    ids = known_ids(catalog)
    if video_id not in ids:
        raise NotFound("Video not found")
    key = identity_key(request, response, user, secure=settings.secure_cookies)

    def _react(data, meta):
        apply_reaction(data, meta, video_id, key, payload.type)
        return {"likes": meta.likes, "dislikes": meta.dislikes}

    return store.mutate(video_id, ids, _react)


# -------------------- Comments --------------------
@router.get("/api/videos/{video_id}/comments")
def list_comments(video_id: str, store: JsonStore = Depends(get_store), catalog=Depends(get_catalog)):
    meta = store.get_video(video_id, known_ids(catalog))
    if meta is None:
        raise NotFound("Video not found")
    return {"comments": [_dump(c) for c in meta.comments]}


@router.post("/api/videos/{video_id}/comments", status_code=201)
def add_comment(
    video_id: str,
    payload: CommentRequest,
    user: User = Depends(get_required_user),
    store: JsonStore = Depends(get_store),
    catalog=Depends(get_catalog),
):
    ids = known_ids(catalog)
    if video_id not in ids:
        raise NotFound("Video not found")
    text = payload.text.strip()
    if not text:
        raise InvalidInput("Comment cannot be empty")
    comment = Comment(
        id=new_id(),
        user_id=user.id,
        username=user.username,
        text=text[:COMMENT_MAX_LENGTH],
        created_at=datetime.now(timezone.utc),
    )

    def _append(data, meta):
        meta.comments.append(comment)

    store.mutate(video_id, ids, _append)
    return {"comment": _dump(comment)}


# -------------------- Streaming --------------------
def _locate_video(catalog, file_id: str) -> Tuple[Path, int]:
    path = catalog.resolve(file_id)
    if path is None:
        raise NotFound("Video not found")
    try:
        return path, path.stat().st_size
    except FileNotFoundError:
        raise NotFound("Video not found")


@router.get("/videos/{file_id}")
async def stream_video(
    file_id: str,
    request: Request,
    catalog=Depends(get_catalog),
    settings: Settings = Depends(get_app_settings),
):
    path, file_size = await run_in_threadpool(_locate_video, catalog, file_id)

    plan = plan_range(file_size, request.headers.get("range"), path.name)
    if plan.length <= 0:
        return Response(status_code=plan.status, headers=plan.headers)
    # Client disconnect cancels the response task, which closes the file.
    return StreamingResponse(
        iter_file(path, plan.start, plan.end, settings.stream_chunk_size),
        status_code=plan.status,
        headers=plan.headers,
    )


# -------------------- App --------------------
def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title="XTube", lifespan=lifespan)
    app.state.settings = settings

    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret,
        session_cookie=SESSION_COOKIE,
        max_age=SESSION_MAX_AGE,
        same_site="lax",
        https_only=settings.secure_cookies,
    )

    app.add_exception_handler(RangeUnsatisfiable, range_error_handler)
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    app.mount(
        "/profile-pics",
        StaticFiles(directory=settings.profile_pics_dir, check_dir=False),
        name="profile-pics",
    )
    app.include_router(router)
    return app


app = create_app()


def main() -> None:
    import uvicorn

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
