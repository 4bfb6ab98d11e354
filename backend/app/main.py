from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional
import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from backend.app.config import settings
from backend.app.db import LocalStorage, Store
from backend.app.errors import (
    EmptyUpdateError,
    PersistenceError,
    RecordNotFoundError,
    StoreInitError,
    StoreNotInitializedError,
)
from backend.app.logging_setup import setup_logging
from backend.app.models import (
    MediaType,
    Movie,
    Profile,
    ProfileUpdate,
    ShowStatus,
    TVShow,
    WatchedMovie,
    WatchedShow,
    WatchedShowUpdate,
    WatchlistItem,
    utcnow,
)
from backend.app.session import ProfileSession
from backend.app.storage import Storage
from backend.stats.statistics import build_stats, stats_to_dict

setup_logging(settings.log_level)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    local_storage = LocalStorage(settings.storage_dir)
    storage = Storage(Store(local_storage))
    session = ProfileSession(storage, local_storage)
    app.state.storage = storage
    app.state.session = session

    try:
        session.start()
    except PersistenceError:
        # keep serving; every call answers 503 until the store comes up
        logger.exception("Local store failed to start")

    yield
    storage.close()


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    lifespan=lifespan,
)

if settings.cors_origins_list:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_methods=["*"],
        allow_headers=["*"],
    )


def _to_http(exc: Exception) -> HTTPException:
    if isinstance(exc, RecordNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (StoreInitError, StoreNotInitializedError)):
        return HTTPException(status_code=503, detail=str(exc))
    if isinstance(exc, EmptyUpdateError) or not isinstance(exc, PersistenceError):
        # plain ValueError / pydantic ValidationError from domain models
        return HTTPException(status_code=400, detail=str(exc))
    logger.error("Persistence failure: %s", exc)
    return HTTPException(status_code=500, detail=str(exc))


def _session(request: Request) -> ProfileSession:
    session: ProfileSession = request.app.state.session
    if not session.started:
        # startup failed earlier, try again rather than staying stuck
        try:
            session.start()
        except PersistenceError as e:
            raise _to_http(e) from e
    return session


def _storage_for(request: Request, profile_id: str) -> Storage:
    session = _session(request)
    try:
        if session.storage.get_profile(profile_id) is None:
            raise HTTPException(status_code=404, detail=f"Profile not found: {profile_id}")
    except PersistenceError as e:
        raise _to_http(e) from e
    return session.storage


@app.get("/health")
def health(request: Request):
    store = request.app.state.storage.store
    return {
        "status": "ok" if store.is_initialized else "degraded",
        "app": settings.app_name,
        "env": settings.app_env,
    }


# Profiles / session
class CreateProfileRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=80)
    avatar_url: Optional[str] = None


@app.get("/session")
def get_session(request: Request):
    return _session(request).snapshot()


@app.get("/profiles", response_model=List[Profile])
def list_profiles(request: Request):
    return _session(request).profiles


@app.post("/profiles", response_model=Profile, status_code=201)
def create_profile(body: CreateProfileRequest, request: Request):
    session = _session(request)
    try:
        return session.create_profile(body.name, avatar_url=body.avatar_url)
    except (PersistenceError, ValueError) as e:
        raise _to_http(e) from e


@app.patch("/profiles/{profile_id}", response_model=Profile)
def update_profile(profile_id: str, body: ProfileUpdate, request: Request):
    session = _session(request)
    try:
        return session.update_profile(profile_id, body)
    except (PersistenceError, ValueError) as e:
        raise _to_http(e) from e


@app.delete("/profiles/{profile_id}")
def delete_profile(profile_id: str, request: Request):
    session = _session(request)
    try:
        session.delete_profile(profile_id)
    except PersistenceError as e:
        raise _to_http(e) from e
    return session.snapshot()


@app.post("/profiles/{profile_id}/activate", response_model=Profile)
def activate_profile(profile_id: str, request: Request):
    session = _session(request)
    try:
        return session.switch_profile(profile_id)
    except PersistenceError as e:
        raise _to_http(e) from e


# Settings
class ApiKeyRequest(BaseModel):
    key: str = Field(..., min_length=1)


@app.get("/settings/api-key")
def get_api_key(request: Request):
    storage = _session(request).storage
    try:
        return {"key": storage.get_api_key()}
    except PersistenceError as e:
        raise _to_http(e) from e


@app.put("/settings/api-key")
def set_api_key(body: ApiKeyRequest, request: Request):
    storage = _session(request).storage
    try:
        storage.set_api_key(body.key.strip())
    except PersistenceError as e:
        raise _to_http(e) from e
    return {"status": "ok"}


# Watched movies
class AddWatchedMovieRequest(BaseModel):
    movie: Movie
    rating: int = Field(0, ge=0, le=5)
    watched_date: Optional[datetime] = None
    notes: Optional[str] = None


class RatingRequest(BaseModel):
    rating: int = Field(..., ge=0, le=5)


@app.get("/profiles/{profile_id}/watched/movies", response_model=List[WatchedMovie])
def get_watched_movies(profile_id: str, request: Request):
    storage = _storage_for(request, profile_id)
    try:
        return storage.get_watched_movies(profile_id)
    except PersistenceError as e:
        raise _to_http(e) from e


@app.post("/profiles/{profile_id}/watched/movies", status_code=201)
def add_watched_movie(profile_id: str, body: AddWatchedMovieRequest, request: Request):
    storage = _storage_for(request, profile_id)
    watched = WatchedMovie(
        user_id=profile_id,
        movie=body.movie,
        rating=body.rating,
        watched_date=body.watched_date or utcnow(),
        notes=body.notes,
    )
    try:
        storage.add_watched_movie(watched)
    except PersistenceError as e:
        raise _to_http(e) from e
    return {"status": "ok"}


@app.put("/profiles/{profile_id}/watched/movies/{movie_id}/rating")
def rate_movie(profile_id: str, movie_id: int, body: RatingRequest, request: Request):
    storage = _storage_for(request, profile_id)
    try:
        storage.update_movie_rating(movie_id, profile_id, body.rating)
    except (PersistenceError, ValueError) as e:
        raise _to_http(e) from e
    return {"status": "ok"}


@app.delete("/profiles/{profile_id}/watched/movies/{movie_id}")
def remove_watched_movie(profile_id: str, movie_id: int, request: Request):
    storage = _storage_for(request, profile_id)
    try:
        storage.remove_watched_movie(movie_id, profile_id)
    except PersistenceError as e:
        raise _to_http(e) from e
    return {"status": "ok"}


# Watched shows
class AddWatchedShowRequest(BaseModel):
    show: TVShow
    rating: int = Field(0, ge=0, le=5)
    status: ShowStatus = "watching"
    watched_episodes: List[int] = Field(default_factory=list)
    notes: Optional[str] = None
    updated_date: Optional[datetime] = None


@app.get("/profiles/{profile_id}/watched/shows", response_model=List[WatchedShow])
def get_watched_shows(profile_id: str, request: Request):
    storage = _storage_for(request, profile_id)
    try:
        return storage.get_watched_shows(profile_id)
    except PersistenceError as e:
        raise _to_http(e) from e


@app.post("/profiles/{profile_id}/watched/shows", status_code=201)
def add_watched_show(profile_id: str, body: AddWatchedShowRequest, request: Request):
    storage = _storage_for(request, profile_id)
    watched = WatchedShow(
        user_id=profile_id,
        show=body.show,
        rating=body.rating,
        status=body.status,
        watched_episodes=body.watched_episodes,
        notes=body.notes,
        updated_date=body.updated_date or utcnow(),
    )
    try:
        storage.add_watched_show(watched)
    except PersistenceError as e:
        raise _to_http(e) from e
    return {"status": "ok"}


@app.patch("/profiles/{profile_id}/watched/shows/{show_id}")
def update_watched_show(profile_id: str, show_id: int, body: WatchedShowUpdate, request: Request):
    storage = _storage_for(request, profile_id)
    try:
        storage.update_watched_show(show_id, profile_id, body)
    except PersistenceError as e:
        raise _to_http(e) from e
    return {"status": "ok"}


@app.delete("/profiles/{profile_id}/watched/shows/{show_id}")
def remove_watched_show(profile_id: str, show_id: int, request: Request):
    storage = _storage_for(request, profile_id)
    try:
        storage.remove_watched_show(show_id, profile_id)
    except PersistenceError as e:
        raise _to_http(e) from e
    return {"status": "ok"}


# Watchlist
class AddWatchlistRequest(BaseModel):
    type: MediaType
    item_id: int
    movie: Optional[Movie] = None
    show: Optional[TVShow] = None
    priority: int = 0
    notes: Optional[str] = None
    added_date: Optional[datetime] = None


@app.get("/profiles/{profile_id}/watchlist", response_model=List[WatchlistItem])
def get_watchlist(profile_id: str, request: Request):
    storage = _storage_for(request, profile_id)
    try:
        return storage.get_watchlist(profile_id)
    except PersistenceError as e:
        raise _to_http(e) from e


@app.post("/profiles/{profile_id}/watchlist", status_code=201)
def add_to_watchlist(profile_id: str, body: AddWatchlistRequest, request: Request):
    storage = _storage_for(request, profile_id)
    try:
        item = WatchlistItem(
            user_id=profile_id,
            type=body.type,
            item_id=body.item_id,
            movie=body.movie,
            show=body.show,
            priority=body.priority,
            notes=body.notes,
            added_date=body.added_date or utcnow(),
        )
        storage.add_to_watchlist(item)
    except (PersistenceError, ValueError) as e:
        raise _to_http(e) from e
    return {"status": "ok"}


@app.delete("/profiles/{profile_id}/watchlist/{item_type}/{item_id}")
def remove_from_watchlist(profile_id: str, item_type: MediaType, item_id: int, request: Request):
    storage = _storage_for(request, profile_id)
    try:
        storage.remove_from_watchlist(item_id, item_type, profile_id)
    except PersistenceError as e:
        raise _to_http(e) from e
    return {"status": "ok"}


@app.post("/profiles/{profile_id}/watchlist/{item_type}/{item_id}/watched", status_code=201)
def mark_watched(profile_id: str, item_type: MediaType, item_id: int, request: Request):
    storage = _storage_for(request, profile_id)
    try:
        return storage.mark_watched(profile_id, item_type, item_id)
    except PersistenceError as e:
        raise _to_http(e) from e


# Statistics / bulk
@app.get("/profiles/{profile_id}/stats")
def get_stats(profile_id: str, request: Request):
    storage = _storage_for(request, profile_id)
    try:
        return stats_to_dict(build_stats(storage, profile_id))
    except PersistenceError as e:
        raise _to_http(e) from e


@app.delete("/profiles/{profile_id}/data")
def clear_profile_data(profile_id: str, request: Request):
    storage = _storage_for(request, profile_id)
    try:
        storage.clear_user_data(profile_id)
    except PersistenceError as e:
        raise _to_http(e) from e
    return {"status": "ok"}


@app.delete("/data")
def clear_everything(request: Request):
    session = _session(request)
    try:
        session.storage.clear()
        # profiles are gone too, start over from "needs profile creation"
        session.start()
    except PersistenceError as e:
        raise _to_http(e) from e
    return session.snapshot()
