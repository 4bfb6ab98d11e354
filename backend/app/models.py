from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator

MediaType = Literal["movie", "tv"]
ShowStatus = Literal["watching", "completed", "dropped"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_ts(dt: datetime) -> str:
    """ISO-8601 in UTC with fixed precision, so text order == time order."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


class Genre(BaseModel):
    id: int
    name: str


class Movie(BaseModel):
    id: int
    title: str
    overview: str = ""
    poster_path: Optional[str] = None
    backdrop_path: Optional[str] = None
    release_date: str = ""
    vote_average: float = 0.0
    genre_ids: List[int] = Field(default_factory=list)
    genres: List[Genre] = Field(default_factory=list)


class TVShow(BaseModel):
    id: int
    name: str
    overview: str = ""
    poster_path: Optional[str] = None
    backdrop_path: Optional[str] = None
    first_air_date: str = ""
    vote_average: float = 0.0
    genre_ids: List[int] = Field(default_factory=list)
    genres: List[Genre] = Field(default_factory=list)
    number_of_seasons: Optional[int] = None
    number_of_episodes: Optional[int] = None


class Profile(BaseModel):
    id: str
    login: str
    avatar_url: Optional[str] = None
    name: str


class WatchedMovie(BaseModel):
    id: Optional[int] = None
    user_id: str
    movie: Movie
    rating: int = Field(0, ge=0, le=5)  # 0 = unrated
    watched_date: datetime = Field(default_factory=utcnow)
    notes: Optional[str] = None


class WatchedShow(BaseModel):
    id: Optional[int] = None
    user_id: str
    show: TVShow
    rating: int = Field(0, ge=0, le=5)
    status: ShowStatus = "watching"
    watched_episodes: List[int] = Field(default_factory=list)
    notes: Optional[str] = None
    updated_date: datetime = Field(default_factory=utcnow)


class WatchlistItem(BaseModel):
    id: Optional[int] = None
    user_id: str
    type: MediaType
    item_id: int
    movie: Optional[Movie] = None
    show: Optional[TVShow] = None
    added_date: datetime = Field(default_factory=utcnow)
    priority: int = 0
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _exactly_one_media(self) -> "WatchlistItem":
        if self.type == "movie":
            media, other = self.movie, self.show
        else:
            media, other = self.show, self.movie

        if media is None:
            raise ValueError(f"watchlist item of type {self.type!r} needs its metadata")
        if other is not None:
            raise ValueError("watchlist item carries both movie and show metadata")
        if media.id != self.item_id:
            raise ValueError(f"item_id {self.item_id} does not match metadata id {media.id}")
        return self


class _Patch(BaseModel):
    # columns that may be left out of a patch but never set to NULL
    non_null_fields: ClassVar[Tuple[str, ...]] = ()

    @model_validator(mode="after")
    def _reject_nulls(self):
        for name in self.non_null_fields:
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def changes(self) -> Dict[str, Any]:
        """Only the fields the caller actually set."""
        return self.model_dump(exclude_unset=True)


class ProfileUpdate(_Patch):
    non_null_fields: ClassVar[Tuple[str, ...]] = ("login", "name")

    login: Optional[str] = None
    avatar_url: Optional[str] = None
    name: Optional[str] = None

    @field_validator("login", "name")
    @classmethod
    def _not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            v = v.strip()
            if not v:
                raise ValueError("must not be blank")
        return v


class WatchedShowUpdate(_Patch):
    non_null_fields: ClassVar[Tuple[str, ...]] = ("rating", "status", "watched_episodes")

    rating: Optional[int] = Field(None, ge=0, le=5)
    status: Optional[ShowStatus] = None
    watched_episodes: Optional[List[int]] = None
    notes: Optional[str] = None
    updated_date: Optional[datetime] = None
