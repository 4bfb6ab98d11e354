from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from backend.app.codec import decode_genres, decode_int_list, encode_genres, encode_list
from backend.app.db import Store
from backend.app.errors import (
    DataCorruptionError,
    EmptyUpdateError,
    ProfileNotFoundError,
    RecordNotFoundError,
)
from backend.app.models import (
    MediaType,
    Movie,
    Profile,
    ProfileUpdate,
    TVShow,
    WatchedMovie,
    WatchedShow,
    WatchedShowUpdate,
    WatchlistItem,
    format_ts,
    utcnow,
)
from backend.app.schema import ALL_TABLES, USER_TABLES

logger = logging.getLogger(__name__)

API_KEY_SETTING = "tmdb_api_key"

MOVIE_COLUMNS = (
    "title", "overview", "poster_path", "backdrop_path", "release_date",
    "vote_average", "genre_ids", "genres",
)
SHOW_COLUMNS = (
    "name", "overview", "poster_path", "backdrop_path", "first_air_date",
    "vote_average", "genre_ids", "genres", "number_of_seasons", "number_of_episodes",
)


M = TypeVar("M", bound=BaseModel)


def _row_model(model: Type[M], table: str, **data: Any) -> M:
    """Build a domain model from a stored row; a row that does not fit is corruption."""
    try:
        return model(**data)
    except ValidationError as e:
        fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err["loc"])
        raise DataCorruptionError(table, data, f"row does not fit {model.__name__} ({fields})") from e


def _aliased(table_alias: str, columns: tuple, prefix: str) -> str:
    return ", ".join(f"{table_alias}.{c} AS {prefix}{c}" for c in columns)


def _movie_from_row(row: Dict[str, Any], movie_id: int, prefix: str = "") -> Movie:
    table = "movies"
    return _row_model(
        Movie, table,
        id=movie_id,
        title=row[f"{prefix}title"],
        overview=row[f"{prefix}overview"] or "",
        poster_path=row[f"{prefix}poster_path"],
        backdrop_path=row[f"{prefix}backdrop_path"],
        release_date=row[f"{prefix}release_date"] or "",
        vote_average=float(row[f"{prefix}vote_average"] or 0.0),
        genre_ids=decode_int_list(row[f"{prefix}genre_ids"], f"{table}.genre_ids"),
        genres=decode_genres(row[f"{prefix}genres"], f"{table}.genres"),
    )


def _show_from_row(row: Dict[str, Any], show_id: int, prefix: str = "") -> TVShow:
    table = "tv_shows"
    return _row_model(
        TVShow, table,
        id=show_id,
        name=row[f"{prefix}name"],
        overview=row[f"{prefix}overview"] or "",
        poster_path=row[f"{prefix}poster_path"],
        backdrop_path=row[f"{prefix}backdrop_path"],
        first_air_date=row[f"{prefix}first_air_date"] or "",
        vote_average=float(row[f"{prefix}vote_average"] or 0.0),
        genre_ids=decode_int_list(row[f"{prefix}genre_ids"], f"{table}.genre_ids"),
        genres=decode_genres(row[f"{prefix}genres"], f"{table}.genres"),
        number_of_seasons=row[f"{prefix}number_of_seasons"],
        number_of_episodes=row[f"{prefix}number_of_episodes"],
    )


class Storage:
    """
    Domain operations over the local Store.

    Every write goes through Store.execute / Store.transaction, so the
    snapshot is refreshed after each successful mutation. Metadata is always
    cached before the watched/watchlist row that points at it, inside the
    same transaction.
    """

    def __init__(self, store: Store):
        self.store = store

    def init(self) -> None:
        self.store.init()

    def close(self) -> None:
        self.store.close()

    # Profiles

    def set_profile(self, profile: Profile) -> None:
        self.store.execute(
            """
            INSERT INTO users(id, login, avatar_url, name) VALUES(?,?,?,?)
            ON CONFLICT(id) DO UPDATE SET
              login = excluded.login,
              avatar_url = excluded.avatar_url,
              name = excluded.name
            """,
            (profile.id, profile.login, profile.avatar_url, profile.name),
        )

    def get_profile(self, profile_id: str) -> Optional[Profile]:
        rows = self.store.query(
            "SELECT id, login, avatar_url, name FROM users WHERE id = ?",
            (profile_id,),
        )
        return _row_model(Profile, "users", **rows[0]) if rows else None

    def get_all_profiles(self) -> List[Profile]:
        rows = self.store.query("SELECT id, login, avatar_url, name FROM users ORDER BY name, id")
        return [_row_model(Profile, "users", **r) for r in rows]

    def update_profile(self, profile_id: str, updates: ProfileUpdate) -> None:
        changes = updates.changes()
        if not changes:
            raise EmptyUpdateError("profile update has no fields")

        # column names come from ProfileUpdate's fields, never from the caller
        set_clause = ", ".join(f"{col} = ?" for col in changes)
        updated = self.store.execute(
            f"UPDATE users SET {set_clause} WHERE id = ?",
            (*changes.values(), profile_id),
        )
        if updated == 0:
            raise ProfileNotFoundError(profile_id)

    def delete_profile(self, profile_id: str) -> None:
        with self.store.transaction():
            for table in USER_TABLES:
                self.store.execute(f"DELETE FROM {table} WHERE user_id = ?", (profile_id,))
            self.store.execute("DELETE FROM users WHERE id = ?", (profile_id,))
        logger.info("Deleted profile %s and its watched/watchlist rows", profile_id)

    # Settings

    def set_api_key(self, key: str) -> None:
        self.store.execute(
            """
            INSERT INTO settings(key, value, updated_at) VALUES(?, ?, datetime('now'))
            ON CONFLICT(key) DO UPDATE SET
              value = excluded.value,
              updated_at = excluded.updated_at
            """,
            (API_KEY_SETTING, key),
        )

    def get_api_key(self) -> Optional[str]:
        rows = self.store.query("SELECT value FROM settings WHERE key = ?", (API_KEY_SETTING,))
        return rows[0]["value"] if rows else None

    # Metadata cache

    def cache_movie(self, movie: Movie) -> None:
        self.store.execute(
            """
            INSERT INTO movies(id, title, overview, poster_path, backdrop_path,
                               release_date, vote_average, genre_ids, genres)
            VALUES(?,?,?,?,?,?,?,?,?)
            ON CONFLICT(id) DO UPDATE SET
              title = excluded.title,
              overview = excluded.overview,
              poster_path = excluded.poster_path,
              backdrop_path = excluded.backdrop_path,
              release_date = excluded.release_date,
              vote_average = excluded.vote_average,
              genre_ids = excluded.genre_ids,
              genres = excluded.genres
            """,
            (
                movie.id,
                movie.title,
                movie.overview,
                movie.poster_path,
                movie.backdrop_path,
                movie.release_date,
                movie.vote_average,
                encode_list(movie.genre_ids),
                encode_genres(movie.genres),
            ),
        )

    def cache_show(self, show: TVShow) -> None:
        self.store.execute(
            """
            INSERT INTO tv_shows(id, name, overview, poster_path, backdrop_path,
                                 first_air_date, vote_average, genre_ids, genres,
                                 number_of_seasons, number_of_episodes)
            VALUES(?,?,?,?,?,?,?,?,?,?,?)
            ON CONFLICT(id) DO UPDATE SET
              name = excluded.name,
              overview = excluded.overview,
              poster_path = excluded.poster_path,
              backdrop_path = excluded.backdrop_path,
              first_air_date = excluded.first_air_date,
              vote_average = excluded.vote_average,
              genre_ids = excluded.genre_ids,
              genres = excluded.genres,
              number_of_seasons = excluded.number_of_seasons,
              number_of_episodes = excluded.number_of_episodes
            """,
            (
                show.id,
                show.name,
                show.overview,
                show.poster_path,
                show.backdrop_path,
                show.first_air_date,
                show.vote_average,
                encode_list(show.genre_ids),
                encode_genres(show.genres),
                show.number_of_seasons,
                show.number_of_episodes,
            ),
        )

    def get_cached_movie(self, movie_id: int) -> Optional[Movie]:
        rows = self.store.query(
            f"SELECT {', '.join(MOVIE_COLUMNS)} FROM movies WHERE id = ?",
            (movie_id,),
        )
        return _movie_from_row(rows[0], movie_id) if rows else None

    def get_cached_show(self, show_id: int) -> Optional[TVShow]:
        rows = self.store.query(
            f"SELECT {', '.join(SHOW_COLUMNS)} FROM tv_shows WHERE id = ?",
            (show_id,),
        )
        return _show_from_row(rows[0], show_id) if rows else None

    # Watched movies

    def get_watched_movies(self, profile_id: str) -> List[WatchedMovie]:
        rows = self.store.query(
            f"""
            SELECT wm.id AS watch_id, wm.user_id, wm.movie_id, wm.rating,
                   wm.watched_date, wm.notes,
                   {_aliased("m", MOVIE_COLUMNS, "m_")}
            FROM watched_movies wm
            JOIN movies m ON m.id = wm.movie_id
            WHERE wm.user_id = ?
            ORDER BY wm.watched_date DESC, wm.id DESC
            """,
            (profile_id,),
        )
        return [
            _row_model(
                WatchedMovie, "watched_movies",
                id=r["watch_id"],
                user_id=r["user_id"],
                movie=_movie_from_row(r, int(r["movie_id"]), "m_"),
                rating=int(r["rating"] or 0),
                watched_date=r["watched_date"],
                notes=r["notes"],
            )
            for r in rows
        ]

    def add_watched_movie(self, watched: WatchedMovie) -> None:
        with self.store.transaction():
            self.cache_movie(watched.movie)
            self.store.execute(
                """
                INSERT OR REPLACE INTO watched_movies(user_id, movie_id, rating, watched_date, notes)
                VALUES(?,?,?,?,?)
                """,
                (
                    watched.user_id,
                    watched.movie.id,
                    watched.rating,
                    format_ts(watched.watched_date),
                    watched.notes,
                ),
            )

    def update_movie_rating(self, movie_id: int, profile_id: str, rating: int) -> None:
        if not 0 <= rating <= 5:
            raise ValueError(f"rating must be between 0 and 5, got {rating}")
        updated = self.store.execute(
            "UPDATE watched_movies SET rating = ? WHERE movie_id = ? AND user_id = ?",
            (rating, movie_id, profile_id),
        )
        if updated == 0:
            raise RecordNotFoundError(f"movie {movie_id} is not watched by {profile_id}")

    def remove_watched_movie(self, movie_id: int, profile_id: str) -> None:
        self.store.execute(
            "DELETE FROM watched_movies WHERE movie_id = ? AND user_id = ?",
            (movie_id, profile_id),
        )

    # Watched shows

    def get_watched_shows(self, profile_id: str) -> List[WatchedShow]:
        rows = self.store.query(
            f"""
            SELECT ws.id AS watch_id, ws.user_id, ws.show_id, ws.rating, ws.status,
                   ws.watched_episodes, ws.notes, ws.updated_at,
                   {_aliased("s", SHOW_COLUMNS, "s_")}
            FROM watched_shows ws
            JOIN tv_shows s ON s.id = ws.show_id
            WHERE ws.user_id = ?
            ORDER BY ws.updated_at DESC, ws.id DESC
            """,
            (profile_id,),
        )
        return [
            _row_model(
                WatchedShow, "watched_shows",
                id=r["watch_id"],
                user_id=r["user_id"],
                show=_show_from_row(r, int(r["show_id"]), "s_"),
                rating=int(r["rating"] or 0),
                status=r["status"],
                watched_episodes=decode_int_list(r["watched_episodes"], "watched_shows.watched_episodes"),
                notes=r["notes"],
                updated_date=r["updated_at"],
            )
            for r in rows
        ]

    def add_watched_show(self, watched: WatchedShow) -> None:
        with self.store.transaction():
            self.cache_show(watched.show)
            self.store.execute(
                """
                INSERT OR REPLACE INTO watched_shows(user_id, show_id, rating, status,
                                                     watched_episodes, notes, updated_at)
                VALUES(?,?,?,?,?,?,?)
                """,
                (
                    watched.user_id,
                    watched.show.id,
                    watched.rating,
                    watched.status,
                    encode_list(watched.watched_episodes),
                    watched.notes,
                    format_ts(watched.updated_date),
                ),
            )

    def update_watched_show(self, show_id: int, profile_id: str, updates: WatchedShowUpdate) -> None:
        changes = updates.changes()
        if not changes:
            raise EmptyUpdateError("watched show update has no fields")

        columns: Dict[str, Any] = {}
        for field, value in changes.items():
            if field == "watched_episodes":
                columns["watched_episodes"] = encode_list(value)
            elif field == "updated_date":
                columns["updated_at"] = format_ts(value or utcnow())
            else:
                columns[field] = value
        columns.setdefault("updated_at", format_ts(utcnow()))

        set_clause = ", ".join(f"{col} = ?" for col in columns)
        updated = self.store.execute(
            f"UPDATE watched_shows SET {set_clause} WHERE show_id = ? AND user_id = ?",
            (*columns.values(), show_id, profile_id),
        )
        if updated == 0:
            raise RecordNotFoundError(f"show {show_id} is not watched by {profile_id}")

    def remove_watched_show(self, show_id: int, profile_id: str) -> None:
        self.store.execute(
            "DELETE FROM watched_shows WHERE show_id = ? AND user_id = ?",
            (show_id, profile_id),
        )

    # Watchlist

    def get_watchlist(self, profile_id: str) -> List[WatchlistItem]:
        rows = self.store.query(
            f"""
            SELECT w.id, w.user_id, w.item_type, w.item_id, w.added_date, w.priority, w.notes,
                   m.id AS m_id, {_aliased("m", MOVIE_COLUMNS, "m_")},
                   s.id AS s_id, {_aliased("s", SHOW_COLUMNS, "s_")}
            FROM watchlist w
            LEFT JOIN movies m ON w.item_type = 'movie' AND m.id = w.item_id
            LEFT JOIN tv_shows s ON w.item_type = 'tv' AND s.id = w.item_id
            WHERE w.user_id = ?
            ORDER BY w.added_date DESC, w.id DESC
            """,
            (profile_id,),
        )

        items: List[WatchlistItem] = []
        for r in rows:
            item_type = r["item_type"]
            item_id = int(r["item_id"])
            movie = show = None
            if item_type == "movie":
                if r["m_id"] is None:
                    raise DataCorruptionError("watchlist.item_id", item_id, f"no cached movie {item_id}")
                movie = _movie_from_row(r, item_id, "m_")
            elif item_type == "tv":
                if r["s_id"] is None:
                    raise DataCorruptionError("watchlist.item_id", item_id, f"no cached show {item_id}")
                show = _show_from_row(r, item_id, "s_")
            else:
                raise DataCorruptionError("watchlist.item_type", item_type, f"unknown item type {item_type!r}")

            items.append(
                _row_model(
                    WatchlistItem, "watchlist",
                    id=r["id"],
                    user_id=r["user_id"],
                    type=item_type,
                    item_id=item_id,
                    movie=movie,
                    show=show,
                    added_date=r["added_date"],
                    priority=int(r["priority"] or 0),
                    notes=r["notes"],
                )
            )
        return items

    def add_to_watchlist(self, item: WatchlistItem) -> None:
        with self.store.transaction():
            if item.movie is not None:
                self.cache_movie(item.movie)
            if item.show is not None:
                self.cache_show(item.show)
            self.store.execute(
                """
                INSERT OR REPLACE INTO watchlist(user_id, item_type, item_id, added_date, priority, notes)
                VALUES(?,?,?,?,?,?)
                """,
                (
                    item.user_id,
                    item.type,
                    item.item_id,
                    format_ts(item.added_date),
                    item.priority,
                    item.notes,
                ),
            )

    def remove_from_watchlist(self, item_id: int, item_type: MediaType, profile_id: str) -> None:
        self.store.execute(
            "DELETE FROM watchlist WHERE item_id = ? AND item_type = ? AND user_id = ?",
            (item_id, item_type, profile_id),
        )

    def mark_watched(self, profile_id: str, item_type: MediaType, item_id: int) -> Union[WatchedMovie, WatchedShow]:
        """Move a watchlist entry into the watched tables; returns the new record."""
        with self.store.transaction():
            rows = self.store.query(
                "SELECT id FROM watchlist WHERE user_id = ? AND item_type = ? AND item_id = ?",
                (profile_id, item_type, item_id),
            )
            if not rows:
                raise RecordNotFoundError(f"{item_type} {item_id} is not on the watchlist of {profile_id}")

            if item_type == "movie":
                movie = self.get_cached_movie(item_id)
                if movie is None:
                    raise DataCorruptionError("watchlist.item_id", item_id, f"no cached movie {item_id}")
                watched = WatchedMovie(user_id=profile_id, movie=movie)
                self.add_watched_movie(watched)
            else:
                show = self.get_cached_show(item_id)
                if show is None:
                    raise DataCorruptionError("watchlist.item_id", item_id, f"no cached show {item_id}")
                watched = WatchedShow(user_id=profile_id, show=show)
                self.add_watched_show(watched)

            self.remove_from_watchlist(item_id, item_type, profile_id)
        return watched

    # Bulk

    def clear_user_data(self, profile_id: str) -> None:
        with self.store.transaction():
            for table in USER_TABLES:
                self.store.execute(f"DELETE FROM {table} WHERE user_id = ?", (profile_id,))
        logger.info("Cleared watched/watchlist data for profile %s", profile_id)

    def clear(self) -> None:
        with self.store.transaction():
            for table in ALL_TABLES:
                self.store.execute(f"DELETE FROM {table}")
        logger.info("Cleared every table")
