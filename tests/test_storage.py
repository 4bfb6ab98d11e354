from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from backend.app.db import LocalStorage, Store
from backend.app.errors import (
    DataCorruptionError,
    EmptyUpdateError,
    ProfileNotFoundError,
    QueryError,
    RecordNotFoundError,
)
from backend.app.models import (
    Profile,
    ProfileUpdate,
    WatchedMovie,
    WatchedShow,
    WatchedShowUpdate,
    WatchlistItem,
)
from backend.app.storage import Storage

T0 = datetime(2020, 6, 1, 12, 0, tzinfo=timezone.utc)


def _count(storage: Storage, table: str, **where) -> int:
    clause = " AND ".join(f"{k} = ?" for k in where) or "1"
    return storage.store.query(f"SELECT COUNT(*) AS c FROM {table} WHERE {clause}", tuple(where.values()))[0]["c"]


# Profiles

def test_profiles_ordered_by_name(storage: Storage) -> None:
    storage.set_profile(Profile(id="p2", login="zoe", name="Zoe"))
    storage.set_profile(Profile(id="p1", login="adam", name="Adam"))
    assert [p.name for p in storage.get_all_profiles()] == ["Adam", "Zoe"]


def test_set_profile_upserts(storage: Storage, alex: Profile) -> None:
    storage.set_profile(alex.model_copy(update={"name": "Alexandra"}))
    profiles = storage.get_all_profiles()
    assert len(profiles) == 1
    assert profiles[0].name == "Alexandra"


def test_update_profile_patches_only_given_fields(storage: Storage, alex: Profile) -> None:
    storage.update_profile(alex.id, ProfileUpdate(avatar_url="https://example.com/a.png"))
    updated = storage.get_profile(alex.id)
    assert updated.avatar_url == "https://example.com/a.png"
    assert updated.name == "Alex"
    assert updated.login == "alex"


def test_update_profile_rejects_empty_patch(storage: Storage, alex: Profile) -> None:
    with pytest.raises(EmptyUpdateError):
        storage.update_profile(alex.id, ProfileUpdate())


def test_update_missing_profile_does_not_create(storage: Storage) -> None:
    with pytest.raises(ProfileNotFoundError):
        storage.update_profile("nobody", ProfileUpdate(name="Ghost"))
    assert storage.get_all_profiles() == []


@pytest.mark.parametrize("patch", [{"name": None}, {"login": None}, {"name": ""}, {"name": "   "}, {"login": " "}])
def test_update_profile_rejects_null_or_blank(storage: Storage, alex: Profile, patch) -> None:
    with pytest.raises(ValidationError):
        storage.update_profile(alex.id, ProfileUpdate(**patch))
    assert storage.get_profile(alex.id) == alex


def test_update_profile_can_clear_avatar(storage: Storage, alex: Profile) -> None:
    storage.update_profile(alex.id, ProfileUpdate(avatar_url="https://example.com/a.png"))
    storage.update_profile(alex.id, ProfileUpdate(avatar_url=None))
    assert storage.get_profile(alex.id).avatar_url is None


def test_profile_row_that_does_not_fit_is_corruption(storage: Storage, alex: Profile) -> None:
    storage.store.execute("INSERT INTO users(id, login, name) VALUES(?,?,NULL)", ("p_broken", "broken"))

    with pytest.raises(DataCorruptionError) as excinfo:
        storage.get_all_profiles()
    assert excinfo.value.column == "users"
    assert excinfo.value.raw["id"] == "p_broken"
    with pytest.raises(DataCorruptionError):
        storage.get_profile("p_broken")
    assert storage.get_profile(alex.id) == alex


def test_delete_profile_cascades_only_to_own_rows(storage, alex, sam, make_movie, make_show) -> None:
    for who in (alex, sam):
        storage.add_watched_movie(WatchedMovie(user_id=who.id, movie=make_movie(603)))
        storage.add_watched_show(WatchedShow(user_id=who.id, show=make_show(1396)))
        storage.add_to_watchlist(WatchlistItem(user_id=who.id, type="movie", item_id=604, movie=make_movie(604)))

    storage.delete_profile(alex.id)

    assert storage.get_profile(alex.id) is None
    for table in ("watched_movies", "watched_shows", "watchlist"):
        assert _count(storage, table, user_id=alex.id) == 0
        assert _count(storage, table, user_id=sam.id) == 1
    # shared cache rows stay
    assert storage.get_cached_movie(603) is not None
    assert storage.get_cached_movie(604) is not None
    assert storage.get_cached_show(1396) is not None


# Settings

def test_api_key_is_global_and_upserted(storage: Storage) -> None:
    assert storage.get_api_key() is None
    storage.set_api_key("first")
    storage.set_api_key("second")
    assert storage.get_api_key() == "second"
    assert _count(storage, "settings") == 1


# Cache

def test_cache_is_idempotent(storage: Storage, make_movie) -> None:
    storage.cache_movie(make_movie(603, overview="old"))
    storage.cache_movie(make_movie(603, overview="new"))
    assert _count(storage, "movies", id=603) == 1
    assert storage.get_cached_movie(603).overview == "new"


def test_cached_items_round_trip(storage: Storage, make_movie, make_show) -> None:
    movie = make_movie(603)
    show = make_show(1396)
    storage.cache_movie(movie)
    storage.cache_show(show)
    assert storage.get_cached_movie(603) == movie
    assert storage.get_cached_show(1396) == show


def test_missing_cache_item_is_none(storage: Storage) -> None:
    assert storage.get_cached_movie(1) is None
    assert storage.get_cached_show(1) is None


def test_corrupted_genre_column_is_reported(storage: Storage, make_movie) -> None:
    storage.cache_movie(make_movie(603))
    storage.store.execute("UPDATE movies SET genre_ids = ? WHERE id = ?", ("[28,", 603))
    with pytest.raises(DataCorruptionError) as exc:
        storage.get_cached_movie(603)
    assert exc.value.column == "movies.genre_ids"


# Watched movies

def test_watched_movie_is_replaced_not_duplicated(storage, alex, make_movie) -> None:
    storage.add_watched_movie(WatchedMovie(user_id=alex.id, movie=make_movie(603), rating=2, watched_date=T0))
    storage.add_watched_movie(
        WatchedMovie(user_id=alex.id, movie=make_movie(603), rating=4, watched_date=T0, notes="again")
    )

    watched = storage.get_watched_movies(alex.id)
    assert len(watched) == 1
    assert watched[0].rating == 4
    assert watched[0].notes == "again"


def test_watched_movies_newest_first(storage, alex, make_movie) -> None:
    for i, movie_id in enumerate([10, 11, 12]):
        storage.add_watched_movie(
            WatchedMovie(user_id=alex.id, movie=make_movie(movie_id), watched_date=T0 + timedelta(days=i))
        )
    watched = storage.get_watched_movies(alex.id)
    assert [w.movie.id for w in watched] == [12, 11, 10]
    assert watched[0].watched_date == T0 + timedelta(days=2)
    assert watched[0].movie.genres[0].name == "Action"


def test_update_movie_rating(storage, alex, make_movie) -> None:
    storage.add_watched_movie(WatchedMovie(user_id=alex.id, movie=make_movie(603)))
    storage.update_movie_rating(603, alex.id, 5)
    assert storage.get_watched_movies(alex.id)[0].rating == 5

    with pytest.raises(RecordNotFoundError):
        storage.update_movie_rating(999, alex.id, 3)
    with pytest.raises(ValueError):
        storage.update_movie_rating(603, alex.id, 6)


def test_remove_watched_movie(storage, alex, make_movie) -> None:
    storage.add_watched_movie(WatchedMovie(user_id=alex.id, movie=make_movie(603)))
    storage.remove_watched_movie(603, alex.id)
    assert storage.get_watched_movies(alex.id) == []
    assert storage.get_cached_movie(603) is not None


def test_watched_row_for_unknown_profile_is_rejected(storage, make_movie) -> None:
    with pytest.raises(QueryError):
        storage.add_watched_movie(WatchedMovie(user_id="nobody", movie=make_movie(603)))
    # the cache write rolled back with the failed link
    assert storage.get_cached_movie(603) is None


# Watched shows

def test_watched_episodes_keep_order(storage, alex, make_show) -> None:
    episodes = [5, 1, 3, 2]
    storage.add_watched_show(WatchedShow(user_id=alex.id, show=make_show(1396), watched_episodes=episodes))
    assert storage.get_watched_shows(alex.id)[0].watched_episodes == episodes


def test_update_watched_show_partial(storage, alex, make_show) -> None:
    storage.add_watched_show(
        WatchedShow(user_id=alex.id, show=make_show(1396), rating=3, watched_episodes=[1], updated_date=T0)
    )
    storage.update_watched_show(1396, alex.id, WatchedShowUpdate(status="completed", watched_episodes=[1, 2]))

    show = storage.get_watched_shows(alex.id)[0]
    assert show.status == "completed"
    assert show.watched_episodes == [1, 2]
    assert show.rating == 3
    assert show.updated_date > T0


def test_update_watched_show_errors(storage, alex, make_show) -> None:
    storage.add_watched_show(WatchedShow(user_id=alex.id, show=make_show(1396)))
    with pytest.raises(EmptyUpdateError):
        storage.update_watched_show(1396, alex.id, WatchedShowUpdate())
    with pytest.raises(RecordNotFoundError):
        storage.update_watched_show(1, alex.id, WatchedShowUpdate(rating=2))


@pytest.mark.parametrize("field", ["watched_episodes", "status", "rating"])
def test_update_watched_show_rejects_null(storage, alex, make_show, field) -> None:
    storage.add_watched_show(
        WatchedShow(user_id=alex.id, show=make_show(1396), rating=3, watched_episodes=[1, 2, 3], updated_date=T0)
    )
    with pytest.raises(ValidationError):
        storage.update_watched_show(1396, alex.id, WatchedShowUpdate(**{field: None}))

    show = storage.get_watched_shows(alex.id)[0]
    assert show.watched_episodes == [1, 2, 3]
    assert show.status == "watching"
    assert show.rating == 3
    assert show.updated_date == T0


def test_update_watched_show_accepts_null_notes(storage, alex, make_show) -> None:
    storage.add_watched_show(WatchedShow(user_id=alex.id, show=make_show(1396), notes="s1 was slow"))
    storage.update_watched_show(1396, alex.id, WatchedShowUpdate(notes=None))
    assert storage.get_watched_shows(alex.id)[0].notes is None


def test_watched_row_with_unknown_status_is_corruption(storage, alex, make_show) -> None:
    storage.add_watched_show(WatchedShow(user_id=alex.id, show=make_show(1396)))
    storage.store.execute("UPDATE watched_shows SET status = 'paused'")
    with pytest.raises(DataCorruptionError) as excinfo:
        storage.get_watched_shows(alex.id)
    assert excinfo.value.column == "watched_shows"


def test_corrupted_episode_list_is_not_defaulted(storage, alex, make_show) -> None:
    storage.add_watched_show(WatchedShow(user_id=alex.id, show=make_show(1396), watched_episodes=[1, 2]))
    storage.store.execute("UPDATE watched_shows SET watched_episodes = 'garbage'")
    with pytest.raises(DataCorruptionError):
        storage.get_watched_shows(alex.id)


def test_remove_watched_show(storage, alex, make_show) -> None:
    storage.add_watched_show(WatchedShow(user_id=alex.id, show=make_show(1396)))
    storage.remove_watched_show(1396, alex.id)
    assert storage.get_watched_shows(alex.id) == []


# Watchlist

def test_watchlist_populates_exactly_one_media(storage, alex, make_movie, make_show) -> None:
    storage.add_to_watchlist(
        WatchlistItem(user_id=alex.id, type="movie", item_id=603, movie=make_movie(603), added_date=T0)
    )
    storage.add_to_watchlist(
        WatchlistItem(
            user_id=alex.id, type="tv", item_id=1396, show=make_show(1396),
            added_date=T0 + timedelta(hours=1), priority=2, notes="soon",
        )
    )

    items = storage.get_watchlist(alex.id)
    assert [(i.type, i.item_id) for i in items] == [("tv", 1396), ("movie", 603)]

    tv, movie = items
    assert tv.show is not None and tv.movie is None
    assert tv.show.number_of_episodes == 62
    assert tv.priority == 2 and tv.notes == "soon"
    assert movie.movie is not None and movie.show is None
    assert movie.movie.title == "Movie 603"


def test_same_id_movie_and_show_do_not_collide(storage, alex, make_movie, make_show) -> None:
    storage.add_to_watchlist(WatchlistItem(user_id=alex.id, type="movie", item_id=42, movie=make_movie(42)))
    storage.add_to_watchlist(WatchlistItem(user_id=alex.id, type="tv", item_id=42, show=make_show(42)))
    items = storage.get_watchlist(alex.id)
    assert sorted(i.type for i in items) == ["movie", "tv"]


def test_watchlist_readd_replaces(storage, alex, make_movie) -> None:
    storage.add_to_watchlist(WatchlistItem(user_id=alex.id, type="movie", item_id=603, movie=make_movie(603)))
    storage.add_to_watchlist(
        WatchlistItem(user_id=alex.id, type="movie", item_id=603, movie=make_movie(603), priority=5)
    )
    items = storage.get_watchlist(alex.id)
    assert len(items) == 1
    assert items[0].priority == 5


def test_watchlist_row_without_cache_is_corruption(storage, alex) -> None:
    storage.store.execute(
        "INSERT INTO watchlist(user_id, item_type, item_id, added_date) VALUES(?,?,?,?)",
        (alex.id, "movie", 77, "2026-10-01T00:00:00.000000+00:00"),
    )
    with pytest.raises(DataCorruptionError):
        storage.get_watchlist(alex.id)


def test_remove_from_watchlist(storage, alex, make_movie) -> None:
    storage.add_to_watchlist(WatchlistItem(user_id=alex.id, type="movie", item_id=603, movie=make_movie(603)))
    storage.remove_from_watchlist(603, "tv", alex.id)
    assert len(storage.get_watchlist(alex.id)) == 1
    storage.remove_from_watchlist(603, "movie", alex.id)
    assert storage.get_watchlist(alex.id) == []


def test_mark_watched_moves_item(storage, alex, make_movie, make_show) -> None:
    storage.add_to_watchlist(WatchlistItem(user_id=alex.id, type="movie", item_id=603, movie=make_movie(603)))
    storage.add_to_watchlist(WatchlistItem(user_id=alex.id, type="tv", item_id=1396, show=make_show(1396)))

    movie = storage.mark_watched(alex.id, "movie", 603)
    show = storage.mark_watched(alex.id, "tv", 1396)

    assert isinstance(movie, WatchedMovie) and movie.rating == 0
    assert isinstance(show, WatchedShow) and show.status == "watching"
    assert storage.get_watchlist(alex.id) == []
    assert [w.movie.id for w in storage.get_watched_movies(alex.id)] == [603]
    assert [w.show.id for w in storage.get_watched_shows(alex.id)] == [1396]

    with pytest.raises(RecordNotFoundError):
        storage.mark_watched(alex.id, "movie", 603)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"type": "movie", "item_id": 603},
        {"type": "tv", "item_id": 603, "movie_id": 603},
        {"type": "movie", "item_id": 603, "movie_id": 603, "show_id": 603},
        {"type": "movie", "item_id": 1, "movie_id": 603},
    ],
)
def test_watchlist_item_requires_matching_media(kwargs, make_movie, make_show) -> None:
    movie_id = kwargs.pop("movie_id", None)
    show_id = kwargs.pop("show_id", None)
    with pytest.raises(ValidationError):
        WatchlistItem(
            user_id="p",
            movie=make_movie(movie_id) if movie_id else None,
            show=make_show(show_id) if show_id else None,
            **kwargs,
        )


# Bulk

def test_clear_user_data_keeps_profile_and_cache(storage, alex, sam, make_movie) -> None:
    storage.add_watched_movie(WatchedMovie(user_id=alex.id, movie=make_movie(603)))
    storage.add_watched_movie(WatchedMovie(user_id=sam.id, movie=make_movie(603)))
    storage.clear_user_data(alex.id)

    assert storage.get_watched_movies(alex.id) == []
    assert len(storage.get_watched_movies(sam.id)) == 1
    assert storage.get_profile(alex.id) is not None
    assert storage.get_cached_movie(603) is not None


def test_clear_wipes_everything(storage, alex, make_movie, make_show) -> None:
    storage.set_api_key("key")
    storage.add_watched_movie(WatchedMovie(user_id=alex.id, movie=make_movie(603)))
    storage.add_to_watchlist(WatchlistItem(user_id=alex.id, type="tv", item_id=1396, show=make_show(1396)))
    storage.clear()

    for table in ("users", "settings", "movies", "tv_shows", "watched_movies", "watched_shows", "watchlist"):
        assert _count(storage, table) == 0


def test_data_survives_restart(local_storage: LocalStorage, storage, alex, make_show) -> None:
    storage.add_watched_show(WatchedShow(user_id=alex.id, show=make_show(1396), watched_episodes=[3, 1]))

    reopened = Storage(Store(local_storage))
    reopened.init()
    try:
        assert [p.id for p in reopened.get_all_profiles()] == [alex.id]
        assert reopened.get_watched_shows(alex.id)[0].watched_episodes == [3, 1]
    finally:
        reopened.close()
