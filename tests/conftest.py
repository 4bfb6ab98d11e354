import pytest

from backend.app.db import LocalStorage, Store
from backend.app.models import Genre, Movie, Profile, TVShow
from backend.app.session import ProfileSession
from backend.app.storage import Storage


@pytest.fixture
def local_storage(tmp_path):
    return LocalStorage(str(tmp_path / "local_storage"))


@pytest.fixture
def store(local_storage):
    s = Store(local_storage)
    s.init()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def storage(store):
    return Storage(store)


@pytest.fixture
def session(storage, local_storage):
    s = ProfileSession(storage, local_storage)
    s.start()
    return s


@pytest.fixture
def make_movie():
    def _make(movie_id: int = 603, **overrides) -> Movie:
        data = {
            "id": movie_id,
            "title": f"Movie {movie_id}",
            "overview": "A hacker learns the truth about reality.",
            "poster_path": f"/poster_{movie_id}.jpg",
            "backdrop_path": None,
            "release_date": "1999-03-30",
            "vote_average": 8.2,
            "genre_ids": [28, 878],
            "genres": [Genre(id=28, name="Action"), Genre(id=878, name="Science Fiction")],
        }
        data.update(overrides)
        return Movie(**data)

    return _make


@pytest.fixture
def make_show():
    def _make(show_id: int = 1396, **overrides) -> TVShow:
        data = {
            "id": show_id,
            "name": f"Show {show_id}",
            "overview": "A chemistry teacher changes careers.",
            "poster_path": f"/show_{show_id}.jpg",
            "first_air_date": "2008-01-20",
            "vote_average": 8.9,
            "genre_ids": [18, 80],
            "genres": [Genre(id=18, name="Drama"), Genre(id=80, name="Crime")],
            "number_of_seasons": 5,
            "number_of_episodes": 62,
        }
        data.update(overrides)
        return TVShow(**data)

    return _make


@pytest.fixture
def alex(storage):
    profile = Profile(id="profile_alex", login="alex", avatar_url=None, name="Alex")
    storage.set_profile(profile)
    return profile


@pytest.fixture
def sam(storage):
    profile = Profile(id="profile_sam", login="sam", avatar_url=None, name="Sam")
    storage.set_profile(profile)
    return profile
