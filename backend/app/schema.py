SCHEMA_SQL = """
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS users (
  id         TEXT PRIMARY KEY,               -- 'profile_<hex>'
  login      TEXT NOT NULL,
  avatar_url TEXT,
  name       TEXT,
  created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

-- global settings, not per profile

CREATE TABLE IF NOT EXISTS settings (
  id         INTEGER PRIMARY KEY,
  key        TEXT NOT NULL UNIQUE,
  value      TEXT,
  created_at TEXT NOT NULL DEFAULT (datetime('now')),
  updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

-- metadata cache (mirrors the provider's fields)

CREATE TABLE IF NOT EXISTS movies (
  id            INTEGER PRIMARY KEY,          -- provider id
  title         TEXT NOT NULL,
  overview      TEXT,
  poster_path   TEXT,
  backdrop_path TEXT,
  release_date  TEXT,
  vote_average  REAL,
  genre_ids     TEXT,                         -- JSON array of ints
  genres        TEXT,                         -- JSON array of {id, name}
  created_at    TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS tv_shows (
  id                 INTEGER PRIMARY KEY,
  name               TEXT NOT NULL,
  overview           TEXT,
  poster_path        TEXT,
  backdrop_path      TEXT,
  first_air_date     TEXT,
  vote_average       REAL,
  genre_ids          TEXT,
  genres             TEXT,
  number_of_seasons  INTEGER,
  number_of_episodes INTEGER,
  created_at         TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS watched_movies (
  id           INTEGER PRIMARY KEY AUTOINCREMENT,
  user_id      TEXT NOT NULL,
  movie_id     INTEGER NOT NULL,
  rating       INTEGER NOT NULL DEFAULT 0,    -- 0 = unrated, else 1..5
  watched_date TEXT NOT NULL,                 -- ISO-8601 UTC
  notes        TEXT,
  created_at   TEXT NOT NULL DEFAULT (datetime('now')),
  FOREIGN KEY (user_id) REFERENCES users(id),
  FOREIGN KEY (movie_id) REFERENCES movies(id),
  UNIQUE (user_id, movie_id)
);

CREATE TABLE IF NOT EXISTS watched_shows (
  id               INTEGER PRIMARY KEY AUTOINCREMENT,
  user_id          TEXT NOT NULL,
  show_id          INTEGER NOT NULL,
  rating           INTEGER NOT NULL DEFAULT 0,
  status           TEXT NOT NULL DEFAULT 'watching',  -- 'watching' | 'completed' | 'dropped'
  watched_episodes TEXT,                              -- JSON array of episode numbers
  notes            TEXT,
  created_at       TEXT NOT NULL DEFAULT (datetime('now')),
  updated_at       TEXT NOT NULL,
  FOREIGN KEY (user_id) REFERENCES users(id),
  FOREIGN KEY (show_id) REFERENCES tv_shows(id),
  UNIQUE (user_id, show_id)
);

-- item_id points at movies or tv_shows depending on item_type

CREATE TABLE IF NOT EXISTS watchlist (
  id         INTEGER PRIMARY KEY AUTOINCREMENT,
  user_id    TEXT NOT NULL,
  item_type  TEXT NOT NULL,                   -- 'movie' | 'tv'
  item_id    INTEGER NOT NULL,
  added_date TEXT NOT NULL,
  priority   INTEGER NOT NULL DEFAULT 0,
  notes      TEXT,
  FOREIGN KEY (user_id) REFERENCES users(id),
  UNIQUE (user_id, item_type, item_id)
);

CREATE INDEX IF NOT EXISTS idx_watched_movies_user ON watched_movies(user_id);
CREATE INDEX IF NOT EXISTS idx_watched_shows_user ON watched_shows(user_id);
CREATE INDEX IF NOT EXISTS idx_watchlist_user ON watchlist(user_id);
CREATE INDEX IF NOT EXISTS idx_settings_key ON settings(key);
"""

# children first (foreign keys)
ALL_TABLES = (
    "watched_movies",
    "watched_shows",
    "watchlist",
    "settings",
    "movies",
    "tv_shows",
    "users",
)

USER_TABLES = ("watched_movies", "watched_shows", "watchlist")
