from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple, Union

from backend.app.models import WatchedMovie, WatchedShow
from backend.app.storage import Storage

WatchedRecord = Union[WatchedMovie, WatchedShow]

STREAK_GAP_DAYS = 7
TOP_GENRES = 8


@dataclass
class MonthBucket:
    month: str        # "Oct"
    full_month: str   # "October 2026"
    movies: int = 0
    shows: int = 0

    @property
    def total(self) -> int:
        return self.movies + self.shows


@dataclass
class GenreCount:
    name: str
    movies: int = 0
    shows: int = 0

    @property
    def total(self) -> int:
        return self.movies + self.shows


@dataclass
class RatingBucket:
    stars: int
    count: int = 0
    percent: float = 0.0


@dataclass
class YearCount:
    year: int
    movies: int = 0
    shows: int = 0

    @property
    def total(self) -> int:
        return self.movies + self.shows


@dataclass
class WatchStats:
    movies: int
    shows: int
    rated: int
    average_rating: float
    completed_shows: int
    watched_episodes: int
    current_streak: int
    monthly: List[MonthBucket] = field(default_factory=list)
    genres: List[GenreCount] = field(default_factory=list)
    ratings: List[RatingBucket] = field(default_factory=list)
    yearly: List[YearCount] = field(default_factory=list)

    @property
    def total_watched(self) -> int:
        return self.movies + self.shows


def _utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def activity_date(item: WatchedRecord) -> datetime:
    # movies count when watched, shows when last updated
    if isinstance(item, WatchedMovie):
        return _utc(item.watched_date)
    return _utc(item.updated_date)


def _shift_month(year: int, month: int, delta: int) -> Tuple[int, int]:
    idx = year * 12 + (month - 1) + delta
    return idx // 12, idx % 12 + 1


def monthly_activity(
    movies: Sequence[WatchedMovie],
    shows: Sequence[WatchedShow],
    now: datetime,
    months: int = 12,
) -> List[MonthBucket]:
    """Per-month counts for the last `months` months, oldest first, current month last."""
    now = _utc(now)
    keys: List[Tuple[int, int]] = [_shift_month(now.year, now.month, -i) for i in range(months - 1, -1, -1)]
    buckets: Dict[Tuple[int, int], MonthBucket] = {
        (y, m): MonthBucket(month=calendar.month_abbr[m], full_month=f"{calendar.month_name[m]} {y}")
        for y, m in keys
    }

    for wm in movies:
        d = activity_date(wm)
        b = buckets.get((d.year, d.month))
        if b is not None:
            b.movies += 1

    for ws in shows:
        d = activity_date(ws)
        b = buckets.get((d.year, d.month))
        if b is not None:
            b.shows += 1

    return [buckets[k] for k in keys]


def genre_breakdown(
    movies: Sequence[WatchedMovie],
    shows: Sequence[WatchedShow],
    limit: int = TOP_GENRES,
) -> List[GenreCount]:
    counts: Dict[str, GenreCount] = {}

    for wm in movies:
        for g in wm.movie.genres:
            counts.setdefault(g.name, GenreCount(name=g.name)).movies += 1

    for ws in shows:
        for g in ws.show.genres:
            counts.setdefault(g.name, GenreCount(name=g.name)).shows += 1

    ranked = sorted(counts.values(), key=lambda c: (-c.total, c.name))
    return ranked[:limit]


def rating_distribution(items: Sequence[WatchedRecord]) -> List[RatingBucket]:
    buckets = [RatingBucket(stars=s) for s in range(1, 6)]
    for item in items:
        if 1 <= item.rating <= 5:
            buckets[item.rating - 1].count += 1

    total = sum(b.count for b in buckets)
    for b in buckets:
        b.percent = (b.count / total) * 100 if total else 0.0
    return buckets


def yearly_comparison(
    movies: Sequence[WatchedMovie],
    shows: Sequence[WatchedShow],
    now: datetime,
    years: int = 3,
) -> List[YearCount]:
    current = _utc(now).year
    result = [YearCount(year=y) for y in range(current - years + 1, current + 1)]
    by_year = {yc.year: yc for yc in result}

    for wm in movies:
        yc = by_year.get(activity_date(wm).year)
        if yc is not None:
            yc.movies += 1
    for ws in shows:
        yc = by_year.get(activity_date(ws).year)
        if yc is not None:
            yc.shows += 1
    return result


def current_streak(
    items: Sequence[WatchedRecord],
    now: datetime,
    max_gap_days: int = STREAK_GAP_DAYS,
) -> int:
    """
    Number of most recent items where each one is at most `max_gap_days`
    whole days before the previous one (the first is measured from `now`).
    The tolerance is fixed; it does not grow with the streak.
    """
    cursor = _utc(now)
    streak = 0
    for item in sorted(items, key=activity_date, reverse=True):
        d = activity_date(item)
        gap_days = int((cursor - d).total_seconds() // 86400)
        if gap_days > max_gap_days:
            break
        streak += 1
        cursor = d
    return streak


def compute_stats(
    movies: Sequence[WatchedMovie],
    shows: Sequence[WatchedShow],
    now: Optional[datetime] = None,
) -> WatchStats:
    now = _utc(now or datetime.now(timezone.utc))
    everything: List[WatchedRecord] = [*movies, *shows]
    rated = [i for i in everything if i.rating > 0]
    average = sum(i.rating for i in rated) / len(rated) if rated else 0.0

    return WatchStats(
        movies=len(movies),
        shows=len(shows),
        rated=len(rated),
        average_rating=average,
        completed_shows=sum(1 for s in shows if s.status == "completed"),
        watched_episodes=sum(len(s.watched_episodes) for s in shows),
        current_streak=current_streak(everything, now),
        monthly=monthly_activity(movies, shows, now),
        genres=genre_breakdown(movies, shows),
        ratings=rating_distribution(everything),
        yearly=yearly_comparison(movies, shows, now),
    )


def build_stats(storage: Storage, profile_id: str, now: Optional[datetime] = None) -> WatchStats:
    movies = storage.get_watched_movies(profile_id)
    shows = storage.get_watched_shows(profile_id)
    return compute_stats(movies, shows, now=now)


def stats_to_dict(stats: WatchStats) -> Dict[str, object]:
    return {
        "total_watched": stats.total_watched,
        "movies": stats.movies,
        "shows": stats.shows,
        "rated": stats.rated,
        "average_rating": stats.average_rating,
        "completed_shows": stats.completed_shows,
        "watched_episodes": stats.watched_episodes,
        "current_streak": stats.current_streak,
        "monthly": [
            {"month": b.month, "full_month": b.full_month, "movies": b.movies, "shows": b.shows, "total": b.total}
            for b in stats.monthly
        ],
        "genres": [
            {"name": g.name, "movies": g.movies, "shows": g.shows, "total": g.total}
            for g in stats.genres
        ],
        "ratings": [
            {"stars": r.stars, "count": r.count, "percent": r.percent}
            for r in stats.ratings
        ],
        "yearly": [
            {"year": y.year, "movies": y.movies, "shows": y.shows, "total": y.total}
            for y in stats.yearly
        ],
    }
