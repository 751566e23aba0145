"""Resurfacing: pick idle files worth showing to the user again.

select_resurfaced() is a pure function of (files, now, count). It reads
nothing from disk or the database, so the same snapshot and the same day
always give the same answer.

Heuristics, in priority order (each skips files already chosen):
1. Forgotten: the most idle file, untouched for more than 14 days
2. Seasonal Echo: a file last modified around this time of year
3. Random Delight: a stable daily pick among files idle for a week
4. Fill: remaining slots from the most idle files
"""

from __future__ import annotations

import calendar
import zlib
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .disk import FileRecord

DAY_SECONDS = 24 * 60 * 60

MIN_COUNT = 1
MAX_COUNT = 12

FORGOTTEN_AFTER_DAYS = 14
SEASONAL_WINDOW_DAYS = 10
SEASONAL_MIN_AGE_DAYS = 60
DELIGHT_AFTER_DAYS = 7

REASON_FORGOTTEN = "Forgotten"
REASON_SEASONAL = "Seasonal Echo"
REASON_DELIGHT = "Random Delight"

_DELIGHT_LABEL = "random_delight"


@dataclass
class ResurfacedFile:
    """A recommended file with the heuristic that picked it."""

    file: FileRecord
    reason: str
    explanation: str

    def to_dict(self) -> dict:
        return {
            "file": self.file.to_dict(),
            "reason": self.reason,
            "explanation": self.explanation,
        }


def clamp_count(count: int | None, default: int = 3) -> int:
    """Clamp a requested count to [MIN_COUNT, MAX_COUNT]."""
    if count is None:
        count = default
    return max(MIN_COUNT, min(MAX_COUNT, int(count)))


def wraparound_day_diff(a: int, b: int, year_days: int) -> int:
    """
    Distance between two day-of-year values, going either way round.

    Days 5 and 362 of a 365-day year are 8 days apart, not 357.
    """
    diff = abs(a - b)
    return min(diff, max(year_days - diff, 0))


def stable_pick_index(seed: str, size: int) -> int | None:
    """Map a seed string to an index in [0, size), stable across runs."""
    if size <= 0:
        return None
    return zlib.crc32(seed.encode("utf-8")) % size


def _idle_days(file: FileRecord, now_ts: int) -> int:
    return max(now_ts - file.activity_at, 0) // DAY_SECONDS


def _forgotten(file: FileRecord, now_ts: int) -> ResurfacedFile:
    return ResurfacedFile(
        file=file,
        reason=REASON_FORGOTTEN,
        explanation=f"Asleep for ~{_idle_days(file, now_ts)} days",
    )


def _day_of_year(ts: int) -> int | None:
    try:
        return datetime.fromtimestamp(ts, tz=timezone.utc).timetuple().tm_yday
    except (OverflowError, OSError, ValueError):
        return None


def select_resurfaced(
    files: Iterable[FileRecord],
    now: datetime | None = None,
    count: int | None = 3,
) -> list[ResurfacedFile]:
    """
    Choose files to resurface.

    Args:
        files: Snapshot of indexed files (any order)
        now: Current time (defaults to the current UTC time)
        count: Number of recommendations, clamped to [1, 12]

    Returns:
        At most `count` recommendations with distinct paths; empty if
        there are no files
    """
    count = clamp_count(count)
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)

    # Oldest activity first; path breaks ties so the order is total
    ordered = sorted(files, key=lambda f: (f.activity_at, f.path))
    if not ordered:
        return []

    now_ts = int(now.timestamp())
    today = now.timetuple().tm_yday
    year_days = 366 if calendar.isleap(now.year) else 365

    resurfaced: list[ResurfacedFile] = []
    used: set[str] = set()

    def take(item: ResurfacedFile) -> None:
        resurfaced.append(item)
        used.add(item.file.path)

    # 1) Forgotten
    for f in ordered:
        if now_ts - f.activity_at > FORGOTTEN_AFTER_DAYS * DAY_SECONDS:
            take(_forgotten(f, now_ts))
            break

    # 2) Seasonal Echo
    best: tuple[int, int, FileRecord] | None = None
    for f in ordered:
        if f.path in used:
            continue
        if now_ts - f.modified_at < SEASONAL_MIN_AGE_DAYS * DAY_SECONDS:
            continue
        day = _day_of_year(f.modified_at)
        if day is None:
            continue
        diff = wraparound_day_diff(today, day, year_days)
        if diff > SEASONAL_WINDOW_DAYS:
            continue
        # ordered is activity-ascending, so strict < keeps the oldest on ties
        if best is None or diff < best[0]:
            best = (diff, f.activity_at, f)
    if best is not None:
        diff, _, f = best
        take(
            ResurfacedFile(
                file=f,
                reason=REASON_SEASONAL,
                explanation=f"A similar season (±{diff} days)",
            )
        )

    # 3) Random Delight
    pool = [
        f
        for f in ordered
        if f.path not in used
        and now_ts - f.activity_at > DELIGHT_AFTER_DAYS * DAY_SECONDS
    ]
    seed = f"{now.date().isoformat()}:{_DELIGHT_LABEL}"
    idx = stable_pick_index(seed, len(pool))
    if idx is not None:
        take(
            ResurfacedFile(
                file=pool[idx],
                reason=REASON_DELIGHT,
                explanation="A surprise to spark momentum",
            )
        )

    # 4) Fill with the most idle files not yet chosen
    for f in ordered:
        if len(resurfaced) >= count:
            break
        if f.path not in used:
            take(_forgotten(f, now_ts))

    return resurfaced[:count]
