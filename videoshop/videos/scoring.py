"""Relevance scoring and duration helpers for provider videos."""

import math
import re
from datetime import datetime, timezone
from typing import Optional

_DURATION_RE = re.compile(r"PT(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?")

# (max age in days, bonus), checked in order
RECENCY_BANDS = ((7, 50), (30, 40), (90, 30), (180, 20), (365, 10))


def parse_iso_duration(duration: Optional[str]) -> int:
    """Seconds in an ISO-8601 duration such as ``PT1H2M3S``; 0 when unparseable."""
    if not duration or not isinstance(duration, str):
        return 0
    match = _DURATION_RE.fullmatch(duration) or _DURATION_RE.match(duration)
    if not match:
        return 0
    hours, minutes, seconds = (int(part or 0) for part in match.groups())
    return hours * 3600 + minutes * 60 + seconds


def format_duration(total_seconds: int) -> str:
    hours, rest = divmod(max(0, total_seconds), 3600)
    minutes, seconds = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"


def recency_bonus(published_at: Optional[datetime], now: Optional[datetime] = None) -> int:
    if published_at is None:
        return 0
    now = now or datetime.now(timezone.utc)
    if published_at.tzinfo is None:
        published_at = published_at.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    age_days = (now - published_at).total_seconds() / 86400.0
    for max_days, bonus in RECENCY_BANDS:
        if age_days < max_days:
            return bonus
    return 0


def query_terms(query: str) -> list[str]:
    return [term for term in query.lower().split() if len(term) > 2]


def relevance_score(
    views: int,
    likes: int,
    comments: int,
    published_at: Optional[datetime],
    title: str,
    description: str,
    duration_seconds: int,
    query: str,
    now: Optional[datetime] = None,
) -> int:
    """
    Rank a video for a product query.

    ``10*log10(views+1)`` plus capped like/comment ratios, a recency bonus,
    5 points per query term found in the title and again in the
    description, -20 for clips under a minute or over an hour and +10 for
    the 2-20 minute range. Floored at zero and rounded.
    """
    score = math.log10(max(views, 0) + 1) * 10

    like_ratio = (likes / views) * 100 if views > 0 else 0.0
    comment_ratio = (comments / views) * 100 if views > 0 else 0.0
    score += min(like_ratio * 5, 50)
    score += min(comment_ratio * 10, 50)

    score += recency_bonus(published_at, now)

    title_lower = (title or "").lower()
    description_lower = (description or "").lower()
    matches = 0
    for term in query_terms(query):
        if term in title_lower:
            matches += 1
        if term in description_lower:
            matches += 1
    score += matches * 5

    if duration_seconds:
        if duration_seconds < 60 or duration_seconds > 3600:
            score -= 20
        elif 120 < duration_seconds < 1200:
            score += 10

    return max(0, round(score))
