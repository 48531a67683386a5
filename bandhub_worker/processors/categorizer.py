"""Keyword categoriser and quality scorer for band videos.

Category rules are checked in order, first match wins:
- battles-competitions: vs, battle, botb, showdown
- halftime-shows
- parades
- stand-tunes: stands, 5th quarter
- practices-rehearsals
- documentaries: behind the scenes, interviews, history
- performances: everything else

Quality score (0-100):
- starts neutral at 50
- band-specific keywords add points
- off-topic patterns subtract 30 each
- views above 1000 add up to 10 on a log scale
"""

from dataclasses import dataclass
from typing import Optional
import math
import re

DEFAULT_CATEGORY = "performances"

CATEGORY_RULES: list[tuple[str, re.Pattern]] = [
    ("battles-competitions", re.compile(r"\b(vs|versus|battle|botb|showdown|face\s*off)\b", re.I)),
    ("halftime-shows", re.compile(r"\b(halftime|half\s*time|half-time)\b", re.I)),
    ("parades", re.compile(r"\b(parade|mardi\s*gras|homecoming\s*parade)\b", re.I)),
    ("stand-tunes", re.compile(r"\b(stand\s*tune|stands|in\s*the\s*stands|5th\s*quarter|fifth\s*quarter)\b", re.I)),
    ("practices-rehearsals", re.compile(r"\b(practice|rehearsal|sectional|camp|clinic)\b", re.I)),
    ("documentaries", re.compile(r"\b(documentary|behind\s*the\s*scenes|interview|story|history)\b", re.I)),
]

POSITIVE_PATTERNS: list[tuple[re.Pattern, int]] = [
    (re.compile(r"hbcu", re.I), 20),
    (re.compile(r"marching\s*band", re.I), 15),
    (re.compile(r"drum\s*major", re.I), 10),
    (re.compile(r"drumline", re.I), 10),
    (re.compile(r"battle\s*of.*bands", re.I), 15),
    (re.compile(r"homecoming", re.I), 10),
    (re.compile(r"swac|meac", re.I), 10),
    (re.compile(r"classic", re.I), 5),
]

# Off-topic content that shares band keywords
IRRELEVANT_PATTERNS: list[re.Pattern] = [
    re.compile(r"\bhigh\s*school\b", re.I),
    re.compile(r"\bmiddle\s*school\b", re.I),
    re.compile(r"\breact(ion|s|ing)?\b", re.I),
    re.compile(r"\bpodcast\b", re.I),
    re.compile(r"\b(gameplay|fortnite|minecraft|madden)\b", re.I),
    re.compile(r"\b(unboxing|asmr|prank)\b", re.I),
]

VIEW_BOOST_FLOOR = 1000
MAX_VIEW_BOOST = 10


@dataclass
class VideoAssessment:
    """Category and quality of one video."""
    category: str
    quality_score: int
    matched_positive: int = 0
    matched_irrelevant: int = 0


def categorize(title: str, description: Optional[str] = "") -> str:
    """Pick the category slug for a video from its title and description."""
    text = f"{title or ''} {description or ''}".lower()
    for slug, pattern in CATEGORY_RULES:
        if pattern.search(text):
            return slug
    return DEFAULT_CATEGORY


def quality_score(
    title: str,
    description: Optional[str] = "",
    tags: Optional[list[str]] = None,
    view_count: int = 0,
) -> int:
    return assess(title, description, tags, view_count).quality_score


def assess(
    title: str,
    description: Optional[str] = "",
    tags: Optional[list[str]] = None,
    view_count: int = 0,
) -> VideoAssessment:
    text = f"{title or ''} {description or ''} {' '.join(tags or [])}".lower()
    score = 50.0

    positives = 0
    for pattern, points in POSITIVE_PATTERNS:
        if pattern.search(text):
            score += points
            positives += 1

    irrelevant = 0
    for pattern in IRRELEVANT_PATTERNS:
        if pattern.search(text):
            score -= 30
            irrelevant += 1

    if view_count > VIEW_BOOST_FLOOR:
        score += min(MAX_VIEW_BOOST, math.log10(view_count / VIEW_BOOST_FLOOR) * 5)

    return VideoAssessment(
        category=categorize(title, description),
        quality_score=max(0, min(100, round(score))),
        matched_positive=positives,
        matched_irrelevant=irrelevant,
    )
