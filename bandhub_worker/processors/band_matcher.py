"""Match video text to bands by name, school and well-known classics.

Scores (higher is more confident):
- HBCU bands: band name 100, school name 80, other aliases 60, 50 or 30
  depending on length
- all-star bands: 110, 90 or 70, so a mass band wins over its member schools
- an alias found in the first 200 characters adds 10
- a known classic in the text scores its participants at 85 and replaces
  the alias search
"""

from dataclasses import dataclass, field
from typing import Optional
import re

from bandhub_worker.services.repository import Band

HBCU = "HBCU"
ALL_STAR = "ALL_STAR"

EVENT_SCORE = 85
EARLY_MENTION_CHARS = 200
EARLY_MENTION_BOOST = 10
MIN_ALIAS_LENGTH = 3

ACRONYM_STOPWORDS = {"of", "the", "at", "and"}

BATTLE_KEYWORDS = (
    " vs ", " vs. ", " v. ", " v ", " versus ",
    "battle", "botb", "showdown", "face off", "faceoff",
)

# Classics with a fixed pair (or set) of bands
EVENT_PARTICIPANTS: dict[str, tuple[str, ...]] = {
    "meac swac challenge": (
        "Alcorn State", "Jackson State", "Southern", "Grambling State", "Alabama State",
        "Alabama A&M", "Norfolk State", "North Carolina A&T", "South Carolina State",
    ),
    "bayou classic": ("Southern University", "Grambling State"),
    "magic city classic": ("Alabama State", "Alabama A&M"),
    "florida classic": ("Florida A&M", "Bethune-Cookman"),
}

# Checked in order; the first hit names the reason
EXCLUSION_PATTERNS: tuple[tuple[str, re.Pattern], ...] = (
    ("high_school", re.compile(r"\bhigh\s*school\b|\bhs\s+band\b", re.I)),
    ("middle_school", re.compile(r"\b(middle|junior\s*high)\s*school\b", re.I)),
    ("podcast", re.compile(r"\bpodcast\b", re.I)),
    ("generic", re.compile(r"\breact(ion|s|ing)?\b|\b(gameplay|unboxing|asmr|prank)\b", re.I)),
)


@dataclass
class BandProfile:
    """A band with the lowercase aliases it can be found under."""
    id: str
    name: str
    school_name: str
    band_type: str
    aliases: list[str] = field(default_factory=list)


@dataclass
class BandMatch:
    band_id: str
    band_type: str
    score: int
    alias: str
    match_type: str  # exact_band_name, school_name, partial, abbreviation, all_star, event


def is_all_star(band: Band) -> bool:
    name = band.name.lower()
    return band.band_type == ALL_STAR or "all-star" in name or "mass band" in name


def school_acronym(school_name: str) -> str:
    words = [
        word for word in school_name.replace("&", " and ").split()
        if word.lower() not in ACRONYM_STOPWORDS
    ]
    return "".join(word[0] for word in words).lower()


def band_aliases(name: str, school_name: str) -> list[str]:
    """
    Names a band goes by: band name, school, the nickname part of a band
    name that starts with the school, the school without University or
    College, and the school's acronym.
    """
    name_lower = name.lower()
    school_lower = school_name.lower()
    aliases = [name_lower, school_lower]

    name_words = name_lower.split()
    school_words = school_lower.split()
    if len(name_words) > 2:
        shared = 0
        for name_word, school_word in zip(name_words, school_words):
            if name_word != school_word:
                break
            shared += 1
        if 0 < shared < len(name_words):
            nickname = " ".join(name_words[shared:])
            if len(nickname) > 3:
                aliases.append(nickname)

    short_school = re.sub(r"\s+(university|college)$", "", school_lower).strip()
    if short_school != school_lower:
        aliases.append(short_school)

    acronym = school_acronym(school_name)
    if 2 <= len(acronym) <= 5:
        aliases.append(acronym)

    unique = list(dict.fromkeys(aliases))
    return [alias for alias in unique if len(alias) >= MIN_ALIAS_LENGTH]


def build_profile(band: Band) -> BandProfile:
    school_name = band.school_name or band.name
    if is_all_star(band):
        return BandProfile(band.id, band.name, school_name, ALL_STAR, [band.name.lower()])
    return BandProfile(band.id, band.name, school_name, HBCU, band_aliases(band.name, school_name))


def exclusion_reason(text: str) -> Optional[str]:
    for reason, pattern in EXCLUSION_PATTERNS:
        if pattern.search(text):
            return reason
    return None


def is_battle(text: str) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in BATTLE_KEYWORDS)


def _alias_found(alias: str, text: str) -> bool:
    if len(alias) <= 4:
        return re.search(rf"\b{re.escape(alias)}\b", text) is not None
    return alias in text


def _alias_score(profile: BandProfile, alias: str) -> tuple[int, str]:
    if profile.band_type == ALL_STAR:
        if alias == profile.name.lower():
            return 110, "all_star"
        return (90 if len(alias) >= 4 else 70), "all_star"

    if alias == profile.name.lower():
        return 100, "exact_band_name"
    if alias == profile.school_name.lower():
        return 80, "school_name"
    if len(alias) >= 8:
        return 60, "partial"
    if len(alias) >= 5:
        return 50, "partial"
    return 30, "abbreviation"


def find_event_matches(text: str, profiles: list[BandProfile]) -> list[BandMatch]:
    """Participants of the first known classic named in the text, in listed order."""
    lowered = text.lower()
    for event, participants in EVENT_PARTICIPANTS.items():
        if event not in lowered:
            continue
        matches = []
        for participant in participants:
            needle = participant.lower()
            profile = next(
                (p for p in profiles if needle in p.name.lower() or needle in p.school_name.lower()),
                None,
            )
            if profile is not None:
                matches.append(BandMatch(profile.id, profile.band_type, EVENT_SCORE, event, "event"))
        if matches:
            return matches
    return []


def find_matches(text: str, profiles: list[BandProfile]) -> list[BandMatch]:
    """Best alias hit per band, strongest first."""
    lowered = text.lower()
    early = lowered[:EARLY_MENTION_CHARS]
    matches = []

    for profile in profiles:
        best: Optional[BandMatch] = None
        for alias in profile.aliases:
            if len(alias) < MIN_ALIAS_LENGTH or not _alias_found(alias, lowered):
                continue
            score, match_type = _alias_score(profile, alias)
            if alias in early:
                score += EARLY_MENTION_BOOST
            if best is None or score > best.score:
                best = BandMatch(profile.id, profile.band_type, score, alias, match_type)
        if best is not None:
            matches.append(best)

    matches.sort(key=lambda m: m.score, reverse=True)
    return matches


def match_bands(text: str, profiles: list[BandProfile]) -> list[BandMatch]:
    return find_event_matches(text, profiles) or find_matches(text, profiles)
