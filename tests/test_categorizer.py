"""Tests for video categorisation and quality scoring."""

import pytest

from bandhub_worker.processors.categorizer import DEFAULT_CATEGORY, assess, categorize, quality_score


@pytest.mark.parametrize("title, expected", [
    ("Jackson State vs Southern 2023", "battles-competitions"),
    ("Battle of the Bands - Honda BOTB", "battles-competitions"),
    ("FAMU Marching 100 Halftime Show", "halftime-shows"),
    ("Southern University Mardi Gras Parade", "parades"),
    ("Human Jukebox in the stands", "stand-tunes"),
    ("Band camp day 3 sectional", "practices-rehearsals"),
    ("The history of the Sonic Boom", "documentaries"),
    ("Aristocrat of Bands 2024", DEFAULT_CATEGORY),
])
def test_categorize(title, expected):
    assert categorize(title) == expected


def test_first_matching_rule_wins():
    assert categorize("Halftime battle: Grambling vs Southern") == "battles-competitions"


def test_description_is_considered():
    assert categorize("Full video", "Recorded at the homecoming parade") == "parades"


def test_band_keywords_raise_quality():
    assert quality_score("HBCU marching band drumline") > quality_score("Some video")


def test_off_topic_content_is_penalised():
    result = assess("High school marching band reaction")
    assert result.matched_irrelevant == 2
    assert result.quality_score < 50


def test_views_add_a_capped_boost():
    base = quality_score("Band video", view_count=0)
    assert quality_score("Band video", view_count=10_000) == base + 5
    assert quality_score("Band video", view_count=10 ** 9) == base + 10


def test_score_is_clamped():
    loaded = "HBCU marching band drum major drumline battle of the bands homecoming SWAC classic"
    assert quality_score(loaded, view_count=10 ** 9) == 100
    assert quality_score("high school middle school podcast prank fortnite reacts") == 0
