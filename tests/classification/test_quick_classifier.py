"""Tests for the deterministic domain/keyword classifier."""

from __future__ import annotations

import pytest

from rolodex.classification.quick import (
    classify_quick,
    extract_quick_tags,
    infer_source_type_from_domain,
)
from rolodex.classification.results import (
    FALLBACK_CONFIDENCE,
    Fallback,
    QuickMatch,
)
from rolodex.models import SourceType

pytestmark = pytest.mark.unit


class TestInferSourceType:
    @pytest.mark.parametrize(
        ("sender", "expected"),
        [
            ("coach@teamsnap.com", SourceType.COACH),
            ("j.doe@leagueapps.com", SourceType.COACH),
            ("mrs.smith@lincoln.edu", SourceType.TEACHER),
            ("office@oakwoodschool.org", SourceType.TEACHER),
            ("info@springfielddistrict.org", SourceType.SCHOOL_ADMIN),
            ("frontdesk@kidsclinic.com", SourceType.MEDICAL),
            ("admin@metroleague.org", SourceType.TEAM),
            ("someone@gmail.com", SourceType.OTHER),
            ("not-an-email", SourceType.OTHER),
        ],
    )
    def test_domain_tables(self, sender: str, expected: SourceType):
        assert infer_source_type_from_domain(sender) == expected


class TestClassifyQuick:
    def test_domain_and_keyword_is_confident(self):
        result = classify_quick("Coach Mike\nPractice moved to 5pm", "coach@teamsnap.com", "")
        assert isinstance(result, QuickMatch)
        assert result.source_type == SourceType.COACH
        assert result.confidence == pytest.approx(0.9)
        assert not result.needs_ai

    def test_domain_only(self):
        result = classify_quick("See you Friday", "mr.lee@central.edu", "Field trip")
        assert result.source_type == SourceType.TEACHER
        assert result.confidence == pytest.approx(0.7)
        assert not result.needs_ai

    def test_keywords_only_needs_ai(self):
        result = classify_quick("Your doctor will call", "someone@gmail.com", "")
        assert result.source_type == SourceType.OTHER
        assert result.confidence == pytest.approx(0.6)
        assert result.needs_ai

    def test_no_signal(self):
        result = classify_quick("", "friend@example.com", "")
        assert result.confidence == pytest.approx(0.5)
        assert result.tags == ()
        assert result.needs_ai

    def test_reasoning_mentions_sender(self):
        result = classify_quick("", "friend@example.com", "")
        assert "friend@example.com" in result.reasoning

    def test_confidence_always_in_bounds(self):
        for sender in ("a@teamsnap.com", "b@x.edu", "c@gmail.com", "bad"):
            result = classify_quick("coach team doctor school", sender, "soccer")
            assert 0.0 <= result.confidence <= 1.0


class TestExtractQuickTags:
    def test_collects_sport_subject_and_activity(self):
        tags = extract_quick_tags("Soccer practice then math homework", "Tournament")
        assert tags == ("soccer", "math", "practice", "tournament", "homework")

    def test_no_duplicates(self):
        assert extract_quick_tags("game game GAME", "game") == ("game",)


class TestResults:
    def test_confidence_is_clamped(self):
        assert QuickMatch(source_type=SourceType.OTHER, confidence=1.7).confidence == 1.0
        assert QuickMatch(source_type=SourceType.OTHER, confidence=-3).confidence == 0.0

    def test_fallback_keeps_quick_type_and_tags(self):
        quick = QuickMatch(source_type=SourceType.TEAM, tags=("soccer",), confidence=0.6)
        fallback = Fallback.from_quick(quick, "timeout")
        assert fallback.source_type == SourceType.TEAM
        assert fallback.tags == ("soccer",)
        assert fallback.confidence == FALLBACK_CONFIDENCE
        assert "timeout" in fallback.reasoning

    def test_metadata_records_classifier_kind(self):
        quick = QuickMatch(source_type=SourceType.COACH, tags=("soccer",), confidence=0.9)
        assert quick.to_metadata() == {
            "classifier": "quick",
            "source_type": "coach",
            "tags": ["soccer"],
            "confidence": 0.9,
            "reasoning": "",
        }
