"""Challenge eligibility table tests."""

from unittest.mock import MagicMock

import pytest

from skillquest.progression.challenges import (
    CHALLENGE_ELIGIBILITY,
    ChallengeTracker,
    ChallengeType,
    EventType,
    coerce_event_type,
    validate_eligibility,
)
from skillquest.progression.errors import ValidationError


class TestEligibility:
    def test_lesson_and_video_advance_every_type(self):
        for event in (EventType.LESSON_COMPLETE, EventType.VIDEO_COMPLETE):
            assert CHALLENGE_ELIGIBILITY[event] == set(ChallengeType)

    def test_skill_complete_skips_daily(self):
        assert CHALLENGE_ELIGIBILITY[EventType.SKILL_COMPLETE] == {ChallengeType.WEEKLY, ChallengeType.SPECIAL}

    def test_tracker_accepts_string_event(self):
        tracker = ChallengeTracker(MagicMock())
        assert ChallengeType.DAILY in tracker.eligible_types("lesson_complete")


class TestValidation:
    def test_missing_event_type(self):
        table = {EventType.LESSON_COMPLETE: {ChallengeType.DAILY}}
        with pytest.raises(ValidationError, match="missing"):
            validate_eligibility(table)

    def test_string_keys_rejected(self):
        table = dict(CHALLENGE_ELIGIBILITY)
        table["quiz_complete"] = {ChallengeType.DAILY}
        with pytest.raises(ValidationError):
            validate_eligibility(table)

    def test_unknown_challenge_type(self):
        table = dict(CHALLENGE_ELIGIBILITY)
        table[EventType.SKILL_COMPLETE] = {"monthly"}
        with pytest.raises(ValidationError, match="unknown challenge type"):
            ChallengeTracker(MagicMock(), table)

    def test_empty_type_set(self):
        table = dict(CHALLENGE_ELIGIBILITY)
        table[EventType.VIDEO_COMPLETE] = set()
        with pytest.raises(ValidationError):
            validate_eligibility(table)

    def test_unknown_event_name(self):
        with pytest.raises(ValidationError, match="Unknown event type"):
            coerce_event_type("quiz_complete")
