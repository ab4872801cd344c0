"""Domain event record tests."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pydantic
import pytest

from skillquest.progression.context import ProgressionContext
from skillquest.progression.events import (
    EventKind,
    EventPublisher,
    EventRecorder,
    LevelUp,
    SkinChanged,
    XPAwarded,
    parse_event,
)
from skillquest.progression.skins import SkinConfig

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _ctx() -> ProgressionContext:
    return ProgressionContext(user_id="u1", session_id="s1", clock=lambda: NOW)


class TestEventRecords:
    def test_unknown_fields_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            XPAwarded(
                user_id="u1", session_id="s1", occurred_at=NOW,
                amount=10, source="lesson_completion", new_total=10, bonus=True,
            )

    def test_frozen(self):
        event = LevelUp(user_id="u1", session_id="s1", occurred_at=NOW, old_level=1, new_level=2, tier="bronze", total_xp=110)
        with pytest.raises(pydantic.ValidationError):
            event.new_level = 3

    def test_schema_version(self):
        event = XPAwarded(user_id="u1", session_id="s1", occurred_at=NOW, amount=5, source="x", new_total=5)
        assert event.schema_version == 1

    def test_parse_published_payload(self):
        event = LevelUp(user_id="u1", session_id="s1", occurred_at=NOW, old_level=1, new_level=2, tier="bronze", total_xp=110)
        parsed = parse_event(event.model_dump_json())
        assert isinstance(parsed, LevelUp)
        assert parsed == event

    def test_skin_payload_is_typed(self):
        payload = {
            "kind": "skin_change", "user_id": "u1", "session_id": "s1", "occurred_at": NOW.isoformat(),
            "config": {"body_color": "tan", "hair_style": "bob", "hair_color": "red", "outfit": "robe", "glow": 1},
        }
        with pytest.raises(pydantic.ValidationError):
            parse_event(payload)

        del payload["config"]["glow"]
        parsed = parse_event(payload)
        assert isinstance(parsed, SkinChanged)
        assert parsed.config == SkinConfig(body_color="tan", hair_style="bob", hair_color="red", outfit="robe")

    def test_parse_unknown_kind_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            parse_event({"kind": "badge_earned", "user_id": "u1", "session_id": "s1", "occurred_at": NOW.isoformat()})


class TestEventRecorder:
    def test_stamps_context(self):
        recorder = EventRecorder(_ctx())
        event = recorder.emit(XPAwarded, amount=10, source="lesson_completion", new_total=10)
        assert event.user_id == "u1"
        assert event.session_id == "s1"
        assert event.occurred_at == NOW
        assert recorder.of_kind(EventKind.XP_AWARDED) == [event]
        assert recorder.of_kind(EventKind.LEVEL_UP) == []


class TestEventPublisher:
    @pytest.mark.asyncio
    async def test_publishes_to_kind_channel(self):
        redis = AsyncMock()
        recorder = EventRecorder(_ctx())
        recorder.emit(XPAwarded, amount=10, source="lesson_completion", new_total=10)

        published = await EventPublisher(redis, "pubsub:test").publish(recorder.events)

        assert published == 1
        channel, payload = redis.publish.await_args.args
        assert channel == "pubsub:test:xp_awarded"
        assert parse_event(payload) == recorder.events[0]

    @pytest.mark.asyncio
    async def test_no_redis_is_noop(self):
        recorder = EventRecorder(_ctx())
        recorder.emit(XPAwarded, amount=10, source="x", new_total=10)
        assert await EventPublisher(None).publish(recorder.events) == 0

    @pytest.mark.asyncio
    async def test_publish_failure_is_swallowed(self):
        redis = AsyncMock()
        redis.publish.side_effect = [ConnectionError("down"), 1]
        recorder = EventRecorder(_ctx())
        recorder.emit(XPAwarded, amount=10, source="x", new_total=10)
        recorder.emit(LevelUp, old_level=1, new_level=2, tier="bronze", total_xp=110)

        assert await EventPublisher(redis).publish(recorder.events) == 1
        assert redis.publish.await_count == 2
