"""Tests for the structured event log."""

from storytree.core.logs import EventLogger, EventType, LogLevel, Priority


async def test_events_are_bounded_and_counted():
    event_logger = EventLogger(max_events=2)
    for n in range(3):
        await event_logger.log(EventType.PULL_REQUEST, f"event {n}", Priority.HIGH)
    event_logger.info("ready")

    assert [e.message for e in event_logger.get_events()] == ["event 2", "ready"]
    assert [e.message for e in event_logger.get_events(EventType.SYSTEM)] == ["ready"]
    assert event_logger.metrics.total_events == 4
    assert event_logger.metrics.events_by_type["pull_request"] == 3


async def test_event_serializes_to_plain_values():
    event_logger = EventLogger()
    event = await event_logger.log(
        EventType.COLLABORATOR,
        "Invited",
        metadata={"role": "reviewer"},
        story_slug="s",
        user_id="u",
    )
    data = event.to_dict()
    assert data["event_type"] == "collaborator"
    assert data["priority_name"] == "NORMAL"
    assert data["level"] == LogLevel.INFO.name
    assert data["metadata"] == {"role": "reviewer"}
    assert (data["story_slug"], data["user_id"]) == ("s", "u")
