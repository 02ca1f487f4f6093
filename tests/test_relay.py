import pytest

from facecall.models.messages import (
    EmotionRequest,
    JoinRoom,
    LeaveRoom,
    SendSignal,
    SignalRequest,
)
from facecall.services.relay import Relay
from facecall.services.room_registry import RoomRegistry
from tests.fakes import RecordingSender

OFFER = {"type": "offer", "sdp": "v=0 offer"}


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def relay(sender):
    return Relay(RoomRegistry(), sender)


async def test_solo_join_only_reports_count_to_joiner(relay, sender):
    await relay.join_room("p1", "abcde")

    assert sender.sent == [("p1", {"event": "participant-count", "data": 1})]


async def test_second_join_notifies_existing_member_and_counts_everyone(relay, sender):
    await relay.join_room("p1", "abcde")
    sender.clear()

    await relay.join_room("p2", "abcde")

    assert sender.frames_for("p1") == [
        {"event": "user-connected", "data": "p2"},
        {"event": "participant-count", "data": 2},
    ]
    assert sender.frames_for("p2") == [{"event": "participant-count", "data": 2}]


async def test_signal_goes_to_others_only(relay, sender):
    for participant in ("p1", "p2", "p3"):
        await relay.join_room(participant, "abcde")
    sender.clear()

    await relay.forward_signal("p1", SignalRequest(room_id="abcde", signal=OFFER))

    expected = {"event": "signal", "data": {"signal": OFFER, "senderID": "p1"}}
    assert sender.frames_for("p2") == [expected]
    assert sender.frames_for("p3") == [expected]
    assert sender.frames_for("p1") == []
    assert relay.stats.signals_relayed == 2


async def test_signal_is_forwarded_verbatim(relay, sender):
    await relay.join_room("p1", "abcde")
    await relay.join_room("p2", "abcde")
    sender.clear()
    candidate = {"candidate": "candidate:1 1 udp 2122260223 10.0.0.2 5000 typ host", "sdpMid": "0", "sdpMLineIndex": 0, "extra": [1, 2]}

    await relay.forward_signal("p2", SignalRequest(room_id="abcde", signal=candidate))

    assert sender.frames_for("p1")[0]["data"]["signal"] == candidate


async def test_signal_to_room_with_nobody_else_is_dropped(relay, sender):
    await relay.join_room("p1", "abcde")
    sender.clear()

    await relay.forward_signal("p1", SignalRequest(room_id="abcde", signal=OFFER))
    await relay.forward_signal("p1", SignalRequest(room_id="missing", signal=OFFER))

    assert sender.sent == []
    assert relay.stats.deliveries_dropped == 2


async def test_non_member_reaches_every_member_of_named_room(relay, sender):
    await relay.join_room("p1", "abcde")
    await relay.join_room("p2", "abcde")
    await relay.join_room("outsider", "other")
    sender.clear()

    await relay.forward_signal("outsider", SignalRequest(room_id="abcde", signal=OFFER))
    await relay.forward_emotions("outsider", EmotionRequest(room_id="abcde", emotions={"sad": 0.4}))

    for member in ("p1", "p2"):
        assert sender.frames_for(member) == [
            {"event": "signal", "data": {"signal": OFFER, "senderID": "outsider"}},
            {"event": "emotion-data", "data": {"emotions": {"sad": 0.4}}},
        ]
    assert sender.frames_for("outsider") == []
    assert relay.stats.signals_relayed == 2
    assert relay.stats.emotions_relayed == 2
    assert relay.stats.deliveries_dropped == 0


async def test_emotions_are_relayed_without_room_id(relay, sender):
    await relay.join_room("p1", "abcde")
    await relay.join_room("p2", "abcde")
    sender.clear()
    emotions = {"happy": 0.9, "sad": 0.1, "bogus": 7}

    await relay.forward_emotions("p1", EmotionRequest(room_id="abcde", emotions=emotions))

    assert sender.sent == [("p2", {"event": "emotion-data", "data": {"emotions": emotions}})]
    assert relay.stats.emotions_relayed == 1


async def test_disconnect_notifies_remaining_members_once(relay, sender):
    await relay.join_room("p1", "abcde")
    await relay.join_room("p2", "abcde")
    sender.clear()

    await relay.disconnect("p2")

    assert sender.sent == [
        ("p1", {"event": "user-disconnected", "data": "p2"}),
        ("p1", {"event": "participant-count", "data": 1}),
    ]
    assert relay.registry.members_of("abcde") == {"p1"}


async def test_disconnect_outside_any_room_sends_nothing(relay, sender):
    await relay.disconnect("ghost")

    assert sender.sent == []


async def test_solo_disconnect_deletes_room_silently(relay, sender):
    await relay.join_room("p1", "abcde")
    sender.clear()

    await relay.disconnect("p1")

    assert sender.sent == []
    assert "abcde" not in relay.registry.rooms


async def test_leave_room_behaves_like_departure(relay, sender):
    await relay.join_room("p1", "abcde")
    await relay.join_room("p2", "abcde")
    sender.clear()

    await relay.handle("p1", LeaveRoom(data="abcde"))
    await relay.handle("p1", LeaveRoom(data="abcde"))

    assert sender.sent == [
        ("p2", {"event": "user-disconnected", "data": "p1"}),
        ("p2", {"event": "participant-count", "data": 1}),
    ]
    assert relay.registry.room_of("p1") is None


async def test_switching_rooms_tells_the_old_room(relay, sender):
    await relay.join_room("p1", "room-a")
    await relay.join_room("p2", "room-a")
    sender.clear()

    await relay.handle("p1", JoinRoom(data="room-b"))

    assert sender.frames_for("p2") == [
        {"event": "user-disconnected", "data": "p1"},
        {"event": "participant-count", "data": 1},
    ]
    assert sender.frames_for("p1") == [{"event": "participant-count", "data": 1}]


async def test_unreachable_member_counts_as_dropped(relay, sender):
    await relay.join_room("p1", "abcde")
    await relay.join_room("p2", "abcde")
    sender.offline.add("p2")

    await relay.handle("p1", SendSignal(data=SignalRequest(room_id="abcde", signal=OFFER)))

    assert relay.stats.signals_relayed == 0
    assert relay.stats.deliveries_dropped >= 1


async def test_two_party_scenario(relay, sender):
    await relay.join_room("P1", "abcde")
    assert sender.frames_for("P1") == [{"event": "participant-count", "data": 1}]
    sender.clear()

    await relay.join_room("P2", "abcde")
    assert sender.recipients_of("user-connected") == {"P1"}
    assert sender.recipients_of("participant-count") == {"P1", "P2"}
    sender.clear()

    await relay.forward_signal("P1", SignalRequest(room_id="abcde", signal=OFFER))
    assert sender.sent == [("P2", {"event": "signal", "data": {"signal": OFFER, "senderID": "P1"}})]
    sender.clear()

    await relay.disconnect("P2")
    assert sender.sent == [
        ("P1", {"event": "user-disconnected", "data": "P2"}),
        ("P1", {"event": "participant-count", "data": 1}),
    ]


async def test_unknown_message_type_raises(relay):
    with pytest.raises(TypeError):
        await relay.handle("p1", object())
