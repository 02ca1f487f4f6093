import asyncio
import functools

import pytest

from facecall.client.peer import PeerNegotiation, PeerState
from facecall.client.session import ROOM_ID_ALPHABET, SessionController, generate_room_id
from facecall.models.messages import (
    Connected,
    ErrorMessage,
    ParticipantCount,
    RelayedEmotions,
    RelayedSignal,
    EmotionDelivery,
    SignalDelivery,
    UserConnected,
    UserDisconnected,
)
from tests.fakes import FakeChannel, FakeDetector, FakeMedia, FakePeerConnection


class Recorder:
    def __init__(self):
        self.alerts = []
        self.remote_tracks = []
        self.local_emotions = []
        self.remote_emotions = []
        self.counts = []
        self.unavailable = 0


@pytest.fixture
def recorder():
    return Recorder()


def make_session(recorder, media=None, detector=None, channel=None):
    recorder.channel = channel or FakeChannel()
    recorder.media = media or FakeMedia()

    def unavailable():
        recorder.unavailable += 1

    return SessionController(
        recorder.channel,
        media=recorder.media,
        detector=detector,
        ice_servers=["stun:stun.example.org:3478"],
        alert=recorder.alerts.append,
        on_remote_track=recorder.remote_tracks.append,
        on_local_emotions=recorder.local_emotions.append,
        on_remote_emotions=recorder.remote_emotions.append,
        on_participant_count=recorder.counts.append,
        on_emotions_unavailable=unavailable,
        peer_factory=functools.partial(PeerNegotiation, pc_factory=FakePeerConnection),
        frame_interval=0,
    )


async def wait_for(condition, attempts=200):
    for _ in range(attempts):
        if condition():
            return True
        await asyncio.sleep(0)
    return condition()


def test_generated_room_ids_are_short_and_alphanumeric():
    room_id = generate_room_id()

    assert len(room_id) == 5
    assert set(room_id) <= set(ROOM_ID_ALPHABET)


async def test_create_room_joins_generated_room(recorder):
    session = make_session(recorder)

    room_id = await session.create_room()

    assert room_id is not None and len(room_id) == 5
    assert recorder.channel.emitted == [("join-room", room_id)]
    assert recorder.media.active
    assert session.peer.state == PeerState.IDLE


async def test_empty_room_id_is_rejected(recorder):
    session = make_session(recorder)

    assert await session.join_room("   ") is False
    assert recorder.alerts == ["Please enter a valid Room ID"]
    assert recorder.channel.emitted == []
    assert recorder.media.acquisitions == 0


async def test_media_failure_aborts_join(recorder):
    session = make_session(recorder, media=FakeMedia(fail=True))

    assert await session.join_room("abcde") is False
    assert recorder.alerts == ["Failed to access camera and microphone: no device"]
    assert recorder.channel.emitted == []
    assert session.room_id is None


async def test_joining_twice_without_leaving_is_refused(recorder):
    session = make_session(recorder)
    await session.join_room("abcde")

    assert await session.join_room("fghij") is False
    assert recorder.media.acquisitions == 1
    assert session.room_id == "abcde"


async def test_peer_joined_triggers_offer_through_relay(recorder):
    session = make_session(recorder)
    await session.join_room("abcde")

    await session.handle_message(UserConnected(data="p2"))

    assert recorder.channel.events("signal") == [
        {"roomID": "abcde", "signal": {"type": "offer", "sdp": "v=0 offer"}}
    ]
    assert session.peer.state == PeerState.CONNECTING
    assert session.peer.pc.tracks == ["local-video", "local-audio"]


async def test_relayed_offer_is_answered(recorder):
    session = make_session(recorder)
    await session.join_room("abcde")

    await session.handle_message(
        RelayedSignal(data=SignalDelivery(signal={"type": "offer", "sdp": "v=0 remote"}, sender_id="p1"))
    )

    assert recorder.channel.events("signal") == [
        {"roomID": "abcde", "signal": {"type": "answer", "sdp": "v=0 answer"}}
    ]
    assert session.peer.remote_peer_id == "p1"


async def test_early_candidate_is_dropped_quietly(recorder):
    session = make_session(recorder)
    await session.join_room("abcde")

    await session.handle_message(
        RelayedSignal(data=SignalDelivery(signal={"candidate": "candidate:1 1 udp 1 10.0.0.1 9 typ host"}, sender_id="p1"))
    )

    assert recorder.alerts == []
    assert session.peer.pc is None


async def test_negotiation_failure_alerts_user(recorder):
    session = make_session(recorder)
    session._peer_factory = functools.partial(
        PeerNegotiation,
        pc_factory=type("Broken", (FakePeerConnection,), {"fail_on": frozenset({"createOffer"})}),
    )
    await session.join_room("abcde")

    await session.handle_message(UserConnected(data="p2"))

    assert recorder.alerts == ["Failed to establish connection. Please try again."]
    assert session.peer.state == PeerState.IDLE


async def test_remote_disconnect_closes_call_and_readies_a_new_one(recorder):
    session = make_session(recorder)
    await session.join_room("abcde")
    await session.handle_message(UserConnected(data="p2"))
    old_peer = session.peer
    old_pc = old_peer.pc
    old_pc.handlers["track"]("remote-video")

    await session.handle_message(UserDisconnected(data="p2"))

    assert old_peer.state == PeerState.CLOSED
    assert old_pc.closed
    assert session.peer is not old_peer
    assert session.peer.state == PeerState.IDLE
    assert recorder.remote_tracks == ["remote-video", None]


async def test_disconnect_of_unrelated_peer_keeps_call(recorder):
    session = make_session(recorder)
    await session.join_room("abcde")
    await session.handle_message(UserConnected(data="p2"))
    peer = session.peer

    await session.handle_message(UserDisconnected(data="p3"))

    assert session.peer is peer
    assert peer.state == PeerState.CONNECTING


async def test_relay_notifications_are_surfaced(recorder):
    session = make_session(recorder)

    await session.handle_message(Connected(data="me"))
    await session.handle_message(ParticipantCount(data=2))
    await session.handle_message(RelayedEmotions(data=EmotionDelivery(emotions={"happy": 0.6})))
    await session.handle_message(ErrorMessage(data="Invalid JSON"))

    assert session.participant_id == "me"
    assert session.participant_count == 2
    assert recorder.counts == [2]
    assert recorder.remote_emotions == [{"happy": 0.6}]


async def test_run_consumes_channel(recorder):
    channel = FakeChannel(messages=[Connected(data="me"), ParticipantCount(data=1)])
    session = make_session(recorder, channel=channel)

    await session.run()

    assert session.participant_id == "me"
    assert session.participant_count == 1


async def test_unknown_message_raises(recorder):
    session = make_session(recorder)

    with pytest.raises(TypeError):
        await session.handle_message(object())


async def test_leave_releases_everything(recorder):
    session = make_session(recorder, detector=FakeDetector())
    await session.join_room("abcde")
    await session.handle_message(UserConnected(data="p2"))
    peer = session.peer

    await session.leave()

    assert peer.state == PeerState.CLOSED
    assert not recorder.media.active
    assert recorder.media.releases == 1
    assert recorder.channel.emitted[-1] == ("leave-room", "abcde")
    assert session.room_id is None
    assert not session.emotion_detection_running

    # A new call can start without restarting anything
    assert await session.join_room("fghij") is True
    assert recorder.media.acquisitions == 2
    await session.leave()


async def test_local_emotions_are_rendered_and_sent(recorder):
    detector = FakeDetector(scores={"happy": 0.9, "neutral": 0.1})
    session = make_session(recorder, detector=detector)

    await session.join_room("abcde")
    assert await wait_for(lambda: recorder.channel.events("emotion-data"))
    await session.leave()

    assert recorder.local_emotions[0] == {"happy": 0.9, "neutral": 0.1}
    assert recorder.channel.events("emotion-data")[0] == {
        "roomID": "abcde",
        "emotions": {"happy": 0.9, "neutral": 0.1},
    }
    assert detector.loads == 1


async def test_model_load_failure_degrades_gracefully(recorder):
    session = make_session(recorder, detector=FakeDetector(fail_load=True))

    assert await session.join_room("abcde") is True
    assert session.emotions_available is False
    assert recorder.unavailable == 1
    assert not session.emotion_detection_running
    assert recorder.channel.emitted == [("join-room", "abcde")]


async def test_without_detector_call_proceeds(recorder):
    session = make_session(recorder)

    assert await session.join_room("abcde") is True
    assert recorder.unavailable == 1


async def test_toggle_emotions(recorder):
    session = make_session(recorder, detector=FakeDetector())
    await session.join_room("abcde")
    assert session.emotion_detection_running

    assert await session.toggle_emotions() is False
    assert not session.emotion_detection_running
    assert await session.toggle_emotions() is True
    assert session.emotion_detection_running

    await session.leave()


async def test_toggle_media(recorder):
    session = make_session(recorder)
    await session.join_room("abcde")

    assert session.toggle_video() is False
    assert session.toggle_video() is True
    assert session.toggle_audio() is False
    assert recorder.media.audio_enabled is False


async def test_failed_inference_restarts_on_first_toggle(recorder):
    detector = FakeDetector(fail_detect=True)
    session = make_session(recorder, detector=detector)
    await session.join_room("abcde")
    task = session._emotion_task

    assert await wait_for(task.done)
    assert not session.emotion_detection_running
    assert await session.toggle_emotions() is True
    assert session._emotion_task is not task

    await session.leave()


class StuckTrack:
    kind = "video"

    async def recv(self):
        await asyncio.Event().wait()

    def stop(self):
        pass


async def test_leave_cancels_inference_that_does_not_stop(recorder):
    media = FakeMedia()
    media.tap = StuckTrack()
    session = make_session(recorder, media=media, detector=FakeDetector())
    await session.join_room("abcde")
    task = session._emotion_task

    await session.leave()

    assert await wait_for(task.done)
    assert task.cancelled()
    assert recorder.channel.emitted[-1] == ("leave-room", "abcde")
