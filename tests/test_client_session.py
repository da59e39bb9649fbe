import pytest

from chat_client.errors import MediaUnavailableError, SessionError
from chat_client.session import Attachment, CallView, attachment_from_file
from schemas.events import ContentKind


async def joined(session, username="Alice", room="lobby"):
    await session.join(username, room)
    session.connection.emitted.clear()
    return session


@pytest.mark.asyncio
@pytest.mark.parametrize("username, room", [("", "lobby"), ("Alice", ""), ("   ", "lobby"), (None, None)])
async def test_join_requires_name_and_room(session, fake_connection, username, room):
    with pytest.raises(SessionError):
        await session.join(username, room)
    assert fake_connection.emitted == []
    assert not session.joined


@pytest.mark.asyncio
async def test_join_emits_room_name(session, fake_connection):
    await session.join("Alice", "lobby")
    assert fake_connection.emitted == [("join_room", "lobby")]
    assert session.joined


@pytest.mark.asyncio
async def test_send_text_echoes_locally_and_clears_composer(session, fake_connection):
    await joined(session)
    session.composer_text = "hi"

    message = await session.send()

    event, data = fake_connection.emitted[0]
    assert event == "send_message"
    assert data["room"] == "lobby"
    assert data["author"] == "Alice"
    assert data["content"] == {"kind": "text", "body": "hi", "mimeType": None}
    assert session.messages == [message]
    assert session.composer_text == ""


@pytest.mark.asyncio
async def test_send_prefers_attachment_over_text(session, fake_connection):
    await joined(session)
    session.select_attachment(Attachment(ContentKind.IMAGE, "data:image/png;base64,AAAA", "image/png", "cat.png"))
    assert session.composer_text == "cat.png"

    await session.send()

    content = fake_connection.emitted[0][1]["content"]
    assert content == {"kind": "image", "body": "data:image/png;base64,AAAA", "mimeType": "image/png"}
    assert session.attachment is None
    assert session.composer_text == ""


@pytest.mark.asyncio
async def test_send_with_empty_composer_does_nothing(session, fake_connection):
    await joined(session)
    assert await session.send() is None
    assert fake_connection.emitted == []


@pytest.mark.asyncio
async def test_send_before_join_is_refused(session, fake_connection):
    session.composer_text = "hi"
    with pytest.raises(SessionError):
        await session.send()
    assert fake_connection.emitted == []


@pytest.mark.asyncio
async def test_received_messages_append_in_order(session):
    for body in ("one", "two"):
        await session.handle_envelope(
            "receive_message",
            {"room": "lobby", "author": "Bob", "content": {"kind": "text", "body": body}, "timestamp": "8:01"},
        )
    assert [m.content.body for m in session.messages] == ["one", "two"]


@pytest.mark.asyncio
async def test_connected_sets_identity_and_notifies_listeners(session):
    seen = []
    session.listeners.append(lambda event, data: seen.append(event))

    await session.handle_envelope("connected", {"id": "abc123"})

    assert session.me == "abc123"
    assert seen == ["connected"]


@pytest.mark.asyncio
async def test_place_call_and_receive_answer(session, fake_connection, fake_media, peers):
    await session.handle_envelope("connected", {"id": "me"})
    await joined(session)

    await session.call("bob-id")

    assert fake_media.active
    assert fake_connection.emitted == [
        (
            "callUser",
            {"userToCall": "bob-id", "signalData": {"type": "offer", "sdp": "v=0 offer"}, "from": "me", "name": "Alice"},
        )
    ]
    assert session.call_view is CallView.CALLING

    await session.handle_envelope("callAccepted", {"type": "answer", "sdp": "remote"})

    assert peers[0].applied_answer == {"type": "answer", "sdp": "remote"}
    assert session.call_view is CallView.ACTIVE


@pytest.mark.asyncio
async def test_media_failure_aborts_call_without_contacting_relay(session, fake_connection, fake_media, peers):
    fake_media.fail = True

    with pytest.raises(MediaUnavailableError):
        await session.call("bob-id")

    assert fake_connection.emitted == []
    assert peers == []
    assert session.call_view is CallView.IDLE


@pytest.mark.asyncio
async def test_call_requires_target(session, fake_connection):
    with pytest.raises(SessionError):
        await session.call("  ")
    assert fake_connection.emitted == []


@pytest.mark.asyncio
async def test_incoming_call_answer(session, fake_connection, fake_media, peers):
    offer = {"type": "offer", "sdp": "v=0 offer"}
    await session.handle_envelope("callUser", {"from": "carol-id", "name": "Carol", "signal": offer})

    assert session.incoming_call.caller == "carol-id"
    assert session.incoming_call.name == "Carol"

    await session.answer()

    assert peers[0].received_offer == offer
    assert fake_media.capture_count == 1
    assert fake_connection.emitted == [("answerCall", {"signal": {"type": "answer", "sdp": "v=0 answer"}, "to": "carol-id"})]
    assert session.call_view is CallView.ACTIVE
    assert session.incoming_call is None


@pytest.mark.asyncio
async def test_answer_without_incoming_call_is_refused(session, fake_connection):
    with pytest.raises(SessionError):
        await session.answer()
    assert fake_connection.emitted == []


@pytest.mark.asyncio
async def test_decline_incoming_call(session, fake_connection):
    await session.handle_envelope("callUser", {"from": "carol-id", "name": "Carol", "signal": {}})

    await session.decline()

    assert fake_connection.emitted == [("endCall", {"to": "carol-id"})]
    assert session.incoming_call is None


@pytest.mark.asyncio
async def test_hang_up_releases_media_and_resets_view(session, fake_connection, fake_media, peers):
    await session.call("bob-id")
    await session.handle_envelope("callAccepted", {"type": "answer", "sdp": "remote"})
    fake_connection.emitted.clear()

    await session.hang_up()

    assert fake_connection.emitted == [("endCall", {"to": "bob-id"})]
    assert peers[0].closed
    assert not fake_media.active
    assert session.call_view is CallView.IDLE
    assert session.peer is None


@pytest.mark.asyncio
async def test_remote_end_tears_down_call(session, fake_media, peers):
    await session.call("bob-id")
    await session.handle_envelope("callAccepted", {"type": "answer", "sdp": "remote"})

    await session.handle_envelope("callEnded", {"from": "bob-id", "reason": "disconnected"})

    assert peers[0].closed
    assert fake_media.release_count == 1
    assert session.call_view is CallView.IDLE


@pytest.mark.asyncio
async def test_call_ended_from_stranger_is_ignored(session, peers):
    await session.call("bob-id")

    await session.handle_envelope("callEnded", {"from": "someone-else", "reason": "ended"})

    assert session.call_view is CallView.CALLING
    assert not peers[0].closed


@pytest.mark.asyncio
async def test_caller_hanging_up_clears_incoming_call(session):
    await session.handle_envelope("callUser", {"from": "carol-id", "name": "Carol", "signal": {}})

    await session.handle_envelope("callEnded", {"from": "carol-id", "reason": "ended"})

    assert session.incoming_call is None


@pytest.mark.asyncio
async def test_rejected_call_is_torn_down(session, fake_media, peers):
    await session.call("bob-id")

    await session.handle_envelope("callRejected", {"to": "bob-id", "reason": "busy"})

    assert session.last_rejection == "busy"
    assert session.call_view is CallView.IDLE
    assert peers[0].closed
    assert not fake_media.active


@pytest.mark.asyncio
async def test_accept_without_pending_call_is_ignored(session):
    await session.handle_envelope("callAccepted", {"type": "answer", "sdp": "late"})
    assert session.call_view is CallView.IDLE


@pytest.mark.asyncio
async def test_cannot_place_second_call(session):
    await session.call("bob-id")
    with pytest.raises(SessionError):
        await session.call("carol-id")


@pytest.mark.asyncio
async def test_run_consumes_inbound_envelopes(session, fake_connection):
    fake_connection.inbound.extend(
        [
            ("connected", {"id": "xyz"}),
            ("receive_message", {"room": "r", "author": "Bob", "content": {"kind": "text", "body": "yo"}, "timestamp": "1:02"}),
            ("error", {"code": "invalid_room", "message": "Room name must not be empty"}),
        ]
    )

    await session.run()

    assert session.me == "xyz"
    assert [m.content.body for m in session.messages] == ["yo"]
    assert session.last_error["code"] == "invalid_room"


def test_attachment_from_file_builds_data_uri(tmp_path):
    image = tmp_path / "cat.png"
    image.write_bytes(b"\x89PNG")
    clip = tmp_path / "clip.mp4"
    clip.write_bytes(b"\x00\x00")

    picture = attachment_from_file(str(image))
    movie = attachment_from_file(str(clip))

    assert picture.kind is ContentKind.IMAGE
    assert picture.mime_type == "image/png"
    assert picture.body == "data:image/png;base64,iVBORw=="
    assert picture.name == "cat.png"
    assert movie.kind is ContentKind.VIDEO
    assert movie.mime_type == "video/mp4"


@pytest.mark.asyncio
async def test_unusable_answer_ends_call_and_session_keeps_running(session, fake_connection, fake_media, peers):
    await session.call("bob-id")
    fake_connection.emitted.clear()

    async def reject_answer(answer):
        raise ValueError("bad sdp")

    peers[0].apply_answer = reject_answer
    fake_connection.inbound.extend(
        [
            ("callAccepted", "garbage"),
            ("receive_message", {"room": "lobby", "author": "Bob", "content": {"kind": "text", "body": "after"}, "timestamp": "9:15"}),
        ]
    )

    await session.run()

    assert fake_connection.emitted == [("endCall", {"to": "bob-id"})]
    assert session.call_view is CallView.IDLE
    assert peers[0].closed
    assert not fake_media.active
    assert [m.content.body for m in session.messages] == ["after"]


@pytest.mark.asyncio
async def test_failed_answer_releases_media_and_ends_call(session, fake_connection, fake_media, peers):
    def failing_factory(media):
        peer = FakePeerThatCannotAnswer(media)
        peers.append(peer)
        return peer

    session.peer_factory = failing_factory
    await session.handle_envelope("callUser", {"from": "carol-id", "name": "Carol", "signal": "garbage"})

    with pytest.raises(ValueError):
        await session.answer()

    assert peers[0].closed
    assert not fake_media.active
    assert fake_media.release_count == 1
    assert session.incoming_call is None
    assert session.call_view is CallView.IDLE
    assert fake_connection.emitted == [("endCall", {"to": "carol-id"})]


class FakePeerThatCannotAnswer:
    def __init__(self, media):
        self.media = media
        self.closed = False

    async def create_answer(self, offer):
        raise ValueError("bad sdp")

    async def close(self):
        self.closed = True
