"""Tests for request/response correlation."""

import asyncio
from unittest.mock import MagicMock

import pytest

from turntable_client.connect.correlator import MessageCorrelator
from turntable_client.connect.dispatcher import EventDispatcher
from turntable_client.connect.protocol import ProtocolCodec
from turntable_client.connect.types import ApiVerb
from turntable_client.exceptions import ConnectionClosedError, ProtocolFailure, TransportError


@pytest.fixture
def dispatcher() -> MagicMock:
    return MagicMock(spec=EventDispatcher)


@pytest.fixture
def expired() -> MagicMock:
    return MagicMock()


@pytest.fixture
def correlator(transport, dispatcher: MagicMock, expired: MagicMock) -> MessageCorrelator:
    codec = ProtocolCodec("user-1", "auth-1", client_id="client-1")
    return MessageCorrelator(transport, codec, dispatcher, on_session_expired=expired)


class TestSend:
    """Tests for outbound requests."""

    @pytest.mark.asyncio
    async def test_ids_strictly_increase(self, correlator: MessageCorrelator, transport) -> None:
        """Test every request gets the next id."""
        tasks = [asyncio.create_task(correlator.send(ApiVerb.ROOM_SPEAK, {"n": i})) for i in range(3)]
        requests = await transport.wait_for_requests(3)

        assert [r["msgid"] for r in requests] == [1, 2, 3]
        assert [r["n"] for r in requests] == [0, 1, 2]
        assert correlator.pending_count == 3

        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    @pytest.mark.asyncio
    async def test_ids_never_reused(self, correlator: MessageCorrelator, transport, frame) -> None:
        """Test ids keep increasing after replies settle."""
        first = asyncio.create_task(correlator.send("a.b"))
        await transport.wait_for_requests(1)
        await correlator.on_frame(frame({"msgid": 1, "success": True}))
        await first

        second = asyncio.create_task(correlator.send("a.b"))
        requests = await transport.wait_for_requests(2)
        assert requests[1]["msgid"] == 2
        second.cancel()
        await asyncio.gather(second, return_exceptions=True)

    @pytest.mark.asyncio
    async def test_verb_enum_serialized(self, correlator: MessageCorrelator, transport) -> None:
        """Test ApiVerb members go out as their wire names."""
        task = asyncio.create_task(correlator.send(ApiVerb.PRESENCE_UPDATE, {"status": "available"}))
        requests = await transport.wait_for_requests(1)
        assert requests[0]["api"] == "presence.update"
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    @pytest.mark.asyncio
    async def test_write_failure_rejects_request(
        self, correlator: MessageCorrelator, transport
    ) -> None:
        """Test a failed write raises and leaves nothing pending."""
        transport.fail_with = TransportError("write failed")

        with pytest.raises(TransportError):
            await correlator.send("room.speak")

        assert correlator.pending_count == 0

    @pytest.mark.asyncio
    async def test_unexpected_write_error_wrapped(
        self, correlator: MessageCorrelator, transport
    ) -> None:
        """Test non-transport write errors surface as TransportError."""
        transport.fail_with = RuntimeError("socket gone")

        with pytest.raises(TransportError, match="socket gone"):
            await correlator.send("room.speak")
        assert correlator.pending_count == 0

    @pytest.mark.asyncio
    async def test_cancelled_during_write_removed(self, dispatcher: MagicMock) -> None:
        """Test cancelling a caller blocked in the write drops its pending entry."""
        writing = asyncio.Event()

        class SlowTransport:
            async def send_text(self, data: str) -> None:
                writing.set()
                await asyncio.Event().wait()

        codec = ProtocolCodec("user-1", "auth-1", client_id="client-1")
        correlator = MessageCorrelator(SlowTransport(), codec, dispatcher)

        task = asyncio.create_task(correlator.send("room.speak"))
        await writing.wait()
        assert correlator.pending_count == 1

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

        assert task.cancelled()
        assert correlator.pending_count == 0

    @pytest.mark.asyncio
    async def test_cancelled_caller_removed(self, correlator: MessageCorrelator, transport) -> None:
        """Test cancelling a caller drops its pending entry."""
        task = asyncio.create_task(correlator.send("room.speak"))
        await transport.wait_for_requests(1)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

        assert correlator.pending_count == 0


class TestReplies:
    """Tests for inbound reply routing."""

    @pytest.mark.asyncio
    async def test_out_of_order_replies(
        self, correlator: MessageCorrelator, transport, dispatcher: MagicMock, frame
    ) -> None:
        """Test each caller receives the reply carrying its own id."""
        tasks = [asyncio.create_task(correlator.send("room.info")) for _ in range(3)]
        await transport.wait_for_requests(3)

        for msg_id in (3, 1, 2):
            await correlator.on_frame(frame({"msgid": msg_id, "success": True, "tag": msg_id}))

        results = await asyncio.gather(*tasks)
        assert [r["tag"] for r in results] == [1, 2, 3]
        assert correlator.pending_count == 0
        dispatcher.dispatch.assert_not_called()

    @pytest.mark.asyncio
    async def test_failure_rejects_only_matching_request(
        self, correlator: MessageCorrelator, transport, dispatcher: MagicMock, frame
    ) -> None:
        """Test success=false rejects its caller with the server error."""
        ok = asyncio.create_task(correlator.send("room.info"))
        bad = asyncio.create_task(correlator.send("room.speak"))
        await transport.wait_for_requests(2)

        await correlator.on_frame(frame({"msgid": 2, "success": False, "err": "not in room"}))

        with pytest.raises(ProtocolFailure) as exc_info:
            await bad
        assert exc_info.value.err == "not in room"
        assert exc_info.value.verb == "room.speak"
        assert not ok.done()
        dispatcher.dispatch.assert_not_called()

        await correlator.on_frame(frame({"msgid": 1, "success": True}))
        assert (await ok)["msgid"] == 1

    @pytest.mark.asyncio
    async def test_duplicate_reply_not_delivered_twice(
        self, correlator: MessageCorrelator, transport, dispatcher: MagicMock, frame
    ) -> None:
        """Test a second reply for a settled id goes nowhere harmful."""
        task = asyncio.create_task(correlator.send("room.info"))
        await transport.wait_for_requests(1)

        await correlator.on_frame(frame({"msgid": 1, "success": True, "n": 1}))
        await correlator.on_frame(frame({"msgid": 1, "success": True, "n": 2}))

        assert (await task)["n"] == 1
        assert dispatcher.dispatch.call_count == 1

    @pytest.mark.asyncio
    async def test_unmatched_id_forwarded(
        self, correlator: MessageCorrelator, dispatcher: MagicMock, frame
    ) -> None:
        """Test a reply nobody waits for is handed to the dispatcher, not raised."""
        await correlator.on_frame(frame({"msgid": 42, "success": True}))

        dispatcher.dispatch.assert_called_once()
        event = dispatcher.dispatch.call_args[0][0]
        assert event.name == ""


class TestBroadcasts:
    """Tests for non-reply traffic."""

    @pytest.mark.asyncio
    async def test_command_dispatched(
        self, correlator: MessageCorrelator, dispatcher: MagicMock, frame
    ) -> None:
        """Test commands reach the dispatcher keyed by name."""
        await correlator.on_frame(frame({"command": "speak", "text": "hello"}))

        event = dispatcher.dispatch.call_args[0][0]
        assert event.name == "speak"
        assert event.data["text"] == "hello"

    @pytest.mark.asyncio
    async def test_command_with_pending_msgid_not_settled(
        self, correlator: MessageCorrelator, transport, dispatcher: MagicMock, frame
    ) -> None:
        """Test a tagged broadcast never settles a request."""
        task = asyncio.create_task(correlator.send("room.info"))
        await transport.wait_for_requests(1)

        await correlator.on_frame(frame({"command": "newsong", "msgid": 1}))

        assert not task.done()
        dispatcher.dispatch.assert_called_once()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    @pytest.mark.asyncio
    async def test_no_session_signals_expiry(
        self,
        correlator: MessageCorrelator,
        transport,
        dispatcher: MagicMock,
        expired: MagicMock,
        frame,
    ) -> None:
        """Test the sentinel goes to the session, not to pending requests."""
        task = asyncio.create_task(correlator.send("room.info"))
        await transport.wait_for_requests(1)

        await correlator.on_frame(frame("no_session"))

        expired.assert_called_once()
        dispatcher.dispatch.assert_not_called()
        assert not task.done()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    @pytest.mark.asyncio
    async def test_heartbeat_echoed(
        self, correlator: MessageCorrelator, transport, dispatcher: MagicMock
    ) -> None:
        """Test heartbeats are answered and not dispatched."""
        await correlator.on_frame("~m~4~m~~h~7")

        assert transport.sent == ["~m~4~m~~h~7"]
        dispatcher.dispatch.assert_not_called()

    @pytest.mark.asyncio
    async def test_heartbeat_failure_swallowed(
        self, correlator: MessageCorrelator, transport
    ) -> None:
        """Test a failed heartbeat echo does not break frame intake."""
        transport.fail_with = TransportError("closed")
        await correlator.on_frame("~m~4~m~~h~7")


class TestTeardown:
    """Tests for connection teardown."""

    @pytest.mark.asyncio
    async def test_fail_all_rejects_every_pending(
        self, correlator: MessageCorrelator, transport
    ) -> None:
        """Test teardown rejects outstanding requests and clears the table."""
        tasks = [asyncio.create_task(correlator.send("room.info")) for _ in range(2)]
        await transport.wait_for_requests(2)

        assert correlator.fail_all() == 2
        assert correlator.pending_count == 0

        results = await asyncio.gather(*tasks, return_exceptions=True)
        assert all(isinstance(r, ConnectionClosedError) for r in results)

    @pytest.mark.asyncio
    async def test_fail_all_with_custom_error(
        self, correlator: MessageCorrelator, transport
    ) -> None:
        """Test teardown can raise a specific error."""
        task = asyncio.create_task(correlator.send("room.info"))
        await transport.wait_for_requests(1)

        correlator.fail_all(TransportError("gone"))

        with pytest.raises(TransportError, match="gone"):
            await task

    def test_fail_all_when_empty(self, correlator: MessageCorrelator) -> None:
        """Test teardown with nothing pending."""
        assert correlator.fail_all() == 0
