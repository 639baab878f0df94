"""Test relay dispatch: loop guard, direction, fan-out and failure isolation."""

import asyncio
from unittest.mock import MagicMock

import pytest

from relaybot.gateway.dispatcher import RelayDispatcher
from relaybot.gateway.notifier import WebhookNotifier
from relaybot.storage import MemoryStorage
from tests.mocks import MockTransport, add_route, make_message


def _setup(channels=None, **kwargs):
    storage = MemoryStorage()
    transport = MockTransport(channels or {"C1": "general", "C2": "random", "C3": "ops", "C4": "dev"})
    dispatcher = RelayDispatcher(storage, transport, **kwargs)
    return storage, transport, dispatcher


class TestLoopGuard:
    """Messages written by bots (including this one) are never relayed."""

    @pytest.mark.asyncio
    async def test_bot_authored_message_produces_nothing(self):
        # Arrange
        storage, transport, dispatcher = _setup()
        await add_route(storage, "C1", "C2", bidirectional=True)

        # Act
        await dispatcher.dispatch(make_message("C1", author_bot=True))

        # Assert
        assert transport.sent == []
        assert await storage.list_activity() == []
        assert (await storage.get_stats()).messages_relayed == 0

    @pytest.mark.asyncio
    async def test_own_message_produces_nothing(self):
        # Arrange
        storage, transport, dispatcher = _setup()
        await add_route(storage, "C1", "C2")

        # Act
        await dispatcher.dispatch(make_message("C1", author_id=transport.user_id))

        # Assert
        assert transport.sent == []
        assert await storage.list_activity() == []

    @pytest.mark.asyncio
    async def test_bidirectional_never_echoes_to_origin(self):
        # Arrange
        storage, transport, dispatcher = _setup()
        await add_route(storage, "C1", "C2", bidirectional=True)

        # Act
        await dispatcher.dispatch(make_message("C1"))

        # Assert
        assert transport.sent_to == ["C2"]

    @pytest.mark.asyncio
    async def test_overlapping_routes_never_deliver_back_to_origin(self):
        # Arrange
        storage, transport, dispatcher = _setup()
        await add_route(storage, "C1", "C2", bidirectional=True)
        await add_route(storage, "C2", "C1", bidirectional=True)
        await add_route(storage, "C2", "C1")

        # Act
        await dispatcher.dispatch(make_message("C1"))

        # Assert
        assert "C1" not in transport.sent_to
        assert transport.sent_to == ["C2", "C2"]


class TestDirection:
    @pytest.mark.asyncio
    async def test_one_way_forward(self):
        # Arrange
        storage, transport, dispatcher = _setup()
        await add_route(storage, "C1", "C2")

        # Act
        await dispatcher.dispatch(make_message("C1", "hello"))

        # Assert
        assert len(transport.sent) == 1
        channel_id, content, card = transport.sent[0]
        assert channel_id == "C2"
        assert content is None
        assert card.description == "hello"
        assert card.author_name == "alice"
        assert "C1" in card.footer
        stats = await storage.get_stats()
        assert stats.messages_relayed == 1
        assert stats.api_calls == 1
        entries = await storage.list_activity()
        assert [e.type for e in entries] == ["RELAY"]
        assert entries[0].channel_id == "C1"
        assert entries[0].user_id == "u1"

    @pytest.mark.asyncio
    async def test_one_way_reverse_is_ignored(self):
        # Arrange
        storage, transport, dispatcher = _setup()
        await add_route(storage, "C1", "C2")

        # Act
        await dispatcher.dispatch(make_message("C2"))

        # Assert
        assert transport.sent == []
        assert await storage.list_activity() == []

    @pytest.mark.asyncio
    async def test_bidirectional_reverse(self):
        # Arrange
        storage, transport, dispatcher = _setup()
        await add_route(storage, "C1", "C2", bidirectional=True)

        # Act
        await dispatcher.dispatch(make_message("C2"))

        # Assert
        assert transport.sent_to == ["C1"]

    @pytest.mark.asyncio
    async def test_inactive_route_is_ignored(self):
        # Arrange
        storage, transport, dispatcher = _setup()
        await add_route(storage, "C1", "C2", active=False)

        # Act
        await dispatcher.dispatch(make_message("C1"))

        # Assert
        assert transport.sent == []
        assert await storage.list_activity() == []

    @pytest.mark.asyncio
    async def test_unrelated_channel_is_ignored(self):
        # Arrange
        storage, transport, dispatcher = _setup()
        await add_route(storage, "C1", "C2")

        # Act
        await dispatcher.dispatch(make_message("C3"))

        # Assert
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_empty_content_is_relayed(self):
        # Arrange
        storage, transport, dispatcher = _setup()
        await add_route(storage, "C1", "C2")

        # Act
        await dispatcher.dispatch(make_message("C1", ""))

        # Assert
        assert transport.sent_to == ["C2"]
        assert transport.sent[0][2].description == ""

    @pytest.mark.asyncio
    async def test_footer_uses_channel_name_when_known(self):
        # Arrange
        storage, transport, dispatcher = _setup()
        await add_route(storage, "C1", "C2")

        # Act
        await dispatcher.dispatch(make_message("C1", channel_name="general"))

        # Assert
        assert transport.sent[0][2].footer == "Relayed from #general"
        entry = (await storage.list_activity())[0]
        assert entry.message.startswith("Message relayed from #general (C1) to #random (C2)")


class TestFailureIsolation:
    @pytest.mark.asyncio
    async def test_partial_failures_do_not_block_other_routes(self):
        # Arrange
        storage, transport, dispatcher = _setup({"C1": "general", "C2": "random", "C3": "ops"})
        await add_route(storage, "C1", "C2")
        bad_send = await add_route(storage, "C1", "C3")
        missing = await add_route(storage, "C1", "C4")
        transport.fail_send.add("C3")

        # Act
        await dispatcher.dispatch(make_message("C1"))

        # Assert
        assert transport.sent_to == ["C2"]
        stats = await storage.get_stats()
        assert stats.messages_relayed == 1
        assert stats.api_calls == 1
        entries = await storage.list_activity()
        assert sorted(e.type for e in entries) == ["ERROR", "ERROR", "RELAY"]
        errors = [e.message for e in entries if e.type == "ERROR"]
        assert any(bad_send.id in m and "C3" in m for m in errors)
        assert any(missing.id in m and "C4" in m for m in errors)

    @pytest.mark.asyncio
    async def test_send_timeout_is_logged_as_error(self):
        # Arrange
        storage, transport, dispatcher = _setup(send_timeout=0.01)
        await add_route(storage, "C1", "C2")
        transport.send_delay = 1.0

        # Act
        await dispatcher.dispatch(make_message("C1"))

        # Assert
        assert transport.sent == []
        entries = await storage.list_activity()
        assert [e.type for e in entries] == ["ERROR"]
        assert "timed out" in entries[0].message
        assert (await storage.get_stats()).messages_relayed == 0

    @pytest.mark.asyncio
    async def test_unexpected_send_exception_is_contained(self):
        # Arrange
        storage, transport, dispatcher = _setup()
        await add_route(storage, "C1", "C2")
        await add_route(storage, "C1", "C3")
        original_send = transport.send

        async def flaky_send(channel, *, content=None, card=None):
            if channel.id == "C2":
                raise RuntimeError("boom")
            return await original_send(channel, content=content, card=card)

        transport.send = flaky_send

        # Act
        await dispatcher.dispatch(make_message("C1"))

        # Assert
        assert transport.sent_to == ["C3"]
        types = sorted(e.type for e in await storage.list_activity())
        assert types == ["ERROR", "RELAY"]

    @pytest.mark.asyncio
    async def test_unexpected_resolve_exception_is_contained(self):
        # Arrange
        storage, transport, dispatcher = _setup()
        await add_route(storage, "C1", "C2")
        broken = await add_route(storage, "C1", "C3")
        original_resolve = transport.resolve_channel

        async def flaky_resolve(channel_id):
            if channel_id == "C3":
                raise RuntimeError("unknown channel type")
            return await original_resolve(channel_id)

        transport.resolve_channel = flaky_resolve

        # Act
        await dispatcher.dispatch(make_message("C1"))

        # Assert
        assert transport.sent_to == ["C2"]
        entries = await storage.list_activity()
        assert sorted(e.type for e in entries) == ["ERROR", "RELAY"]
        error = next(e for e in entries if e.type == "ERROR")
        assert broken.id in error.message
        assert "RuntimeError: unknown channel type" in error.message
        assert (await storage.get_stats()).messages_relayed == 1


class TestPacing:
    @pytest.mark.asyncio
    async def test_pacing_wait_does_not_count_against_send_timeout(self):
        # Arrange
        storage, transport, dispatcher = _setup(send_timeout=0.1)
        for target in ("C2", "C3", "C4"):
            await add_route(storage, "C1", target)
        # Three paced sends take longer in total than one send timeout
        transport.pace_delay = 0.06

        # Act
        await dispatcher.dispatch(make_message("C1"))

        # Assert
        assert sorted(transport.sent_to) == ["C2", "C3", "C4"]
        assert transport.pace_calls == 3
        types = [e.type for e in await storage.list_activity()]
        assert types == ["RELAY", "RELAY", "RELAY"]

    @pytest.mark.asyncio
    async def test_failed_resolution_skips_pacing(self):
        # Arrange
        storage, transport, dispatcher = _setup({"C1": "general"})
        await add_route(storage, "C1", "C2")

        # Act
        await dispatcher.dispatch(make_message("C1"))

        # Assert
        assert transport.pace_calls == 0


class TestCounters:
    @pytest.mark.asyncio
    async def test_concurrent_dispatches_both_count(self):
        # Arrange
        storage, transport, dispatcher = _setup()
        await add_route(storage, "C1", "C2")

        # Act
        await asyncio.gather(
            dispatcher.dispatch(make_message("C1", "one", message_id="m1")),
            dispatcher.dispatch(make_message("C1", "two", message_id="m2")),
        )

        # Assert
        stats = await storage.get_stats()
        assert stats.messages_relayed == 2
        assert stats.api_calls == 2

    @pytest.mark.asyncio
    async def test_fan_out_counts_each_delivery(self):
        # Arrange
        storage, transport, dispatcher = _setup()
        for target in ("C2", "C3", "C4"):
            await add_route(storage, "C1", target)

        # Act
        await dispatcher.dispatch(make_message("C1"))

        # Assert
        assert sorted(transport.sent_to) == ["C2", "C3", "C4"]
        assert (await storage.get_stats()).messages_relayed == 3


class TestNotifier:
    @pytest.mark.asyncio
    async def test_successful_relay_schedules_webhook(self):
        # Arrange
        notifier = MagicMock(spec=WebhookNotifier)
        storage, transport, dispatcher = _setup(notifier=notifier)
        route = await add_route(storage, "C1", "C2")

        # Act
        await dispatcher.dispatch(make_message("C1", "hi", message_id="m9"))

        # Assert
        notifier.schedule.assert_called_once()
        payload = notifier.schedule.call_args[0][0]
        assert payload["route_id"] == route.id
        assert payload["content"] == "hi"
        assert payload["target_channel_id"] == "C2"
        assert payload["original_message_id"] == "m9"

    @pytest.mark.asyncio
    async def test_failed_relay_does_not_notify(self):
        # Arrange
        notifier = MagicMock(spec=WebhookNotifier)
        storage, transport, dispatcher = _setup(notifier=notifier)
        await add_route(storage, "C1", "C2")
        transport.fail_send.add("C2")

        # Act
        await dispatcher.dispatch(make_message("C1"))

        # Assert
        notifier.schedule.assert_not_called()
