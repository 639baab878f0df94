"""Test route matching and destination resolution."""

import asyncio

import pytest
from hypothesis import given
from hypothesis import strategies as st

from relaybot.core.errors import RouteValidationError
from relaybot.gateway.dispatcher import RelayDispatcher
from relaybot.gateway.routes import RouteTable, resolve_destination
from relaybot.models import Route, RouteCreate
from relaybot.storage import MemoryStorage
from tests.mocks import MockTransport, make_message

CHANNELS = ["A", "B", "C", "D"]


def _route(source="A", target="B", bidirectional=False, active=True):
    return Route(
        id="r1",
        name="test",
        source_channel_id=source,
        target_channel_id=target,
        bidirectional=bidirectional,
        active=active,
    )


class TestResolveDestination:
    def test_forward(self):
        assert resolve_destination(_route(), "A") == "B"

    def test_one_way_reverse_is_none(self):
        assert resolve_destination(_route(), "B") is None

    def test_bidirectional_reverse(self):
        assert resolve_destination(_route(bidirectional=True), "B") == "A"

    def test_unrelated_channel(self):
        assert resolve_destination(_route(bidirectional=True), "C") is None

    def test_route_rejects_same_channel(self):
        with pytest.raises(RouteValidationError) as exc_info:
            _route("A", "A")
        assert exc_info.value.code == "same_channel"

    def test_route_rejects_empty_channel(self):
        with pytest.raises(RouteValidationError) as exc_info:
            RouteCreate(source_channel_id="", target_channel_id="B")
        assert exc_info.value.code == "missing_channel_id"


class TestRouteTable:
    @pytest.mark.asyncio
    async def test_matches_only_active_routes(self):
        # Arrange
        storage = MemoryStorage()
        active = await storage.create_route(RouteCreate("A", "B"))
        await storage.create_route(RouteCreate("A", "C", active=False))
        table = RouteTable(storage)

        # Act
        matches = await table.matches("A")

        # Assert
        assert [(r.id, dest) for r, dest in matches] == [(active.id, "B")]

    @pytest.mark.asyncio
    async def test_reads_storage_on_every_call(self):
        # Arrange
        storage = MemoryStorage()
        table = RouteTable(storage)
        assert await table.matches("A") == []

        # Act
        await storage.create_route(RouteCreate("A", "B"))

        # Assert
        assert len(await table.matches("A")) == 1


route_specs = st.lists(
    st.tuples(
        st.sampled_from(CHANNELS),
        st.sampled_from(CHANNELS),
        st.booleans(),
        st.booleans(),
    ).filter(lambda t: t[0] != t[1]),
    max_size=8,
)


class TestRoutingProperties:
    """Property-based checks of the loop guard over arbitrary route sets."""

    @given(route_specs, st.sampled_from(CHANNELS))
    def test_never_delivers_to_origin(self, specs, origin):
        """Property: every send goes to a matched destination, never back to the origin."""

        async def scenario():
            storage = MemoryStorage()
            for source, target, bidirectional, active in specs:
                await storage.create_route(
                    RouteCreate(source, target, bidirectional=bidirectional, active=active)
                )
            transport = MockTransport({c: c.lower() for c in CHANNELS})
            await RelayDispatcher(storage, transport).dispatch(make_message(origin))
            return transport.sent_to

        # Act
        sent_to = asyncio.run(scenario())

        # Assert
        expected = []
        for source, target, bidirectional, active in specs:
            if not active:
                continue
            if source == origin:
                expected.append(target)
            elif bidirectional and target == origin:
                expected.append(source)
        assert origin not in sent_to
        assert sorted(sent_to) == sorted(expected)

    @given(route_specs, st.sampled_from(CHANNELS))
    def test_bot_messages_never_sent(self, specs, origin):
        """Property: bot-authored messages produce no sends for any route set."""

        async def scenario():
            storage = MemoryStorage()
            for source, target, bidirectional, active in specs:
                await storage.create_route(
                    RouteCreate(source, target, bidirectional=bidirectional, active=active)
                )
            transport = MockTransport({c: c.lower() for c in CHANNELS})
            await RelayDispatcher(storage, transport).dispatch(make_message(origin, author_bot=True))
            return transport.sent, await storage.list_activity()

        # Act
        sent, entries = asyncio.run(scenario())

        # Assert
        assert sent == []
        assert entries == []
