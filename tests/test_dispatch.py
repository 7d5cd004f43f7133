"""
Tests for the dispatcher.

Tests:
- Admission: directionality, permission gate, priority
- Execution: rate limit, blocked senders, scope and capability checks
- Unknown commands and suggestions
- Handler failures and timeouts
"""

import asyncio

import pytest
from unittest.mock import AsyncMock

from relaybot.auto_reply.commands import Capability, CommandDescriptor, Scope, parse_command
from relaybot.auto_reply.dispatch import DispatchConfig, Dispatcher, DispatchOutcome
from relaybot.auto_reply.queue import Priority, ProcessingQueue, QueueConfig
from relaybot.auto_reply.ratelimit import RateLimiter
from relaybot.plugins.loader import PluginLoader
from relaybot.security.permissions import WILDCARD

from tests.helpers import FRIEND, OWNER, STRANGER, RecordingTransport, make_event, make_plugin


GENERIC_ERROR = "❌ An error occurred while executing the command."


def register(registry, name, handler, *aliases, **kwargs):
    registry.load(make_plugin(
        f"{name}-plugin",
        CommandDescriptor(name=name, handler=handler, aliases=aliases, **kwargs),
    ))


@pytest.fixture
def builtins(registry):
    PluginLoader(registry).load_builtin()
    return registry


async def settle(dispatcher: Dispatcher) -> None:
    assert await dispatcher.queue.join(timeout=2)


class TestParseCommand:
    """Tests for prefix command parsing."""

    def test_parses_name_and_arguments(self):
        command = parse_command(".Allow  someone ping ", ".")

        assert command.name == "allow"
        assert command.arguments == ["someone", "ping"]
        assert command.arg == "someone"
        assert command.args_str == "someone ping"

    @pytest.mark.parametrize("text", [None, "", "hello", ".", ".   ", "ping.", "  .ping", "\n.ping"])
    def test_non_commands(self, text):
        assert parse_command(text, ".") is None

    def test_custom_prefix(self):
        assert parse_command("!ping", "!").name == "ping"
        assert parse_command(".ping", "!") is None


class TestEndToEnd:
    """Whole-pipeline scenarios."""

    @pytest.mark.asyncio
    async def test_permitted_ping_gets_one_reply(self, dispatcher, builtins, gate, transport):
        """Test that a granted identity gets exactly one pong in its chat."""
        gate.grant(FRIEND, "ping")

        outcome = await dispatcher.handle(make_event(".ping", sender=FRIEND, message_id="abc"))
        await settle(dispatcher)

        assert outcome == DispatchOutcome.QUEUED
        assert len(transport.sent) == 1
        chat_id, content, options = transport.sent[0]
        assert chat_id == FRIEND
        assert "Pong" in content
        assert options == {"quoted": "abc"}

    @pytest.mark.asyncio
    async def test_plain_text_from_others_is_ignored(self, dispatcher, builtins, gate, transport):
        gate.grant(FRIEND, "ping")

        outcome = await dispatcher.handle(make_event("hello", sender=FRIEND))
        await settle(dispatcher)

        assert outcome == DispatchOutcome.IGNORED
        assert transport.sent == []
        assert dispatcher.queue.get_stats()["submitted"] == 0

    @pytest.mark.asyncio
    async def test_typo_gets_suggestion(self, dispatcher, builtins, transport):
        """Test that an unknown command is answered with similar names."""
        await dispatcher.handle(make_event(".pig", sender=OWNER))
        await settle(dispatcher)

        assert len(transport.sent) == 1
        text = transport.texts[0]
        assert text.startswith("❌ Unknown command: *pig*")
        assert "💡 Did you mean:\n├ .ping\n" in text
        assert text.endswith("\nUse *.help* to see all available commands.")
        assert dispatcher.get_stats()["unknown_commands"] == 1

    @pytest.mark.asyncio
    async def test_unknown_without_suggestions(self, dispatcher, builtins, transport):
        await dispatcher.handle(make_event(".xyzzyq", sender=OWNER))
        await settle(dispatcher)

        assert transport.texts == [
            "❌ Unknown command: *xyzzyq*\nUse *.help* to see all available commands."
        ]


class TestAdmission:
    """Tests for classification and the permission gate."""

    @pytest.mark.asyncio
    async def test_empty_body_discarded(self, dispatcher):
        assert await dispatcher.handle(make_event(None)) == DispatchOutcome.DISCARDED
        assert await dispatcher.handle(make_event("   ")) == DispatchOutcome.DISCARDED

    @pytest.mark.asyncio
    async def test_unpermitted_command_denied_silently(self, dispatcher, builtins, transport):
        outcome = await dispatcher.handle(make_event(".ping", sender=STRANGER))
        await settle(dispatcher)

        assert outcome == DispatchOutcome.DENIED
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_self_originated_bypasses_gate(self, dispatcher, builtins, transport):
        """Test that the bot's own commands run without any grant."""
        event = make_event(".ping", sender=STRANGER, is_self=True)

        outcome = await dispatcher.handle(event)
        await settle(dispatcher)

        assert outcome == DispatchOutcome.QUEUED
        assert len(transport.sent) == 1

    @pytest.mark.asyncio
    async def test_self_originated_plain_text_ignored(self, dispatcher):
        outcome = await dispatcher.handle(make_event("note to self", is_self=True))

        assert outcome == DispatchOutcome.IGNORED

    @pytest.mark.asyncio
    async def test_grant_on_canonical_name_covers_aliases(self, dispatcher, builtins, gate, transport):
        gate.grant(FRIEND, "ping")

        outcome = await dispatcher.handle(make_event(".P", sender=FRIEND))
        await settle(dispatcher)

        assert outcome == DispatchOutcome.QUEUED
        assert "Pong" in transport.texts[0]

    @pytest.mark.asyncio
    async def test_wildcard_grant(self, dispatcher, builtins, gate):
        gate.grant(FRIEND, WILDCARD)

        assert await dispatcher.handle(make_event(".help", sender=FRIEND)) == DispatchOutcome.QUEUED
        await settle(dispatcher)

    @pytest.mark.asyncio
    async def test_full_queue_drops(self, registry, gate, limiter, transport):
        queue = ProcessingQueue(QueueConfig(max_size=1, max_concurrent=1))
        dispatcher = Dispatcher(registry, queue, gate, limiter, transport, DispatchConfig(owner_id=OWNER))
        release = asyncio.Event()

        async def slow(ctx):
            await release.wait()

        register(registry, "slow", slow)

        assert await dispatcher.handle(make_event(".slow", sender=OWNER)) == DispatchOutcome.QUEUED
        await asyncio.sleep(0.01)
        assert await dispatcher.handle(make_event(".slow", sender=OWNER)) == DispatchOutcome.QUEUED
        assert await dispatcher.handle(make_event(".slow", sender=OWNER)) == DispatchOutcome.DROPPED

        release.set()
        await settle(dispatcher)
        assert dispatcher.get_stats()["dropped"] == 1

    @pytest.mark.asyncio
    async def test_indented_command_is_plain_text(self, dispatcher, builtins, gate, transport):
        """Test that a body must start with the prefix to count as a command."""
        gate.grant(FRIEND, "ping")

        assert await dispatcher.handle(make_event("  .ping", sender=FRIEND)) == DispatchOutcome.IGNORED
        assert await dispatcher.handle(make_event("  .ping", is_self=True)) == DispatchOutcome.IGNORED
        assert transport.sent == []


class TestPriority:
    """Tests for queue tier selection."""

    def test_priority_tiers(self, registry, gate, limiter, transport, queue):
        dispatcher = Dispatcher(
            registry, queue, gate, limiter, transport,
            DispatchConfig(owner_id=OWNER, sudo_users=["sudo@s.whatsapp.net"]),
        )
        command = parse_command(".ping", ".")

        assert dispatcher.priority_for(make_event(".ping", sender=OWNER), command) == Priority.HIGH
        assert dispatcher.priority_for(make_event(".ping", is_self=True), command) == Priority.HIGH
        assert dispatcher.priority_for(make_event(".ping", sender="sudo@s.whatsapp.net"), command) == Priority.HIGH
        assert dispatcher.priority_for(make_event(".ping", sender=FRIEND), command) == Priority.NORMAL
        assert dispatcher.priority_for(make_event("hi", sender=FRIEND), None) == Priority.LOW

    @pytest.mark.asyncio
    async def test_owner_commands_jump_the_queue(self, registry, gate, limiter, transport):
        queue = ProcessingQueue(QueueConfig(max_concurrent=1))
        dispatcher = Dispatcher(registry, queue, gate, limiter, transport, DispatchConfig(owner_id=OWNER))
        order = []

        async def record(ctx):
            order.append(ctx.sender_id)

        register(registry, "who", record)
        gate.grant(FRIEND, "who")

        queue.pause()
        await dispatcher.handle(make_event(".who", sender=FRIEND))
        await dispatcher.handle(make_event(".who", sender=OWNER))
        queue.resume()
        await settle(dispatcher)

        assert order == [OWNER, FRIEND]


class TestExecutionGates:
    """Tests for checks applied when an item runs."""

    @pytest.mark.asyncio
    async def test_rate_limited_sender_gets_no_reply(self, registry, gate, queue, transport, builtins):
        dispatcher = Dispatcher(
            registry, queue, gate, RateLimiter(max_requests=1), transport,
            DispatchConfig(owner_id=OWNER),
        )
        gate.grant(FRIEND, "ping")

        await dispatcher.handle(make_event(".ping", sender=FRIEND))
        await settle(dispatcher)
        await dispatcher.handle(make_event(".ping", sender=FRIEND))
        await settle(dispatcher)

        assert len(transport.sent) == 1
        assert dispatcher.get_stats()["rate_limited"] == 1

    @pytest.mark.asyncio
    async def test_blocked_sender_is_ignored(self, dispatcher, builtins, gate, transport):
        gate.grant(FRIEND, "ping")
        dispatcher.block(FRIEND)

        await dispatcher.handle(make_event(".ping", sender=FRIEND))
        await settle(dispatcher)

        assert transport.sent == []
        assert dispatcher.get_stats()["blocked"] == 1

        dispatcher.unblock(FRIEND)
        await dispatcher.handle(make_event(".ping", sender=FRIEND))
        await settle(dispatcher)
        assert len(transport.sent) == 1

    @pytest.mark.asyncio
    async def test_group_only_command_in_private_chat(self, dispatcher, registry, transport):
        handler = AsyncMock(return_value="done")
        register(registry, "kick", handler, scope=Scope.GROUP_ONLY)

        await dispatcher.handle(make_event(".kick", sender=OWNER))
        await settle(dispatcher)

        handler.assert_not_called()
        assert transport.sent == []
        assert dispatcher.get_stats()["unauthorized"] == 1

        await dispatcher.handle(make_event(".kick", sender=OWNER, chat="team@g.us", is_group=True))
        await settle(dispatcher)
        handler.assert_awaited_once()
        assert transport.sent[0][0] == "team@g.us"

    @pytest.mark.asyncio
    async def test_private_only_command_in_group(self, dispatcher, registry, transport):
        handler = AsyncMock(return_value="secret")
        register(registry, "secret", handler, scope=Scope.PRIVATE_ONLY)

        await dispatcher.handle(make_event(".secret", sender=OWNER, chat="team@g.us", is_group=True))
        await settle(dispatcher)

        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_owner_capability(self, dispatcher, registry, gate, transport):
        """Test that a grant alone does not unlock an owner-only command."""
        handler = AsyncMock(return_value="restarted")
        register(registry, "restart", handler, capability=Capability.OWNER)
        gate.grant(FRIEND, "restart")

        await dispatcher.handle(make_event(".restart", sender=FRIEND))
        await settle(dispatcher)
        handler.assert_not_called()

        await dispatcher.handle(make_event(".restart", sender=OWNER))
        await settle(dispatcher)
        handler.assert_awaited_once()
        assert transport.texts == ["restarted"]

    @pytest.mark.asyncio
    async def test_sudo_capability(self, registry, gate, limiter, queue, transport):
        dispatcher = Dispatcher(
            registry, queue, gate, limiter, transport,
            DispatchConfig(owner_id=OWNER, sudo_users=[FRIEND]),
        )
        handler = AsyncMock(return_value=None)
        register(registry, "ban", handler, capability=Capability.SUDO)
        gate.grant(FRIEND, "ban")
        gate.grant(STRANGER, "ban")

        await dispatcher.handle(make_event(".ban", sender=STRANGER))
        await dispatcher.handle(make_event(".ban", sender=FRIEND))
        await settle(dispatcher)

        assert handler.await_count == 1
        assert handler.await_args.args[0].sender_id == FRIEND


class TestFailures:
    """Tests for handler errors."""

    @pytest.mark.asyncio
    async def test_handler_exception_gets_generic_notice(self, dispatcher, registry, transport):
        handler = AsyncMock(side_effect=ValueError("bad input"))
        register(registry, "explode", handler)

        await dispatcher.handle(make_event(".explode", sender=OWNER, message_id="m9"))
        await settle(dispatcher)

        assert transport.sent == [(OWNER, GENERIC_ERROR, {"quoted": "m9"})]
        handler.assert_awaited_once()
        assert dispatcher.get_stats()["error_count"] == 1
        assert dispatcher.queue.get_stats()["failed"] == 0

    @pytest.mark.asyncio
    async def test_handler_timeout(self, registry, gate, limiter, queue, transport):
        dispatcher = Dispatcher(
            registry, queue, gate, limiter, transport,
            DispatchConfig(owner_id=OWNER, command_timeout_seconds=0.05),
        )

        async def sleepy(ctx):
            await asyncio.sleep(5)

        register(registry, "sleepy", sleepy)

        await dispatcher.handle(make_event(".sleepy", sender=OWNER))
        await settle(dispatcher)

        assert transport.texts == [GENERIC_ERROR]

    @pytest.mark.asyncio
    async def test_transport_failure_is_retried(self, registry, gate, limiter, queue):
        """Test that a failed reply is resent without running the handler again."""
        transport = RecordingTransport()
        transport.send = AsyncMock(side_effect=[ConnectionError("offline"), None])
        dispatcher = Dispatcher(registry, queue, gate, limiter, transport, DispatchConfig(owner_id=OWNER))
        handler = AsyncMock(return_value="hello")
        register(registry, "hi", handler)

        await dispatcher.handle(make_event(".hi", sender=OWNER, message_id="m3"))
        await settle(dispatcher)

        handler.assert_awaited_once()
        assert transport.send.await_count == 2
        assert transport.send.await_args.args == (OWNER, "hello", {"quoted": "m3"})
        assert queue.get_stats()["retried"] == 1
        assert queue.get_stats()["processed"] == 1

    @pytest.mark.asyncio
    async def test_retry_does_not_spend_rate_limit(self, registry, gate, queue):
        """Test that a retried event is not rate limited by its own first attempt."""
        transport = RecordingTransport()
        transport.send = AsyncMock(side_effect=[ConnectionError("offline"), None])
        limiter = RateLimiter(max_requests=1)
        dispatcher = Dispatcher(registry, queue, gate, limiter, transport, DispatchConfig(owner_id=OWNER))
        handler = AsyncMock(return_value="done")
        register(registry, "work", handler)

        await dispatcher.handle(make_event(".work", sender=OWNER))
        await settle(dispatcher)

        handler.assert_awaited_once()
        assert transport.send.await_count == 2
        assert dispatcher.get_stats()["rate_limited"] == 0
        assert limiter.get_stats()["admitted"] == 1
        assert queue.get_stats()["processed"] == 1
        assert queue.get_stats()["failed"] == 0

    @pytest.mark.asyncio
    async def test_unknown_command_reply_is_retried(self, registry, gate, queue, builtins):
        transport = RecordingTransport()
        transport.send = AsyncMock(side_effect=[ConnectionError("offline"), None])
        dispatcher = Dispatcher(
            registry, queue, gate, RateLimiter(max_requests=1), transport,
            DispatchConfig(owner_id=OWNER),
        )

        await dispatcher.handle(make_event(".pig", sender=OWNER))
        await settle(dispatcher)

        assert transport.send.await_count == 2
        assert transport.send.await_args.args[1].startswith("❌ Unknown command: *pig*")
        assert dispatcher.get_stats()["unknown_commands"] == 1

    @pytest.mark.asyncio
    async def test_exhausted_retries_send_notice(self, registry, gate, limiter):
        """Test that a reply failing every time ends with the generic notice."""

        class ReplyFailingTransport(RecordingTransport):
            async def send(self, chat_id, content, options=None):
                if content == "result":
                    raise ConnectionError("offline")
                await super().send(chat_id, content, options)

        transport = ReplyFailingTransport()
        queue = ProcessingQueue(QueueConfig(max_retries=2))
        dispatcher = Dispatcher(
            registry, queue, gate, RateLimiter(max_requests=1), transport,
            DispatchConfig(owner_id=OWNER),
        )
        handler = AsyncMock(return_value="result")
        register(registry, "work", handler)

        await dispatcher.handle(make_event(".work", sender=OWNER))
        await settle(dispatcher)

        handler.assert_awaited_once()
        assert transport.texts == [GENERIC_ERROR]
        assert queue.get_stats()["failed"] == 1
        assert queue.get_stats()["processed"] == 0
        assert dispatcher.get_stats()["rate_limited"] == 0


class TestConversation:
    """Tests for the optional non-command handler."""

    @pytest.mark.asyncio
    async def test_trusted_sender_reaches_message_handler(self, dispatcher, gate, transport):
        gate.grant(FRIEND, WILDCARD)
        on_message = AsyncMock(return_value="hey!")
        dispatcher.set_message_handler(on_message)

        outcome = await dispatcher.handle(make_event("hello", sender=FRIEND))
        await settle(dispatcher)

        assert outcome == DispatchOutcome.QUEUED
        on_message.assert_awaited_once()
        assert transport.texts == ["hey!"]

    @pytest.mark.asyncio
    async def test_untrusted_sender_never_reaches_message_handler(self, dispatcher, gate):
        gate.grant(FRIEND, "ping")
        on_message = AsyncMock(return_value="hey!")
        dispatcher.set_message_handler(on_message)

        outcome = await dispatcher.handle(make_event("hello", sender=FRIEND))

        assert outcome == DispatchOutcome.IGNORED
        on_message.assert_not_called()


class TestSuggestions:
    """Tests for similar-name suggestions."""

    def test_suggest_orders_by_similarity(self, dispatcher, registry):
        for name in ("ping", "pong", "help", "stats"):
            register(registry, name, AsyncMock())

        assert dispatcher.suggest("pin") == ["ping"]
        assert dispatcher.suggest("pong") == ["pong", "ping"]
        assert dispatcher.suggest("zzzz") == []

    def test_suggest_limit(self, registry, gate, limiter, queue, transport):
        dispatcher = Dispatcher(
            registry, queue, gate, limiter, transport,
            DispatchConfig(owner_id=OWNER, max_suggestions=2),
        )
        for name in ("abcd", "abce", "abcf", "abcg"):
            register(registry, name, AsyncMock())

        assert dispatcher.suggest("abcx") == ["abcd", "abce"]


class TestAckReaction:
    """Tests for the optional acknowledgement reaction."""

    @pytest.mark.asyncio
    async def test_reacts_before_running(self, registry, gate, limiter, queue, transport):
        dispatcher = Dispatcher(
            registry, queue, gate, limiter, transport,
            DispatchConfig(owner_id=OWNER, ack_reaction="⏳"),
        )
        register(registry, "work", AsyncMock(return_value=None))

        await dispatcher.handle(make_event(".work", sender=OWNER, message_id="m5"))
        await settle(dispatcher)

        assert transport.reactions == [(OWNER, "⏳", "m5")]
