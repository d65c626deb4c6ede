"""Tests for typing and presence: debounced emitter, idle decay and the consumer set."""

import asyncio

import pytest

from unichat.client import PresenceEmitter, PresenceState, TypingEmitter, TypingTracker
from unichat.client.state import ActiveConversation, Notices
from unichat.schemas.presence import TypingResponse

from tests.helpers import ALICE, BOB, CAROL, FlakyStore


class TypingLog:
    """Typing events seen on the feed, as (user, is_typing)."""

    def __init__(self, feed):
        self.events = []
        feed.subscribe("typing_status", lambda e: self.events.append((e.new["user_id"], e.new["is_typing"])))


# =============================================================================
# Emitter
# =============================================================================


class TestTypingEmitter:

    @pytest.mark.asyncio
    async def test_burst_emits_once_and_keeps_one_timer(self, store, feed, test_settings, conversation_id):
        log = TypingLog(feed)
        emitter = TypingEmitter(store, ALICE, test_settings)

        for text in ("h", "he", "hel", "hell", "hello"):
            await emitter.on_input(conversation_id, text)
            assert emitter.timer_count(conversation_id) == 1

        await feed.drain()
        assert log.events == [(ALICE, True)]
        assert emitter.timer_count() == 1
        await emitter.close()

    @pytest.mark.asyncio
    async def test_idle_decay(self, store, feed, test_settings, conversation_id):
        log = TypingLog(feed)
        emitter = TypingEmitter(store, ALICE, test_settings)

        await emitter.on_input(conversation_id, "hi")
        await asyncio.sleep(test_settings.TYPING_IDLE_SECONDS * 2)
        await emitter.flush()
        await feed.drain()

        assert log.events == [(ALICE, True), (ALICE, False)]
        assert emitter.is_typing(conversation_id) is False
        assert emitter.timer_count() == 0

    @pytest.mark.asyncio
    async def test_keystrokes_restart_timer(self, store, feed, test_settings, conversation_id):
        log = TypingLog(feed)
        emitter = TypingEmitter(store, ALICE, test_settings)
        step = test_settings.TYPING_IDLE_SECONDS / 4

        for text in ("a", "ab", "abc", "abcd", "abcde", "abcdef"):
            await emitter.on_input(conversation_id, text)
            await asyncio.sleep(step)

        # Total elapsed exceeds the idle window, but never without input
        await feed.drain()
        assert log.events == [(ALICE, True)]
        await emitter.close()

    @pytest.mark.asyncio
    async def test_keystroke_right_after_idle_fires_keeps_typing(self, store, feed, test_settings, conversation_id):
        log = TypingLog(feed)
        emitter = TypingEmitter(store, ALICE, test_settings)
        await emitter.on_input(conversation_id, "a")

        # Fire the idle timer by hand, then type before its stop task runs
        emitter._timers[conversation_id].cancel()
        emitter._on_idle(conversation_id)
        await emitter.on_input(conversation_id, "ab")
        await emitter.flush()
        await feed.drain()

        assert emitter.is_typing(conversation_id)
        assert emitter.timer_count(conversation_id) == 1
        assert log.events == [(ALICE, True)]
        await emitter.close()

    @pytest.mark.asyncio
    async def test_stop_and_empty_input(self, store, feed, test_settings, conversation_id):
        log = TypingLog(feed)
        emitter = TypingEmitter(store, ALICE, test_settings)

        await emitter.on_input(conversation_id, "draft")
        await emitter.on_input(conversation_id, "")
        await emitter.stop(conversation_id)
        await feed.drain()

        assert log.events == [(ALICE, True), (ALICE, False)]
        assert emitter.timer_count() == 0

    @pytest.mark.asyncio
    async def test_close_clears_every_conversation(self, store, feed, test_settings, conversation_id):
        other = await store.get_or_create_conversation(ALICE, CAROL)
        emitter = TypingEmitter(store, ALICE, test_settings)
        await emitter.on_input(conversation_id, "x")
        await emitter.on_input(other, "y")

        await emitter.close()

        assert emitter.timer_count() == 0
        assert not emitter.is_typing(conversation_id)
        assert not emitter.is_typing(other)

    @pytest.mark.asyncio
    async def test_write_failure_is_logged_not_raised(self, store, test_settings, conversation_id):
        emitter = TypingEmitter(FlakyStore(store, "set_typing"), ALICE, test_settings)

        await emitter.on_input(conversation_id, "x")

        assert emitter.is_typing(conversation_id)
        assert [n.message for n in emitter.notices.items] == ["Could not update typing status"]
        await emitter.close()


# =============================================================================
# Tracker
# =============================================================================


def typing(user_id, is_typing, conversation_id):
    return TypingResponse(
        conversation_id=conversation_id,
        user_id=user_id,
        is_typing=is_typing,
        updated_at="2026-01-05T12:00:00Z",
    )


class TestTypingTracker:

    def test_excludes_self_and_other_conversations(self):
        active = ActiveConversation()
        active.switch("conv-1")
        tracker = TypingTracker(ALICE, active)

        tracker.handle_typing_event(typing(ALICE, True, "conv-1"))
        tracker.handle_typing_event(typing(BOB, True, "conv-2"))
        assert tracker.typing_users == frozenset()

        tracker.handle_typing_event(typing(BOB, True, "conv-1"))
        assert tracker.typing_users == {BOB}

        tracker.handle_typing_event(typing(BOB, False, "conv-1"))
        assert tracker.typing_users == frozenset()

    def test_reads_active_conversation_on_each_event(self):
        active = ActiveConversation()
        active.switch("conv-1")
        tracker = TypingTracker(ALICE, active)

        active.switch("conv-2")
        tracker.handle_typing_event(typing(BOB, True, "conv-2"))

        assert tracker.typing_users == {BOB}

    def test_no_local_timeout(self):
        active = ActiveConversation()
        active.switch("conv-1")
        tracker = TypingTracker(ALICE, active)

        tracker.handle_typing_event(typing(BOB, True, "conv-1"))

        # Only a later event clears it
        assert tracker.typing_users == {BOB}

    def test_listeners_notified_on_change_only(self):
        active = ActiveConversation()
        active.switch("conv-1")
        tracker = TypingTracker(ALICE, active)
        calls = []
        tracker.add_listener(calls.append)

        tracker.handle_typing_event(typing(BOB, True, "conv-1"))
        tracker.handle_typing_event(typing(BOB, True, "conv-1"))

        assert len(calls) == 1


# =============================================================================
# Presence
# =============================================================================


class TestPresenceEmitter:

    @pytest.mark.asyncio
    async def test_transitions_only(self, store, feed):
        events = []
        feed.subscribe("user_presence", lambda e: events.append(e.new["is_online"]))
        emitter = PresenceEmitter(store, ALICE)

        await emitter.go_online()
        await emitter.go_online()
        await emitter.set_visible(False)
        await emitter.set_visible(False)
        await emitter.set_visible(True)
        await feed.drain()

        assert events == [True, False, True]
        assert emitter.state == PresenceState.ONLINE

    @pytest.mark.asyncio
    async def test_failure_surfaces_notice(self, store):
        notices = Notices()
        emitter = PresenceEmitter(FlakyStore(store, "set_presence"), ALICE, notices)

        await emitter.go_online()

        assert emitter.state == PresenceState.ONLINE
        assert [n.level for n in notices.items] == ["error"]
