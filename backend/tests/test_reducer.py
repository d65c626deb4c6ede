"""
Tests for the pure timeline reducer.

Property-based tests check the ordering and deduplication invariants under
arbitrary arrival orders of echoes, acknowledgments and redeliveries.
"""

from datetime import timedelta

import pytest
from hypothesis import given, settings, strategies as st

from unichat.client import reducer
from unichat.client.reducer import EntryState, LocalReaction, TimelineEntry
from unichat.schemas.message import DeliveryStatus, ReactionKind

from tests.helpers import ALICE, BASE_TIME, BOB, make_message


WINDOW = timedelta(seconds=2)


def placeholder(content="hello", at=BASE_TIME, local_id="temp-1", sender_id=ALICE):
    return TimelineEntry(
        local_id=local_id,
        conversation_id="conv-1",
        sender_id=sender_id,
        content=content,
        created_at=at,
        state=EntryState.PENDING,
    )


def ids(entries):
    return [e.id for e in entries]


# =============================================================================
# Properties
# =============================================================================


@settings(max_examples=200, deadline=None)
@given(
    offsets=st.lists(st.integers(min_value=0, max_value=10_000), min_size=1, max_size=12, unique=True),
    data=st.data(),
)
def test_order_is_by_timestamp_whatever_the_arrival_order(offsets, data):
    messages = [
        make_message(f"m{i}", sender_id=BOB, at=BASE_TIME + timedelta(milliseconds=ms))
        for i, ms in enumerate(offsets)
    ]
    arrival = data.draw(st.permutations(messages))
    # At-least-once delivery: some events arrive twice
    redelivered = data.draw(st.lists(st.sampled_from(messages), max_size=5))

    entries = ()
    for message in list(arrival) + redelivered:
        entries = reducer.merge_incoming(entries, message, WINDOW)

    expected = sorted(messages, key=lambda m: (m.created_at, m.id))
    assert ids(entries) == [m.id for m in expected]


@settings(max_examples=300, deadline=None)
@given(
    contents=st.lists(st.sampled_from(["hi", "ok", "on my way"]), min_size=1, max_size=4),
    data=st.data(),
)
def test_sends_never_show_twice(contents, data):
    """Placeholder, echo, acknowledgment and redelivery in any order collapse to one entry per send."""
    placeholders = []
    messages = []
    for i, content in enumerate(contents):
        at = BASE_TIME + timedelta(milliseconds=100 * i)
        lag = data.draw(st.integers(min_value=1, max_value=1500))
        placeholders.append(placeholder(content, at=at, local_id=f"temp-{i}"))
        messages.append(make_message(content, at=at + timedelta(milliseconds=lag), message_id=f"msg-{i}"))

    steps = []
    for i in range(len(contents)):
        steps.append(("confirm", i))
        steps.append(("echo", i))
        if data.draw(st.booleans()):
            steps.append(("echo", i))
    steps = data.draw(st.permutations(steps))

    entries = ()
    for p in placeholders:
        entries = reducer.add_placeholder(entries, p)

    for kind, i in steps:
        if kind == "confirm":
            entries = reducer.confirm(entries, placeholders[i].local_id, messages[i])
        else:
            entries = reducer.merge_incoming(entries, messages[i], WINDOW)

        confirmed_ids = [e.id for e in entries if e.id is not None]
        assert len(confirmed_ids) == len(set(confirmed_ids))
        assert list(entries) == sorted(entries, key=lambda e: e.sort_key)

    assert sorted(ids(entries)) == sorted(m.id for m in messages)
    assert all(e.state == EntryState.CONFIRMED for e in entries)


# =============================================================================
# Optimistic send
# =============================================================================


class TestOptimisticSend:

    def test_confirm_keeps_local_id(self):
        entries = reducer.add_placeholder((), placeholder())
        message = make_message(at=BASE_TIME + timedelta(milliseconds=40))

        entries = reducer.confirm(entries, "temp-1", message)

        [entry] = entries
        assert entry.local_id == "temp-1"
        assert entry.id == message.id
        assert entry.created_at == message.created_at
        assert entry.state == EntryState.CONFIRMED

    def test_echo_before_ack(self):
        entries = reducer.add_placeholder((), placeholder())
        message = make_message(at=BASE_TIME + timedelta(milliseconds=40))

        entries = reducer.merge_incoming(entries, message, WINDOW)
        entries = reducer.confirm(entries, "temp-1", message)

        assert ids(entries) == [message.id]

    def test_echo_outside_window_is_a_new_message(self):
        entries = reducer.add_placeholder((), placeholder())
        late = make_message(at=BASE_TIME + timedelta(seconds=5))

        entries = reducer.merge_incoming(entries, late, WINDOW)

        assert len(entries) == 2
        assert entries[0].state == EntryState.PENDING

    def test_echo_from_someone_else_does_not_match(self):
        entries = reducer.add_placeholder((), placeholder())
        theirs = make_message(sender_id=BOB, at=BASE_TIME + timedelta(milliseconds=10))

        entries = reducer.merge_incoming(entries, theirs, WINDOW)

        assert [e.state for e in entries] == [EntryState.PENDING, EntryState.CONFIRMED]

    def test_fail_keeps_entry_visible(self):
        entries = reducer.add_placeholder((), placeholder())

        entries = reducer.fail(entries, "temp-1", "network down")

        [entry] = entries
        assert entry.state == EntryState.FAILED
        assert entry.error == "network down"
        assert entry.content == "hello"

    def test_failed_entry_is_not_an_echo_target(self):
        entries = reducer.fail(reducer.add_placeholder((), placeholder()), "temp-1", "x")

        entries = reducer.merge_incoming(entries, make_message(), WINDOW)

        assert len(entries) == 2

    def test_remove(self):
        entries = reducer.add_placeholder((), placeholder())
        assert reducer.remove(entries, "temp-1") == ()

    def test_page_containing_pending_send(self):
        """A page fetched mid-send already holds the stored copy."""
        entries = reducer.add_placeholder((), placeholder())
        stored = make_message(at=BASE_TIME + timedelta(milliseconds=30))

        entries = reducer.merge_page(entries, [stored], WINDOW)

        assert ids(entries) == [stored.id]


# =============================================================================
# Reactions and status
# =============================================================================


class TestReactions:

    def setup_method(self):
        self.message = make_message(sender_id=BOB)
        self.entries = reducer.merge_incoming((), self.message, WINDOW)

    def test_optimistic_then_echo_does_not_duplicate(self):
        optimistic = LocalReaction(self.message.id, ALICE, ReactionKind.HEART)
        echo = LocalReaction(self.message.id, ALICE, ReactionKind.HEART, id="r-1", created_at=BASE_TIME)

        entries = reducer.apply_reaction_added(self.entries, optimistic)
        entries = reducer.apply_reaction_added(entries, echo)
        entries = reducer.apply_reaction_added(entries, echo)

        [entry] = entries
        assert entry.reactions == (echo,)

    def test_same_user_different_kinds(self):
        entries = reducer.apply_reaction_added(self.entries, LocalReaction(self.message.id, ALICE, ReactionKind.HEART))
        entries = reducer.apply_reaction_added(entries, LocalReaction(self.message.id, ALICE, ReactionKind.WOW))

        assert len(entries[0].reactions) == 2

    def test_remove_by_key(self):
        entries = reducer.apply_reaction_added(
            self.entries, LocalReaction(self.message.id, ALICE, ReactionKind.HEART, id="r-1")
        )

        entries = reducer.apply_reaction_removed(entries, self.message.id, ALICE, "heart")

        assert entries[0].reactions == ()

    def test_unknown_message_is_ignored(self):
        entries = reducer.apply_reaction_added(self.entries, LocalReaction("other", ALICE, ReactionKind.HEART))
        assert entries is self.entries


class TestStatus:

    def test_moves_forward_only(self):
        message = make_message()
        entries = reducer.merge_incoming((), message, WINDOW)

        entries = reducer.apply_status(entries, message.id, DeliveryStatus.READ)
        entries = reducer.apply_status(entries, message.id, DeliveryStatus.DELIVERED)

        assert entries[0].status == DeliveryStatus.READ

    def test_refresh_does_not_downgrade(self):
        message = make_message()
        entries = reducer.apply_status(reducer.merge_incoming((), message, WINDOW), message.id, "read")

        entries = reducer.merge_incoming(entries, message, WINDOW)

        assert entries[0].status == DeliveryStatus.READ

    @pytest.mark.parametrize("viewer,expected", [(BOB, DeliveryStatus.READ), (ALICE, DeliveryStatus.SENT)])
    def test_mark_incoming_read(self, viewer, expected):
        entries = reducer.merge_incoming((), make_message(sender_id=ALICE), WINDOW)

        entries = reducer.mark_incoming_read(entries, viewer)

        assert entries[0].status == expected
