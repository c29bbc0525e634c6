"""
Unit tests for the messaging state reducers and store.

Tests cover:
- Idempotent merging of pushed messages and attachments
- Directory promotion and ordering
- In-place reconciliation of speculative messages
- History replacement while sends are in flight
- Store flags and listeners
"""

from dataclasses import replace
from datetime import timedelta

from HipoTrack.core.client.messaging.models import Attachment, ConversationPreview, DeliveryStatus
from HipoTrack.core.client.messaging.services.state import (
    MessagingStore,
    append_message,
    assign_server_id,
    merge_attachment,
    merge_pushed_message,
    promote_conversation,
    reconcile_message,
    replace_history,
    set_message_status,
    sort_conversations,
)

from .conftest import T0


def _attachment(attachment_id, message_id, name="stub.pdf", status=DeliveryStatus.SENT):
    return Attachment(
        id=attachment_id,
        message_id=message_id,
        name=name,
        url=f"https://files.test/{name}",
        content_type="application/pdf",
        size=4,
        created_at=T0,
        status=status,
    )


def _conversation(conversation_id, minute):
    return ConversationPreview(id=conversation_id, title=None, updated_at=T0 + timedelta(minutes=minute))


class TestDirectoryReducers:
    """Tests for conversation ordering and promotion."""

    def test_sort_newest_first(self):
        """Conversations are ordered by last update, newest first."""
        result = sort_conversations([_conversation("A", 1), _conversation("B", 3), _conversation("C", 2)])
        assert [c.id for c in result] == ["B", "C", "A"]

    def test_promote_moves_to_front(self, data):
        """A new last message moves its conversation to the top."""
        conversations = (_conversation("A", 3), _conversation("B", 2), _conversation("C", 1))
        message = data.message("m-9", conversation_id="C", minute=10)

        result = promote_conversation(conversations, "C", message, message.created_at)

        assert [c.id for c in result] == ["C", "A", "B"]
        assert result[0].last_message == message
        assert result[0].updated_at == message.created_at

    def test_promote_unknown_conversation(self, data):
        """Promoting an uncached conversation leaves the directory alone."""
        conversations = (_conversation("A", 1),)
        result = promote_conversation(conversations, "Z", data.message("m-1", "Z"), T0)
        assert result is conversations


class TestMessageReducers:
    """Tests for message list reducers."""

    def test_merge_pushed_is_idempotent(self, data):
        """Merging the same pushed message twice equals merging it once."""
        message = data.message("m-1")
        once = merge_pushed_message({}, message)
        twice = merge_pushed_message(once, message)

        assert twice == once
        assert once["C1"] == (message,)

    def test_merge_pushed_recognises_server_id(self, data):
        """A push for a message already tracked as speculative is ignored."""
        speculative = data.pending("tmp-1", server_id="m-1")
        state = {"C1": (speculative,)}

        result = merge_pushed_message(state, data.message("m-1"))

        assert result["C1"] == (speculative,)

    def test_merge_pushed_appends_in_arrival_order(self, data):
        """New pushed messages go to the end of their conversation."""
        state = append_message({}, data.message("m-1"))
        state = merge_pushed_message(state, data.message("m-2"))
        state = merge_pushed_message(state, data.message("x-1", conversation_id="C2"))

        assert [m.id for m in state["C1"]] == ["m-1", "m-2"]
        assert [m.id for m in state["C2"]] == ["x-1"]

    def test_set_status_and_server_id(self, data):
        """Status and server id change in place and keep the temporary id."""
        state = {"C1": (data.pending("tmp-1"), data.message("m-0"))}
        state = assign_server_id(state, "C1", "tmp-1", "m-5")
        state = set_message_status(state, "C1", "tmp-1", DeliveryStatus.ERROR)

        first = state["C1"][0]
        assert first.id == "tmp-1"
        assert first.server_id == "m-5"
        assert first.status == DeliveryStatus.ERROR
        assert state["C1"][1].id == "m-0"

    def test_set_status_unknown_message(self, data):
        """Unknown ids leave the state unchanged."""
        state = {"C1": (data.message("m-0"),)}
        assert set_message_status(state, "C1", "nope", DeliveryStatus.ERROR) is state

    def test_reconcile_in_place(self, data):
        """The confirmed message takes the speculative entry's position."""
        state = {"C1": (data.message("m-1"), data.pending("tmp-1"), data.message("m-2"))}
        final = data.message("m-3", content="hello")

        result = reconcile_message(state, "C1", "tmp-1", final)

        assert [m.id for m in result["C1"]] == ["m-1", "m-3", "m-2"]
        assert result["C1"][1].status == DeliveryStatus.SENT

    def test_reconcile_drops_pushed_duplicate(self, data):
        """A push that landed before reconciliation does not leave a duplicate."""
        state = {"C1": (data.pending("tmp-1"), data.message("m-2"), data.message("m-3"))}
        final = data.message("m-3")

        result = reconcile_message(state, "C1", "tmp-1", final)

        assert [m.id for m in result["C1"]] == ["m-3", "m-2"]

    def test_reconcile_without_speculative_entry(self, data):
        """With nothing to replace, e.g. after a reset, the state is unchanged."""
        state = {"C1": (data.message("m-1"),)}
        assert reconcile_message(state, "C1", "tmp-gone", data.message("m-4")) is state
        assert reconcile_message({}, "C1", "tmp-gone", data.message("m-4")) == {}

    def test_merge_attachment_appends_and_replaces(self, data):
        """Attachments merge by id into their owner, in any conversation."""
        state = {
            "C1": (data.message("m-1"),),
            "C2": (data.message("m-2", conversation_id="C2"),),
        }
        first = _attachment("a-1", "m-2")
        state = merge_attachment(state, first)
        state = merge_attachment(state, first)
        renamed = replace(first, name="renamed.pdf")
        state = merge_attachment(state, renamed)

        assert state["C2"][0].attachments == (renamed,)
        assert state["C1"][0].attachments == ()

    def test_merge_attachment_for_speculative_owner(self, data):
        """An attachment for a message known only by server id finds it."""
        state = {"C1": (data.pending("tmp-1", server_id="m-7"),)}
        result = merge_attachment(state, _attachment("a-1", "m-7"))
        assert [a.id for a in result["C1"][0].attachments] == ["a-1"]

    def test_merge_attachment_unknown_owner(self, data):
        """Attachments for uncached messages are dropped."""
        state = {"C1": (data.message("m-1"),)}
        assert merge_attachment(state, _attachment("a-1", "m-404")) is state

    def test_replace_history_keeps_in_flight_sends(self, data):
        """A refetch keeps speculative entries the backend has not returned."""
        state = {"C1": (data.message("m-old"), data.pending("tmp-1"), data.pending("tmp-2", server_id="m-2"))}
        fetched = [data.message("m-1"), data.message("m-2")]

        result = replace_history(state, "C1", fetched)

        assert [m.id for m in result["C1"]] == ["m-1", "m-2", "tmp-1"]


class TestMessagingStore:
    """Tests for the shared store."""

    def setup_method(self):
        """Set up test fixtures."""
        self.store = MessagingStore()
        self.events = []
        self.store.add_listener(lambda store, name: self.events.append(name))

    def test_update_notifies(self, data):
        """Every update notifies listeners with the changed field."""
        self.store.update_messages(append_message, data.message("m-1"))
        self.store.select("C1")

        assert self.events == ["messages", "selected_conversation_id"]
        assert self.store.messages_for("C1")[0].id == "m-1"
        assert self.store.messages_for(None) == ()

    def test_sending_counts_per_conversation(self):
        """The flag stays up until every send has finished."""
        self.store.begin_send("C1")
        self.store.begin_send("C1")
        self.store.begin_send("C2")
        self.store.end_send("C1")

        assert self.store.sending
        assert self.store.is_sending("C1")

        self.store.end_send("C1")
        assert not self.store.is_sending("C1")
        assert self.store.is_sending("C2")

        self.store.end_send("C2")
        assert not self.store.sending

    def test_failing_listener_does_not_block(self):
        """A listener that raises does not stop other listeners."""
        def broken(store, name):
            raise RuntimeError("boom")

        self.store.add_listener(broken)
        self.store.set_error("oops")

        assert self.store.error == "oops"
        assert self.events == ["error"]

    def test_reset(self, data):
        """Reset drops cached data and flags."""
        self.store.update_messages(append_message, data.message("m-1"))
        self.store.begin_send("C1")
        self.store.set_error("oops")

        self.store.reset()

        assert self.store.messages_by_conversation == {}
        assert not self.store.sending
        assert self.store.error is None
        assert self.events[-1] == "reset"

    def test_remove_listener(self):
        """Removed listeners are not called again."""
        listener = self.store._listeners[0]
        self.store.remove_listener(listener)
        self.store.set_error("x")
        assert self.events == []
