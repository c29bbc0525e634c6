"""
Tests for the conversation directory loader.
"""

import pytest

from HipoTrack.core.client.messaging.services import ConversationDirectoryLoader, MessagingStore
from HipoTrack.core.client.utils.exceptions import BackendError


class TestConversationDirectoryLoader:
    """Tests for loading the viewer's conversations."""

    @pytest.mark.asyncio
    async def test_no_viewer(self, seeded_backend, store):
        """Without a viewer nothing is fetched."""
        loader = ConversationDirectoryLoader(seeded_backend, store)

        assert await loader.load(None) == ()
        assert seeded_backend.calls == []

    @pytest.mark.asyncio
    async def test_load_sorted_and_selects_first(self, seeded_backend, store, borrower):
        """Conversations come back newest first and the newest is selected."""
        loader = ConversationDirectoryLoader(seeded_backend, store)

        conversations = await loader.load(borrower)

        assert [c.id for c in conversations] == ["C2", "C1"]
        assert store.conversations == conversations
        assert store.selected_conversation_id == "C2"
        assert conversations[0].last_message.content == "Appraisal scheduled"
        assert conversations[0].last_message.sender.display_name == "Ray Processor"

    @pytest.mark.asyncio
    async def test_keeps_existing_selection(self, seeded_backend, borrower):
        """An existing selection is not overridden."""
        store = MessagingStore(selected_conversation_id="C1")
        await ConversationDirectoryLoader(seeded_backend, store).load(borrower)
        assert store.selected_conversation_id == "C1"

    @pytest.mark.asyncio
    async def test_only_member_conversations(self, seeded_backend, store, officer):
        """Viewers only see conversations they belong to."""
        conversations = await ConversationDirectoryLoader(seeded_backend, store).load(officer)
        assert [c.id for c in conversations] == ["C1"]

    @pytest.mark.asyncio
    async def test_loading_flag(self, seeded_backend, store, borrower):
        """The loading flag is raised for the duration of the fetch."""
        flags = []
        store.add_listener(
            lambda s, name: flags.append(s.loading_conversations) if name == "loading_conversations" else None
        )

        await ConversationDirectoryLoader(seeded_backend, store).load(borrower)

        assert flags == [True, False]
        assert not store.loading_conversations

    @pytest.mark.asyncio
    async def test_failure_keeps_previous_directory(self, seeded_backend, store, borrower):
        """A failed reload keeps what was loaded and records the error."""
        loader = ConversationDirectoryLoader(seeded_backend, store)
        loaded = await loader.load(borrower)

        seeded_backend.fail("list_conversations_for_user", BackendError("permission denied for table"))
        result = await loader.load(borrower)

        assert result == loaded
        assert store.conversations == loaded
        assert store.error == "permission denied for table"
        assert not store.loading_conversations
