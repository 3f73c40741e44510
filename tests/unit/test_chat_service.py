"""Tests for conversations and chat messages."""

import pytest

from tradelink.data.schema import ConversationStatus, ConversationType
from tradelink.services import (
    ChatService,
    ConflictError,
    CreditService,
    NotFoundError,
    PermissionDeniedError,
    SupplierRestrictedError,
    ValidationError,
)


@pytest.fixture
def chat(session):
    return ChatService(session)


@pytest.fixture
def conversation(chat, users):
    return chat.create_conversation(
        users["buyer"],
        ConversationType.BUYER_SUPPLIER,
        users["supplier"].user_id,
        subject="Bracket pricing",
        initial_message="Can you do 2000 units?",
    )


class TestCreateConversation:
    """Tests for starting conversations."""

    def test_roles_are_placed(self, conversation, chat, users):
        assert conversation.buyer_id == users["buyer"].user_id
        assert conversation.supplier_id == users["supplier"].user_id
        assert conversation.admin_id is None
        assert conversation.status == ConversationStatus.ACTIVE.value
        assert conversation.last_message_at is not None

        messages = chat.get_messages(conversation.id, users["supplier"])
        assert [m.message for m in messages] == ["Can you do 2000 units?"]
        assert messages[0].sender_type == "buyer"

    def test_supplier_starts_with_buyer(self, chat, users):
        conversation = chat.create_conversation(
            users["supplier"], "buyer_supplier", users["buyer"].user_id
        )
        assert conversation.supplier_id == users["supplier"].user_id
        assert conversation.buyer_id == users["buyer"].user_id

    def test_role_must_match_type(self, chat, users):
        with pytest.raises(PermissionDeniedError):
            chat.create_conversation(users["supplier"], ConversationType.BUYER_ADMIN, users["admin"].user_id)

    def test_participant_must_have_counter_role(self, chat, users):
        with pytest.raises(ValidationError):
            chat.create_conversation(
                users["buyer"], ConversationType.BUYER_SUPPLIER, users["other_buyer"].user_id
            )

    def test_cannot_talk_to_yourself(self, chat, users):
        with pytest.raises(ValidationError):
            chat.create_conversation(users["buyer"], ConversationType.BUYER_SUPPLIER, users["buyer"].user_id)

    def test_restricted_supplier_blocked(self, chat, conversation, session, users):
        CreditService(session).set_restriction(users["supplier"].user_id, True, "Overdue commission")

        with pytest.raises(SupplierRestrictedError):
            chat.create_conversation(
                users["supplier"], ConversationType.SUPPLIER_ADMIN, users["admin"].user_id
            )
        with pytest.raises(SupplierRestrictedError):
            chat.send_message(conversation.id, users["supplier"], "Sure")

        # Buyers can still write to a restricted supplier
        chat.send_message(conversation.id, users["buyer"], "Hello?")


class TestMessages:
    """Tests for sending, paging and reading messages."""

    def test_outsiders_cannot_read(self, chat, conversation, users):
        with pytest.raises(NotFoundError):
            chat.get_messages(conversation.id, users["other_buyer"])

    def test_empty_message_rejected(self, chat, conversation, users):
        with pytest.raises(ValidationError):
            chat.send_message(conversation.id, users["buyer"], "   ")

    def test_paging_backwards(self, chat, conversation, users):
        sent = [chat.send_message(conversation.id, users["supplier"], f"reply {i}") for i in range(4)]

        latest = chat.get_messages(conversation.id, users["buyer"], limit=2)
        assert [m.message for m in latest] == ["reply 2", "reply 3"]

        earlier = chat.get_messages(conversation.id, users["buyer"], limit=2, before_id=sent[2].id)
        assert [m.message for m in earlier] == ["reply 0", "reply 1"]

    def test_unread_counts_and_mark_read(self, chat, conversation, users):
        chat.send_message(conversation.id, users["buyer"], "Also need washers")

        counts = chat.unread_counts(users["supplier"])
        assert counts["total"] == 2
        assert counts["conversations"] == 1
        assert counts["by_conversation"] == {conversation.id: 2}
        # Own messages never count as unread
        assert chat.unread_counts(users["buyer"])["total"] == 0

        assert chat.mark_read(conversation.id, users["supplier"]) == 2
        assert chat.mark_read(conversation.id, users["supplier"]) == 0
        assert chat.unread_counts(users["supplier"])["total"] == 0

    def test_search_limited_to_own_conversations(self, chat, conversation, users):
        chat.create_conversation(
            users["other_buyer"],
            ConversationType.BUYER_SUPPLIER,
            users["gold_supplier"].user_id,
            initial_message="Need 2000 units of resin",
        )

        results = chat.search_messages(users["buyer"], "2000")
        assert [m.conversation_id for m in results] == [conversation.id]

        with pytest.raises(ValidationError):
            chat.search_messages(users["buyer"], " ")


class TestConversationStatus:
    """Tests for archive, close and assignment."""

    def test_message_reactivates_archived(self, chat, conversation, users):
        chat.archive(conversation.id, users["buyer"])
        assert conversation.status == ConversationStatus.ARCHIVED.value

        chat.send_message(conversation.id, users["supplier"], "Yes we can")
        assert conversation.status == ConversationStatus.ACTIVE.value

    def test_closed_conversation_rejects_messages(self, chat, conversation, users):
        chat.close(conversation.id, users["admin"])
        with pytest.raises(ConflictError):
            chat.send_message(conversation.id, users["buyer"], "Hello?")
        with pytest.raises(ConflictError):
            chat.archive(conversation.id, users["buyer"])

    def test_only_admins_close(self, chat, conversation, users):
        with pytest.raises(PermissionDeniedError):
            chat.close(conversation.id, users["buyer"])

    def test_only_participants_archive(self, chat, conversation, users):
        with pytest.raises(PermissionDeniedError):
            chat.archive(conversation.id, users["admin"])

    def test_assign_admin(self, chat, conversation, users):
        chat.assign(conversation.id, users["mediator"].user_id, users["admin"])

        assert conversation.assigned_admin == users["mediator"].user_id
        listed = chat.list_conversations(users["mediator"])
        assert [c.id for c in listed] == [conversation.id]
        assert chat.typing_recipients(conversation.id, users["buyer"]) == {
            users["supplier"].user_id,
            users["mediator"].user_id,
        }

    def test_assignee_must_be_admin(self, chat, conversation, users):
        with pytest.raises(ValidationError):
            chat.assign(conversation.id, users["buyer"].user_id, users["admin"])

    def test_list_by_status(self, chat, conversation, users):
        other = chat.create_conversation(
            users["buyer"], ConversationType.BUYER_ADMIN, users["admin"].user_id, subject="Account help"
        )
        chat.archive(other.id, users["buyer"])

        active = chat.list_conversations(users["buyer"], status=ConversationStatus.ACTIVE)
        assert [c.id for c in active] == [conversation.id]
        assert len(chat.list_conversations(users["buyer"])) == 2
