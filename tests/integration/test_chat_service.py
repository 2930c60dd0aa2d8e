"""Integration tests for the chat thread manager against SQLite."""

import asyncio

import pytest
from sqlalchemy import func, select

from amora.core.exceptions import (
    InternalError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from amora.database import (
    DELETED_MESSAGE_PLACEHOLDER,
    ChatStatus,
    Conversation,
    Message,
    UserType,
)
from amora.repositories import ChatRepository


@pytest.fixture
async def pair(make_user):
    return await make_user("alice"), await make_user("bob")


@pytest.fixture
async def bot_pair(make_user):
    return await make_user("alice"), await make_user("luna", kind=UserType.BOT.value)


async def _message_count(session, chat_id):
    return await session.scalar(
        select(func.count(Message.id)).where(Message.chat_id == chat_id)
    )


class TestConversationProvisioning:

    async def test_canonical_order_and_single_row(self, session, pair, chat_service):
        alice, bob = pair

        first, created = await chat_service.get_or_create_conversation(bob.id, alice.id)
        second, created_again = await chat_service.get_or_create_conversation(alice.id, bob.id)

        assert created and not created_again
        assert first.id == second.id
        assert first.participant_1_id == min(alice.id, bob.id)
        assert first.side(alice.id).status == ChatStatus.ACTIVE.value
        assert first.side(bob.id).unread_count == 0

    async def test_same_user_rejected(self, pair, chat_service):
        alice, _ = pair
        with pytest.raises(ValidationError):
            await chat_service.get_or_create_conversation(alice.id, alice.id)

    async def test_lost_race_reads_winner(self, session, pair, chat_service, monkeypatch):
        alice, bob = pair
        winner, _ = await chat_service.get_or_create_conversation(alice.id, bob.id)

        repo: ChatRepository = chat_service.chat_repo
        original = repo.get_by_pair
        lookups = []

        async def miss_first_lookup(user_a, user_b, for_update=False):
            lookups.append((user_a, user_b))
            if len(lookups) == 1:
                return None
            return await original(user_a, user_b, for_update)

        monkeypatch.setattr(repo, "get_by_pair", miss_first_lookup)

        conversation, created = await chat_service.get_or_create_conversation(bob.id, alice.id)

        assert not created
        assert conversation.id == winner.id
        assert len(lookups) == 2
        assert await session.scalar(select(func.count(Conversation.id))) == 1

    async def test_concurrent_provisioning_creates_one_row(self, session, pair, in_own_session):
        alice_id, bob_id = (user.id for user in pair)

        results = await asyncio.gather(
            in_own_session(lambda chat, _: chat.get_or_create_conversation(alice_id, bob_id)),
            in_own_session(lambda chat, _: chat.get_or_create_conversation(bob_id, alice_id)),
        )

        assert sorted(created for _, created in results) == [False, True]
        assert results[0][0].id == results[1][0].id
        assert await session.scalar(select(func.count(Conversation.id))) == 1


class TestConcurrentSends:
    """First messages racing on separate connections."""

    async def test_opposite_first_messages_share_one_chat(self, session, pair, in_own_session):
        alice_id, bob_id = (user.id for user in pair)

        results = await asyncio.gather(
            in_own_session(
                lambda chat, _: chat.send_message(alice_id, "Hi Bob", receiver_id=bob_id)
            ),
            in_own_session(
                lambda chat, _: chat.send_message(bob_id, "Hi Alice", receiver_id=alice_id)
            ),
        )

        chat_id = results[0].conversation.id
        assert results[1].conversation.id == chat_id
        assert await session.scalar(select(func.count(Conversation.id))) == 1
        assert await _message_count(session, chat_id) == 2

        conversation = await session.get(Conversation, chat_id)
        assert conversation.side(alice_id).unread_count == 1
        assert conversation.side(bob_id).unread_count == 1

    async def test_concurrent_sends_keep_unread_exact(self, session, pair, chat_service, in_own_session):
        alice, bob = pair
        chat_id = (await chat_service.send_message(alice.id, "first", receiver_id=bob.id)).conversation.id
        await session.commit()

        await asyncio.gather(*(
            in_own_session(
                lambda chat, _, n=n: chat.send_message(alice.id, f"msg {n}", chat_id=chat_id)
            )
            for n in range(5)
        ))

        conversation = await session.get(Conversation, chat_id, populate_existing=True)
        assert conversation.side(bob.id).unread_count == 6
        assert await _message_count(session, chat_id) == 6


class TestSendMessage:

    async def test_first_message_creates_chat(self, session, pair, chat_service):
        alice, bob = pair

        result = await chat_service.send_message(alice.id, "Hi Bob", receiver_id=bob.id)

        conversation = result.conversation
        assert result.message.body == "Hi Bob"
        assert result.message.sender_kind == "human"
        assert result.bot_message is None
        assert conversation.last_message_id == result.message.id
        assert conversation.side(bob.id).unread_count == 1
        assert conversation.side(alice.id).unread_count == 0

    async def test_send_by_chat_id(self, pair, chat_service):
        alice, bob = pair
        first = await chat_service.send_message(alice.id, "Hi", receiver_id=bob.id)

        reply = await chat_service.send_message(bob.id, "Hey", chat_id=first.conversation.id)

        assert reply.message.receiver_id == alice.id
        assert reply.conversation.side(alice.id).unread_count == 1
        assert reply.conversation.side(bob.id).unread_count == 1

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"body": "hi"},
            {"body": "hi", "chat_id": 1, "receiver_id": 2},
            {"body": "   ", "receiver_id": 2},
        ],
    )
    async def test_malformed_input(self, pair, chat_service, kwargs):
        alice, _ = pair
        with pytest.raises(ValidationError):
            await chat_service.send_message(alice.id, **kwargs)

    async def test_send_to_self_rejected(self, pair, chat_service):
        alice, _ = pair
        with pytest.raises(ValidationError):
            await chat_service.send_message(alice.id, "me", receiver_id=alice.id)

    async def test_attachments_without_body(self, pair, chat_service):
        alice, bob = pair

        result = await chat_service.send_message(
            alice.id, "", receiver_id=bob.id, attachments=["https://cdn.test/a.jpg"]
        )

        assert result.message.message_type == "media"
        assert result.message.attachments == ["https://cdn.test/a.jpg"]

    async def test_unknown_chat_and_receiver(self, pair, make_user, chat_service):
        # Plain ids: a failed transaction expires loaded rows
        alice_id = pair[0].id
        ghost_id = (await make_user("ghost", is_active=False)).id

        with pytest.raises(NotFoundError):
            await chat_service.send_message(alice_id, "hi", chat_id=999)
        with pytest.raises(NotFoundError):
            await chat_service.send_message(alice_id, "hi", receiver_id=ghost_id)

    async def test_outsider_cannot_send(self, pair, make_user, chat_service):
        alice, bob = pair
        eve = await make_user("eve")
        result = await chat_service.send_message(alice.id, "Hi", receiver_id=bob.id)

        with pytest.raises(PermissionDeniedError):
            await chat_service.send_message(eve.id, "psst", chat_id=result.conversation.id)

    async def test_reply_to_must_be_in_chat(self, pair, make_user, chat_service):
        alice, bob = pair
        carol = await make_user("carol")
        ours = await chat_service.send_message(alice.id, "Hi", receiver_id=bob.id)
        other = await chat_service.send_message(alice.id, "Hi", receiver_id=carol.id)

        reply = await chat_service.send_message(
            bob.id, "Hello", chat_id=ours.conversation.id, reply_to_id=ours.message.id
        )
        assert reply.message.reply_to_id == ours.message.id

        with pytest.raises(ValidationError):
            await chat_service.send_message(
                bob.id, "Hello", chat_id=ours.conversation.id, reply_to_id=other.message.id
            )

    async def test_blocking_stops_only_the_blocker(self, pair, chat_service):
        alice_id, bob_id = pair[0].id, pair[1].id
        chat_id = (await chat_service.send_message(alice_id, "Hi", receiver_id=bob_id)).conversation.id

        await chat_service.set_blocked(alice_id, chat_id)

        with pytest.raises(PermissionDeniedError):
            await chat_service.send_message(alice_id, "again", chat_id=chat_id)
        await chat_service.send_message(bob_id, "still here", chat_id=chat_id)

        await chat_service.set_blocked(bob_id, chat_id)
        with pytest.raises(PermissionDeniedError):
            await chat_service.send_message(bob_id, "bye", chat_id=chat_id)

    async def test_new_message_resurfaces_deleted_chat(self, pair, chat_service):
        alice, bob = pair
        chat_id = (await chat_service.send_message(alice.id, "Hi", receiver_id=bob.id)).conversation.id
        await chat_service.delete_conversation(bob.id, chat_id)

        result = await chat_service.send_message(alice.id, "Hello?", chat_id=chat_id)

        assert result.conversation.side(bob.id).status == ChatStatus.ACTIVE.value
        assert result.conversation.side(bob.id).unread_count == 1


class TestBotReplies:

    async def test_bot_reply_appended(self, session, bot_pair, chat_service, replying_generator):
        alice, luna = bot_pair

        result = await chat_service.send_message(alice.id, "Hi Luna", receiver_id=luna.id)

        bot_message = result.bot_message
        assert bot_message is not None
        assert bot_message.sender_kind == "bot"
        assert bot_message.sender_id == luna.id
        assert bot_message.reply_to_id == result.message.id
        assert bot_message.body == replying_generator.reply
        assert replying_generator.calls == [(result.conversation.id, "Hi Luna")]

        conversation = await session.get(Conversation, result.conversation.id)
        await session.refresh(conversation)
        assert conversation.last_message_id == bot_message.id
        assert conversation.side(alice.id).unread_count == 1
        assert conversation.side(luna.id).unread_count == 1

    async def test_generator_failure_keeps_human_message(
        self, session, bot_pair, build_chat_service, failing_generator
    ):
        alice, luna = bot_pair
        service = build_chat_service(failing_generator)

        result = await service.send_message(alice.id, "Hi Luna", receiver_id=luna.id)

        assert result.bot_message is None
        assert await _message_count(session, result.conversation.id) == 1
        assert result.conversation.side(alice.id).unread_count == 0

    async def test_generator_timeout_keeps_human_message(
        self, session, bot_pair, build_chat_service, slow_generator
    ):
        alice, luna = bot_pair
        service = build_chat_service(slow_generator, reply_timeout=0.05)

        result = await service.send_message(alice.id, "Hi Luna", receiver_id=luna.id)

        assert result.bot_message is None
        assert await _message_count(session, result.conversation.id) == 1

    async def test_unexpected_generator_error_is_contained(
        self, bot_pair, build_chat_service, broken_generator
    ):
        alice, luna = bot_pair
        service = build_chat_service(broken_generator)

        result = await service.send_message(alice.id, "Hi", receiver_id=luna.id)

        assert result.bot_message is None

    async def test_store_failure_while_saving_reply(
        self, session, bot_pair, chat_service, monkeypatch
    ):
        alice, luna = bot_pair
        repo = chat_service.message_repo
        original = repo.create

        async def refuse_bot_messages(**data):
            if data.get("sender_kind") == "bot":
                raise InternalError()
            return await original(**data)

        monkeypatch.setattr(repo, "create", refuse_bot_messages)

        result = await chat_service.send_message(alice.id, "Hi Luna", receiver_id=luna.id)

        assert result.bot_message is None
        assert result.message.body == "Hi Luna"
        assert result.conversation.last_message_id == result.message.id
        assert result.conversation.side(alice.id).unread_count == 0
        assert await _message_count(session, result.conversation.id) == 1

    async def test_human_recipient_never_calls_generator(self, pair, chat_service, replying_generator):
        alice, bob = pair

        await chat_service.send_message(alice.id, "Hi", receiver_id=bob.id)

        assert replying_generator.calls == []


class TestListing:

    async def _seed(self, chat_service, sender, receiver, count):
        chat_id = None
        ids = []
        for i in range(count):
            result = await chat_service.send_message(
                sender.id, f"m{i + 1}", chat_id=chat_id,
                receiver_id=None if chat_id else receiver.id,
            )
            chat_id = result.conversation.id
            ids.append(result.message.id)
        return chat_id, ids

    async def test_offset_pagination(self, pair, chat_service):
        alice, bob = pair
        chat_id, ids = await self._seed(chat_service, alice, bob, 5)

        page = await chat_service.list_messages(bob.id, chat_id, page=2, limit=2)

        assert [m.id for m in page.messages] == ids[2:4]
        assert page.total == 5
        assert page.total_pages == 3

    async def test_cursor_scan_is_strict(self, pair, chat_service):
        alice, bob = pair
        chat_id, ids = await self._seed(chat_service, alice, bob, 10)

        page = await chat_service.list_messages_after(bob.id, chat_id, cursor=ids[4], limit=50)

        assert [m.body for m in page.messages] == [f"m{i}" for i in range(6, 11)]
        assert page.next_cursor == ids[-1]
        assert page.has_more is False

    async def test_cursor_sees_later_sends_without_gaps(self, pair, chat_service):
        alice, bob = pair
        chat_id, ids = await self._seed(chat_service, alice, bob, 3)

        first = await chat_service.list_messages_after(bob.id, chat_id, cursor=None, limit=2)
        assert first.has_more is True
        late = await chat_service.send_message(bob.id, "late", chat_id=chat_id)
        second = await chat_service.list_messages_after(bob.id, chat_id, cursor=first.next_cursor)

        seen = [m.id for m in first.messages] + [m.id for m in second.messages]
        assert seen == ids + [late.message.id]

    async def test_cursor_from_other_chat_rejected(self, pair, make_user, chat_service):
        alice, bob = pair
        carol = await make_user("carol")
        chat_id, _ = await self._seed(chat_service, alice, bob, 1)
        _, other_ids = await self._seed(chat_service, alice, carol, 1)

        with pytest.raises(ValidationError):
            await chat_service.list_messages_after(alice.id, chat_id, cursor=other_ids[0])

    async def test_outsider_cannot_list(self, pair, make_user, chat_service):
        alice, bob = pair
        eve = await make_user("eve")
        chat_id, _ = await self._seed(chat_service, alice, bob, 1)

        with pytest.raises(PermissionDeniedError):
            await chat_service.list_messages(eve.id, chat_id)


class TestDeleteMessage:

    async def test_soft_delete_and_idempotency(self, pair, chat_service):
        alice, bob = pair
        sent = await chat_service.send_message(
            alice.id, "oops", receiver_id=bob.id, attachments=["https://cdn.test/x.png"]
        )
        chat_id = sent.conversation.id

        deleted = await chat_service.delete_message(alice.id, chat_id, sent.message.id)
        again = await chat_service.delete_message(alice.id, chat_id, sent.message.id)

        assert deleted.status == "deleted"
        assert deleted.body == DELETED_MESSAGE_PLACEHOLDER
        assert deleted.attachments is None
        assert again.id == deleted.id
        page = await chat_service.list_messages(bob.id, chat_id)
        assert page.messages == []
        assert sent.conversation.side(bob.id).unread_count == 0

    async def test_only_sender_may_delete(self, pair, chat_service):
        alice, bob = pair
        sent = await chat_service.send_message(alice.id, "mine", receiver_id=bob.id)

        with pytest.raises(PermissionDeniedError):
            await chat_service.delete_message(bob.id, sent.conversation.id, sent.message.id)

    async def test_message_must_belong_to_chat(self, pair, make_user, chat_service):
        alice, bob = pair
        carol = await make_user("carol")
        ours = await chat_service.send_message(alice.id, "a", receiver_id=bob.id)
        other = await chat_service.send_message(alice.id, "b", receiver_id=carol.id)

        with pytest.raises(NotFoundError):
            await chat_service.delete_message(alice.id, ours.conversation.id, other.message.id)


class TestReadState:

    async def test_mark_all_read(self, session, pair, chat_service):
        alice, bob = pair
        chat_id = None
        for text in ("a", "b", "c"):
            result = await chat_service.send_message(
                alice.id, text, chat_id=chat_id, receiver_id=None if chat_id else bob.id
            )
            chat_id = result.conversation.id

        remaining = await chat_service.mark_as_read(bob.id, chat_id)

        assert remaining == 0
        unread = await session.scalar(
            select(func.count(Message.id)).where(
                Message.chat_id == chat_id, Message.is_read.is_(False)
            )
        )
        assert unread == 0

    async def test_mark_read_up_to_message(self, pair, chat_service):
        alice, bob = pair
        first = await chat_service.send_message(alice.id, "a", receiver_id=bob.id)
        chat_id = first.conversation.id
        await chat_service.send_message(alice.id, "b", chat_id=chat_id)
        await chat_service.send_message(alice.id, "c", chat_id=chat_id)

        remaining = await chat_service.mark_as_read(bob.id, chat_id, first.message.id)

        assert remaining == 2
        assert first.conversation.side(bob.id).unread_count == 2

    async def test_mark_read_does_not_touch_own_messages(self, pair, chat_service):
        alice, bob = pair
        first = await chat_service.send_message(alice.id, "a", receiver_id=bob.id)

        remaining = await chat_service.mark_as_read(alice.id, first.conversation.id)

        assert remaining == 0
        assert first.conversation.side(bob.id).unread_count == 1


class TestParticipantFlags:

    async def _chat(self, chat_service, sender, receiver):
        return (await chat_service.send_message(sender.id, "hi", receiver_id=receiver.id)).conversation

    async def test_pin_batch_is_per_side_and_idempotent(self, pair, make_user, chat_service):
        alice, bob = pair
        carol = await make_user("carol")
        with_bob = await self._chat(chat_service, alice, bob)
        with_carol = await self._chat(chat_service, alice, carol)

        await chat_service.set_pinned(alice.id, [with_bob.id, with_carol.id])
        await chat_service.set_pinned(alice.id, [with_bob.id])

        assert with_bob.side(alice.id).is_pinned is True
        assert with_bob.side(bob.id).is_pinned is False
        assert with_carol.side(alice.id).is_pinned is True

    async def test_pin_requires_membership_of_every_chat(self, session, pair, make_user, chat_service):
        alice, bob = pair
        carol = await make_user("carol")
        ours = await self._chat(chat_service, alice, bob)
        theirs = await self._chat(chat_service, bob, carol)
        alice_id, ours_id, theirs_id = alice.id, ours.id, theirs.id

        with pytest.raises(PermissionDeniedError):
            await chat_service.set_pinned(alice_id, [ours_id, theirs_id])
        with pytest.raises(NotFoundError):
            await chat_service.set_pinned(alice_id, [ours_id, 999])

        await session.refresh(ours)
        assert ours.side(alice_id).is_pinned is False

    async def test_block_unblock(self, pair, chat_service):
        alice, bob = pair
        chat = await self._chat(chat_service, alice, bob)

        await chat_service.set_blocked(alice.id, chat.id)
        await chat_service.set_blocked(alice.id, chat.id)
        assert chat.side(alice.id).status == ChatStatus.BLOCKED.value
        assert chat.side(bob.id).status == ChatStatus.ACTIVE.value

        await chat_service.set_blocked(alice.id, chat.id, blocked=False)
        assert chat.side(alice.id).status == ChatStatus.ACTIVE.value

    async def test_unblock_leaves_deleted_side_alone(self, pair, chat_service):
        alice, bob = pair
        chat = await self._chat(chat_service, alice, bob)
        await chat_service.delete_conversation(alice.id, chat.id)

        await chat_service.set_blocked(alice.id, chat.id, blocked=False)

        assert chat.side(alice.id).status == ChatStatus.DELETED.value

    async def test_archive(self, pair, chat_service):
        alice, bob = pair
        chat = await self._chat(chat_service, alice, bob)

        await chat_service.set_archived(bob.id, chat.id)

        assert chat.side(bob.id).is_archived is True
        assert chat.side(alice.id).is_archived is False

    async def test_delete_for_me(self, pair, chat_service):
        alice, bob = pair
        chat = await self._chat(chat_service, alice, bob)
        await chat_service.set_pinned(bob.id, [chat.id])

        await chat_service.delete_conversation(bob.id, chat.id)
        await chat_service.delete_conversation(bob.id, chat.id)

        side = chat.side(bob.id)
        assert side.status == ChatStatus.DELETED.value
        assert side.is_pinned is False
        assert side.unread_count == 0
        assert await chat_service.list_inbox(bob.id) == []
        assert [e.conversation.id for e in await chat_service.list_inbox(alice.id)] == [chat.id]


class TestInbox:

    async def test_pinned_first_then_recent(self, pair, make_user, chat_service):
        alice, bob = pair
        carol = await make_user("carol")
        dave = await make_user("dave")
        with_bob = (await chat_service.send_message(bob.id, "1", receiver_id=alice.id)).conversation
        with_carol = (await chat_service.send_message(carol.id, "2", receiver_id=alice.id)).conversation
        with_dave = (await chat_service.send_message(dave.id, "3", receiver_id=alice.id)).conversation
        await chat_service.set_pinned(alice.id, [with_bob.id])

        inbox = await chat_service.list_inbox(alice.id)

        assert [e.conversation.id for e in inbox] == [with_bob.id, with_dave.id, with_carol.id]

    async def test_entry_contents(self, pair, chat_service):
        alice, bob = pair
        sent = await chat_service.send_message(bob.id, "hello", receiver_id=alice.id)
        await chat_service.send_message(bob.id, "are you there?", chat_id=sent.conversation.id)

        [entry] = await chat_service.list_inbox(alice.id)

        assert entry.counterpart.id == bob.id
        assert entry.last_message.body == "are you there?"
        assert entry.unread_count == 2
        assert entry.status == ChatStatus.ACTIVE.value

    async def test_previews_are_per_chat_and_skip_deleted(self, pair, make_user, chat_service):
        alice, bob = pair
        carol = await make_user("carol")
        dave = await make_user("dave")
        with_bob = (await chat_service.send_message(bob.id, "older", receiver_id=alice.id)).conversation
        oops = await chat_service.send_message(bob.id, "oops", chat_id=with_bob.id)
        await chat_service.delete_message(bob.id, with_bob.id, oops.message.id)
        await chat_service.send_message(carol.id, "from carol", receiver_id=alice.id)
        only = await chat_service.send_message(dave.id, "gone", receiver_id=alice.id)
        await chat_service.delete_message(dave.id, only.conversation.id, only.message.id)

        inbox = await chat_service.list_inbox(alice.id)

        previews = {
            e.counterpart.username: (e.last_message.body if e.last_message else None)
            for e in inbox
        }
        assert previews == {"bob": "older", "carol": "from carol", "dave": None}
