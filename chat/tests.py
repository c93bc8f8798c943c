import json
import shutil
import tempfile
from datetime import timedelta

from asgiref.sync import async_to_sync
from channels.db import database_sync_to_async
from channels.layers import get_channel_layer
from channels.routing import URLRouter
from channels.testing import WebsocketCommunicator
from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import SimpleTestCase, TransactionTestCase, override_settings
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase
from rest_framework_simplejwt.tokens import AccessToken

from accounts.models import User
from chat.consumers import _live_channels
from chat.middleware import JWTAuthMiddleware
from chat.models import Conversation, Message, Participant
from chat.routing import websocket_urlpatterns
from chat.services import GROUP_NOTE_PREFIX, DuplicateGuard, conversation_group, user_group


def make_user(email, role=User.Role.EMPLOYEE, full_name=None):
    return User.objects.create_user(
        username=email,
        email=email,
        password="Pass12345!",
        full_name=full_name or email.split("@")[0],
        role=role,
        status=User.Status.APPROVED,
    )


class ChatTestMixin:
    def setUp(self):
        self.admin = make_user("boss@test.com", role=User.Role.ADMIN, full_name="Boss")
        self.alice = make_user("alice@test.com", full_name="Alice")
        self.bob = make_user("bob@test.com", full_name="Bob")
        self.carol = make_user("carol@test.com", full_name="Carol")

    def tearDown(self):
        async_to_sync(get_channel_layer().flush)()

    def auth(self, user):
        self.client.force_authenticate(user=user)

    def open_direct(self, user, recipient):
        self.auth(user)
        res = self.client.post(reverse("conversation-list"), {"recipient_id": recipient.id}, format="json")
        return Conversation.objects.get(id=res.data["id"])

    def send(self, user, conversation, content="hello", **extra):
        self.auth(user)
        return self.client.post(
            reverse("message-list", args=[conversation.id]), {"content": content, **extra}, format="json"
        )


class ConversationAPITests(ChatTestMixin, APITestCase):
    def test_open_direct_is_get_or_create(self):
        self.auth(self.alice)
        url = reverse("conversation-list")
        res = self.client.post(url, {"recipient_id": self.bob.id}, format="json")
        self.assertEqual(res.status_code, status.HTTP_201_CREATED)
        self.assertFalse(res.data["is_group_chat"])
        self.assertEqual({p["id"] for p in res.data["participants"]}, {self.alice.id, self.bob.id})

        self.auth(self.bob)
        again = self.client.post(url, {"recipient_id": self.alice.id}, format="json")
        self.assertEqual(again.status_code, status.HTTP_200_OK)
        self.assertEqual(again.data["id"], res.data["id"])

    def test_cannot_open_conversation_with_self(self):
        self.auth(self.alice)
        res = self.client.post(reverse("conversation-list"), {"recipient_id": self.alice.id}, format="json")
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)

    def test_outsider_gets_404(self):
        conversation = self.open_direct(self.alice, self.bob)
        self.auth(self.carol)
        res = self.client.get(reverse("message-list", args=[conversation.id]))
        self.assertEqual(res.status_code, status.HTTP_404_NOT_FOUND)
        res = self.send(self.carol, conversation)
        self.assertEqual(res.status_code, status.HTTP_404_NOT_FOUND)

    def test_list_is_newest_first_with_unread_counts(self):
        first = self.open_direct(self.alice, self.bob)
        second = self.open_direct(self.alice, self.carol)
        self.send(self.carol, second, "hey")
        self.send(self.bob, first, "one")
        self.send(self.bob, first, "two")

        self.auth(self.alice)
        res = self.client.get(reverse("conversation-list"))
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual([c["id"] for c in res.data], [first.id, second.id])
        self.assertEqual(res.data[0]["unread_count"], 2)
        self.assertEqual(res.data[0]["last_message"]["content"], "two")
        self.assertEqual(res.data[1]["unread_count"], 1)


class MessageAPITests(ChatTestMixin, APITestCase):
    def setUp(self):
        super().setUp()
        self.conversation = self.open_direct(self.alice, self.bob)

    def test_send_and_read_bookkeeping(self):
        res = self.send(self.alice, self.conversation, "  hi bob  ")
        self.assertEqual(res.status_code, status.HTTP_201_CREATED)
        self.assertEqual(res.data["content"], "hi bob")
        self.assertEqual(res.data["read_by"], [self.alice.id])

        unread = Participant.objects.get(conversation=self.conversation, user=self.bob).unread_count
        self.assertEqual(unread, 1)
        own = Participant.objects.get(conversation=self.conversation, user=self.alice).unread_count
        self.assertEqual(own, 0)
        self.conversation.refresh_from_db()
        self.assertEqual(self.conversation.last_message_id, res.data["id"])

        self.auth(self.bob)
        res = self.client.post(reverse("conversation-read", args=[self.conversation.id]))
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual(Participant.objects.get(conversation=self.conversation, user=self.bob).unread_count, 0)
        message = Message.objects.get()
        self.assertEqual(set(message.read_by.values_list("id", flat=True)), {self.alice.id, self.bob.id})

    def test_message_needs_text_or_image(self):
        res = self.send(self.alice, self.conversation, "   ")
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)

        res = self.send(self.alice, self.conversation, "", image_url="/uploads/chat/a.png")
        self.assertEqual(res.status_code, status.HTTP_201_CREATED)

    def test_messages_ascending_with_reply_quote(self):
        first = self.send(self.alice, self.conversation, "question?").data
        self.send(self.bob, self.conversation, "answer", reply_to=first["id"])

        self.auth(self.alice)
        res = self.client.get(reverse("message-list", args=[self.conversation.id]))
        self.assertEqual([m["content"] for m in res.data], ["question?", "answer"])
        self.assertEqual(res.data[1]["reply_to"]["id"], first["id"])
        self.assertEqual(res.data[1]["reply_to"]["sender_name"], "Alice")

    def test_reply_to_other_conversation_rejected(self):
        other = self.open_direct(self.alice, self.carol)
        foreign = self.send(self.alice, other, "elsewhere").data
        res = self.send(self.alice, self.conversation, "reply", reply_to=foreign["id"])
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)

    def test_recall_window(self):
        message_id = self.send(self.alice, self.conversation, "oops").data["id"]
        url = reverse("message-recall", args=[message_id])

        self.auth(self.bob)
        self.assertEqual(self.client.put(url).status_code, status.HTTP_403_FORBIDDEN)

        self.auth(self.alice)
        res = self.client.put(url)
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertTrue(res.data["is_recalled"])
        self.assertEqual(res.data["content"], "")

        late_id = self.send(self.alice, self.conversation, "too late").data["id"]
        Message.objects.filter(id=late_id).update(created_at=timezone.now() - timedelta(seconds=11))
        self.auth(self.alice)
        res = self.client.put(reverse("message-recall", args=[late_id]))
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)

    def test_delete_permissions(self):
        first_id = self.send(self.alice, self.conversation, "first").data["id"]
        last_id = self.send(self.alice, self.conversation, "second").data["id"]

        self.auth(self.bob)
        res = self.client.delete(reverse("message-delete", args=[last_id]))
        self.assertEqual(res.status_code, status.HTTP_403_FORBIDDEN)

        # admins may delete in conversations they are not part of
        self.auth(self.admin)
        res = self.client.delete(reverse("message-delete", args=[last_id]))
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.conversation.refresh_from_db()
        self.assertEqual(self.conversation.last_message_id, first_id)

        self.auth(self.alice)
        res = self.client.delete(reverse("message-delete", args=[first_id]))
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertFalse(Message.objects.exists())

    def test_rest_send_broadcasts(self):
        layer = get_channel_layer()
        async_to_sync(layer.group_add)(conversation_group(self.conversation.id), "test.room")
        async_to_sync(layer.group_add)(user_group(self.bob.id), "test.bob")

        self.send(self.alice, self.conversation, "ping", pending_id="tmp-1")

        event = async_to_sync(layer.receive)("test.room")
        self.assertEqual(event["event"], "receiveMessage")
        self.assertEqual(event["data"]["content"], "ping")
        self.assertEqual(event["data"]["pending_id"], "tmp-1")

        event = async_to_sync(layer.receive)("test.bob")
        self.assertEqual(event["event"], "conversationUpdated")
        self.assertEqual(event["data"]["id"], self.conversation.id)
        self.assertEqual(event["data"]["unread_count"], 1)


class GroupAPITests(ChatTestMixin, APITestCase):
    def setUp(self):
        super().setUp()
        self.auth(self.alice)
        res = self.client.post(
            reverse("group-create"), {"group_name": " Floor ", "participant_ids": [self.bob.id]}, format="json"
        )
        self.assertEqual(res.status_code, status.HTTP_201_CREATED)
        self.group = Conversation.objects.get(id=res.data["id"])

    def test_group_created_with_creator_as_admin(self):
        self.assertTrue(self.group.is_group_chat)
        self.assertEqual(self.group.group_name, "Floor")
        self.assertEqual(self.group.group_admin, self.alice)
        self.assertEqual(set(self.group.participants.values_list("id", flat=True)), {self.alice.id, self.bob.id})

    def test_member_updates_notice(self):
        self.auth(self.bob)
        res = self.client.put(reverse("group-update", args=[self.group.id]), {"group_notice": "Meeting 9am"}, format="json")
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual(res.data["group_notice"], "Meeting 9am")

    def test_only_group_admin_adds_members(self):
        url = reverse("group-add")
        payload = {"conversation_id": self.group.id, "participant_ids": [self.carol.id]}

        self.auth(self.bob)
        self.assertEqual(self.client.put(url, payload, format="json").status_code, status.HTTP_403_FORBIDDEN)

        self.auth(self.alice)
        res = self.client.put(url, payload, format="json")
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual(len(res.data["participants"]), 3)

    def test_remove_and_leave(self):
        Participant.objects.create(conversation=self.group, user=self.carol)
        url = reverse("group-remove")

        self.auth(self.bob)
        res = self.client.put(url, {"conversation_id": self.group.id, "participant_id": self.carol.id}, format="json")
        self.assertEqual(res.status_code, status.HTTP_403_FORBIDDEN)
        res = self.client.put(url, {"conversation_id": self.group.id, "participant_id": self.bob.id}, format="json")
        self.assertEqual(res.status_code, status.HTTP_200_OK)

        self.auth(self.alice)
        res = self.client.put(url, {"conversation_id": self.group.id, "participant_id": self.carol.id}, format="json")
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual(list(self.group.participants.values_list("id", flat=True)), [self.alice.id])

    def test_direct_conversation_is_not_a_group(self):
        direct = self.open_direct(self.alice, self.carol)
        res = self.client.put(reverse("group-update", args=[direct.id]), {"group_notice": "x"}, format="json")
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)

    def test_join_note(self):
        note = GROUP_NOTE_PREFIX + json.dumps({"title": "Lunch", "entries": []})
        message_id = self.send(self.alice, self.group, note).data["id"]

        self.auth(self.bob)
        res = self.client.put(
            reverse("note-join"), {"message_id": message_id, "new_entry": {"name": "Bob", "text": "rice"}}, format="json"
        )
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        stored = json.loads(Message.objects.get(id=message_id).content[len(GROUP_NOTE_PREFIX):])
        self.assertEqual(stored["entries"], [{"name": "Bob", "text": "rice"}])

        plain_id = self.send(self.alice, self.group, "not a note").data["id"]
        res = self.client.put(reverse("note-join"), {"message_id": plain_id, "new_entry": "x"}, format="json")
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)


class UploadImageAPITests(ChatTestMixin, APITestCase):
    def setUp(self):
        super().setUp()
        self.media_root = tempfile.mkdtemp()
        self.override = override_settings(MEDIA_ROOT=self.media_root)
        self.override.enable()

    def tearDown(self):
        self.override.disable()
        shutil.rmtree(self.media_root, ignore_errors=True)
        super().tearDown()

    def test_upload_image(self):
        self.auth(self.alice)
        image = SimpleUploadedFile("photo.png", b"\x89PNG\r\n\x1a\nfake", content_type="image/png")
        res = self.client.post(reverse("upload-image"), {"chat_image": image}, format="multipart")
        self.assertEqual(res.status_code, status.HTTP_201_CREATED)
        self.assertIn("/uploads/chat/", res.data["image_url"])

    def test_non_image_rejected(self):
        self.auth(self.alice)
        doc = SimpleUploadedFile("notes.txt", b"hello", content_type="text/plain")
        res = self.client.post(reverse("upload-image"), {"chat_image": doc}, format="multipart")
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)


class DuplicateGuardTests(SimpleTestCase):
    def setUp(self):
        self.now = 100.0
        self.guard = DuplicateGuard(clock=lambda: self.now)

    def sent(self, *args, **kwargs):
        duplicate = self.guard.is_duplicate(*args, **kwargs)
        if not duplicate:
            self.guard.remember(*args, **kwargs)
        return duplicate

    def test_same_pending_id_is_duplicate(self):
        self.assertFalse(self.sent(1, "hi", "", pending_id="p1"))
        self.now += 10
        self.assertTrue(self.sent(1, "hi there", "", pending_id="p1"))

    def test_same_payload_within_window(self):
        self.assertFalse(self.sent(1, "hi", ""))
        self.now += 1
        self.assertTrue(self.sent(1, "hi", ""))
        self.now += 5
        self.assertFalse(self.sent(1, "hi", ""))

    def test_different_payload_passes(self):
        self.assertFalse(self.sent(1, "hi", ""))
        self.assertFalse(self.sent(2, "hi", ""))
        self.assertFalse(self.sent(2, "", "/uploads/chat/a.png"))

    def test_unremembered_send_can_be_retried(self):
        self.assertFalse(self.guard.is_duplicate(1, "hi", "", pending_id="p1"))
        self.assertFalse(self.guard.is_duplicate(1, "hi", "", pending_id="p1"))

    def test_pending_ids_are_bounded(self):
        guard = DuplicateGuard(clock=lambda: self.now, max_pending=2)
        for n, pending_id in enumerate(["a", "b", "c"]):
            guard.remember(1, f"msg {n}", "", pending_id=pending_id)
        self.assertEqual(list(guard.seen_pending), ["b", "c"])
        self.assertFalse(guard.is_duplicate(1, "again", "", pending_id="a"))
        self.assertTrue(guard.is_duplicate(1, "again", "", pending_id="c"))


@database_sync_to_async
def message_count():
    return Message.objects.count()


@database_sync_to_async
def start_group(admin, *members):
    conversation = Conversation.objects.create(is_group_chat=True, group_name="Night shift", group_admin=admin)
    Participant.objects.bulk_create([Participant(conversation=conversation, user=u) for u in (admin, *members)])
    return conversation.id


class ChatConsumerTests(TransactionTestCase):
    def setUp(self):
        _live_channels.clear()
        self.application = JWTAuthMiddleware(URLRouter(websocket_urlpatterns))
        self.alice = make_user("alice@test.com", full_name="Alice")
        self.bob = make_user("bob@test.com", full_name="Bob")
        self.carol = make_user("carol@test.com", full_name="Carol")
        self.conversation = Conversation.objects.create(is_group_chat=False)
        Participant.objects.bulk_create([
            Participant(conversation=self.conversation, user=self.alice),
            Participant(conversation=self.conversation, user=self.bob),
        ])

    def tearDown(self):
        _live_channels.clear()
        async_to_sync(get_channel_layer().flush)()

    def socket(self, user):
        return WebsocketCommunicator(self.application, f"/ws/chat/?token={AccessToken.for_user(user)}")

    async def connected(self, user):
        communicator = self.socket(user)
        connected, _ = await communicator.connect()
        self.assertTrue(connected)
        return communicator

    async def frames(self, communicator, count):
        received = {}
        for _ in range(count):
            frame = await communicator.receive_json_from(timeout=3)
            received[frame["event"]] = frame["data"]
        return received

    async def send(self, communicator, **data):
        await communicator.send_json_to({"event": "sendMessage", "data": data})

    async def test_socket_without_token_is_closed(self):
        communicator = WebsocketCommunicator(self.application, "/ws/chat/")
        connected, _ = await communicator.connect()
        self.assertFalse(connected)
        await communicator.disconnect()

    async def test_pending_user_is_closed(self):
        pending = await database_sync_to_async(User.objects.create_user)(
            username="new@test.com", email="new@test.com", password="Pass12345!", full_name="New", status=User.Status.PENDING
        )
        connected, _ = await self.socket(pending).connect()
        self.assertFalse(connected)

    async def test_send_message_reaches_both_sides(self):
        alice = await self.connected(self.alice)
        bob = await self.connected(self.bob)

        await self.send(alice, conversation_id=self.conversation.id, content="  hi bob  ", pending_id="p1")

        frames = await self.frames(alice, 2)
        self.assertEqual(frames["receiveMessage"]["content"], "hi bob")
        self.assertEqual(frames["receiveMessage"]["pending_id"], "p1")
        self.assertEqual(frames["conversationUpdated"]["unread_count"], 0)

        frames = await self.frames(bob, 2)
        self.assertEqual(frames["receiveMessage"]["sender"]["id"], self.alice.id)
        self.assertEqual(frames["conversationUpdated"]["id"], self.conversation.id)
        self.assertEqual(frames["conversationUpdated"]["unread_count"], 1)
        self.assertEqual(await message_count(), 1)

        await alice.disconnect()
        await bob.disconnect()

    async def test_repeated_pending_id_is_ignored(self):
        alice = await self.connected(self.alice)
        await self.send(alice, conversation_id=self.conversation.id, content="once", pending_id="p1")
        await self.frames(alice, 2)

        await self.send(alice, conversation_id=self.conversation.id, content="once", pending_id="p1")
        self.assertTrue(await alice.receive_nothing(timeout=0.5))
        self.assertEqual(await message_count(), 1)
        await alice.disconnect()

    async def test_failed_send_can_be_retried_with_same_pending_id(self):
        alice = await self.connected(self.alice)
        await self.send(alice, conversation_id=self.conversation.id, content="see above", reply_to=999999, pending_id="p1")
        frame = await alice.receive_json_from(timeout=3)
        self.assertEqual(frame["event"], "messageError")
        self.assertEqual(frame["data"]["pending_id"], "p1")
        self.assertEqual(await message_count(), 0)

        await self.send(alice, conversation_id=self.conversation.id, content="see above", pending_id="p1")
        frames = await self.frames(alice, 2)
        self.assertEqual(frames["receiveMessage"]["pending_id"], "p1")
        self.assertEqual(await message_count(), 1)
        await alice.disconnect()

    async def test_malformed_payloads_answer_with_message_error(self):
        alice = await self.connected(self.alice)
        bad_payloads = [
            {"conversation_id": self.conversation.id, "content": ["not", "text"], "pending_id": "a"},
            {"conversation_id": self.conversation.id, "content": {"nested": True}, "pending_id": "b"},
            {"conversation_id": self.conversation.id, "image_url": "x" * 501, "pending_id": "c"},
            {"conversation_id": "abc", "content": "hi", "pending_id": "d"},
            {"conversation_id": self.conversation.id, "content": "   ", "pending_id": "e"},
        ]
        for data in bad_payloads:
            await self.send(alice, **data)
            frame = await alice.receive_json_from(timeout=3)
            self.assertEqual(frame["event"], "messageError")
            self.assertEqual(frame["data"]["pending_id"], data["pending_id"])
        self.assertEqual(await message_count(), 0)

        # numbers are coerced to text the same way the REST endpoint does
        await self.send(alice, conversation_id=self.conversation.id, content=123, pending_id="f")
        frames = await self.frames(alice, 2)
        self.assertEqual(frames["receiveMessage"]["content"], "123")
        await alice.disconnect()

    async def test_send_to_foreign_conversation_fails(self):
        other_id = await start_group(self.bob, self.carol)
        alice = await self.connected(self.alice)
        await self.send(alice, conversation_id=other_id, content="let me in", pending_id="p1")
        frame = await alice.receive_json_from(timeout=3)
        self.assertEqual(frame["event"], "messageError")
        self.assertEqual(frame["data"]["message"], "Conversation not found.")
        await alice.disconnect()

    async def test_join_room_only_for_participants(self):
        alice = await self.connected(self.alice)
        foreign_id = await start_group(self.bob, self.carol)
        late_id = await start_group(self.carol, self.alice)

        await alice.send_json_to({"event": "joinRoom", "data": {"conversation_id": foreign_id}})
        await alice.send_json_to({"event": "joinRoom", "data": {"conversation_id": late_id}})
        await alice.send_json_to({"event": "ping", "data": {}})
        frame = await alice.receive_json_from(timeout=3)
        self.assertEqual(frame["event"], "messageError")
        self.assertEqual(frame["data"]["message"], "Unknown event: ping")

        channel_layer = get_channel_layer()
        event = {"type": "chat.event", "event": "messageUpdated", "data": {"id": 1}}
        await channel_layer.group_send(conversation_group(foreign_id), event)
        self.assertTrue(await alice.receive_nothing(timeout=0.5))

        await channel_layer.group_send(conversation_group(late_id), event)
        frame = await alice.receive_json_from(timeout=3)
        self.assertEqual(frame, {"event": "messageUpdated", "data": {"id": 1}})
        await alice.disconnect()

    async def test_new_socket_replaces_old_one(self):
        first = await self.connected(self.alice)
        second = await self.connected(self.alice)

        output = await first.receive_output(timeout=3)
        self.assertEqual(output["type"], "websocket.close")

        await second.send_json_to({"event": "ping", "data": {}})
        frame = await second.receive_json_from(timeout=3)
        self.assertEqual(frame["event"], "messageError")

        await first.disconnect()
        await second.disconnect()
