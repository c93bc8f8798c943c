"""
Chat operations shared by the REST views and the websocket consumer.

Functions take the acting user and raise DRF exceptions, so views can let
them propagate and the consumer can turn them into ``messageError`` events.
"""
import json
import logging
import time
from collections import deque
from datetime import timedelta

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db import transaction
from django.db.models import F, OuterRef, Subquery
from django.utils import timezone
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from accounts.models import User

from .models import Conversation, Message, Participant
from .serializers import ConversationSerializer, MessageSerializer

logger = logging.getLogger(__name__)

GROUP_NOTE_PREFIX = "@@GROUP_NOTE@@"
RECALL_WINDOW = timedelta(seconds=10)
DUPLICATE_WINDOW = 2.0
PENDING_ID_MEMORY = 200


def user_group(user_id) -> str:
    return f"user_{user_id}"


def conversation_group(conversation_id) -> str:
    return f"conversation_{conversation_id}"


# -----------------
# Lookups
# -----------------

def conversations_for(user):
    unread = Participant.objects.filter(conversation=OuterRef("pk"), user=user).values("unread_count")[:1]
    return (
        Conversation.objects.filter(participants=user)
        .select_related("group_admin", "last_message", "last_message__sender")
        .prefetch_related("participants")
        .annotate(unread_count=Subquery(unread))
        .order_by("-updated_at", "-id")
    )


def get_conversation(user, conversation_id) -> Conversation:
    try:
        conversation_id = int(conversation_id)
    except (TypeError, ValueError):
        raise NotFound("Conversation not found.")
    conversation = Conversation.objects.filter(pk=conversation_id, participants=user).first()
    if conversation is None:
        raise NotFound("Conversation not found.")
    return conversation


def get_message(user, message_id, allow_admin=False) -> Message:
    qs = Message.objects.select_related("conversation", "sender")
    if not (allow_admin and user.is_admin):
        qs = qs.filter(conversation__participants=user)
    message = qs.filter(pk=message_id).first()
    if message is None:
        raise NotFound("Message not found.")
    return message


def _users(ids) -> list:
    ids = set(ids)
    users = list(User.objects.filter(id__in=ids))
    if len(users) != len(ids):
        raise ValidationError({"participant_ids": "Unknown user."})
    return users


# -----------------
# Conversations
# -----------------

def open_direct(user, recipient_id) -> tuple[Conversation, bool]:
    if recipient_id == user.id:
        raise ValidationError({"recipient_id": "Cannot start a conversation with yourself."})
    recipient = User.objects.filter(pk=recipient_id).first()
    if recipient is None:
        raise NotFound("Recipient not found.")

    existing = (
        Conversation.objects.filter(is_group_chat=False, participants=user)
        .filter(participants=recipient)
        .first()
    )
    if existing is not None:
        return existing, False

    with transaction.atomic():
        conversation = Conversation.objects.create(is_group_chat=False)
        Participant.objects.bulk_create([
            Participant(conversation=conversation, user=user),
            Participant(conversation=conversation, user=recipient),
        ])
    logger.info("Direct conversation %s opened between %s and %s", conversation.id, user.id, recipient.id)
    return conversation, True


def create_group(user, group_name, participant_ids) -> Conversation:
    group_name = group_name.strip()
    if not group_name:
        raise ValidationError({"group_name": "Group name cannot be empty."})
    members = _users(set(participant_ids) | {user.id})
    if len(members) < 2:
        raise ValidationError({"participant_ids": "A group needs at least one other member."})

    with transaction.atomic():
        conversation = Conversation.objects.create(is_group_chat=True, group_name=group_name, group_admin=user)
        Participant.objects.bulk_create([Participant(conversation=conversation, user=m) for m in members])
    logger.info("Group %s (%s) created by %s with %d members", conversation.id, group_name, user.id, len(members))
    return conversation


def _require_group(conversation):
    if not conversation.is_group_chat:
        raise ValidationError({"detail": "Not a group conversation."})


def _require_group_admin(user, conversation):
    if not (user.is_admin or conversation.group_admin_id == user.id):
        raise PermissionDenied("Only the group admin can change members.")


def update_group(user, conversation, **fields) -> Conversation:
    _require_group(conversation)
    if "group_name" in fields:
        fields["group_name"] = fields["group_name"].strip()
        if not fields["group_name"]:
            raise ValidationError({"group_name": "Group name cannot be empty."})
    for name, value in fields.items():
        setattr(conversation, name, value)
    conversation.save()
    return conversation


def add_members(user, conversation, participant_ids) -> Conversation:
    _require_group(conversation)
    _require_group_admin(user, conversation)
    existing = set(conversation.memberships.values_list("user_id", flat=True))
    new_members = [u for u in _users(participant_ids) if u.id not in existing]
    Participant.objects.bulk_create([Participant(conversation=conversation, user=u) for u in new_members])
    conversation.save(update_fields=["updated_at"])
    return conversation


def remove_member(user, conversation, participant_id) -> Conversation:
    _require_group(conversation)
    # members may leave on their own
    if participant_id != user.id:
        _require_group_admin(user, conversation)
    deleted, _ = conversation.memberships.filter(user_id=participant_id).delete()
    if not deleted:
        raise NotFound("User is not a member of this group.")
    conversation.save(update_fields=["updated_at"])
    return conversation


def mark_read(user, conversation):
    Participant.objects.filter(conversation=conversation, user=user).update(unread_count=0)
    unread_ids = (
        conversation.messages.exclude(sender=user)
        .exclude(read_by=user)
        .values_list("id", flat=True)
    )
    ReadBy = Message.read_by.through
    ReadBy.objects.bulk_create(
        [ReadBy(message_id=message_id, user_id=user.id) for message_id in unread_ids],
        ignore_conflicts=True,
    )


# -----------------
# Messages
# -----------------

def send_message(user, conversation, content="", image_url="", reply_to=None) -> Message:
    content = (content or "").strip()
    image_url = image_url or ""
    if not content and not image_url:
        raise ValidationError({"detail": "Message needs text or an image."})

    quoted = None
    if reply_to:
        if str(reply_to).isdigit():
            quoted = conversation.messages.filter(pk=int(reply_to)).first()
        if quoted is None:
            raise ValidationError({"reply_to": "Quoted message is not in this conversation."})

    with transaction.atomic():
        message = Message.objects.create(
            conversation=conversation,
            sender=user,
            content=content,
            image_url=image_url,
            reply_to=quoted,
        )
        message.read_by.add(user)
        Participant.objects.filter(conversation=conversation).exclude(user=user).update(
            unread_count=F("unread_count") + 1
        )
        conversation.last_message = message
        conversation.save(update_fields=["last_message", "updated_at"])
    return message


def recall_message(user, message) -> Message:
    if message.sender_id != user.id:
        raise PermissionDenied("Not authorized.")
    if timezone.now() - message.created_at > RECALL_WINDOW:
        raise ValidationError({"detail": "Recall time expired (10s limit)."})
    message.is_recalled = True
    message.save(update_fields=["is_recalled", "updated_at"])
    return message


def delete_message(user, message):
    if message.sender_id != user.id and not user.is_admin:
        raise PermissionDenied("Not authorized.")
    conversation = message.conversation
    message_id = message.id
    with transaction.atomic():
        message.delete()
        if conversation.last_message_id in (message_id, None):
            conversation.last_message = conversation.messages.order_by("-created_at", "-id").first()
            conversation.save(update_fields=["last_message", "updated_at"])


def join_note(user, message, entry) -> Message:
    if not message.content.startswith(GROUP_NOTE_PREFIX):
        raise ValidationError({"detail": "Invalid note."})
    try:
        note = json.loads(message.content[len(GROUP_NOTE_PREFIX):])
    except ValueError:
        raise ValidationError({"detail": "Invalid note."})
    if not isinstance(note, dict):
        raise ValidationError({"detail": "Invalid note."})

    note.setdefault("entries", []).append(entry)
    message.content = GROUP_NOTE_PREFIX + json.dumps(note)
    message.save(update_fields=["content", "updated_at"])
    return message


# -----------------
# Broadcasting
# -----------------

def _group_send(group, event, data):
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return
    async_to_sync(channel_layer.group_send)(group, {"type": "chat.event", "event": event, "data": data})


def broadcast(conversation_id, event, data):
    _group_send(conversation_group(conversation_id), event, data)


def announce_message(message, pending_id=None):
    """Push a new message to the conversation room and the refreshed conversation to every member."""
    data = dict(MessageSerializer(message).data)
    data["pending_id"] = pending_id
    broadcast(message.conversation_id, "receiveMessage", data)

    conversation = (
        Conversation.objects.select_related("group_admin", "last_message", "last_message__sender")
        .prefetch_related("participants")
        .get(pk=message.conversation_id)
    )
    payload = dict(ConversationSerializer(conversation, context={"user": message.sender}).data)
    for membership in conversation.memberships.all():
        payload["unread_count"] = membership.unread_count
        _group_send(user_group(membership.user_id), "conversationUpdated", dict(payload))


class DuplicateGuard:
    """
    Remembers what a socket sent successfully. A repeat of a recent pending id,
    or the same conversation/content within DUPLICATE_WINDOW seconds, is a
    duplicate. Failed sends are never remembered, so the client can retry.
    """

    def __init__(self, window=DUPLICATE_WINDOW, clock=time.monotonic, max_pending=PENDING_ID_MEMORY):
        self.window = window
        self.clock = clock
        self.last_key = None
        self.last_at = None
        self.seen_pending = deque(maxlen=max_pending)

    def is_duplicate(self, conversation_id, content, image_url, pending_id=None) -> bool:
        if pending_id and pending_id in self.seen_pending:
            return True
        key = (conversation_id, content or "", image_url or "")
        return key == self.last_key and self.last_at is not None and self.clock() - self.last_at < self.window

    def remember(self, conversation_id, content, image_url, pending_id=None):
        if pending_id and pending_id not in self.seen_pending:
            self.seen_pending.append(pending_id)
        self.last_key = (conversation_id, content or "", image_url or "")
        self.last_at = self.clock()
