import logging

from asgiref.sync import async_to_sync
from channels.generic.websocket import JsonWebsocketConsumer
from rest_framework.exceptions import APIException, ValidationError

from . import services
from .models import Participant
from .serializers import SocketMessageSerializer

logger = logging.getLogger(__name__)

# user id -> channel name of that user's live socket (this process only)
_live_channels = {}


def _error_text(exc):
    detail = exc.detail
    if isinstance(detail, dict):
        detail = next(iter(detail.values()))
    if isinstance(detail, list):
        detail = detail[0]
    return str(detail)


class ChatConsumer(JsonWebsocketConsumer):
    """
    Frames in both directions are ``{"event": <name>, "data": {...}}``.

    Client events: joinRoom, sendMessage.
    Server events: receiveMessage, conversationUpdated, messageUpdated,
    messageDeleted, messageError.
    """

    def connect(self):
        user = self.scope.get("user")
        if user is None or not user.is_authenticated or not user.is_approved:
            logger.info("Rejected websocket without a valid token")
            self.close()
            return

        self.user = user
        self.rooms = set()
        self.guard = services.DuplicateGuard()

        previous = _live_channels.get(user.id)
        if previous and previous != self.channel_name:
            logger.info("Closing previous socket %s for user %s", previous, user.id)
            async_to_sync(self.channel_layer.send)(previous, {"type": "chat.replaced"})
        _live_channels[user.id] = self.channel_name

        self.accept()
        self._join(services.user_group(user.id))
        conversation_ids = Participant.objects.filter(user=user).values_list("conversation_id", flat=True)
        for conversation_id in conversation_ids:
            self._join(services.conversation_group(conversation_id))
        logger.info("User %s connected on %s (%d rooms)", user.id, self.channel_name, len(self.rooms))

    def disconnect(self, code):
        user = getattr(self, "user", None)
        if user is None:
            return
        for room in self.rooms:
            async_to_sync(self.channel_layer.group_discard)(room, self.channel_name)
        if _live_channels.get(user.id) == self.channel_name:
            del _live_channels[user.id]
        logger.info("User %s disconnected (%s)", user.id, code)

    def _join(self, room):
        async_to_sync(self.channel_layer.group_add)(room, self.channel_name)
        self.rooms.add(room)

    def _emit(self, event, data):
        self.send_json({"event": event, "data": data})

    def receive_json(self, content, **kwargs):
        if not isinstance(content, dict) or not isinstance(content.get("data") or {}, dict):
            self._emit("messageError", {"message": "Invalid frame."})
            return
        event = content.get("event")
        data = content.get("data") or {}

        if event == "joinRoom":
            self.join_room(data)
        elif event == "sendMessage":
            self.send_message(data)
        else:
            self._emit("messageError", {"message": f"Unknown event: {event}"})

    def join_room(self, data):
        try:
            conversation_id = int(data.get("conversation_id"))
        except (TypeError, ValueError):
            self._emit("messageError", {"message": "conversation_id is required."})
            return
        if Participant.objects.filter(conversation_id=conversation_id, user=self.user).exists():
            self._join(services.conversation_group(conversation_id))
        else:
            logger.warning("User %s tried to join room %s", self.user.id, conversation_id)

    def send_message(self, data):
        pending_id = data.get("pending_id")
        ser = SocketMessageSerializer(data=data)
        if not ser.is_valid():
            self._emit("messageError", {"message": _error_text(ValidationError(ser.errors)), "pending_id": pending_id})
            return

        payload = ser.validated_data
        key = (payload["conversation_id"], payload.get("content", ""), payload.get("image_url", ""))
        if self.guard.is_duplicate(*key, pending_id=pending_id):
            logger.info("Ignoring duplicate sendMessage from user %s", self.user.id)
            return

        try:
            conversation = services.get_conversation(self.user, payload["conversation_id"])
            message = services.send_message(
                self.user,
                conversation,
                content=payload.get("content", ""),
                image_url=payload.get("image_url", ""),
                reply_to=payload.get("reply_to"),
            )
        except APIException as exc:
            self._emit("messageError", {"message": _error_text(exc), "pending_id": pending_id})
            return

        self.guard.remember(*key, pending_id=pending_id)
        services.announce_message(message, pending_id)

    # channel layer handlers

    def chat_event(self, event):
        self._emit(event["event"], event["data"])

    def chat_replaced(self, event):
        self.close()
