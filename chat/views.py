import logging
import os
import uuid

from django.core.files.storage import default_storage
from rest_framework import status
from rest_framework.generics import GenericAPIView
from rest_framework.parsers import FormParser, MultiPartParser
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from accounts.permissions import IsApprovedUser

from . import services
from .serializers import (
    ChatImageSerializer,
    ConversationSerializer,
    GroupAddSerializer,
    GroupCreateSerializer,
    GroupRemoveSerializer,
    GroupUpdateSerializer,
    MessageSerializer,
    NoteJoinSerializer,
    OpenDirectSerializer,
    SendMessageSerializer,
)

logger = logging.getLogger(__name__)


class ChatView(GenericAPIView):
    permission_classes = [IsAuthenticated, IsApprovedUser]
    pagination_class = None

    def conversation_data(self, conversation):
        return ConversationSerializer(conversation, context=self.get_serializer_context()).data


class ConversationListCreateView(ChatView):
    serializer_class = OpenDirectSerializer

    def get(self, request, *args, **kwargs):
        conversations = services.conversations_for(request.user)
        return Response(ConversationSerializer(conversations, many=True, context=self.get_serializer_context()).data)

    def post(self, request, *args, **kwargs):
        ser = self.get_serializer(data=request.data)
        ser.is_valid(raise_exception=True)
        conversation, created = services.open_direct(request.user, ser.validated_data["recipient_id"])
        return Response(
            self.conversation_data(conversation),
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )


class GroupCreateView(ChatView):
    serializer_class = GroupCreateSerializer

    def post(self, request, *args, **kwargs):
        ser = self.get_serializer(data=request.data)
        ser.is_valid(raise_exception=True)
        conversation = services.create_group(request.user, **ser.validated_data)
        return Response(self.conversation_data(conversation), status=status.HTTP_201_CREATED)


class GroupUpdateView(ChatView):
    serializer_class = GroupUpdateSerializer

    def put(self, request, pk, *args, **kwargs):
        conversation = services.get_conversation(request.user, pk)
        ser = self.get_serializer(data=request.data)
        ser.is_valid(raise_exception=True)
        conversation = services.update_group(request.user, conversation, **ser.validated_data)
        return Response(self.conversation_data(conversation))


class GroupAddView(ChatView):
    serializer_class = GroupAddSerializer

    def put(self, request, *args, **kwargs):
        ser = self.get_serializer(data=request.data)
        ser.is_valid(raise_exception=True)
        conversation = services.get_conversation(request.user, ser.validated_data["conversation_id"])
        conversation = services.add_members(request.user, conversation, ser.validated_data["participant_ids"])
        return Response(self.conversation_data(conversation))


class GroupRemoveView(ChatView):
    serializer_class = GroupRemoveSerializer

    def put(self, request, *args, **kwargs):
        ser = self.get_serializer(data=request.data)
        ser.is_valid(raise_exception=True)
        conversation = services.get_conversation(request.user, ser.validated_data["conversation_id"])
        services.remove_member(request.user, conversation, ser.validated_data["participant_id"])
        return Response({"detail": "Member removed."})


class MessageListCreateView(ChatView):
    serializer_class = SendMessageSerializer

    def get(self, request, conversation_id, *args, **kwargs):
        conversation = services.get_conversation(request.user, conversation_id)
        messages = (
            conversation.messages
            .select_related("sender", "reply_to", "reply_to__sender")
            .prefetch_related("read_by")
        )
        return Response(MessageSerializer(messages, many=True, context=self.get_serializer_context()).data)

    def post(self, request, conversation_id, *args, **kwargs):
        conversation = services.get_conversation(request.user, conversation_id)
        ser = self.get_serializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data

        message = services.send_message(
            request.user,
            conversation,
            content=data.get("content", ""),
            image_url=data.get("image_url", ""),
            reply_to=data.get("reply_to"),
        )
        services.announce_message(message, data.get("pending_id"))
        return Response(
            MessageSerializer(message, context=self.get_serializer_context()).data,
            status=status.HTTP_201_CREATED,
        )


class MarkReadView(ChatView):
    def post(self, request, conversation_id, *args, **kwargs):
        conversation = services.get_conversation(request.user, conversation_id)
        services.mark_read(request.user, conversation)
        return Response({"detail": "Conversation marked as read."})


class RecallMessageView(ChatView):
    def put(self, request, message_id, *args, **kwargs):
        message = services.get_message(request.user, message_id)
        message = services.recall_message(request.user, message)
        data = MessageSerializer(message, context=self.get_serializer_context()).data
        services.broadcast(message.conversation_id, "messageUpdated", dict(data))
        return Response(data)


class DeleteMessageView(ChatView):
    def delete(self, request, message_id, *args, **kwargs):
        message = services.get_message(request.user, message_id, allow_admin=True)
        conversation_id = message.conversation_id
        services.delete_message(request.user, message)
        logger.info("Message %s deleted by %s", message_id, request.user.id)
        services.broadcast(conversation_id, "messageDeleted", {"id": message_id, "conversation": conversation_id})
        return Response({"detail": "Message deleted."})


class NoteJoinView(ChatView):
    serializer_class = NoteJoinSerializer

    def put(self, request, *args, **kwargs):
        ser = self.get_serializer(data=request.data)
        ser.is_valid(raise_exception=True)
        message = services.get_message(request.user, ser.validated_data["message_id"])
        message = services.join_note(request.user, message, ser.validated_data["new_entry"])
        data = MessageSerializer(message, context=self.get_serializer_context()).data
        services.broadcast(message.conversation_id, "messageUpdated", dict(data))
        return Response(data)


class UploadImageView(ChatView):
    serializer_class = ChatImageSerializer
    parser_classes = [MultiPartParser, FormParser]

    def post(self, request, *args, **kwargs):
        ser = self.get_serializer(data=request.data)
        ser.is_valid(raise_exception=True)
        image = ser.validated_data["chat_image"]

        ext = os.path.splitext(image.name)[1].lower()
        name = default_storage.save(f"chat/{uuid.uuid4().hex}{ext}", image)
        url = request.build_absolute_uri(default_storage.url(name))
        return Response({"image_url": url}, status=status.HTTP_201_CREATED)
