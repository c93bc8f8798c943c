import os

from rest_framework import serializers

from accounts.serializers import ChatUserSerializer

from .models import Conversation, Message, Participant

CHAT_IMAGE_MAX_BYTES = 5 * 1024 * 1024
CHAT_IMAGE_EXTENSIONS = {".jpeg", ".jpg", ".png", ".gif", ".webp"}


class SenderSerializer(ChatUserSerializer):
    class Meta(ChatUserSerializer.Meta):
        fields = ["id", "full_name", "profile_picture_url"]
        read_only_fields = fields


class ReplyQuoteSerializer(serializers.ModelSerializer):
    sender_name = serializers.CharField(source="sender.full_name", read_only=True)

    class Meta:
        model = Message
        fields = ["id", "content", "image_url", "sender_name", "is_recalled"]
        read_only_fields = fields


class MessageSerializer(serializers.ModelSerializer):
    sender = SenderSerializer(read_only=True)
    reply_to = ReplyQuoteSerializer(read_only=True)
    read_by = serializers.PrimaryKeyRelatedField(many=True, read_only=True)

    class Meta:
        model = Message
        fields = [
            "id",
            "conversation",
            "sender",
            "content",
            "image_url",
            "reply_to",
            "is_recalled",
            "read_by",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def to_representation(self, instance):
        data = super().to_representation(instance)
        if instance.is_recalled:
            data["content"] = ""
            data["image_url"] = ""
        return data


class LastMessageSerializer(serializers.ModelSerializer):
    sender_name = serializers.CharField(source="sender.full_name", read_only=True)

    class Meta:
        model = Message
        fields = ["id", "sender", "sender_name", "content", "image_url", "is_recalled", "created_at"]
        read_only_fields = fields


class ConversationSerializer(serializers.ModelSerializer):
    participants = SenderSerializer(many=True, read_only=True)
    group_admin = SenderSerializer(read_only=True)
    last_message = LastMessageSerializer(read_only=True)
    unread_count = serializers.SerializerMethodField()

    class Meta:
        model = Conversation
        fields = [
            "id",
            "is_group_chat",
            "group_name",
            "group_admin",
            "group_notice",
            "group_note",
            "participants",
            "last_message",
            "unread_count",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_unread_count(self, obj):
        annotated = getattr(obj, "unread_count", None)
        if annotated is not None:
            return annotated
        user = self.context.get("user") or getattr(self.context.get("request"), "user", None)
        if user is None:
            return 0
        membership = Participant.objects.filter(conversation=obj, user=user).only("unread_count").first()
        return membership.unread_count if membership else 0


class OpenDirectSerializer(serializers.Serializer):
    recipient_id = serializers.IntegerField()


class GroupCreateSerializer(serializers.Serializer):
    group_name = serializers.CharField(max_length=200)
    participant_ids = serializers.ListField(child=serializers.IntegerField(), allow_empty=False)


class GroupUpdateSerializer(serializers.Serializer):
    group_name = serializers.CharField(max_length=200, required=False)
    group_notice = serializers.CharField(required=False, allow_blank=True)
    group_note = serializers.CharField(required=False, allow_blank=True)


class GroupAddSerializer(serializers.Serializer):
    conversation_id = serializers.IntegerField()
    participant_ids = serializers.ListField(child=serializers.IntegerField(), allow_empty=False)


class GroupRemoveSerializer(serializers.Serializer):
    conversation_id = serializers.IntegerField()
    participant_id = serializers.IntegerField()


class SendMessageSerializer(serializers.Serializer):
    content = serializers.CharField(required=False, allow_blank=True, trim_whitespace=True)
    image_url = serializers.CharField(required=False, allow_blank=True, max_length=500)
    reply_to = serializers.IntegerField(required=False, allow_null=True)
    pending_id = serializers.CharField(required=False, allow_blank=True, max_length=100)

    def validate(self, attrs):
        if not attrs.get("content") and not attrs.get("image_url"):
            raise serializers.ValidationError({"detail": "Message needs text or an image."})
        return attrs


class SocketMessageSerializer(SendMessageSerializer):
    conversation_id = serializers.IntegerField()


class NoteJoinSerializer(serializers.Serializer):
    message_id = serializers.IntegerField()
    new_entry = serializers.JSONField()


class ChatImageSerializer(serializers.Serializer):
    chat_image = serializers.FileField()

    def validate_chat_image(self, f):
        ext = os.path.splitext(f.name)[1].lower()
        content_type = getattr(f, "content_type", "") or ""
        if ext not in CHAT_IMAGE_EXTENSIONS or not content_type.startswith("image/"):
            raise serializers.ValidationError("Images only.")
        if f.size > CHAT_IMAGE_MAX_BYTES:
            raise serializers.ValidationError("Image must be 5MB or smaller.")
        return f
