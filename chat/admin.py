from django.contrib import admin
from .models import Conversation, Message, Participant


class ParticipantInline(admin.TabularInline):
    model = Participant
    extra = 0


@admin.register(Conversation)
class ConversationAdmin(admin.ModelAdmin):
    list_display = ("id", "group_name", "is_group_chat", "updated_at")
    list_filter = ("is_group_chat",)
    search_fields = ("group_name",)
    inlines = [ParticipantInline]


@admin.register(Message)
class MessageAdmin(admin.ModelAdmin):
    list_display = ("id", "conversation", "sender", "is_recalled", "created_at")
    list_filter = ("is_recalled",)
    search_fields = ("content", "sender__full_name")
