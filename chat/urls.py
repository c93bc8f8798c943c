from django.urls import path
from chat.views import (
    ConversationListCreateView,
    DeleteMessageView,
    GroupAddView,
    GroupCreateView,
    GroupRemoveView,
    GroupUpdateView,
    MarkReadView,
    MessageListCreateView,
    NoteJoinView,
    RecallMessageView,
    UploadImageView,
)

urlpatterns = [
    path("", ConversationListCreateView.as_view(), name="conversation-list"),
    path("group/", GroupCreateView.as_view(), name="group-create"),
    path("group/<int:pk>/", GroupUpdateView.as_view(), name="group-update"),
    path("groupadd/", GroupAddView.as_view(), name="group-add"),
    path("groupremove/", GroupRemoveView.as_view(), name="group-remove"),
    path("messages/<int:conversation_id>/", MessageListCreateView.as_view(), name="message-list"),
    path("read/<int:conversation_id>/", MarkReadView.as_view(), name="conversation-read"),
    path("recall/<int:message_id>/", RecallMessageView.as_view(), name="message-recall"),
    path("message/<int:message_id>/", DeleteMessageView.as_view(), name="message-delete"),
    path("note/join/", NoteJoinView.as_view(), name="note-join"),
    path("upload-image/", UploadImageView.as_view(), name="upload-image"),
]
