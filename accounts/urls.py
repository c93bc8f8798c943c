from django.urls import path
from .views import (
    ApproveUserView,
    ChangePasswordView,
    ChatUserListView,
    CustomTokenObtainPairView,
    DeclineUserView,
    EmployeeDetailView,
    EmployeeListView,
    MeView,
    PendingUserListView,
    ProfilePictureUploadView,
    ProfileView,
    RegisterView,
)
from rest_framework_simplejwt.views import TokenRefreshView, TokenVerifyView

urlpatterns = [
    path("auth/login/", CustomTokenObtainPairView.as_view(), name="token_obtain_pair"),
    path("auth/refresh/", TokenRefreshView.as_view(), name="token_refresh"),
    path("auth/verify/", TokenVerifyView.as_view(), name="token_verify"),
    path("auth/me/", MeView.as_view(), name="me"),
    path("users/register/", RegisterView.as_view(), name="register"),
    path("users/profile/", ProfileView.as_view(), name="profile"),
    path("users/change-password/", ChangePasswordView.as_view(), name="change-password"),
    path("users/upload-picture/", ProfilePictureUploadView.as_view(), name="upload-picture"),
    path("users/pending/", PendingUserListView.as_view(), name="pending-users"),
    path("users/chat-list/", ChatUserListView.as_view(), name="chat-users"),
    path("users/", EmployeeListView.as_view(), name="employee-list"),
    path("users/<int:pk>/", EmployeeDetailView.as_view(), name="employee-detail"),
    path("users/<int:pk>/approve/", ApproveUserView.as_view(), name="approve-user"),
    path("users/<int:pk>/decline/", DeclineUserView.as_view(), name="decline-user"),
]
