import logging

from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.exceptions import PermissionDenied, ValidationError
from rest_framework.generics import GenericAPIView, ListAPIView, RetrieveDestroyAPIView
from rest_framework.parsers import FormParser, MultiPartParser
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework_simplejwt.views import TokenObtainPairView

from .models import User
from .permissions import IsAdmin
from .serializers import (
    ChangePasswordSerializer,
    ChatUserSerializer,
    CustomTokenObtainPairSerializer,
    ProfilePictureSerializer,
    ProfileUpdateSerializer,
    RegisterSerializer,
    UserSerializer,
)

logger = logging.getLogger(__name__)


class CustomTokenObtainPairView(TokenObtainPairView):
    serializer_class = CustomTokenObtainPairSerializer


class RegisterView(GenericAPIView):
    permission_classes = [AllowAny]
    authentication_classes = []
    serializer_class = RegisterSerializer

    def post(self, request, *args, **kwargs):
        ser = self.get_serializer(data=request.data)
        ser.is_valid(raise_exception=True)
        user = ser.save()
        logger.info("Registered user %s (%s), pending approval", user.id, user.email)
        return Response(
            {"detail": "Registration successful! Your account is pending admin approval."},
            status=status.HTTP_201_CREATED,
        )


class MeView(GenericAPIView):
    permission_classes = [IsAuthenticated]
    serializer_class = UserSerializer

    def get(self, request, *args, **kwargs):
        return Response(self.get_serializer(request.user).data)


class ProfileView(GenericAPIView):
    permission_classes = [IsAuthenticated]
    serializer_class = ProfileUpdateSerializer

    def put(self, request, *args, **kwargs):
        ser = self.get_serializer(request.user, data=request.data, partial=True)
        ser.is_valid(raise_exception=True)
        user = ser.save()
        return Response(UserSerializer(user, context=self.get_serializer_context()).data)


class ChangePasswordView(GenericAPIView):
    permission_classes = [IsAuthenticated]
    serializer_class = ChangePasswordSerializer

    def put(self, request, *args, **kwargs):
        ser = self.get_serializer(data=request.data)
        ser.is_valid(raise_exception=True)
        ser.save()
        return Response({"detail": "Password updated successfully."})


class ProfilePictureUploadView(GenericAPIView):
    permission_classes = [IsAuthenticated]
    serializer_class = ProfilePictureSerializer
    parser_classes = [MultiPartParser, FormParser]

    def post(self, request, *args, **kwargs):
        ser = self.get_serializer(data=request.data)
        ser.is_valid(raise_exception=True)

        user = request.user
        if user.profile_picture:
            user.profile_picture.delete(save=False)
        user.profile_picture = ser.validated_data["profile_picture"]
        user.save(update_fields=["profile_picture", "updated_at"])

        return Response(UserSerializer(user, context=self.get_serializer_context()).data)


class _StatusChangeView(GenericAPIView):
    permission_classes = [IsAdmin]
    target_status = None
    verb = ""

    def put(self, request, pk):
        user = get_object_or_404(User, pk=pk)

        if user.is_admin:
            raise ValidationError({"detail": "Cannot change status of an admin."})
        if user.status == self.target_status:
            raise ValidationError({"detail": f"User is already {self.target_status.label.lower()}."})

        user.status = self.target_status
        user.save(update_fields=["status", "updated_at"])
        logger.info("User %s %s by admin %s", user.id, self.verb, request.user.id)

        return Response({"detail": f"User {user.full_name} {self.verb} successfully."})


class ApproveUserView(_StatusChangeView):
    target_status = User.Status.APPROVED
    verb = "approved"


class DeclineUserView(_StatusChangeView):
    target_status = User.Status.REJECTED
    verb = "declined"


class PendingUserListView(ListAPIView):
    permission_classes = [IsAdmin]
    serializer_class = UserSerializer
    pagination_class = None

    def get_queryset(self):
        return (
            User.objects
            .filter(status=User.Status.PENDING, role=User.Role.EMPLOYEE, is_superuser=False)
            .order_by("-created_at")
        )


class EmployeeListView(ListAPIView):
    permission_classes = [IsAdmin]
    serializer_class = UserSerializer
    pagination_class = None
    queryset = (
        User.objects
        .filter(role=User.Role.EMPLOYEE, status=User.Status.APPROVED, is_superuser=False)
        .order_by("full_name")
    )


class EmployeeDetailView(RetrieveDestroyAPIView):
    permission_classes = [IsAdmin]
    serializer_class = UserSerializer
    queryset = User.objects.all()

    def destroy(self, request, *args, **kwargs):
        instance = self.get_object()
        if instance.is_admin:
            raise PermissionDenied("Cannot delete an admin account.")
        self.perform_destroy(instance)
        logger.info("User %s deleted by admin %s", kwargs.get("pk"), request.user.id)
        return Response({"detail": "Employee account deleted successfully."})


class ChatUserListView(ListAPIView):
    """
    Admins can talk to every approved employee, employees only to admins.
    """
    permission_classes = [IsAuthenticated]
    serializer_class = ChatUserSerializer
    pagination_class = None

    def get_queryset(self):
        user = self.request.user
        if user.is_admin:
            qs = User.objects.filter(role=User.Role.EMPLOYEE, status=User.Status.APPROVED)
        else:
            qs = User.objects.filter(role=User.Role.ADMIN)
        return qs.exclude(id=user.id).order_by("full_name")
