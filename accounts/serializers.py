import os

from django.contrib.auth import password_validation
from rest_framework import serializers
from rest_framework.exceptions import AuthenticationFailed
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

from .models import User

PROFILE_PICTURE_MAX_BYTES = 1_000_000
PROFILE_PICTURE_EXTENSIONS = {".jpeg", ".jpg", ".png", ".gif"}


def file_url(request, field_file):
    if not field_file:
        return ""
    url = field_file.url
    return request.build_absolute_uri(url) if request is not None else url


class CustomTokenObtainPairSerializer(TokenObtainPairSerializer):
    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)
        token["role"] = user.role
        token["email"] = user.email
        token["full_name"] = user.full_name
        return token

    def validate(self, attrs):
        data = super().validate(attrs)

        if not self.user.is_approved:
            if self.user.status == User.Status.PENDING:
                message = "Account is pending admin approval."
            elif self.user.status == User.Status.REJECTED:
                message = "Account access has been rejected."
            else:
                message = "Account is not yet approved."
            raise AuthenticationFailed(message, code="account_not_approved")

        data["user"] = UserSerializer(self.user, context=self.context).data
        return data


class UserSerializer(serializers.ModelSerializer):
    profile_picture_url = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = [
            "id",
            "full_name",
            "email",
            "role",
            "status",
            "birthday",
            "profile_picture_url",
            "created_at",
        ]
        read_only_fields = fields

    def get_profile_picture_url(self, obj):
        return file_url(self.context.get("request"), obj.profile_picture)


class ChatUserSerializer(UserSerializer):
    class Meta(UserSerializer.Meta):
        fields = ["id", "full_name", "email", "role", "profile_picture_url"]
        read_only_fields = fields


class RegisterSerializer(serializers.ModelSerializer):
    password = serializers.CharField(write_only=True)
    birthday = serializers.DateField(required=True)

    class Meta:
        model = User
        fields = ["full_name", "email", "password", "birthday"]

    def validate_email(self, value):
        value = value.strip().lower()
        if User.objects.filter(email__iexact=value).exists():
            raise serializers.ValidationError("User already exists.")
        return value

    def validate_full_name(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Full name cannot be empty.")
        return value

    def validate_password(self, value):
        password_validation.validate_password(value)
        return value

    def create(self, validated_data):
        email = validated_data["email"]
        return User.objects.create_user(
            username=email,
            email=email,
            password=validated_data["password"],
            full_name=validated_data["full_name"],
            birthday=validated_data["birthday"],
        )


class ProfileUpdateSerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = ["full_name", "birthday"]

    def update(self, instance, validated_data):
        full_name = (validated_data.get("full_name") or "").strip()
        if full_name:
            instance.full_name = full_name

        # Birthday can only be filled in once.
        if not instance.birthday and validated_data.get("birthday"):
            instance.birthday = validated_data["birthday"]

        instance.save(update_fields=["full_name", "birthday", "updated_at"])
        return instance


class ChangePasswordSerializer(serializers.Serializer):
    current_password = serializers.CharField(write_only=True)
    new_password = serializers.CharField(write_only=True)

    def validate_current_password(self, value):
        user = self.context["request"].user
        if not user.check_password(value):
            raise serializers.ValidationError("Incorrect current password.")
        return value

    def validate_new_password(self, value):
        if len(value) < 6:
            raise serializers.ValidationError("New password must be at least 6 characters long.")
        password_validation.validate_password(value, user=self.context["request"].user)
        return value

    def save(self, **kwargs):
        user = self.context["request"].user
        user.set_password(self.validated_data["new_password"])
        user.save(update_fields=["password", "updated_at"])
        return user


class ProfilePictureSerializer(serializers.Serializer):
    profile_picture = serializers.FileField()

    def validate_profile_picture(self, f):
        ext = os.path.splitext(f.name)[1].lower()
        content_type = getattr(f, "content_type", "") or ""
        if ext not in PROFILE_PICTURE_EXTENSIONS or not content_type.startswith("image/"):
            raise serializers.ValidationError("Images only (jpeg, jpg, png, gif).")
        if f.size > PROFILE_PICTURE_MAX_BYTES:
            raise serializers.ValidationError("Image must be 1MB or smaller.")
        return f
