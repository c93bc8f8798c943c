from django.contrib import admin
from django.contrib.auth.admin import UserAdmin

from .models import User


@admin.register(User)
class BackOfficeUserAdmin(UserAdmin):
    list_display = ("email", "full_name", "role", "status", "is_active")
    list_filter = ("role", "status", "is_active")
    search_fields = ("email", "full_name", "username")
    ordering = ("full_name",)
    fieldsets = UserAdmin.fieldsets + (
        ("Back office", {"fields": ("full_name", "role", "status", "birthday", "profile_picture")}),
    )
