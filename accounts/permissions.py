from rest_framework.permissions import BasePermission


class IsAdmin(BasePermission):
    message = "Not authorized as an admin."

    def has_permission(self, request, view):
        u = request.user
        return bool(u and u.is_authenticated and u.is_admin)


class IsApprovedUser(BasePermission):
    """
    Tokens stay valid after an admin declines an account, so employee
    endpoints re-check the approval status on every request.
    """
    message = "Account is not approved."

    def has_permission(self, request, view):
        u = request.user
        return bool(u and u.is_authenticated and u.is_approved)
