# common/permissions.py
from rest_framework import permissions
from common.roles import STAFF_ROLES


def customer_for_user(user):
    """
    Storefront customer profile bound to a Django user, or None for guests
    and users without a profile.
    """
    if not (user and user.is_authenticated):
        return None
    try:
        return user.customer_profile
    except Exception:
        return None


def user_role(user):
    customer = customer_for_user(user)
    return customer.role if customer else None


class IsStaffOrAdminRole(permissions.BasePermission):
    """
    Allows access to Django staff users and to customers holding a
    MANAGER or ADMIN storefront role.
    """
    def has_permission(self, request, view):
        user = request.user
        if not (user and user.is_authenticated):
            return False
        if user.is_staff or user.is_superuser:
            return True
        return user_role(user) in STAFF_ROLES


class HasCustomerProfile(permissions.BasePermission):
    message = "Customer profile required"

    def has_permission(self, request, view):
        return customer_for_user(request.user) is not None
