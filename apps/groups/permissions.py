from rest_framework import permissions


def is_platform_admin(user):
    return bool(user and user.is_authenticated and user.is_platform_admin)


class IsGroupLeader(permissions.BasePermission):
    """
    Permission: User must be the group leader or a platform administrator.
    """

    def has_object_permission(self, request, view, obj):
        # obj is a Clan or Federation instance
        return is_platform_admin(request.user) or obj.is_leader(request.user)


class IsGroupLeaderOrOfficer(permissions.BasePermission):
    """
    Permission: User must be the group leader, an officer, or a platform
    administrator.
    """

    def has_object_permission(self, request, view, obj):
        # obj is a Clan or Federation instance
        return (
            is_platform_admin(request.user)
            or obj.is_leader(request.user)
            or obj.is_staff_member(request.user)
        )

