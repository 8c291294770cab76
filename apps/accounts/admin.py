# ==========================================
# apps/accounts/admin.py
# ==========================================

from django.contrib import admin, messages
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from django.utils.html import format_html
from .models import User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """
    Custom admin interface for User model.

    Clan and federation fields are read-only here: memberships change
    only through the groups services (or the purge action below).
    """

    # List display configuration
    list_display = [
        'email',
        'display_name',
        'is_active',
        'is_staff_badge',
        'clan',
        'clan_role',
        'federation',
        'federation_role',
        'created_at',
    ]

    list_filter = [
        'is_active',
        'is_staff',
        'is_superuser',
        'clan_role',
        'federation_role',
        'created_at',
    ]

    search_fields = [
        'email',
        'display_name',
    ]

    ordering = ['-created_at']
    date_hierarchy = 'created_at'

    # Remove username field references from BaseUserAdmin
    fieldsets = (
        ('Basic Information', {
            'fields': ('email', 'display_name', 'password')
        }),
        ('Permissions', {
            'fields': ('is_active', 'is_staff', 'is_superuser', 'groups', 'user_permissions'),
        }),
        ('Affiliations', {
            'fields': ('clan', 'clan_role', 'federation', 'federation_role', 'version'),
            'description': 'Managed by the membership services. Use the purge action to clear.',
        }),
        ('Timestamps', {
            'fields': ('created_at', 'last_login'),
            'classes': ('collapse',),
        }),
    )

    add_fieldsets = (
        ('Create User', {
            'classes': ('wide',),
            'fields': ('email', 'display_name', 'password1', 'password2'),
        }),
        ('Permissions', {
            'fields': ('is_active', 'is_staff', 'is_superuser'),
        }),
    )

    readonly_fields = [
        'clan',
        'clan_role',
        'federation',
        'federation_role',
        'version',
        'created_at',
        'last_login',
    ]

    filter_horizontal = ['groups', 'user_permissions']

    def is_staff_badge(self, obj):
        """Display staff status as colored badge."""
        if obj.is_platform_admin:
            return format_html(
                '<span style="background: #A47449; color: white; padding: 3px 8px; '
                'border-radius: 10px; font-size: 11px;">Platform admin</span>'
            )
        return format_html(
            '<span style="background: #ccc; color: #666; padding: 3px 8px; '
            'border-radius: 10px; font-size: 11px;">User</span>'
        )
    is_staff_badge.short_description = 'Role'
    is_staff_badge.admin_order_field = 'is_staff'

    # Actions
    actions = ['purge_affiliations']

    @admin.action(description='Remove selected users from all clans and federations')
    def purge_affiliations(self, request, queryset):
        """Run the affiliation purge for each selected user."""
        from apps.groups.services import purge_user_affiliations

        for user in queryset:
            report = purge_user_affiliations(user_id=user.id)
            level = messages.SUCCESS if report.ok else messages.WARNING
            self.message_user(
                request,
                f'{user.email}: {report.clans_transferred} clans transferred, '
                f'{report.clans_dissolved} dissolved, {report.clans_left} left; '
                f'{report.federations_transferred} federations transferred, '
                f'{report.federations_dissolved} dissolved, {report.federations_left} left; '
                f'{len(report.errors)} errors',
                level=level,
            )

    def get_queryset(self, request):
        """Optimize query."""
        qs = super().get_queryset(request)
        return qs.select_related('clan', 'federation')
