# ==========================================
# apps/groups/admin.py
# ==========================================

from django.contrib import admin, messages

from apps.groups.models import Clan, ClanMembership, Federation, FederationMembership, JoinRequest
from apps.groups.services import GroupsServiceError, dissolve_group


class ReadOnlyMembershipInline(admin.TabularInline):
    """
    Memberships are shown but never edited here; only the services may
    change them.
    """
    extra = 0
    fields = ['user', 'role', 'joined_at']
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


class ClanMembershipInline(ReadOnlyMembershipInline):
    model = ClanMembership


class FederationMembershipInline(ReadOnlyMembershipInline):
    model = FederationMembership


class BaseGroupAdmin(admin.ModelAdmin):
    """Shared admin for clans and federations."""

    list_display = ['tag', 'name', 'leader', 'member_count', 'created_at']
    list_filter = ['created_at']
    search_fields = ['name', 'tag', 'description', 'leader__email']
    readonly_fields = ['leader', 'version', 'created_at', 'updated_at']
    date_hierarchy = 'created_at'
    ordering = ['-created_at']
    actions = ['dissolve_selected']

    fieldsets = (
        ('Basic Information', {
            'fields': ('name', 'tag', 'description', 'leader')
        }),
        ('Metadata', {
            'fields': ('version', 'created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )

    def member_count(self, obj):
        """Show number of members."""
        return obj.memberships.count()
    member_count.short_description = 'Members'

    def get_actions(self, request):
        # Deleting rows directly would skip the cascade
        actions = super().get_actions(request)
        actions.pop('delete_selected', None)
        return actions

    def has_delete_permission(self, request, obj=None):
        return False

    def dissolve_selected(self, request, queryset):
        """Dissolve selected groups through the membership services."""
        dissolved = 0
        for group in queryset:
            try:
                dissolve_group(kind=group.kind, group_id=group.id)
                dissolved += 1
            except GroupsServiceError as e:
                self.message_user(request, f"{group}: {e}", level=messages.ERROR)
        self.message_user(request, f"Dissolved {dissolved} groups")
    dissolve_selected.short_description = "Dissolve selected groups"


@admin.register(Clan)
class ClanAdmin(BaseGroupAdmin):
    list_display = BaseGroupAdmin.list_display + ['federation']
    readonly_fields = BaseGroupAdmin.readonly_fields + ['federation']
    inlines = [ClanMembershipInline]

    def get_queryset(self, request):
        """Optimize query."""
        qs = super().get_queryset(request)
        return qs.select_related('leader', 'federation')


@admin.register(Federation)
class FederationAdmin(BaseGroupAdmin):
    inlines = [FederationMembershipInline]

    def get_queryset(self, request):
        """Optimize query."""
        qs = super().get_queryset(request)
        return qs.select_related('leader')


@admin.register(JoinRequest)
class JoinRequestAdmin(admin.ModelAdmin):
    """Join requests are answered through the API; the admin only lists them."""

    list_display = ['requester', 'kind', 'clan', 'federation', 'status', 'created_at', 'responded_at']
    list_filter = ['kind', 'status', 'created_at']
    search_fields = ['requester__email', 'clan__tag', 'federation__tag']
    readonly_fields = [
        'requester', 'kind', 'clan', 'federation', 'message',
        'status', 'responded_by', 'created_at', 'responded_at',
    ]
    ordering = ['-created_at']

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def get_queryset(self, request):
        """Optimize query."""
        qs = super().get_queryset(request)
        return qs.select_related('requester', 'clan', 'federation')
