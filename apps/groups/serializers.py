from rest_framework import serializers

from apps.accounts.models import User

from .models import ClanMembership, FederationMembership, JoinRequest


class UserMinimalSerializer(serializers.ModelSerializer):
    """Minimal user info for nested serialization."""

    display_name = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = ['id', 'email', 'display_name']
        read_only_fields = fields

    def get_display_name(self, obj):
        return obj.get_display_name()


class ClanMemberSerializer(serializers.ModelSerializer):
    """Clan member information."""

    user = UserMinimalSerializer(read_only=True)

    class Meta:
        model = ClanMembership
        fields = ['id', 'user', 'role', 'joined_at']
        read_only_fields = fields


class FederationMemberSerializer(serializers.ModelSerializer):
    """Federation member information."""

    user = UserMinimalSerializer(read_only=True)

    class Meta:
        model = FederationMembership
        fields = ['id', 'user', 'role', 'joined_at']
        read_only_fields = fields


class GroupListSerializer(serializers.Serializer):
    """Lightweight serializer for clan and federation lists."""

    id = serializers.UUIDField(read_only=True)
    name = serializers.CharField(read_only=True)
    tag = serializers.CharField(read_only=True)
    leader = UserMinimalSerializer(read_only=True)
    member_count = serializers.SerializerMethodField()
    created_at = serializers.DateTimeField(read_only=True)

    def get_member_count(self, obj):
        return obj.memberships.count()


class ClanListSerializer(GroupListSerializer):
    federation_id = serializers.UUIDField(read_only=True)


class FederationListSerializer(GroupListSerializer):
    clan_count = serializers.SerializerMethodField()

    def get_clan_count(self, obj):
        return obj.clans.count()


class GroupCreateSerializer(serializers.Serializer):
    """
    Serializer for creating clans and federations.

    ``leader`` may only be set by platform administrators; everyone else
    founds the group as its leader.
    """

    name = serializers.CharField(max_length=100)
    tag = serializers.CharField(max_length=10)
    description = serializers.CharField(required=False, allow_blank=True, default='')
    leader = serializers.UUIDField(required=False, allow_null=True)
    bootstrap = serializers.BooleanField(required=False, default=False)

    def validate_tag(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Tag cannot be blank")
        return value.upper()


class UserTargetSerializer(serializers.Serializer):
    """Serializer for actions addressed at one member."""

    user_id = serializers.UUIDField(required=True)


class JoinGroupSerializer(serializers.Serializer):
    """
    Serializer for joining a group.

    Administrators may add another user by passing ``user_id``.
    """

    user_id = serializers.UUIDField(required=False)


class PurgeRequestSerializer(serializers.Serializer):
    """Administrators may purge another user by passing ``user_id``."""

    user_id = serializers.UUIDField(required=False)


class ClanLinkSerializer(serializers.Serializer):
    clan_id = serializers.UUIDField(required=True)


class JoinRequestSerializer(serializers.ModelSerializer):
    """Join request with its requester."""

    requester = UserMinimalSerializer(read_only=True)
    group_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = JoinRequest
        fields = [
            'id', 'kind', 'group_id', 'requester', 'message',
            'status', 'created_at', 'responded_at',
        ]
        read_only_fields = fields


class JoinRequestCreateSerializer(serializers.Serializer):
    message = serializers.CharField(max_length=500, required=False, allow_blank=True, default='')


class JoinRequestAnswerSerializer(serializers.Serializer):
    """Serializer for accepting or rejecting a join request."""

    request_id = serializers.UUIDField(required=True)


class GroupResultSerializer(serializers.Serializer):
    """Summary of a committed mutation."""

    kind = serializers.CharField()
    group_id = serializers.UUIDField()
    leader_id = serializers.UUIDField(allow_null=True)
    dissolved = serializers.BooleanField()
    succession = serializers.SerializerMethodField()
    events = serializers.SerializerMethodField()

    def get_succession(self, obj):
        if obj.succession is None:
            return None
        return {
            'outcome': obj.succession.outcome.value,
            'successor_id': str(obj.succession.successor_id) if obj.succession.successor_id is not None else None,
        }

    def get_events(self, obj):
        return [str(event.type) for event in obj.events]


class PurgeReportSerializer(serializers.Serializer):
    user_id = serializers.UUIDField()
    clans_transferred = serializers.IntegerField()
    clans_dissolved = serializers.IntegerField()
    clans_left = serializers.IntegerField()
    federations_transferred = serializers.IntegerField()
    federations_dissolved = serializers.IntegerField()
    federations_left = serializers.IntegerField()
    errors = serializers.ListField(child=serializers.DictField())
    skipped = serializers.ListField(child=serializers.DictField())
