from django.contrib.auth import get_user_model
from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

from common.permissions import capabilities_for_user, get_user_role
from core.models import AuditLog, Garage

User = get_user_model()


class EmailOrUsernameTokenObtainPairSerializer(TokenObtainPairSerializer):
    """Accepts either the username or the account email in `username`."""

    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)
        token["role"] = user.role
        token["garage_id"] = str(user.garage_id) if user.garage_id else None
        token["is_superuser"] = user.is_superuser
        return token

    def validate(self, attrs):
        login = attrs.get("username", "")
        if "@" in login:
            match = User.objects.filter(email__iexact=login.strip()).only("username").first()
            if match is not None:
                attrs["username"] = match.get_username()
        return super().validate(attrs)


class GarageSerializer(serializers.ModelSerializer):
    class Meta:
        model = Garage
        fields = [
            "id",
            "code",
            "name",
            "phone",
            "email",
            "address",
            "timezone",
            "bay_count",
            "is_active",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]


class StaffSerializer(serializers.ModelSerializer):
    name = serializers.CharField(source="display_name", read_only=True)

    class Meta:
        model = User
        fields = ["id", "username", "name", "email", "role", "garage", "is_active"]
        read_only_fields = fields


class CurrentUserSerializer(serializers.ModelSerializer):
    name = serializers.CharField(source="display_name", read_only=True)
    garage_name = serializers.CharField(source="garage.name", read_only=True, default=None)
    effective_role = serializers.SerializerMethodField()
    capabilities = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = [
            "id",
            "username",
            "name",
            "email",
            "role",
            "effective_role",
            "garage",
            "garage_name",
            "is_superuser",
            "capabilities",
        ]
        read_only_fields = fields

    def get_effective_role(self, obj):
        return get_user_role(obj)

    def get_capabilities(self, obj):
        return capabilities_for_user(obj)


class AuditLogSerializer(serializers.ModelSerializer):
    actor_username = serializers.CharField(source="actor.username", read_only=True, default=None)
    garage_name = serializers.CharField(source="garage.name", read_only=True, default=None)

    class Meta:
        model = AuditLog
        fields = [
            "id",
            "actor",
            "actor_username",
            "garage",
            "garage_name",
            "action",
            "entity",
            "entity_id",
            "before_snapshot",
            "after_snapshot",
            "request_id",
            "created_at",
        ]
        read_only_fields = fields
