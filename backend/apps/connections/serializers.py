# apps/connections/serializers.py

from rest_framework import serializers
from .models import ConnectionEndpoint


class ConnectionEndpointSerializer(serializers.ModelSerializer):
    """Endpoint serializer. Health fields are owned by the pool."""

    password = serializers.CharField(write_only=True, required=False, allow_blank=True)

    class Meta:
        model = ConnectionEndpoint
        fields = [
            "id",
            "host",
            "port",
            "protocol",
            "username",
            "password",
            "country",
            "is_active",
            "success_rate",
            "total_requests",
            "failed_requests",
            "last_used_at",
            "created_at",
        ]
        read_only_fields = [
            "id", "is_active", "success_rate", "total_requests",
            "failed_requests", "last_used_at", "created_at",
        ]
