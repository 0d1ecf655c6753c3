# apps/candidates/serializers.py

from rest_framework import serializers

from apps.common.enums import Platform, DiscoverySource
from .models import Candidate, Prospect, Application


SNAPSHOT_FIELDS = ["possible_duplicate_ids", "merge_status", "merge_data"]


class CandidateSerializer(serializers.ModelSerializer):
    """Full candidate serializer."""

    has_profile_data = serializers.BooleanField(read_only=True)

    class Meta:
        model = Candidate
        fields = [
            "id",
            "platform",
            "handle",
            "profile_url",
            "display_name",
            "email",
            "bio",
            "follower_count",
            "country",
            "source",
            "is_active",
            "has_profile_data",
            "profile_data",
            "last_enriched_at",
            *SNAPSHOT_FIELDS,
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class CandidateListSerializer(serializers.ModelSerializer):
    """Lighter serializer for list views."""

    has_profile_data = serializers.BooleanField(read_only=True)

    class Meta:
        model = Candidate
        fields = [
            "id",
            "platform",
            "handle",
            "display_name",
            "follower_count",
            "country",
            "source",
            "has_profile_data",
            "last_enriched_at",
        ]


class ImportHandlesSerializer(serializers.Serializer):
    """Serializer for a bulk handle import."""

    urls = serializers.ListField(child=serializers.CharField(allow_blank=True), allow_empty=False)
    country = serializers.CharField()
    platform = serializers.ChoiceField(choices=Platform.choices, default=Platform.INSTAGRAM)
    source = serializers.ChoiceField(choices=DiscoverySource.choices, default=DiscoverySource.IMPORT)


class ProspectSerializer(serializers.ModelSerializer):
    class Meta:
        model = Prospect
        fields = [
            "id",
            "name",
            "email",
            "bio",
            "country",
            "instagram_handle",
            "instagram_url",
            "tiktok_handle",
            "tiktok_url",
            "youtube_channel",
            "youtube_url",
            "total_followers",
            "status",
            "duplicate_of",
            "run",
            "notes",
            *SNAPSHOT_FIELDS,
            "created_at",
        ]
        read_only_fields = ["id", "status", "duplicate_of", "run", *SNAPSHOT_FIELDS, "created_at"]


class ApplicationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Application
        fields = [
            "id",
            "name",
            "email",
            "instagram",
            "tiktok",
            "youtube",
            "facebook",
            "categories",
            "bio",
            "status",
            *SNAPSHOT_FIELDS,
            "created_at",
        ]
        read_only_fields = ["id", "status", *SNAPSHOT_FIELDS, "created_at"]

    def validate(self, attrs):
        if not any(attrs.get(key) for key in ("instagram", "tiktok", "youtube", "facebook")):
            raise serializers.ValidationError("At least one social account is required")
        return attrs
