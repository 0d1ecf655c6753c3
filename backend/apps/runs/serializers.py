# apps/runs/serializers.py

from rest_framework import serializers
from .models import AcquisitionRun, AcquisitionAttempt


class AcquisitionRunSerializer(serializers.ModelSerializer):
    """Full run serializer."""

    duration_seconds = serializers.FloatField(read_only=True)

    class Meta:
        model = AcquisitionRun
        fields = [
            "id",
            "run_type",
            "status",
            "config",
            "total_found",
            "total_processed",
            "started_at",
            "completed_at",
            "duration_seconds",
            "errors",
            "celery_task_id",
            "triggered_by",
        ]
        read_only_fields = fields


class AcquisitionRunListSerializer(serializers.ModelSerializer):
    """Lighter serializer for run lists."""

    class Meta:
        model = AcquisitionRun
        fields = [
            "id",
            "run_type",
            "status",
            "total_found",
            "total_processed",
            "started_at",
            "completed_at",
        ]


class AcquisitionAttemptSerializer(serializers.ModelSerializer):
    class Meta:
        model = AcquisitionAttempt
        fields = [
            "id",
            "handle",
            "platform",
            "profile_url",
            "country",
            "candidate",
            "status",
            "error_message",
            "duration_ms",
            "attempted_at",
        ]


class StartEnrichmentSerializer(serializers.Serializer):
    """Serializer for starting an enrichment batch. Ranges are checked by the run config."""

    filter = serializers.DictField(child=serializers.CharField(allow_blank=True), required=False, default=dict)
    batch_size = serializers.IntegerField(required=False, default=10)
    delay = serializers.JSONField(required=False, default=[3, 3])
    skip_private = serializers.BooleanField(required=False, default=True)
    only_missing_data = serializers.BooleanField(required=False, default=True)
    max_runtime_seconds = serializers.IntegerField(required=False, default=30 * 60)
