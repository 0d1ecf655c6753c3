# apps/common/models.py

from django.db import models

from .enums import MergeStatus


class TimestampedModel(models.Model):
    """Abstract base adding created/updated timestamps."""
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class DuplicateSnapshotModel(models.Model):
    """
    Duplicate-detection snapshot written by the identity resolver.
    Informational only; never used as a source of truth.
    """
    possible_duplicate_ids = models.JSONField(default=list, blank=True)
    merge_status = models.CharField(
        max_length=20,
        choices=MergeStatus.choices,
        default=MergeStatus.NONE,
    )
    merge_data = models.JSONField(
        default=dict,
        blank=True,
        help_text="detected_at, auto_detected and the matched records",
    )

    class Meta:
        abstract = True
