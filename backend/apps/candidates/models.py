# apps/candidates/models.py

from django.db import models

from apps.common.models import TimestampedModel, DuplicateSnapshotModel
from apps.common.enums import Platform, DiscoverySource, ReviewStatus


class Candidate(TimestampedModel, DuplicateSnapshotModel):
    """
    An admitted social account. (platform, handle) is unique; the handle is
    always stored normalized.
    """

    # Identity
    platform = models.CharField(
        max_length=20,
        choices=Platform.choices,
        default=Platform.INSTAGRAM,
    )
    handle = models.CharField(max_length=255)
    profile_url = models.URLField(max_length=2048, blank=True)

    # Profile
    display_name = models.CharField(max_length=255, blank=True)
    email = models.EmailField(blank=True, default="")
    bio = models.TextField(blank=True)
    follower_count = models.PositiveIntegerField(default=0)
    country = models.CharField(max_length=10, blank=True, db_index=True)

    # Last successful fetch, null until enriched
    profile_data = models.JSONField(null=True, blank=True)
    last_enriched_at = models.DateTimeField(null=True, blank=True)

    source = models.CharField(
        max_length=20,
        choices=DiscoverySource.choices,
        default=DiscoverySource.TAG_MINING,
    )
    is_active = models.BooleanField(default=True, db_index=True)

    # Set while an enrichment attempt is in flight
    in_flight_run = models.ForeignKey(
        "runs.AcquisitionRun",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="+",
    )

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["platform", "handle"],
                name="unique_candidate_per_platform",
            )
        ]
        indexes = [
            models.Index(fields=["country", "is_active"]),
            models.Index(fields=["email"]),
        ]
        ordering = ["-created_at"]

    def __str__(self):
        return f"@{self.handle} ({self.platform})"

    @property
    def has_profile_data(self) -> bool:
        return self.profile_data is not None


class Prospect(TimestampedModel, DuplicateSnapshotModel):
    """An auto-discovered account awaiting review."""

    name = models.CharField(max_length=255)
    email = models.EmailField(blank=True, default="")
    bio = models.TextField(blank=True)
    country = models.CharField(max_length=10, blank=True)

    instagram_handle = models.CharField(max_length=255, blank=True, db_index=True)
    instagram_url = models.CharField(max_length=2048, blank=True)
    tiktok_handle = models.CharField(max_length=255, blank=True)
    tiktok_url = models.CharField(max_length=2048, blank=True)
    youtube_channel = models.CharField(max_length=255, blank=True)
    youtube_url = models.CharField(max_length=2048, blank=True)

    total_followers = models.PositiveIntegerField(default=0)
    status = models.CharField(
        max_length=20,
        choices=ReviewStatus.choices,
        default=ReviewStatus.PENDING,
        db_index=True,
    )
    duplicate_of = models.ForeignKey(
        Candidate,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="duplicate_prospects",
    )
    run = models.ForeignKey(
        "runs.AcquisitionRun",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="prospects",
    )
    notes = models.TextField(blank=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.name} ({self.status})"


class Application(TimestampedModel, DuplicateSnapshotModel):
    """A user-submitted creator application. Claims are unverified."""

    name = models.CharField(max_length=255)
    email = models.EmailField(db_index=True)
    instagram = models.CharField(max_length=2048, blank=True)
    tiktok = models.CharField(max_length=2048, blank=True)
    youtube = models.CharField(max_length=2048, blank=True)
    facebook = models.CharField(max_length=2048, blank=True)
    categories = models.JSONField(default=list, blank=True)
    bio = models.TextField(blank=True)
    status = models.CharField(
        max_length=20,
        choices=ReviewStatus.choices,
        default=ReviewStatus.PENDING,
        db_index=True,
    )

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.name} <{self.email}>"
