# apps/runs/models.py

from django.db import models
from django.utils import timezone

from apps.common.models import TimestampedModel
from apps.common.enums import Platform, RunType, RunStatus, AttemptStatus


class AcquisitionRun(TimestampedModel):
    """
    One execution of the discovery orchestrator or of an enrichment batch.
    Created in `running`; ends in `completed` or `failed`, nothing else.
    """
    run_type = models.CharField(
        max_length=20,
        choices=RunType.choices,
        default=RunType.DISCOVERY,
        db_index=True,
    )
    status = models.CharField(
        max_length=20,
        choices=RunStatus.choices,
        default=RunStatus.RUNNING,
        db_index=True,
    )

    # Typed run configuration, snapshotted at start
    config = models.JSONField(default=dict, blank=True)

    # Progress counters, monotonic while running
    total_found = models.PositiveIntegerField(default=0)
    total_processed = models.PositiveIntegerField(default=0)

    # Timing
    started_at = models.DateTimeField(default=timezone.now)
    completed_at = models.DateTimeField(null=True, blank=True)

    # Terminal error list
    errors = models.JSONField(default=list, blank=True)

    # Execution context
    celery_task_id = models.CharField(max_length=255, blank=True, db_index=True)
    triggered_by = models.CharField(
        max_length=50,
        default="manual",
        help_text="scheduler, manual, api, etc.",
    )

    class Meta:
        ordering = ["-started_at"]
        indexes = [
            models.Index(fields=["run_type", "status"]),
            models.Index(fields=["-started_at"]),
        ]

    def __str__(self):
        return f"Run {self.id} - {self.run_type} ({self.status})"

    @property
    def is_terminal(self) -> bool:
        return self.status in (RunStatus.COMPLETED, RunStatus.FAILED)

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None


class AcquisitionAttempt(models.Model):
    """
    One fetch of one account within one run. Append-only.
    """
    run = models.ForeignKey(
        AcquisitionRun,
        on_delete=models.CASCADE,
        related_name="attempts",
    )
    # Null when no candidate row exists yet for the handle
    candidate = models.ForeignKey(
        "candidates.Candidate",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="attempts",
    )
    handle = models.CharField(max_length=255, db_index=True)
    platform = models.CharField(
        max_length=20,
        choices=Platform.choices,
        default=Platform.INSTAGRAM,
    )
    profile_url = models.URLField(max_length=2048, blank=True)
    country = models.CharField(max_length=10, blank=True)

    status = models.CharField(
        max_length=20,
        choices=AttemptStatus.choices,
        db_index=True,
    )
    error_message = models.TextField(blank=True)

    # Raw captured payload, audit only. Stored opaquely as a JSON string.
    payload = models.TextField(blank=True)

    duration_ms = models.PositiveIntegerField(null=True, blank=True)
    attempted_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        ordering = ["attempted_at", "id"]
        indexes = [
            models.Index(fields=["run", "status"]),
            models.Index(fields=["candidate", "-attempted_at"]),
        ]

    def __str__(self):
        return f"[{self.status}] @{self.handle} (run {self.run_id})"

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise ValueError("Acquisition attempts are immutable")
        super().save(*args, **kwargs)
