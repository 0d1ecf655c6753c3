# apps/connections/models.py

from django.db import models

from apps.common.models import TimestampedModel
from apps.common.enums import ProxyProtocol


class ConnectionEndpoint(TimestampedModel):
    """
    An outbound egress point (proxy) used for platform fetches.
    Health counters are written by the connection pool after every report.
    """
    host = models.CharField(max_length=255)
    port = models.PositiveIntegerField()
    protocol = models.CharField(
        max_length=10,
        choices=ProxyProtocol.choices,
        default=ProxyProtocol.HTTP,
    )
    username = models.CharField(max_length=255, blank=True)
    password = models.CharField(max_length=255, blank=True)
    country = models.CharField(max_length=10, blank=True)

    # Health
    is_active = models.BooleanField(default=True, db_index=True)
    success_rate = models.FloatField(default=100.0, help_text="Rolling success rate, 0-100")
    total_requests = models.PositiveIntegerField(default=0)
    failed_requests = models.PositiveIntegerField(default=0)
    last_used_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        verbose_name = "Connection Endpoint"
        verbose_name_plural = "Connection Endpoints"
        ordering = ["id"]
        constraints = [
            models.UniqueConstraint(
                fields=["host", "port", "username"],
                name="unique_connection_endpoint",
            )
        ]

    def __str__(self):
        return f"{self.protocol}://{self.host}:{self.port}"
