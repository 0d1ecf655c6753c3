# apps/common/enums.py

from django.db import models


class Platform(models.TextChoices):
    """Social platforms an account handle can live on."""
    INSTAGRAM = "instagram", "Instagram"
    TIKTOK = "tiktok", "TikTok"
    YOUTUBE = "youtube", "YouTube"


class RunType(models.TextChoices):
    DISCOVERY = "discovery", "Discovery"
    ENRICHMENT = "enrichment", "Enrichment"


class RunStatus(models.TextChoices):
    """Lifecycle of an acquisition run. Only RUNNING is non-terminal."""
    RUNNING = "running", "Running"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


class AttemptStatus(models.TextChoices):
    """Outcome of a single profile fetch within a run."""
    SUCCESS = "success", "Success"
    FAILED = "failed", "Failed"
    NOT_FOUND = "not_found", "Not found"
    SKIPPED_PRIVATE = "skipped_private", "Skipped (private)"


class DiscoverySource(models.TextChoices):
    """Which phase or method found a candidate."""
    TAG_MINING = "tag_mining", "Tag mining"
    CHAIN = "chain", "Chain expansion"
    GEOGRAPHIC = "geographic", "Geographic enumeration"
    EXTERNAL = "external", "External source"
    IMPORT = "import", "Bulk import"
    PROSPECT = "prospect", "Approved prospect"


class ReviewStatus(models.TextChoices):
    """Review state for prospects and inbound applications."""
    PENDING = "pending", "Pending"
    APPROVED = "approved", "Approved"
    REJECTED = "rejected", "Rejected"
    DUPLICATE = "duplicate", "Duplicate"


class MergeStatus(models.TextChoices):
    NONE = "none", "None"
    DETECTED = "detected", "Detected"


class StoreLayer(models.TextChoices):
    """Account stores searched by the identity resolver, highest confidence first."""
    CANDIDATE = "candidate", "Admitted candidate"
    PROSPECT = "prospect", "Prospect"
    APPLICATION = "application", "Application"


class MatchBasis(models.TextChoices):
    HANDLE = "handle", "Handle"
    URL_CONTAINS = "url_contains", "URL contains handle"
    EMAIL = "email", "Email"


class ProxyProtocol(models.TextChoices):
    HTTP = "http", "HTTP"
    HTTPS = "https", "HTTPS"
    SOCKS5 = "socks5", "SOCKS5"
