# apps/candidates/services.py

import logging
from dataclasses import dataclass, field, asdict

from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from apps.common.enums import Platform, DiscoverySource, ReviewStatus, RunStatus
from apps.common.exceptions import ConfigurationError
from apps.common.handles import normalize_handle, profile_url_for, looks_like_url, extract_email

from .models import Candidate, Prospect, Application
from .reconciliation import IdentityResolver, ObservedIdentity, record_detection_snapshot

logger = logging.getLogger(__name__)


PLATFORM_DOMAINS = {
    Platform.INSTAGRAM: "instagram.com",
    Platform.TIKTOK: "tiktok.com",
    Platform.YOUTUBE: "youtube.com",
}


def upsert_candidate(
    platform: str,
    handle: str,
    country: str = "",
    source: str = DiscoverySource.TAG_MINING,
    display_name: str = "",
    email: str = "",
    bio: str = "",
    follower_count: int | None = None,
    profile_data: dict | None = None,
) -> tuple[Candidate, bool]:
    """
    Create or update an admitted candidate keyed by (platform, handle).

    Re-discovery updates the existing row. The source tag of the first
    discovery is kept; a different country overwrites the stored one.

    Returns:
        tuple: (candidate, created)
    """
    handle = normalize_handle(handle)
    if not handle:
        raise ValueError("handle is required")

    defaults = {
        "profile_url": profile_url_for(platform, handle),
        "country": country,
        "source": source,
        "display_name": display_name or handle,
        "email": email or extract_email(bio),
        "bio": bio,
        "follower_count": follower_count or 0,
        "profile_data": profile_data,
        "last_enriched_at": timezone.now() if profile_data is not None else None,
    }

    with transaction.atomic():
        candidate = (
            Candidate.objects.select_for_update()
            .filter(platform=platform, handle=handle)
            .first()
        )
        if candidate is None:
            candidate = Candidate.objects.create(platform=platform, handle=handle, **defaults)
            return candidate, True

        update_fields = ["updated_at"]
        if country and candidate.country != country:
            logger.info(f"Reassigning @{handle} country: {candidate.country or '-'} -> {country}")
            candidate.country = country
            update_fields.append("country")
        if display_name:
            candidate.display_name = display_name
            update_fields.append("display_name")
        if bio:
            candidate.bio = bio
            update_fields.append("bio")
        if not candidate.email and defaults["email"]:
            candidate.email = defaults["email"]
            update_fields.append("email")
        if follower_count is not None:
            candidate.follower_count = follower_count
            update_fields.append("follower_count")
        if profile_data is not None:
            candidate.profile_data = profile_data
            candidate.last_enriched_at = defaults["last_enriched_at"]
            update_fields.extend(["profile_data", "last_enriched_at"])
        candidate.save(update_fields=update_fields)
        return candidate, False


def update_candidate_profile(candidate: Candidate, profile: dict) -> Candidate:
    """Store a successful enrichment on the candidate."""
    candidate.profile_data = profile
    candidate.last_enriched_at = timezone.now()
    candidate.follower_count = profile.get("followers") or 0
    update_fields = ["profile_data", "last_enriched_at", "follower_count", "updated_at"]

    bio = profile.get("bio") or ""
    if bio:
        candidate.bio = bio
        update_fields.append("bio")
    if profile.get("full_name"):
        candidate.display_name = profile["full_name"]
        update_fields.append("display_name")
    if not candidate.email:
        email = extract_email(bio)
        if email:
            logger.info(f"Extracted email for @{candidate.handle} from bio")
            candidate.email = email
            update_fields.append("email")

    candidate.save(update_fields=update_fields)
    return candidate


# === In-flight claims ===

def unclaimed_q() -> Q:
    """Candidates with no claim, or a claim left behind by a run that has stopped."""
    return Q(in_flight_run__isnull=True) | ~Q(in_flight_run__status=RunStatus.RUNNING)


def claim_candidate(candidate: Candidate, run_id: int) -> bool:
    """Mark an enrichment attempt in flight. False if another running run holds it."""
    claimed = Candidate.objects.filter(
        unclaimed_q() | Q(in_flight_run_id=run_id),
        pk=candidate.pk,
    ).update(in_flight_run_id=run_id)
    return claimed == 1


def release_candidate(candidate: Candidate, run_id: int) -> None:
    Candidate.objects.filter(pk=candidate.pk, in_flight_run_id=run_id).update(in_flight_run=None)


def release_run_claims(run_id: int) -> int:
    return Candidate.objects.filter(in_flight_run_id=run_id).update(in_flight_run=None)


# === Bulk admission ===

@dataclass
class ImportResult:
    created: int = 0
    updated: int = 0
    batch_duplicates_skipped: int = 0
    store_duplicates_skipped: int = 0
    invalid: int = 0
    created_handles: list[str] = field(default_factory=list)
    updated_handles: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def import_handles(
    urls: list[str],
    country: str,
    source: str = DiscoverySource.IMPORT,
    platform: str = Platform.INSTAGRAM,
) -> ImportResult:
    """
    Admit a batch of externally sourced profile URLs (or bare handles).

    - repeated handles inside the batch are dropped after the first
    - handles already admitted with the same country are skipped
    - handles already admitted with another country get the new country
    - everything else is created
    """
    if not urls:
        raise ConfigurationError("urls list required")
    if not country:
        raise ConfigurationError("country required")

    result = ImportResult()
    domain = PLATFORM_DOMAINS.get(platform, "")
    seen: set[str] = set()
    ordered: list[str] = []

    for url in urls:
        raw = (url or "").strip()
        if looks_like_url(raw) and domain and domain not in raw.lower():
            logger.warning(f"Skipping URL for another platform: {raw}")
            result.invalid += 1
            continue
        handle = normalize_handle(raw)
        if not handle:
            result.invalid += 1
            continue
        if handle in seen:
            logger.debug(f"Skipping duplicate in batch: {handle}")
            result.batch_duplicates_skipped += 1
            continue
        seen.add(handle)
        ordered.append(handle)

    with transaction.atomic():
        existing = {
            c.handle: c
            for c in Candidate.objects.select_for_update().filter(platform=platform, handle__in=ordered)
        }

        for handle in ordered:
            candidate = existing.get(handle)
            if candidate is None:
                # A concurrent import may have inserted it since the lookup
                candidate, created = Candidate.objects.get_or_create(
                    platform=platform,
                    handle=handle,
                    defaults={
                        "profile_url": profile_url_for(platform, handle),
                        "display_name": handle,
                        "country": country,
                        "source": source,
                    },
                )
                if created:
                    result.created += 1
                    result.created_handles.append(handle)
                    continue

            if candidate.country != country:
                logger.info(f"Updating country for {handle}: {candidate.country} -> {country}")
                candidate.country = country
                candidate.save(update_fields=["country", "updated_at"])
                result.updated += 1
                result.updated_handles.append(handle)
            else:
                result.store_duplicates_skipped += 1

    logger.info(
        f"Imported {len(urls)} URLs for {country}: {result.created} created, "
        f"{result.updated} updated, {result.batch_duplicates_skipped} batch duplicates, "
        f"{result.store_duplicates_skipped} store duplicates, {result.invalid} invalid"
    )
    return result


# === Prospect review ===

def approve_prospect(prospect: Prospect) -> Candidate | None:
    """
    Promote a prospect to the admitted store. If the account is already
    admitted, the prospect is marked as a duplicate instead.
    """
    handle = normalize_handle(prospect.instagram_handle or prospect.instagram_url)
    if not handle:
        raise ConfigurationError("Prospect has no Instagram handle")

    duplicates = IdentityResolver().find_duplicates(
        ObservedIdentity.from_prospect(prospect), exclude=prospect,
    )
    existing = duplicates.admitted_match(Platform.INSTAGRAM, handle)
    if existing is not None:
        prospect.status = ReviewStatus.DUPLICATE
        prospect.duplicate_of_id = existing.record_id
        prospect.notes = f"Duplicate of admitted candidate @{existing.handle}"
        prospect.save(update_fields=["status", "duplicate_of", "notes", "updated_at"])
        record_detection_snapshot(prospect, duplicates)
        return None

    candidate, _ = upsert_candidate(
        platform=Platform.INSTAGRAM,
        handle=handle,
        country=prospect.country,
        source=DiscoverySource.PROSPECT,
        display_name=prospect.name,
        email=prospect.email,
        bio=prospect.bio,
        follower_count=prospect.total_followers,
    )
    prospect.status = ReviewStatus.APPROVED
    prospect.save(update_fields=["status", "updated_at"])
    return candidate


def reject_prospect(prospect: Prospect, notes: str = "") -> Prospect:
    prospect.status = ReviewStatus.REJECTED
    if notes:
        prospect.notes = notes
    prospect.save(update_fields=["status", "notes", "updated_at"])
    return prospect


# === Application intake ===

def submit_application(**data) -> Application:
    """
    Store an inbound application, then attach a duplicate-detection snapshot.
    Detection problems never reject the application.
    """
    application = Application.objects.create(**data)

    try:
        duplicates = IdentityResolver().find_duplicates(
            ObservedIdentity.from_application(application), exclude=application,
        )
        record_detection_snapshot(application, duplicates)
    except Exception as e:
        logger.error(f"Duplicate detection failed for application {application.id}: {e}")

    return application


def create_prospect(**data) -> Prospect:
    """Store an auto-discovered prospect with its duplicate-detection snapshot."""
    if data.get("instagram_handle"):
        data["instagram_handle"] = normalize_handle(data["instagram_handle"])
    prospect = Prospect.objects.create(**data)

    duplicates = IdentityResolver().find_duplicates(
        ObservedIdentity.from_prospect(prospect), exclude=prospect,
    )
    record_detection_snapshot(prospect, duplicates)
    return prospect
