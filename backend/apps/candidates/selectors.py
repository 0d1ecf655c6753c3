# apps/candidates/selectors.py

from typing import Optional

from django.db.models import QuerySet, Q, Exists, OuterRef, F

from apps.common.enums import Platform, RunType, RunStatus, AttemptStatus, MergeStatus
from apps.runs.models import AcquisitionAttempt
from apps.runs.selectors import get_last_run

from .models import Candidate, Prospect, Application


# === Candidate Selectors ===

def get_candidate_by_id(candidate_id: int) -> Optional[Candidate]:
    return Candidate.objects.filter(id=candidate_id).first()


def get_candidate_by_handle(platform: str, handle: str) -> Optional[Candidate]:
    return Candidate.objects.filter(platform=platform, handle=handle).first()


def search_candidates(
    query: Optional[str] = None,
    country: Optional[str] = None,
    platform: Optional[str] = None,
    source: Optional[str] = None,
    has_data: Optional[bool] = None,
) -> QuerySet[Candidate]:
    """
    Search admitted candidates.

    Args:
        query: Search in handle, display name, email
        country: Filter by country assignment
        platform: Filter by platform
        source: Filter by discovery source tag
        has_data: True = enriched, False = missing profile data
    """
    qs = Candidate.objects.filter(is_active=True)

    if query:
        qs = qs.filter(
            Q(handle__icontains=query) |
            Q(display_name__icontains=query) |
            Q(email__icontains=query)
        )
    if country:
        qs = qs.filter(country=country)
    if platform:
        qs = qs.filter(platform=platform)
    if source:
        qs = qs.filter(source=source)
    if has_data is True:
        qs = qs.filter(profile_data__isnull=False)
    elif has_data is False:
        qs = qs.filter(profile_data__isnull=True)

    return qs


def get_enrichment_queue(
    limit: int,
    country: Optional[str] = None,
    platform: str = Platform.INSTAGRAM,
    only_missing_data: bool = True,
) -> list[Candidate]:
    """Candidates to refresh, never-enriched first, skipping ones already in flight."""
    qs = Candidate.objects.filter(
        Q(in_flight_run__isnull=True) | ~Q(in_flight_run__status=RunStatus.RUNNING),
        is_active=True,
        platform=platform,
    )
    if country:
        qs = qs.filter(country=country)
    if only_missing_data:
        qs = qs.filter(profile_data__isnull=True)

    qs = qs.order_by(F("last_enriched_at").asc(nulls_first=True), "created_at", "id")
    return list(qs[:limit])


def _attempts_for_candidate(**filters):
    return AcquisitionAttempt.objects.filter(
        Q(candidate=OuterRef("pk")) |
        Q(candidate__isnull=True, handle=OuterRef("handle"), platform=OuterRef("platform")),
        **filters,
    )


def get_enrichment_stats(
    country: Optional[str] = None,
    platform: str = Platform.INSTAGRAM,
) -> dict:
    """
    Aggregate enrichment coverage for a scope.

    Attempts recorded before a candidate row existed are matched by handle.
    """
    base = Candidate.objects.filter(is_active=True, platform=platform)
    if country:
        base = base.filter(country=country)

    total = base.count()
    with_data = base.filter(profile_data__isnull=False).count()
    missing = base.filter(profile_data__isnull=True)

    failed = missing.filter(
        Exists(_attempts_for_candidate(status=AttemptStatus.FAILED))
    ).count()
    never_attempted = missing.filter(
        ~Exists(_attempts_for_candidate())
    ).count()

    last_run = get_last_run(RunType.ENRICHMENT)
    last_run_data = None
    if last_run:
        last_run_data = {
            "id": last_run.id,
            "status": last_run.status,
            "completed_at": last_run.completed_at,
            "success_rate": (
                round(last_run.total_found / last_run.total_processed * 100)
                if last_run.total_processed else 0
            ),
        }

    return {
        "total_candidates": total,
        "with_data": with_data,
        "missing_data": total - with_data,
        "failed_attempts": failed,
        "never_attempted": never_attempted,
        "last_run": last_run_data,
    }


# === Prospect / Application Selectors ===

def get_prospect_by_id(prospect_id: int) -> Optional[Prospect]:
    return Prospect.objects.filter(id=prospect_id).first()


def get_prospects(status: Optional[str] = None, country: Optional[str] = None) -> QuerySet[Prospect]:
    qs = Prospect.objects.all()
    if status:
        qs = qs.filter(status=status)
    if country:
        qs = qs.filter(country=country)
    return qs


def get_applications(status: Optional[str] = None) -> QuerySet[Application]:
    qs = Application.objects.all()
    if status:
        qs = qs.filter(status=status)
    return qs


def get_records_with_detected_duplicates() -> dict[str, QuerySet]:
    return {
        "prospects": Prospect.objects.filter(merge_status=MergeStatus.DETECTED),
        "applications": Application.objects.filter(merge_status=MergeStatus.DETECTED),
    }
