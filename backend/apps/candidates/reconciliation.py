# apps/candidates/reconciliation.py

"""
Cross-store identity reconciliation.

Searches the admitted candidate store, the prospect store and the inbound
application store for records that plausibly describe the same account.
The resolver only surfaces matches; it never merges or deletes anything.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from django.db import models
from django.db.models import Q
from django.utils import timezone

from apps.common.enums import Platform, StoreLayer, MatchBasis, MergeStatus
from apps.common.handles import normalize_handle

from .models import Candidate, Prospect, Application

logger = logging.getLogger(__name__)


# (handle field, url field) per platform on the prospect store
PROSPECT_FIELDS = {
    Platform.INSTAGRAM: ("instagram_handle", "instagram_url"),
    Platform.TIKTOK: ("tiktok_handle", "tiktok_url"),
    Platform.YOUTUBE: ("youtube_channel", "youtube_url"),
}

# Raw user-entered field per platform on the application store
APPLICATION_FIELDS = {
    Platform.INSTAGRAM: "instagram",
    Platform.TIKTOK: "tiktok",
    Platform.YOUTUBE: "youtube",
}


@dataclass(frozen=True)
class ObservedIdentity:
    """Identifiers observed for one account: handles per platform, optional email."""
    handles: dict[str, str] = field(default_factory=dict)
    email: str = ""

    @classmethod
    def build(cls, handles: dict[str, str] | None = None, email: str | None = "") -> "ObservedIdentity":
        normalized = {}
        for platform, value in (handles or {}).items():
            handle = normalize_handle(value)
            if handle:
                normalized[platform] = handle
        return cls(handles=normalized, email=(email or "").strip().lower())

    @classmethod
    def from_application(cls, application: Application) -> "ObservedIdentity":
        return cls.build(
            handles={
                platform: getattr(application, field_name)
                for platform, field_name in APPLICATION_FIELDS.items()
            },
            email=application.email,
        )

    @classmethod
    def from_prospect(cls, prospect: Prospect) -> "ObservedIdentity":
        handles = {}
        for platform, (handle_field, url_field) in PROSPECT_FIELDS.items():
            handles[platform] = getattr(prospect, handle_field) or getattr(prospect, url_field)
        return cls.build(handles=handles, email=prospect.email)

    @property
    def is_empty(self) -> bool:
        return not self.handles and not self.email


@dataclass
class DuplicateMatch:
    layer: str
    record_id: int
    basis: str
    platform: str = ""
    handle: str = ""
    name: str = ""
    email: str = ""
    country: str = ""
    status: str = ""
    followers: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "layer": self.layer,
            "id": self.record_id,
            "basis": self.basis,
            "platform": self.platform,
            "handle": self.handle,
            "name": self.name,
            "email": self.email,
            "country": self.country,
            "status": self.status,
            "followers": self.followers,
        }


@dataclass
class DuplicateCandidateSet:
    """Matches across all layers, in layer precedence order. Ephemeral."""
    matches: list[DuplicateMatch] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.matches)

    def __bool__(self) -> bool:
        return bool(self.matches)

    @property
    def ids(self) -> list[int]:
        return [m.record_id for m in self.matches]

    def by_layer(self, layer: str) -> list[DuplicateMatch]:
        return [m for m in self.matches if m.layer == layer]

    def admitted_match(self, platform: str, handle: str) -> DuplicateMatch | None:
        """Exact handle + platform match in the admitted store, if any."""
        for match in self.by_layer(StoreLayer.CANDIDATE):
            if (
                match.basis == MatchBasis.HANDLE
                and match.platform == platform
                and match.handle == handle
            ):
                return match
        return None

    def for_review(self, platform: str = "", handle: str = "") -> list[DuplicateMatch]:
        """Matches that are not an exact admitted short-circuit."""
        exact = self.admitted_match(platform, handle) if platform and handle else None
        return [m for m in self.matches if m is not exact]

    def to_snapshot(self) -> dict[str, Any]:
        return {
            "detected_at": timezone.now().isoformat(),
            "auto_detected": True,
            "duplicates": [m.to_dict() for m in self.matches],
        }


class IdentityResolver:
    """Finds plausible duplicates of an observed identity in the three stores."""

    def find_duplicates(
        self,
        observed: ObservedIdentity,
        exclude: models.Model | None = None,
    ) -> DuplicateCandidateSet:
        result = DuplicateCandidateSet()
        if observed.is_empty:
            return result

        result.matches.extend(self._search_candidates(observed, exclude))
        result.matches.extend(self._search_prospects(observed, exclude))
        result.matches.extend(self._search_applications(observed, exclude))

        if result:
            logger.info(
                f"Found {len(result)} possible duplicates for "
                f"{observed.handles or observed.email}"
            )
        return result

    # === Layer searches ===

    def _search_candidates(self, observed: ObservedIdentity, exclude) -> list[DuplicateMatch]:
        query = Q()
        for platform, handle in observed.handles.items():
            query |= Q(platform=platform) & (
                Q(handle=handle) | Q(profile_url__icontains=handle)
            )
        if observed.email:
            query |= Q(email__iexact=observed.email)

        qs = _excluding(Candidate.objects.filter(query), exclude, Candidate)
        matches = []
        for row in qs.order_by("id"):
            expected = observed.handles.get(row.platform, "")
            if expected and row.handle == expected:
                basis = MatchBasis.HANDLE
            elif expected and expected in (row.profile_url or "").lower():
                basis = MatchBasis.URL_CONTAINS
            else:
                basis = MatchBasis.EMAIL
            matches.append(DuplicateMatch(
                layer=StoreLayer.CANDIDATE,
                record_id=row.id,
                basis=basis,
                platform=row.platform,
                handle=row.handle,
                name=row.display_name,
                email=row.email,
                country=row.country,
                followers=row.follower_count,
            ))
        return matches

    def _search_prospects(self, observed: ObservedIdentity, exclude) -> list[DuplicateMatch]:
        query = Q()
        for platform, handle in observed.handles.items():
            if platform not in PROSPECT_FIELDS:
                continue
            handle_field, url_field = PROSPECT_FIELDS[platform]
            query |= Q(**{f"{handle_field}__iexact": handle}) | Q(**{f"{url_field}__icontains": handle})
        if observed.email:
            query |= Q(email__iexact=observed.email)
        if not query:
            return []

        qs = _excluding(Prospect.objects.filter(query), exclude, Prospect)
        matches = []
        for row in qs.order_by("id"):
            platform, handle, basis = self._classify(
                observed,
                {
                    platform: (getattr(row, handle_field), getattr(row, url_field))
                    for platform, (handle_field, url_field) in PROSPECT_FIELDS.items()
                },
            )
            matches.append(DuplicateMatch(
                layer=StoreLayer.PROSPECT,
                record_id=row.id,
                basis=basis,
                platform=platform,
                handle=handle,
                name=row.name,
                email=row.email,
                country=row.country,
                status=row.status,
                followers=row.total_followers,
            ))
        return matches

    def _search_applications(self, observed: ObservedIdentity, exclude) -> list[DuplicateMatch]:
        query = Q()
        for platform, handle in observed.handles.items():
            if platform not in APPLICATION_FIELDS:
                continue
            field_name = APPLICATION_FIELDS[platform]
            query |= Q(**{f"{field_name}__iexact": handle}) | Q(**{f"{field_name}__icontains": handle})
        if observed.email:
            query |= Q(email__iexact=observed.email)
        if not query:
            return []

        qs = _excluding(Application.objects.filter(query), exclude, Application)
        matches = []
        for row in qs.order_by("id"):
            platform, handle, basis = self._classify(
                observed,
                {
                    platform: (getattr(row, field_name), getattr(row, field_name))
                    for platform, field_name in APPLICATION_FIELDS.items()
                },
            )
            matches.append(DuplicateMatch(
                layer=StoreLayer.APPLICATION,
                record_id=row.id,
                basis=basis,
                platform=platform,
                handle=handle,
                name=row.name,
                email=row.email,
                status=row.status,
            ))
        return matches

    @staticmethod
    def _classify(
        observed: ObservedIdentity,
        stored: dict[str, tuple[str, str]],
    ) -> tuple[str, str, str]:
        """Pick the strongest basis: handle equality, then URL containment, then email."""
        contains_hit = None
        for platform, handle in observed.handles.items():
            if platform not in stored:
                continue
            handle_value, url_value = stored[platform]
            if normalize_handle(handle_value) == handle:
                return platform, handle, MatchBasis.HANDLE
            if contains_hit is None and handle in (url_value or "").lower():
                contains_hit = (platform, handle, MatchBasis.URL_CONTAINS)
        if contains_hit:
            return contains_hit
        return "", "", MatchBasis.EMAIL


def _excluding(qs, exclude, model):
    if exclude is not None and isinstance(exclude, model) and exclude.pk:
        return qs.exclude(pk=exclude.pk)
    return qs


def record_detection_snapshot(record: models.Model, duplicates: DuplicateCandidateSet) -> None:
    """Persist a detection snapshot onto the originating record for manual review."""
    if not duplicates:
        return
    record.possible_duplicate_ids = [
        {"layer": m.layer, "id": m.record_id} for m in duplicates.matches
    ]
    record.merge_status = MergeStatus.DETECTED
    record.merge_data = duplicates.to_snapshot()
    record.save(update_fields=["possible_duplicate_ids", "merge_status", "merge_data", "updated_at"])
