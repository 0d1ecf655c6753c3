from datetime import timedelta

import pytest
from django.utils import timezone

from apps.candidates.models import Candidate, Prospect, Application
from apps.candidates.selectors import (
    search_candidates,
    get_enrichment_queue,
    get_enrichment_stats,
    get_records_with_detected_duplicates,
)
from apps.candidates.services import (
    upsert_candidate,
    update_candidate_profile,
    claim_candidate,
    release_candidate,
    import_handles,
    approve_prospect,
    reject_prospect,
    submit_application,
    create_prospect,
)
from apps.common.enums import (
    Platform, DiscoverySource, ReviewStatus, MergeStatus, AttemptStatus, RunType,
)
from apps.common.exceptions import ConfigurationError
from apps.runs.models import AcquisitionRun
from apps.runs.services import start_run, record_attempt, complete_run, fail_run, fail_stale_runs


@pytest.mark.django_db
class TestCandidateModel:
    def test_create_candidate(self):
        candidate = Candidate.objects.create(handle="foo", country="CZ")
        assert candidate.id is not None
        assert str(candidate) == "@foo (instagram)"
        assert candidate.has_profile_data is False

    def test_unique_per_platform(self):
        Candidate.objects.create(handle="foo")
        Candidate.objects.create(handle="foo", platform=Platform.TIKTOK)
        with pytest.raises(Exception):  # IntegrityError
            Candidate.objects.create(handle="foo")


@pytest.mark.django_db
class TestUpsertCandidate:
    def test_creates_normalized(self):
        candidate, created = upsert_candidate(
            platform=Platform.INSTAGRAM,
            handle="https://www.instagram.com/Foo/",
            country="CZ",
            bio="DM for collabs: foo@example.com",
        )
        assert created is True
        assert candidate.handle == "foo"
        assert candidate.profile_url == "https://www.instagram.com/foo/"
        assert candidate.email == "foo@example.com"
        assert candidate.source == DiscoverySource.TAG_MINING

    def test_updates_existing(self):
        upsert_candidate(Platform.INSTAGRAM, "foo", country="CZ", source=DiscoverySource.CHAIN)
        candidate, created = upsert_candidate(
            Platform.INSTAGRAM, "foo", country="SK", source=DiscoverySource.EXTERNAL, follower_count=1200,
        )
        assert created is False
        assert candidate.country == "SK"
        assert candidate.follower_count == 1200
        assert candidate.source == DiscoverySource.CHAIN
        assert Candidate.objects.count() == 1

    def test_requires_handle(self):
        with pytest.raises(ValueError):
            upsert_candidate(Platform.INSTAGRAM, "  ")

    def test_update_profile(self):
        candidate, _ = upsert_candidate(Platform.INSTAGRAM, "foo")
        update_candidate_profile(candidate, {
            "followers": 4200,
            "full_name": "Foo Bar",
            "bio": "contact: hello@foo.cz",
        })
        candidate.refresh_from_db()
        assert candidate.follower_count == 4200
        assert candidate.display_name == "Foo Bar"
        assert candidate.email == "hello@foo.cz"
        assert candidate.last_enriched_at is not None
        assert candidate.has_profile_data


@pytest.mark.django_db
class TestInFlightClaims:
    def test_single_claim(self):
        run = start_run({}, run_type=RunType.ENRICHMENT)
        other = start_run({}, run_type=RunType.ENRICHMENT)
        candidate = Candidate.objects.create(handle="foo")

        assert claim_candidate(candidate, run.id) is True
        assert claim_candidate(candidate, other.id) is False

        release_candidate(candidate, run.id)
        assert claim_candidate(candidate, other.id) is True

    def test_claimed_candidates_not_queued(self):
        run = start_run({}, run_type=RunType.ENRICHMENT)
        busy = Candidate.objects.create(handle="busy")
        Candidate.objects.create(handle="idle")
        claim_candidate(busy, run.id)

        queue = get_enrichment_queue(limit=10)
        assert [c.handle for c in queue] == ["idle"]

    def test_failed_run_releases_claims(self):
        first = start_run({}, run_type=RunType.ENRICHMENT)
        candidate = Candidate.objects.create(handle="foo")
        claim_candidate(candidate, first.id)

        fail_run(first.id, ["worker lost"])

        candidate.refresh_from_db()
        assert candidate.in_flight_run_id is None
        assert get_enrichment_queue(limit=10) == [candidate]
        second = start_run({}, run_type=RunType.ENRICHMENT)
        assert claim_candidate(candidate, second.id) is True

    def test_completed_run_releases_claims(self):
        run = start_run({}, run_type=RunType.ENRICHMENT)
        candidate = Candidate.objects.create(handle="foo")
        claim_candidate(candidate, run.id)

        complete_run(run.id, total_found=0, total_processed=0)

        candidate.refresh_from_db()
        assert candidate.in_flight_run_id is None

    def test_stale_run_releases_claims(self):
        run = start_run({}, run_type=RunType.ENRICHMENT)
        candidate = Candidate.objects.create(handle="foo")
        claim_candidate(candidate, run.id)
        AcquisitionRun.objects.filter(pk=run.id).update(started_at=timezone.now() - timedelta(hours=7))

        assert fail_stale_runs(hours=6) == 1
        assert get_enrichment_queue(limit=10) == [candidate]

    def test_claim_left_by_stopped_run_is_ignored(self):
        dead = start_run({}, run_type=RunType.ENRICHMENT)
        fail_run(dead.id, ["worker killed"])
        candidate = Candidate.objects.create(handle="foo")
        # Claim never released, as when a worker dies mid-item
        Candidate.objects.filter(pk=candidate.pk).update(in_flight_run=dead)

        assert get_enrichment_queue(limit=10) == [candidate]
        fresh = start_run({}, run_type=RunType.ENRICHMENT)
        assert claim_candidate(candidate, fresh.id) is True

    def test_redelivered_run_reclaims_its_own_candidate(self):
        run = start_run({}, run_type=RunType.ENRICHMENT)
        candidate = Candidate.objects.create(handle="foo")
        assert claim_candidate(candidate, run.id) is True
        assert claim_candidate(candidate, run.id) is True


@pytest.mark.django_db
class TestImportHandles:
    def test_accounting(self):
        Candidate.objects.create(handle="same", country="CZ")
        Candidate.objects.create(handle="moved", country="SK")

        result = import_handles(
            urls=[
                "https://www.instagram.com/new_one/",
                "@New_One",
                "same",
                "https://instagram.com/moved",
                "https://www.tiktok.com/@elsewhere",
                "   ",
                "second",
            ],
            country="CZ",
        )

        assert result.created == 2
        assert result.created_handles == ["new_one", "second"]
        assert result.updated == 1
        assert result.updated_handles == ["moved"]
        assert result.batch_duplicates_skipped == 1
        assert result.store_duplicates_skipped == 1
        assert result.invalid == 2

        assert Candidate.objects.get(handle="moved").country == "CZ"
        assert Candidate.objects.get(handle="new_one").source == DiscoverySource.IMPORT

    def test_row_inserted_concurrently_is_a_store_duplicate(self, monkeypatch):
        Candidate.objects.create(handle="alice", country="CZ")
        # The locked lookup misses a row another import committed meanwhile
        monkeypatch.setattr(Candidate.objects, "select_for_update", Candidate.objects.none)

        result = import_handles(urls=["alice", "bob"], country="CZ")

        assert result.created == 1
        assert result.created_handles == ["bob"]
        assert result.store_duplicates_skipped == 1
        assert Candidate.objects.count() == 2

    def test_requires_urls_and_country(self):
        with pytest.raises(ConfigurationError):
            import_handles(urls=[], country="CZ")
        with pytest.raises(ConfigurationError):
            import_handles(urls=["foo"], country="")


@pytest.mark.django_db
class TestProspectReview:
    def test_approve_creates_candidate(self):
        prospect = Prospect.objects.create(name="Jana", instagram_handle="jana", country="CZ", total_followers=9000)
        candidate = approve_prospect(prospect)

        prospect.refresh_from_db()
        assert prospect.status == ReviewStatus.APPROVED
        assert candidate.handle == "jana"
        assert candidate.source == DiscoverySource.PROSPECT
        assert candidate.follower_count == 9000

    def test_approve_existing_marks_duplicate(self):
        existing = Candidate.objects.create(handle="jana", country="CZ")
        prospect = Prospect.objects.create(name="Jana", instagram_url="https://www.instagram.com/jana/")

        assert approve_prospect(prospect) is None

        prospect.refresh_from_db()
        assert prospect.status == ReviewStatus.DUPLICATE
        assert prospect.duplicate_of_id == existing.id
        assert prospect.merge_status == MergeStatus.DETECTED
        assert Candidate.objects.count() == 1

    def test_approve_without_handle(self):
        prospect = Prospect.objects.create(name="No handle", tiktok_handle="someone")
        with pytest.raises(ConfigurationError):
            approve_prospect(prospect)

    def test_reject(self):
        prospect = Prospect.objects.create(name="Jana", instagram_handle="jana")
        reject_prospect(prospect, notes="Not a fit")
        prospect.refresh_from_db()
        assert prospect.status == ReviewStatus.REJECTED
        assert prospect.notes == "Not a fit"

    def test_create_prospect_flags_duplicates(self):
        Candidate.objects.create(handle="jana")
        prospect = create_prospect(name="Jana", instagram_handle="@Jana")
        assert prospect.instagram_handle == "jana"
        assert prospect.merge_status == MergeStatus.DETECTED


@pytest.mark.django_db
class TestApplications:
    def test_submit_records_snapshot(self):
        Prospect.objects.create(name="Jana", email="jana@example.com")
        application = submit_application(name="Jana", email="Jana@example.com", instagram="jana.cz")

        application.refresh_from_db()
        assert application.merge_status == MergeStatus.DETECTED
        assert Application.objects.count() == 1

    def test_detection_failure_does_not_reject(self, monkeypatch):
        def broken(self, observed, exclude=None):
            raise RuntimeError("resolver down")

        monkeypatch.setattr("apps.candidates.services.IdentityResolver.find_duplicates", broken)
        application = submit_application(name="Jana", email="jana@example.com", instagram="jana.cz")

        assert application.id is not None
        assert application.merge_status == MergeStatus.NONE

    def test_flagged_records(self):
        Candidate.objects.create(handle="jana")
        submit_application(name="Jana", email="jana@example.com", instagram="jana")
        submit_application(name="Petr", email="petr@example.com", instagram="petr")

        flagged = get_records_with_detected_duplicates()
        assert flagged["applications"].count() == 1
        assert flagged["prospects"].count() == 0


@pytest.mark.django_db
class TestCandidateSelectors:
    @pytest.fixture
    def sample_candidates(self):
        Candidate.objects.create(handle="alice", display_name="Alice", country="CZ", profile_data={"followers": 1})
        Candidate.objects.create(handle="bob", display_name="Bob", country="SK")
        Candidate.objects.create(handle="carol", display_name="Carol", country="CZ")

    def test_search(self, sample_candidates):
        assert search_candidates(query="ali").count() == 1
        assert search_candidates(country="CZ").count() == 2
        assert search_candidates(has_data=True).count() == 1
        assert search_candidates(has_data=False).count() == 2

    def test_enrichment_queue_missing_data_only(self, sample_candidates):
        queue = get_enrichment_queue(limit=10, country="CZ")
        assert [c.handle for c in queue] == ["carol"]

        queue = get_enrichment_queue(limit=10, country="CZ", only_missing_data=False)
        assert {c.handle for c in queue} == {"alice", "carol"}

    def test_enrichment_stats(self, sample_candidates):
        run = start_run({}, run_type=RunType.ENRICHMENT)
        bob = Candidate.objects.get(handle="bob")
        record_attempt(run.id, handle="bob", status=AttemptStatus.FAILED, candidate=bob)
        record_attempt(run.id, handle="alice", status=AttemptStatus.SUCCESS)
        complete_run(run.id, total_found=1, total_processed=2)

        stats = get_enrichment_stats()
        assert stats["total_candidates"] == 3
        assert stats["with_data"] == 1
        assert stats["missing_data"] == 2
        assert stats["failed_attempts"] == 1
        assert stats["never_attempted"] == 1
        assert stats["last_run"]["id"] == run.id
        assert stats["last_run"]["success_rate"] == 50
