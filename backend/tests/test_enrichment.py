import itertools

import pytest

from apps.candidates.models import Candidate
from apps.common.enums import AttemptStatus, RunStatus, RunType
from apps.common.exceptions import ConfigurationError
from apps.crawler.config import EnrichmentConfig, DelayRange
from apps.crawler.enrichment import EnrichmentPipeline
from apps.crawler.rate_limit import Pacer
from apps.crawler.services import start_enrichment_batch
from apps.runs.models import AcquisitionAttempt
from apps.runs.services import start_run, cancel_run

from factories import FakePlatformClient, make_profile


@pytest.fixture
def candidates():
    return [Candidate.objects.create(handle=f"creator{i}", country="CZ") for i in range(10)]


def make_pipeline(candidates, client, pacer, **overrides):
    config = EnrichmentConfig(
        candidate_ids=[c.id for c in candidates],
        delay=DelayRange(0, 0),
        **overrides,
    )
    run = start_run(config.to_dict(), run_type=RunType.ENRICHMENT)
    return run, EnrichmentPipeline(run=run, config=config, client=client, pacer=pacer)


@pytest.mark.django_db
class TestEnrichmentRun:
    def test_mixed_batch(self, candidates, pacer):
        profiles = {c.handle: make_profile(c.handle, followers=2000 + i) for i, c in enumerate(candidates)}
        profiles["creator3"] = make_profile("creator3", is_private=True)
        client = FakePlatformClient(profiles=profiles)
        run, pipeline = make_pipeline(candidates, client, pacer)

        stats = pipeline.run()

        run.refresh_from_db()
        assert run.status == RunStatus.COMPLETED
        assert run.total_processed == 10
        assert run.total_found == 9
        assert stats.skipped_private == 1
        assert stats.success == 9

        statuses = list(AcquisitionAttempt.objects.filter(run=run).values_list("status", flat=True))
        assert statuses.count(AttemptStatus.SKIPPED_PRIVATE) == 1
        assert statuses.count(AttemptStatus.SUCCESS) == 9

        assert Candidate.objects.filter(profile_data__isnull=False).count() == 9
        assert Candidate.objects.get(handle="creator3").profile_data is None
        assert not Candidate.objects.filter(in_flight_run__isnull=False).exists()

    def test_failures_still_count_as_processed(self, candidates, pacer):
        client = FakePlatformClient(profiles={"creator0": make_profile("creator0")})
        run, pipeline = make_pipeline(candidates[:3], client, pacer)

        stats = pipeline.run()

        run.refresh_from_db()
        assert run.total_processed == 3
        assert run.total_found == 1
        assert stats.not_found == 2

    def test_pauses_between_items_only(self, candidates):
        slept = []

        client = FakePlatformClient(profiles={c.handle: make_profile(c.handle) for c in candidates[:3]})
        config = EnrichmentConfig(candidate_ids=[c.id for c in candidates[:3]], delay=DelayRange(3, 3))
        run = start_run(config.to_dict(), run_type=RunType.ENRICHMENT)
        EnrichmentPipeline(run=run, config=config, client=client, pacer=Pacer(sleep=slept.append)).run()

        assert slept == [3.0, 3.0]

    def test_runtime_guard(self, candidates, pacer):
        client = FakePlatformClient(profiles={c.handle: make_profile(c.handle) for c in candidates})
        config = EnrichmentConfig(
            candidate_ids=[c.id for c in candidates[:3]],
            delay=DelayRange(0, 0),
            max_runtime_seconds=1800,
        )
        run = start_run(config.to_dict(), run_type=RunType.ENRICHMENT)
        clock = itertools.count(0, 1000).__next__

        EnrichmentPipeline(run=run, config=config, client=client, pacer=pacer, clock=clock).run()

        run.refresh_from_db()
        assert run.status == RunStatus.COMPLETED
        assert run.total_processed == 1
        assert run.errors == ["Stopped after 30 minutes: processed 1/3 candidates"]

    def test_candidate_in_flight_elsewhere(self, candidates, pacer):
        other = start_run({}, run_type=RunType.ENRICHMENT)
        Candidate.objects.filter(pk=candidates[0].pk).update(in_flight_run=other)
        client = FakePlatformClient(profiles={"creator0": make_profile("creator0")})
        run, pipeline = make_pipeline(candidates[:1], client, pacer)

        stats = pipeline.run()

        assert stats.failed == 1
        assert client.profile_calls == []
        attempt = AcquisitionAttempt.objects.get(run=run)
        assert attempt.status == AttemptStatus.FAILED

    def test_cancel_between_items(self, candidates, pacer):

        run_holder = {}

        def cancel_on_second(handle, calls):
            if calls == 2:
                cancel_run(run_holder["id"])

        client = FakePlatformClient(
            profiles={c.handle: make_profile(c.handle) for c in candidates},
            on_fetch=cancel_on_second,
        )
        run, pipeline = make_pipeline(candidates, client, pacer)
        run_holder["id"] = run.id

        pipeline.run()

        assert pipeline.cancelled is True
        assert len(client.profile_calls) == 2
        run.refresh_from_db()
        assert run.status == RunStatus.FAILED


@pytest.mark.django_db
class TestStartEnrichmentBatch:
    def test_snapshots_candidate_ids(self, candidates, monkeypatch):
        queued = []

        class FakeTask:
            @staticmethod
            def delay(run_id):
                queued.append(run_id)
                return type("AsyncResult", (), {"id": "task-1"})()

        monkeypatch.setattr("apps.crawler.services.run_enrichment", FakeTask)
        run = start_enrichment_batch(filter={"country": "CZ"}, batch_size=4)

        assert queued == [run.id]
        assert run.celery_task_id == "task-1"
        assert len(run.config["candidate_ids"]) == 4
        assert run.run_type == RunType.ENRICHMENT

    def test_nothing_to_enrich(self):
        with pytest.raises(ConfigurationError):
            start_enrichment_batch(filter={"country": "CZ"})

    def test_batch_size_validated(self, candidates):
        with pytest.raises(ConfigurationError):
            start_enrichment_batch(batch_size=500)



class ClosingClient(FakePlatformClient):
    closed = False

    def close(self):
        self.closed = True


@pytest.mark.django_db
class TestEnrichmentClientLifecycle:
    def test_registry_client_closed_after_run(self, candidates, pacer, monkeypatch):
        client = ClosingClient(profiles={"creator0": make_profile("creator0")})
        monkeypatch.setattr("apps.crawler.enrichment.ClientRegistry.get_client", lambda platform: client)
        config = EnrichmentConfig(candidate_ids=[candidates[0].id], delay=DelayRange(0, 0))
        run = start_run(config.to_dict(), run_type=RunType.ENRICHMENT)

        EnrichmentPipeline(run=run, config=config, pacer=pacer).run()

        run.refresh_from_db()
        assert run.status == RunStatus.COMPLETED
        assert client.closed

    def test_injected_client_left_open(self, candidates, pacer):
        client = ClosingClient(profiles={"creator0": make_profile("creator0")})
        run, pipeline = make_pipeline(candidates[:1], client, pacer)
        pipeline.run()
        assert not client.closed
