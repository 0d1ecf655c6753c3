from datetime import timedelta

import pytest
from django.utils import timezone

from apps.common.enums import RunType, RunStatus, AttemptStatus
from apps.common.exceptions import RunStateError
from apps.runs.models import AcquisitionRun, AcquisitionAttempt
from apps.runs.selectors import get_run_status, list_runs, get_attempts_for_run
from apps.runs.services import (
    start_run,
    record_attempt,
    update_progress,
    complete_run,
    fail_run,
    cancel_run,
    is_running,
    fail_stale_runs,
    CANCELLED_MESSAGE,
)


@pytest.fixture
def run():
    return start_run({"countries": ["CZ"], "target_count": 5})


@pytest.mark.django_db
class TestRunLifecycle:
    def test_start_run(self, run):
        assert run.status == RunStatus.RUNNING
        assert run.run_type == RunType.DISCOVERY
        assert run.total_found == 0
        assert run.completed_at is None
        assert is_running(run.id)

    def test_update_progress(self, run):
        update_progress(run.id, processed=3, found=1)
        run.refresh_from_db()
        assert run.total_processed == 3
        assert run.total_found == 1

    def test_progress_never_decreases(self, run):
        update_progress(run.id, processed=5, found=2)
        update_progress(run.id, processed=4, found=1)
        run.refresh_from_db()
        assert run.total_processed == 5
        assert run.total_found == 2

    def test_complete_run(self, run):
        completed = complete_run(run.id, total_found=2, total_processed=7, errors=["tag_mining:#x: HTTP 429"])
        assert completed.status == RunStatus.COMPLETED
        assert completed.total_found == 2
        assert completed.total_processed == 7
        assert completed.completed_at is not None
        assert completed.errors == ["tag_mining:#x: HTTP 429"]
        assert completed.duration_seconds is not None

    def test_fail_run_keeps_counts(self, run):
        update_progress(run.id, processed=4, found=1)
        failed = fail_run(run.id, ["Pipeline error: boom"])
        assert failed.status == RunStatus.FAILED
        assert failed.total_processed == 4
        assert failed.total_found == 1
        assert failed.errors == ["Pipeline error: boom"]

    def test_cancel_run(self, run):
        cancelled = cancel_run(run.id)
        assert cancelled.status == RunStatus.FAILED
        assert CANCELLED_MESSAGE in cancelled.errors
        assert not is_running(run.id)


@pytest.mark.django_db
class TestTerminalStates:
    def test_complete_twice_raises(self, run):
        complete_run(run.id, total_found=0, total_processed=0)
        with pytest.raises(RunStateError):
            complete_run(run.id, total_found=1, total_processed=1)

    def test_fail_after_complete_raises(self, run):
        complete_run(run.id, total_found=0, total_processed=0)
        with pytest.raises(RunStateError):
            fail_run(run.id, ["late"])

    def test_progress_after_terminal_raises(self, run):
        cancel_run(run.id)
        with pytest.raises(RunStateError):
            update_progress(run.id, processed=1, found=0)

        run.refresh_from_db()
        assert run.total_processed == 0

    def test_unknown_run(self):
        with pytest.raises(RunStateError):
            update_progress(999_999, processed=1, found=1)
        with pytest.raises(RunStateError):
            complete_run(999_999, total_found=0, total_processed=0)
        with pytest.raises(RunStateError):
            record_attempt(999_999, handle="foo", status=AttemptStatus.FAILED)


@pytest.mark.django_db
class TestAttempts:
    def test_record_attempt(self, run):
        attempt = record_attempt(
            run.id,
            handle="foo",
            platform="instagram",
            status=AttemptStatus.SUCCESS,
            payload={"username": "foo"},
            duration_ms=120,
        )
        assert attempt.run_id == run.id
        assert attempt.payload == '{"username": "foo"}'
        assert attempt.candidate is None

    def test_payload_only_kept_for_success(self, run):
        attempt = record_attempt(
            run.id, handle="foo", status=AttemptStatus.FAILED, payload={"username": "foo"}, error="HTTP 429",
        )
        assert attempt.payload == ""
        assert attempt.error_message == "HTTP 429"

    def test_allowed_on_terminal_run(self, run):
        cancel_run(run.id)
        record_attempt(run.id, handle="foo", status=AttemptStatus.NOT_FOUND)
        assert AcquisitionAttempt.objects.filter(run=run).count() == 1

    def test_attempts_are_immutable(self, run):
        attempt = record_attempt(run.id, handle="foo", status=AttemptStatus.FAILED)
        attempt.status = AttemptStatus.SUCCESS
        with pytest.raises(ValueError):
            attempt.save()

        attempt.refresh_from_db()
        assert attempt.status == AttemptStatus.FAILED


@pytest.mark.django_db
class TestRunSelectors:
    def test_run_status(self, run):
        record_attempt(run.id, handle="a", status=AttemptStatus.SUCCESS)
        record_attempt(run.id, handle="b", status=AttemptStatus.FAILED)
        update_progress(run.id, processed=2, found=1)

        status = get_run_status(run.id, include_attempts=True)
        assert status["status"] == RunStatus.RUNNING
        assert status["total_processed"] == 2
        assert [a["handle"] for a in status["attempts"]] == ["b", "a"]

    def test_run_status_caps_attempts(self, run):
        for i in range(105):
            record_attempt(run.id, handle=f"h{i}", status=AttemptStatus.FAILED)
        status = get_run_status(run.id, include_attempts=True)
        assert len(status["attempts"]) == 100

    def test_run_status_unknown(self):
        with pytest.raises(RunStateError):
            get_run_status(999_999)

    def test_list_runs(self, run):
        start_run({}, run_type=RunType.ENRICHMENT)
        assert list_runs(run_type=RunType.DISCOVERY).count() == 1
        assert list_runs(status=RunStatus.RUNNING).count() == 2

    def test_attempts_filtered_by_status(self, run):
        record_attempt(run.id, handle="a", status=AttemptStatus.SUCCESS)
        record_attempt(run.id, handle="b", status=AttemptStatus.FAILED)
        assert get_attempts_for_run(run.id, status=AttemptStatus.FAILED).count() == 1


@pytest.mark.django_db
class TestStaleRuns:
    def test_fail_stale_runs(self, run):
        stale = start_run({})
        AcquisitionRun.objects.filter(pk=stale.pk).update(started_at=timezone.now() - timedelta(hours=7))

        assert fail_stale_runs(hours=6) == 1

        stale.refresh_from_db()
        run.refresh_from_db()
        assert stale.status == RunStatus.FAILED
        assert run.status == RunStatus.RUNNING
