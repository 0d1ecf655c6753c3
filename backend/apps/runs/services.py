# apps/runs/services.py

import json
import logging
from datetime import timedelta

from django.db.models import Value
from django.db.models.functions import Greatest
from django.utils import timezone

from apps.common.enums import RunType, RunStatus, AttemptStatus
from apps.candidates.services import release_run_claims
from apps.common.exceptions import RunStateError

from .models import AcquisitionRun, AcquisitionAttempt

logger = logging.getLogger(__name__)


CANCELLED_MESSAGE = "Run was cancelled by operator"


def start_run(
    config: dict,
    run_type: str = RunType.DISCOVERY,
    triggered_by: str = "manual",
) -> AcquisitionRun:
    """Persist a new run in `running` state with its configuration snapshot."""
    run = AcquisitionRun.objects.create(
        run_type=run_type,
        status=RunStatus.RUNNING,
        config=config,
        triggered_by=triggered_by,
    )
    logger.info(f"Started {run_type} run {run.id} (triggered by {triggered_by})")
    return run


def set_task_id(run: AcquisitionRun, celery_task_id: str) -> AcquisitionRun:
    run.celery_task_id = celery_task_id
    run.save(update_fields=["celery_task_id", "updated_at"])
    return run


def record_attempt(
    run_id: int,
    handle: str,
    status: str,
    platform: str = "",
    candidate=None,
    profile_url: str = "",
    country: str = "",
    error: str = "",
    payload: dict | None = None,
    duration_ms: int | None = None,
) -> AcquisitionAttempt:
    """
    Append an attempt to a run.

    Allowed on terminal runs so an attempt that was in flight when the run
    was cancelled is still recorded. The payload is kept only for successes.
    """
    if not AcquisitionRun.objects.filter(pk=run_id).exists():
        raise RunStateError(f"Run {run_id} not found")

    raw = ""
    if payload is not None and status == AttemptStatus.SUCCESS:
        raw = json.dumps(payload, default=str)

    fields = {
        "run_id": run_id,
        "candidate": candidate,
        "handle": handle,
        "profile_url": profile_url,
        "country": country,
        "status": status,
        "error_message": error,
        "payload": raw,
        "duration_ms": duration_ms,
    }
    if platform:
        fields["platform"] = platform
    return AcquisitionAttempt.objects.create(**fields)


def update_progress(run_id: int, processed: int, found: int) -> None:
    """
    Overwrite the run's running counters. Counters never decrease.

    Raises:
        RunStateError: the run is unknown or already terminal
    """
    updated = AcquisitionRun.objects.filter(pk=run_id, status=RunStatus.RUNNING).update(
        total_processed=Greatest("total_processed", Value(processed)),
        total_found=Greatest("total_found", Value(found)),
        updated_at=timezone.now(),
    )
    if not updated:
        raise RunStateError(_terminal_message(run_id))


def complete_run(
    run_id: int,
    total_found: int,
    total_processed: int,
    errors: list[str] | None = None,
) -> AcquisitionRun:
    """Transition running -> completed with final counts."""
    run = _get_running(run_id)
    updated = AcquisitionRun.objects.filter(pk=run_id, status=RunStatus.RUNNING).update(
        status=RunStatus.COMPLETED,
        total_found=Greatest("total_found", Value(total_found)),
        total_processed=Greatest("total_processed", Value(total_processed)),
        errors=list(run.errors or []) + list(errors or []),
        completed_at=timezone.now(),
        updated_at=timezone.now(),
    )
    if not updated:
        raise RunStateError(_terminal_message(run_id))

    release_run_claims(run_id)
    run.refresh_from_db()
    logger.info(
        f"Run {run_id} completed: found={run.total_found}, processed={run.total_processed}"
    )
    return run


def fail_run(run_id: int, errors: list[str]) -> AcquisitionRun:
    """Transition running -> failed. Counters accumulated so far are kept."""
    run = _get_running(run_id)
    updated = AcquisitionRun.objects.filter(pk=run_id, status=RunStatus.RUNNING).update(
        status=RunStatus.FAILED,
        errors=list(run.errors or []) + list(errors),
        completed_at=timezone.now(),
        updated_at=timezone.now(),
    )
    if not updated:
        raise RunStateError(_terminal_message(run_id))

    release_run_claims(run_id)
    run.refresh_from_db()
    logger.warning(f"Run {run_id} failed: {'; '.join(errors)}")
    return run


def cancel_run(run_id: int) -> AcquisitionRun:
    """Operator cancellation. The worker loop notices on its next status check."""
    return fail_run(run_id, [CANCELLED_MESSAGE])


def is_running(run_id: int) -> bool:
    return AcquisitionRun.objects.filter(pk=run_id, status=RunStatus.RUNNING).exists()


def fail_stale_runs(hours: int = 6) -> int:
    """Fail runs stuck in `running` for longer than `hours`. Returns count."""
    cutoff = timezone.now() - timedelta(hours=hours)
    stale_ids = list(
        AcquisitionRun.objects.filter(
            status=RunStatus.RUNNING,
            started_at__lt=cutoff,
        ).values_list("id", flat=True)
    )

    failed = 0
    for run_id in stale_ids:
        try:
            fail_run(run_id, [f"Run exceeded {hours}h without finishing"])
            failed += 1
        except RunStateError:
            # Finished between the query and the transition
            continue
    return failed


def _get_running(run_id: int) -> AcquisitionRun:
    run = AcquisitionRun.objects.filter(pk=run_id).first()
    if run is None or run.is_terminal:
        raise RunStateError(_terminal_message(run_id, run))
    return run


def _terminal_message(run_id: int, run: AcquisitionRun | None = None) -> str:
    if run is None:
        run = AcquisitionRun.objects.filter(pk=run_id).only("status").first()
    if run is None:
        return f"Run {run_id} not found"
    return f"Run {run_id} is already {run.status}"
