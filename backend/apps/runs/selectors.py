# apps/runs/selectors.py

from django.db.models import QuerySet

from apps.common.exceptions import RunStateError

from .models import AcquisitionRun, AcquisitionAttempt, RunStatus


STATUS_ATTEMPT_LIMIT = 100


def get_run_by_id(run_id: int) -> AcquisitionRun | None:
    return AcquisitionRun.objects.filter(id=run_id).first()


def list_runs(run_type: str | None = None, status: str | None = None) -> QuerySet[AcquisitionRun]:
    qs = AcquisitionRun.objects.all()
    if run_type:
        qs = qs.filter(run_type=run_type)
    if status:
        qs = qs.filter(status=status)
    return qs.order_by("-started_at", "-id")


def get_running_runs() -> QuerySet[AcquisitionRun]:
    return AcquisitionRun.objects.filter(status=RunStatus.RUNNING)


def get_last_run(run_type: str) -> AcquisitionRun | None:
    return list_runs(run_type=run_type).first()


def get_attempts_for_run(run_id: int, status: str | None = None) -> QuerySet[AcquisitionAttempt]:
    qs = AcquisitionAttempt.objects.filter(run_id=run_id).select_related("candidate")
    if status:
        qs = qs.filter(status=status)
    return qs.order_by("attempted_at", "id")


def get_run_status(run_id: int, include_attempts: bool = False) -> dict:
    """
    Pull-based progress for polling clients.

    Raises:
        RunStateError: unknown run
    """
    run = get_run_by_id(run_id)
    if run is None:
        raise RunStateError(f"Run {run_id} not found")

    status = {
        "id": run.id,
        "run_type": run.run_type,
        "status": run.status,
        "total_found": run.total_found,
        "total_processed": run.total_processed,
        "started_at": run.started_at,
        "completed_at": run.completed_at,
        "errors": run.errors,
    }
    if include_attempts:
        recent = AcquisitionAttempt.objects.filter(run_id=run_id).order_by("-attempted_at", "-id")
        status["attempts"] = [
            {
                "id": a.id,
                "handle": a.handle,
                "status": a.status,
                "error_message": a.error_message,
                "duration_ms": a.duration_ms,
                "attempted_at": a.attempted_at,
            }
            for a in recent[:STATUS_ATTEMPT_LIMIT]
        ]
    return status
