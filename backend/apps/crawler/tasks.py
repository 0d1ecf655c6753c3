# apps/crawler/tasks.py

import logging
from celery import shared_task

from apps.common.enums import RunType
from apps.runs import services as run_services
from apps.runs.selectors import get_run_by_id

from .enrichment import run_enrichment_pipeline
from .pipelines import run_discovery_pipeline

logger = logging.getLogger(__name__)


def _get_runnable(run_id: int, run_type: str):
    run = get_run_by_id(run_id)

    if not run:
        logger.error(f"Run {run_id} not found")
        return None, {"error": f"Run {run_id} not found"}

    if run.run_type != run_type:
        logger.error(f"Run {run_id} is a {run.run_type} run, not {run_type}")
        return None, {"error": f"Run {run_id} is not a {run_type} run"}

    if run.is_terminal:
        logger.warning(f"Run {run_id} has status {run.status}, skipping")
        return None, {"error": f"Run already {run.status}"}

    return run, None


@shared_task(bind=True, acks_late=True)
def run_discovery(self, run_id: int) -> dict:
    """
    Execute a discovery run.

    Not retried; failures are recorded on the run itself.

    Args:
        run_id: ID of the AcquisitionRun to execute

    Returns:
        dict with run stats
    """
    run, error = _get_runnable(run_id, RunType.DISCOVERY)
    if error:
        return error

    logger.info(f"Starting discovery task for run {run_id} (task {self.request.id})")
    stats = run_discovery_pipeline(run)
    return stats.to_dict()


@shared_task(bind=True, acks_late=True)
def run_enrichment(self, run_id: int) -> dict:
    """Execute an enrichment batch run."""
    run, error = _get_runnable(run_id, RunType.ENRICHMENT)
    if error:
        return error

    logger.info(f"Starting enrichment task for run {run_id} (task {self.request.id})")
    stats = run_enrichment_pipeline(run)
    return stats.to_dict()


@shared_task
def fail_stale_runs(hours: int = 6) -> dict:
    """
    Fail runs stuck in `running`, e.g. after a worker was killed.
    Scheduled hourly by Celery beat.
    """
    failed = run_services.fail_stale_runs(hours=hours)
    if failed:
        logger.warning(f"Failed {failed} stale runs older than {hours}h")
    return {"failed": failed}
