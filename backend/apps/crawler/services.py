# apps/crawler/services.py

import logging

from apps.candidates.selectors import get_enrichment_queue
from apps.common.enums import RunType
from apps.common.exceptions import ConfigurationError
from apps.runs.models import AcquisitionRun
from apps.runs.services import start_run, set_task_id

from .config import DiscoveryConfig, EnrichmentConfig
from .tasks import run_discovery, run_enrichment

logger = logging.getLogger(__name__)


def start_discovery_run(config: dict, triggered_by: str = "manual") -> AcquisitionRun:
    """
    Validate the configuration, create the run and queue it.

    Raises:
        ConfigurationError: before any run row is created
    """
    discovery_config = DiscoveryConfig.from_dict(config)
    run = start_run(discovery_config.to_dict(), run_type=RunType.DISCOVERY, triggered_by=triggered_by)

    task = run_discovery.delay(run.id)
    set_task_id(run, celery_task_id=task.id)

    logger.info(f"Queued discovery run {run.id} (task {task.id}) for {discovery_config.countries}")
    return run


def start_enrichment_batch(
    filter: dict | None = None,
    batch_size: int = 10,
    delay=(3, 3),
    skip_private: bool = True,
    only_missing_data: bool = True,
    max_runtime_seconds: int = 30 * 60,
    triggered_by: str = "manual",
) -> AcquisitionRun:
    """
    Select a batch of admitted candidates to refresh and queue the run.
    The selected ids are snapshotted on the run.

    Args:
        filter: {"country": ..., "platform": ...}, both optional
        batch_size: 1..100
        delay: seconds between candidates, fixed or [min, max]

    Raises:
        ConfigurationError: invalid parameters or nothing to enrich
    """
    filter = filter or {}
    config = EnrichmentConfig.from_dict({
        "batch_size": batch_size,
        "country": filter.get("country", ""),
        "platform": filter.get("platform", ""),
        "delay": delay,
        "skip_private": skip_private,
        "only_missing_data": only_missing_data,
        "max_runtime_seconds": max_runtime_seconds,
    })

    candidates = get_enrichment_queue(
        limit=config.batch_size,
        country=config.country or None,
        platform=config.platform,
        only_missing_data=config.only_missing_data,
    )
    if not candidates:
        raise ConfigurationError("No candidates found matching the criteria")

    config = config.with_candidates([c.id for c in candidates])
    run = start_run(config.to_dict(), run_type=RunType.ENRICHMENT, triggered_by=triggered_by)

    task = run_enrichment.delay(run.id)
    set_task_id(run, celery_task_id=task.id)

    logger.info(f"Queued enrichment run {run.id} (task {task.id}) for {len(candidates)} candidates")
    return run
