# apps/crawler/enrichment.py

import logging
import time
from dataclasses import dataclass

from apps.candidates.models import Candidate
from apps.candidates.services import update_candidate_profile, claim_candidate, release_candidate
from apps.common.enums import AttemptStatus
from apps.common.exceptions import ConfigurationError, RunStateError
from apps.runs.models import AcquisitionRun
from apps.runs.services import record_attempt, update_progress, complete_run, fail_run, is_running

from .base import PlatformClient, ClientRegistry
from .config import EnrichmentConfig
from .pipelines import FetchOutcome, attempt_fetch
from .rate_limit import Pacer

logger = logging.getLogger(__name__)


@dataclass
class EnrichmentStats:
    total: int = 0
    processed: int = 0
    success: int = 0
    not_found: int = 0
    failed: int = 0
    skipped_private: int = 0

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "processed": self.processed,
            "success": self.success,
            "not_found": self.not_found,
            "failed": self.failed,
            "skipped_private": self.skipped_private,
        }


class EnrichmentPipeline:
    """
    Refreshes profile data for a fixed batch of admitted candidates,
    sequentially, pausing between items. Progress is updated after every
    item whatever its outcome. A runtime guard completes the run early.
    """

    def __init__(
        self,
        run: AcquisitionRun,
        config: EnrichmentConfig,
        client: PlatformClient | None = None,
        pacer: Pacer | None = None,
        clock=time.monotonic,
    ):
        self.run_id = run.id
        self.config = config
        self.client = client
        self.pacer = pacer or Pacer()
        self.clock = clock

        self.stats = EnrichmentStats()
        self.cancelled = False

    def run(self) -> EnrichmentStats:
        started = self.clock()
        owned = None

        try:
            client = self.client
            if client is None:
                client = owned = ClientRegistry.get_client(self.config.platform)
            if client is None:
                raise ConfigurationError(f"No client registered for {self.config.platform}")

            candidates = self._load_batch()
            self.stats.total = len(candidates)
            logger.info(f"Starting enrichment run {self.run_id}: {self.stats.total} candidates")

            for i, candidate in enumerate(candidates):
                if not is_running(self.run_id):
                    self.cancelled = True
                    logger.info(f"Enrichment run {self.run_id} cancelled after {i} candidates")
                    return self.stats

                elapsed = self.clock() - started
                if elapsed > self.config.max_runtime_seconds:
                    minutes = self.config.max_runtime_seconds // 60
                    logger.warning(f"Enrichment run {self.run_id} exceeded {minutes} min, stopping")
                    complete_run(
                        self.run_id,
                        total_found=self.stats.success,
                        total_processed=self.stats.processed,
                        errors=[f"Stopped after {minutes} minutes: processed {i}/{len(candidates)} candidates"],
                    )
                    return self.stats

                if i:
                    self.pacer.pause(self.config.delay, reason=f"before @{candidate.handle}")

                self._enrich(client, candidate)
                self.stats.processed += 1
                update_progress(self.run_id, processed=self.stats.processed, found=self.stats.success)

            complete_run(
                self.run_id,
                total_found=self.stats.success,
                total_processed=self.stats.processed,
            )
            logger.info(f"Enrichment run {self.run_id} complete: {self.stats.to_dict()}")

        except RunStateError as e:
            self.cancelled = True
            logger.info(f"Enrichment run {self.run_id} stopped: {e}")

        except Exception as e:
            logger.exception(f"Enrichment run {self.run_id} failed: {e}")
            try:
                fail_run(self.run_id, [f"Pipeline error: {e}"])
            except RunStateError as state_error:
                logger.warning(f"Could not fail run {self.run_id}: {state_error}")

        finally:
            if owned is not None:
                owned.close()

        return self.stats

    def _load_batch(self) -> list[Candidate]:
        """Candidates snapshotted on the run, in their stored order."""
        by_id = Candidate.objects.in_bulk(self.config.candidate_ids)
        return [by_id[pk] for pk in self.config.candidate_ids if pk in by_id]

    def _enrich(self, client: PlatformClient, candidate: Candidate) -> None:
        handle = candidate.handle
        logger.debug(f"Enriching @{handle}")

        if not claim_candidate(candidate, self.run_id):
            outcome = FetchOutcome(AttemptStatus.FAILED, error="Another enrichment attempt is in flight")
        else:
            try:
                outcome = attempt_fetch(client, handle, self.config.skip_private)
                if outcome.status == AttemptStatus.SUCCESS:
                    try:
                        update_candidate_profile(candidate, outcome.profile.to_dict())
                    except Exception as e:
                        logger.error(f"Could not store profile for @{handle}: {e}")
                        outcome = FetchOutcome(
                            AttemptStatus.FAILED,
                            error=f"Could not store profile: {e}",
                            duration_ms=outcome.duration_ms,
                        )
            finally:
                release_candidate(candidate, self.run_id)

        if outcome.status == AttemptStatus.SUCCESS:
            self.stats.success += 1
            logger.info(f"Enriched @{handle}: {outcome.profile.followers} followers")
        elif outcome.status == AttemptStatus.SKIPPED_PRIVATE:
            self.stats.skipped_private += 1
            logger.info(f"Skipped @{handle}: private account")
        elif outcome.status == AttemptStatus.NOT_FOUND:
            self.stats.not_found += 1
            logger.info(f"@{handle} not found")
        else:
            self.stats.failed += 1
            logger.warning(f"Enrichment of @{handle} failed: {outcome.error}")

        record_attempt(
            self.run_id,
            handle=handle,
            platform=candidate.platform,
            status=outcome.status,
            candidate=candidate,
            profile_url=candidate.profile_url,
            country=candidate.country,
            error=outcome.error,
            payload=outcome.profile.raw.get("user") if outcome.profile else None,
            duration_ms=outcome.duration_ms,
        )


def run_enrichment_pipeline(run: AcquisitionRun, **kwargs) -> EnrichmentStats:
    """Run an enrichment batch from the run's stored configuration."""
    try:
        config = EnrichmentConfig.from_dict(run.config)
    except ConfigurationError as e:
        logger.error(f"Run {run.id} has an unreadable configuration: {e}")
        fail_run(run.id, [f"Invalid configuration: {e}"])
        return EnrichmentStats()
    return EnrichmentPipeline(run=run, config=config, **kwargs).run()
