# apps/crawler/pipelines.py

import logging
import time
from dataclasses import dataclass, field

from apps.candidates.models import Candidate
from apps.candidates.reconciliation import (
    IdentityResolver,
    ObservedIdentity,
    DuplicateCandidateSet,
    record_detection_snapshot,
)
from apps.candidates.services import upsert_candidate
from apps.common.enums import AttemptStatus, DiscoverySource
from apps.common.exceptions import (
    ConfigurationError,
    FetchError,
    ProfileNotFound,
    RunStateError,
    OrchestratorError,
)
from apps.common.handles import profile_url_for
from apps.runs.models import AcquisitionRun
from apps.runs.services import record_attempt, update_progress, complete_run, fail_run, is_running
from apps.scrapers import registry  # noqa: F401  registers platform clients and listing parsers

from .base import PlatformClient, ProfileData, ClientRegistry
from .config import DiscoveryConfig
from .http_client import HttpClient, HttpClientConfig
from .phases import PHASES, PhaseContext
from .rate_limit import Pacer

logger = logging.getLogger(__name__)


# Phase fetch errors kept on a completed run
MAX_RUN_ERRORS = 50


@dataclass
class FetchOutcome:
    """Result of one profile attempt, already classified."""
    status: str
    profile: ProfileData | None = None
    error: str = ""
    duration_ms: int = 0


def attempt_fetch(client: PlatformClient, handle: str, skip_private: bool) -> FetchOutcome:
    """
    Fetch one profile and classify the outcome. Never raises: every
    per-candidate error becomes a FAILED outcome.
    """
    start = time.monotonic()
    try:
        if skip_private and client.is_private(handle):
            outcome = FetchOutcome(AttemptStatus.SKIPPED_PRIVATE, error="Account is private")
        else:
            outcome = FetchOutcome(AttemptStatus.SUCCESS, profile=client.fetch_profile(handle))
    except ProfileNotFound as e:
        outcome = FetchOutcome(AttemptStatus.NOT_FOUND, error=str(e))
    except FetchError as e:
        outcome = FetchOutcome(AttemptStatus.FAILED, error=str(e))
    except Exception as e:
        logger.exception(f"Unexpected error fetching @{handle}")
        outcome = FetchOutcome(AttemptStatus.FAILED, error=f"Unexpected error: {e}")

    outcome.duration_ms = int((time.monotonic() - start) * 1000)
    return outcome


@dataclass
class DiscoveryStats:
    """Tracks stats during a discovery run."""
    processed: int = 0
    found: int = 0
    skipped_existing: int = 0
    rejected: int = 0
    not_found: int = 0
    failed: int = 0
    skipped_private: int = 0
    phase_handles: dict[str, int] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "found": self.found,
            "skipped_existing": self.skipped_existing,
            "rejected": self.rejected,
            "not_found": self.not_found,
            "failed": self.failed,
            "skipped_private": self.skipped_private,
            "phase_handles": dict(self.phase_handles),
            "error_count": len(self.errors),
        }


class DiscoveryPipeline:
    """
    Orchestrates one discovery run:
    1. For each country and platform, run the configured phases in order
    2. Deduplicate each phase's handles, then check them against all stores
    3. Skip handles already admitted; fetch the rest through the pool
    4. Validate fetched profiles and admit the good ones
    5. Record every attempt and update run progress after each one

    Stops before the next handle once the run leaves `running` (operator
    cancel) or `target_count` candidates have been admitted.
    """

    def __init__(
        self,
        run: AcquisitionRun,
        config: DiscoveryConfig,
        clients: dict[str, PlatformClient] | None = None,
        pacer: Pacer | None = None,
        resolver: IdentityResolver | None = None,
        fetch_page=None,
    ):
        self.run_id = run.id
        self.config = config
        self.clients = clients or {}
        self.pacer = pacer or Pacer()
        self.resolver = resolver or IdentityResolver()
        self.fetch_page = fetch_page
        self._http: HttpClient | None = None
        self._owned: list[PlatformClient] = []

        self.stats = DiscoveryStats()
        self.cancelled = False
        self.admitted: list[str] = []
        self._attempted = False

    # === Run loop ===

    def run(self) -> DiscoveryStats:
        logger.info(f"Starting discovery run {self.run_id}: {self.config.countries} -> {self.config.target_count}")

        try:
            clients = self._resolve_clients()
            for country in self.config.countries:
                for platform, client in clients.items():
                    for phase_name in self.config.phases:
                        if self._should_stop():
                            break
                        self._run_phase(phase_name, country, platform, client)

            if self.cancelled:
                logger.info(f"Discovery run {self.run_id} stopped by operator: {self.stats.to_dict()}")
                return self.stats

            complete_run(
                self.run_id,
                total_found=self.stats.found,
                total_processed=self.stats.processed,
                errors=self.stats.errors[:MAX_RUN_ERRORS],
            )
            logger.info(f"Discovery run {self.run_id} complete: {self.stats.to_dict()}")

        except RunStateError as e:
            # Run left `running` while we were working
            self.cancelled = True
            logger.info(f"Discovery run {self.run_id} stopped: {e}")

        except Exception as e:
            error_msg = f"Pipeline error: {e}"
            logger.exception(f"Discovery run {self.run_id} failed: {e}")
            self.stats.errors.append(error_msg)
            try:
                fail_run(self.run_id, [error_msg])
            except RunStateError as state_error:
                logger.warning(f"Could not fail run {self.run_id}: {state_error}")

        finally:
            self._close()

        return self.stats

    def _resolve_clients(self) -> dict[str, PlatformClient]:
        clients = {}
        for platform in self.config.platforms:
            client = self.clients.get(platform)
            if client is None:
                client = ClientRegistry.get_client(platform)
                if client is not None:
                    self._owned.append(client)
            if client is None:
                logger.warning(f"No client registered for {platform}, skipping")
                self.stats.errors.append(f"No client for platform {platform}")
                continue
            clients[platform] = client
        if not clients:
            raise OrchestratorError(f"No client available for platforms {self.config.platforms}")
        return clients

    def _run_phase(self, phase_name: str, country: str, platform: str, client: PlatformClient) -> None:
        context = PhaseContext(
            country=country,
            config=self.config,
            client=client,
            pacer=self.pacer,
            seeds=lambda: self._chain_seeds(country, platform),
            fetch_page=self.fetch_page or self._fetch_page,
            should_stop=self._should_stop,
            errors=self.stats.errors,
        )
        phase = PHASES[phase_name](context)
        source = DiscoverySource(phase_name)

        handles = phase.run()
        try:
            for handle in handles:
                if self._should_stop():
                    break
                self._process_handle(handle, country, platform, client, source)
        finally:
            handles.close()

        key = f"{country}:{phase_name}"
        self.stats.phase_handles[key] = self.stats.phase_handles.get(key, 0) + len(phase.seen)

    def _close(self) -> None:
        """Close the clients this run created; injected ones belong to the caller."""
        for client in self._owned:
            client.close()
        self._owned = []
        if self._http is not None:
            self._http.close()
            self._http = None

    def _should_stop(self) -> bool:
        if self.cancelled:
            return True
        if self.stats.found >= self.config.target_count:
            return True
        if not is_running(self.run_id):
            self.cancelled = True
            return True
        return False

    # === Per-handle processing ===

    def _process_handle(
        self,
        handle: str,
        country: str,
        platform: str,
        client: PlatformClient,
        source: str,
    ) -> None:
        duplicates = self.resolver.find_duplicates(ObservedIdentity.build({platform: handle}))
        if duplicates.admitted_match(platform, handle):
            logger.debug(f"@{handle} already admitted, skipping")
            self.stats.skipped_existing += 1
            return

        if self._attempted:
            self.pacer.pause(self.config.pacing.profile, reason=f"before @{handle}")
        self._attempted = True

        outcome = attempt_fetch(client, handle, self.config.skip_private)
        candidate = None
        error = outcome.error

        if outcome.status == AttemptStatus.SUCCESS:
            reason = self._validate(outcome.profile)
            if reason:
                logger.info(f"@{handle} rejected: {reason}")
                self.stats.rejected += 1
                error = f"Rejected: {reason}"
            else:
                try:
                    candidate = self._admit(outcome.profile, country, platform, source, duplicates)
                except Exception as e:
                    logger.error(f"Error admitting @{handle}: {e}")
                    outcome.status = AttemptStatus.FAILED
                    error = f"Admission error: {e}"
        self._count(outcome.status)

        record_attempt(
            self.run_id,
            handle=handle,
            platform=platform,
            status=outcome.status,
            candidate=candidate,
            profile_url=profile_url_for(platform, handle),
            country=country,
            error=error,
            payload=outcome.profile.raw.get("user") if outcome.profile else None,
            duration_ms=outcome.duration_ms,
        )

        self.stats.processed += 1
        update_progress(self.run_id, processed=self.stats.processed, found=self.stats.found)

    def _count(self, status: str) -> None:
        if status == AttemptStatus.NOT_FOUND:
            self.stats.not_found += 1
        elif status == AttemptStatus.FAILED:
            self.stats.failed += 1
        elif status == AttemptStatus.SKIPPED_PRIVATE:
            self.stats.skipped_private += 1

    def _validate(self, profile: ProfileData) -> str:
        """Reason the profile is not a fit, or "" if it is."""
        config = self.config
        if profile.followers < config.min_followers or profile.followers > config.max_followers:
            return f"followers {profile.followers} outside {config.min_followers}-{config.max_followers}"

        name = (profile.full_name or profile.handle).strip()
        if len(name) < 2:
            return "name too short"

        if profile.is_private:
            return "private profile"

        text = f"{profile.full_name} {profile.bio}".lower()
        if config.keywords and not any(k in text for k in config.keywords):
            return f"missing required keywords [{', '.join(config.keywords)}]"
        if config.exclude_keywords and any(k in text for k in config.exclude_keywords):
            return f"contains excluded keywords [{', '.join(config.exclude_keywords)}]"

        return ""

    def _admit(
        self,
        profile: ProfileData,
        country: str,
        platform: str,
        source: str,
        duplicates: DuplicateCandidateSet,
    ) -> Candidate:
        candidate, created = upsert_candidate(
            platform=platform,
            handle=profile.handle,
            country=country,
            source=source,
            display_name=profile.full_name,
            bio=profile.bio,
            follower_count=profile.followers,
            profile_data=profile.to_dict(),
        )
        if not created:
            # Admitted by a concurrent run since the resolver check
            self.stats.skipped_existing += 1
            return candidate

        self.stats.found += 1
        self.admitted.append(candidate.handle)

        review = duplicates.for_review(platform, candidate.handle)
        if review:
            record_detection_snapshot(candidate, DuplicateCandidateSet(matches=review))
        return candidate

    # === Phase support ===

    def _chain_seeds(self, country: str, platform: str) -> list[str]:
        """Configured seeds, then this run's admissions, then the country's biggest accounts."""
        seeds = list(self.config.seed_handles) + list(self.admitted)
        existing = (
            Candidate.objects.filter(country=country, platform=platform, is_active=True)
            .order_by("-follower_count")
            .values_list("handle", flat=True)[: self.config.limits.chain_seeds]
        )
        for handle in existing:
            if handle not in seeds:
                seeds.append(handle)
        return seeds

    def _fetch_page(self, url: str) -> str:
        """Fetch an external listing page through the shared pool."""
        from apps.connections.services import get_connection_pool

        pool = get_connection_pool()
        endpoint = pool.select_endpoint()
        if self._http is None:
            self._http = HttpClient(HttpClientConfig())
        response = self._http.get(url, proxy=endpoint.proxy_url)
        pool.report_outcome(
            endpoint,
            success=response.ok,
            latency_ms=response.duration_ms,
            error=response.error or f"HTTP {response.status_code}",
        )
        if not response.ok:
            raise FetchError(
                f"Listing {url} failed: {response.error or response.status_code}",
                status_code=response.status_code,
            )
        return response.text


def run_discovery_pipeline(run: AcquisitionRun, **kwargs) -> DiscoveryStats:
    """
    Convenience function to run a discovery pipeline from the run's
    stored configuration. Used by Celery tasks.
    """
    try:
        config = DiscoveryConfig.from_dict(run.config)
    except ConfigurationError as e:
        logger.error(f"Run {run.id} has an unreadable configuration: {e}")
        fail_run(run.id, [f"Invalid configuration: {e}"])
        return DiscoveryStats(errors=[str(e)])
    return DiscoveryPipeline(run=run, config=config, **kwargs).run()
