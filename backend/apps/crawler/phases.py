# apps/crawler/phases.py

"""
Discovery phases. Each phase is a policy that lazily emits candidate
handles for one country; the pipeline consumes them one at a time, so a
phase never fetches further ahead than the pipeline has asked for.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Iterator

from apps.common.exceptions import AcquisitionError
from apps.common.handles import normalize_handle
from apps.scrapers.external import InstagramLinkParser

from .base import ClientRegistry, PlatformClient
from .config import DiscoveryConfig
from .constants import tags_for_country, cities_for_country, external_sources_for_country
from .rate_limit import Pacer

logger = logging.getLogger(__name__)


@dataclass
class PhaseContext:
    """Everything a phase needs from the run driving it."""
    country: str
    config: DiscoveryConfig
    client: PlatformClient
    pacer: Pacer
    # Seed accounts for chain expansion, best first
    seeds: Callable[[], list[str]] = list
    # Raw HTML of an external listing page; raises FetchError
    fetch_page: Callable[[str], str] | None = None
    # True once the run should stop (cancelled or target reached)
    should_stop: Callable[[], bool] = lambda: False
    errors: list[str] = field(default_factory=list)


class DiscoveryPhase(ABC):
    """
    One discovery strategy. `run()` wraps `emit()` with the per-phase
    seen-set and the accumulated-candidate ceiling.
    """

    name: str = ""

    def __init__(self, context: PhaseContext):
        self.ctx = context
        self.seen: set[str] = set()
        self.fetches = 0

    @property
    def limits(self):
        return self.ctx.config.limits

    @property
    def pacing(self):
        return self.ctx.config.pacing

    @abstractmethod
    def emit(self) -> Iterator[str]:
        """Raw handles, possibly repeated or decorated."""
        pass

    def run(self) -> Iterator[str]:
        logger.info(f"Phase {self.name} starting for {self.ctx.country}")
        for raw in self.emit():
            handle = normalize_handle(raw)
            if not handle or handle in self.seen:
                continue
            self.seen.add(handle)
            yield handle

            if len(self.seen) >= self.limits.candidate_ceiling:
                logger.info(f"Phase {self.name} reached {len(self.seen)} candidates, moving on")
                break
        logger.info(f"Phase {self.name} finished: {len(self.seen)} unique handles, {self.fetches} fetches")

    def _fetch(self, label: str, fn, *args) -> list[str]:
        """Run one listing fetch; errors are recorded and the term skipped."""
        self.fetches += 1
        try:
            return fn(*args) or []
        except AcquisitionError as e:
            logger.warning(f"Phase {self.name}: {label} failed: {e}")
            self.ctx.errors.append(f"{self.name}:{label}: {e}")
            return []
        except Exception as e:
            logger.exception(f"Phase {self.name}: unexpected error on {label}")
            self.ctx.errors.append(f"{self.name}:{label}: unexpected error: {e}")
            return []


class TagMiningPhase(DiscoveryPhase):
    """Prioritized tags, top and recent posts of each."""

    name = "tag_mining"

    def terms(self) -> list[str]:
        tags = self.ctx.config.hashtags or tags_for_country(self.ctx.country)
        return tags[: self.limits.tags_per_run]

    def emit(self) -> Iterator[str]:
        for i, tag in enumerate(self.terms()):
            if self.ctx.should_stop():
                return
            if i:
                self.ctx.pacer.pause(self.pacing.tag, reason=f"before #{tag}")
            yield from self._fetch(f"#{tag}", self.ctx.client.fetch_tag, tag)


class ChainExpansionPhase(DiscoveryPhase):
    """
    Followers of seed accounts, and followers of a sub-sample of those.
    Bounded by seeds x followers and sub-sample x second hop.
    """

    name = "chain"

    def emit(self) -> Iterator[str]:
        seeds = self.ctx.seeds()[: self.limits.chain_seeds]
        if not seeds:
            logger.info("Chain expansion has no seed accounts")
            return

        for i, seed in enumerate(seeds):
            if self.ctx.should_stop():
                return
            if i:
                self.ctx.pacer.pause(self.pacing.chain_seed, reason=f"before @{seed}")

            followers = self._fetch(
                f"@{seed}", self.ctx.client.fetch_followers, seed, self.limits.chain_followers,
            )
            yield from followers

            for follower in followers[: self.limits.chain_subsample]:
                if self.ctx.should_stop():
                    return
                self.ctx.pacer.pause(self.pacing.chain_hop, reason=f"before @{follower}")
                yield from self._fetch(
                    f"@{follower}", self.ctx.client.fetch_followers, follower, self.limits.chain_second_hop,
                )


class GeographicPhase(DiscoveryPhase):
    """Recent posters at the region's place pages."""

    name = "geographic"

    def terms(self) -> list[str]:
        locations = self.ctx.config.locations or cities_for_country(self.ctx.country)
        return locations[: self.limits.locations_per_run]

    def emit(self) -> Iterator[str]:
        for i, location in enumerate(self.terms()):
            if self.ctx.should_stop():
                return
            if i:
                self.ctx.pacer.pause(self.pacing.location, reason=f"before {location}")
            yield from self._fetch(location, self.ctx.client.fetch_location, location)


class ExternalSourcePhase(DiscoveryPhase):
    """Handles listed on external ranking and directory sites."""

    name = "external"

    def terms(self) -> list[str]:
        return self.ctx.config.external_sources or external_sources_for_country(self.ctx.country)

    def emit(self) -> Iterator[str]:
        if self.ctx.fetch_page is None:
            logger.info("External sources skipped: no page fetcher")
            return

        for i, url in enumerate(self.terms()):
            if self.ctx.should_stop():
                return
            if i:
                self.ctx.pacer.pause(self.pacing.external, reason=f"before {url}")
            yield from self._fetch(url, self._parse_listing, url)

    def _parse_listing(self, url: str) -> list[str]:
        html = self.ctx.fetch_page(url)
        parser = ClientRegistry.get_parser_for_url(url) or InstagramLinkParser()
        result = parser.parse(html, url)
        for error in result.errors:
            self.ctx.errors.append(f"{self.name}:{url}: {error}")
        logger.info(f"Listing {url}: {len(result.handles)} handles")
        return result.handles


PHASES: dict[str, type[DiscoveryPhase]] = {
    TagMiningPhase.name: TagMiningPhase,
    ChainExpansionPhase.name: ChainExpansionPhase,
    GeographicPhase.name: GeographicPhase,
    ExternalSourcePhase.name: ExternalSourcePhase,
}
