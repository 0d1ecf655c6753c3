# apps/crawler/config.py

"""
Typed run configuration.

`from_dict` validates operator input and raises ConfigurationError before
any run row exists; `to_dict` is the snapshot stored on the run and read
back by the worker.
"""

from dataclasses import dataclass, field, asdict, fields, replace
from typing import Any

from apps.common.enums import Platform
from apps.common.exceptions import ConfigurationError


PHASE_ORDER = ["tag_mining", "chain", "geographic", "external"]

MAX_ENRICHMENT_BATCH = 100


@dataclass(frozen=True)
class DelayRange:
    """Pacing delay in seconds. min == max means a fixed delay."""
    min_seconds: float = 0.0
    max_seconds: float = 0.0

    @classmethod
    def parse(cls, value: Any, name: str) -> "DelayRange":
        if value is None:
            return cls()
        if isinstance(value, DelayRange):
            return value
        usage = f"{name} must be a number, [min, max] or {{min_seconds, max_seconds}}"
        try:
            if isinstance(value, (int, float)):
                low = high = float(value)
            elif isinstance(value, dict):
                low = float(value.get("min_seconds", 0))
                high = float(value.get("max_seconds", low))
            elif isinstance(value, (list, tuple)) and len(value) == 2:
                low, high = float(value[0]), float(value[1])
            else:
                raise ConfigurationError(usage)
        except (TypeError, ValueError):
            raise ConfigurationError(usage)

        if low < 0 or high < low:
            raise ConfigurationError(f"{name} must satisfy 0 <= min <= max")
        return cls(min_seconds=low, max_seconds=high)

    @property
    def is_zero(self) -> bool:
        return self.max_seconds <= 0


@dataclass(frozen=True)
class PhaseLimits:
    """Per-phase quotas bounding the crawl frontier."""
    candidate_ceiling: int = 10000
    tags_per_run: int = 200
    chain_seeds: int = 100
    chain_followers: int = 50
    chain_subsample: int = 10
    chain_second_hop: int = 20
    locations_per_run: int = 50

    @classmethod
    def from_dict(cls, data: dict | None) -> "PhaseLimits":
        data = data or {}
        if not isinstance(data, dict):
            raise ConfigurationError("limits must be an object")
        unknown = set(data) - {f.name for f in fields(cls)}
        if unknown:
            raise ConfigurationError(f"Unknown phase limits: {', '.join(sorted(unknown))}")
        values = {}
        for key, raw in data.items():
            try:
                value = int(raw)
            except (TypeError, ValueError):
                raise ConfigurationError(f"Phase limit {key} must be an integer")
            if value < 0:
                raise ConfigurationError(f"Phase limit {key} must be >= 0")
            values[key] = value
        return cls(**values)


@dataclass(frozen=True)
class Pacing:
    """Delays between fetches, per phase."""
    profile: DelayRange = field(default_factory=lambda: DelayRange(5, 13))
    tag: DelayRange = field(default_factory=lambda: DelayRange(5, 5))
    chain_seed: DelayRange = field(default_factory=lambda: DelayRange(10, 10))
    chain_hop: DelayRange = field(default_factory=lambda: DelayRange(2, 4))
    location: DelayRange = field(default_factory=lambda: DelayRange(8, 8))
    external: DelayRange = field(default_factory=lambda: DelayRange(3, 3))

    @classmethod
    def from_dict(cls, data: dict | None) -> "Pacing":
        data = data or {}
        if not isinstance(data, dict):
            raise ConfigurationError("pacing must be an object")
        names = {f.name for f in fields(cls)}
        unknown = set(data) - names
        if unknown:
            raise ConfigurationError(f"Unknown pacing keys: {', '.join(sorted(unknown))}")
        return cls(**{key: DelayRange.parse(value, f"pacing.{key}") for key, value in data.items()})

    @classmethod
    def none(cls) -> "Pacing":
        zero = DelayRange()
        return cls(profile=zero, tag=zero, chain_seed=zero, chain_hop=zero, location=zero, external=zero)


def _string_list(data: dict, key: str, lower: bool = False) -> list[str]:
    value = data.get(key) or []
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, (list, tuple)):
        raise ConfigurationError(f"{key} must be a list of strings")
    items = [str(v).strip() for v in value if str(v).strip()]
    return [v.lower() for v in items] if lower else items


def _int(data: dict, key: str, default: int) -> int:
    raw = data.get(key, default)
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{key} must be an integer")


def _int_list(data: dict, key: str) -> list[int]:
    value = data.get(key) or []
    if not isinstance(value, (list, tuple)):
        raise ConfigurationError(f"{key} must be a list of integers")
    try:
        return [int(v) for v in value]
    except (TypeError, ValueError):
        raise ConfigurationError(f"{key} must be a list of integers")


@dataclass(frozen=True)
class DiscoveryConfig:
    countries: list[str]
    target_count: int
    platforms: list[str] = field(default_factory=lambda: [Platform.INSTAGRAM.value])
    hashtags: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)
    exclude_keywords: list[str] = field(default_factory=list)
    locations: list[str] = field(default_factory=list)
    external_sources: list[str] = field(default_factory=list)
    seed_handles: list[str] = field(default_factory=list)
    min_followers: int = 1000
    max_followers: int = 1_000_000
    phases: list[str] = field(default_factory=lambda: list(PHASE_ORDER))
    skip_private: bool = True
    limits: PhaseLimits = field(default_factory=PhaseLimits)
    pacing: Pacing = field(default_factory=Pacing)

    @classmethod
    def from_dict(cls, data: dict) -> "DiscoveryConfig":
        if not isinstance(data, dict):
            raise ConfigurationError("Discovery configuration must be an object")

        countries = [c.upper() for c in _string_list(data, "countries")]
        if not countries:
            raise ConfigurationError("At least one target country is required")

        platforms = _string_list(data, "platforms", lower=True) or [Platform.INSTAGRAM.value]
        unsupported = [p for p in platforms if p not in Platform.values]
        if unsupported:
            raise ConfigurationError(f"Unsupported platforms: {', '.join(unsupported)}")

        target_count = _int(data, "target_count", 0)
        if target_count < 1:
            raise ConfigurationError("target_count must be a positive integer")

        min_followers = _int(data, "min_followers", 1000)
        max_followers = _int(data, "max_followers", 1_000_000)
        if min_followers < 0 or max_followers < min_followers:
            raise ConfigurationError("Follower bounds must satisfy 0 <= min_followers <= max_followers")

        phases = _string_list(data, "phases", lower=True) or list(PHASE_ORDER)
        unknown = [p for p in phases if p not in PHASE_ORDER]
        if unknown:
            raise ConfigurationError(f"Unknown phases: {', '.join(unknown)}")
        # Phases always run in the fixed order
        phases = [p for p in PHASE_ORDER if p in phases]

        return cls(
            countries=countries,
            target_count=target_count,
            platforms=platforms,
            hashtags=[t.lstrip("#") for t in _string_list(data, "hashtags", lower=True)],
            keywords=_string_list(data, "keywords", lower=True),
            exclude_keywords=_string_list(data, "exclude_keywords", lower=True),
            locations=_string_list(data, "locations"),
            external_sources=_string_list(data, "external_sources"),
            seed_handles=_string_list(data, "seed_handles", lower=True),
            min_followers=min_followers,
            max_followers=max_followers,
            phases=phases,
            skip_private=bool(data.get("skip_private", True)),
            limits=PhaseLimits.from_dict(data.get("limits")),
            pacing=Pacing.from_dict(data.get("pacing")),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class EnrichmentConfig:
    batch_size: int = 10
    country: str = ""
    platform: str = Platform.INSTAGRAM.value
    delay: DelayRange = field(default_factory=lambda: DelayRange(3, 3))
    skip_private: bool = True
    only_missing_data: bool = True
    max_runtime_seconds: int = 30 * 60
    candidate_ids: list[int] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "EnrichmentConfig":
        if not isinstance(data, dict):
            raise ConfigurationError("Enrichment configuration must be an object")

        batch_size = _int(data, "batch_size", 10)
        if batch_size < 1 or batch_size > MAX_ENRICHMENT_BATCH:
            raise ConfigurationError(f"Batch size must be between 1 and {MAX_ENRICHMENT_BATCH}")

        platform = str(data.get("platform") or Platform.INSTAGRAM.value).lower()
        if platform not in Platform.values:
            raise ConfigurationError(f"Unsupported platform: {platform}")

        max_runtime = _int(data, "max_runtime_seconds", 30 * 60)
        if max_runtime < 1:
            raise ConfigurationError("max_runtime_seconds must be positive")

        return cls(
            batch_size=batch_size,
            country=str(data.get("country") or "").upper(),
            platform=platform,
            delay=DelayRange.parse(data.get("delay", (3, 3)), "delay"),
            skip_private=bool(data.get("skip_private", True)),
            only_missing_data=bool(data.get("only_missing_data", True)),
            max_runtime_seconds=max_runtime,
            candidate_ids=_int_list(data, "candidate_ids"),
        )

    def to_dict(self) -> dict:
        return asdict(self)

    def with_candidates(self, candidate_ids: list[int]) -> "EnrichmentConfig":
        return replace(self, candidate_ids=list(candidate_ids))
