"""Runtime settings and component wiring.

Settings come from ``TOS_RISK_*`` environment variables, optionally loaded
from a ``.env`` file. Each field maps to the upper-cased variable, e.g.
``TOS_RISK_TIMEOUT_MS``, ``TOS_RISK_CACHE_CAPACITY``, ``TOS_RISK_ENGINE``.
Exceptions: ``storage_pressure_threshold`` reads ``TOS_RISK_STORAGE_PRESSURE``
and ``link_fetch_timeout_s`` reads ``TOS_RISK_LINK_TIMEOUT_S``.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from dotenv import find_dotenv, load_dotenv

from .cache import FingerprintCache
from .detector import FragmentDetector
from .engines import ENGINE_CHOICES, create_engine
from .orchestrator import AnalysisOrchestrator
from .pipeline import ContentRiskPipeline
from .resolvers import LinkResolver

ENV_PREFIX = "TOS_RISK_"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


@dataclass
class AnalyzerSettings:
    """Tunable limits for the analysis pipeline."""

    timeout_ms: int = 30_000
    cache_capacity: int = 100
    cache_reduced_capacity: int = 50
    storage_pressure_threshold: float = 0.8
    storage_quota_bytes: int = 10 * 1024 * 1024
    debounce_ms: int = 1000
    engine: str = "local"
    follow_links: bool = False
    link_fetch_timeout_s: float = 10.0

    def __post_init__(self) -> None:
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")
        if self.cache_capacity < 1:
            raise ValueError("cache_capacity must be at least 1")
        if not 0 <= self.cache_reduced_capacity <= self.cache_capacity:
            raise ValueError("cache_reduced_capacity must be between 0 and cache_capacity")
        if not 0 < self.storage_pressure_threshold <= 1:
            raise ValueError("storage_pressure_threshold must be in (0, 1]")
        if self.storage_quota_bytes <= 0:
            raise ValueError("storage_quota_bytes must be positive")
        if self.debounce_ms < 0:
            raise ValueError("debounce_ms must not be negative")
        if self.engine not in ENGINE_CHOICES:
            raise ValueError(
                f"engine must be one of {', '.join(ENGINE_CHOICES)}, got '{self.engine}'"
            )
        if self.link_fetch_timeout_s <= 0:
            raise ValueError("link_fetch_timeout_s must be positive")

    @classmethod
    def from_env(
        cls, environ: Mapping[str, str] | None = None, dotenv: bool = True
    ) -> AnalyzerSettings:
        """Build settings from the environment.

        Args:
            environ: Mapping to read instead of ``os.environ``.
            dotenv: Load a ``.env`` file found from the working directory first
                (only when reading ``os.environ``).

        Raises:
            ValueError: If a variable is set to an invalid value.
        """
        if environ is None:
            if dotenv:
                load_dotenv(find_dotenv(usecwd=True))
            environ = os.environ

        def read(name: str, default, convert):
            raw = environ.get(ENV_PREFIX + name)
            if raw is None:
                return default
            try:
                return convert(raw.strip())
            except ValueError as exc:
                raise ValueError(f"Invalid value for {ENV_PREFIX}{name}: {raw!r}") from exc

        defaults = cls()
        return cls(
            timeout_ms=read("TIMEOUT_MS", defaults.timeout_ms, int),
            cache_capacity=read("CACHE_CAPACITY", defaults.cache_capacity, int),
            cache_reduced_capacity=read(
                "CACHE_REDUCED_CAPACITY", defaults.cache_reduced_capacity, int
            ),
            storage_pressure_threshold=read(
                "STORAGE_PRESSURE", defaults.storage_pressure_threshold, float
            ),
            storage_quota_bytes=read("STORAGE_QUOTA_BYTES", defaults.storage_quota_bytes, int),
            debounce_ms=read("DEBOUNCE_MS", defaults.debounce_ms, int),
            engine=read("ENGINE", defaults.engine, str.lower),
            follow_links=read("FOLLOW_LINKS", defaults.follow_links, _parse_bool),
            link_fetch_timeout_s=read("LINK_TIMEOUT_S", defaults.link_fetch_timeout_s, float),
        )


def _parse_bool(raw: str) -> bool:
    value = raw.lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"Not a boolean: {raw!r}")


def build_orchestrator(settings: AnalyzerSettings | None = None) -> AnalysisOrchestrator:
    """Create an orchestrator with the engine and cache ``settings`` describe."""
    settings = settings or AnalyzerSettings()
    cache = FingerprintCache(
        capacity=settings.cache_capacity,
        reduced_capacity=settings.cache_reduced_capacity,
        pressure_threshold=settings.storage_pressure_threshold,
        quota_bytes=settings.storage_quota_bytes,
    )
    return AnalysisOrchestrator(
        engine=create_engine(settings.engine),
        cache=cache,
        timeout_ms=settings.timeout_ms,
    )


def build_pipeline(
    settings: AnalyzerSettings | None = None,
    resolver: LinkResolver | None = None,
) -> ContentRiskPipeline:
    """Create a full pipeline. Links are followed only when a resolver is given."""
    settings = settings or AnalyzerSettings()
    return ContentRiskPipeline(
        detector=FragmentDetector(link_resolver=resolver),
        orchestrator=build_orchestrator(settings),
        debounce_ms=settings.debounce_ms,
    )
