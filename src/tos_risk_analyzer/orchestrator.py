"""Analysis orchestration: dedup, in-flight joining, timeouts and caching.

``AnalysisOrchestrator`` sits between the detector and a classification
engine. For each fragment it either joins an identical request already in
flight, answers from the cache, or dispatches a new request under a fresh
correlation id and waits for it with a timeout.

A caller that times out stops waiting, but the classification it started is
not cancelled. If that classification finishes later its result still lands
in the cache, so the next request for the same fingerprint is a cache hit.

Example::

    orchestrator = AnalysisOrchestrator()
    results = await orchestrator.analyze_if_new(detector.detect(document))
    for result in results:
        print(result.fragment.title, result.assessment.overall.value)
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import uuid
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from functools import partial

from .cache import FingerprintCache
from .engines import ClassificationEngine, LocalEngine
from .errors import (
    AnalysisError,
    BelowMinimumLength,
    ClassificationFailed,
    ClassificationTimeout,
)
from .models import AnalysisResult, Fingerprint, Fragment, is_same_content

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 30_000


class SeenFingerprints:
    """Fingerprints that have completed analysis at least once."""

    def __init__(self) -> None:
        self._items: set[Fingerprint] = set()

    def add(self, fingerprint: Fingerprint) -> None:
        self._items.add(fingerprint)

    def discard(self, fingerprint: Fingerprint) -> None:
        self._items.discard(fingerprint)

    def clear(self) -> None:
        self._items.clear()

    def __contains__(self, fingerprint: object) -> bool:
        return fingerprint in self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Fingerprint]:
        return iter(list(self._items))


@dataclass
class _InFlight:
    correlation_id: str
    task: asyncio.Task


def _new_correlation_id() -> str:
    return f"analysis_{uuid.uuid4().hex[:12]}"


class AnalysisOrchestrator:
    """Coordinates classification requests for detected fragments.

    Must be used from a single event loop.

    Args:
        engine: Classification engine. Defaults to an in-process ``LocalEngine``.
        cache: Result cache. Defaults to a ``FingerprintCache`` with default limits.
        timeout_ms: How long a caller waits for a classification.
    """

    def __init__(
        self,
        engine: ClassificationEngine | None = None,
        cache: FingerprintCache | None = None,
        timeout_ms: float = DEFAULT_TIMEOUT_MS,
    ) -> None:
        if timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")
        self._engine = engine or LocalEngine()
        self._cache = cache if cache is not None else FingerprintCache()
        self.timeout_ms = timeout_ms
        self._in_flight: dict[Fingerprint, _InFlight] = {}
        self._seen = SeenFingerprints()

    @property
    def engine(self) -> ClassificationEngine:
        return self._engine

    @property
    def cache(self) -> FingerprintCache:
        return self._cache

    @property
    def seen(self) -> SeenFingerprints:
        return self._seen

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def analyze(self, fragment: Fragment) -> AnalysisResult:
        """Classify ``fragment``, reusing in-flight work and cached results.

        Args:
            fragment: The fragment to classify.

        Returns:
            The analysis result. A cache hit is signalled by
            ``processing_time_ms == 0``.

        Raises:
            ClassificationTimeout: If no result arrives within ``timeout_ms``.
            ClassifierUnavailable: If the engine cannot be reached.
            ClassificationFailed: If the engine reports a failure.
        """
        fingerprint = fragment.fingerprint

        pending = self._in_flight.get(fingerprint)
        if pending is not None:
            logger.debug(
                "Joining in-flight analysis %s for %s", pending.correlation_id, fragment.origin
            )
            return await self._wait(pending, fingerprint)

        cached = self._cache.get(fingerprint)
        if cached is not None and is_same_content(cached.fragment, fragment):
            logger.debug("Cache hit for fragment '%s' from %s", fragment.title, fragment.origin)
            return dataclasses.replace(cached, processing_time_ms=0.0)

        return await self._wait(self._dispatch(fragment), fingerprint)

    async def analyze_if_new(self, fragments: Iterable[Fragment]) -> list[AnalysisResult]:
        """Analyze only the fragments that still need it.

        Drops fragments that are too short, repeated within the batch,
        already cached with the same content, or already in flight. The rest
        are analyzed concurrently. A fragment whose analysis fails is logged
        and left out of the returned list.

        Returns:
            Results for the admitted fragments, in input order.
        """
        admitted: list[Fragment] = []
        batch: set[Fingerprint] = set()

        for fragment in fragments:
            if not fragment.is_admissible:
                skipped = BelowMinimumLength(len(fragment.text), fragment.min_length)
                logger.debug("Skipping %s fragment: %s", fragment.source_kind.value, skipped)
                continue
            fingerprint = fragment.fingerprint
            if fingerprint in batch or fingerprint in self._in_flight:
                continue
            cached = self._cache.get(fingerprint)
            if cached is not None and is_same_content(cached.fragment, fragment):
                continue
            batch.add(fingerprint)
            admitted.append(fragment)

        if not admitted:
            return []

        outcomes = await asyncio.gather(
            *(self.analyze(fragment) for fragment in admitted),
            return_exceptions=True,
        )

        results: list[AnalysisResult] = []
        for fragment, outcome in zip(admitted, outcomes):
            if isinstance(outcome, AnalysisError):
                logger.warning(
                    "Analysis failed for '%s' (%s): %s", fragment.title, fragment.origin, outcome
                )
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            self._seen.add(fragment.fingerprint)
            results.append(outcome)
        return results

    def get_cached(self, fingerprint: Fingerprint) -> AnalysisResult | None:
        return self._cache.get(fingerprint)

    def clear(self, fingerprint: Fingerprint | None = None) -> None:
        """Forget one cached result, or all of them."""
        if fingerprint is None:
            self._cache.clear()
            self._seen.clear()
            logger.info("Cleared all cached analyses")
            return
        self._cache.remove(fingerprint)
        self._seen.discard(fingerprint)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _dispatch(self, fragment: Fragment) -> _InFlight:
        correlation_id = _new_correlation_id()
        task = asyncio.create_task(self._run(fragment, correlation_id), name=correlation_id)
        pending = _InFlight(correlation_id=correlation_id, task=task)
        self._in_flight[fragment.fingerprint] = pending
        task.add_done_callback(partial(self._on_done, fragment.fingerprint, correlation_id))
        return pending

    async def _run(self, fragment: Fragment, correlation_id: str) -> AnalysisResult:
        try:
            reply = await self._engine.classify(fragment)
        except AnalysisError:
            raise
        except Exception as exc:
            raise ClassificationFailed(f"Engine error during {correlation_id}: {exc}") from exc

        result = AnalysisResult(
            fragment=fragment,
            assessment=reply.assessment,
            processing_time_ms=reply.processing_time_ms,
            engine_used=reply.engine_used,
            confidence=reply.confidence,
        )
        self._cache.put(result.fingerprint, result)
        self._cache.evict_if_over_capacity()
        logger.info(
            "Analyzed '%s' from %s: %s risk in %.1f ms (%s)",
            fragment.title,
            fragment.origin,
            result.assessment.overall.value,
            result.processing_time_ms,
            correlation_id,
        )
        return result

    def _on_done(self, fingerprint: Fingerprint, correlation_id: str, task: asyncio.Task) -> None:
        current = self._in_flight.get(fingerprint)
        if current is not None and current.correlation_id == correlation_id:
            del self._in_flight[fingerprint]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.debug("Analysis %s finished with %s", correlation_id, exc)

    async def _wait(self, pending: _InFlight, fingerprint: Fingerprint) -> AnalysisResult:
        try:
            return await asyncio.wait_for(asyncio.shield(pending.task), self.timeout_ms / 1000)
        except asyncio.TimeoutError:
            current = self._in_flight.get(fingerprint)
            if current is pending:
                del self._in_flight[fingerprint]
            timeout = ClassificationTimeout(fingerprint, self.timeout_ms)
            logger.warning("%s (%s)", timeout, pending.correlation_id)
            raise timeout from None
