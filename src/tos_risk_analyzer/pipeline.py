"""End-to-end pipeline: detection feeding the orchestrator.

``scan`` handles a static document in one pass. ``watch`` follows a live
document: fragments found in inserted subtrees are collected and, once no
new fragment has arrived for ``debounce_ms``, analyzed together in a single
``analyze_if_new`` pass. Passes never overlap.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from .detector import FragmentDetector, ObservationSession
from .document import Document, MutationSource
from .models import AnalysisResult, Fragment
from .orchestrator import AnalysisOrchestrator

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_MS = 1000

ResultsCallback = Callable[[list[AnalysisResult]], None]


class ContentRiskPipeline:
    """Detect legal fragments in documents and analyze the new ones.

    Args:
        detector: Finds candidate fragments.
        orchestrator: Deduplicates, caches and classifies them.
        debounce_ms: Quiet period before a batch of observed fragments is
            analyzed.
    """

    def __init__(
        self,
        detector: FragmentDetector | None = None,
        orchestrator: AnalysisOrchestrator | None = None,
        debounce_ms: float = DEFAULT_DEBOUNCE_MS,
    ) -> None:
        if debounce_ms < 0:
            raise ValueError("debounce_ms must not be negative")
        self.detector = detector or FragmentDetector()
        self.orchestrator = orchestrator or AnalysisOrchestrator()
        self.debounce_ms = debounce_ms

        self._session: ObservationSession | None = None
        self._on_results: ResultsCallback | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._pending: list[Fragment] = []
        self._timer: asyncio.TimerHandle | None = None
        self._flush_lock = asyncio.Lock()
        self._passes: set[asyncio.Task] = set()

    async def scan(self, document: Document) -> list[AnalysisResult]:
        """Detect fragments in ``document`` and analyze those not seen before."""
        fragments = self.detector.detect(document)
        logger.info("Found %d candidate fragment(s) in %s", len(fragments), document.origin)
        return await self.orchestrator.analyze_if_new(fragments)

    # ------------------------------------------------------------------
    # Continuous observation
    # ------------------------------------------------------------------

    @property
    def watching(self) -> bool:
        return self._session is not None and self._session.active

    def watch(
        self,
        source: MutationSource,
        origin: str,
        on_results: ResultsCallback | None = None,
    ) -> ObservationSession:
        """Start observing ``source``; must be called from a running event loop.

        Args:
            source: Reports inserted subtrees.
            origin: Origin recorded on observed fragments.
            on_results: Called with the results of each non-empty pass.

        Raises:
            RuntimeError: If the pipeline is already watching a source.
        """
        if self.watching:
            raise RuntimeError("Pipeline is already watching a document")
        self._loop = asyncio.get_running_loop()
        self._on_results = on_results
        self._session = self.detector.observe(
            source, origin, listener=self._on_fragment, buffered=False
        )
        return self._session

    async def flush(self) -> list[AnalysisResult]:
        """Analyze collected fragments now instead of waiting for the timer."""
        self._cancel_timer()
        return await self._run_pass()

    async def stop(self) -> None:
        """Stop observing, drop uncollected fragments and wait for running passes."""
        self._cancel_timer()
        if self._session is not None:
            self._session.stop()
            self._session = None
        self._pending.clear()
        if self._passes:
            await asyncio.gather(*self._passes, return_exceptions=True)

    def _on_fragment(self, fragment: Fragment) -> None:
        loop = self._require_loop()
        self._pending.append(fragment)
        self._cancel_timer()
        self._timer = loop.call_later(self.debounce_ms / 1000, self._start_pass)

    def _require_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            raise RuntimeError("watch() has not been started")
        return self._loop

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _start_pass(self) -> None:
        self._timer = None
        task = self._require_loop().create_task(self._run_pass())
        self._passes.add(task)
        task.add_done_callback(self._pass_done)

    def _pass_done(self, task: asyncio.Task) -> None:
        self._passes.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Observation pass failed: %s", exc, exc_info=exc)

    async def _run_pass(self) -> list[AnalysisResult]:
        async with self._flush_lock:
            batch, self._pending = self._pending, []
            fresh = [f for f in batch if f.fingerprint not in self.orchestrator.seen]
            if not fresh:
                return []
            logger.debug("Analyzing %d observed fragment(s)", len(fresh))
            results = await self.orchestrator.analyze_if_new(fresh)

        if results and self._on_results is not None:
            self._on_results(results)
        return results
