"""Classification engines: where the classifier actually runs.

The orchestrator talks to a single ``ClassificationEngine`` interface and
never inspects its environment. Two implementations are provided:

- ``LocalEngine`` runs the classifier in-process on the calling thread.
- ``WorkerEngine`` owns a dedicated worker thread. Requests cross the
  boundary as ``WorkerMessage`` objects on a queue, and replies come back as
  ``WorkerResponse`` objects that are matched to their callers by message id.

Pick one at construction time with :func:`create_engine`.
"""

from __future__ import annotations

import asyncio
import logging
import queue
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from .classifier import ANALYSIS_VERSION, Classifier, RuleBasedClassifier
from .errors import ClassificationFailed, ClassifierUnavailable
from .models import Fragment, RiskAssessment

logger = logging.getLogger(__name__)

ENGINE_NAME = "TOS-Analyzer-v1"
LOCAL_CONFIDENCE = 0.8
WORKER_CONFIDENCE = 0.85

ENGINE_CHOICES = ("local", "worker")


@dataclass(frozen=True)
class EngineReply:
    """What an engine returns for one classification request."""

    assessment: RiskAssessment
    processing_time_ms: float
    engine_used: str
    confidence: float


@runtime_checkable
class ClassificationEngine(Protocol):
    """Classifies a fragment's text, possibly across a process boundary."""

    async def classify(self, fragment: Fragment) -> EngineReply: ...


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


# ---------------------------------------------------------------------------
# In-process engine
# ---------------------------------------------------------------------------


class LocalEngine:
    """Runs the classifier synchronously on the event loop's thread."""

    def __init__(self, classifier: Classifier | None = None) -> None:
        self._classifier = classifier or RuleBasedClassifier()

    async def classify(self, fragment: Fragment) -> EngineReply:
        started = time.perf_counter()
        assessment = self._classifier.classify(fragment.text)
        return EngineReply(
            assessment=assessment,
            processing_time_ms=_elapsed_ms(started),
            engine_used=ENGINE_NAME,
            confidence=LOCAL_CONFIDENCE,
        )


# ---------------------------------------------------------------------------
# Worker-boundary engine
# ---------------------------------------------------------------------------


class MessageType(str, Enum):
    ANALYZE = "ANALYZE_TOS"
    MODEL_STATUS = "MODEL_STATUS"


@dataclass(frozen=True)
class WorkerMessage:
    id: str
    type: MessageType
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class WorkerResponse:
    id: str
    success: bool
    data: Any = None
    error: str | None = None


@dataclass
class _Pending:
    loop: asyncio.AbstractEventLoop
    future: asyncio.Future


_SHUTDOWN = object()


class WorkerEngine:
    """Classifies fragments on a dedicated worker thread.

    Each request carries a fresh id. The worker answers every message with a
    ``WorkerResponse`` bearing the same id, which resolves the caller's future
    on the caller's own event loop.

    Args:
        classifier: Classifier instance used by the worker thread.
        name: Thread name, for log output.
    """

    def __init__(self, classifier: Classifier | None = None, name: str = "tos-risk-worker") -> None:
        self._classifier = classifier or RuleBasedClassifier()
        self._name = name
        self._inbox: queue.Queue[WorkerMessage | object] = queue.Queue()
        self._pending: dict[str, _Pending] = {}
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._running = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
            self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
            self._thread.start()
        logger.info("Classification worker %s started", self._name)

    def stop(self, timeout: float | None = 5.0) -> None:
        """Stop the worker and fail every request still waiting for a reply."""
        with self._lock:
            if not self._running:
                return
            self._running = False
            pending = list(self._pending.items())
            self._pending.clear()
            thread = self._thread
            self._thread = None

        self._inbox.put(_SHUTDOWN)
        for message_id, entry in pending:
            error = ClassifierUnavailable(f"Worker stopped before replying to {message_id}")
            self._settle(entry, error=error)
        if thread is not None:
            thread.join(timeout)
        logger.info("Classification worker %s stopped", self._name)

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def classify(self, fragment: Fragment) -> EngineReply:
        """Send an ANALYZE request and await its reply.

        Raises:
            ClassifierUnavailable: If the worker is not running.
            ClassificationFailed: If the worker reports a failure.
        """
        started = time.perf_counter()
        response = await self._request(
            MessageType.ANALYZE,
            {"text": fragment.text, "origin": fragment.origin},
        )
        if not response.success:
            raise ClassificationFailed(response.error or "Worker analysis failed")
        return EngineReply(
            assessment=response.data,
            processing_time_ms=_elapsed_ms(started),
            engine_used=ENGINE_NAME,
            confidence=WORKER_CONFIDENCE,
        )

    async def status(self) -> dict[str, Any]:
        """Ask the worker which model it is running."""
        response = await self._request(MessageType.MODEL_STATUS, {})
        if not response.success:
            raise ClassificationFailed(response.error or "Worker status request failed")
        return response.data

    async def _request(self, message_type: MessageType, payload: dict[str, Any]) -> WorkerResponse:
        loop = asyncio.get_running_loop()
        message = WorkerMessage(id=uuid.uuid4().hex, type=message_type, payload=payload)
        future: asyncio.Future = loop.create_future()

        with self._lock:
            if not self._running:
                raise ClassifierUnavailable(f"Classification worker {self._name} is not running")
            self._pending[message.id] = _Pending(loop=loop, future=future)
        self._inbox.put(message)

        try:
            return await future
        finally:
            # The caller may give up (timeout, cancellation) before the reply
            with self._lock:
                self._pending.pop(message.id, None)

    # ------------------------------------------------------------------
    # Worker side
    # ------------------------------------------------------------------

    def _run(self) -> None:
        while True:
            message = self._inbox.get()
            if message is _SHUTDOWN:
                return
            self._deliver(self._handle(message))

    def _handle(self, message: WorkerMessage) -> WorkerResponse:
        try:
            if message.type == MessageType.ANALYZE:
                assessment = self._classifier.classify(message.payload["text"])
                return WorkerResponse(id=message.id, success=True, data=assessment)
            if message.type == MessageType.MODEL_STATUS:
                return WorkerResponse(
                    id=message.id,
                    success=True,
                    data={
                        "loaded": True,
                        "model": ENGINE_NAME,
                        "analysis_version": ANALYSIS_VERSION,
                        "classifier": type(self._classifier).__name__,
                    },
                )
            return WorkerResponse(
                id=message.id, success=False, error=f"Unknown message type: {message.type}"
            )
        except Exception as exc:
            logger.exception("Worker failed to handle %s message %s", message.type, message.id)
            return WorkerResponse(id=message.id, success=False, error=str(exc))

    def _deliver(self, response: WorkerResponse) -> None:
        with self._lock:
            entry = self._pending.pop(response.id, None)
        if entry is None:
            logger.debug("Dropping reply %s with no waiting caller", response.id)
            return
        self._settle(entry, response=response)

    @staticmethod
    def _settle(
        entry: _Pending,
        response: WorkerResponse | None = None,
        error: BaseException | None = None,
    ) -> None:
        def resolve() -> None:
            if entry.future.done():
                return
            if error is not None:
                entry.future.set_exception(error)
            else:
                entry.future.set_result(response)

        try:
            entry.loop.call_soon_threadsafe(resolve)
        except RuntimeError:
            logger.debug("Event loop closed before a worker reply could be delivered")

    def __enter__(self) -> WorkerEngine:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()


def create_engine(
    kind: str = "local", classifier: Classifier | None = None
) -> LocalEngine | WorkerEngine:
    """Build the engine named ``kind``. A ``worker`` engine is started.

    Raises:
        ValueError: If ``kind`` is not one of ``ENGINE_CHOICES``.
    """
    if kind == "local":
        return LocalEngine(classifier)
    if kind == "worker":
        engine = WorkerEngine(classifier)
        engine.start()
        return engine
    raise ValueError(f"Unknown engine '{kind}'. Choose from: {', '.join(ENGINE_CHOICES)}")
