"""Exception types raised by the analysis pipeline."""

from __future__ import annotations

from .models import Fingerprint


class TosRiskError(Exception):
    """Base class for all package errors."""


class DetectionSkipped(TosRiskError):
    """A single detector heuristic failed; the others still run."""

    def __init__(self, heuristic: str, reason: str) -> None:
        super().__init__(f"Heuristic '{heuristic}' skipped: {reason}")
        self.heuristic = heuristic
        self.reason = reason


class BelowMinimumLength(TosRiskError):
    """A fragment's text is too short to be worth classifying.

    Never surfaced to callers; the fragment is dropped and the skip is logged.
    """

    def __init__(self, length: int, minimum: int) -> None:
        super().__init__(f"Fragment text length {length} does not exceed {minimum}")
        self.length = length
        self.minimum = minimum


class SelectorError(TosRiskError, ValueError):
    """A selector string could not be parsed."""


class DocumentLoadError(TosRiskError):
    """A document could not be read from disk or over the network."""


class AnalysisError(TosRiskError):
    """Base class for failures surfaced by ``AnalysisOrchestrator.analyze``."""


class ClassificationTimeout(AnalysisError):
    """The classifier did not answer within the configured timeout."""

    def __init__(self, fingerprint: Fingerprint, timeout_ms: float) -> None:
        super().__init__(
            f"Classification of fragment from {fingerprint.origin} "
            f"timed out after {timeout_ms:.0f} ms"
        )
        self.fingerprint = fingerprint
        self.timeout_ms = timeout_ms


class ClassifierUnavailable(AnalysisError):
    """The classification engine could not be reached."""


class ClassificationFailed(AnalysisError):
    """The classification engine was reached but reported a failure."""
