"""Shared test fixtures for tos-risk-analyzer tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import pytest

from tos_risk_analyzer.classifier import RuleBasedClassifier
from tos_risk_analyzer.engines import EngineReply
from tos_risk_analyzer.errors import ClassificationFailed
from tos_risk_analyzer.models import AnalysisResult, Fragment, SourceKind

ORIGIN = "https://example.com/signup"
EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)

# ---------------------------------------------------------------------------
# Text samples
# ---------------------------------------------------------------------------

RISKY_TEXT = (
    "We may sell your personal information to third parties. "
    "You may request deletion at any time."
)

CLEAN_TEXT = (
    "Welcome to our bakery. We bake fresh bread every morning and sell pastries "
    "at our downtown location."
)

LEGAL_PARAGRAPH = (
    "By creating an account you agree to our Terms of Service and Privacy Policy. "
    "We use cookies to keep you signed in and to remember your settings between visits. "
)


def legal_text(min_length: int) -> str:
    """Legal-sounding text at least ``min_length`` characters long."""
    text = LEGAL_PARAGRAPH
    while len(text) < min_length:
        text += LEGAL_PARAGRAPH
    return text.strip()


# ---------------------------------------------------------------------------
# Fake engine
# ---------------------------------------------------------------------------


class CountingEngine:
    """Engine double that records calls and can be slowed down or made to fail."""

    def __init__(
        self,
        delay: float = 0.0,
        error: Exception | None = None,
        fail_on: set[str] | None = None,
    ) -> None:
        self.delay = delay
        self.error = error
        self.fail_on = fail_on or set()
        self.calls: list[Fragment] = []
        self._classifier = RuleBasedClassifier()

    async def classify(self, fragment: Fragment) -> EngineReply:
        self.calls.append(fragment)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if fragment.text in self.fail_on:
            raise ClassificationFailed(f"refused {fragment.title}")
        return EngineReply(
            assessment=self._classifier.classify(fragment.text),
            processing_time_ms=5.0,
            engine_used="test-engine",
            confidence=0.9,
        )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    """Clock that always returns the same instant."""
    return lambda: EPOCH


@pytest.fixture
def make_fragment() -> Callable[..., Fragment]:
    """Factory for fragments with sensible defaults."""
    counter = {"n": 0}

    def _make(
        text: str | None = None,
        origin: str = ORIGIN,
        title: str = "Terms of Service",
        kind: SourceKind = SourceKind.MODAL,
        extracted_at: datetime | None = None,
    ) -> Fragment:
        counter["n"] += 1
        return Fragment(
            id=f"tos_test{counter['n']:04d}",
            origin=origin,
            title=title,
            text=text if text is not None else legal_text(150),
            extracted_at=extracted_at or EPOCH + timedelta(seconds=counter["n"]),
            source_kind=kind,
        )

    return _make


@pytest.fixture
def make_result(make_fragment) -> Callable[..., AnalysisResult]:
    """Factory for analysis results built with the real classifier."""
    classifier = RuleBasedClassifier()

    def _make(fragment: Fragment | None = None, **fragment_kwargs) -> AnalysisResult:
        fragment = fragment or make_fragment(**fragment_kwargs)
        return AnalysisResult(
            fragment=fragment,
            assessment=classifier.classify(fragment.text),
            processing_time_ms=3.0,
            engine_used="test-engine",
            confidence=0.9,
        )

    return _make


@pytest.fixture
def counting_engine() -> CountingEngine:
    return CountingEngine()


@pytest.fixture
def signup_html() -> str:
    """A signup page with a terms modal and a consent checkbox."""
    return f"""<!DOCTYPE html>
<html>
<head><title>Sign up</title><script>var tracking = "privacy policy";</script></head>
<body>
  <div class="modal" id="tos-modal" role="dialog">
    <h2>Terms of Service</h2>
    <p>{legal_text(150)}</p>
  </div>
  <form>
    <div class="consent">
      <input type="checkbox" id="agree">
      <label for="agree">I accept the Terms of Service</label>
      <p>We will never sell your data. Read the privacy policy to learn how your
      account information is stored and for how long we keep it on our servers.</p>
    </div>
  </form>
</body>
</html>
"""
