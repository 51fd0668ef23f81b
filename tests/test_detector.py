"""Tests for FragmentDetector heuristics and observation sessions."""

from __future__ import annotations

import logging

import pytest

from conftest import EPOCH, ORIGIN, legal_text
from tos_risk_analyzer.detector import (
    FragmentDetector,
    contains_legal_keywords,
    is_legal_link,
    locator_for,
    same_origin,
)
from tos_risk_analyzer.document import MutableDocument, parse_document, parse_html
from tos_risk_analyzer.models import MIN_TEXT_LENGTH, SourceKind


class DictResolver:
    """Link resolver backed by a dict; records every fetch."""

    def __init__(self, pages: dict[str, str]) -> None:
        self.pages = pages
        self.fetched: list[str] = []

    def fetch(self, url: str) -> str | None:
        self.fetched.append(url)
        return self.pages.get(url)


def _of_kind(fragments, kind: SourceKind):
    return [f for f in fragments if f.source_kind == kind]


@pytest.fixture
def detector(fixed_clock) -> FragmentDetector:
    return FragmentDetector(clock=fixed_clock)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    @pytest.mark.parametrize(
        "text",
        ["Read our Terms of Service", "PRIVACY POLICY", "the end user license", "Cookie Policy"],
    )
    def test_legal_keywords(self, text) -> None:
        assert contains_legal_keywords(text)

    def test_no_legal_keywords(self) -> None:
        assert not contains_legal_keywords("Fresh bread every morning")

    @pytest.mark.parametrize(
        "text,href,expected",
        [
            ("Terms of Service", "/tos", True),
            ("Read more", "/legal/privacy-policy", True),
            ("Terms and Conditions", "/tc", True),
            ("About us", "/about", False),
        ],
    )
    def test_legal_links(self, text, href, expected) -> None:
        assert is_legal_link(text.lower(), href.lower()) is expected

    def test_locator_prefers_id_then_class(self) -> None:
        root = parse_html('<div id="a" class="b"></div><div class="c d"></div><section></section>')
        first, second, third = root.element_children
        assert locator_for(first) == "#a"
        assert locator_for(second) == ".c"
        assert locator_for(third) == "section"

    def test_same_origin(self) -> None:
        assert same_origin("https://example.com/terms", ORIGIN)
        assert not same_origin("https://other.com/terms", ORIGIN)


# ---------------------------------------------------------------------------
# Heuristics
# ---------------------------------------------------------------------------


class TestModalHeuristic:
    def test_detects_legal_modal(self, detector) -> None:
        html = (
            '<div class="modal" id="tos-modal" role="dialog">'
            f"<h2>Terms of Service</h2><p>{legal_text(150)}</p></div>"
        )
        fragments = detector.detect(parse_document(html, ORIGIN))

        modals = _of_kind(fragments, SourceKind.MODAL)
        assert len(modals) == 1
        modal = modals[0]
        assert modal.title == "Terms of Service"
        assert modal.origin == ORIGIN
        assert modal.locator_hints == ("#tos-modal",)
        assert modal.extracted_at == EPOCH
        assert modal.id.startswith("tos_")
        assert modal.text.startswith("Terms of Service By creating an account")

    def test_default_title(self, detector) -> None:
        html = f'<div role="dialog"><p>{legal_text(150)}</p></div>'
        modals = _of_kind(detector.detect(parse_document(html, ORIGIN)), SourceKind.MODAL)
        assert [m.title for m in modals] == ["Modal Terms"]

    def test_modal_without_keywords_ignored(self, detector) -> None:
        html = f'<div class="modal"><p>{"Subscribe to our newsletter today. " * 10}</p></div>'
        assert detector.detect(parse_document(html, ORIGIN)) == []

    def test_short_modal_ignored(self, detector) -> None:
        html = '<div class="modal"><p>Accept our Terms of Service?</p></div>'
        assert detector.detect(parse_document(html, ORIGIN)) == []

    def test_script_content_is_not_extracted(self, detector) -> None:
        html = (
            f'<div class="popup"><script>track("terms");</script><p>{legal_text(150)}</p></div>'
        )
        (modal,) = _of_kind(detector.detect(parse_document(html, ORIGIN)), SourceKind.MODAL)
        assert "track(" not in modal.text


class TestEmbeddedHeuristic:
    def test_detects_section_by_id(self, detector) -> None:
        html = f'<section id="privacy-section"><p>{legal_text(250)}</p></section>'
        fragments = _of_kind(detector.detect(parse_document(html, ORIGIN)), SourceKind.EMBEDDED)
        assert [f.locator_hints for f in fragments] == [('[id*="privacy"]',)]
        assert fragments[0].title == "Embedded Terms"

    def test_short_embedded_text_dropped(self, detector) -> None:
        html = f'<section id="terms"><p>{legal_text(150)}</p></section>'
        assert detector.detect(parse_document(html, ORIGIN)) == []


class TestHeadingHeuristic:
    def test_uses_ancestor_with_enough_text(self, detector) -> None:
        html = (
            "<article><h2>Terms of Use</h2>"
            f"<p>{legal_text(400)}</p></article>"
        )
        fragments = detector.detect(parse_document(html, ORIGIN))
        (section,) = _of_kind(fragments, SourceKind.EMBEDDED)
        assert section.title == "Terms of Use"
        assert section.locator_hints == ("h2",)
        assert len(section.text) > 300

    def test_requires_more_than_300_characters(self, detector) -> None:
        html = (
            f"<article><h2>Terms of Use</h2><p>{legal_text(150)}</p>"
            "<p>We respect your choices about cookies and data.</p></article>"
        )
        text_length = len(parse_html(html).visible_text())
        assert 200 < text_length <= 300
        assert detector.detect(parse_document(html, ORIGIN)) == []

    def test_ancestor_walk_is_bounded(self, detector) -> None:
        html = (
            "<div><div><div><div><h3>Privacy Policy</h3></div></div></div>"
            f"<p>{legal_text(400)}</p></div>"
        )
        assert _of_kind(detector.detect(parse_document(html, ORIGIN)), SourceKind.EMBEDDED) == []


class TestCheckboxHeuristic:
    def test_detects_consent_container(self, detector, signup_html) -> None:
        fragments = detector.detect(parse_document(signup_html, ORIGIN))
        (checkbox,) = _of_kind(fragments, SourceKind.CHECKBOX)
        assert checkbox.title == "Checkbox Terms"
        assert checkbox.locator_hints == ("#agree",)
        assert "privacy policy" in checkbox.text

    def test_enclosing_label(self, detector) -> None:
        html = (
            '<div class="signup"><label><input type="checkbox"> I agree to the Privacy Policy'
            "</label><p>We keep your account details safe and delete them when you ask. "
            "Contact support with any questions about your data.</p></div>"
        )
        (checkbox,) = _of_kind(detector.detect(parse_document(html, ORIGIN)), SourceKind.CHECKBOX)
        assert checkbox.locator_hints == ("input",)

    def test_label_without_keywords_ignored(self, detector) -> None:
        html = (
            '<div><input type="checkbox" id="news"><label for="news">Send me news</label>'
            f"<p>{legal_text(150)}</p></div>"
        )
        assert _of_kind(detector.detect(parse_document(html, ORIGIN)), SourceKind.CHECKBOX) == []

    @staticmethod
    def _nested(levels: int) -> str:
        """Checkbox whose legal container is ``levels`` ancestors up."""
        inner = (
            '<input type="checkbox" id="consent">'
            '<label for="consent">I agree to the Privacy Policy</label>'
        )
        for _ in range(levels - 1):
            inner = f"<div>{inner}</div>"
        return f'<section class="consent"><p>{legal_text(150)}</p>{inner}</section>'

    def test_container_at_ancestor_limit(self, detector) -> None:
        fragments = detector.detect(parse_document(self._nested(5), ORIGIN))
        (checkbox,) = _of_kind(fragments, SourceKind.CHECKBOX)
        assert checkbox.locator_hints == ("#consent",)
        assert checkbox.text.startswith("By creating an account")
        assert "I agree to the Privacy Policy" in checkbox.text

    @pytest.mark.parametrize("levels", [6, 8])
    def test_container_beyond_ancestor_limit(self, detector, levels) -> None:
        fragments = detector.detect(parse_document(self._nested(levels), ORIGIN))
        assert _of_kind(fragments, SourceKind.CHECKBOX) == []


class TestLinkHeuristic:
    TERMS_PAGE = (
        "<html><body><nav>Home | Pricing</nav><main><h1>Terms of Service</h1>"
        f"<p>{legal_text(250)}</p></main><footer>Footer</footer></body></html>"
    )

    def test_follows_same_origin_links(self, fixed_clock) -> None:
        resolver = DictResolver({"https://example.com/terms": self.TERMS_PAGE})
        detector = FragmentDetector(link_resolver=resolver, clock=fixed_clock)
        html = (
            '<a href="/terms">Terms of Service</a>'
            '<a href="/terms">Terms of Service</a>'
            '<a href="https://other.com/privacy">Privacy Policy</a>'
        )

        fragments = detector.detect(parse_document(html, ORIGIN))

        (link,) = _of_kind(fragments, SourceKind.LINK)
        assert link.origin == "https://example.com/terms"
        assert link.title == "Terms of Service"
        assert link.text.startswith("Terms of Service By creating")
        assert "Pricing" not in link.text
        assert resolver.fetched == ["https://example.com/terms"]

    def test_no_resolver_means_no_link_fragments(self, detector) -> None:
        html = '<a href="/terms">Terms of Service</a>'
        assert _of_kind(detector.detect(parse_document(html, ORIGIN)), SourceKind.LINK) == []

    def test_unresolvable_link_skipped(self, fixed_clock) -> None:
        resolver = DictResolver({})
        detector = FragmentDetector(link_resolver=resolver, clock=fixed_clock)
        html = '<a href="/privacy">Privacy Policy</a>'
        assert detector.detect(parse_document(html, ORIGIN)) == []
        assert resolver.fetched == ["https://example.com/privacy"]


class TestDetect:
    def test_no_fragment_below_minimum_length(self, detector, signup_html) -> None:
        fragments = detector.detect(parse_document(signup_html, ORIGIN))
        assert fragments
        for fragment in fragments:
            assert len(fragment.text) > MIN_TEXT_LENGTH[fragment.source_kind]

    def test_failing_heuristic_is_isolated(self, detector, signup_html, monkeypatch, caplog) -> None:
        def boom(document):
            raise RuntimeError("selector engine exploded")

        monkeypatch.setattr(detector, "_detect_modals", boom)
        with caplog.at_level(logging.WARNING, logger="tos_risk_analyzer.detector"):
            fragments = detector.detect(parse_document(signup_html, ORIGIN))

        assert _of_kind(fragments, SourceKind.MODAL) == []
        assert _of_kind(fragments, SourceKind.CHECKBOX)
        assert "Heuristic 'modal' skipped" in caplog.text

    def test_empty_document(self, detector) -> None:
        assert detector.detect(parse_document("", ORIGIN)) == []


# ---------------------------------------------------------------------------
# Observation
# ---------------------------------------------------------------------------

MODAL_HTML = (
    '<div class="modal" id="late-modal"><h3>Updated Privacy Policy</h3>'
    f"<p>{legal_text(150)}</p></div>"
)


class TestObservation:
    @pytest.mark.asyncio
    async def test_emits_inserted_legal_content(self, detector) -> None:
        document = MutableDocument.from_html("<html><body></body></html>", ORIGIN)
        received = []
        session = detector.observe(document, ORIGIN, listener=received.append)

        document.insert_html(document.body, MODAL_HTML)
        document.insert_html(document.body, "<div>Unrelated banner</div>")
        session.stop()

        fragments = [f async for f in session]
        assert len(fragments) == 1
        assert fragments[0].source_kind == SourceKind.MODAL
        assert fragments[0].title == "Updated Privacy Policy"
        assert fragments[0].origin == ORIGIN
        assert received == fragments

    @pytest.mark.asyncio
    async def test_default_title(self, detector) -> None:
        document = MutableDocument.from_html("<body></body>", ORIGIN)
        session = detector.observe(document, ORIGIN)
        document.insert_html(document.body, f"<div><p>{legal_text(150)}</p></div>")
        session.stop()
        assert [f.title async for f in session] == ["Dynamic TOS Content"]

    @pytest.mark.asyncio
    async def test_stop_ends_feed(self, detector) -> None:
        document = MutableDocument.from_html("<body></body>", ORIGIN)
        session = detector.observe(document, ORIGIN)
        session.stop()
        document.insert_html(document.body, MODAL_HTML)

        assert session.active is False
        assert [f async for f in session] == []

    @pytest.mark.asyncio
    async def test_session_is_single_use(self, detector) -> None:
        document = MutableDocument.from_html("<body></body>", ORIGIN)
        session = detector.observe(document, ORIGIN)
        session.stop()
        [f async for f in session]
        with pytest.raises(RuntimeError):
            session.__aiter__()
        with pytest.raises(RuntimeError):
            session.start()

    @pytest.mark.asyncio
    async def test_unbuffered_session_cannot_be_iterated(self, detector) -> None:
        document = MutableDocument.from_html("<body></body>", ORIGIN)
        session = detector.observe(document, ORIGIN, listener=lambda f: None, buffered=False)
        with pytest.raises(RuntimeError):
            session.__aiter__()
        session.stop()
