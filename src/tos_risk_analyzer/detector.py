"""Fragment detection: locating legal text inside a document.

Runs several independent heuristics over a ``Document`` and returns every
candidate region as a ``Fragment``. Heuristics never see each other's output
and a failure in one is logged and skipped rather than aborting the scan.
Duplicates across heuristics are expected; deduplication happens downstream
in the orchestrator, keyed by fingerprint.

Example::

    detector = FragmentDetector()
    document = load_document("signup.html", origin="https://example.com/signup")
    for fragment in detector.detect(document):
        print(fragment.source_kind.value, fragment.title, len(fragment.text))
"""

from __future__ import annotations

import asyncio
import logging
import re
import uuid
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from urllib.parse import urljoin, urlparse

from .document import Document, Element, MutationSource, parse_html
from .errors import BelowMinimumLength, DetectionSkipped
from .models import HEADING_MIN_TEXT_LENGTH, MIN_TEXT_LENGTH, Fragment, SourceKind
from .resolvers import LinkResolver

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Pattern library
# ---------------------------------------------------------------------------

LEGAL_KEYWORDS: tuple[str, ...] = (
    "terms of service",
    "terms of use",
    "terms and conditions",
    "privacy policy",
    "privacy notice",
    "privacy statement",
    "user agreement",
    "end user license",
    "eula",
    "cookie policy",
    "data protection",
    "legal notice",
)

LEGAL_LINK_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"terms.{0,10}(of.{0,5})?(service|use|condition)",
        r"privacy.{0,10}(policy|notice|statement)",
        r"user.{0,10}agreement",
        r"legal.{0,10}notice",
        r"cookie.{0,10}policy",
        r"eula",
    )
)

MODAL_SELECTOR = '[role="dialog"], .modal, .popup, [class*="modal"], [id*="modal"]'

# Structural patterns that usually wrap legal content
EMBEDDED_SELECTORS: tuple[str, ...] = (
    'a[href*="terms"]',
    'a[href*="privacy"]',
    'a[href*="legal"]',
    'a[href*="policy"]',
    'a[href*="agreement"]',
    'a[href*="eula"]',
    '[class*="modal"][class*="terms"]',
    '[class*="modal"][class*="privacy"]',
    '[id*="terms"]',
    '[id*="privacy"]',
    'label[for*="terms"]',
    'label[for*="privacy"]',
    'input[name*="terms"]',
    'input[name*="privacy"]',
    '[class*="terms-content"]',
    '[class*="privacy-content"]',
    '[class*="legal-text"]',
)

HEADING_SELECTOR = "h1, h2, h3, h4, h5"
TITLE_SELECTORS: tuple[str, ...] = ("h1", "h2", "h3", ".title", ".heading", '[class*="title"]')
LINKED_CONTENT_SELECTORS: tuple[str, ...] = ("main", ".content", "body")

HEADING_ANCESTOR_LIMIT = 3
CHECKBOX_ANCESTOR_LIMIT = 5

DEFAULT_TITLES: dict[str, str] = {
    "modal": "Modal Terms",
    "link": "Terms Document",
    "embedded": "Embedded Terms",
    "heading": "Terms",
    "checkbox": "Checkbox Terms",
    "dynamic": "Dynamic TOS Content",
}


def contains_legal_keywords(text: str) -> bool:
    """Whether ``text`` mentions any legal-document keyword (case-insensitive)."""
    lower = text.lower()
    return any(keyword in lower for keyword in LEGAL_KEYWORDS)


def is_legal_link(link_text: str, href: str) -> bool:
    return any(p.search(link_text) or p.search(href) for p in LEGAL_LINK_PATTERNS)


def extract_text(element: Element) -> str:
    """Visible, whitespace-normalized text of ``element``."""
    return element.visible_text()


def extract_title(element: Element) -> str | None:
    """Text of the first heading-like descendant, if any."""
    for selector in TITLE_SELECTORS:
        title_el = element.select_one(selector)
        if title_el is not None:
            title = title_el.visible_text()
            if title:
                return title
    return None


def locator_for(element: Element) -> str:
    """A short, best-effort locator for re-finding ``element``."""
    if element.id:
        return f"#{element.id}"
    if element.classes:
        return f".{element.classes[0]}"
    return element.tag


def same_origin(url: str, origin: str) -> bool:
    try:
        return urlparse(url).hostname == urlparse(origin).hostname
    except ValueError:
        return False


def _main_content(root: Element) -> Element:
    for selector in LINKED_CONTENT_SELECTORS:
        element = root.select_one(selector)
        if element is not None:
            return element
    return root


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _generate_id() -> str:
    return f"tos_{uuid.uuid4().hex[:16]}"


# ---------------------------------------------------------------------------
# Detector
# ---------------------------------------------------------------------------


class FragmentDetector:
    """Find candidate legal-text regions in a document.

    The detector holds no per-document state, so one instance can scan any
    number of documents. Same-origin legal links are followed only when a
    ``link_resolver`` is supplied.

    Args:
        link_resolver: Fetches the HTML behind same-origin legal links.
        clock: Returns the ``extracted_at`` timestamp for new fragments.
    """

    def __init__(
        self,
        link_resolver: LinkResolver | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._link_resolver = link_resolver
        self._clock = clock or _utcnow

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def detect(self, document: Document) -> list[Fragment]:
        """Run every heuristic against ``document`` and union the results.

        Never raises for malformed input: a heuristic that fails is logged
        and skipped.
        """
        heuristics: list[tuple[str, Callable[[Document], list[Fragment]]]] = [
            ("modal", self._detect_modals),
            ("link", self._detect_links),
            ("embedded", self._detect_embedded),
            ("heading", self._detect_heading_sections),
            ("checkbox", self._detect_checkboxes),
        ]

        fragments: list[Fragment] = []
        for name, heuristic in heuristics:
            try:
                fragments.extend(heuristic(document))
            except Exception as exc:  # one heuristic must not abort the scan
                skipped = DetectionSkipped(name, str(exc))
                logger.warning("%s (origin=%s)", skipped, document.origin)

        logger.debug("Detected %d fragment(s) in %s", len(fragments), document.origin)
        return fragments

    def observe(
        self,
        source: MutationSource,
        origin: str,
        listener: FragmentListener | None = None,
        buffered: bool = True,
    ) -> ObservationSession:
        """Watch ``source`` for inserted legal content.

        Args:
            source: Notifies the session of inserted subtrees.
            origin: Origin recorded on emitted fragments.
            listener: Optional callback invoked with each fragment.
            buffered: Queue fragments for ``async for`` consumption. Pass
                ``False`` when only listeners are used.

        Returns:
            A started ``ObservationSession``; call its ``stop()`` to end it.
        """
        session = ObservationSession(self, source, origin, buffered=buffered)
        if listener is not None:
            session.add_listener(listener)
        session.start()
        return session

    def fragment_from_insertion(self, element: Element, origin: str) -> Fragment | None:
        """Build a fragment for a newly inserted subtree, or ``None``."""
        if not contains_legal_keywords(element.raw_text()):
            return None
        return self._make_fragment(
            element,
            origin=origin,
            kind=SourceKind.MODAL,
            title=extract_title(element) or DEFAULT_TITLES["dynamic"],
            locators=[locator_for(element)],
        )

    # ------------------------------------------------------------------
    # Heuristics
    # ------------------------------------------------------------------

    def _detect_modals(self, document: Document) -> list[Fragment]:
        fragments: list[Fragment] = []
        for modal in document.select(MODAL_SELECTOR):
            if not contains_legal_keywords(modal.raw_text()):
                continue
            fragment = self._make_fragment(
                modal,
                origin=document.origin,
                kind=SourceKind.MODAL,
                title=extract_title(modal) or DEFAULT_TITLES["modal"],
                locators=[locator_for(modal)],
            )
            if fragment:
                fragments.append(fragment)
        return fragments

    def _detect_links(self, document: Document) -> list[Fragment]:
        fragments: list[Fragment] = []
        fetched: set[str] = set()

        for link in document.select("a[href]"):
            link_text = link.visible_text()
            href = link.get("href") or ""
            if not is_legal_link(link_text.lower(), href.lower()):
                continue

            target = urljoin(document.origin, href)
            if not same_origin(target, document.origin):
                logger.debug("Skipping cross-origin legal link %s", target)
                continue
            if self._link_resolver is None or target in fetched:
                continue
            fetched.add(target)

            markup = self._link_resolver.fetch(target)
            if not markup:
                continue
            content_el = _main_content(parse_html(markup))
            fragment = self._make_fragment(
                content_el,
                origin=target,
                kind=SourceKind.LINK,
                title=link_text or DEFAULT_TITLES["link"],
                locators=[locator_for(link)],
            )
            if fragment:
                fragments.append(fragment)
        return fragments

    def _detect_embedded(self, document: Document) -> list[Fragment]:
        fragments: list[Fragment] = []
        for selector in EMBEDDED_SELECTORS:
            try:
                elements = document.select(selector)
            except Exception as exc:
                logger.warning("Error with selector %s: %s", selector, exc)
                continue
            for element in elements:
                if not contains_legal_keywords(element.raw_text()):
                    continue
                fragment = self._make_fragment(
                    element,
                    origin=document.origin,
                    kind=SourceKind.EMBEDDED,
                    title=extract_title(element) or DEFAULT_TITLES["embedded"],
                    locators=[selector],
                )
                if fragment:
                    fragments.append(fragment)
        return fragments

    def _detect_heading_sections(self, document: Document) -> list[Fragment]:
        fragments: list[Fragment] = []
        for heading in document.select(HEADING_SELECTOR):
            heading_text = heading.visible_text()
            if not contains_legal_keywords(heading_text):
                continue

            # Smallest ancestor with enough text to be the section body
            target = heading
            for depth, ancestor in enumerate(heading.ancestors()):
                if depth >= HEADING_ANCESTOR_LIMIT:
                    break
                if len(extract_text(ancestor)) > HEADING_MIN_TEXT_LENGTH:
                    target = ancestor
                    break

            fragment = self._make_fragment(
                target,
                origin=document.origin,
                kind=SourceKind.EMBEDDED,
                title=extract_title(target) or heading_text or DEFAULT_TITLES["heading"],
                locators=[locator_for(heading)],
                min_length=HEADING_MIN_TEXT_LENGTH,
            )
            if fragment:
                fragments.append(fragment)
        return fragments

    def _detect_checkboxes(self, document: Document) -> list[Fragment]:
        fragments: list[Fragment] = []
        for checkbox in document.select('input[type="checkbox"]'):
            label = self._find_label(document, checkbox)
            if label is None or not contains_legal_keywords(label.raw_text()):
                continue

            container = self._find_nearby_legal_container(checkbox)
            if container is None:
                continue
            fragment = self._make_fragment(
                container,
                origin=document.origin,
                kind=SourceKind.CHECKBOX,
                title=DEFAULT_TITLES["checkbox"],
                locators=[locator_for(checkbox)],
            )
            if fragment:
                fragments.append(fragment)
        return fragments

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _find_label(document: Document, checkbox: Element) -> Element | None:
        checkbox_id = checkbox.id
        if checkbox_id:
            for label in document.select("label[for]"):
                if label.get("for") == checkbox_id:
                    return label
            return None
        return checkbox.closest("label")

    @staticmethod
    def _find_nearby_legal_container(checkbox: Element) -> Element | None:
        threshold = MIN_TEXT_LENGTH[SourceKind.CHECKBOX]
        for depth, ancestor in enumerate(checkbox.ancestors()):
            if depth >= CHECKBOX_ANCESTOR_LIMIT:
                break
            text = extract_text(ancestor)
            if len(text) > threshold and contains_legal_keywords(text):
                return ancestor
        return None

    def _make_fragment(
        self,
        element: Element,
        origin: str,
        kind: SourceKind,
        title: str,
        locators: list[str],
        min_length: int | None = None,
    ) -> Fragment | None:
        """Extract ``element``'s text and wrap it, dropping short extracts."""
        text = extract_text(element)
        minimum = min_length if min_length is not None else MIN_TEXT_LENGTH[kind]
        if len(text) <= minimum:
            skipped = BelowMinimumLength(len(text), minimum)
            logger.debug("Discarded %s candidate: %s", kind.value, skipped)
            return None
        return Fragment(
            id=_generate_id(),
            origin=origin,
            title=title,
            text=text,
            extracted_at=self._clock(),
            source_kind=kind,
            locator_hints=tuple(locators),
        )


# ---------------------------------------------------------------------------
# Continuous observation
# ---------------------------------------------------------------------------

FragmentListener = Callable[[Fragment], None]

_STOP = object()


@dataclass
class _SessionState:
    started: bool = False
    stopped: bool = False
    iterated: bool = False


class ObservationSession:
    """A live feed of fragments found in subtrees inserted into a document.

    Fragments are delivered to registered listeners as they are found and
    can also be consumed with ``async for``. The async sequence is lazy,
    unbounded and single-use: it ends only when ``stop()`` is called and
    cannot be iterated a second time.

    Mutation callbacks must arrive on the thread running the event loop
    that consumes the session.
    """

    def __init__(
        self,
        detector: FragmentDetector,
        source: MutationSource,
        origin: str,
        buffered: bool = True,
    ) -> None:
        self._detector = detector
        self._source = source
        self._origin = origin
        self._buffered = buffered
        self._listeners: list[FragmentListener] = []
        self._queue: asyncio.Queue[Fragment | object] = asyncio.Queue()
        self._unsubscribe: Callable[[], None] | None = None
        self._state = _SessionState()

    @property
    def origin(self) -> str:
        return self._origin

    @property
    def active(self) -> bool:
        return self._state.started and not self._state.stopped

    def add_listener(self, listener: FragmentListener) -> None:
        self._listeners.append(listener)

    def start(self) -> None:
        if self._state.started:
            raise RuntimeError("Observation session cannot be restarted")
        self._state.started = True
        self._unsubscribe = self._source.subscribe(self._on_insert)

    def stop(self) -> None:
        if self._state.stopped:
            return
        self._state.stopped = True
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._queue.put_nowait(_STOP)

    def _on_insert(self, element: Element) -> None:
        if self._state.stopped:
            return
        try:
            fragment = self._detector.fragment_from_insertion(element, self._origin)
        except Exception as exc:
            logger.warning("%s", DetectionSkipped("dynamic", str(exc)))
            return
        if fragment is None:
            return
        if self._buffered:
            self._queue.put_nowait(fragment)
        for listener in list(self._listeners):
            listener(fragment)

    def __aiter__(self) -> AsyncIterator[Fragment]:
        if not self._buffered:
            raise RuntimeError("Unbuffered observation sessions cannot be iterated")
        if self._state.iterated:
            raise RuntimeError("Observation session can only be iterated once")
        self._state.iterated = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Fragment]:
        while True:
            item = await self._queue.get()
            if item is _STOP:
                return
            yield item  # type: ignore[misc]

