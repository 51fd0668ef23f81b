"""A lightweight document tree for detector heuristics.

Builds an element tree from HTML using Python's built-in ``html.parser``,
with no external dependencies. The tree offers the few primitives the
detector needs: descendant and ancestor walks, selector queries, and
visible-text extraction with script and style content stripped.

``MutableDocument`` adds a mutation feed so the detector can watch a
document for inserted subtrees.
"""

from __future__ import annotations

import re
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from html.parser import HTMLParser as StdHTMLParser
from pathlib import Path
from typing import Protocol, runtime_checkable

from .errors import DocumentLoadError
from .selectors import compile_selector

# Content that never renders as visible text
HIDDEN_TAGS = frozenset({"script", "style", "noscript", "template", "head"})

# Elements that break the flow of text when flattened
BLOCK_TAGS = frozenset(
    {
        "address", "article", "aside", "blockquote", "br", "dd", "details", "dialog",
        "div", "dl", "dt", "fieldset", "figcaption", "figure", "footer", "form",
        "h1", "h2", "h3", "h4", "h5", "h6", "header", "hr", "label", "li", "main",
        "nav", "ol", "p", "pre", "section", "summary", "table", "td", "th", "tr", "ul",
    }
)

VOID_TAGS = frozenset(
    {
        "area", "base", "br", "col", "embed", "hr", "img", "input", "link",
        "meta", "param", "source", "track", "wbr",
    }
)

_WHITESPACE = re.compile(r"\s+")


def normalize_whitespace(text: str) -> str:
    """Collapse runs of whitespace to single spaces and trim the ends."""
    return _WHITESPACE.sub(" ", text).strip()


@dataclass(eq=False)
class Element:
    """A node in the document tree.

    Children are either nested ``Element`` objects or text strings.
    Equality is identity, so elements can live in sets.
    """

    tag: str
    attrs: dict[str, str] = field(default_factory=dict)
    children: list[Element | str] = field(default_factory=list)
    parent: Element | None = field(default=None, repr=False)

    # ------------------------------------------------------------------
    # Attributes
    # ------------------------------------------------------------------

    def get(self, name: str, default: str | None = None) -> str | None:
        return self.attrs.get(name, default)

    @property
    def id(self) -> str:
        return self.attrs.get("id", "")

    @property
    def classes(self) -> list[str]:
        return self.attrs.get("class", "").split()

    # ------------------------------------------------------------------
    # Tree structure
    # ------------------------------------------------------------------

    def append(self, child: Element | str) -> Element | str:
        if isinstance(child, Element):
            child.parent = self
        self.children.append(child)
        return child

    @property
    def element_children(self) -> list[Element]:
        return [c for c in self.children if isinstance(c, Element)]

    def iter(self, include_self: bool = False) -> Iterator[Element]:
        """Yield descendant elements in document order."""
        if include_self:
            yield self
        stack = list(reversed(self.element_children))
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.element_children))

    def ancestors(self) -> Iterator[Element]:
        node = self.parent
        while node is not None:
            yield node
            node = node.parent

    def closest(self, selector: str) -> Element | None:
        """First of this element and its ancestors that matches ``selector``."""
        compiled = compile_selector(selector)
        if compiled.matches(self):
            return self
        for ancestor in self.ancestors():
            if compiled.matches(ancestor):
                return ancestor
        return None

    def matches(self, selector: str) -> bool:
        return compile_selector(selector).matches(self)

    def select(self, selector: str) -> list[Element]:
        """All descendants matching ``selector``, in document order.

        Raises:
            SelectorError: If the selector cannot be parsed.
        """
        compiled = compile_selector(selector)
        return [el for el in self.iter() if compiled.matches(el)]

    def select_one(self, selector: str) -> Element | None:
        compiled = compile_selector(selector)
        for el in self.iter():
            if compiled.matches(el):
                return el
        return None

    # ------------------------------------------------------------------
    # Text
    # ------------------------------------------------------------------

    def raw_text(self) -> str:
        """All descendant text, hidden content included (like ``textContent``)."""
        parts: list[str] = []
        self._collect(parts, skip_hidden=False)
        return "".join(parts)

    def visible_text(self) -> str:
        """Visible text with script/style stripped and whitespace normalized."""
        parts: list[str] = []
        self._collect(parts, skip_hidden=True)
        return normalize_whitespace("".join(parts))

    def _collect(self, parts: list[str], skip_hidden: bool) -> None:
        stack: list[Element | str] = [self]
        while stack:
            node = stack.pop()
            if isinstance(node, str):
                parts.append(node)
                continue
            if skip_hidden and node.tag in HIDDEN_TAGS:
                continue
            block = node.tag in BLOCK_TAGS
            if block:
                parts.append(" ")
                # Trailing separator is emitted after the children
                stack.append(" ")
            stack.extend(reversed(node.children))


@dataclass
class Document:
    """A parsed page: its origin identifier plus the root element."""

    origin: str
    root: Element

    @property
    def body(self) -> Element:
        return self.root.select_one("body") or self.root

    def select(self, selector: str) -> list[Element]:
        return self.root.select(selector)

    def select_one(self, selector: str) -> Element | None:
        return self.root.select_one(selector)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class _TreeBuilder(StdHTMLParser):
    """Turn an HTML token stream into an ``Element`` tree.

    Tolerates unclosed and stray end tags the way browsers do: an end tag
    closes the nearest open element with that name, and is ignored when no
    such element is open.
    """

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.root = Element(tag="#document")
        self._stack: list[Element] = [self.root]

    def handle_starttag(self, tag: str, attrs: list) -> None:
        element = Element(tag=tag, attrs={k: (v or "") for k, v in attrs})
        self._stack[-1].append(element)
        if tag not in VOID_TAGS:
            self._stack.append(element)

    def handle_startendtag(self, tag: str, attrs: list) -> None:
        element = Element(tag=tag, attrs={k: (v or "") for k, v in attrs})
        self._stack[-1].append(element)

    def handle_endtag(self, tag: str) -> None:
        for depth in range(len(self._stack) - 1, 0, -1):
            if self._stack[depth].tag == tag:
                del self._stack[depth:]
                return

    def handle_data(self, data: str) -> None:
        if data:
            self._stack[-1].append(data)


def parse_html(markup: str) -> Element:
    """Parse HTML markup into a tree rooted at a ``#document`` element."""
    builder = _TreeBuilder()
    builder.feed(markup)
    builder.close()
    return builder.root


def parse_document(markup: str, origin: str) -> Document:
    return Document(origin=origin, root=parse_html(markup))


def load_document(path: str | Path, origin: str | None = None) -> Document:
    """Read an HTML file from disk.

    Args:
        path: Path to an ``.html`` or ``.htm`` file.
        origin: Identifier for the page. Defaults to the file's ``file://`` URI.

    Raises:
        DocumentLoadError: If the file is missing or not HTML.
    """
    path = Path(path)
    if not path.exists():
        raise DocumentLoadError(f"File not found: {path}")
    if path.suffix.lower() not in (".html", ".htm", ".xhtml"):
        raise DocumentLoadError(
            f"Unsupported file extension '{path.suffix}'. Supported: .html, .htm, .xhtml"
        )
    markup = path.read_text(encoding="utf-8", errors="replace")
    return parse_document(markup, origin or path.resolve().as_uri())


# ---------------------------------------------------------------------------
# Mutation feed
# ---------------------------------------------------------------------------

MutationCallback = Callable[[Element], None]


@runtime_checkable
class MutationSource(Protocol):
    """Anything that can tell subscribers an element subtree was added."""

    def subscribe(self, callback: MutationCallback) -> Callable[[], None]:
        """Register ``callback``; returns a function that unsubscribes it."""
        ...


class MutableDocument(Document):
    """A ``Document`` whose insertions are broadcast to subscribers."""

    def __init__(self, origin: str, root: Element) -> None:
        super().__init__(origin=origin, root=root)
        self._subscribers: list[MutationCallback] = []
        self._lock = threading.Lock()

    @classmethod
    def from_html(cls, markup: str, origin: str) -> MutableDocument:
        return cls(origin=origin, root=parse_html(markup))

    def subscribe(self, callback: MutationCallback) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def insert(self, parent: Element, child: Element | str) -> Element | str:
        """Append ``child`` under ``parent`` and notify subscribers."""
        parent.append(child)
        if isinstance(child, Element):
            with self._lock:
                subscribers = list(self._subscribers)
            for callback in subscribers:
                callback(child)
        return child

    def insert_html(self, parent: Element, markup: str) -> list[Element]:
        """Parse ``markup`` and insert each top-level element under ``parent``."""
        fragment = parse_html(markup)
        inserted = []
        for child in list(fragment.children):
            if isinstance(child, Element):
                inserted.append(self.insert(parent, child))
            elif child.strip():
                parent.append(child)
        return inserted
