"""Tests for the document tree, selectors and HTML loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from tos_risk_analyzer.document import (
    Element,
    MutableDocument,
    load_document,
    normalize_whitespace,
    parse_document,
    parse_html,
)
from tos_risk_analyzer.errors import DocumentLoadError, SelectorError
from tos_risk_analyzer.selectors import compile_selector

# ---------------------------------------------------------------------------
# Parsing and text
# ---------------------------------------------------------------------------


class TestParsing:
    def test_builds_tree(self) -> None:
        root = parse_html("<div id='a'><p class='x y'>Hello</p></div>")
        div = root.select_one("div")
        assert div is not None
        assert div.id == "a"
        p = div.element_children[0]
        assert p.classes == ["x", "y"]
        assert p.parent is div

    def test_void_elements_do_not_nest(self) -> None:
        root = parse_html("<p><input type='checkbox'><label>Agree</label></p>")
        p = root.select_one("p")
        assert [c.tag for c in p.element_children] == ["input", "label"]

    def test_unclosed_tags_are_tolerated(self) -> None:
        root = parse_html("<div><p>One<p>Two</div><span>After</span>")
        assert root.select_one("span").parent is root

    def test_stray_end_tag_ignored(self) -> None:
        root = parse_html("<div>Text</section></div>")
        assert root.select_one("div").visible_text() == "Text"

    def test_entities_are_decoded(self) -> None:
        root = parse_html("<p>Terms &amp; Conditions</p>")
        assert root.visible_text() == "Terms & Conditions"


class TestText:
    def test_visible_text_strips_script_and_style(self) -> None:
        root = parse_html(
            "<div>Visible<script>var hidden = 1;</script><style>.x{}</style> text</div>"
        )
        assert root.visible_text() == "Visible text"

    def test_raw_text_keeps_hidden_content(self) -> None:
        root = parse_html("<span>A<script>B</script></span>")
        assert root.raw_text() == "AB"

    def test_block_elements_are_separated(self) -> None:
        root = parse_html("<div><p>First</p><p>Second</p></div>")
        assert root.visible_text() == "First Second"

    def test_normalize_whitespace(self) -> None:
        assert normalize_whitespace("  a \n\t b  ") == "a b"


class TestTreeWalks:
    def test_iter_is_document_order(self) -> None:
        root = parse_html("<a><b></b><c><d></d></c></a><e></e>")
        assert [el.tag for el in root.iter()] == ["a", "b", "c", "d", "e"]

    def test_ancestors(self) -> None:
        root = parse_html("<section><div><span>x</span></div></section>")
        span = root.select_one("span")
        assert [a.tag for a in span.ancestors()] == ["div", "section", "#document"]

    def test_closest(self) -> None:
        root = parse_html("<label>Agree <input type='checkbox'></label>")
        checkbox = root.select_one("input")
        assert checkbox.closest("label").tag == "label"
        assert checkbox.closest("form") is None


# ---------------------------------------------------------------------------
# Selectors
# ---------------------------------------------------------------------------


class TestSelectors:
    @pytest.fixture
    def root(self) -> Element:
        return parse_html(
            '<div id="tos-modal" class="modal terms-content" role="dialog">'
            '<a href="/legal/terms">Terms</a>'
            '<a href="https://example.com/privacy.html">Privacy</a>'
            '<input type="checkbox" name="accept_terms">'
            "</div>"
        )

    def test_tag(self, root) -> None:
        assert len(root.select("a")) == 2

    def test_id_and_class(self, root) -> None:
        assert root.select_one("#tos-modal") is not None
        assert root.select_one(".modal") is not None
        assert root.select_one(".terms") is None

    @pytest.mark.parametrize(
        "selector,count",
        [
            ('[role="dialog"]', 1),
            ("[role]", 1),
            ('[class*="modal"]', 1),
            ('a[href^="https"]', 1),
            ('a[href$=".html"]', 1),
            ('a[href*="terms"]', 1),
            ("[class~=terms-content]", 1),
            ('input[name*="terms"]', 1),
            ('[id*="privacy"]', 0),
        ],
    )
    def test_attribute_operators(self, root, selector, count) -> None:
        assert len(root.select(selector)) == count

    def test_selector_list(self, root) -> None:
        assert len(root.select("input, a")) == 3

    def test_empty_value_never_matches_substring(self, root) -> None:
        assert root.select('[href*=""]') == []

    @pytest.mark.parametrize("selector", ["div > p", "div p", "a + b", "", "div,,p", "!!"])
    def test_unsupported_syntax_raises(self, selector) -> None:
        with pytest.raises(SelectorError):
            compile_selector(selector)

    def test_selector_error_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            compile_selector("ul > li")


# ---------------------------------------------------------------------------
# Loading and mutation
# ---------------------------------------------------------------------------


class TestLoadDocument:
    def test_loads_html_file(self, tmp_path: Path) -> None:
        page = tmp_path / "page.html"
        page.write_text("<html><body><p>Hi</p></body></html>", encoding="utf-8")
        document = load_document(page)
        assert document.origin == page.resolve().as_uri()
        assert document.body.tag == "body"

    def test_explicit_origin(self, tmp_path: Path) -> None:
        page = tmp_path / "page.htm"
        page.write_text("<p>Hi</p>", encoding="utf-8")
        assert load_document(page, origin="https://example.com/").origin == "https://example.com/"

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(DocumentLoadError, match="not found"):
            load_document(tmp_path / "missing.html")

    def test_unsupported_extension(self, tmp_path: Path) -> None:
        page = tmp_path / "page.pdf"
        page.write_bytes(b"%PDF")
        with pytest.raises(DocumentLoadError, match="Unsupported"):
            load_document(page)

    def test_body_falls_back_to_root(self) -> None:
        document = parse_document("<p>No body element</p>", "https://example.com/")
        assert document.body is document.root


class TestMutableDocument:
    def test_insert_notifies_subscribers(self) -> None:
        document = MutableDocument.from_html("<body></body>", "https://example.com/")
        seen: list[Element] = []
        document.subscribe(seen.append)

        inserted = document.insert_html(document.body, "<div>One</div><div>Two</div>")

        assert seen == inserted
        assert len(document.body.element_children) == 2

    def test_unsubscribe(self) -> None:
        document = MutableDocument.from_html("<body></body>", "https://example.com/")
        seen: list[Element] = []
        unsubscribe = document.subscribe(seen.append)
        unsubscribe()
        document.insert_html(document.body, "<div>One</div>")
        assert seen == []

    def test_text_insertions_are_not_broadcast(self) -> None:
        document = MutableDocument.from_html("<body></body>", "https://example.com/")
        seen: list[Element] = []
        document.subscribe(seen.append)
        document.insert(document.body, "plain text")
        assert seen == []
