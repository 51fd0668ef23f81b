"""A small CSS-like selector matcher for the document tree.

Supports comma-separated compound selectors built from a tag name, ``#id``,
``.class`` and attribute tests (``[attr]``, ``[attr=v]``, ``[attr*=v]``,
``[attr^=v]``, ``[attr$=v]``, ``[attr~=v]``). Combinators are not supported;
the detector only ever needs to test a single element.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import TYPE_CHECKING

from .errors import SelectorError

if TYPE_CHECKING:
    from .document import Element

_TOKEN = re.compile(
    r"""
    (?P<tag>^[a-zA-Z][a-zA-Z0-9-]*|^\*)
    |\#(?P<id>[\w-]+)
    |\.(?P<cls>[\w-]+)
    |\[\s*(?P<attr>[\w:-]+)\s*
        (?:(?P<op>[*^$~]?=)\s*
            (?:"(?P<dq>[^"]*)"|'(?P<sq>[^']*)'|(?P<bare>[^\]\s]+))\s*
        )?\]
    """,
    re.VERBOSE,
)

_BRACKETS = re.compile(r"\[[^\]]*\]")


@dataclass(frozen=True)
class _AttrTest:
    name: str
    op: str | None
    value: str

    def matches(self, actual: str | None) -> bool:
        if actual is None:
            return False
        if self.op is None:
            return True
        if self.op == "=":
            return actual == self.value
        if self.op == "*=":
            return bool(self.value) and self.value in actual
        if self.op == "^=":
            return bool(self.value) and actual.startswith(self.value)
        if self.op == "$=":
            return bool(self.value) and actual.endswith(self.value)
        # "~=": whitespace-separated word match
        return self.value in actual.split()


@dataclass(frozen=True)
class _Compound:
    tag: str | None = None
    tests: tuple[_AttrTest, ...] = field(default_factory=tuple)

    def matches(self, element: Element) -> bool:
        if self.tag is not None and self.tag != "*" and element.tag != self.tag:
            return False
        return all(test.matches(element.get(test.name)) for test in self.tests)


@dataclass(frozen=True)
class Selector:
    """A compiled selector list; matches if any compound matches."""

    source: str
    compounds: tuple[_Compound, ...]

    def matches(self, element: Element) -> bool:
        return any(c.matches(element) for c in self.compounds)


def _parse_compound(text: str) -> _Compound:
    text = text.strip()
    if not text:
        raise SelectorError("Empty selector")
    if any(ch in _BRACKETS.sub("", text) for ch in " >+~"):
        raise SelectorError(f"Combinators are not supported: {text!r}")

    pos = 0
    tag: str | None = None
    tests: list[_AttrTest] = []
    while pos < len(text):
        match = _TOKEN.match(text, pos)
        if match is None or match.end() == pos:
            raise SelectorError(f"Cannot parse selector {text!r} at offset {pos}")
        if match.group("tag"):
            tag = match.group("tag").lower()
        elif match.group("id"):
            tests.append(_AttrTest("id", "=", match.group("id")))
        elif match.group("cls"):
            tests.append(_AttrTest("class", "~=", match.group("cls")))
        else:
            value = match.group("dq")
            if value is None:
                value = match.group("sq")
            if value is None:
                value = match.group("bare") or ""
            tests.append(_AttrTest(match.group("attr").lower(), match.group("op"), value))
        pos = match.end()
    return _Compound(tag=tag, tests=tuple(tests))


@lru_cache(maxsize=128)
def compile_selector(source: str) -> Selector:
    """Compile a selector string.

    Raises:
        SelectorError: If the selector uses unsupported or malformed syntax.
    """
    parts = source.split(",")
    return Selector(source=source, compounds=tuple(_parse_compound(p) for p in parts))
