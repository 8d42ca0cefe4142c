"""Markdown-subset renderer for chat bubbles.

Untrusted text goes in, an HTML fragment that is safe to insert comes out.
The stages run in a fixed order and escaping always comes first: every later
stage only ever sees entity-escaped text, so the only live markup in the
output is markup the stages themselves emit.

Supported: ``#``/``##``/``###`` headings, ``**bold**``/``__bold__``,
``*italic*``/``_italic_``, inline code, fenced code blocks, http(s) links,
flat ordered/unordered lists and paragraphs. Nothing else.
"""

from __future__ import annotations

import html
import re
from typing import List, Optional


_FENCE_RE = re.compile(r"```([\s\S]*?)```")
_INLINE_CODE_RE = re.compile(r"`([^`]+)`")

_HEADING_RES = [
    (re.compile(r"^###[ \t]+(.*)$", re.MULTILINE), "h3"),
    (re.compile(r"^##[ \t]+(.*)$", re.MULTILINE), "h2"),
    (re.compile(r"^#[ \t]+(.*)$", re.MULTILINE), "h1"),
]

# Non-greedy on anything but the delimiter itself, within one line. Underscores
# only count at word boundaries so snake_case and URLs survive.
_EMPHASIS_RES = [
    (re.compile(r"\*\*(?!\s)([^*\n]+)\*\*"), "strong"),
    (re.compile(r"\*(?!\s)([^*\n]+)\*"), "em"),
    (re.compile(r"(?<!\w)__(?!\s)([^_\n]+)__(?!\w)"), "strong"),
    (re.compile(r"(?<!\w)_(?!\s)([^_\n]+)_(?!\w)"), "em"),
]

# http/https only; anything else (javascript:, data:, ...) stays literal text
_LINK_RE = re.compile(r"\[([^\]\n]+)\]\((https?://[^)\s<\"]+)\)")

_UNORDERED_ITEM_RE = re.compile(r"^[-*+][ \t]+(\S.*)$")
_ORDERED_ITEM_RE = re.compile(r"^\d+\.[ \t]+(\S.*)$")

_PARAGRAPH_BREAK_RE = re.compile(r"\n{2,}")

_TOKEN_RE = re.compile(r"<\x00(\d+)\x00>|\x00(\d+)\x00")


class CodeShield:
    """Holds rendered code so later stages leave its contents alone.

    Tokens are built from NUL, which ``escape`` removes from the input, so
    they cannot collide with user text. Block tokens start with ``<`` and are
    treated like any other tag by the paragraph stage.
    """

    def __init__(self) -> None:
        self._stash: List[str] = []

    def block(self, markup: str) -> str:
        self._stash.append(markup)
        return f"<\x00{len(self._stash) - 1}\x00>"

    def inline(self, markup: str) -> str:
        self._stash.append(markup)
        return f"\x00{len(self._stash) - 1}\x00"

    def restore(self, text: str) -> str:
        def _put_back(match: re.Match) -> str:
            index = match.group(1) if match.group(1) is not None else match.group(2)
            return self._stash[int(index)]

        return _TOKEN_RE.sub(_put_back, text)


def escape(raw: str) -> str:
    text = raw.replace("\r\n", "\n").replace("\r", "\n").replace("\x00", "\ufffd")
    return html.escape(text, quote=True)


def fence_code_blocks(text: str, shield: Optional[CodeShield] = None) -> str:
    def _render(match: re.Match) -> str:
        # Input is already escaped; this catches any '<' that slipped in by concatenation
        markup = "<pre><code>{}</code></pre>".format(match.group(1).replace("<", "&lt;"))
        return shield.block(markup) if shield else markup

    return _FENCE_RE.sub(_render, text)


def inline_code(text: str, shield: Optional[CodeShield] = None) -> str:
    def _render(match: re.Match) -> str:
        if shield is None:
            return f"<code>{match.group(1)}</code>"
        # A fence may already sit inside the span; put it back before stashing
        return shield.inline(f"<code>{shield.restore(match.group(1))}</code>")

    return _INLINE_CODE_RE.sub(_render, text)


def headings(text: str) -> str:
    for pattern, tag in _HEADING_RES:
        text = pattern.sub(lambda m, tag=tag: f"<{tag}>{m.group(1)}</{tag}>", text)
    return text


def emphasis(text: str) -> str:
    for pattern, tag in _EMPHASIS_RES:
        text = pattern.sub(lambda m, tag=tag: f"<{tag}>{m.group(1)}</{tag}>", text)
    return text


def links(text: str) -> str:
    return _LINK_RE.sub(
        lambda m: f'<a href="{m.group(2)}" target="_blank" rel="noopener noreferrer">{m.group(1)}</a>',
        text,
    )


def lists(text: str) -> str:
    """Group maximal runs of list lines into one ``<ul>``/``<ol>`` each. No nesting."""
    out: List[str] = []
    items: List[str] = []
    kind: Optional[str] = None

    def _flush() -> None:
        if kind:
            out.append(f"<{kind}>" + "".join(f"<li>{item}</li>" for item in items) + f"</{kind}>")
        items.clear()

    for line in text.split("\n"):
        unordered = _UNORDERED_ITEM_RE.match(line)
        ordered = None if unordered else _ORDERED_ITEM_RE.match(line)
        match = unordered or ordered
        line_kind = "ul" if unordered else "ol" if ordered else None
        if line_kind != kind:
            _flush()
            kind = line_kind
        if match:
            items.append(match.group(1).strip())
        else:
            out.append(line)
    _flush()
    return "\n".join(out)


def paragraphs(text: str) -> str:
    blocks = []
    for block in _PARAGRAPH_BREAK_RE.split(text):
        lines = [
            line if not line or line.startswith("<") else f"<span>{line}</span>"
            for line in block.split("\n")
        ]
        blocks.append("\n".join(lines))
    return "<p>" + "</p><p>".join(blocks) + "</p>"


_TEXT_STAGES = (headings, emphasis, links, lists, paragraphs)


def render_markdown(raw: str, is_user: bool = False) -> str:
    """Render ``raw`` to an HTML fragment.

    ``is_user`` is accepted for callers that distinguish the two sides of the
    conversation; both currently render identically.
    """
    shield = CodeShield()
    text = escape(raw or "")
    text = fence_code_blocks(text, shield)
    text = inline_code(text, shield)
    for stage in _TEXT_STAGES:
        text = stage(text)
    return shield.restore(text)
