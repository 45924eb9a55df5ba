"""Markdown + LaTeX rendering for question prompts in review read models.

Question prompts are authored as markdown with inline ``$...$`` math. Review
screens receive an HTML fragment and load MathJax themselves, so the core only
converts markup and never embeds a full document.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from markdown_it import MarkdownIt

EMPTY_PROMPT_HTML = "<p><em>No question text.</em></p>"


@dataclass(slots=True)
class MarkdownRenderer:
    """Converts markdown-with-math prompts into HTML fragments."""

    enable_html: bool = False
    _markdown: MarkdownIt = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._markdown = (
            MarkdownIt("commonmark", {"html": self.enable_html})
            .enable("table")
            .enable("strikethrough")
        )

    def render_fragment(self, markdown_text: str | None) -> str:
        sanitized = (markdown_text or "").strip()
        if not sanitized:
            return EMPTY_PROMPT_HTML
        return self._markdown.render(sanitized)


# MarkdownIt is safe for concurrent read-only renders, so one instance is shared.
renderer = MarkdownRenderer()
