"""Find @bot mentions in post text, ignoring code."""

import re
from typing import Iterator

from markdown_it import MarkdownIt

_md = MarkdownIt("commonmark")

WORD_SPLIT = re.compile(r"[^\w:.\-@]+")
TRIM_CHARS = ":.-_"


def _text_runs(text: str) -> Iterator[str]:
    """Yield runs of plain text, skipping inline code spans and code blocks."""
    for token in _md.parse(text):
        if token.type != "inline" or not token.children:
            continue
        run: list[str] = []
        for child in token.children:
            if child.type in ("text", "text_special"):
                run.append(child.content)
                continue
            if run:
                yield "".join(run)
                run = []
        if run:
            yield "".join(run)


def mentioned_usernames(text: str) -> Iterator[str]:
    """Yield @usernames in order of appearance, without the '@'."""
    for run in _text_runs(text):
        for word in WORD_SPLIT.split(run):
            if len(word) > 1 and word.startswith(":") and word.endswith(":"):
                continue
            word = word.strip(TRIM_CHARS)
            if word.startswith("@") and len(word) > 1:
                yield word[1:]


def is_mentioned(text: str, username: str) -> bool:
    target = username.lower()
    return any(name.lower() == target for name in mentioned_usernames(text))
