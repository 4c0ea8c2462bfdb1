"""Plain-text helpers for turning assistant markdown into speakable text."""

import re
from typing import List


_FENCE = re.compile(r"```[^\n]*\n?([\s\S]*?)```")
_INLINE_CODE = re.compile(r"`([^`]*)`")
_IMAGE = re.compile(r"!\[([^\]]*)\]\([^)]*\)")
_LINK = re.compile(r"\[([^\]]+)\]\([^)]*\)")
_BARE_URL = re.compile(r"https?://\S+")
_HTML_TAG = re.compile(r"</?[a-zA-Z][^>]*>")
_HEADING = re.compile(r"^[ \t]{0,3}#{1,6}[ \t]*", re.MULTILINE)
_BLOCKQUOTE = re.compile(r"^[ \t]*>+[ \t]?", re.MULTILINE)
_LIST_MARKER = re.compile(r"^[ \t]*(?:[-*+]|\d+[.)])[ \t]+", re.MULTILINE)
_RULE = re.compile(r"^[ \t]*(?:[-*_][ \t]*){3,}$", re.MULTILINE)
_TABLE_DIVIDER = re.compile(r"^[ \t]*\|?[ \t]*:?-{2,}:?[ \t]*(?:\|[ \t]*:?-{2,}:?[ \t]*)*\|?[ \t]*$", re.MULTILINE)
_EMPHASIS = re.compile(r"(\*{1,3}|~~)(\S(?:.*?\S)?)\1")
_UNDERSCORE_EMPHASIS = re.compile(r"(?<!\w)(_{1,3})(\S(?:.*?\S)?)\1(?!\w)")
_SPACES = re.compile(r"[ \t　]+")

# Sentence plus its terminal punctuation; newlines always end a sentence.
_SENTENCE = re.compile(r"[^.!?。！？\n]+[.!?。！？]*|[.!?。！？]+")


def strip_markdown(text: str) -> str:
    """
    Remove structural markdown so a synthesis engine reads only words.

    Code blocks keep their contents, links keep their label, and tables
    lose their pipes. Line breaks survive so they can act as sentence
    boundaries.
    """
    if not text:
        return ""

    text = _FENCE.sub(r"\1", text)
    text = _INLINE_CODE.sub(r"\1", text)
    text = _IMAGE.sub(r"\1", text)
    text = _LINK.sub(r"\1", text)
    text = _BARE_URL.sub("", text)
    text = _HTML_TAG.sub("", text)
    text = _TABLE_DIVIDER.sub("", text)
    text = _RULE.sub("", text)
    text = _HEADING.sub("", text)
    text = _BLOCKQUOTE.sub("", text)
    text = _LIST_MARKER.sub("", text)
    text = _EMPHASIS.sub(r"\2", text)
    text = _UNDERSCORE_EMPHASIS.sub(r"\2", text)
    text = text.replace("|", " ")

    lines = [_SPACES.sub(" ", line).strip() for line in text.splitlines()]
    return "\n".join(line for line in lines if line)


def split_sentences(text: str) -> List[str]:
    """Split on sentence-terminal punctuation and newlines, dropping empty pieces."""
    return [piece.strip() for piece in _SENTENCE.findall(text) if piece.strip()]


def join_with_space(head: str, tail: str) -> str:
    """Join two fragments with exactly one space, never leading or doubled."""
    if not head:
        return tail
    if not tail:
        return head
    if head.endswith(" "):
        return head + tail
    return f"{head} {tail}"
