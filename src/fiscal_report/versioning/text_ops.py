"""Text location and substitution helpers for rollback and direct apply."""

from __future__ import annotations

import re
from dataclasses import dataclass

# Checked in this order; the earliest boundary after the prefix wins
_BOUNDARIES = ("\n\n", ".\n", ". ", "\n")
_EXCESS_BLANK_LINES = re.compile(r"\n{3,}")


@dataclass(frozen=True)
class TextMatch:
    """A located span of the document and whether it was found approximately."""

    text: str
    fuzzy: bool


def find_fuzzy_match(
    content: str,
    target: str,
    prefix_length: int = 50,
    max_ratio: float = 2.0,
) -> str | None:
    """Locate ``target`` by its prefix and extend to the next sentence or paragraph end.

    Targets shorter than the prefix are never fuzzy matched. The span is
    capped at ``max_ratio`` times the target's length.
    """
    if not target or len(target) < prefix_length:
        return None
    prefix = target[:prefix_length]
    start = content.find(prefix)
    if start == -1:
        return None

    end = len(content)
    for boundary in _BOUNDARIES:
        idx = content.find(boundary, start + prefix_length)
        if idx != -1 and idx < end:
            end = idx if boundary == "\n\n" else idx + len(boundary) - 1

    max_length = int(len(target) * max_ratio)
    if end - start > max_length:
        end = start + max_length
    return content[start:end]


def locate(
    content: str,
    target: str,
    *,
    prefix_length: int = 50,
    max_ratio: float = 2.0,
) -> TextMatch | None:
    """Find ``target`` exactly, falling back to a bounded fuzzy match."""
    if not target:
        return None
    if target in content:
        return TextMatch(text=target, fuzzy=False)
    fuzzy = find_fuzzy_match(content, target, prefix_length, max_ratio)
    if fuzzy:
        return TextMatch(text=fuzzy, fuzzy=True)
    return None


def replace_first(content: str, old: str, new: str) -> str:
    return content.replace(old, new, 1)


def collapse_blank_lines(content: str) -> str:
    """Reduce runs of blank lines to a single blank line."""
    return _EXCESS_BLANK_LINES.sub("\n\n", content)


def insert_after_heading(content: str, section: str, text: str) -> str | None:
    """Insert ``text`` on the line after the first heading matching ``section``.

    Returns None when no line starts a match for the section label.
    """
    pattern = re.compile(f"({re.escape(section)}[^\n]*\n)", re.IGNORECASE)
    match = pattern.search(content)
    if match is None:
        return None
    position = match.end()
    return f"{content[:position]}{text}\n{content[position:]}"


def insert_after_anchor(content: str, anchor: str, text: str) -> str | None:
    """Insert ``text`` as a new paragraph after the first occurrence of ``anchor``."""
    position = content.find(anchor)
    if position == -1:
        return None
    end = position + len(anchor)
    return f"{content[:end]}\n\n{text}{content[end:]}"
