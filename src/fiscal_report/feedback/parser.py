"""Turn raw reviewer output into ChangeProposals.

Models return feedback as bare JSON, fenced JSON, JSON buried in prose, or
plain prose. Parsing runs two ordered chains. The first acquires a JSON
value from the text. The second runs extractors over that value, then over
the raw text, until one returns a result. An extractor returns None for "no
match" and a list, possibly empty, for a definite answer. Parsing never
raises and has no side effects.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from fiscal_report.feedback.normalize import (
    DEFAULT_SECTION,
    first_text,
    is_confirmation_line,
    looks_like_item,
    make_proposal,
    normalize_items,
)
from fiscal_report.models.proposal import ChangeProposal, ChangeType, ParseResult, Severity

logger = logging.getLogger(__name__)

FEEDBACK_CONTAINER_KEYS = (
    "feedback",
    "bevindingen",
    "items",
    "adjustments",
    "aanpassingen",
    "proposals",
    "validatie_bevindingen",
    "wijzigingen",
    "changes",
)
NO_CHANGES_STATUS = "geen_wijzigingen"
WHOLE_TEXT_REASONING = "Algemene feedback van specialist"
APPROVAL_PHRASES = (
    "100% accuraat",
    "geen fouten",
    "geen correcties",
    "accuraat bevonden",
    "rekenkundig exact",
    "foutloos",
    "geen wijzigingen",
    "no changes",
)
_EXCERPT_LENGTH = 500

_FENCE = re.compile(r"```[ \t]*(?:json)?[ \t]*\n?(.*?)```", re.DOTALL | re.IGNORECASE)
_BULLET = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+(.+?)\s*$")
_CLOSERS = {"{": "}", "[": "]"}


@dataclass(frozen=True)
class _Input:
    raw: str
    data: Any
    has_json: bool


Extractor = Callable[[_Input, str], list[ChangeProposal] | None]


def _balanced_span(text: str, start: int) -> str | None:
    """Return the balanced ``{...}`` or ``[...]`` substring opening at ``start``.

    String literals are honoured, so brackets inside quoted text do not count.
    """
    stack: list[str] = []
    in_string = False
    escaped = False
    for pos in range(start, len(text)):
        char = text[pos]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in _CLOSERS:
            stack.append(_CLOSERS[char])
        elif char in ("}", "]"):
            if not stack or stack.pop() != char:
                return None
            if not stack:
                return text[start : pos + 1]
    return None


def _whole_string(raw: str) -> str | None:
    return raw.strip()


def _fenced_block(raw: str) -> str | None:
    match = _FENCE.search(raw)
    return match.group(1).strip() if match else None


def _bracket_scan(raw: str) -> str | None:
    """First balanced span holding an object, else the first balanced span.

    Prose citations such as ``[1]`` come before the real payload often enough
    that the first span alone is not trusted.
    """
    first: str | None = None
    for pos, char in enumerate(raw):
        if char not in _CLOSERS:
            continue
        span = _balanced_span(raw, pos)
        if span is None:
            continue
        if "{" in span:
            return span
        if first is None:
            first = span
    return first


JSON_SOURCES: tuple[tuple[str, Callable[[str], str | None]], ...] = (
    ("whole_json", _whole_string),
    ("fenced_block", _fenced_block),
    ("bracket_scan", _bracket_scan),
)


# --- extractors over acquired JSON -------------------------------------------------


def _no_changes(inp: _Input, stage_id: str) -> list[ChangeProposal] | None:
    if isinstance(inp.data, dict) and inp.data.get("status") == NO_CHANGES_STATUS:
        return []
    return None


def _direct_array(inp: _Input, stage_id: str) -> list[ChangeProposal] | None:
    if not isinstance(inp.data, list):
        return None
    # a list of numbers is a citation or a table, not feedback
    if inp.data and not any(isinstance(item, (dict, str)) for item in inp.data):
        return None
    return normalize_items(inp.data, stage_id)


def _named_in(obj: dict[str, Any]) -> list[Any] | None:
    for key in FEEDBACK_CONTAINER_KEYS:
        value = obj.get(key)
        if isinstance(value, list):
            return value
    return None


def _named_property(inp: _Input, stage_id: str) -> list[ChangeProposal] | None:
    if not isinstance(inp.data, dict):
        return None
    items = _named_in(inp.data)
    return normalize_items(items, stage_id) if items is not None else None


def _nested_property(inp: _Input, stage_id: str) -> list[ChangeProposal] | None:
    if not isinstance(inp.data, dict):
        return None
    found = False
    collected: list[Any] = []
    for value in inp.data.values():
        if isinstance(value, dict):
            items = _named_in(value)
            if items is not None:
                found = True
                collected.extend(items)
    return normalize_items(collected, stage_id) if found else None


def _scenario_gaps(inp: _Input, stage_id: str) -> list[ChangeProposal] | None:
    """Blind spots, implicit assumptions and the biggest risk, as additions."""
    if not isinstance(inp.data, dict):
        return None
    data = inp.data
    if not any(key in data for key in ("blinde_vlekken", "impliciete_aannames", "grootste_risico")):
        return None

    proposals: list[ChangeProposal] = []
    for spot in data.get("blinde_vlekken") or []:
        if isinstance(spot, dict):
            title = first_text(spot, ("titel", "onderwerp", "categorie"))
            text = first_text(spot, ("beschrijving", "toelichting")) or title
        else:
            title = text = str(spot).strip()
        if text:
            proposals.append(
                make_proposal(
                    stage_id,
                    len(proposals),
                    change_type=ChangeType.ADD,
                    severity=Severity.IMPORTANT,
                    section=(title or f"Blinde Vlek {len(proposals) + 1}")[:100],
                    proposed=text,
                    reasoning="Potentiële blinde vlek geïdentificeerd",
                )
            )
    for assumption in data.get("impliciete_aannames") or []:
        if isinstance(assumption, dict):
            text = first_text(assumption, ("aanname", "beschrijving")) or json.dumps(
                assumption, ensure_ascii=False, sort_keys=True
            )
        else:
            text = str(assumption).strip()
        if text:
            proposals.append(
                make_proposal(
                    stage_id,
                    len(proposals),
                    change_type=ChangeType.ADD,
                    severity=Severity.IMPORTANT,
                    section="Impliciete Aannames",
                    proposed=text,
                    reasoning="Impliciete aanname geïdentificeerd",
                )
            )
    risk = data.get("grootste_risico")
    if isinstance(risk, dict):
        title = first_text(risk, ("titel", "onderwerp")) or "Grootste Risico"
        text = first_text(risk, ("omschrijving", "beschrijving", "toelichting"))
    else:
        title, text = "Grootste Risico", str(risk or "").strip()
    if text:
        proposals.append(
            make_proposal(
                stage_id,
                len(proposals),
                change_type=ChangeType.ADD,
                severity=Severity.CRITICAL,
                section=title,
                proposed=text,
                reasoning="Grootste risico voor de conclusie",
            )
        )
    return proposals or None


def _single_object(inp: _Input, stage_id: str) -> list[ChangeProposal] | None:
    if isinstance(inp.data, dict) and looks_like_item(inp.data):
        proposals = normalize_items([inp.data], stage_id)
        return proposals or None
    return None


# --- extractors over raw text ------------------------------------------------------


def _text_lines(inp: _Input, stage_id: str) -> list[ChangeProposal] | None:
    proposals: list[ChangeProposal] = []
    for line in inp.raw.splitlines():
        match = _BULLET.match(line)
        if not match:
            continue
        text = match.group(1)
        if is_confirmation_line(text):
            continue
        proposals.append(make_proposal(stage_id, len(proposals), proposed=text))
    return proposals or None


def _approval(inp: _Input, stage_id: str) -> list[ChangeProposal] | None:
    lowered = inp.raw.lower()
    if any(phrase in lowered for phrase in APPROVAL_PHRASES):
        return []
    return None


def _whole_text(inp: _Input, stage_id: str) -> list[ChangeProposal] | None:
    return [
        make_proposal(
            stage_id,
            0,
            section=DEFAULT_SECTION,
            proposed=inp.raw.strip(),
            reasoning=WHOLE_TEXT_REASONING,
        )
    ]


JSON_EXTRACTORS: tuple[tuple[str, Extractor], ...] = (
    ("no_changes", _no_changes),
    ("direct_array", _direct_array),
    ("named_property", _named_property),
    ("nested_property", _nested_property),
    ("scenario_gaps", _scenario_gaps),
    ("single_object", _single_object),
)
TEXT_EXTRACTORS: tuple[tuple[str, Extractor], ...] = (
    ("text_lines", _text_lines),
    ("approval", _approval),
    ("whole_text", _whole_text),
)


class FeedbackParser:
    """Pure, deterministic conversion of reviewer output into proposals."""

    def parse(self, raw_text: str, stage_id: str) -> list[ChangeProposal]:
        return self.parse_with_diagnostics(raw_text, stage_id).proposals

    def parse_with_diagnostics(self, raw_text: str, stage_id: str) -> ParseResult:
        """Parse and report which strategies were tried and which one matched."""
        raw = raw_text or ""
        excerpt = raw[:_EXCERPT_LENGTH]
        if not raw.strip():
            return ParseResult(proposals=[], strategy="empty", attempts=["empty"], raw_excerpt=excerpt)

        attempts: list[str] = []
        error: str | None = None
        data: Any = None
        has_json = False
        for name, source in JSON_SOURCES:
            attempts.append(name)
            candidate = source(raw)
            if not candidate:
                continue
            try:
                data = json.loads(candidate)
            except json.JSONDecodeError as exc:
                error = f"{name}: {exc}"
                continue
            if isinstance(data, (dict, list)):
                has_json = True
                break

        inp = _Input(raw=raw, data=data if has_json else None, has_json=has_json)
        extractors = (JSON_EXTRACTORS if has_json else ()) + TEXT_EXTRACTORS
        proposals: list[ChangeProposal] | None = None
        for name, extractor in extractors:
            attempts.append(name)
            proposals = extractor(inp, stage_id)
            if proposals is not None:
                if name in ("text_lines", "whole_text"):
                    logger.info(
                        "Feedback parsed with text fallback — stage=%s strategy=%s error=%s",
                        stage_id,
                        name,
                        error,
                    )
                return ParseResult(
                    proposals=proposals,
                    strategy=name,
                    attempts=attempts,
                    raw_excerpt=excerpt,
                    error=error,
                )

        # _whole_text always matches, so this is only reached with an empty chain
        return ParseResult(
            proposals=proposals or [],
            strategy="none",
            attempts=attempts,
            raw_excerpt=excerpt,
            error=error,
        )
