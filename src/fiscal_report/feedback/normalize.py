"""Field alias tables and keyword inference for reviewer feedback items.

Reviewer prompts have changed over time and different stages label the same
field differently. Each canonical field lists its accepted labels in
priority order; the first non-empty value wins.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from fiscal_report.models.proposal import ChangeProposal, ChangeType, Severity
from fiscal_report.models.stage import stage_name

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

DEFAULT_SECTION = "Algemeen"

ORIGINAL_KEYS = (
    "original",
    "old",
    "oud",
    "oude_tekst",
    "originele_tekst",
    "locatie_origineel",
    "anker",
    "anchor",
)
PROPOSED_KEYS = (
    "proposed",
    "new",
    "nieuw",
    "nieuwe_tekst",
    "herschreven_tekst",
    "suggestie_tekst",
    "suggestion",
    "correctie_aanbeveling",
    "correctie",
    "aanbeveling",
    "instructie",
    "instruction",
)
REASONING_KEYS = (
    "reasoning",
    "reason",
    "rationale",
    "reden",
    "analyse",
    "toelichting",
    "probleem",
    "beschrijving",
    "instructie",
    "instruction",
)
SECTION_KEYS = (
    "section",
    "sectie",
    "locatie",
    "locatie_zin_paragraaf",
    "locatie_origineel",
    "context",
    "location",
)
TYPE_KEYS = ("change_type", "changeType", "type", "actie", "action")
SEVERITY_KEYS = (
    "severity",
    "priority",
    "prioriteit",
    "bevinding_categorie",
    "probleem_categorie",
    "type_fout",
    "category",
    "categorie",
)

# Ordered: the first table with a matching keyword decides
_TYPE_KEYWORDS: tuple[tuple[ChangeType, tuple[str, ...]], ...] = (
    (ChangeType.ADD, ("toevoeg", "add", "insert", "invoeg")),
    (ChangeType.DELETE, ("verwijder", "delete", "remove", "schrap")),
    (ChangeType.RESTRUCTURE, ("herstructur", "restructur", "reorganis")),
    (ChangeType.MODIFY, ("replace", "vervang", "wijzig", "modify", "edit")),
)
_SEVERITY_KEYWORDS: tuple[tuple[Severity, tuple[str, ...]], ...] = (
    (
        Severity.CRITICAL,
        (
            "kritiek",
            "critical",
            "cruciaal",
            "verouderd",
            "onjuist",
            "error",
            "fout",
            "regel",
        ),
    ),
    (
        Severity.IMPORTANT,
        (
            "belangrijk",
            "important",
            "onnauwkeurig",
            "major",
            "hoog",
            "high",
            "toon",
            "cijfer",
            "hallucinatie",
        ),
    ),
)

CONFIRMATION_PHRASES = ("correct toegepast", "correct berekend", "geen correctie")
# Free-text lines are held to a looser standard than structured items
_LINE_CONFIRMATION_PHRASES = (*CONFIRMATION_PHRASES, "conform", "klopt", "accuraat")


def first_text(item: dict[str, Any], keys: tuple[str, ...]) -> str:
    """Return the first non-empty scalar value under ``keys`` as stripped text."""
    for key in keys:
        value = item.get(key)
        if value is None or isinstance(value, (dict, list, bool)):
            continue
        text = str(value).strip()
        if text:
            return text
    return ""


def infer_change_type(label: str) -> ChangeType:
    lowered = label.lower()
    for change_type, keywords in _TYPE_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return change_type
    return ChangeType.MODIFY


def infer_severity(label: str) -> Severity:
    lowered = label.lower()
    for severity, keywords in _SEVERITY_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return severity
    return Severity.SUGGESTION


def is_confirmation(text: str) -> bool:
    """True for item text that confirms correctness rather than asks for a change."""
    lowered = text.lower()
    return any(phrase in lowered for phrase in CONFIRMATION_PHRASES)


def is_confirmation_line(text: str) -> bool:
    lowered = text.lower()
    if any(phrase in lowered for phrase in _LINE_CONFIRMATION_PHRASES):
        return True
    return "correct" in lowered and "incorrect" not in lowered


def looks_like_item(item: dict[str, Any]) -> bool:
    """True when a bare object carries category- or instruction-like fields."""
    return bool(first_text(item, SEVERITY_KEYS) or first_text(item, PROPOSED_KEYS))


def make_proposal(
    stage_id: str,
    index: int,
    *,
    change_type: ChangeType = ChangeType.MODIFY,
    severity: Severity = Severity.SUGGESTION,
    section: str = DEFAULT_SECTION,
    original: str = "",
    proposed: str = "",
    reasoning: str = "",
) -> ChangeProposal:
    return ChangeProposal(
        change_type=change_type,
        severity=severity,
        section=section or DEFAULT_SECTION,
        original=original,
        proposed=proposed,
        reasoning=reasoning,
        index=index,
        stage_id=stage_id,
        id=f"{stage_id}-{index}",
        specialist=stage_name(stage_id),
    )


def normalize_item(item: object, stage_id: str, index: int) -> ChangeProposal | None:
    """Coerce one raw feedback item into a ChangeProposal, or None if it carries no edit."""
    if isinstance(item, str):
        text = item.strip()
        if not text or is_confirmation(text):
            return None
        return make_proposal(stage_id, index, proposed=text)
    if not isinstance(item, dict):
        return None

    original = first_text(item, ORIGINAL_KEYS)
    proposed = first_text(item, PROPOSED_KEYS)
    reasoning = first_text(item, REASONING_KEYS)
    if not (original or proposed):
        return None
    if is_confirmation(f"{proposed} {reasoning}") and not original:
        return None

    return make_proposal(
        stage_id,
        index,
        change_type=infer_change_type(first_text(item, TYPE_KEYS)),
        severity=infer_severity(first_text(item, SEVERITY_KEYS)),
        section=first_text(item, SECTION_KEYS)[:150],
        original=original,
        proposed=proposed,
        reasoning=reasoning,
    )


def normalize_items(items: list[Any], stage_id: str) -> list[ChangeProposal]:
    """Normalize a feedback array, numbering surviving proposals from zero."""
    proposals: list[ChangeProposal] = []
    for item in items:
        proposal = normalize_item(item, stage_id, len(proposals))
        if proposal is not None:
            proposals.append(proposal)
    return proposals


def feedback_json(
    proposals: Iterable[ChangeProposal],
    replacements: Mapping[str, str] | None = None,
) -> str:
    """Serialize proposals into the JSON list handed to editing prompts.

    ``replacements`` maps a proposal id to user-edited text that supersedes
    the proposed text.
    """
    replacements = replacements or {}
    items = [
        {
            "id": proposal.id,
            "type": proposal.change_type.value,
            "section": proposal.section,
            "oude_tekst": proposal.original,
            "nieuwe_tekst": replacements.get(proposal.id, proposal.proposed),
            "rationale": proposal.reasoning,
            "severity": proposal.severity.value,
        }
        for proposal in proposals
    ]
    return json.dumps(items, ensure_ascii=False, indent=2)
