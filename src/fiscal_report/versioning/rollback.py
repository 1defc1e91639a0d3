"""Undo a single reviewer edit by text substitution against the latest snapshot.

No model is called. Every outcome, including failure to locate the text, is
reported on the returned result; only storage errors propagate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from pydantic import BaseModel

from fiscal_report.config import PipelineConfig
from fiscal_report.feedback.normalize import DEFAULT_SECTION
from fiscal_report.feedback.parser import FeedbackParser
from fiscal_report.models.proposal import ChangeProposal, ChangeType
from fiscal_report.models.report import Report, RollbackInfo, RolledBackChange, Snapshot
from fiscal_report.models.stage import SnapshotSource, later_reviewer_stages, stage_name
from fiscal_report.versioning.text_ops import (
    collapse_blank_lines,
    insert_after_heading,
    locate,
    replace_first,
)

if TYPE_CHECKING:
    from fiscal_report.database.repositories.reports import ReportRepository
    from fiscal_report.versioning.store import VersionedDocumentStore

logger = logging.getLogger(__name__)

_OVERLAP_PREFIX_LENGTH = 30
FUZZY_WARNING = "Exact text not found; a fuzzy match was used and should be reviewed"
DELETE_WARNING = (
    "Deleted text was re-inserted after its section heading or at the end of the "
    "document; its original position cannot be reconstructed exactly"
)


class RollbackResult(BaseModel):
    success: bool
    new_content: str | None = None
    new_version: int | None = None
    warning: str | None = None
    error: str | None = None
    fuzzy_matched: bool = False


class RollbackCandidate(BaseModel):
    proposal: ChangeProposal
    rolled_back: bool = False


class _Rejected(Exception):
    """Raised from inside a snapshot derivation to abort without writing."""


@dataclass
class _Outcome:
    warning: str | None = None
    fuzzy: bool = False


def change_key(stage_id: str, change_index: int) -> str:
    return f"{stage_id}-{change_index}"


class RollbackEngine:
    """Reverse one applied ChangeProposal, identified by stage id and index."""

    def __init__(
        self,
        reports: ReportRepository,
        store: VersionedDocumentStore,
        parser: FeedbackParser | None = None,
        config: PipelineConfig | None = None,
    ) -> None:
        self._reports = reports
        self._store = store
        self._parser = parser or FeedbackParser()
        self._config = config or PipelineConfig()

    async def list_rollbackable(self, report_id: str, stage_id: str) -> list[RollbackCandidate]:
        """Proposals of a stage, marked with whether each has been undone."""
        report = await self._reports.require(report_id)
        raw = report.stage_results.get(stage_id)
        if not raw:
            return []
        return [
            RollbackCandidate(
                proposal=proposal,
                rolled_back=change_key(stage_id, proposal.index) in report.rolled_back_changes,
            )
            for proposal in self._parser.parse(raw, stage_id)
        ]

    async def rollback_change(self, report_id: str, stage_id: str, change_index: int) -> RollbackResult:
        report = await self._reports.get(report_id, report_id)
        if report is None:
            return RollbackResult(success=False, error=f"Report {report_id} not found")

        outcome = _Outcome()

        def _derive(fresh: Report) -> str:
            return self._reverse(fresh, stage_id, change_index, outcome)

        def _record(fresh: Report, snapshot: Snapshot) -> None:
            fresh.rolled_back_changes[change_key(stage_id, change_index)] = RolledBackChange(
                stage_id=stage_id,
                change_index=change_index,
                version=snapshot.version,
                fuzzy_matched=outcome.fuzzy,
            )

        try:
            snapshot = await self._store.append_derived(
                report_id,
                SnapshotSource.ROLLBACK,
                _derive,
                rollback=RollbackInfo(stage_id=stage_id, change_index=change_index),
                also=_record,
            )
        except _Rejected as exc:
            logger.info(
                "Rollback rejected — report=%s stage=%s index=%d reason=%s",
                report_id,
                stage_id,
                change_index,
                exc,
            )
            return RollbackResult(success=False, error=str(exc))

        if outcome.fuzzy:
            logger.warning(
                "Rollback used fuzzy match — report=%s stage=%s index=%d version=%d",
                report_id,
                stage_id,
                change_index,
                snapshot.version,
            )
        logger.info(
            "Rollback applied — report=%s stage=%s index=%d version=%d",
            report_id,
            stage_id,
            change_index,
            snapshot.version,
        )
        return RollbackResult(
            success=True,
            new_content=snapshot.content,
            new_version=snapshot.version,
            warning=outcome.warning,
            fuzzy_matched=outcome.fuzzy,
        )

    def _reverse(self, report: Report, stage_id: str, change_index: int, outcome: _Outcome) -> str:
        """Compute the rolled-back content, or raise ``_Rejected`` with the reason."""
        raw = report.stage_results.get(stage_id)
        if not raw:
            raise _Rejected(f"Stage {stage_id} has no recorded output")

        proposals = self._parser.parse(raw, stage_id)
        if not 0 <= change_index < len(proposals):
            raise _Rejected(
                f"Change index {change_index} is out of range; "
                f"stage {stage_id} has {len(proposals)} proposals"
            )
        if change_key(stage_id, change_index) in report.rolled_back_changes:
            raise _Rejected(f"Change {change_index} of stage {stage_id} was already rolled back")

        content = report.versions.latest_content()
        if content is None:
            raise _Rejected("Report has no document content to roll back")

        proposal = proposals[change_index]
        outcome.warning = None
        outcome.fuzzy = False
        match proposal.change_type:
            case ChangeType.MODIFY:
                return self._reverse_modify(report, proposal, content, outcome)
            case ChangeType.ADD:
                return self._reverse_add(report, proposal, content, outcome)
            case ChangeType.DELETE:
                return self._reverse_delete(proposal, content, outcome)
            case _:
                raise _Rejected(f"Rollback is not supported for change type {proposal.change_type}")

    def _locate_or_reject(
        self,
        report: Report,
        proposal: ChangeProposal,
        content: str,
        outcome: _Outcome,
        what: str,
    ) -> str:
        found = locate(
            content,
            proposal.proposed,
            prefix_length=self._config.fuzzy_prefix_length,
            max_ratio=self._config.fuzzy_max_ratio,
        )
        if found is None:
            culprits = self.find_overwriting_stages(report, proposal.stage_id, proposal.proposed)
            if culprits:
                names = ", ".join(culprits)
                raise _Rejected(f"{what} not found in report; likely overwritten by: {names}")
            raise _Rejected(f"{what} not found in report; possibly overwritten by a later change")
        if found.fuzzy:
            outcome.fuzzy = True
            outcome.warning = FUZZY_WARNING
        return found.text

    def _reverse_modify(
        self, report: Report, proposal: ChangeProposal, content: str, outcome: _Outcome
    ) -> str:
        if not proposal.original or not proposal.proposed:
            raise _Rejected("Modify proposal needs both original and proposed text to roll back")
        target = self._locate_or_reject(report, proposal, content, outcome, "Text")
        return replace_first(content, target, proposal.original)

    def _reverse_add(
        self, report: Report, proposal: ChangeProposal, content: str, outcome: _Outcome
    ) -> str:
        if not proposal.proposed:
            raise _Rejected("Add proposal has no proposed text to remove")
        target = self._locate_or_reject(report, proposal, content, outcome, "Added text")
        return collapse_blank_lines(replace_first(content, target, ""))

    @staticmethod
    def _reverse_delete(proposal: ChangeProposal, content: str, outcome: _Outcome) -> str:
        if not proposal.original:
            raise _Rejected("Delete proposal has no original text to restore")
        outcome.warning = DELETE_WARNING
        if proposal.section and proposal.section != DEFAULT_SECTION:
            inserted = insert_after_heading(content, proposal.section, proposal.original)
            if inserted is not None:
                return inserted
        return f"{content}\n\n{proposal.original}"

    def find_overwriting_stages(self, report: Report, stage_id: str, target: str) -> list[str]:
        """Name later reviewer stages whose proposals overlap the start of ``target``."""
        prefix = target[:_OVERLAP_PREFIX_LENGTH].lower()
        if not prefix:
            return []
        names: list[str] = []
        for later in later_reviewer_stages(stage_id):
            raw = report.stage_results.get(later)
            if not raw:
                continue
            for candidate in self._parser.parse(raw, later):
                if _overlaps(prefix, candidate):
                    names.append(stage_name(later))
                    break
        return names


def _overlaps(prefix: str, candidate: ChangeProposal) -> bool:
    for text in (candidate.original.lower(), candidate.proposed.lower()):
        if not text:
            continue
        if prefix in text or text[:_OVERLAP_PREFIX_LENGTH] in prefix:
            return True
    return False
