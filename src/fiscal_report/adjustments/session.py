"""Adjustment sessions — user-driven propose, review and apply cycles over a document.

A session either wraps a report, in which case applying writes a new
snapshot, or holds pasted external content that only lives on the session.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from pydantic import BaseModel

from fiscal_report.ai.config_resolver import AIConfigResolver
from fiscal_report.ai.factory import JSON_FORMAT
from fiscal_report.ai.prompts import CHANGE_COUNT, CURRENT_REPORT, FEEDBACK, INSTRUCTION, render_prompt
from fiscal_report.config import PipelineConfig
from fiscal_report.errors import ConfigurationMissingError, ModelInvocationError, SessionStateError
from fiscal_report.feedback.normalize import DEFAULT_SECTION, feedback_json
from fiscal_report.feedback.parser import FeedbackParser
from fiscal_report.models.adjustment import (
    Adjustment,
    AdjustmentSession,
    ApplyMode,
    DecisionKind,
    ProposalDecision,
    SessionStatus,
)
from fiscal_report.models.proposal import ChangeProposal, ChangeType, ParseResult
from fiscal_report.models.stage import ADJUSTMENT_OPERATION, EDITOR_OPERATION, SnapshotSource
from fiscal_report.versioning.text_ops import (
    collapse_blank_lines,
    insert_after_anchor,
    insert_after_heading,
    locate,
    replace_first,
)

if TYPE_CHECKING:
    from fiscal_report.ai.factory import ModelInvoker
    from fiscal_report.database.repositories.adjustments import (
        AdjustmentRepository,
        AdjustmentSessionRepository,
    )
    from fiscal_report.database.repositories.prompt_configs import PromptConfigRepository
    from fiscal_report.database.repositories.reports import ReportRepository
    from fiscal_report.models.ai_config import AiConfig
    from fiscal_report.models.report import Report
    from fiscal_report.versioning.store import VersionedDocumentStore

logger = logging.getLogger(__name__)

_ANALYZABLE = {SessionStatus.INPUT, SessionStatus.REVIEW, SessionStatus.COMPLETE}
_REWRITABLE = {
    SessionStatus.INPUT,
    SessionStatus.ADJUST,
    SessionStatus.PREVIEW,
    SessionStatus.COMPLETE,
}
_APPLIED_DECISIONS = {DecisionKind.ACCEPT, DecisionKind.EDIT}


class AnalysisResult(BaseModel):
    session: AdjustmentSession
    proposals: list[ChangeProposal]
    diagnostics: ParseResult | None = None


class ApplyResult(BaseModel):
    session: AdjustmentSession
    applied: list[str]
    not_found: list[str]
    new_content: str | None = None
    snapshot_version: int | None = None
    adjustment: Adjustment | None = None


@dataclass
class DirectEdit:
    """Outcome of applying proposals by text substitution."""

    content: str
    applied: list[str] = field(default_factory=list)
    not_found: list[str] = field(default_factory=list)
    fuzzy: list[str] = field(default_factory=list)


class _NothingApplied(Exception):
    """Raised from inside a snapshot derivation when no proposal could be placed."""

    def __init__(self, edit: DirectEdit) -> None:
        self.edit = edit
        super().__init__("No adjustment could be applied")


def apply_direct(
    content: str,
    proposals: list[ChangeProposal],
    replacements: dict[str, str] | None = None,
    *,
    config: PipelineConfig | None = None,
) -> DirectEdit:
    """Apply proposals one by one with exact-then-fuzzy text location.

    ``modify`` and ``restructure`` replace the original with the proposed
    text, ``add`` inserts after its anchor (the original text) or its section
    heading and otherwise appends, and ``delete`` removes the original.
    """
    config = config or PipelineConfig()
    replacements = replacements or {}
    edit = DirectEdit(content=content)
    for proposal in proposals:
        text = replacements.get(proposal.id, proposal.proposed)
        if proposal.change_type is ChangeType.ADD:
            updated = _insert(edit.content, proposal, text)
        else:
            found = locate(
                edit.content,
                proposal.original,
                prefix_length=config.fuzzy_prefix_length,
                max_ratio=config.fuzzy_max_ratio,
            )
            updated = None
            if found is not None:
                if found.fuzzy:
                    edit.fuzzy.append(proposal.id)
                replacement = "" if proposal.change_type is ChangeType.DELETE else text
                updated = replace_first(edit.content, found.text, replacement)
                if proposal.change_type is ChangeType.DELETE:
                    updated = collapse_blank_lines(updated)

        if updated is None:
            edit.not_found.append(proposal.id)
            continue
        edit.content = updated
        edit.applied.append(proposal.id)
    return edit


def _insert(content: str, proposal: ChangeProposal, text: str) -> str | None:
    if not text:
        return None
    if proposal.original:
        return insert_after_anchor(content, proposal.original, text)
    if proposal.section and proposal.section != DEFAULT_SECTION:
        inserted = insert_after_heading(content, proposal.section, text)
        if inserted is not None:
            return inserted
    return f"{content.rstrip()}\n\n{text}"


class AdjustmentService:
    """Run the adjustment session lifecycle.

    States move ``input -> analyzing -> review -> applying -> complete`` for
    proposal-based edits and ``adjust -> preview -> complete`` for a full
    rewrite of external content.
    """

    def __init__(
        self,
        sessions: AdjustmentSessionRepository,
        history: AdjustmentRepository,
        reports: ReportRepository,
        prompt_configs: PromptConfigRepository,
        store: VersionedDocumentStore,
        invoker: ModelInvoker,
        *,
        resolver: AIConfigResolver | None = None,
        parser: FeedbackParser | None = None,
        config: PipelineConfig | None = None,
    ) -> None:
        self._sessions = sessions
        self._history = history
        self._reports = reports
        self._prompt_configs = prompt_configs
        self._store = store
        self._invoker = invoker
        self._resolver = resolver or AIConfigResolver()
        self._parser = parser or FeedbackParser()
        self._config = config or PipelineConfig()

    async def create_session(
        self,
        *,
        report_id: str | None = None,
        content: str | None = None,
        title: str = "",
    ) -> AdjustmentSession:
        """Open a session on a report's latest version or on pasted content."""
        if report_id is not None:
            report = await self._reports.require(report_id)
            content = report.versions.latest_content()
            if content is None:
                raise ValueError(f"Report {report_id} has no document content to adjust")
            title = title or report.client_name
        elif not content or not content.strip():
            raise ValueError("Either a report id or document content is required")

        session = AdjustmentSession(
            report_id=report_id,
            title=title,
            original_content=content,
            current_content=content,
        )
        session = await self._sessions.create(session)
        logger.info(
            "Adjustment session created — session=%s report=%s chars=%d",
            session.id,
            report_id,
            len(content),
        )
        return session

    async def get_session(self, session_id: str) -> AdjustmentSession:
        session = await self._sessions.get(session_id, session_id)
        if session is None:
            raise LookupError(f"Adjustment session {session_id} not found")
        return session

    async def history(self, session_id: str) -> list[Adjustment]:
        """Applied adjustments of a session, oldest first."""
        return await self._history.list_by_session(session_id)

    async def sessions_for_report(self, report_id: str) -> list[AdjustmentSession]:
        return await self._sessions.get_by_report(report_id)

    async def analyze(self, session_id: str, instruction: str) -> AnalysisResult:
        """Ask the model for proposals implementing ``instruction``.

        On a model failure the session returns to ``input`` and the error
        propagates.
        """
        session = await self.get_session(session_id)
        self._expect(session, _ANALYZABLE, "analyze")
        template, ai_config = await self._operation(ADJUSTMENT_OPERATION)

        session.status = SessionStatus.ANALYZING
        session.instruction = instruction
        session = await self._save(session, "analyze")

        prompt = render_prompt(
            template,
            {CURRENT_REPORT: session.current_content, INSTRUCTION: instruction},
        )
        try:
            response = await self._invoker.call_model(
                ai_config,
                prompt,
                timeout_s=self._config.model_timeout_s,
                job_id=session.id,
                response_format=JSON_FORMAT,
            )
        except ModelInvocationError:
            session.status = SessionStatus.INPUT
            await self._save(session, "analyze")
            raise

        result = self._parser.parse_with_diagnostics(response.content, ADJUSTMENT_OPERATION)
        version = session.adjustment_count + 1
        proposals = [
            proposal.model_copy(update={"id": f"adj-{session.id}-{version}-{proposal.index}"})
            for proposal in result.proposals
        ]
        if result.degraded:
            logger.warning(
                "Adjustment analysis fell back to text parsing — session=%s strategy=%s",
                session.id,
                result.strategy,
            )

        session.proposals = proposals
        session.decisions = {}
        session.last_instruction = instruction
        session.status = SessionStatus.REVIEW
        session = await self._save(session, "analyze")
        logger.info(
            "Adjustment analysis complete — session=%s proposals=%d strategy=%s",
            session.id,
            len(proposals),
            result.strategy,
        )
        return AnalysisResult(
            session=session,
            proposals=proposals,
            diagnostics=result if result.degraded else None,
        )

    async def decide(
        self,
        session_id: str,
        proposal_id: str,
        decision: DecisionKind,
        edited_text: str | None = None,
    ) -> AdjustmentSession:
        """Record accept, reject or edit for one proposal."""
        session = await self.get_session(session_id)
        self._expect(session, {SessionStatus.REVIEW}, "decide on")
        if not any(proposal.id == proposal_id for proposal in session.proposals):
            raise LookupError(f"Proposal {proposal_id} is not part of session {session_id}")
        if decision is DecisionKind.EDIT and not edited_text:
            raise ValueError("An edit decision needs the edited text")

        session.decisions[proposal_id] = ProposalDecision(
            decision=decision,
            edited_text=edited_text if decision is DecisionKind.EDIT else None,
        )
        return await self._save(session, "decide on")

    async def apply(
        self,
        session_id: str,
        mode: ApplyMode = ApplyMode.DIRECT,
        proposal_ids: list[str] | None = None,
    ) -> ApplyResult:
        """Apply the accepted proposals, or the ones named, in one new version.

        Direct mode substitutes text; when nothing could be placed no
        version is written and the session returns to ``review``. AI mode
        hands the proposals to the editor prompt.
        """
        session = await self.get_session(session_id)
        self._expect(session, {SessionStatus.REVIEW}, "apply")
        selected = self._select(session, proposal_ids)
        if not selected:
            raise ValueError(f"Session {session_id} has no accepted proposals to apply")
        replacements = {
            proposal_id: decision.edited_text
            for proposal_id, decision in session.decisions.items()
            if decision.decision is DecisionKind.EDIT and decision.edited_text
        }

        session.status = SessionStatus.APPLYING
        session = await self._save(session, "apply")
        try:
            if mode is ApplyMode.DIRECT:
                outcome = await self._apply_direct(session, selected, replacements)
            else:
                outcome = await self._apply_ai(session, selected, replacements)
        except Exception:
            session.status = SessionStatus.REVIEW
            await self._save(session, "apply")
            raise

        if isinstance(outcome, _NothingApplied):
            session.status = SessionStatus.REVIEW
            session = await self._save(session, "apply")
            logger.warning(
                "No adjustment could be applied — session=%s requested=%d",
                session.id,
                len(selected),
            )
            return ApplyResult(
                session=session,
                applied=[],
                not_found=outcome.edit.not_found,
            )

        previous, new_content, applied, not_found, version = outcome
        adjustment, session = await self._record(
            session,
            mode=mode,
            previous=previous,
            new_content=new_content,
            applied=applied,
            not_found=not_found,
            snapshot_version=version,
        )
        if not_found:
            logger.warning(
                "Some adjustments could not be applied — session=%s not_found=%d",
                session.id,
                len(not_found),
            )
        return ApplyResult(
            session=session,
            applied=applied,
            not_found=not_found,
            new_content=new_content,
            snapshot_version=version,
            adjustment=adjustment,
        )

    async def propose_rewrite(self, session_id: str, instruction: str) -> AdjustmentSession:
        """Generate a full rewritten document as a preview for the session."""
        session = await self.get_session(session_id)
        self._expect(session, _REWRITABLE, "preview")
        template, ai_config = await self._operation(ADJUSTMENT_OPERATION)

        session.status = SessionStatus.ADJUST
        session.instruction = instruction
        session = await self._save(session, "preview")

        prompt = render_prompt(
            template,
            {CURRENT_REPORT: session.current_content, INSTRUCTION: instruction},
        )
        response = await self._invoker.call_model(
            ai_config,
            prompt,
            timeout_s=self._config.model_timeout_s,
            job_id=session.id,
        )

        session.preview_content = response.content.strip()
        session.last_instruction = instruction
        session.status = SessionStatus.PREVIEW
        session = await self._save(session, "preview")
        logger.info(
            "Adjustment preview ready — session=%s chars=%d",
            session.id,
            len(session.preview_content),
        )
        return session

    async def accept_preview(self, session_id: str) -> ApplyResult:
        """Commit the preview as the session's current content."""
        session = await self.get_session(session_id)
        self._expect(session, {SessionStatus.PREVIEW}, "accept the preview of")
        new_content = session.preview_content or ""
        previous = session.current_content

        version: int | None = None
        if session.report_id is not None:
            snapshot = await self._store.append_snapshot(
                session.report_id,
                SnapshotSource.ADJUSTMENT,
                new_content,
            )
            version = snapshot.version

        adjustment, session = await self._record(
            session,
            mode=ApplyMode.AI,
            previous=previous,
            new_content=new_content,
            applied=[],
            not_found=[],
            snapshot_version=version,
        )
        return ApplyResult(
            session=session,
            applied=[],
            not_found=[],
            new_content=new_content,
            snapshot_version=version,
            adjustment=adjustment,
        )

    async def _apply_direct(
        self,
        session: AdjustmentSession,
        selected: list[ChangeProposal],
        replacements: dict[str, str],
    ) -> tuple[str, str, list[str], list[str], int | None] | _NothingApplied:
        if session.report_id is None:
            edit = apply_direct(session.current_content, selected, replacements, config=self._config)
            if not edit.applied:
                return _NothingApplied(edit)
            return session.current_content, edit.content, edit.applied, edit.not_found, None

        outcome: dict[str, object] = {}

        def _derive(fresh: Report) -> str:
            base = fresh.versions.latest_content() or ""
            edit = apply_direct(base, selected, replacements, config=self._config)
            if not edit.applied:
                raise _NothingApplied(edit)
            outcome["base"] = base
            outcome["edit"] = edit
            return edit.content

        try:
            snapshot = await self._store.append_derived(
                session.report_id,
                SnapshotSource.ADJUSTMENT,
                _derive,
            )
        except _NothingApplied as exc:
            return exc

        edit = outcome["edit"]
        assert isinstance(edit, DirectEdit)
        for proposal_id in edit.fuzzy:
            logger.warning(
                "Adjustment placed by fuzzy match — session=%s proposal=%s",
                session.id,
                proposal_id,
            )
        return str(outcome["base"]), edit.content, edit.applied, edit.not_found, snapshot.version

    async def _apply_ai(
        self,
        session: AdjustmentSession,
        selected: list[ChangeProposal],
        replacements: dict[str, str],
    ) -> tuple[str, str, list[str], list[str], int | None]:
        template, ai_config = await self._operation(EDITOR_OPERATION)
        base = session.current_content
        if session.report_id is not None:
            base = await self._store.latest_content(session.report_id) or base

        prompt = render_prompt(
            template,
            {
                CURRENT_REPORT: base,
                FEEDBACK: feedback_json(selected, replacements),
                CHANGE_COUNT: str(len(selected)),
            },
        )
        response = await self._invoker.call_model(
            ai_config,
            prompt,
            timeout_s=self._config.model_timeout_s,
            job_id=session.id,
        )
        new_content = response.content.strip()

        version: int | None = None
        if session.report_id is not None:
            snapshot = await self._store.append_snapshot(
                session.report_id,
                SnapshotSource.ADJUSTMENT,
                new_content,
            )
            version = snapshot.version
        return base, new_content, [proposal.id for proposal in selected], [], version

    async def _record(
        self,
        session: AdjustmentSession,
        *,
        mode: ApplyMode,
        previous: str,
        new_content: str,
        applied: list[str],
        not_found: list[str],
        snapshot_version: int | None,
    ) -> tuple[Adjustment, AdjustmentSession]:
        adjustment = await self._history.create(
            Adjustment(
                session_id=session.id,
                report_id=session.report_id,
                version=session.adjustment_count + 1,
                instruction=session.last_instruction or session.instruction,
                previous_content=previous,
                new_content=new_content,
                mode=mode,
                applied=applied,
                not_found=not_found,
                snapshot_version=snapshot_version,
            )
        )
        session.current_content = new_content
        session.preview_content = None
        session.adjustment_count += 1
        session.status = SessionStatus.COMPLETE
        session = await self._save(session, "complete")
        logger.info(
            "Adjustment applied — session=%s report=%s version=%d mode=%s applied=%d snapshot=%s",
            session.id,
            session.report_id,
            adjustment.version,
            mode,
            len(applied),
            snapshot_version,
        )
        return adjustment, session

    async def _operation(self, operation_key: str) -> tuple[str, AiConfig]:
        prompt_config = await self._prompt_configs.get_active()
        if prompt_config is None:
            raise ConfigurationMissingError(
                "No active prompt configuration",
                missing_fields=["prompt_config"],
            )
        operation = prompt_config.stages.get(operation_key)
        if operation is None or not operation.prompt.strip():
            raise ConfigurationMissingError(
                f"No prompt template for operation {operation_key}",
                missing_fields=[f"stages.{operation_key}.prompt"],
            )
        return operation.prompt, self._resolver.resolve_for_operation(operation_key, prompt_config)

    @staticmethod
    def _select(session: AdjustmentSession, proposal_ids: list[str] | None) -> list[ChangeProposal]:
        if proposal_ids is not None:
            wanted = set(proposal_ids)
            rejected = {
                proposal_id
                for proposal_id, decision in session.decisions.items()
                if decision.decision is DecisionKind.REJECT
            }
            return [
                proposal
                for proposal in session.proposals
                if proposal.id in wanted and proposal.id not in rejected
            ]
        return [
            proposal
            for proposal in session.proposals
            if proposal.id in session.decisions
            and session.decisions[proposal.id].decision in _APPLIED_DECISIONS
        ]

    @staticmethod
    def _expect(session: AdjustmentSession, allowed: set[SessionStatus], action: str) -> None:
        if session.status not in allowed:
            raise SessionStateError(session.id, session.status, action)

    async def _save(self, session: AdjustmentSession, action: str) -> AdjustmentSession:
        if session.etag is None:
            return await self._sessions.update(session, session.id)
        saved = await self._sessions.replace_if_unmodified(session, session.etag)
        if saved is None:
            raise SessionStateError(session.id, session.status, action)
        return saved
