"""Tests for adjustment sessions and direct text application."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from fiscal_report.adjustments.session import AdjustmentService, apply_direct
from fiscal_report.ai.factory import JSON_FORMAT, ModelResponse
from fiscal_report.errors import (
    ConfigurationMissingError,
    ModelInvocationError,
    ReportNotFoundError,
    SessionStateError,
)
from fiscal_report.feedback.normalize import make_proposal
from fiscal_report.models.adjustment import ApplyMode, DecisionKind, SessionStatus
from fiscal_report.models.proposal import ChangeType
from fiscal_report.models.stage import SnapshotSource

DOCUMENT = "# Inleiding\nDe BV betaalt 19% vennootschapsbelasting.\n\n# Conclusie\nOprichting is gunstig."
PROPOSALS = json.dumps(
    [
        {
            "type": "wijzig",
            "original": "De BV betaalt 19% vennootschapsbelasting.",
            "proposed": "De BV betaalt 19% vennootschapsbelasting over de eerste 200.000 euro.",
            "reasoning": "Tariefschijf ontbreekt",
        },
        {"type": "verwijder", "original": "Oprichting is gunstig.", "reasoning": "Te stellig"},
    ]
)


@pytest.fixture
def invoker() -> MagicMock:
    mock = MagicMock()
    mock.call_model = AsyncMock(return_value=ModelResponse(content=PROPOSALS))
    return mock


@pytest.fixture
def service(sessions, history, reports, prompt_configs, store, invoker, pipeline_config) -> AdjustmentService:
    return AdjustmentService(
        sessions,
        history,
        reports,
        prompt_configs,
        store,
        invoker,
        config=pipeline_config,
    )


async def _reviewed(service: AdjustmentService, **create_kwargs):
    session = await service.create_session(**create_kwargs)
    analysis = await service.analyze(session.id, "Maak het advies voorzichtiger")
    return analysis


class TestApplyDirect:
    """Test text substitution of proposals."""

    def test_modify_replaces_original(self) -> None:
        proposal = make_proposal("adjustment", 0, original="19%", proposed="25,8%")

        edit = apply_direct("Het tarief is 19%.", [proposal])

        assert edit.content == "Het tarief is 25,8%."
        assert edit.applied == [proposal.id]

    def test_add_after_anchor(self) -> None:
        proposal = make_proposal(
            "adjustment", 0, change_type=ChangeType.ADD, original="Eerste alinea.", proposed="Nieuwe alinea."
        )

        edit = apply_direct("Eerste alinea.\n\nTweede alinea.", [proposal])

        assert edit.content == "Eerste alinea.\n\nNieuwe alinea.\n\nTweede alinea."

    def test_add_after_section_heading(self) -> None:
        proposal = make_proposal(
            "adjustment", 0, change_type=ChangeType.ADD, section="Conclusie", proposed="Let op de termijnen."
        )

        edit = apply_direct(DOCUMENT, [proposal])

        assert "# Conclusie\nLet op de termijnen.\nOprichting is gunstig." in edit.content

    def test_add_without_location_appends(self) -> None:
        proposal = make_proposal("adjustment", 0, change_type=ChangeType.ADD, proposed="Slotopmerking.")

        edit = apply_direct("Tekst.\n", [proposal])

        assert edit.content == "Tekst.\n\nSlotopmerking."

    def test_delete_collapses_blank_lines(self) -> None:
        proposal = make_proposal("adjustment", 0, change_type=ChangeType.DELETE, original="Weg.")

        edit = apply_direct("Een.\n\nWeg.\n\nTwee.", [proposal])

        assert edit.content == "Een.\n\nTwee."

    def test_unplaceable_proposals_are_reported(self) -> None:
        found = make_proposal("adjustment", 0, original="Een.", proposed="1.")
        missing = make_proposal("adjustment", 1, original="Drie.", proposed="3.")

        edit = apply_direct("Een. Twee.", [found, missing])

        assert edit.applied == [found.id]
        assert edit.not_found == [missing.id]
        assert edit.content == "1. Twee."

    def test_replacement_text_wins(self) -> None:
        proposal = make_proposal("adjustment", 0, original="19%", proposed="25,8%")

        edit = apply_direct("19%", [proposal], {proposal.id: "25,8% (2024)"})

        assert edit.content == "25,8% (2024)"

    def test_fuzzy_match_is_flagged(self) -> None:
        original = "De aandeelhouder ontvangt een dividend van tienduizend euro per jaar uit de BV"
        content = "Inleiding.\nDe aandeelhouder ontvangt een dividend van tienduizend euro per jaar.\nSlot."
        proposal = make_proposal("adjustment", 0, original=original, proposed="Er wordt geen dividend uitgekeerd.")

        edit = apply_direct(content, [proposal])

        assert edit.fuzzy == [proposal.id]
        assert edit.content == "Inleiding.\nEr wordt geen dividend uitgekeerd.\nSlot."


class TestCreateSession:
    """Test opening sessions."""

    async def test_from_report_uses_latest_version(self, service, make_report) -> None:
        await make_report(contents=["v1", DOCUMENT])

        session = await service.create_session(report_id="report-1")

        assert session.current_content == DOCUMENT
        assert session.original_content == DOCUMENT
        assert session.title == "De Vries"
        assert session.status == SessionStatus.INPUT
        assert not session.is_external

    async def test_external_content(self, service) -> None:
        session = await service.create_session(content="Geplakte tekst.", title="Memo")

        assert session.is_external
        assert session.current_content == "Geplakte tekst."

    async def test_report_without_content(self, service, make_report) -> None:
        await make_report()

        with pytest.raises(ValueError):
            await service.create_session(report_id="report-1")

    async def test_missing_report(self, service) -> None:
        with pytest.raises(ReportNotFoundError):
            await service.create_session(report_id="missing")

    async def test_nothing_to_adjust(self, service) -> None:
        with pytest.raises(ValueError):
            await service.create_session(content="   ")

    async def test_unknown_session(self, service) -> None:
        with pytest.raises(LookupError):
            await service.get_session("missing")


class TestAnalyze:
    """Test proposal generation."""

    async def test_assigns_session_scoped_ids(self, service, seeded_prompt_config, invoker) -> None:
        """Verify proposals are numbered per session and adjustment round."""
        session = await service.create_session(content=DOCUMENT)

        result = await service.analyze(session.id, "Maak het advies voorzichtiger")

        assert [p.id for p in result.proposals] == [f"adj-{session.id}-1-0", f"adj-{session.id}-1-1"]
        assert result.session.status == SessionStatus.REVIEW
        assert result.session.last_instruction == "Maak het advies voorzichtiger"
        assert result.diagnostics is None
        kwargs = invoker.call_model.await_args.kwargs
        assert kwargs["response_format"] == JSON_FORMAT
        assert "Maak het advies voorzichtiger" in invoker.call_model.await_args.args[1]

    async def test_text_fallback_returns_diagnostics(self, service, seeded_prompt_config, invoker) -> None:
        invoker.call_model.return_value = ModelResponse(content="- Voeg een disclaimer toe\n- Noem de termijn")
        session = await service.create_session(content=DOCUMENT)

        result = await service.analyze(session.id, "Verbeter")

        assert len(result.proposals) == 2
        assert result.diagnostics.strategy == "text_lines"
        assert result.diagnostics.degraded

    async def test_model_failure_returns_to_input(self, service, seeded_prompt_config, invoker) -> None:
        invoker.call_model.side_effect = ModelInvocationError("timeout", provider="google", model="gemini-2.5-pro")
        session = await service.create_session(content=DOCUMENT)

        with pytest.raises(ModelInvocationError):
            await service.analyze(session.id, "Verbeter")

        assert (await service.get_session(session.id)).status == SessionStatus.INPUT

    async def test_missing_prompt_config(self, service) -> None:
        session = await service.create_session(content=DOCUMENT)

        with pytest.raises(ConfigurationMissingError):
            await service.analyze(session.id, "Verbeter")

        assert (await service.get_session(session.id)).status == SessionStatus.INPUT


class TestDecideAndApply:
    """Test reviewing and applying proposals."""

    async def test_decide_validates_input(self, service, seeded_prompt_config) -> None:
        analysis = await _reviewed(service, content=DOCUMENT)
        session_id = analysis.session.id

        with pytest.raises(LookupError):
            await service.decide(session_id, "unknown", DecisionKind.ACCEPT)
        with pytest.raises(ValueError):
            await service.decide(session_id, analysis.proposals[0].id, DecisionKind.EDIT)

    async def test_apply_accepted_external(self, service, seeded_prompt_config) -> None:
        analysis = await _reviewed(service, content=DOCUMENT)
        session_id = analysis.session.id
        first, second = analysis.proposals
        await service.decide(session_id, first.id, DecisionKind.ACCEPT)
        await service.decide(session_id, second.id, DecisionKind.REJECT)

        result = await service.apply(session_id)

        assert result.applied == [first.id]
        assert result.snapshot_version is None
        assert "over de eerste 200.000 euro" in result.new_content
        assert "Oprichting is gunstig." in result.new_content
        assert result.session.status == SessionStatus.COMPLETE
        assert result.session.adjustment_count == 1
        entries = await service.history(session_id)
        assert len(entries) == 1
        assert entries[0].previous_content == DOCUMENT
        assert entries[0].mode == ApplyMode.DIRECT

    async def test_apply_named_proposals_skips_rejected(self, service, seeded_prompt_config) -> None:
        analysis = await _reviewed(service, content=DOCUMENT)
        session_id = analysis.session.id
        first, second = analysis.proposals
        await service.decide(session_id, first.id, DecisionKind.REJECT)

        result = await service.apply(session_id, proposal_ids=[first.id, second.id])

        assert result.applied == [second.id]
        assert "Oprichting is gunstig." not in result.new_content

    async def test_apply_edited_text(self, service, seeded_prompt_config) -> None:
        analysis = await _reviewed(service, content=DOCUMENT)
        first = analysis.proposals[0]
        await service.decide(analysis.session.id, first.id, DecisionKind.EDIT, "De BV betaalt 25,8%.")

        result = await service.apply(analysis.session.id)

        assert result.new_content.startswith("# Inleiding\nDe BV betaalt 25,8%.")

    async def test_apply_without_accepted_proposals(self, service, seeded_prompt_config) -> None:
        analysis = await _reviewed(service, content=DOCUMENT)

        with pytest.raises(ValueError):
            await service.apply(analysis.session.id)

    async def test_nothing_placed_returns_to_review(self, service, seeded_prompt_config, invoker) -> None:
        invoker.call_model.return_value = ModelResponse(
            content=json.dumps([{"original": "Bestaat niet.", "proposed": "Nieuw."}])
        )
        analysis = await _reviewed(service, content=DOCUMENT)
        proposal = analysis.proposals[0]
        await service.decide(analysis.session.id, proposal.id, DecisionKind.ACCEPT)

        result = await service.apply(analysis.session.id)

        assert result.applied == []
        assert result.not_found == [proposal.id]
        assert result.adjustment is None
        assert result.session.status == SessionStatus.REVIEW
        assert await service.history(analysis.session.id) == []

    async def test_apply_on_report_appends_snapshot(
        self, service, seeded_prompt_config, make_report, reports
    ) -> None:
        await make_report(contents=[DOCUMENT])
        analysis = await _reviewed(service, report_id="report-1")
        await service.decide(analysis.session.id, analysis.proposals[1].id, DecisionKind.ACCEPT)

        result = await service.apply(analysis.session.id)

        assert result.snapshot_version == 2
        report = await reports.require("report-1")
        latest = report.versions.latest_snapshot()
        assert latest.source == SnapshotSource.ADJUSTMENT
        assert latest.content == result.new_content
        assert "Oprichting is gunstig." not in latest.content

    async def test_apply_with_model(self, service, seeded_prompt_config, invoker) -> None:
        analysis = await _reviewed(service, content=DOCUMENT)
        first = analysis.proposals[0]
        await service.decide(analysis.session.id, first.id, DecisionKind.EDIT, "De BV betaalt 25,8%.")
        invoker.call_model.return_value = ModelResponse(content="  Herschreven document.  ")

        result = await service.apply(analysis.session.id, mode=ApplyMode.AI)

        assert result.new_content == "Herschreven document."
        assert result.applied == [first.id]
        prompt = invoker.call_model.await_args.args[1]
        assert prompt.startswith("Voer 1 aanpassingen door:")
        assert '"nieuwe_tekst": "De BV betaalt 25,8%."' in prompt
        assert result.adjustment.mode == ApplyMode.AI

    async def test_model_failure_during_apply_returns_to_review(
        self, service, seeded_prompt_config, invoker
    ) -> None:
        analysis = await _reviewed(service, content=DOCUMENT)
        await service.decide(analysis.session.id, analysis.proposals[0].id, DecisionKind.ACCEPT)
        invoker.call_model.side_effect = ModelInvocationError("boom", provider="google", model="gemini-2.5-pro")

        with pytest.raises(ModelInvocationError):
            await service.apply(analysis.session.id, mode=ApplyMode.AI)

        assert (await service.get_session(analysis.session.id)).status == SessionStatus.REVIEW

    async def test_apply_requires_review_state(self, service) -> None:
        session = await service.create_session(content=DOCUMENT)

        with pytest.raises(SessionStateError):
            await service.apply(session.id)

    async def test_second_round_numbers_from_adjustment_count(self, service, seeded_prompt_config) -> None:
        analysis = await _reviewed(service, content=DOCUMENT)
        await service.decide(analysis.session.id, analysis.proposals[1].id, DecisionKind.ACCEPT)
        await service.apply(analysis.session.id)

        again = await service.analyze(analysis.session.id, "Nog een ronde")

        assert again.proposals[0].id == f"adj-{analysis.session.id}-2-0"
        assert again.session.decisions == {}


class TestPreview:
    """Test the full rewrite flow."""

    async def test_preview_then_accept_external(self, service, seeded_prompt_config, invoker) -> None:
        invoker.call_model.return_value = ModelResponse(content="Nieuw document.\n")
        session = await service.create_session(content=DOCUMENT)

        previewed = await service.propose_rewrite(session.id, "Herschrijf formeel")

        assert previewed.status == SessionStatus.PREVIEW
        assert previewed.preview_content == "Nieuw document."
        assert previewed.current_content == DOCUMENT

        result = await service.accept_preview(session.id)

        assert result.new_content == "Nieuw document."
        assert result.session.status == SessionStatus.COMPLETE
        assert result.session.preview_content is None
        assert result.adjustment.instruction == "Herschrijf formeel"

    async def test_accept_preview_on_report_appends_snapshot(
        self, service, seeded_prompt_config, invoker, make_report, reports
    ) -> None:
        await make_report(contents=[DOCUMENT])
        invoker.call_model.return_value = ModelResponse(content="Nieuw document.")
        session = await service.create_session(report_id="report-1")
        await service.propose_rewrite(session.id, "Herschrijf")

        result = await service.accept_preview(session.id)

        assert result.snapshot_version == 2
        assert (await reports.require("report-1")).versions.latest_content() == "Nieuw document."

    async def test_accept_without_preview(self, service) -> None:
        session = await service.create_session(content=DOCUMENT)

        with pytest.raises(SessionStateError):
            await service.accept_preview(session.id)
