"""Stage pipeline — drives a report through the fixed stage order."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from pydantic import BaseModel

from fiscal_report.ai.config_resolver import AIConfigResolver
from fiscal_report.ai.factory import JSON_FORMAT
from fiscal_report.ai.prompts import (
    CHANGE_COUNT,
    CURRENT_REPORT,
    FEEDBACK,
    RAW_INPUT,
    render_prompt,
    stage_placeholder,
)
from fiscal_report.config import PipelineConfig
from fiscal_report.errors import (
    ConfigurationMissingError,
    ModelInvocationError,
    StageFailedError,
    StagePreconditionError,
)
from fiscal_report.events import EventPublisher, NullPublisher, StageEvent
from fiscal_report.feedback.normalize import feedback_json
from fiscal_report.feedback.parser import FeedbackParser
from fiscal_report.models.ai_config import AiConfig
from fiscal_report.models.proposal import ChangeProposal
from fiscal_report.models.report import Report, Snapshot
from fiscal_report.models.stage import (
    REVIEWER_STAGES,
    STAGE_ORDER,
    StageId,
    is_mutating_stage,
    is_reviewer_stage,
    later_stages,
    parse_stage_id,
    prerequisites,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from fiscal_report.ai.factory import ModelInvoker
    from fiscal_report.database.repositories.prompt_configs import PromptConfigRepository
    from fiscal_report.database.repositories.reports import ReportRepository
    from fiscal_report.models.ai_config import PromptConfig
    from fiscal_report.versioning.store import VersionedDocumentStore

logger = logging.getLogger(__name__)


class StageExecution(BaseModel):
    """Result of one stage run."""

    stage_id: str
    stage_output: str
    prompt: str
    snapshot: Snapshot | None = None
    usage: dict[str, int] | None = None


class PromptPreview(BaseModel):
    """The rendered prompt and resolved model config for a stage."""

    stage_id: str
    prompt: str
    ai_config: AiConfig
    processed_feedback: str | None = None


def _require_stage(stage_id: str) -> StageId:
    stage = parse_stage_id(stage_id)
    if stage is None:
        raise ValueError(f"Unknown stage {stage_id}")
    return stage


class StagePipeline:
    """Run stages for a report: prompt rendering, model call, persistence and events.

    Stages that produce a new document version are serialized per report.
    Reviewer stages may run concurrently; each writes only its own result
    key through an etag-checked update.
    """

    def __init__(
        self,
        reports: ReportRepository,
        prompt_configs: PromptConfigRepository,
        store: VersionedDocumentStore,
        invoker: ModelInvoker,
        *,
        resolver: AIConfigResolver | None = None,
        parser: FeedbackParser | None = None,
        events: EventPublisher | None = None,
        config: PipelineConfig | None = None,
    ) -> None:
        self._reports = reports
        self._prompt_configs = prompt_configs
        self._store = store
        self._invoker = invoker
        self._resolver = resolver or AIConfigResolver()
        self._parser = parser or FeedbackParser()
        self._events: EventPublisher = events or NullPublisher()
        self._config = config or PipelineConfig()
        self._locks: dict[str, asyncio.Lock] = {}

    def _get_report_lock(self, report_id: str) -> asyncio.Lock:
        lock = self._locks.get(report_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[report_id] = lock
        return lock

    def _stage_lock(
        self, report_id: str, stage: StageId
    ) -> asyncio.Lock | contextlib.nullcontext[None]:
        """Mutating stages take the report lock; other stages write through etag checks only."""
        if is_mutating_stage(stage):
            return self._get_report_lock(report_id)
        return contextlib.nullcontext()

    @staticmethod
    def next_runnable(report: Report) -> list[StageId]:
        """Stages without output whose prerequisites have all recorded output."""
        done = report.completed_stages()
        return [
            stage
            for stage in STAGE_ORDER
            if stage not in done and all(dep in done for dep in prerequisites(stage))
        ]

    async def run_stage(
        self, report_id: str, stage_id: str, *, job_id: str | None = None
    ) -> StageExecution:
        """Execute one stage and persist its output.

        Raises ``StagePreconditionError`` before anything runs when earlier
        stages are missing, ``ConfigurationMissingError`` when the prompt or
        model config is absent, and ``StageFailedError`` after marking the
        report failed when the model call fails.
        """
        stage = _require_stage(stage_id)
        async with self._stage_lock(report_id, stage):
            return await self._run(report_id, stage, job_id)

    async def preview_prompt(self, report_id: str, stage_id: str) -> PromptPreview:
        """Render the exact prompt and model config a stage run would use, without running it."""
        stage = _require_stage(stage_id)
        report = await self._reports.require(report_id)
        self._check_prerequisites(report, stage)
        return await self._prepare(report, stage, job_id=None)

    async def record_manual_stage(
        self, report_id: str, stage_id: str, output: str
    ) -> StageExecution:
        """Store externally produced output for a stage without calling a model.

        The stage is persisted exactly like a model run: mutating stages
        append a snapshot sourced from the stage. No prompt is recorded.
        """
        stage = _require_stage(stage_id)
        if not output.strip():
            raise ValueError(f"Manual output for stage {stage} must not be empty")
        async with self._stage_lock(report_id, stage):
            report = await self._reports.require(report_id)
            self._check_prerequisites(report, stage)
            processed_feedback = (
                feedback_json(self.collect_feedback(report))
                if stage is StageId.FEEDBACK_VERWERKER
                else None
            )
            snapshot = await self._persist(report_id, stage, output, "", processed_feedback)

        await self._publish(
            "stage-complete",
            StageEvent(
                report_id=report_id,
                stage_id=stage,
                version=snapshot.version if snapshot else None,
            ),
        )
        logger.info(
            "Manual stage output stored — report=%s stage=%s output_chars=%d version=%s",
            report_id,
            stage,
            len(output),
            snapshot.version if snapshot else None,
        )
        return StageExecution(stage_id=stage, stage_output=output, prompt="", snapshot=snapshot)

    @staticmethod
    def _check_prerequisites(report: Report, stage: StageId) -> None:
        done = report.completed_stages()
        missing = [dep.value for dep in prerequisites(stage) if dep not in done]
        if missing:
            raise StagePreconditionError(stage, missing)

    async def _prepare(self, report: Report, stage: StageId, job_id: str | None) -> PromptPreview:
        prompt_config = await self._prompt_configs.get_active()
        if prompt_config is None:
            raise ConfigurationMissingError(
                "No active prompt configuration",
                missing_fields=["prompt_config"],
            )
        template = self._template_for(prompt_config, stage)
        ai_config = self._resolver.resolve_for_stage(
            stage,
            prompt_config.stages.get(stage),
            prompt_config.ai_config,
            job_id=job_id,
        )

        values = self._placeholder_values(report)
        processed_feedback: str | None = None
        if stage is StageId.FEEDBACK_VERWERKER:
            proposals = self.collect_feedback(report)
            processed_feedback = feedback_json(proposals)
            values[FEEDBACK] = processed_feedback
            values[CHANGE_COUNT] = str(len(proposals))
        return PromptPreview(
            stage_id=stage,
            prompt=render_prompt(template, values),
            ai_config=ai_config,
            processed_feedback=processed_feedback,
        )

    async def _persist(
        self,
        report_id: str,
        stage: StageId,
        output: str,
        prompt: str,
        processed_feedback: str | None,
    ) -> Snapshot | None:
        if not is_mutating_stage(stage):
            await self._reports.record_stage_output(report_id, stage, output, prompt)
            return None

        def _record(fresh: Report, _snapshot: Snapshot) -> None:
            fresh.record_stage(stage, output, prompt)

        return await self._store.append_snapshot(
            report_id,
            stage,
            output,
            processed_feedback=processed_feedback,
            also=_record,
        )

    async def _run(self, report_id: str, stage: StageId, job_id: str | None) -> StageExecution:
        report = await self._reports.require(report_id)
        self._check_prerequisites(report, stage)
        prepared = await self._prepare(report, stage, job_id)
        prompt = prepared.prompt
        ai_config = prepared.ai_config
        processed_feedback = prepared.processed_feedback

        await self._publish(
            "stage-start", StageEvent(report_id=report_id, stage_id=stage, job_id=job_id)
        )
        logger.info(
            "Stage started — job=%s report=%s stage=%s prompt_chars=%d",
            job_id,
            report_id,
            stage,
            len(prompt),
        )

        try:
            response = await self._invoker.call_model(
                ai_config,
                prompt,
                timeout_s=self._config.model_timeout_s,
                job_id=job_id,
                response_format=JSON_FORMAT if is_reviewer_stage(stage) else None,
            )
        except ModelInvocationError as exc:
            logger.error(
                "Stage failed — job=%s report=%s stage=%s error=%s",
                job_id,
                report_id,
                stage,
                exc,
            )
            await self._reports.mark_failed(report_id, stage, str(exc), prompt)
            await self._publish(
                "stage-failed",
                StageEvent(report_id=report_id, stage_id=stage, job_id=job_id, error=str(exc)),
            )
            raise StageFailedError(stage, prompt, str(exc)) from exc

        output = response.content
        snapshot = await self._persist(report_id, stage, output, prompt, processed_feedback)

        await self._publish(
            "stage-complete",
            StageEvent(
                report_id=report_id,
                stage_id=stage,
                job_id=job_id,
                version=snapshot.version if snapshot else None,
            ),
        )
        logger.info(
            "Stage complete — job=%s report=%s stage=%s output_chars=%d version=%s",
            job_id,
            report_id,
            stage,
            len(output),
            snapshot.version if snapshot else None,
        )
        return StageExecution(
            stage_id=stage,
            stage_output=output,
            prompt=prompt,
            snapshot=snapshot,
            usage=response.usage,
        )

    async def run_pipeline(
        self,
        report_id: str,
        *,
        stages: Iterable[str] | None = None,
        concurrent_reviewers: bool = True,
        job_id: str | None = None,
    ) -> list[StageExecution]:
        """Run stages in order, stopping at the first failure.

        Without ``stages`` every stage lacking output runs. Adjacent reviewer
        stages run together when ``concurrent_reviewers`` is set.
        """
        report = await self._reports.require(report_id)
        if stages is None:
            done = report.completed_stages()
            targets = [stage for stage in STAGE_ORDER if stage not in done]
        else:
            wanted = {_require_stage(stage) for stage in stages}
            targets = [stage for stage in STAGE_ORDER if stage in wanted]

        logger.info(
            "Pipeline run started — job=%s report=%s stages=%s",
            job_id,
            report_id,
            ",".join(targets),
        )
        executions: list[StageExecution] = []
        position = 0
        while position < len(targets):
            stage = targets[position]
            if concurrent_reviewers and stage in REVIEWER_STAGES:
                batch = [stage]
                while (
                    position + len(batch) < len(targets)
                    and targets[position + len(batch)] in REVIEWER_STAGES
                ):
                    batch.append(targets[position + len(batch)])
                executions.extend(await self._run_concurrently(report_id, batch, job_id))
                position += len(batch)
                continue
            executions.append(await self.run_stage(report_id, stage, job_id=job_id))
            position += 1

        logger.info(
            "Pipeline run complete — job=%s report=%s ran=%d", job_id, report_id, len(executions)
        )
        return executions

    async def _run_concurrently(
        self,
        report_id: str,
        stages: list[StageId],
        job_id: str | None,
    ) -> list[StageExecution]:
        results = await asyncio.gather(
            *(self.run_stage(report_id, stage, job_id=job_id) for stage in stages),
            return_exceptions=True,
        )
        executions: list[StageExecution] = []
        failure: BaseException | None = None
        for result in results:
            if isinstance(result, BaseException):
                failure = failure or result
            else:
                executions.append(result)
        if failure is not None:
            raise failure
        return executions

    async def delete_stage(self, report_id: str, stage_id: str) -> Report:
        """Clear a stage's output and everything after it so it can be re-run.

        Snapshots are kept; the next mutating stage appends a new version.
        """
        stage = _require_stage(stage_id)
        cleared = [stage.value, *(later.value for later in later_stages(stage))]
        async with self._get_report_lock(report_id):
            report = await self._reports.clear_stages(report_id, cleared)
        logger.info("Stage output cleared — report=%s stages=%s", report_id, ",".join(cleared))
        return report

    def collect_feedback(self, report: Report) -> list[ChangeProposal]:
        """Parsed proposals of every completed reviewer stage, minus rolled-back ones."""
        proposals: list[ChangeProposal] = []
        for stage in REVIEWER_STAGES:
            raw = report.stage_results.get(stage)
            if not raw:
                continue
            proposals.extend(
                proposal
                for proposal in self._parser.parse(raw, stage)
                if proposal.key not in report.rolled_back_changes
            )
        return proposals

    @staticmethod
    def _template_for(prompt_config: PromptConfig, stage: StageId) -> str:
        stage_config = prompt_config.stages.get(stage)
        if stage_config is None or not stage_config.prompt.strip():
            raise ConfigurationMissingError(
                f"No prompt template for stage {stage}",
                missing_fields=[f"stages.{stage}.prompt"],
            )
        return stage_config.prompt

    @staticmethod
    def _placeholder_values(report: Report) -> dict[str, str]:
        values = {
            RAW_INPUT: report.raw_input,
            CURRENT_REPORT: report.versions.latest_content() or "",
        }
        for stage_id, output in report.stage_results.items():
            values[stage_placeholder(stage_id)] = output
        return values

    async def _publish(self, event_type: str, event: StageEvent) -> None:
        await self._events.publish(event_type, event)
