"""Stage enumeration, grouping and ordering rules for the report pipeline."""

from __future__ import annotations

from enum import StrEnum


class StageId(StrEnum):
    INFORMATIECHECK = "1a_informatiecheck"
    COMPLEXITEITSCHECK = "2_complexiteitscheck"
    GENERATIE = "3_generatie"
    BRONNEN_SPECIALIST = "4a_BronnenSpecialist"
    FISCAAL_TECHNISCH_SPECIALIST = "4b_FiscaalTechnischSpecialist"
    SCENARIO_GATEN_ANALIST = "4c_ScenarioGatenAnalist"
    DE_ADVOCAAT = "4e_DeAdvocaat"
    HOOFD_COMMUNICATIE = "4f_HoofdCommunicatie"
    FEEDBACK_VERWERKER = "5_feedback_verwerker"
    EINDCONTROLE = "6_eindcontrole"


class StageGroup(StrEnum):
    PREPARATION = "preparation"
    REVIEWER = "reviewer"
    FINALIZATION = "finalization"


class StageKind(StrEnum):
    """What a stage does with the document."""

    ANALYZER = "analyzer"
    GENERATOR = "generator"
    REVIEWER = "reviewer"
    PROCESSOR = "processor"


class SnapshotSource(StrEnum):
    """Snapshot origins that are not pipeline stages."""

    ROLLBACK = "rollback"
    ADJUSTMENT = "adjustment"
    MANUAL = "manual"


# Prompt keys for helper operations that run outside the stage order
ADJUSTMENT_OPERATION = "adjustment"
EDITOR_OPERATION = "editor"

STAGE_ORDER: tuple[StageId, ...] = tuple(StageId)

STAGE_GROUPS: dict[StageId, StageGroup] = {
    StageId.INFORMATIECHECK: StageGroup.PREPARATION,
    StageId.COMPLEXITEITSCHECK: StageGroup.PREPARATION,
    StageId.GENERATIE: StageGroup.PREPARATION,
    StageId.BRONNEN_SPECIALIST: StageGroup.REVIEWER,
    StageId.FISCAAL_TECHNISCH_SPECIALIST: StageGroup.REVIEWER,
    StageId.SCENARIO_GATEN_ANALIST: StageGroup.REVIEWER,
    StageId.DE_ADVOCAAT: StageGroup.REVIEWER,
    StageId.HOOFD_COMMUNICATIE: StageGroup.REVIEWER,
    StageId.FEEDBACK_VERWERKER: StageGroup.FINALIZATION,
    StageId.EINDCONTROLE: StageGroup.FINALIZATION,
}

STAGE_KINDS: dict[StageId, StageKind] = {
    StageId.INFORMATIECHECK: StageKind.ANALYZER,
    StageId.COMPLEXITEITSCHECK: StageKind.ANALYZER,
    StageId.GENERATIE: StageKind.GENERATOR,
    StageId.BRONNEN_SPECIALIST: StageKind.REVIEWER,
    StageId.FISCAAL_TECHNISCH_SPECIALIST: StageKind.REVIEWER,
    StageId.SCENARIO_GATEN_ANALIST: StageKind.REVIEWER,
    StageId.DE_ADVOCAAT: StageKind.REVIEWER,
    StageId.HOOFD_COMMUNICATIE: StageKind.REVIEWER,
    StageId.FEEDBACK_VERWERKER: StageKind.PROCESSOR,
    StageId.EINDCONTROLE: StageKind.ANALYZER,
}

STAGE_NAMES: dict[str, str] = {
    StageId.INFORMATIECHECK: "Informatie Analyse",
    StageId.COMPLEXITEITSCHECK: "Complexiteits Check",
    StageId.GENERATIE: "Basis Rapport",
    StageId.BRONNEN_SPECIALIST: "Bronnen Review",
    StageId.FISCAAL_TECHNISCH_SPECIALIST: "Fiscaal Technisch",
    StageId.SCENARIO_GATEN_ANALIST: "Scenario Analyse",
    StageId.DE_ADVOCAAT: "Juridisch Review",
    StageId.HOOFD_COMMUNICATIE: "Hoofd Communicatie",
    StageId.FEEDBACK_VERWERKER: "Feedback Verwerking",
    StageId.EINDCONTROLE: "Eindcontrole",
    EDITOR_OPERATION: "Feedback Verwerker",
    ADJUSTMENT_OPERATION: "Rapport Aanpasser",
}

REVIEWER_STAGES: tuple[StageId, ...] = tuple(
    s for s in STAGE_ORDER if STAGE_GROUPS[s] is StageGroup.REVIEWER
)


def parse_stage_id(value: str) -> StageId | None:
    """Return the StageId for a raw string, or None when unknown."""
    try:
        return StageId(value)
    except ValueError:
        return None


def stage_name(stage_id: str) -> str:
    return STAGE_NAMES.get(stage_id, stage_id)


def stage_group(stage_id: StageId) -> StageGroup:
    return STAGE_GROUPS[stage_id]


def is_reviewer_stage(stage_id: str) -> bool:
    stage = parse_stage_id(stage_id)
    return stage is not None and STAGE_KINDS[stage] is StageKind.REVIEWER


def is_mutating_stage(stage_id: str) -> bool:
    """Return True for stages whose output becomes a new document snapshot."""
    stage = parse_stage_id(stage_id)
    return stage is not None and STAGE_KINDS[stage] in (StageKind.GENERATOR, StageKind.PROCESSOR)


def prerequisites(stage_id: StageId) -> list[StageId]:
    """Stages that must have recorded output before ``stage_id`` may run.

    Reviewers depend on the preparation group only, never on each other.
    """
    position = STAGE_ORDER.index(stage_id)
    earlier = STAGE_ORDER[:position]
    if STAGE_GROUPS[stage_id] is StageGroup.REVIEWER:
        return [s for s in earlier if STAGE_GROUPS[s] is StageGroup.PREPARATION]
    return list(earlier)


def later_stages(stage_id: StageId) -> list[StageId]:
    """All stages after ``stage_id`` in the fixed order."""
    position = STAGE_ORDER.index(stage_id)
    return list(STAGE_ORDER[position + 1 :])


def later_reviewer_stages(stage_id: str) -> list[StageId]:
    """Reviewer stages that come after ``stage_id`` chronologically."""
    stage = parse_stage_id(stage_id)
    if stage is None:
        return []
    return [s for s in later_stages(stage) if s in REVIEWER_STAGES]
