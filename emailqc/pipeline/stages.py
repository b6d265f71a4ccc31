"""Run stage sequence and the progress figure shown to polling callers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class RunStage(str, Enum):
    QUEUED = "queued"
    FETCHING_PREVIEW = "fetching_preview"
    PARSING_PREVIEW = "parsing_preview"
    LOADING_RULES = "loading_rules"
    RUNNING_MODEL = "running_model"
    CHECKING_LINKS = "checking_links"
    SAVING_RESULTS = "saving_results"
    COMPLETED = "completed"
    FAILED = "failed"


STAGE_SEQUENCE: tuple[RunStage, ...] = (
    RunStage.QUEUED,
    RunStage.FETCHING_PREVIEW,
    RunStage.PARSING_PREVIEW,
    RunStage.LOADING_RULES,
    RunStage.RUNNING_MODEL,
    RunStage.CHECKING_LINKS,
    RunStage.SAVING_RESULTS,
    RunStage.COMPLETED,
)

TERMINAL_STAGES = frozenset({RunStage.COMPLETED, RunStage.FAILED})

# Wall-clock span over which the time-based 20% of progress accrues.
PROGRESS_DURATION_MS = 30_000


@dataclass(frozen=True)
class StageMetadata:
    stage: RunStage
    label: str
    description: str


STAGE_METADATA: dict[RunStage, StageMetadata] = {
    meta.stage: meta
    for meta in (
        StageMetadata(RunStage.QUEUED, "Queued", "Preparing to kick off this QC run."),
        StageMetadata(
            RunStage.FETCHING_PREVIEW,
            "Capturing preview",
            "Fetching the template preview so we can inspect what actually shipped.",
        ),
        StageMetadata(
            RunStage.PARSING_PREVIEW,
            "Parsing email",
            "Breaking the HTML into subject, preheader, body copy, CTAs, and links.",
        ),
        StageMetadata(
            RunStage.LOADING_RULES,
            "Loading guardrails",
            "Pulling the risk, keyword, disclaimer, and link rules for this silo/entity.",
        ),
        StageMetadata(
            RunStage.RUNNING_MODEL,
            "Comparing copy",
            "Comparing preview content against the approved copy document.",
        ),
        StageMetadata(
            RunStage.CHECKING_LINKS,
            "Following links",
            "Testing every link for redirects, status codes, and domain matches.",
        ),
        StageMetadata(
            RunStage.SAVING_RESULTS,
            "Packaging report",
            "Compiling findings so you can review everything in one place.",
        ),
        StageMetadata(
            RunStage.COMPLETED,
            "Ready for review",
            "QC run is complete. All checks and links are available.",
        ),
        StageMetadata(
            RunStage.FAILED,
            "Run failed",
            "Something prevented this QC run from finishing.",
        ),
    )
}


def stage_index(stage: RunStage | str) -> int:
    """Ordinal of *stage* in the sequence; ``failed`` sorts past the end."""
    try:
        resolved = RunStage(stage)
    except ValueError:
        return 0
    if resolved is RunStage.FAILED:
        return len(STAGE_SEQUENCE)
    return STAGE_SEQUENCE.index(resolved)


def stage_progress(stage: RunStage | str, elapsed_ms: float = 0) -> int:
    """Return a 0–100 completion figure for *stage* after *elapsed_ms*.

    80% of the scale comes from the stage's position in the sequence and the
    remaining 20% grows linearly with elapsed time up to
    :data:`PROGRESS_DURATION_MS`.
    """
    try:
        resolved = RunStage(stage)
    except ValueError:
        resolved = RunStage.QUEUED
    if resolved in TERMINAL_STAGES:
        return 100

    total = len(STAGE_SEQUENCE) - 1
    base = (stage_index(resolved) / total) * 80
    time_part = min(20.0, (max(elapsed_ms, 0) / PROGRESS_DURATION_MS) * 20)
    return min(100, round(base + time_part))


def can_transition(current: RunStage | str, target: RunStage | str) -> bool:
    """Return ``True`` if a run may move from *current* to *target*.

    Runs only move forward through the sequence, may jump to ``failed`` from
    any non-terminal stage, and never leave a terminal stage.
    """
    current_stage = RunStage(current)
    target_stage = RunStage(target)
    if current_stage in TERMINAL_STAGES:
        return False
    if target_stage is RunStage.FAILED:
        return True
    return stage_index(target_stage) > stage_index(current_stage)
