"""Pipeline health classification.

Every function here is pure: it looks only at the payload it is given and
treats a missing optional field (result, stage, step state) as "no
information" rather than an error.
"""

from __future__ import annotations

from collections.abc import Iterable

from .models.pipelines import Pipeline, PipelineStep
from .models.status import PipelineStatus

FAILED_RESULTS = frozenset({"FAILED", "ERROR", "EXPIRED"})
SUCCESSFUL_RESULT = "SUCCESSFUL"
ACTIVE_STATES = frozenset({"IN_PROGRESS", "PENDING"})

PAUSED_STAGE_FALLBACK = "paused"


def is_failed(pipeline: Pipeline) -> bool:
    result = pipeline.state.result
    return result is not None and result.name in FAILED_RESULTS


def is_successful(pipeline: Pipeline) -> bool:
    result = pipeline.state.result
    return result is not None and result.name == SUCCESSFUL_RESULT


def is_paused(pipeline: Pipeline) -> bool:
    """Waiting on a manual trigger or approval.

    Bitbucket reports this either through the state type
    (``pipeline_state_in_progress_paused``) or through a ``PAUSED`` stage.
    """
    state = pipeline.state
    if state.state_type and "paused" in state.state_type:
        return True
    stage = state.stage
    return bool(stage and stage.name and stage.name.upper() == "PAUSED")


def is_in_progress(pipeline: Pipeline) -> bool:
    return pipeline.state.name in ACTIVE_STATES and not is_paused(pipeline)


def classify(pipeline: Pipeline) -> PipelineStatus:
    if is_failed(pipeline):
        return PipelineStatus.FAILED
    if is_paused(pipeline):
        return PipelineStatus.PAUSED
    if is_in_progress(pipeline):
        return PipelineStatus.IN_PROGRESS
    return PipelineStatus.HEALTHY


def failure_reason(pipeline: Pipeline) -> str | None:
    if not is_failed(pipeline):
        return None
    return pipeline.state.result.name


def is_step_pending(step: PipelineStep) -> bool:
    state = step.state
    if state is None:
        return False
    if state.name == "PENDING":
        return True
    return bool(state.state_type and "pending" in state.state_type)


def pending_stage_name(steps: Iterable[PipelineStep]) -> str:
    """Label of the first pending step, used to show what a paused pipeline waits on."""
    for step in steps:
        if is_step_pending(step):
            return step.name or PAUSED_STAGE_FALLBACK
    return PAUSED_STAGE_FALLBACK
