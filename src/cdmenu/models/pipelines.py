"""Pipeline and step models."""

from __future__ import annotations

from pydantic import Field

from .base import BitbucketModel


class PipelineResult(BitbucketModel):
    # SUCCESSFUL, FAILED, STOPPED, EXPIRED, ERROR
    name: str = ""


class PipelineStage(BitbucketModel):
    """Present on the state only while the pipeline is paused."""

    name: str | None = None
    stage_type: str | None = Field(default=None, alias="type")


class PipelineState(BitbucketModel):
    # PENDING, IN_PROGRESS, COMPLETED
    name: str = ""
    # e.g. "pipeline_state_in_progress_paused" while waiting for a manual trigger
    state_type: str | None = Field(default=None, alias="type")
    result: PipelineResult | None = None
    stage: PipelineStage | None = None


class PipelineTarget(BitbucketModel):
    ref_type: str | None = None
    ref_name: str | None = None


class Pipeline(BitbucketModel):
    uuid: str
    build_number: int = 0
    state: PipelineState = Field(default_factory=PipelineState)
    target: PipelineTarget = Field(default_factory=PipelineTarget)
    created_on: str = ""
    completed_on: str | None = None

    @property
    def branch(self) -> str | None:
        return self.target.ref_name


class StepState(BitbucketModel):
    name: str | None = None
    state_type: str | None = Field(default=None, alias="type")


class PipelineStep(BitbucketModel):
    uuid: str
    name: str | None = None
    state: StepState | None = None
