"""Monitoring targets and the status snapshots built from them."""

from __future__ import annotations

from enum import Enum

from .base import BitbucketModel

UNKNOWN_FAILURE_REASON = "Unknown"


class PipelineStatus(str, Enum):
    HEALTHY = "healthy"
    FAILED = "failed"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    UNKNOWN = "unknown"


class MonitoredPipeline(BitbucketModel):
    """A user-selected repository (optionally a single branch) to watch."""

    workspace: str
    project_key: str | None = None
    project_name: str | None = None
    repo_slug: str
    repo_name: str = ""
    branch: str | None = None

    @property
    def key(self) -> tuple[str, str, str | None]:
        return (self.workspace, self.repo_slug, self.branch)

    @property
    def display_name(self) -> str:
        return self.repo_name or self.repo_slug


class PipelineStatusInfo(BitbucketModel):
    workspace: str
    project_key: str | None = None
    project_name: str | None = None
    repo_slug: str
    repo_name: str = ""
    branch: str | None = None
    status: PipelineStatus = PipelineStatus.UNKNOWN
    failure_reason: str | None = None
    pipeline_url: str | None = None
    # Label of the step blocking a paused pipeline (e.g. a deployment environment)
    stage_name: str | None = None
    build_number: int | None = None

    @classmethod
    def for_target(cls, target: MonitoredPipeline, **fields) -> PipelineStatusInfo:
        return cls(
            workspace=target.workspace,
            project_key=target.project_key,
            project_name=target.project_name,
            repo_slug=target.repo_slug,
            repo_name=target.repo_name,
            branch=target.branch,
            **fields,
        )

    @property
    def identity(self) -> tuple[str, str]:
        return (self.workspace, self.repo_slug)

    @property
    def display_name(self) -> str:
        return self.repo_name or self.repo_slug


class FailedPipelineInfo(BitbucketModel):
    workspace: str
    repo_slug: str
    repo_name: str = ""
    branch: str | None = None
    build_number: int = 0
    failure_reason: str = UNKNOWN_FAILURE_REASON


class OverallStatus(BitbucketModel):
    """Point-in-time snapshot across every monitored target.

    Built once per poll cycle and never modified; the next cycle replaces it.
    """

    model_config = {"extra": "ignore", "populate_by_name": True, "frozen": True}

    is_healthy: bool = True
    failed_pipelines: list[FailedPipelineInfo] = []
    pipeline_statuses: list[PipelineStatusInfo] = []
    in_progress_count: int = 0
    total_monitored: int = 0
    last_checked: str = ""


class NotificationKind(str, Enum):
    FAILED = "failed"
    FIXED = "fixed"


class NotificationEvent(BitbucketModel):
    kind: NotificationKind
    workspace: str
    repo_slug: str
    title: str
    message: str
    url: str | None = None

    @property
    def body(self) -> str:
        if self.url:
            return f"{self.message}\n{self.url}"
        return self.message
