"""Fold per-pipeline results into one overall snapshot."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from .models.status import (
    UNKNOWN_FAILURE_REASON,
    FailedPipelineInfo,
    OverallStatus,
    PipelineStatus,
    PipelineStatusInfo,
)


def format_timestamp(now: datetime | None = None) -> str:
    return (now or datetime.now()).strftime("%H:%M:%S")


def build_overall_status(
    statuses: Sequence[PipelineStatusInfo], timestamp: str | None = None
) -> OverallStatus:
    """Build the snapshot for one poll cycle.

    Only FAILED entries affect health; paused, running and unknown targets
    are reported but keep the overall status green. *statuses* is kept whole
    and in order so the menu can list every target.
    """
    failed = [
        FailedPipelineInfo(
            workspace=info.workspace,
            repo_slug=info.repo_slug,
            repo_name=info.repo_name,
            branch=info.branch,
            build_number=info.build_number or 0,
            failure_reason=info.failure_reason or UNKNOWN_FAILURE_REASON,
        )
        for info in statuses
        if info.status is PipelineStatus.FAILED
    ]
    in_progress = sum(1 for info in statuses if info.status is PipelineStatus.IN_PROGRESS)

    return OverallStatus(
        is_healthy=not failed,
        failed_pipelines=failed,
        pipeline_statuses=list(statuses),
        in_progress_count=in_progress,
        total_monitored=len(statuses),
        last_checked=timestamp if timestamp is not None else format_timestamp(),
    )
