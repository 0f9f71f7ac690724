"""Tray icon state, tooltip text and menu model derived from a snapshot."""

from __future__ import annotations

from .classifier import PAUSED_STAGE_FALLBACK
from .models.display import MenuEntry, MenuModel, MenuSection, TrayState
from .models.status import OverallStatus, PipelineStatus

APP_NAME = "cdMenu"

TOOLTIP_LOADING = f"{APP_NAME} - Loading..."
TOOLTIP_NOT_CONFIGURED = f"{APP_NAME} - Not configured"
TOOLTIP_NO_PIPELINES = f"{APP_NAME} - No pipelines selected"
TOOLTIP_AUTH_REQUIRED = f"{APP_NAME} - Auth required"

NO_PIPELINES_PLACEHOLDER = "No pipelines configured"

# Failed targets named in the tooltip before collapsing into "+N more"
TOOLTIP_MAX_FAILED = 3


def tray_state_for(status: OverallStatus) -> TrayState:
    return TrayState.HEALTHY if status.is_healthy else TrayState.FAILED


def build_tooltip(status: OverallStatus) -> str:
    if status.is_healthy:
        lines = [APP_NAME, f"{status.total_monitored} pipeline(s) healthy"]
        if status.in_progress_count:
            lines.append(f"{status.in_progress_count} in progress")
    else:
        failed = status.failed_pipelines
        names = ", ".join(f"{p.workspace}/{p.repo_slug}" for p in failed[:TOOLTIP_MAX_FAILED])
        if len(failed) > TOOLTIP_MAX_FAILED:
            names += f" +{len(failed) - TOOLTIP_MAX_FAILED} more"
        lines = [APP_NAME, f"{len(failed)} pipeline(s) FAILED", names]
    lines.append(f"Last checked: {status.last_checked}")
    return "\n".join(lines)


def _status_suffix(status: PipelineStatus, stage_name: str | None) -> str:
    if status is PipelineStatus.FAILED:
        return " - FAILED"
    if status is PipelineStatus.IN_PROGRESS:
        return " - running"
    if status is PipelineStatus.PAUSED:
        return f" - ({stage_name or PAUSED_STAGE_FALLBACK})"
    return ""


def build_menu(status: OverallStatus | None) -> tuple[MenuModel, dict[str, str]]:
    """Build the tray menu grouped by project, plus the item-id → URL map for clicks.

    Targets without a project are grouped under their workspace. Groups keep
    the order in which they first appear in the monitored list.
    """
    if status is None:
        return MenuModel(placeholder=NO_PIPELINES_PLACEHOLDER), {}

    groups: dict[str, list[MenuEntry]] = {}
    urls: dict[str, str] = {}
    for index, info in enumerate(status.pipeline_statuses):
        item_id = f"pipeline_{index}"
        entry = MenuEntry(
            id=item_id,
            label=f"{info.display_name}{_status_suffix(info.status, info.stage_name)}",
            status=info.status,
            url=info.pipeline_url,
            stage_name=info.stage_name,
        )
        if info.pipeline_url:
            urls[item_id] = info.pipeline_url
        groups.setdefault(info.project_name or info.workspace, []).append(entry)

    sections = [
        MenuSection(title=project.upper(), entries=entries) for project, entries in groups.items()
    ]
    return MenuModel(sections=sections, last_checked=status.last_checked), urls
