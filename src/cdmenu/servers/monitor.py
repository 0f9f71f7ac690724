"""cdMenu MCP server: Bitbucket browsing, monitor configuration and live status."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated, Any

from fastmcp import Context, FastMCP
from pydantic import Field

from ..client import BitbucketClient
from ..config import BitbucketConfig, MonitorConfig
from ..display import TOOLTIP_LOADING, build_menu
from ..exceptions import (
    BitbucketApiError,
    BitbucketAuthError,
    BitbucketNotFoundError,
    BitbucketRateLimitError,
    BitbucketTransportError,
)
from ..models.status import MonitoredPipeline
from ..polling import PipelinePoller
from ..sinks import MemorySink
from ..state import AppState, Credentials, SharedState
from ..store import ConfigStore
from ._helpers import _parse_bitbucket_repo

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[dict[str, Any]]:
    config = BitbucketConfig.from_env()
    monitor_config = MonitorConfig.from_env()
    store = ConfigStore(monitor_config.config_dir)

    persisted = store.load()
    if persisted is not None:
        logger.info(
            "Loaded config with %d monitored pipelines", len(persisted.monitored_pipelines)
        )
        app_state = AppState.from_persisted(persisted, store.load_password() or "")
    else:
        logger.info("No existing config found, using defaults")
        app_state = AppState()
    if config.has_credentials:
        app_state.credentials = Credentials(
            username=config.username, app_password=config.app_password
        )

    state = SharedState(app_state)
    sink = MemorySink()
    sink.set_tooltip(TOOLTIP_LOADING)
    poller = PipelinePoller(state, sink, config, initial_delay=monitor_config.initial_delay)
    poller.start()
    try:
        yield {"config": config, "state": state, "store": store, "sink": sink, "poller": poller}
    finally:
        await poller.stop()


mcp = FastMCP(
    name="cdMenu Pipeline Monitor",
    instructions=(
        "Monitors Bitbucket Pipelines and reports their health"
        ": browse workspaces and repositories, choose pipelines to watch,"
        " and read the aggregated status and failure/recovery notifications."
    ),
    lifespan=lifespan,
)


def _get_config(ctx: Context) -> BitbucketConfig:
    return ctx.request_context.lifespan_context["config"]


def _get_state(ctx: Context) -> SharedState:
    return ctx.request_context.lifespan_context["state"]


def _get_store(ctx: Context) -> ConfigStore:
    return ctx.request_context.lifespan_context["store"]


def _get_sink(ctx: Context) -> MemorySink:
    return ctx.request_context.lifespan_context["sink"]


def _get_poller(ctx: Context) -> PipelinePoller:
    return ctx.request_context.lifespan_context["poller"]


@asynccontextmanager
async def _bitbucket(
    ctx: Context, username: str | None = None, app_password: str | None = None
) -> AsyncIterator[BitbucketClient]:
    """Client for explicit credentials, falling back to the stored ones."""
    if not (username and app_password):
        credentials = await _get_state(ctx).credentials()
        if credentials is None or not credentials.app_password:
            msg = "No Bitbucket credentials configured. Call monitor_save_credentials first."
            raise ValueError(msg)
        username, app_password = credentials.username, credentials.app_password
    async with BitbucketClient(_get_config(ctx).with_credentials(username, app_password)) as c:
        yield c


async def _persist(ctx: Context) -> None:
    _get_store(ctx).save(await _get_state(ctx).to_persisted())


def _ok(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False)


def _err(error: Exception) -> str:
    detail: dict[str, Any] = {"error": str(error)}

    if isinstance(error, BitbucketAuthError):
        detail["status_code"] = error.status_code
        detail["hint"] = "Check the Bitbucket username and app password (needs pipeline:read)."
    elif isinstance(error, BitbucketNotFoundError):
        detail["status_code"] = error.status_code
        detail["hint"] = "Verify the workspace and repository slug."
    elif isinstance(error, BitbucketRateLimitError):
        detail["status_code"] = error.status_code
        detail["hint"] = "Rate limited. Wait before retrying."
    elif isinstance(error, BitbucketApiError):
        detail["status_code"] = error.status_code
        detail["body"] = error.body
    elif isinstance(error, BitbucketTransportError):
        detail["hint"] = "Could not reach Bitbucket - check the network connection."
        detail["timed_out"] = error.timed_out
    return json.dumps(detail, indent=2, ensure_ascii=False)


def _invalid_credentials() -> str:
    return json.dumps(
        {
            "error": "Invalid credentials",
            "valid": False,
            "hint": "Bitbucket rejected the username or app password.",
        },
        indent=2,
    )


_Username = Annotated[
    str | None, Field(description="Bitbucket username (defaults to the saved credentials)")
]
_AppPassword = Annotated[
    str | None, Field(description="Bitbucket app password (defaults to the saved credentials)")
]
_Workspace = Annotated[str, Field(description="Workspace slug", min_length=1)]


# ════════════════════════════════════════════════════════════════════
# Bitbucket browsing
# ════════════════════════════════════════════════════════════════════


@mcp.tool(
    tags={"bitbucket", "workspaces", "read"},
    annotations={"readOnlyHint": True, "idempotentHint": True, "openWorldHint": True},
)
async def bitbucket_list_workspaces(
    ctx: Context,
    username: _Username = None,
    app_password: _AppPassword = None,
) -> str:
    """List workspaces the user can access (first page only)."""
    try:
        async with _bitbucket(ctx, username, app_password) as client:
            data = await client.list_workspaces()
        return _ok([w.to_dict() for w in data])
    except Exception as e:
        return _err(e)


@mcp.tool(
    tags={"bitbucket", "projects", "read"},
    annotations={"readOnlyHint": True, "idempotentHint": True, "openWorldHint": True},
)
async def bitbucket_list_projects(
    ctx: Context,
    workspace: _Workspace,
    username: _Username = None,
    app_password: _AppPassword = None,
) -> str:
    """List projects in a workspace."""
    try:
        async with _bitbucket(ctx, username, app_password) as client:
            data = await client.list_projects(workspace)
        return _ok([p.to_dict() for p in data])
    except Exception as e:
        return _err(e)


@mcp.tool(
    tags={"bitbucket", "repositories", "read"},
    annotations={"readOnlyHint": True, "idempotentHint": True, "openWorldHint": True},
)
async def bitbucket_list_repositories(
    ctx: Context,
    workspace: _Workspace,
    project_key: Annotated[
        str | None, Field(description="Only repositories in this project (e.g. 'PROJ')")
    ] = None,
    username: _Username = None,
    app_password: _AppPassword = None,
) -> str:
    """List repositories in a workspace, most recently updated first."""
    try:
        async with _bitbucket(ctx, username, app_password) as client:
            data = await client.list_repositories(workspace, project_key)
        return _ok([r.to_dict() for r in data])
    except Exception as e:
        return _err(e)


@mcp.tool(
    tags={"bitbucket", "pipelines", "read"},
    annotations={"readOnlyHint": True, "idempotentHint": True, "openWorldHint": True},
)
async def bitbucket_list_pipelines(
    ctx: Context,
    workspace: _Workspace,
    repo_slug: Annotated[str, Field(description="Repository slug", min_length=1)],
    limit: Annotated[int, Field(description="Number of pipelines", ge=1, le=100)] = 10,
    username: _Username = None,
    app_password: _AppPassword = None,
) -> str:
    """List recent pipelines for a repository, newest first."""
    try:
        async with _bitbucket(ctx, username, app_password) as client:
            data = await client.list_pipelines(workspace, repo_slug, limit)
        return _ok([p.to_dict() for p in data])
    except Exception as e:
        return _err(e)


# ════════════════════════════════════════════════════════════════════
# Credentials
# ════════════════════════════════════════════════════════════════════


@mcp.tool(
    tags={"monitor", "credentials", "write"},
    annotations={"readOnlyHint": False, "openWorldHint": True},
)
async def monitor_save_credentials(
    ctx: Context,
    username: Annotated[str, Field(description="Bitbucket username", min_length=1)],
    app_password: Annotated[str, Field(description="Bitbucket app password", min_length=1)],
) -> str:
    """Validate and save Bitbucket credentials used by the monitor."""
    try:
        async with _bitbucket(ctx, username, app_password) as client:
            valid = await client.validate_credentials()
        if not valid:
            return _invalid_credentials()

        await _get_state(ctx).set_credentials(
            Credentials(username=username, app_password=app_password)
        )
        _get_store(ctx).save_password(app_password)
        await _persist(ctx)
        _get_poller(ctx).request_refresh()
        return _ok({"valid": True, "username": username})
    except Exception as e:
        return _err(e)


@mcp.tool(
    tags={"monitor", "credentials", "read"},
    annotations={"readOnlyHint": True, "idempotentHint": True},
)
async def monitor_get_credentials(ctx: Context) -> str:
    """Return the saved username, or null when none is configured."""
    credentials = await _get_state(ctx).credentials()
    return _ok({"username": credentials.username if credentials else None})


# ════════════════════════════════════════════════════════════════════
# Monitored pipelines
# ════════════════════════════════════════════════════════════════════


def _dump_targets(pipelines: list[MonitoredPipeline]) -> list[dict[str, Any]]:
    return [p.model_dump(mode="json") for p in pipelines]


@mcp.tool(
    tags={"monitor", "pipelines", "read"},
    annotations={"readOnlyHint": True, "idempotentHint": True},
)
async def monitor_get_monitored_pipelines(ctx: Context) -> str:
    """List the pipelines being monitored."""
    return _ok(_dump_targets(await _get_state(ctx).monitored_pipelines()))


@mcp.tool(
    tags={"monitor", "pipelines", "write"},
    annotations={"readOnlyHint": False, "idempotentHint": True},
)
async def monitor_save_monitored_pipelines(
    ctx: Context,
    pipelines: Annotated[
        list[MonitoredPipeline], Field(description="Full list of pipelines to monitor")
    ],
) -> str:
    """Replace the monitored list. Duplicate (workspace, repo_slug, branch) entries are dropped."""
    try:
        unique: dict[tuple[str, str, str | None], MonitoredPipeline] = {}
        for pipeline in pipelines:
            unique.setdefault(pipeline.key, pipeline)
        await _get_state(ctx).set_monitored_pipelines(list(unique.values()))
        await _persist(ctx)
        _get_poller(ctx).request_refresh()
        return _ok(_dump_targets(list(unique.values())))
    except Exception as e:
        return _err(e)


@mcp.tool(
    tags={"monitor", "pipelines", "write"},
    annotations={"readOnlyHint": False},
)
async def monitor_add_pipeline(
    ctx: Context,
    repository: Annotated[
        str,
        Field(
            description="'workspace/repo-slug' or a Bitbucket repository URL",
            min_length=1,
        ),
    ],
    branch: Annotated[str | None, Field(description="Only watch this branch")] = None,
    repo_name: Annotated[str, Field(description="Display name")] = "",
    project_key: Annotated[str | None, Field(description="Project key")] = None,
    project_name: Annotated[str | None, Field(description="Project name (menu group)")] = None,
) -> str:
    """Start monitoring a repository's pipelines."""
    try:
        workspace, repo_slug = _parse_bitbucket_repo(repository)
        target = MonitoredPipeline(
            workspace=workspace,
            repo_slug=repo_slug,
            repo_name=repo_name,
            branch=branch or None,
            project_key=project_key,
            project_name=project_name,
        )
        state = _get_state(ctx)
        pipelines = await state.monitored_pipelines()
        if any(p.key == target.key for p in pipelines):
            msg = "This pipeline is already being monitored"
            raise ValueError(msg)
        pipelines.append(target)
        await state.set_monitored_pipelines(pipelines)
        await _persist(ctx)
        _get_poller(ctx).request_refresh()
        return _ok(_dump_targets(pipelines))
    except Exception as e:
        return _err(e)


@mcp.tool(
    tags={"monitor", "pipelines", "write"},
    annotations={"readOnlyHint": False, "destructiveHint": True},
)
async def monitor_remove_pipeline(
    ctx: Context,
    repository: Annotated[
        str,
        Field(description="'workspace/repo-slug' or a Bitbucket repository URL", min_length=1),
    ],
    branch: Annotated[str | None, Field(description="Branch the entry was added with")] = None,
) -> str:
    """Stop monitoring a repository (or one of its branches)."""
    try:
        workspace, repo_slug = _parse_bitbucket_repo(repository)
        key = (workspace, repo_slug, branch or None)
        state = _get_state(ctx)
        pipelines = await state.monitored_pipelines()
        remaining = [p for p in pipelines if p.key != key]
        if len(remaining) == len(pipelines):
            msg = f"{workspace}/{repo_slug} is not being monitored"
            raise ValueError(msg)
        await state.set_monitored_pipelines(remaining)
        await _persist(ctx)
        _get_poller(ctx).request_refresh()
        return _ok(_dump_targets(remaining))
    except Exception as e:
        return _err(e)


# ════════════════════════════════════════════════════════════════════
# Polling
# ════════════════════════════════════════════════════════════════════


@mcp.tool(
    tags={"monitor", "settings", "read"},
    annotations={"readOnlyHint": True, "idempotentHint": True},
)
async def monitor_get_polling_interval(ctx: Context) -> str:
    """Return the polling interval in seconds."""
    return _ok({"seconds": await _get_state(ctx).polling_interval()})


@mcp.tool(
    tags={"monitor", "settings", "write"},
    annotations={"readOnlyHint": False, "idempotentHint": True},
)
async def monitor_set_polling_interval(
    ctx: Context,
    seconds: Annotated[int, Field(description="Seconds between checks (minimum 30)")],
) -> str:
    """Change how often pipelines are checked. Takes effect from the next cycle."""
    try:
        await _get_state(ctx).set_polling_interval(seconds)
        await _persist(ctx)
        return _ok({"seconds": seconds})
    except Exception as e:
        return _err(e)


@mcp.tool(
    tags={"monitor", "status", "write"},
    annotations={"readOnlyHint": False, "idempotentHint": True, "openWorldHint": True},
)
async def monitor_trigger_refresh(ctx: Context) -> str:
    """Check all monitored pipelines now instead of waiting for the next tick."""
    _get_poller(ctx).request_refresh()
    return _ok({"refresh_requested": True})


# ════════════════════════════════════════════════════════════════════
# Status
# ════════════════════════════════════════════════════════════════════


@mcp.tool(
    tags={"monitor", "status", "read"},
    annotations={"readOnlyHint": True, "idempotentHint": True},
)
async def monitor_get_status(ctx: Context) -> str:
    """Return the latest overall status snapshot, or null before the first check."""
    status = await _get_state(ctx).last_status()
    return _ok(status.model_dump(mode="json") if status else None)


@mcp.tool(
    tags={"monitor", "status", "read"},
    annotations={"readOnlyHint": True, "idempotentHint": True},
)
async def monitor_get_menu(ctx: Context) -> str:
    """Return the tray state, tooltip and menu grouped by project."""
    sink = _get_sink(ctx)
    menu = sink.menu or build_menu(None)[0]
    return _ok(
        {
            "tray_state": sink.tray_state.value,
            "tooltip": sink.tooltip,
            "menu": menu.to_dict(),
        }
    )


@mcp.tool(
    tags={"monitor", "status", "read"},
    annotations={"readOnlyHint": True, "idempotentHint": True},
)
async def monitor_open_menu_item(
    ctx: Context,
    item_id: Annotated[str, Field(description="Menu entry id, e.g. 'pipeline_0'", min_length=1)],
) -> str:
    """Resolve the pipeline link behind a menu entry."""
    url = _get_sink(ctx).open_menu_item(item_id)
    if url is None:
        return _err(ValueError(f"No link for menu item: {item_id}"))
    return _ok({"item_id": item_id, "url": url})


@mcp.tool(
    tags={"monitor", "notifications", "read"},
    annotations={"readOnlyHint": True, "idempotentHint": True},
)
async def monitor_get_notifications(
    ctx: Context,
    limit: Annotated[int, Field(description="Maximum events to return", ge=1, le=50)] = 20,
) -> str:
    """Return recent 'Pipeline Failed' / 'Pipeline Fixed' events, oldest first."""
    events = _get_sink(ctx).recent_notifications(limit)
    return _ok([e.to_dict() for e in events])
