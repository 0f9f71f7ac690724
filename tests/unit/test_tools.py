"""Tool-level tests: call @mcp.tool functions via FastMCP Client with mocked API."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import pytest
import respx
from fastmcp import Client, FastMCP
from httpx import ReadTimeout, Response

from cdmenu.aggregator import build_overall_status
from cdmenu.config import BitbucketConfig
from cdmenu.display import build_menu
from cdmenu.models.display import TrayState
from cdmenu.models.status import (
    NotificationEvent,
    NotificationKind,
    PipelineStatus,
    PipelineStatusInfo,
)
from cdmenu.polling import PipelinePoller
from cdmenu.sinks import MemorySink
from cdmenu.state import AppState, Credentials, SharedState
from cdmenu.store import ConfigStore

TEST_URL = "https://api.bitbucket.org/2.0"
TEST_USERNAME = "octo"
TEST_PASSWORD = "app-secret"


def _make_context(tmp_path, *, configured: bool = True) -> dict[str, Any]:
    config = BitbucketConfig()
    credentials = (
        Credentials(username=TEST_USERNAME, app_password=TEST_PASSWORD) if configured else None
    )
    state = SharedState(AppState(credentials=credentials))
    sink = MemorySink()
    return {
        "config": config,
        "state": state,
        "store": ConfigStore(tmp_path),
        "sink": sink,
        # Never started: refresh requests only queue up
        "poller": PipelinePoller(state, sink, config, initial_delay=3600),
    }


def _make_mcp(context: dict[str, Any]) -> tuple[FastMCP, Any]:
    """Return the real mcp instance with its lifespan swapped for one yielding *context*."""

    @asynccontextmanager
    async def mock_lifespan(server: FastMCP) -> AsyncIterator[dict[str, Any]]:
        yield context

    from cdmenu.servers.monitor import mcp

    original_lifespan = mcp._lifespan
    mcp._lifespan = mock_lifespan
    return mcp, original_lifespan


@asynccontextmanager
async def _tool_client(context: dict[str, Any]):
    mcp, original_lifespan = _make_mcp(context)
    try:
        with respx.mock(base_url=TEST_URL) as router:
            async with Client(mcp) as client:
                yield client, router
    finally:
        mcp._lifespan = original_lifespan


@pytest.fixture
def context(tmp_path) -> dict[str, Any]:
    return _make_context(tmp_path)


@pytest.fixture
async def tool_client(context):
    """FastMCP test client with saved credentials and respx-mocked HTTP."""
    async with _tool_client(context) as pair:
        yield pair


@pytest.fixture
async def unconfigured_client(tmp_path):
    """FastMCP test client with no saved credentials."""
    async with _tool_client(_make_context(tmp_path, configured=False)) as pair:
        yield pair


def _parse(result: Any) -> Any:
    """Extract JSON from a tool call result."""
    if hasattr(result, "content"):
        for item in result.content:
            if hasattr(item, "text"):
                return json.loads(item.text)
    if hasattr(result, "__iter__") and not isinstance(result, (str, dict)):
        for item in result:
            if hasattr(item, "text"):
                return json.loads(item.text)
    return json.loads(str(result))


def _page(values: list[dict[str, Any]]) -> dict[str, Any]:
    return {"values": values, "pagelen": 100, "size": len(values), "page": 1}


# ═══════════════════════════════════════════════════════
# Bitbucket browsing
# ═══════════════════════════════════════════════════════


@pytest.mark.asyncio
class TestBrowsingTools:
    async def test_list_workspaces(self, tool_client):
        client, router = tool_client
        route = router.get("/workspaces").mock(
            return_value=Response(
                200, json=_page([{"uuid": "{w1}", "slug": "acme", "name": "Acme"}])
            )
        )
        result = _parse(await client.call_tool("bitbucket_list_workspaces", {}))
        assert result == [{"uuid": "{w1}", "slug": "acme", "name": "Acme"}]
        assert route.calls.last.request.url.params["pagelen"] == "100"

    async def test_explicit_credentials_override_saved(self, tool_client):
        client, router = tool_client
        route = router.get("/workspaces").mock(return_value=Response(200, json=_page([])))
        await client.call_tool(
            "bitbucket_list_workspaces", {"username": "other", "app_password": "new"}
        )
        assert route.calls.last.request.headers["authorization"] == "Basic b3RoZXI6bmV3"

    async def test_list_projects(self, tool_client):
        client, router = tool_client
        router.get("/workspaces/acme/projects").mock(
            return_value=Response(
                200, json=_page([{"uuid": "{p1}", "key": "WEB", "name": "Website"}])
            )
        )
        result = _parse(await client.call_tool("bitbucket_list_projects", {"workspace": "acme"}))
        assert result[0]["key"] == "WEB"

    async def test_list_repositories_by_project(self, tool_client):
        client, router = tool_client
        route = router.get("/repositories/acme").mock(
            return_value=Response(
                200,
                json=_page(
                    [
                        {
                            "uuid": "{r1}",
                            "slug": "frontend",
                            "name": "Frontend",
                            "full_name": "acme/frontend",
                            "project": {"uuid": "{p1}", "key": "WEB", "name": "Website"},
                        }
                    ]
                ),
            )
        )
        result = _parse(
            await client.call_tool(
                "bitbucket_list_repositories", {"workspace": "acme", "project_key": "WEB"}
            )
        )
        assert result[0]["slug"] == "frontend"
        assert result[0]["project"]["key"] == "WEB"
        params = route.calls.last.request.url.params
        assert params["q"] == 'project.key="WEB"'
        assert params["sort"] == "-updated_on"

    async def test_list_pipelines(self, tool_client):
        client, router = tool_client
        route = router.get("/repositories/acme/frontend/pipelines/").mock(
            return_value=Response(
                200,
                json=_page(
                    [
                        {
                            "uuid": "{p}",
                            "build_number": 4,
                            "state": {
                                "name": "COMPLETED",
                                "type": "pipeline_state_completed",
                                "result": {"name": "FAILED"},
                            },
                            "target": {"ref_type": "branch", "ref_name": "main"},
                        }
                    ]
                ),
            )
        )
        result = _parse(
            await client.call_tool(
                "bitbucket_list_pipelines",
                {"workspace": "acme", "repo_slug": "frontend", "limit": 5},
            )
        )
        assert result[0]["build_number"] == 4
        assert result[0]["state"]["type"] == "pipeline_state_completed"
        assert result[0]["state"]["result"]["name"] == "FAILED"
        assert route.calls.last.request.url.params["pagelen"] == "5"

    async def test_not_found(self, tool_client):
        client, router = tool_client
        router.get("/workspaces/ghost/projects").mock(return_value=Response(404))
        result = _parse(await client.call_tool("bitbucket_list_projects", {"workspace": "ghost"}))
        assert result["status_code"] == 404
        assert "hint" in result

    async def test_server_error_includes_body(self, tool_client):
        client, router = tool_client
        router.get("/workspaces").mock(return_value=Response(502, text="bad gateway"))
        result = _parse(await client.call_tool("bitbucket_list_workspaces", {}))
        assert result["status_code"] == 502
        assert result["body"] == "bad gateway"

    async def test_without_credentials(self, unconfigured_client):
        client, _ = unconfigured_client
        result = _parse(await client.call_tool("bitbucket_list_workspaces", {}))
        assert "No Bitbucket credentials configured" in result["error"]


# ═══════════════════════════════════════════════════════
# Credentials
# ═══════════════════════════════════════════════════════


@pytest.mark.asyncio
class TestCredentialTools:
    async def test_save_valid_credentials(self, unconfigured_client):
        client, router = unconfigured_client
        router.get("/workspaces").mock(return_value=Response(200, json=_page([])))
        result = _parse(
            await client.call_tool(
                "monitor_save_credentials", {"username": "octo", "app_password": "pw"}
            )
        )
        assert result == {"valid": True, "username": "octo"}

        saved = _parse(await client.call_tool("monitor_get_credentials", {}))
        assert saved == {"username": "octo"}

    async def test_save_persists_to_store(self, tmp_path):
        context = _make_context(tmp_path, configured=False)
        async with _tool_client(context) as (client, router):
            router.get("/workspaces").mock(return_value=Response(200, json=_page([])))
            await client.call_tool(
                "monitor_save_credentials", {"username": "octo", "app_password": "pw"}
            )
        store = context["store"]
        assert store.load().username == "octo"
        assert store.load_password() == "pw"
        assert "pw" not in store.config_path.read_text(encoding="utf-8")
        assert not context["poller"]._refresh_requests.empty()

    async def test_save_rejected_credentials(self, tmp_path):
        context = _make_context(tmp_path, configured=False)
        async with _tool_client(context) as (client, router):
            router.get("/workspaces").mock(return_value=Response(401))
            result = _parse(
                await client.call_tool(
                    "monitor_save_credentials", {"username": "octo", "app_password": "bad"}
                )
            )
            creds = _parse(await client.call_tool("monitor_get_credentials", {}))
        assert result["error"] == "Invalid credentials"
        assert result["valid"] is False
        assert creds == {"username": None}
        assert context["store"].load() is None

    async def test_save_credentials_network_error(self, unconfigured_client):
        client, router = unconfigured_client
        router.get("/workspaces").mock(side_effect=ReadTimeout("slow"))
        result = _parse(
            await client.call_tool(
                "monitor_save_credentials", {"username": "octo", "app_password": "pw"}
            )
        )
        assert result["error"].startswith("HTTP error:")
        assert result["timed_out"] is True


# ═══════════════════════════════════════════════════════
# Monitored pipelines
# ═══════════════════════════════════════════════════════


@pytest.mark.asyncio
class TestPipelineListTools:
    async def test_empty_by_default(self, tool_client):
        client, _ = tool_client
        assert _parse(await client.call_tool("monitor_get_monitored_pipelines", {})) == []

    async def test_add_pipeline(self, tool_client, context):
        client, _ = tool_client
        result = _parse(
            await client.call_tool(
                "monitor_add_pipeline",
                {
                    "repository": "https://bitbucket.org/acme/frontend",
                    "repo_name": "Frontend",
                    "project_key": "WEB",
                    "project_name": "Website",
                },
            )
        )
        assert len(result) == 1
        assert result[0]["workspace"] == "acme"
        assert result[0]["repo_slug"] == "frontend"
        assert result[0]["project_name"] == "Website"
        assert result[0]["branch"] is None
        assert context["store"].load().monitored_pipelines[0].repo_slug == "frontend"

    async def test_add_duplicate_rejected(self, tool_client):
        client, _ = tool_client
        await client.call_tool("monitor_add_pipeline", {"repository": "acme/frontend"})
        result = _parse(
            await client.call_tool("monitor_add_pipeline", {"repository": "acme/frontend"})
        )
        assert result["error"] == "This pipeline is already being monitored"

    async def test_same_repo_other_branch_allowed(self, tool_client):
        client, _ = tool_client
        await client.call_tool("monitor_add_pipeline", {"repository": "acme/frontend"})
        result = _parse(
            await client.call_tool(
                "monitor_add_pipeline", {"repository": "acme/frontend", "branch": "release"}
            )
        )
        assert [p["branch"] for p in result] == [None, "release"]

    async def test_add_invalid_repository(self, tool_client):
        client, _ = tool_client
        result = _parse(await client.call_tool("monitor_add_pipeline", {"repository": "nope"}))
        assert "workspace/repo" in result["error"]

    async def test_remove_pipeline(self, tool_client):
        client, _ = tool_client
        await client.call_tool("monitor_add_pipeline", {"repository": "acme/frontend"})
        await client.call_tool("monitor_add_pipeline", {"repository": "acme/backend"})
        result = _parse(
            await client.call_tool("monitor_remove_pipeline", {"repository": "acme/frontend"})
        )
        assert [p["repo_slug"] for p in result] == ["backend"]

    async def test_remove_missing_pipeline(self, tool_client):
        client, _ = tool_client
        result = _parse(
            await client.call_tool("monitor_remove_pipeline", {"repository": "acme/ghost"})
        )
        assert result["error"] == "acme/ghost is not being monitored"

    async def test_save_monitored_pipelines_dedupes(self, tool_client, context):
        client, _ = tool_client
        pipelines = [
            {"workspace": "acme", "repo_slug": "frontend", "repo_name": "First"},
            {"workspace": "acme", "repo_slug": "frontend", "repo_name": "Second"},
            {"workspace": "acme", "repo_slug": "frontend", "branch": "main"},
        ]
        result = _parse(
            await client.call_tool("monitor_save_monitored_pipelines", {"pipelines": pipelines})
        )
        assert [(p["repo_name"], p["branch"]) for p in result] == [("First", None), ("", "main")]
        assert len(await context["state"].monitored_pipelines()) == 2
        assert not context["poller"]._refresh_requests.empty()


# ═══════════════════════════════════════════════════════
# Polling settings
# ═══════════════════════════════════════════════════════


@pytest.mark.asyncio
class TestPollingTools:
    async def test_get_default_interval(self, tool_client):
        client, _ = tool_client
        assert _parse(await client.call_tool("monitor_get_polling_interval", {})) == {
            "seconds": 60
        }

    async def test_set_interval(self, tool_client, context):
        client, _ = tool_client
        result = _parse(await client.call_tool("monitor_set_polling_interval", {"seconds": 300}))
        assert result == {"seconds": 300}
        assert await context["state"].polling_interval() == 300
        assert context["store"].load().polling_interval_seconds == 300

    async def test_set_interval_below_minimum(self, tool_client, context):
        client, _ = tool_client
        result = _parse(await client.call_tool("monitor_set_polling_interval", {"seconds": 10}))
        assert "at least 30" in result["error"]
        assert await context["state"].polling_interval() == 60

    async def test_trigger_refresh(self, tool_client, context):
        client, _ = tool_client
        result = _parse(await client.call_tool("monitor_trigger_refresh", {}))
        assert result == {"refresh_requested": True}
        assert context["poller"]._refresh_requests.qsize() == 1


# ═══════════════════════════════════════════════════════
# Status
# ═══════════════════════════════════════════════════════


def _failed_snapshot():
    return build_overall_status(
        [
            PipelineStatusInfo(
                workspace="acme",
                repo_slug="frontend",
                project_name="Website",
                status=PipelineStatus.FAILED,
                failure_reason="FAILED",
                pipeline_url="https://bitbucket.org/acme/frontend/pipelines/results/9",
                build_number=9,
            )
        ],
        "10:00:00",
    )


@pytest.mark.asyncio
class TestStatusTools:
    async def test_status_before_first_check(self, tool_client):
        client, _ = tool_client
        assert _parse(await client.call_tool("monitor_get_status", {})) is None

    async def test_status_snapshot(self, tool_client, context):
        client, _ = tool_client
        await context["state"].swap_status(_failed_snapshot())
        result = _parse(await client.call_tool("monitor_get_status", {}))
        assert result["is_healthy"] is False
        assert result["failed_pipelines"][0]["build_number"] == 9
        assert result["pipeline_statuses"][0]["status"] == "failed"
        assert result["last_checked"] == "10:00:00"

    async def test_menu_placeholder(self, tool_client):
        client, _ = tool_client
        result = _parse(await client.call_tool("monitor_get_menu", {}))
        assert result["tray_state"] == "unconfigured"
        assert result["menu"]["placeholder"] == "No pipelines configured"

    async def test_menu_and_open_item(self, tool_client, context):
        client, _ = tool_client
        sink = context["sink"]
        sink.set_tray_state(TrayState.FAILED)
        sink.set_menu(*build_menu(_failed_snapshot()))

        menu = _parse(await client.call_tool("monitor_get_menu", {}))
        assert menu["tray_state"] == "failed"
        section = menu["menu"]["sections"][0]
        assert section["title"] == "WEBSITE"
        assert section["entries"][0]["label"] == "frontend - FAILED"

        opened = _parse(await client.call_tool("monitor_open_menu_item", {"item_id": "pipeline_0"}))
        assert opened == {
            "item_id": "pipeline_0",
            "url": "https://bitbucket.org/acme/frontend/pipelines/results/9",
        }

        missing = _parse(await client.call_tool("monitor_open_menu_item", {"item_id": "x"}))
        assert "No link for menu item" in missing["error"]

    async def test_notifications(self, tool_client, context):
        client, _ = tool_client
        for slug in ("a", "b", "c"):
            context["sink"].notify(
                NotificationEvent(
                    kind=NotificationKind.FAILED,
                    workspace="acme",
                    repo_slug=slug,
                    title="Pipeline Failed",
                    message=f"{slug} has failed",
                )
            )
        result = _parse(await client.call_tool("monitor_get_notifications", {"limit": 2}))
        assert [e["repo_slug"] for e in result] == ["b", "c"]
        assert result[0]["kind"] == "failed"
        assert "url" not in result[0]

