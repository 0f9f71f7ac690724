"""Shared test fixtures for cdmenu."""

from __future__ import annotations

from typing import Any

import pytest
import respx

from cdmenu.client import BitbucketClient
from cdmenu.config import BitbucketConfig
from cdmenu.models.pipelines import Pipeline
from cdmenu.models.status import MonitoredPipeline

API_URL = "https://api.bitbucket.org/2.0"
TEST_USERNAME = "octo"
TEST_APP_PASSWORD = "app-secret"


def pipeline_payload(
    build_number: int,
    *,
    state: str = "COMPLETED",
    result: str | None = "SUCCESSFUL",
    state_type: str | None = None,
    stage: str | None = None,
    branch: str | None = "main",
    uuid: str | None = None,
) -> dict[str, Any]:
    """Build a pipeline JSON object shaped like Bitbucket's."""
    state_obj: dict[str, Any] = {"name": state}
    if state_type is not None:
        state_obj["type"] = state_type
    if result is not None:
        state_obj["result"] = {"name": result, "type": f"pipeline_state_completed_{result.lower()}"}
    if stage is not None:
        state_obj["stage"] = {"name": stage, "type": "pipeline_state_in_progress_paused"}
    return {
        "uuid": uuid or f"{{pipeline-{build_number}}}",
        "build_number": build_number,
        "state": state_obj,
        "target": {"type": "pipeline_ref_target", "ref_type": "branch", "ref_name": branch},
        "created_on": f"2024-05-01T10:{build_number % 60:02d}:00.000000+00:00",
    }


def make_pipeline(build_number: int = 1, **kwargs: Any) -> Pipeline:
    return Pipeline.model_validate(pipeline_payload(build_number, **kwargs))


def page(values: list[dict[str, Any]]) -> dict[str, Any]:
    return {"values": values, "page": 1, "size": len(values), "pagelen": 100}


@pytest.fixture
def config() -> BitbucketConfig:
    return BitbucketConfig(username=TEST_USERNAME, app_password=TEST_APP_PASSWORD)


@pytest.fixture
async def client(config: BitbucketConfig):
    async with BitbucketClient(config) as c:
        yield c


@pytest.fixture
def mock_api() -> respx.MockRouter:
    with respx.mock(base_url=API_URL) as router:
        yield router


@pytest.fixture
def target() -> MonitoredPipeline:
    return MonitoredPipeline(
        workspace="acme",
        project_key="WEB",
        project_name="Website",
        repo_slug="frontend",
        repo_name="Frontend",
    )


@pytest.fixture
def pipeline_json():
    return pipeline_payload


@pytest.fixture
def pipeline_factory():
    return make_pipeline


@pytest.fixture
def paged():
    return page
