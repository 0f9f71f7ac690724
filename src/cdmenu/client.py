"""Bitbucket Cloud API client using httpx."""

from __future__ import annotations

import base64
from typing import Any, TypeVar
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ValidationError

from .config import BitbucketConfig
from .exceptions import (
    BitbucketApiError,
    BitbucketAuthError,
    BitbucketNotFoundError,
    BitbucketRateLimitError,
    BitbucketTransportError,
)
from .models.common import Page
from .models.pipelines import Pipeline, PipelineStep
from .models.workspaces import Project, Repository, Workspace

MAX_PAGE_SIZE = 100
LATEST_PIPELINE_WINDOW = 20

M = TypeVar("M", bound=BaseModel)


class BitbucketClient:
    """Async HTTP client for the Bitbucket Cloud REST API 2.0.

    Only the first page of any listing is read. The client keeps no state
    besides its auth header and connection pool, so one instance can serve
    concurrent calls.
    """

    def __init__(self, config: BitbucketConfig | None = None) -> None:
        self.config = config or BitbucketConfig.from_env()
        self.config.validate()
        credentials = f"{self.config.username}:{self.config.app_password}"
        self.auth_header = "Basic " + base64.b64encode(credentials.encode()).decode()
        self._client = httpx.AsyncClient(
            base_url=self.config.api_url,
            headers={
                "Authorization": self.auth_header,
                "Accept": "application/json",
            },
            timeout=self.config.timeout,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> BitbucketClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ── HTTP helpers ──────────────────────────────────────────────

    @staticmethod
    def _encode(segment: str) -> str:
        return quote(segment, safe="")

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Make an API request and return parsed JSON."""
        try:
            resp = await self._client.request(method, path, params=params)
        except httpx.RequestError as e:
            raise BitbucketTransportError(
                e, timed_out=isinstance(e, httpx.TimeoutException)
            ) from e

        if resp.status_code == 401:
            raise BitbucketAuthError(resp.text)
        if resp.status_code == 429:
            raise BitbucketRateLimitError(resp.text)
        if resp.status_code == 404:
            raise BitbucketNotFoundError(path, resp.text)
        if resp.status_code != 200:
            raise BitbucketApiError(resp.status_code, resp.text)

        content_type = resp.headers.get("content-type", "")
        if "text/html" in content_type:
            msg = "Unexpected HTML response - check API URL and authentication"
            raise BitbucketApiError(resp.status_code, resp.text[:500], msg)

        try:
            return resp.json()
        except ValueError as e:
            raise BitbucketApiError(
                resp.status_code,
                resp.text[:500],
                f"JSON parse error: {e}",
            ) from e

    async def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return await self._request("GET", path, params=params)

    async def _get_values(
        self, path: str, model: type[M], params: dict[str, Any] | None = None
    ) -> list[M]:
        """GET a paginated listing and return the first page's ``values``."""
        data = await self.get(path, params=params)
        try:
            return Page[model].model_validate(data).values
        except ValidationError as e:
            raise BitbucketApiError(200, str(data)[:500], f"Unexpected response shape: {e}") from e

    # ── Workspaces & projects ─────────────────────────────────────

    async def list_workspaces(self) -> list[Workspace]:
        return await self._get_values("/workspaces", Workspace, {"pagelen": MAX_PAGE_SIZE})

    async def list_projects(self, workspace: str) -> list[Project]:
        ws = self._encode(workspace)
        return await self._get_values(
            f"/workspaces/{ws}/projects", Project, {"pagelen": MAX_PAGE_SIZE}
        )

    # ── Repositories ──────────────────────────────────────────────

    async def list_repositories(
        self, workspace: str, project_key: str | None = None
    ) -> list[Repository]:
        ws = self._encode(workspace)
        params: dict[str, Any] = {"pagelen": MAX_PAGE_SIZE, "sort": "-updated_on"}
        if project_key:
            params["q"] = f'project.key="{project_key}"'
        return await self._get_values(f"/repositories/{ws}", Repository, params)

    # ── Pipelines ─────────────────────────────────────────────────

    async def list_pipelines(
        self, workspace: str, repo_slug: str, limit: int = 10
    ) -> list[Pipeline]:
        """Most recent pipelines first."""
        ws, repo = self._encode(workspace), self._encode(repo_slug)
        params = {"sort": "-created_on", "pagelen": max(1, min(limit, MAX_PAGE_SIZE))}
        return await self._get_values(f"/repositories/{ws}/{repo}/pipelines/", Pipeline, params)

    async def latest_pipeline(
        self, workspace: str, repo_slug: str, branch: str | None = None
    ) -> Pipeline | None:
        """Return the newest pipeline, or the newest one on *branch* when given.

        Only the last ``LATEST_PIPELINE_WINDOW`` runs are searched, so a branch
        that has not built recently yields ``None``.
        """
        pipelines = await self.list_pipelines(workspace, repo_slug, LATEST_PIPELINE_WINDOW)
        if branch is not None:
            return next((p for p in pipelines if p.branch == branch), None)
        return pipelines[0] if pipelines else None

    async def pipeline_steps(
        self, workspace: str, repo_slug: str, pipeline_uuid: str
    ) -> list[PipelineStep]:
        ws, repo = self._encode(workspace), self._encode(repo_slug)
        uuid = self._encode(pipeline_uuid)
        return await self._get_values(
            f"/repositories/{ws}/{repo}/pipelines/{uuid}/steps/", PipelineStep
        )

    # ── Credentials ───────────────────────────────────────────────

    async def validate_credentials(self) -> bool:
        """Return False for rejected credentials; any other failure propagates."""
        try:
            await self.list_workspaces()
        except BitbucketAuthError:
            return False
        return True

    # ── Web links ─────────────────────────────────────────────────

    def pipelines_web_url(self, workspace: str, repo_slug: str) -> str:
        return f"{self.config.web_url}/{workspace}/{repo_slug}/pipelines"

    def pipeline_web_url(self, workspace: str, repo_slug: str, build_number: int) -> str:
        return f"{self.pipelines_web_url(workspace, repo_slug)}/results/{build_number}"
