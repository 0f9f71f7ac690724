"""Workspace, project and repository models."""

from __future__ import annotations

from .base import BitbucketModel


class Workspace(BitbucketModel):
    uuid: str = ""
    slug: str = ""
    name: str = ""


class Project(BitbucketModel):
    uuid: str = ""
    key: str = ""
    name: str = ""


class Repository(BitbucketModel):
    uuid: str = ""
    slug: str = ""
    name: str = ""
    full_name: str = ""
    project: Project | None = None
