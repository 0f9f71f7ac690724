"""Display models handed to the tray/menu collaborator."""

from __future__ import annotations

from enum import Enum

from .base import BitbucketModel
from .status import PipelineStatus


class TrayState(str, Enum):
    HEALTHY = "healthy"
    FAILED = "failed"
    # Loading, or nothing configured
    UNCONFIGURED = "unconfigured"


class MenuEntry(BitbucketModel):
    id: str
    label: str
    status: PipelineStatus
    url: str | None = None
    stage_name: str | None = None

    @property
    def enabled(self) -> bool:
        return self.url is not None


class MenuSection(BitbucketModel):
    title: str
    entries: list[MenuEntry] = []


class MenuModel(BitbucketModel):
    sections: list[MenuSection] = []
    last_checked: str | None = None
    # Shown instead of sections when there is no status yet
    placeholder: str | None = None
