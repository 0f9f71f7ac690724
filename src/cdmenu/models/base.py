"""Base model for Bitbucket API payloads."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class BitbucketModel(BaseModel):
    """Base for every Bitbucket payload and cdMenu status model.

    Bitbucket names several fields ``type``; they are exposed as
    ``*_type`` attributes and dumped back under the API's own key.
    """

    model_config = {"extra": "ignore", "populate_by_name": True}

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
