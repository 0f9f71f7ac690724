"""Common Bitbucket models shared across domains."""

from __future__ import annotations

from typing import Generic, TypeVar

from .base import BitbucketModel

T = TypeVar("T")


class Page(BitbucketModel, Generic[T]):
    """Paginated envelope. Only ``values`` is consumed; ``next`` is never followed."""

    values: list[T] = []
    page: int | None = None
    size: int | None = None
    pagelen: int | None = None
    next: str | None = None
