"""Shared helper functions for server modules."""

from __future__ import annotations

import re
from urllib.parse import unquote

# ════════════════════════════════════════════════════════════════════
# Bitbucket URL parsing
# ════════════════════════════════════════════════════════════════════

# Matches:  <host>/<workspace>/<repo>[/anything]
_REPO_RE = re.compile(r"https?://[^/]+/([^/]+)/([^/?#]+)")
# Matches:  <workspace>/<repo>
_SLUG_RE = re.compile(r"^([\w.-]+)/([\w.-]+)$")


def _parse_bitbucket_repo(value: str) -> tuple[str, str]:
    """Extract (workspace, repo_slug) from ``workspace/repo`` or a Bitbucket URL.

    Raises ValueError when *value* is neither.
    """
    value = value.strip()
    m = _REPO_RE.match(value) if value.startswith(("http://", "https://")) else None
    m = m or _SLUG_RE.match(value)
    if not m:
        msg = f"Expected 'workspace/repo' or a Bitbucket repository URL, got: {value!r}"
        raise ValueError(msg)
    slug = unquote(m.group(2))
    if slug.endswith(".git"):
        slug = slug[:-4]
    return unquote(m.group(1)), slug
