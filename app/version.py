"""
Version information for Art Framer.

Single source of truth: pyproject.toml
Runtime access via importlib.metadata with fallback.
"""

from __future__ import annotations

import os
from functools import lru_cache
from importlib.metadata import PackageNotFoundError, version
from typing import Any

# Fallback version if package metadata unavailable (dev mode)
_FALLBACK_VERSION = "0.1.0"

PACKAGE_NAME = "art-framer"


def get_version() -> str:
    """Get the package version from metadata or fallback."""
    try:
        return version(PACKAGE_NAME)
    except PackageNotFoundError:
        return _FALLBACK_VERSION


VERSION = get_version()


@lru_cache(maxsize=1)
def get_build_info() -> dict[str, str | None]:
    """
    Build metadata injected by the deploy pipeline.

    Returns:
        dict with commit hash and branch name, when available
    """
    commit = os.environ.get("GIT_COMMIT")
    return {
        "commit": commit[:8] if commit else None,
        "branch": os.environ.get("GIT_BRANCH"),
    }


def get_version_info() -> dict[str, Any]:
    return {"version": VERSION, **get_build_info()}
