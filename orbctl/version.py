"""Version information for the command-line tool."""

from __future__ import annotations

import os

VERSION = "0.0.0-dev"
COMMIT = "dirty-local-tree"

# Overridden by packaged builds to name the package manager that installed the tool.
_PACKAGE_MANAGER = "source"


def running_inside_snap() -> bool:
    """Return True when running inside the snap container."""
    return os.environ.get("SNAP_NAME") == "circleci"


def package_manager() -> str:
    """Return the package manager that installed this tool."""
    if running_inside_snap():
        return "snap"
    return _PACKAGE_MANAGER


def user_agent() -> str:
    """Return the user agent used for external requests."""
    return f"circleci-cli/{VERSION}+{COMMIT} ({package_manager()})"