"""Inspection of the git repository in the current working directory."""

from __future__ import annotations

import enum
import re
import shutil
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass


class VcsType(str, enum.Enum):
    """Supported version control hosting providers."""

    GITHUB = "GITHUB"
    BITBUCKET = "BITBUCKET"


@dataclass(frozen=True)
class Remote:
    """A project hosted by a VCS provider."""

    vcs_type: VcsType
    organization: str
    project: str


class GitError(Exception):
    """Raised when git cannot be used or its output cannot be understood."""


_VCS_PARSERS: dict[VcsType, tuple[re.Pattern[str], ...]] = {
    VcsType.GITHUB: (
        re.compile(r"^(?:ssh://)?git@github\.com[:/](.*)"),
        re.compile(r"https://(?:.*@)?github\.com/(.*)"),
    ),
    VcsType.BITBUCKET: (
        re.compile(r"^(?:ssh://)?git@bitbucket\.org[:/](.*)"),
        re.compile(r"https://(?:.*@)?bitbucket\.org/(.*)"),
    ),
}


def _combined_output(args: Sequence[str]) -> tuple[int, str]:
    result = subprocess.run(
        list(args),
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        check=False,
    )
    return result.returncode, result.stdout or ""


def infer_project_from_git_remotes() -> Remote:
    """Infer the hosted project from the ``origin`` remote."""
    return find_remote(get_remote_url("origin"))


def find_remote(url: str) -> Remote:
    """Parse a remote URL into provider, organization and project."""
    vcs_type, slug = find_provider_and_slug(url)
    parts = slug.split("/")
    if len(parts) != 2:
        raise GitError(f"Splitting '{slug}' into organization and project failed")
    organization, project = parts
    return Remote(
        vcs_type=vcs_type,
        organization=organization,
        project=project.removesuffix(".git"),
    )


def find_provider_and_slug(url: str) -> tuple[VcsType, str]:
    """Return the provider and the ``org/project`` part of a remote URL."""
    for provider, patterns in _VCS_PARSERS.items():
        for pattern in patterns:
            match = pattern.search(url)
            if match is not None:
                return provider, match.group(1)
    raise GitError(f"Unknown git remote: {url}")


def get_remote_url(remote_name: str) -> str:
    """Return the raw output of ``git remote get-url`` for ``remote_name``."""
    if shutil.which("git") is None:
        raise GitError(
            "Could not find 'git' on the path; this command requires git to be installed."
        )

    try:
        code, output = _combined_output(["git", "status"])
    except OSError:
        code, output = 1, ""
    if code != 0 and "not a git repository" in output:
        raise GitError("This command must be run from inside a git repository")

    try:
        code, output = _combined_output(["git", "remote", "get-url", remote_name])
    except OSError as err:
        raise GitError(f"Error finding the {remote_name} git remote: {err}") from err
    if code != 0:
        raise GitError(
            f"Error finding the {remote_name} git remote: {output.strip()}"
        )
    return output


def command_output_or_default(args: Sequence[str], default_value: str) -> str:
    """Run a command and return its trimmed output, or the default on failure."""
    try:
        code, output = _combined_output(args)
    except OSError:
        return default_value
    if code != 0:
        return default_value
    return output.strip()


def branch() -> str:
    """Return the current branch name, or ``master`` if it cannot be found."""
    return command_output_or_default(["git", "rev-parse", "--abbrev-ref", "HEAD"], "master")


def revision() -> str:
    """Return the current commit SHA, or a zero SHA if it cannot be found."""
    return command_output_or_default(["git", "rev-parse", "HEAD"], "0" * 40)


def tag() -> str:
    """Return the tags pointing at HEAD, or an empty string."""
    return command_output_or_default(["git", "tag", "--points-at", "HEAD"], "")