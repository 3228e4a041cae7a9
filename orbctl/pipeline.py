"""Pipeline values fabricated for validating configuration locally."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from orbctl import git


@dataclass(frozen=True)
class KeyVal:
    """A key/value pair, as sent to GraphQL in place of a free-form map."""

    key: str
    val: str


def fabricated_values() -> dict[str, str]:
    """Return stand-in ``<< pipeline.x >>`` values for the local repository."""
    rev = git.revision()
    git_url = "https://github.com/CircleCI-Public/circleci-cli"
    project_type = "github"

    try:
        remote = git.infer_project_from_git_remotes()
    except git.GitError:
        remote = None

    if remote is not None:
        if remote.vcs_type is git.VcsType.GITHUB:
            git_url = f"https://github.com/{remote.organization}/{remote.project}"
            project_type = "github"
        elif remote.vcs_type is git.VcsType.BITBUCKET:
            git_url = f"https://bitbucket.org/{remote.organization}/{remote.project}"
            project_type = "bitbucket"

    return {
        "id": "00000000-0000-0000-0000-000000000001",
        "number": "1",
        "project.git_url": git_url,
        "project.type": project_type,
        "git.tag": git.tag(),
        "git.branch": git.branch(),
        "git.revision": rev,
        "git.base_revision": rev,
    }


def prepare_for_graphql(values: Mapping[str, str]) -> list[KeyVal]:
    """Turn a mapping into key/value pairs sorted by key."""
    return [KeyVal(key=key, val=values[key]) for key in sorted(values)]