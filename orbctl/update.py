"""Checking for newer releases of the command-line tool."""

from __future__ import annotations

import json
import os
import platform
import shutil
import subprocess
import sys
import urllib.error
import urllib.request
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from semver import Version

from orbctl import settings, version

HOURS_BEFORE_CHECK = 28
DEFAULT_GITHUB_API = "https://api.github.com"
REQUEST_TIMEOUT = 30.0

_ARCHIVE_EXTENSIONS = (".zip", ".tar.gz", ".tgz", ".gzip", ".gz", ".tar.xz", ".xz", "")

_ARCHES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
    "x86": "386",
    "armv7l": "arm",
    "armv6l": "arm",
}

_RATE_LIMIT_HELP = """Failed to query the GitHub API for updates.

This is most likely due to GitHub rate-limiting on unauthenticated requests.

To have the circleci-cli make authenticated requests please:

  1. Generate a token at https://github.com/settings/tokens
  2. Set the token by either adding it to your ~/.gitconfig or
     setting the GITHUB_TOKEN environment variable.

Instructions for generating a token can be found at:
https://help.github.com/articles/creating-a-personal-access-token-for-the-command-line/

We call the GitHub releases API to look for new releases.
More information about that API can be found here: https://developer.github.com/v3/repos/releases/

"""


class UpdateError(Exception):
    """Raised when updates cannot be checked for or installed."""


@dataclass
class Release:
    """A published release of the tool with an asset for this platform."""

    version: Version
    published_at: str = ""
    name: str = ""
    url: str = ""
    asset_url: str = ""
    asset_id: int = 0
    asset_name: str = ""


@dataclass
class UpdateOptions:
    """Everything needed to check for, and perform, an update."""

    current: Version
    package_manager: str
    found: bool = False
    latest: Release | None = None
    github_api: str = ""
    slug: str = ""


def should_check_for_updates(upd: settings.UpdateCheck) -> bool:
    """Return True when the last update check is long enough ago."""
    last = upd.last_update_check
    if last.tzinfo is None:
        last = last.replace(tzinfo=timezone.utc)
    elapsed = datetime.now(timezone.utc) - last
    return elapsed.total_seconds() / 3600 >= HOURS_BEFORE_CHECK


def check_for_updates(
    github_api: str, slug: str, current: str, package_manager: str
) -> UpdateOptions:
    """Check for a newer release in the way suited to the package manager."""
    try:
        current_version = Version.parse(current)
    except ValueError as err:
        raise UpdateError(f"Failed to parse current version: {err}") from err

    check = UpdateOptions(
        current=current_version,
        package_manager=package_manager,
        github_api=github_api,
        slug=slug,
    )

    if package_manager in ("release", "source"):
        latest_release(check)
    elif package_manager == "homebrew":
        _check_from_homebrew(check)

    return check


def parse_homebrew_version(homebrew_version: str) -> Version:
    """Parse a Homebrew version, turning a ``_N`` revision into a pre-release tag."""
    with_revision_as_tag = homebrew_version.replace("_", "-", 10)
    try:
        return Version.parse(with_revision_as_tag)
    except (ValueError, TypeError) as err:
        raise UpdateError(
            f"failed to parse current version from {homebrew_version}: {err}"
        ) from err


def parse_homebrew_outdated(data: str | bytes) -> tuple[Version | None, Version] | None:
    """Read ``brew outdated --json=v2`` output.

    Returns the installed and the latest version of the ``circleci`` formula,
    or None when it is not listed as outdated.
    """
    try:
        outdated = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as err:
        raise UpdateError(f"failed to parse output of `brew outdated --json=v2`: {err}") from err
    if not isinstance(outdated, dict):
        raise UpdateError("failed to parse output of `brew outdated --json=v2`: expected an object")

    formulae = outdated.get("formulae") or []
    if not isinstance(formulae, list):
        raise UpdateError("failed to parse output of `brew outdated --json=v2`: expected a list of formulae")

    result: tuple[Version | None, Version] | None = None
    for formula in formulae:
        if not isinstance(formula, dict) or formula.get("name") != "circleci":
            continue
        installed_versions = formula.get("installed_versions") or []
        installed = parse_homebrew_version(str(installed_versions[0])) if installed_versions else None
        latest = parse_homebrew_version(str(formula.get("current_version") or ""))
        result = (installed, latest)
    return result


def _check_from_homebrew(check: UpdateOptions) -> None:
    brew = shutil.which("brew")
    if brew is None:
        raise UpdateError(
            "Expected to find `brew` in your $PATH but wasn't able to find it: "
            'exec: "brew": executable file not found in $PATH'
        )
    try:
        result = subprocess.run(
            [brew, "outdated", "--json=v2"],
            stdout=subprocess.PIPE,
            check=False,
        )
    except OSError as err:
        raise UpdateError(
            f"failed to check for updates. `brew outdated --json=v2` returned an error: {err}"
        ) from err
    if result.returncode != 0:
        raise UpdateError(
            "failed to check for updates. `brew outdated --json=v2` returned an error: "
            f"exit status {result.returncode}"
        )

    found = parse_homebrew_outdated(result.stdout)
    if found is None:
        return
    installed, latest = found
    if installed is not None:
        check.current = installed
    check.latest = Release(version=latest)
    check.found = True


def _platform_suffix() -> str:
    if sys.platform.startswith("linux"):
        os_name = "linux"
    elif sys.platform == "darwin":
        os_name = "darwin"
    elif sys.platform in ("win32", "cygwin"):
        os_name = "windows"
    else:
        os_name = sys.platform
    machine = platform.machine().lower()
    return f"{os_name}_{_ARCHES.get(machine, machine)}"


def _github_request(url: str, accept: str) -> urllib.request.Request:
    headers = {"Accept": accept, "User-Agent": version.user_agent()}
    token = os.environ.get("GITHUB_TOKEN", "")
    if token:
        headers["Authorization"] = f"token {token}"
    return urllib.request.Request(url, headers=headers)


def _fetch_json(url: str) -> Any:
    request = _github_request(url, "application/vnd.github.v3+json")
    try:
        with urllib.request.urlopen(request, timeout=REQUEST_TIMEOUT) as response:
            body = response.read()
    except urllib.error.HTTPError as err:
        raise UpdateError(f"GET {url}: {err.code} {err.reason}") from err
    except (urllib.error.URLError, OSError) as err:
        raise UpdateError(f"GET {url}: {err}") from err
    try:
        return json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as err:
        raise UpdateError(f"GET {url}: invalid response: {err}") from err


def _find_asset(assets: list[Any], suffix: str) -> dict[str, Any] | None:
    wanted = tuple(f"{suffix}{ext}" for ext in _ARCHIVE_EXTENSIONS)
    for asset in assets:
        if isinstance(asset, dict) and str(asset.get("name") or "").endswith(wanted):
            return asset
    return None


def _detect_latest(github_api: str, slug: str) -> Release | None:
    base = (github_api or DEFAULT_GITHUB_API).rstrip("/")
    releases = _fetch_json(f"{base}/repos/{slug}/releases")
    if not isinstance(releases, list):
        raise UpdateError(f"GET {base}/repos/{slug}/releases: expected a list of releases")

    suffix = _platform_suffix()
    best: Release | None = None
    for entry in releases:
        if not isinstance(entry, dict) or entry.get("draft") or entry.get("prerelease"):
            continue
        tag = str(entry.get("tag_name") or "")
        try:
            release_version = Version.parse(tag.removeprefix("v"))
        except ValueError:
            continue
        asset = _find_asset(entry.get("assets") or [], suffix)
        if asset is None:
            continue
        if best is not None and release_version <= best.version:
            continue
        asset_id = int(asset.get("id") or 0)
        best = Release(
            version=release_version,
            published_at=str(entry.get("published_at") or ""),
            name=str(entry.get("name") or ""),
            url=str(entry.get("html_url") or ""),
            asset_url=f"{base}/repos/{slug}/releases/assets/{asset_id}",
            asset_id=asset_id,
            asset_name=str(asset.get("name") or ""),
        )
    return best


def latest_release(opts: UpdateOptions) -> None:
    """Look up the latest release and record it (and whether one was found) on ``opts``."""
    try:
        latest = _detect_latest(opts.github_api, opts.slug)
    except UpdateError as err:
        opts.latest = None
        opts.found = False
        raise UpdateError(f"{_RATE_LIMIT_HELP}: {err}") from err
    opts.latest = latest
    opts.found = latest is not None


def is_latest_version(opts: UpdateOptions) -> bool:
    """Return True when the current version is the latest one available."""
    if opts.current is None or opts.latest is None:
        return True
    return opts.latest.version == opts.current


def _require_latest(opts: UpdateOptions) -> Release:
    if opts.latest is None:
        raise UpdateError("no release was found")
    return opts.latest


def debug_version(opts: UpdateOptions) -> str:
    """Describe the latest and current versions for debugging."""
    latest = _require_latest(opts)
    return "\n".join(
        [
            f"Latest version: {latest.version}",
            f"Published: {latest.published_at}",
            f"Current Version: {opts.current}",
        ]
    )


def report_version(opts: UpdateOptions) -> str:
    """Tell the user which version runs and which one is available."""
    latest = _require_latest(opts)
    return "\n".join(
        [
            f"You are running {opts.current}",
            f"A new release is available ({latest.version})",
        ]
    )


def how_to_update(opts: UpdateOptions) -> str:
    """Tell the user how to update, given how the tool was installed."""
    if opts.package_manager == "homebrew":
        return "You can update with `brew upgrade circleci`"
    if opts.package_manager == "release":
        return "You can update with `circleci update install`"
    if opts.package_manager == "source":
        return "\n".join(
            [
                "You can visit the Github releases page for the CLI to manually download and install:",
                "https://github.com/CircleCI-Public/circleci-cli/releases",
            ]
        )
    return ""