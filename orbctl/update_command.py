"""The ``update`` command: check for and install newer releases of the tool."""

from __future__ import annotations

import gzip
import io
import lzma
import os
import posixpath
import stat
import sys
import tarfile
import tempfile
import urllib.error
import urllib.request
import zipfile

from orbctl import settings, update, version

SLUG = "CircleCI-Public/circleci-cli"


def update_cli(config: settings.Config, dry_run: bool) -> None:
    """Check for a newer release and, unless ``dry_run``, install it."""
    check = update.check_for_updates(
        config.github_api, SLUG, version.VERSION, version.package_manager()
    )

    if not check.found:
        print("No updates found.")
        return

    if update.is_latest_version(check):
        print("Already up-to-date.")
        return

    if config.debug:
        print(update.debug_version(check))
    print(update.report_version(check))

    if dry_run:
        print(update.how_to_update(check))
        return

    print(_install_latest(check))


def _download(url: str) -> bytes:
    headers = {"Accept": "application/octet-stream", "User-Agent": version.user_agent()}
    token = os.environ.get("GITHUB_TOKEN", "")
    if token:
        headers["Authorization"] = f"token {token}"
    request = urllib.request.Request(url, headers=headers)
    try:
        with urllib.request.urlopen(request, timeout=update.REQUEST_TIMEOUT) as response:
            return response.read()
    except urllib.error.HTTPError as err:
        raise update.UpdateError(f"GET {url}: {err.code} {err.reason}") from err
    except (urllib.error.URLError, OSError) as err:
        raise update.UpdateError(f"GET {url}: {err}") from err


def _matches(member_name: str, command_name: str) -> bool:
    base = posixpath.basename(member_name.replace("\\", "/"))
    return base in (command_name, f"{command_name}.exe")


def _extract_executable(payload: bytes, asset_name: str, command_name: str) -> bytes:
    name = asset_name.lower()
    try:
        if name.endswith(".zip"):
            with zipfile.ZipFile(io.BytesIO(payload)) as archive:
                for info in archive.infolist():
                    if not info.is_dir() and _matches(info.filename, command_name):
                        return archive.read(info)
            raise update.UpdateError(f"executable {command_name} is not found in zip file")
        if name.endswith((".tar.gz", ".tgz", ".tar.xz")):
            mode = "r:xz" if name.endswith(".tar.xz") else "r:gz"
            with tarfile.open(fileobj=io.BytesIO(payload), mode=mode) as archive:
                for member in archive:
                    if member.isfile() and _matches(member.name, command_name):
                        handle = archive.extractfile(member)
                        if handle is not None:
                            return handle.read()
            raise update.UpdateError(f"executable {command_name} is not found in tar file")
        if name.endswith((".gz", ".gzip")):
            return gzip.decompress(payload)
        if name.endswith(".xz"):
            return lzma.decompress(payload)
    except (zipfile.BadZipFile, tarfile.TarError, lzma.LZMAError, OSError, EOFError) as err:
        raise update.UpdateError(f"failed to decompress {asset_name}: {err}") from err
    return payload


def _replace_executable(path: str, content: bytes) -> None:
    directory = os.path.dirname(path) or "."
    try:
        mode = stat.S_IMODE(os.stat(path).st_mode)
    except FileNotFoundError:
        mode = 0o755
    descriptor, temporary = tempfile.mkstemp(dir=directory, prefix=".", suffix=".new")
    try:
        with os.fdopen(descriptor, "wb") as handle:
            handle.write(content)
        os.chmod(temporary, mode)
        os.replace(temporary, path)
    except BaseException:
        if os.path.exists(temporary):
            os.unlink(temporary)
        raise


def _install_latest(check: update.UpdateOptions) -> str:
    latest = check.latest
    if latest is None:
        raise update.UpdateError("failed to install update: no release was found")
    if latest.version <= check.current:
        return f"Updated to {check.current}"
    if not latest.asset_url:
        raise update.UpdateError("failed to install update: the release has no asset to download")

    executable = os.path.realpath(sys.argv[0])
    command_name = os.path.basename(executable).removesuffix(".exe")
    try:
        payload = _download(latest.asset_url)
        content = _extract_executable(payload, latest.asset_name, command_name)
        _replace_executable(executable, content)
    except update.UpdateError as err:
        raise update.UpdateError(f"failed to install update: {err}") from err
    except OSError as err:
        raise update.UpdateError(f"failed to install update: {err}") from err

    return f"Updated to {latest.version}"