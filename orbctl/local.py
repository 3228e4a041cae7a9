"""Running a job locally inside the build agent container."""

from __future__ import annotations

import enum
import json
import os
import re
import shutil
import subprocess
import tempfile
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any, TextIO

from orbctl import settings

PICARD_REPO = "circleci/picard"
DEFAULT_CONFIG_PATH = ".circleci/config.yml"
CONFIG_PATH_INSIDE_CONTAINER = "/tmp/local_build_config.yml"

_SHA256 = re.compile(r"sha256:[0-9a-f]+", re.MULTILINE)
_CONSUMED_FLAGS = frozenset({"org-slug", "config", "debug"})
_TRUE = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE = frozenset({"0", "f", "F", "FALSE", "false", "False"})


class LocalError(Exception):
    """Raised when a local build cannot be prepared or started."""


class _Kind(enum.Enum):
    STRING = "string"
    INT = "int"
    BOOL = "bool"
    STRING_ARRAY = "stringArray"


@dataclass(frozen=True)
class _FlagSpec:
    kind: _Kind
    default: Any
    shorthand: str = ""


# Flags understood by the build agent, plus the ones this tool consumes itself.
_FLAGS: dict[str, _FlagSpec] = {
    "config": _FlagSpec(_Kind.STRING, DEFAULT_CONFIG_PATH, "c"),
    "job": _FlagSpec(_Kind.STRING, "build"),
    "node-total": _FlagSpec(_Kind.INT, 1),
    "index": _FlagSpec(_Kind.INT, 0),
    "skip-checkout": _FlagSpec(_Kind.BOOL, True),
    "volume": _FlagSpec(_Kind.STRING_ARRAY, (), "v"),
    "checkout-key": _FlagSpec(_Kind.STRING, "~/.ssh/id_rsa"),
    "revision": _FlagSpec(_Kind.STRING, ""),
    "branch": _FlagSpec(_Kind.STRING, ""),
    "repo-url": _FlagSpec(_Kind.STRING, ""),
    "env": _FlagSpec(_Kind.STRING_ARRAY, (), "e"),
    "debug": _FlagSpec(_Kind.BOOL, False),
    "org-slug": _FlagSpec(_Kind.STRING, ""),
}
_SHORTHANDS = {spec.shorthand: name for name, spec in _FLAGS.items() if spec.shorthand}


def _initial_values() -> dict[str, Any]:
    return {
        name: list(spec.default) if spec.kind is _Kind.STRING_ARRAY else spec.default
        for name, spec in _FLAGS.items()
    }


@dataclass
class LocalFlags:
    """Parsed flags for a local build: values, which were set, and positional args."""

    values: dict[str, Any] = field(default_factory=_initial_values)
    changed: set[str] = field(default_factory=set)
    args: list[str] = field(default_factory=list)

    def __getitem__(self, name: str) -> Any:
        return self.values[name]

    def _set(self, name: str, raw: str, display: str) -> None:
        kind = _FLAGS[name].kind
        if kind is _Kind.STRING:
            self.values[name] = raw
        elif kind is _Kind.INT:
            try:
                self.values[name] = int(raw, 0)
            except ValueError as err:
                raise LocalError(
                    f'invalid argument "{raw}" for "{display}" flag: {err}'
                ) from err
        elif kind is _Kind.BOOL:
            if raw in _TRUE:
                self.values[name] = True
            elif raw in _FALSE:
                self.values[name] = False
            else:
                raise LocalError(f'invalid argument "{raw}" for "{display}" flag')
        elif name in self.changed:
            self.values[name].append(raw)
        else:
            self.values[name] = [raw]
        self.changed.add(name)

    def _value_string(self, name: str) -> str:
        value = self.values[name]
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)


class HelpRequested(LocalError):
    """Raised when ``-h`` or ``--help`` is given; ``flags`` holds what was parsed so far."""

    def __init__(self, flags: LocalFlags) -> None:
        super().__init__("pflag: help requested")
        self.flags = flags


def _parse_long(flags: LocalFlags, body: str, rest: Iterator[str]) -> None:
    name, sep, value = body.partition("=")
    if not name or name.startswith("-"):
        raise LocalError(f"bad flag syntax: --{body}")
    spec = _FLAGS.get(name)
    if spec is None:
        if name == "help":
            raise HelpRequested(flags)
        raise LocalError(f"unknown flag: --{name}")
    display = f"--{name}"
    if sep:
        flags._set(name, value, display)
    elif spec.kind is _Kind.BOOL:
        flags._set(name, "true", display)
    else:
        following = next(rest, None)
        if following is None:
            raise LocalError(f"flag needs an argument: {display}")
        flags._set(name, following, display)


def _parse_short(flags: LocalFlags, body: str, rest: Iterator[str]) -> None:
    shorthands = body
    while shorthands:
        char, remainder = shorthands[0], shorthands[1:]
        name = _SHORTHANDS.get(char)
        if name is None:
            if char == "h":
                raise HelpRequested(flags)
            raise LocalError(f"unknown shorthand flag: '{char}' in -{body}")
        display = f"-{char}, --{name}"
        if remainder.startswith("="):
            flags._set(name, remainder[1:], display)
            return
        if _FLAGS[name].kind is _Kind.BOOL:
            flags._set(name, "true", display)
            shorthands = remainder
            continue
        if remainder:
            flags._set(name, remainder, display)
            return
        following = next(rest, None)
        if following is None:
            raise LocalError(f"flag needs an argument: '{char}' in -{body}")
        flags._set(name, following, display)
        return


def parse_flags(args: Sequence[str]) -> LocalFlags:
    """Parse command-line arguments for a local build, flags and positionals interspersed."""
    flags = LocalFlags()
    rest = iter(args)
    for arg in rest:
        if arg == "--":
            flags.args.extend(rest)
            break
        if arg.startswith("--"):
            _parse_long(flags, arg[2:], rest)
        elif arg.startswith("-") and arg != "-":
            _parse_short(flags, arg[1:], rest)
        else:
            flags.args.append(arg)
    return flags


def _unparse_flag(flags: LocalFlags, name: str) -> list[str]:
    flag_name = f"--{name}"
    if _FLAGS[name].kind is _Kind.STRING_ARRAY:
        return [part for value in flags[name] for part in (flag_name, value)]
    return [flag_name, flags._value_string(name)]


def build_agent_arguments(flags: LocalFlags) -> tuple[list[str], str]:
    """Return the arguments to pass on to the build agent and the local config path.

    Flags consumed here (``config``, ``debug`` and ``org-slug``) are left out;
    the rest are passed on in name order, followed by positional arguments.
    """
    result = [
        part
        for name in sorted(flags.changed)
        if name not in _CONSUMED_FLAGS
        for part in _unparse_flag(flags, name)
    ]
    result.extend(flags.args)
    return result, flags["config"]


def generate_docker_command(config_path: str, image: str, pwd: str, *args: str) -> list[str]:
    """Return the ``docker run`` command line that starts the build agent."""
    return [
        "docker", "run", "--interactive", "--tty", "--rm",
        "--volume", "/var/run/docker.sock:/var/run/docker.sock",
        "--volume", f"{config_path}:{CONFIG_PATH_INSIDE_CONTAINER}",
        "--volume", f"{pwd}:{pwd}",
        "--volume", f"{settings.settings_path()}:/root/.circleci",
        "--workdir", pwd,
        image, "circleci", "build", "--config", CONFIG_PATH_INSIDE_CONTAINER,
        *args,
    ]


def write_string_to_temp_file(data: str) -> str:
    """Write ``data`` to a new file in ``/tmp`` (shared with Docker) and return its path."""
    try:
        handle = tempfile.NamedTemporaryFile(
            mode="w", dir="/tmp", suffix="_circleci_config.yml", delete=False, encoding="utf-8"
        )
    except OSError as err:
        raise LocalError(f"Error creating temporary config file: {err}") from err
    with handle:
        try:
            handle.write(data)
        except OSError as err:
            raise LocalError(
                f"Error writing processed config to temporary file: {err}"
            ) from err
    return handle.name


def build_agent_settings_path() -> str:
    """Return the path of the file that records the build agent version."""
    return os.path.join(settings.settings_path(), "build_agent_settings.json")


def store_build_agent_sha(sha256: str) -> None:
    """Record ``sha256`` as the build agent image digest to use."""
    encoded = json.dumps({"LatestSha256": sha256}, separators=(",", ":"))
    try:
        os.makedirs(settings.settings_path(), mode=0o700, exist_ok=True)
    except OSError as err:
        raise LocalError(f"Could not create settings directory: {err}") from err
    try:
        descriptor = os.open(
            build_agent_settings_path(), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644
        )
        with os.fdopen(descriptor, "w", encoding="utf-8") as handle:
            handle.write(encoded)
    except OSError as err:
        raise LocalError(f"Failed to write build agent settings file: {err}") from err


def load_current_build_agent_sha() -> str:
    """Return the recorded build agent digest, or an empty string if none is stored."""
    path = build_agent_settings_path()
    if not os.path.exists(path):
        return ""
    try:
        with open(path, encoding="utf-8") as handle:
            content = handle.read()
    except OSError as err:
        raise LocalError(f"Could not open build settings config: {err}") from err
    try:
        stored = json.loads(content)
    except json.JSONDecodeError as err:
        raise LocalError(f"Could not parse build settings config: {err}") from err
    if not isinstance(stored, dict):
        raise LocalError("Could not parse build settings config: expected an object")
    sha = stored.get("LatestSha256") or ""
    return str(sha)


def picard_image(output: TextIO) -> str:
    """Return the build agent image reference, pulling the latest one if none is recorded."""
    try:
        sha = load_current_build_agent_sha()
    except LocalError as err:
        print(f"Failed to load build agent settings: {err}")
        sha = ""

    if not sha:
        print("Downloading latest CircleCI build agent...")
        sha = find_latest_picard_sha()

    output.write(f"Docker image digest: {sha}\n")
    return f"{PICARD_REPO}@{sha}"


def ensure_docker_is_available() -> str:
    """Return the path of a working ``docker`` executable."""
    docker_path = shutil.which("docker")
    if docker_path is None:
        raise LocalError(
            "could not find `docker` on the PATH; please ensure that docker is installed"
        )
    try:
        running = (
            subprocess.run(
                [docker_path, "version"],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                check=False,
            ).returncode
            == 0
        )
    except OSError:
        running = False
    if not running:
        raise LocalError(
            "failed to connect to docker; please ensure that docker is running, "
            "and that `docker version` succeeds"
        )
    return docker_path


def find_latest_picard_sha() -> str:
    """Pull the latest build agent image, record its digest and return it."""
    ensure_docker_is_available()
    try:
        result = subprocess.run(
            ["docker", "pull", PICARD_REPO],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            check=False,
        )
    except OSError as err:
        raise LocalError(f"failed to pull latest docker image: {err}") from err
    if result.returncode != 0:
        raise LocalError(
            f"failed to pull latest docker image: exit status {result.returncode}"
        )

    match = _SHA256.search(result.stdout or "")
    if match is None:
        raise LocalError("failed to parse sha256 from docker pull output")

    latest = match.group(0)
    store_build_agent_sha(latest)
    return latest


def update_build_agent() -> None:
    """Pull the latest build agent and report its version."""
    latest = find_latest_picard_sha()
    print(f"Latest build agent is version {latest}")