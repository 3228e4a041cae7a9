"""User settings for the command-line tool, stored as YAML in the home directory."""

from __future__ import annotations

import dataclasses
import os
import ssl
import stat
import sys
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml

CONFIG_FILENAME = "cli.yml"
UPDATE_CHECK_FILENAME = "update_check.yml"
ENV_PREFIX = "circleci_cli"
HTTP_TIMEOUT = 30.0

_NEVER = datetime(1, 1, 1, tzinfo=timezone.utc)


class SettingsError(Exception):
    """Raised when settings cannot be validated or used."""


class _Dumper(yaml.SafeDumper):
    """YAML dumper that quotes scalars with double quotes when quoting is needed."""

    def choose_scalar_style(self):  # type: ignore[no-untyped-def]
        style = super().choose_scalar_style()
        return '"' if style == "'" else style


def _dump(data: Mapping[str, Any]) -> str:
    return yaml.dump(
        dict(data),
        Dumper=_Dumper,
        sort_keys=False,
        default_flow_style=False,
        indent=4,
        allow_unicode=True,
        width=1 << 30,
    )


def _write_private(path: str, text: str) -> None:
    descriptor = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(descriptor, "w", encoding="utf-8") as handle:
        handle.write(text)


def _read_text(path: str) -> str:
    with open(path, encoding="utf-8") as handle:
        return handle.read()


def _as_str(value: Any) -> str:
    return "" if value is None else str(value)


def _as_bool(value: Any) -> bool:
    return False if value is None else bool(value)


@dataclass
class OrbPublishingInfo:
    """Defaults used when publishing orbs."""

    default_namespace: str = ""
    default_vcs_provider: str = ""
    default_owner: str = ""

    def _to_dict(self) -> dict[str, str]:
        return {
            "default_namespace": self.default_namespace,
            "default_vcs_provider": self.default_vcs_provider,
            "default_owner": self.default_owner,
        }

    def _apply(self, values: Mapping[str, Any]) -> None:
        for name in ("default_namespace", "default_vcs_provider", "default_owner"):
            if name in values:
                setattr(self, name, _as_str(values[name]))


_STRING_FIELDS = ("host", "endpoint", "token", "rest_endpoint", "tls_cert")


@dataclass
class Config:
    """The current state of a CLI instance."""

    host: str = ""
    endpoint: str = ""
    token: str = ""
    rest_endpoint: str = ""
    tls_cert: str = ""
    tls_insecure: bool = False
    orb_publishing: OrbPublishingInfo = dataclasses.field(default_factory=OrbPublishingInfo)
    ssl_context: ssl.SSLContext | None = dataclasses.field(
        default=None, repr=False, compare=False
    )
    http_timeout: float = HTTP_TIMEOUT
    debug: bool = False
    address: str = ""
    file_used: str = ""
    github_api: str = ""
    skip_update_check: bool = False

    def load(self) -> None:
        """Read the config from disk, then apply overrides from the environment."""
        self.load_from_disk()
        self.load_from_env(ENV_PREFIX)

    def load_from_disk(self) -> None:
        """Read the config file, creating it if missing, and set up TLS."""
        path = os.path.join(settings_path(), CONFIG_FILENAME)
        ensure_settings_file_exists(path)
        self.file_used = path

        content = _read_text(path)
        try:
            values = yaml.safe_load(content)
        except yaml.YAMLError:
            return
        if values is not None and not isinstance(values, Mapping):
            return
        if values:
            self._apply(values)

        self.with_http_client()

    def write_to_disk(self) -> None:
        """Serialize the persisted settings to ``file_used``."""
        _write_private(self.file_used, _dump(self._to_dict()))

    def load_from_env(self, prefix: str) -> None:
        """Override host, endpoints and token from prefixed environment variables."""
        for name in ("host", "rest_endpoint", "endpoint", "token"):
            value = read_from_env(prefix, name)
            if value:
                setattr(self, name, value)

    def with_http_client(self) -> None:
        """Build the TLS context and timeout used for HTTP requests."""
        if self.tls_cert:
            try:
                validate_tls_cert_path(self.tls_cert)
            except (OSError, SettingsError) as err:
                raise SettingsError(f"invalid tls cert provided: {err}") from err

            try:
                pem_data = _read_text(self.tls_cert)
            except (OSError, UnicodeDecodeError) as err:
                raise SettingsError(f"unable to read tls cert: {err}") from err

            context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
            try:
                context.load_verify_locations(cadata=pem_data)
            except (ssl.SSLError, ValueError) as err:
                raise SettingsError("unable to parse certificates") from err
        else:
            context = ssl.create_default_context()

        if self.tls_insecure:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE

        self.ssl_context = context
        self.http_timeout = HTTP_TIMEOUT

    def _to_dict(self) -> dict[str, Any]:
        return {
            "host": self.host,
            "endpoint": self.endpoint,
            "token": self.token,
            "rest_endpoint": self.rest_endpoint,
            "tls_cert": self.tls_cert,
            "tls_insecure": self.tls_insecure,
            "orb_publishing": self.orb_publishing._to_dict(),
        }

    def _apply(self, values: Mapping[str, Any]) -> None:
        for name in _STRING_FIELDS:
            if name in values:
                setattr(self, name, _as_str(values[name]))
        if "tls_insecure" in values:
            self.tls_insecure = _as_bool(values["tls_insecure"])
        publishing = values.get("orb_publishing")
        if isinstance(publishing, Mapping):
            self.orb_publishing._apply(publishing)


def _as_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        result = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            result = datetime.fromisoformat(text)
        except ValueError as err:
            raise SettingsError(f"invalid last_update_check value: {value}") from err
    elif value is None:
        return _NEVER
    else:
        raise SettingsError(f"invalid last_update_check value: {value}")
    if result.tzinfo is None:
        result = result.replace(tzinfo=timezone.utc)
    return result


@dataclass
class UpdateCheck:
    """Settings that record when updates of the CLI were last checked."""

    last_update_check: datetime = _NEVER
    file_used: str = ""

    def load(self) -> None:
        """Read the update check settings, creating the file if missing."""
        path = os.path.join(settings_path(), UPDATE_CHECK_FILENAME)
        ensure_settings_file_exists(path)
        self.file_used = path

        try:
            values = yaml.safe_load(_read_text(path))
        except yaml.YAMLError as err:
            raise SettingsError(str(err)) from err
        if values is None:
            return
        if not isinstance(values, Mapping):
            raise SettingsError(f"unexpected content in {path}")
        if "last_update_check" in values:
            self.last_update_check = _as_datetime(values["last_update_check"])

    def write_to_disk(self) -> None:
        """Serialize the last update check to ``file_used``."""
        _write_private(self.file_used, _dump({"last_update_check": self.last_update_check}))


def read_from_env(prefix: str, field: str) -> str:
    """Return ``$PREFIX_FIELD`` (upper-cased), or an empty string."""
    name = f"{prefix}_{field}".upper()
    return os.environ.get(name, "")


def settings_path() -> str:
    """Return the directory that holds the CLI settings."""
    return os.path.join(str(Path.home()), ".circleci")


def ensure_settings_file_exists(path: str) -> None:
    """Create ``path`` (and its directory) with private permissions if missing."""
    try:
        os.stat(path)
        return
    except FileNotFoundError:
        pass

    os.makedirs(os.path.dirname(path) or ".", mode=0o700, exist_ok=True)
    with open(path, "a", encoding="utf-8"):
        pass
    os.chmod(path, 0o600)


def validate_tls_cert_path(path: str) -> None:
    """Check that ``path`` is a file and that neither it nor its parents are world-writable."""
    info = os.stat(path)
    if stat.S_ISDIR(info.st_mode):
        raise SettingsError("provided TLSCert path must be a file")

    if sys.platform == "win32":
        return

    current = path
    while current not in (".", "/"):
        info = os.stat(current)
        if is_world_writable(info.st_mode):
            raise SettingsError(f"{current} cannot be world-writable")
        parent = os.path.dirname(current) or "."
        if parent == current:
            break
        current = parent


def is_world_writable(mode: int) -> bool:
    """Return True when ``mode`` grants write permission to others."""
    return bool(mode & stat.S_IWOTH)