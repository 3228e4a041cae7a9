import os
import ssl
import stat
from datetime import datetime, timezone

import pytest

from orbctl import settings
from orbctl.settings import (
    Config,
    OrbPublishingInfo,
    SettingsError,
    UpdateCheck,
    ensure_settings_file_exists,
    is_world_writable,
    read_from_env,
    settings_path,
    validate_tls_cert_path,
)


@pytest.fixture
def home(tmp_path, monkeypatch):
    home_dir = tmp_path / "home"
    home_dir.mkdir()
    monkeypatch.setenv("HOME", str(home_dir))
    monkeypatch.setenv("USERPROFILE", str(home_dir))
    return home_dir


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    work = tmp_path / "work"
    work.mkdir()
    monkeypatch.chdir(work)
    return work


def test_tls_cert_path_must_be_a_file(workdir):
    cfg = Config(tls_cert="..")
    with pytest.raises(SettingsError, match="provided TLSCert path must be a file"):
        cfg.with_http_client()


def test_tls_cert_world_writable(workdir):
    cert = workdir / "mockcert.pem"
    cert.write_text("not a certificate\n")
    os.chmod(cert, 0o602)
    cfg = Config(tls_cert="mockcert.pem")
    with pytest.raises(SettingsError, match="mockcert.pem cannot be world-writable"):
        cfg.with_http_client()


def test_tls_cert_invalid_contents(workdir):
    source = workdir / "clitest.go"
    source.write_text("package clitest\n")
    os.chmod(source, 0o600)
    cfg = Config(tls_cert="clitest.go")
    with pytest.raises(SettingsError, match="unable to parse certificates"):
        cfg.with_http_client()


def test_tls_cert_missing_file(workdir):
    cfg = Config(tls_cert="missing.pem")
    with pytest.raises(SettingsError, match="invalid tls cert provided"):
        cfg.with_http_client()


def test_world_writable_parent_directory(workdir):
    certs = workdir / "certs"
    certs.mkdir()
    cert = certs / "mock.pem"
    cert.write_text("x")
    os.chmod(cert, 0o600)
    os.chmod(certs, 0o777)
    with pytest.raises(SettingsError, match="certs cannot be world-writable"):
        validate_tls_cert_path(os.path.join("certs", "mock.pem"))


def test_insecure_client_disables_verification():
    cfg = Config(tls_insecure=True)
    cfg.with_http_client()
    assert cfg.ssl_context.verify_mode == ssl.CERT_NONE
    assert cfg.ssl_context.check_hostname is False
    assert cfg.http_timeout == 30.0


def test_default_client_verifies():
    cfg = Config()
    cfg.with_http_client()
    assert cfg.ssl_context.verify_mode == ssl.CERT_REQUIRED


@pytest.mark.parametrize(
    ("mode", "expected"),
    [(0o602, True), (0o600, False), (0o777, True), (0o755, False)],
)
def test_is_world_writable(mode, expected):
    assert is_world_writable(mode) is expected


def test_read_from_env(monkeypatch):
    monkeypatch.setenv("CIRCLECI_CLI_HOST", "https://example.com")
    assert read_from_env("circleci_cli", "host") == "https://example.com"
    monkeypatch.delenv("CIRCLECI_CLI_ENDPOINT", raising=False)
    assert read_from_env("circleci_cli", "endpoint") == ""


def test_load_from_env_overrides_only_set_values(monkeypatch):
    monkeypatch.setenv("CIRCLECI_CLI_TOKEN", "token")
    monkeypatch.setenv("CIRCLECI_CLI_REST_ENDPOINT", "api/v3")
    monkeypatch.delenv("CIRCLECI_CLI_HOST", raising=False)
    monkeypatch.delenv("CIRCLECI_CLI_ENDPOINT", raising=False)
    cfg = Config(host="https://example.com", endpoint="graphql")
    cfg.load_from_env("circleci_cli")
    assert cfg.token == "token"
    assert cfg.rest_endpoint == "api/v3"
    assert cfg.host == "https://example.com"
    assert cfg.endpoint == "graphql"


def test_settings_path(home):
    assert settings_path() == os.path.join(str(home), ".circleci")


def test_ensure_settings_file_exists_creates_private_file(home):
    path = os.path.join(settings_path(), "cli.yml")
    ensure_settings_file_exists(path)
    assert os.path.isfile(path)
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600


def test_ensure_settings_file_exists_keeps_content(home):
    path = os.path.join(settings_path(), "cli.yml")
    ensure_settings_file_exists(path)
    with open(path, "w") as handle:
        handle.write("host: keep\n")
    ensure_settings_file_exists(path)
    with open(path) as handle:
        assert handle.read() == "host: keep\n"


def test_write_to_disk_format(home):
    cfg = Config()
    cfg.load_from_disk()
    cfg.host = "https://zomg.com"
    cfg.endpoint = "graphql-unstable"
    cfg.token = "token"
    cfg.rest_endpoint = "api/v2"
    cfg.write_to_disk()
    with open(cfg.file_used) as handle:
        content = handle.read()
    assert content == (
        "host: https://zomg.com\n"
        "endpoint: graphql-unstable\n"
        "token: token\n"
        "rest_endpoint: api/v2\n"
        'tls_cert: ""\n'
        "tls_insecure: false\n"
        "orb_publishing:\n"
        '    default_namespace: ""\n'
        '    default_vcs_provider: ""\n'
        '    default_owner: ""\n'
    )
    assert stat.S_IMODE(os.stat(cfg.file_used).st_mode) == 0o600


def test_config_round_trip(home):
    cfg = Config()
    cfg.load_from_disk()
    assert cfg.file_used == os.path.join(str(home), ".circleci", "cli.yml")
    cfg.host = "https://example.com"
    cfg.token = "token"
    cfg.orb_publishing = OrbPublishingInfo(default_namespace="ns", default_owner="owner")
    cfg.write_to_disk()

    reread = Config()
    reread.load_from_disk()
    assert reread.host == "https://example.com"
    assert reread.token == "token"
    assert reread.orb_publishing == OrbPublishingInfo(
        default_namespace="ns", default_vcs_provider="", default_owner="owner"
    )
    assert reread.ssl_context is not None and reread.ssl_context.verify_mode == ssl.CERT_REQUIRED


def test_partial_config_keeps_other_fields(home):
    directory = os.path.join(str(home), ".circleci")
    os.makedirs(directory)
    with open(os.path.join(directory, "cli.yml"), "w") as handle:
        handle.write("host: https://example.com/graphql\ntoken: token\n")
    cfg = Config(endpoint="graphql-unstable")
    cfg.load_from_disk()
    assert cfg.host == "https://example.com/graphql"
    assert cfg.token == "token"
    assert cfg.endpoint == "graphql-unstable"


def test_invalid_yaml_is_ignored(home):
    directory = os.path.join(str(home), ".circleci")
    os.makedirs(directory)
    with open(os.path.join(directory, "cli.yml"), "w") as handle:
        handle.write("host: [unclosed\n")
    cfg = Config(host="original")
    cfg.load_from_disk()
    assert cfg.host == "original"
    assert cfg.ssl_context is None


def test_load_applies_environment(home, monkeypatch):
    monkeypatch.setenv("CIRCLECI_CLI_HOST", "https://env.example.com")
    cfg = Config()
    cfg.load()
    assert cfg.host == "https://env.example.com"


def test_update_check_round_trip(home):
    upd = UpdateCheck()
    upd.load()
    assert upd.file_used == os.path.join(str(home), ".circleci", "update_check.yml")
    assert upd.last_update_check == datetime(1, 1, 1, tzinfo=timezone.utc)

    moment = datetime(2021, 5, 4, 3, 2, 1, tzinfo=timezone.utc)
    upd.last_update_check = moment
    upd.write_to_disk()

    reread = UpdateCheck()
    reread.load()
    assert reread.last_update_check == moment


def test_update_check_invalid_yaml(home):
    directory = os.path.join(str(home), ".circleci")
    os.makedirs(directory)
    with open(os.path.join(directory, settings.UPDATE_CHECK_FILENAME), "w") as handle:
        handle.write("last_update_check: [\n")
    with pytest.raises(SettingsError):
        UpdateCheck().load()