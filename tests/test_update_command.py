import io
import json
import sys
import threading
import zipfile
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from orbctl import settings, update
from orbctl.update_command import SLUG, update_cli

PLATFORMS = [
    "linux_amd64",
    "linux_arm64",
    "linux_386",
    "darwin_amd64",
    "darwin_arm64",
    "windows_amd64",
]
RELEASES_PATH = f"/repos/{SLUG}/releases"


def _releases(tag):
    return json.dumps(
        [
            {
                "id": 1,
                "tag_name": tag,
                "name": tag,
                "published_at": "2013-02-27T19:35:32Z",
                "assets": [
                    {"id": 1, "name": f"{p}.zip", "content_type": "application/zip", "size": 1024}
                    for p in PLATFORMS
                ],
            }
        ]
    ).encode()


@pytest.fixture
def server(monkeypatch):
    monkeypatch.delenv("SNAP_NAME", raising=False)
    routes = {}

    class Handler(BaseHTTPRequestHandler):
        def do_GET(self):
            status, body = routes.get(self.path, (404, b"not found"))
            self.send_response(status)
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, *args):
            pass

    httpd = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{httpd.server_address[1]}", routes
    httpd.shutdown()
    httpd.server_close()


def test_no_updates_found(server, capsys):
    url, routes = server
    routes[RELEASES_PATH] = (200, b"[]")
    update_cli(settings.Config(github_api=url), dry_run=True)
    assert capsys.readouterr().out == "No updates found.\n"


def test_already_up_to_date(server, capsys):
    url, routes = server
    routes[RELEASES_PATH] = (200, _releases("v0.0.0-dev"))
    update_cli(settings.Config(github_api=url), dry_run=True)
    assert capsys.readouterr().out == "Already up-to-date.\n"


def test_check_tells_user_how_to_update(server, capsys):
    url, routes = server
    routes[RELEASES_PATH] = (200, _releases("v1.0.0"))
    update_cli(settings.Config(github_api=url), dry_run=True)
    out = capsys.readouterr().out
    assert out.startswith("You are running 0.0.0-dev\nA new release is available (1.0.0)\n")
    assert "You can visit the Github releases page for the CLI to manually download and install:" in out
    assert "https://github.com/CircleCI-Public/circleci-cli/releases" in out


def test_debug_prints_release_details(server, capsys):
    url, routes = server
    routes[RELEASES_PATH] = (200, _releases("v1.0.0"))
    update_cli(settings.Config(github_api=url, debug=True), dry_run=True)
    out = capsys.readouterr().out
    assert "Latest version: 1.0.0\n" in out
    assert "Published: 2013-02-27T19:35:32Z\n" in out
    assert "Current Version: 0.0.0-dev\n" in out


def test_forbidden_raises_helpful_error(server):
    url, routes = server
    routes[RELEASES_PATH] = (403, b"Forbidden")
    with pytest.raises(update.UpdateError) as info:
        update_cli(settings.Config(github_api=url), dry_run=True)
    assert str(info.value).startswith("Failed to query the GitHub API for updates.")


def test_install_replaces_executable(server, capsys, tmp_path, monkeypatch):
    url, routes = server
    routes[RELEASES_PATH] = (200, _releases("v1.0.0"))
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("circleci", b"new binary")
    routes[f"{RELEASES_PATH}/assets/1"] = (200, buffer.getvalue())

    executable = tmp_path / "circleci"
    executable.write_bytes(b"old binary")
    monkeypatch.setattr(sys, "argv", [str(executable)])

    update_cli(settings.Config(github_api=url), dry_run=False)
    out = capsys.readouterr().out
    assert "Updated to 1.0.0" in out
    assert executable.read_bytes() == b"new binary"


def test_install_fails_when_executable_missing_from_archive(server, tmp_path, monkeypatch):
    url, routes = server
    routes[RELEASES_PATH] = (200, _releases("v1.0.0"))
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("README", b"nothing here")
    routes[f"{RELEASES_PATH}/assets/1"] = (200, buffer.getvalue())

    executable = tmp_path / "circleci"
    executable.write_bytes(b"old binary")
    monkeypatch.setattr(sys, "argv", [str(executable)])

    with pytest.raises(update.UpdateError, match="failed to install update"):
        update_cli(settings.Config(github_api=url), dry_run=False)
    assert executable.read_bytes() == b"old binary"