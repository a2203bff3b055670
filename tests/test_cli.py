"""Tests for the qbolink CLI."""

from __future__ import annotations

from pathlib import Path

import pytest
from cryptography.fernet import Fernet
from typer.testing import CliRunner

from qbolink import __version__
from qbolink.cli import app
from qbolink.webhooks.verifier import sign

runner = CliRunner()


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("QBOLINK_TOKEN_DIR", str(tmp_path / "store"))
    for name in ("QBOLINK_CLIENT_ID", "QBOLINK_CLIENT_SECRET", "QBOLINK_WEBHOOK_TOKEN", "QBOLINK_REALM_ID"):
        monkeypatch.delenv(name, raising=False)


class TestCLI:
    def test_version(self) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_sign(self, tmp_path: Path) -> None:
        body = tmp_path / "body.json"
        body.write_bytes(b'{"eventNotifications":[]}')
        result = runner.invoke(app, ["sign", str(body), "--secret", "tok"])
        assert result.exit_code == 0
        assert sign(b'{"eventNotifications":[]}', "tok") in result.output

    def test_sign_without_secret(self, tmp_path: Path) -> None:
        body = tmp_path / "body.json"
        body.write_bytes(b"{}")
        result = runner.invoke(app, ["sign", str(body), "--config", str(tmp_path / "none.yaml")])
        assert result.exit_code == 1

    def test_generate_key(self) -> None:
        result = runner.invoke(app, ["generate-key"])
        assert result.exit_code == 0
        Fernet(result.output.strip().encode())

    def test_auth_url_requires_credentials(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["auth-url", "--config", str(tmp_path / "none.yaml")])
        assert result.exit_code == 1
        assert "client_id" in result.output

    def test_auth_url(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("QBOLINK_CLIENT_ID", "abc")
        monkeypatch.setenv("QBOLINK_CLIENT_SECRET", "xyz")
        result = runner.invoke(app, ["auth-url", "--config", str(tmp_path / "none.yaml")])
        assert result.exit_code == 0
        assert "state:" in result.output

    def test_token_missing(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["token", "--realm", "123", "--config", str(tmp_path / "none.yaml")])
        assert result.exit_code == 1
        assert "No credential stored" in result.output
