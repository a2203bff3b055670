"""Tests for configuration management."""

from pathlib import Path

import pytest
import yaml

from qbolink.config import QBO_API_URL, QBO_SANDBOX_API_URL, QBOLinkConfig
from qbolink.errors import ConfigError


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "QBOLINK_CLIENT_ID",
        "QBOLINK_CLIENT_SECRET",
        "QBOLINK_BASE_URL",
        "QBOLINK_CALLBACK_PATH",
        "QBOLINK_WEBHOOK_PATH",
        "QBOLINK_WEBHOOK_TOKEN",
        "QBOLINK_TOKEN_DIR",
        "QBOLINK_ENCRYPTION_KEY",
        "QBOLINK_SANDBOX",
        "QBOLINK_REALM_ID",
    ):
        monkeypatch.delenv(name, raising=False)


class TestConfig:
    def test_default_config(self) -> None:
        config = QBOLinkConfig()
        assert config.oauth.callback_path == "/callbacks/quickbooks"
        assert config.webhook.path == "/webhooks/quickbooks"
        assert config.oauth.sandbox is False
        assert config.scheduler.refresh_margin_seconds == 120
        assert config.validate_state is False
        assert config.realm_id is None

    def test_redirect_uri(self) -> None:
        config = QBOLinkConfig.load(None, oauth={"base_url": "https://myapp.com/"})
        assert config.oauth.redirect_uri == "https://myapp.com/callbacks/quickbooks"

    def test_api_base_url(self) -> None:
        assert QBOLinkConfig().oauth.api_base_url == QBO_API_URL
        assert QBOLinkConfig.load(None, oauth={"sandbox": True}).oauth.api_base_url == QBO_SANDBOX_API_URL

    def test_load_from_yaml(self, tmp_path: Path) -> None:
        yaml_content = {
            "oauth": {"client_id": "abc", "client_secret": "xyz", "sandbox": True},
            "webhook": {"verifier_token": "tok", "path": "hooks/qbo"},
            "realm_id": 4620816365213515760,
        }
        config_file = tmp_path / "qbolink.yaml"
        config_file.write_text(yaml.dump(yaml_content))

        config = QBOLinkConfig.load(str(config_file))
        assert config.oauth.client_id == "abc"
        assert config.oauth.sandbox is True
        assert config.webhook.path == "/hooks/qbo"
        assert config.realm_id == "4620816365213515760"

    def test_env_var_override(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        config_file = tmp_path / "qbolink.yaml"
        config_file.write_text(yaml.dump({"oauth": {"client_id": "from_file"}}))
        monkeypatch.setenv("QBOLINK_CLIENT_ID", "from_env")
        monkeypatch.setenv("QBOLINK_WEBHOOK_TOKEN", "secret")
        monkeypatch.setenv("QBOLINK_SANDBOX", "true")
        monkeypatch.setenv("QBOLINK_REALM_ID", "123")

        config = QBOLinkConfig.load(str(config_file))
        assert config.oauth.client_id == "from_env"
        assert config.webhook.verifier_token == "secret"
        assert config.oauth.sandbox is True
        assert config.realm_id == "123"

    def test_overrides_win(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("QBOLINK_REALM_ID", "from_env")
        config = QBOLinkConfig.load(None, realm_id="override")
        assert config.realm_id == "override"

    def test_missing_config_file(self) -> None:
        config = QBOLinkConfig.load("/nonexistent/qbolink.yaml")
        assert config.oauth.client_id == ""

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        config_file = tmp_path / "bad.yaml"
        config_file.write_text("oauth: [unclosed")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            QBOLinkConfig.load(str(config_file))

    def test_require_oauth(self) -> None:
        with pytest.raises(ConfigError, match="client_id, client_secret"):
            QBOLinkConfig().require_oauth()
        QBOLinkConfig.load(None, oauth={"client_id": "a", "client_secret": "b"}).require_oauth()
