"""
qbolink configuration management.

Supports loading from YAML files, environment variables, and keyword overrides.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

from qbolink.errors import ConfigError

QBO_API_URL = "https://quickbooks.api.intuit.com/v3/company"
QBO_SANDBOX_API_URL = "https://sandbox-quickbooks.api.intuit.com/v3/company"


def _normalize_path(value: str) -> str:
    if not value.startswith("/"):
        value = "/" + value
    return value


class OAuthConfig(BaseModel):
    """Intuit app credentials and callback location."""

    client_id: str = Field(default="", description="Intuit app client id")
    client_secret: str = Field(default="", description="Intuit app client secret")
    sandbox: bool = Field(default=False, description="Use the QuickBooks sandbox environment")
    base_url: str = Field(default="http://localhost:8000", description="Public URL of this service")
    callback_path: str = Field(default="/callbacks/quickbooks")

    @field_validator("callback_path")
    @classmethod
    def normalize_callback_path(cls, v: str) -> str:
        return _normalize_path(v)

    @property
    def redirect_uri(self) -> str:
        return self.base_url.rstrip("/") + self.callback_path

    @property
    def api_base_url(self) -> str:
        return QBO_SANDBOX_API_URL if self.sandbox else QBO_API_URL


class WebhookConfig(BaseModel):
    """Inbound change-notification settings."""

    path: str = Field(default="/webhooks/quickbooks")
    verifier_token: str = Field(default="", description="Shared HMAC secret from the Intuit app")

    @field_validator("path")
    @classmethod
    def normalize_path(cls, v: str) -> str:
        return _normalize_path(v)


class StorageConfig(BaseModel):
    """Where credentials are kept when using the built-in file store."""

    token_dir: str = Field(default=str(Path.home() / ".qbolink" / "store"))
    encryption_key: str | None = Field(
        default=None,
        description="Fernet key for encrypting stored credentials (qbolink generate-key)",
    )


class SchedulerConfig(BaseModel):
    refresh_margin_seconds: int = Field(default=120, ge=0, description="Refresh this long before expiry")


class QBOLinkConfig(BaseModel):
    """Root configuration for qbolink."""

    oauth: OAuthConfig = Field(default_factory=OAuthConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)

    realm_id: str | None = Field(default=None, description="Tenant (realm) id, once known")
    validate_state: bool = Field(
        default=False,
        description="Reject OAuth callbacks whose state wasn't issued by this process",
    )

    @field_validator("realm_id", mode="before")
    @classmethod
    def realm_id_as_string(cls, v: Any) -> Any:
        # YAML reads unquoted realm ids as integers
        if isinstance(v, int):
            return str(v)
        return v

    def require_oauth(self) -> None:
        """Raise ConfigError unless client credentials are set."""
        missing = [name for name in ("client_id", "client_secret") if not getattr(self.oauth, name)]
        if missing:
            raise ConfigError(f"Missing OAuth settings: {', '.join(missing)}")

    @classmethod
    def load(cls, config_path: str | None = None, **overrides: Any) -> QBOLinkConfig:
        """Load configuration from file, env vars, and overrides.

        Priority: overrides > env vars > config file > defaults.
        """
        data: dict[str, Any] = {}

        # 1. Load from YAML file if provided
        if config_path:
            path = Path(config_path)
            if path.exists():
                with open(path) as f:
                    try:
                        data = yaml.safe_load(f) or {}
                    except yaml.YAMLError as e:
                        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

        # 2. Override from environment variables
        _apply_env(data, "oauth", {
            "client_id": "QBOLINK_CLIENT_ID",
            "client_secret": "QBOLINK_CLIENT_SECRET",
            "base_url": "QBOLINK_BASE_URL",
            "callback_path": "QBOLINK_CALLBACK_PATH",
        })
        _apply_env(data, "webhook", {
            "path": "QBOLINK_WEBHOOK_PATH",
            "verifier_token": "QBOLINK_WEBHOOK_TOKEN",
        })
        _apply_env(data, "storage", {
            "token_dir": "QBOLINK_TOKEN_DIR",
            "encryption_key": "QBOLINK_ENCRYPTION_KEY",
        })

        env_sandbox = os.environ.get("QBOLINK_SANDBOX")
        if env_sandbox:
            oauth = data.setdefault("oauth", {})
            oauth["sandbox"] = env_sandbox.lower() in ("1", "true", "yes")

        env_realm = os.environ.get("QBOLINK_REALM_ID")
        if env_realm:
            data["realm_id"] = env_realm

        # 3. Apply keyword overrides
        data.update(overrides)

        return cls.model_validate(data)


def _apply_env(data: dict[str, Any], section: str, mapping: dict[str, str]) -> None:
    for field_name, env_name in mapping.items():
        value = os.environ.get(env_name)
        if value:
            data.setdefault(section, {})[field_name] = value
